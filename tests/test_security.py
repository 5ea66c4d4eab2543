import socket
from unittest.mock import patch

import pytest

from relink_mcp.errors import BlockedByPolicy
from relink_mcp.security import ensure_safe_url, is_safe_url, wrap_external_content


def test_ssrf_basic():
    # Loopback
    assert not is_safe_url("http://127.0.0.1")
    assert not is_safe_url("http://localhost")
    assert not is_safe_url("http://[::1]")

    # Private
    assert not is_safe_url("http://192.168.1.100")
    assert not is_safe_url("http://10.0.0.1")
    assert not is_safe_url("http://172.16.5.5")

    # Link-local (cloud metadata endpoint)
    assert not is_safe_url("http://169.254.169.254")

    # Schemes
    assert not is_safe_url("ftp://example.com")
    assert not is_safe_url("file:///etc/passwd")
    assert not is_safe_url("javascript:alert(1)")

    # With port
    assert not is_safe_url("http://127.0.0.1:8080")
    assert not is_safe_url("http://localhost:5000")


def test_ssrf_dns_rebinding_simulation():
    # Simulate a domain resolving to 127.0.0.1
    with patch("socket.getaddrinfo") as mock_dns:
        mock_dns.return_value = [
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("127.0.0.1", 80))
        ]
        assert not is_safe_url("http://malicious-rebinding.com")


def test_any_unsafe_address_blocks():
    with patch("socket.getaddrinfo") as mock_dns:
        mock_dns.return_value = [
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("8.8.8.8", 80)),
            (socket.AF_INET6, socket.SOCK_STREAM, 6, "", ("fe80::1%eth0", 80, 0, 0)),
        ]
        assert not is_safe_url("http://dual-stack.example")


def test_safe_urls():
    # Should allow normal domains (mocking DNS to public IP)
    with patch("socket.getaddrinfo") as mock_dns:
        mock_dns.return_value = [
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("8.8.8.8", 80))
        ]
        assert is_safe_url("http://google.com")
        assert is_safe_url("https://example.com/path?q=1")


def test_dns_failure_fallback():
    # If DNS fails, we allow it (connection will fail anyway)
    with patch("socket.getaddrinfo", side_effect=socket.gaierror):
        assert is_safe_url("http://non-existent-domain.com")


@pytest.mark.asyncio
async def test_ensure_safe_url_raises():
    with pytest.raises(BlockedByPolicy, match="Blocked unsafe URL"):
        await ensure_safe_url("http://127.0.0.1/admin")


@pytest.mark.asyncio
async def test_ensure_safe_url_passes():
    with patch("socket.getaddrinfo") as mock_dns:
        mock_dns.return_value = [
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("93.184.216.34", 443))
        ]
        await ensure_safe_url("https://example.com/")


def test_blocked_by_policy_is_not_retryable():
    assert not BlockedByPolicy("x").retryable


# ---------------------------------------------------------------------------
# wrap_external_content
# ---------------------------------------------------------------------------


def test_wrap_external_content():
    wrapped = wrap_external_content("links", '{"replacement_url": "https://x"}')
    assert wrapped.startswith("<untrusted_links_content>\n")
    assert "</untrusted_links_content>" in wrapped
    assert "UNTRUSTED" in wrapped


def test_wrap_external_content_passes_errors_through():
    assert wrap_external_content("links", "Error: boom") == "Error: boom"
