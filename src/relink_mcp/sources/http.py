"""Shared HTTP pieces: browser-like headers and httpx error mapping."""

import socket
import ssl

import httpx

from relink_mcp.errors import (
    CertificateError,
    DNSFailure,
    NetworkUnreachable,
    RateLimited,
    RelinkError,
    Timeout,
)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

BROWSER_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control": "no-cache",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
}

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated",
)


def _root_cause(exc: BaseException) -> BaseException:
    seen = set()
    while exc.__cause__ is not None and id(exc) not in seen:
        seen.add(id(exc))
        exc = exc.__cause__
    return exc


def classify_error(exc: Exception, url: str | None = None) -> RelinkError:
    """Map an httpx (or socket) exception onto the engine's error taxonomy."""
    if isinstance(exc, RelinkError):
        return exc

    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, httpx.TimeoutException):
        return Timeout(f"Request timeout: {message}", url=url)

    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code == 429:
            return RateLimited(f"HTTP 429 from {exc.request.url.host}", url=url)
        return NetworkUnreachable(f"HTTP {exc.response.status_code}", url=url)

    cause = _root_cause(exc)
    lowered = f"{message} {cause}".lower()
    if isinstance(cause, socket.gaierror) or any(m in lowered for m in _DNS_MARKERS):
        return DNSFailure(f"DNS resolution failed: {message}", url=url)
    if isinstance(cause, ssl.SSLError) or "certificate" in lowered or "ssl" in lowered:
        return CertificateError(f"SSL certificate error: {message}", url=url)

    return NetworkUnreachable(f"Network error: {message}", url=url)
