"""Tests for the MCP tool surface in server.py."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
from conftest import FakeChecker, FakeProvider, FakeScraper, candidate, make_page

from relink_mcp import server
from relink_mcp.__main__ import _check
from relink_mcp.cache import URLResultCache
from relink_mcp.finder import ReplacementFinder
from relink_mcp.models import URLCheckResult
from relink_mcp.processor import ProcessorState, ReplacementProcessor
from relink_mcp.sources.cascade import SearchCascade
from relink_mcp.validator import ReplacementValidator

BROKEN = "https://example.com/old/doc.html"
NEW_URL = "https://example.com/new/doc.html"
OTHER_URL = "https://example.com/archive/doc.html"

MATCHING_PAGE = make_page(
    NEW_URL,
    "this doc now lives at a new address on example.com with the same content",
    title="Doc",
)


def _unwrap(result: str) -> dict:
    """Strip the untrusted-content fence and parse the JSON inside."""
    lines = result.splitlines()
    assert lines[0].startswith("<untrusted_")
    end = next(i for i, line in enumerate(lines) if line.startswith("</untrusted_"))
    return json.loads("\n".join(lines[1:end]))


@pytest.fixture
def processor():
    checker = FakeChecker({BROKEN: 404})
    scraper = FakeScraper({NEW_URL: MATCHING_PAGE, OTHER_URL: MATCHING_PAGE})
    provider = FakeProvider(results=[candidate(NEW_URL), candidate(OTHER_URL)])
    finder = ReplacementFinder(
        SearchCascade([provider]),
        scraper,
        ReplacementValidator(checker, scraper),
        retry_delay=0,
    )
    instance = ReplacementProcessor(checker, finder)
    with patch.object(server, "_processor", instance), patch.object(server, "_url_cache", None):
        yield instance


# ---------------------------------------------------------------------------
# _with_timeout
# ---------------------------------------------------------------------------


class TestWithTimeout:
    @pytest.mark.asyncio
    async def test_success(self):
        async def fast_coro():
            return "success"

        with patch.object(server.settings, "tool_timeout", 1):
            assert await server._with_timeout(fast_coro(), "test_action") == "success"

    @pytest.mark.asyncio
    async def test_exceeded(self):
        async def slow_coro():
            await asyncio.sleep(0.5)
            return "fail"

        with patch.object(server.settings, "tool_timeout", 0.1):
            result = await server._with_timeout(slow_coro(), "test_action")

        assert result == (
            "Error: 'test_action' timed out after 0.1s. "
            "Increase TOOL_TIMEOUT or check fewer URLs per call."
        )

    @pytest.mark.asyncio
    async def test_exception_propagates(self):
        async def failing_coro():
            raise ValueError("oops")

        with patch.object(server.settings, "tool_timeout", 1):
            with pytest.raises(ValueError, match="oops"):
                await server._with_timeout(failing_coro(), "test_action")

    @pytest.mark.asyncio
    async def test_disabled(self):
        async def coro():
            return "success"

        with patch.object(server.settings, "tool_timeout", 0):
            assert await server._with_timeout(coro(), "test_action") == "success"

    @pytest.mark.asyncio
    async def test_cleanup_runs_in_grace_period(self):
        cleanup_done = [False]

        async def cleanup_coro():
            try:
                await asyncio.sleep(0.5)
            finally:
                cleanup_done[0] = True

        with patch.object(server.settings, "tool_timeout", 0.1):
            result = await server._with_timeout(cleanup_coro(), "test_action")

        assert result.startswith("Error: 'test_action' timed out")
        assert cleanup_done[0] is True


# ---------------------------------------------------------------------------
# links tool
# ---------------------------------------------------------------------------


class TestLinksTool:
    @pytest.mark.asyncio
    async def test_unknown_action(self, processor):
        result = await server.links(action="explode")
        assert result.startswith("Error: Unknown action 'explode'")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", ["check", "find", "next", "accept", "validate"])
    async def test_missing_arguments(self, processor, action):
        result = await server.links(action=action)
        assert result.startswith("Error:")

    @pytest.mark.asyncio
    async def test_check(self, processor):
        result = await server.links(action="check", urls=[BROKEN, "https://ok.example/"])
        data = _unwrap(result)

        assert data["stats"]["total"] == 2
        assert data["stats"]["replacement_found"] == 1
        assert data["stats"]["valid"] == 1
        broken = data["results"][0]
        assert broken["status"] == "replacement-found"
        assert broken["replacement"]["replacement_url"] == NEW_URL
        assert broken["replacement"]["validated"] is True

    @pytest.mark.asyncio
    async def test_check_while_running(self, processor):
        processor._state = ProcessorState.PROCESSING
        result = await server.links(action="check", urls=[BROKEN])
        assert result == "Error: URL processing is already in progress"

    @pytest.mark.asyncio
    async def test_find_next_accept(self, processor):
        found = _unwrap(await server.links(action="find", url=BROKEN))
        assert found["status"] == "found"
        assert found["replacement"]["replacement_url"] == NEW_URL

        nxt = _unwrap(await server.links(action="next", url=BROKEN))
        assert nxt["status"] == "ok"
        assert nxt["replacement"]["replacement_url"] == OTHER_URL
        assert nxt["replacement"]["current_alternative_index"] == 1

        exhausted = _unwrap(await server.links(action="next", url=BROKEN))
        assert exhausted["status"] == "exhausted"

        accepted = _unwrap(await server.links(action="accept", url=BROKEN))
        assert accepted["replacement_url"] == OTHER_URL

        await processor.drain_background()

    @pytest.mark.asyncio
    async def test_next_without_find(self, processor):
        result = await server.links(action="next", url="https://unknown.example/")
        assert result.startswith("Error: No replacement has been found")

    @pytest.mark.asyncio
    async def test_validate(self, processor):
        data = _unwrap(
            await server.links(action="validate", url=BROKEN, replacement=NEW_URL)
        )
        assert data["overall_valid"] is True
        assert data["replacement_url"] == NEW_URL


# ---------------------------------------------------------------------------
# config tool
# ---------------------------------------------------------------------------


class TestConfigTool:
    @pytest.mark.asyncio
    async def test_status(self, processor):
        data = json.loads(await server.config(action="status"))

        assert data["processor"]["state"] == "idle"
        assert data["processor"]["config"]["batch_size"] == 5
        assert data["cache"]["enabled"] is False

    @pytest.mark.asyncio
    async def test_set_processor_key(self, processor):
        data = json.loads(await server.config(action="set", key="batch_size", value="2"))

        assert data["status"] == "updated"
        assert data["config"]["batch_size"] == 2
        assert processor.config.batch_size == 2

    @pytest.mark.asyncio
    async def test_set_enhanced_search_key(self, processor):
        data = json.loads(
            await server.config(action="set", key="enhanced_search.max_retries", value="0")
        )

        assert data["config"]["enhanced_search"]["max_retries"] == 0
        assert processor.finder.config.enhanced_search.max_retries == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "key, value",
        [("batch_size", "0"), ("auto_fix", "maybe"), ("enhanced_search.bogus", "1")],
    )
    async def test_set_invalid_value(self, processor, key, value):
        data = json.loads(await server.config(action="set", key=key, value=value))

        assert "Invalid value" in data["error"]
        assert processor.config.batch_size == 5

    @pytest.mark.asyncio
    async def test_set_unknown_key(self, processor):
        data = json.loads(await server.config(action="set", key="nope", value="1"))

        assert data["error"] == "Invalid key: nope"
        assert "batch_size" in data["valid_keys"]

    @pytest.mark.asyncio
    async def test_set_requires_key_and_value(self, processor):
        data = json.loads(await server.config(action="set", key="batch_size"))
        assert "required" in data["error"]

    @pytest.mark.asyncio
    async def test_set_relay(self, processor):
        await server.config(action="set", key="relay_url", value="http://localhost:3001")
        await server.config(action="set", key="relay_enabled", value="yes")

        assert processor.checker.relay_url == "http://localhost:3001"
        assert processor.checker.relay_enabled is True

    @pytest.mark.asyncio
    async def test_set_tool_timeout(self, processor):
        with patch.object(server.settings, "tool_timeout", 300):
            data = json.loads(
                await server.config(action="set", key="tool_timeout", value="60")
            )
            assert data["value"] == 60
            assert server.settings.tool_timeout == 60

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["abc", "1.5", "-1"])
    async def test_set_tool_timeout_invalid(self, processor, value):
        with patch.object(server.settings, "tool_timeout", 300):
            data = json.loads(
                await server.config(action="set", key="tool_timeout", value=value)
            )
            assert "Invalid value for tool_timeout" in data["error"]
            assert server.settings.tool_timeout == 300

    @pytest.mark.asyncio
    async def test_cache_clear_disabled(self, processor):
        data = json.loads(await server.config(action="cache_clear"))
        assert data["error"] == "Cache is not enabled"

    @pytest.mark.asyncio
    async def test_cache_clear(self, processor, tmp_path):
        cache = URLResultCache(tmp_path / "cache.db")
        try:
            cache.put(BROKEN, URLCheckResult(url=BROKEN, status=404, status_text="Not Found"))
            with patch.object(server, "_url_cache", cache):
                data = json.loads(await server.config(action="cache_clear"))
            assert data == {"status": "cache cleared", "removed": 1}
        finally:
            cache.close()

    @pytest.mark.asyncio
    async def test_unknown_action(self, processor):
        data = json.loads(await server.config(action="reboot"))
        assert data["valid_actions"] == ["status", "set", "cache_clear"]


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def test_cli_check_requires_urls():
    with pytest.raises(SystemExit) as exc_info:
        _check([])
    assert exc_info.value.code == 2


def test_cli_check_prints_results(capsys):
    with patch("relink_mcp.server._do_check", new=AsyncMock(return_value='{"results": []}')):
        _check([BROKEN])
    assert capsys.readouterr().out.strip() == '{"results": []}'


def test_build_processor_wires_settings():
    from relink_mcp.config import Settings

    built = server.build_processor(Settings(batch_size=3, relay_url="http://relay:3001"))

    assert built.config.batch_size == 3
    assert built.checker.relay_url == "http://relay:3001"
    assert built.finder.validator.checker is built.checker
