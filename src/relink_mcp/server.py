"""ReLink MCP Server - Main server definition."""

import asyncio
import functools
import json
import sys
from contextlib import asynccontextmanager
from dataclasses import asdict

from loguru import logger
from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import ValidationError

from relink_mcp.cache import URLResultCache
from relink_mcp.config import Settings, settings
from relink_mcp.errors import Aborted, AlreadyInProgress
from relink_mcp.finder import ReplacementFinder
from relink_mcp.models import BatchStats, URLRecord
from relink_mcp.processor import ReplacementProcessor
from relink_mcp.security import wrap_external_content
from relink_mcp.sources.cascade import build_cascade
from relink_mcp.sources.checker import HttpURLValidator
from relink_mcp.sources.scraper import ContentScraper
from relink_mcp.validator import ReplacementValidator

# Configure logging
logger.remove()
logger.add(sys.stderr, level=settings.log_level)

# Module-level state (set during lifespan)
_url_cache: URLResultCache | None = None
_processor: ReplacementProcessor | None = None

# Background alternative checks still running at shutdown get this long
_DRAIN_TIMEOUT = 10.0

_PROCESSOR_KEYS = {
    "batch_size",
    "timeout",
    "search_timeout",
    "max_retries",
    "use_cache",
    "strict_domain_search",
    "auto_fix",
    "surface_unvalidated_fallback",
}
_ENHANCED_PREFIX = "enhanced_search."


def build_processor(
    config: Settings, cache: URLResultCache | None = None
) -> ReplacementProcessor:
    """Wire the checker, search cascade, scraper and validator together."""
    checker = HttpURLValidator(
        cache=cache,
        timeout=config.check_timeout,
        max_retries=config.check_retries,
        retry_delay=config.retry_delay,
        relay_url=config.relay_url,
        relay_enabled=config.relay_enabled,
    )
    scraper = ContentScraper(timeout=config.content_scrape_timeout)
    validator = ReplacementValidator(checker, scraper, check_timeout=config.check_timeout)
    processor_config = config.processor_config()
    finder = ReplacementFinder(
        build_cascade(config),
        scraper,
        validator,
        config=processor_config,
        retry_delay=config.retry_delay,
    )
    return ReplacementProcessor(checker, finder, config=processor_config)


def _get_processor() -> ReplacementProcessor:
    global _processor
    if _processor is None:
        _processor = build_processor(settings, _url_cache)
    return _processor


@asynccontextmanager
async def _lifespan(_server: FastMCP):
    """Server lifespan: open the reachability cache, close it on shutdown."""
    global _url_cache, _processor

    logger.info("Starting ReLink MCP Server...")

    if settings.serpapi_key:
        logger.info("SerpApi key configured")
    if not settings.serpapi_key and not settings.searxng_url:
        logger.warning(
            "No SERPAPI_KEY or SEARXNG_URL set. Searches rely on scraped "
            "DuckDuckGo/Bing/Google results, which may be rate limited."
        )

    if settings.relink_cache:
        _url_cache = URLResultCache(
            settings.get_cache_db_path(), max_age=settings.cache_max_age
        )
        logger.info("URL result cache enabled")

    _processor = build_processor(settings, _url_cache)

    yield

    logger.info("Shutting down ReLink MCP Server...")

    if _processor:
        try:
            await asyncio.wait_for(_processor.drain_background(), timeout=_DRAIN_TIMEOUT)
        except TimeoutError:
            logger.debug("Abandoning background alternative validation")
        _processor = None
    if _url_cache:
        _url_cache.close()
        _url_cache = None


# Initialize MCP server
mcp = FastMCP(
    name="relink",
    instructions=(
        "Broken link replacement MCP Server. "
        "Use `links` to check URLs and find, cycle and validate replacements "
        "for 404/403 links. Use `config` for runtime settings and cache."
    ),
    lifespan=_lifespan,
)

# Grace period (seconds) given to a cancelled task to clean up resources
# before we abandon it entirely.
_CANCEL_GRACE_PERIOD = 5.0


def _wrap_tool(tool_name: str):
    """Decorator to wrap tool results with XPIA safety markers.

    Error responses are passed through unwrapped.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            result = await func(*args, **kwargs)
            return wrap_external_content(tool_name, result)

        return wrapper

    return decorator


async def _with_timeout(coro, action: str) -> str:
    """Wrap coroutine with hard timeout.

    Uses ``asyncio.wait`` so the deadline holds even if the inner task is
    slow to react to cancellation. After cancellation the task is given a
    brief grace period before being abandoned.
    """
    timeout = settings.tool_timeout
    if timeout <= 0:
        return await coro

    task = asyncio.create_task(coro)
    done, _pending = await asyncio.wait({task}, timeout=timeout)

    if done:
        # Propagate any exception raised by the task
        return task.result()

    # Hard timeout -- cancel and wait briefly for cleanup
    task.cancel()
    logger.warning(f"Tool '{action}' timed out after {timeout}s, cancelling...")

    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=_CANCEL_GRACE_PERIOD)
    except (asyncio.CancelledError, TimeoutError, Exception):
        # Task either cancelled cleanly, timed out again, or raised -- all OK
        pass

    logger.error(f"Tool '{action}' timed out after {timeout}s")
    return (
        f"Error: '{action}' timed out after {timeout}s. "
        "Increase TOOL_TIMEOUT or check fewer URLs per call."
    )


def _dumps(data) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2, default=str)


async def _do_check(urls: list[str]) -> str:
    records = [URLRecord(id=str(i), original_url=u) for i, u in enumerate(urls)]
    processor = _get_processor()
    try:
        results = await processor.process_urls(records)
    except AlreadyInProgress as e:
        return f"Error: {e}"
    except Aborted as e:
        return _dumps(
            {
                "aborted": True,
                "results": [r.to_dict() for r in e.results],
                "stats": asdict(BatchStats.from_results(e.results)),
            }
        )
    return _dumps(
        {
            "results": [r.to_dict() for r in results],
            "stats": asdict(BatchStats.from_results(results)),
        }
    )


async def _do_find(url: str, status_code: int) -> str:
    outcome = await _get_processor().find_replacement(url, status_code)
    return _dumps(
        {
            "status": outcome.status,
            "error": outcome.error,
            "queries": outcome.queries,
            "replacement": outcome.result.to_dict() if outcome.result else None,
        }
    )


async def _do_validate(url: str, replacement: str) -> str:
    verdict = await _get_processor().validate_replacement(url, replacement)
    return _dumps({"original_url": url, "replacement_url": replacement, **asdict(verdict)})


# ---------------------------------------------------------------------------
# links tool: check, find, next, accept, validate
# ---------------------------------------------------------------------------


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=True,
        idempotentHint=False,
    ),
)
@_wrap_tool("links")
async def links(
    action: str,
    urls: list[str] | None = None,
    url: str | None = None,
    replacement: str | None = None,
    status_code: int = 404,
) -> str:
    """Check links and find replacements for broken ones.
    - check: Check a list of URLs, searching replacements for 404/403 (requires urls)
    - find: Find a replacement for one broken URL (requires url)
    - next: Cycle to the next alternative replacement (requires url)
    - accept: Return the current replacement for a URL (requires url)
    - validate: Validate a proposed replacement (requires url + replacement)
    """
    match action:
        case "check":
            if not urls:
                return "Error: urls is required for check action"
            return await _with_timeout(_do_check(urls), "check")

        case "find":
            if not url:
                return "Error: url is required for find action"
            return await _with_timeout(_do_find(url, status_code), "find")

        case "next":
            if not url:
                return "Error: url is required for next action"
            processor = _get_processor()
            if url not in processor.tracker:
                return f"Error: No replacement has been found for {url}"
            candidate = processor.next_alternative(url)
            if candidate is None:
                return _dumps({"status": "exhausted", "url": url})
            return _dumps(
                {
                    "status": "ok",
                    "url": url,
                    "replacement": processor.tracker.result(url).to_dict(),
                }
            )

        case "accept":
            if not url:
                return "Error: url is required for accept action"
            processor = _get_processor()
            candidate = processor.accept_alternative(url)
            if candidate is None:
                return f"Error: No replacement has been found for {url}"
            return _dumps({"status": "accepted", "url": url, "replacement_url": candidate.url})

        case "validate":
            if not url or not replacement:
                return "Error: url and replacement are required for validate action"
            return await _with_timeout(_do_validate(url, replacement), "validate")

        case _:
            return (
                f"Error: Unknown action '{action}'. "
                "Valid actions: check, find, next, accept, validate"
            )


@mcp.tool(
    description=(
        "Server config and management. Actions: status|set|cache_clear. "
        "Processor keys: batch_size, timeout, search_timeout, max_retries, "
        "use_cache, strict_domain_search, auto_fix, surface_unvalidated_fallback, "
        "enhanced_search.<field>."
    ),
    annotations=ToolAnnotations(
        title="Config",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    ),
)
async def config(
    action: str,
    key: str | None = None,
    value: str | None = None,
) -> str:
    """Server configuration and management.

    Actions:
    - status: Show current config, processor state and cache stats
    - set: Update runtime setting (key + value required)
    - cache_clear: Clear the URL result cache
    """
    match action:
        case "status":
            processor = _get_processor()
            status = {
                "processor": processor.stats(),
                "cache": {
                    "enabled": _url_cache is not None,
                    "path": str(settings.get_cache_db_path()) if _url_cache else None,
                    "stats": _url_cache.stats() if _url_cache else {},
                },
                "relay": {
                    "url": processor.checker.relay_url or None,
                    "enabled": processor.checker.relay_enabled,
                },
                "settings": {
                    "log_level": settings.log_level,
                    "tool_timeout": settings.tool_timeout,
                },
            }
            return _dumps(status)

        case "set":
            if not key or value is None:
                return json.dumps({"error": "key and value are required for set"})
            processor = _get_processor()

            if key == "log_level":
                settings.log_level = value.upper()
                logger.remove()
                logger.add(sys.stderr, level=settings.log_level)
                return json.dumps({"status": "updated", "key": key, "value": settings.log_level})
            if key == "tool_timeout":
                try:
                    timeout = int(value)
                except ValueError:
                    return json.dumps(
                        {"error": f"Invalid value for {key}: expected an integer, got {value!r}"}
                    )
                if timeout < 0:
                    return json.dumps(
                        {"error": f"Invalid value for {key}: must be >= 0 (0 disables it)"}
                    )
                settings.tool_timeout = timeout
                return json.dumps({"status": "updated", "key": key, "value": settings.tool_timeout})
            if key == "relay_url":
                processor.checker.configure_relay(url=value)
                return json.dumps({"status": "updated", "key": key, "value": value})
            if key == "relay_enabled":
                enabled = value.lower() in ("true", "1", "yes")
                processor.checker.configure_relay(enabled=enabled)
                return json.dumps({"status": "updated", "key": key, "value": enabled})

            if key in _PROCESSOR_KEYS:
                changes = {key: value}
            elif key.startswith(_ENHANCED_PREFIX):
                changes = {"enhanced_search": {key.removeprefix(_ENHANCED_PREFIX): value}}
            else:
                valid_keys = _PROCESSOR_KEYS | {
                    "log_level",
                    "tool_timeout",
                    "relay_url",
                    "relay_enabled",
                    f"{_ENHANCED_PREFIX}<field>",
                }
                return json.dumps(
                    {"error": f"Invalid key: {key}", "valid_keys": sorted(valid_keys)}
                )

            try:
                new_config = processor.update_config(changes)
            except ValidationError as e:
                return json.dumps({"error": f"Invalid value for {key}: {e.errors()[0]['msg']}"})
            return _dumps({"status": "updated", "key": key, "config": new_config.model_dump()})

        case "cache_clear":
            if _url_cache:
                removed = _url_cache.clear()
                return json.dumps({"status": "cache cleared", "removed": removed})
            return json.dumps({"error": "Cache is not enabled"})

        case _:
            return json.dumps(
                {
                    "error": f"Unknown action: {action}",
                    "valid_actions": ["status", "set", "cache_clear"],
                }
            )


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
