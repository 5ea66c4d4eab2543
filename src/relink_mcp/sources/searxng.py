"""SearXNG search provider with retry logic and health verification."""

import asyncio

import httpx
from loguru import logger

from relink_mcp.errors import NetworkUnreachable
from relink_mcp.models import SearchCandidate
from relink_mcp.sources.http import classify_error
from relink_mcp.sources.providers import SearchProvider

# Default retry configuration
_MAX_RETRIES = 3
_BASE_DELAY = 1.0  # seconds
_HEALTH_CHECK_TIMEOUT = 5.0

_LOCAL_HEADERS = {
    "X-Real-IP": "127.0.0.1",
    "X-Forwarded-For": "127.0.0.1",
}


async def check_health(searxng_url: str) -> bool:
    """Quick health check before issuing a search request.

    Returns True if SearXNG is responsive, False otherwise.
    """
    try:
        async with httpx.AsyncClient(timeout=_HEALTH_CHECK_TIMEOUT) as client:
            response = await client.get(f"{searxng_url}/healthz", headers=_LOCAL_HEADERS)
            return response.status_code == 200
    except httpx.HTTPError:
        return False


def dedupe_results(items: list[SearchCandidate]) -> list[SearchCandidate]:
    """Merge duplicate URLs reported by several SearXNG engines.

    Keeps the entry with the longest snippet and joins engine names.
    """
    seen: dict[str, SearchCandidate] = {}
    deduped: list[SearchCandidate] = []
    for item in items:
        existing = seen.get(item.url)
        if existing is None:
            seen[item.url] = item
            deduped.append(item)
            continue
        if item.source_provider and item.source_provider not in existing.source_provider:
            existing.source_provider += f", {item.source_provider}"
        if len(item.snippet) > len(existing.snippet):
            existing.snippet = item.snippet
            existing.title = item.title or existing.title
    return deduped


class SearXNGProvider(SearchProvider):
    """Self-hosted metasearch; only active when SEARXNG_URL is set."""

    name = "searxng"

    def __init__(self, base_url: str, max_retries: int = _MAX_RETRIES):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries

    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def search(
        self, query: str, max_results: int, timeout: float
    ) -> list[SearchCandidate]:
        """Search via SearXNG API with retry logic and health verification.

        Retries with exponential backoff on connection errors and 5xx
        responses; 4xx responses fail immediately.
        """
        logger.info(f"Searching SearXNG: {query}")

        if not await check_health(self.base_url):
            raise NetworkUnreachable(
                f"SearXNG at {self.base_url} is unhealthy", url=self.base_url
            )

        params = {"q": query, "format": "json", "categories": "general"}
        last_error: Exception | None = None

        async with httpx.AsyncClient(timeout=timeout) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = await client.get(
                        f"{self.base_url}/search", params=params, headers=_LOCAL_HEADERS
                    )
                    response.raise_for_status()
                    data = response.json()

                    formatted = [
                        SearchCandidate(
                            url=r.get("url", ""),
                            title=r.get("title", ""),
                            snippet=r.get("content", ""),
                            source_provider=r.get("engine", "") or self.name,
                        )
                        for r in data.get("results", [])[: max_results * 2]
                        if r.get("url")
                    ]
                    deduped = dedupe_results(formatted)[:max_results]
                    for item in deduped:
                        item.source_provider = f"{self.name}:{item.source_provider}"

                    logger.info(f"Found {len(deduped)} results for: {query}")
                    return deduped

                except httpx.HTTPStatusError as e:
                    status = e.response.status_code
                    last_error = e
                    logger.warning(
                        f"SearXNG HTTP {status} on attempt {attempt}/{self.max_retries}"
                    )
                    if status < 500:
                        logger.error(f"SearXNG client error (non-retryable): HTTP {status}")
                        raise classify_error(e, self.base_url) from e

                except httpx.RequestError as e:
                    last_error = e
                    logger.warning(
                        f"SearXNG request error on attempt {attempt}/{self.max_retries}: {e}"
                    )

                if attempt < self.max_retries:
                    delay = _BASE_DELAY * (2 ** (attempt - 1))
                    logger.debug(f"Retrying in {delay:.1f}s...")
                    await asyncio.sleep(delay)

        logger.error(f"SearXNG search failed after {self.max_retries} attempts: {last_error}")
        if last_error is None:
            raise NetworkUnreachable("All retry attempts failed", url=self.base_url)
        raise classify_error(last_error, self.base_url) from last_error
