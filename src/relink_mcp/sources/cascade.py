"""Ordered search-provider cascade with a shared request-rate gate."""

import asyncio
from dataclasses import dataclass, field

from loguru import logger

from relink_mcp.cancellation import CancellationToken
from relink_mcp.config import Settings
from relink_mcp.models import SearchCandidate
from relink_mcp.sources.providers import (
    BingProvider,
    DuckDuckGoHTMLProvider,
    DuckDuckGoInstantProvider,
    GoogleScrapeProvider,
    SearchProvider,
    SerpApiProvider,
)
from relink_mcp.sources.searxng import SearXNGProvider

DEFAULT_MAX_RESULTS = 10


class RateGate:
    """Minimum interval between outbound search requests.

    Callers reserve the next free slot synchronously and then sleep until it,
    so nothing is held across the wait or the request itself.
    """

    def __init__(self, interval: float = 1.0):
        self.interval = interval
        self._next_slot = 0.0

    async def wait(self) -> None:
        if self.interval <= 0:
            return
        loop = asyncio.get_running_loop()
        now = loop.time()
        slot = max(now, self._next_slot)
        self._next_slot = slot + self.interval
        if slot > now:
            await asyncio.sleep(slot - now)


@dataclass
class CascadeOutcome:
    """Result of one cascade run.

    An empty ``candidates`` list is a normal answer. ``failed`` tells apart
    "every provider errored" from "providers answered with nothing".
    """

    query: str
    candidates: list[SearchCandidate] = field(default_factory=list)
    provider: str | None = None
    attempted: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def exhausted(self) -> bool:
        return not self.candidates

    @property
    def failed(self) -> bool:
        return self.exhausted and bool(self.attempted) and len(self.errors) == len(
            self.attempted
        )


class SearchCascade:
    """Tries providers in order until one returns results."""

    def __init__(
        self,
        providers: list[SearchProvider],
        rate_gate: RateGate | None = None,
        timeout: float = 15.0,
    ):
        self.providers = providers
        self.rate_gate = rate_gate or RateGate(0)
        self.timeout = timeout

    @property
    def active_providers(self) -> list[SearchProvider]:
        return [p for p in self.providers if p.is_configured()]

    async def search_detailed(
        self,
        query: str,
        max_results: int = DEFAULT_MAX_RESULTS,
        timeout: float | None = None,
        token: CancellationToken | None = None,
    ) -> CascadeOutcome:
        """Run the cascade for *query*.

        Provider errors are logged and recorded, never raised. The only
        exception that escapes is ``Aborted`` when *token* fires between
        providers.
        """
        timeout = timeout or self.timeout
        outcome = CascadeOutcome(query=query)

        for provider in self.providers:
            if not provider.is_configured():
                logger.debug(f"Skipping {provider.name}: not configured")
                continue
            if token is not None:
                token.raise_if_cancelled()

            outcome.attempted.append(provider.name)
            await self.rate_gate.wait()
            try:
                results = await asyncio.wait_for(
                    provider.search(query, max_results, timeout), timeout=timeout
                )
            except TimeoutError:
                logger.warning(f"{provider.name} timed out after {timeout}s for: {query}")
                outcome.errors[provider.name] = f"Timed out after {timeout}s"
                continue
            except Exception as e:
                logger.warning(f"{provider.name} search failed for '{query}': {e}")
                outcome.errors[provider.name] = str(e) or e.__class__.__name__
                continue

            if results:
                logger.info(f"{provider.name} returned {len(results)} results for: {query}")
                outcome.candidates = results[:max_results]
                outcome.provider = provider.name
                return outcome

            logger.debug(f"{provider.name} returned no results for: {query}")

        logger.info(
            f"All search providers exhausted for '{query}' "
            f"({len(outcome.errors)}/{len(outcome.attempted)} failed)"
        )
        return outcome

    async def search(
        self,
        query: str,
        max_results: int = DEFAULT_MAX_RESULTS,
        timeout: float | None = None,
        token: CancellationToken | None = None,
    ) -> list[SearchCandidate]:
        outcome = await self.search_detailed(query, max_results, timeout, token)
        return outcome.candidates


def build_cascade(settings: Settings) -> SearchCascade:
    """Default provider order: keyed first, scraped engines last."""
    providers: list[SearchProvider] = [
        SerpApiProvider(settings.serpapi_key),
        SearXNGProvider(settings.searxng_url),
        DuckDuckGoInstantProvider(),
        DuckDuckGoHTMLProvider(),
        BingProvider(settings.bing_search_key),
        GoogleScrapeProvider(),
    ]
    return SearchCascade(
        providers,
        rate_gate=RateGate(settings.search_rate_limit),
        timeout=settings.search_timeout,
    )
