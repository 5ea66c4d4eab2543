"""Pytest configuration and fixtures."""

import asyncio

import pytest

from relink_mcp.errors import NetworkUnreachable, ScrapeRejected
from relink_mcp.models import Heading, PageContent, SearchCandidate, URLCheckResult
from relink_mcp.sources.checker import status_text
from relink_mcp.sources.providers import SearchProvider


class FakeChecker:
    """In-memory validation collaborator.

    ``statuses`` maps URL to HTTP status; unknown URLs answer 200. An optional
    ``delay`` makes every check suspend, and the peak number of concurrent
    checks is recorded in ``max_in_flight``.
    """

    def __init__(self, statuses=None, delay: float = 0.0, default: int = 200):
        self.statuses = dict(statuses or {})
        self.delay = delay
        self.default = default
        self.calls: list[tuple[str, bool]] = []
        self.retries: list[int | None] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.relay_url = ""
        self.relay_enabled = False

    async def validate_url(
        self, url, timeout=None, use_cache=True, max_age=None, max_retries=None
    ):
        self.calls.append((url, use_cache))
        self.retries.append(max_retries)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            status = self.statuses.get(url, self.default)
        finally:
            self.in_flight -= 1
        return URLCheckResult(
            url=url,
            status=status,
            status_text=status_text(status),
            response_time=10,
            error="Network error" if status == 0 else None,
        )

    def configure_relay(self, url=None, enabled=None):
        if url is not None:
            self.relay_url = url
        if enabled is not None:
            self.relay_enabled = enabled


class FakeScraper:
    """Returns canned pages; URLs without a page are rejected."""

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.calls: list[str] = []

    async def scrape(self, url, timeout=None):
        self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            raise ScrapeRejected(f"Insufficient content at {url}", url=url)
        if isinstance(page, Exception):
            raise page
        return page


class FakeProvider(SearchProvider):
    """Search provider answering from a query -> results map."""

    def __init__(self, name="fake", results=None, error=None, configured=True):
        self.name = name
        self.results = results if results is not None else {}
        self.error = error
        self.configured = configured
        self.queries: list[str] = []

    def is_configured(self) -> bool:
        return self.configured

    async def search(self, query, max_results, timeout):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        if isinstance(self.results, list):
            return self.results[:max_results]
        return self.results.get(query, [])[:max_results]


def make_page(url, text, title="", headings=(), has_main_content=True):
    """Build a PageContent the way the scraper would (case-folded text)."""
    return PageContent(
        url=url,
        text=text.lower(),
        title=title.lower(),
        headings=[Heading(level, t.lower()) for level, t in headings],
        has_main_content=has_main_content,
    )


def candidate(url, title="", snippet="", provider="fake"):
    return SearchCandidate(url=url, title=title, snippet=snippet, source_provider=provider)


@pytest.fixture
def sample_url():
    """Sample broken URL for testing."""
    return "https://example.com/old/doc.html"


@pytest.fixture
def fake_checker():
    return FakeChecker()


@pytest.fixture
def fake_scraper():
    return FakeScraper()


@pytest.fixture
def failing_provider():
    return FakeProvider(name="broken", error=NetworkUnreachable("connection refused"))
