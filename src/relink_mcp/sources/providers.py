"""Individual web search providers.

Every provider returns ``SearchCandidate`` objects and raises a
``RelinkError`` subclass on transport failure; an empty list means the
provider answered but found nothing. HTML scrapers skip result blocks with
missing elements instead of failing the whole page.
"""

import base64
from abc import ABC, abstractmethod
from urllib.parse import parse_qs, urlparse

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from relink_mcp.models import SearchCandidate
from relink_mcp.sources.http import BROWSER_HEADERS, USER_AGENT, classify_error

SERPAPI_ENDPOINT = "https://serpapi.com/search"
DDG_INSTANT_ENDPOINT = "https://api.duckduckgo.com/"
DDG_HTML_ENDPOINT = "https://html.duckduckgo.com/html/"
BING_API_ENDPOINT = "https://api.bing.microsoft.com/v7.0/search"
BING_HTML_ENDPOINT = "https://www.bing.com/search"
GOOGLE_HTML_ENDPOINT = "https://www.google.com/search"


def unwrap_redirect(href: str) -> str:
    """Resolve search-engine click-tracking links to their target URL.

    Handles DuckDuckGo ``/l/?uddg=``, Google ``/url?q=`` and Bing
    ``/ck/a?u=a1<base64>`` wrappers; anything else is returned unchanged.
    """
    if not href:
        return ""
    if href.startswith("//"):
        href = "https:" + href

    parsed = urlparse(href)
    params = parse_qs(parsed.query)

    if "uddg" in params and (not parsed.netloc or "duckduckgo.com" in parsed.netloc):
        return params["uddg"][0]

    if parsed.path == "/url" and (not parsed.netloc or "google." in parsed.netloc):
        target = params.get("q") or params.get("url")
        if target:
            return target[0]

    if parsed.path.startswith("/ck/") and "u" in params:
        encoded = params["u"][0]
        if encoded.startswith("a1"):
            encoded = encoded[2:]
            try:
                padded = encoded + "=" * (-len(encoded) % 4)
                return base64.urlsafe_b64decode(padded).decode("utf-8")
            except (ValueError, UnicodeDecodeError):
                logger.debug(f"Could not decode Bing redirect: {href}")

    return href


def _is_result_url(url: str) -> bool:
    return url.startswith(("http://", "https://"))


class SearchProvider(ABC):
    """One search backend in the cascade."""

    name: str = "provider"

    def is_configured(self) -> bool:
        """Keyed providers return False when their key is missing."""
        return True

    @abstractmethod
    async def search(
        self, query: str, max_results: int, timeout: float
    ) -> list[SearchCandidate]:
        pass

    async def _get(
        self,
        url: str,
        timeout: float,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=timeout, follow_redirects=True
            ) as client:
                response = await client.get(url, params=params, headers=headers)
                response.raise_for_status()
                return response
        except httpx.HTTPError as e:
            raise classify_error(e, url) from e

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


class SerpApiProvider(SearchProvider):
    """Google results through SerpApi (keyed)."""

    name = "serpapi"

    def __init__(self, api_key: str | None):
        self.api_key = api_key

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def search(
        self, query: str, max_results: int, timeout: float
    ) -> list[SearchCandidate]:
        response = await self._get(
            SERPAPI_ENDPOINT,
            timeout,
            params={
                "engine": "google",
                "q": query,
                "num": max_results,
                "api_key": self.api_key,
            },
        )
        data = response.json()
        results = []
        for item in data.get("organic_results", [])[:max_results]:
            url = item.get("link", "")
            if not _is_result_url(url):
                continue
            results.append(
                SearchCandidate(
                    url=url,
                    title=item.get("title", ""),
                    snippet=item.get("snippet", ""),
                    source_provider=self.name,
                )
            )
        return results


class DuckDuckGoInstantProvider(SearchProvider):
    """DuckDuckGo Instant Answer API: abstract, related topics, definition."""

    name = "duckduckgo-instant"

    async def search(
        self, query: str, max_results: int, timeout: float
    ) -> list[SearchCandidate]:
        response = await self._get(
            DDG_INSTANT_ENDPOINT,
            timeout,
            params={
                "q": query,
                "format": "json",
                "no_html": "1",
                "skip_disambig": "1",
            },
            headers={"User-Agent": USER_AGENT},
        )
        data = response.json()
        results: list[SearchCandidate] = []

        if data.get("AbstractURL"):
            results.append(
                SearchCandidate(
                    url=data["AbstractURL"],
                    title=data.get("Heading", ""),
                    snippet=data.get("AbstractText", ""),
                    source_provider=self.name,
                )
            )

        for topic in data.get("RelatedTopics", []):
            # Grouped topics nest their entries under "Topics"
            entries = topic.get("Topics", [topic])
            for entry in entries:
                url = entry.get("FirstURL")
                if not url:
                    continue
                text = entry.get("Text", "")
                results.append(
                    SearchCandidate(
                        url=url,
                        title=text.split(" - ")[0] if text else "",
                        snippet=text,
                        source_provider=self.name,
                    )
                )

        if data.get("DefinitionURL"):
            results.append(
                SearchCandidate(
                    url=data["DefinitionURL"],
                    title=data.get("Heading", "") or "Definition",
                    snippet=data.get("Definition", ""),
                    source_provider=self.name,
                )
            )

        return [r for r in results if _is_result_url(r.url)][:max_results]


class DuckDuckGoHTMLProvider(SearchProvider):
    """Scrape of the no-JavaScript DuckDuckGo results page."""

    name = "duckduckgo-html"

    async def search(
        self, query: str, max_results: int, timeout: float
    ) -> list[SearchCandidate]:
        response = await self._get(
            DDG_HTML_ENDPOINT, timeout, params={"q": query}, headers=BROWSER_HEADERS
        )
        return self.parse(response.text, max_results)

    def parse(self, html: str, max_results: int) -> list[SearchCandidate]:
        soup = BeautifulSoup(html, "html.parser")
        results = []
        for block in soup.select(".result, .web-result"):
            link = block.select_one(".result__a[href]") or block.select_one("a[href]")
            if link is None:
                continue
            url = unwrap_redirect(link.get("href", ""))
            if not _is_result_url(url):
                continue
            title_el = block.select_one(".result__title, .result__a")
            snippet_el = block.select_one(".result__snippet, .result__body")
            results.append(
                SearchCandidate(
                    url=url,
                    title=title_el.get_text(" ", strip=True) if title_el else "",
                    snippet=snippet_el.get_text(" ", strip=True) if snippet_el else "",
                    source_provider=self.name,
                )
            )
            if len(results) >= max_results:
                break
        return results


class BingProvider(SearchProvider):
    """Bing Web Search API when keyed, otherwise a scrape of bing.com."""

    name = "bing"

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key

    async def search(
        self, query: str, max_results: int, timeout: float
    ) -> list[SearchCandidate]:
        if self.api_key:
            return await self._search_api(query, max_results, timeout)
        response = await self._get(
            BING_HTML_ENDPOINT,
            timeout,
            params={"q": query, "count": max_results},
            headers=BROWSER_HEADERS,
        )
        return self.parse(response.text, max_results)

    async def _search_api(
        self, query: str, max_results: int, timeout: float
    ) -> list[SearchCandidate]:
        response = await self._get(
            BING_API_ENDPOINT,
            timeout,
            params={"q": query, "count": max_results},
            headers={"Ocp-Apim-Subscription-Key": self.api_key},
        )
        data = response.json()
        results = []
        for item in data.get("webPages", {}).get("value", [])[:max_results]:
            url = item.get("url", "")
            if not _is_result_url(url):
                continue
            results.append(
                SearchCandidate(
                    url=url,
                    title=item.get("name", ""),
                    snippet=item.get("snippet", ""),
                    source_provider=f"{self.name}-api",
                )
            )
        return results

    def parse(self, html: str, max_results: int) -> list[SearchCandidate]:
        soup = BeautifulSoup(html, "html.parser")
        results = []
        for block in soup.select(".b_algo"):
            link = block.select_one("h2 a[href]")
            if link is None:
                continue
            url = unwrap_redirect(link.get("href", ""))
            if not _is_result_url(url):
                continue
            snippet_el = block.select_one(".b_caption p, .b_descript")
            results.append(
                SearchCandidate(
                    url=url,
                    title=link.get_text(" ", strip=True),
                    snippet=snippet_el.get_text(" ", strip=True) if snippet_el else "",
                    source_provider=self.name,
                )
            )
            if len(results) >= max_results:
                break
        return results


class GoogleScrapeProvider(SearchProvider):
    """Best-effort scrape of google.com. Frequently blocked; tried last."""

    name = "google"

    async def search(
        self, query: str, max_results: int, timeout: float
    ) -> list[SearchCandidate]:
        response = await self._get(
            GOOGLE_HTML_ENDPOINT,
            timeout,
            params={"q": query, "num": max_results, "hl": "en"},
            headers=BROWSER_HEADERS,
        )
        return self.parse(response.text, max_results)

    def parse(self, html: str, max_results: int) -> list[SearchCandidate]:
        soup = BeautifulSoup(html, "html.parser")
        results = []
        seen: set[str] = set()
        for block in soup.select(".g, .tF2Cxc"):
            link = block.select_one("a[href]")
            title_el = block.select_one("h3")
            if link is None or title_el is None:
                continue
            url = unwrap_redirect(link.get("href", ""))
            # .tF2Cxc is nested inside .g, so the same hit can match twice
            if not _is_result_url(url) or url in seen:
                continue
            seen.add(url)
            snippet_el = block.select_one(".VwiC3b, .s3v9rd")
            results.append(
                SearchCandidate(
                    url=url,
                    title=title_el.get_text(" ", strip=True),
                    snippet=snippet_el.get_text(" ", strip=True) if snippet_el else "",
                    source_provider=self.name,
                )
            )
            if len(results) >= max_results:
                break
        return results
