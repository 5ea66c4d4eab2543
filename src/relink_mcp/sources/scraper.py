"""Fetch a candidate page and reduce it to normalized, scoreable text."""

import html as html_lib
import re
import time

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from relink_mcp.errors import RelinkError, ScrapeRejected
from relink_mcp.models import Heading, PageContent
from relink_mcp.security import ensure_safe_url
from relink_mcp.sources.http import BROWSER_HEADERS, classify_error

MIN_CONTENT_LENGTH = 50

NOISE_SELECTORS = (
    "script, style, nav, header, footer, aside, "
    ".navigation, .menu, .sidebar, .ads, .advertisement"
)

CONTENT_SELECTORS = (
    "main",
    "article",
    '[role="main"]',
    ".content",
    ".main-content",
    ".post-content",
    ".entry-content",
    "#content",
    "#main",
)

_HTML_CONTENT_TYPES = ("text/html", "application/xhtml")

_WHITESPACE_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^\w\s\-.]")
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.I | re.S)
_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.I | re.S)
_TAG_RE = re.compile(r"<[^>]+>")


def normalize_text(text: str) -> str:
    """Collapse whitespace, turn punctuation into spaces, case-fold."""
    text = _PUNCT_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip().lower()


def parse_html(url: str, html: str) -> PageContent:
    """Structured extraction: title, description, headings, main container."""
    soup = BeautifulSoup(html, "html.parser")

    title = soup.title.get_text(" ", strip=True) if soup.title else ""
    meta = soup.find("meta", attrs={"name": "description"})
    description = (meta.get("content") or "").strip() if meta else ""

    for element in soup.select(NOISE_SELECTORS):
        element.decompose()

    headings = [
        Heading(level=int(h.name[1]), text=h.get_text(" ", strip=True))
        for h in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"])
        if h.get_text(strip=True)
    ]

    main_text = ""
    for selector in CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            main_text = container.get_text(" ", strip=True)
            if main_text:
                break
    has_main_content = bool(main_text)

    if not main_text:
        body = soup.body or soup
        main_text = body.get_text(" ", strip=True)

    combined = " ".join(
        [title, description, " ".join(h.text for h in headings), main_text]
    )
    return PageContent(
        url=url,
        text=normalize_text(combined),
        title=normalize_text(title),
        description=normalize_text(description),
        headings=[Heading(h.level, normalize_text(h.text)) for h in headings],
        has_main_content=has_main_content,
    )


def extract_with_regex(url: str, html: str) -> PageContent:
    """Last-resort extraction when the HTML parser itself fails."""
    match = _TITLE_RE.search(html)
    title = html_lib.unescape(match.group(1)) if match else ""
    stripped = _SCRIPT_STYLE_RE.sub(" ", html)
    stripped = html_lib.unescape(_TAG_RE.sub(" ", stripped))
    return PageContent(
        url=url,
        text=normalize_text(stripped),
        title=normalize_text(title),
        fallback=True,
    )


class ContentScraper:
    """Fetches HTML pages with browser-like headers for keyword scoring."""

    def __init__(self, timeout: float = 10.0, min_length: int = MIN_CONTENT_LENGTH):
        self.timeout = timeout
        self.min_length = min_length

    async def fetch(self, url: str, timeout: float | None = None) -> httpx.Response:
        await ensure_safe_url(url)
        try:
            async with httpx.AsyncClient(
                timeout=timeout or self.timeout, follow_redirects=True
            ) as client:
                response = await client.get(url, headers=BROWSER_HEADERS)
                response.raise_for_status()
                return response
        except httpx.HTTPError as e:
            raise classify_error(e, url) from e

    async def scrape(self, url: str, timeout: float | None = None) -> PageContent:
        """Fetch *url* and extract its text.

        Raises ``ScrapeRejected`` for non-HTML responses or pages with less
        than ``min_length`` characters of text; transport errors surface as
        the matching ``RelinkError`` subclass.
        """
        start = time.monotonic()
        response = await self.fetch(url, timeout)

        content_type = response.headers.get("content-type", "").lower()
        if not any(t in content_type for t in _HTML_CONTENT_TYPES):
            raise ScrapeRejected(f"Non-HTML content type: {content_type or 'unknown'}", url=url)

        html = response.text
        try:
            page = parse_html(url, html)
        except Exception as e:
            logger.debug(f"Structured parse failed for {url}, using regex fallback: {e}")
            page = extract_with_regex(url, html)

        if len(page.text) < self.min_length:
            raise ScrapeRejected(
                f"Insufficient content ({len(page.text)} chars) at {url}", url=url
            )

        page.response_time = int((time.monotonic() - start) * 1000)
        logger.debug(
            f"Scraped {url}: {len(page.text)} chars, {len(page.headings)} headings"
            f"{' (regex fallback)' if page.fallback else ''}"
        )
        return page


async def scrape_or_none(scraper: ContentScraper, url: str, timeout: float | None = None):
    """Scrape *url*, logging and returning None on any engine error."""
    try:
        return await scraper.scrape(url, timeout)
    except RelinkError as e:
        logger.warning(f"Failed to scrape {url}: {e}")
        return None
