"""Tests for candidate page scraping and text extraction."""

import unittest.mock

import httpx
import pytest

from relink_mcp.errors import BlockedByPolicy, ScrapeRejected, Timeout
from relink_mcp.sources.scraper import (
    ContentScraper,
    extract_with_regex,
    normalize_text,
    parse_html,
    scrape_or_none,
)

ARTICLE_HTML = """
<html>
<head>
  <title>Strategy Exercises | Example</title>
  <meta name="description" content="Why strategy exercises fail.">
  <script>var tracking = "strategy";</script>
</head>
<body>
  <nav><h2>Menu heading</h2><a href="/">Home</a></nav>
  <main>
    <h1>Why Strategy Exercises Fail</h1>
    <p>Most strategy exercises fail to deliver, and here is why it happens
       across organisations of every size.</p>
    <h3>Lessons</h3>
  </main>
  <footer>Copyright footer text</footer>
</body>
</html>
"""


@pytest.fixture
def mock_httpx_client():
    """Fixture to mock httpx.AsyncClient."""
    with unittest.mock.patch(
        "relink_mcp.sources.scraper.httpx.AsyncClient"
    ) as mock_client:
        yield mock_client


@pytest.fixture(autouse=True)
def allow_all_urls():
    with unittest.mock.patch(
        "relink_mcp.sources.scraper.ensure_safe_url", new_callable=unittest.mock.AsyncMock
    ) as mock_safe:
        yield mock_safe


def _serve(mock_httpx_client, text, content_type="text/html; charset=utf-8"):
    mock_response = unittest.mock.Mock()
    mock_response.status_code = 200
    mock_response.text = text
    mock_response.headers = {"content-type": content_type}

    mock_context = unittest.mock.AsyncMock()
    mock_context.get.return_value = mock_response
    mock_context.__aenter__.return_value = mock_context
    mock_httpx_client.return_value = mock_context
    return mock_context


def test_normalize_text():
    assert normalize_text("  Hello,   World!\n\tv1.2 ") == "hello world v1.2"


class TestParseHTML:
    def test_structured_extraction(self):
        page = parse_html("https://example.com/a", ARTICLE_HTML)

        assert page.title == "strategy exercises example"
        assert page.description == "why strategy exercises fail."
        assert [(h.level, h.text) for h in page.headings] == [
            (1, "why strategy exercises fail"),
            (3, "lessons"),
        ]
        assert page.has_main_content
        assert "most strategy exercises fail to deliver" in page.text
        assert not page.fallback

    def test_noise_removed(self):
        page = parse_html("https://example.com/a", ARTICLE_HTML)

        assert "tracking" not in page.text
        assert "menu heading" not in page.text
        assert "copyright" not in page.text

    def test_body_used_without_main_container(self):
        html = "<html><body><div><p>Plain body text only here.</p></div></body></html>"
        page = parse_html("https://example.com/b", html)

        assert not page.has_main_content
        assert "plain body text only here." in page.text

    def test_regex_fallback(self):
        html = "<title>Old &amp; New</title><script>x()</script><p>Some body text</p>"
        page = extract_with_regex("https://example.com/c", html)

        assert page.fallback
        assert page.title == "old new"
        assert "some body text" in page.text
        assert "x()" not in page.text


class TestContentScraper:
    @pytest.mark.asyncio
    async def test_scrape_success(self, mock_httpx_client):
        context = _serve(mock_httpx_client, ARTICLE_HTML)

        page = await ContentScraper().scrape("https://example.com/a")

        assert page.url == "https://example.com/a"
        assert "strategy" in page.text
        assert page.response_time >= 0
        assert "User-Agent" in context.get.call_args.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_non_html_rejected(self, mock_httpx_client):
        _serve(mock_httpx_client, "%PDF-1.4", content_type="application/pdf")

        with pytest.raises(ScrapeRejected, match="Non-HTML"):
            await ContentScraper().scrape("https://example.com/file.pdf")

    @pytest.mark.asyncio
    async def test_short_page_rejected(self, mock_httpx_client):
        _serve(mock_httpx_client, "<html><body><p>Tiny</p></body></html>")

        with pytest.raises(ScrapeRejected, match="Insufficient content"):
            await ContentScraper().scrape("https://example.com/tiny")

    @pytest.mark.asyncio
    async def test_parser_failure_falls_back_to_regex(self, mock_httpx_client):
        _serve(mock_httpx_client, ARTICLE_HTML)

        with unittest.mock.patch(
            "relink_mcp.sources.scraper.parse_html", side_effect=ValueError("bad markup")
        ):
            page = await ContentScraper().scrape("https://example.com/a")

        assert page.fallback
        assert "strategy exercises" in page.text

    @pytest.mark.asyncio
    async def test_timeout_classified(self, mock_httpx_client):
        context = _serve(mock_httpx_client, "")
        context.get.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(Timeout):
            await ContentScraper().scrape("https://example.com/slow")

    @pytest.mark.asyncio
    async def test_unsafe_url_blocked(self, allow_all_urls, mock_httpx_client):
        allow_all_urls.side_effect = BlockedByPolicy("Blocked unsafe URL")
        context = _serve(mock_httpx_client, ARTICLE_HTML)

        with pytest.raises(BlockedByPolicy):
            await ContentScraper().scrape("http://10.0.0.1/")

        context.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_scrape_or_none(self, mock_httpx_client):
        _serve(mock_httpx_client, "nope", content_type="image/png")
        assert await scrape_or_none(ContentScraper(), "https://example.com/x.png") is None
