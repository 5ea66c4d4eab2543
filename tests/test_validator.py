"""Tests for two-phase replacement validation."""

import pytest
from conftest import FakeChecker, FakeScraper, make_page

from relink_mcp.urls import decompose_url
from relink_mcp.validator import ReplacementValidator, overall_score

ORIGINAL_URL = "https://example.com/old/strategy-guide.html"
ORIGINAL = decompose_url(ORIGINAL_URL)
TERMS = ["strategy", "guide"]

RELEVANT_PAGE = make_page(
    "https://example.com/new/strategy-guide",
    "the strategy guide for teams and how to use it well",
    title="Strategy Guide",
)


def _validator(statuses=None, pages=None):
    checker = FakeChecker(statuses)
    scraper = FakeScraper(pages)
    return ReplacementValidator(checker, scraper), checker, scraper


class TestValidate:
    @pytest.mark.asyncio
    async def test_relevant_page_is_valid(self):
        url = "https://example.com/new/strategy-guide"
        validator, _, _ = _validator(pages={url: RELEVANT_PAGE})

        verdict = await validator.validate(url, ORIGINAL, TERMS)

        assert verdict.http_valid
        assert verdict.content_relevant
        assert verdict.overall_valid
        assert verdict.content_score == 1.0
        assert verdict.domain_relevance == 1.0
        assert verdict.score == pytest.approx(1.0)
        assert verdict.reason is None

    @pytest.mark.asyncio
    async def test_unreachable_candidate(self):
        url = "https://example.com/gone"
        validator, _, scraper = _validator(statuses={url: 404})

        verdict = await validator.validate(url, ORIGINAL, TERMS)

        assert not verdict.http_valid
        assert verdict.http_status == 404
        assert not verdict.overall_valid
        assert "not accessible" in verdict.reason
        assert scraper.calls == []

    @pytest.mark.asyncio
    async def test_reachable_but_irrelevant_content(self):
        url = "https://example.com/unrelated"
        page = make_page(url, "cooking recipes for pasta and bread, nothing else here")
        validator, _, _ = _validator(pages={url: page})

        verdict = await validator.validate(url, ORIGINAL, TERMS)

        assert verdict.http_valid
        assert verdict.http_status == 200
        assert not verdict.content_relevant
        assert not verdict.overall_valid
        assert "Low content relevance" in verdict.reason

    @pytest.mark.asyncio
    async def test_low_domain_relevance_skips_scrape(self):
        url = "https://other.net/strategy-guide"
        validator, _, scraper = _validator(pages={url: RELEVANT_PAGE})

        verdict = await validator.validate(url, ORIGINAL, TERMS)

        assert verdict.http_valid
        assert not verdict.overall_valid
        assert verdict.domain_relevance == 0.0
        assert "Low domain relevance" in verdict.reason
        assert scraper.calls == []

    @pytest.mark.asyncio
    async def test_scrape_failure_degrades_to_http_only(self):
        url = "https://example.com/blocked-scrape"
        validator, _, _ = _validator()

        verdict = await validator.validate(url, ORIGINAL, TERMS)

        assert verdict.http_valid
        assert verdict.overall_valid
        assert verdict.degraded
        assert not verdict.content_relevant
        assert verdict.score == pytest.approx(overall_score(1.0, 1.0, 0.0))

    @pytest.mark.asyncio
    async def test_reachability_bypasses_cache(self):
        url = "https://example.com/new/strategy-guide"
        validator, checker, _ = _validator(pages={url: RELEVANT_PAGE})

        await validator.validate(url, ORIGINAL, TERMS)

        assert checker.calls == [(url, False)]

    @pytest.mark.asyncio
    async def test_no_terms_makes_content_neutral(self):
        original = decompose_url("https://example.com/guides/setup/index.html")
        url = "https://example.com/guides/setup-guide"
        page = make_page(url, "the example.com setup guide for new installs")
        validator, _, _ = _validator(pages={url: page})

        verdict = await validator.validate(url, original, [])

        assert verdict.http_valid
        assert verdict.content_relevant
        assert verdict.overall_valid
        assert verdict.reason is None
        assert not verdict.degraded

    @pytest.mark.asyncio
    async def test_no_terms_still_requires_domain_relevance(self):
        original = decompose_url("https://example.com/guides/setup/index.html")
        url = "https://other.net/setup-guide"
        validator, _, _ = _validator(pages={url: make_page(url, "setup guide text")})

        verdict = await validator.validate(url, original, [])

        assert not verdict.overall_valid
        assert "Low domain relevance" in verdict.reason

    @pytest.mark.asyncio
    async def test_prefetched_page_is_not_scraped_again(self):
        url = "https://example.com/new/strategy-guide"
        validator, _, scraper = _validator()

        verdict = await validator.validate(url, ORIGINAL, TERMS, page=RELEVANT_PAGE)

        assert verdict.overall_valid
        assert verdict.content_relevant
        assert scraper.calls == []

    @pytest.mark.asyncio
    async def test_network_error_is_invalid(self):
        url = "https://example.com/down"
        validator, _, _ = _validator(statuses={url: 0})

        verdict = await validator.validate(url, ORIGINAL, TERMS)

        assert not verdict.http_valid
        assert not verdict.overall_valid


class TestValidateReplacement:
    @pytest.mark.asyncio
    async def test_uses_terms_from_whole_original_url(self):
        replacement = "https://docs.example.com/install"
        page = make_page(
            replacement,
            "install notes for every platform, with guides for linux and mac",
            title="Install notes",
            headings=[(1, "Install guides")],
        )
        validator, _, _ = _validator(pages={replacement: page})

        verdict = await validator.validate_replacement(
            "https://example.com/guides/install-notes.html", replacement
        )

        assert verdict.overall_valid
        assert verdict.content_relevant
        assert verdict.domain_relevance == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_unparsable_original_checks_http_only(self):
        validator, _, scraper = _validator()

        verdict = await validator.validate_replacement("not a url", "https://example.com/x")

        assert verdict.http_valid
        assert verdict.overall_valid
        assert verdict.degraded
        assert scraper.calls == []

    @pytest.mark.asyncio
    async def test_unparsable_original_unreachable_replacement(self):
        validator, _, _ = _validator(statuses={"https://example.com/x": 500})

        verdict = await validator.validate_replacement("not a url", "https://example.com/x")

        assert not verdict.overall_valid
        assert verdict.http_status == 500


def test_overall_score_weights():
    assert overall_score(1.0, 1.0, 1.0) == pytest.approx(1.0)
    assert overall_score(1.0, 0.0, 0.0) == pytest.approx(0.3)
    assert overall_score(0.0, 0.0, 1.0) == pytest.approx(0.4)
