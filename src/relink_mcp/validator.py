"""Two-phase replacement validation: reachability, then relevance."""

from loguru import logger

from relink_mcp.models import PageContent, URLDescriptor, ValidationVerdict
from relink_mcp.scoring import content_quality_bonus, domain_relevance, match_keywords
from relink_mcp.sources.checker import URLValidator
from relink_mcp.sources.scraper import ContentScraper
from relink_mcp.urls import decompose_url, extract_terms_from_url

MIN_DOMAIN_RELEVANCE = 0.3
MIN_CONTENT_RELEVANCE = 0.4

DOMAIN_WEIGHT = 0.3
ACCESS_WEIGHT = 0.3
CONTENT_WEIGHT = 0.4


def overall_score(domain: float, access: float, content: float) -> float:
    return DOMAIN_WEIGHT * domain + ACCESS_WEIGHT * access + CONTENT_WEIGHT * content


class ReplacementValidator:
    """Gatekeeper applied to every candidate before it becomes a replacement.

    Phase 1 is a HEAD check through the validation collaborator with the
    cache bypassed. Only reachable candidates reach Phase 2, which scrapes
    the page and scores it against the terms of the *original* URL.
    """

    def __init__(
        self,
        checker: URLValidator,
        scraper: ContentScraper,
        check_timeout: float = 10.0,
    ):
        self.checker = checker
        self.scraper = scraper
        self.check_timeout = check_timeout

    async def check_accessibility(self, url: str, timeout: float | None = None):
        """Phase 1. Returns ``(http_valid, http_status, accessibility_score)``."""
        result = await self.checker.validate_url(
            url, timeout=timeout or self.check_timeout, use_cache=False
        )
        valid = result.is_success
        return valid, result.status, 1.0 if valid else 0.0

    async def validate(
        self,
        candidate_url: str,
        original: URLDescriptor,
        terms: list[str],
        scrape_timeout: float | None = None,
        page: PageContent | None = None,
    ) -> ValidationVerdict:
        """Run both phases for *candidate_url*.

        *page* is an already scraped copy of the candidate; Phase 2 reuses it
        instead of fetching again. With no *terms* there is nothing to match,
        so content relevance is neutral and the verdict rests on Phase 1 and
        the domain check.
        """
        http_valid, http_status, access = await self.check_accessibility(candidate_url)
        if not http_valid:
            logger.debug(f"Candidate unreachable: {candidate_url} ({http_status})")
            return ValidationVerdict(
                http_valid=False,
                http_status=http_status,
                content_relevant=False,
                content_score=0.0,
                overall_valid=False,
                reason=f"URL not accessible (status {http_status})",
            )

        candidate = decompose_url(candidate_url)
        domain = domain_relevance(original.domain, candidate.domain if candidate else "")
        if domain < MIN_DOMAIN_RELEVANCE:
            return ValidationVerdict(
                http_valid=True,
                http_status=http_status,
                content_relevant=False,
                content_score=0.0,
                overall_valid=False,
                reason=f"Low domain relevance ({domain:.2f})",
                domain_relevance=domain,
                accessibility_score=access,
                score=overall_score(domain, access, 0.0),
            )

        try:
            if page is None:
                page = await self.scraper.scrape(candidate_url, scrape_timeout)
            match = match_keywords(page, terms, original)
            content = min(1.0, match.normalized_score + content_quality_bonus(page))
        except Exception as e:
            # Reachability alone is an acceptable, lower-confidence signal
            logger.warning(f"Content validation failed for {candidate_url}: {e}")
            return ValidationVerdict(
                http_valid=True,
                http_status=http_status,
                content_relevant=False,
                content_score=0.0,
                overall_valid=True,
                reason=f"Content check unavailable: {e}",
                domain_relevance=domain,
                accessibility_score=access,
                score=overall_score(domain, access, 0.0),
                degraded=True,
            )

        if terms:
            relevant = content >= MIN_CONTENT_RELEVANCE and match.matched_count > 0
        else:
            relevant = True
        verdict = ValidationVerdict(
            http_valid=True,
            http_status=http_status,
            content_relevant=relevant,
            content_score=content,
            overall_valid=relevant,
            reason=None if relevant else f"Low content relevance ({content:.2f})",
            domain_relevance=domain,
            accessibility_score=access,
            score=overall_score(domain, access, content),
        )
        logger.debug(
            f"Validated {candidate_url}: valid={verdict.overall_valid}, "
            f"domain={domain:.2f}, content={content:.2f}, score={verdict.score:.2f}"
        )
        return verdict

    async def validate_replacement(
        self, original_url: str, replacement_url: str
    ) -> ValidationVerdict:
        """Validate a proposed replacement using terms from the whole original URL.

        A failure while scoring content degrades to HTTP-only validity.
        """
        original = decompose_url(original_url)
        if original is None:
            http_valid, http_status, access = await self.check_accessibility(
                replacement_url
            )
            return ValidationVerdict(
                http_valid=http_valid,
                http_status=http_status,
                content_relevant=False,
                content_score=0.0,
                overall_valid=http_valid,
                reason="Original URL could not be parsed; HTTP check only",
                accessibility_score=access,
                score=ACCESS_WEIGHT * access,
                degraded=True,
            )

        terms = extract_terms_from_url(original_url)
        logger.debug(f"Validating {replacement_url} against terms: {terms}")
        return await self.validate(replacement_url, original, terms)
