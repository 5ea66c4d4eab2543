"""Replacement discovery: search, score, validate, rank alternatives.

Two strategies run in order for a broken URL:

1. Enhanced SERP search (404/403 only): one ``site:<domain> <terms>`` query,
   every result scraped and keyword-matched against the terms of the broken
   file name, matches validated best-first.
2. Fallback search: the query strategies from ``generate_queries``, results
   ranked by URL-shape confidence, the top three validated.

The outcome distinguishes "no replacement found" (a normal answer) from
"search failed" (every provider errored).
"""

import asyncio
import time
from dataclasses import dataclass, field

from loguru import logger

from relink_mcp.cancellation import CancellationToken
from relink_mcp.config import ProcessorConfig
from relink_mcp.models import (
    PageContent,
    ReplacementResult,
    ScoredCandidate,
    SearchCandidate,
    URLDescriptor,
    ValidationVerdict,
)
from relink_mcp.scoring import domain_relevance, evaluate_content_match, path_similarity, rank_candidates
from relink_mcp.sources.cascade import CascadeOutcome, SearchCascade
from relink_mcp.sources.scraper import ContentScraper, scrape_or_none
from relink_mcp.urls import build_site_query, decompose_url, extract_terms, generate_queries
from relink_mcp.validator import ReplacementValidator

ENHANCED_SOURCE = "enhanced-serp"
FALLBACK_SOURCE = "fallback-search"

FALLBACK_VALIDATE_TOP = 3
UNVALIDATED_PENALTY = 0.7
FALLBACK_MAX_RESULTS = 10

FOUND = "found"
NOT_FOUND = "not_found"
FAILED = "failed"


@dataclass
class SearchOutcome:
    status: str
    result: ReplacementResult | None = None
    error: str | None = None
    queries: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.status == FOUND


def is_search_eligible(status_code: int, config: ProcessorConfig) -> bool:
    """Whether a check result with *status_code* should trigger discovery."""
    enhanced = config.enhanced_search
    if status_code == 404:
        return enhanced.enable_for_404
    if status_code == 403:
        return enhanced.enable_for_403
    return False


class ReplacementFinder:
    def __init__(
        self,
        cascade: SearchCascade,
        scraper: ContentScraper,
        validator: ReplacementValidator,
        config: ProcessorConfig | None = None,
        retry_delay: float = 1.0,
    ):
        self.cascade = cascade
        self.scraper = scraper
        self.validator = validator
        self.config = config or ProcessorConfig()
        self.retry_delay = retry_delay

    async def find(
        self,
        original_url: str,
        status_code: int = 404,
        config: ProcessorConfig | None = None,
        token: CancellationToken | None = None,
    ) -> SearchOutcome:
        """Look for a validated replacement for *original_url*.

        Raises ``Aborted`` only when *token* fires at a checkpoint.
        """
        config = config or self.config
        token = token or CancellationToken()
        logger.info(f"Searching for replacement for {status_code} error: {original_url}")

        descriptor = decompose_url(original_url)
        if descriptor is None:
            logger.warning(f"Cannot search for unparsable URL: {original_url}")
            return SearchOutcome(NOT_FOUND, error="Invalid URL format")

        enhanced = config.enhanced_search
        enhanced_outcome = None

        if enhanced.enabled and is_search_eligible(status_code, config):
            enhanced_outcome = await self._enhanced_search(
                original_url, descriptor, config, token
            )
            if enhanced_outcome.found or not enhanced.fallback_to_original_search:
                return enhanced_outcome
            logger.info("Falling back to generic search strategies")

        outcome = await self._fallback_search(original_url, descriptor, config, token)
        if enhanced_outcome is None:
            return outcome

        # A fallback with no strategy to try cannot clear an enhanced failure
        if enhanced_outcome.status == FAILED and not outcome.queries:
            outcome.status = FAILED
            outcome.error = enhanced_outcome.error
        outcome.queries = enhanced_outcome.queries + outcome.queries
        return outcome

    # ------------------------------------------------------------------
    # Enhanced SERP search
    # ------------------------------------------------------------------

    async def _search_with_retries(
        self,
        query: str,
        max_results: int,
        retries: int,
        timeout: float,
        token: CancellationToken,
    ) -> CascadeOutcome:
        """Re-run the cascade only when every provider failed."""
        outcome = CascadeOutcome(query=query)
        for attempt in range(retries + 1):
            if attempt > 0:
                delay = self.retry_delay * attempt
                logger.debug(f"Retrying search in {delay:.1f}s (attempt {attempt + 1})")
                await asyncio.sleep(delay)
                token.raise_if_cancelled()
            outcome = await self.cascade.search_detailed(query, max_results, timeout, token)
            if not outcome.failed:
                return outcome
            logger.warning(f"Web search attempt {attempt + 1} failed: {outcome.errors}")
        return outcome

    async def _enhanced_search(
        self,
        original_url: str,
        descriptor: URLDescriptor,
        config: ProcessorConfig,
        token: CancellationToken,
    ) -> SearchOutcome:
        enhanced = config.enhanced_search
        start = time.monotonic()

        terms = discovery_terms(descriptor)
        if not terms:
            logger.warning(f"No suitable search terms for enhanced search: {original_url}")
            return SearchOutcome(NOT_FOUND, error="No search terms in URL")

        query = build_site_query(descriptor, terms)
        logger.info(f'Enhanced SERP search query: "{query}"')

        search = await self._search_with_retries(
            query,
            enhanced.max_serp_results,
            enhanced.max_retries,
            config.search_timeout,
            token,
        )
        if search.failed:
            return SearchOutcome(
                FAILED, error=_describe_errors(search), queries=[query]
            )
        if search.exhausted:
            logger.warning(f"No SERP results found for enhanced search: {query}")
            return SearchOutcome(NOT_FOUND, queries=[query])

        token.raise_if_cancelled()
        matches = await self._match_serp_results(
            search.candidates, descriptor, terms, enhanced.min_keyword_match_ratio,
            enhanced.content_scrape_timeout,
        )
        if not matches:
            logger.warning(
                f"No content matches in {len(search.candidates)} SERP results "
                f"after {time.monotonic() - start:.1f}s"
            )
            return SearchOutcome(NOT_FOUND, queries=[query])

        ranked = [candidate for candidate, _page in matches]
        for index, (candidate, page) in enumerate(matches):
            token.raise_if_cancelled()
            verdict = await self.validator.validate(
                candidate.url,
                descriptor,
                terms,
                enhanced.content_scrape_timeout,
                page=page,
            )
            _record_verdict(candidate, verdict)
            if not verdict.overall_valid:
                logger.warning(
                    f"SERP result failed validation: {candidate.url} - {verdict.reason}"
                )
                continue

            logger.info(
                f"Enhanced SERP search found match in {time.monotonic() - start:.1f}s: "
                f"{candidate.url}"
            )
            alternatives = [candidate] + ranked[:index] + ranked[index + 1 :]
            result = ReplacementResult(
                original_url=original_url,
                replacement_url=candidate.url,
                confidence=candidate.confidence,
                source=ENHANCED_SOURCE,
                search_query=query,
                validated=True,
                alternatives=alternatives,
                total_alternatives=len(alternatives),
                validation=verdict,
                title=candidate.title,
                snippet=candidate.snippet,
                matched_keywords=list(candidate.matched_terms),
            )
            return SearchOutcome(FOUND, result=result, queries=[query])

        return SearchOutcome(NOT_FOUND, queries=[query])

    async def _match_serp_results(
        self,
        candidates: list[SearchCandidate],
        descriptor: URLDescriptor,
        terms: list[str],
        min_ratio: float,
        scrape_timeout: float,
    ) -> list[tuple[ScoredCandidate, PageContent]]:
        """Scrape every SERP hit and keep the keyword matches, best first.

        Each match is paired with its scraped page so validation does not
        fetch it a second time.
        """
        pages = await asyncio.gather(
            *(scrape_or_none(self.scraper, c.url, scrape_timeout) for c in candidates)
        )

        matches: list[tuple[ScoredCandidate, PageContent]] = []
        for candidate, page in zip(candidates, pages, strict=True):
            if page is None:
                continue
            match = evaluate_content_match(page, terms, descriptor, min_ratio)
            if match is None:
                continue
            candidate_desc = decompose_url(candidate.url)
            scored = ScoredCandidate.from_candidate(
                candidate,
                confidence=match.confidence,
                matched_terms=match.matched_keywords,
                domain_relevance=domain_relevance(
                    descriptor.domain, candidate_desc.domain if candidate_desc else ""
                ),
                path_similarity=path_similarity(
                    descriptor.path_segments,
                    candidate_desc.path_segments if candidate_desc else (),
                ),
            )
            matches.append((scored, page))

        # Stable sort keeps SERP order among equal scores
        matches.sort(key=lambda pair: pair[0].confidence, reverse=True)
        return matches

    # ------------------------------------------------------------------
    # Fallback search
    # ------------------------------------------------------------------

    async def _fallback_search(
        self,
        original_url: str,
        descriptor: URLDescriptor,
        config: ProcessorConfig,
        token: CancellationToken,
    ) -> SearchOutcome:
        strict = config.strict_domain_search
        queries = generate_queries(descriptor, strict)
        if not queries:
            logger.warning(f"No search strategy available for: {original_url}")
            return SearchOutcome(NOT_FOUND, error="No search strategy available")

        terms = discovery_terms(descriptor)
        attempted: list[str] = []
        failures = 0

        for query in queries:
            token.raise_if_cancelled()
            logger.debug(f"Trying fallback search query: {query}")
            attempted.append(query)

            search = await self.cascade.search_detailed(
                query, FALLBACK_MAX_RESULTS, config.search_timeout, token
            )
            if search.failed:
                failures += 1
                continue

            ranked = rank_candidates(search.candidates, descriptor, strict)
            if not ranked:
                continue

            best_verdict = None
            for index, candidate in enumerate(ranked[:FALLBACK_VALIDATE_TOP]):
                token.raise_if_cancelled()
                verdict = await self.validator.validate(
                    candidate.url,
                    descriptor,
                    terms,
                    config.enhanced_search.content_scrape_timeout,
                )
                _record_verdict(candidate, verdict)
                if index == 0:
                    best_verdict = verdict
                if not verdict.overall_valid:
                    logger.debug(
                        f"Fallback result failed validation: {candidate.url} - {verdict.reason}"
                    )
                    continue

                logger.info(f"Found validated replacement via fallback: {candidate.url}")
                alternatives = [candidate] + ranked[:index] + ranked[index + 1 :]
                return SearchOutcome(
                    FOUND,
                    result=self._fallback_result(
                        original_url, query, candidate, alternatives,
                        confidence=min(candidate.confidence, verdict.score),
                        verdict=verdict,
                    ),
                    queries=attempted,
                )

            if config.surface_unvalidated_fallback:
                best = ranked[0]
                logger.warning(
                    f"No fallback results passed validation, "
                    f"returning best unvalidated result: {best.url}"
                )
                return SearchOutcome(
                    FOUND,
                    result=self._fallback_result(
                        original_url, query, best, ranked,
                        confidence=best.confidence * UNVALIDATED_PENALTY,
                        verdict=best_verdict,
                    ),
                    queries=attempted,
                )

        logger.warning(f"No replacement found for: {original_url}")
        if failures and failures == len(attempted):
            return SearchOutcome(
                FAILED, error="All search providers failed", queries=attempted
            )
        return SearchOutcome(NOT_FOUND, queries=attempted)

    @staticmethod
    def _fallback_result(
        original_url, query, candidate, alternatives, confidence, verdict
    ) -> ReplacementResult:
        return ReplacementResult(
            original_url=original_url,
            replacement_url=candidate.url,
            confidence=confidence,
            source=FALLBACK_SOURCE,
            search_query=query,
            validated=bool(verdict and verdict.overall_valid),
            alternatives=alternatives,
            total_alternatives=len(alternatives),
            validation=verdict,
            title=candidate.title,
            snippet=candidate.snippet,
            matched_keywords=list(candidate.matched_terms),
        )

    async def validate_candidate(
        self,
        original_url: str,
        candidate: ScoredCandidate,
        config: ProcessorConfig | None = None,
    ) -> ValidationVerdict | None:
        """Run both validation phases for an alternative and record the verdict.

        Uses the same terms discovery matched on. A candidate that already
        carries a verdict keeps it. Returns None for an unparsable original.
        """
        if candidate.validation is not None:
            return candidate.validation
        descriptor = decompose_url(original_url)
        if descriptor is None:
            return None
        config = config or self.config
        verdict = await self.validator.validate(
            candidate.url,
            descriptor,
            discovery_terms(descriptor),
            config.enhanced_search.content_scrape_timeout,
        )
        _record_verdict(candidate, verdict)
        return verdict

    def stats(self) -> dict:
        """Provider and timing configuration, for status reporting."""
        return {
            "providers": [
                {"name": p.name, "configured": p.is_configured()}
                for p in self.cascade.providers
            ],
            "rate_limit": self.cascade.rate_gate.interval,
            "timeout": self.cascade.timeout,
            "retry_delay": self.retry_delay,
            "enhanced_search": self.config.enhanced_search.model_dump(),
        }


def discovery_terms(descriptor: URLDescriptor) -> list[str]:
    """Terms of the broken file name, the basis of matching and validation."""
    return extract_terms(descriptor.file_name or descriptor.file_name_no_ext)


def _record_verdict(candidate: ScoredCandidate, verdict: ValidationVerdict) -> None:
    # Written once: a later verdict never replaces an earlier one
    if candidate.validation is not None:
        return
    candidate.validation = verdict
    candidate.validated = verdict.overall_valid
    candidate.http_status = verdict.http_status


def _describe_errors(outcome: CascadeOutcome) -> str:
    details = "; ".join(f"{name}: {err}" for name, err in outcome.errors.items())
    return f"All search providers failed ({details})"
