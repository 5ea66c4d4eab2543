"""Keyword-match and confidence scoring for replacement candidates.

Two independent scorers live here:

* the keyword matcher, which compares terms from the broken URL with the
  scraped text of a candidate page (title, headings, body), and
* the confidence scorer, which ranks generic (not site-scoped) search hits
  from URL shape and SERP text alone, without fetching anything.
"""

import math
from dataclasses import dataclass, field

from loguru import logger

from relink_mcp.models import PageContent, ScoredCandidate, SearchCandidate, URLDescriptor
from relink_mcp.urls import clean_search_term, decompose_url

# Location weights for keyword matches
BODY_WEIGHT = 1.0
TITLE_WEIGHT = 2.0
HEADING_WEIGHT = 1.5

# Bonus when the broken URL's own domain / file name shows up in the page
DOMAIN_IN_BODY_BONUS = 0.5
DOMAIN_IN_TITLE_BONUS = 1.0
FILENAME_IN_BODY_BONUS = 0.3
FILENAME_IN_TITLE_BONUS = 0.6

DEFAULT_MIN_MATCH_RATIO = 0.4
MIN_MATCH_SCORE = 0.3

# Generic search hits at or below this confidence are dropped before ranking
MIN_CANDIDATE_CONFIDENCE = 0.3


@dataclass
class TermMatch:
    term: str
    score: float
    locations: list[str] = field(default_factory=list)


@dataclass
class KeywordMatchResult:
    matched_terms: list[TermMatch]
    matched_count: int
    total_terms: int
    total_score: float
    bonus_score: float
    normalized_score: float

    @property
    def matched_keywords(self) -> list[str]:
        return [m.term for m in self.matched_terms]

    @property
    def has_high_value_match(self) -> bool:
        """True if any term was found in the title or a heading."""
        return any(
            loc == "title" or loc.startswith("heading")
            for m in self.matched_terms
            for loc in m.locations
        )


@dataclass
class ContentMatch:
    """Accepted keyword match with its boosted confidence."""

    confidence: float
    matched_keywords: list[str]
    total_keywords: int
    matched_count: int
    normalized_score: float
    bonus_score: float


def find_term_locations(term: str, page: PageContent) -> list[str]:
    """Where *term* occurs: ``content``, ``title`` and the first ``heading-hN``."""
    locations = []
    if term in page.text:
        locations.append("content")
    if page.title and term in page.title.lower():
        locations.append("title")
    for heading in page.headings:
        if term in heading.text.lower():
            locations.append(f"heading-h{heading.level}")
            break
    return locations


def match_keywords(
    page: PageContent, terms: list[str], original: URLDescriptor | None
) -> KeywordMatchResult:
    """Score term overlap between *terms* and a scraped page."""
    body = page.text.lower()
    title = page.title.lower()
    matched: list[TermMatch] = []
    total_score = 0.0

    for term in terms:
        term_lower = term.lower()
        score = 0.0
        if term_lower in body:
            score += BODY_WEIGHT
        if title and term_lower in title:
            score += TITLE_WEIGHT
        if any(term_lower in h.text.lower() for h in page.headings):
            score += HEADING_WEIGHT

        if score > 0:
            matched.append(
                TermMatch(
                    term=term,
                    score=score,
                    locations=find_term_locations(term_lower, page),
                )
            )
            total_score += score

    bonus = 0.0
    if original is not None:
        domain = original.domain.lower()
        if domain:
            if domain in body:
                bonus += DOMAIN_IN_BODY_BONUS
            if title and domain in title:
                bonus += DOMAIN_IN_TITLE_BONUS
        file_name = original.file_name_no_ext.lower()
        if file_name:
            if file_name in body:
                bonus += FILENAME_IN_BODY_BONUS
            if title and file_name in title:
                bonus += FILENAME_IN_TITLE_BONUS

    max_possible = len(terms) * TITLE_WEIGHT
    normalized = min(1.0, (total_score + bonus) / max_possible) if max_possible else 0.0

    return KeywordMatchResult(
        matched_terms=matched,
        matched_count=len(matched),
        total_terms=len(terms),
        total_score=total_score,
        bonus_score=bonus,
        normalized_score=normalized,
    )


def evaluate_content_match(
    page: PageContent,
    terms: list[str],
    original: URLDescriptor | None,
    min_match_ratio: float = DEFAULT_MIN_MATCH_RATIO,
) -> ContentMatch | None:
    """Decide whether a page matches *terms*; None when it does not.

    A page matches when at least ``ceil(min_match_ratio * len(terms))`` terms
    are found and the normalized score reaches ``MIN_MATCH_SCORE``.
    """
    if not terms:
        return None

    result = match_keywords(page, terms, original)
    required = math.ceil(len(terms) * min_match_ratio)

    if result.matched_count < required or result.normalized_score < MIN_MATCH_SCORE:
        logger.debug(
            f"Content match rejected for {page.url}: "
            f"{result.matched_count}/{len(terms)} terms (min: {required}), "
            f"score: {result.normalized_score:.3f} (min: {MIN_MATCH_SCORE})"
        )
        return None

    confidence = result.normalized_score
    if result.matched_count == len(terms):
        confidence = min(0.95, confidence * 1.2)
    elif result.matched_count >= len(terms) * 0.8:
        confidence = min(0.9, confidence * 1.1)

    if result.has_high_value_match:
        confidence = min(0.95, confidence * 1.1)

    logger.debug(
        f"Content match for {page.url}: {result.matched_count}/{len(terms)} terms, "
        f"confidence: {confidence:.3f}"
    )
    return ContentMatch(
        confidence=confidence,
        matched_keywords=result.matched_keywords,
        total_keywords=len(terms),
        matched_count=result.matched_count,
        normalized_score=result.normalized_score,
        bonus_score=result.bonus_score,
    )


def content_quality_bonus(page: PageContent) -> float:
    """Small bonus for pages that look like real documents."""
    bonus = 0.0
    if page.has_main_content:
        bonus += 0.1
    if page.headings:
        bonus += 0.05
    if len(page.title) > 10:
        bonus += 0.05
    return bonus


# ---------------------------------------------------------------------------
# URL-shape scoring
# ---------------------------------------------------------------------------


def domain_relevance(original_domain: str, candidate_domain: str) -> float:
    """How closely a candidate host matches the original host (0..1)."""
    original = original_domain.lower()
    candidate = candidate_domain.lower()
    if not original or not candidate:
        return 0.0
    if original == candidate:
        return 1.0
    if original in candidate or candidate in original:
        return 0.8

    original_labels = original.split(".")
    candidate_labels = candidate.split(".")
    if original_labels[-2:] == candidate_labels[-2:]:
        return 0.6

    common = [label for label in original_labels if label in candidate_labels]
    if common:
        return min(0.5, len(common) / max(len(original_labels), len(candidate_labels)))
    return 0.0


def path_similarity(original: tuple[str, ...], candidate: tuple[str, ...]) -> float:
    """Share of path segments the two URLs have in common."""
    if not original and not candidate:
        return 1.0
    if not original or not candidate:
        return 0.0
    candidate_lower = {part.lower() for part in candidate}
    common = [part for part in original if part.lower() in candidate_lower]
    return len(common) / max(len(original), len(candidate))


def text_relevance(search_term: str, text: str) -> float:
    """1.0 for full containment, else the fraction of search words present."""
    if not search_term or not text:
        return 0.0
    cleaned = clean_search_term(search_term)
    haystack = text.lower()
    if cleaned and cleaned in haystack:
        return 1.0
    words = [w for w in cleaned.split(" ") if len(w) > 2]
    if not words:
        return 0.0
    return sum(1 for w in words if w in haystack) / len(words)


def confidence_score(
    original: URLDescriptor,
    candidate_url: URLDescriptor,
    candidate: SearchCandidate,
    strict_domain: bool,
) -> float:
    """Weighted similarity of a generic search hit to the broken URL.

    Strict mode returns exactly 0 for any other domain.
    """
    score = 0.0

    if original.domain == candidate_url.domain:
        score += 0.5
    elif strict_domain:
        return 0.0
    else:
        original_labels = original.domain.split(".")
        candidate_labels = candidate_url.domain.split(".")
        common = [label for label in original_labels if label in candidate_labels]
        score += (len(common) / max(len(original_labels), len(candidate_labels))) * 0.2

    if original.file_name and candidate_url.file_name:
        original_name = original.file_name_no_ext.lower()
        candidate_name = candidate_url.file_name_no_ext.lower()
        if original_name == candidate_name:
            score += 0.3
        elif original_name in candidate_name or candidate_name in original_name:
            score += 0.15

    score += path_similarity(original.path_segments, candidate_url.path_segments) * 0.2
    score += (
        text_relevance(original.file_name_no_ext, f"{candidate.title} {candidate.snippet}")
        * 0.1
    )

    return max(0.0, min(score, 1.0))


def rank_candidates(
    candidates: list[SearchCandidate],
    original: URLDescriptor,
    strict_domain: bool,
) -> list[ScoredCandidate]:
    """Score, filter (> ``MIN_CANDIDATE_CONFIDENCE``) and sort search hits."""
    ranked: list[ScoredCandidate] = []
    for candidate in candidates:
        descriptor = decompose_url(candidate.url)
        if descriptor is None:
            logger.debug(f"Skipping unparsable search result: {candidate.url}")
            continue

        confidence = confidence_score(original, descriptor, candidate, strict_domain)
        if confidence <= MIN_CANDIDATE_CONFIDENCE:
            continue

        ranked.append(
            ScoredCandidate.from_candidate(
                candidate,
                confidence=confidence,
                domain_relevance=domain_relevance(original.domain, descriptor.domain),
                path_similarity=path_similarity(
                    original.path_segments, descriptor.path_segments
                ),
            )
        )

    ranked.sort(key=lambda c: c.confidence, reverse=True)
    return ranked
