"""Per-URL ranked candidate lists with a monotonic cursor."""

from dataclasses import dataclass

from loguru import logger

from relink_mcp.models import ReplacementResult, ScoredCandidate


@dataclass
class _Entry:
    result: ReplacementResult
    candidates: list[ScoredCandidate]
    cursor: int = 0


class AlternativeTracker:
    """Holds the ranked alternatives of each broken URL.

    Index 0 is always the primary replacement. ``next`` only ever moves the
    cursor forward; at the end of the list it returns None and leaves the
    cursor (and the attached result) untouched. A fresh ``discover`` for the
    same URL replaces the list and resets the cursor.
    """

    def __init__(self):
        self._entries: dict[str, _Entry] = {}

    def discover(self, original_url: str, result: ReplacementResult) -> None:
        candidates = list(result.alternatives)
        result.current_alternative_index = 0
        result.total_alternatives = len(candidates)
        self._entries[original_url] = _Entry(result=result, candidates=candidates)

    def forget(self, original_url: str) -> None:
        self._entries.pop(original_url, None)

    def __contains__(self, original_url: str) -> bool:
        return original_url in self._entries

    def result(self, original_url: str) -> ReplacementResult | None:
        entry = self._entries.get(original_url)
        return entry.result if entry else None

    def current(self, original_url: str) -> ScoredCandidate | None:
        entry = self._entries.get(original_url)
        if entry is None or not entry.candidates:
            return None
        return entry.candidates[entry.cursor]

    def accept(self, original_url: str) -> ScoredCandidate | None:
        """Accept the candidate under the cursor. Never moves the cursor."""
        candidate = self.current(original_url)
        if candidate is not None:
            logger.info(f"Accepted replacement for {original_url}: {candidate.url}")
        return candidate

    def next(self, original_url: str) -> ScoredCandidate | None:
        """Advance to the next alternative, or None once exhausted."""
        entry = self._entries.get(original_url)
        if entry is None:
            return None

        next_index = entry.cursor + 1
        if next_index >= len(entry.candidates):
            logger.debug(f"No more alternatives for {original_url}")
            return None

        entry.cursor = next_index
        candidate = entry.candidates[next_index]

        result = entry.result
        result.replacement_url = candidate.url
        result.confidence = candidate.confidence
        result.current_alternative_index = next_index
        result.title = candidate.title
        result.snippet = candidate.snippet
        result.matched_keywords = list(candidate.matched_terms)
        # validated is true only alongside a passing verdict for this candidate
        result.validation = candidate.validation
        result.validated = bool(
            candidate.validation is not None and candidate.validation.overall_valid
        )

        logger.info(
            f"Cycled to alternative {next_index + 1}/{len(entry.candidates)} "
            f"for {original_url}: {candidate.url}"
        )
        return candidate

    def has_more(self, original_url: str) -> bool:
        entry = self._entries.get(original_url)
        return entry is not None and entry.cursor + 1 < len(entry.candidates)
