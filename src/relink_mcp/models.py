"""Data model shared by the search, validation and batch layers."""

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class URLDescriptor:
    """Structured view of a URL, recomputed whenever it is needed."""

    domain: str
    protocol: str
    path_segments: tuple[str, ...]
    file_name: str
    file_name_no_ext: str
    query: str = ""
    fragment: str = ""

    @property
    def path(self) -> str:
        return "/" + "/".join(self.path_segments)


@dataclass
class SearchCandidate:
    url: str
    title: str
    snippet: str
    source_provider: str


@dataclass
class ValidationVerdict:
    http_valid: bool
    http_status: int
    content_relevant: bool
    content_score: float
    overall_valid: bool
    reason: str | None = None
    domain_relevance: float = 0.0
    accessibility_score: float = 0.0
    score: float = 0.0
    # Accepted on reachability alone because the content check itself failed.
    degraded: bool = False


@dataclass
class ScoredCandidate:
    """A search candidate with its ranking signals.

    ``validation`` holds the full two-phase verdict once the candidate has
    been validated, during discovery or in the background. It is written at
    most once, and ``validated`` and ``http_status`` mirror it.
    """

    url: str
    title: str
    snippet: str
    source_provider: str
    confidence: float
    matched_terms: list[str] = field(default_factory=list)
    domain_relevance: float = 0.0
    path_similarity: float = 0.0
    validated: bool | None = None
    http_status: int | None = None
    validation: ValidationVerdict | None = None

    @classmethod
    def from_candidate(cls, candidate: SearchCandidate, **scores) -> "ScoredCandidate":
        return cls(
            url=candidate.url,
            title=candidate.title,
            snippet=candidate.snippet,
            source_provider=candidate.source_provider,
            **scores,
        )


@dataclass
class ReplacementResult:
    original_url: str
    replacement_url: str
    confidence: float
    source: str
    search_query: str
    validated: bool
    alternatives: list[ScoredCandidate] = field(default_factory=list)
    current_alternative_index: int = 0
    total_alternatives: int = 0
    validation: ValidationVerdict | None = None
    title: str = ""
    snippet: str = ""
    matched_keywords: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class URLRecord:
    """A link found in a document. Positional fields are never modified."""

    id: str
    original_url: str
    line: int | None = None
    column: int | None = None
    type: str = "link"


@dataclass
class URLCheckResult:
    """Outcome of an HTTP reachability check."""

    url: str
    status: int
    status_text: str
    response_time: int = 0
    headers: dict[str, str] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)
    from_cache: bool = False
    via_relay: bool = False
    error: str | None = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 400


@dataclass
class ProcessedURL:
    record: URLRecord
    status: str
    status_code: int = 0
    response_time: int = 0
    last_checked: str | None = None
    from_cache: bool = False
    processed_at: str = field(default_factory=utc_now)
    search_attempted: bool = False
    replacement: ReplacementResult | None = None
    search_error: str | None = None
    error: str | None = None
    new_url: str | None = None

    @property
    def original_url(self) -> str:
        return self.record.original_url

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BatchStats:
    total: int = 0
    valid: int = 0
    invalid: int = 0
    redirects: int = 0
    errors: int = 0
    replacement_found: int = 0
    fixed: int = 0
    average_response_time: int = 0
    from_cache: int = 0

    @classmethod
    def from_results(cls, results: list[ProcessedURL]) -> "BatchStats":
        stats = cls(total=len(results))
        timings = []
        for result in results:
            match result.status:
                case "valid":
                    stats.valid += 1
                case "invalid":
                    stats.invalid += 1
                case "redirect":
                    stats.redirects += 1
                case "error":
                    stats.errors += 1
                case "replacement-found":
                    stats.replacement_found += 1
                case "fixed":
                    stats.fixed += 1
            if result.from_cache:
                stats.from_cache += 1
            if result.response_time:
                timings.append(result.response_time)
        if timings:
            stats.average_response_time = sum(timings) // len(timings)
        return stats


@dataclass(frozen=True)
class Heading:
    level: int
    text: str


@dataclass
class PageContent:
    """Scraped, case-folded text of a candidate page."""

    url: str
    text: str
    title: str = ""
    description: str = ""
    headings: list[Heading] = field(default_factory=list)
    has_main_content: bool = False
    fallback: bool = False
    response_time: int = 0
