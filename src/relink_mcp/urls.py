"""URL decomposition, search-term extraction and query strategies.

Everything here is pure: no I/O, no logging side effects beyond debug
messages, so results can be recomputed freely for every URL.
"""

import re
from urllib.parse import parse_qsl, unquote, urlsplit

from loguru import logger

from relink_mcp.models import URLDescriptor

MAX_TERMS = 10

_TERM_SPLIT_RE = re.compile(r"[-_.\s]+")
_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]{1,5}$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")
_FILE_EXT_TERM_RE = re.compile(r"^(html?|php|aspx?|jsp|cfm)$", re.IGNORECASE)

STOP_WORDS = frozenset(
    {
        "and", "or", "the", "for", "with", "from", "into", "of", "in", "on",
        "at", "to", "by", "as", "is", "are", "was", "were", "be", "been",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "can", "must", "shall", "this", "that",
        "these", "those", "why", "what", "how", "when", "where", "who",
        "which", "most", "more", "some", "any", "all", "not", "but", "you",
        "your", "our", "its", "their", "they", "them", "than", "then",
        "there", "here", "about", "just", "very", "also", "only", "own",
        "same", "such", "too", "out", "off", "over", "under", "again",
    }
)  # fmt: skip

COMMON_WEB_TERMS = frozenset(
    {
        "page", "html", "htm", "php", "asp", "aspx", "jsp", "cfm",
        "index", "default", "home", "main", "content", "article",
        "post", "blog", "news", "info", "about", "contact",
        "search", "results", "list", "view", "show", "display",
        "www", "http", "https", "com", "org", "net", "edu", "gov",
    }
)  # fmt: skip


def decompose_url(url: str) -> URLDescriptor | None:
    """Split *url* into a ``URLDescriptor``.

    Returns None for anything that is not an absolute http(s) URL; callers
    treat that as "cannot search", not as a fatal error.
    """
    if not url or not isinstance(url, str):
        return None
    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
    except ValueError as e:
        logger.debug(f"Failed to parse URL {url!r}: {e}")
        return None

    if parts.scheme not in ("http", "https") or not hostname:
        return None

    segments = tuple(unquote(p) for p in parts.path.split("/") if p)
    file_name = segments[-1] if segments else ""
    return URLDescriptor(
        domain=hostname,
        protocol=parts.scheme,
        path_segments=segments,
        file_name=file_name,
        file_name_no_ext=file_name.split(".")[0],
        query=parts.query,
        fragment=parts.fragment,
    )


def is_valid_url(url: str) -> bool:
    return decompose_url(url) is not None


def is_stop_word(term: str) -> bool:
    return term.lower() in STOP_WORDS


def is_common_web_term(term: str) -> bool:
    return term.lower() in COMMON_WEB_TERMS


def _term_variant(term: str) -> str | None:
    """Singular/plural counterpart used to widen keyword matching.

    Always an involution (the variant of the variant is the term itself),
    so extracting from extracted terms yields the same set.
    """
    if term.endswith("ss"):
        return None
    if term.endswith("s"):
        return term[:-1] if len(term) > 3 else None
    return term + "s"


def _is_usable_term(token: str) -> bool:
    if len(token) <= 2 or token.isdigit():
        return False
    return not (is_stop_word(token) or is_common_web_term(token))


def extract_terms(filename: str) -> list[str]:
    """Derive normalized search terms from a file name or path segment.

    ``why-do-most-strategy-exercises-fail-to-deliver.html`` becomes
    ``["strategy", "strategys", "exercises", "exercise", "fail", "fails",
    "deliver", "delivers"]``. An empty list means no query can be built.
    """
    if not filename:
        return []

    stem = _EXTENSION_RE.sub("", filename.strip())
    tokens = [t.lower().strip() for t in _TERM_SPLIT_RE.split(stem)]

    terms: list[str] = []
    for token in tokens:
        if not _is_usable_term(token):
            continue
        terms.append(token)
        variant = _term_variant(token)
        if variant and _is_usable_term(variant):
            terms.append(variant)

    # dict.fromkeys keeps first-seen order
    return list(dict.fromkeys(terms))[:MAX_TERMS]


def extract_terms_from_url(url: str) -> list[str]:
    """Broader term set for validating a replacement against *url*.

    Draws on every path segment, query parameters and the domain labels
    (minus the TLD), unlike ``extract_terms`` which only looks at the file
    name.
    """
    try:
        parts = urlsplit(url)
        hostname = parts.hostname or ""
    except ValueError as e:
        logger.warning(f"Failed to extract search terms from URL {url}: {e}")
        return []

    terms: list[str] = []
    for segment in (unquote(p) for p in parts.path.split("/") if p):
        for term in re.split(r"[-_.]", segment):
            if len(term) > 2 and not term.isdigit() and not _FILE_EXT_TERM_RE.match(term):
                terms.append(term.lower())

    for key, value in parse_qsl(parts.query):
        if len(key) > 2 and len(value) > 2:
            terms.extend([key.lower(), value.lower()])

    labels = hostname.split(".")[:-1]
    terms.extend(label for label in labels if len(label) > 2)

    return list(dict.fromkeys(terms))


def clean_search_term(term: str) -> str:
    """Turn separators and punctuation into single spaces, lower-cased."""
    term = term.lower().replace("-", " ").replace("_", " ")
    term = _NON_ALNUM_RE.sub(" ", term)
    return _WHITESPACE_RE.sub(" ", term).strip()


def build_site_query(descriptor: URLDescriptor, terms: list[str]) -> str:
    """Site-scoped query used by the enhanced SERP search."""
    return f"site:{descriptor.domain} {' '.join(terms)}".strip()


def generate_queries(descriptor: URLDescriptor, strict_domain: bool) -> list[str]:
    """Ordered search queries, narrow (site-scoped) first.

    May be empty when the URL has neither a usable file name nor path.
    """
    queries: list[str] = []
    domain = descriptor.domain
    file_name = clean_search_term(descriptor.file_name_no_ext)
    segments = descriptor.path_segments

    if len(descriptor.file_name_no_ext) > 3 and file_name:
        queries.append(f'site:{domain} "{file_name}"')
        queries.append(f"site:{domain} {file_name}")

    if len(segments) > 1:
        path_terms = [clean_search_term(s) for s in segments]
        path_terms = [t for t in path_terms if len(t) > 2][-3:]
        if path_terms:
            queries.append(f"site:{domain} {' '.join(path_terms)}")

    if not strict_domain:
        if len(descriptor.file_name_no_ext) > 3 and file_name:
            queries.append(f'"{file_name}" {domain}')
            queries.append(file_name)
        if segments:
            last = clean_search_term(segments[-1])
            if len(last) > 3:
                queries.append(f'"{last}" {domain}')

    return [q for q in dict.fromkeys(queries) if q]
