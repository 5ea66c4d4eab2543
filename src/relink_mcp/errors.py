"""Error taxonomy for replacement discovery and batch processing.

Per-URL failures are captured into result records by the processor; only
batch-level conditions (``AlreadyInProgress``, ``Aborted``) reach the caller
of ``process_urls``. The ``retryable`` flag drives the reachability retry
loop in the checker.
"""


class RelinkError(Exception):
    """Base class for all engine errors."""

    retryable = False

    def __init__(self, message: str = "", *, url: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.url = url


class MalformedURL(RelinkError):
    """URL cannot be parsed or uses an unsupported scheme."""


class NetworkUnreachable(RelinkError):
    """Connection-level failure (DNS, refused connection, TLS)."""

    retryable = True


class BlockedByPolicy(NetworkUnreachable):
    """Request refused before sending (unsafe target address or scheme)."""

    retryable = False


class CertificateError(NetworkUnreachable):
    retryable = False


class DNSFailure(NetworkUnreachable):
    retryable = False


class Timeout(RelinkError):
    retryable = True


class RateLimited(RelinkError):
    """Remote side answered HTTP 429."""

    retryable = True


class ProviderExhausted(RelinkError):
    """Every search provider failed or returned nothing."""


class ScrapeRejected(RelinkError):
    """Page could not be used for scoring (wrong content type, too short)."""


class ValidationRejected(RelinkError):
    """Candidate fell below a relevance threshold."""


class AlreadyInProgress(RelinkError):
    """A second batch was started while one is still running."""


class Aborted(RelinkError):
    """Processing was cancelled at a checkpoint.

    ``results`` holds the records completed before cancellation.
    """

    def __init__(self, message: str = "Processing was aborted", results=None):
        super().__init__(message)
        self.results = list(results or [])
