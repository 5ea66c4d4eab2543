"""HTTP reachability checks: the validation collaborator.

``HttpURLValidator.validate_url`` never raises. Transport failures come back
as a ``URLCheckResult`` with ``status == 0`` and ``error`` set, which callers
classify as ``error`` rather than ``invalid``.
"""

import asyncio
import time
from typing import Protocol

import httpx
from loguru import logger

from relink_mcp.cache import ResultCache
from relink_mcp.errors import MalformedURL, NetworkUnreachable, RelinkError
from relink_mcp.models import URLCheckResult
from relink_mcp.security import ensure_safe_url
from relink_mcp.sources.http import classify_error
from relink_mcp.urls import is_valid_url

USER_AGENT = "relink-mcp/1.0 (+https://github.com/relink-mcp/relink-mcp)"

RELEVANT_HEADERS = ("content-type", "content-length", "last-modified", "etag")

# Some servers reject HEAD outright; those get a streamed GET instead
_HEAD_UNSUPPORTED = (405, 501)

_RELAY_HEALTH_TIMEOUT = 2.0

STATUS_TEXTS = {
    0: "Network Error",
    200: "OK",
    201: "Created",
    204: "No Content",
    301: "Moved Permanently",
    302: "Found",
    304: "Not Modified",
    307: "Temporary Redirect",
    308: "Permanent Redirect",
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    408: "Request Timeout",
    410: "Gone",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}


def status_text(status: int) -> str:
    return STATUS_TEXTS.get(status, f"HTTP {status}")


class URLValidator(Protocol):
    async def validate_url(
        self,
        url: str,
        timeout: float | None = None,
        use_cache: bool = True,
        max_age: float | None = None,
        max_retries: int | None = None,
    ) -> URLCheckResult: ...


class HttpURLValidator:
    """HEAD-based checker with retries, optional cache and relay fallback."""

    def __init__(
        self,
        cache: ResultCache | None = None,
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        relay_url: str = "",
        relay_enabled: bool = True,
    ):
        self.cache = cache
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.relay_url = relay_url.rstrip("/")
        self.relay_enabled = relay_enabled
        self._relay_available: bool | None = None

    def configure_relay(self, url: str | None = None, enabled: bool | None = None) -> None:
        """Change relay settings; forgets the cached availability probe."""
        if url is not None:
            self.relay_url = url.rstrip("/")
        if enabled is not None:
            self.relay_enabled = enabled
        self._relay_available = None

    async def validate_url(
        self,
        url: str,
        timeout: float | None = None,
        use_cache: bool = True,
        max_age: float | None = None,
        max_retries: int | None = None,
    ) -> URLCheckResult:
        """Check *url*; *max_retries* overrides the retry count for this call."""
        timeout = timeout or self.timeout
        retries = self.max_retries if max_retries is None else max_retries
        logger.debug(f"Validating URL: {url}")

        if use_cache and self.cache is not None:
            cached = self.cache.get(url, max_age)
            if cached is not None:
                logger.debug(f"Using cached result for {url}")
                return cached

        if not is_valid_url(url):
            return self._error_result(url, MalformedURL("Invalid URL format", url=url))

        try:
            result = await self._request_with_retries(url, timeout, retries)
        except RelinkError as e:
            logger.warning(f"URL validation failed for {url}: {e}")
            return self._error_result(url, e)

        if self.cache is not None:
            self.cache.put(url, result)
        return result

    async def _request_with_retries(
        self, url: str, timeout: float, retries: int
    ) -> URLCheckResult:
        attempts = max(retries, 0) + 1
        attempt = 0
        while True:
            if attempt > 0:
                logger.debug(f"Retry attempt {attempt} for {url}")
                await asyncio.sleep(self.retry_delay * attempt)
            try:
                return await self._request(url, timeout)
            except RelinkError as e:
                attempt += 1
                if not e.retryable or attempt >= attempts:
                    error = e
                    break

        if self._should_try_relay(error):
            logger.info(f"Direct check failed for {url}, attempting relay fallback...")
            relayed = await self._try_relay(url, timeout)
            if relayed is not None:
                return relayed
        raise error

    async def _request(self, url: str, timeout: float) -> URLCheckResult:
        await ensure_safe_url(url)
        start = time.monotonic()
        headers = {"User-Agent": USER_AGENT, "Accept": "*/*", "Cache-Control": "no-cache"}
        try:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                response = await client.head(url, headers=headers)
                if response.status_code in _HEAD_UNSUPPORTED:
                    async with client.stream("GET", url, headers=headers) as streamed:
                        response = streamed
        except httpx.HTTPError as e:
            raise classify_error(e, url) from e

        return URLCheckResult(
            url=url,
            status=response.status_code,
            status_text=response.reason_phrase or status_text(response.status_code),
            response_time=int((time.monotonic() - start) * 1000),
            headers={
                name: response.headers[name]
                for name in RELEVANT_HEADERS
                if name in response.headers
            },
        )

    def _should_try_relay(self, error: RelinkError) -> bool:
        # Only network-level failures; policy blocks stay blocked
        return (
            self.relay_enabled
            and bool(self.relay_url)
            and type(error) is NetworkUnreachable
        )

    async def check_relay_available(self) -> bool:
        if self._relay_available is not None:
            return self._relay_available
        try:
            async with httpx.AsyncClient(timeout=_RELAY_HEALTH_TIMEOUT) as client:
                response = await client.get(f"{self.relay_url}/health")
                self._relay_available = response.status_code == 200
        except httpx.HTTPError:
            self._relay_available = False
        if self._relay_available:
            logger.info(f"Relay available at {self.relay_url}")
        else:
            logger.warning(f"Relay not available at {self.relay_url}")
        return self._relay_available

    async def _try_relay(self, url: str, timeout: float) -> URLCheckResult | None:
        if not await self.check_relay_available():
            return None
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=timeout + 2) as client:
                response = await client.get(
                    f"{self.relay_url}/validate-url",
                    params={"url": url, "method": "HEAD", "timeout": int(timeout * 1000)},
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Relay fallback failed for {url}: {e}")
            return None

        status = int(data.get("status", 0))
        logger.info(f"Relay fallback successful for {url} (status: {status})")
        return URLCheckResult(
            url=url,
            status=status,
            status_text=data.get("statusText") or status_text(status),
            response_time=int(
                data.get("responseTime") or (time.monotonic() - start) * 1000
            ),
            headers=data.get("headers") or {},
            via_relay=True,
            error=data.get("error"),
        )

    @staticmethod
    def _error_result(url: str, error: RelinkError) -> URLCheckResult:
        return URLCheckResult(
            url=url,
            status=0,
            status_text=str(error),
            error=str(error),
        )
