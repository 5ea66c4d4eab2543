"""Batch orchestrator for link checking and replacement discovery.

Runs one job at a time. URLs are split into fixed-size batches; batches run
one after another, the URLs of a batch run concurrently. Every URL is checked
through the validation collaborator, and 404/403 results go through
replacement discovery. Progress is reported to observers as typed events.
"""

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from loguru import logger

from relink_mcp.alternatives import AlternativeTracker
from relink_mcp.cancellation import CancellationToken
from relink_mcp.config import ProcessorConfig
from relink_mcp.errors import Aborted, AlreadyInProgress
from relink_mcp.finder import FAILED, ReplacementFinder, SearchOutcome, is_search_eligible
from relink_mcp.models import (
    BatchStats,
    ProcessedURL,
    ReplacementResult,
    ScoredCandidate,
    URLRecord,
    ValidationVerdict,
)
from relink_mcp.sources.checker import URLValidator


class ProcessorState(StrEnum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    ABORTED = "aborted"


def classify_status(status_code: int) -> str:
    if status_code == 0:
        return "error"
    if 200 <= status_code < 300:
        return "valid"
    if 300 <= status_code < 400:
        return "redirect"
    return "invalid"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass
class ProcessingStarted:
    total_urls: int


@dataclass
class URLProcessed:
    result: ProcessedURL
    progress: int
    processed_count: int
    total_urls: int


@dataclass
class BatchComplete:
    batch_index: int
    total_batches: int
    batch_results: list[ProcessedURL]
    overall_progress: int


@dataclass
class ProcessingComplete:
    results: list[ProcessedURL]
    stats: BatchStats


@dataclass
class ProcessingError:
    error: str


@dataclass
class ProcessingAborted:
    results: list[ProcessedURL] = field(default_factory=list)


ProcessingEvent = (
    ProcessingStarted
    | URLProcessed
    | BatchComplete
    | ProcessingComplete
    | ProcessingError
    | ProcessingAborted
)


class ProcessingObserver(Protocol):
    def notify(self, event: ProcessingEvent) -> None: ...


class EventQueue:
    """Observer that forwards events into an ``asyncio.Queue``."""

    def __init__(self, maxsize: int = 0):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize)

    def notify(self, event: ProcessingEvent) -> None:
        self.queue.put_nowait(event)

    async def get(self) -> ProcessingEvent:
        return await self.queue.get()

    def drain(self) -> list[ProcessingEvent]:
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------


@dataclass
class BatchJob:
    urls: list[URLRecord]
    batch_size: int
    token: CancellationToken
    processed_count: int = 0

    def batches(self) -> list[list[URLRecord]]:
        return [
            self.urls[i : i + self.batch_size]
            for i in range(0, len(self.urls), self.batch_size)
        ]

    @property
    def progress(self) -> int:
        if not self.urls:
            return 100
        return round(self.processed_count / len(self.urls) * 100)


class ReplacementProcessor:
    def __init__(
        self,
        checker: URLValidator,
        finder: ReplacementFinder,
        tracker: AlternativeTracker | None = None,
        config: ProcessorConfig | None = None,
    ):
        self.checker = checker
        self.finder = finder
        self.tracker = tracker or AlternativeTracker()
        self._config = config or ProcessorConfig()
        self._observers: list[ProcessingObserver] = []
        self._state = ProcessorState.IDLE
        self._last_state: ProcessorState | None = None
        self._job: BatchJob | None = None
        self._run_token: CancellationToken | None = None
        self._current_batch: dict | None = None
        self._background: set[asyncio.Task] = set()

    # -- configuration ------------------------------------------------------

    @property
    def config(self) -> ProcessorConfig:
        return self._config

    def update_config(self, changes: dict | ProcessorConfig) -> ProcessorConfig:
        """Swap in a new configuration. A running job keeps its snapshot."""
        if isinstance(changes, ProcessorConfig):
            new_config = changes
        else:
            new_config = self._config.updated(changes)
        self._config = new_config
        self.finder.config = new_config
        logger.info(f"Processor configuration updated: {new_config.model_dump()}")
        return new_config

    # -- observers ------------------------------------------------------------

    def subscribe(self, observer: ProcessingObserver) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: ProcessingObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _emit(self, event: ProcessingEvent) -> None:
        for observer in list(self._observers):
            try:
                observer.notify(event)
            except Exception as e:
                logger.error(f"Observer {observer!r} failed on {type(event).__name__}: {e}")

    # -- state ----------------------------------------------------------------

    @property
    def state(self) -> ProcessorState:
        return self._state

    @property
    def is_processing(self) -> bool:
        return self._state is ProcessorState.PROCESSING

    def abort(self) -> None:
        """Request cancellation; takes effect at the next checkpoint."""
        if self.is_processing and self._run_token is not None:
            logger.info("Aborting URL processing")
            self._run_token.cancel()

    def status(self) -> dict:
        return {
            "state": str(self._state),
            "is_processing": self.is_processing,
            "last_run": str(self._last_state) if self._last_state else None,
            "current_batch": self._current_batch,
            "config": self._config.model_dump(),
            "pending_background": len(self._background),
        }

    def stats(self) -> dict:
        return {
            **self.status(),
            "observers": len(self._observers),
            "search": self.finder.stats(),
        }

    # -- batch run ----------------------------------------------------------

    async def process_urls(
        self,
        records: list[URLRecord],
        token: CancellationToken | None = None,
    ) -> list[ProcessedURL]:
        """Check every record and look for replacements of broken links.

        Raises ``AlreadyInProgress`` before doing any work if another run is
        active, and ``Aborted`` (carrying the completed results) when
        cancelled through :meth:`abort` or *token*.
        """
        if self.is_processing:
            raise AlreadyInProgress("URL processing is already in progress")

        config = self._config
        self._run_token = CancellationToken()
        job = BatchJob(
            urls=list(records),
            batch_size=config.batch_size,
            token=CancellationToken.any_of(self._run_token, token),
        )
        self._job = job
        self._state = ProcessorState.PROCESSING
        results: list[ProcessedURL] = []

        try:
            logger.info(f"Starting URL processing for {len(job.urls)} URLs")
            self._emit(ProcessingStarted(total_urls=len(job.urls)))

            batches = job.batches()
            for batch_index, batch in enumerate(batches):
                job.token.raise_if_cancelled()
                self._current_batch = {"index": batch_index, "size": len(batch)}
                logger.debug(
                    f"Processing batch {batch_index + 1}/{len(batches)} ({len(batch)} URLs)"
                )

                outcomes = await asyncio.gather(
                    *(self._process_url(record, config, job) for record in batch),
                    return_exceptions=True,
                )
                batch_results = [o for o in outcomes if isinstance(o, ProcessedURL)]
                results.extend(batch_results)

                for outcome in outcomes:
                    if isinstance(outcome, BaseException):
                        raise outcome

                self._emit(
                    BatchComplete(
                        batch_index=batch_index + 1,
                        total_batches=len(batches),
                        batch_results=batch_results,
                        overall_progress=job.progress,
                    )
                )

            stats = BatchStats.from_results(results)
            self._state = ProcessorState.COMPLETED
            logger.info(f"URL processing completed. Processed {len(results)} URLs")
            self._emit(ProcessingComplete(results=results, stats=stats))
            return results

        except Aborted:
            self._state = ProcessorState.ABORTED
            logger.info(f"URL processing aborted after {len(results)} URLs")
            self._emit(ProcessingAborted(results=list(results)))
            raise Aborted(results=results) from None

        except Exception as e:
            self._state = ProcessorState.ERROR
            logger.error(f"URL processing failed: {e}")
            self._emit(ProcessingError(error=str(e)))
            raise

        finally:
            self._last_state = self._state
            self._state = ProcessorState.IDLE
            self._job = None
            self._run_token = None
            self._current_batch = None

    async def _process_url(
        self, record: URLRecord, config: ProcessorConfig, job: BatchJob
    ) -> ProcessedURL:
        job.token.raise_if_cancelled()
        url = record.original_url
        logger.debug(f"Processing URL: {url}")

        try:
            check = await self.checker.validate_url(
                url,
                timeout=config.timeout,
                use_cache=config.use_cache,
                max_retries=config.max_retries,
            )
            processed = ProcessedURL(
                record=record,
                status=classify_status(check.status),
                status_code=check.status,
                response_time=check.response_time,
                last_checked=check.timestamp,
                from_cache=check.from_cache,
                error=check.error,
            )

            if processed.status == "invalid" and is_search_eligible(check.status, config):
                job.token.raise_if_cancelled()
                await self._search(processed, config, job.token)

        except Aborted:
            raise
        except Exception as e:
            logger.error(f"Failed to process URL {url}: {e}")
            processed = ProcessedURL(record=record, status="error", error=str(e))

        job.processed_count += 1
        self._emit(
            URLProcessed(
                result=processed,
                progress=job.progress,
                processed_count=job.processed_count,
                total_urls=len(job.urls),
            )
        )
        return processed

    async def _search(
        self, processed: ProcessedURL, config: ProcessorConfig, token: CancellationToken
    ) -> None:
        url = processed.original_url
        processed.search_attempted = True
        logger.info(
            f"Attempting to find replacement for {processed.status_code} error: {url}"
        )

        try:
            outcome = await self.finder.find(url, processed.status_code, config, token)
        except Aborted:
            raise
        except Exception as e:
            logger.warning(f"Failed to find replacement for {url}: {e}")
            processed.search_error = str(e)
            return

        if not outcome.found:
            if outcome.status == FAILED:
                processed.search_error = outcome.error
            logger.warning(f"No replacement found for {processed.status_code} error: {url}")
            return

        result = outcome.result
        self._attach(processed, result, config)
        logger.info(
            f"Replacement found for {processed.status_code} error {url}: "
            f"{result.replacement_url} ({result.total_alternatives} alternatives)"
        )

    def _attach(
        self, processed: ProcessedURL, result: ReplacementResult, config: ProcessorConfig
    ) -> None:
        processed.replacement = result
        processed.status = "fixed" if config.auto_fix else "replacement-found"
        if config.auto_fix:
            processed.new_url = result.replacement_url
        self.tracker.discover(processed.original_url, result)
        self._validate_alternatives_later(result, config)

    # -- background alternative validation ----------------------------------

    def _validate_alternatives_later(
        self, result: ReplacementResult, config: ProcessorConfig
    ) -> None:
        pending = [c for c in result.alternatives if c.validated is None]
        if not pending:
            return
        logger.debug(f"Validating {len(pending)} alternative URLs in background")
        task = asyncio.create_task(
            self._validate_alternatives(result.original_url, pending, config)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _validate_alternatives(
        self,
        original_url: str,
        candidates: list[ScoredCandidate],
        config: ProcessorConfig,
    ) -> None:
        verdicts = await asyncio.gather(
            *(
                self.finder.validate_candidate(original_url, c, config)
                for c in candidates
            ),
            return_exceptions=True,
        )
        for candidate, verdict in zip(candidates, verdicts, strict=True):
            if isinstance(verdict, BaseException):
                logger.warning(f"Failed to validate alternative {candidate.url}: {verdict}")
                if candidate.validation is None:
                    candidate.validated = False
        logger.debug(f"Completed validation of {len(candidates)} alternatives")

    async def drain_background(self) -> None:
        """Wait for pending background validation (tests and shutdown)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -- single-URL operations ----------------------------------------------

    async def find_replacement(
        self,
        original_url: str,
        status_code: int = 404,
        token: CancellationToken | None = None,
    ) -> SearchOutcome:
        """Discovery for one URL outside a batch; found results are tracked."""
        config = self._config
        outcome = await self.finder.find(original_url, status_code, config, token)
        if outcome.found:
            self.tracker.discover(original_url, outcome.result)
            self._validate_alternatives_later(outcome.result, config)
        return outcome

    def next_alternative(self, original_url: str) -> ScoredCandidate | None:
        return self.tracker.next(original_url)

    def accept_alternative(self, original_url: str) -> ScoredCandidate | None:
        return self.tracker.accept(original_url)

    async def validate_replacement(
        self, original_url: str, replacement_url: str
    ) -> ValidationVerdict:
        return await self.finder.validator.validate_replacement(
            original_url, replacement_url
        )
