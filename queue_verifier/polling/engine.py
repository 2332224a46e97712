"""Polling engine — drive status checks for one in-flight probe job.

One engine owns at most one poll loop at a time.  Each loop runs as an
``asyncio.Task``:

1. Fetch the job status, bounded by the request timeout.
2. On success, reset the error counters, record latency, publish the
   updated ``ProbeJob`` and either stop (terminal status) or sleep for
   the status-specific interval.
3. On failure, count the error and publish it.  A non-retryable error
   (a contract violation) stops the loop at once; after ``max_retries``
   consecutive retryable failures the loop stops with a classified
   error; otherwise it sleeps for the exponential backoff interval.

``stop_polling()`` cancels the task, which aborts both a pending sleep
and an in-flight request.  Every await and every callback is followed
by a check that the loop is still the active one, so a loop that was
stopped or replaced never delivers another callback.

The job's own ``failed`` / ``timeout`` status is reported once as a
terminal outcome and never retried here; trying again means
dispatching a new probe job.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from queue_verifier.clients.base import translate_http_error
from queue_verifier.core.constants import DEFAULT_MAX_RETRIES, DEFAULT_REQUEST_TIMEOUT_MS
from queue_verifier.core.exceptions import StatusRequestTimeoutError, VerifierError
from queue_verifier.diagnostics.error_classifier import Classification, classify, error_text
from queue_verifier.models.job import ProbeJob
from queue_verifier.polling.backoff import BackoffPolicy
from queue_verifier.polling.state import (
    MetricsSnapshot,
    PollingMetrics,
    PollingState,
    PollingStatus,
)
from queue_verifier.utils.helpers import utc_now

if TYPE_CHECKING:
    from datetime import datetime

    from queue_verifier.models.payloads import StatusResponse

logger = logging.getLogger("queue_verifier.polling.engine")

StatusFetcher = Callable[[str], Awaitable["StatusResponse"]]
StatusCallback = Callable[[ProbeJob], Any]
ErrorCallback = Callable[[BaseException, int], Any]
MetricsCallback = Callable[[MetricsSnapshot], Any]


class PollOutcomeKind(enum.Enum):
    """How a poll loop ended."""

    TERMINAL = "terminal"
    CANCELLED = "cancelled"
    RETRIES_EXHAUSTED = "retries_exhausted"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class PollOutcome:
    """Final result of one poll loop.

    Attributes:
        kind: How the loop ended.
        job: Last observed state of the job.
        error: Last error (``RETRIES_EXHAUSTED`` and ``ABORTED`` only).
        classification: Classification of ``error``, when there is one.
    """

    kind: PollOutcomeKind
    job: ProbeJob
    error: BaseException | None = None
    classification: Classification | None = None


@dataclass(slots=True, eq=False)
class _PollRun:
    """Book-keeping for one poll loop; compared by identity."""

    job: ProbeJob
    state: PollingState
    backoff: BackoffPolicy
    task: asyncio.Task[None] | None = None
    outcome: PollOutcome | None = None


class PollingEngine:
    """Poll a probe job until it reaches a terminal state.

    Args:
        fetch_status: Coroutine function returning the ``StatusResponse``
            for a job id (normally ``VerificationClient.check_status``).
        backoff: Delay policy; defaults to ``BackoffPolicy()``.
        max_retries: Consecutive failures tolerated before giving up.
        request_timeout_ms: Per-request timeout.
        on_status_update: Called with the updated ``ProbeJob`` after each
            successful response.
        on_error: Called with the error and current retry count after
            each failed request.  The loop has given up when the count
            reached ``max_retries`` or the error is not retryable.
        on_metrics_update: Called with a ``MetricsSnapshot`` after each tick.
        sleep: Awaitable sleep in seconds (injectable for tests).
        clock: Monotonic clock in seconds (injectable for tests).
        now: Wall-clock UTC ``datetime`` source (injectable for tests).
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        *,
        backoff: BackoffPolicy | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS,
        on_status_update: StatusCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_metrics_update: MetricsCallback | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_retries < 1:
            msg = f"max_retries must be >= 1, got {max_retries}"
            raise ValueError(msg)
        if request_timeout_ms <= 0:
            msg = f"request_timeout_ms must be > 0, got {request_timeout_ms}"
            raise ValueError(msg)

        self._fetch_status = fetch_status
        self._backoff = backoff or BackoffPolicy()
        self._max_retries = max_retries
        self._request_timeout_ms = request_timeout_ms
        self.on_status_update = on_status_update
        self.on_error = on_error
        self.on_metrics_update = on_metrics_update
        self._sleep = sleep
        self._clock = clock
        self._now = now

        self._run: _PollRun | None = None
        self._last_run: _PollRun | None = None
        self._metrics = PollingMetrics(started_at=clock())

    # -- read-only state --------------------------------------------------

    @property
    def is_polling(self) -> bool:
        return self._run is not None

    @property
    def job_id(self) -> str | None:
        return self._run.job.job_id if self._run else None

    @property
    def current_job(self) -> ProbeJob | None:
        return self._run.job if self._run else None

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def last_outcome(self) -> PollOutcome | None:
        return self._last_run.outcome if self._last_run else None

    def get_metrics(self) -> MetricsSnapshot:
        return MetricsSnapshot.capture(
            self._metrics,
            self._run.state if self._run else None,
            now=self._clock(),
            default_interval_ms=self._backoff.base_interval_ms,
        )

    def get_status(self) -> PollingStatus:
        return PollingStatus.capture(
            self._run.state if self._run else None,
            default_interval_ms=self._backoff.base_interval_ms,
        )

    def reset_metrics(self) -> None:
        self._metrics.reset(self._clock())

    # -- lifecycle --------------------------------------------------------

    def start_polling(
        self,
        job: ProbeJob | str,
        *,
        initial_delay_ms: int = 0,
        intervals: Mapping[str, int] | None = None,
    ) -> None:
        """Start polling *job*, replacing any loop already running.

        Must be called from a running event loop.

        Args:
            job: The dispatched job, or just its id.
            initial_delay_ms: Delay before the first status check.
            intervals: Status-specific interval overrides for this loop only.
        """
        if isinstance(job, str):
            job = ProbeJob.dispatched(job, at=self._now())

        if self._run is not None:
            logger.info(
                "replacing active poll loop | old_job_id=%s | new_job_id=%s",
                self._run.job.job_id,
                job.job_id,
            )
            self.stop_polling()

        run = _PollRun(
            job=job,
            state=PollingState(job_id=job.job_id),
            backoff=self._backoff.with_intervals(intervals),
        )
        run.state.current_interval_ms = max(initial_delay_ms, 0)
        self._run = run
        self._last_run = run
        run.task = asyncio.get_running_loop().create_task(
            self._loop(run, initial_delay_ms),
            name=f"poll:{job.job_id}",
        )
        logger.info(
            "polling started | job_id=%s | initial_delay_ms=%d | max_retries=%d",
            job.job_id,
            initial_delay_ms,
            self._max_retries,
        )

    def stop_polling(self) -> None:
        """Stop the active loop, aborting any pending sleep or request.

        Idempotent.  No callback fires for the stopped loop afterwards.
        """
        run = self._run
        if run is None:
            return

        self._run = None
        if run.outcome is None:
            run.outcome = PollOutcome(PollOutcomeKind.CANCELLED, run.job)

        task = run.task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

        logger.info(
            "polling stopped | job_id=%s | total_requests=%d",
            run.job.job_id,
            self._metrics.total_requests,
        )

    async def wait(self) -> PollOutcome | None:
        """Wait for the most recent loop to end and return its outcome.

        Returns ``None`` if polling was never started.  Re-raises any
        exception that escaped a callback.
        """
        run = self._last_run
        if run is None or run.task is None:
            return None
        await asyncio.wait({run.task})
        if not run.task.cancelled():
            run.task.result()
        return run.outcome

    # -- loop ---------------------------------------------------------------

    def _is_current(self, run: _PollRun) -> bool:
        return self._run is run

    def _finish(self, run: _PollRun, outcome: PollOutcome) -> None:
        run.outcome = outcome
        if self._is_current(run):
            self._run = None

    async def _loop(self, run: _PollRun, initial_delay_ms: int) -> None:
        delay_ms: int | None = initial_delay_ms
        try:
            while delay_ms is not None:
                if delay_ms > 0:
                    logger.debug(
                        "next poll scheduled | job_id=%s | interval_ms=%d | retry=%d",
                        run.job.job_id,
                        delay_ms,
                        run.state.retry_count,
                    )
                    await self._sleep(delay_ms / 1000.0)
                if not self._is_current(run):
                    return
                delay_ms = await self._tick(run)
        finally:
            if self._is_current(run):
                self._run = None

    async def _tick(self, run: _PollRun) -> int | None:
        """Run one status check.  Returns the next delay, or ``None`` to stop."""
        job_id = run.job.job_id
        started = self._clock()
        try:
            response = await asyncio.wait_for(
                self._fetch_status(job_id),
                timeout=self._request_timeout_ms / 1000.0,
            )
            job = run.job.observe(response, self._now())
        except TimeoutError:
            error: VerifierError = StatusRequestTimeoutError(
                f"Status request timed out after {self._request_timeout_ms}ms",
                stage="status",
                correlation_id=job_id,
            )
        except httpx.HTTPError as exc:
            error = translate_http_error(exc, stage="status", correlation_id=job_id)
        except VerifierError as exc:
            error = exc
        else:
            elapsed_ms = (self._clock() - started) * 1000.0
            if not self._is_current(run):
                return None
            return self._handle_response(run, response, job, elapsed_ms)

        elapsed_ms = (self._clock() - started) * 1000.0
        if not self._is_current(run):
            return None
        return self._handle_error(run, error, elapsed_ms)

    def _handle_response(
        self,
        run: _PollRun,
        response: StatusResponse,
        job: ProbeJob,
        elapsed_ms: float,
    ) -> int | None:
        run.state.record_success(response.status)
        self._metrics.record_success(elapsed_ms)
        run.job = job
        logger.debug(
            "poll response | job_id=%s | status=%s | response_ms=%.0f",
            job.job_id,
            response.status,
            elapsed_ms,
        )

        if self.on_status_update is not None:
            self.on_status_update(job)
        if not self._is_current(run):
            return None

        if job.is_terminal:
            self._finish(run, PollOutcome(PollOutcomeKind.TERMINAL, job))
            logger.info(
                "polling finished | job_id=%s | status=%s | processing_time=%s",
                job.job_id,
                job.status.value,
                job.processing_time_seconds,
            )
            self._publish_metrics()
            return None

        delay_ms = run.backoff.next_interval(response.status, 0)
        run.state.current_interval_ms = delay_ms
        self._publish_metrics()
        return delay_ms if self._is_current(run) else None

    def _handle_error(self, run: _PollRun, error: VerifierError, elapsed_ms: float) -> int | None:
        run.state.record_failure()
        self._metrics.record_failure(error_text(error), elapsed_ms, self._now())
        retry_count = run.state.retry_count
        logger.warning(
            "poll tick failed | job_id=%s | retry=%d/%d | code=%s | error=%s",
            run.job.job_id,
            retry_count,
            self._max_retries,
            error.code,
            error,
        )

        if self.on_error is not None:
            self.on_error(error, retry_count)
        if not self._is_current(run):
            return None

        if not error.retryable or retry_count >= self._max_retries:
            kind = (
                PollOutcomeKind.RETRIES_EXHAUSTED if error.retryable else PollOutcomeKind.ABORTED
            )
            classification = classify(error)
            self._finish(
                run,
                PollOutcome(kind, run.job, error=error, classification=classification),
            )
            logger.error(
                "polling gave up | job_id=%s | reason=%s | retries=%d | category=%s | error=%s",
                run.job.job_id,
                kind.value,
                retry_count,
                classification.category.value,
                error,
            )
            self._publish_metrics()
            return None

        status = run.state.last_status or run.job.status
        delay_ms = run.backoff.next_interval(status, retry_count)
        run.state.current_interval_ms = delay_ms
        self._publish_metrics()
        return delay_ms if self._is_current(run) else None

    def _publish_metrics(self) -> None:
        if self.on_metrics_update is not None:
            self.on_metrics_update(self.get_metrics())


def _current_task() -> asyncio.Task[Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
