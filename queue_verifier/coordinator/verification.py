"""Verification coordinator — top-level orchestration for the dashboard.

Owns the polling engine and the operation lock, dispatches probe jobs,
merges in the server-held cached status on startup, and turns every
state change into a ``VerificationView`` for the presentation layer.

Operations:
    ``refresh_all()``         general refresh and verification in parallel
    ``run_verification()``    dispatch a probe job and start polling it
    ``retry()``               same as ``run_verification()``, for the retry button
    ``load_cached_status()``  render the cached result, or "not tested"

Every trigger passes through ``OperationLock``: a trigger arriving while
anything is in progress is dropped, and a trigger repeating within the
debounce window is deferred.  Starting a new verification while an older
probe job is still polling cancels the older poll loop; there is one
active job per coordinator.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Self

from queue_verifier.clients.status_cache import StatusCacheClient
from queue_verifier.clients.verification import VerificationClient
from queue_verifier.core.config import VerifierConfig
from queue_verifier.core.exceptions import CacheUnavailableError, GenericError, VerifierError
from queue_verifier.coordinator.lock import (
    OperationKind,
    OperationLock,
    TriggerDecision,
    TriggerResult,
)
from queue_verifier.diagnostics.error_classifier import Classification, classify, error_text
from queue_verifier.models.job import ProbeJob
from queue_verifier.models.view import VerificationView, ViewState
from queue_verifier.polling.backoff import BackoffPolicy
from queue_verifier.polling.engine import PollingEngine, PollOutcome
from queue_verifier.utils.helpers import utc_now

if TYPE_CHECKING:
    from datetime import datetime
    from types import TracebackType

    from queue_verifier.utils.history import VerificationHistory

logger = logging.getLogger("queue_verifier.coordinator.verification")

RenderCallback = Callable[[VerificationView], Any]
GeneralRefresh = Callable[[], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """Outcome of one ``run_verification()`` that actually executed.

    Attributes:
        view: View rendered when the call returned.
        job_id: Dispatched probe job (``None`` when dispatch failed).
        classification: Classified dispatch failure, if any.
        polling: Whether the polling engine was started.
    """

    view: VerificationView
    job_id: str | None = None
    classification: Classification | None = None
    polling: bool = False


@dataclass(frozen=True, slots=True)
class RefreshResult:
    """Outcome of ``refresh_all()``.

    ``success`` reflects the general refresh only; the verification half
    is reported independently and never affects it.
    """

    success: bool
    general_result: Any = None
    general_error: BaseException | None = None
    verification: TriggerResult[VerificationResult] | None = None
    verification_error: BaseException | None = None
    classification: Classification | None = None


async def _no_general_refresh() -> None:
    return None


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class VerificationCoordinator:
    """Coordinate probe dispatch, polling, caching and rendering.

    Args:
        client: Client for the dispatch and status endpoints.
        cache_client: Client for the cached-status endpoint (optional).
        config: Polling, debounce and cache settings.
        refresh_general: Coroutine function refreshing the unrelated
            dashboard checks; run alongside verification by ``refresh_all()``.
        engine: Pre-built polling engine (built from *config* when omitted).
        lock: Pre-built operation lock (built from *config* when omitted).
        history: Where terminal results are recorded (optional).
        on_render: Called with every new ``VerificationView``.
        now: Wall-clock UTC ``datetime`` source.
        clock: Monotonic clock in seconds, shared by the engine and lock.
        sleep: Awaitable sleep in seconds, shared by the engine and lock.
    """

    def __init__(
        self,
        client: VerificationClient,
        cache_client: StatusCacheClient | None = None,
        *,
        config: VerifierConfig | None = None,
        refresh_general: GeneralRefresh | None = None,
        engine: PollingEngine | None = None,
        lock: OperationLock | None = None,
        history: VerificationHistory | None = None,
        on_render: RenderCallback | None = None,
        now: Callable[[], datetime] = utc_now,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config or VerifierConfig()
        self._client = client
        self._cache_client = cache_client
        self._refresh_general = refresh_general or _no_general_refresh
        self._history = history
        self.on_render = on_render
        self._now = now
        self._owns_clients = False

        self._engine = engine or PollingEngine(
            client.check_status,
            backoff=BackoffPolicy(
                base_interval_ms=self._config.base_interval_ms,
                max_interval_ms=self._config.max_interval_ms,
                multiplier=self._config.backoff_multiplier,
            ),
            max_retries=self._config.max_retries,
            request_timeout_ms=self._config.request_timeout_ms,
            sleep=sleep,
            clock=clock,
            now=now,
        )
        self._engine.on_status_update = self._on_job_update
        self._engine.on_error = self._on_poll_error
        self._lock = lock or OperationLock(self._config.debounce_ms, clock=clock, sleep=sleep)
        self._view = VerificationView.not_tested(now())

    @classmethod
    def from_config(cls, config: VerifierConfig, **kwargs: Any) -> VerificationCoordinator:
        """Build a coordinator whose HTTP clients it owns and closes in ``aclose()``."""
        client = VerificationClient(
            config.base_url,
            csrf_token=config.csrf_token,
            timeout_ms=config.request_timeout_ms,
        )
        cache_client = StatusCacheClient(
            config.base_url,
            csrf_token=config.csrf_token,
            timeout_ms=config.request_timeout_ms,
        )
        coordinator = cls(client, cache_client, config=config, **kwargs)
        coordinator._owns_clients = True
        return coordinator

    # -- read-only state ----------------------------------------------------

    @property
    def view(self) -> VerificationView:
        return self._view

    @property
    def engine(self) -> PollingEngine:
        return self._engine

    @property
    def lock(self) -> OperationLock:
        return self._lock

    @property
    def history(self) -> VerificationHistory | None:
        return self._history

    # -- public operations --------------------------------------------------

    async def run_verification(self) -> TriggerResult[VerificationResult]:
        """Dispatch a probe job and start polling it.

        Dropped while any operation is in progress; deferred when repeated
        within the debounce window.
        """
        return await self._lock.trigger(OperationKind.VERIFICATION, self._verify)

    async def retry(self) -> TriggerResult[VerificationResult]:
        """Start a fresh verification after a failed or timed-out one."""
        logger.info(
            "verification retry requested | last_state=%s | job_id=%s",
            self._view.state.value,
            self._view.job_id,
        )
        return await self.run_verification()

    async def refresh_all(self) -> TriggerResult[RefreshResult]:
        """Refresh general statuses and run verification in parallel.

        A failure on one side neither blocks nor fails the other.
        """
        return await self._lock.trigger(OperationKind.REFRESH, self._refresh_all)

    async def load_cached_status(self) -> VerificationView:
        """Render the cached result if it is terminal and fresh, else "not tested"."""
        now = self._now()
        cached = None
        if self._cache_client is not None:
            try:
                cached = await self._cache_client.fetch()
            except CacheUnavailableError as exc:
                logger.warning("cached status ignored | reason=unavailable | error=%s", exc)

        if cached is None:
            view = VerificationView.not_tested(now)
        elif not cached.is_current(now, self._config.cache_ttl_seconds):
            logger.info(
                "cached status ignored | reason=stale or not terminal | status=%s | age=%s",
                cached.raw_status,
                cached.age(now),
            )
            view = VerificationView.not_tested(now)
        else:
            view = VerificationView.from_cached(cached, now)
            logger.info(
                "cached status restored | status=%s | job_id=%s",
                cached.raw_status,
                cached.job_id,
            )

        self._render(view, record=False)
        return view

    async def wait_for_verification(self) -> PollOutcome | None:
        """Wait for deferred triggers to fire and the active poll loop to end."""
        await self._lock.wait_deferred()
        return await self._engine.wait()

    async def aclose(self) -> None:
        """Stop polling, disarm deferred triggers and close owned clients."""
        self._engine.stop_polling()
        self._lock.cancel_deferred()
        if self._owns_clients:
            await self._client.aclose()
            if self._cache_client is not None:
                await self._cache_client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # -- operations (run with the lock held) ---------------------------------

    async def _verify(self) -> VerificationResult:
        self._engine.stop_polling()
        self._render(VerificationView.testing(self._now()))
        try:
            job_id = await self._client.dispatch()
        except VerifierError as exc:
            classification = classify(exc)
            logger.error(
                "verification dispatch failed | category=%s | code=%s | error=%s",
                classification.category.value,
                exc.code,
                exc,
            )
            view = VerificationView.from_classification(classification, self._now())
            self._render(view)
            return VerificationResult(view=view, classification=classification)
        except Exception as exc:
            logger.exception("verification dispatch crashed | error=%s", exc)
            error = GenericError(error_text(exc), stage="dispatch")
            self._render(VerificationView.from_classification(classify(error), self._now()))
            raise error from exc

        job = ProbeJob.dispatched(job_id, at=self._now())
        self._engine.start_polling(job)
        view = VerificationView.from_job(job, self._now())
        self._render(view)
        return VerificationResult(view=view, job_id=job_id, polling=True)

    async def _refresh_all(self) -> RefreshResult:
        logger.info("refresh all started")
        general, verification = await asyncio.gather(
            self._refresh_general(),
            self._lock.run_exclusive(OperationKind.VERIFICATION, self._verify),
            return_exceptions=True,
        )

        general_error = general if isinstance(general, BaseException) else None
        if general_error is not None:
            logger.warning("general status refresh failed | error=%s", general_error)

        verification_error: BaseException | None = None
        classification: Classification | None = None
        trigger: TriggerResult[VerificationResult] | None = None
        if isinstance(verification, BaseException):
            verification_error = verification
            classification = classify(verification)
            logger.warning(
                "verification failed during refresh | category=%s | error=%s",
                classification.category.value,
                verification,
            )
        else:
            trigger = verification
            if trigger.decision is TriggerDecision.EXECUTED and trigger.value is not None:
                classification = trigger.value.classification

        result = RefreshResult(
            success=general_error is None,
            general_result=None if general_error is not None else general,
            general_error=general_error,
            verification=trigger,
            verification_error=verification_error,
            classification=classification,
        )
        logger.info(
            "refresh all finished | success=%s | verification_category=%s",
            result.success,
            classification.category.value if classification else None,
        )
        return result

    # -- engine callbacks ----------------------------------------------------

    def _on_job_update(self, job: ProbeJob) -> None:
        self._render(VerificationView.from_job(job, self._now()))

    def _on_poll_error(self, error: BaseException, retry_count: int) -> None:
        max_retries = self._engine.max_retries
        job_id = self._engine.job_id or ""
        gave_up = retry_count >= max_retries or not getattr(error, "retryable", True)
        if gave_up:
            classification = classify(error)
            self._render(
                VerificationView.from_classification(classification, self._now(), job_id=job_id)
            )
            return
        self._render(
            VerificationView(
                state=ViewState.PROCESSING,
                message="Connection issue, retrying...",
                details=f"Status check failed (retry {retry_count}/{max_retries}): {error}",
                status_class="checking",
                error_message=str(error),
                job_id=job_id,
                timestamp=self._now(),
            )
        )

    # -- rendering -----------------------------------------------------------

    def _render(self, view: VerificationView, *, record: bool = True) -> None:
        self._view = view
        if record and view.is_terminal and self._history is not None:
            self._history.record(view)
        if self.on_render is not None:
            self.on_render(view)
