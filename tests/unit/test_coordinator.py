"""Tests for the verification coordinator.

The HTTP clients are mocked; sleeps and the clock are injected.

Covers:
- End-to-end verification: dispatch, polling, recovery from a failed
  status check, completion rendering and history
- Dispatch failure classification and retry
- refresh_all(): independent halves, dropped while busy
- Debounce through the public operations
- Cached status restore (fresh, stale, missing, unavailable)
- Retries exhausted; contract violations end polling at once
- A new verification silences the previous job's poll loop
- Client ownership on aclose()
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from queue_verifier.clients.status_cache import StatusCacheClient
from queue_verifier.clients.verification import VerificationClient
from queue_verifier.coordinator.lock import OperationKind, TriggerDecision
from queue_verifier.coordinator.verification import VerificationCoordinator
from queue_verifier.core.config import VerifierConfig
from queue_verifier.core.exceptions import (
    CacheUnavailableError,
    ContractError,
    DispatchError,
    GenericError,
    NetworkError,
)
from queue_verifier.diagnostics.error_classifier import ErrorCategory
from queue_verifier.models.cache import CachedStatus
from queue_verifier.models.job import JobStatus
from queue_verifier.models.payloads import StatusResponse
from queue_verifier.models.view import VerificationView, ViewState
from queue_verifier.polling.backoff import BackoffPolicy
from queue_verifier.polling.engine import PollingEngine, PollOutcomeKind
from queue_verifier.utils.history import VerificationHistory

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


def _client(*statuses: object, job_ids: object = ("job-1",)) -> MagicMock:
    client = MagicMock(spec=VerificationClient)
    client.dispatch = AsyncMock(side_effect=list(job_ids))
    client.check_status = AsyncMock(side_effect=list(statuses))
    client.aclose = AsyncMock()
    return client


def _cache_client(result: object) -> MagicMock:
    cache = MagicMock(spec=StatusCacheClient)
    if isinstance(result, BaseException):
        cache.fetch = AsyncMock(side_effect=result)
    else:
        cache.fetch = AsyncMock(return_value=result)
    cache.aclose = AsyncMock()
    return cache


def _coordinator(client, clock, sleeper, **kwargs) -> VerificationCoordinator:  # noqa: ANN001
    renders: list[VerificationView] = kwargs.pop("renders", [])
    return VerificationCoordinator(
        client,
        clock=clock,
        sleep=sleeper,
        now=lambda: NOW,
        on_render=renders.append,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class TestRunVerification:
    @pytest.mark.asyncio()
    async def test_end_to_end_with_recovered_status_error(self, clock, sleeper) -> None:
        client = _client(
            StatusResponse(status="processing"),
            NetworkError("Network error: connection reset"),
            StatusResponse(status="completed", processing_time=1.23),
        )
        engine = PollingEngine(
            client.check_status,
            backoff=BackoffPolicy(jitter_source=lambda: 0.0),
            sleep=sleeper,
            clock=clock,
            now=lambda: NOW,
        )
        renders: list[VerificationView] = []
        history = VerificationHistory()
        coordinator = _coordinator(
            client, clock, sleeper, engine=engine, history=history, renders=renders
        )
        assert coordinator.view.state is ViewState.NOT_TESTED

        result = await coordinator.run_verification()
        assert result.decision is TriggerDecision.EXECUTED
        assert result.value is not None
        assert result.value.polling is True
        assert result.value.job_id == "job-1"
        assert not coordinator.lock.busy

        outcome = await coordinator.wait_for_verification()

        assert outcome is not None
        assert outcome.kind is PollOutcomeKind.TERMINAL
        assert [v.message for v in renders] == [
            "Testing queue worker...",
            "Test job queued...",
            "Test job processing...",
            "Connection issue, retrying...",
            "Queue worker is functioning properly (1.23s)",
        ]
        assert renders[3].details.startswith("Status check failed (retry 1/5)")
        assert sleeper.delays == [1.0, 1.5]
        assert coordinator.view.state is ViewState.COMPLETED
        assert [e.status for e in history.entries()] == ["completed"]

    @pytest.mark.asyncio()
    async def test_dispatch_failure_is_classified(self, clock, sleeper) -> None:
        client = _client(job_ids=[DispatchError("Queue connection [redis] not configured")])
        history = VerificationHistory()
        coordinator = _coordinator(client, clock, sleeper, history=history)

        result = await coordinator.run_verification()

        assert result.executed
        assert result.value is not None
        assert result.value.polling is False
        assert result.value.classification is not None
        assert result.value.classification.category is ErrorCategory.DISPATCH_FAILED
        view = coordinator.view
        assert view.state is ViewState.FAILED
        assert view.message == "Failed to dispatch test job"
        assert view.can_retry
        assert not coordinator.engine.is_polling
        assert not coordinator.lock.busy
        client.check_status.assert_not_awaited()
        assert history.entries()[0].status == "failed"

    @pytest.mark.asyncio()
    async def test_unexpected_dispatch_error_renders_and_propagates(self, clock, sleeper) -> None:
        client = _client(job_ids=[RuntimeError("kaboom")])
        coordinator = _coordinator(client, clock, sleeper)

        with pytest.raises(GenericError, match="kaboom") as exc_info:
            await coordinator.run_verification()

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.stage == "dispatch"

        assert coordinator.view.state is ViewState.FAILED
        assert coordinator.view.message == "Test failed"
        assert not coordinator.lock.busy

    @pytest.mark.asyncio()
    async def test_retry_after_failure(self, clock, sleeper) -> None:
        client = _client(
            StatusResponse(status="completed"),
            job_ids=[DispatchError("dispatch refused"), "job-2"],
        )
        coordinator = _coordinator(client, clock, sleeper)

        await coordinator.run_verification()
        clock.advance(2.0)
        result = await coordinator.retry()
        await coordinator.wait_for_verification()

        assert result.executed
        assert coordinator.view.state is ViewState.COMPLETED
        assert coordinator.view.job_id == "job-2"

    @pytest.mark.asyncio()
    async def test_retry_shares_debounce_window(self, clock, sleeper) -> None:
        client = _client(
            StatusResponse(status="completed"),
            StatusResponse(status="completed"),
            job_ids=["job-1", "job-2"],
        )
        coordinator = _coordinator(client, clock, sleeper)

        await coordinator.run_verification()
        result = await coordinator.retry()
        assert result.decision is TriggerDecision.DEFERRED

        outcome = await coordinator.wait_for_verification()
        assert outcome is not None
        assert outcome.job.job_id == "job-2"
        assert client.dispatch.await_count == 2

    @pytest.mark.asyncio()
    async def test_retries_exhausted_renders_classified_failure(self, clock, sleeper) -> None:
        client = MagicMock(spec=VerificationClient)
        client.dispatch = AsyncMock(return_value="job-1")
        client.check_status = AsyncMock(side_effect=NetworkError("Network error: unreachable"))
        history = VerificationHistory()
        coordinator = _coordinator(
            client, clock, sleeper, config=VerifierConfig(max_retries=2), history=history
        )

        await coordinator.run_verification()
        outcome = await coordinator.wait_for_verification()

        assert outcome is not None
        assert outcome.kind is PollOutcomeKind.RETRIES_EXHAUSTED
        assert client.check_status.await_count == 2
        view = coordinator.view
        assert view.state is ViewState.FAILED
        assert view.message == "Network error during test"
        assert view.job_id == "job-1"
        assert view.can_retry
        assert [e.status for e in history.entries()] == ["failed"]

    @pytest.mark.asyncio()
    async def test_contract_violation_fails_without_retrying(self, clock, sleeper) -> None:
        client = MagicMock(spec=VerificationClient)
        client.dispatch = AsyncMock(return_value="job-1")
        client.check_status = AsyncMock(
            side_effect=ContractError("status: response body is not valid JSON", stage="status")
        )
        renders: list[VerificationView] = []
        coordinator = _coordinator(client, clock, sleeper, renders=renders)

        await coordinator.run_verification()
        outcome = await coordinator.wait_for_verification()

        assert outcome is not None
        assert outcome.kind is PollOutcomeKind.ABORTED
        assert client.check_status.await_count == 1
        assert sleeper.delays == []
        assert "Connection issue, retrying..." not in [v.message for v in renders]
        assert coordinator.view.state is ViewState.FAILED
        assert coordinator.view.job_id == "job-1"
        assert coordinator.view.can_retry

    @pytest.mark.asyncio()
    async def test_new_verification_silences_previous_job(self, clock, gated_sleeper) -> None:
        statuses = {
            "old": iter([StatusResponse(status="processing"), StatusResponse(status="completed")]),
            "new": iter([StatusResponse(status="completed")]),
        }
        dispatching = asyncio.Event()
        gate = asyncio.Event()
        job_ids = iter(["old", "new"])

        async def dispatch() -> str:
            job_id = next(job_ids)
            if job_id == "new":
                dispatching.set()
                await gate.wait()
            return job_id

        async def check_status(job_id: str) -> StatusResponse:
            return next(statuses[job_id])

        client = MagicMock(spec=VerificationClient)
        client.dispatch = AsyncMock(side_effect=dispatch)
        client.check_status = AsyncMock(side_effect=check_status)
        renders: list[VerificationView] = []
        history = VerificationHistory()
        coordinator = _coordinator(
            client, clock, gated_sleeper, history=history, renders=renders
        )

        await coordinator.run_verification()
        await gated_sleeper.entered.wait()
        clock.advance(2.0)

        second = asyncio.create_task(coordinator.run_verification())
        await dispatching.wait()
        assert not coordinator.engine.is_polling

        # Wake the old loop while the new dispatch is still pending.
        gated_sleeper.release.set()
        for _ in range(5):
            await asyncio.sleep(0)

        gate.set()
        assert (await second).executed
        outcome = await coordinator.wait_for_verification()

        assert outcome is not None
        assert outcome.job.job_id == "new"
        last_testing = max(i for i, v in enumerate(renders) if v.state is ViewState.TESTING)
        assert last_testing > 0
        assert all(v.job_id != "old" for v in renders[last_testing:])
        assert [call.args for call in client.check_status.await_args_list] == [("old",), ("new",)]
        assert [e.status for e in history.entries()] == ["completed"]
        assert coordinator.view.job_id == "new"


# ---------------------------------------------------------------------------
# refresh_all
# ---------------------------------------------------------------------------


class TestRefreshAll:
    @pytest.mark.asyncio()
    async def test_verification_failure_does_not_fail_refresh(self, clock, sleeper) -> None:
        client = _client(job_ids=[RuntimeError("Network fetch failed")])
        general = AsyncMock(return_value="ok")
        coordinator = _coordinator(client, clock, sleeper, refresh_general=general)

        result = await coordinator.refresh_all()

        assert result.executed
        refresh = result.value
        assert refresh is not None
        assert refresh.success is True
        assert refresh.general_result == "ok"
        assert isinstance(refresh.verification_error, GenericError)
        assert refresh.classification is not None
        assert refresh.classification.category is ErrorCategory.NETWORK_ERROR
        general.assert_awaited_once()
        assert not coordinator.lock.busy

    @pytest.mark.asyncio()
    async def test_general_failure_still_runs_verification(self, clock, sleeper) -> None:
        client = _client(StatusResponse(status="completed"))
        general = AsyncMock(side_effect=RuntimeError("general checks down"))
        coordinator = _coordinator(client, clock, sleeper, refresh_general=general)

        result = await coordinator.refresh_all()
        await coordinator.wait_for_verification()

        refresh = result.value
        assert refresh is not None
        assert refresh.success is False
        assert isinstance(refresh.general_error, RuntimeError)
        assert refresh.verification is not None
        assert refresh.verification.executed
        client.dispatch.assert_awaited_once()
        assert coordinator.view.state is ViewState.COMPLETED

    @pytest.mark.asyncio()
    async def test_dispatch_refusal_reported_in_classification(self, clock, sleeper) -> None:
        client = _client(job_ids=[DispatchError("Failed to dispatch test job")])
        coordinator = _coordinator(client, clock, sleeper)

        result = await coordinator.refresh_all()

        assert result.value is not None
        assert result.value.success is True
        assert result.value.classification is not None
        assert result.value.classification.category is ErrorCategory.DISPATCH_FAILED

    @pytest.mark.asyncio()
    async def test_dropped_while_verification_in_progress(self, clock, sleeper) -> None:
        gate = asyncio.Event()

        async def slow_dispatch() -> str:
            await gate.wait()
            return "job-1"

        client = _client(StatusResponse(status="completed"))
        client.dispatch = AsyncMock(side_effect=slow_dispatch)
        general = AsyncMock()
        coordinator = _coordinator(client, clock, sleeper, refresh_general=general)

        verification = asyncio.create_task(coordinator.run_verification())
        while not coordinator.lock.is_held(OperationKind.VERIFICATION):
            await asyncio.sleep(0)

        dropped = await coordinator.refresh_all()
        assert dropped.decision is TriggerDecision.DROPPED
        general.assert_not_awaited()

        gate.set()
        assert (await verification).executed
        await coordinator.wait_for_verification()

    @pytest.mark.asyncio()
    async def test_repeated_refresh_is_debounced(self, clock, sleeper) -> None:
        client = _client(
            StatusResponse(status="completed"),
            StatusResponse(status="completed"),
            job_ids=["job-1", "job-2"],
        )
        general = AsyncMock()
        coordinator = _coordinator(client, clock, sleeper, refresh_general=general)

        first = await coordinator.refresh_all()
        clock.advance(0.3)
        second = await coordinator.refresh_all()
        await coordinator.wait_for_verification()

        assert first.executed
        assert second.decision is TriggerDecision.DEFERRED
        assert general.await_count == 2
        assert sleeper.delays[0] == pytest.approx(0.7)


# ---------------------------------------------------------------------------
# Cached status
# ---------------------------------------------------------------------------


def _cached(status: JobStatus, minutes_ago: int | None) -> CachedStatus:
    return CachedStatus(
        status=status,
        raw_status=status.value,
        job_id="job-9",
        completed_at=NOW - timedelta(minutes=minutes_ago) if minutes_ago is not None else None,
        processing_time_seconds=0.8 if status is JobStatus.COMPLETED else None,
    )


class TestLoadCachedStatus:
    @pytest.mark.asyncio()
    async def test_fresh_result_is_restored(self, clock, sleeper) -> None:
        history = VerificationHistory()
        renders: list[VerificationView] = []
        coordinator = _coordinator(
            _client(),
            clock,
            sleeper,
            cache_client=_cache_client(_cached(JobStatus.COMPLETED, 59)),
            history=history,
            renders=renders,
        )

        view = await coordinator.load_cached_status()

        assert view.state is ViewState.COMPLETED
        assert view.message == "Queue worker is functioning properly (0.80s)"
        assert view.job_id == "job-9"
        assert renders == [view]
        assert history.entries() == []

    @pytest.mark.asyncio()
    async def test_stale_result_is_not_tested(self, clock, sleeper) -> None:
        coordinator = _coordinator(
            _client(),
            clock,
            sleeper,
            cache_client=_cache_client(_cached(JobStatus.COMPLETED, 61)),
        )
        view = await coordinator.load_cached_status()
        assert view.state is ViewState.NOT_TESTED

    @pytest.mark.asyncio()
    async def test_custom_ttl(self, clock, sleeper) -> None:
        coordinator = _coordinator(
            _client(),
            clock,
            sleeper,
            cache_client=_cache_client(_cached(JobStatus.FAILED, 10)),
            config=VerifierConfig(cache_ttl_seconds=300),
        )
        assert (await coordinator.load_cached_status()).state is ViewState.NOT_TESTED

    @pytest.mark.asyncio()
    async def test_failed_result_is_restored(self, clock, sleeper) -> None:
        coordinator = _coordinator(
            _client(), clock, sleeper, cache_client=_cache_client(_cached(JobStatus.FAILED, 5))
        )
        view = await coordinator.load_cached_status()
        assert view.state is ViewState.FAILED
        assert view.can_retry

    @pytest.mark.asyncio()
    async def test_unstamped_server_failure_is_restored(self, clock, sleeper) -> None:
        body = {
            "success": True,
            "status": {
                "status": "failed",
                "message": "Queue worker test failed",
                "error_message": "Job exceeded maximum attempts",
                "test_job_id": "job-7",
                "test_completed_at": None,
                "can_retry": True,
            },
        }
        transport = httpx.MockTransport(lambda _: httpx.Response(200, json=body))
        async with httpx.AsyncClient(transport=transport) as inner:
            cache = StatusCacheClient("https://app.example.test", csrf_token="t", client=inner)
            coordinator = _coordinator(_client(), clock, sleeper, cache_client=cache)
            view = await coordinator.load_cached_status()

        assert view.state is ViewState.FAILED
        assert view.can_retry
        assert view.error_message == "Job exceeded maximum attempts"
        assert view.job_id == "job-7"

    @pytest.mark.parametrize(
        "result",
        [
            None,
            CacheUnavailableError("Cached status unavailable: HTTP 500"),
            _cached(JobStatus.PROCESSING, 1),
            _cached(JobStatus.COMPLETED, None),
        ],
    )
    @pytest.mark.asyncio()
    async def test_falls_back_to_not_tested(self, clock, sleeper, result: object) -> None:
        coordinator = _coordinator(_client(), clock, sleeper, cache_client=_cache_client(result))
        view = await coordinator.load_cached_status()
        assert view.state is ViewState.NOT_TESTED
        assert view.message == "Queue worker has not been tested"

    @pytest.mark.asyncio()
    async def test_without_cache_client(self, clock, sleeper) -> None:
        coordinator = _coordinator(_client(), clock, sleeper)
        assert (await coordinator.load_cached_status()).state is ViewState.NOT_TESTED


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio()
    async def test_aclose_leaves_injected_clients_open(self, clock, sleeper) -> None:
        client = _client()
        cache = _cache_client(None)
        async with _coordinator(client, clock, sleeper, cache_client=cache):
            pass
        client.aclose.assert_not_awaited()
        cache.aclose.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_from_config_owns_clients(self) -> None:
        coordinator = VerificationCoordinator.from_config(
            VerifierConfig(base_url="https://app.example.test", csrf_token="t")
        )
        verification_client = coordinator._client
        await coordinator.aclose()
        assert verification_client._client.is_closed

    @pytest.mark.asyncio()
    async def test_aclose_stops_polling(self, clock, gated_sleeper) -> None:
        client = _client(StatusResponse(status="processing"))
        coordinator = _coordinator(client, clock, gated_sleeper)

        await coordinator.run_verification()
        await gated_sleeper.entered.wait()
        assert coordinator.engine.is_polling

        await coordinator.aclose()
        outcome = await coordinator.engine.wait()
        assert outcome is not None
        assert outcome.kind is PollOutcomeKind.CANCELLED
