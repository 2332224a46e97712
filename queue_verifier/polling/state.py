"""Polling state and metrics.

- ``PollingState``: per-loop counters, created by ``start_polling`` and
  discarded when the loop ends.
- ``PollingMetrics``: engine-lifetime request counters and a bounded
  response-time history, cleared only by ``reset_metrics()``.
- ``MetricsSnapshot`` / ``PollingStatus``: read-only views returned by
  ``get_metrics()`` and ``get_status()``.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from queue_verifier.core.constants import RESPONSE_TIME_SAMPLES
from queue_verifier.utils.helpers import format_timestamp

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True, slots=True)
class LastError:
    """Most recent failed poll request.

    Attributes:
        message: Error message.
        timestamp: When the request failed.
        response_time_ms: How long the failed request took.
    """

    message: str
    timestamp: datetime
    response_time_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "timestamp": format_timestamp(self.timestamp),
            "response_time": round(self.response_time_ms),
        }


@dataclass(slots=True)
class PollingState:
    """Mutable counters for one poll loop.

    ``retry_count`` and ``consecutive_errors`` reset to zero on any
    successful HTTP response, whatever job status it carried.
    """

    job_id: str
    retry_count: int = 0
    consecutive_errors: int = 0
    current_interval_ms: int = 0
    last_status: str | None = None

    def record_success(self, status: str) -> None:
        self.retry_count = 0
        self.consecutive_errors = 0
        self.last_status = status

    def record_failure(self) -> None:
        self.retry_count += 1
        self.consecutive_errors += 1


@dataclass(slots=True)
class PollingMetrics:
    """Request counters accumulated across poll loops."""

    started_at: float
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    response_times: deque[float] = field(
        default_factory=lambda: deque(maxlen=RESPONSE_TIME_SAMPLES)
    )
    last_error: LastError | None = None

    @property
    def average_response_time_ms(self) -> float:
        if not self.response_times:
            return 0.0
        return sum(self.response_times) / len(self.response_times)

    def record_success(self, response_time_ms: float) -> None:
        self.total_requests += 1
        self.successful_requests += 1
        self.response_times.append(response_time_ms)

    def record_failure(self, message: str, response_time_ms: float, at: datetime) -> None:
        self.total_requests += 1
        self.failed_requests += 1
        self.last_error = LastError(message=message, timestamp=at, response_time_ms=response_time_ms)

    def reset(self, started_at: float) -> None:
        self.started_at = started_at
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.response_times.clear()
        self.last_error = None


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    """Point-in-time copy of the engine's metrics.

    Attributes:
        success_rate: Percentage of successful requests (0-100).
        duration_seconds: Time since the engine started or metrics were reset.
    """

    total_requests: int
    successful_requests: int
    failed_requests: int
    average_response_time_ms: float
    response_times: tuple[float, ...]
    last_error: LastError | None
    duration_seconds: float
    requests_per_second: float
    success_rate: float
    current_interval_ms: int
    is_polling: bool
    consecutive_errors: int
    retry_count: int

    @classmethod
    def capture(
        cls,
        metrics: PollingMetrics,
        state: PollingState | None,
        *,
        now: float,
        default_interval_ms: int,
    ) -> MetricsSnapshot:
        duration = max(now - metrics.started_at, 0.0)
        total = metrics.total_requests
        return cls(
            total_requests=total,
            successful_requests=metrics.successful_requests,
            failed_requests=metrics.failed_requests,
            average_response_time_ms=metrics.average_response_time_ms,
            response_times=tuple(metrics.response_times),
            last_error=metrics.last_error,
            duration_seconds=duration,
            requests_per_second=total / duration if duration > 0 else 0.0,
            success_rate=(metrics.successful_requests / total) * 100 if total else 0.0,
            current_interval_ms=state.current_interval_ms if state else default_interval_ms,
            is_polling=state is not None,
            consecutive_errors=state.consecutive_errors if state else 0,
            retry_count=state.retry_count if state else 0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "average_response_time": self.average_response_time_ms,
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "duration": self.duration_seconds,
            "requests_per_second": self.requests_per_second,
            "success_rate": self.success_rate,
            "current_interval": self.current_interval_ms,
            "is_polling": self.is_polling,
            "consecutive_errors": self.consecutive_errors,
            "retry_count": self.retry_count,
        }


@dataclass(frozen=True, slots=True)
class PollingStatus:
    """Summary of the active poll loop, if any."""

    is_polling: bool
    job_id: str | None
    retry_count: int
    consecutive_errors: int
    current_interval_ms: int
    last_status: str | None

    @classmethod
    def capture(cls, state: PollingState | None, *, default_interval_ms: int) -> PollingStatus:
        if state is None:
            return cls(
                is_polling=False,
                job_id=None,
                retry_count=0,
                consecutive_errors=0,
                current_interval_ms=default_interval_ms,
                last_status=None,
            )
        return cls(
            is_polling=True,
            job_id=state.job_id,
            retry_count=state.retry_count,
            consecutive_errors=state.consecutive_errors,
            current_interval_ms=state.current_interval_ms,
            last_status=state.last_status,
        )
