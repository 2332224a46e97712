"""Backoff policy — next poll delay from job status and retry count.

With no outstanding error (``retry_count == 0``) the delay is the fixed,
status-specific interval from ``STATUS_INTERVALS_MS``: fast while the
job is moving, slow once it has settled.  While recovering from
transport or server errors the delay grows exponentially from the same
base, plus a small positive jitter so several open dashboards do not
poll in lock-step::

    interval = base * multiplier ** retry_count
    delay    = min(interval + jitter, cap)      # 0 <= jitter <= 10% of interval

The policy is a frozen value object.  Apart from the injectable jitter
source it is a pure function of its inputs.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace

from queue_verifier.core.constants import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_BASE_INTERVAL_MS,
    DEFAULT_MAX_INTERVAL_MS,
    JITTER_RATIO,
    STATUS_INTERVALS_MS,
)
from queue_verifier.models.job import JobStatus, ModelValidationError


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Compute poll delays in milliseconds.

    Attributes:
        base_interval_ms: Delay for statuses missing from the interval table.
        max_interval_ms: Ceiling for error backoff.  A status whose own
            base interval already exceeds it is capped at that base instead.
        multiplier: Growth factor per consecutive error.
        intervals: Status-specific base intervals keyed by status string.
        jitter_source: Returns a float in ``[0, 1)``; ``random.random`` by default.
    """

    base_interval_ms: int = DEFAULT_BASE_INTERVAL_MS
    max_interval_ms: int = DEFAULT_MAX_INTERVAL_MS
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    intervals: Mapping[str, int] = field(default_factory=lambda: dict(STATUS_INTERVALS_MS))
    jitter_source: Callable[[], float] = random.random

    def __post_init__(self) -> None:
        if self.base_interval_ms <= 0:
            raise ModelValidationError(
                "BackoffPolicy", "base_interval_ms", self.base_interval_ms, "must be > 0"
            )
        if self.max_interval_ms < self.base_interval_ms:
            raise ModelValidationError(
                "BackoffPolicy",
                "max_interval_ms",
                self.max_interval_ms,
                f"must be >= base_interval_ms ({self.base_interval_ms})",
            )
        if self.multiplier < 1.0:
            raise ModelValidationError("BackoffPolicy", "multiplier", self.multiplier, "must be >= 1")

    def with_intervals(self, overrides: Mapping[str, int] | None) -> BackoffPolicy:
        """Return a copy with status-specific intervals merged from *overrides*."""
        if not overrides:
            return self
        merged = dict(self.intervals)
        merged.update({str(k).lower(): int(v) for k, v in overrides.items()})
        return replace(self, intervals=merged)

    def base_for(self, status: JobStatus | str | None) -> int:
        """Return the base interval for *status*, or the configured fallback."""
        if status is None:
            return self.base_interval_ms
        key = status.value if isinstance(status, JobStatus) else status.strip().lower()
        return self.intervals.get(key, self.base_interval_ms)

    def next_interval(self, status: JobStatus | str | None, retry_count: int) -> int:
        """Return the delay in milliseconds before the next poll.

        Args:
            status: Last known job status (enum, raw server string or ``None``).
            retry_count: Consecutive errors since the last successful response.
        """
        base = self.base_for(status)
        if retry_count <= 0:
            return base

        interval = base * self.multiplier**retry_count
        jitter = self._jitter() * JITTER_RATIO * interval
        cap = max(self.max_interval_ms, base)
        return int(min(interval + jitter, cap))

    def _jitter(self) -> float:
        value = self.jitter_source()
        return min(max(value, 0.0), 1.0)
