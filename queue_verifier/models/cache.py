"""Cached verification snapshot.

``CachedStatus`` is the last verification result held by the server and
fetched once when the dashboard loads.  It carries the same fields as a
``ProbeJob`` plus an expiration rule: a terminal snapshot older than the
cache TTL (one hour by default) is stale and must not be shown as the
current state.  Failed and timed-out snapshots usually arrive without a
completion time and are shown as-is.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from queue_verifier.core.constants import DEFAULT_CACHE_TTL_SECONDS
from queue_verifier.models.job import JobStatus
from queue_verifier.utils.helpers import ensure_utc

if TYPE_CHECKING:
    from datetime import datetime

    from queue_verifier.models.payloads import CachedStatusPayload


@dataclass(frozen=True, slots=True)
class CachedStatus:
    """Server-held snapshot of the last verification.

    Attributes:
        status: Snapshot status (``None`` when the server sent an
            unrecognised value).
        raw_status: The status string exactly as the server sent it.
        message: Human-readable status message.
        job_id: Probe job the snapshot belongs to.
        completed_at: When the snapshot's job reached a terminal state.
        processing_time_seconds: Worker processing time (completed only).
        error_message: Failure reason (failed / timed out only).
        troubleshooting_steps: Server-supplied troubleshooting steps.
    """

    status: JobStatus | None
    raw_status: str = ""
    message: str = ""
    job_id: str = ""
    completed_at: datetime | None = None
    processing_time_seconds: float | None = None
    error_message: str = ""
    troubleshooting_steps: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: CachedStatusPayload) -> CachedStatus | None:
        """Convert a wire payload; ``None`` when the payload carries no status."""
        if not payload.status:
            return None
        return cls(
            status=JobStatus.parse(payload.status),
            raw_status=payload.status,
            message=payload.message or "",
            job_id=payload.job_id or "",
            completed_at=ensure_utc(payload.completed_at) if payload.completed_at else None,
            processing_time_seconds=payload.processing_time,
            error_message=payload.error_message or "",
            troubleshooting_steps=tuple(payload.troubleshooting or ()),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal

    def age(self, now: datetime) -> timedelta | None:
        """Return how long ago the snapshot completed, or ``None`` if unknown."""
        if self.completed_at is None:
            return None
        return ensure_utc(now) - self.completed_at

    def is_expired(self, now: datetime, ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS) -> bool:
        """Return ``True`` when the snapshot is older than *ttl_seconds*.

        A snapshot without a completion timestamp cannot be aged.  The
        server stamps only successful runs, so an unstamped ``completed``
        snapshot is expired while an unstamped failure stays current
        until the next verification replaces it.
        """
        age = self.age(now)
        if age is None:
            return self.status is JobStatus.COMPLETED or not self.is_terminal
        return age > timedelta(seconds=ttl_seconds)

    def is_current(self, now: datetime, ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS) -> bool:
        """Return ``True`` when the snapshot may be rendered as the current state."""
        return self.is_terminal and not self.is_expired(now, ttl_seconds)
