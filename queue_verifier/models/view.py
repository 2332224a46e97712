"""Rendered verification state handed to the presentation layer.

The coordinator never touches the UI directly.  Every state change is
expressed as an immutable ``VerificationView`` and passed to the render
callback, so the presentation layer can be swapped (HTML, CLI, JSON
API) without changing verification logic.

State machine::

    NOT_TESTED -> TESTING -> PROCESSING* -> COMPLETED | FAILED | TIMED_OUT
                     ^                                  |         |
                     +------------- retry() ------------+---------+
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from queue_verifier.diagnostics.error_classifier import (
    TROUBLESHOOTING,
    Classification,
    ErrorCategory,
)
from queue_verifier.models.job import JobStatus
from queue_verifier.utils.helpers import format_seconds, format_timestamp

if TYPE_CHECKING:
    from datetime import datetime

    from queue_verifier.models.cache import CachedStatus
    from queue_verifier.models.job import ProbeJob


class ViewState(enum.Enum):
    """Rendered verification state."""

    NOT_TESTED = "not_tested"
    TESTING = "testing"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (ViewState.COMPLETED, ViewState.FAILED, ViewState.TIMED_OUT)


@dataclass(frozen=True, slots=True)
class VerificationView:
    """Snapshot of what the dashboard should show for the queue worker.

    Attributes:
        state: Rendered state.
        message: Headline (e.g. ``"Queue worker is functioning properly (1.23s)"``).
        details: Secondary line with context.
        status_class: Rendering style hint (``not_tested``, ``checking``,
            ``completed``, ``error``, ``timeout``).
        processing_time_seconds: Worker processing time (completed only).
        error_message: Underlying error text (failures only).
        troubleshooting_steps: Steps to show alongside a failure.
        can_retry: Whether the retry affordance should be offered.
        job_id: Probe job the view describes, if any.
        timestamp: When the view was produced (or when the cached job completed).
    """

    state: ViewState
    message: str
    details: str = ""
    status_class: str = ""
    processing_time_seconds: float | None = None
    error_message: str = ""
    troubleshooting_steps: tuple[str, ...] = ()
    can_retry: bool = False
    job_id: str = ""
    timestamp: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    # -- factories ------------------------------------------------------

    @classmethod
    def not_tested(cls, now: datetime | None = None) -> VerificationView:
        return cls(
            state=ViewState.NOT_TESTED,
            message="Queue worker has not been tested",
            details="Run a verification test to check that the queue worker is processing jobs",
            status_class="not_tested",
            timestamp=now,
        )

    @classmethod
    def testing(cls, now: datetime | None = None) -> VerificationView:
        return cls(
            state=ViewState.TESTING,
            message="Testing queue worker...",
            details="Dispatching test job",
            status_class="checking",
            timestamp=now,
        )

    @classmethod
    def from_job(cls, job: ProbeJob, now: datetime | None = None) -> VerificationView:
        """Render the latest observed state of *job*."""
        return _render(
            job.status,
            message=job.message,
            processing_time=job.processing_time_seconds,
            error_message=job.error_message,
            troubleshooting=job.troubleshooting_steps,
            job_id=job.job_id,
            timestamp=job.completed_at or now,
        )

    @classmethod
    def from_cached(cls, cached: CachedStatus, now: datetime | None = None) -> VerificationView:
        """Render a cached snapshot; non-terminal snapshots render as not tested."""
        if cached.status is None or not cached.status.is_terminal:
            return cls.not_tested(now)
        return _render(
            cached.status,
            message=cached.message,
            processing_time=cached.processing_time_seconds,
            error_message=cached.error_message,
            troubleshooting=cached.troubleshooting_steps,
            job_id=cached.job_id,
            timestamp=cached.completed_at or now,
        )

    @classmethod
    def from_classification(
        cls,
        classification: Classification,
        now: datetime | None = None,
        *,
        job_id: str = "",
    ) -> VerificationView:
        """Render a classified client-side failure (dispatch or polling)."""
        timed_out = classification.category is ErrorCategory.TIMEOUT
        return cls(
            state=ViewState.TIMED_OUT if timed_out else ViewState.FAILED,
            message=classification.user_message,
            details=classification.error_message,
            status_class=classification.status_class,
            error_message=classification.error_message,
            troubleshooting_steps=classification.troubleshooting_steps,
            can_retry=True,
            job_id=job_id,
            timestamp=now,
        )

    # -- serialisation --------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-friendly dict."""
        return {
            "state": self.state.value,
            "message": self.message,
            "details": self.details,
            "status_class": self.status_class,
            "processing_time": self.processing_time_seconds,
            "error_message": self.error_message,
            "troubleshooting": list(self.troubleshooting_steps),
            "can_retry": self.can_retry,
            "job_id": self.job_id,
            "timestamp": format_timestamp(self.timestamp),
        }


def _render(
    status: JobStatus,
    *,
    message: str,
    processing_time: float | None,
    error_message: str,
    troubleshooting: tuple[str, ...],
    job_id: str,
    timestamp: datetime | None,
) -> VerificationView:
    if status is JobStatus.COMPLETED:
        headline = "Queue worker is functioning properly"
        details = "Test job completed successfully"
        if processing_time is not None:
            headline = f"{headline} ({format_seconds(processing_time)})"
            details = f"{details} in {format_seconds(processing_time)}"
        return VerificationView(
            state=ViewState.COMPLETED,
            message=headline,
            details=details,
            status_class="completed",
            processing_time_seconds=processing_time,
            job_id=job_id,
            timestamp=timestamp,
        )

    if status is JobStatus.FAILED:
        reason = error_message or "Test job failed without specific error"
        return VerificationView(
            state=ViewState.FAILED,
            message="Test job execution failed",
            details=reason,
            status_class="error",
            error_message=reason,
            troubleshooting_steps=troubleshooting or TROUBLESHOOTING[ErrorCategory.GENERAL],
            can_retry=True,
            job_id=job_id,
            timestamp=timestamp,
        )

    if status is JobStatus.TIMED_OUT:
        reason = error_message or "Queue worker test timed out - worker may not be running"
        return VerificationView(
            state=ViewState.TIMED_OUT,
            message="Queue worker test timed out",
            details=reason,
            status_class="timeout",
            error_message=reason,
            troubleshooting_steps=troubleshooting or TROUBLESHOOTING[ErrorCategory.TIMEOUT],
            can_retry=True,
            job_id=job_id,
            timestamp=timestamp,
        )

    if status is JobStatus.CANCELLED:
        return VerificationView(
            state=ViewState.FAILED,
            message="Queue worker test was cancelled",
            details=message or "The test job was cancelled before it completed",
            status_class="error",
            troubleshooting_steps=TROUBLESHOOTING[ErrorCategory.GENERAL],
            can_retry=True,
            job_id=job_id,
            timestamp=timestamp,
        )

    if status is JobStatus.PROCESSING:
        headline, details = "Test job processing...", "Job is being processed by the queue worker"
    else:
        headline, details = "Test job queued...", "Waiting for the queue worker to pick up the job"
    return VerificationView(
        state=ViewState.PROCESSING,
        message=headline,
        details=message or details,
        status_class="checking",
        job_id=job_id,
        timestamp=timestamp,
    )
