"""Probe job domain model.

- ``JobStatus``: lifecycle state reported by the status endpoint
- ``ProbeJob``: one dispatched verification attempt

Design notes:
- ``ProbeJob`` is a frozen dataclass.  The polling engine never mutates
  a job; each observed status produces a new instance via ``observe()``.
- Once a job is terminal it stays terminal: ``observe()`` on a terminal
  job raises ``ProbeJobStateError``.  A retry dispatches a new job.
- Status strings the server may send under other names (``testing``,
  ``timed_out``, ``error``) are normalised by ``JobStatus.parse``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from queue_verifier.core.exceptions import ProbeJobStateError, VerifierError

if TYPE_CHECKING:
    from datetime import datetime

    from queue_verifier.models.payloads import StatusResponse


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ModelValidationError(ValueError, VerifierError):
    """Raised when a domain model is constructed with invalid field values.

    Attributes:
        model: Name of the model class that failed validation.
        field_name: The field that violated the invariant.
        value: The invalid value.
    """

    default_stage = "model_validation"
    default_code = "MODEL_VALIDATION_FAILED"

    def __init__(self, model: str, field_name: str, value: object, message: str) -> None:
        self.model = model
        self.field_name = field_name
        self.value = value
        formatted = f"{model}.{field_name}={value!r}: {message}"
        VerifierError.__init__(self, formatted)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class JobStatus(enum.Enum):
    """Lifecycle state of a probe job.

    Values:
        PENDING:    Dispatched, not yet observed on the queue.
        QUEUED:     Waiting for a worker.
        PROCESSING: Picked up by a worker.
        COMPLETED:  Worker finished the job successfully.
        FAILED:     Worker reported a failure.
        TIMED_OUT:  Server gave up waiting for the worker.
        CANCELLED:  Job was cancelled before completing.
    """

    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timeout"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @classmethod
    def parse(cls, value: str | None) -> JobStatus | None:
        """Map a server status string to a ``JobStatus``.

        Returns ``None`` for empty or unrecognised values.
        """
        if not value:
            return None
        key = value.strip().lower()
        alias = _ALIASES.get(key)
        if alias is not None:
            return alias
        try:
            return cls(key)
        except ValueError:
            return None


_TERMINAL = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMED_OUT, JobStatus.CANCELLED}
)

_ALIASES: dict[str, JobStatus] = {
    "testing": JobStatus.PROCESSING,
    "timed_out": JobStatus.TIMED_OUT,
    "error": JobStatus.FAILED,
}


# ---------------------------------------------------------------------------
# ProbeJob
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProbeJob:
    """One dispatched verification attempt.

    Attributes:
        job_id: Opaque identifier assigned by the dispatch endpoint.
        status: Last observed lifecycle state.
        dispatched_at: When the job was dispatched.
        completed_at: When the job reached a terminal state.
        processing_time_seconds: Worker processing time (completed only).
        message: Latest human-readable status message.
        error_message: Failure reason (failed / timed out only).
        troubleshooting_steps: Server-supplied steps (failed / timed out only).
    """

    job_id: str
    status: JobStatus = JobStatus.PENDING
    dispatched_at: datetime | None = None
    completed_at: datetime | None = None
    processing_time_seconds: float | None = None
    message: str = ""
    error_message: str = ""
    troubleshooting_steps: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _check_non_empty("ProbeJob", "job_id", self.job_id)
        if self.processing_time_seconds is not None:
            _check_min("ProbeJob", "processing_time_seconds", self.processing_time_seconds, 0)
            if self.status is not JobStatus.COMPLETED:
                raise ModelValidationError(
                    "ProbeJob",
                    "processing_time_seconds",
                    self.processing_time_seconds,
                    f"only valid when status is completed (got {self.status.value})",
                )

    @classmethod
    def dispatched(cls, job_id: str, at: datetime | None = None) -> ProbeJob:
        """Create the initial ``PENDING`` job returned by a successful dispatch."""
        return cls(job_id=job_id, status=JobStatus.PENDING, dispatched_at=at)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def observe(self, response: StatusResponse, now: datetime) -> ProbeJob:
        """Return a new job reflecting *response*.

        Unrecognised status strings leave the status unchanged.

        Raises:
            ProbeJobStateError: If this job is already terminal.
        """
        if self.is_terminal:
            msg = f"job {self.job_id} is already {self.status.value}"
            raise ProbeJobStateError(msg, correlation_id=self.job_id)

        status = JobStatus.parse(response.status) or self.status
        failed = status in (JobStatus.FAILED, JobStatus.TIMED_OUT)
        return replace(
            self,
            status=status,
            message=response.message or self.message,
            completed_at=now if status.is_terminal else None,
            processing_time_seconds=(
                response.processing_time if status is JobStatus.COMPLETED else None
            ),
            error_message=(response.error_message or response.message or "") if failed else "",
            troubleshooting_steps=tuple(response.troubleshooting or ()) if failed else (),
        )


# ---------------------------------------------------------------------------
# Validation helpers (module-private)
# ---------------------------------------------------------------------------


def _check_min(model: str, field_name: str, value: float | int, lo: float | int) -> None:
    """Raise `ModelValidationError` if *value* is below *lo*."""
    if value < lo:
        raise ModelValidationError(model, field_name, value, f"must be >= {lo}")


def _check_non_empty(model: str, field_name: str, value: str) -> None:
    """Raise `ModelValidationError` if *value* is empty or blank."""
    if not value or not value.strip():
        raise ModelValidationError(model, field_name, value, "must not be empty")
