"""Pydantic schemas for the ``/verify/*`` JSON documents.

The server is an external collaborator, so these models are lenient on
the way in: unknown keys are ignored, the job id and completion
timestamp are accepted under every spelling the server has been seen
to use, and a status document wrapped as
``{"success": true, "status": {...}}`` is unwrapped transparently.

Usage::

    from queue_verifier.models.payloads import StatusResponse, parse_payload

    response = parse_payload(StatusResponse, raw, stage="status")
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from queue_verifier.core.exceptions import ContractError

_JOB_ID_ALIASES = AliasChoices("jobId", "job_id", "test_job_id")

_Payload = TypeVar("_Payload", bound="WirePayload")


class WirePayload(BaseModel):
    """Base for every response document: ignore unknown keys."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _unwrap_status(data: Any) -> Any:
    """Return the inner document of ``{"success": ..., "status": {...}}``."""
    if isinstance(data, dict) and isinstance(data.get("status"), dict):
        return data["status"]
    return data


# ---------------------------------------------------------------------------
# POST /verify/dispatch
# ---------------------------------------------------------------------------


class DispatchResponse(WirePayload):
    """Result of enqueueing a probe job.

    Attributes:
        success: Whether the server accepted the job.
        job_id: Identifier of the new probe job (absent on failure).
        message: Human-readable explanation, fed to the classifier on failure.
    """

    success: bool = False
    job_id: str | None = Field(default=None, validation_alias=_JOB_ID_ALIASES)
    message: str | None = None


# ---------------------------------------------------------------------------
# GET /verify/status?job_id=...
# ---------------------------------------------------------------------------


class StatusResponse(WirePayload):
    """Current state of one probe job.

    Attributes:
        status: Raw server status string (``processing``, ``completed``, ...).
        message: Human-readable status message.
        processing_time: Seconds the worker spent on the job (completed only).
        error_message: Failure reason (failed / timed out only).
        troubleshooting: Server-suggested troubleshooting steps.
    """

    status: str
    message: str | None = None
    processing_time: float | None = None
    error_message: str | None = None
    troubleshooting: list[str] | None = None

    @model_validator(mode="before")
    @classmethod
    def unwrap_envelope(cls, data: Any) -> Any:
        return _unwrap_status(data)


# ---------------------------------------------------------------------------
# GET /verify/cached-status
# ---------------------------------------------------------------------------


class CachedStatusPayload(WirePayload):
    """Server-held snapshot of the last verification.

    Every field is optional: the server answers with an empty document
    when nothing has been cached yet.
    """

    status: str | None = None
    message: str | None = None
    job_id: str | None = Field(default=None, validation_alias=_JOB_ID_ALIASES)
    completed_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("completed_at", "test_completed_at"),
    )
    processing_time: float | None = None
    error_message: str | None = None
    troubleshooting: list[str] | None = None

    @model_validator(mode="before")
    @classmethod
    def unwrap_envelope(cls, data: Any) -> Any:
        return _unwrap_status(data)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def parse_payload(schema: type[_Payload], raw: Any, *, stage: str) -> _Payload:
    """Validate *raw* against *schema*.

    Raises:
        ContractError: If *raw* is not a JSON object or is missing
            required fields.
    """
    if not isinstance(raw, dict):
        msg = f"{stage}: expected a JSON object, got {type(raw).__name__}"
        raise ContractError(msg, stage=stage, code="RESPONSE_CONTRACT_VIOLATION")
    try:
        return schema.model_validate(raw)
    except PydanticValidationError as exc:
        msg = f"{stage}: response does not match {schema.__name__}: {exc.error_count()} error(s)"
        raise ContractError(msg, stage=stage, code="RESPONSE_CONTRACT_VIOLATION") from exc
