"""Errors raised by the verification clients, engine and coordinator.

``VerifierError`` is the common base.  Each subclass fixes the stage it
comes from, a machine-readable code, and whether the polling engine may
try the same status request again:

- ``NetworkError``, ``StatusRequestTimeoutError``, ``ServerResponseError``
  are retried by the engine until ``max_retries`` is reached.
- ``ContractError`` (the server answered with something unparseable)
  ends the poll loop on the first occurrence.
- ``DispatchError`` is surfaced immediately; dispatch is never retried
  client-side.
- ``CacheUnavailableError`` means "no cache" to the coordinator.
- ``GenericError`` wraps an unexpected failure before it reaches the
  classifier.
- ``ProbeJobStateError`` rejects an illegal probe job transition.
"""

from __future__ import annotations


class VerifierError(Exception):
    """Base exception for the verifier.

    Attributes:
        message: Human-readable error description.
        stage: Where the error happened (``"dispatch"``, ``"status"``, ...).
        code: Machine-readable error code.
        retryable: Whether the poll loop may repeat the failed request.
        correlation_id: Probe job id, when one is known.
    """

    default_stage: str = ""
    default_code: str = ""
    retryable: bool = False

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool | None = None,
        correlation_id: str = "",
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        if retryable is not None:
            self.retryable = retryable
        self.correlation_id = correlation_id
        super().__init__(message)


class ContractError(VerifierError):
    """Server response does not match the expected document shape."""

    default_code = "RESPONSE_CONTRACT_VIOLATION"


class DispatchError(VerifierError):
    """The dispatch endpoint did not accept the probe job.

    Dispatch is never retried client-side; the user retries explicitly.
    """

    default_stage = "dispatch"
    default_code = "DISPATCH_FAILED"


class NetworkError(VerifierError):
    """Transport-level failure (connection refused, DNS, reset)."""

    default_code = "NETWORK_ERROR"
    retryable = True


class StatusRequestTimeoutError(VerifierError):
    default_code = "REQUEST_TIMEOUT"
    retryable = True


class ServerResponseError(VerifierError):
    """Non-2xx HTTP answer; ``status_code`` holds the code."""

    default_code = "HTTP_ERROR"
    retryable = True

    def __init__(self, status_code: int, reason: str = "", **kwargs: object) -> None:
        self.status_code = status_code
        message = f"HTTP {status_code}: {reason}" if reason else f"HTTP {status_code}"
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class CacheUnavailableError(VerifierError):
    default_stage = "cached_status"
    default_code = "CACHE_UNAVAILABLE"
    retryable = True


class GenericError(VerifierError):
    """An unexpected failure, carrying the original exception as ``__cause__``."""

    default_code = "GENERIC_ERROR"


class ProbeJobStateError(VerifierError):
    default_stage = "probe_job"
    default_code = "ILLEGAL_TRANSITION"
