"""Centralized error classification for queue worker verification.

This module looks at an error (exception or plain message) raised while
dispatching or polling a probe job and assigns a stable
``ErrorCategory`` plus a user-facing message and troubleshooting script.

The classification is:
- deterministic (identical text always yields the identical category)
- text-based (keyword matching against the lower-cased message)
- total (it never raises; anything unmatched is ``general``)

Precedence:
1. dispatch_failed  - dispatch / queue connection / database / table / configuration
2. network_error    - network / connection refused / unreachable / fetch,
                      unless the message also mentions a timeout
3. timeout          - timeout / timed out
4. general          - everything else
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class ErrorCategory(enum.Enum):
    """Stable classification codes."""

    DISPATCH_FAILED = "dispatch_failed"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    GENERAL = "general"


@dataclass(frozen=True, slots=True)
class Classification:
    """Result of classifying one error.

    Attributes:
        category: Stable category code.
        user_message: Short headline shown to the user.
        troubleshooting_steps: Ordered steps for the operator.
        status_class: Rendering style hint (``"error"`` or ``"timeout"``).
        error_message: The original error text.
    """

    category: ErrorCategory
    user_message: str
    troubleshooting_steps: tuple[str, ...]
    status_class: str
    error_message: str = ""


DISPATCH_KEYWORDS = [
    "dispatch",
    "queue connection",
    "database connection",
    "table",
    "configuration",
]

NETWORK_KEYWORDS = [
    "network",
    "connection refused",
    "unreachable",
    "fetch",
]

TIMEOUT_KEYWORDS = [
    "timeout",
    "timed out",
]

TROUBLESHOOTING: dict[ErrorCategory, tuple[str, ...]] = {
    ErrorCategory.DISPATCH_FAILED: (
        "Verify the queue connection setting points at a configured backend",
        "Confirm the jobs and failed-jobs tables exist (run pending migrations)",
        "Check the queue driver configuration in the application environment",
        "Inspect the application logs for configuration errors",
        "Verify the storage and cache directories are writable",
        "Test the database connection directly",
        "If a message broker backs the queue, confirm it is running and reachable",
    ),
    ErrorCategory.NETWORK_ERROR: (
        "Check your network connection",
        "Verify that the application server is running and reachable",
        "Check for firewall or proxy rules blocking the request",
        "Refresh the page and run the test again",
    ),
    ErrorCategory.TIMEOUT: (
        "Confirm a queue worker process is running",
        "Check whether the worker process is stuck or has crashed",
        "Verify the queue driver configuration matches what the worker consumes",
        "Check system resources (CPU, memory) on the server",
        "Review the worker logs for error messages",
        "Restart the queue worker process",
        "Look for long-running jobs blocking the queue",
    ),
    ErrorCategory.GENERAL: (
        "Confirm a queue worker process is running",
        "Verify the queue configuration",
        "Check the failed-jobs records for the probe job",
        "Review the application logs",
        "Restart the queue worker if needed",
        "Check system resources and file permissions",
    ),
}

USER_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.DISPATCH_FAILED: "Failed to dispatch test job",
    ErrorCategory.NETWORK_ERROR: "Network error during test",
    ErrorCategory.TIMEOUT: "Queue worker test timed out",
    ErrorCategory.GENERAL: "Test failed",
}


def _text(value: str | None) -> str:
    return (value or "").strip()


def _lower(value: str | None) -> str:
    return _text(value).lower()


def _contains_any(haystack: str, needles: list[str]) -> bool:
    return any(n in haystack for n in needles)


def error_text(error: BaseException | str | None) -> str:
    """Return the message text of *error*, falling back to the class name."""
    if error is None:
        return ""
    if isinstance(error, str):
        return _text(error)
    message = getattr(error, "message", None)
    if not isinstance(message, str) or not message:
        try:
            message = str(error)
        except Exception:  # noqa: BLE001
            message = ""
    return _text(message) or type(error).__name__


def categorize(error: BaseException | str | None) -> ErrorCategory:
    """Return the category for *error* without building the full result."""
    text = _lower(error_text(error))

    # 1) Dispatch / configuration problems take precedence over everything
    if _contains_any(text, DISPATCH_KEYWORDS):
        return ErrorCategory.DISPATCH_FAILED

    mentions_timeout = _contains_any(text, TIMEOUT_KEYWORDS)

    # 2) Transport problems, unless the message is timeout-specific
    if not mentions_timeout and _contains_any(text, NETWORK_KEYWORDS):
        return ErrorCategory.NETWORK_ERROR

    # 3) Timeouts
    if mentions_timeout:
        return ErrorCategory.TIMEOUT

    # 4) Fallback
    return ErrorCategory.GENERAL


def classify(error: BaseException | str | None) -> Classification:
    """Classify *error* into a category with a troubleshooting script.

    Never raises; at minimum it returns the ``general`` classification.
    """
    category = categorize(error)
    return Classification(
        category=category,
        user_message=USER_MESSAGES[category],
        troubleshooting_steps=TROUBLESHOOTING[category],
        status_class="timeout" if category is ErrorCategory.TIMEOUT else "error",
        error_message=error_text(error),
    )
