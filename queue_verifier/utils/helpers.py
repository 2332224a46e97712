"""Shared helper functions used across clients, models and the coordinator.

Centralises timestamp handling so every component agrees on a single
rule: timestamps are timezone-aware UTC, and naive values coming off
the wire are assumed to already be UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC ``datetime``."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC ``datetime``.

    Naive values are tagged as UTC; aware values are converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(value: datetime | None) -> str:
    """Format *value* as ISO 8601 UTC, or ``""`` when absent."""
    if value is None:
        return ""
    return ensure_utc(value).isoformat()


def format_seconds(value: float | None) -> str:
    """Format a processing time the way status messages show it (``1.23s``)."""
    if value is None:
        return ""
    return f"{value:.2f}s"
