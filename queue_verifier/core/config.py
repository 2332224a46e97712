"""Verifier configuration loaded from environment variables.

All configuration values have defaults matching the server's polling
contract.  The hosting process (or a ``.env`` loaded by it) is the
source of truth.

Fail-fast validation:
    ``from_env()`` raises ``ConfigValidationError`` if any numeric
    value is out of its valid range, so bad configuration surfaces at
    startup instead of as a silent poll loop that never backs off.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from queue_verifier.core.constants import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_BASE_INTERVAL_MS,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_MAX_INTERVAL_MS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT_MS,
)
from queue_verifier.core.exceptions import VerifierError


class ConfigValidationError(VerifierError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")
        self.message = message


@dataclass(frozen=True, slots=True)
class VerifierConfig:
    """Immutable verifier configuration.

    Loaded once at startup and handed to the coordinator, which threads
    the relevant values into the backoff policy, polling engine and
    operation lock.

    Attributes:
        base_url: Root URL of the application serving ``/verify/*``.
        csrf_token: Anti-forgery token sent as ``X-CSRF-TOKEN``.
        base_interval_ms: Fallback poll interval for unrecognised statuses.
        max_interval_ms: Ceiling applied to exponential backoff.
        backoff_multiplier: Growth factor per consecutive error.
        max_retries: Consecutive poll failures tolerated before giving up.
        request_timeout_ms: Per-request client-side timeout.
        debounce_ms: Debounce window for refresh / verification triggers.
        cache_ttl_seconds: Age after which a cached snapshot is stale.
        history_limit: Maximum number of history entries retained.
    """

    base_url: str = "http://localhost:8000"
    csrf_token: str = ""
    base_interval_ms: int = DEFAULT_BASE_INTERVAL_MS
    max_interval_ms: int = DEFAULT_MAX_INTERVAL_MS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_retries: int = DEFAULT_MAX_RETRIES
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    history_limit: int = DEFAULT_HISTORY_LIMIT

    @classmethod
    def from_env(cls) -> VerifierConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a numeric value is out of range
                or the base URL is empty.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``POLL_MAX_RETRIES=abc``).
        """
        config = cls(
            base_url=os.getenv("VERIFY_BASE_URL", "http://localhost:8000"),
            csrf_token=os.getenv("VERIFY_CSRF_TOKEN", ""),
            base_interval_ms=int(os.getenv("POLL_BASE_INTERVAL_MS", "1000")),
            max_interval_ms=int(os.getenv("POLL_MAX_INTERVAL_MS", "30000")),
            backoff_multiplier=float(os.getenv("POLL_BACKOFF_MULTIPLIER", "1.5")),
            max_retries=int(os.getenv("POLL_MAX_RETRIES", "5")),
            request_timeout_ms=int(os.getenv("POLL_REQUEST_TIMEOUT_MS", "5000")),
            debounce_ms=int(os.getenv("TRIGGER_DEBOUNCE_MS", "1000")),
            cache_ttl_seconds=int(os.getenv("STATUS_CACHE_TTL_SECONDS", "3600")),
            history_limit=int(os.getenv("HISTORY_LIMIT", "10")),
        )
        _validate(config)
        return config


def _validate(config: VerifierConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    if not config.base_url:
        raise ConfigValidationError("VERIFY_BASE_URL", config.base_url, "must not be empty")

    if config.base_interval_ms <= 0:
        raise ConfigValidationError(
            "POLL_BASE_INTERVAL_MS",
            config.base_interval_ms,
            "must be > 0 (milliseconds)",
        )

    if config.max_interval_ms < config.base_interval_ms:
        raise ConfigValidationError(
            "POLL_MAX_INTERVAL_MS",
            config.max_interval_ms,
            f"must be >= POLL_BASE_INTERVAL_MS ({config.base_interval_ms})",
        )

    if config.backoff_multiplier < 1.0:
        raise ConfigValidationError(
            "POLL_BACKOFF_MULTIPLIER",
            config.backoff_multiplier,
            "must be >= 1",
        )

    if config.max_retries < 1:
        raise ConfigValidationError("POLL_MAX_RETRIES", config.max_retries, "must be >= 1")

    if config.request_timeout_ms <= 0:
        raise ConfigValidationError(
            "POLL_REQUEST_TIMEOUT_MS",
            config.request_timeout_ms,
            "must be > 0 (milliseconds)",
        )

    if config.debounce_ms < 0:
        raise ConfigValidationError(
            "TRIGGER_DEBOUNCE_MS",
            config.debounce_ms,
            "must be >= 0 (milliseconds)",
        )

    if config.cache_ttl_seconds <= 0:
        raise ConfigValidationError(
            "STATUS_CACHE_TTL_SECONDS",
            config.cache_ttl_seconds,
            "must be > 0 (seconds)",
        )

    if config.history_limit < 1:
        raise ConfigValidationError("HISTORY_LIMIT", config.history_limit, "must be >= 1")
