"""Shared verification constants — single source of truth.

Centralises endpoint paths, polling defaults and the status-specific
interval table so the clients, the backoff policy and the coordinator
never duplicate string literals or magic numbers.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# HTTP endpoints
# ---------------------------------------------------------------------------

DISPATCH_PATH: str = "/verify/dispatch"
"""POST: enqueue a new probe job."""

STATUS_PATH: str = "/verify/status"
"""GET: current status of a probe job (``?job_id=...``)."""

CACHED_STATUS_PATH: str = "/verify/cached-status"
"""GET: latest server-held verification snapshot."""

CSRF_HEADER: str = "X-CSRF-TOKEN"
"""Anti-forgery header attached to every request."""

# ---------------------------------------------------------------------------
# Polling defaults
# ---------------------------------------------------------------------------

DEFAULT_BASE_INTERVAL_MS: int = 1000
DEFAULT_MAX_INTERVAL_MS: int = 30_000
DEFAULT_BACKOFF_MULTIPLIER: float = 1.5
DEFAULT_MAX_RETRIES: int = 5
DEFAULT_REQUEST_TIMEOUT_MS: int = 5000
DEFAULT_DEBOUNCE_MS: int = 1000

JITTER_RATIO: float = 0.1
"""Upper bound on jitter as a fraction of the computed interval."""

RESPONSE_TIME_SAMPLES: int = 100
"""Number of response-time samples kept for the rolling average."""

STATUS_INTERVALS_MS: dict[str, int] = {
    "pending": 1000,
    "queued": 1000,
    "processing": 1000,
    "testing": 1000,
    "completed": 30_000,
    "failed": 5000,
    "timeout": 10_000,
    "timed_out": 10_000,
    "not_tested": 60_000,
    "unknown": 60_000,
}
"""Status-specific poll interval used when no error is being recovered from."""

# ---------------------------------------------------------------------------
# Cache and history
# ---------------------------------------------------------------------------

DEFAULT_CACHE_TTL_SECONDS: int = 3600
"""Terminal snapshots older than this are treated as stale."""

DEFAULT_HISTORY_LIMIT: int = 10

HISTORY_STORAGE_KEY: str = "queue_worker_test_history"
"""Key under which verification history is kept in the key-value store."""
