"""Verification history over an injectable key-value store.

History is a display convenience, never authoritative: the server cache
decides what counts as current.  Entries are kept newest first and
bounded to ``history_limit``.  A store that fails to read or write is
logged and otherwise ignored, so a full disk or a read-only profile can
never interrupt a verification in progress.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from queue_verifier.core.constants import DEFAULT_HISTORY_LIMIT, HISTORY_STORAGE_KEY
from queue_verifier.utils.helpers import format_timestamp, utc_now

if TYPE_CHECKING:
    from queue_verifier.models.view import VerificationView

logger = logging.getLogger("queue_verifier.utils.history")


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class KeyValueStore(Protocol):
    """Minimal string key-value persistence."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStore:
    """Process-local store; the default when no persistence is configured."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """Store every key in a single JSON object file.

    Writes go to a temporary file in the same directory and are moved
    into place, so a crash mid-write leaves the previous file intact.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        if not isinstance(data, dict):
            msg = f"{self._path} does not contain a JSON object"
            raise ValueError(msg)
        return {str(k): str(v) for k, v in data.items()}

    def _dump(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._dump(data)


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One past verification result."""

    status: str
    message: str
    timestamp: str

    def to_dict(self) -> dict[str, str]:
        return {"status": self.status, "message": self.message, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        return cls(
            status=str(data.get("status", "")),
            message=str(data.get("message", "")),
            timestamp=str(data.get("timestamp", "")),
        )


class VerificationHistory:
    """Bounded, newest-first list of past verification results.

    Args:
        store: Backing store; an ``InMemoryStore`` when omitted.
        limit: Maximum number of entries kept.
        key: Store key holding the serialised entries.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        limit: int = DEFAULT_HISTORY_LIMIT,
        key: str = HISTORY_STORAGE_KEY,
    ) -> None:
        if limit < 1:
            msg = f"limit must be >= 1, got {limit}"
            raise ValueError(msg)
        self._store: KeyValueStore = store if store is not None else InMemoryStore()
        self._limit = limit
        self._key = key

    @property
    def limit(self) -> int:
        return self._limit

    def entries(self) -> list[HistoryEntry]:
        """Return stored entries, newest first.  Unreadable history reads as empty."""
        try:
            raw = self._store.get(self._key)
            if not raw:
                return []
            items = json.loads(raw)
        except Exception as exc:  # noqa: BLE001
            logger.warning("history read failed | key=%s | error=%s", self._key, exc)
            return []
        if not isinstance(items, list):
            return []
        return [HistoryEntry.from_dict(item) for item in items if isinstance(item, dict)]

    def record(self, view: VerificationView) -> HistoryEntry:
        """Prepend *view* to the history and persist it (best effort)."""
        entry = HistoryEntry(
            status=view.state.value,
            message=view.message,
            timestamp=format_timestamp(view.timestamp or utc_now()),
        )
        entries = [entry, *self.entries()][: self._limit]
        payload = json.dumps([e.to_dict() for e in entries])
        try:
            self._store.set(self._key, payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning("history write failed | key=%s | error=%s", self._key, exc)
        return entry

    def clear(self) -> None:
        try:
            self._store.delete(self._key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("history clear failed | key=%s | error=%s", self._key, exc)
