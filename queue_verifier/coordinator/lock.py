"""Operation lock — single-flight plus debounce for competing triggers.

The dashboard exposes two operations that must never hit the network at
the same time: the general status refresh and the queue worker
verification.  Every public trigger goes through ``OperationLock.trigger``:

- If *any* operation is in progress, the trigger is dropped (logged,
  never queued).
- If the same kind fired less than ``debounce_ms`` ago, the trigger is
  deferred: one timer is (re)armed for the remainder of the window,
  replacing any earlier deferred call of that kind.  When it fires it
  runs the action once, provided the lock is still free.
- Otherwise the action runs immediately with its flag held.  The flag is
  released on every exit path, including exceptions.

All flag mutations happen synchronously on the event loop, so no
``asyncio.Lock`` is needed.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import functools
import logging
import time
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from queue_verifier.core.constants import DEFAULT_DEBOUNCE_MS

logger = logging.getLogger("queue_verifier.coordinator.lock")

T = TypeVar("T")


class OperationKind(enum.Enum):
    """Mutually exclusive dashboard operations."""

    REFRESH = "refresh"
    VERIFICATION = "verification"


class TriggerDecision(enum.Enum):
    """What ``OperationLock.trigger`` did with a call."""

    EXECUTED = "executed"
    DEFERRED = "deferred"
    DROPPED = "dropped"


@dataclass(frozen=True, slots=True)
class TriggerResult(Generic[T]):
    """Outcome of a trigger; ``value`` is set only when ``EXECUTED``."""

    decision: TriggerDecision
    value: T | None = None

    @property
    def executed(self) -> bool:
        return self.decision is TriggerDecision.EXECUTED


@dataclass(slots=True)
class OperationGuard:
    """Flag, debounce timestamp and deferred timer for one operation kind."""

    kind: OperationKind
    in_progress: bool = False
    last_fired_at: float | None = None
    deferred: asyncio.Task[Any] | None = None

    @property
    def has_deferred(self) -> bool:
        return self.deferred is not None and not self.deferred.done()


class OperationLock:
    """Debounce and single-flight guard shared by all dashboard triggers.

    Args:
        debounce_ms: Minimum gap between two firings of the same kind.
        clock: Monotonic clock in seconds (injectable for tests).
        sleep: Awaitable sleep in seconds (injectable for tests).
    """

    def __init__(
        self,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if debounce_ms < 0:
            msg = f"debounce_ms must be >= 0, got {debounce_ms}"
            raise ValueError(msg)
        self._debounce_ms = debounce_ms
        self._clock = clock
        self._sleep = sleep
        self._guards = {kind: OperationGuard(kind) for kind in OperationKind}

    @property
    def busy(self) -> bool:
        """``True`` while any operation holds its flag."""
        return any(guard.in_progress for guard in self._guards.values())

    def guard(self, kind: OperationKind) -> OperationGuard:
        return self._guards[kind]

    def is_held(self, kind: OperationKind) -> bool:
        return self._guards[kind].in_progress

    @contextlib.contextmanager
    def hold(self, kind: OperationKind) -> Iterator[None]:
        """Hold the flag for *kind* for the duration of the block."""
        guard = self._guards[kind]
        if guard.in_progress:
            msg = f"{kind.value} is already in progress"
            raise RuntimeError(msg)
        guard.in_progress = True
        try:
            yield
        finally:
            guard.in_progress = False

    async def trigger(
        self,
        kind: OperationKind,
        action: Callable[[], Awaitable[T]],
    ) -> TriggerResult[T]:
        """Run, defer or drop *action* according to the lock state."""
        if self.busy:
            logger.warning(
                "trigger dropped | kind=%s | reason=operation in progress | held=%s",
                kind.value,
                ",".join(g.kind.value for g in self._guards.values() if g.in_progress),
            )
            return TriggerResult(TriggerDecision.DROPPED)

        guard = self._guards[kind]
        remaining_ms = self._remaining_debounce_ms(guard)
        if remaining_ms > 0:
            self._arm(guard, action, remaining_ms)
            logger.info(
                "trigger deferred | kind=%s | delay_ms=%.0f",
                kind.value,
                remaining_ms,
            )
            return TriggerResult(TriggerDecision.DEFERRED)

        return TriggerResult(TriggerDecision.EXECUTED, await self._fire(guard, action))

    async def run_exclusive(
        self,
        kind: OperationKind,
        action: Callable[[], Awaitable[T]],
    ) -> TriggerResult[T]:
        """Run *action* if *kind* itself is idle, ignoring other kinds and debounce.

        Used when one operation deliberately starts another as part of
        its own work.
        """
        guard = self._guards[kind]
        if guard.in_progress:
            logger.warning("trigger dropped | kind=%s | reason=already in progress", kind.value)
            return TriggerResult(TriggerDecision.DROPPED)
        return TriggerResult(TriggerDecision.EXECUTED, await self._fire(guard, action))

    async def wait_deferred(self) -> None:
        """Wait for every armed deferred trigger to fire (or be dropped)."""
        while pending := [g.deferred for g in self._guards.values() if g.has_deferred]:
            await asyncio.wait(pending)
            for task in pending:
                if not task.cancelled():
                    task.result()

    def cancel_deferred(self) -> None:
        """Disarm every deferred trigger."""
        for guard in self._guards.values():
            if guard.has_deferred:
                guard.deferred.cancel()
            guard.deferred = None

    # -- internals ----------------------------------------------------------

    def _remaining_debounce_ms(self, guard: OperationGuard) -> float:
        if guard.last_fired_at is None:
            return 0.0
        elapsed_ms = (self._clock() - guard.last_fired_at) * 1000.0
        return self._debounce_ms - elapsed_ms

    async def _fire(self, guard: OperationGuard, action: Callable[[], Awaitable[T]]) -> T:
        guard.last_fired_at = self._clock()
        with self.hold(guard.kind):
            return await action()

    def _arm(
        self,
        guard: OperationGuard,
        action: Callable[[], Awaitable[Any]],
        delay_ms: float,
    ) -> None:
        if guard.has_deferred:
            guard.deferred.cancel()
            logger.debug("deferred trigger superseded | kind=%s", guard.kind.value)
        task = asyncio.get_running_loop().create_task(
            self._fire_deferred(guard, action, delay_ms),
            name=f"deferred:{guard.kind.value}",
        )
        task.add_done_callback(functools.partial(_log_deferred_failure, guard.kind))
        guard.deferred = task

    async def _fire_deferred(
        self,
        guard: OperationGuard,
        action: Callable[[], Awaitable[Any]],
        delay_ms: float,
    ) -> Any:
        await self._sleep(delay_ms / 1000.0)
        if self.busy:
            logger.warning(
                "deferred trigger dropped | kind=%s | reason=operation in progress",
                guard.kind.value,
            )
            return None
        logger.info("deferred trigger firing | kind=%s", guard.kind.value)
        return await self._fire(guard, action)


def _log_deferred_failure(kind: OperationKind, task: asyncio.Task[Any]) -> None:
    """Report a deferred action that raised; nothing else awaits the task."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "deferred trigger failed | kind=%s | error=%s",
            kind.value,
            error,
            exc_info=error,
        )
