"""Shared pytest fixtures for the queue verifier test suite."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

# ---------------------------------------------------------------------------
# Time fixtures
# ---------------------------------------------------------------------------

FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Monotonic clock advanced explicitly by tests (seconds)."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleeper:
    """Record requested delays and advance the clock instead of sleeping."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.advance(seconds)
        await asyncio.sleep(0)


class GatedSleeper:
    """Park every sleep until ``release`` is set."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.entered.set()
        await self.release.wait()


@pytest.fixture()
def fixed_now() -> datetime:
    """Wall-clock instant used by every time-sensitive test."""
    return FIXED_NOW


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sleeper(clock: FakeClock) -> FakeSleeper:
    return FakeSleeper(clock)


@pytest.fixture()
def gated_sleeper() -> GatedSleeper:
    return GatedSleeper()
