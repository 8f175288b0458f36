"""
CronJob Controller - Clock Interface

Time source for the reconciler and work queue. Scheduling decisions must
go through an injected Clock so tests can pin or advance time.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Abstract clock interface for testable time operations."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC time."""
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Sleep for the given duration."""
        pass

    def timestamp(self) -> float:
        """Get current Unix timestamp."""
        return self.now().timestamp()


class SystemClock(Clock):
    """Real system clock implementation."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class FakeClock(Clock):
    """
    Fake clock for testing.

    Holds an explicit instant that only moves when the test moves it.
    sleep() advances the instant instead of waiting.
    """

    def __init__(self, start_time: Optional[datetime] = None):
        """
        Initialize fake clock.

        Args:
            start_time: Initial time (defaults to now). Naive values are
                interpreted as UTC.
        """
        if start_time is None:
            start_time = datetime.now(timezone.utc)
        self._current_time = _as_utc(start_time)
        self._sleep_calls: list[float] = []

    def now(self) -> datetime:
        return self._current_time

    async def sleep(self, seconds: float) -> None:
        """Record sleep call and advance time."""
        self._sleep_calls.append(seconds)
        self.advance(seconds)
        # Let other tasks observe the new time, as a real sleep would
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        """Advance the clock by the given seconds."""
        self._current_time += timedelta(seconds=seconds)

    def set(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._current_time = _as_utc(time)

    @property
    def sleep_calls(self) -> list[float]:
        """Get list of sleep durations that were called."""
        return self._sleep_calls.copy()

    def clear_sleep_calls(self) -> None:
        """Clear recorded sleep calls."""
        self._sleep_calls.clear()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
