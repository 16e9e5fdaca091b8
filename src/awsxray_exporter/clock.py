# src/awsxray_exporter/clock.py
"""Clock abstraction for testable polling windows.

Each poll cycle derives its query window from the wall clock and measures
its own duration with the monotonic clock. Production code uses
SystemClock; tests inject MockClock to pin both.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Abstract clock used by the poll loop.

    Implementations:
    - SystemClock: datetime.now(UTC) and time.monotonic() (production)
    - MockClock: controllable times (testing)
    """

    def now(self) -> datetime:
        """Return the current wall-clock time as a timezone-aware UTC datetime.

        Used for the X-Ray query window, which is expressed in wall-clock time.
        """
        ...

    def monotonic(self) -> float:
        """Return monotonic time in seconds.

        Used for cycle durations. Corresponds to time.monotonic().
        """
        ...


class SystemClock:
    """Production clock backed by the system clocks."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def monotonic(self) -> float:
        return time.monotonic()


class MockClock:
    """Controllable clock for deterministic testing.

    Wall-clock and monotonic time advance together.

    Example:
        clock = MockClock(start=datetime(2024, 1, 15, 10, 30, tzinfo=UTC))
        poller = Poller(fetcher, channel, settings, clock=clock)

        poller.run_cycle()  # window ends at 10:30:00
        clock.advance(10)
        poller.run_cycle()  # window ends at 10:30:10
    """

    def __init__(self, start: datetime | None = None) -> None:
        """Initialize mock clock.

        Args:
            start: Initial wall-clock time (default 2024-01-01T00:00:00Z).
                Naive datetimes are assumed to be UTC.
        """
        if start is None:
            start = datetime(2024, 1, 1, tzinfo=UTC)
        elif start.tzinfo is None:
            start = start.replace(tzinfo=UTC)
        self._now = start
        self._monotonic = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        """Advance both clocks by the given number of seconds.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()
