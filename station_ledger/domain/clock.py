"""
Injectable time.

Services take a Clock instead of calling ``datetime.now()``: created_at,
cleared_at, the simulation purge window and the due-date report all read
it, so tests can pin and move time.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    A clock that only moves when told to.

    Starts at DEFAULT_TEST_TIME (a Monday noon) unless another start is
    given; ``now()`` is stable between calls to advance(), tick() and
    set_time().
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._now = fixed_time or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._now

    def set_time(self, time: datetime) -> None:
        self._now = time

    def advance(self, seconds: int = 1) -> None:
        self._now += timedelta(seconds=seconds)

    def advance_hours(self, hours: int) -> None:
        self._now += timedelta(hours=hours)

    def tick(self) -> datetime:
        self.advance()
        return self._now
