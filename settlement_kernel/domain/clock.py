"""
Injectable time source.

Services never read the wall clock directly: receipt numbers (``YYMM``),
payment period labels, approval stamps and paid dates all come from the
``Clock`` handed to them, so tests can pin time with ``DeterministicClock``.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests and replays.

    ``now()`` is stable until moved with ``advance``, ``tick`` or
    ``set_time``.  Naive datetimes are taken as UTC.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = self._aware(fixed_time or DEFAULT_TEST_TIME)

    @staticmethod
    def _aware(value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = self._aware(time)

    def advance(self, seconds: float = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """Move one second forward and return the new time."""
        self.advance(1)
        return self._current
