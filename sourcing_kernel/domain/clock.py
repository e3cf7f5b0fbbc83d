"""
Injectable time source for sourcing services.

Services take a ``Clock`` instead of reading the system time so that order
dates, lead-time defaults, completion stamps and audit timestamps can be
pinned in tests.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware ``now()`` and its calendar ``today()``."""

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    ``now()`` only moves when ``advance``, ``advance_days`` or ``tick`` is
    called.  Defaults to 2024-01-01 12:00 UTC.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or _EPOCH

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self._current += timedelta(days=days)

    def tick(self) -> datetime:
        self.advance()
        return self._current
