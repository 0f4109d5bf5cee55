"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock interface so that domain, engine, and service
    code never call ``datetime.now()`` or ``date.today()`` directly.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock,
    which is the one sanctioned I/O boundary for time).

Time-dependent behaviour in the closure engine:
    - ``validated_at`` stamps on locked closures.
    - Fallback receipt references (``REC-{year}-T{timestamp}-{class}``).
    - The academic-year fallback when a malformed year is supplied.
    - The UNVALIDATED_CLOSURES treasury alert ("drafts dated before today").
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        All services that need current time must receive a Clock instance
        via constructor injection.

    Guarantees:
        - ``now()`` returns a timezone-aware ``datetime``.
        - ``today()`` is the calendar date of ``now()``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def today(self) -> date:
        """Get the current calendar date."""
        return self.now().date()


class SystemClock(Clock):
    """Production clock returning timezone-aware UTC system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock frozen at a fixed instant, by default 17:30 UTC on
    2025-10-06, the evening a cashier closes the day.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._now = fixed_time or datetime(2025, 10, 6, 17, 30, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set_time(self, time: datetime) -> None:
        self._now = time

    def advance(self, seconds: float = 1) -> datetime:
        self._now += timedelta(seconds=seconds)
        return self._now
