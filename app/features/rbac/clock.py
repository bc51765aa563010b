"""
Time source for the RBAC domain.

Entities never call the system clock directly; every factory and mutation
takes its timestamps from a Clock so tests can force collisions.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


# Smallest step a datetime can represent
TICK = timedelta(microseconds=1)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def next_timestamp(clock: Clock, previous: Optional[datetime]) -> datetime:
    """
    Return a modification time strictly later than ``previous``.

    If the clock has not advanced past ``previous`` (same tick, or it moved
    backwards) the result is ``previous`` plus one tick.
    """
    now = clock.now()
    if previous is not None and now <= previous:
        return previous + TICK
    return now


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Read a naive datetime as UTC; aware values pass through."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


system_clock = SystemClock()
