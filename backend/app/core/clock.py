"""
Injectable clock.

Engine services never call datetime.now() directly; they receive a Clock
so sweeps, timers and extension maths can be pinned in tests.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Abstract clock interface. now() is always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        """Get the current UTC time."""
        ...


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Test clock with controlled time.

    now() returns the same instant until advance() or set_time() is called.
    """

    def __init__(self, fixed_time: Optional[datetime] = None):
        self._time = ensure_utc(fixed_time or datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._time

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        """Move the clock forward. Accepts timedelta keyword arguments."""
        self._time = self._time + timedelta(seconds=seconds, **kwargs)
        return self._time

    def set_time(self, new_time: datetime) -> None:
        self._time = ensure_utc(new_time)


# ==========================================
# TIMESTAMP HELPERS
# ==========================================

def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """
    Serialize a datetime for storage.

    All timestamps are written as second-precision UTC strings so that
    range filters compare consistently.
    """
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="seconds")


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a stored timestamp (ISO string or datetime) into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
