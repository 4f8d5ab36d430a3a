"""Time source shared by everything that stamps or compares instants."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """Clock that only moves when told to. Used by tests and replays."""

    def __init__(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def advance(self, delta: timedelta) -> datetime:
        self._instant = self._instant + delta
        return self._instant


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from the database."""

    if not isinstance(value, datetime):
        raise TypeError("Expected datetime value from database")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
