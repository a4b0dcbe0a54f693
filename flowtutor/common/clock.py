"""
Time sources for the ledger.

Ledgers never call ``datetime.now()`` directly; they receive a ``Clock`` so
tests can pin and advance time. Calendar-day logic goes through
``calendar_date`` with the configured reference timezone.
"""

import datetime
from abc import ABC, abstractmethod
from typing import Optional

UTC = datetime.timezone.utc


class Clock(ABC):
    """Source of the current instant."""

    @abstractmethod
    def now(self) -> datetime.datetime:
        """Return the current time as an aware UTC datetime."""
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock."""

    def now(self) -> datetime.datetime:
        return datetime.datetime.now(UTC)


class FixedClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, now: Optional[datetime.datetime] = None):
        self._now = _as_utc(now or datetime.datetime(2024, 1, 1, 12, 0, tzinfo=UTC))

    def now(self) -> datetime.datetime:
        return self._now

    def set(self, now: datetime.datetime) -> None:
        self._now = _as_utc(now)

    def advance(self, **delta) -> datetime.datetime:
        """Move forward by ``datetime.timedelta(**delta)`` and return the new time."""
        self._now = self._now + datetime.timedelta(**delta)
        return self._now


def _as_utc(moment: datetime.datetime) -> datetime.datetime:
    # Naive datetimes are taken to be UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def calendar_date(moment: datetime.datetime, tz: datetime.tzinfo) -> datetime.date:
    """
    Calendar date of ``moment`` as seen in ``tz``.

    Args:
        moment: Instant to convert (naive values are treated as UTC)
        tz: Reference timezone

    Returns:
        The local date in ``tz``
    """
    return _as_utc(moment).astimezone(tz).date()
