"""Protocol-formatted "now", recomputed at most once per session interval.

Signers never format the clock themselves; they ask the cache so that every
retry of a command picks up a fresh value once the interval has elapsed.
"""
from __future__ import annotations

import datetime
import time
from typing import Callable

from ..utils.memo import ExpiringValue

RFC1123 = "%a, %d %b %Y %H:%M:%S GMT"
ISO8601_BASIC = "%Y%m%dT%H%M%SZ"
ISO8601_SECONDS = "%Y-%m-%dT%H:%M:%SZ"

_DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def format_rfc1123(dt: datetime.datetime) -> str:
    # strftime %a/%b follow the process locale; HTTP dates must be English
    dt = dt.astimezone(datetime.timezone.utc)
    return "%s, %02d %s %04d %02d:%02d:%02d GMT" % (
        _DAYS[dt.weekday()], dt.day, _MONTHS[dt.month - 1], dt.year, dt.hour, dt.minute, dt.second,
    )


def format_iso8601_basic(dt: datetime.datetime) -> str:
    return dt.astimezone(datetime.timezone.utc).strftime(ISO8601_BASIC)


def format_iso8601_seconds(dt: datetime.datetime) -> str:
    return dt.astimezone(datetime.timezone.utc).strftime(ISO8601_SECONDS)


def parse_timestamp(value: str) -> datetime.datetime:
    """Parse any of the formats this module produces back into an aware datetime."""
    value = value.strip()
    for fmt in (ISO8601_BASIC, ISO8601_SECONDS):
        try:
            return datetime.datetime.strptime(value, fmt).replace(tzinfo=datetime.timezone.utc)
        except ValueError:
            continue
    from email.utils import parsedate_to_datetime

    dt = parsedate_to_datetime(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


FORMATTERS = {
    "rfc1123": format_rfc1123,
    "iso8601-basic": format_iso8601_basic,
    "iso8601": format_iso8601_seconds,
}


class TimestampCache:
    """Thread-safe cache of a formatted timestamp with a fixed time-to-live.

    No caller ever receives a value older than ``ttl_seconds``; recomputation
    begins ``refresh_ahead_s`` earlier (a tenth of the ttl by default) so that
    readers racing a recompute can still be served the previous value.
    """

    def __init__(
        self,
        ttl_seconds: int = 60,
        refresh_ahead_s: float | None = None,
        fmt: str | Callable[[datetime.datetime], str] = "rfc1123",
        now: Callable[[], datetime.datetime] = utcnow,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._format = FORMATTERS[fmt] if isinstance(fmt, str) else fmt
        self._now = now
        ahead = ttl_seconds / 10 if refresh_ahead_s is None else refresh_ahead_s
        self._value = ExpiringValue(self._compute, ttl=ttl_seconds, refresh_ahead=ahead, clock=clock)

    def _compute(self) -> str:
        return self._format(self._now())

    def get(self) -> str:
        return self._value.get()

    __call__ = get

    def refresh(self) -> str:
        return self._value.refresh()

    @property
    def computations(self) -> int:
        return self._value.computations


class FixedTimestamp:
    """Timestamp source pinned to a single value; for reference vectors."""

    def __init__(self, value: str):
        self.value = value

    def get(self) -> str:
        return self.value

    __call__ = get

    def refresh(self) -> str:
        return self.value
