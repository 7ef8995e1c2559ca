"""Backoff delays and Retry-After parsing.

delay_ms = start * attempt^2, plus up to 10% jitter, capped at start * 10.
"""
from __future__ import annotations

import datetime
import random
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Callable, Optional

JITTER_RATIO = 0.1
CAP_FACTOR = 10


@dataclass(frozen=True)
class Backoff:
    start_ms: int = 50
    cap_factor: int = CAP_FACTOR
    # returns a value in [0, 1); injectable so tests can pin the jitter
    jitter: Callable[[], float] = field(default=random.random, compare=False)

    def delay_ms(self, attempt: int) -> float:
        attempt = max(attempt, 1)
        base = self.start_ms * attempt * attempt
        delay = base + base * JITTER_RATIO * self.jitter()
        return min(delay, self.start_ms * self.cap_factor)

    def delay(self, attempt: int) -> float:
        return self.delay_ms(attempt) / 1000.0


def parse_retry_after(value: Optional[str], now: Optional[datetime.datetime] = None) -> Optional[float]:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if value.isdigit():
        return float(int(value))
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=datetime.timezone.utc)
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return max(0.0, (when - now).total_seconds())
