"""Memoized-with-expiration value shared across concurrent callers.

A value is never handed out once it is older than its ttl. Recomputation
starts ``refresh_ahead`` seconds before that; while one thread recomputes in
that window, other readers keep receiving the previous value instead of
waiting. Past the ttl there is no usable value and readers block until the
in-flight computation publishes.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar, Union

T = TypeVar("T")

Duration = Union[float, Callable[[T], float]]


@dataclass(frozen=True)
class _Slot(Generic[T]):
    value: T
    computed_at: float
    refresh_at: float
    expires_at: float


class ExpiringValue(Generic[T]):
    def __init__(
        self,
        compute: Callable[[], T],
        ttl: Duration,
        refresh_ahead: Duration = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._compute = compute
        self._ttl = ttl
        self._refresh_ahead = refresh_ahead
        self._clock = clock
        self._slot: Optional[_Slot[T]] = None
        self._lock = threading.Lock()
        self.computations = 0

    def _duration(self, d: Duration, value: T) -> float:
        return float(d(value)) if callable(d) else float(d)

    def _publish(self) -> T:
        # age is measured from before the computation started
        started = self._clock()
        value = self._compute()
        ttl = self._duration(self._ttl, value)
        ahead = min(max(self._duration(self._refresh_ahead, value), 0.0), ttl)
        slot = _Slot(value, started, started + ttl - ahead, started + ttl)
        # single attribute store: readers see either the old slot or the new one
        self._slot = slot
        self.computations += 1
        return value

    def get(self) -> T:
        slot = self._slot
        now = self._clock()
        if slot is not None and now < slot.refresh_at:
            return slot.value
        if self._lock.acquire(blocking=False):
            try:
                slot = self._slot
                if slot is not None and self._clock() < slot.refresh_at:
                    return slot.value
                return self._publish()
            finally:
                self._lock.release()
        if slot is not None and now < slot.expires_at:
            return slot.value
        with self._lock:
            slot = self._slot
            if slot is not None and self._clock() < slot.refresh_at:
                return slot.value
            return self._publish()

    def invalidate(self) -> None:
        self._slot = None

    def refresh(self) -> T:
        """Force a recomputation, used after the server rejected a stale value."""
        with self._lock:
            return self._publish()
