"""Per-command retry bookkeeping.

Implements:
 - CommandState enum (Building -> Signed -> Sent -> Success | Failed | Retrying)
 - RetryState dataclass carried through one command's attempts

State is owned by a single command loop; nothing here is shared between
threads.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..errors import ErrorKind

__all__ = ["CommandState", "RetryState"]


class CommandState(str, Enum):
    BUILDING = "Building"
    SIGNED = "Signed"
    SENT = "Sent"
    RETRYING = "Retrying"
    SUCCESS = "Success"
    FAILED = "Failed"


@dataclass
class RetryState:
    max_attempts: int
    attempt: int = 0  # 1-based once the first send starts
    last_error: Optional[ErrorKind] = None
    last_code: Optional[str] = None
    resigns: int = 0

    def begin_attempt(self) -> int:
        self.attempt += 1
        return self.attempt

    @property
    def exhausted(self) -> bool:
        # maxAttempts counts retries, so the first send plus max_attempts retries are allowed
        return self.attempt > self.max_attempts

    def record(self, kind: Optional[ErrorKind], code: Optional[str] = None) -> None:
        self.last_error = kind
        self.last_code = code
