"""Split a payload into ordered, contiguous parts for multipart upload.

Part size is fixed once per payload: the smallest power of two that is at
least the minimum part size and keeps the part count within the maximum.
Parts are numbered from 0 and only the last one may be short.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

from ..config import CoreConfig, MAX_PART_SIZE, MAX_PARTS, MIN_PART_SIZE, MiB
from ..http.payload import Payload
from .ranges import ContentRange


@dataclass(frozen=True)
class PartSizeBounds:
    min_part_size: int = MIN_PART_SIZE
    max_part_size: int = MAX_PART_SIZE
    max_parts: int = MAX_PARTS

    def __post_init__(self):
        # part tree hashes combine into the archive hash only on 1 MiB chunk boundaries
        if self.min_part_size < MiB:
            raise ValueError(f"min_part_size must be at least {MiB} bytes, got {self.min_part_size}")
        if self.max_part_size < self.min_part_size:
            raise ValueError("max_part_size must be >= min_part_size")
        if self.max_parts < 1:
            raise ValueError("max_parts must be positive")

    @classmethod
    def from_config(cls, cfg: CoreConfig) -> "PartSizeBounds":
        return cls(cfg.min_part_size, cfg.max_part_size, cfg.max_parts)


@dataclass(frozen=True)
class PayloadSlice:
    range: ContentRange
    part_number: int
    payload: Payload


def is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    return 1 << (n - 1).bit_length()


def validate_part_size(size: int, bounds: PartSizeBounds) -> None:
    if not is_power_of_two(size) or not bounds.min_part_size <= size <= bounds.max_part_size:
        raise ValueError(
            f"part size must be a power of 2 between {bounds.min_part_size} and {bounds.max_part_size}, got {size}"
        )


def choose_part_size(length: int, bounds: PartSizeBounds) -> int:
    if length < 0:
        raise ValueError("payload length cannot be negative")
    size = next_power_of_two(bounds.min_part_size)
    if size > bounds.max_part_size:
        raise ValueError("no power-of-two part size fits within the configured bounds")
    while -(-length // size) > bounds.max_parts:
        size <<= 1
        if size > bounds.max_part_size:
            raise ValueError(
                f"payload of {length} bytes needs more than {bounds.max_parts} parts at the maximum part size"
            )
    return size


class SlicingStrategy:
    """Single-use iterator over the parts of one payload. Not thread-safe."""

    def __init__(self, bounds: Optional[PartSizeBounds] = None):
        self.bounds = bounds or PartSizeBounds()
        self._payload: Optional[Payload] = None
        self.part_size = 0
        self.total = 0
        self.copied = 0
        self.part = 0

    def start_slicing(self, payload: Payload) -> None:
        if payload.length is None:
            raise ValueError("payload length must be known before slicing")
        self._payload = payload
        self.total = payload.length
        self.copied = 0
        self.part = 0
        self.part_size = choose_part_size(self.total, self.bounds)

    @property
    def remaining(self) -> int:
        return self.total - self.copied

    def has_next(self) -> bool:
        return self._payload is not None and self.remaining > 0

    def next_slice(self) -> PayloadSlice:
        if self._payload is None:
            raise RuntimeError("start_slicing() has not been called")
        if not self.has_next():
            raise StopIteration
        length = min(self.remaining, self.part_size)
        piece = PayloadSlice(
            range=ContentRange(self.copied, self.copied + length - 1),
            part_number=self.part,
            payload=self._payload.slice(self.copied, length),
        )
        self.copied += length
        self.part += 1
        return piece

    def __iter__(self) -> Iterator[PayloadSlice]:
        while self.has_next():
            yield self.next_slice()
