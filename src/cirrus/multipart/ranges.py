from __future__ import annotations

import re
from dataclasses import dataclass

from ..http import headers as H
from ..http.models import Request

_RANGE = re.compile(r"^([0-9]+)-([0-9]+)$")


@dataclass(frozen=True)
class ContentRange:
    """Inclusive byte range ``start-end`` of one part within the whole payload."""

    start: int
    end: int

    def __post_init__(self):
        if self.start < 0:
            raise ValueError("range start cannot be negative")
        if self.end < self.start:
            raise ValueError("range end must not precede its start")

    @classmethod
    def from_string(cls, text: str) -> "ContentRange":
        m = _RANGE.match(text or "")
        if not m:
            raise ValueError("expected two numbers separated by a hyphen (start-end)")
        return cls(int(m.group(1)), int(m.group(2)))

    @classmethod
    def from_part_number(cls, part_number: int, part_size: int) -> "ContentRange":
        if part_number < 0:
            raise ValueError("part number cannot be negative")
        if part_size <= 0:
            raise ValueError("part size must be positive")
        start = part_number * part_size
        return cls(start, start + part_size - 1)

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def header(self) -> str:
        return f"bytes {self.start}-{self.end}/*"

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


def bind_content_range(request: Request, rng: ContentRange) -> Request:
    return request.replace_header(H.CONTENT_RANGE, rng.header())
