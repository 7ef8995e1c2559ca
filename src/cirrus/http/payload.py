"""Re-openable request bodies.

A payload can be read more than once (hashing, signing, every retry of the
send) so it is modelled as something that opens a fresh stream on demand
rather than as a one-shot iterator.
"""
from __future__ import annotations

import io
import os
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional


class _BoundedReader(io.RawIOBase):
    """Read at most `length` bytes from `raw`, starting at its current position."""

    def __init__(self, raw: BinaryIO, length: int):
        self._raw = raw
        self._left = length

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self._left <= 0:
            return 0
        n = min(len(b), self._left)
        chunk = self._raw.read(n)
        if not chunk:
            return 0
        b[: len(chunk)] = chunk
        self._left -= len(chunk)
        return len(chunk)

    def close(self) -> None:
        try:
            self._raw.close()
        finally:
            super().close()


@dataclass(frozen=True)
class Payload:
    data: Optional[bytes] = None
    path: Optional[str] = None
    offset: int = 0
    size: Optional[int] = None
    content_type: Optional[str] = None

    @classmethod
    def from_bytes(cls, data: bytes, content_type: str | None = None) -> "Payload":
        return cls(data=bytes(data), size=len(data), content_type=content_type)

    @classmethod
    def from_file(cls, path: str, content_type: str | None = None) -> "Payload":
        return cls(path=os.fspath(path), size=os.path.getsize(path), content_type=content_type)

    @property
    def length(self) -> Optional[int]:
        return self.size

    def open(self) -> BinaryIO:
        if self.data is not None:
            view = self.data[self.offset:] if self.size is None else self.data[self.offset:self.offset + self.size]
            return io.BytesIO(view)
        if self.path is None:
            return io.BytesIO(b"")
        f = open(self.path, "rb")
        f.seek(self.offset)
        if self.size is None:
            return f
        return io.BufferedReader(_BoundedReader(f, self.size))

    def read(self) -> bytes:
        with self.open() as f:
            return f.read()

    def iter_chunks(self, chunk_size: int) -> Iterator[bytes]:
        with self.open() as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    def slice(self, offset: int, length: int) -> "Payload":
        if offset < 0 or length < 0:
            raise ValueError("offset and length must be non-negative")
        if self.size is not None and offset + length > self.size:
            raise ValueError(f"slice {offset}+{length} exceeds payload length {self.size}")
        return Payload(
            data=self.data,
            path=self.path,
            offset=self.offset + offset,
            size=length,
            content_type=self.content_type,
        )
