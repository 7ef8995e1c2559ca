"""SHA-256 tree hash over 1 MiB leaves, plus the plain linear hash.

Leaves are the SHA-256 of each 1 MiB chunk (the last may be shorter). Each
level hashes adjacent pairs; an odd node at the end of a level is promoted
unchanged. Both digests are produced in one streaming pass.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import BinaryIO, List, Mapping, Union

import httpx

from ..errors import IntegrityError
from ..http import headers as H
from ..http.models import Request
from ..http.payload import Payload
from ..utils.ct import ct_eq_hex

CHUNK_SIZE = 1 << 20


@dataclass(frozen=True)
class TreeHash:
    linear_hash: bytes
    tree_hash: bytes

    @property
    def linear_hex(self) -> str:
        return self.linear_hash.hex()

    @property
    def tree_hex(self) -> str:
        return self.tree_hash.hex()


def reduce_level(nodes: List[bytes]) -> bytes:
    if not nodes:
        raise ValueError("cannot reduce an empty hash list")
    while len(nodes) > 1:
        nxt = []
        for i in range(0, len(nodes), 2):
            if i + 1 < len(nodes):
                nxt.append(hashlib.sha256(nodes[i] + nodes[i + 1]).digest())
            else:
                nxt.append(nodes[i])
        nodes = nxt
    return nodes[0]


def _read_full(f: BinaryIO, n: int) -> bytes:
    # file-like reads may return short; a leaf must be a full chunk unless at EOF
    buf = bytearray()
    while len(buf) < n:
        chunk = f.read(n - len(buf))
        if not chunk:
            break
        buf += chunk
    return bytes(buf)


def tree_hash(payload: Union[Payload, bytes]) -> TreeHash:
    if isinstance(payload, (bytes, bytearray)):
        payload = Payload.from_bytes(bytes(payload))
    linear = hashlib.sha256()
    leaves: List[bytes] = []
    with payload.open() as f:
        while True:
            chunk = _read_full(f, CHUNK_SIZE)
            if not chunk:
                break
            linear.update(chunk)
            leaves.append(hashlib.sha256(chunk).digest())
    if not leaves:
        # zero-length payload: both digests are SHA-256 of the empty string
        empty = hashlib.sha256(b"").digest()
        return TreeHash(empty, empty)
    return TreeHash(linear.digest(), reduce_level(leaves))


def tree_hash_from_parts(parts: Mapping[int, bytes]) -> bytes:
    """Combine per-part tree hashes (keyed by part number) into the archive tree hash.

    Only valid when every part but the last is a power-of-two number of MiB.
    """
    if not parts:
        raise ValueError("the part map cannot be empty")
    return reduce_level([parts[k] for k in sorted(parts)])


def bind_hashes(request: Request, payload: Payload | None = None, hashes: TreeHash | None = None) -> Request:
    """Attach linear and tree hash headers for the request payload."""
    if hashes is None:
        payload = payload if payload is not None else request.payload
        if payload is None:
            raise ValueError("request has no payload to hash")
        hashes = tree_hash(payload)
    return request.replace_header(H.LINEAR_HASH, hashes.linear_hex).replace_header(H.TREE_HASH, hashes.tree_hex)


def verify_integrity(expected: bytes | str, response: httpx.Response, header: str = H.TREE_HASH) -> None:
    """Raise IntegrityError when the service echoes a tree hash different from ours."""
    echoed = response.headers.get(header)
    if echoed is None:
        return
    want = expected.hex() if isinstance(expected, bytes) else expected
    if not ct_eq_hex(want, echoed.strip()):
        raise IntegrityError(
            f"service reported {header}={echoed}, expected {want}",
            status=response.status_code,
            body=response.text,
            response=response,
        )
