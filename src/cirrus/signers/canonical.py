"""Canonicalization helpers shared by the signature schemes.

Each scheme has its own template, but they agree on the primitives: header
names are compared lower-cased, values have runs of whitespace folded to one
space, and query components are percent-encoded with the RFC 3986 unreserved
set left alone.
"""
from __future__ import annotations

import re
from typing import Callable, Iterable, List, Tuple
from urllib.parse import quote

from ..http.models import Request

_WS = re.compile(r"\s+")

UNRESERVED = "-_.~"


def collapse_whitespace(value: str) -> str:
    return _WS.sub(" ", value.strip())


def canonical_host(request: Request) -> str:
    """Host header value: lower-cased host, explicit port only when non-default."""
    host = request.url.host.lower()
    port = request.url.port
    if port is not None:
        return f"{host}:{port}"
    return host


def uri_encode(value: str, encode_slash: bool = True) -> str:
    safe = UNRESERVED if encode_slash else UNRESERVED + "/"
    return quote(value, safe=safe)


def select_headers(request: Request, keep: Callable[[str], bool]) -> List[Tuple[str, str]]:
    """Return (lower-name, joined-value) pairs for kept headers, sorted by name.

    Repeated headers keep their send order and are joined with ','.
    """
    grouped: dict[str, List[str]] = {}
    for name, value in request.headers:
        lname = name.lower()
        if keep(lname):
            grouped.setdefault(lname, []).append(collapse_whitespace(value))
    return [(k, ",".join(grouped[k])) for k in sorted(grouped)]


def header_block(pairs: Iterable[Tuple[str, str]]) -> str:
    return "".join(f"{k}:{v}\n" for k, v in pairs)


def canonical_query(pairs: Iterable[Tuple[str, str]]) -> str:
    encoded = sorted((uri_encode(k), uri_encode(v)) for k, v in pairs)
    return "&".join(f"{k}={v}" for k, v in encoded)


def sanitize_line(value: str) -> str:
    return value.replace("\r", "").replace("\n", "")
