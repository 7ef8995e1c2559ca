"""Immutable request and credential types.

Every mutation returns a new Request; a signing pass never edits the request
it was handed, so the unsigned original can be re-signed on each retry.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, Union
from urllib.parse import quote, unquote

import httpx

from .payload import Payload

HeaderPairs = Tuple[Tuple[str, str], ...]
HeadersLike = Union[Mapping[str, str], Sequence[Tuple[str, str]], None]

STREAM_CHUNK = 64 * 1024


@dataclass(frozen=True)
class Credentials:
    identity: str
    secret: bytes = field(repr=False)
    session_token: Optional[str] = field(default=None, repr=False)

    @classmethod
    def of(cls, identity: str, secret: str | bytes, session_token: str | None = None) -> "Credentials":
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        return cls(identity=identity, secret=secret, session_token=session_token)

    @property
    def secret_text(self) -> str:
        return self.secret.decode("utf-8")


class CredentialSupplier(Protocol):
    def __call__(self) -> Credentials: ...


class StaticCredentials:
    """Credential supplier returning the same pair on every call."""

    def __init__(self, credentials: Credentials):
        self._credentials = credentials

    def __call__(self) -> Credentials:
        return self._credentials


def credentials_from_config(cfg) -> StaticCredentials:
    return StaticCredentials(Credentials.of(cfg.identity, cfg.credential, cfg.session_token))


def _pairs(headers: HeadersLike) -> HeaderPairs:
    if not headers:
        return ()
    items: Iterable[Tuple[str, str]] = headers.items() if isinstance(headers, Mapping) else headers
    return tuple((str(k), str(v)) for k, v in items)


@dataclass(frozen=True)
class Request:
    method: str
    url: httpx.URL
    headers: HeaderPairs = ()
    payload: Optional[Payload] = None

    @classmethod
    def build(
        cls,
        method: str,
        url: Union[str, httpx.URL],
        headers: HeadersLike = None,
        payload: Union[Payload, bytes, None] = None,
    ) -> "Request":
        if isinstance(payload, (bytes, bytearray)):
            payload = Payload.from_bytes(bytes(payload))
        return cls(method=method.upper(), url=httpx.URL(str(url)), headers=_pairs(headers), payload=payload)

    # headers

    def header_values(self, name: str) -> List[str]:
        lname = name.lower()
        return [v for k, v in self.headers if k.lower() == lname]

    def first_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.header_values(name)
        return values[0] if values else default

    def has_header(self, name: str) -> bool:
        return bool(self.header_values(name))

    def with_header(self, name: str, value: str) -> "Request":
        return replace(self, headers=self.headers + ((name, str(value)),))

    def remove_header(self, name: str) -> "Request":
        lname = name.lower()
        return replace(self, headers=tuple((k, v) for k, v in self.headers if k.lower() != lname))

    def replace_header(self, name: str, value: str) -> "Request":
        return self.remove_header(name).with_header(name, value)

    # url

    @property
    def host(self) -> str:
        return self.url.host

    @property
    def raw_path(self) -> str:
        """Path exactly as it goes on the wire (percent-encoding preserved)."""
        raw = self.url.raw_path.decode("ascii")
        return raw.split("?", 1)[0] or "/"

    @property
    def raw_query(self) -> str:
        return self.url.query.decode("ascii")

    def query_params(self) -> List[Tuple[str, str]]:
        # not parse_qsl: a literal "+" is data here, not an encoded space
        pairs = []
        for part in self.raw_query.split("&"):
            if part:
                k, _, v = part.partition("=")
                pairs.append((unquote(k), unquote(v)))
        return pairs

    def query_keys(self) -> List[str]:
        # parse_qsl drops the distinction between "?acl" and "?acl="; keep bare keys
        keys = []
        for part in self.raw_query.split("&"):
            if part:
                keys.append(part.split("=", 1)[0])
        return keys

    def with_raw_query(self, query: str) -> "Request":
        if not query and not self.raw_query:
            return self
        return replace(self, url=self.url.copy_with(query=query.encode("ascii")))

    def with_query(
        self, params: Union[Mapping[str, str], Sequence[Tuple[str, str]]], safe: str = "-_.~"
    ) -> "Request":
        """Append already-decoded parameters, encoding them onto the existing raw query."""
        items = params.items() if isinstance(params, Mapping) else params
        extra = "&".join(f"{quote(k, safe=safe)}={quote(str(v), safe=safe)}" for k, v in items)
        current = self.raw_query
        query = f"{current}&{extra}" if current and extra else (current or extra)
        return self.with_raw_query(query)

    def with_payload(self, payload: Optional[Payload]) -> "Request":
        return replace(self, payload=payload)

    # transport

    def to_httpx(self) -> httpx.Request:
        headers = list(self.headers)
        content = None
        if self.payload is not None:
            if self.payload.data is not None:
                content = self.payload.read()
            else:
                content = self.payload.iter_chunks(STREAM_CHUNK)
                if self.payload.length is not None and not self.has_header("content-length"):
                    headers.append(("Content-Length", str(self.payload.length)))
        return httpx.Request(self.method, self.url, headers=headers, content=content)

    def describe(self) -> str:
        return f"{self.method} {self.url}"
