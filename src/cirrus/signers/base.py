"""Common shape of a request signer.

A signer is a pure transformation: (request, credentials, timestamp) in,
signed request out. It keeps no per-request state, so one instance can be
shared by every thread issuing commands.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..http.models import Credentials, Request
from ..utils.logging import signature_logger

log = signature_logger()


class SignatureScheme(str, Enum):
    AWS_V2 = "aws-v2"
    AWS_V4 = "aws-v4"
    SHARED_KEY_LITE = "shared-key-lite"
    OAUTH2 = "oauth2"


class SigningError(ValueError):
    """Request cannot be signed (missing credential material, bad timestamp)."""


@dataclass(frozen=True)
class SignatureContext:
    canonical_string: str
    string_to_sign: str
    signature: str
    header_or_query_name: str


class Signer:
    scheme: SignatureScheme
    # key into crypto.timestamp.FORMATTERS
    timestamp_format: str = "rfc1123"

    def canonicalize(self, request: Request, credentials: Credentials, timestamp: str) -> SignatureContext:
        raise NotImplementedError

    def sign(self, request: Request, credentials: Credentials, timestamp: str) -> Request:
        raise NotImplementedError

    def _trace(self, ctx: SignatureContext, request: Request) -> None:
        log.debug(
            "scheme=%s request=%s string_to_sign=%r",
            self.scheme.value, request.describe(), ctx.string_to_sign,
        )


def require_identity(credentials: Optional[Credentials]) -> Credentials:
    if credentials is None or not credentials.identity:
        raise SigningError("credentials with a non-empty identity are required")
    return credentials
