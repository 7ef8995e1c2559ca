"""HMAC-SHA256 request signing with a date/region/service scoped key.

Canonical request::

    METHOD \\n path \\n sorted-query \\n canonical-headers \\n signed-headers \\n payload-hash

Only host, content-type, content-md5 and x-amz-* headers are signed. The
signing key is derived per day by chaining HMACs over the scope elements, so
the long-term secret never signs a request directly.
"""
from __future__ import annotations

import hashlib
from dataclasses import replace
from typing import Optional

from ..crypto import digest
from ..crypto.timestamp import format_iso8601_basic, parse_timestamp
from ..http import headers as H
from ..http.models import Credentials, Request
from .base import SignatureContext, SignatureScheme, Signer, SigningError, require_identity
from .canonical import canonical_host, canonical_query, header_block, select_headers

ALGORITHM = "AWS4-HMAC-SHA256"
TERMINATOR = "aws4_request"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
MAX_PRESIGN_SECONDS = 7 * 24 * 3600

_SIGNED = frozenset({"host", "content-type", "content-md5"})


def signing_key(secret: bytes, date: str, region: str, service: str) -> bytes:
    key = digest.hmac_sha256(b"AWS4" + secret, date)
    key = digest.hmac_sha256(key, region)
    key = digest.hmac_sha256(key, service)
    return digest.hmac_sha256(key, TERMINATOR)


def hash_payload(request: Request) -> str:
    if request.payload is None:
        return digest.EMPTY_SHA256_HEX
    h = hashlib.sha256()
    for chunk in request.payload.iter_chunks(1 << 20):
        h.update(chunk)
    return h.hexdigest()


def _basic_timestamp(timestamp: str) -> str:
    if len(timestamp) == 16 and timestamp.endswith("Z") and timestamp[8] == "T":
        return timestamp
    try:
        return format_iso8601_basic(parse_timestamp(timestamp))
    except (TypeError, ValueError) as e:
        raise SigningError(f"unusable timestamp {timestamp!r}") from e


class AwsV4Signer(Signer):
    scheme = SignatureScheme.AWS_V4
    timestamp_format = "iso8601-basic"

    def __init__(self, region: str, service: str, unsigned_payload: bool = False):
        self.region = region
        self.service = service
        self.unsigned_payload = unsigned_payload

    def scope(self, timestamp: str) -> str:
        return f"{timestamp[:8]}/{self.region}/{self.service}/{TERMINATOR}"

    def payload_hash(self, request: Request) -> str:
        declared = request.first_header(H.AMZ_CONTENT_SHA256)
        if declared:
            return declared
        if self.unsigned_payload:
            return UNSIGNED_PAYLOAD
        return hash_payload(request)

    def canonical_request(self, request: Request, payload_hash: str) -> tuple[str, str]:
        pairs = select_headers(request, lambda name: name in _SIGNED or name.startswith(H.AMZ_PREFIX))
        signed_headers = ";".join(k for k, _ in pairs)
        text = "\n".join(
            [
                request.method,
                request.raw_path,
                canonical_query(request.query_params()),
                header_block(pairs),
                signed_headers,
                payload_hash,
            ]
        )
        return text, signed_headers

    def string_to_sign(self, canonical: str, timestamp: str) -> str:
        return "\n".join([ALGORITHM, timestamp, self.scope(timestamp), digest.sha256_hex(canonical.encode("utf-8"))])

    def _signature(self, credentials: Credentials, timestamp: str, text: str) -> str:
        key = signing_key(credentials.secret, timestamp[:8], self.region, self.service)
        return digest.hmac_sha256(key, text).hex()

    def _prepare(self, request: Request, credentials: Credentials, timestamp: str) -> Request:
        request = request.remove_header(H.DATE).replace_header(H.AMZ_DATE, timestamp)
        request = request.replace_header(H.HOST, canonical_host(request))
        if credentials.session_token:
            request = request.replace_header(H.AMZ_SECURITY_TOKEN, credentials.session_token)
        return request

    def _header_context(self, request: Request, credentials: Credentials, timestamp: str):
        canonical, signed_headers = self.canonical_request(request, self.payload_hash(request))
        text = self.string_to_sign(canonical, timestamp)
        ctx = SignatureContext(canonical, text, self._signature(credentials, timestamp, text), H.AUTHORIZATION)
        return ctx, signed_headers

    def canonicalize(self, request: Request, credentials: Credentials, timestamp: str) -> SignatureContext:
        credentials = require_identity(credentials)
        timestamp = _basic_timestamp(timestamp)
        ctx, _ = self._header_context(self._prepare(request, credentials, timestamp), credentials, timestamp)
        return ctx

    def sign(self, request: Request, credentials: Credentials, timestamp: str) -> Request:
        if H.V4_SIGNATURE_PARAM in request.query_keys():
            return request
        credentials = require_identity(credentials)
        timestamp = _basic_timestamp(timestamp)
        request = self._prepare(request, credentials, timestamp)
        ctx, signed_headers = self._header_context(request, credentials, timestamp)
        self._trace(ctx, request)
        auth = (
            f"{ALGORITHM} Credential={credentials.identity}/{self.scope(timestamp)},"
            f"SignedHeaders={signed_headers},Signature={ctx.signature}"
        )
        return request.replace_header(H.AUTHORIZATION, auth)

    def presign(
        self,
        request: Request,
        credentials: Credentials,
        timestamp: str,
        expires_in: int,
        session_token_in_query: Optional[bool] = True,
    ) -> Request:
        """Move the signature into the query string; only the host header is signed."""
        if not 1 <= expires_in <= MAX_PRESIGN_SECONDS:
            raise SigningError(f"expires_in must be between 1 and {MAX_PRESIGN_SECONDS} seconds")
        credentials = require_identity(credentials)
        timestamp = _basic_timestamp(timestamp)
        request = request.remove_header(H.AUTHORIZATION).remove_header(H.DATE).remove_header(H.AMZ_DATE)
        request = request.replace_header(H.HOST, canonical_host(request))
        params = [
            (H.V4_ALGORITHM_PARAM, ALGORITHM),
            (H.V4_CREDENTIAL_PARAM, f"{credentials.identity}/{self.scope(timestamp)}"),
            (H.V4_DATE_PARAM, timestamp),
            (H.V4_EXPIRES_PARAM, str(expires_in)),
            (H.V4_SIGNED_HEADERS_PARAM, "host"),
        ]
        if credentials.session_token and session_token_in_query:
            params.append((H.V4_SECURITY_TOKEN_PARAM, credentials.session_token))
        request = request.with_query(params)
        unsigned = replace(request, headers=((H.HOST, canonical_host(request)),))
        canonical, _ = self.canonical_request(unsigned, UNSIGNED_PAYLOAD)
        text = self.string_to_sign(canonical, timestamp)
        ctx = SignatureContext(canonical, text, self._signature(credentials, timestamp, text), H.V4_SIGNATURE_PARAM)
        self._trace(ctx, request)
        return request.with_query([(H.V4_SIGNATURE_PARAM, ctx.signature)])
