"""Account-key signing for blob storage (SharedKeyLite) and SAS tokens.

The credential is either the base64 account key, used to HMAC-SHA256 a
string built from a fixed header subset plus the canonicalized resource, or
a shared access signature ("sv=...&sig=...") that is appended verbatim to
every request's query string instead of signing anything.
"""
from __future__ import annotations

import base64
import binascii
import datetime
from typing import Iterable, List, Tuple
from urllib.parse import unquote

from ..crypto import digest
from ..crypto.timestamp import format_iso8601_seconds, parse_timestamp
from ..http import headers as H
from ..http.models import Credentials, Request
from .base import SignatureContext, SignatureScheme, Signer, SigningError, require_identity
from .canonical import header_block, sanitize_line, select_headers

API_VERSION = "2017-11-09"
SAS_DEFAULT_EXPIRES = 15 * 60

# SAS values are sent with "/" left alone and everything else reserved escaped
SAS_SAFE = "/"

_PERMISSIONS = {"GET": "r", "HEAD": "r", "PUT": "w", "POST": "w", "DELETE": "d"}


def is_sas_credential(secret: str) -> bool:
    return "sig=" in secret


def sas_pairs(secret: str) -> List[Tuple[str, str]]:
    token = secret[1:] if secret.startswith("?") else secret
    pairs = []
    for part in token.split("&"):
        if part:
            k, _, v = part.partition("=")
            pairs.append((unquote(k), unquote(v)))
    return pairs


class SharedKeyLiteSigner(Signer):
    scheme = SignatureScheme.SHARED_KEY_LITE
    timestamp_format = "rfc1123"

    def __init__(self, api_version: str = API_VERSION, signed_query_params: Iterable[str] = ("comp",)):
        self.api_version = api_version
        self.signed_query_params = tuple(signed_query_params)

    def resource_path(self, request: Request) -> str:
        """Raw path plus the whitelisted query parameters, e.g. ``/mycontainer?comp=list``."""
        params = dict(request.query_params())
        extras = [f"{k}={params[k]}" for k in self.signed_query_params if k in params]
        path = request.raw_path
        return path + ("?" + "&".join(extras) if extras else "")

    def canonical_resource(self, request: Request, account: str) -> str:
        return "/" + account + self.resource_path(request)

    def string_to_sign(self, request: Request, account: str) -> str:
        lines = [
            request.method,
            sanitize_line(request.first_header(H.CONTENT_MD5, "") or "").strip(),
            sanitize_line(request.first_header(H.CONTENT_TYPE, "") or "").strip(),
            sanitize_line(request.first_header(H.DATE, "") or "").strip(),
        ]
        ms = select_headers(request, lambda name: name.startswith(H.MS_PREFIX))
        return "\n".join(lines) + "\n" + header_block(ms) + self.canonical_resource(request, account)

    def _key(self, credentials: Credentials) -> bytes:
        try:
            return base64.b64decode(credentials.secret, validate=True)
        except binascii.Error as e:
            raise SigningError("account key must be base64") from e

    def _prepare(self, request: Request, timestamp: str) -> Request:
        request = request.replace_header(H.DATE, timestamp)
        if not request.has_header(H.MS_VERSION):
            request = request.with_header(H.MS_VERSION, self.api_version)
        return request

    def canonicalize(self, request: Request, credentials: Credentials, timestamp: str) -> SignatureContext:
        credentials = require_identity(credentials)
        request = self._prepare(request, timestamp)
        text = self.string_to_sign(request, credentials.identity)
        signature = digest.b64(digest.hmac_sha256(self._key(credentials), text))
        return SignatureContext(text, text, signature, H.AUTHORIZATION)

    def sign(self, request: Request, credentials: Credentials, timestamp: str) -> Request:
        credentials = require_identity(credentials)
        secret = credentials.secret_text
        if is_sas_credential(secret):
            return request.with_query(sas_pairs(secret), safe=SAS_SAFE)
        request = self._prepare(request, timestamp)
        ctx = self.canonicalize(request, credentials, timestamp)
        self._trace(ctx, request)
        return request.replace_header(H.AUTHORIZATION, f"SharedKeyLite {credentials.identity}:{ctx.signature}")

    # service SAS

    def sas_string_to_sign(self, permissions: str, expiry: str, resource: str) -> str:
        return "\n".join(
            [
                permissions,
                "",  # start
                expiry,
                resource,
                "",  # identifier
                "",  # ip
                "",  # protocol
                API_VERSION,
                "",  # cache-control
                "",  # content-disposition
                "",  # content-encoding
                "",  # content-language
                "",  # content-type
            ]
        )

    def presign(
        self,
        request: Request,
        credentials: Credentials,
        timestamp: str,
        expires_in: int = SAS_DEFAULT_EXPIRES,
    ) -> Request:
        """Attach a blob service SAS (sv, se, sr, sp, sig) granting the request's method."""
        credentials = require_identity(credentials)
        permissions = _PERMISSIONS.get(request.method)
        if permissions is None:
            raise SigningError(f"no SAS permission for method {request.method}")
        expiry = format_iso8601_seconds(parse_timestamp(timestamp) + datetime.timedelta(seconds=expires_in))
        resource = "/blob/" + credentials.identity + request.raw_path
        text = self.sas_string_to_sign(permissions, expiry, resource)
        signature = digest.b64(digest.hmac_sha256(self._key(credentials), text))
        self._trace(SignatureContext(text, text, signature, H.SAS_SIGNATURE_PARAM), request)
        request = request.replace_header(H.DATE, timestamp)
        return request.with_query(
            [
                (H.SAS_VERSION_PARAM, API_VERSION),
                (H.SAS_EXPIRY_PARAM, expiry),
                (H.SAS_RESOURCE_PARAM, "b"),
                (H.SAS_PERMISSIONS_PARAM, permissions),
                (H.SAS_SIGNATURE_PARAM, signature),
            ],
            safe=SAS_SAFE,
        )
