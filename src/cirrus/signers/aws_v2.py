"""HMAC-SHA1 header signing for S3-style object stores.

String to sign::

    METHOD \\n Content-MD5 \\n Content-Type \\n Date \\n
    <x-amz-* headers, lower-cased and sorted, one per line>
    <canonicalized resource>

The canonicalized resource is the bucket-qualified path followed by any
sub-resource query parameters (acl, uploads, partNumber, ...). With
virtual-hosted addressing the bucket is taken from the Host instead of the
path. When an x-amz-date header is present the Date line is left empty; the
date is then signed as one of the amz headers.
"""
from __future__ import annotations

import datetime
from typing import List, Optional, Tuple
from urllib.parse import unquote

from ..crypto import digest
from ..crypto.timestamp import parse_timestamp
from ..http import headers as H
from ..http.models import Credentials, Request
from .base import SignatureContext, SignatureScheme, Signer, require_identity
from .canonical import header_block, sanitize_line, select_headers

SIGNED_SUBRESOURCES = frozenset(
    {
        "acl",
        "cors",
        "delete",
        "lifecycle",
        "location",
        "logging",
        "notification",
        "partNumber",
        "policy",
        "requestPayment",
        "response-cache-control",
        "response-content-disposition",
        "response-content-encoding",
        "response-content-language",
        "response-content-type",
        "response-expires",
        "restore",
        "tagging",
        "torrent",
        "uploadId",
        "uploads",
        "versionId",
        "versioning",
        "versions",
        "website",
    }
)


class AwsV2Signer(Signer):
    scheme = SignatureScheme.AWS_V2
    timestamp_format = "rfc1123"

    def __init__(
        self,
        auth_tag: str = "AWS",
        header_tag: str = "amz",
        virtual_host_buckets: bool = True,
        service_host: Optional[str] = None,
    ):
        self.auth_tag = auth_tag
        self.header_prefix = f"x-{header_tag.lower()}-"
        self.virtual_host_buckets = virtual_host_buckets
        self.service_host = service_host.lower() if service_host else None

    # resource

    def bucket_from_host(self, host: str) -> Optional[str]:
        host = host.lower()
        if self.service_host:
            if host == self.service_host:
                return None
            suffix = "." + self.service_host
            # a host outside the service domain is a CNAME for the bucket itself
            return host[: -len(suffix)] if host.endswith(suffix) else host
        idx = host.find(".s3")
        if idx > 0:
            return host[:idx]
        return None

    def subresources(self, request: Request) -> str:
        found: List[Tuple[str, Optional[str]]] = []
        for part in request.raw_query.split("&"):
            if not part:
                continue
            key, sep, value = part.partition("=")
            key = unquote(key)
            if key in SIGNED_SUBRESOURCES:
                found.append((key, unquote(value) if sep else None))
        if not found:
            return ""
        found.sort(key=lambda kv: kv[0])
        return "?" + "&".join(k if v is None else f"{k}={v}" for k, v in found)

    def canonical_resource(self, request: Request) -> str:
        path = request.raw_path
        if self.virtual_host_buckets:
            bucket = self.bucket_from_host(request.host)
            if bucket:
                path = "/" + bucket + path
        return path + self.subresources(request)

    # string to sign

    def _date_line(self, request: Request, expires: Optional[int]) -> str:
        if expires is not None:
            return str(expires)
        if request.has_header(self.header_prefix + "date"):
            return ""
        return request.first_header(H.DATE, "") or ""

    def string_to_sign(self, request: Request, expires: Optional[int] = None) -> str:
        lines = [
            request.method,
            sanitize_line(request.first_header(H.CONTENT_MD5, "") or "").strip(),
            sanitize_line(request.first_header(H.CONTENT_TYPE, "") or "").strip(),
            self._date_line(request, expires).strip(),
        ]
        amz = select_headers(request, lambda name: name.startswith(self.header_prefix))
        return "\n".join(lines) + "\n" + header_block(amz) + self.canonical_resource(request)

    def _prepare(self, request: Request, credentials: Credentials, timestamp: str) -> Request:
        request = request.replace_header(H.DATE, timestamp)
        if credentials.session_token:
            request = request.replace_header(self.header_prefix + "security-token", credentials.session_token)
        return request

    def canonicalize(self, request: Request, credentials: Credentials, timestamp: str) -> SignatureContext:
        credentials = require_identity(credentials)
        request = self._prepare(request, credentials, timestamp)
        return self._context(request, credentials, None, H.AUTHORIZATION)

    def _context(self, request: Request, credentials: Credentials, expires: Optional[int], name: str) -> SignatureContext:
        text = self.string_to_sign(request, expires)
        signature = digest.b64(digest.hmac_sha1(credentials.secret, text))
        return SignatureContext(text, text, signature, name)

    def sign(self, request: Request, credentials: Credentials, timestamp: str) -> Request:
        # a pre-signed URL already authenticates the request; a header would be rejected as a duplicate
        if H.V2_SIGNATURE_PARAM in request.query_keys():
            return request
        credentials = require_identity(credentials)
        request = self._prepare(request, credentials, timestamp)
        ctx = self._context(request, credentials, None, H.AUTHORIZATION)
        self._trace(ctx, request)
        return request.replace_header(H.AUTHORIZATION, f"{self.auth_tag} {credentials.identity}:{ctx.signature}")

    def presign(self, request: Request, credentials: Credentials, timestamp: str, expires_in: int) -> Request:
        """Return a request whose URL alone grants access until timestamp + expires_in."""
        credentials = require_identity(credentials)
        now = parse_timestamp(timestamp)
        expires = int((now + datetime.timedelta(seconds=expires_in)).timestamp())
        request = request.remove_header(H.DATE).remove_header(H.AUTHORIZATION)
        if credentials.session_token:
            request = request.replace_header(self.header_prefix + "security-token", credentials.session_token)
        ctx = self._context(request, credentials, expires, H.V2_SIGNATURE_PARAM)
        self._trace(ctx, request)
        return request.with_query(
            [
                (H.V2_ACCESS_KEY_PARAM, credentials.identity),
                (H.V2_EXPIRES_PARAM, str(expires)),
                (H.V2_SIGNATURE_PARAM, ctx.signature),
            ]
        )
