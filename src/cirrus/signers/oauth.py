"""Bearer-token authorization for OAuth2-fronted services.

Nothing about the request is signed here. The credential is exchanged at the
token endpoint (JWT-bearer assertion or client id/secret), the token is
cached per (identity, audience, resource, scope), and every request gets
``Authorization: <token_type> <access_token>``.
"""
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

import httpx
from pydantic import BaseModel, ValidationError

from ..crypto.jwt import sign_jwt
from ..errors import AuthorizationError, TransientServerError, TransportError
from ..http import headers as H
from ..http.models import Credentials, Request
from ..utils.logging import get_logger
from ..utils.memo import ExpiringValue
from .base import SignatureContext, SignatureScheme, Signer, SigningError, require_identity

log = get_logger("oauth")

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
CLIENT_CREDENTIALS_GRANT = "client_credentials"

# refresh this long before the server-side expiry
EXPIRY_MARGIN_S = 30


class Token(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None

    def header(self) -> str:
        # servers answer "bearer" in any case; the header scheme is always "Bearer"
        scheme = "Bearer" if self.token_type.lower() == "bearer" else self.token_type
        return f"{scheme} {self.access_token}"


def cache_seconds(duration: int) -> int:
    return duration - EXPIRY_MARGIN_S if duration > EXPIRY_MARGIN_S else duration


@dataclass(frozen=True)
class TokenKey:
    identity: str
    audience: Optional[str]
    resource: Optional[str]
    scope: Optional[str]


class TokenSource:
    """Fetches and caches tokens; one in-flight fetch per key."""

    def __init__(
        self,
        token_endpoint: str,
        flow: str = "jwt",
        audience: Optional[str] = None,
        scopes: Sequence[str] = (),
        resource: Optional[str] = None,
        token_duration_s: int = 3600,
        client: Optional[httpx.Client] = None,
        now: Callable[[], float] = time.time,
        clock: Callable[[], float] = time.monotonic,
    ):
        if flow not in ("jwt", "client_secret"):
            raise ValueError("flow must be 'jwt' or 'client_secret'")
        self.token_endpoint = token_endpoint
        self.flow = flow
        self.audience = audience or token_endpoint
        self.scope = " ".join(scopes) or None
        self.resource = resource
        self.token_duration_s = token_duration_s
        self._client = client or httpx.Client()
        self._now = now
        self._clock = clock
        self._cache: Dict[TokenKey, ExpiringValue[Token]] = {}
        self._latest: Dict[TokenKey, Credentials] = {}
        self._lock = threading.Lock()

    def _form(self, credentials: Credentials) -> Dict[str, str]:
        if self.flow == "client_secret":
            form = {
                "grant_type": CLIENT_CREDENTIALS_GRANT,
                "client_id": credentials.identity,
                "client_secret": credentials.secret_text,
            }
            if self.resource:
                form["resource"] = self.resource
        else:
            issued = int(self._now())
            claims = {
                "iss": credentials.identity,
                "sub": credentials.identity,
                "aud": self.audience,
                "iat": issued,
                "exp": issued + self.token_duration_s,
                "jti": str(uuid.uuid4()),
            }
            if self.scope:
                claims["scope"] = self.scope
            form = {"grant_type": JWT_BEARER_GRANT, "assertion": sign_jwt(claims, credentials.secret)}
        if self.scope:
            form["scope"] = self.scope
        return form

    def fetch(self, credentials: Credentials) -> Token:
        try:
            resp = self._client.post(self.token_endpoint, data=self._form(credentials), headers={"Accept": "application/json"})
        except httpx.TransportError as e:
            raise TransportError(f"token endpoint unreachable: {e}", cause=e) from e
        if 400 <= resp.status_code < 500:
            raise AuthorizationError("token request rejected", status=resp.status_code, body=resp.text, response=resp)
        if resp.status_code >= 500:
            raise TransientServerError("token endpoint failed", status=resp.status_code, body=resp.text, response=resp)
        try:
            token = Token.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise AuthorizationError("malformed token response", status=resp.status_code, body=resp.text, cause=e) from e
        log.info("token issued identity=%s expires_in=%s", credentials.identity, token.expires_in)
        return token

    def _ttl(self, token: Token) -> float:
        return token.expires_in or self.token_duration_s

    def _refresh_ahead(self, token: Token) -> float:
        duration = self._ttl(token)
        return duration - cache_seconds(duration)

    def get(self, credentials: Credentials) -> Token:
        key = TokenKey(credentials.identity, self.audience, self.resource, self.scope)
        with self._lock:
            # refetches use whatever credentials the caller presented last
            self._latest[key] = credentials
            slot = self._cache.get(key)
            if slot is None:
                slot = ExpiringValue(
                    lambda k=key, c=credentials: self.fetch(self._latest.get(k, c)),
                    ttl=self._ttl,
                    refresh_ahead=self._refresh_ahead,
                    clock=self._clock,
                )
                self._cache[key] = slot
        return slot.get()

    def invalidate(self) -> None:
        with self._lock:
            self._cache.clear()
            self._latest.clear()


class OAuth2Signer(Signer):
    scheme = SignatureScheme.OAUTH2
    timestamp_format = "rfc1123"

    def __init__(self, tokens: TokenSource):
        self.tokens = tokens

    def canonicalize(self, request: Request, credentials: Credentials, timestamp: str) -> SignatureContext:
        credentials = require_identity(credentials)
        token = self.tokens.get(credentials)
        return SignatureContext("", "", token.access_token, H.AUTHORIZATION)

    def sign(self, request: Request, credentials: Credentials, timestamp: str) -> Request:
        credentials = require_identity(credentials)
        if not credentials.secret:
            raise SigningError("oauth2 credentials need a private key or client secret")
        token = self.tokens.get(credentials)
        return request.replace_header(H.AUTHORIZATION, token.header())
