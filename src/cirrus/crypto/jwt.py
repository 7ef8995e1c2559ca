"""Compact JWS assertions for the OAuth2 JWT-bearer grant.

Supported algorithms:
  - RS256 (RSA PKCS#1 v1.5 over SHA-256)
  - ES256 (ECDSA P-256; DER signature converted to the raw r||s form JWS wants)

Header and claims are serialized with sorted keys and no whitespace so the
same claims always produce the same signing input.
"""
from __future__ import annotations

import base64
import json
from typing import Any, Dict

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature


def canonical_json(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def load_private_key(pem: bytes | str):
    if isinstance(pem, str):
        pem = pem.encode()
    return serialization.load_pem_private_key(pem, password=None)


def sign_jwt(claims: Dict[str, Any], private_key_pem: bytes | str, alg: str = "RS256", kid: str | None = None) -> str:
    key = load_private_key(private_key_pem)
    header: Dict[str, Any] = {"alg": alg, "typ": "JWT"}
    if kid:
        header["kid"] = kid
    signing_input = f"{b64url(canonical_json(header))}.{b64url(canonical_json(claims))}".encode("ascii")
    if alg == "RS256":
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ValueError("RS256 requires an RSA private key")
        sig = key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())
    elif alg == "ES256":
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise ValueError("ES256 requires an EC private key")
        r, s = decode_dss_signature(key.sign(signing_input, ec.ECDSA(hashes.SHA256())))
        sig = r.to_bytes(32, "big") + s.to_bytes(32, "big")
    else:
        raise ValueError(f"Unsupported alg: {alg}")
    return signing_input.decode("ascii") + "." + b64url(sig)


def decode_unverified(token: str) -> tuple[Dict[str, Any], Dict[str, Any]]:
    header, claims, _ = token.split(".")
    return json.loads(b64url_decode(header)), json.loads(b64url_decode(claims))


__all__ = ["sign_jwt", "decode_unverified", "canonical_json", "b64url"]
