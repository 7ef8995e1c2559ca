"""Scheme registry: pick the signer variant named by configuration.

  aws-v2           -> AwsV2Signer (HMAC-SHA1, RFC 1123 Date)
  aws-v4           -> AwsV4Signer (HMAC-SHA256 scoped key, ISO 8601 basic x-amz-date)
  shared-key-lite  -> SharedKeyLiteSigner (HMAC-SHA256 with base64 account key, or SAS passthrough)
  oauth2           -> OAuth2Signer (bearer token from the token endpoint)
"""
from __future__ import annotations

from typing import Optional

import httpx

from ..config import CoreConfig, load_config
from ..crypto.timestamp import TimestampCache
from .aws_v2 import AwsV2Signer
from .aws_v4 import AwsV4Signer
from .base import SignatureScheme, Signer
from .oauth import OAuth2Signer, TokenSource
from .shared_key import SharedKeyLiteSigner


def build_signer(cfg: Optional[CoreConfig] = None, token_client: Optional[httpx.Client] = None) -> Signer:
    cfg = cfg or load_config()
    scheme = SignatureScheme(cfg.scheme)
    if scheme is SignatureScheme.AWS_V2:
        return AwsV2Signer(
            auth_tag=cfg.auth_tag,
            header_tag=cfg.header_tag,
            virtual_host_buckets=cfg.virtual_host_buckets,
        )
    if scheme is SignatureScheme.AWS_V4:
        return AwsV4Signer(region=cfg.region, service=cfg.service)
    if scheme is SignatureScheme.SHARED_KEY_LITE:
        return SharedKeyLiteSigner()
    if not cfg.token_endpoint:
        raise ValueError("oauth2 scheme requires token_endpoint")
    tokens = TokenSource(
        cfg.token_endpoint,
        flow=cfg.oauth_flow,
        audience=cfg.audience,
        scopes=cfg.scopes,
        resource=cfg.resource,
        token_duration_s=cfg.token_duration_s,
        client=token_client,
    )
    return OAuth2Signer(tokens)


def build_timestamp_cache(signer: Signer, cfg: Optional[CoreConfig] = None) -> TimestampCache:
    cfg = cfg or load_config()
    return TimestampCache(ttl_seconds=cfg.session_interval, fmt=signer.timestamp_format)
