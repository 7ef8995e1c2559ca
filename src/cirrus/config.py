"""Core configuration loader.

Loads from environment first, then optional config/cirrus.yml if present.
Environment variables always win over the file; anything missing falls back
to the defaults below.
"""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()

MiB = 1 << 20
GiB = 1 << 30

# Part size guardrails (per-provider values may override via config)
MIN_PART_SIZE = int(os.getenv("CIRRUS_MIN_PART_SIZE", str(MiB)))
MAX_PART_SIZE = int(os.getenv("CIRRUS_MAX_PART_SIZE", str(4 * GiB)))
MAX_PARTS = int(os.getenv("CIRRUS_MAX_PARTS", "10000"))

CONFIG_FILE = os.getenv("CIRRUS_CONFIG_FILE", os.path.join(os.getcwd(), "config", "cirrus.yml"))

SCHEMES = ("aws-v2", "aws-v4", "shared-key-lite", "oauth2")


class EventualConsistencyRule(BaseModel):
    """Body substring that marks a 4xx as "not visible yet" for one method+path."""

    method: str
    path_contains: str
    body_contains: str
    status: Optional[int] = None

    @field_validator("method")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()


class CoreConfig(BaseModel):
    identity: str = ""
    credential: str = ""
    session_token: Optional[str] = None

    scheme: str = "aws-v4"
    region: str = "us-east-1"
    service: str = "s3"
    auth_tag: str = "AWS"
    header_tag: str = "amz"
    virtual_host_buckets: bool = True

    session_interval: int = Field(60, ge=1)
    max_retries: int = Field(5, ge=0)
    retry_delay_start_ms: int = Field(50, ge=0)
    max_rate_limit_wait_s: int = Field(120, ge=0)

    # below one tree-hash chunk the per-part hashes no longer compose
    min_part_size: int = Field(MIN_PART_SIZE, ge=MiB)
    max_part_size: int = Field(MAX_PART_SIZE, gt=0)
    max_parts: int = Field(MAX_PARTS, gt=0)

    presign_expires_s: int = Field(900, gt=0)
    eventual_consistency: List[EventualConsistencyRule] = Field(default_factory=list)
    signature_retry_codes: List[str] = Field(
        default_factory=lambda: ["RequestTimeTooSkewed", "RequestExpired", "SignatureDoesNotMatch"]
    )

    # OAuth2 (scheme D)
    token_endpoint: Optional[str] = None
    audience: Optional[str] = None
    scopes: List[str] = Field(default_factory=list)
    resource: Optional[str] = None
    oauth_flow: str = "jwt"
    token_duration_s: int = Field(3600, gt=0)

    @field_validator("scheme")
    @classmethod
    def _known_scheme(cls, v: str) -> str:
        v = v.lower()
        if v not in SCHEMES:
            raise ValueError(f"unknown signature scheme {v!r}; expected one of {', '.join(SCHEMES)}")
        return v

    @field_validator("oauth_flow")
    @classmethod
    def _known_flow(cls, v: str) -> str:
        v = v.lower()
        if v not in ("jwt", "client_secret"):
            raise ValueError("oauth_flow must be 'jwt' or 'client_secret'")
        return v

    @field_validator("max_part_size")
    @classmethod
    def _bounds_ordered(cls, v: int, info) -> int:
        lo = info.data.get("min_part_size")
        if lo is not None and v < lo:
            raise ValueError("max_part_size must be >= min_part_size")
        return v


_CONFIG: CoreConfig | None = None
_SNAPSHOT: Dict[str, str] = {}

_ENV_MAP = {
    "identity": "CIRRUS_IDENTITY",
    "credential": "CIRRUS_CREDENTIAL",
    "session_token": "CIRRUS_SESSION_TOKEN",
    "scheme": "CIRRUS_SCHEME",
    "region": "CIRRUS_REGION",
    "service": "CIRRUS_SERVICE",
    "auth_tag": "CIRRUS_AUTH_TAG",
    "header_tag": "CIRRUS_HEADER_TAG",
    "virtual_host_buckets": "CIRRUS_VIRTUAL_HOST_BUCKETS",
    "session_interval": "CIRRUS_SESSION_INTERVAL",
    "max_retries": "CIRRUS_MAX_RETRIES",
    "retry_delay_start_ms": "CIRRUS_RETRY_DELAY_START_MS",
    "max_rate_limit_wait_s": "CIRRUS_MAX_RATE_LIMIT_WAIT_S",
    "min_part_size": "CIRRUS_MIN_PART_SIZE",
    "max_part_size": "CIRRUS_MAX_PART_SIZE",
    "max_parts": "CIRRUS_MAX_PARTS",
    "presign_expires_s": "CIRRUS_PRESIGN_EXPIRES_S",
    "token_endpoint": "CIRRUS_TOKEN_ENDPOINT",
    "audience": "CIRRUS_AUDIENCE",
    "resource": "CIRRUS_RESOURCE",
    "oauth_flow": "CIRRUS_OAUTH_FLOW",
    "token_duration_s": "CIRRUS_TOKEN_DURATION_S",
}

# Comma separated lists
_LIST_ENV = {
    "scopes": "CIRRUS_SCOPES",
    "signature_retry_codes": "CIRRUS_SIGNATURE_RETRY_CODES",
}


def _env_snapshot() -> Dict[str, str]:
    names = list(_ENV_MAP.values()) + list(_LIST_ENV.values()) + ["CIRRUS_CONFIG_FILE"]
    return {n: os.environ[n] for n in names if n in os.environ}


def _read_file(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def load_config(path: str | None = None) -> CoreConfig:
    """Return the active configuration, rebuilding it if the environment moved."""
    global _CONFIG, _SNAPSHOT
    snapshot = _env_snapshot()
    if _CONFIG is not None and path is None and snapshot == _SNAPSHOT:
        return _CONFIG
    data: Dict[str, Any] = _read_file(path or os.getenv("CIRRUS_CONFIG_FILE", CONFIG_FILE))
    for field, env in _ENV_MAP.items():
        if env in os.environ:
            data[field] = os.environ[env]
    for field, env in _LIST_ENV.items():
        if env in os.environ:
            data[field] = [p.strip() for p in os.environ[env].split(",") if p.strip()]
    cfg = CoreConfig.model_validate(data)
    if path is None:
        _CONFIG = cfg
        _SNAPSHOT = snapshot
    return cfg


def reset_config() -> None:
    global _CONFIG, _SNAPSHOT
    _CONFIG = None
    _SNAPSHOT = {}
