"""Terminal error kinds surfaced by the command executor.

Every failure carries the last HTTP status and body (when a response was
received at all) plus the number of attempts made, so callers can tell
"never reached the service" apart from "rejected after N attempts".
"""
from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from enum import Enum
from typing import Optional

import httpx
from pydantic import BaseModel


class ErrorKind(str, Enum):
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    THROTTLED = "throttled"
    TRANSIENT_SERVER = "transient_server"
    INVALID_ARGUMENT = "invalid_argument"
    INTEGRITY = "integrity"
    CANCELLED = "cancelled"
    TRANSPORT = "transport"


class CommandError(Exception):
    kind: ErrorKind = ErrorKind.INVALID_ARGUMENT

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        body: Optional[str] = None,
        attempts: int = 0,
        exhausted: bool = False,
        response: Optional[httpx.Response] = None,
        cause: Optional[BaseException] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body
        self.attempts = attempts
        self.exhausted = exhausted
        self.response = response
        self.cause = cause
        self.code = code

    @property
    def reached_service(self) -> bool:
        return self.status is not None

    def __str__(self) -> str:
        parts = [self.message, f"kind={self.kind.value}", f"attempts={self.attempts}"]
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.code:
            parts.append(f"code={self.code}")
        if self.exhausted:
            parts.append("retries exhausted")
        return " ".join(parts)


class AuthorizationError(CommandError):
    kind = ErrorKind.AUTHORIZATION


class NotFoundError(CommandError):
    kind = ErrorKind.NOT_FOUND


class ThrottledError(CommandError):
    kind = ErrorKind.THROTTLED


class TransientServerError(CommandError):
    kind = ErrorKind.TRANSIENT_SERVER


class InvalidArgumentError(CommandError):
    kind = ErrorKind.INVALID_ARGUMENT


class IntegrityError(CommandError):
    kind = ErrorKind.INTEGRITY


class CancelledError(CommandError):
    kind = ErrorKind.CANCELLED


class TransportError(CommandError):
    kind = ErrorKind.TRANSPORT


_BY_KIND = {
    cls.kind: cls
    for cls in (
        AuthorizationError,
        NotFoundError,
        ThrottledError,
        TransientServerError,
        InvalidArgumentError,
        IntegrityError,
        CancelledError,
        TransportError,
    )
}


def error_for(kind: ErrorKind, message: str, **kw) -> CommandError:
    return _BY_KIND[kind](message, **kw)


class ErrorBody(BaseModel):
    code: Optional[str] = None
    message: Optional[str] = None
    type: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.code is not None


def _from_json(text: str) -> Optional[ErrorBody]:
    try:
        obj = json.loads(text)
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None
    nested = obj.get("error")
    if isinstance(nested, dict):
        obj = nested
    code = obj.get("code") or obj.get("Code") or obj.get("__type")
    message = obj.get("message") or obj.get("Message")
    if code is None and message is None:
        return None
    return ErrorBody(
        code=str(code) if code is not None else None,
        message=str(message) if message is not None else None,
        type=obj.get("type") or obj.get("Type"),
    )


def _from_xml(text: str) -> Optional[ErrorBody]:
    try:
        root = ET.fromstring(text)
    except ET.ParseError:
        return None

    def find(tag: str) -> Optional[str]:
        for el in root.iter():
            if el.tag.rsplit("}", 1)[-1] == tag:
                return (el.text or "").strip()
        return None

    code = find("Code")
    message = find("Message")
    if code is None and message is None:
        return None
    return ErrorBody(code=code, message=message)


def parse_error_body(text: Optional[str]) -> ErrorBody:
    """Extract the provider error code from a JSON or XML error document."""
    if not text:
        return ErrorBody()
    stripped = text.lstrip()
    parsed = _from_xml(stripped) if stripped.startswith("<") else _from_json(stripped)
    return parsed or ErrorBody()
