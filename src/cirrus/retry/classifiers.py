"""Ordered classifier chain deciding what happens after each attempt.

A classifier looks at one Observation (the response or transport error plus
the retry state) and either returns a Decision or None to pass. The chain is
evaluated in order and the first Decision wins; the final fallback always
decides, so every attempt gets exactly one outcome.

Classifiers hold only configuration. They never sleep, log, or touch the
response stream, which keeps each of them a plain function of its input.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import httpx

from ..config import CoreConfig, EventualConsistencyRule
from ..errors import ErrorBody, ErrorKind, parse_error_body
from ..http import headers as H
from ..http.models import Request
from ..utils.ct import ct_eq_hex
from .backoff import Backoff, parse_retry_after
from .state import RetryState


class Outcome(str, Enum):
    SUCCESS = "Success"
    RETRYABLE_TRANSIENT = "RetryableTransient"
    RETRYABLE_SERVER = "RetryableServer"
    RETRYABLE_CLIENT = "RetryableClientSpecific"
    FATAL = "Fatal"

    @property
    def retryable(self) -> bool:
        return self in (Outcome.RETRYABLE_TRANSIENT, Outcome.RETRYABLE_SERVER, Outcome.RETRYABLE_CLIENT)


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    kind: Optional[ErrorKind] = None
    delay: float = 0.0  # seconds before the next attempt
    resign: bool = False  # recompute the timestamp before re-signing
    reason: str = ""


@dataclass(frozen=True)
class Observation:
    request: Request
    state: RetryState
    response: Optional[httpx.Response] = None
    error: Optional[BaseException] = None
    error_body: ErrorBody = field(default_factory=ErrorBody)

    @classmethod
    def of(
        cls,
        request: Request,
        state: RetryState,
        response: Optional[httpx.Response] = None,
        error: Optional[BaseException] = None,
    ) -> "Observation":
        body = parse_error_body(response.text) if response is not None and response.status_code >= 400 else ErrorBody()
        return cls(request=request, state=state, response=response, error=error, error_body=body)

    @property
    def status(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None

    @property
    def text(self) -> str:
        return self.response.text if self.response is not None else ""


Classifier = Callable[[Observation], Optional[Decision]]


def _backoff_kind(status: Optional[int]) -> ErrorKind:
    if status == 404:
        return ErrorKind.NOT_FOUND
    return ErrorKind.INVALID_ARGUMENT


@dataclass(frozen=True)
class IntegrityCheck:
    """2xx whose echoed tree hash differs from the one we computed is fatal."""

    expected_hex: str
    header: str = H.TREE_HASH

    def __call__(self, obs: Observation) -> Optional[Decision]:
        if obs.response is None or not obs.response.is_success:
            return None
        echoed = obs.response.headers.get(self.header)
        if echoed is None or ct_eq_hex(echoed, self.expected_hex):
            return None
        return Decision(Outcome.FATAL, ErrorKind.INTEGRITY, reason=f"{self.header} mismatch")


def success(obs: Observation) -> Optional[Decision]:
    if obs.response is not None and obs.response.status_code < 400:
        return Decision(Outcome.SUCCESS)
    return None


@dataclass(frozen=True)
class TransportFailure:
    backoff: Backoff

    def __call__(self, obs: Observation) -> Optional[Decision]:
        if obs.response is not None or obs.error is None:
            return None
        if isinstance(obs.error, httpx.TransportError) or isinstance(obs.error, OSError):
            return Decision(
                Outcome.RETRYABLE_TRANSIENT,
                ErrorKind.TRANSPORT,
                delay=self.backoff.delay(obs.state.attempt),
                reason=type(obs.error).__name__,
            )
        return Decision(Outcome.FATAL, ErrorKind.TRANSPORT, reason=type(obs.error).__name__)


@dataclass(frozen=True)
class SignatureMismatch:
    """Stale-timestamp rejections get one re-sign with a fresh timestamp."""

    codes: Tuple[str, ...]
    max_resigns: int = 1

    def __call__(self, obs: Observation) -> Optional[Decision]:
        if obs.status not in (400, 401, 403):
            return None
        code = obs.error_body.code
        if code is None or code not in self.codes:
            return None
        if obs.state.resigns >= self.max_resigns:
            return None
        return Decision(Outcome.RETRYABLE_CLIENT, ErrorKind.AUTHORIZATION, resign=True, reason=code)


@dataclass(frozen=True)
class RateLimit:
    backoff: Backoff
    max_wait_s: float

    def __call__(self, obs: Observation) -> Optional[Decision]:
        status = obs.status
        if status not in (429, 503):
            return None
        retry_after = parse_retry_after(obs.response.headers.get(H.RETRY_AFTER))
        if retry_after is None and status == 503:
            return None
        outcome = Outcome.RETRYABLE_CLIENT if status == 429 else Outcome.RETRYABLE_SERVER
        if retry_after is None:
            return Decision(outcome, ErrorKind.THROTTLED, delay=self.backoff.delay(obs.state.attempt), reason="throttled")
        if retry_after > self.max_wait_s:
            return Decision(Outcome.FATAL, ErrorKind.THROTTLED, reason=f"Retry-After {retry_after:g}s exceeds limit")
        return Decision(outcome, ErrorKind.THROTTLED, delay=retry_after, reason="Retry-After")


@dataclass(frozen=True)
class EventualConsistency:
    rules: Tuple[EventualConsistencyRule, ...]
    backoff: Backoff

    def __call__(self, obs: Observation) -> Optional[Decision]:
        status = obs.status
        if status is None or not 400 <= status < 500:
            return None
        path = obs.request.raw_path
        for rule in self.rules:
            if rule.method != obs.request.method:
                continue
            if rule.status is not None and rule.status != status:
                continue
            if rule.path_contains in path and rule.body_contains in obs.text:
                return Decision(
                    Outcome.RETRYABLE_CLIENT,
                    _backoff_kind(status),
                    delay=self.backoff.delay(obs.state.attempt),
                    reason="not yet visible",
                )
        return None


@dataclass(frozen=True)
class ServerError:
    backoff: Backoff

    def __call__(self, obs: Observation) -> Optional[Decision]:
        if obs.status is None or obs.status < 500:
            return None
        return Decision(
            Outcome.RETRYABLE_SERVER,
            ErrorKind.TRANSIENT_SERVER,
            delay=self.backoff.delay(obs.state.attempt),
            reason=str(obs.status),
        )


ACCESS_DENIED_CODES = frozenset({"AccessDenied", "AccessDeniedException", "AuthorizationFailure", "InvalidAccessKeyId"})
NOT_FOUND_CODES = frozenset({"ResourceNotFoundException", "NoSuchKey", "NoSuchBucket", "BlobNotFound", "ContainerNotFound"})
THROTTLE_CODES = frozenset({"ThrottlingException", "LimitExceededException", "SlowDown"})


def client_error(obs: Observation) -> Optional[Decision]:
    status = obs.status
    if status is None or not 400 <= status < 500:
        return None
    code = obs.error_body.code
    if status in (401, 403) or code in ACCESS_DENIED_CODES:
        kind = ErrorKind.AUTHORIZATION
    elif status == 404 or code in NOT_FOUND_CODES:
        kind = ErrorKind.NOT_FOUND
    elif status == 429 or code in THROTTLE_CODES:
        kind = ErrorKind.THROTTLED
    else:
        kind = ErrorKind.INVALID_ARGUMENT
    return Decision(Outcome.FATAL, kind, reason=code or str(status))


def fallback(obs: Observation) -> Decision:
    return Decision(Outcome.FATAL, ErrorKind.INVALID_ARGUMENT, reason="unclassified")


def default_chain(cfg: CoreConfig, backoff: Optional[Backoff] = None) -> List[Classifier]:
    backoff = backoff or Backoff(start_ms=cfg.retry_delay_start_ms)
    return [
        success,
        TransportFailure(backoff),
        SignatureMismatch(tuple(cfg.signature_retry_codes)),
        RateLimit(backoff, float(cfg.max_rate_limit_wait_s)),
        EventualConsistency(tuple(cfg.eventual_consistency), backoff),
        ServerError(backoff),
        client_error,
    ]


def classify(chain: Sequence[Classifier], obs: Observation) -> Decision:
    for classifier in chain:
        decision = classifier(obs)
        if decision is not None:
            return decision
    return fallback(obs)
