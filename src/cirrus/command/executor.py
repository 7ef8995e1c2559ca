"""Sign -> send -> classify -> retry loop for a single logical command.

The executor owns no per-command state between calls; everything about one
command lives in a RetryState local to execute(), so a single executor can
serve many threads at once. The only shared pieces are the timestamp cache
and the credential supplier, both safe for concurrent readers. No lock is
held across the network call.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import httpx

from ..config import CoreConfig, load_config
from ..errors import CommandError, ErrorKind, InvalidArgumentError, error_for
from ..http.models import CredentialSupplier, Request
from ..obs.prom import observe_attempt, observe_command, observe_retry
from ..retry.classifiers import Classifier, Decision, Observation, Outcome, classify, default_chain
from ..retry.state import CommandState, RetryState
from ..signers.base import Signer, SigningError
from ..utils.logging import get_logger

log = get_logger("executor")

# token endpoint failures raised while signing that are worth another attempt
RETRYABLE_SIGNING_KINDS = frozenset({ErrorKind.TRANSPORT, ErrorKind.TRANSIENT_SERVER})


@dataclass(frozen=True)
class AttemptRecord:
    attempt: int
    timestamp: str
    status: Optional[int]
    outcome: Outcome
    delay: float
    reason: str


@dataclass
class CommandResult:
    request: Request
    response: Optional[httpx.Response] = None
    error: Optional[CommandError] = None
    attempts: int = 0
    history: List[AttemptRecord] = field(default_factory=list)
    transitions: List[CommandState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def state(self) -> CommandState:
        return CommandState.SUCCESS if self.ok else CommandState.FAILED

    def raise_for_error(self) -> httpx.Response:
        if self.error is not None:
            raise self.error
        if self.response is None:
            raise RuntimeError("command finished without a response")
        return self.response


class CommandExecutor:
    def __init__(
        self,
        signer: Signer,
        credentials: CredentialSupplier,
        timestamps,
        *,
        client: Optional[httpx.Client] = None,
        classifiers: Optional[Sequence[Classifier]] = None,
        config: Optional[CoreConfig] = None,
        max_attempts: Optional[int] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        cfg = config or load_config()
        self.signer = signer
        self.credentials = credentials
        self.timestamps = timestamps
        self.client = client or httpx.Client()
        self._owns_client = client is None
        self.classifiers = list(classifiers) if classifiers is not None else default_chain(cfg)
        self.max_attempts = cfg.max_retries if max_attempts is None else max_attempts
        self._sleep = sleep
        self._clock = clock

    # lifecycle

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "CommandExecutor":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # waiting

    def _wait(self, delay: float, cancel: Optional[threading.Event], deadline: Optional[float]) -> bool:
        """Sleep before the next attempt; True if cancelled meanwhile."""
        if deadline is not None:
            remaining = deadline - self._clock()
            if remaining <= 0:
                return True
            delay = min(delay, remaining)
        if delay > 0:
            if self._sleep is not None:
                self._sleep(delay)
            elif cancel is not None:
                if cancel.wait(delay):
                    return True
            else:
                time.sleep(delay)
        return self._cancelled(cancel, deadline)

    def _cancelled(self, cancel: Optional[threading.Event], deadline: Optional[float]) -> bool:
        if cancel is not None and cancel.is_set():
            return True
        return deadline is not None and self._clock() >= deadline

    # main loop

    def execute(
        self,
        request: Request,
        *,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
        classifiers: Sequence[Classifier] = (),
    ) -> CommandResult:
        """Run the command to a terminal state; failures are returned, not raised."""
        chain = list(classifiers) + self.classifiers
        deadline = self._clock() + timeout if timeout is not None else None
        state = RetryState(max_attempts=self.max_attempts)
        result = CommandResult(request=request)
        started = self._clock()
        scheme = self.signer.scheme.value
        resign = False
        last: Optional[Observation] = None

        def finish(error: Optional[CommandError]) -> CommandResult:
            result.error = error
            result.attempts = state.attempt
            result.transitions.append(CommandState.SUCCESS if error is None else CommandState.FAILED)
            kind = error.kind.value if error is not None else None
            observe_command(scheme=scheme, ok=error is None, kind=kind, latency_ms=(self._clock() - started) * 1000.0)
            if error is not None:
                log.error("%s failed: %s", request.describe(), error)
            return result

        def fail(kind: ErrorKind, message: str, exhausted: bool = False) -> CommandResult:
            resp = last.response if last is not None else None
            return finish(
                error_for(
                    kind,
                    message,
                    status=resp.status_code if resp is not None else None,
                    body=resp.text if resp is not None else None,
                    attempts=state.attempt,
                    exhausted=exhausted,
                    response=resp,
                    cause=last.error if last is not None else None,
                    code=last.error_body.code if last is not None else None,
                )
            )

        while True:
            if self._cancelled(cancel, deadline):
                return fail(ErrorKind.CANCELLED, "cancelled before attempt")
            attempt = state.begin_attempt()
            result.transitions.append(CommandState.BUILDING)
            timestamp = self.timestamps.refresh() if resign else self.timestamps.get()
            response: Optional[httpx.Response] = None
            error: Optional[BaseException] = None
            try:
                signed = self.signer.sign(request, self.credentials(), timestamp)
            except CommandError as e:
                e.attempts = attempt
                if e.kind not in RETRYABLE_SIGNING_KINDS:
                    return finish(e)
                # credential endpoint hiccup: classified like a failed send, nothing goes out
                signed = request
                response, error = e.response, e.cause or e
            except SigningError as e:
                return finish(InvalidArgumentError(f"cannot sign request: {e}", attempts=attempt, cause=e))
            else:
                result.transitions.append(CommandState.SIGNED)
                result.request = signed
                observe_attempt(scheme)
                try:
                    response = self.client.send(signed.to_httpx())
                except (httpx.TransportError, OSError) as e:
                    error = e
                result.transitions.append(CommandState.SENT)
                result.response = response

            last = Observation.of(signed, state, response, error)
            decision: Decision = classify(chain, last)
            result.history.append(
                AttemptRecord(attempt, timestamp, last.status, decision.outcome, decision.delay, decision.reason)
            )
            if decision.outcome is Outcome.SUCCESS:
                return finish(None)
            state.record(decision.kind, last.error_body.code)
            kind = decision.kind or ErrorKind.INVALID_ARGUMENT
            if decision.outcome is Outcome.FATAL:
                return fail(kind, f"{request.describe()} rejected ({decision.reason})")
            if state.exhausted:
                return fail(kind, f"{request.describe()} gave up after {attempt} attempts ({decision.reason})", exhausted=True)

            result.transitions.append(CommandState.RETRYING)
            resign = decision.resign
            if resign:
                state.resigns += 1
            observe_retry(decision.outcome.value, decision.delay, resign)
            log.warning(
                "%s attempt=%d outcome=%s reason=%s retry_in=%.3fs",
                request.describe(), attempt, decision.outcome.value, decision.reason, decision.delay,
            )
            if self._wait(decision.delay, cancel, deadline):
                return fail(ErrorKind.CANCELLED, f"cancelled after {attempt} attempts")

    def invoke(self, request: Request, **kw) -> httpx.Response:
        """execute() and raise the typed CommandError on failure."""
        return self.execute(request, **kw).raise_for_error()
