import datetime
import threading

import httpx
import pytest

from cirrus.crypto.timestamp import FixedTimestamp, TimestampCache
from cirrus.errors import (
    AuthorizationError,
    CancelledError,
    ErrorKind,
    InvalidArgumentError,
    TransientServerError,
)
from cirrus.command.executor import CommandExecutor, CommandResult
from cirrus.http.models import Credentials, Request, StaticCredentials
from cirrus.obs.prom import REGISTRY
from cirrus.retry.classifiers import Outcome
from cirrus.retry.state import CommandState
from cirrus.signers.aws_v4 import AwsV4Signer
from cirrus.signers.oauth import OAuth2Signer, TokenSource
from cirrus.signers.shared_key import SharedKeyLiteSigner

URL = "https://glacier.us-east-1.amazonaws.com/-/vaults/photos"
CREDS = StaticCredentials(Credentials.of("AKIDEXAMPLE", "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY"))


def xml_error(code):
    return f"<Error><Code>{code}</Code><Message>rejected</Message></Error>"


class Service:
    """Replays scripted responses and records what was sent."""

    def __init__(self, *script):
        self.script = list(script)
        self.seen = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.seen.append(request)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        # fresh response per send; the last scripted step may repeat
        return httpx.Response(step.status_code, headers=step.headers, content=step.content)


class Sleeps(list):
    def __call__(self, delay):
        self.append(delay)


def executor(service, cfg, timestamps=None, signer=None, **kw):
    return CommandExecutor(
        signer or AwsV4Signer("us-east-1", "glacier"),
        CREDS,
        timestamps or FixedTimestamp("20120525T002453Z"),
        client=httpx.Client(transport=httpx.MockTransport(service)),
        config=cfg,
        **kw,
    )


def test_success_first_try(cfg):
    service = Service(httpx.Response(200, text="ok"))
    sleeps = Sleeps()
    result = executor(service, cfg, sleep=sleeps).execute(Request.build("GET", URL))
    assert result.ok and result.state is CommandState.SUCCESS
    assert result.attempts == 1
    assert result.response.text == "ok"
    assert sleeps == []
    assert result.transitions == [CommandState.BUILDING, CommandState.SIGNED, CommandState.SENT, CommandState.SUCCESS]
    assert service.seen[0].headers["authorization"].startswith("AWS4-HMAC-SHA256 Credential=AKIDEXAMPLE/20120525/")


def test_retries_stop_after_max_plus_one(cfg):
    service = Service(httpx.Response(500))
    sleeps = Sleeps()
    result = executor(service, cfg, sleep=sleeps).execute(Request.build("GET", URL))
    assert not result.ok
    assert isinstance(result.error, TransientServerError)
    assert result.error.exhausted
    assert result.error.status == 500
    assert result.attempts == result.error.attempts == cfg.max_retries + 1
    assert len(service.seen) == cfg.max_retries + 1
    assert len(sleeps) == cfg.max_retries
    assert all(0 < d <= 0.5 for d in sleeps)
    assert result.transitions[-1] is CommandState.FAILED
    assert result.transitions.count(CommandState.RETRYING) == cfg.max_retries


def test_zero_retries_means_single_attempt(cfg):
    service = Service(httpx.Response(500))
    result = executor(service, cfg, max_attempts=0, sleep=Sleeps()).execute(Request.build("GET", URL))
    assert result.attempts == 1
    assert len(service.seen) == 1


def test_retry_after_is_honoured_exactly(cfg):
    service = Service(httpx.Response(429, headers={"Retry-After": "5"}), httpx.Response(200))
    sleeps = Sleeps()
    result = executor(service, cfg, sleep=sleeps).execute(Request.build("GET", URL))
    assert result.ok
    assert sleeps == [5.0]
    assert [h.outcome for h in result.history] == [Outcome.RETRYABLE_CLIENT, Outcome.SUCCESS]


def test_stale_signature_resigns_with_fresh_timestamp(cfg):
    ticks = iter(range(100))
    base = datetime.datetime(2012, 5, 25, 0, 24, 53, tzinfo=datetime.timezone.utc)
    timestamps = TimestampCache(
        ttl_seconds=3600,
        fmt="iso8601-basic",
        now=lambda: base + datetime.timedelta(minutes=next(ticks)),
    )
    service = Service(
        httpx.Response(403, text=xml_error("RequestTimeTooSkewed")),
        httpx.Response(400, text=xml_error("InvalidArgument")),
    )
    sleeps = Sleeps()
    result = executor(service, cfg, timestamps=timestamps, sleep=sleeps).execute(Request.build("GET", URL))

    dates = [r.headers["x-amz-date"] for r in service.seen]
    assert dates == ["20120525T002453Z", "20120525T002553Z"]
    assert service.seen[0].headers["authorization"] != service.seen[1].headers["authorization"]
    assert sleeps == []
    assert isinstance(result.error, InvalidArgumentError)
    assert result.error.code == "InvalidArgument"
    assert result.attempts == 2
    assert not result.error.exhausted


def test_repeated_signature_rejection_is_authorization_failure(cfg):
    service = Service(httpx.Response(403, text=xml_error("SignatureDoesNotMatch")))
    result = executor(service, cfg, sleep=Sleeps()).execute(Request.build("GET", URL))
    assert isinstance(result.error, AuthorizationError)
    assert result.attempts == 2
    with pytest.raises(AuthorizationError):
        result.raise_for_error()


def test_transport_error_is_retried(cfg):
    service = Service(httpx.ConnectError("connection refused"), httpx.Response(204))
    sleeps = Sleeps()
    result = executor(service, cfg, sleep=sleeps).execute(Request.build("GET", URL))
    assert result.ok
    assert result.attempts == 2
    assert len(sleeps) == 1
    assert result.history[0].status is None
    assert result.history[0].outcome is Outcome.RETRYABLE_TRANSIENT


def test_cancelled_before_first_attempt_sends_nothing(cfg):
    service = Service(httpx.Response(200))
    cancel = threading.Event()
    cancel.set()
    result = executor(service, cfg).execute(Request.build("GET", URL), cancel=cancel)
    assert isinstance(result.error, CancelledError)
    assert result.attempts == 0
    assert not result.error.reached_service
    assert service.seen == []


def test_cancel_during_backoff_stops_retrying(cfg):
    cancel = threading.Event()

    def service(request):
        cancel.set()
        return httpx.Response(500)

    sleeps = Sleeps()
    result = executor(service, cfg, sleep=sleeps).execute(Request.build("GET", URL), cancel=cancel)
    assert result.error.kind is ErrorKind.CANCELLED
    assert result.attempts == 1
    assert result.error.status == 500
    assert len(sleeps) == 1


def test_deadline_bounds_the_retry_loop(cfg):
    now = [0.0]

    def sleep(delay):
        now[0] += delay

    service = Service(httpx.Response(503, headers={"Retry-After": "30"}))
    ex = executor(service, cfg, sleep=sleep, clock=lambda: now[0])
    result = ex.execute(Request.build("GET", URL), timeout=45)
    assert isinstance(result.error, CancelledError)
    assert result.attempts == 2
    assert now[0] == pytest.approx(45.0)


def test_signing_failure_never_reaches_service(cfg):
    service = Service(httpx.Response(200))
    bad = StaticCredentials(Credentials.of("account", "not base64!"))
    ex = CommandExecutor(
        SharedKeyLiteSigner(),
        bad,
        FixedTimestamp("Thu, 05 Jun 2008 16:38:19 GMT"),
        client=httpx.Client(transport=httpx.MockTransport(service)),
        config=cfg,
    )
    result = ex.execute(Request.build("GET", "https://account.blob.core.windows.net/c/b"))
    assert isinstance(result.error, InvalidArgumentError)
    assert result.attempts == 1
    assert result.error.status is None
    assert service.seen == []


def test_metrics_count_attempts_and_commands(cfg):
    def sample(name, labels):
        return REGISTRY.get_sample_value(name, labels) or 0.0

    attempts = sample("cirrus_attempts_total", {"scheme": "aws-v4"})
    failed = sample("cirrus_commands_total", {"scheme": "aws-v4", "result": "fail", "kind": "not_found"})
    service = Service(httpx.Response(404, text=xml_error("NoSuchKey")))
    executor(service, cfg, sleep=Sleeps()).execute(Request.build("GET", URL))
    assert sample("cirrus_attempts_total", {"scheme": "aws-v4"}) == attempts + 1
    assert sample("cirrus_commands_total", {"scheme": "aws-v4", "result": "fail", "kind": "not_found"}) == failed + 1


def test_invoke_returns_response_or_raises(cfg):
    ok = executor(Service(httpx.Response(200, text="body")), cfg)
    assert ok.invoke(Request.build("GET", URL)).text == "body"
    denied = executor(Service(httpx.Response(403, text=xml_error("AccessDenied"))), cfg)
    with pytest.raises(AuthorizationError) as ei:
        denied.invoke(Request.build("GET", URL))
    assert ei.value.attempts == 1
    assert ei.value.code == "AccessDenied"


def _token_signer(*script):
    endpoint = Service(*script)
    tokens = TokenSource(
        "https://login.example.com/oauth2/token",
        flow="client_secret",
        client=httpx.Client(transport=httpx.MockTransport(endpoint)),
    )
    return OAuth2Signer(tokens), endpoint


def test_transient_token_endpoint_failure_is_retried(cfg):
    signer, endpoint = _token_signer(
        httpx.Response(503, json={"error": "temporarily_unavailable"}),
        httpx.Response(200, json={"access_token": "tok-1", "token_type": "bearer", "expires_in": 3600}),
    )
    service = Service(httpx.Response(200, text="ok"))
    sleeps = Sleeps()
    result = executor(service, cfg, signer=signer, sleep=sleeps).execute(Request.build("GET", URL))
    assert result.ok
    assert result.attempts == 2
    assert len(sleeps) == 1
    assert len(endpoint.seen) == 2
    assert [r.headers["authorization"] for r in service.seen] == ["Bearer tok-1"]
    assert result.history[0].outcome is Outcome.RETRYABLE_SERVER


def test_unreachable_token_endpoint_is_retried(cfg):
    signer, endpoint = _token_signer(
        httpx.ConnectError("connection refused"),
        httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600}),
    )
    service = Service(httpx.Response(204))
    result = executor(service, cfg, signer=signer, sleep=Sleeps()).execute(Request.build("GET", URL))
    assert result.ok
    assert result.attempts == 2
    assert result.history[0].outcome is Outcome.RETRYABLE_TRANSIENT


def test_rejected_token_request_is_not_retried(cfg):
    signer, endpoint = _token_signer(httpx.Response(400, json={"error": "invalid_client"}))
    service = Service(httpx.Response(200))
    sleeps = Sleeps()
    result = executor(service, cfg, signer=signer, sleep=sleeps).execute(Request.build("GET", URL))
    assert isinstance(result.error, AuthorizationError)
    assert result.attempts == 1
    assert sleeps == []
    assert len(endpoint.seen) == 1
    assert service.seen == []


def test_raise_for_error_without_response_is_runtime_error():
    result = CommandResult(request=Request.build("GET", URL))
    with pytest.raises(RuntimeError):
        result.raise_for_error()
