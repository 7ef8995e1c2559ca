"""Prometheus instrumentation for the command executor.

Exports a private registry and helper functions the executor calls after each
attempt and each finished command. Labels stay low-cardinality: scheme,
outcome and error kind only, never URLs or identities.
"""
from __future__ import annotations
from typing import Optional
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# Registry must be created before metric objects reference it.
REGISTRY = CollectorRegistry()

COMMANDS = Counter(
    "cirrus_commands_total",
    "Finished commands by scheme, result and terminal error kind.",
    ["scheme", "result", "kind"],
    registry=REGISTRY,
)
ATTEMPTS = Counter(
    "cirrus_attempts_total",
    "HTTP attempts sent (first sends and retries).",
    ["scheme"],
    registry=REGISTRY,
)
RETRIES = Counter(
    "cirrus_retries_total",
    "Retry decisions by classifier outcome.",
    ["outcome"],
    registry=REGISTRY,
)
RESIGNS = Counter(
    "cirrus_resign_total",
    "Re-signs forced by a stale-signature rejection.",
    registry=REGISTRY,
)
RETRY_DELAY = Histogram(
    "cirrus_retry_delay_seconds",
    "Delay slept before a retry.",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 120),
    registry=REGISTRY,
)
LAT_HIST = Histogram(
    "cirrus_command_latency_ms",
    "End-to-end command latency including retries (ms).",
    ["scheme"],
    buckets=(1, 2, 5, 10, 25, 50, 75, 100, 150, 250, 500, 1000, 2000, 5000, 10000),
    registry=REGISTRY,
)


def observe_attempt(scheme: str):
    ATTEMPTS.labels(scheme=scheme).inc()


def observe_retry(outcome: str, delay_s: float, resign: bool = False):
    RETRIES.labels(outcome=outcome).inc()
    RETRY_DELAY.observe(delay_s)
    if resign:
        RESIGNS.inc()


def observe_command(*, scheme: str, ok: bool, kind: Optional[str], latency_ms: float):
    COMMANDS.labels(scheme=scheme, result="ok" if ok else "fail", kind=kind or "none").inc()
    LAT_HIST.labels(scheme=scheme).observe(latency_ms)


def prometheus_latest() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
