"""Prometheus metrics, Sentry integration, and generative call tracking.

Provides:
- MetricsMiddleware: request counts and latency labelled by route template
- Pipeline metrics: job outcomes per trigger, stage durations, event
  delivery outcomes, stale-job recoveries, jobs in flight
- track_stage() / track_llm_call(): timing context managers
- init_sentry(): Sentry with raw transcript text scrubbed from events
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator, Generator
from contextlib import asynccontextmanager, contextmanager
from typing import Any

import sentry_sdk
from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Pipeline Metrics ─────────────────────────────────────────────────────────

pipeline_jobs_total = Counter(
    "pipeline_jobs_total",
    "Transcript processing runs by terminal outcome",
    ["status", "trigger"],
)

pipeline_stage_duration_seconds = Histogram(
    "pipeline_stage_duration_seconds",
    "Duration of each pipeline stage in seconds",
    ["stage"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

pipeline_events_total = Counter(
    "pipeline_events_total",
    "Stream deliveries by outcome (handled, retried, dead_lettered)",
    ["outcome"],
)

pipeline_stale_jobs_recovered_total = Counter(
    "pipeline_stale_jobs_recovered_total",
    "Jobs reset from processing to pending by the reaper",
)

pipeline_jobs_in_flight = Gauge(
    "pipeline_jobs_in_flight",
    "Jobs currently executing in this process",
)

# ── Generative Call Metrics ──────────────────────────────────────────────────

llm_requests_total = Counter(
    "llm_requests_total",
    "Generative calls by model, pipeline purpose, and status",
    ["model", "purpose", "status"],
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "Generative call duration in seconds",
    ["model", "purpose"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

llm_tokens_used_total = Counter(
    "llm_tokens_used_total",
    "Tokens consumed by generative calls",
    ["model", "token_type"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


def _endpoint_label(request: Request) -> str:
    """Route template (``/api/v1/jobs/{job_id}``) so ids never become labels."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or request.url.path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count and latency for every route except /metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        endpoint = _endpoint_label(request)
        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()
        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Timing Helpers ───────────────────────────────────────────────────────────


@contextmanager
def track_stage(stage: str) -> Generator[None, None, None]:
    """Observe the wall-clock duration of one pipeline stage."""
    start_time = time.perf_counter()
    try:
        yield
    finally:
        pipeline_stage_duration_seconds.labels(stage=stage).observe(
            time.perf_counter() - start_time
        )


class LLMUsage:
    """Token counts reported by a provider response."""

    def __init__(self) -> None:
        self.prompt_tokens = 0
        self.completion_tokens = 0

    def add(self, usage: Any) -> None:
        """Accumulate a LiteLLM ``usage`` object; None is ignored."""
        if usage is None:
            return
        self.prompt_tokens += getattr(usage, "prompt_tokens", 0) or 0
        self.completion_tokens += getattr(usage, "completion_tokens", 0) or 0


@asynccontextmanager
async def track_llm_call(model: str, purpose: str) -> AsyncGenerator[LLMUsage, None]:
    """Time one generative call and count it as success or error.

    Usage:
        async with track_llm_call(model, "classification") as usage:
            response = await litellm.acompletion(...)
            usage.add(response.usage)
    """
    usage = LLMUsage()
    start_time = time.perf_counter()
    status = "success"

    try:
        yield usage
    except Exception:
        status = "error"
        raise
    finally:
        llm_requests_total.labels(model=model, purpose=purpose, status=status).inc()
        llm_request_duration_seconds.labels(model=model, purpose=purpose).observe(
            time.perf_counter() - start_time
        )
        for token_type, count in (
            ("prompt", usage.prompt_tokens),
            ("completion", usage.completion_tokens),
        ):
            if count:
                llm_tokens_used_total.labels(model=model, token_type=token_type).inc(count)


# ── Sentry Integration ───────────────────────────────────────────────────────

# Keys whose values may carry raw meeting content
_SCRUBBED_KEYS = ("transcript_content", "content", "transcript")

_TRACES_SAMPLE_RATES = {"production": 0.1, "staging": 0.5}


def _scrub_transcripts(event: dict, hint: dict) -> dict:
    """Drop raw transcript text from Sentry event extras."""
    extra = event.get("extra")
    if isinstance(extra, dict):
        for key in _SCRUBBED_KEYS:
            if key in extra:
                extra[key] = "[scrubbed]"
    return event


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry; full tracing outside production and staging."""
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=_TRACES_SAMPLE_RATES.get(environment, 1.0),
        integrations=[StarletteIntegration(), FastApiIntegration()],
        before_send=_scrub_transcripts,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
