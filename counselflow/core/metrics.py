"""Prometheus metrics for the AI gateway."""

import time

from prometheus_client import Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# --- Metrics ---

APP_INFO = Info("counselflow_gateway", "CounselFlow AI gateway info")
APP_INFO.info({"version": "1.0.0", "name": "counselflow_ai_gateway"})

GATEWAY_REQUESTS = Counter(
    "ai_gateway_requests_total",
    "Top-level analysis requests by terminal outcome",
    ["analysis_type", "outcome"],  # outcome: success | cache_hit | exhausted | no_provider | invalid
)

PROVIDER_ATTEMPTS = Counter(
    "ai_gateway_provider_attempts_total",
    "Individual provider invocations (one per hop)",
    ["provider", "outcome"],  # outcome: success | <ProviderErrorKind value>
)

FALLBACK_HOPS = Counter(
    "ai_gateway_fallback_hops_total",
    "Transitions from a failed provider to a fallback provider",
    ["from_provider", "to_provider"],
)

CACHE_LOOKUPS = Counter(
    "ai_gateway_cache_lookups_total",
    "Response cache lookups",
    ["result"],  # hit | miss | error
)

PROVIDER_LATENCY = Histogram(
    "ai_gateway_provider_latency_seconds",
    "Provider call latency in seconds",
    ["provider"],
    buckets=[0.1, 0.25, 0.5, 1, 2.5, 5, 10, 20, 30, 60],
)

USAGE_RECORD_FAILURES = Counter(
    "ai_gateway_usage_record_failures_total",
    "Usage records that could not be persisted",
)

HTTP_REQUESTS = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)


# --- Middleware ---

_USAGE_PREFIX = "/api/v1/ai/usage/"


def _normalize_path(path: str) -> str:
    """Replace user ids in usage paths with {user_id} to avoid high cardinality."""
    if path.startswith(_USAGE_PREFIX):
        parts = path[len(_USAGE_PREFIX) :].split("/", 1)
        if parts[0] and parts[0] != "metrics":
            tail = f"/{parts[1]}" if len(parts) > 1 else ""
            return f"{_USAGE_PREFIX}{{user_id}}{tail}"
    return path


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect HTTP request metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        HTTP_REQUESTS.labels(method=method, path=path, status=response.status_code).inc()
        HTTP_REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
