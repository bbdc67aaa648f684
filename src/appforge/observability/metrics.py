"""Prometheus metrics for the AppForge FastAPI service.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for sessions, conversation turns and tool calls.
"""

from __future__ import annotations

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "appforge_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

SESSIONS_STARTED = Counter(
    "appforge_sessions_started_total",
    "Agent sessions whose stream was opened",
)

SESSIONS_REJECTED = Counter(
    "appforge_sessions_rejected_total",
    "Session bootstrap requests rejected before a stream was opened",
    labelnames=("reason",),
)

CONVERSATION_TURNS = Counter(
    "appforge_conversation_turns_total",
    "Conversational turns by terminal outcome",
    labelnames=("outcome",),
)

TOOL_INVOCATIONS = Counter(
    "appforge_tool_invocations_total",
    "Tool invocations by tool and completion status",
    labelnames=("tool", "status"),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /api/agent/{id}) to a coarse label."""
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if not segs:
        return "/"
    if segs[0] == "api" and len(segs) > 1:
        return "/api/" + segs[1]
    return "/" + segs[0]


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception:
            # Never block the request due to metrics
            pass
        return response

    return middleware
