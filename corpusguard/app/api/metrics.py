"""Metrics and monitoring endpoints.

Denials are expected traffic, not application errors, so they are
counted here rather than logged as failures. Counters are per process;
scrape every instance.
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from corpusguard.app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@dataclass
class RequestMetrics:
    """Metrics for a single endpoint."""

    count: int = 0
    total_duration: float = 0.0
    throttled: int = 0


@dataclass
class MetricsCollector:
    """Collects rate limiter metrics.

    Tracks:
    - Admission checks and denials per preset
    - Denials per preset and tier (quota or burst)
    - Store failures per preset and applied failure policy
    - Request counts and latencies per endpoint
    """

    _requests: Dict[str, RequestMetrics] = field(
        default_factory=lambda: defaultdict(RequestMetrics)
    )
    _checks: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _denials: Dict[Tuple[str, str], int] = field(default_factory=lambda: defaultdict(int))
    _backend_failures: Dict[Tuple[str, str], int] = field(
        default_factory=lambda: defaultdict(int)
    )

    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _start_time: float = field(default_factory=time.time)

    async def record_request(self, endpoint: str, duration: float, status_code: int) -> None:
        """Record a request metric.

        Args:
            endpoint: The endpoint path
            duration: Request duration in seconds
            status_code: HTTP status code
        """
        async with self._lock:
            metrics = self._requests[endpoint]
            metrics.count += 1
            metrics.total_duration += duration
            if status_code == 429:
                metrics.throttled += 1

    async def record_check(self, preset: str, denied_by: Optional[str] = None) -> None:
        """Record an admission check and, if denied, the denying tier."""
        async with self._lock:
            self._checks[preset] += 1
            if denied_by is not None:
                self._denials[(preset, denied_by)] += 1

    async def record_backend_failure(self, preset: str, policy: str) -> None:
        """Record a store failure and the policy applied to it."""
        async with self._lock:
            self._backend_failures[(preset, policy)] += 1

    async def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        async with self._lock:
            presets: Dict[str, Dict[str, Any]] = {}
            for preset, checks in self._checks.items():
                presets[preset] = {"checks": checks, "denied": {}, "backend_failures": {}}
            for (preset, tier), count in self._denials.items():
                presets.setdefault(
                    preset, {"checks": 0, "denied": {}, "backend_failures": {}}
                )["denied"][tier] = count
            for (preset, policy), count in self._backend_failures.items():
                presets.setdefault(
                    preset, {"checks": 0, "denied": {}, "backend_failures": {}}
                )["backend_failures"][policy] = count

            total_checks = sum(self._checks.values())
            total_denied = sum(self._denials.values())

            return {
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "total_checks": total_checks,
                "total_denied": total_denied,
                "denied_rate": round(total_denied / total_checks, 4) if total_checks else 0,
                "total_backend_failures": sum(self._backend_failures.values()),
                "presets": presets,
                "endpoints": {
                    endpoint: {
                        "count": m.count,
                        "avg_duration_ms": round((m.total_duration / m.count) * 1000, 2),
                        "throttled": m.throttled,
                    }
                    for endpoint, m in self._requests.items()
                    if m.count > 0
                },
            }

    async def get_prometheus_metrics(self) -> str:
        """Get metrics in Prometheus text format."""
        async with self._lock:
            lines = []

            lines.append("# HELP ratelimit_checks_total Total admission checks")
            lines.append("# TYPE ratelimit_checks_total counter")
            for preset, count in self._checks.items():
                lines.append(f'ratelimit_checks_total{{preset="{preset}"}} {count}')

            lines.append("\n# HELP ratelimit_denied_total Requests denied by a rate limit tier")
            lines.append("# TYPE ratelimit_denied_total counter")
            for (preset, tier), count in self._denials.items():
                lines.append(
                    f'ratelimit_denied_total{{preset="{preset}",tier="{tier}"}} {count}'
                )

            lines.append(
                "\n# HELP ratelimit_backend_failures_total Store failures by applied policy"
            )
            lines.append("# TYPE ratelimit_backend_failures_total counter")
            for (preset, policy), count in self._backend_failures.items():
                lines.append(
                    f'ratelimit_backend_failures_total{{preset="{preset}",policy="{policy}"}} {count}'
                )

            lines.append("\n# HELP http_requests_total Total number of requests")
            lines.append("# TYPE http_requests_total counter")
            for endpoint, metrics in self._requests.items():
                lines.append(f'http_requests_total{{endpoint="{endpoint}"}} {metrics.count}')

            lines.append("\n# HELP corpusguard_uptime_seconds Process uptime in seconds")
            lines.append("# TYPE corpusguard_uptime_seconds gauge")
            lines.append(
                f"corpusguard_uptime_seconds{{}} {round(time.time() - self._start_time, 2)}"
            )

            return "\n".join(lines) + "\n"


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics_collector() -> None:
    """Reset the global metrics collector (useful for testing)."""
    global _metrics_collector
    _metrics_collector = None


@router.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics() -> PlainTextResponse:
    """Prometheus-compatible metrics endpoint."""
    collector = get_metrics_collector()
    content = await collector.get_prometheus_metrics()
    return PlainTextResponse(
        content=content, media_type="text/plain; version=0.0.4; charset=utf-8"
    )


@router.get("/stats")
async def limiter_stats() -> dict[str, Any]:
    """Detailed rate limiter statistics."""
    return await get_metrics_collector().get_summary()


# Label for requests that matched no route
UNMATCHED_ENDPOINT = "unmatched"


def _endpoint_label(scope) -> str:
    """Route template (``/items/{id}``) the router matched, not the raw path."""
    route = scope.get("route")
    path = getattr(route, "path", None)
    return path if path else UNMATCHED_ENDPOINT


class MetricsMiddleware:
    """ASGI middleware to collect request metrics.

    Example:
        app.add_middleware(MetricsMiddleware)
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.time()
        status_code = 200

        async def wrapped_send(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 200)
            await send(message)

        try:
            await self.app(scope, receive, wrapped_send)
        finally:
            duration = time.time() - start_time
            collector = get_metrics_collector()
            await collector.record_request(_endpoint_label(scope), duration, status_code)
