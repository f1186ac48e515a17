"""Prometheus metrics for IdeaVerdict.

Thread-safe counters, gauges and a latency histogram exposed in the
Prometheus text format at ``GET /metrics``.

Example:
    >>> from ideaverdict.metrics import metrics, track_request
    >>>
    >>> with track_request("evaluate") as outcome:
    ...     response = await handler.handle(request)
    ...     outcome.status_code = response.status_code
    >>>
    >>> metrics.get_prometheus_metrics()

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field

CAPABILITIES = ("evaluate", "structure", "chat")


@dataclass
class HistogramBucket:
    """Histogram bucket for latency tracking."""

    le: float  # Less than or equal
    count: int = 0


@dataclass
class MetricsState:
    """Thread-safe metrics state container."""

    # Counters
    requests_total: dict[tuple[str, int], int] = field(default_factory=lambda: defaultdict(int))
    cache_hits: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    cache_misses: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    gateway_calls: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    gateway_fallbacks: int = 0
    cooldown_trips: int = 0
    verdicts: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    # Gauges
    active_requests: int = 0
    cooldown_active: int = 0

    # Histograms (latency in seconds)
    request_latency_sum: dict[str, float] = field(default_factory=lambda: defaultdict(float))
    request_latency_count: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    request_latency_buckets: dict[str, list[HistogramBucket]] = field(default_factory=dict)

    # Info
    start_time: float = field(default_factory=time.time)

    _lock: threading.Lock = field(default_factory=threading.Lock)


class PrometheusMetrics:
    """Prometheus metrics collector for IdeaVerdict.

    Attributes:
        state: The current metrics state.
    """

    # Upstream model calls dominate latency, so buckets reach well past 10s
    DEFAULT_BUCKETS = [0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0]

    def __init__(self) -> None:
        """Initialize metrics collector."""
        self.state = MetricsState()
        self._init_buckets()

    def _init_buckets(self) -> None:
        """Initialize histogram buckets for all capabilities."""
        for capability in CAPABILITIES:
            self.state.request_latency_buckets[capability] = [
                HistogramBucket(le=b) for b in self.DEFAULT_BUCKETS
            ]
            self.state.request_latency_buckets[capability].append(
                HistogramBucket(le=float("inf"))
            )

    def inc_requests(self, capability: str, status_code: int) -> None:
        """Count a finished request by capability and HTTP status."""
        with self.state._lock:
            self.state.requests_total[(capability, status_code)] += 1

    def observe_latency(self, capability: str, latency_seconds: float) -> None:
        """Record request latency."""
        with self.state._lock:
            self.state.request_latency_sum[capability] += latency_seconds
            self.state.request_latency_count[capability] += 1

            if capability in self.state.request_latency_buckets:
                for bucket in self.state.request_latency_buckets[capability]:
                    if latency_seconds <= bucket.le:
                        bucket.count += 1

    def inc_cache(self, capability: str, hit: bool) -> None:
        with self.state._lock:
            if hit:
                self.state.cache_hits[capability] += 1
            else:
                self.state.cache_misses[capability] += 1

    def inc_gateway_call(self, outcome: str) -> None:
        """Count an upstream call by outcome ('success', 'quota', 'error', 'blocked')."""
        with self.state._lock:
            self.state.gateway_calls[outcome] += 1

    def inc_gateway_fallback(self) -> None:
        with self.state._lock:
            self.state.gateway_fallbacks += 1

    def inc_cooldown_trip(self) -> None:
        with self.state._lock:
            self.state.cooldown_trips += 1

    def set_cooldown_active(self, active: bool) -> None:
        with self.state._lock:
            self.state.cooldown_active = 1 if active else 0

    def inc_verdict(self, verdict: str) -> None:
        with self.state._lock:
            self.state.verdicts[verdict] += 1

    def inc_active_requests(self) -> None:
        with self.state._lock:
            self.state.active_requests += 1

    def dec_active_requests(self) -> None:
        with self.state._lock:
            self.state.active_requests = max(0, self.state.active_requests - 1)

    def get_prometheus_metrics(self) -> str:
        """Generate Prometheus text format metrics."""
        lines: list[str] = []

        with self.state._lock:
            lines.append("# HELP ideaverdict_requests_total Total number of requests")
            lines.append("# TYPE ideaverdict_requests_total counter")
            for (capability, status_code), count in sorted(self.state.requests_total.items()):
                lines.append(
                    f'ideaverdict_requests_total{{capability="{capability}",status="{status_code}"}} {count}'
                )

            lines.append("")
            lines.append("# HELP ideaverdict_cache_hits_total Response cache hits")
            lines.append("# TYPE ideaverdict_cache_hits_total counter")
            for capability, count in sorted(self.state.cache_hits.items()):
                lines.append(f'ideaverdict_cache_hits_total{{capability="{capability}"}} {count}')

            lines.append("")
            lines.append("# HELP ideaverdict_cache_misses_total Response cache misses")
            lines.append("# TYPE ideaverdict_cache_misses_total counter")
            for capability, count in sorted(self.state.cache_misses.items()):
                lines.append(f'ideaverdict_cache_misses_total{{capability="{capability}"}} {count}')

            lines.append("")
            lines.append("# HELP ideaverdict_gateway_calls_total Upstream model calls by outcome")
            lines.append("# TYPE ideaverdict_gateway_calls_total counter")
            for outcome, count in sorted(self.state.gateway_calls.items()):
                lines.append(f'ideaverdict_gateway_calls_total{{outcome="{outcome}"}} {count}')

            lines.append("")
            lines.append("# HELP ideaverdict_gateway_fallbacks_total Calls served by the secondary key")
            lines.append("# TYPE ideaverdict_gateway_fallbacks_total counter")
            lines.append(f"ideaverdict_gateway_fallbacks_total {self.state.gateway_fallbacks}")

            lines.append("")
            lines.append("# HELP ideaverdict_cooldown_trips_total Times both keys were exhausted")
            lines.append("# TYPE ideaverdict_cooldown_trips_total counter")
            lines.append(f"ideaverdict_cooldown_trips_total {self.state.cooldown_trips}")

            lines.append("")
            lines.append("# HELP ideaverdict_cooldown_active Whether the quota cooldown is active")
            lines.append("# TYPE ideaverdict_cooldown_active gauge")
            lines.append(f"ideaverdict_cooldown_active {self.state.cooldown_active}")

            lines.append("")
            lines.append("# HELP ideaverdict_verdicts_total Derived verdicts by category")
            lines.append("# TYPE ideaverdict_verdicts_total counter")
            for verdict, count in sorted(self.state.verdicts.items()):
                lines.append(f'ideaverdict_verdicts_total{{verdict="{verdict}"}} {count}')

            lines.append("")
            lines.append("# HELP ideaverdict_active_requests Current number of active requests")
            lines.append("# TYPE ideaverdict_active_requests gauge")
            lines.append(f"ideaverdict_active_requests {self.state.active_requests}")

            lines.append("")
            lines.append("# HELP ideaverdict_uptime_seconds Server uptime in seconds")
            lines.append("# TYPE ideaverdict_uptime_seconds gauge")
            uptime = time.time() - self.state.start_time
            lines.append(f"ideaverdict_uptime_seconds {uptime:.3f}")

            lines.append("")
            lines.append("# HELP ideaverdict_request_latency_seconds Request latency in seconds")
            lines.append("# TYPE ideaverdict_request_latency_seconds histogram")
            for capability, buckets in self.state.request_latency_buckets.items():
                for bucket in buckets:
                    le_str = "+Inf" if bucket.le == float("inf") else f"{bucket.le}"
                    lines.append(
                        f'ideaverdict_request_latency_seconds_bucket{{capability="{capability}",le="{le_str}"}} {bucket.count}'
                    )
                lines.append(
                    f'ideaverdict_request_latency_seconds_sum{{capability="{capability}"}} {self.state.request_latency_sum[capability]:.6f}'
                )
                lines.append(
                    f'ideaverdict_request_latency_seconds_count{{capability="{capability}"}} {self.state.request_latency_count[capability]}'
                )

        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        self.state = MetricsState()
        self._init_buckets()


# Global metrics instance
metrics = PrometheusMetrics()


@dataclass
class RequestOutcome:
    """Mutable slot the tracked block fills in with its final status code."""

    status_code: int = 500


@contextmanager
def track_request(capability: str) -> Generator[RequestOutcome, None, None]:
    """Context manager for tracking request metrics.

    Tracks request count by status code, latency, and active requests. An
    exception escaping the block is counted as a 500.

    Example:
        >>> with track_request("chat") as outcome:
        ...     outcome.status_code = 200
    """
    metrics.inc_active_requests()
    start_time = time.perf_counter()
    outcome = RequestOutcome()

    try:
        yield outcome
    except Exception:
        outcome.status_code = 500
        raise
    finally:
        latency = time.perf_counter() - start_time
        metrics.dec_active_requests()
        metrics.inc_requests(capability, outcome.status_code)
        metrics.observe_latency(capability, latency)
