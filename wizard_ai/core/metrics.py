"""
Prometheus metrics for the orchestration layer.

Metrics Categories:
- RED Metrics: orchestration calls by operation/source, remote errors, latency
- Business Metrics: cache hits/misses, rate-limit rejections, tokens, cost
- Resilience Metrics: retry attempts, circuit breaker state, request queue depth
- Alerting: usage alerts raised by type and severity

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
- Gauges: No special suffix
"""
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from wizard_ai.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

ai_requests_total = Counter(
    "wizard_ai_requests_total",
    "Total number of orchestration calls",
    ["operation", "source"],  # source: cache | remote | fallback
    registry=registry,
)

ai_remote_errors_total = Counter(
    "wizard_ai_remote_errors_total",
    "Total number of classified remote call failures",
    ["operation", "kind"],
    registry=registry,
)

ai_request_duration_seconds = Histogram(
    "wizard_ai_request_duration_seconds",
    "Orchestration call latency in seconds",
    ["operation", "source"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

# ============================================================================
# BUSINESS METRICS
# ============================================================================

ai_cache_hits_total = Counter(
    "wizard_ai_cache_hits_total",
    "Total number of response cache hits",
    ["operation"],
    registry=registry,
)

ai_cache_misses_total = Counter(
    "wizard_ai_cache_misses_total",
    "Total number of response cache misses",
    ["operation"],
    registry=registry,
)

ai_cache_evictions_total = Counter(
    "wizard_ai_cache_evictions_total",
    "Total number of entries evicted from the response cache at capacity",
    registry=registry,
)

ai_rate_limited_total = Counter(
    "wizard_ai_rate_limited_total",
    "Total number of calls refused admission by the rate limiter",
    ["operation"],
    registry=registry,
)

ai_tokens_total = Counter(
    "wizard_ai_tokens_total",
    "Total tokens consumed by remote calls",
    ["operation", "model"],
    registry=registry,
)

ai_cost_usd_total = Counter(
    "wizard_ai_cost_usd_total",
    "Estimated spend on remote calls in USD",
    ["operation", "model"],
    registry=registry,
)

# ============================================================================
# RESILIENCE METRICS
# ============================================================================

ai_retry_attempts_total = Counter(
    "wizard_ai_retry_attempts_total",
    "Total number of retry attempts against the remote service",
    ["operation", "kind"],
    registry=registry,
)

ai_circuit_breaker_state = Gauge(
    "wizard_ai_circuit_breaker_state",
    "Circuit breaker state (0 = closed, 1 = half_open, 2 = open)",
    ["name"],
    registry=registry,
)

ai_queue_active = Gauge(
    "wizard_ai_queue_active",
    "Remote calls currently holding a request queue slot",
    registry=registry,
)

ai_queue_waiting = Gauge(
    "wizard_ai_queue_waiting",
    "Remote calls waiting for a request queue slot",
    registry=registry,
)

ai_queue_wait_seconds = Histogram(
    "wizard_ai_queue_wait_seconds",
    "Time spent waiting for a request queue slot",
    buckets=[0.001, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 30.0],
    registry=registry,
)

ai_alerts_total = Counter(
    "wizard_ai_alerts_total",
    "Total number of usage alerts raised",
    ["type", "severity"],
    registry=registry,
)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def record_orchestration(operation: str, source: str, latency_ms: float) -> None:
    """
    Record one finished orchestration call.

    Args:
        operation: Logical operation ("analysis", "suggestions", "enhancement")
        source: Where the value came from ("cache", "remote", "fallback")
        latency_ms: Wall-clock latency in milliseconds
    """
    ai_requests_total.labels(operation=operation, source=source).inc()
    ai_request_duration_seconds.labels(operation=operation, source=source).observe(
        latency_ms / 1000.0
    )


def record_cache_hit(operation: str) -> None:
    ai_cache_hits_total.labels(operation=operation).inc()


def record_cache_miss(operation: str) -> None:
    ai_cache_misses_total.labels(operation=operation).inc()


def record_cache_eviction() -> None:
    ai_cache_evictions_total.inc()


def record_rate_limited(operation: str) -> None:
    ai_rate_limited_total.labels(operation=operation).inc()


def record_remote_error(operation: str, kind: str) -> None:
    ai_remote_errors_total.labels(operation=operation, kind=kind).inc()


def record_retry_attempt(operation: str, kind: str) -> None:
    ai_retry_attempts_total.labels(operation=operation, kind=kind).inc()


def record_tokens_and_cost(operation: str, model: str, tokens: int, cost_usd: float) -> None:
    """
    Record token usage and estimated cost of a successful remote call.
    """
    if tokens > 0:
        ai_tokens_total.labels(operation=operation, model=model).inc(tokens)
    if cost_usd > 0:
        ai_cost_usd_total.labels(operation=operation, model=model).inc(cost_usd)


def update_circuit_breaker_state(name: str, state: str) -> None:
    """
    Update circuit breaker gauge.

    Args:
        name: Circuit breaker name
        state: "closed", "half_open" or "open"
    """
    value = _CIRCUIT_STATE_VALUES.get(state)
    if value is None:
        logger.warning("metrics_unknown_circuit_state", name=name, state=state)
        return
    ai_circuit_breaker_state.labels(name=name).set(value)


def update_queue_state(active: int, waiting: int) -> None:
    ai_queue_active.set(active)
    ai_queue_waiting.set(waiting)


def record_queue_wait(seconds: float) -> None:
    ai_queue_wait_seconds.observe(seconds)


def record_alert(alert_type: str, severity: str) -> None:
    ai_alerts_total.labels(type=alert_type, severity=severity).inc()


def get_metrics() -> bytes:
    """
    Get Prometheus metrics in text format.
    """
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    """
    Get content type for a metrics endpoint.
    """
    return CONTENT_TYPE_LATEST
