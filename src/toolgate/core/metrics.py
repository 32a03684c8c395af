"""Prometheus metrics for monitoring ToolGate."""

from prometheus_client import Counter, Gauge, Histogram

# Request metrics
request_latency_seconds = Histogram(
    "toolgate_request_latency_seconds",
    "Latency of HTTP requests in seconds",
    ["endpoint", "method"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

request_total = Counter(
    "toolgate_request_total",
    "Total number of HTTP requests",
    ["endpoint", "method", "status"],
)

active_requests = Gauge(
    "toolgate_active_requests",
    "Number of active HTTP requests",
)

# Gate metrics
gate_decisions_total = Counter(
    "toolgate_gate_decisions_total",
    "Gate decisions by outcome and error code",
    ["outcome", "code"],
)

# Rate limit metrics
rate_limit_checks_total = Counter(
    "toolgate_rate_limit_checks_total",
    "Rate limit checks by strategy and outcome",
    ["strategy", "outcome"],
)

rate_limit_store_errors_total = Counter(
    "toolgate_rate_limit_store_errors_total",
    "Shared rate limit store errors, by applied policy",
    ["policy"],
)

# Usage recording metrics
usage_record_failures_total = Counter(
    "toolgate_usage_record_failures_total",
    "Usage recording failures by effect",
    ["effect"],
)

# Tool call metrics
tool_call_latency_seconds = Histogram(
    "toolgate_tool_call_latency_seconds",
    "Latency of tool executions in seconds",
    ["tool_name", "success"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


def track_request_start() -> None:
    """Increment the active requests counter."""
    active_requests.inc()


def track_request_end() -> None:
    """Decrement the active requests counter."""
    active_requests.dec()


def track_gate_decision(*, admitted: bool, code: str | None = None) -> None:
    """Track one gate decision.

    Args:
        admitted: Whether the request was admitted.
        code: Error code of a denial, ``None`` when admitted.
    """
    gate_decisions_total.labels(
        outcome="admitted" if admitted else "denied",
        code=code or "none",
    ).inc()


def track_rate_limit_check(strategy: str, *, allowed: bool) -> None:
    rate_limit_checks_total.labels(
        strategy=strategy,
        outcome="allowed" if allowed else "denied",
    ).inc()


def track_usage_failure(effect: str) -> None:
    """Track a failed usage recording effect (``log``, ``daily`` or ``monthly``)."""
    usage_record_failures_total.labels(effect=effect).inc()


def track_tool_call(tool_name: str, duration: float, *, success: bool) -> None:
    tool_call_latency_seconds.labels(
        tool_name=tool_name,
        success=str(success).lower(),
    ).observe(duration)

