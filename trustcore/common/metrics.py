"""
Prometheus Metrics.

Provides application metrics for monitoring and alerting.

Metrics Categories:
1. Decision Metrics - Admin access, dashboard access, registration outcomes
2. Control Metrics - Rate limiting, audit sink health, session continuity
3. System Metrics - HTTP latency and throughput, oracle calls

All metrics follow Prometheus naming conventions:
- snake_case names
- Suffixes: _total (counters), _seconds (durations)
- Labels for dimensions
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    REGISTRY,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ============================================================================
# SERVICE INFO
# ============================================================================

SERVICE_INFO = Info(
    "trustcore_service",
    "Trust-decision core service information",
)

# ============================================================================
# DECISION METRICS
# ============================================================================

ADMIN_DECISIONS = Counter(
    "trustcore_admin_decisions_total",
    "Admin access decisions by outcome",
    ["outcome"],  # allow / deny / block / error / throttled
)

DASHBOARD_DECISIONS = Counter(
    "trustcore_dashboard_decisions_total",
    "Admin dashboard access decisions",
    ["granted"],
)

REGISTRATION_DECISIONS = Counter(
    "trustcore_registration_decisions_total",
    "Registration decisions by outcome",
    ["outcome", "reason"],
)

# ============================================================================
# CONTROL METRICS
# ============================================================================

RATE_LIMIT_CHECKS = Counter(
    "trustcore_rate_limit_checks_total",
    "Rate limit checks",
    ["policy", "allowed"],
)

RATE_LIMIT_ERRORS = Counter(
    "trustcore_rate_limit_errors_total",
    "Rate limit store failures (requests allowed through)",
)

AUDIT_WRITES = Counter(
    "trustcore_audit_writes_total",
    "Audit record writes",
    ["status"],  # written / retried / failed / dropped
)

AUDIT_PENDING = Gauge(
    "trustcore_audit_pending",
    "Audit records waiting in the retry queue",
)

SESSION_TRANSITIONS = Counter(
    "trustcore_session_transitions_total",
    "Session continuity state transitions",
    ["from_state", "to_state"],
)

# ============================================================================
# SYSTEM METRICS
# ============================================================================

HTTP_REQUESTS = Counter(
    "trustcore_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "trustcore_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ORACLE_CALLS = Counter(
    "trustcore_oracle_calls_total",
    "External oracle calls",
    ["oracle", "status"],  # status: success / error
)


# ============================================================================
# HELPERS
# ============================================================================


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration: float,
):
    """Record HTTP request metrics."""
    HTTP_REQUESTS.labels(
        method=method,
        endpoint=endpoint,
        status_code=str(status_code),
    ).inc()

    HTTP_REQUEST_DURATION.labels(
        method=method,
        endpoint=endpoint,
    ).observe(duration)


def record_oracle_call(oracle: str, success: bool):
    """Record one external oracle call."""
    ORACLE_CALLS.labels(
        oracle=oracle,
        status="success" if success else "error",
    ).inc()


def set_service_info(version: str, environment: str):
    """Set service info metric."""
    SERVICE_INFO.info({
        "version": version,
        "environment": environment,
        "service": "trustcore",
    })


def get_metrics() -> bytes:
    """Get all metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get content type for metrics."""
    return CONTENT_TYPE_LATEST
