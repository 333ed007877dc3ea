"""Prometheus metrics for the notification pipeline.

Usage:
    from notification_service.infra.metrics.prometheus import notification_sends_total

    notification_sends_total.labels(method="primary", status="sent").inc()
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Custom registry keeps the exposition limited to service metrics
REGISTRY = CollectorRegistry()

TRANSPORT_LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

# =============================================================================
# Delivery
# =============================================================================

notification_sends_total = Counter(
    "notification_sends_total",
    "Delivery attempts by resulting method and audit status",
    labelnames=["method", "status"],
    registry=REGISTRY,
)

transport_send_duration_seconds = Histogram(
    "notification_transport_send_duration_seconds",
    "Time spent in a single transport send",
    labelnames=["transport"],
    buckets=TRANSPORT_LATENCY_BUCKETS,
    registry=REGISTRY,
)

transport_errors_total = Counter(
    "notification_transport_errors_total",
    "Transport failures by transport and error code",
    labelnames=["transport", "error_code"],
    registry=REGISTRY,
)

circuit_state = Gauge(
    "notification_circuit_blocked",
    "1 when the named channel circuit is blocked, 0 when open",
    labelnames=["channel"],
    registry=REGISTRY,
)

audit_write_failures_total = Counter(
    "notification_audit_write_failures_total",
    "Audit log inserts that failed and were dropped",
    registry=REGISTRY,
)

# =============================================================================
# Queue
# =============================================================================

queue_items_processed_total = Counter(
    "notification_queue_items_processed_total",
    "Queue items finalized by the processor",
    labelnames=["status"],
    registry=REGISTRY,
)

queue_items_rearmed_total = Counter(
    "notification_queue_items_rearmed_total",
    "Queue items moved back to pending by the retry sweeper",
    labelnames=["reason"],
    registry=REGISTRY,
)

# =============================================================================
# HTTP
# =============================================================================

http_errors_total = Counter(
    "notification_http_errors_total",
    "Error responses returned by the admin API",
    labelnames=["error_type", "status_code"],
    registry=REGISTRY,
)

# =============================================================================
# Scheduler
# =============================================================================

scheduler_job_runs_total = Counter(
    "notification_scheduler_job_runs_total",
    "Scheduled job executions by outcome",
    labelnames=["job", "outcome"],
    registry=REGISTRY,
)

scheduler_job_duration_seconds = Histogram(
    "notification_scheduler_job_duration_seconds",
    "Scheduled job execution time",
    labelnames=["job"],
    registry=REGISTRY,
)


__all__ = [
    "REGISTRY",
    "audit_write_failures_total",
    "circuit_state",
    "http_errors_total",
    "notification_sends_total",
    "queue_items_processed_total",
    "queue_items_rearmed_total",
    "scheduler_job_duration_seconds",
    "scheduler_job_runs_total",
    "transport_errors_total",
    "transport_send_duration_seconds",
]
