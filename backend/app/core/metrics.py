"""Prometheus metrics for the billing service.

HTTP traffic per route, charge submissions by gateway status, webhook
deliveries by reconciliation action, invoice transitions and gateway latency.
All metrics live in a dedicated registry exposed at ``/metrics``.
"""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

REGISTRY = CollectorRegistry()

# Celery workers and the API process share metrics through this directory
if "PROMETHEUS_MULTIPROC_DIR" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)

METRIC_PREFIX = "membership_billing"

APP_INFO = Info(
    f"{METRIC_PREFIX}_app",
    "Application version and gateway environment",
    registry=REGISTRY,
)

# ==================== HTTP ====================

HTTP_REQUESTS_TOTAL = Counter(
    f"{METRIC_PREFIX}_http_requests_total",
    "HTTP requests by route and status code",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    f"{METRIC_PREFIX}_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 30.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    f"{METRIC_PREFIX}_http_requests_in_progress",
    "HTTP requests currently being served",
    ["method", "endpoint"],
    registry=REGISTRY,
)

# ==================== Billing ====================

CHARGE_SUBMISSIONS_TOTAL = Counter(
    f"{METRIC_PREFIX}_charge_submissions_total",
    "Charge submissions by resulting gateway status",
    ["status"],
    registry=REGISTRY,
)

WEBHOOK_NOTIFICATIONS_TOTAL = Counter(
    f"{METRIC_PREFIX}_webhook_notifications_total",
    "Gateway notifications by reconciliation action",
    ["action"],
    registry=REGISTRY,
)

INVOICE_TRANSITIONS_TOTAL = Counter(
    f"{METRIC_PREFIX}_invoice_transitions_total",
    "Invoice status transitions written to the store",
    ["status"],
    registry=REGISTRY,
)

GATEWAY_REQUEST_DURATION_SECONDS = Histogram(
    f"{METRIC_PREFIX}_gateway_request_duration_seconds",
    "Payment gateway request duration in seconds",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 30.0],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Publish the running version and gateway environment."""
    APP_INFO.info({"version": version, "environment": environment})
