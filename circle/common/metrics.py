"""Prometheus metrics definitions for The Circle.

All metric objects are centralized here as module-level singletons.
Import what you need from anywhere in the codebase:

    from circle.common.metrics import HTTP_REQUESTS_TOTAL, RELAY_FRAMES_RECEIVED_TOTAL

The /metrics endpoint is mounted in circle/main.py via
prometheus_client.make_asgi_app().
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Info

# ─── App Info ───

APP_INFO = Info("app", "Application metadata")

# ─── HTTP Metrics ───

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path_template", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    labelnames=["method", "path_template"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    labelnames=["method"],
)

# ─── Celery Task Metrics ───

CELERY_TASK_TOTAL = Counter(
    "celery_task_total",
    "Total Celery task executions",
    labelnames=["task_name", "status"],
)

CELERY_TASK_DURATION_SECONDS = Histogram(
    "celery_task_duration_seconds",
    "Celery task duration in seconds",
    labelnames=["task_name"],
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# ─── Relay Metrics ───

RELAY_CONNECTIONS_ACTIVE = Gauge(
    "relay_connections_active",
    "Active relay WebSocket connections",
)

RELAY_FRAMES_RECEIVED_TOTAL = Counter(
    "relay_frames_received_total",
    "Frames received from clients",
    labelnames=["frame_type"],
)

RELAY_FRAMES_SENT_TOTAL = Counter(
    "relay_frames_sent_total",
    "Frames delivered to client sockets",
    labelnames=["frame_type"],
)

RELAY_FRAMES_REJECTED_TOTAL = Counter(
    "relay_frames_rejected_total",
    "Frames answered with an error frame",
    labelnames=["reason"],
)

RELAY_ENVELOPES_RECEIVED_TOTAL = Counter(
    "relay_envelopes_received_total",
    "Relay envelopes received from Redis pub/sub",
    labelnames=["target_kind"],
)

# ─── Business Metrics: Messaging ───

MESSAGES_CREATED_TOTAL = Counter(
    "messages_created_total",
    "Messages persisted",
    labelnames=["kind"],
)

NOTIFICATIONS_CREATED_TOTAL = Counter(
    "notifications_created_total",
    "In-app notifications created",
    labelnames=["type"],
)

PUSH_NOTIFICATIONS_TOTAL = Counter(
    "push_notifications_total",
    "Web push delivery attempts",
    labelnames=["outcome"],
)


def set_app_info(version: str, environment: str) -> None:
    """Set the app_info metric values. Called once at startup."""
    APP_INFO.info({"version": version, "environment": environment})
