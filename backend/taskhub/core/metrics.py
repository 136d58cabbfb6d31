"""Prometheus metric helpers."""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNT = Counter(
    "taskhub_requests_total",
    "HTTP requests processed by the API",
    ("method", "path", "status"),
)

REQUEST_LATENCY = Histogram(
    "taskhub_request_latency_seconds",
    "Latency of HTTP requests processed by the API",
    ("method", "path"),
    buckets=(
        0.005,
        0.01,
        0.025,
        0.05,
        0.1,
        0.25,
        0.5,
        1.0,
        2.5,
        5.0,
    ),
)

REALTIME_SESSIONS = Gauge(
    "taskhub_realtime_sessions",
    "Authenticated live connections currently open",
)

REALTIME_REJECTED = Counter(
    "taskhub_realtime_rejected_total",
    "Live connections closed during the handshake",
    ("reason",),
)

CHAT_MESSAGES = Counter(
    "taskhub_chat_messages_total",
    "Chat messages persisted",
    ("surface",),
)

DELIVERY_DROPS = Counter(
    "taskhub_realtime_delivery_drops_total",
    "Room deliveries that could not be handed to a session",
    ("cause",),
)


def record_request(method: str, path: str, status_code: int, duration: float) -> None:
    """Record counters and histograms for a processed HTTP request."""

    REQUEST_COUNT.labels(method, path, str(status_code)).inc()
    REQUEST_LATENCY.labels(method, path).observe(duration)


def record_chat_message(surface: str) -> None:
    CHAT_MESSAGES.labels(surface).inc()


def record_delivery_drop(cause: str) -> None:
    DELIVERY_DROPS.labels(cause).inc()


def record_rejected_handshake(reason: str) -> None:
    REALTIME_REJECTED.labels(reason).inc()
