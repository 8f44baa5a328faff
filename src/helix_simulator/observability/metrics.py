"""Prometheus metrics for the simulator.

Usage::

    from helix_simulator.observability.metrics import DELIVERY_OUTCOMES_TOTAL

    DELIVERY_OUTCOMES_TOTAL.labels(outcome="static", strain="default").inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "hlx_http_requests_total",
    "HTTP requests by surface (delivery or internal), method and status code.",
    labelnames=["surface", "method", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "hlx_http_request_duration_seconds",
    "Time to answer a request, including renders and upstream fetches.",
    labelnames=["surface", "method"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 30.0),
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "hlx_http_requests_in_flight",
    "Requests currently being delivered.",
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Delivery metrics
# ---------------------------------------------------------------------------

DELIVERY_OUTCOMES_TOTAL = Counter(
    "hlx_delivery_outcomes_total",
    "Requests by the dispatch step that answered them.",
    labelnames=["outcome", "strain"],
    registry=REGISTRY,
)

GIT_EMULATOR_STARTS_TOTAL = Counter(
    "hlx_git_emulator_starts_total",
    "Local git emulator start attempts by result.",
    labelnames=["result"],
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Exposition body and content type for the metrics route."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
