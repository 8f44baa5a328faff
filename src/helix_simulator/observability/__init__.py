"""Observability infrastructure for the simulator.

Provides structured logging, Prometheus metrics, and request-ID
correlation middleware.

Quick start::

    from helix_simulator.observability import configure_logging, get_logger
    from helix_simulator.observability.middleware import (
        MetricsMiddleware,
        RequestIdMiddleware,
        RequestLoggingMiddleware,
    )

    configure_logging()
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)
"""

from .logging import configure_logging, get_logger, request_id_ctx, status_to_level, strain_ctx
from .metrics import metrics_text

__all__ = [
    "configure_logging",
    "get_logger",
    "metrics_text",
    "request_id_ctx",
    "status_to_level",
    "strain_ctx",
]
