"""Observability middleware for the simulator's FastAPI app.

- ``RequestIdMiddleware`` accepts or generates ``X-Request-ID``, stores it
  in ``request_id_ctx`` and on ``request.state`` and echoes it on the response.
- ``MetricsMiddleware`` records Prometheus HTTP metrics per surface: content
  ``delivery`` or the ``internal`` routes.
- ``RequestLoggingMiddleware`` logs every completed delivery request.

Middleware executes in reverse order of registration, so register
``RequestIdMiddleware`` last.
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .logging import get_logger, request_id_ctx
from .metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_FLIGHT,
    HTTP_REQUESTS_TOTAL,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
INTERNAL_PREFIX = "/__internal__/"

# Allowed request-ID format: 8-128 chars of hex, dash, or alphanumeric.
_VALID_REQUEST_ID = re.compile(r"^[a-zA-Z0-9\-]{8,128}$")


def request_surface(path: str) -> str:
    return "internal" if path.startswith(INTERNAL_PREFIX) else "delivery"


def resolve_request_id(incoming: str | None) -> str:
    """Reuse a well-formed incoming id, otherwise generate one."""
    if incoming and _VALID_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Correlate log entries and responses of one request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        rid = resolve_request_id(request.headers.get("x-request-id"))
        request.state.request_id = rid
        token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response


class MetricsMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        surface = request_surface(request.url.path)
        method = request.method

        HTTP_REQUESTS_IN_FLIGHT.inc()
        start = time.perf_counter()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
        finally:
            HTTP_REQUESTS_IN_FLIGHT.dec()
            HTTP_REQUEST_DURATION_SECONDS.labels(surface=surface, method=method).observe(
                time.perf_counter() - start,
            )
            HTTP_REQUESTS_TOTAL.labels(surface=surface, method=method, status=status).inc()
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log delivery requests with method, path, status and duration.

    Missing resources are routine while developing and logged at info.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        if request_surface(request.url.path) == "internal":
            return response

        status = response.status_code
        log = logger.error if status >= 500 else logger.info
        log(
            "request_completed",
            method=request.method,
            path=request.url.path,
            query=request.url.query or None,
            status=status,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response
