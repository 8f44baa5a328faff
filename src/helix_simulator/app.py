"""FastAPI transport for the simulator.

The create_app() factory is the single entry point for building the ASGI
application of an initialized ``SimulatorProject``. Every request that is not
an ``/__internal__/`` route goes through the project's DeliveryDispatcher.

Usage:
    project = await SimulatorProject(SimulatorSettings.from_env()).init()
    app = create_app(project)
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from . import __version__
from .delivery.dispatcher import CONTENT_PROXY_ROUTE
from .errors import SimulatorError
from .observability.logging import get_logger
from .observability.metrics import metrics_text
from .observability.middleware import (
    MetricsMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
)
from .project import SimulatorProject
from .request import IncomingRequest

logger = get_logger(__name__)

INTERNAL_PREFIX = '/__internal__'


def _request_id(request: Request) -> str | None:
    return getattr(request.state, 'request_id', None)


def _to_response(result) -> Response:
    return Response(content=result.body, status_code=result.status, headers=result.headers)


async def _incoming(request: Request) -> IncomingRequest:
    url = request.url.path
    if request.url.query:
        url = f'{url}?{request.url.query}'
    return IncomingRequest(
        url=url,
        method=request.method,
        headers=dict(request.headers),
        body=await request.body(),
    )


def create_app(project: SimulatorProject) -> FastAPI:
    """Create the simulator app for an initialized project."""
    if project.dispatcher is None:
        raise RuntimeError('SimulatorProject.init() must be awaited before create_app()')
    dispatcher = project.dispatcher

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            'simulator_startup',
            version=__version__,
            strain=project.settings.strain,
            url=project.settings.server_url,
        )
        yield
        await project.stop()

    app = FastAPI(
        title='helix-simulator',
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.project = project

    # Middleware chain executes in reverse order of registration.
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(SimulatorError)
    async def simulator_error_handler(request: Request, exc: SimulatorError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.http_status,
            content=exc.to_dict(_request_id(request)),
        )

    @app.get(f'{INTERNAL_PREFIX}/metrics')
    async def prometheus_metrics():
        """Prometheus metrics exposition endpoint."""
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    @app.get(f'{CONTENT_PROXY_ROUTE}/{{strain}}')
    async def content_proxy(strain: str, request: Request) -> Response:
        params = dict(request.query_params)
        path = params.get('path') or '/index.md'
        if not path.startswith('/'):
            path = f'/{path}'
        headers = dict(request.headers)
        rid = _request_id(request)
        if rid:
            headers['x-request-id'] = rid
        result = await dispatcher.fetch_document(strain, path, params=params, headers=headers)
        return _to_response(result)

    @app.api_route('/{path:path}', methods=['GET', 'POST'])
    async def deliver(path: str, request: Request) -> Response:
        incoming = await _incoming(request)
        result = await dispatcher.dispatch(incoming, request_id=_request_id(request))
        return _to_response(result)

    return app
