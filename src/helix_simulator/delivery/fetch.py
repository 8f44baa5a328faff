"""Outbound HTTP collaborators: raw-content fetches and request proxying.

Both wrap a lazily created, shared ``httpx.AsyncClient``. Transport
failures surface as ``UpstreamError``; HTTP error statuses are returned to
the caller, which decides what they mean. Nothing here retries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping
from urllib.parse import urlsplit, urlunsplit

import httpx

from ..errors import UpstreamError
from ..observability.logging import get_logger, status_to_level

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0

# Headers that should NOT be forwarded (hop-by-hop, RFC 7230).
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset({
    'connection',
    'keep-alive',
    'proxy-authenticate',
    'proxy-authorization',
    'te',
    'trailers',
    'transfer-encoding',
    'upgrade',
})

# Stripped from proxied requests in addition to hop-by-hop headers.
STRIP_REQUEST_HEADERS: frozenset[str] = frozenset({
    'cookie',
    'host',
    'content-length',
})

# httpx hands out decoded bodies, so the encoding headers no longer apply.
STRIP_RESPONSE_HEADERS: frozenset[str] = frozenset({
    'content-encoding',
    'content-length',
})

GITHUB_RAW_PREFIXES: tuple[str, ...] = (
    'https://raw.github.com/',
    'https://raw.githubusercontent.com/',
)

# Request paths whose query string is kept when proxying.
_KEEP_QUERY_MARKERS: tuple[str, ...] = ('/hlx_', '/media_', '.json', '/cgi-bin/')


@dataclass
class DeliveryResponse:
    """Response produced by the delivery pipeline."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b''

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def make_proxy_url(request_url: str, base: str) -> str:
    """Absolute proxy URL for ``request_url`` on ``base``.

    The query string is dropped unless the request targets a resource that
    depends on it (``/hlx_``, ``/media_``, ``.json``, ``/cgi-bin/``).
    """
    parts = urlsplit(base.rstrip('/') + '/' + request_url.lstrip('/'))
    query = parts.query
    if query and not any(marker in request_url for marker in _KEEP_QUERY_MARKERS):
        query = ''
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, ''))


def sanitize_request_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Build forwarded headers: strip hop-by-hop, cookie and host headers."""
    forwarded: dict[str, str] = {}
    for key, value in headers.items():
        lower_key = key.lower()
        if lower_key in HOP_BY_HOP_HEADERS or lower_key in STRIP_REQUEST_HEADERS:
            continue
        forwarded[key] = value
    return forwarded


def sanitize_response_headers(headers: httpx.Headers | Mapping[str, str]) -> dict[str, str]:
    sanitized: dict[str, str] = {}
    for key, value in headers.items():
        lower_key = key.lower()
        if lower_key in HOP_BY_HOP_HEADERS or lower_key in STRIP_RESPONSE_HEADERS:
            continue
        sanitized[key] = value
    return sanitized


class _HttpCollaborator:
    def __init__(self, client: httpx.AsyncClient | None = None, *, timeout: float = DEFAULT_TIMEOUT):
        self._client = client
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        """Return the shared httpx client, creating it lazily."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=False,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


class HttpFetchClient(_HttpCollaborator):
    """GETs raw content.

    ``github_token`` is sent as bearer auth to GitHub's raw-content hosts only.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        github_token: str = '',
    ):
        super().__init__(client, timeout=timeout)
        self.github_token = github_token

    async def get(self, url: str, headers: Mapping[str, str] | None = None) -> DeliveryResponse:
        """Fetch ``url``.

        Raises:
            UpstreamError: If the server cannot be reached.
        """
        request_headers = dict(headers or {})
        if self.github_token and url.startswith(GITHUB_RAW_PREFIXES):
            request_headers['Authorization'] = f'Bearer {self.github_token}'
        request_headers.setdefault('Cache-Control', 'no-store')
        try:
            response = await self._get_client().get(url, headers=request_headers)
        except httpx.HTTPError as e:
            logger.error('fetch_failed', url=url, error=str(e))
            raise UpstreamError(f'Unable to fetch {url}: {e}') from e

        getattr(logger, status_to_level(response.status_code))(
            'fetch_completed', url=url, status=response.status_code,
        )
        return DeliveryResponse(
            status=response.status_code,
            headers=sanitize_response_headers(response.headers),
            body=response.content,
        )


class HttpProxyClient(_HttpCollaborator):
    """Forwards a request (method, headers, body) to another server."""

    async def forward(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes = b'',
    ) -> DeliveryResponse:
        """Proxy a request to ``url``.

        Raises:
            UpstreamError: On timeouts or connection failures.
        """
        forwarded = sanitize_request_headers(headers)
        content = body if body and method not in ('GET', 'HEAD') else None
        logger.debug('proxy_request', method=method, url=url)
        try:
            response = await self._get_client().request(
                method=method,
                url=url,
                headers=forwarded,
                content=content,
            )
        except httpx.TimeoutException as e:
            logger.warning('proxy_timeout', method=method, url=url)
            raise UpstreamError(f'Proxy timeout for {url}', http_status=504) from e
        except httpx.HTTPError as e:
            logger.warning('proxy_connect_error', method=method, url=url, error=str(e))
            raise UpstreamError(f'Could not connect to {url}: {e}') from e

        getattr(logger, status_to_level(response.status_code))(
            'proxy_completed',
            method=method,
            url=url,
            status=response.status_code,
            content_type=response.headers.get('content-type', 'text/plain'),
        )
        return DeliveryResponse(
            status=response.status_code,
            headers=sanitize_response_headers(response.headers),
            body=response.content,
        )
