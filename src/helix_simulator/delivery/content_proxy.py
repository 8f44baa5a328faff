"""Structured-content (markdown/JSON) resolution.

Documents are looked up in the content repository first. When the repository
does not have them, the request goes to the platform's content proxy at
``https://<ref>--<repo>--<owner>.hlx.page``, which knows about mounted
external sources.
"""

from __future__ import annotations

import mimetypes
from typing import Mapping
from urllib.parse import urlencode

from ..config.git_url import GitReference
from ..observability.logging import get_logger
from .fetch import DeliveryResponse, HttpFetchClient

logger = get_logger(__name__)

# Never served by the content proxy.
WELL_KNOWN_FILES: frozenset[str] = frozenset({'/head.md', '/header.md', '/footer.md'})

# Query parameters that describe the content location, not the document.
_LOCATION_PARAMS: frozenset[str] = frozenset({'owner', 'repo', 'ref', 'path', 'REPO_RAW_ROOT'})


def content_proxy_url(content: GitReference, path: str, params: Mapping[str, str] | None = None) -> str:
    url = f'https://{content.ref}--{content.repo}--{content.owner}.hlx.page{path}'
    extra = {k: v for k, v in (params or {}).items() if k not in _LOCATION_PARAMS}
    return f'{url}?{urlencode(extra)}' if extra else url


def _media_type(path: str) -> str:
    return mimetypes.guess_type(path)[0] or 'application/octet-stream'


class ContentProxy:
    """Resolves markdown and JSON documents for a strain."""

    def __init__(self, fetch_client: HttpFetchClient):
        self._fetch = fetch_client

    async def fetch(
        self,
        content: GitReference,
        path: str,
        *,
        origin: GitReference | None = None,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> DeliveryResponse:
        """Fetch the document at ``path`` below the content root.

        Args:
            content: Effective content location (possibly locally emulated).
            path: Document path relative to the content root, e.g. ``/index.md``.
            origin: Content location as configured, used for the content proxy
                host. Defaults to ``content``.
            params: Query parameters passed on to the content proxy.
            headers: Incoming request headers.
        """
        headers = {k.lower(): v for k, v in (headers or {}).items()}
        fetch_headers: dict[str, str] = {}
        if headers.get('x-github-token'):
            fetch_headers['Authorization'] = f'Bearer {headers["x-github-token"]}'
        if headers.get('x-request-id'):
            fetch_headers['X-Request-Id'] = headers['x-request-id']

        repo_url = f'{content.raw}{content.path.rstrip("/")}{path}'
        logger.info('content_proxy_try_repository', url=repo_url)
        result = await self._fetch.get(repo_url, fetch_headers)
        if result.ok:
            logger.info('content_proxy_loaded_from_repository', url=repo_url, status=result.status)
            return DeliveryResponse(
                status=200,
                headers={'Content-Type': _media_type(path)},
                body=result.body,
            )

        if result.status != 404:
            logger.error('content_proxy_repository_failed', url=repo_url, status=result.status)
            return DeliveryResponse(status=result.status)
        logger.info('content_proxy_not_in_repository', url=repo_url)

        if path in WELL_KNOWN_FILES:
            return DeliveryResponse(status=404)

        proxy_url = content_proxy_url(origin or content, path, params)
        logger.info('content_proxy_fetch', url=proxy_url)
        result = await self._fetch.get(proxy_url, fetch_headers)
        if not result.ok:
            logger.error('content_proxy_failed', url=proxy_url, status=result.status)
            return DeliveryResponse(status=result.status)
        return result
