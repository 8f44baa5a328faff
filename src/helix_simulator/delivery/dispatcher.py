"""Request delivery pipeline.

For every request the dispatcher selects a strain, computes the routing
context and then tries, strictly in this order:

  1. proxy strains: forward to the strain's origin;
  2. special assets (image blobs, fonts, index queries): forward to the
     platform CDN of the content repository;
  3. resolve locally emulated content/static repositories (per request);
  4. markdown/JSON documents: hand over to the content proxy;
  5. dynamic rendering with the matching render script (a 404 from the
     script falls through);
  6. static content: the content repository first, then the static repository.
"""

from __future__ import annotations

import json
import mimetypes
import re
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlencode

from ..config.git_url import GitReference
from ..config.strain import Strain, StrainRegistry
from ..errors import NotFoundError, UpstreamError
from ..git.emulator import LocalRepoEmulator
from ..observability.logging import get_logger, status_to_level, strain_ctx
from ..observability.metrics import DELIVERY_OUTCOMES_TOTAL
from ..render.engine import RenderEngine
from ..request import IncomingRequest
from ..routing.context import RequestRoutingContext, build_routing_context
from ..templates.resolver import CGI_PATH, ScriptDescriptor, TemplateResolver
from .content_proxy import ContentProxy
from .fetch import DeliveryResponse, HttpFetchClient, HttpProxyClient

logger = get_logger(__name__)

HELIX_BLOB_REGEXP = re.compile(r'^/hlx_([0-9a-f]{40}).(jpg|jpeg|png|webp|gif)$')
HELIX_FONTS_REGEXP = re.compile(r'^/hlx_fonts/(.+)$')
HELIX_QUERY_REGEXP = re.compile(r'^/_query/(.+)/(.+)$')

CONTENT_PROXY_EXTENSIONS: frozenset[str] = frozenset({'json', 'md'})

CONTENT_PROXY_ROUTE = '/__internal__/content-proxy'


def is_special_asset(path: str) -> bool:
    return bool(
        HELIX_BLOB_REGEXP.match(path)
        or HELIX_FONTS_REGEXP.match(path)
        or HELIX_QUERY_REGEXP.match(path)
    )


def cdn_url(content: GitReference, url: str) -> str:
    return f'https://{content.ref}--{content.repo}--{content.owner}.hlx.page{url}'


def media_type(extension: str) -> str:
    return mimetypes.guess_type(f'resource.{extension}')[0] or 'application/octet-stream'


@dataclass(frozen=True, slots=True)
class EffectiveRefs:
    """Content and static locations used for one request.

    ``content``/``static`` are what the request is served from (locally
    emulated where a working copy is registered); the ``original_*`` fields
    keep the strain's configured locations.
    """

    content: GitReference
    static: GitReference
    original_content: GitReference
    original_static: GitReference

    @classmethod
    def of(cls, strain: Strain) -> EffectiveRefs:
        return cls(
            content=strain.content,
            static=strain.static.url,
            original_content=strain.content,
            original_static=strain.static.url,
        )

    @property
    def emulated(self) -> bool:
        return self.content != self.original_content or self.static != self.original_static


class DeliveryDispatcher:
    """Maps requests to content sources."""

    def __init__(
        self,
        registry: StrainRegistry,
        emulator: LocalRepoEmulator,
        template_resolver: TemplateResolver,
        render_engine: RenderEngine,
        fetch_client: HttpFetchClient,
        proxy_client: HttpProxyClient,
        content_proxy: ContentProxy | None = None,
        *,
        action_params: Mapping[str, str] | None = None,
        server_url: str = 'http://localhost:3000',
        default_host: str = '',
    ):
        self.registry = registry
        self.emulator = emulator
        self.template_resolver = template_resolver
        self.render_engine = render_engine
        self.fetch_client = fetch_client
        self.proxy_client = proxy_client
        self.content_proxy = content_proxy or ContentProxy(fetch_client)
        self.action_params = dict(action_params or {})
        self.server_url = server_url.rstrip('/')
        self.default_host = default_host

    def route(self, request: IncomingRequest, *, request_id: str | None = None) -> RequestRoutingContext:
        selection = self.registry.match(request, default_host=self.default_host)
        return build_routing_context(request, selection, request_id=request_id)

    async def dispatch(self, request: IncomingRequest, *, request_id: str | None = None) -> DeliveryResponse:
        """Deliver ``request``.

        Raises:
            NotFoundError: If no source has the resource.
            UpstreamError: If a proxy, fetch or render collaborator fails.
        """
        ctx = self.route(request, request_id=request_id)
        strain = ctx.strain
        logger.debug('strain_selected', strain=strain.name, config=strain.to_json(minimal=True))

        token = strain_ctx.set(strain.name)
        try:
            return await self._deliver(request, ctx)
        except NotFoundError:
            DELIVERY_OUTCOMES_TOTAL.labels(outcome='not_found', strain=strain.name).inc()
            raise
        except UpstreamError:
            DELIVERY_OUTCOMES_TOTAL.labels(outcome='error', strain=strain.name).inc()
            raise
        finally:
            strain_ctx.reset(token)

    async def _deliver(self, request: IncomingRequest, ctx: RequestRoutingContext) -> DeliveryResponse:
        strain = ctx.strain

        if strain.is_proxy:
            return self._count('proxy', strain, await self.handle_proxy(request, ctx))

        if is_special_asset(ctx.path):
            return self._count('special_asset', strain, await self.handle_special_asset(request, ctx))

        refs = await self.resolve_refs(strain)

        if ctx.extension in CONTENT_PROXY_EXTENSIONS:
            response = await self.content_proxy.fetch(
                refs.content,
                ctx.rel_path,
                origin=refs.original_content,
                params=ctx.params,
                headers=ctx.headers,
            )
            return self._count('content_proxy', strain, response)

        rendered = await self.handle_dynamic(ctx, refs)
        if rendered is not None:
            return self._count('render', strain, rendered)

        return self._count('static', strain, await self.fetch_static(ctx, refs))

    @staticmethod
    def _count(outcome: str, strain: Strain, response: DeliveryResponse) -> DeliveryResponse:
        DELIVERY_OUTCOMES_TOTAL.labels(outcome=outcome, strain=strain.name).inc()
        return response

    # ── 1. Proxy strains ──────────────────────────────────────────

    async def handle_proxy(self, request: IncomingRequest, ctx: RequestRoutingContext) -> DeliveryResponse:
        path = request.path
        if ctx.mount and f'{path}/'.startswith(f'{ctx.mount}/'):
            path = path[len(ctx.mount):] or '/'
        url = ctx.strain.origin.target_url(path)
        if ctx.query_string:
            url = f'{url}?{ctx.query_string}'
        logger.debug('proxy_strain', strain=ctx.strain.name, url=url)
        return await self.proxy_client.forward(ctx.method, url, ctx.headers, ctx.body)

    # ── 2. Special assets ─────────────────────────────────────────

    async def handle_special_asset(self, request: IncomingRequest, ctx: RequestRoutingContext) -> DeliveryResponse:
        url = cdn_url(ctx.strain.content, request.url)
        logger.debug('special_asset_proxy', url=url)
        try:
            return await self.proxy_client.forward(ctx.method, url, ctx.headers, ctx.body)
        except UpstreamError as e:
            logger.error('special_asset_proxy_failed', path=ctx.path, error=e.message)
            raise UpstreamError(f'Failed to proxy helix request: {e.message}', http_status=502) from e

    # ── 3. Git emulation ──────────────────────────────────────────

    async def resolve_refs(self, strain: Strain) -> EffectiveRefs:
        """Content and static locations for ``strain``, with local emulation applied."""
        refs = EffectiveRefs.of(strain)
        content = await self.emulator.resolve(strain.content)
        static = await self.emulator.resolve(strain.static.url)
        if content is None and static is None:
            return refs
        return EffectiveRefs(
            content=content or refs.content,
            static=static or refs.static,
            original_content=refs.original_content,
            original_static=refs.original_static,
        )

    # ── 4. Content proxy ──────────────────────────────────────────

    async def fetch_document(
        self,
        strain_name: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> DeliveryResponse:
        """Content proxy lookup on behalf of a render script.

        ``path`` is the document path as handed to the script, i.e. including
        the content repository's sub-path.

        Raises:
            NotFoundError: If the strain is unknown.
        """
        strain = self.registry.get(strain_name)
        if strain is None or strain.is_proxy:
            raise NotFoundError(f'Unknown strain: {strain_name}')
        refs = await self.resolve_refs(strain)
        content_root = strain.content.path.rstrip('/')
        if content_root and f'{path}/'.startswith(f'{content_root}/'):
            path = path[len(content_root):]
        return await self.content_proxy.fetch(
            refs.content,
            path,
            origin=refs.original_content,
            params=params,
            headers=headers,
        )

    # ── 5. Dynamic rendering ──────────────────────────────────────

    def render_params(
        self,
        ctx: RequestRoutingContext,
        refs: EffectiveRefs,
    ) -> dict[str, Any]:
        """Parameters a render script is invoked with."""
        params: dict[str, Any] = {
            '__ow_headers': {k.lower(): v for k, v in ctx.wsk_headers.items()},
            '__ow_method': ctx.method.lower(),
        }
        params.update(self.action_params)
        params.update(_json_body(ctx))

        content = refs.content
        if ctx.rel_path.startswith(CGI_PATH):
            params.update({
                '__hlx_owner': content.owner,
                '__hlx_repo': content.repo,
                '__hlx_ref': content.ref,
            })
            params.update(ctx.params)
        else:
            params.update({
                'owner': content.owner,
                'repo': content.repo,
                'ref': content.ref,
                'path': f'{ctx.resource_path}.md',
                'selector': ctx.selector,
                'extension': ctx.extension,
                'rootPath': ctx.mount,
                'params': urlencode(ctx.params),
                # the pipeline needs the final slash here
                'REPO_RAW_ROOT': f'{content.raw_root}/',
                'REPO_API_ROOT': f'{content.api_root}/',
                'CONTENT_PROXY_URL': f'{self.server_url}{CONTENT_PROXY_ROUTE}/{ctx.strain.name}',
            })
        return params

    async def handle_dynamic(
        self,
        ctx: RequestRoutingContext,
        refs: EffectiveRefs,
    ) -> DeliveryResponse | None:
        """Render the request. ``None`` if there is no script or it answered 404.

        Raises:
            RenderError: If the script fails.
        """
        script: ScriptDescriptor | None = await self.template_resolver.resolve(ctx)
        if script is None:
            return None
        result = await self.render_engine.invoke(script, self.render_params(ctx, refs))
        if result.status == 404:
            logger.info('render_not_found', script=script.name, path=ctx.path)
            return None
        headers = dict(result.headers)
        if not any(k.lower() == 'content-type' for k in headers):
            headers['Content-Type'] = result.content_type
        return DeliveryResponse(status=result.status, headers=headers, body=result.body)

    # ── 6. Static content ─────────────────────────────────────────

    async def fetch_static(self, ctx: RequestRoutingContext, refs: EffectiveRefs) -> DeliveryResponse:
        """Fetch ``rel_path`` from the content repository, then from the static repository.

        Raises:
            NotFoundError: If neither repository has the resource.
        """
        uris = [
            f'{refs.content.raw}{ctx.rel_path}',
            f'{refs.static.raw}{refs.static.path}{ctx.rel_path}',
        ]
        headers = {'X-Request-Id': ctx.request_id}
        for uri in uris:
            logger.debug('static_fetch', url=uri)
            result = await self.fetch_client.get(uri, headers)
            if result.ok:
                return DeliveryResponse(
                    status=200,
                    headers={'Content-Type': media_type(ctx.extension)},
                    body=result.body,
                )
            getattr(logger, status_to_level(result.status))(
                'static_resource_missing', url=uri, status=result.status,
            )
        logger.info('resource_not_found', path=ctx.path)
        raise NotFoundError(f'Resource not found: {ctx.path}')


def _json_body(ctx: RequestRoutingContext) -> dict[str, Any]:
    """Request body parameters (JSON object bodies only)."""
    if not ctx.body:
        return {}
    content_type = ctx.headers.get('content-type', '')
    if 'json' not in content_type:
        return {}
    try:
        body = json.loads(ctx.body)
    except ValueError:
        logger.warning('invalid_json_body', path=ctx.path)
        return {}
    return body if isinstance(body, dict) else {}
