"""Unit tests for DeliveryDispatcher."""
from pathlib import Path

import pytest

from helix_simulator.config.conditions import parse_condition
from helix_simulator.config.strain import ProxyOrigin, StrainRegistry
from helix_simulator.delivery.dispatcher import DeliveryDispatcher, is_special_asset
from helix_simulator.delivery.fetch import DeliveryResponse
from helix_simulator.errors import NotFoundError, RenderError, UpstreamError
from helix_simulator.git.emulator import LocalRepoEmulator
from helix_simulator.render.engine import RenderResult
from helix_simulator.request import IncomingRequest
from helix_simulator.templates.resolver import ScriptDescriptor, script_name

CONTENT_RAW = 'https://raw.github.com/adobe/site/main'
LOCAL_RAW = 'http://127.0.0.1:4711/raw/helix/github.com--adobe--site/dev'


# ── Test doubles ──


class FakeFetchClient:

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls = []

    async def get(self, url, headers=None):
        self.calls.append(url)
        status, body = self.routes.get(url, (404, b''))
        return DeliveryResponse(status=status, body=body)


class FakeProxyClient:

    def __init__(self, response=None, error=None):
        self.response = response or DeliveryResponse(status=200, body=b'proxied')
        self.error = error
        self.calls = []

    async def forward(self, method, url, headers, body=b''):
        self.calls.append((method, url))
        if self.error is not None:
            raise self.error
        return self.response


class FakeTemplateResolver:

    def __init__(self, names=()):
        self.names = set(names)
        self.calls = []

    async def resolve(self, ctx):
        name = script_name(ctx)
        self.calls.append(name)
        if name in self.names:
            return ScriptDescriptor(name=name, path=Path(f'/build/{name}.py'))
        return None


class FakeRenderEngine:

    def __init__(self, result=None, error=None):
        self.result = result or RenderResult(status=200, body=b'<html>rendered</html>')
        self.error = error
        self.calls = []

    async def invoke(self, script, params):
        self.calls.append((script.name, dict(params)))
        if self.error is not None:
            raise self.error
        return self.result

    def reload(self):
        pass


class FakeGitServer:

    def __init__(self):
        self.starts = 0

    async def start(self, repos):
        self.starts += 1
        return 4711

    async def stop(self):
        pass

    async def current_branch(self, repo):
        return 'dev'


@pytest.fixture
def registry(make_strain):
    site = 'https://github.com/adobe/site.git#main'
    return StrainRegistry([
        make_strain('default', content=site),
        make_strain('docs', content=site, urls=('http://localhost:3000/docs',)),
        make_strain(
            'api',
            origin=ProxyOrigin.parse('https://api.example.com/v1'),
            condition=parse_condition({'url.path': '/api'}),
        ),
    ])


@pytest.fixture
def fetch():
    return FakeFetchClient()


@pytest.fixture
def proxy():
    return FakeProxyClient()


@pytest.fixture
def templates():
    return FakeTemplateResolver()


@pytest.fixture
def engine():
    return FakeRenderEngine()


@pytest.fixture
def git_server():
    return FakeGitServer()


@pytest.fixture
def emulator(git_server, tmp_path):
    return LocalRepoEmulator(git_server, cwd=tmp_path)


@pytest.fixture
def dispatcher(registry, emulator, templates, engine, fetch, proxy):
    return DeliveryDispatcher(
        registry, emulator, templates, engine, fetch, proxy,
        action_params={'SECRET': 's'},
        server_url='http://localhost:3000',
        default_host='localhost:3000',
    )


def _get(url, **headers):
    return IncomingRequest(url=url, headers={'host': 'localhost:3000', **headers})


# ── Proxy strains ──


class TestProxyStrains:

    @pytest.mark.asyncio
    async def test_proxy_short_circuits(self, dispatcher, proxy, fetch, templates):
        response = await dispatcher.dispatch(_get('/api/items/?page=2'))
        assert response.body == b'proxied'
        assert proxy.calls == [('GET', 'https://api.example.com:443/v1/api/items/?page=2')]
        assert fetch.calls == []
        assert templates.calls == []

    @pytest.mark.asyncio
    async def test_proxy_strips_mount(self, registry, dispatcher, proxy, make_strain):
        registry.replace(make_strain(
            'api',
            origin=ProxyOrigin.parse('http://origin.local:8080/base'),
            condition=parse_condition({'url': 'http://localhost:3000/api'}),
        ))
        await dispatcher.dispatch(_get('/api/items'))
        assert proxy.calls == [('GET', 'http://origin.local:8080/base/items')]

    @pytest.mark.asyncio
    async def test_proxy_failure(self, dispatcher, proxy):
        proxy.error = UpstreamError('down')
        with pytest.raises(UpstreamError):
            await dispatcher.dispatch(_get('/api/x'))


# ── Special assets ──


class TestSpecialAssets:

    @pytest.mark.parametrize('path', [
        '/hlx_' + 'a' * 40 + '.png',
        '/hlx_fonts/roboto.woff2',
        '/_query/index/all',
    ])
    def test_patterns(self, path):
        assert is_special_asset(path)

    def test_regular_paths(self):
        assert not is_special_asset('/hlx_short.png')
        assert not is_special_asset('/index.html')

    @pytest.mark.asyncio
    async def test_proxied_to_cdn_with_original_content(self, dispatcher, proxy, emulator, git_server, tmp_path):
        emulator.register(tmp_path, dispatcher.registry.default.content)
        url = '/hlx_' + 'b' * 40 + '.jpg?width=100'
        await dispatcher.dispatch(_get(url))
        assert proxy.calls == [('GET', f'https://main--site--adobe.hlx.page{url}')]
        assert git_server.starts == 0

    @pytest.mark.asyncio
    async def test_failure_is_502(self, dispatcher, proxy):
        proxy.error = UpstreamError('timeout', http_status=504)
        with pytest.raises(UpstreamError) as exc_info:
            await dispatcher.dispatch(_get('/hlx_fonts/x.woff'))
        assert exc_info.value.http_status == 502


# ── Content proxy ──


class TestContentProxyStep:

    @pytest.mark.asyncio
    async def test_markdown_goes_to_content_proxy(self, dispatcher, fetch, templates):
        fetch.routes[f'{CONTENT_RAW}/docs.md'] = (200, b'# Docs')
        response = await dispatcher.dispatch(_get('/docs.md'))
        assert response.body == b'# Docs'
        assert templates.calls == []

    @pytest.mark.asyncio
    async def test_json_uses_emulated_content(self, dispatcher, fetch, emulator, tmp_path):
        emulator.register(tmp_path, dispatcher.registry.default.content)
        fetch.routes[f'{LOCAL_RAW}/nav.json'] = (200, b'[]')
        response = await dispatcher.dispatch(_get('/nav.json'))
        assert response.status == 200
        assert fetch.calls == [f'{LOCAL_RAW}/nav.json']

    @pytest.mark.asyncio
    async def test_fetch_document_strips_content_root(self, registry, dispatcher, fetch, make_strain):
        registry.replace(make_strain('docs', content='https://github.com/adobe/site/tree/main/sub'))
        fetch.routes[f'{CONTENT_RAW}/sub/a.md'] = (200, b'a')
        response = await dispatcher.fetch_document('docs', '/sub/a.md')
        assert response.body == b'a'

    @pytest.mark.asyncio
    async def test_fetch_document_unknown_strain(self, dispatcher):
        with pytest.raises(NotFoundError):
            await dispatcher.fetch_document('nope', '/a.md')


# ── Rendering ──


class TestRendering:

    @pytest.mark.asyncio
    async def test_rendered_response(self, dispatcher, templates, engine, fetch):
        templates.names.add('html')
        response = await dispatcher.dispatch(_get('/index.html'))
        assert response.status == 200
        assert response.body == b'<html>rendered</html>'
        assert response.headers['Content-Type'] == 'text/html'
        assert fetch.calls == []

    @pytest.mark.asyncio
    async def test_render_params(self, dispatcher, templates, engine):
        templates.names.add('print_html')
        await dispatcher.dispatch(_get('/docs/guide/index.print.html?x=1', **{'X-Custom': 'a'}))
        name, params = engine.calls[0]
        assert name == 'print_html'
        assert params['owner'] == 'adobe'
        assert params['repo'] == 'site'
        assert params['ref'] == 'main'
        assert params['path'] == '/guide/index.md'
        assert params['selector'] == 'print'
        assert params['extension'] == 'html'
        assert params['rootPath'] == '/docs'
        assert params['params'] == 'x=1'
        assert params['REPO_RAW_ROOT'] == 'https://raw.github.com/'
        assert params['REPO_API_ROOT'] == 'https://api.github.com/'
        assert params['CONTENT_PROXY_URL'] == 'http://localhost:3000/__internal__/content-proxy/docs'
        assert params['SECRET'] == 's'
        assert params['__ow_method'] == 'get'
        assert params['__ow_headers']['x-custom'] == 'a'
        assert params['__ow_headers']['x-strain'] == 'docs'
        assert 'x-openwhisk-activation-id' in params['__ow_headers']

    @pytest.mark.asyncio
    async def test_cgi_params(self, dispatcher, templates, engine):
        templates.names.add('cgi-bin-hello')
        request = IncomingRequest(
            url='/cgi-bin/hello.py?name=x',
            method='POST',
            headers={'host': 'localhost:3000', 'content-type': 'application/json'},
            body=b'{"payload": 1}',
        )
        await dispatcher.dispatch(request)
        _, params = engine.calls[0]
        assert params['__hlx_owner'] == 'adobe'
        assert params['__hlx_repo'] == 'site'
        assert params['__hlx_ref'] == 'main'
        assert params['name'] == 'x'
        assert params['payload'] == 1
        assert params['__ow_method'] == 'post'
        assert 'owner' not in params

    @pytest.mark.asyncio
    async def test_render_uses_emulated_content(self, dispatcher, templates, engine, emulator, tmp_path):
        emulator.register(tmp_path, dispatcher.registry.default.content)
        templates.names.add('html')
        await dispatcher.dispatch(_get('/index.html'))
        _, params = engine.calls[0]
        assert params['owner'] == 'helix'
        assert params['ref'] == 'dev'
        assert params['REPO_RAW_ROOT'] == 'http://127.0.0.1:4711/raw/'

    @pytest.mark.asyncio
    async def test_render_404_falls_through_to_static(self, dispatcher, templates, engine, fetch):
        templates.names.add('html')
        engine.result = RenderResult(status=404)
        fetch.routes[f'{CONTENT_RAW}/index.html'] = (200, b'static')
        response = await dispatcher.dispatch(_get('/'))
        assert response.body == b'static'

    @pytest.mark.asyncio
    async def test_render_error_is_fatal(self, dispatcher, templates, engine, fetch):
        templates.names.add('html')
        engine.error = RenderError('boom')
        with pytest.raises(RenderError) as exc_info:
            await dispatcher.dispatch(_get('/index.html'))
        assert exc_info.value.http_status == 500
        assert fetch.calls == []


# ── Static fallback ──


class TestStaticFallback:

    @pytest.mark.asyncio
    async def test_content_first(self, dispatcher, fetch):
        fetch.routes[f'{CONTENT_RAW}/img/logo.png'] = (200, b'png')
        response = await dispatcher.dispatch(_get('/img/logo.png'))
        assert response.body == b'png'
        assert response.headers['Content-Type'] == 'image/png'
        assert fetch.calls == [f'{CONTENT_RAW}/img/logo.png']

    @pytest.mark.asyncio
    async def test_static_after_content(self, dispatcher, fetch):
        fetch.routes[f'{CONTENT_RAW}/htdocs/style.css'] = (200, b'body{}')
        response = await dispatcher.dispatch(_get('/style.css'))
        assert response.body == b'body{}'
        assert fetch.calls == [
            f'{CONTENT_RAW}/style.css',
            f'{CONTENT_RAW}/htdocs/style.css',
        ]

    @pytest.mark.asyncio
    async def test_uses_rel_path_below_mount(self, dispatcher, fetch):
        with pytest.raises(NotFoundError):
            await dispatcher.dispatch(_get('/docs/style.css'))
        assert fetch.calls == [
            f'{CONTENT_RAW}/style.css',
            f'{CONTENT_RAW}/htdocs/style.css',
        ]

    @pytest.mark.asyncio
    async def test_not_found(self, dispatcher, fetch):
        with pytest.raises(NotFoundError) as exc_info:
            await dispatcher.dispatch(_get('/missing.txt'))
        assert exc_info.value.http_status == 404
        assert len(fetch.calls) == 2

    @pytest.mark.asyncio
    async def test_strain_is_not_mutated_by_emulation(self, dispatcher, fetch, emulator, tmp_path):
        strain = dispatcher.registry.default
        emulator.register(tmp_path, strain.content)
        with pytest.raises(NotFoundError):
            await dispatcher.dispatch(_get('/a.css'))
        assert fetch.calls == [f'{LOCAL_RAW}/a.css', f'{LOCAL_RAW}/htdocs/a.css']
        assert dispatcher.registry.default is strain
        assert strain.content.host == 'github.com'
