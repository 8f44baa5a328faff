"""Unit tests for request path decomposition and RequestRoutingContext."""
import pytest

from helix_simulator.config.strain import StrainSelection
from helix_simulator.request import IncomingRequest
from helix_simulator.routing.context import build_routing_context, resolve_path


class TestResolvePath:

    def test_root_gets_directory_index(self, make_strain):
        coords = resolve_path('/', make_strain())
        assert coords.path == '/index.html'
        assert coords.resource_path == '/index'
        assert coords.selector == ''
        assert coords.extension == 'html'
        assert coords.mount == ''
        assert coords.rel_path == '/index.html'

    def test_mount_and_selector(self, make_strain):
        strain = make_strain(urls=('http://localhost:3000/docs',))
        coords = resolve_path('/docs/index.foo.html', strain)
        assert coords.mount == '/docs'
        assert coords.resource_path == '/index'
        assert coords.selector == 'foo'
        assert coords.extension == 'html'
        assert coords.rel_path == '/index.foo.html'

    @pytest.mark.parametrize('path, expected', [
        ('/', '/README.html'),
        ('/docs/', '/docs/README.html'),
        ('//a//', '/a/README.html'),
    ])
    def test_trailing_slash_appends_index(self, make_strain, path, expected):
        coords = resolve_path(path, make_strain(directory_index='README.html'))
        assert coords.path == expected
        assert coords.extension == 'html'

    def test_no_trailing_slash_no_index(self, make_strain):
        coords = resolve_path('/content', make_strain())
        assert coords.path == '/content'
        assert coords.extension == ''
        assert coords.resource_path == '/content'

    def test_dot_in_directory_is_not_extension(self, make_strain):
        coords = resolve_path('/v1.2/readme', make_strain())
        assert coords.extension == ''
        assert coords.selector == ''
        assert coords.resource_path == '/v1.2/readme'

    def test_mount_requires_segment_boundary(self, make_strain):
        strain = make_strain(urls=('http://localhost:3000/docs',))
        coords = resolve_path('/docsx/a.html', strain)
        assert coords.rel_path == '/docsx/a.html'
        assert coords.resource_path == '/docsx/a'

    def test_explicit_mount_wins(self, make_strain):
        strain = make_strain(urls=('http://localhost:3000/docs',))
        coords = resolve_path('/blog/a.html', strain, mount='/blog/')
        assert coords.mount == '/blog'
        assert coords.rel_path == '/a.html'

    def test_content_path_prefixes_resource_path(self, make_strain):
        strain = make_strain(content='https://github.com/adobe/foo/tree/master/site')
        coords = resolve_path('/a/b.html', strain)
        assert coords.resource_path == '/site/a/b'
        assert coords.rel_path == '/a/b.html'


class TestBuildRoutingContext:

    def test_context_fields(self, make_strain):
        strain = make_strain(urls=('http://localhost:3000/docs',))
        request = IncomingRequest(
            url='/docs/api/?a=1&b=',
            method='post',
            headers={'Host': 'localhost:3000', 'X-Custom': 'v'},
            body=b'{}',
        )
        ctx = build_routing_context(request, StrainSelection(strain), request_id='rid-12345678')
        assert ctx.path == '/docs/api/index.html'
        assert ctx.rel_path == '/api/index.html'
        assert ctx.resource_path == '/api/index'
        assert ctx.query_string == 'a=1&b='
        assert ctx.params == {'a': '1', 'b': ''}
        assert ctx.method == 'POST'
        assert ctx.request_id == 'rid-12345678'
        assert ctx.headers['x-custom'] == 'v'

    @pytest.mark.parametrize('url,expected', [
        ('//docs/', '/docs/index.html'),
        ('//docs/?a=1', '/docs/index.html'),
        ('//cdn.example.com/x.html', '//cdn.example.com/x.html'),
    ])
    def test_leading_double_slash_stays_in_path(self, make_strain, url, expected):
        ctx = build_routing_context(IncomingRequest(url=url), StrainSelection(make_strain()))
        assert ctx.path == expected

    def test_generated_ids(self, make_strain):
        request = IncomingRequest(url='/')
        a = build_routing_context(request, StrainSelection(make_strain()))
        b = build_routing_context(request, StrainSelection(make_strain()))
        assert a.request_id != b.request_id
        assert len(a.activation_id) == 32
        assert a.cdn_request_id != b.cdn_request_id

    def test_wsk_headers(self, make_strain):
        request = IncomingRequest(url='/', headers={'accept': 'text/html'})
        ctx = build_routing_context(request, StrainSelection(make_strain('beta')))
        headers = ctx.wsk_headers
        assert headers['X-Strain'] == 'beta'
        assert headers['X-Request-Id'] == ctx.request_id
        assert headers['X-Openwhisk-Activation-Id'] == ctx.activation_id
        assert headers['X-Backend-Name'] == 'localhost--F_Petridish'
        assert headers['accept'] == 'text/html'

    def test_to_json(self, make_strain):
        ctx = build_routing_context(IncomingRequest(url='/index.print.html'), StrainSelection(make_strain()))
        data = ctx.to_json()
        assert data['selector'] == 'print'
        assert data['resourcePath'] == '/index'
        assert data['strain'] == 'default'


class TestIncomingRequest:

    @pytest.mark.parametrize('url,path,query', [
        ('/docs/a.html?x=1', '/docs/a.html', 'x=1'),
        ('//docs/', '//docs/', ''),
        ('//docs/a.html?x=1#top', '//docs/a.html', 'x=1'),
        ('', '/', ''),
        ('?hlx_strain=beta', '/', 'hlx_strain=beta'),
    ])
    def test_path_and_query(self, url, path, query):
        request = IncomingRequest(url=url)
        assert request.path == path
        assert request.query_string == query

