"""Unit tests for helix-config.yaml loading."""
import pytest

from helix_simulator.config.loader import default_registry, load_config, parse_config
from helix_simulator.errors import ConfigurationError

CONFIG_YAML = """\
version: 1
strains:
  - name: default
    code: /local/default
    content: https://github.com/adobe/project-helix.io.git#master
    static:
      url: https://github.com/adobe/helix-static.git
      path: /assets
      magic: true
    directoryIndex: README.html
  - name: website
    condition:
      url.hostname: project-helix.io
    content:
      owner: adobe
      repo: helix-home
      ref: main
      path: /docs
  - name: docs
    url: http://localhost:3000/docs
  - name: api
    origin: https://www.example.com/api
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'helix-config.yaml'
    path.write_text(CONFIG_YAML)
    return path


class TestLoadConfig:

    def test_strains_in_order(self, config_file):
        registry = load_config(config_file)
        assert [s.name for s in registry] == ['default', 'website', 'docs', 'api']

    def test_default_strain(self, config_file):
        strain = load_config(config_file).default
        assert strain.content.repo == 'project-helix.io'
        assert strain.static.url.repo == 'helix-static'
        assert strain.static.path == '/assets'
        assert strain.static.magic is True
        assert strain.directory_index == 'README.html'

    def test_structured_content(self, config_file):
        strain = load_config(config_file).get('website')
        assert (strain.content.owner, strain.content.repo, strain.content.ref) == ('adobe', 'helix-home', 'main')
        assert strain.content.path == '/docs'
        assert strain.condition.to_json() == {'url.hostname': 'project-helix.io'}

    def test_static_defaults_to_content_htdocs(self, config_file):
        strain = load_config(config_file).get('website')
        assert strain.static.url.identity_key == strain.content.identity_key
        assert strain.static.path == '/htdocs'

    def test_url_becomes_mount(self, config_file):
        strain = load_config(config_file).get('docs')
        assert strain.urls == ('http://localhost:3000/docs',)
        assert strain.url_mount == '/docs'

    def test_strain_without_content_is_local(self, config_file):
        assert load_config(config_file).get('docs').content.is_local

    def test_proxy_strain(self, config_file):
        strain = load_config(config_file).get('api')
        assert strain.is_proxy
        assert strain.origin.hostname == 'www.example.com'
        assert strain.origin.target_url('/v1/items') == 'https://www.example.com:443/api/v1/items'

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / 'nope.yaml')

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'helix-config.yaml'
        path.write_text('strains: [\n')
        with pytest.raises(ConfigurationError):
            load_config(path)


class TestParseConfig:

    def test_strains_mapping(self):
        registry = parse_config({'strains': {'default': {'code': '/x'}, 'b': None}})
        assert registry.names.keys() == {'default', 'b'}

    def test_missing_default(self):
        with pytest.raises(ConfigurationError, match='default'):
            parse_config({'strains': [{'name': 'website'}]})

    def test_unknown_strain_key(self):
        with pytest.raises(ConfigurationError):
            parse_config({'strains': [{'name': 'default', 'contnet': 'x'}]})

    def test_invalid_directory_index(self):
        with pytest.raises(ConfigurationError):
            parse_config({'strains': [{'name': 'default', 'directoryIndex': 'a/b.html'}]})

    def test_invalid_condition(self):
        with pytest.raises(ConfigurationError):
            parse_config({'strains': [{'name': 'default', 'condition': {'bogus': 1}}]})

    def test_not_a_mapping(self):
        with pytest.raises(ConfigurationError):
            parse_config(['default'])

    def test_default_registry_serves_local_content(self):
        registry = default_registry()
        assert len(registry) == 1
        assert registry.default.content.is_local
        assert registry.default.static.path == '/htdocs'
