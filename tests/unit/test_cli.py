"""Unit tests for the command-line entry point."""
from pathlib import Path

from helix_simulator.__main__ import build_settings, parse_args


def test_arguments_override_environment(tmp_path):
    args = parse_args([
        '--port', '4000',
        '--cwd', str(tmp_path),
        '--local-repo', '../lib',
        '--param', 'KEY=value',
    ])
    settings = build_settings(args, {'HLX_PORT': '3001', 'HLX_LOCAL_REPOS': '../a', 'HLX_PARAMS': 'A=1'})
    assert settings.port == 4000
    assert settings.cwd == Path(tmp_path)
    assert settings.local_repos == ('../a', '../lib')
    assert dict(settings.action_params) == {'A': '1', 'KEY': 'value'}


def test_environment_defaults():
    settings = build_settings(parse_args([]), {'HLX_STRAIN': 'beta'})
    assert settings.strain == 'beta'
    assert settings.port == 3000
    assert settings.config_file == 'helix-config.yaml'
