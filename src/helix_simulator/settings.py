"""Simulator configuration settings.

SimulatorSettings is the single configuration object accepted by
SimulatorProject. It is a plain dataclass so tests can inject config without
touching os.environ; ``from_env()`` reads the ``HLX_*`` environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from .config.loader import CONFIG_FILENAME
from .config.strain import DEFAULT_STRAIN

DEFAULT_PORT = 3000
DEFAULT_BUILD_DIR = '.hlx/build'


def _parse_pairs(raw: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for pair in raw.split(','):
        if '=' in pair:
            key, value = pair.split('=', 1)
            pairs[key.strip()] = value.strip()
    return pairs


@dataclass(frozen=True, slots=True)
class SimulatorSettings:
    """Configuration for one simulator project."""

    # ── HTTP server ────────────────────────────────────────────────
    host: str = '0.0.0.0'
    port: int = DEFAULT_PORT
    """0 picks an ephemeral port."""

    # ── Project layout ─────────────────────────────────────────────
    cwd: Path = field(default_factory=Path.cwd)
    build_dir: str = DEFAULT_BUILD_DIR
    """Render script build directory, relative to ``cwd``."""

    config_file: str = CONFIG_FILENAME
    strain: str = DEFAULT_STRAIN
    """Strain whose content repository is checked at startup."""

    # ── Local git emulation ────────────────────────────────────────
    local_repos: tuple[str, ...] = ()
    """Additional working copies to emulate, each mapped to its ``origin`` remote."""

    git_host: str = '0.0.0.0'

    # ── Render scripts ─────────────────────────────────────────────
    action_params: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    """Extra parameters passed to every render script."""

    github_token: str = ''
    """Bearer token for GitHub raw-content fetches. Never log this."""

    @property
    def build_path(self) -> Path:
        return (self.cwd / self.build_dir).resolve()

    @property
    def config_path(self) -> Path:
        return (self.cwd / self.config_file).resolve()

    @property
    def server_url(self) -> str:
        return f'http://localhost:{self.port}'

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not 0 <= self.port <= 65535:
            errors.append(f'port must be between 0 and 65535, got {self.port}')
        if not self.cwd.is_dir():
            errors.append(f'project directory {self.cwd} does not exist')
        if not self.strain:
            errors.append('strain must not be empty')
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> SimulatorSettings:
        """Build settings from environment variables.

        This is a convenience factory for the CLI. Tests should construct
        SimulatorSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        try:
            port = int(env.get('HLX_PORT', DEFAULT_PORT))
        except ValueError:
            port = -1

        repos_raw = env.get('HLX_LOCAL_REPOS', '')
        local_repos = tuple(r.strip() for r in repos_raw.split(',') if r.strip())

        return cls(
            host=env.get('HLX_HOST', '0.0.0.0'),
            port=port,
            cwd=Path(env.get('HLX_CWD') or Path.cwd()),
            build_dir=env.get('HLX_BUILD_DIR', DEFAULT_BUILD_DIR),
            config_file=env.get('HLX_CONFIG', CONFIG_FILENAME),
            strain=env.get('HLX_STRAIN', DEFAULT_STRAIN),
            local_repos=local_repos,
            git_host=env.get('HLX_GIT_HOST', '0.0.0.0'),
            action_params=MappingProxyType(_parse_pairs(env.get('HLX_PARAMS', ''))),
            github_token=env.get('GITHUB_TOKEN', ''),
        )
