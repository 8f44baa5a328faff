"""Simulator project: startup checks and wiring.

A project directory holds the render-script sources (``src/``), their build
output, an optional ``helix-config.yaml`` and, when content is served from the
working copy itself, an ``index.md`` or ``README.md``::

    project = await SimulatorProject(SimulatorSettings(cwd=path)).init()
    response = await project.dispatcher.dispatch(IncomingRequest('/index.html'))
    await project.stop()
"""

from __future__ import annotations

import asyncio
import socket
from pathlib import Path

from .config.git_url import GitReference
from .config.loader import default_registry, load_config
from .config.strain import Strain, StrainRegistry
from .delivery.content_proxy import ContentProxy
from .delivery.dispatcher import DeliveryDispatcher
from .delivery.fetch import HttpFetchClient, HttpProxyClient
from .errors import ConfigurationError
from .git.emulator import LocalRepoEmulator
from .git.server import GitServer, LocalGitServer, bind_socket, find_work_tree, read_origin_url
from .observability.logging import get_logger
from .render.engine import ModuleRenderEngine, RenderEngine
from .settings import SimulatorSettings
from .templates.resolver import TemplateResolver

logger = get_logger(__name__)

SRC_DIR = 'src'
INDEX_MD = 'index.md'
README_MD = 'README.md'


class SimulatorProject:
    """Owns the strain registry, the emulator and the delivery pipeline of a project."""

    def __init__(
        self,
        settings: SimulatorSettings | None = None,
        *,
        registry: StrainRegistry | None = None,
        git_server: GitServer | None = None,
        render_engine: RenderEngine | None = None,
        fetch_client: HttpFetchClient | None = None,
        proxy_client: HttpProxyClient | None = None,
    ):
        self.settings = settings or SimulatorSettings()
        self.cwd = self.settings.cwd.resolve()
        self.registry = registry
        self.emulator = LocalRepoEmulator(
            git_server or LocalGitServer(host=self.settings.git_host),
            cwd=self.cwd,
        )
        self.render_engine = render_engine or ModuleRenderEngine()
        self.fetch_client = fetch_client or HttpFetchClient(github_token=self.settings.github_token)
        self.proxy_client = proxy_client or HttpProxyClient()
        self.template_resolver = TemplateResolver(self.settings.build_path)
        self.src_dir: Path | None = None
        self.index_md: Path | None = None
        self.dispatcher: DeliveryDispatcher | None = None

    @property
    def strain(self) -> Strain:
        strain = self.registry.get(self.settings.strain) if self.registry else None
        if strain is None:
            raise ConfigurationError(f'Unknown strain: {self.settings.strain}')
        return strain

    def _check_paths(self) -> None:
        src = self.cwd / SRC_DIR
        self.src_dir = src if src.is_dir() else None
        self.index_md = None
        for name in (INDEX_MD, README_MD):
            candidate = self.cwd / name
            if candidate.is_file():
                self.index_md = candidate
                break

    def _load_registry(self) -> StrainRegistry:
        config_path = self.settings.config_path
        if config_path.is_file():
            logger.debug('config_loading', path=str(config_path))
            return load_config(config_path)
        logger.debug('config_missing_using_default', path=str(config_path))
        return default_registry()

    async def _register_local_content(self) -> None:
        content = self.strain.content
        if not content.is_local:
            return
        if self.index_md is None:
            raise ConfigurationError(
                'Invalid config. No "content" location specified and no "README.md" or "index.md" found.'
            )
        work_tree = await asyncio.to_thread(find_work_tree, self.index_md.parent)
        if work_tree is None:
            raise ConfigurationError('Local README.md or index.md must be inside a valid git repository.')
        self.emulator.register(work_tree, content)

    async def _register_local_repos(self) -> None:
        for repo in self.settings.local_repos:
            path = (self.cwd / repo).resolve()
            work_tree = await asyncio.to_thread(find_work_tree, path)
            if work_tree is None:
                raise ConfigurationError(f'{path} is not inside a valid git repository.')
            origin = await asyncio.to_thread(read_origin_url, work_tree)
            try:
                git_url = GitReference.parse(origin)
            except ValueError as e:
                raise ConfigurationError(f'Unsupported origin of {work_tree}: {e}') from e
            self.emulator.register(work_tree, git_url)

    async def init(self) -> SimulatorProject:
        """Run the startup checks and build the delivery pipeline.

        Raises:
            ConfigurationError: If the project or its configuration is invalid.
            RepoConflictError: If a working copy is mapped to two repositories.
        """
        errors = self.settings.validate()
        if errors:
            raise ConfigurationError('; '.join(errors))

        if self.registry is None:
            self.registry = self._load_registry()

        self._check_paths()
        if self.src_dir is None:
            raise ConfigurationError('Invalid config. No "src" directory.')

        await self._register_local_content()
        await self._register_local_repos()
        await asyncio.to_thread(self.template_resolver.scan)

        self.dispatcher = DeliveryDispatcher(
            self.registry,
            self.emulator,
            self.template_resolver,
            self.render_engine,
            self.fetch_client,
            self.proxy_client,
            ContentProxy(self.fetch_client),
            action_params=self.settings.action_params,
            server_url=self.settings.server_url,
        )

        logger.info(
            'project_initialized',
            strain=self.strain.name,
            content=str(self.strain.content),
            src=str(self.src_dir),
            build_dir=str(self.template_resolver.build_dir),
            local_repos=[str(m.repo_path) for m in self.emulator.mappings],
        )
        return self

    def bind(self) -> socket.socket:
        """Bind the HTTP server socket.

        Raises:
            PortInUseError: If the configured port is taken.
        """
        return bind_socket(self.settings.host, self.settings.port)

    async def reload(self) -> None:
        """Pick up rebuilt render scripts."""
        await asyncio.to_thread(self.template_resolver.scan)
        self.render_engine.reload()
        logger.info('scripts_reloaded', scripts=len(self.template_resolver.scripts))

    async def stop(self) -> None:
        await self.emulator.stop()
        await self.fetch_client.aclose()
        await self.proxy_client.aclose()
        logger.debug('project_stopped')
