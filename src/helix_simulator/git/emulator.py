"""Local repository emulation.

Maps local working copies to the git references they stand in for, and
resolves such references to an embedded git service serving the working
copy::

    emulator = LocalRepoEmulator()
    emulator.register('.', GitReference.parse('https://github.com/adobe/foo.git'))
    local = await emulator.resolve(strain.content)
    # GitReference(host='127.0.0.1', port='51234', owner='helix',
    #              repo='github.com--adobe--foo', ref='<checked-out branch>')

The embedded service is started lazily on the first resolve of a mapped
reference. Concurrent first resolves share one start operation. Mappings
registered while the service runs are picked up on the next start.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ..config.git_url import GitReference
from ..errors import RepoConflictError
from ..observability.logging import get_logger
from ..observability.metrics import GIT_EMULATOR_STARTS_TOTAL
from .server import GIT_LOCAL_HOST, GIT_LOCAL_OWNER, GitServer, LocalGitServer

logger = get_logger(__name__)


class EmulatorState(str, Enum):
    STOPPED = 'stopped'
    STARTING = 'starting'
    RUNNING = 'running'


@dataclass
class LocalRepoMapping:
    """A local directory standing in for a git repository.

    ``local_url`` is only set while the emulator is running.
    """

    key: str
    repo_path: Path
    git_url: GitReference
    local_url: GitReference | None = field(default=None)


class LocalRepoEmulator:
    """Registry of local repositories served through an embedded git service."""

    def __init__(self, git_server: GitServer | None = None, cwd: Path | None = None):
        self._git_server = git_server or LocalGitServer()
        self._cwd = cwd or Path.cwd()
        self._by_path: dict[Path, LocalRepoMapping] = {}
        self._by_key: dict[str, LocalRepoMapping] = {}
        self._state = EmulatorState.STOPPED
        self._start_task: asyncio.Task | None = None
        self._port: int | None = None

    @property
    def state(self) -> EmulatorState:
        return self._state

    @property
    def port(self) -> int | None:
        return self._port

    @property
    def mappings(self) -> list[LocalRepoMapping]:
        return list(self._by_path.values())

    def register(self, repo_path: Path | str, git_url: GitReference) -> LocalRepoMapping:
        """Register ``repo_path`` as the working copy of ``git_url``'s repository.

        Registering the same directory for the same repository again is a
        no-op. Registering another directory for an already mapped
        repository replaces the earlier directory.

        Raises:
            RepoConflictError: If the directory is registered for another repository.
        """
        local_path = (self._cwd / Path(repo_path)).resolve()
        key = git_url.identity_key

        mapping = self._by_path.get(local_path)
        if mapping is None:
            previous = self._by_key.get(key)
            if previous is not None:
                logger.warning(
                    'git_mapping_replaced',
                    key=key,
                    previous=str(previous.repo_path),
                    path=str(local_path),
                )
                del self._by_path[previous.repo_path]
            mapping = LocalRepoMapping(key=key, repo_path=local_path, git_url=git_url)
            self._by_path[local_path] = mapping
            self._by_key[key] = mapping
            if self._state is not EmulatorState.STOPPED:
                logger.warning('git_mapping_registered_while_running', key=key, path=str(local_path))
        elif mapping.key != key:
            raise RepoConflictError(key, str(mapping.repo_path))
        return mapping

    def lookup(self, git_url: GitReference) -> LocalRepoMapping | None:
        """Mapping registered for ``git_url``'s repository, if any."""
        return self._by_key.get(git_url.identity_key)

    async def resolve(self, git_url: GitReference) -> GitReference | None:
        """Resolve ``git_url`` to the emulated location of its working copy.

        Returns ``None`` if no local directory is registered for the
        repository. Starts the embedded service if needed. The returned
        reference keeps the caller's ``path``.
        """
        mapping = self.lookup(git_url)
        if mapping is None:
            return None
        await self.start()
        if mapping.local_url is None:
            # registered after the running service was started
            return None
        if mapping.local_url.path != git_url.path:
            return mapping.local_url.with_path(git_url.path)
        return mapping.local_url

    async def start(self) -> None:
        """Bring the emulator to ``RUNNING``.

        All callers arriving while a start is in flight await the same start.
        """
        if self._state is EmulatorState.RUNNING:
            return
        if self._start_task is None:
            self._state = EmulatorState.STARTING
            self._start_task = asyncio.ensure_future(self._start())
        await asyncio.shield(self._start_task)

    async def _start(self) -> None:
        mappings = list(self._by_path.values())
        try:
            logger.debug('git_emulator_starting', repos=len(mappings))
            port = await self._git_server.start({m.key: m.repo_path for m in mappings})
            for mapping in mappings:
                branch = await self._git_server.current_branch(mapping.key)
                mapping.local_url = GitReference(
                    protocol='http',
                    host=GIT_LOCAL_HOST,
                    port=str(port),
                    owner=GIT_LOCAL_OWNER,
                    repo=mapping.key,
                    ref=branch,
                )
                logger.debug(
                    'git_emulating',
                    remote=str(mapping.git_url),
                    local=mapping.local_url.raw,
                    path=str(mapping.repo_path),
                )
        except BaseException:
            for mapping in mappings:
                mapping.local_url = None
            self._state = EmulatorState.STOPPED
            self._start_task = None
            GIT_EMULATOR_STARTS_TOTAL.labels(result='failed').inc()
            await self._git_server.stop()
            raise
        self._port = port
        self._state = EmulatorState.RUNNING
        self._start_task = None
        GIT_EMULATOR_STARTS_TOTAL.labels(result='started').inc()

    async def stop(self) -> None:
        """Stop the embedded service. A later resolve starts it again."""
        if self._start_task is not None:
            await asyncio.wait([self._start_task])
        if self._state is not EmulatorState.RUNNING:
            return
        logger.debug('git_emulator_stopping')
        await self._git_server.stop()
        for mapping in self._by_path.values():
            mapping.local_url = None
        self._port = None
        self._state = EmulatorState.STOPPED
