"""Embedded git hosting service for local working copies.

Serves the raw-content endpoint of a git hosting service for a set of local
repositories, so that references pointing at ``http://127.0.0.1:<port>``
behave like references to a real remote::

    GET /raw/helix/<repo>/<ref>/<path>

Requests for the currently checked-out branch are answered from the working
tree, so uncommitted edits are visible. Other refs are read from the object
database with ``git show``.
"""

from __future__ import annotations

import asyncio
import mimetypes
import socket
import subprocess
from pathlib import Path
from typing import Mapping, Protocol

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response

from ..errors import ConfigurationError, PortInUseError
from ..observability.logging import get_logger

logger = get_logger(__name__)

GIT_LOCAL_HOST = '127.0.0.1'
GIT_LOCAL_OWNER = 'helix'

GIT_TIMEOUT = 30


class GitServer(Protocol):
    """The embedded git service the emulator drives."""

    async def start(self, repos: Mapping[str, Path]) -> int:
        """Start serving ``repos`` (name -> working copy). Returns the bound port."""
        ...

    async def stop(self) -> None:
        ...

    async def current_branch(self, repo: str) -> str:
        """Branch checked out in the working copy served as ``repo``."""
        ...


def run_git(repo_path: Path, args: list[str]) -> subprocess.CompletedProcess:
    """Run a git command in ``repo_path``."""
    return subprocess.run(
        ['git'] + args,
        cwd=repo_path,
        capture_output=True,
        timeout=GIT_TIMEOUT,
    )


def find_work_tree(path: Path) -> Path | None:
    """Return the top level of the working copy containing ``path``, if any."""
    if not path.is_dir():
        return None
    try:
        result = run_git(path, ['rev-parse', '--show-toplevel'])
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    return Path(result.stdout.decode().strip())


def read_current_branch(repo_path: Path) -> str:
    """Checked-out branch name, or the commit id for a detached HEAD."""
    result = run_git(repo_path, ['symbolic-ref', '--short', '-q', 'HEAD'])
    if result.returncode == 0 and result.stdout.strip():
        return result.stdout.decode().strip()
    result = run_git(repo_path, ['rev-parse', 'HEAD'])
    if result.returncode != 0:
        raise ConfigurationError(
            f'{repo_path} is no valid git repository: {result.stderr.decode().strip()}'
        )
    return result.stdout.decode().strip()


def read_origin_url(repo_path: Path) -> str:
    """URL of the working copy's ``origin`` remote."""
    result = run_git(repo_path, ['remote', 'get-url', 'origin'])
    if result.returncode != 0 or not result.stdout.strip():
        raise ConfigurationError(f'{repo_path} has no "origin" remote')
    return result.stdout.decode().strip()


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a listening TCP socket.

    Raises:
        PortInUseError: If the address cannot be bound.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise PortInUseError(port, host) from e
    sock.set_inheritable(True)
    return sock


def split_ref_path(ref_path: str) -> list[tuple[str, str]]:
    """Candidate (ref, path) splits of ``ref_path``, shortest ref first.

    ``feature/x/index.md`` yields ``(feature, x/index.md)`` and
    ``(feature/x, index.md)``.
    """
    segments = ref_path.split('/')
    splits = []
    for i in range(1, len(segments)):
        ref, path = '/'.join(segments[:i]), '/'.join(segments[i:])
        # a leading dash would reach git as an option
        if ref and path and not ref.startswith('-'):
            splits.append((ref, path))
    return splits


def _media_type(path: str) -> str:
    return mimetypes.guess_type(path)[0] or 'application/octet-stream'


def create_git_app(repos: Mapping[str, Path], branches: Mapping[str, str]) -> FastAPI:
    """Create the raw-content app for ``repos``."""
    app = FastAPI(title='helix-simulator git', docs_url=None, redoc_url=None, openapi_url=None)

    def _not_found(detail: str) -> JSONResponse:
        return JSONResponse(status_code=404, content={'code': 'not_found', 'message': detail})

    @app.get('/raw/{owner}/{repo}/{ref_path:path}')
    async def raw(owner: str, repo: str, ref_path: str) -> Response:
        repo_path = repos.get(repo)
        if owner != GIT_LOCAL_OWNER or repo_path is None:
            return _not_found(f'unknown repository {owner}/{repo}')

        # branch names may contain slashes
        branch = branches.get(repo)
        if branch and ref_path.startswith(f'{branch}/'):
            path = ref_path[len(branch) + 1:]
            root = repo_path.resolve()
            file_path = (root / path).resolve()
            if not file_path.is_relative_to(root) or not file_path.is_file():
                return _not_found(f'{path} not found')
            content = await asyncio.to_thread(file_path.read_bytes)
            return Response(content=content, media_type=_media_type(path))

        for ref, path in split_ref_path(ref_path):
            result = await asyncio.to_thread(run_git, repo_path, ['show', f'{ref}:{path}'])
            if result.returncode == 0:
                return Response(content=result.stdout, media_type=_media_type(path))
        return _not_found(f'{ref_path} not found')

    return app


class LocalGitServer:
    """Runs the raw-content app in-process with uvicorn.

    Example::

        server = LocalGitServer()
        port = await server.start({'github.com--adobe--foo': Path('.')})
        # http://127.0.0.1:<port>/raw/helix/github.com--adobe--foo/<branch>/index.md
        await server.stop()
    """

    def __init__(self, host: str = '0.0.0.0', port: int = 0):
        self.host = host
        self.port = port
        self._repos: dict[str, Path] = {}
        self._branches: dict[str, str] = {}
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

    async def current_branch(self, repo: str) -> str:
        if repo not in self._branches:
            self._branches[repo] = await asyncio.to_thread(read_current_branch, self._repos[repo])
        return self._branches[repo]

    async def start(self, repos: Mapping[str, Path]) -> int:
        self._repos = dict(repos)
        self._branches = {}
        for name in self._repos:
            await self.current_branch(name)

        sock = bind_socket(self.host, self.port)
        bound_port = sock.getsockname()[1]
        config = uvicorn.Config(
            create_git_app(self._repos, self._branches),
            log_level='warning',
            lifespan='off',
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                # serve() ended before startup completed
                self._task.result()
                raise PortInUseError(bound_port, self.host)
            await asyncio.sleep(0.01)

        logger.debug('git_server_started', port=bound_port, repos=sorted(self._repos))
        return bound_port

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._task is not None:
            await self._task
        self._server = None
        self._task = None
        logger.debug('git_server_stopped')
