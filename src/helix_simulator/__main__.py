"""Run the simulator: ``python -m helix_simulator [--port 3000] [--local-repo ../lib]``."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
from pathlib import Path

import uvicorn

from .app import create_app
from .errors import SimulatorError
from .observability.logging import configure_logging, get_logger
from .project import SimulatorProject
from .settings import SimulatorSettings

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog='helix-simulator')
    parser.add_argument('--host')
    parser.add_argument('--port', type=int)
    parser.add_argument('--cwd', type=Path)
    parser.add_argument('--build-dir')
    parser.add_argument('--config')
    parser.add_argument('--strain')
    parser.add_argument('--local-repo', action='append', default=[], dest='local_repos')
    parser.add_argument('--param', action='append', default=[], dest='params', metavar='KEY=VALUE')
    parser.add_argument('--log-level')
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace, env: dict[str, str] | None = None) -> SimulatorSettings:
    """Environment settings overridden by command-line arguments."""
    settings = SimulatorSettings.from_env(env)
    overrides: dict = {}
    for name, attr in (
        ('host', 'host'),
        ('port', 'port'),
        ('cwd', 'cwd'),
        ('build_dir', 'build_dir'),
        ('config', 'config_file'),
        ('strain', 'strain'),
    ):
        value = getattr(args, name)
        if value is not None:
            overrides[attr] = value
    if args.local_repos:
        overrides['local_repos'] = settings.local_repos + tuple(args.local_repos)
    if args.params:
        params = dict(settings.action_params)
        for pair in args.params:
            key, _, value = pair.partition('=')
            params[key] = value
        overrides['action_params'] = params
    return dataclasses.replace(settings, **overrides)


async def serve(settings: SimulatorSettings) -> None:
    project = await SimulatorProject(settings).init()
    sock = project.bind()
    config = uvicorn.Config(create_app(project), log_level='warning')
    server = uvicorn.Server(config)
    logger.info('simulator_listening', host=settings.host, port=sock.getsockname()[1])
    await server.serve(sockets=[sock])


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(level=args.log_level)
    try:
        asyncio.run(serve(build_settings(args)))
    except SimulatorError as e:
        logger.error('simulator_failed', code=e.code.value, error=e.message)
        return 1
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
