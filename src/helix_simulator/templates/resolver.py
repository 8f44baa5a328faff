"""Render-script resolution.

The build step writes a ``<name>.info.json`` metadata file next to every
compiled render script::

    {"name": "html", "main": "html.py"}

``TemplateResolver`` maps a request to one of these scripts by its logical
name: ``<selector>_<extension>`` (``print_html``), ``<extension>`` (``html``),
or ``cgi-bin-<basename>`` for requests below ``/cgi-bin/``.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path

from ..errors import ConfigurationError
from ..observability.logging import get_logger
from ..routing.context import RequestRoutingContext

logger = get_logger(__name__)

INFO_SUFFIX = '.info.json'
SRC_PREFIX = 'src/'
CGI_PREFIX = 'cgi-bin/'
CGI_PATH = '/cgi-bin/'
DEFAULT_EXTENSION = 'html'


@dataclass(frozen=True, slots=True)
class ScriptDescriptor:
    """A render script available in the build directory."""

    name: str
    path: Path


def _legacy_name(info_file: Path, build_dir: Path) -> str:
    """Name for metadata written before the build recorded one."""
    rel = info_file.relative_to(build_dir).as_posix()
    cgi = False
    if rel.startswith(SRC_PREFIX):
        rel = rel[len(SRC_PREFIX):]
    elif rel.startswith(CGI_PREFIX):
        rel = rel[len(CGI_PREFIX):]
        cgi = True
    basename = Path(rel).name[:-len(INFO_SUFFIX)]
    return f'cgi-bin-{basename}' if cgi else basename


def scan_scripts(build_dir: Path) -> dict[str, ScriptDescriptor]:
    """Read every script metadata file below ``build_dir``.

    Raises:
        ConfigurationError: If a metadata file is not valid JSON or has no ``main``.
    """
    scripts: dict[str, ScriptDescriptor] = {}
    if not build_dir.is_dir():
        return scripts
    for info_file in sorted(build_dir.rglob(f'*{INFO_SUFFIX}')):
        try:
            info = json.loads(info_file.read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            raise ConfigurationError(f'Invalid script info {info_file}: {e}') from e
        main = info.get('main')
        if not main:
            raise ConfigurationError(f'Script info {info_file} has no "main" entry')
        name = info.get('name') or _legacy_name(info_file, build_dir)
        scripts[name] = ScriptDescriptor(name=name, path=(build_dir / main).resolve())
    return scripts


def script_name(ctx: RequestRoutingContext) -> str:
    """Logical script name for a request."""
    if ctx.rel_path.startswith(CGI_PATH):
        return f'cgi-bin-{Path(ctx.rel_path).stem}'
    name = f'{ctx.selector}_' if ctx.selector else ''
    return name + (ctx.extension or DEFAULT_EXTENSION)


class TemplateResolver:
    """Maps requests to render scripts of a build directory."""

    def __init__(self, build_dir: Path):
        self.build_dir = Path(build_dir)
        self._scripts: dict[str, ScriptDescriptor] = {}

    @property
    def scripts(self) -> dict[str, ScriptDescriptor]:
        return dict(self._scripts)

    def scan(self) -> dict[str, ScriptDescriptor]:
        """(Re-)read the build directory. Called at startup and after rebuilds."""
        self._scripts = scan_scripts(self.build_dir)
        logger.debug('scripts_scanned', build_dir=str(self.build_dir), scripts=sorted(self._scripts))
        return self.scripts

    async def resolve(self, ctx: RequestRoutingContext) -> ScriptDescriptor | None:
        """Find the script for ``ctx``, or ``None`` if there is none on disk."""
        name = script_name(ctx)
        logger.debug('script_resolved', path=ctx.path, script=name)
        script = self._scripts.get(name)
        if script is None:
            logger.info('script_not_found', script=name)
            return None
        if not await asyncio.to_thread(script.path.is_file):
            logger.info('script_file_not_found', script=name, file=str(script.path))
            return None
        return script
