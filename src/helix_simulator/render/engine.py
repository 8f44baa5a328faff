"""Render engine for compiled render scripts.

A render script is a Python module exposing ``main(params)`` (plain or
``async``) that returns an action response::

    {"statusCode": 200, "headers": {"Content-Type": "text/html"}, "body": "<html>..."}

Loaded modules live in a ``ScriptArena`` owned by the engine, keyed by script
path. A rebuild invalidates them with ``reload()`` (everything) or
``evict(prefix)`` (one directory).
"""

from __future__ import annotations

import base64
import hashlib
import importlib.util
import inspect
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Mapping, Protocol

from ..errors import RenderError
from ..observability.logging import get_logger
from ..templates.resolver import ScriptDescriptor

logger = get_logger(__name__)

_JSON_TYPE = re.compile(r'.*/json')
_BINARY_TYPE = re.compile(r'(.*/octet-stream|image/.*)')


@dataclass
class RenderResult:
    """Normalized response of a render script."""

    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b''

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == 'content-type':
                return value
        return 'text/html'


class RenderEngine(Protocol):
    """Executes render scripts."""

    async def invoke(self, script: ScriptDescriptor, params: Mapping[str, Any]) -> RenderResult:
        ...

    def reload(self) -> None:
        ...


class ScriptArena:
    """Loaded script modules keyed by their absolute path."""

    def __init__(self):
        self._modules: dict[Path, ModuleType] = {}

    def __contains__(self, path: object) -> bool:
        return path in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def load(self, path: Path) -> ModuleType:
        path = path.resolve()
        module = self._modules.get(path)
        if module is not None:
            return module
        digest = hashlib.sha1(str(path).encode()).hexdigest()[:12]
        spec = importlib.util.spec_from_file_location(f'hlx_script_{digest}', path)
        if spec is None or spec.loader is None:
            raise RenderError(f'Unable to load render script {path}')
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        self._modules[path] = module
        return module

    def evict(self, prefix: Path) -> int:
        """Drop every module loaded from below ``prefix``. Returns the number dropped."""
        prefix = prefix.resolve()
        stale = [p for p in self._modules if p.is_relative_to(prefix)]
        for path in stale:
            del self._modules[path]
        return len(stale)

    def clear(self) -> None:
        self._modules.clear()


def normalize_result(result: Any) -> RenderResult:
    """Convert a script's return value into a ``RenderResult``.

    Raises:
        RenderError: If the script returned nothing or reported an error.
    """
    if result is None:
        raise RenderError("Response is empty, don't know what to do")
    if isinstance(result, Exception):
        raise RenderError(str(result)) from result
    if not isinstance(result, Mapping):
        raise RenderError(f'Unexpected render result: {type(result).__name__}')
    error = result.get('error')
    if isinstance(error, Exception):
        raise RenderError(str(error)) from error

    status = int(result.get('statusCode') or 200)
    headers = {str(k): str(v) for k, v in (result.get('headers') or {}).items()}
    rendered = RenderResult(status=status, headers=headers)

    body = result.get('body', '')
    content_type = rendered.content_type
    if _JSON_TYPE.match(content_type):
        rendered.body = json.dumps(body, default=str).encode()
    elif _BINARY_TYPE.match(content_type):
        rendered.body = body if isinstance(body, bytes) else base64.b64decode(body or '')
    elif isinstance(body, bytes):
        rendered.body = body
    else:
        rendered.body = str(body or '').encode()
    return rendered


class ModuleRenderEngine:
    """Runs render scripts as Python modules loaded into a ``ScriptArena``."""

    def __init__(self, arena: ScriptArena | None = None):
        self.arena = arena or ScriptArena()

    async def invoke(self, script: ScriptDescriptor, params: Mapping[str, Any]) -> RenderResult:
        try:
            module = self.arena.load(script.path)
            main = getattr(module, 'main', None)
            if main is None:
                raise RenderError(f'Render script {script.name} has no main()')
            result = main(dict(params))
            if inspect.isawaitable(result):
                result = await result
        except RenderError:
            raise
        except Exception as e:
            logger.error('render_script_failed', script=script.name, exc_info=True)
            raise RenderError(f'Error executing {script.name}: {e}') from e
        return normalize_result(result)

    def reload(self) -> None:
        self.arena.clear()

    def evict(self, prefix: Path) -> int:
        return self.arena.evict(prefix)
