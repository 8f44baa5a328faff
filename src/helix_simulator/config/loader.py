"""Strain configuration loader.

Reads ``helix-config.yaml`` and turns it into a ``StrainRegistry``::

    version: 1
    strains:
      - name: default
        code: /local/default
        content: https://github.com/adobe/project-helix.io.git#master
        static:
          url: https://github.com/adobe/project-helix.io.git
          path: /htdocs
        directoryIndex: README.html
      - name: website
        condition:
          url.hostname: project-helix.io
        content: https://github.com/adobe/helix-home.git
      - name: api
        origin: https://www.example.com/api

``strains`` may also be a mapping of name to strain definition. A strain
without ``content`` serves from the local working copy.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ConfigurationError
from .conditions import parse_condition
from .git_url import LOCAL_HOST, GitReference
from .strain import DEFAULT_DIRECTORY_INDEX, ProxyOrigin, StaticContent, Strain, StrainRegistry

CONFIG_FILENAME = 'helix-config.yaml'

# Content served from the developer's working copy.
LOCAL_CONTENT_URL = f'http://{LOCAL_HOST}/local/default.git'

DEFAULT_STATIC_PATH = '/htdocs'


class GitRefSchema(BaseModel):
    """Structured form of a git location."""

    model_config = ConfigDict(extra='forbid')

    protocol: str | None = None
    host: str | None = None
    port: str | int | None = None
    owner: str | None = None
    repo: str | None = None
    ref: str | None = None
    path: str | None = None


class StaticSchema(BaseModel):
    model_config = ConfigDict(extra='forbid')

    url: str | GitRefSchema | None = None
    path: str | None = None
    magic: bool = False
    allow: list[str] = Field(default_factory=list)
    deny: list[str] = Field(default_factory=list)


class StrainSchema(BaseModel):
    """One strain as written in the configuration file."""

    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    name: str = Field(..., min_length=1)
    code: str = ''
    content: str | GitRefSchema | None = None
    static: str | StaticSchema | None = None
    directory_index: str = Field(default=DEFAULT_DIRECTORY_INDEX, alias='directoryIndex')
    condition: dict[str, Any] | None = None
    urls: list[str] = Field(default_factory=list)
    url: str | None = None
    origin: str | None = None
    params: list[str] = Field(default_factory=list)

    @field_validator('directory_index')
    @classmethod
    def _no_slash_in_index(cls, value: str) -> str:
        if '/' in value:
            raise ValueError('directoryIndex must be a file name')
        return value


class HelixConfigSchema(BaseModel):
    model_config = ConfigDict(extra='allow')

    version: int | str = 1
    strains: list[StrainSchema]


def _to_git_ref(
    value: str | GitRefSchema | None,
    default: GitReference,
    *,
    inherit: bool = True,
) -> GitReference:
    """Resolve a configured location. Structured forms fill gaps from ``default`` when ``inherit`` is set."""
    if value is None:
        return default
    if isinstance(value, str):
        try:
            return GitReference.parse(value)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
    defaults = default.to_json() if inherit else None
    return GitReference.from_dict(value.model_dump(exclude_none=True), defaults)


def _build_static(value: str | StaticSchema | None, content: GitReference) -> StaticContent:
    default = content.with_path(DEFAULT_STATIC_PATH)
    if value is None or isinstance(value, str):
        url = _to_git_ref(value, default)
        return StaticContent(url=url if url.path else url.with_path(DEFAULT_STATIC_PATH))

    url = _to_git_ref(value.url, default)
    if value.path is not None:
        url = url.with_path(value.path)
    elif not url.path:
        url = url.with_path(DEFAULT_STATIC_PATH)
    return StaticContent(
        url=url,
        magic=value.magic,
        allow=tuple(value.allow),
        deny=tuple(value.deny),
    )


def build_strain(schema: StrainSchema) -> Strain:
    """Convert a validated strain schema into the runtime ``Strain``."""
    content = _to_git_ref(schema.content, GitReference.parse(LOCAL_CONTENT_URL), inherit=False)
    urls = list(schema.urls)
    if schema.url and schema.url not in urls:
        urls.insert(0, schema.url)
    return Strain(
        name=schema.name,
        content=content,
        static=_build_static(schema.static, content),
        code=schema.code,
        directory_index=schema.directory_index,
        condition=parse_condition(schema.condition),
        urls=tuple(urls),
        origin=ProxyOrigin.parse(schema.origin) if schema.origin else None,
        params=tuple(schema.params),
    )


def parse_config(data: Any) -> StrainRegistry:
    """Build a registry from already-parsed YAML data.

    Raises:
        ConfigurationError: If the data does not describe a valid strain set.
    """
    if not isinstance(data, dict):
        raise ConfigurationError('Invalid config. Expected a mapping at the top level.')
    data = dict(data)
    strains = data.get('strains')
    if isinstance(strains, dict):
        data['strains'] = [{'name': name, **(cfg or {})} for name, cfg in strains.items()]
    try:
        config = HelixConfigSchema.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f'Invalid config: {e}') from e
    return StrainRegistry(build_strain(s) for s in config.strains)


def load_config(path: Path | str) -> StrainRegistry:
    """Read a configuration file from disk."""
    path = Path(path)
    try:
        text = path.read_text(encoding='utf-8')
    except OSError as e:
        raise ConfigurationError(f'Unable to read {path}: {e}') from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f'Invalid YAML in {path}: {e}') from e
    return parse_config(data)


def default_registry() -> StrainRegistry:
    """Registry used when a project has no configuration file: one local default strain."""
    return parse_config({'strains': [{'name': 'default'}]})
