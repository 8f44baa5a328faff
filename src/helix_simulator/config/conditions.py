"""Declarative strain conditions.

A condition is a small predicate tree read from the strain configuration::

    condition:
      or:
        - url.hostname: project-helix.io
        - url: http://localhost:3000/docs
        - header.x-preview: "true"

Supported properties:

- ``url``: the request host equals the url's ``host[:port]`` and the request
  path is below the url's path. A match yields the url's path as mount.
- ``url.hostname``: the request host (without port) equals the value.
- ``url.path``: the request path is below the value.
- ``header.<name>``: the request header equals the value.

Combinators are ``and``, ``or`` (lists) and ``not`` (single condition).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlparse

from ..errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class ConditionRequest:
    """The request facets a condition is evaluated against."""

    host: str
    path: str
    headers: Mapping[str, str]

    @property
    def hostname(self) -> str:
        return self.host.split(':', 1)[0].lower()


@dataclass(frozen=True, slots=True)
class ConditionMatch:
    """Result of a truthy evaluation. ``mount`` is ``None`` unless a ``url`` predicate matched."""

    mount: str | None = None


def _below(path: str, prefix: str) -> bool:
    prefix = prefix if prefix.endswith('/') else f'{prefix}/'
    return f'{path.rstrip("/")}/'.startswith(prefix)


class Condition:
    """Base class for condition nodes."""

    def evaluate(self, request: ConditionRequest) -> ConditionMatch | None:
        raise NotImplementedError

    def to_json(self) -> Any:
        raise NotImplementedError


class UrlCondition(Condition):
    def __init__(self, url: str):
        parsed = urlparse(url)
        self.url = url
        self.host = parsed.netloc.lower()
        self.mount = parsed.path.rstrip('/')

    def evaluate(self, request):
        if self.host and request.host.lower() != self.host:
            return None
        if not _below(request.path, self.mount or '/'):
            return None
        return ConditionMatch(mount=self.mount)

    def to_json(self):
        return {'url': self.url}


class HostnameCondition(Condition):
    def __init__(self, hostname: str):
        self.hostname = hostname.lower()

    def evaluate(self, request):
        return ConditionMatch() if request.hostname == self.hostname else None

    def to_json(self):
        return {'url.hostname': self.hostname}


class PathCondition(Condition):
    def __init__(self, prefix: str):
        self.prefix = prefix

    def evaluate(self, request):
        return ConditionMatch() if _below(request.path, self.prefix) else None

    def to_json(self):
        return {'url.path': self.prefix}


class HeaderCondition(Condition):
    def __init__(self, name: str, value: str):
        self.name = name.lower()
        self.value = value

    def evaluate(self, request):
        headers = {k.lower(): v for k, v in request.headers.items()}
        return ConditionMatch() if headers.get(self.name) == self.value else None

    def to_json(self):
        return {f'header.{self.name}': self.value}


class AndCondition(Condition):
    def __init__(self, children: list[Condition]):
        self.children = children

    def evaluate(self, request):
        mount = None
        for child in self.children:
            match = child.evaluate(request)
            if match is None:
                return None
            if match.mount is not None and mount is None:
                mount = match.mount
        return ConditionMatch(mount=mount)

    def to_json(self):
        return {'and': [c.to_json() for c in self.children]}


class OrCondition(Condition):
    def __init__(self, children: list[Condition]):
        self.children = children

    def evaluate(self, request):
        for child in self.children:
            match = child.evaluate(request)
            if match is not None:
                return match
        return None

    def to_json(self):
        return {'or': [c.to_json() for c in self.children]}


class NotCondition(Condition):
    def __init__(self, child: Condition):
        self.child = child

    def evaluate(self, request):
        return ConditionMatch() if self.child.evaluate(request) is None else None

    def to_json(self):
        return {'not': self.child.to_json()}


def parse_condition(data: Any) -> Condition | None:
    """Parse a condition tree from its configuration form.

    Empty values yield ``None``. A mapping with several keys is an implicit
    ``and`` of its entries.

    Raises:
        ConfigurationError: On unknown properties or malformed combinators.
    """
    if not data:
        return None
    if not isinstance(data, Mapping):
        raise ConfigurationError(f'Invalid condition: {data!r}')

    nodes: list[Condition] = []
    for key, value in data.items():
        if key in ('and', 'or'):
            if not isinstance(value, list) or not value:
                raise ConfigurationError(f'Condition "{key}" requires a non-empty list')
            children = [parse_condition(v) for v in value]
            if any(c is None for c in children):
                raise ConfigurationError(f'Condition "{key}" contains an empty entry')
            nodes.append(AndCondition(children) if key == 'and' else OrCondition(children))
        elif key == 'not':
            child = parse_condition(value)
            if child is None:
                raise ConfigurationError('Condition "not" requires a condition')
            nodes.append(NotCondition(child))
        elif key == 'url':
            nodes.append(UrlCondition(str(value)))
        elif key == 'url.hostname':
            nodes.append(HostnameCondition(str(value)))
        elif key == 'url.path':
            nodes.append(PathCondition(str(value)))
        elif key.startswith('header.') and len(key) > len('header.'):
            nodes.append(HeaderCondition(key[len('header.'):], str(value)))
        else:
            raise ConfigurationError(f'Unknown condition property: {key}')

    return nodes[0] if len(nodes) == 1 else AndCondition(nodes)
