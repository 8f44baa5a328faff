"""Strains and strain selection.

A strain is a named routing rule binding requests (by condition, URL prefix,
or as the ``default`` fallback) to a content repository, a static-asset
repository and rendering settings. Proxy strains forward to an origin instead.

Selection precedence (first match wins, stable for identical input):

  1. ``X-Strain`` cookie or ``hlx_strain`` query parameter naming a strain.
  2. Declarative conditions, in registration order.
  3. URL-prefix strains whose first url matches host and path.
  4. The ``default`` strain.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping
from urllib.parse import urlparse

from ..errors import ConfigurationError
from ..request import IncomingRequest
from .conditions import Condition, ConditionRequest
from .git_url import GitReference

DEFAULT_STRAIN = 'default'
DEFAULT_DIRECTORY_INDEX = 'index.html'

STRAIN_COOKIE = 'X-Strain'
STRAIN_QUERY_PARAM = 'hlx_strain'


@dataclass(frozen=True, slots=True)
class StaticContent:
    """Static-asset location of a strain.

    ``path`` is the root below the repository that assets are served from.
    """

    url: GitReference
    magic: bool = False
    allow: tuple[str, ...] = ()
    deny: tuple[str, ...] = ()

    @property
    def path(self) -> str:
        return self.url.path

    def to_json(self) -> dict:
        return {
            **self.url.to_json(),
            'magic': self.magic,
            'allow': list(self.allow),
            'deny': list(self.deny),
        }


@dataclass(frozen=True, slots=True)
class ProxyOrigin:
    """Origin a proxy strain forwards to."""

    hostname: str
    port: int | None = None
    path: str = '/'
    use_ssl: bool = True

    @classmethod
    def parse(cls, url: str) -> ProxyOrigin:
        parsed = urlparse(url)
        if not parsed.hostname:
            raise ConfigurationError(f'Invalid proxy origin: {url!r}')
        return cls(
            hostname=parsed.hostname,
            port=parsed.port,
            path=parsed.path or '/',
            use_ssl=parsed.scheme != 'http',
        )

    @property
    def effective_port(self) -> int:
        if self.port:
            return self.port
        return 443 if self.use_ssl else 80

    @property
    def base_url(self) -> str:
        scheme = 'https' if self.use_ssl else 'http'
        return f'{scheme}://{self.hostname}:{self.effective_port}'

    def target_url(self, relative_path: str) -> str:
        """Resolve ``relative_path`` against the origin's path."""
        resolved = posixpath.normpath(posixpath.join('/', self.path, relative_path.lstrip('/')))
        if relative_path.endswith('/') and not resolved.endswith('/'):
            resolved += '/'
        return f'{self.base_url}{resolved}'

    def to_json(self) -> dict:
        return {
            'hostname': self.hostname,
            'port': self.effective_port,
            'path': self.path,
            'useSSL': self.use_ssl,
        }


@dataclass(frozen=True, slots=True)
class Strain:
    """A named routing rule."""

    name: str
    content: GitReference
    static: StaticContent
    code: str = ''
    directory_index: str = DEFAULT_DIRECTORY_INDEX
    condition: Condition | None = None
    urls: tuple[str, ...] = ()
    origin: ProxyOrigin | None = None
    params: tuple[str, ...] = ()

    @property
    def is_proxy(self) -> bool:
        return self.origin is not None

    @property
    def url_mount(self) -> str:
        """Mount derived from the first url, without trailing slashes."""
        if not self.urls:
            return ''
        return urlparse(self.urls[0]).path.rstrip('/')

    def to_json(self, minimal: bool = False) -> dict:
        data: dict = {'name': self.name}
        if self.is_proxy:
            data['origin'] = self.origin.to_json()
        else:
            data['content'] = self.content.to_json()
            data['static'] = self.static.to_json()
            data['code'] = self.code
            data['directoryIndex'] = self.directory_index
        if self.condition is not None:
            data['condition'] = self.condition.to_json()
        if self.urls or not minimal:
            data['urls'] = list(self.urls)
        if self.params or not minimal:
            data['params'] = list(self.params)
        return data


@dataclass(frozen=True, slots=True)
class StrainSelection:
    """A selected strain and the mount an explicit rule supplied, if any."""

    strain: Strain
    mount: str | None = None
    rule: str = 'default'


def _url_prefix_matches(url: str, host: str, path: str) -> bool:
    parsed = urlparse(url)
    if parsed.netloc.lower() != host.lower():
        return False
    prefix = parsed.path if parsed.path.endswith('/') else f'{parsed.path}/'
    request_path = path if path.endswith('/') else f'{path}/'
    return request_path.startswith(prefix)


class StrainRegistry:
    """Ordered collection of strains with request-time selection.

    The registry is read by request handling; it is only changed through
    ``replace()`` (developer overrides during a session).
    """

    def __init__(self, strains: Iterable[Strain]):
        self._strains: dict[str, Strain] = {}
        for strain in strains:
            if strain.name in self._strains:
                raise ConfigurationError(f'Duplicate strain: {strain.name}')
            self._strains[strain.name] = strain
        if DEFAULT_STRAIN not in self._strains:
            raise ConfigurationError('Invalid config. No "default" strain defined.')

    def __iter__(self) -> Iterator[Strain]:
        return iter(list(self._strains.values()))

    def __len__(self) -> int:
        return len(self._strains)

    def __contains__(self, name: object) -> bool:
        return name in self._strains

    def get(self, name: str) -> Strain | None:
        return self._strains.get(name)

    @property
    def default(self) -> Strain:
        return self._strains[DEFAULT_STRAIN]

    @property
    def names(self) -> Mapping[str, Strain]:
        return MappingProxyType(self._strains)

    def replace(self, strain: Strain) -> None:
        """Swap in a new definition for an existing strain, keeping its position."""
        if strain.name not in self._strains:
            raise KeyError(strain.name)
        self._strains[strain.name] = strain

    def match(self, request: IncomingRequest, *, default_host: str = '') -> StrainSelection:
        """Select the strain for ``request`` and report which rule matched."""
        override = request.cookies.get(STRAIN_COOKIE) or request.query_params.get(STRAIN_QUERY_PARAM)
        if override and override in self._strains:
            return StrainSelection(self._strains[override], rule='override')

        host = request.host or default_host
        path = request.path
        facets = ConditionRequest(host=host, path=path, headers=request.headers)
        for strain in self._strains.values():
            if strain.condition is None:
                continue
            found = strain.condition.evaluate(facets)
            if found is not None:
                return StrainSelection(strain, mount=found.mount, rule='condition')

        for strain in self._strains.values():
            if strain.urls and _url_prefix_matches(strain.urls[0], host, path):
                return StrainSelection(strain, rule='url')

        return StrainSelection(self.default)

    def select(self, request: IncomingRequest, *, default_host: str = '') -> Strain:
        return self.match(request, default_host=default_host).strain
