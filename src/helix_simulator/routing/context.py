"""Request routing context.

Decomposes a request URL, relative to the selected strain, into the
coordinates the rest of the pipeline works with:

- ``path``: pathname, with the directory index appended for ``.../`` requests.
- ``extension``: text after the last dot of the last segment, if any.
- ``selector``: a further dot-separated infix before the extension
  (``/index.print.html`` -> ``print``).
- ``mount``: path prefix the strain is rooted at.
- ``rel_path``: ``path`` with the mount removed.
- ``resource_path``: mount-, selector- and extension-stripped path, prefixed
  with the content repository's sub-path.

Only a trailing slash triggers directory-index injection. ``/content``
(no extension) stays an extension-less path.
"""

from __future__ import annotations

import re
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Mapping
from urllib.parse import parse_qsl

from ..config.strain import DEFAULT_DIRECTORY_INDEX, Strain, StrainSelection
from ..request import IncomingRequest, split_target

_MULTI_SLASH = re.compile(r'/+')

BACKEND_NAME = 'localhost--F_Petridish'


@dataclass(frozen=True, slots=True)
class PathCoordinates:
    """Routing coordinates of a request path."""

    path: str
    mount: str
    rel_path: str
    resource_path: str
    selector: str
    extension: str


def resolve_path(
    path: str,
    strain: Strain,
    mount: str | None = None,
) -> PathCoordinates:
    """Compute routing coordinates for ``path`` under ``strain``.

    Args:
        path: Request pathname (no query string).
        strain: The selected strain.
        mount: Explicit mount supplied by the strain's condition, if any.
    """
    path = path or '/'
    if path.endswith('/'):
        index = strain.directory_index or DEFAULT_DIRECTORY_INDEX
        path = _MULTI_SLASH.sub('/', f'{path}/{index}')

    last_slash = path.rfind('/')
    last_dot = path.rfind('.')
    if last_dot > last_slash:
        stem = path[:last_dot]
        extension = path[last_dot + 1:]
    else:
        stem = path
        extension = ''

    selector = ''
    sel_dot = stem.rfind('.')
    if sel_dot > last_slash:
        selector = stem[sel_dot + 1:]
        stem = stem[:sel_dot]

    if mount is None:
        mount = strain.url_mount
    mount = mount.rstrip('/')

    rel_path = path
    if mount and f'{stem}/'.startswith(f'{mount}/'):
        stem = stem[len(mount):]
        rel_path = path[len(mount):]

    content_root = strain.content.path.rstrip('/')
    if content_root:
        stem = f'{content_root}{stem}'

    return PathCoordinates(
        path=path,
        mount=mount,
        rel_path=rel_path,
        resource_path=stem,
        selector=selector,
        extension=extension,
    )


@dataclass(frozen=True)
class RequestRoutingContext:
    """Per-request routing state. Created once, never mutated."""

    url: str
    path: str
    query_string: str
    mount: str
    rel_path: str
    resource_path: str
    selector: str
    extension: str
    strain: Strain
    method: str = 'GET'
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b''
    request_id: str = field(default_factory=lambda: secrets.token_urlsafe(24)[:32])
    activation_id: str = field(default_factory=lambda: secrets.token_hex(16))
    cdn_request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def params(self) -> dict[str, str]:
        return dict(parse_qsl(self.query_string, keep_blank_values=True))

    @property
    def wsk_headers(self) -> dict[str, str]:
        """Headers the platform's edge adds before invoking a render script."""
        return {
            'X-Openwhisk-Activation-Id': self.activation_id,
            'X-Request-Id': self.request_id,
            'X-Backend-Name': BACKEND_NAME,
            'X-CDN-Request-ID': self.cdn_request_id,
            'X-Strain': self.strain.name,
            **self.headers,
        }

    def to_json(self) -> dict:
        return {
            'url': self.url,
            'resourcePath': self.resource_path,
            'path': self.path,
            'selector': self.selector,
            'extension': self.extension,
            'mount': self.mount,
            'relPath': self.rel_path,
            'strain': self.strain.name,
            'method': self.method,
            'headers': dict(self.headers),
            'params': self.params,
        }


def build_routing_context(
    request: IncomingRequest,
    selection: StrainSelection,
    *,
    request_id: str | None = None,
) -> RequestRoutingContext:
    """Build the routing context of ``request`` for the selected strain."""
    path, query_string = split_target(request.url)
    coords = resolve_path(path, selection.strain, selection.mount)
    extra = {'request_id': request_id} if request_id else {}
    return RequestRoutingContext(
        url=request.url,
        path=coords.path,
        query_string=query_string,
        mount=coords.mount,
        rel_path=coords.rel_path,
        resource_path=coords.resource_path,
        selector=coords.selector,
        extension=coords.extension,
        strain=selection.strain,
        method=request.method,
        headers=request.headers,
        body=request.body,
        **extra,
    )
