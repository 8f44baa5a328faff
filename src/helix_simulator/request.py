"""Transport-independent view of an incoming HTTP request."""

from __future__ import annotations

from dataclasses import dataclass, field
from http.cookies import CookieError, SimpleCookie
from typing import Mapping
from urllib.parse import parse_qsl


def split_target(url: str) -> tuple[str, str]:
    """Split a request target into path and query string.

    The path is everything before ``?``, so a target like ``//docs/`` keeps
    its first segment instead of reading as a host.
    """
    path, _, query = url.partition('#')[0].partition('?')
    return path or '/', query


@dataclass(frozen=True)
class IncomingRequest:
    """The parts of an HTTP request the routing core looks at.

    Attributes:
        url: Request target as received, path plus optional query string.
        method: Upper-case HTTP method.
        headers: Request headers, keys lower-cased.
        body: Raw request body (empty for GET/HEAD).
    """

    url: str
    method: str = 'GET'
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b''

    def __post_init__(self) -> None:
        object.__setattr__(self, 'method', self.method.upper())
        object.__setattr__(
            self, 'headers', {k.lower(): v for k, v in self.headers.items()},
        )

    @property
    def path(self) -> str:
        return split_target(self.url)[0]

    @property
    def query_string(self) -> str:
        return split_target(self.url)[1]

    @property
    def query_params(self) -> dict[str, str]:
        return dict(parse_qsl(self.query_string, keep_blank_values=True))

    @property
    def host(self) -> str:
        return self.headers.get('host', '')

    @property
    def cookies(self) -> dict[str, str]:
        raw = self.headers.get('cookie', '')
        if not raw:
            return {}
        jar = SimpleCookie()
        try:
            jar.load(raw)
        except CookieError:
            return {}
        return {name: morsel.value for name, morsel in jar.items()}
