"""Git-hosted content locations.

A ``GitReference`` names a location inside a git repository on a hosting
service (``host``, ``owner``, ``repo``, ``ref``, ``path``) and derives the
raw-content and API endpoints from it::

    ref = GitReference.parse('https://github.com/adobe/foo.git')
    ref.raw  # 'https://raw.github.com/adobe/foo/master'

References are immutable. Two references address the same repository when
their ``identity_key`` is equal; the ``ref`` and ``path`` do not take part.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any, Mapping
from urllib.parse import urlparse

DEFAULT_BRANCH = 'master'
DEFAULT_HOST = 'github.com'
DEFAULT_PROTOCOL = 'https'

# References on this host are served from the developer's working copy.
LOCAL_HOST = 'localhost'

RAW_TYPE = 'raw'
API_TYPE = 'api'

_MATCH_IP = re.compile(r'^(?:[0-9]{1,3}\.){3}[0-9]{1,3}$')

# git@github.com:owner/repo.git
_SCP_LIKE = re.compile(r'^(?:[\w.-]+@)?(?P<host>[\w.-]+):(?P<path>[^/].*)$')

# /<owner>/<repo>/(tree|blob)/<ref>/<path>
_TREE_PATH = re.compile(r'^/(?P<owner>[^/]+)/(?P<repo>[^/]+)/(?:tree|blob)/(?P<ref>[^/]+)(?P<path>/.*)?$')


def _strip_git_suffix(name: str) -> str:
    return name[:-4] if name.endswith('.git') else name


@dataclass(frozen=True, slots=True)
class GitReference:
    """Immutable location of content in a git repository."""

    owner: str
    repo: str
    ref: str = DEFAULT_BRANCH
    path: str = ''
    host: str = DEFAULT_HOST
    port: str = ''
    protocol: str = DEFAULT_PROTOCOL

    def __post_init__(self) -> None:
        if not self.ref:
            object.__setattr__(self, 'ref', DEFAULT_BRANCH)
        if self.port is None:
            object.__setattr__(self, 'port', '')
        elif not isinstance(self.port, str):
            object.__setattr__(self, 'port', str(self.port))

    # ── Construction ───────────────────────────────────────────────

    @classmethod
    def parse(cls, url: str) -> GitReference:
        """Parse a git URL.

        Supported forms::

            https://github.com/owner/repo.git#ref
            https://github.com/owner/repo/tree/ref/some/path
            git@github.com:owner/repo.git#ref

        Raises:
            ValueError: If the url does not name an owner and a repository.
        """
        url = url.strip()
        fragment = ''
        if '#' in url:
            url, fragment = url.split('#', 1)

        scp = _SCP_LIKE.match(url) if '://' not in url else None
        if scp:
            protocol = 'ssh'
            host = scp.group('host')
            port = ''
            pathname = '/' + scp.group('path')
        else:
            parsed = urlparse(url)
            protocol = parsed.scheme or DEFAULT_PROTOCOL
            host = parsed.hostname or ''
            port = str(parsed.port) if parsed.port else ''
            pathname = parsed.path

        tree = _TREE_PATH.match(pathname)
        if tree:
            owner = tree.group('owner')
            repo = _strip_git_suffix(tree.group('repo'))
            ref = fragment or tree.group('ref')
            path = tree.group('path') or ''
        else:
            segments = [s for s in pathname.split('/') if s]
            if len(segments) < 2:
                raise ValueError(f'Not a valid git url: {url!r}')
            owner = segments[0]
            repo = _strip_git_suffix(segments[1])
            ref = fragment
            path = ''

        return cls(
            protocol=protocol,
            host=host or DEFAULT_HOST,
            port=port,
            owner=owner,
            repo=repo,
            ref=ref or DEFAULT_BRANCH,
            path=path,
        )

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        defaults: Mapping[str, Any] | None = None,
    ) -> GitReference:
        """Build a reference from a partial descriptor merged with ``defaults``."""
        defaults = defaults or {}

        def pick(key: str, fallback: Any = '') -> Any:
            value = data.get(key)
            if value in (None, ''):
                value = defaults.get(key)
            return fallback if value in (None, '') else value

        return cls(
            protocol=pick('protocol', DEFAULT_PROTOCOL),
            host=pick('host', DEFAULT_HOST),
            port=pick('port'),
            owner=pick('owner'),
            repo=pick('repo'),
            ref=pick('ref', DEFAULT_BRANCH),
            path=pick('path'),
        )

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> GitReference:
        return cls.from_dict(data)

    def to_json(self) -> dict[str, str]:
        """Return a plain dict suitable for serialization."""
        return {
            'protocol': self.protocol,
            'host': self.host,
            'port': self.port,
            'owner': self.owner,
            'repo': self.repo,
            'ref': self.ref,
            'path': self.path,
        }

    def with_path(self, path: str) -> GitReference:
        return replace(self, path=path)

    # ── Derived endpoints ──────────────────────────────────────────

    def _endpoint(self, kind: str) -> str:
        port = f':{self.port}' if self.port else ''
        if _MATCH_IP.match(self.host):
            return f'{self.protocol}://{self.host}{port}/{kind}'
        return f'{self.protocol}://{kind}.{self.host}{port}'

    @property
    def raw_root(self) -> str:
        """``https://raw.github.com``, or ``http://127.0.0.1:1234/raw`` for IP hosts."""
        return self._endpoint(RAW_TYPE)

    @property
    def api_root(self) -> str:
        return self._endpoint(API_TYPE)

    @property
    def raw(self) -> str:
        """Raw content root of this ref, ``https://raw.github.com/owner/repo/ref``."""
        return f'{self.raw_root}/{self.owner}/{self.repo}/{self.ref}'

    @property
    def identity_key(self) -> str:
        """Identifies the repository on its host, ignoring ref and path."""
        return f'{self.host}--{self.owner}--{self.repo}'

    @property
    def is_local(self) -> bool:
        return self.host == LOCAL_HOST

    def __str__(self) -> str:
        port = f':{self.port}' if self.port else ''
        return f'{self.protocol}://{self.host}{port}/{self.owner}/{self.repo}.git#{self.ref}'
