"""Typed error hierarchy for the simulator.

Every error carries a stable, machine-readable ``ErrorCode`` and the HTTP
status the transport surfaces for it. Startup errors (configuration, repo
conflicts, port binding) abort initialization; request errors (not found,
upstream) are confined to the response of the request that raised them.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Simulator error codes."""

    CONFIGURATION_ERROR = 'configuration_error'
    REPO_CONFLICT = 'repo_conflict'
    NOT_FOUND = 'not_found'
    UPSTREAM_ERROR = 'upstream_error'
    RENDER_ERROR = 'render_error'
    PORT_IN_USE = 'port_in_use'


class SimulatorError(Exception):
    """Base error for all simulator operations."""

    code: ErrorCode = ErrorCode.UPSTREAM_ERROR
    http_status: int = 500

    def __init__(self, message: str, *, http_status: int | None = None):
        if http_status is not None:
            self.http_status = http_status
        super().__init__(message)

    @property
    def message(self) -> str:
        return self.args[0] if self.args else ''

    def to_dict(self, request_id: str | None = None) -> dict:
        """Convert to dict for API responses."""
        payload = {
            'code': self.code.value,
            'message': self.message,
        }
        if request_id:
            payload['request_id'] = request_id
        return payload

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.message!r}, http_status={self.http_status})'


class ConfigurationError(SimulatorError):
    """Invalid project or strain configuration. Fatal at startup."""

    code = ErrorCode.CONFIGURATION_ERROR


class RepoConflictError(SimulatorError):
    """A local directory is already registered for a different repository."""

    code = ErrorCode.REPO_CONFLICT

    def __init__(self, key: str, repo_path: str):
        self.key = key
        self.repo_path = repo_path
        super().__init__(f'Server for {key} already registered for {repo_path}')


class NotFoundError(SimulatorError):
    """The requested resource could not be resolved by any source."""

    code = ErrorCode.NOT_FOUND
    http_status = 404


class UpstreamError(SimulatorError):
    """A fetch, proxy or render collaborator failed with something other than 404."""

    code = ErrorCode.UPSTREAM_ERROR
    http_status = 502


class RenderError(UpstreamError):
    """The render engine failed while executing a script."""

    code = ErrorCode.RENDER_ERROR
    http_status = 500


class PortInUseError(SimulatorError):
    """A server could not bind its listening port."""

    code = ErrorCode.PORT_IN_USE

    def __init__(self, port: int, host: str = '0.0.0.0'):
        self.port = port
        self.host = host
        super().__init__(f'Port {port} already in use by another process.')
