"""Request URL decomposition relative to the selected strain."""

from .context import (
    PathCoordinates,
    RequestRoutingContext,
    build_routing_context,
    resolve_path,
)

__all__ = [
    'PathCoordinates',
    'RequestRoutingContext',
    'build_routing_context',
    'resolve_path',
]
