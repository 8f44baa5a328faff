"""Request delivery: strain-aware dispatch to proxies, renderers and content sources."""

from .content_proxy import ContentProxy, content_proxy_url
from .dispatcher import DeliveryDispatcher, EffectiveRefs, is_special_asset
from .fetch import DeliveryResponse, HttpFetchClient, HttpProxyClient, make_proxy_url

__all__ = [
    'ContentProxy',
    'DeliveryDispatcher',
    'DeliveryResponse',
    'EffectiveRefs',
    'HttpFetchClient',
    'HttpProxyClient',
    'content_proxy_url',
    'is_special_asset',
    'make_proxy_url',
]
