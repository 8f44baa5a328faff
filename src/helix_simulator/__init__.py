"""Local simulator for git-backed, strain-routed content delivery.

Maps each incoming request to a proxied origin, a rendered document or static
content from a (possibly locally emulated) git repository.
"""

__version__ = '0.1.0'
