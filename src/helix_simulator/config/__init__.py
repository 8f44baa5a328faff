"""Git references, strains and strain configuration loading."""

from .git_url import DEFAULT_BRANCH, LOCAL_HOST, GitReference
from .strain import (
    DEFAULT_STRAIN,
    STRAIN_COOKIE,
    STRAIN_QUERY_PARAM,
    ProxyOrigin,
    StaticContent,
    Strain,
    StrainRegistry,
    StrainSelection,
)
from .loader import CONFIG_FILENAME, default_registry, load_config, parse_config

__all__ = [
    'CONFIG_FILENAME',
    'DEFAULT_BRANCH',
    'DEFAULT_STRAIN',
    'GitReference',
    'LOCAL_HOST',
    'ProxyOrigin',
    'STRAIN_COOKIE',
    'STRAIN_QUERY_PARAM',
    'StaticContent',
    'Strain',
    'StrainRegistry',
    'StrainSelection',
    'default_registry',
    'load_config',
    'parse_config',
]
