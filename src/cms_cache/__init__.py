"""
CMS Cache - tiered in-memory caching for the CMS backend.
"""

from .caching import (
    AdvancedCacheManager,
    CacheHit,
    BatchResult,
    CacheWarmer,
    CacheError,
    ConfigurationError
)
from .config import Settings, get_settings

__version__ = "1.0.0"

__all__ = [
    'AdvancedCacheManager',
    'CacheHit',
    'BatchResult',
    'CacheWarmer',
    'CacheError',
    'ConfigurationError',
    'Settings',
    'get_settings',
    '__version__'
]
