"""
HTTP integration for the CMS cache: caching middleware, admin router and
application factory.
"""

from .middleware import CacheMiddleware, default_key
from .app import create_app, lifespan

__all__ = [
    'CacheMiddleware',
    'default_key',
    'create_app',
    'lifespan'
]
