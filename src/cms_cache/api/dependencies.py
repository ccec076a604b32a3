"""
Dependency injection for the cache API.

Components are created by the app factory and attached to ``app.state``;
these providers hand them to route handlers.
"""
from fastapi import HTTPException, Request, status

from ..caching.cache_manager import AdvancedCacheManager
from ..caching.cache_warming import CacheWarmer


def get_cache_manager(request: Request) -> AdvancedCacheManager:
    """Get the cache manager attached to the application."""
    return request.app.state.cache_manager


def get_cache_warmer(request: Request) -> CacheWarmer:
    """Get the cache warmer attached to the application."""
    warmer = getattr(request.app.state, "cache_warmer", None)
    if warmer is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cache warming is not configured",
        )
    return warmer
