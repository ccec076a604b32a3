"""
Response caching middleware for the CMS API.

Serves JSON bodies of safe requests straight from a cache tier and populates
the tier from successful responses on a miss.
"""

import json
import time
from typing import Callable, Iterable, Optional, Tuple
from uuid import uuid4

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from ..caching.cache_manager import AdvancedCacheManager
from ..logging_config import CorrelationContext


logger = structlog.get_logger(__name__)

DEFAULT_SKIP_METHODS = ("POST", "PUT", "DELETE", "PATCH")
DEFAULT_SKIP_PATHS = ("/api/admin",)

KeyGenerator = Callable[[Request], str]

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"


def default_key(cache_manager: AdvancedCacheManager, request: Request) -> str:
    """``METHOD:/path?query``, hashed when the URL is very long."""
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return cache_manager.create_key(request.method, url, hash=True)


def matches_prefix(path: str, prefixes: Tuple[str, ...]) -> bool:
    """True if ``path`` is one of ``prefixes`` or lies below one of them."""
    for prefix in prefixes:
        base = prefix.rstrip("/")
        if path == prefix or path == base or path.startswith(base + "/"):
            return True
    return False


class CacheMiddleware(BaseHTTPMiddleware):
    """Cache-aside middleware for JSON GET endpoints."""

    def __init__(
        self,
        app,
        cache_manager: Optional[AdvancedCacheManager] = None,
        cache_type: str = "standard",
        ttl: Optional[int] = None,
        key_generator: Optional[KeyGenerator] = None,
        skip_methods: Iterable[str] = DEFAULT_SKIP_METHODS,
        skip_paths: Iterable[str] = DEFAULT_SKIP_PATHS,
        path_prefixes: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        if cache_manager is not None:
            cache_manager.get_tier(cache_type)

        self.cache_manager = cache_manager
        self.cache_type = cache_type
        self.ttl = ttl
        self.key_generator = key_generator
        self.skip_methods = {method.upper() for method in skip_methods}
        self.skip_paths = tuple(skip_paths)
        self.path_prefixes = tuple(path_prefixes) if path_prefixes else None

    def _is_cacheable(self, request: Request) -> bool:
        if request.method.upper() in self.skip_methods:
            return False
        path = request.url.path
        if self.skip_paths and matches_prefix(path, self.skip_paths):
            return False
        if self.path_prefixes is not None and not matches_prefix(path, self.path_prefixes):
            return False
        return True

    def _get_manager(self, request: Request) -> Optional[AdvancedCacheManager]:
        return self.cache_manager or getattr(request.app.state, "cache_manager", None)

    async def dispatch(self, request: Request, call_next):
        """Run the request under its correlation ids and echo the request id back."""
        request_id_value = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        correlation_id_value = request.headers.get(CORRELATION_ID_HEADER) or request_id_value

        with CorrelationContext(correlation_id_value, request_id_value):
            response = await self._handle(request, call_next)

        response.headers[REQUEST_ID_HEADER] = request_id_value
        return response

    async def _handle(self, request: Request, call_next):
        """Serve from cache on a hit, populate the cache on a successful miss."""
        if not self._is_cacheable(request):
            return await call_next(request)

        cache_manager = self._get_manager(request)
        if cache_manager is None:
            return await call_next(request)

        try:
            if self.key_generator:
                key = self.key_generator(request)
            else:
                key = default_key(cache_manager, request)
            cached = await cache_manager.get(self.cache_type, key)
        except Exception as e:
            logger.error("Cache lookup failed", path=request.url.path, error=str(e))
            return await call_next(request)

        if cached is not None:
            return JSONResponse(
                content=cached.data,
                headers={
                    "X-Cache": "HIT",
                    "X-Cache-Type": self.cache_type,
                    "X-Cache-Key": key,
                    "X-Response-Time": f"{cached.response_time_ms:.2f}ms",
                },
            )

        start_time = time.perf_counter()
        response = await call_next(request)

        content_type = response.headers.get("content-type", "")
        if not (200 <= response.status_code < 300) or "application/json" not in content_type:
            response.headers["X-Cache"] = "MISS"
            response.headers["X-Cache-Key"] = key
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])

        try:
            await cache_manager.set(self.cache_type, key, json.loads(body), self.ttl)
        except Exception as e:
            logger.error("Failed to cache response", path=request.url.path, key=key, error=str(e))

        headers = dict(response.headers)
        headers.update({
            "X-Cache": "MISS",
            "X-Cache-Type": self.cache_type,
            "X-Cache-Key": key,
            "X-Response-Time": f"{(time.perf_counter() - start_time) * 1000:.2f}ms",
        })

        return Response(
            content=body,
            status_code=response.status_code,
            headers=headers,
            background=response.background,
        )
