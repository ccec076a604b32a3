"""
CMS Cache - FastAPI Application

Builds the HTTP application around an explicitly constructed cache manager:
response caching middleware for the content API plus the cache admin router.
"""
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..caching.cache_manager import AdvancedCacheManager
from ..caching.cache_warming import CacheWarmer
from ..config import Settings, get_settings
from ..logging_config import LoggingConfig
from .middleware import CacheMiddleware
from .routers import cache_admin

logger = structlog.get_logger(__name__)


def initialize_logging(settings: Settings) -> None:
    """Configure stdlib logging from the monitoring settings."""
    LoggingConfig.setup_logging(
        level=settings.monitoring.log_level.value,
        format_type=settings.monitoring.log_format,
        log_file=settings.monitoring.log_file or None,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Starts the cache background tasks and the warming scheduler, stops them on shutdown.
    """
    cache_manager: AdvancedCacheManager = app.state.cache_manager
    warmer: Optional[CacheWarmer] = app.state.cache_warmer

    logger.info("Starting CMS cache service")
    await cache_manager.start()

    if warmer is not None:
        warmed = await warmer.warm_all_immediate()
        await warmer.start_scheduler()
        logger.info("Cache warming started", immediate_jobs_succeeded=warmed)

    try:
        yield
    finally:
        logger.info("Shutting down CMS cache service")
        if warmer is not None:
            await warmer.stop_scheduler()
        await cache_manager.stop()


def create_app(
    cache_manager: Optional[AdvancedCacheManager] = None,
    settings: Optional[Settings] = None,
    warmer: Optional[CacheWarmer] = None,
    configure_logging: bool = False,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        cache_manager: Cache to serve; one is built from ``settings`` when omitted
        settings: Application settings; read from the environment when omitted
        warmer: Optional cache warmer whose jobs run at startup and on schedule
        configure_logging: Install the logging handlers described by ``settings``

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or get_settings()
    if configure_logging:
        initialize_logging(settings)

    if cache_manager is None:
        cache_manager = AdvancedCacheManager(settings=settings.cache, monitoring=settings.monitoring)

    app = FastAPI(
        title=settings.api.api_title,
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.cache_manager = cache_manager
    app.state.cache_warmer = warmer

    app.add_middleware(
        CacheMiddleware,
        cache_manager=cache_manager,
        cache_type=settings.api.cached_tier,
        skip_methods=settings.api.skip_methods,
        skip_paths=[*settings.api.skip_paths, settings.api.admin_prefix],
    )

    app.include_router(
        cache_admin.router,
        prefix=settings.api.admin_prefix,
        tags=["Cache"]
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)

        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "type": "internal_server_error",
                    "message": "An internal server error occurred"
                }
            }
        )

    return app


def run_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """Run the cache API with uvicorn."""
    settings = get_settings()
    initialize_logging(settings)

    uvicorn.run(
        "cms_cache.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        access_log=settings.debug
    )


if __name__ == "__main__":
    settings = get_settings()
    run_server(reload=settings.debug)
