"""
Cache Admin Router

Operational endpoints for inspecting and controlling the cache: statistics,
health, invalidation, export, metrics and on-demand warming.
"""
import base64
import re
from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse, PlainTextResponse

from ...caching.cache_manager import AdvancedCacheManager
from ...caching.cache_warming import CacheWarmer
from ...caching.errors import ConfigurationError
from ...caching.invalidation import Regex, Substring
from ...caching.monitoring import HEALTHY
from ..dependencies import get_cache_manager, get_cache_warmer
from ..schemas import EventRequest, InvalidateRequest, InvalidationResponse, WarmingResponse

logger = structlog.get_logger(__name__)

router = APIRouter()


def _encode_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    if isinstance(payload.get('data'), bytes):
        return {**payload, 'data': base64.b64encode(payload['data']).decode('ascii')}
    return payload


@router.get("/stats")
async def get_cache_stats(cache_manager: AdvancedCacheManager = Depends(get_cache_manager)) -> Dict[str, Any]:
    """Current counters, derived rates and per-tier detail."""
    return cache_manager.get_stats()


@router.get("/health")
async def cache_health(cache_manager: AdvancedCacheManager = Depends(get_cache_manager)):
    """
    Probe every tier.

    Returns:
        200 when every tier is healthy, 207 when any tier is degraded
    """
    health = cache_manager.health_check()
    status_code = status.HTTP_200_OK if health['status'] == HEALTHY else status.HTTP_207_MULTI_STATUS

    return JSONResponse(
        status_code=status_code,
        content={**health, 'timestamp': datetime.now(timezone.utc).isoformat()},
    )


@router.post("/invalidate", response_model=InvalidationResponse)
async def invalidate(
    request: InvalidateRequest,
    cache_manager: AdvancedCacheManager = Depends(get_cache_manager)
) -> InvalidationResponse:
    """Remove keys matching a substring or regular expression."""
    try:
        pattern = Regex(request.pattern) if request.regex else Substring(request.pattern)
        count = cache_manager.invalidate(pattern, request.cache_types)
    except re.error as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid pattern: {e}")
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info("Cache invalidated", pattern=request.pattern, regex=request.regex, invalidated=count)
    return InvalidationResponse(invalidated=count)


@router.post("/events/{event}", response_model=InvalidationResponse)
async def trigger_event(
    event: str,
    request: EventRequest,
    cache_manager: AdvancedCacheManager = Depends(get_cache_manager)
) -> InvalidationResponse:
    """Apply the invalidation rule registered for a domain event."""
    try:
        count = cache_manager.smart_invalidate(event, request.payload)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return InvalidationResponse(invalidated=count)


@router.delete("")
async def clear_cache(cache_manager: AdvancedCacheManager = Depends(get_cache_manager)) -> Dict[str, Any]:
    """Flush every tier and reset statistics."""
    cache_manager.clear_all()
    logger.warning("All cache tiers cleared through admin API")
    return {"cleared": True}


@router.get("/export")
async def export_cache(cache_manager: AdvancedCacheManager = Depends(get_cache_manager)) -> Dict[str, Any]:
    """Dump all stored payloads; compressed bytes are base64 encoded."""
    return {
        tier: {key: _encode_payload(payload) for key, payload in entries.items()}
        for tier, entries in cache_manager.export().items()
    }


@router.get("/metrics", response_class=PlainTextResponse)
async def cache_metrics(cache_manager: AdvancedCacheManager = Depends(get_cache_manager)) -> str:
    """Cache metrics in Prometheus text format."""
    return cache_manager.metrics.export_metrics('prometheus')


@router.post("/warm/{job_name}", response_model=WarmingResponse)
async def warm_cache(job_name: str, warmer: CacheWarmer = Depends(get_cache_warmer)) -> WarmingResponse:
    """Run one warming job now."""
    if warmer.get_job(job_name) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown warming job: {job_name}")

    success = await warmer.warm_job(job_name)
    return WarmingResponse(job=job_name, success=success, stats=warmer.get_stats()['jobs'][job_name])
