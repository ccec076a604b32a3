"""
Request and response models for the cache admin API.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class InvalidateRequest(BaseModel):
    """Bulk invalidation request."""
    pattern: str = Field(..., min_length=1, description="Substring, or regular expression when regex is set")
    regex: bool = Field(False, description="Treat pattern as a regular expression")
    cache_types: Optional[List[str]] = Field(None, description="Tiers to target; all tiers when omitted")


class EventRequest(BaseModel):
    """Domain event that drives rule based invalidation."""
    payload: Any = Field(None, description="Event payload, e.g. a post or user id")


class InvalidationResponse(BaseModel):
    """Number of keys removed by an invalidation."""
    invalidated: int = Field(..., description="Keys removed")


class WarmingResponse(BaseModel):
    """Outcome of an on-demand warming run."""
    job: str = Field(..., description="Warming job name")
    success: bool = Field(..., description="Whether every key was stored")
    stats: Dict[str, Any] = Field(default_factory=dict, description="Job statistics after the run")
