"""Exceptions raised by the cache layer."""

from typing import Optional


class CacheError(Exception):
    """Base class for cache failures."""


class ConfigurationError(CacheError):
    """Unknown cache tier or invalid cache argument; always a caller bug."""

    def __init__(self, message: str, cache_type: Optional[str] = None):
        super().__init__(message)
        self.cache_type = cache_type


class SerializationError(CacheError):
    """A value could not be serialized to JSON for storage."""


class CacheIOError(CacheError, OSError):
    """A compressed payload could not be compressed or restored."""


class HealthProbeError(CacheError):
    """A tier failed its round-trip self-test."""

    def __init__(self, message: str, cache_type: str):
        super().__init__(message)
        self.cache_type = cache_type
