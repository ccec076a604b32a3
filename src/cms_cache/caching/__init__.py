"""
Tiered in-memory caching for the CMS backend.

This package provides:
- Six named tiers with independent TTLs and capacity guards
- Transparent gzip compression of oversized values
- Pattern and event driven invalidation
- Statistics, periodic reporting, health probing and cache warming
"""

from .errors import (
    CacheError,
    ConfigurationError,
    SerializationError,
    CacheIOError,
    HealthProbeError
)

from .tiers import (
    TierConfig,
    CacheEntry,
    CacheTier,
    TierListener,
    LoggingTierListener,
    DEFAULT_TIER_CONFIGS,
    build_tiers
)

from .compression import (
    CompressionPolicy,
    serialize,
    compress,
    decompress
)

from .invalidation import (
    InvalidationPattern,
    Substring,
    Regex,
    Predicate,
    InvalidationRule,
    InvalidationEngine,
    as_pattern
)

from .monitoring import (
    CacheStatistics,
    PerformanceMonitor
)

from .cache_manager import (
    AdvancedCacheManager,
    CacheHit,
    BatchResult
)

from .cache_warming import (
    CacheWarmer,
    WarmingStrategy,
    WarmingJob,
    create_warming_jobs
)

__all__ = [
    # Errors
    'CacheError',
    'ConfigurationError',
    'SerializationError',
    'CacheIOError',
    'HealthProbeError',

    # Tiers
    'TierConfig',
    'CacheEntry',
    'CacheTier',
    'TierListener',
    'LoggingTierListener',
    'DEFAULT_TIER_CONFIGS',
    'build_tiers',

    # Compression
    'CompressionPolicy',
    'serialize',
    'compress',
    'decompress',

    # Invalidation
    'InvalidationPattern',
    'Substring',
    'Regex',
    'Predicate',
    'InvalidationRule',
    'InvalidationEngine',
    'as_pattern',

    # Monitoring
    'CacheStatistics',
    'PerformanceMonitor',

    # Manager
    'AdvancedCacheManager',
    'CacheHit',
    'BatchResult',

    # Cache warming
    'CacheWarmer',
    'WarmingStrategy',
    'WarmingJob',
    'create_warming_jobs'
]
