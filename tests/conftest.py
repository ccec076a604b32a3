"""
Shared fixtures for the cache test suite.
"""
import pytest

from cms_cache.caching.cache_manager import AdvancedCacheManager
from cms_cache.caching.tiers import TierConfig
from cms_cache.config import CacheSettings, MonitoringSettings
from cms_cache.metrics_collector import MetricsCollector


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Controllable clock for TTL tests."""
    return FakeClock()


@pytest.fixture
def cache_settings():
    """Cache settings independent of the environment."""
    return CacheSettings(
        compression_enabled=True,
        compression_threshold=1024,
        smart_invalidation=True,
        key_hash_threshold=200,
        sweep_enabled=True,
    )


@pytest.fixture
def monitoring_settings():
    """Monitoring settings with a short report interval."""
    return MonitoringSettings(report_enabled=True, report_interval=1, memory_sample_size=10)


@pytest.fixture
def cache_manager(cache_settings, monitoring_settings, clock):
    """Cache manager with the default tiers and a fake clock."""
    return AdvancedCacheManager(
        settings=cache_settings,
        monitoring=monitoring_settings,
        metrics=MetricsCollector(),
        clock=clock,
    )


@pytest.fixture
def small_manager(cache_settings, monitoring_settings, clock):
    """Cache manager with one tiny tier for capacity tests."""
    return AdvancedCacheManager(
        settings=cache_settings,
        monitoring=monitoring_settings,
        tier_configs={'small': TierConfig('small', ttl_seconds=60, check_interval_seconds=10, max_entries=10)},
        metrics=MetricsCollector(),
        clock=clock,
    )
