"""
Tiered in-memory cache manager for the CMS backend.

Six named tiers with independent TTLs and capacities, transparent gzip
compression of oversized values, pattern and event driven invalidation,
running statistics and health probing. The manager is constructed
explicitly and handed to whatever layer needs caching.
"""

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config import CacheSettings, MonitoringSettings
from ..logging_config import get_logger
from ..metrics_collector import MetricsCollector
from . import compression
from .compression import CompressionPolicy
from .errors import CacheIOError, ConfigurationError, SerializationError
from .invalidation import InvalidationEngine, PatternLike
from .monitoring import (
    DEGRADED,
    HEALTHY,
    CacheStatistics,
    PerformanceMonitor,
    format_percent,
    probe_tier,
)
from .tiers import DEFAULT_TIER_CONFIGS, CacheTier, LoggingTierListener, TierConfig, build_tiers


@dataclass
class CacheHit:
    """A successful lookup. ``data`` may legitimately be ``None`` or ``False``."""
    data: Any
    response_time_ms: float
    cached: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {'data': self.data, 'cached': self.cached, 'response_time': self.response_time_ms}


@dataclass
class BatchResult:
    """Outcome of one lookup inside ``batch_get``."""
    key: str
    success: bool
    data: Optional[CacheHit] = None
    error: Optional[str] = None


class AdvancedCacheManager:
    """Tiered cache with compression, invalidation and monitoring."""

    def __init__(
        self,
        settings: Optional[CacheSettings] = None,
        monitoring: Optional[MonitoringSettings] = None,
        tier_configs: Optional[Dict[str, TierConfig]] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or CacheSettings()
        self.monitoring_settings = monitoring or MonitoringSettings()
        self.logger = get_logger(__name__, 'cache_manager')
        self.metrics = metrics or MetricsCollector()

        self.caches: Dict[str, CacheTier] = build_tiers(tier_configs or DEFAULT_TIER_CONFIGS, clock=clock)
        self.stats = CacheStatistics()
        self.compression = CompressionPolicy(
            enabled=self.settings.compression_enabled,
            threshold=self.settings.compression_threshold,
        )
        self.invalidator = InvalidationEngine(
            tiers=self.caches,
            stats=self.stats,
            smart_invalidation=self.settings.smart_invalidation,
        )
        self.monitor = PerformanceMonitor(
            tiers=self.caches,
            stats=self.stats,
            metrics=self.metrics,
            interval=self.monitoring_settings.report_interval,
            sample_size=self.monitoring_settings.memory_sample_size,
        )

        logging_listener = LoggingTierListener()
        for cache in self.caches.values():
            cache.add_listener(logging_listener)
            cache.add_listener(self.stats)

        self.running = False
        self.sweep_tasks: Dict[str, asyncio.Task] = {}

        self.logger.info(
            f"Advanced cache manager initialized with {len(self.caches)} tiers",
            operation="initialize",
            tiers=list(self.caches),
        )

    # ------------------------------------------------------------------ lifecycle

    async def start(self) -> None:
        """Start TTL sweeps for every tier and the periodic performance report."""
        if self.running:
            self.logger.warning("Cache manager is already running")
            return

        self.running = True
        if self.settings.sweep_enabled:
            for name, cache in self.caches.items():
                self.sweep_tasks[name] = asyncio.create_task(self._sweep_worker(cache))
        if self.monitoring_settings.report_enabled:
            await self.monitor.start()

        self.logger.info("Cache background tasks started", operation="start")

    async def stop(self) -> None:
        """Cancel every background task."""
        if not self.running:
            return

        self.running = False
        tasks = list(self.sweep_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.sweep_tasks.clear()
        await self.monitor.stop()

        self.logger.info("Cache background tasks stopped", operation="stop")

    async def _sweep_worker(self, cache: CacheTier) -> None:
        interval = cache.config.check_interval_seconds
        while self.running:
            try:
                await asyncio.sleep(interval)
                removed = cache.sweep()
                if removed:
                    self.logger.debug(f"Swept {removed} expired keys from {cache.name}", operation="sweep")
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error sweeping {cache.name} cache: {e}", operation="sweep")

    def get_tier(self, cache_type: str) -> CacheTier:
        """Return the named tier or raise ConfigurationError."""
        cache = self.caches.get(cache_type)
        if cache is None:
            raise ConfigurationError(f"Cache type '{cache_type}' not found", cache_type)
        return cache

    # ------------------------------------------------------------------ get / set

    async def get(self, cache_type: str, key: str) -> Optional[CacheHit]:
        """
        Look up ``key`` in the ``cache_type`` tier.

        Returns:
            CacheHit on a hit (decompressed if needed), None on a miss

        Raises:
            ConfigurationError: if the tier does not exist
        """
        cache = self.get_tier(cache_type)
        start_time = time.perf_counter()

        entry = cache.get(key)
        if entry is None:
            return self._record_miss(cache_type, key, start_time)

        payload = entry.payload
        if payload.get('compressed'):
            try:
                data = await compression.decompress_async(payload['data'])
            except CacheIOError as e:
                self.stats.increment('errors')
                self.logger.error(f"Dropping corrupt entry {key} from {cache_type}: {e}", operation="get")
                cache.delete(key)
                return self._record_miss(cache_type, key, start_time)
            self.stats.increment('decompressions')
            self.logger.debug(f"Decompressed {key}", operation="get")
        else:
            data = payload['data']

        response_time = (time.perf_counter() - start_time) * 1000
        self.stats.record_request(cache_type, True, response_time)
        self.metrics.get_counter('cache_hits_total', 'Cache hits').increment(tier=cache_type)
        self.metrics.get_histogram('cache_get_duration_ms', 'Cache lookup latency').observe(response_time)
        self.logger.debug(f"HIT: {key} ({response_time:.2f}ms)", operation="get", tier=cache_type)

        return CacheHit(data=data, response_time_ms=response_time)

    def _record_miss(self, cache_type: str, key: str, start_time: float) -> None:
        response_time = (time.perf_counter() - start_time) * 1000
        self.stats.record_request(cache_type, False, response_time)
        self.metrics.get_counter('cache_misses_total', 'Cache misses').increment(tier=cache_type)
        self.logger.debug(f"MISS: {key}", operation="get", tier=cache_type)
        return None

    async def set(self, cache_type: str, key: str, data: Any, ttl: Optional[int] = None) -> bool:
        """
        Store ``data`` under ``key``, compressing it when it is large.

        Returns:
            True if stored, False if the value could not be serialized or compressed

        Raises:
            ConfigurationError: if the tier does not exist or ``ttl`` is not positive
        """
        cache = self.get_tier(cache_type)
        if ttl is not None and (isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0):
            raise ConfigurationError(f"TTL must be a positive integer, got {ttl!r}", cache_type)

        try:
            serialized, original_size = compression.serialize(data)

            if self.compression.should_compress(original_size):
                compressed = await compression.compress_async(serialized)
                payload = {
                    'data': compressed,
                    'compressed': True,
                    'original_size': original_size,
                    'compressed_size': len(compressed),
                }
                self.stats.increment('compressions')
                reduction = (1 - len(compressed) / original_size) * 100
                self.logger.debug(
                    f"Compressed {key}: {original_size}B -> {len(compressed)}B ({reduction:.1f}% reduction)",
                    operation="set",
                )
            else:
                payload = {'data': data, 'compressed': False}
        except (SerializationError, CacheIOError) as e:
            self.stats.increment('errors')
            self.logger.error(f"Set error for {key} in {cache_type}: {e}", operation="set")
            return False

        cache.set(key, payload, ttl)
        self.metrics.get_counter('cache_sets_total', 'Cache writes').increment(tier=cache_type)
        self.logger.debug(f"SET: {key} in {cache_type} cache", operation="set", tier=cache_type)
        return True

    async def delete(self, cache_type: str, key: str) -> bool:
        """Remove one key from a tier."""
        return self.get_tier(cache_type).delete(key)

    # ------------------------------------------------------------------ invalidation

    def invalidate(self, pattern: PatternLike, cache_types: Optional[Iterable[str]] = None) -> int:
        """Delete keys matching ``pattern`` (substring, regex or predicate) across tiers."""
        count = self.invalidator.invalidate(pattern, cache_types)
        if count:
            self.metrics.get_counter('cache_invalidations_total', 'Keys invalidated').increment(count)
        return count

    def smart_invalidate(self, event: str, payload: Any = None) -> int:
        """Apply the invalidation rule registered for a domain event."""
        return self.invalidator.smart_invalidate(event, payload)

    # ------------------------------------------------------------------ keys and batches

    def create_key(self, prefix: str, data: Any, hash: bool = False) -> str:
        """Build ``prefix:data``; long keys collapse to ``prefix:<md5>`` when ``hash`` is set."""
        body = data if isinstance(data, str) else json.dumps(data, separators=(',', ':'), default=str)
        key = f"{prefix}:{body}"

        if hash and len(key) > self.settings.key_hash_threshold:
            key = f"{prefix}:{hashlib.md5(key.encode('utf-8')).hexdigest()}"

        return key

    async def batch_get(self, operations: List[Dict[str, str]]) -> List[BatchResult]:
        """Run several lookups concurrently; one failure does not affect the rest."""
        async def run(op: Dict[str, str]) -> BatchResult:
            try:
                hit = await self.get(op['cache_type'], op['key'])
            except Exception as e:
                self.logger.error(f"Batch get failed for {op.get('key')}: {e}", operation="batch_get")
                return BatchResult(key=op.get('key'), success=False, error=str(e))
            return BatchResult(key=op['key'], success=True, data=hit)

        return list(await asyncio.gather(*(run(op) for op in operations)))

    async def batch_set(self, operations: List[Dict[str, Any]]) -> bool:
        """Run several writes concurrently. True only if every write succeeded."""
        async def run(op: Dict[str, Any]) -> bool:
            try:
                return await self.set(op['cache_type'], op['key'], op['data'], op.get('ttl'))
            except Exception as e:
                self.logger.error(f"Batch set failed for {op.get('key')}: {e}", operation="batch_set")
                return False

        results = await asyncio.gather(*(run(op) for op in operations))
        return all(results)

    # ------------------------------------------------------------------ monitoring

    def get_stats(self) -> Dict[str, Any]:
        """Get a snapshot of counters plus derived rates."""
        snapshot = self.stats.snapshot()
        total_requests = snapshot['total_requests']

        return {
            **snapshot,
            'hit_rate': format_percent(snapshot['hits'], total_requests),
            'total_keys': sum(len(cache.keys()) for cache in self.caches.values()),
            'cache_types': len(self.caches),
            'compression_ratio': (
                format_percent(snapshot['compressions'], total_requests)
                if snapshot['compressions'] else '0%'
            ),
            'tiers': {
                name: {**cache.describe(), **self.stats.tier_snapshot(name)}
                for name, cache in self.caches.items()
            },
        }

    def health_check(self) -> Dict[str, Any]:
        """Round-trip a probe key through every tier."""
        caches = {name: probe_tier(cache) for name, cache in self.caches.items()}
        status = HEALTHY if all(c['status'] == HEALTHY for c in caches.values()) else DEGRADED

        if status != HEALTHY:
            self.logger.warning(
                "Cache health check degraded",
                operation="health_check",
                failing=[name for name, c in caches.items() if c['status'] != HEALTHY],
            )

        return {
            'status': status,
            'caches': caches,
            'stats': self.get_stats(),
            'memory': self.metrics.record_process_memory(),
        }

    async def report(self) -> Dict[str, Any]:
        """Refresh the memory estimate and log a performance summary now."""
        return await self.monitor.run_once()

    def clear_all(self) -> None:
        """Flush every tier and reset all statistics."""
        for cache in self.caches.values():
            cache.flush()
        self.stats.reset()
        self.metrics.reset()
        self.logger.info("All caches cleared", operation="clear_all")

    def export(self) -> Dict[str, Dict[str, Any]]:
        """Dump every stored payload of every tier."""
        return {name: dict(cache.items()) for name, cache in self.caches.items()}
