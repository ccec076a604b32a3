"""
Statistics, periodic reporting and health probing for cache tiers.

CacheStatistics keeps the process-wide counters and also listens to tier
events so that expirations and capacity evictions are counted. The
PerformanceMonitor runs as a background asyncio task that re-estimates memory
use and logs a summary at a fixed interval.
"""

import asyncio
import json
import threading
import uuid
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional

from ..logging_config import get_logger
from ..metrics_collector import MetricsCollector, MetricUnit
from .errors import HealthProbeError
from .tiers import CacheTier, TierListener


DEFAULT_REPORT_INTERVAL = 60  # seconds
DEFAULT_MEMORY_SAMPLE_SIZE = 10

HEALTHY = "healthy"
DEGRADED = "degraded"
ERROR = "error"


def format_percent(numerator: float, denominator: float) -> str:
    """Render ``numerator/denominator`` as a one-decimal percentage, "0%" when empty."""
    if not denominator:
        return "0%"
    return f"{numerator / denominator * 100:.1f}%"


class CacheStatistics(TierListener):
    """Thread-safe process-wide cache counters."""

    COUNTERS = (
        'hits',
        'misses',
        'compressions',
        'decompressions',
        'invalidations',
        'evictions',
        'expirations',
        'errors',
        'total_requests',
    )

    def __init__(self):
        self._lock = threading.RLock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.counters: Dict[str, int] = {name: 0 for name in self.COUNTERS}
            self.average_response_time = 0.0
            self.memory_usage = 0
            self.tier_counters: Dict[str, Dict[str, int]] = defaultdict(lambda: {'hits': 0, 'misses': 0})

    def get(self, name: str) -> int:
        with self._lock:
            return self.counters[name]

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self.counters[name] += amount

    def set_memory_usage(self, memory: int) -> None:
        with self._lock:
            self.memory_usage = memory

    def record_request(self, tier: str, hit: bool, response_time_ms: float) -> None:
        """Count one ``get`` and fold its latency into the running mean."""
        outcome = 'hits' if hit else 'misses'
        with self._lock:
            self.counters[outcome] += 1
            self.counters['total_requests'] += 1
            self.tier_counters[tier][outcome] += 1
            n = self.counters['total_requests']
            self.average_response_time = (self.average_response_time * (n - 1) + response_time_ms) / n

    def on_expire(self, tier: str, key: str, payload: Any) -> None:
        self.increment('expirations')

    def on_evict(self, tier: str, keys: List[str]) -> None:
        self.increment('evictions', len(keys))

    @property
    def hit_rate(self) -> str:
        with self._lock:
            return format_percent(self.counters['hits'], self.counters['total_requests'])

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                **self.counters,
                'average_response_time': self.average_response_time,
                'memory_usage': self.memory_usage,
            }

    def tier_snapshot(self, tier: str) -> Dict[str, int]:
        with self._lock:
            counters = self.tier_counters.get(tier, {'hits': 0, 'misses': 0})
            return dict(counters)


def payload_size(payload: Any) -> int:
    """Approximate stored size of one payload in bytes."""
    if isinstance(payload, dict) and payload.get('compressed'):
        return len(payload['data'])
    try:
        return len(json.dumps(payload, default=str))
    except (TypeError, ValueError):
        return len(str(payload))


def estimate_memory(tiers: Mapping[str, CacheTier], sample_size: int = DEFAULT_MEMORY_SAMPLE_SIZE) -> int:
    """
    Estimate memory held by all tiers.

    Up to ``sample_size`` entries per tier are measured and the mean size is
    extrapolated to the tier's full key count.
    """
    total = 0.0
    for tier in tiers.values():
        items = list(tier.items())
        if not items:
            continue
        sample = items[:sample_size]
        sampled_bytes = sum(payload_size(payload) for _, payload in sample)
        total += sampled_bytes / len(sample) * len(items)
    return int(total)


def probe_tier(tier: CacheTier) -> Dict[str, Any]:
    """Round-trip a unique short-lived key through ``tier`` and report its health."""
    try:
        test_key = f"health_test_{uuid.uuid4().hex}"
        test_data = {'test': True, 'probe': test_key}

        tier.set(test_key, test_data, 1)
        entry = tier.get(test_key)
        tier.delete(test_key)

        return {
            'status': HEALTHY if entry is not None and entry.payload == test_data else DEGRADED,
            'key_count': len(tier.keys()),
            'max_keys': tier.config.max_entries,
            'ttl': tier.config.ttl_seconds,
        }
    except Exception as e:
        error = HealthProbeError(f"Tier {tier.name} failed its health probe: {e}", tier.name)
        return {
            'status': ERROR,
            'error': str(error),
        }


class PerformanceMonitor:
    """Background task that refreshes memory estimates and logs a performance report."""

    def __init__(
        self,
        tiers: Mapping[str, CacheTier],
        stats: CacheStatistics,
        metrics: MetricsCollector,
        interval: int = DEFAULT_REPORT_INTERVAL,
        sample_size: int = DEFAULT_MEMORY_SAMPLE_SIZE,
    ):
        self.tiers = tiers
        self.stats = stats
        self.metrics = metrics
        self.interval = interval
        self.sample_size = sample_size
        self.logger = get_logger(__name__, 'cache_monitor')

        self.running = False
        self.worker_task: Optional[asyncio.Task] = None

    def update_memory_stats(self) -> int:
        memory = estimate_memory(self.tiers, self.sample_size)
        self.stats.set_memory_usage(memory)
        self.metrics.get_gauge('cache_memory_usage_bytes', 'Estimated cache memory', MetricUnit.BYTES).set(memory)
        return memory

    def log_performance_metrics(self) -> Dict[str, Any]:
        snapshot = self.stats.snapshot()
        key_counts = {name: len(tier.keys()) for name, tier in self.tiers.items()}

        self.logger.info(
            f"Performance report: hit rate {self.stats.hit_rate} "
            f"({snapshot['hits']}/{snapshot['total_requests']}), "
            f"avg response {snapshot['average_response_time']:.1f}ms, "
            f"compressions {snapshot['compressions']}, "
            f"memory ~{snapshot['memory_usage'] / 1024:.1f}KB",
            operation="performance_report",
            key_counts=key_counts,
        )

        for name, count in key_counts.items():
            self.metrics.get_gauge('cache_keys', 'Keys per cache tier').set(count, tier=name)

        return {'stats': snapshot, 'key_counts': key_counts}

    async def run_once(self) -> Dict[str, Any]:
        self.update_memory_stats()
        return self.log_performance_metrics()

    async def start(self) -> None:
        """Start the periodic performance report."""
        if self.running:
            self.logger.warning("Performance monitor is already running")
            return

        self.running = True
        self.worker_task = asyncio.create_task(self._monitor_worker())
        self.logger.info(f"Performance monitor started (every {self.interval}s)", operation="start")

    async def stop(self) -> None:
        """Stop the periodic performance report."""
        if not self.running:
            return

        self.running = False

        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except asyncio.CancelledError:
                pass
            self.worker_task = None

        self.logger.info("Performance monitor stopped", operation="stop")

    async def _monitor_worker(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(self.interval)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in performance monitor: {e}", operation="performance_report")
