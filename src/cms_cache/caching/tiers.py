"""
Named cache tiers for the CMS cache layer.

Each tier is an insertion-ordered in-memory store with its own default TTL,
sweep interval and capacity. Tiers notify registered listeners synchronously
whenever an entry is set, expires or is deleted.
"""

import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from ..logging_config import get_logger


# Share of max_entries above which the oldest entries are evicted
CAPACITY_HIGH_WATER = 0.9
# Share of current entries removed by one capacity eviction
CAPACITY_EVICT_FRACTION = 0.2


@dataclass(frozen=True)
class TierConfig:
    """Configuration of one named tier."""
    name: str
    ttl_seconds: int
    check_interval_seconds: int
    max_entries: int
    delete_on_expire: bool = True

    def __post_init__(self):
        if self.ttl_seconds <= 0:
            raise ValueError(f"Tier {self.name}: ttl_seconds must be positive")
        if self.check_interval_seconds <= 0:
            raise ValueError(f"Tier {self.name}: check_interval_seconds must be positive")
        if self.max_entries <= 0:
            raise ValueError(f"Tier {self.name}: max_entries must be positive")


DEFAULT_TIER_CONFIGS: Dict[str, TierConfig] = {
    # Critical API responses
    'critical': TierConfig('critical', ttl_seconds=30, check_interval_seconds=5, max_entries=500),
    # Frequently accessed data
    'frequent': TierConfig('frequent', ttl_seconds=120, check_interval_seconds=20, max_entries=1000),
    # Regular API responses
    'standard': TierConfig('standard', ttl_seconds=300, check_interval_seconds=60, max_entries=2000),
    # Static or computed data
    'longterm': TierConfig('longterm', ttl_seconds=1800, check_interval_seconds=300, max_entries=1000),
    # Database query results
    'database': TierConfig('database', ttl_seconds=10, check_interval_seconds=2, max_entries=3000),
    # AI provider responses
    'ai_providers': TierConfig('ai_providers', ttl_seconds=180, check_interval_seconds=30, max_entries=200),
}


@dataclass
class CacheEntry:
    """One stored payload within a tier."""
    key: str
    payload: Any
    inserted_at: float
    expires_at: Optional[float]
    ttl_override: Optional[int] = None

    def is_expired(self, now: float) -> bool:
        """Check if the cache entry is expired."""
        return self.expires_at is not None and now >= self.expires_at


class TierListener:
    """Observer of tier mutations. Subclasses override what they need."""

    def on_set(self, tier: str, key: str, payload: Any) -> None:
        pass

    def on_expire(self, tier: str, key: str, payload: Any) -> None:
        pass

    def on_delete(self, tier: str, key: str, payload: Any) -> None:
        pass

    def on_evict(self, tier: str, keys: List[str]) -> None:
        pass


class LoggingTierListener(TierListener):
    """Logs every tier mutation at debug level."""

    def __init__(self):
        self.logger = get_logger(__name__, 'cache_tier')

    def on_set(self, tier: str, key: str, payload: Any) -> None:
        self.logger.debug(f"[{tier.upper()} CACHE] SET: {key}", operation="set", tier=tier)

    def on_expire(self, tier: str, key: str, payload: Any) -> None:
        self.logger.debug(f"[{tier.upper()} CACHE] EXPIRED: {key}", operation="expire", tier=tier)

    def on_delete(self, tier: str, key: str, payload: Any) -> None:
        self.logger.debug(f"[{tier.upper()} CACHE] DELETED: {key}", operation="delete", tier=tier)

    def on_evict(self, tier: str, keys: List[str]) -> None:
        self.logger.warning(
            f"[{tier.upper()} CACHE] Evicted {len(keys)} oldest entries near capacity",
            operation="evict",
            tier=tier,
            evicted=len(keys),
        )


class CacheTier:
    """Thread-safe, insertion-ordered store with TTL expiry and a soft capacity guard."""

    def __init__(self, config: TierConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.name = config.name
        self.clock = clock
        self.entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.lock = threading.RLock()
        self.listeners: List[TierListener] = []

    def add_listener(self, listener: TierListener) -> None:
        self.listeners.append(listener)

    def _notify(self, event: str, *args) -> None:
        for listener in self.listeners:
            getattr(listener, event)(self.name, *args)

    def __len__(self) -> int:
        with self.lock:
            return len(self.entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for ``key``; expired entries are dropped and reported absent."""
        expired = None
        with self.lock:
            entry = self.entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self.clock()):
                if self.config.delete_on_expire:
                    del self.entries[key]
                expired = entry

        if expired is not None:
            self._notify('on_expire', key, expired.payload)
            return None
        return entry

    def set(self, key: str, payload: Any, ttl: Optional[int] = None) -> CacheEntry:
        """Insert or fully replace ``key``; the entry becomes the newest by insertion order."""
        now = self.clock()
        lifetime = ttl if ttl is not None else self.config.ttl_seconds
        entry = CacheEntry(
            key=key,
            payload=payload,
            inserted_at=now,
            expires_at=now + lifetime,
            ttl_override=ttl,
        )

        with self.lock:
            self.entries.pop(key, None)
            self.entries[key] = entry
            evicted = self._evict_if_near_capacity()

        self._notify('on_set', key, payload)
        if evicted:
            self._notify('on_evict', [k for k, _ in evicted])
        return entry

    def _evict_if_near_capacity(self) -> List[Tuple[str, CacheEntry]]:
        # Caller holds the lock. The newest entry is never evicted.
        count = len(self.entries)
        if count <= self.config.max_entries * CAPACITY_HIGH_WATER:
            return []
        to_remove = min(max(1, math.floor(count * CAPACITY_EVICT_FRACTION)), count - 1)
        return self._pop_oldest(to_remove)

    def _pop_oldest(self, count: int) -> List[Tuple[str, CacheEntry]]:
        removed = []
        for _ in range(count):
            if not self.entries:
                break
            removed.append(self.entries.popitem(last=False))
        return removed

    def evict_oldest(self, fraction: float = CAPACITY_EVICT_FRACTION) -> int:
        """Remove the oldest ``fraction`` of entries (floor). Returns the number removed."""
        with self.lock:
            evicted = self._pop_oldest(math.floor(len(self.entries) * fraction))

        if evicted:
            self._notify('on_evict', [k for k, _ in evicted])
        return len(evicted)

    def is_near_capacity(self) -> bool:
        with self.lock:
            return len(self.entries) > self.config.max_entries * CAPACITY_HIGH_WATER

    def delete(self, key: str) -> bool:
        """Delete ``key``. Missing keys are a no-op."""
        with self.lock:
            entry = self.entries.pop(key, None)

        if entry is None:
            return False
        self._notify('on_delete', key, entry.payload)
        return True

    def keys(self) -> List[str]:
        """Keys of live entries, oldest first."""
        now = self.clock()
        with self.lock:
            return [key for key, entry in self.entries.items() if not entry.is_expired(now)]

    def items(self) -> Iterator[Tuple[str, Any]]:
        """Snapshot of live ``(key, payload)`` pairs, oldest first."""
        now = self.clock()
        with self.lock:
            snapshot = [(k, e.payload) for k, e in self.entries.items() if not e.is_expired(now)]
        return iter(snapshot)

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self.clock()
        with self.lock:
            expired = [(k, e) for k, e in self.entries.items() if e.is_expired(now)]
            if self.config.delete_on_expire:
                for key, _ in expired:
                    del self.entries[key]

        for key, entry in expired:
            self._notify('on_expire', key, entry.payload)
        return len(expired)

    def flush(self) -> None:
        """Remove every entry without notifying listeners."""
        with self.lock:
            self.entries.clear()

    def describe(self) -> Dict[str, Any]:
        return {
            'key_count': len(self.keys()),
            'max_keys': self.config.max_entries,
            'ttl': self.config.ttl_seconds,
            'check_interval': self.config.check_interval_seconds,
        }


def build_tiers(
    configs: Optional[Dict[str, TierConfig]] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Dict[str, CacheTier]:
    """Create one tier per configuration, keyed by tier name."""
    configs = configs if configs is not None else DEFAULT_TIER_CONFIGS
    return {name: CacheTier(config, clock=clock) for name, config in configs.items()}
