"""
Cache invalidation for the CMS cache layer.

Keys are removed in bulk by pattern: a literal substring, a regular
expression, or a predicate over the key. Domain events ("post_updated",
"user_updated", ...) map to fixed sets of patterns through a rule table.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from ..logging_config import get_logger
from .errors import ConfigurationError
from .monitoring import CacheStatistics
from .tiers import CacheTier


class InvalidationPattern:
    """Base of the three pattern variants."""

    def matches(self, key: str) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class Substring(InvalidationPattern):
    """Matches keys that contain ``text``."""
    text: str

    def matches(self, key: str) -> bool:
        return self.text in key


@dataclass(frozen=True)
class Regex(InvalidationPattern):
    """Matches keys in which ``pattern`` is found anywhere."""
    pattern: re.Pattern

    def __init__(self, pattern: Union[str, re.Pattern]):
        object.__setattr__(self, 'pattern', re.compile(pattern) if isinstance(pattern, str) else pattern)

    def matches(self, key: str) -> bool:
        return self.pattern.search(key) is not None


@dataclass(frozen=True)
class Predicate(InvalidationPattern):
    """Matches keys for which ``fn`` returns true."""
    fn: Callable[[str], bool]

    def matches(self, key: str) -> bool:
        return bool(self.fn(key))


PatternLike = Union[InvalidationPattern, str, re.Pattern, Callable[[str], bool]]


def as_pattern(pattern: PatternLike) -> InvalidationPattern:
    """Coerce a plain string, compiled regex or callable into a pattern variant."""
    if isinstance(pattern, InvalidationPattern):
        return pattern
    if isinstance(pattern, str):
        return Substring(pattern)
    if isinstance(pattern, re.Pattern):
        return Regex(pattern)
    if callable(pattern):
        return Predicate(pattern)
    raise TypeError(f"Unsupported invalidation pattern: {pattern!r}")


@dataclass
class InvalidationRule:
    """Maps one domain event to the patterns it invalidates."""
    name: str
    patterns: Callable[[Any], List[InvalidationPattern]]
    description: str = ""
    enabled: bool = True

    # Statistics
    triggered_count: int = 0
    keys_invalidated: int = 0
    last_triggered: Optional[datetime] = None


def create_default_invalidation_rules() -> List[InvalidationRule]:
    """Create the built-in event rules."""
    return [
        InvalidationRule(
            name="post_created",
            patterns=lambda _: [Regex('posts'), Regex('blog'), Regex('api.*posts')],
            description="New post: drop post listings and blog pages",
        ),
        InvalidationRule(
            name="post_updated",
            patterns=lambda post_id: [Substring(f"post:{post_id}"), Regex('posts'), Regex('blog')],
            description="Edited post: drop the post itself plus listings",
        ),
        InvalidationRule(
            name="user_updated",
            patterns=lambda user_id: [Substring(f"user:{user_id}"), Regex('sessions')],
            description="Edited user: drop the user and session caches",
        ),
        InvalidationRule(
            name="ai_config_changed",
            patterns=lambda _: [Regex('ai'), Regex('providers')],
            description="Provider configuration changed: drop AI responses",
        ),
    ]


CACHE_FULL_EVENT = "cache_full"


@dataclass
class InvalidationEngine:
    """Pattern-based bulk eviction across tiers plus the event rule table."""
    tiers: Mapping[str, CacheTier]
    stats: CacheStatistics
    smart_invalidation: bool = True
    rules: Dict[str, InvalidationRule] = field(default_factory=dict)

    def __post_init__(self):
        self.logger = get_logger(__name__, 'cache_invalidator')
        if not self.rules:
            for rule in create_default_invalidation_rules():
                self.register_rule(rule)

    def register_rule(self, rule: InvalidationRule) -> None:
        """Register or replace an event rule."""
        if rule.name == CACHE_FULL_EVENT:
            raise ConfigurationError(f"'{CACHE_FULL_EVENT}' is a built-in event and cannot be replaced")
        self.rules[rule.name] = rule
        self.logger.debug(f"Registered cache invalidation rule: {rule.name}", operation="register_rule")

    def _resolve_tiers(self, cache_types: Optional[Iterable[str]]) -> List[CacheTier]:
        if cache_types is None:
            return list(self.tiers.values())
        resolved = []
        for cache_type in cache_types:
            tier = self.tiers.get(cache_type)
            if tier is None:
                raise ConfigurationError(f"Cache type '{cache_type}' not found", cache_type)
            resolved.append(tier)
        return resolved

    def invalidate(self, pattern: PatternLike, cache_types: Optional[Iterable[str]] = None) -> int:
        """Delete every key matching ``pattern`` in the targeted tiers; returns the count."""
        matcher = as_pattern(pattern)
        invalidated_count = 0

        for tier in self._resolve_tiers(cache_types):
            for key in [k for k in tier.keys() if matcher.matches(k)]:
                if tier.delete(key):
                    invalidated_count += 1

        self.stats.increment('invalidations', invalidated_count)
        self.logger.debug(
            f"Invalidated {invalidated_count} keys matching {matcher!r}",
            operation="invalidate",
            invalidated=invalidated_count,
        )
        return invalidated_count

    def smart_invalidate(self, event: str, payload: Any = None) -> int:
        """Apply the rule registered for ``event``; unknown events are ignored."""
        if not self.smart_invalidation:
            return 0

        if event == CACHE_FULL_EVENT:
            return self.relieve_capacity(payload)

        rule = self.rules.get(event)
        if rule is None or not rule.enabled:
            self.logger.debug(f"No invalidation rule for event: {event}", operation="smart_invalidate")
            return 0

        total = sum(self.invalidate(pattern) for pattern in rule.patterns(payload))

        rule.triggered_count += 1
        rule.keys_invalidated += total
        rule.last_triggered = datetime.now(timezone.utc)

        self.logger.info(
            f"Event {event} invalidated {total} keys",
            operation="smart_invalidate",
            event=event,
            invalidated=total,
        )
        return total

    def relieve_capacity(self, cache_type: str) -> int:
        """Evict the oldest entries of a tier that is above its high-water mark."""
        tier = self.tiers.get(cache_type)
        if tier is None:
            raise ConfigurationError(f"Cache type '{cache_type}' not found", cache_type)

        if not tier.is_near_capacity():
            return 0

        self.logger.warning(
            f"Cache {cache_type} approaching limit ({len(tier)}/{tier.config.max_entries})",
            operation="cache_full",
            tier=cache_type,
        )
        return tier.evict_oldest()

    def get_stats(self) -> Dict[str, Any]:
        """Get per-rule invalidation statistics."""
        return {
            name: {
                'enabled': rule.enabled,
                'description': rule.description,
                'triggered_count': rule.triggered_count,
                'keys_invalidated': rule.keys_invalidated,
                'last_triggered': rule.last_triggered.isoformat() if rule.last_triggered else None,
            }
            for name, rule in self.rules.items()
        }
