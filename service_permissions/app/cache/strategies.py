"""
Pluggable caching strategies for the evaluation cache.

A strategy may veto caching a decision or choose its TTL. An explicit TTL
passed to ``EvaluationCache.set`` still takes precedence over the strategy.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

from shared.errors import ConfigurationError


class CacheStrategy(ABC):
    """Decides whether and for how long a decision is cached."""

    @abstractmethod
    def should_cache(self, key: str, value: bool, context: Optional[Dict[str, Any]] = None) -> bool:
        """Return False to skip caching this decision."""

    @abstractmethod
    def get_ttl(self, key: str, value: bool, context: Optional[Dict[str, Any]] = None) -> Optional[int]:
        """TTL in seconds, or None to fall back to the cache default."""


class DefaultCacheStrategy(CacheStrategy):
    """Cache everything; grants for 5 minutes, denials for 1 minute."""

    def should_cache(self, key, value, context=None):
        return True

    def get_ttl(self, key, value, context=None):
        return 300 if value else 60


class AggressiveCacheStrategy(CacheStrategy):
    """Cache everything for longer; grants 15 minutes, denials 5 minutes."""

    def should_cache(self, key, value, context=None):
        return True

    def get_ttl(self, key, value, context=None):
        return 900 if value else 300


class ConservativeCacheStrategy(CacheStrategy):
    """Never cache denials; grants live 1 minute."""

    def should_cache(self, key, value, context=None):
        return value

    def get_ttl(self, key, value, context=None):
        return 60


CACHE_STRATEGIES: Dict[str, Type[CacheStrategy]] = {
    "default": DefaultCacheStrategy,
    "aggressive": AggressiveCacheStrategy,
    "conservative": ConservativeCacheStrategy,
}


def get_cache_strategy(name: Optional[str]) -> Optional[CacheStrategy]:
    """Build a strategy by configured name; None or "none" means no strategy."""
    if not name or name.lower() == "none":
        return None

    strategy_class = CACHE_STRATEGIES.get(name.lower())
    if strategy_class is None:
        raise ConfigurationError(
            f"Unknown cache strategy: {name}",
            {"available": sorted(CACHE_STRATEGIES)}
        )
    return strategy_class()
