"""
In-memory decision cache for the Access Permissions engine.
"""

import asyncio
import hashlib
import json
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Union
from urllib.parse import quote

from shared.logging import get_logger
from ..rules.models import CacheInfo, PermissionContext
from .strategies import CacheStrategy


@dataclass
class CacheEntry:
    """Cached boolean decision."""
    key: str
    result: bool
    timestamp: float
    ttl_seconds: float
    access_count: int = 1
    context: Optional[Dict[str, Any]] = None


@dataclass
class CacheStats:
    """Cache counters."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["hit_rate"] = self.hit_rate
        return data


def user_key_prefix(user_id: str) -> str:
    """Key prefix owned by a principal; the id is quoted so ':' cannot leak into another prefix."""
    return f"{quote(str(user_id), safe='')}:"


def narrow_context(context: Optional[PermissionContext]) -> Dict[str, Any]:
    """The subset of a context that decisions are cached under."""
    if context is None:
        return {}

    resource = context.resource if isinstance(context.resource, Mapping) else {}
    environment = context.environment
    location = (environment.location if environment else None) or {}

    return {
        "user_id": context.user_id,
        "resource_id": resource.get("id"),
        "action": context.action,
        "ip": environment.ip if environment else None,
        "country": location.get("country"),
    }


def build_cache_key(user_id: str, permission_name: str, context: Optional[PermissionContext]) -> str:
    """Generate the cache key for a decision.

    Only the narrowed context is hashed: two contexts that differ outside
    it (metadata, resource attributes other than id, time) share a key.
    """
    context_str = json.dumps(narrow_context(context), sort_keys=True, default=str)
    context_hash = hashlib.md5(context_str.encode()).hexdigest()
    return f"{user_key_prefix(user_id)}{permission_name}:{context_hash}"


class EvaluationCache:
    """Bounded TTL + LRU cache of boolean decisions.

    Every public operation holds ``_lock`` only for its own short critical
    section; the background sweep holds it for a single purge pass.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: int = 300,
        strategy: Optional[CacheStrategy] = None,
        cleanup_interval: float = 60.0,
        enable_stats: bool = True,
        metrics=None,
        clock: Callable[[], float] = time.time,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.max_size = max_size
        self.default_ttl = default_ttl
        self.strategy = strategy
        self.cleanup_interval = cleanup_interval
        self.enable_stats = enable_stats
        self.metrics = metrics
        self.logger = get_logger("permissions.cache")

        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._stats = CacheStats()
        self.last_cleared: Optional[datetime] = None

        # Cleanup task
        self.cleanup_task: Optional[asyncio.Task] = None
        self.running = False

        self.logger.info(
            "Evaluation cache initialized",
            max_size=max_size,
            default_ttl=default_ttl,
            strategy=type(strategy).__name__ if strategy else None
        )

    async def start(self):
        """Start the periodic expiry sweep."""
        if self.running:
            return
        self.running = True
        self.cleanup_task = asyncio.create_task(self._cleanup_loop())
        self.logger.info("Cache sweep started", interval=self.cleanup_interval)

    async def stop(self):
        """Stop the periodic expiry sweep."""
        self.running = False
        if self.cleanup_task:
            self.cleanup_task.cancel()
            try:
                await self.cleanup_task
            except asyncio.CancelledError:
                pass
            self.cleanup_task = None

        self.logger.info("Cache sweep stopped", **self.get_stats().to_dict())

    def get(self, key: str) -> Optional[bool]:
        """Cached decision, or None on miss. Expired entries are dropped eagerly."""
        with self._lock:
            entry = self._entries.get(key)

            if entry is None:
                self._record("misses")
                return None

            if self._is_expired(entry, self._clock()):
                del self._entries[key]
                self._record("misses")
                return None

            self._entries.move_to_end(key)
            entry.access_count += 1
            self._record("hits")
            return entry.result

    def set(
        self,
        key: str,
        value: bool,
        ttl: Optional[float] = None,
        context: Optional[PermissionContext] = None
    ) -> bool:
        """Cache a decision. Returns False when the strategy vetoes it."""
        narrowed = narrow_context(context) if context is not None else None

        if self.strategy and not self.strategy.should_cache(key, value, narrowed):
            self.logger.debug("Strategy skipped caching", key=key, value=value)
            return False

        final_ttl = ttl
        if final_ttl is None and self.strategy:
            final_ttl = self.strategy.get_ttl(key, value, narrowed)
        if final_ttl is None:
            final_ttl = self.default_ttl

        evicted = None
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                evicted = self._evict_least_recently_used()

            self._entries[key] = CacheEntry(
                key=key,
                result=value,
                timestamp=self._clock(),
                ttl_seconds=final_ttl,
                context=narrowed
            )
            self._entries.move_to_end(key)
            self._record("sets")
            size = len(self._entries)

        if evicted is not None:
            self.logger.debug("LRU entry evicted", key=evicted)
        if self.metrics:
            self.metrics.set_cache_size(size)

        self.logger.debug("Cached decision", key=key, value=value, ttl=final_ttl)
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            deleted = self._entries.pop(key, None) is not None
            if deleted:
                self._record("deletes")
        return deleted

    def delete_by_pattern(self, pattern: Union[str, "re.Pattern[str]"]) -> int:
        """Delete every key matching ``pattern`` (searched, anchor it yourself)."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern

        with self._lock:
            keys = [key for key in self._entries if regex.search(key)]
            for key in keys:
                del self._entries[key]
                self._record("deletes")

        self.logger.debug("Deleted cache entries by pattern", pattern=regex.pattern, count=len(keys))
        return len(keys)

    def delete_by_user_id(self, user_id: str) -> int:
        """Delete every decision cached for a principal."""
        return self.delete_by_pattern(re.compile("^" + re.escape(user_key_prefix(user_id))))

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self.last_cleared = datetime.now(timezone.utc)

        if self.metrics:
            self.metrics.set_cache_size(0)
        self.logger.info("Cache cleared", count=count)
        return count

    def cleanup(self) -> int:
        """Purge every expired entry in one pass."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
            for key in expired:
                del self._entries[key]
            size = len(self._entries)

        if expired:
            self.logger.debug("Expired cache entries purged", count=len(expired))
        if self.metrics:
            self.metrics.set_cache_size(size)
        return len(expired)

    async def warmup(self, keys: Iterable[str], loader: Callable[[str], Awaitable[bool]]) -> int:
        """Populate ``keys`` through an async loader; failing keys are skipped."""
        keys = list(keys)
        self.logger.info("Cache warmup started", key_count=len(keys))

        async def _warm(key: str) -> bool:
            try:
                value = await loader(key)
            except Exception as e:
                self.logger.warning("Cache warmup failed for key", key=key, error=str(e))
                return False
            return self.set(key, value)

        results = await asyncio.gather(*(_warm(key) for key in keys))
        warmed = sum(1 for result in results if result)

        self.logger.info("Cache warmup completed", warmed=warmed, key_count=len(keys))
        return warmed

    def get_stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(**asdict(self._stats))

    def reset_stats(self):
        with self._lock:
            self._stats = CacheStats()

    def get_info(self) -> CacheInfo:
        with self._lock:
            now = self._clock()
            valid = sum(1 for entry in self._entries.values() if not self._is_expired(entry, now))
            size = len(self._entries)
            hit_rate = self._stats.hit_rate

        return CacheInfo(
            size=size,
            entries=valid,
            hit_rate=hit_rate,
            max_size=self.max_size,
            last_cleared=self.last_cleared
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        """Presence of an unexpired entry; does not touch stats or recency."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._is_expired(entry, self._clock())

    async def _cleanup_loop(self):
        while self.running:
            try:
                await asyncio.sleep(self.cleanup_interval)
                self.cleanup()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Error in cache sweep", error=str(e))

    def _evict_least_recently_used(self) -> Optional[str]:
        # Caller holds _lock
        if not self._entries:
            return None
        key, _ = self._entries.popitem(last=False)
        self._record("evictions")
        return key

    @staticmethod
    def _is_expired(entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > entry.ttl_seconds

    def _record(self, counter: str):
        # Caller holds _lock
        if self.enable_stats:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

        if self.metrics:
            if counter == "hits":
                self.metrics.record_cache_hit()
            elif counter == "misses":
                self.metrics.record_cache_miss()
            elif counter == "evictions":
                self.metrics.record_cache_eviction()
