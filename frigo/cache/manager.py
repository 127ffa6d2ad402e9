"""
Main cache orchestration with stale-while-revalidate and stale fallback.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .clock import SystemClock
from .coalescer import RequestCoalescer
from .core import CacheEntry, CacheMeta, CacheSource, ResourceCategory, to_iso
from .errors import SerializationError, StorageError
from .store import DEFAULT_NAMESPACE, KeyValueStore, MemoryStore, NamespacedStore
from .ttl_policies import get_policy

logger = logging.getLogger("cache.manager")

Producer = Callable[[], Awaitable[Any]]


class CacheManager:
    """
    Cache orchestration with:
    - Fresh short-circuit within the TTL
    - Background refresh alongside fresh hits (one task per key)
    - Stale fallback when a refresh fails
    - Request coalescing for concurrent misses on the same key
    - Pass-through degradation when the store fails
    - Response metadata tracking

    Entries are ordered by the time their produce call resolved: an older
    completion never overwrites a newer entry.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        clock=None,
        namespace: str = DEFAULT_NAMESPACE,
        default_ttl_seconds: float = 300.0,
        background_refresh: bool = True,
        coalesce: bool = True,
        enabled: bool = True,
    ):
        """
        Initialize the cache manager.

        Args:
            store: Backing key-value store (defaults to a process-local MemoryStore)
            clock: Object with now() -> float seconds (defaults to SystemClock)
            namespace: Key prefix isolating cache entries inside the store
            default_ttl_seconds: TTL used when neither the call nor a resource sets one
            background_refresh: Default for refreshing alongside fresh hits
            coalesce: Share one produce call among concurrent misses on a key
            enabled: When False every call goes straight to produce
        """
        self._store = NamespacedStore(store if store is not None else MemoryStore(), namespace)
        self._clock = clock or SystemClock()
        self.default_ttl_seconds = default_ttl_seconds
        self.background_refresh = background_refresh
        self._enabled = enabled
        self._degraded = False
        self._coalescer = RequestCoalescer() if coalesce else None

        # Background refresh tasks, at most one per key
        self._refreshing: Dict[str, asyncio.Task] = {}

        # Stats tracking
        self._stats = {
            "hits_fresh": 0,
            "misses": 0,
            "refreshes": 0,
            "fallbacks": 0,
            "revalidations": 0,
            "failed_revalidations": 0,
            "discarded_writes": 0,
        }

    @property
    def degraded(self) -> bool:
        """True once a storage failure switched the cache to pass-through."""
        return self._degraded

    @property
    def usable(self) -> bool:
        return self._enabled and not self._degraded

    async def get_or_refresh(
        self,
        key: str,
        produce: Producer,
        ttl_seconds: Optional[float] = None,
        background_refresh: Optional[bool] = None,
    ) -> Any:
        """
        Return the value for key, producing it when absent or stale.

        A missing entry awaits produce and propagates its failure. A fresh
        entry is returned at once, optionally refreshed in the background. A
        stale entry awaits produce and is returned as a fallback if it fails.
        """
        value, _ = await self.get(
            key,
            produce,
            ttl_seconds=ttl_seconds,
            background_refresh=background_refresh,
        )
        return value

    async def get(
        self,
        key: str,
        produce: Producer,
        ttl_seconds: Optional[float] = None,
        background_refresh: Optional[bool] = None,
        resource: Union[ResourceCategory, str, None] = None,
        force_refresh: bool = False,
    ) -> Tuple[Any, CacheMeta]:
        """
        Get data from cache or produce it.

        Args:
            key: Unique cache key (non-empty)
            produce: Zero-argument callable returning an awaitable value
            ttl_seconds: Override the TTL for this call
            background_refresh: Override background refresh for this call
            resource: Resource whose policy supplies TTL/background defaults
            force_refresh: Skip the fresh short-circuit (stale fallback still applies)

        Returns:
            (value, cache_meta) tuple
        """
        if not key:
            raise ValueError("cache key must be a non-empty string")

        ttl, refresh_in_background = self._resolve_options(
            ttl_seconds, background_refresh, resource
        )
        resource_name = _resource_name(resource)

        entry = self._read(key)

        # Cache miss: nothing to fall back to, errors propagate
        if entry is None:
            logger.info(f"CACHE MISS: {key}")
            self._stats["misses"] += 1
            value, stored_at = await self._produce(key, produce)
            return value, self._make_meta(CacheSource.UPSTREAM, resource_name, ttl, stored_at)

        now = self._clock.now()

        # Cache hit - fresh
        if not force_refresh and entry.is_fresh(now, ttl):
            logger.debug(f"CACHE HIT (fresh): {key} [age={entry.age(now):.1f}s]")
            self._stats["hits_fresh"] += 1
            revalidating = False
            if refresh_in_background:
                self._trigger_background_refresh(key, produce)
                revalidating = True
            return entry.value, self._make_meta(
                CacheSource.FRESH, resource_name, ttl, entry.stored_at, revalidating
            )

        # Stale (or forced) - refetch, falling back to the old value
        if force_refresh:
            logger.info(f"FORCE REFRESH: {key}")
        else:
            logger.info(f"CACHE STALE: {key} [age={entry.age(now):.1f}s]")
        try:
            value, stored_at = await self._produce(key, produce)
        except Exception as e:
            self._stats["fallbacks"] += 1
            logger.warning(
                f"Using stale cache for {key} after refresh failed: "
                f"{type(e).__name__}: {e}"
            )
            return entry.value, self._make_meta(
                CacheSource.STALE, resource_name, ttl, entry.stored_at
            )

        self._stats["refreshes"] += 1
        return value, self._make_meta(CacheSource.UPSTREAM, resource_name, ttl, stored_at)

    def _resolve_options(
        self,
        ttl_seconds: Optional[float],
        background_refresh: Optional[bool],
        resource: Union[ResourceCategory, str, None],
    ) -> Tuple[float, bool]:
        """
        Call arguments win over the resource policy, which wins over defaults.

        The manager-wide background_refresh switch also gates resource policies.
        """
        if resource is not None:
            policy = get_policy(resource)
            default_ttl = policy.ttl_seconds
            default_refresh = policy.background_refresh and self.background_refresh
        else:
            default_ttl, default_refresh = self.default_ttl_seconds, self.background_refresh
        ttl = default_ttl if ttl_seconds is None else ttl_seconds
        refresh = default_refresh if background_refresh is None else background_refresh
        return ttl, refresh

    async def _produce(self, key: str, produce: Producer) -> Tuple[Any, float]:
        if self._coalescer is None:
            return await self._produce_and_store(key, produce)
        return await self._coalescer.get_or_fetch(
            key, lambda: self._produce_and_store(key, produce)
        )

    async def _produce_and_store(self, key: str, produce: Producer) -> Tuple[Any, float]:
        value = await produce()
        # Timestamp at resolution, so TTL tracks data recency not request latency
        stored_at = self._clock.now()
        self._commit(CacheEntry(key=key, value=value, stored_at=stored_at))
        return value, stored_at

    def _read(self, key: str) -> Optional[CacheEntry]:
        """Load an entry, treating storage failures and corrupt payloads as absent."""
        if not self.usable:
            return None
        try:
            raw = self._store.get(key)
        except StorageError as e:
            self._degrade(e)
            return None
        if raw is None:
            return None
        try:
            return CacheEntry.decode(key, raw)
        except SerializationError as e:
            logger.warning(f"Ignoring unreadable cache entry: {e}")
            return None

    def _commit(self, entry: CacheEntry) -> bool:
        """
        Store an entry unless a newer one is already stored.

        Returns:
            True if the entry was written
        """
        if not self.usable:
            return False
        current = self._read(entry.key)
        if current is not None and current.stored_at > entry.stored_at:
            self._stats["discarded_writes"] += 1
            logger.debug(
                f"Discarding older result for {entry.key} "
                f"[{entry.stored_at:.3f} < {current.stored_at:.3f}]"
            )
            return False
        try:
            self._store.set(entry.key, entry.encode())
        except SerializationError as e:
            logger.warning(f"Not caching {entry.key}: {e}")
            return False
        except StorageError as e:
            self._degrade(e)
            return False
        return True

    def _degrade(self, error: StorageError) -> None:
        if not self._degraded:
            self._degraded = True
            logger.warning(f"Cache storage unavailable, switching to pass-through: {error}")

    def _trigger_background_refresh(self, key: str, produce: Producer) -> asyncio.Task:
        """Start a refresh without blocking, unless one is already running for key."""
        existing = self._refreshing.get(key)
        if existing is not None and not existing.done():
            logger.debug(f"Already revalidating: {key}")
            return existing

        task = asyncio.ensure_future(self._revalidate(key, produce))
        self._refreshing[key] = task
        task.add_done_callback(lambda t, k=key: self._refresh_done(k, t))
        return task

    async def _revalidate(self, key: str, produce: Producer) -> bool:
        logger.debug(f"Background revalidation started: {key}")
        try:
            value = await produce()
        except Exception as e:
            self._stats["failed_revalidations"] += 1
            logger.warning(f"Background refresh failed for {key}: {type(e).__name__}: {e}")
            return False
        stored = self._commit(CacheEntry(key=key, value=value, stored_at=self._clock.now()))
        if stored:
            self._stats["revalidations"] += 1
            logger.debug(f"Background revalidation complete: {key}")
        return stored

    def _refresh_done(self, key: str, task: asyncio.Task) -> None:
        if self._refreshing.get(key) is task:
            del self._refreshing[key]

    def refresh_task(self, key: str) -> Optional[asyncio.Task]:
        """
        The in-flight background refresh for key, if any.

        The task resolves to True when it stored a new value.
        """
        task = self._refreshing.get(key)
        if task is None or task.done():
            return None
        return task

    async def drain(self) -> None:
        """Wait for every in-flight background refresh to finish."""
        while True:
            pending = [t for t in self._refreshing.values() if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        """Cancel in-flight background refreshes."""
        tasks = list(self._refreshing.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._refreshing.clear()

    def _make_meta(
        self,
        source: CacheSource,
        resource: Optional[str],
        ttl: float,
        stored_at: float,
        revalidating: bool = False,
    ) -> CacheMeta:
        """Create cache metadata for response."""
        return CacheMeta(
            last_updated=to_iso(stored_at),
            cache_source=source.value,
            resource=resource,
            ttl_seconds=ttl,
            age_seconds=max(0.0, self._clock.now() - stored_at),
            revalidating=revalidating,
        )

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry for key without producing or refreshing."""
        return self._read(key)

    def invalidate(self, key: str) -> bool:
        """
        Invalidate a specific cache entry.

        Returns:
            True if entry was found and removed
        """
        if not self.usable:
            return False
        try:
            removed = self._store.delete(key)
        except StorageError as e:
            self._degrade(e)
            return False
        if removed:
            logger.info(f"Invalidated cache: {key}")
        return removed

    def invalidate_prefix(self, prefix: str) -> int:
        """
        Invalidate all cache entries whose key starts with prefix.

        Returns:
            Number of entries invalidated
        """
        if not self.usable:
            return 0
        try:
            keys = self._store.keys(prefix)
            removed = sum(1 for key in keys if self._store.delete(key))
        except StorageError as e:
            self._degrade(e)
            return 0
        if removed:
            logger.info(f"Invalidated {removed} entries with prefix '{prefix}'")
        return removed

    def keys(self, prefix: str = "") -> List[str]:
        if not self.usable:
            return []
        try:
            return self._store.keys(prefix)
        except StorageError as e:
            self._degrade(e)
            return []

    def clear(self) -> int:
        """
        Clear all cache entries in this namespace.

        Returns:
            Number of entries cleared
        """
        if not self.usable:
            return 0
        try:
            count = self._store.clear()
        except StorageError as e:
            self._degrade(e)
            return 0
        logger.info(f"Cleared {count} cache entries")
        return count

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        hits = self._stats["hits_fresh"] + self._stats["fallbacks"]
        total_requests = hits + self._stats["misses"] + self._stats["refreshes"]
        hit_rate = (hits / total_requests * 100) if total_requests > 0 else 0

        return {
            "entries": len(self.keys()),
            **self._stats,
            "hit_rate_percent": round(hit_rate, 1),
            "enabled": self._enabled,
            "degraded": self._degraded,
            "revalidating_count": len(self._refreshing),
            "coalescer": self._coalescer.get_stats() if self._coalescer else None,
        }


def _resource_name(resource: Union[ResourceCategory, str, None]) -> Optional[str]:
    if isinstance(resource, ResourceCategory):
        return resource.value
    return resource


# Global cache manager instance
_cache_manager: Optional[CacheManager] = None


def get_cache_manager() -> CacheManager:
    """Get or create the global cache manager from settings."""
    global _cache_manager
    if _cache_manager is None:
        from config.settings import settings
        from .store import SQLiteStore

        _cache_manager = CacheManager(
            store=SQLiteStore(settings.cache_db_path),
            namespace=settings.cache_namespace,
            default_ttl_seconds=settings.cache_ttl_seconds,
            background_refresh=settings.cache_background_refresh,
            coalesce=settings.cache_coalesce,
            enabled=settings.cache_enabled,
        )
    return _cache_manager
