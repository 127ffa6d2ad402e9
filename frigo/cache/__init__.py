"""
Stale-while-revalidate caching with durable stores, per-resource TTLs and
request coalescing.
"""
from .core import CacheEntry, CacheMeta, CacheSource, ResourceCategory
from .errors import CacheError, ProduceError, SerializationError, StorageError
from .clock import ManualClock, SystemClock
from .store import DEFAULT_NAMESPACE, MemoryStore, NamespacedStore, SQLiteStore
from .ttl_policies import TTL_CONFIG, CachePolicy, cache_key, get_policy
from .coalescer import RequestCoalescer
from .manager import CacheManager, get_cache_manager

__all__ = [
    # Core types
    "CacheEntry",
    "CacheMeta",
    "CacheSource",
    "ResourceCategory",
    # Errors
    "CacheError",
    "ProduceError",
    "SerializationError",
    "StorageError",
    # Clocks
    "ManualClock",
    "SystemClock",
    # Stores
    "DEFAULT_NAMESPACE",
    "MemoryStore",
    "NamespacedStore",
    "SQLiteStore",
    # TTL policies
    "TTL_CONFIG",
    "CachePolicy",
    "cache_key",
    "get_policy",
    # Coalescing
    "RequestCoalescer",
    # Manager
    "CacheManager",
    "get_cache_manager",
]
