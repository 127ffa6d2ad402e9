"""
TTL configuration and tenant-scoped cache keys per frigo resource.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .core import ResourceCategory


@dataclass(frozen=True)
class CachePolicy:
    """Freshness settings applied to one resource."""
    ttl_seconds: float = 300.0
    background_refresh: bool = True


# TTL configuration by resource (in seconds)
TTL_CONFIG: Dict[ResourceCategory, CachePolicy] = {
    ResourceCategory.APP_SETTINGS: CachePolicy(ttl_seconds=120),     # 2 minutes
    ResourceCategory.CLIENTS: CachePolicy(ttl_seconds=300),          # 5 minutes
    ResourceCategory.ROOMS: CachePolicy(ttl_seconds=300),            # 5 minutes
    ResourceCategory.CRATE_TYPES: CachePolicy(ttl_seconds=300),      # 5 minutes
    ResourceCategory.LOANS: CachePolicy(ttl_seconds=30),             # 30 seconds
    ResourceCategory.CASH_MOVEMENTS: CachePolicy(ttl_seconds=60),    # 1 minute
    ResourceCategory.LOGS: CachePolicy(ttl_seconds=30),              # 30 seconds
    # Live telemetry: re-read on expiry instead of refreshing on every hit
    ResourceCategory.SENSORS: CachePolicy(ttl_seconds=15, background_refresh=False),
    ResourceCategory.DEFAULT: CachePolicy(ttl_seconds=300),          # 5 minutes
}


def get_policy(category: Union[ResourceCategory, str, None]) -> CachePolicy:
    """
    Get the cache policy for a resource.

    Unknown resources fall back to the default policy.
    """
    if isinstance(category, str):
        try:
            category = ResourceCategory(category)
        except ValueError:
            category = ResourceCategory.DEFAULT
    return TTL_CONFIG.get(category or ResourceCategory.DEFAULT, TTL_CONFIG[ResourceCategory.DEFAULT])


def cache_key(
    tenant_id: str,
    resource: Union[ResourceCategory, str],
    params: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Build a tenant-scoped cache key.

    Params are sorted and None values dropped, so equivalent lookups share
    an entry: cache_key("YAZAMI", "rooms", {"id": "r1"}) -> "YAZAMI:rooms:id=r1"
    """
    if not tenant_id:
        raise ValueError("tenant_id is required for cache keys")
    name = resource.value if isinstance(resource, ResourceCategory) else resource
    key = f"{tenant_id}:{name}"
    if params:
        parts = [f"{k}={v}" for k, v in sorted(params.items()) if v is not None]
        if parts:
            key += ":" + "&".join(parts)
    return key
