"""
Core cache data structures.
"""
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .errors import SerializationError


class ResourceCategory(Enum):
    """Frigo resources with different freshness needs."""
    APP_SETTINGS = "app_settings"       # 2 minutes
    CLIENTS = "clients"                 # 5 minutes
    ROOMS = "rooms"                     # 5 minutes
    CRATE_TYPES = "crate_types"         # 5 minutes
    LOANS = "loans"                     # 30 seconds
    CASH_MOVEMENTS = "cash_movements"   # 1 minute
    LOGS = "logs"                       # 30 seconds
    SENSORS = "sensors"                 # 15 seconds, no background refresh
    DEFAULT = "default"                 # 5 minutes


class CacheSource(Enum):
    """Source of returned data."""
    FRESH = "fresh"       # Within TTL
    STALE = "stale"       # Past TTL, served because the refresh failed
    UPSTREAM = "upstream" # Produced during this call


@dataclass
class CacheEntry:
    """
    A cached value and the clock reading taken when it was produced.
    """
    key: str
    value: Any
    stored_at: float

    def age(self, now: float) -> float:
        """Seconds since the value was produced."""
        return max(0.0, now - self.stored_at)

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        """Fresh while the age is within the TTL (inclusive)."""
        return now - self.stored_at <= ttl_seconds

    def encode(self) -> bytes:
        """Serialize to the stored JSON payload."""
        try:
            payload = json.dumps({"data": self.value, "timestamp": self.stored_at})
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Cannot serialize value for {self.key}: {e}") from e
        return payload.encode("utf-8")

    @classmethod
    def decode(cls, key: str, raw: bytes) -> "CacheEntry":
        """Parse a stored payload back into an entry."""
        try:
            payload = json.loads(raw.decode("utf-8"))
            return cls(key=key, value=payload["data"], stored_at=float(payload["timestamp"]))
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise SerializationError(f"Corrupt cache payload for {key}: {e}") from e


@dataclass
class CacheMeta:
    """
    Metadata about a cache access, included in API responses.
    """
    last_updated: str  # ISO timestamp of when the value was produced
    cache_source: str  # "fresh", "stale", or "upstream"
    resource: Optional[str] = None
    ttl_seconds: Optional[float] = None
    age_seconds: Optional[float] = None
    revalidating: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        result = {
            "lastUpdated": self.last_updated,
            "cacheSource": self.cache_source,
            "revalidating": self.revalidating,
        }
        # Include debug info if available
        if self.resource:
            result["_debug"] = {
                "resource": self.resource,
                "ttl": self.ttl_seconds,
                "age": round(self.age_seconds, 1) if self.age_seconds is not None else None,
            }
        return result


def to_iso(timestamp: float) -> str:
    """Render a clock reading as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")
