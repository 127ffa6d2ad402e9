"""
Frigo Cache - FastAPI service
Room settings served through the stale-while-revalidate cache
"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Query

from frigo.cache import CacheManager, get_cache_manager
from frigo.settings_client import BackendError, RoomNotFoundError, RoomSettingsClient
from config.settings import settings

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("frigo.main")

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Frigo Cache"


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await get_cache_manager().close()


app = FastAPI(
    title=APP_NAME,
    description="Cold-storage room settings with stale-while-revalidate caching",
    version=APP_VERSION,
    lifespan=lifespan,
)

_room_client = None


def get_room_client() -> RoomSettingsClient:
    """Shared room-settings client bound to the global cache."""
    global _room_client
    if _room_client is None:
        _room_client = RoomSettingsClient(cache=get_cache_manager())
    return _room_client


def _with_meta(data, meta) -> dict:
    return {"data": data, "_meta": meta.to_dict()}


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "tenant": settings.tenant_id}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


# ===== CACHE =====

@app.get("/cache/stats")
def cache_stats(cache: CacheManager = Depends(get_cache_manager)):
    """Get cache statistics."""
    return cache.get_stats()


@app.delete("/cache/{key:path}")
def invalidate_cache_entry(key: str, cache: CacheManager = Depends(get_cache_manager)):
    """Drop one cache entry."""
    if not cache.invalidate(key):
        raise HTTPException(status_code=404, detail=f"No cache entry for {key}")
    return {"invalidated": key}


@app.delete("/cache")
def clear_cache(cache: CacheManager = Depends(get_cache_manager)):
    """Drop every entry in the cache namespace."""
    return {"cleared": cache.clear()}


# ===== ROOM SETTINGS =====

@app.get("/settings")
async def get_settings_overview(
    forceRefresh: bool = Query(default=False, description="Bypass fresh cache and refetch"),
    client: RoomSettingsClient = Depends(get_room_client),
):
    """Rooms overview with sensor installation status."""
    try:
        data, meta = await client.get_settings(force_refresh=forceRefresh)
    except BackendError as e:
        logger.error(f"Settings unavailable: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return _with_meta(data, meta)


@app.get("/rooms")
async def list_rooms(
    forceRefresh: bool = Query(default=False, description="Bypass fresh cache and refetch"),
    client: RoomSettingsClient = Depends(get_room_client),
):
    """All rooms for the tenant, with cache metadata."""
    try:
        rooms, meta = await client.get_rooms(force_refresh=forceRefresh)
    except BackendError as e:
        logger.error(f"Rooms unavailable: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    result = _with_meta(rooms, meta)
    result["count"] = len(rooms or [])
    return result


@app.get("/rooms/with-sensors")
async def list_rooms_with_sensors(
    client: RoomSettingsClient = Depends(get_room_client),
):
    """Rooms that have a sensor installed."""
    try:
        rooms, meta = await client.get_rooms_with_sensors()
    except BackendError as e:
        logger.error(f"Rooms with sensors unavailable: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    result = _with_meta(rooms, meta)
    result["count"] = len(rooms or [])
    return result


@app.get("/rooms/{room_id}")
async def get_room(
    room_id: str,
    forceRefresh: bool = Query(default=False, description="Bypass fresh cache and refetch"),
    client: RoomSettingsClient = Depends(get_room_client),
):
    """A single room."""
    try:
        room, meta = await client.get_room(room_id, force_refresh=forceRefresh)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail=f"Room {room_id} not found")
    except BackendError as e:
        logger.error(f"Room {room_id} unavailable: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return _with_meta(room, meta)
