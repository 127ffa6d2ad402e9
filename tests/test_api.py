"""
Tests: room endpoints and cache management through the HTTP service
"""
from unittest.mock import Mock

import pytest
import requests
from fastapi.testclient import TestClient
from tenacity import wait_none

from frigo.cache import CacheManager, ManualClock, MemoryStore, get_cache_manager
from frigo.main import app, get_room_client
from frigo.settings_client import RoomSettingsClient

ROOMS = [{"id": "r1", "name": "Chambre 1"}, {"id": "r2", "name": "Chambre 2"}]


def ok(data):
    response = Mock()
    response.status_code = 200
    response.json.return_value = {"success": True, "data": data}
    return response


@pytest.fixture
def clock():
    return ManualClock(start=1_700_000_000.0)


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def cache(clock):
    return CacheManager(store=MemoryStore(), clock=clock, background_refresh=False)


@pytest.fixture
def client(cache, session):
    rooms_client = RoomSettingsClient(
        base_url="http://backend",
        tenant_id="T1",
        cache=cache,
        retry_attempts=1,
        retry_wait=wait_none(),
        session=session,
    )
    app.dependency_overrides[get_cache_manager] = lambda: cache
    app.dependency_overrides[get_room_client] = lambda: rooms_client
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_rooms_returns_data_and_meta(client, session):
    session.get.return_value = ok(ROOMS)
    response = client.get("/rooms")
    assert response.status_code == 200
    data = response.json()
    assert data["data"] == ROOMS
    assert data["count"] == 2
    assert data["_meta"]["cacheSource"] == "upstream"


def test_rooms_second_request_is_fresh_hit(client, session):
    session.get.return_value = ok(ROOMS)
    client.get("/rooms")
    data = client.get("/rooms").json()
    assert data["_meta"]["cacheSource"] == "fresh"
    assert session.get.call_count == 1


def test_force_refresh_query_param(client, session):
    session.get.return_value = ok(ROOMS)
    client.get("/rooms")
    data = client.get("/rooms?forceRefresh=true").json()
    assert data["_meta"]["cacheSource"] == "upstream"
    assert session.get.call_count == 2


def test_outage_without_cache_returns_502(client, session):
    session.get.side_effect = requests.ConnectionError("refused")
    response = client.get("/rooms")
    assert response.status_code == 502


def test_outage_with_cache_returns_stale_rooms(client, session, clock):
    session.get.return_value = ok(ROOMS)
    client.get("/rooms")

    clock.advance(301)
    session.get.side_effect = requests.ConnectionError("refused")
    response = client.get("/rooms")

    assert response.status_code == 200
    assert response.json()["data"] == ROOMS
    assert response.json()["_meta"]["cacheSource"] == "stale"


def test_unknown_room_returns_404(client, session):
    missing = Mock()
    missing.status_code = 404
    session.get.return_value = missing
    response = client.get("/rooms/nope")
    assert response.status_code == 404


def test_rooms_with_sensors(client, session):
    session.get.return_value = ok(ROOMS[:1])
    data = client.get("/rooms/with-sensors").json()
    assert data["count"] == 1
    assert data["_meta"]["_debug"]["resource"] == "sensors"


def test_settings_overview(client, session):
    session.get.return_value = ok({"totalRooms": 2, "rooms": ROOMS})
    data = client.get("/settings").json()
    assert data["data"]["totalRooms"] == 2


def test_cache_stats(client, session):
    session.get.return_value = ok(ROOMS)
    client.get("/rooms")
    stats = client.get("/cache/stats").json()
    assert stats["entries"] == 1
    assert stats["misses"] == 1
    assert stats["degraded"] is False


def test_invalidate_cache_entry(client, session, cache):
    session.get.return_value = ok(ROOMS)
    client.get("/rooms")
    key = cache.keys()[0]

    response = client.delete(f"/cache/{key}")
    assert response.status_code == 200
    assert response.json() == {"invalidated": key}
    assert client.delete(f"/cache/{key}").status_code == 404


def test_clear_cache(client, session):
    session.get.return_value = ok(ROOMS)
    client.get("/rooms")
    client.get("/rooms/r1")
    assert client.delete("/cache").json() == {"cleared": 2}
