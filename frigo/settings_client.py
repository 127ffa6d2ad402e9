"""
Room-settings backend client.

Every read goes through the stale-while-revalidate cache, so a backend outage
serves the last rooms we saw instead of failing.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import requests
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from frigo.cache import CacheManager, CacheMeta, ResourceCategory, cache_key, get_cache_manager
from config.settings import settings

logger = logging.getLogger("settings_client")


class BackendError(Exception):
    """The room-settings backend returned an error or an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BackendUnavailableError(BackendError):
    """Connection failure, timeout or 5xx: worth retrying."""


class RoomNotFoundError(BackendError):
    """The requested room does not exist for this tenant."""


class RoomSettingsClient:
    """
    Reads room settings for one tenant through the cache.

    Usage:
        client = RoomSettingsClient()
        rooms, meta = await client.get_rooms()
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        tenant_id: Optional[str] = None,
        cache: Optional[CacheManager] = None,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_wait=None,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url: Backend root (defaults to settings.backend_base_url)
            tenant_id: Tenant to read (defaults to settings.tenant_id)
            cache: Cache manager (defaults to the global one)
            timeout: Per-request timeout in seconds
            retry_attempts: Total attempts for retryable failures
            retry_wait: tenacity wait strategy (exponential, capped at 30s by default)
            session: requests session to reuse connections
        """
        self.base_url = (base_url or settings.backend_base_url).rstrip("/")
        self.tenant_id = tenant_id or settings.tenant_id
        self._cache = cache
        self.timeout = timeout if timeout is not None else settings.backend_timeout_seconds
        self.retry_attempts = retry_attempts or settings.backend_retry_attempts
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=30)
        self._session = session or requests.Session()

    @property
    def cache(self) -> CacheManager:
        if self._cache is None:
            self._cache = get_cache_manager()
        return self._cache

    # =========================================================================
    # HTTP
    # =========================================================================

    def _request_once(self, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning(f"Backend unreachable: GET {path} - {e}")
            raise BackendUnavailableError(f"GET {path} failed: {e}") from e

        if response.status_code == 404:
            raise RoomNotFoundError(f"GET {path}: not found", status_code=404)
        if response.status_code >= 500:
            logger.warning(f"Backend error {response.status_code}: GET {path}")
            raise BackendUnavailableError(
                f"GET {path} returned {response.status_code}", status_code=response.status_code
            )
        if response.status_code >= 400:
            raise BackendError(
                f"GET {path} returned {response.status_code}", status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError as e:
            raise BackendError(f"GET {path}: invalid JSON body") from e
        if not isinstance(body, dict) or not body.get("success", False):
            message = (body.get("message") or body.get("error")) if isinstance(body, dict) else None
            raise BackendError(f"GET {path}: {message or 'unsuccessful response'}")
        return body.get("data")

    def _fetch_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a backend path and unwrap its data envelope.

        Retries connection failures and 5xx responses with exponential backoff.
        """
        query = {"tenantId": self.tenant_id, **(params or {})}
        retrying = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(BackendUnavailableError),
            reraise=True,
        )
        return retrying(self._request_once, path, query)

    async def _fetch(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await asyncio.to_thread(self._fetch_json, path, params)

    # =========================================================================
    # Cached reads
    # =========================================================================

    async def _cached(
        self,
        resource: ResourceCategory,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        force_refresh: bool = False,
    ) -> Tuple[Any, CacheMeta]:
        key = cache_key(self.tenant_id, resource, {"path": path, **(params or {})})
        return await self.cache.get(
            key,
            lambda: self._fetch(path, params),
            resource=resource,
            force_refresh=force_refresh,
        )

    async def get_settings(self, force_refresh: bool = False) -> Tuple[Any, CacheMeta]:
        """Rooms overview with sensor installation status."""
        return await self._cached(ResourceCategory.APP_SETTINGS, "/settings", force_refresh=force_refresh)

    async def get_rooms(self, force_refresh: bool = False) -> Tuple[Any, CacheMeta]:
        return await self._cached(ResourceCategory.ROOMS, "/settings/rooms", force_refresh=force_refresh)

    async def get_room(self, room_id: str, force_refresh: bool = False) -> Tuple[Any, CacheMeta]:
        return await self._cached(
            ResourceCategory.ROOMS, f"/settings/rooms/{room_id}", force_refresh=force_refresh
        )

    async def get_rooms_with_sensors(self, force_refresh: bool = False) -> Tuple[Any, CacheMeta]:
        return await self._cached(
            ResourceCategory.SENSORS, "/settings/rooms/with-sensors", force_refresh=force_refresh
        )
