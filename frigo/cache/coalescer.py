"""
Request coalescing to prevent duplicate produce calls.

When several coroutines ask for the same key while a produce call is in
flight, only one call is made and all of them share its outcome.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger("cache.coalescer")


class RequestCoalescer:
    """
    Ensures concurrent requests for the same cache key share one produce call.

    Pattern:
    - First request for a key starts a task running the fetch
    - Later requests for the same key await that task
    - Every caller sees the same result or the same exception
    - The key is released as soon as the task finishes

    Waiters are shielded, so cancelling one caller does not cancel the
    shared fetch for the others.

    Usage:
        coalescer = RequestCoalescer()
        rooms = await coalescer.get_or_fetch(
            "YAZAMI:rooms",
            lambda: client.fetch_rooms(),
        )
    """

    def __init__(self):
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._coalesced = 0

    async def get_or_fetch(
        self,
        cache_key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Either join an existing in-flight request or initiate a new one.

        Raises:
            Exception: Any error from fetch_fn is propagated to every caller
        """
        task = self._in_flight.get(cache_key)
        if task is not None:
            self._coalesced += 1
            logger.debug(f"Coalescing request for {cache_key}")
        else:
            logger.debug(f"Initiating fetch for {cache_key}")
            task = asyncio.ensure_future(fetch_fn())
            self._in_flight[cache_key] = task
            task.add_done_callback(lambda t, k=cache_key: self._release(k, t))

        return await asyncio.shield(task)

    def _release(self, cache_key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(cache_key) is task:
            del self._in_flight[cache_key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Fetch failed for {cache_key}: {task.exception()!r}")

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
            "coalesced": self._coalesced,
        }
