"""
Request coalescing to prevent duplicate upstream API calls.

When multiple concurrent requests ask for the same data, only one
upstream call is made and all requesters share the result.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger("cache.coalescer")


class RequestCoalescer:
    """
    Ensures concurrent requests for the same flight key share one upstream call.

    Pattern:
    - First request for a key creates the fetch task and registers it
    - Subsequent requests for the same key await that same task
    - When the task settles, every waiter sees the same result or error
    - The entry is removed on settle only if it is still the registered task

    Usage:
        coalescer = RequestCoalescer()
        result = await coalescer.run(
            "top:us:general:1",
            lambda: dispatch_providers(...),
        )
    """

    def __init__(self):
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._stats = {"started": 0, "coalesced": 0}

    def get_in_flight(self, flight_key: str) -> Optional[asyncio.Future]:
        return self._in_flight.get(flight_key)

    def set_in_flight(self, flight_key: str, awaitable: Awaitable[Any]) -> asyncio.Future:
        """Register an awaitable as the single in-flight fetch for a key."""
        future = asyncio.ensure_future(awaitable)
        self._in_flight[flight_key] = future
        future.add_done_callback(lambda f: self._release(flight_key, f))
        return future

    def _release(self, flight_key: str, future: asyncio.Future) -> None:
        # A newer flight may have been registered under the same key
        if self._in_flight.get(flight_key) is future:
            del self._in_flight[flight_key]
        if not future.cancelled() and future.exception() is not None:
            logger.warning(f"Fetch failed for {flight_key}: {future.exception()}")

    async def run(self, flight_key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Either join an existing in-flight request or initiate a new one.

        Args:
            flight_key: Unique key for this request
            factory: Zero-argument callable returning the fetch awaitable

        Returns:
            The fetched data (shared among all concurrent callers)

        Raises:
            Exception: Any error from the fetch is propagated to every caller
        """
        future = self._in_flight.get(flight_key)
        if future is None:
            self._stats["started"] += 1
            logger.debug(f"Initiating fetch for {flight_key}")
            future = self.set_in_flight(flight_key, factory())
        else:
            self._stats["coalesced"] += 1
            logger.debug(f"Coalescing request for {flight_key}")

        # A cancelled caller must not cancel the shared fetch
        return await asyncio.shield(future)

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
            **self._stats,
        }

    def reset(self) -> None:
        self._in_flight.clear()
        self._stats = {"started": 0, "coalesced": 0}
