"""
Main cache orchestration: read-through with L2 fallback, coalescing,
stale-on-failure, negative caching and background freshness upkeep.
"""
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple

from .adaptive import AdaptiveTracker
from .coalescer import RequestCoalescer
from .core import CacheMeta, CacheSource, is_negative
from .revalidator import BackgroundRevalidator
from .store import CacheStore
from .ttl_policies import NEGATIVE_TTL_SECONDS

logger = logging.getLogger("cache.manager")

FetchFn = Callable[[], Awaitable[Any]]


def _status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class CacheManager:
    """
    Route-facing cache facade:
    - fresh in-process hit, then L2 hit
    - miss: one coalesced upstream fetch per flight key
    - upstream failure: serve stale if possible, else cache a negative marker
    - every served key feeds the adaptive tracker and the revalidator
    """

    def __init__(
        self,
        store: CacheStore,
        coalescer: RequestCoalescer,
        adaptive: Optional[AdaptiveTracker] = None,
        revalidator: Optional[BackgroundRevalidator] = None,
    ):
        self.store = store
        self.coalescer = coalescer
        self.adaptive = adaptive
        self.revalidator = revalidator

    async def get(
        self,
        cache_key: str,
        fetch_fn: FetchFn,
        flight_key: Optional[str] = None,
        no_cache: bool = False,
        ttl_seconds: Optional[int] = None,
        stale_extra_seconds: Optional[int] = None,
        background_fetch_fn: Optional[FetchFn] = None,
    ) -> Tuple[Any, CacheMeta]:
        """
        Get data from cache or fetch from upstream.

        Args:
            cache_key: Canonical cache key
            fetch_fn: Coroutine factory producing the payload
            flight_key: Coalescing key (defaults to cache_key)
            no_cache: Skip cache reads (the result is still stored)
            ttl_seconds: Fresh TTL override
            stale_extra_seconds: Stale window override
            background_fetch_fn: Fetcher used for background refreshes

        Returns:
            (payload, cache_meta) tuple

        Raises:
            Exception: the upstream error when nothing stale can be served
        """
        refresh_fn = background_fetch_fn or fetch_fn

        if not no_cache:
            data = self.store.get_fresh(cache_key)
            tier = "L1"
            if data is None:
                data = await self.store.l2_lookup(cache_key)
                tier = "L2"
            if data is not None:
                self._after_serve(cache_key, refresh_fn)
                if is_negative(data):
                    logger.debug(f"CACHE HIT (negative): {cache_key}")
                    return data, CacheMeta(CacheSource.NEGATIVE, cache_key, tier=tier)
                logger.debug(f"CACHE HIT ({tier}): {cache_key}")
                source = CacheSource.FRESH if tier == "L1" else CacheSource.L2
                return data, CacheMeta(source, cache_key, tier=tier)

        logger.info(f"CACHE MISS: {cache_key}")
        try:
            data = await self.coalescer.run(flight_key or cache_key, fetch_fn)
        except Exception as e:
            stale = self.store.get_stale(cache_key)
            if stale is not None and not is_negative(stale):
                logger.warning(f"Serving stale for {cache_key} after upstream error: {e}")
                return stale, CacheMeta(CacheSource.STALE, cache_key, tier="L1", error=str(e))
            if _status_of(e) != 429:
                self.store.set_negative_cache(
                    cache_key,
                    {"error": "upstream-failure"},
                    NEGATIVE_TTL_SECONDS,
                )
            raise

        self.store.set_cache(cache_key, data, ttl_seconds, stale_extra_seconds)
        self._after_serve(cache_key, refresh_fn)
        return data, CacheMeta(CacheSource.UPSTREAM, cache_key, age_seconds=0.0)

    def _after_serve(self, cache_key: str, refresh_fn: FetchFn) -> None:
        if self.adaptive is not None:
            self.adaptive.record_hit(cache_key)
        if self.revalidator is not None:
            self.revalidator.maybe_schedule_revalidate(cache_key, refresh_fn)

    def invalidate(self, cache_key: str) -> bool:
        """Invalidate a specific cache entry."""
        return self.store.purge_key(cache_key)

    def invalidate_prefix(self, prefix: str) -> int:
        """Invalidate all cache entries whose key starts with prefix."""
        return self.store.purge_prefix(prefix)
