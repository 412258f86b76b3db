"""
Opportunistic background revalidation.

Called after a response has been served. When the entry is close to the end
of its fresh window the revalidator refreshes it in a detached task, so the
next caller still gets a fresh hit. The call itself never waits for the
refresh.

Decision order (first match wins):
    disabled -> no cache info -> adaptive suppression -> plenty of fresh time
    -> refreshed recently -> concurrency cap -> already in flight
    -> negative entry -> schedule
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .adaptive import AdaptiveTracker
from .core import Clock
from .prefetcher import Fetcher, Prefetcher, is_well_formed
from .store import CacheStore
from .tasks import TaskRegistry

logger = logging.getLogger("cache.revalidator")

SCHEDULED = "scheduled"
DISABLED = "disabled"

_COUNTERS = (
    "scheduled",
    "skipped_fresh",
    "skipped_recent",
    "skipped_inflight",
    "skipped_max_concurrent",
    "skipped_missing",
    "skipped_negative",
    "success",
    "fail",
    "adaptive_hot",
    "adaptive_cold",
    "adaptive_baseline",
    "adaptive_suppressed",
)


@dataclass
class RevalidateConfig:
    enabled: bool = True
    fresh_threshold_ms: int = 15_000
    max_inflight: int = 3
    min_interval_ms: int = 10_000

    @classmethod
    def from_settings(cls, settings) -> "RevalidateConfig":
        return cls(
            enabled=settings.enable_bg_revalidate,
            fresh_threshold_ms=settings.bg_revalidate_fresh_threshold_ms,
            max_inflight=settings.bg_max_inflight,
            min_interval_ms=settings.bg_min_interval_ms,
        )


class BackgroundRevalidator:
    """
    Schedules near-expiry refreshes with per-key dedup and a global cap.

    The adaptive tracker and the prefetcher's fetcher registry are injected,
    both optional.
    """

    def __init__(
        self,
        store: CacheStore,
        adaptive: Optional[AdaptiveTracker] = None,
        prefetcher: Optional[Prefetcher] = None,
        config: RevalidateConfig = None,
        clock: Clock = time.time,
    ):
        self.config = config or RevalidateConfig()
        self._store = store
        self._adaptive = adaptive
        self._prefetcher = prefetcher
        self._clock = clock
        self._tasks = TaskRegistry("revalidate")
        self._last_success: Dict[str, float] = {}
        self._current_active = 0
        self._stats = {name: 0 for name in _COUNTERS}

    def maybe_schedule_revalidate(self, key: str, fetcher: Fetcher) -> str:
        """
        Decide whether to refresh `key` now and, if so, start it detached.

        Returns:
            "scheduled", "disabled" or the name of the skip counter that fired
        """
        cfg = self.config
        if not cfg.enabled:
            return DISABLED

        if self._prefetcher is not None:
            self._prefetcher.register_fetcher(key, fetcher)

        info = self._store.cache_info(key)
        if info is None:
            return self._skip("skipped_missing")

        threshold_ms = cfg.fresh_threshold_ms
        if self._adaptive is not None:
            decision = self._adaptive.compute_adaptive_threshold(threshold_ms, key)
            if decision.reason == "suppressed-low":
                self._stats["adaptive_suppressed"] += 1
                return "adaptive_suppressed"
            if decision.reason in ("hot", "cold", "baseline"):
                self._stats[f"adaptive_{decision.reason}"] += 1
            threshold_ms = decision.adjusted_threshold_ms

        if info["fresh_for_ms"] > threshold_ms:
            return self._skip("skipped_fresh")

        last = self._last_success.get(key)
        if last is not None and (self._clock() - last) * 1000 < cfg.min_interval_ms:
            return self._skip("skipped_recent")

        if self._current_active >= cfg.max_inflight:
            return self._skip("skipped_max_concurrent")

        if key in self._tasks:
            return self._skip("skipped_inflight")

        entry = self._store.get_any(key)
        if entry is None:
            return self._skip("skipped_missing")
        if entry.negative:
            return self._skip("skipped_negative")

        task = self._tasks.spawn(self._revalidate(key, fetcher), key=key)
        if task is None:
            # No running loop to host the refresh
            return DISABLED
        self._current_active += 1
        self._stats["scheduled"] += 1
        return SCHEDULED

    def _skip(self, counter: str) -> str:
        self._stats[counter] += 1
        return counter

    async def _revalidate(self, key: str, fetcher: Fetcher) -> None:
        try:
            result = await fetcher()
            if is_well_formed(result):
                # Reuses the store's default TTLs
                self._store.set_cache(key, result)
                self._last_success[key] = self._clock()
                self._stats["success"] += 1
                logger.info(json.dumps({
                    "msg": "bg-revalidate-success",
                    "key": key,
                    "count": len(result["items"]),
                }))
            else:
                logger.debug(f"Background revalidation returned no items for {key}")
        except Exception as e:
            self._stats["fail"] += 1
            logger.warning(json.dumps({
                "msg": "bg-revalidate-fail",
                "key": key,
                "error": str(e),
            }))
        finally:
            self._current_active = max(0, self._current_active - 1)

    async def revalidate_now(self, key: str, fetcher: Fetcher) -> str:
        """Schedule like maybe_schedule_revalidate, then wait for the refresh."""
        outcome = self.maybe_schedule_revalidate(key, fetcher)
        task = self._tasks.get(key)
        if outcome == SCHEDULED and task is not None:
            await task
        return outcome

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "inflight": len(self._tasks),
            "current_active": self._current_active,
        }

    async def wait_idle(self) -> None:
        await self._tasks.wait_idle()

    def reset(self) -> None:
        self._tasks.clear()
        self._last_success.clear()
        self._current_active = 0
        self._stats = {name: 0 for name in _COUNTERS}
