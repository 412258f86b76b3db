"""
Proactive refresh of the hottest cache keys.

The revalidator registers the most recent fetcher for every key it sees.
A prefetch tick picks a small batch of hot keys that are about to go stale
and refreshes them off the request path. A burst of failures suspends
prefetching for a while.
"""
import json
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List

from .adaptive import AdaptiveTracker
from .core import Clock
from .store import CacheStore
from .tasks import TaskRegistry

logger = logging.getLogger("cache.prefetcher")

Fetcher = Callable[[], Awaitable[Dict[str, Any]]]

ERROR_WINDOW_SECONDS = 120
HOT_SAMPLE_SIZE = 10

_COUNTERS = (
    "prefetch_scheduled",
    "prefetch_success",
    "prefetch_fail",
    "prefetch_skipped_disabled",
    "prefetch_skipped_suspended",
    "prefetch_skipped_cooldown",
    "prefetch_skipped_no_hot",
    "prefetch_skipped_throttled",
)


@dataclass
class PrefetchConfig:
    enabled: bool = True
    fresh_threshold_ms: int = 4000
    max_batch: int = 3
    min_interval_ms: int = 20_000
    global_cooldown_ms: int = 30_000
    error_burst: int = 3
    suspend_ms: int = 120_000

    @classmethod
    def from_settings(cls, settings) -> "PrefetchConfig":
        return cls(
            enabled=settings.prefetch_enabled,
            fresh_threshold_ms=settings.prefetch_fresh_threshold_ms,
            max_batch=settings.prefetch_max_batch,
            min_interval_ms=settings.prefetch_min_interval_ms,
            global_cooldown_ms=settings.prefetch_global_cooldown_ms,
            error_burst=settings.prefetch_error_burst,
            suspend_ms=settings.prefetch_suspend_ms,
        )


def is_well_formed(result: Any) -> bool:
    """A refresh result must look like {"items": [...], ...}."""
    return isinstance(result, dict) and isinstance(result.get("items"), list)


class Prefetcher:
    """Fetcher registry plus the periodic hot-key refresh."""

    def __init__(
        self,
        store: CacheStore,
        adaptive: AdaptiveTracker,
        config: PrefetchConfig = None,
        clock: Clock = time.time,
    ):
        self.config = config or PrefetchConfig()
        self._store = store
        self._adaptive = adaptive
        self._clock = clock
        self._registry: Dict[str, Fetcher] = {}
        self._last_success: Dict[str, float] = {}
        self._recent_errors: Deque[float] = deque()
        self._suspended_until = 0.0
        self._last_tick = 0.0
        self._tasks = TaskRegistry("prefetch")
        self._stats = {name: 0 for name in _COUNTERS}

    def register_fetcher(self, key: str, fetcher: Fetcher) -> None:
        if not self.config.enabled:
            return
        self._registry[key] = fetcher

    def schedule_tick(self) -> None:
        """Run a tick in the background (safe to call from sync code)."""
        self._tasks.spawn(self.prefetch_tick(), key="tick")

    async def prefetch_tick(self) -> List[str]:
        """
        Select and launch up to `max_batch` prefetches.

        Returns:
            The keys that were scheduled
        """
        cfg = self.config
        if not cfg.enabled:
            self._stats["prefetch_skipped_disabled"] += 1
            return []
        now = self._clock()
        if now < self._suspended_until:
            self._stats["prefetch_skipped_suspended"] += 1
            return []
        if (now - self._last_tick) * 1000 < cfg.global_cooldown_ms:
            self._stats["prefetch_skipped_cooldown"] += 1
            return []
        self._last_tick = now

        hot = self._adaptive.adaptive_stats(HOT_SAMPLE_SIZE).get("hot_sample", [])
        if not hot:
            self._stats["prefetch_skipped_no_hot"] += 1
            return []

        selected: List[str] = []
        for row in hot:
            if len(selected) >= cfg.max_batch:
                break
            key = row["key"]
            if key not in self._registry or key in self._tasks:
                continue
            info = self._store.cache_info(key)
            if info is None or info["fresh_for_ms"] > cfg.fresh_threshold_ms:
                continue
            last = self._last_success.get(key, 0.0)
            if (now - last) * 1000 < cfg.min_interval_ms:
                self._stats["prefetch_skipped_throttled"] += 1
                continue
            selected.append(key)

        for key in selected:
            self._stats["prefetch_scheduled"] += 1
            self._tasks.spawn(self._prefetch(key, self._registry[key]), key=key)
        return selected

    async def _prefetch(self, key: str, fetcher: Fetcher) -> None:
        try:
            result = await fetcher()
        except Exception as e:
            self._record_failure(key, e)
            return
        if is_well_formed(result):
            self._store.set_cache(key, result)
            self._last_success[key] = self._clock()
            self._stats["prefetch_success"] += 1
            logger.info(json.dumps({
                "msg": "prefetch-success",
                "key": key,
                "count": len(result["items"]),
            }))

    def _record_failure(self, key: str, error: Exception) -> None:
        self._stats["prefetch_fail"] += 1
        now = self._clock()
        self._recent_errors.append(now)
        logger.warning(json.dumps({"msg": "prefetch-fail", "key": key, "error": str(error)}))

        cutoff = now - ERROR_WINDOW_SECONDS
        while self._recent_errors and self._recent_errors[0] < cutoff:
            self._recent_errors.popleft()
        if len(self._recent_errors) >= self.config.error_burst:
            self._suspended_until = now + self.config.suspend_ms / 1000
            logger.warning(json.dumps({
                "msg": "prefetch-suspended",
                "until": self._suspended_until,
                "recentErrors": len(self._recent_errors),
            }))

    @property
    def suspended(self) -> bool:
        return self._clock() < self._suspended_until

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "registry_size": len(self._registry),
            "suspended_until": self._suspended_until,
        }

    async def wait_idle(self) -> None:
        await self._tasks.wait_idle()

    def reset(self) -> None:
        self._registry.clear()
        self._last_success.clear()
        self._recent_errors.clear()
        self._suspended_until = 0.0
        self._last_tick = 0.0
        self._tasks.clear()
        self._stats = {name: 0 for name in _COUNTERS}
