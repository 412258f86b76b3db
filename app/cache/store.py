"""
In-process cache store with fresh/stale/negative windows and LRU bounds.

The store is best-effort and ephemeral: entries can disappear at any time
(capacity pressure, expiry sweep, process restart) and callers must treat
that as a plain miss.
"""
import json
import logging
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .core import CacheEntry, Clock, NEGATIVE_MARKER
from .l2 import L2Bridge
from .tasks import TaskRegistry

logger = logging.getLogger("cache.store")

# Hard guardrails applied to per-call TTLs
MAX_FRESH_TTL = 1800
MAX_STALE_EXTRA = 7200
MAX_NEGATIVE_TTL = 30
MAX_NEGATIVE_STALE_EXTRA = 60

PURGE_EVERY_N_PUTS = 100
METRICS_LOG_INTERVAL_SECONDS = 300
METRICS_LOG_EVERY_N_LOOKUPS = 2000

_COUNTERS = (
    "puts",
    "hits_fresh",
    "hits_stale",
    "misses",
    "negative_puts",
    "negative_hits",
    "evictions_lru",
    "evictions_expired",
    "total_lookups",
    "l2_hits",
    "l2_misses",
    "l2_writes",
    "l2_write_failures",
    "l2_promotions",
)


class CacheStore:
    """
    Bounded key -> CacheEntry map.

    Recency is tracked by an OrderedDict: writes and fresh/stale hits move a
    key to the end, overflow evicts from the front.
    """

    def __init__(
        self,
        capacity: int = 500,
        fresh_ttl: int = 90,
        stale_extra: int = 600,
        l2: Optional[L2Bridge] = None,
        promote_on_hit: bool = True,
        clock: Clock = time.time,
    ):
        self.capacity = capacity
        self.fresh_ttl = fresh_ttl
        self.stale_extra = stale_extra
        self.l2 = l2
        self.promote_on_hit = promote_on_hit
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._stats: Dict[str, int] = {name: 0 for name in _COUNTERS}
        self._last_eviction: Optional[str] = None
        self._last_log: Optional[float] = None
        self._writes = TaskRegistry("l2-write")
        # Called after each periodic metrics log line (wired to prefetch)
        self.on_metrics_log: Optional[Callable[[], None]] = None

    @classmethod
    def from_settings(cls, settings, l2: Optional[L2Bridge] = None, clock: Clock = time.time) -> "CacheStore":
        return cls(
            capacity=settings.cache_max_entries,
            fresh_ttl=settings.cache_fresh_ttl,
            stale_extra=settings.cache_stale_extra,
            l2=l2,
            promote_on_hit=settings.l2_promote_on_hit,
            clock=clock,
        )

    @property
    def l2_enabled(self) -> bool:
        return self.l2 is not None and self.l2.enabled

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_cache(
        self,
        key: str,
        payload: Any,
        ttl_seconds: Optional[float] = None,
        stale_extra_seconds: Optional[float] = None,
    ) -> None:
        """Store a payload with `expires_at = now+ttl`, `stale_until = expires_at+stale_extra`."""
        if ttl_seconds is None:
            ttl_seconds = self.fresh_ttl
        fresh = min(MAX_FRESH_TTL, max(1, ttl_seconds))
        if stale_extra_seconds is None:
            stale_extra_seconds = self.stale_extra
        stale_extra = min(MAX_STALE_EXTRA, max(0, stale_extra_seconds))

        now = self._clock()
        self._entries[key] = CacheEntry(
            data=payload,
            created_at=now,
            expires_at=now + fresh,
            stale_until=now + fresh + stale_extra,
        )
        self._entries.move_to_end(key)
        self._stats["puts"] += 1

        if self._stats["puts"] % PURGE_EVERY_N_PUTS == 0:
            self.purge_expired()
        self._enforce_capacity()

        if self.l2_enabled and not (isinstance(payload, dict) and payload.get(NEGATIVE_MARKER)):
            self._writes.spawn(self._write_through(key, payload, fresh))

    async def _write_through(self, key: str, payload: Any, ttl: float) -> None:
        written = await self.l2.l2_set(key, payload, ttl)
        if written is None:
            return
        if written:
            self._stats["l2_writes"] += 1
        else:
            self._stats["l2_write_failures"] += 1
            logger.warning(f"L2 write-through failed for {key}: no backend accepted it")

    def set_negative_cache(
        self,
        key: str,
        payload: Optional[Dict[str, Any]] = None,
        ttl_seconds: float = 5,
    ) -> None:
        """Cache a failure marker for a short window. Never mirrored to L2."""
        fresh = max(1, min(MAX_NEGATIVE_TTL, ttl_seconds))
        stale_extra = min(MAX_NEGATIVE_STALE_EXTRA, fresh * 2)
        data = dict(payload or {"error": "negative-cache"})
        data[NEGATIVE_MARKER] = True

        now = self._clock()
        self._entries[key] = CacheEntry(
            data=data,
            created_at=now,
            expires_at=now + fresh,
            stale_until=now + fresh + stale_extra,
            negative=True,
        )
        self._entries.move_to_end(key)
        self._stats["negative_puts"] += 1
        self._enforce_capacity()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_fresh(self, key: str) -> Optional[Any]:
        """Payload while `now < expires_at`, else None."""
        entry = self._entries.get(key)
        self._stats["total_lookups"] += 1
        if entry is not None and entry.is_fresh(self._clock()):
            self._stats["hits_fresh"] += 1
            if entry.negative:
                self._stats["negative_hits"] += 1
            self._entries.move_to_end(key)
            self._maybe_log()
            return entry.data
        self._stats["misses"] += 1
        self._maybe_log()
        return None

    def get_stale(self, key: str) -> Optional[Any]:
        """Payload while `now < stale_until` (fresh or stale window)."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_usable_stale(self._clock()):
            return None
        self._stats["hits_stale"] += 1
        self._stats["total_lookups"] += 1
        self._entries.move_to_end(key)
        self._maybe_log()
        return entry.data

    def get_any(self, key: str) -> Optional[CacheEntry]:
        """Raw entry regardless of freshness (bounded by stale_until). No side effects."""
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry

    def cache_info(self, key: str) -> Optional[Dict[str, float]]:
        """Remaining fresh and stale windows in milliseconds, floored at 0."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        return {
            "fresh_for_ms": max(0.0, (entry.expires_at - now) * 1000),
            "stale_for_ms": max(0.0, (entry.stale_until - now) * 1000),
        }

    async def get_fresh_or_l2(self, key: str) -> Optional[Any]:
        """
        In-process fresh lookup, falling back to the L2 tier.

        An L2 hit is returned as fresh and, when promotion is on, re-inserted
        in-process with the default TTL.
        """
        value = self.get_fresh(key)
        if value is not None:
            return value
        return await self.l2_lookup(key)

    async def l2_lookup(self, key: str) -> Optional[Any]:
        """L2 part of get_fresh_or_l2, for callers that already missed in-process."""
        if not self.l2_enabled:
            return None
        try:
            value = await self.l2.l2_get(key)
        except Exception as e:
            logger.warning(f"L2 lookup failed for {key}: {e}")
            return None
        if value is None:
            self._stats["l2_misses"] += 1
            return None
        self._stats["l2_hits"] += 1
        if self.promote_on_hit:
            self.set_cache(key, value)
            self._stats["l2_promotions"] += 1
        return value

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def _enforce_capacity(self) -> None:
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._stats["evictions_lru"] += 1
            self._last_eviction = datetime.now(timezone.utc).isoformat()
            logger.debug(f"LRU evicted {evicted}")

    def purge_expired(self) -> int:
        """Drop entries past their stale window."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._stats["evictions_expired"] += len(expired)
        return len(expired)

    def purge_key(self, key: str) -> bool:
        if key in self._entries:
            del self._entries[key]
            logger.info(f"Purged cache key: {key}")
            return True
        return False

    def purge_prefix(self, prefix: str) -> int:
        to_delete = [k for k in self._entries if k.startswith(prefix)]
        for key in to_delete:
            del self._entries[key]
        if to_delete:
            logger.info(f"Purged {len(to_delete)} entries with prefix '{prefix}'")
        return len(to_delete)

    def delete_memory_key(self, key: str) -> None:
        """Drop a key from the in-process tier only (simulates a cold instance)."""
        self._entries.pop(key, None)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def cache_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self._stats)
        total = max(1, stats["total_lookups"])
        hits = stats["hits_fresh"] + stats["hits_stale"]
        l2_total = stats["l2_hits"] + stats["l2_misses"]
        stats.update(
            size=len(self._entries),
            capacity=self.capacity,
            hit_ratio=round(hits / total, 4),
            fresh_ratio=round(stats["hits_fresh"] / total, 4),
            stale_ratio=round(stats["hits_stale"] / total, 4),
            l2_hit_ratio=round(stats["l2_hits"] / l2_total, 4) if l2_total else 0.0,
            last_eviction=self._last_eviction,
        )
        return stats

    def _maybe_log(self) -> None:
        now = self._clock()
        recent = self._last_log is not None and now - self._last_log < METRICS_LOG_INTERVAL_SECONDS
        if recent and self._stats["total_lookups"] % METRICS_LOG_EVERY_N_LOOKUPS != 0:
            return
        self._last_log = now
        stats = self.cache_stats()
        logger.info(json.dumps({"msg": "cache-metrics", "cache": stats}))

        l2_total = stats["l2_hits"] + stats["l2_misses"]
        if l2_total > 50 and stats["l2_hit_ratio"] < 0.1:
            logger.warning(json.dumps({
                "msg": "l2-low-hit-ratio",
                "l2HitRatio": stats["l2_hit_ratio"],
                "l2Hits": stats["l2_hits"],
                "l2Misses": stats["l2_misses"],
            }))

        if self.on_metrics_log is not None:
            try:
                self.on_metrics_log()
            except Exception as e:
                logger.warning(f"metrics log hook failed: {e}")

    async def wait_for_writes(self) -> None:
        await self._writes.wait_idle()

    def reset(self) -> None:
        """Clear entries and counters (test isolation)."""
        self._entries.clear()
        self._stats = {name: 0 for name in _COUNTERS}
        self._last_eviction = None
        self._last_log = None
        self._writes.clear()
