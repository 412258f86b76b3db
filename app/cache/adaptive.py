"""
Per-key request-rate tracking for adaptive revalidation.

Each key keeps an exponential moving average of hits per minute. Given the
gap `dt` since the previous hit, the instantaneous rate is `60000 / dt`
(0 after a gap longer than ten minutes) and
`ema = alpha * rate + (1 - alpha) * ema`.
"""
import logging
import math
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict

from .core import Clock

logger = logging.getLogger("cache.adaptive")

LONG_GAP_MS = 10 * 60_000
MIN_THRESHOLD_MS = 100
MAX_THRESHOLD_MS = 3_600_000


@dataclass
class AdaptiveConfig:
    enabled: bool = True
    max_keys: int = 200
    alpha: float = 0.2
    hot_hpm: float = 30
    cold_hpm: float = 2
    hot_factor: float = 2.0
    cold_factor: float = 0.5
    min_hpm_to_schedule: float = 0.2

    @classmethod
    def from_settings(cls, settings) -> "AdaptiveConfig":
        return cls(
            enabled=settings.adaptive_reval_enabled,
            max_keys=settings.adaptive_max_keys,
            alpha=settings.adaptive_ema_alpha,
            hot_hpm=settings.adaptive_hot_hpm,
            cold_hpm=settings.adaptive_cold_hpm,
            hot_factor=settings.adaptive_hot_factor,
            cold_factor=settings.adaptive_cold_factor,
            min_hpm_to_schedule=settings.adaptive_min_hpm_to_schedule,
        )


@dataclass
class AdaptiveEntry:
    ema_per_minute: float
    last_hit: float


@dataclass
class AdaptiveDecision:
    """Outcome of classifying a key for revalidation scheduling."""
    adjusted_threshold_ms: float
    reason: str  # hot | cold | baseline | suppressed-low | disabled
    ema_per_minute: float
    skip: bool = False


class AdaptiveTracker:
    """Bounded map of key -> EMA hit rate."""

    def __init__(self, config: AdaptiveConfig = None, clock: Clock = time.time):
        self.config = config or AdaptiveConfig()
        self._clock = clock
        self._entries: "OrderedDict[str, AdaptiveEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def record_hit(self, key: str) -> None:
        if not self.config.enabled:
            return
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None:
            self._entries[key] = AdaptiveEntry(ema_per_minute=1.0, last_hit=now)
            self._ensure_capacity()
            return

        delta_ms = (now - entry.last_hit) * 1000
        entry.last_hit = now
        if delta_ms > LONG_GAP_MS:
            instantaneous = 0.0
        else:
            instantaneous = 60_000 / max(1.0, delta_ms)
        alpha = self.config.alpha
        entry.ema_per_minute = alpha * instantaneous + (1 - alpha) * entry.ema_per_minute

    def _ensure_capacity(self) -> None:
        # Oldest-inserted keys go first
        while len(self._entries) > self.config.max_keys:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Adaptive tracker evicted {evicted}")

    def ema(self, key: str) -> float:
        entry = self._entries.get(key)
        return entry.ema_per_minute if entry else 0.0

    def compute_adaptive_threshold(self, base_ms: float, key: str) -> AdaptiveDecision:
        """
        Scale the revalidation threshold by how busy a key is.

        - below the scheduling floor: suppressed-low, caller should skip
        - hot: threshold multiplied up (refresh earlier)
        - cold: threshold reduced
        - otherwise baseline
        """
        cfg = self.config
        if not cfg.enabled:
            return AdaptiveDecision(base_ms, "disabled", 0.0)

        ema = self.ema(key)
        if ema < cfg.min_hpm_to_schedule:
            return AdaptiveDecision(base_ms, "suppressed-low", ema, skip=True)
        if ema >= cfg.hot_hpm:
            adjusted = base_ms * cfg.hot_factor
            adjusted = min(MAX_THRESHOLD_MS, max(MIN_THRESHOLD_MS, adjusted))
            return AdaptiveDecision(adjusted, "hot", ema)
        if ema <= cfg.cold_hpm:
            adjusted = max(MIN_THRESHOLD_MS, math.floor(base_ms * cfg.cold_factor))
            return AdaptiveDecision(adjusted, "cold", ema)
        return AdaptiveDecision(base_ms, "baseline", ema)

    def adaptive_stats(self, limit: int = 20) -> Dict[str, Any]:
        """Top-N hottest keys by EMA."""
        if not self.config.enabled:
            return {"enabled": False}
        now = self._clock()
        sample = sorted(
            (
                {
                    "key": key,
                    "ema_per_minute": round(entry.ema_per_minute, 2),
                    "age_ms": int((now - entry.last_hit) * 1000),
                }
                for key, entry in self._entries.items()
            ),
            key=lambda row: row["ema_per_minute"],
            reverse=True,
        )
        return {
            "enabled": True,
            "total": len(sample),
            "hot_sample": sample[:limit],
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "config": asdict(self.config),
        }

    def reset(self) -> None:
        self._entries.clear()
