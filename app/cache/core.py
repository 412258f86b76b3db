"""
Core cache data structures.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")

# Returns epoch seconds; injected everywhere so tests can drive time.
Clock = Callable[[], float]

NEGATIVE_MARKER = "__negative"


class CacheSource(Enum):
    """Source of data returned to a caller."""
    FRESH = "fresh"         # In-process entry within TTL
    L2 = "l2"               # Distributed tier hit, treated as fresh
    STALE = "stale"         # Past TTL but within stale window, served on failure
    NEGATIVE = "negative"   # Cached failure marker
    UPSTREAM = "upstream"   # Fetched from a provider


@dataclass
class CacheEntry(Generic[T]):
    """
    A cached payload with fresh and stale windows.

    Invariant: stale_until >= expires_at >= created_at.
    """
    data: T
    created_at: float
    expires_at: float
    stale_until: float
    negative: bool = False

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at

    def is_usable_stale(self, now: float) -> bool:
        return now < self.stale_until

    def is_expired(self, now: float) -> bool:
        return now > self.stale_until

    def age_seconds(self, now: float) -> float:
        return max(0.0, now - self.created_at)


def is_negative(payload: Any) -> bool:
    """True for payloads written by set_negative_cache."""
    if not isinstance(payload, dict):
        return False
    return bool(payload.get(NEGATIVE_MARKER) or payload.get("negative"))


@dataclass
class CacheMeta:
    """
    Metadata about a cache access, surfaced as response headers.
    """
    cache_source: CacheSource
    cache_key: str
    tier: Optional[str] = None
    age_seconds: Optional[float] = None
    error: Optional[str] = None

    @property
    def header_value(self) -> str:
        """Value for the X-Cache header."""
        if self.cache_source in (CacheSource.FRESH, CacheSource.L2):
            return "HIT"
        if self.cache_source == CacheSource.STALE:
            return "STALE"
        if self.cache_source == CacheSource.NEGATIVE:
            return "NEGATIVE"
        return "MISS"

    def to_headers(self) -> Dict[str, str]:
        headers = {"X-Cache": self.header_value}
        if self.tier:
            headers["X-Cache-Tier"] = self.tier
        if self.cache_source == CacheSource.STALE:
            headers["X-Stale"] = "1"
        return headers

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON debug output."""
        result = {
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
            "cacheSource": self.cache_source.value,
            "cacheKey": self.cache_key,
        }
        if self.tier:
            result["tier"] = self.tier
        if self.age_seconds is not None:
            result["age"] = round(self.age_seconds, 1)
        if self.error:
            result["error"] = self.error
        return result
