"""
Multi-tier caching with fresh/stale/negative windows, request coalescing,
adaptive background revalidation and hot-key prefetch.
"""
from .core import CacheEntry, CacheMeta, CacheSource, is_negative
from .keys import build_cache_key, canonicalize_params, short_hash_key
from .ttl_policies import (
    TTL_CONFIG,
    RouteCategory,
    cache_control_header,
    get_ttl_for_route,
)
from .l2 import L2Backend, L2Bridge, MemoryL2Backend, RedisL2Backend, RestKVL2Backend
from .store import CacheStore
from .coalescer import RequestCoalescer
from .adaptive import AdaptiveConfig, AdaptiveDecision, AdaptiveTracker
from .prefetcher import PrefetchConfig, Prefetcher
from .revalidator import BackgroundRevalidator, RevalidateConfig
from .manager import CacheManager

__all__ = [
    # Core types
    "CacheEntry",
    "CacheMeta",
    "CacheSource",
    "is_negative",
    # Keys
    "build_cache_key",
    "canonicalize_params",
    "short_hash_key",
    # TTL policies
    "TTL_CONFIG",
    "RouteCategory",
    "cache_control_header",
    "get_ttl_for_route",
    # Tiers
    "L2Backend",
    "L2Bridge",
    "MemoryL2Backend",
    "RedisL2Backend",
    "RestKVL2Backend",
    "CacheStore",
    # Coalescing
    "RequestCoalescer",
    # Freshness upkeep
    "AdaptiveConfig",
    "AdaptiveDecision",
    "AdaptiveTracker",
    "PrefetchConfig",
    "Prefetcher",
    "BackgroundRevalidator",
    "RevalidateConfig",
    # Manager
    "CacheManager",
]
