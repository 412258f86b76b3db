"""
TTL configuration per route category.
"""
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class RouteCategory(Enum):
    """Cacheable routes with their own CDN and cache behaviour."""
    TOP = "top"
    SEARCH = "search"
    WORLD = "world"


# TTL Configuration by route (in seconds). None means "store default".
TTL_CONFIG: Dict[RouteCategory, Dict[str, Any]] = {
    RouteCategory.TOP: {
        "fresh_ttl": None,
        "stale_extra": None,
        "cdn_max_age": 300,       # 5 minutes at the edge
        "cdn_swr": 60,
    },
    RouteCategory.SEARCH: {
        "fresh_ttl": None,
        "stale_extra": None,
        "cdn_max_age": 300,
        "cdn_swr": 60,
    },
    RouteCategory.WORLD: {
        "fresh_ttl": None,
        "stale_extra": None,
        "cdn_max_age": 600,       # 10 minutes at the edge
        "cdn_swr": 120,
    },
}

# Negative entries stay tiny so a recovered upstream is noticed quickly
NEGATIVE_TTL_SECONDS = 5


def get_ttl_for_route(route: RouteCategory) -> Tuple[Optional[int], Optional[int]]:
    """
    Get in-process TTLs for a route.

    Returns:
        (fresh_ttl, stale_extra); None entries fall back to the store defaults
    """
    config = TTL_CONFIG.get(route, TTL_CONFIG[RouteCategory.TOP])
    return config["fresh_ttl"], config["stale_extra"]


def cache_control_header(
    route: RouteCategory,
    fresh_override: Optional[int] = None,
    stale_override: Optional[int] = None,
) -> str:
    """
    Build the CDN Cache-Control value for a route.

    Explicitly configured cache TTLs win over the per-route CDN defaults so the
    edge and the in-process tier stay aligned.
    """
    config = TTL_CONFIG.get(route, TTL_CONFIG[RouteCategory.TOP])
    max_age = fresh_override if fresh_override is not None else config["cdn_max_age"]
    swr = stale_override if stale_override is not None else config["cdn_swr"]
    return f"public, s-maxage={max_age}, stale-while-revalidate={swr}"
