"""
Process-wide service container.

Every stateful component (cache tiers, trackers, breaker) is built once here
and handed to the routes through FastAPI dependencies. Tests call
reset_services() or build their own container with a fake clock.
"""
import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional

from app.cache import (
    AdaptiveConfig,
    AdaptiveTracker,
    BackgroundRevalidator,
    CacheManager,
    CacheStore,
    L2Bridge,
    PrefetchConfig,
    Prefetcher,
    RequestCoalescer,
    RevalidateConfig,
)
from app.cache.core import Clock
from app.news import EntityOptions
from app.upstream import (
    BreakerConfig,
    BudgetTracker,
    CircuitBreaker,
    CooldownTracker,
    ProviderDispatcher,
    ProviderStats,
    upstream_json,
)
from config.settings import Settings, settings as default_settings

logger = logging.getLogger("services")

FetchJson = Callable[[str, Dict[str, str]], Awaitable[Any]]


@dataclass
class Services:
    settings: Settings
    l2: L2Bridge
    store: CacheStore
    coalescer: RequestCoalescer
    adaptive: AdaptiveTracker
    prefetcher: Prefetcher
    revalidator: BackgroundRevalidator
    cache: CacheManager
    breaker: CircuitBreaker
    budget: BudgetTracker
    cooldown: CooldownTracker
    provider_stats: ProviderStats
    dispatcher: ProviderDispatcher
    entity_options: EntityOptions
    fetch_json: FetchJson

    def metrics(self) -> Dict[str, Any]:
        return {
            "cache": self.store.cache_stats(),
            "revalidation": self.revalidator.stats(),
            "prefetch": self.prefetcher.stats(),
            "adaptive": self.adaptive.adaptive_stats(),
            "breaker": self.breaker.snapshot(),
            "budget": self.budget.snapshot(),
            "cooldown": self.cooldown.snapshot(),
            "coalescer": self.coalescer.get_stats(),
            "l2": self.l2.get_stats(),
        }

    def reset(self) -> None:
        """Drop all cached and tracked state, keeping the wiring."""
        self.store.reset()
        self.coalescer.reset()
        self.adaptive.reset()
        self.prefetcher.reset()
        self.revalidator.reset()
        self.breaker.reset()
        self.budget.reset()
        self.cooldown.reset()
        self.provider_stats.reset()
        self.l2.reset()

    async def close(self) -> None:
        await self.l2.close()


def build_services(
    settings: Optional[Settings] = None,
    clock: Clock = time.time,
    fetch_json: Optional[FetchJson] = None,
    l2: Optional[L2Bridge] = None,
) -> Services:
    """Wire the dependency graph: store <- adaptive, prefetcher <- revalidator."""
    settings = settings or default_settings

    l2 = l2 or L2Bridge.from_settings(settings, clock=clock)
    store = CacheStore.from_settings(settings, l2=l2, clock=clock)
    adaptive = AdaptiveTracker(AdaptiveConfig.from_settings(settings), clock=clock)
    prefetcher = Prefetcher(store, adaptive, PrefetchConfig.from_settings(settings), clock=clock)
    revalidator = BackgroundRevalidator(
        store,
        adaptive=adaptive,
        prefetcher=prefetcher,
        config=RevalidateConfig.from_settings(settings),
        clock=clock,
    )
    store.on_metrics_log = prefetcher.schedule_tick

    coalescer = RequestCoalescer()
    breaker = CircuitBreaker(BreakerConfig.from_settings(settings), clock=clock)
    budget = BudgetTracker(clock=clock)
    cooldown = CooldownTracker(clock=clock)
    provider_stats = ProviderStats()

    if fetch_json is None:
        fetch_json = partial(upstream_json, timeout=settings.upstream_timeout_seconds)

    return Services(
        settings=settings,
        l2=l2,
        store=store,
        coalescer=coalescer,
        adaptive=adaptive,
        prefetcher=prefetcher,
        revalidator=revalidator,
        cache=CacheManager(store, coalescer, adaptive=adaptive, revalidator=revalidator),
        breaker=breaker,
        budget=budget,
        cooldown=cooldown,
        provider_stats=provider_stats,
        dispatcher=ProviderDispatcher(breaker, budget, cooldown, provider_stats, settings),
        entity_options=EntityOptions.from_settings(settings),
        fetch_json=fetch_json,
    )


# Singleton instance
_services: Optional[Services] = None


def get_services() -> Services:
    """Get or create the process-wide services."""
    global _services
    if _services is None:
        _services = build_services()
        logger.info(
            f"Services ready (l2_enabled={_services.store.l2_enabled}, "
            f"providers={'gnews' if _services.settings.gnews_api else 'none'})"
        )
    return _services


def set_services(services: Optional[Services]) -> None:
    """Install a prebuilt container (tests)."""
    global _services
    _services = services


def reset_services() -> None:
    """Forget the singleton; the next get_services() builds a fresh one."""
    global _services
    _services = None


async def close_services() -> None:
    """Release L2 connections on shutdown, if the container was ever built."""
    if _services is not None:
        await _services.close()
