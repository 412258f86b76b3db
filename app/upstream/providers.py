"""
Provider dispatch.

Providers are tried in order. Each one is gated by cooldown, circuit breaker
and daily budget before any call goes out, then queried through a list of
progressively looser request variants until one returns articles.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlencode

from app.upstream.breaker import CircuitBreaker
from app.upstream.budget import BudgetTracker
from app.upstream.cooldown import CooldownTracker, cooldown_seconds_for
from app.upstream.errors import AllProvidersFailed, NoProvidersConfigured, status_of
from app.upstream.stats import ProviderStats

logger = logging.getLogger("upstream.providers")

Fetcher = Callable[[str, Dict[str, str]], Awaitable[Any]]

GNEWS_BASE_URL = "https://gnews.io/api/v4"
GNEWS_PAGE_SIZE = 10

# GNews topics: world, nation, business, technology, entertainment, sports, science, health
GNEWS_TOPICS = {
    "general": "world",
    "world": "world",
    "business": "business",
    "technology": "technology",
    "tech": "technology",
    "entertainment": "entertainment",
    "sports": "sports",
    "science": "science",
    "health": "health",
    "politics": "nation",
}

_COUNTRY_CODE = re.compile(r"^[a-z]{2}$", re.IGNORECASE)


@dataclass
class ProviderConfig:
    type: str
    key: str


@dataclass
class ProviderRequest:
    url: str
    headers: Dict[str, str] = field(default_factory=dict)

    @staticmethod
    def pick(data: Any) -> List[Any]:
        if not isinstance(data, dict):
            return []
        return data.get("articles") or data.get("posts") or data.get("results") or []


@dataclass
class DispatchResult:
    items: List[Any]
    provider: str
    url: str
    raw: Any = None
    attempts: List[str] = field(default_factory=list)
    attempts_detail: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def get_providers(settings) -> List[ProviderConfig]:
    """Providers with credentials, in dispatch order."""
    providers = []
    if settings.gnews_api:
        providers.append(ProviderConfig(type="gnews", key=settings.gnews_api))
    return providers


def _clamp_page(value: Any) -> int:
    try:
        page = int(str(value or "1"))
    except ValueError:
        page = 1
    return min(100_000, max(1, page))


def build_provider_request(
    provider: ProviderConfig, intent: str, options: Dict[str, Any]
) -> Optional[ProviderRequest]:
    """Upstream URL for one attempt, or None for an unsupported provider."""
    if provider.type != "gnews":
        return None

    params = {
        "lang": str(options.get("language") or "en"),
        "token": provider.key,
        "page": str(_clamp_page(options.get("page"))),
        "max": str(GNEWS_PAGE_SIZE),
    }
    if options.get("q"):
        params["q"] = str(options["q"])
    country = options.get("country")
    if country and _COUNTRY_CODE.match(str(country)):
        params["country"] = str(country).lower()

    if intent == "search":
        return ProviderRequest(url=f"{GNEWS_BASE_URL}/search?{urlencode(params)}")

    category = options.get("category")
    if category:
        topic = GNEWS_TOPICS.get(str(category).lower())
        if topic:
            params["topic"] = topic
    return ProviderRequest(url=f"{GNEWS_BASE_URL}/top-headlines?{urlencode(params)}")


def query_variants(provider: ProviderConfig, options: Dict[str, Any]) -> List[tuple]:
    """(label, options) pairs, strictest first."""
    if provider.type != "gnews":
        return [("as-is", dict(options))]

    # GNews has no domain/source filters
    base = {**options, "domains": [], "sources": []}
    pin_q = bool(options.get("pin_q"))
    variants = [("as-is", base)]
    if not pin_q:
        variants.append(("no-q", {**base, "q": None}))
    variants.append(("no-country", {**base, "country": None}))
    if not pin_q:
        variants.append(("no-country-no-q", {**base, "country": None, "q": None}))
    variants.append(("topic-only", {**base, "q": None, "page": 1}))
    return variants


class ProviderDispatcher:
    """Runs provider attempts against the shared breaker, budget and cooldown state."""

    def __init__(
        self,
        breaker: CircuitBreaker,
        budget: BudgetTracker,
        cooldown: CooldownTracker,
        stats: ProviderStats,
        settings,
    ):
        self.breaker = breaker
        self.budget = budget
        self.cooldown = cooldown
        self.stats = stats
        self.settings = settings

    def _budget_skip_reason(self, provider: ProviderConfig, background: bool) -> Optional[str]:
        if provider.type != "gnews":
            return None
        limit = self.settings.gnews_daily_limit
        gate = self.budget.can_spend("gnews", limit, self.settings.gnews_call_cost)
        if not gate.ok:
            return gate.reason
        if background and self.budget.remaining("gnews", limit) <= self.settings.budget_soft_remain:
            return "soft-remain"
        return None

    async def try_providers_sequential(
        self,
        providers: List[ProviderConfig],
        intent: str,
        options: Dict[str, Any],
        fetcher: Fetcher,
        background: bool = False,
    ) -> DispatchResult:
        """
        First non-empty provider result, or an all-empty result.

        Raises:
            NoProvidersConfigured: no provider has credentials
            AllProvidersFailed: every provider was skipped or errored
        """
        if not providers:
            raise NoProvidersConfigured(
                "No providers configured (GNEWS_API missing)",
                hint="Set GNEWS_API in your environment or .env file",
            )

        errors: List[str] = []
        attempts: List[str] = []
        detail: List[str] = []
        error_details: List[str] = []
        last_status: Optional[int] = None
        last_retry_after: Optional[str] = None

        for provider in providers:
            name = provider.type
            attempts.append(name)

            if self.cooldown.is_cooling_down(name):
                detail.append(f"{name}(cooldown)")
                last_status = 429
                remaining_s = math.ceil(self.cooldown.get_cooldown_remaining(name) / 1000)
                last_retry_after = str(remaining_s)
                continue
            # Budget first: a skip must not take the half-open probe slot
            skip = self._budget_skip_reason(provider, background)
            if skip:
                detail.append(f"{name}(skipped:{skip})")
                continue
            if not self.breaker.allow_request(name):
                detail.append(f"{name}(breaker-open)")
                continue

            try:
                result = await self._run_variants(
                    provider, intent, options, fetcher, detail, error_details
                )
            except Exception as e:
                self.breaker.release_probe(name)
                self.stats.record_error(name, str(e))
                if not (detail and detail[-1].startswith(f"{name}(")):
                    detail.append(f"{name}(err)")
                status = status_of(e)
                last_status = status
                last_retry_after = getattr(e, "retry_after", None)
                if status == 429:
                    seconds = cooldown_seconds_for(
                        last_retry_after,
                        self.settings.cooldown_min_seconds,
                        self.settings.cooldown_max_seconds,
                        self.settings.cooldown_default_seconds,
                    )
                    self.cooldown.set_cooldown(name, seconds)
                    logger.warning(f"{name} rate limited, cooling down for {seconds}s")
                errors.append(f"{name}: {e}")
                continue

            result.attempts = attempts
            result.attempts_detail = detail
            result.errors = error_details
            return result

        message = "All providers failed: " + " | ".join(errors or detail)
        logger.warning(message)
        raise AllProvidersFailed(
            message,
            details=errors,
            attempts=attempts,
            attempts_detail=detail,
            errors=error_details,
            status=last_status,
            retry_after=last_retry_after,
        )

    async def _run_variants(
        self,
        provider: ProviderConfig,
        intent: str,
        options: Dict[str, Any],
        fetcher: Fetcher,
        detail: List[str],
        error_details: List[str],
    ) -> DispatchResult:
        name = provider.type
        last_url = ""
        for label, variant in query_variants(provider, options):
            request = build_provider_request(provider, intent, variant)
            if request is None:
                raise ValueError(f"Unsupported request for provider {name}")
            last_url = request.url
            try:
                data = await fetcher(request.url, request.headers)
            except Exception as e:
                status = status_of(e)
                self.breaker.on_failure(name, status)
                if status == 422:
                    detail.append(f"{name}:{label}(422)")
                    continue
                detail.append(f"{name}:{label}(err)")
                error_details.append(f"{name}:{label}: {e or 'error'}")
                raise

            if name == "gnews":
                self.budget.spend("gnews", self.settings.gnews_call_cost)
            # Any 2xx answer, empty or not, means the upstream is healthy
            self.breaker.on_success(name)
            items = request.pick(data)
            if isinstance(items, list) and items:
                self.stats.record_success(name, len(items))
                detail.append(f"{name}:{label}(ok:{len(items)})")
                return DispatchResult(items=items, provider=name, url=request.url, raw=data)
            self.stats.record_empty(name)
            detail.append(f"{name}:{label}(empty)")

        # Only 422s leave a probe unresolved; let the next request probe
        self.breaker.release_probe(name)
        self.stats.record_empty(name)
        detail.append(f"{name}(empty-all)")
        return DispatchResult(items=[], provider=name, url=last_url, raw=None)
