"""
Upstream access: provider dispatch and the gates in front of it.
"""
from .breaker import BreakerConfig, BreakerState, BreakerStatus, CircuitBreaker
from .budget import BudgetDecision, BudgetTracker
from .cooldown import CooldownTracker, cooldown_seconds_for
from .errors import AllProvidersFailed, NoProvidersConfigured, UpstreamError, status_of
from .http import upstream_json
from .providers import (
    DispatchResult,
    ProviderConfig,
    ProviderDispatcher,
    build_provider_request,
    get_providers,
    query_variants,
)
from .stats import ProviderStats

__all__ = [
    "BreakerConfig",
    "BreakerState",
    "BreakerStatus",
    "CircuitBreaker",
    "BudgetDecision",
    "BudgetTracker",
    "CooldownTracker",
    "cooldown_seconds_for",
    "AllProvidersFailed",
    "NoProvidersConfigured",
    "UpstreamError",
    "status_of",
    "upstream_json",
    "DispatchResult",
    "ProviderConfig",
    "ProviderDispatcher",
    "build_provider_request",
    "get_providers",
    "query_variants",
    "ProviderStats",
]
