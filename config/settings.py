"""Configuration management using pydantic-settings."""
import math
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


# Accepted range per numeric setting. Values outside are clamped,
# unparsable values fall back to the field default.
_BOUNDS = {
    # In-process cache
    "cache_fresh_ttl": (5, 1800),
    "cache_stale_extra": (0, 7200),
    "cache_max_entries": (50, 10000),
    # L2
    "l2_ttl_mult": (1, 10),
    # Circuit breaker
    "breaker_failure_burst": (2, 20),
    "breaker_open_ms": (50, 10 * 60_000),
    "breaker_open_ms_max": (10_000, 60 * 60_000),
    # Entity validation
    "etag_id_sample": (0, 1000),
    # Upstream budget / cooldown
    "gnews_call_cost": (1, 1000),
    "budget_soft_remain": (0, 100_000),
    "cooldown_min_seconds": (1, 600),
    "cooldown_max_seconds": (1, 3600),
    "cooldown_default_seconds": (1, 3600),
    "upstream_timeout_seconds": (1, 30),
    # Background revalidation
    "bg_revalidate_fresh_threshold_ms": (1000, 3_600_000),
    "bg_max_inflight": (1, 10),
    "bg_min_interval_ms": (1000, 3_600_000),
    # Adaptive activity tracking
    "adaptive_max_keys": (50, 2000),
    "adaptive_ema_alpha": (0.01, 0.9),
    "adaptive_hot_hpm": (1, 5000),
    "adaptive_cold_hpm": (0.1, 1000),
    "adaptive_hot_factor": (1, 10),
    "adaptive_cold_factor": (0.05, 1),
    "adaptive_min_hpm_to_schedule": (0.01, 10),
    # Prefetch
    "prefetch_fresh_threshold_ms": (500, 120_000),
    "prefetch_max_batch": (1, 10),
    "prefetch_min_interval_ms": (1000, 600_000),
    "prefetch_global_cooldown_ms": (1000, 600_000),
    "prefetch_error_burst": (1, 50),
    "prefetch_suspend_ms": (1000, 3_600_000),
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    log_level: str = "INFO"

    # HTTP surface
    allow_origin: str = "*"
    admin_purge_token: Optional[str] = None
    metrics_api_token: Optional[str] = None
    etag_mode: str = "weak"
    etag_sort: Optional[bool] = None
    etag_id_sample: int = 0
    etag_strong_include_summary: bool = False
    app_version: str = "1.0.0"

    # GNews provider
    gnews_api: Optional[str] = None
    gnews_daily_limit: float = 500
    gnews_call_cost: int = 1
    # Keep a few calls for foreground traffic; background refreshes stop here
    budget_soft_remain: int = 3
    upstream_timeout_seconds: float = 8.0

    # 429 cooldown window
    cooldown_min_seconds: int = 10
    cooldown_max_seconds: int = 120
    cooldown_default_seconds: int = 30

    # In-process cache
    cache_fresh_ttl: int = 90
    cache_stale_extra: int = 600
    cache_max_entries: int = 500

    # L2 cache
    enable_l2_cache: bool = False
    cache_key_prefix: str = ""
    l2_ttl_mult: int = 10
    l2_promote_on_hit: bool = True
    l2_disable_kv: bool = False
    redis_url: Optional[str] = None
    upstash_redis_rest_url: Optional[str] = None
    upstash_redis_rest_token: Optional[str] = None

    # Circuit breaker
    breaker_enabled: bool = True
    breaker_failure_burst: int = 4
    breaker_open_ms: int = 30_000
    breaker_open_ms_max: int = 5 * 60_000

    # Background revalidation
    enable_bg_revalidate: bool = True
    bg_revalidate_fresh_threshold_ms: int = 15_000
    bg_max_inflight: int = 3
    bg_min_interval_ms: int = 10_000

    # Adaptive activity tracking
    adaptive_reval_enabled: bool = True
    adaptive_max_keys: int = 200
    adaptive_ema_alpha: float = 0.2
    adaptive_hot_hpm: float = 30
    adaptive_cold_hpm: float = 2
    adaptive_hot_factor: float = 2.0
    adaptive_cold_factor: float = 0.5
    adaptive_min_hpm_to_schedule: float = 0.2

    # Prefetch
    prefetch_enabled: bool = True
    prefetch_fresh_threshold_ms: int = 4000
    prefetch_max_batch: int = 3
    prefetch_min_interval_ms: int = 20_000
    prefetch_global_cooldown_ms: int = 30_000
    prefetch_error_burst: int = 3
    prefetch_suspend_ms: int = 120_000

    @field_validator(*_BOUNDS.keys(), mode="before")
    @classmethod
    def _clamp_numeric(cls, value, info):
        default = cls.model_fields[info.field_name].default
        try:
            number = float(value)
        except (TypeError, ValueError):
            return default
        if not math.isfinite(number):
            return default
        low, high = _BOUNDS[info.field_name]
        number = min(high, max(low, number))
        if isinstance(default, int):
            return int(number)
        return number

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
