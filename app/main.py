"""
News Edge API - Main FastAPI Application
Aggregates upstream news providers behind a multi-tier cache
"""
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from app.cache import (
    CacheSource,
    RouteCategory,
    build_cache_key,
    cache_control_header,
    get_ttl_for_route,
)
from app.news import (
    attach_entity_meta,
    dedupe,
    entity_headers,
    extract_entity_meta,
    is_not_modified,
    normalize_all,
)
from app.schemas import HealthResponse, PurgeResponse, VersionResponse
from app.services import Services, close_services, get_services
from app.upstream import get_providers, status_of
from config.settings import settings

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger("api")

# Version tracking
APP_NAME = "News Edge API"
APP_VERSION = settings.app_version

CATEGORY_ALIASES = {
    "politics": "general",
    "world": "general",
    "tech": "technology",
    "sci": "science",
    "biz": "business",
}
CATEGORIES = {"general", "business", "technology", "entertainment", "sports", "science", "health"}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "X-Frame-Options": "DENY",
}

_TOKEN_PARAM = re.compile(r"(token|apikey|api_key)=[^&]*", re.IGNORECASE)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_services()


app = FastAPI(
    title=APP_NAME,
    description="News aggregation edge API with stale-while-revalidate caching",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.allow_origin.split(",") if o.strip()],
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Cache", "X-Cache-Tier", "X-Provider", "X-Provider-Articles", "ETag"],
)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# ===== HELPERS =====

def resolve_category(raw: Optional[str]) -> str:
    """Map client category aliases onto the supported set."""
    category = (raw or "general").strip().lower()
    category = CATEGORY_ALIASES.get(category, category)
    return category if category in CATEGORIES else "general"


def resolve_country(raw: Optional[str]) -> str:
    country = (raw or "us").strip().lower()
    return country if re.fullmatch(r"[a-z]{2}", country) else "us"


def split_csv(raw: Optional[str]) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def mask_url(url: str) -> str:
    return _TOKEN_PARAM.sub(lambda m: f"{m.group(1)}=***", url or "")


def _cdn_overrides(config) -> Dict[str, Optional[int]]:
    """Explicitly configured TTLs also drive the CDN header."""
    fields = config.model_fields_set
    return {
        "fresh_override": config.cache_fresh_ttl if "cache_fresh_ttl" in fields else None,
        "stale_override": config.cache_stale_extra if "cache_stale_extra" in fields else None,
    }


def _flag(value: Optional[str]) -> bool:
    return str(value or "0").lower() in ("1", "true", "yes")


def _provider_headers(payload: Dict[str, Any]) -> Dict[str, str]:
    meta = payload.get("meta") or {}
    headers = {"X-Provider-Articles": str(len(payload.get("items") or []))}
    if meta.get("provider"):
        headers["X-Provider"] = meta["provider"]
    if meta.get("attempts"):
        headers["X-Provider-Attempts"] = ",".join(meta["attempts"])
    if meta.get("attempts_detail"):
        headers["X-Provider-Attempts-Detail"] = ",".join(meta["attempts_detail"])
    return headers


async def serve_articles(
    request: Request,
    services: Services,
    route: RouteCategory,
    intent: str,
    key_params: Dict[str, Any],
    options: Dict[str, Any],
    nocache: bool,
    debug: bool,
) -> Response:
    """
    Read-through cache around provider dispatch, mapped onto HTTP.

    - fresh / L2 hit: 200 with X-Cache: HIT (304 when the client tag matches)
    - negative hit: 200 with empty items
    - upstream failure with stale data: 200 with stale: true
    - 429 with no fallback: 429 + Retry-After
    - anything else: 500 "Proxy failed"
    """
    cache_key = build_cache_key(intent, key_params)

    async def fetch(background: bool = False) -> Dict[str, Any]:
        result = await services.dispatcher.try_providers_sequential(
            get_providers(services.settings),
            intent,
            options,
            services.fetch_json,
            background=background,
        )
        payload = {
            "items": dedupe(normalize_all(result.items)),
            "meta": {
                "provider": result.provider,
                "attempts": result.attempts,
                "attempts_detail": result.attempts_detail,
                "url": mask_url(result.url),
            },
        }
        return attach_entity_meta(payload, services.entity_options)

    async def fetch_background() -> Dict[str, Any]:
        return await fetch(background=True)

    fresh_ttl, stale_extra = get_ttl_for_route(route)
    try:
        payload, meta = await services.cache.get(
            cache_key,
            fetch,
            no_cache=nocache,
            ttl_seconds=fresh_ttl,
            stale_extra_seconds=stale_extra,
            background_fetch_fn=fetch_background,
        )
    except Exception as e:
        return _error_response(e, cache_key, debug)

    headers = meta.to_headers()
    headers["Cache-Control"] = cache_control_header(route, **_cdn_overrides(services.settings))

    if meta.cache_source == CacheSource.NEGATIVE:
        return JSONResponse({"items": [], "negative": True}, headers=headers)

    headers.update(_provider_headers(payload))
    entity = extract_entity_meta(payload, services.entity_options)
    if entity is not None:
        headers.update(entity_headers(entity))
        if meta.cache_source != CacheSource.STALE and is_not_modified(request.headers, entity):
            return Response(status_code=304, headers=headers)

    body: Dict[str, Any] = {"items": payload.get("items") or []}
    if meta.cache_source == CacheSource.STALE:
        body["stale"] = True
    if debug:
        body["debug"] = {"cache": meta.to_dict(), "provider": payload.get("meta")}
    return JSONResponse(body, headers=headers)


def _error_response(error: Exception, cache_key: str, debug: bool) -> JSONResponse:
    status = status_of(error)
    if status == 429:
        retry_after = getattr(error, "retry_after", None) or "30"
        logger.warning(f"Rate limited for {cache_key}, retry after {retry_after}s")
        return JSONResponse(
            {"error": "Rate limited", "retryAfter": retry_after},
            status_code=429,
            headers={"Retry-After": str(retry_after)},
        )

    logger.error(f"Proxy failed for {cache_key}: {error}")
    body: Dict[str, Any] = {"error": "Proxy failed"}
    if debug:
        body["message"] = str(error)
        for attr in ("hint", "attempts", "attempts_detail"):
            value = getattr(error, attr, None)
            if value:
                body[attr] = value
    return JSONResponse(body, status_code=500)


def _metrics_authorized(request: Request, services: Services) -> bool:
    token = services.settings.metrics_api_token
    if not token:
        return True
    return request.headers.get("authorization") == f"Bearer {token}"


# ===== HEALTH / VERSION =====

@app.get("/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@app.get("/version", response_model=VersionResponse)
def version_info(services: Services = Depends(get_services)):
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "providers": [p.type for p in get_providers(services.settings)],
        "l2_enabled": services.store.l2_enabled,
    }


# ===== ARTICLES =====

@app.get("/api/top")
async def top_headlines(
    request: Request,
    country: Optional[str] = Query(None, description="Two-letter country code"),
    category: Optional[str] = Query(None, description="Category or alias (tech, biz, sci...)"),
    page: int = Query(1, ge=1, le=100_000),
    nocache: Optional[str] = Query(None, description="1 to bypass cache reads"),
    debug: Optional[str] = Query(None, description="1 to include cache/provider details"),
    services: Services = Depends(get_services),
):
    """Top headlines for a country and category."""
    resolved_country = resolve_country(country)
    resolved_category = resolve_category(category)
    key_params = {"country": resolved_country, "category": resolved_category, "page": page}
    options = {**key_params, "pin_q": False}
    return await serve_articles(
        request,
        services,
        RouteCategory.TOP,
        "top",
        key_params,
        options,
        nocache=_flag(nocache),
        debug=_flag(debug),
    )


@app.get("/api/search")
async def search_articles(
    request: Request,
    q: Optional[str] = Query(None, description="Search query (2-200 characters)"),
    country: Optional[str] = Query(None),
    domains: Optional[str] = Query(None, description="Comma-separated domain filter"),
    sources: Optional[str] = Query(None, description="Comma-separated source filter"),
    page: int = Query(1, ge=1, le=100_000),
    nocache: Optional[str] = Query(None),
    debug: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """Full-text article search."""
    query = (q or "").strip()
    if not query:
        return JSONResponse({"items": []})
    if len(query) < 2 or len(query) > 200:
        return JSONResponse({"error": "Invalid query length"}, status_code=400)

    key_params = {
        "q": query,
        "country": resolve_country(country),
        "domains": split_csv(domains),
        "sources": split_csv(sources),
        "page": page,
    }
    # A search without its query is a different search
    options = {**key_params, "pin_q": True}
    return await serve_articles(
        request,
        services,
        RouteCategory.SEARCH,
        "search",
        key_params,
        options,
        nocache=_flag(nocache),
        debug=_flag(debug),
    )


# ===== OPERATIONS =====

@app.get("/api/cache-metrics")
async def cache_metrics(request: Request, services: Services = Depends(get_services)):
    """Cache, freshness-upkeep and upstream-gate metrics."""
    if not _metrics_authorized(request, services):
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    metrics = services.metrics()
    services.prefetcher.schedule_tick()
    return JSONResponse(metrics, headers={"Cache-Control": "no-store"})


@app.get("/api/stats")
async def provider_stats(request: Request, services: Services = Depends(get_services)):
    """Per-provider outcome counters plus cache stats."""
    if not _metrics_authorized(request, services):
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    return JSONResponse(
        {**services.provider_stats.get_stats(), "cache": services.store.cache_stats()},
        headers={"Cache-Control": "no-store"},
    )


@app.get("/api/purge", response_model=PurgeResponse)
async def purge_cache(
    request: Request,
    key: Optional[str] = Query(None),
    prefix: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """Drop cache entries by exact key or key prefix (key wins)."""
    token = services.settings.admin_purge_token
    if not token or request.headers.get("x-admin-token") != token:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    if not key and not prefix:
        return JSONResponse({"error": "Provide ?key or ?prefix"}, status_code=400)
    if key:
        purged = 1 if services.cache.invalidate(key) else 0
        logger.info(f"Purged key {key} ({purged})")
        return {"purged": purged, "mode": "key"}
    count = services.cache.invalidate_prefix(prefix)
    logger.info(f"Purged prefix {prefix} ({count})")
    return {"purged": count, "mode": "prefix"}
