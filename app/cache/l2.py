"""
Optional distributed (L2) cache tier.

The bridge fans reads out to its backends in order and writes to all of them
concurrently. Backend errors are logged and reported as a failed write, never
raised: a broken backend degrades the system to in-process caching, it never
fails a request.
"""
import asyncio
import json
import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests
from redis.asyncio import Redis
from redis.exceptions import RedisError

from .core import Clock, is_negative

logger = logging.getLogger("cache.l2")

MAX_L2_TTL_SECONDS = 86400


def _clamp_ttl(ttl_seconds: Optional[float], low: int, high: int, default: int = 60) -> int:
    ttl = int(ttl_seconds or default)
    return max(low, min(high, ttl))


class L2Backend(ABC):
    """Interface for a distributed cache backend."""

    name: str = "l2"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value or None. Must not raise."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: float) -> bool:
        """Store a value with a TTL; True when the write landed. Must not raise."""

    def available(self) -> bool:
        return True


class MemoryL2Backend(L2Backend):
    """Process-local fallback store with lazy expiry."""

    name = "memory-l2"

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._store: Dict[str, Tuple[Any, float]] = {}

    async def get(self, key: str) -> Optional[Any]:
        item = self._store.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() > expires_at:
            del self._store[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: float) -> bool:
        ttl = _clamp_ttl(ttl_seconds, 1, 3600)
        self._store[key] = (value, self._clock() + ttl)
        return True

    def clear(self) -> None:
        self._store.clear()


class RedisL2Backend(L2Backend):
    """Managed key-value store reached through redis.asyncio."""

    name = "redis-kv"

    def __init__(self, client: Optional[Redis]):
        self._client = client

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisL2Backend":
        client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
        )
        return cls(client)

    def available(self) -> bool:
        return self._client is not None

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(key)
        except RedisError as e:
            logger.warning(f"L2 redis get failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return raw

    async def set(self, key: str, value: Any, ttl_seconds: float) -> bool:
        try:
            await self._client.set(
                key,
                json.dumps(value),
                ex=_clamp_ttl(ttl_seconds, 30, 3600),
            )
        except (RedisError, TypeError, ValueError) as e:
            logger.warning(f"L2 redis set failed for {key}: {e}")
            return False
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class RestKVL2Backend(L2Backend):
    """
    REST-accessed key-value store (Upstash-compatible API).

    Requests run in a worker thread so the event loop never blocks.
    """

    name = "rest-kv"

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 3.0,
        session: Optional[requests.Session] = None,
    ):
        self._base = (base_url or "").rstrip("/")
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()

    def available(self) -> bool:
        return bool(self._base and self._token)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self._token}"}

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: Any, ttl_seconds: float) -> bool:
        return await asyncio.to_thread(self._set_sync, key, value, ttl_seconds)

    def _get_sync(self, key: str) -> Optional[Any]:
        try:
            response = self._session.get(
                f"{self._base}/get/{quote(key, safe='')}",
                headers=self._headers(),
                timeout=self._timeout,
            )
            if not response.ok:
                return None
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"L2 rest get failed for {key}: {e}")
            return None

        if not isinstance(body, dict) or body.get("result") is None:
            return None
        result = body["result"]
        try:
            return json.loads(result)
        except (TypeError, ValueError):
            return result

    def _set_sync(self, key: str, value: Any, ttl_seconds: float) -> bool:
        try:
            payload = value if isinstance(value, str) else json.dumps(value)
            response = self._session.post(
                f"{self._base}/set/{quote(key, safe='')}/{quote(payload, safe='')}",
                params={"EX": _clamp_ttl(ttl_seconds, 30, MAX_L2_TTL_SECONDS)},
                headers=self._headers(),
                timeout=self._timeout,
            )
        except (requests.RequestException, TypeError, ValueError) as e:
            logger.warning(f"L2 rest set failed for {key}: {e}")
            return False
        if not response.ok:
            logger.warning(f"L2 rest set failed for {key}: HTTP {response.status_code}")
            return False
        return True


class L2Bridge:
    """
    Ordered set of L2 backends with a shared key prefix and TTL multiplier.

    Backends are built lazily on first use (or passed in explicitly).
    """

    def __init__(
        self,
        enabled: bool = False,
        key_prefix: str = "",
        ttl_mult: int = 10,
        backends: Optional[List[L2Backend]] = None,
        redis_url: Optional[str] = None,
        disable_kv: bool = False,
        rest_url: Optional[str] = None,
        rest_token: Optional[str] = None,
        clock: Clock = time.time,
    ):
        self.enabled = enabled
        self.key_prefix = key_prefix or ""
        self.ttl_mult = max(1, min(10, int(ttl_mult)))
        self._backends = backends
        self._redis_url = redis_url
        self._disable_kv = disable_kv
        self._rest_url = rest_url
        self._rest_token = rest_token
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, clock: Clock = time.time) -> "L2Bridge":
        return cls(
            enabled=settings.enable_l2_cache,
            key_prefix=settings.cache_key_prefix,
            ttl_mult=settings.l2_ttl_mult,
            redis_url=settings.redis_url,
            disable_kv=settings.l2_disable_kv,
            rest_url=settings.upstash_redis_rest_url,
            rest_token=settings.upstash_redis_rest_token,
            clock=clock,
        )

    def _apply_prefix(self, key: str) -> str:
        return f"{self.key_prefix}{key}" if self.key_prefix else key

    def _init_backends(self) -> List[L2Backend]:
        if self._backends is not None:
            return self._backends

        backends: List[L2Backend] = [MemoryL2Backend(clock=self._clock)]
        if self._redis_url and not self._disable_kv:
            try:
                backends.append(RedisL2Backend.from_url(self._redis_url))
            except (RedisError, ValueError) as e:
                logger.warning(f"L2 redis backend unavailable: {e}")
        if self._rest_url and self._rest_token:
            backends.append(RestKVL2Backend(self._rest_url, self._rest_token))

        self._backends = backends
        names = [b.name for b in backends]
        logger.info(json.dumps({
            "msg": "l2-init",
            "providers": names,
            "enabled": self.enabled,
            "ttlMult": self.ttl_mult,
            "keyPrefix": self.key_prefix or None,
        }))
        if names == [MemoryL2Backend.name]:
            logger.warning(json.dumps({
                "msg": "l2-degraded",
                "reason": "Only memory-l2 provider active; no distributed cache backing",
            }))
        return backends

    def effective_ttl(self, ttl_seconds: float) -> int:
        ttl = math.floor(ttl_seconds * self.ttl_mult)
        return max(1, min(MAX_L2_TTL_SECONDS, ttl))

    async def l2_get(self, key: str) -> Optional[Any]:
        """First non-null hit across available backends, else None."""
        if not self.enabled:
            return None
        prefixed = self._apply_prefix(key)
        for backend in self._init_backends():
            if not backend.available():
                continue
            try:
                value = await backend.get(prefixed)
            except Exception as e:
                logger.warning(f"L2 {backend.name} get raised for {key}: {e}")
                continue
            if value is not None:
                return value
        return None

    async def l2_set(self, key: str, value: Any, ttl_seconds: float) -> Optional[int]:
        """
        Write to every available backend concurrently.

        Returns:
            How many backends accepted the write, or None when nothing was
            attempted (disabled, negative payload or no available backend)
        """
        if not self.enabled or is_negative(value):
            return None
        backends = [b for b in self._init_backends() if b.available()]
        if not backends:
            return None
        prefixed = self._apply_prefix(key)
        ttl = self.effective_ttl(ttl_seconds)
        results = await asyncio.gather(
            *(b.set(prefixed, value, ttl) for b in backends),
            return_exceptions=True,
        )
        written = 0
        for backend, result in zip(backends, results):
            if isinstance(result, Exception):
                logger.warning(f"L2 {backend.name} set raised for {key}: {result}")
            elif result:
                written += 1
        return written

    def provider_names(self) -> List[str]:
        return [b.name for b in self._backends or []]

    def get_stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "providers": self.provider_names(),
            "ttl_mult": self.ttl_mult,
            "key_prefix": self.key_prefix or None,
        }

    async def close(self) -> None:
        for backend in self._backends or []:
            if isinstance(backend, RedisL2Backend):
                await backend.close()

    def reset(self) -> None:
        """Empty process-local backends (test isolation)."""
        for backend in self._backends or []:
            if isinstance(backend, MemoryL2Backend):
                backend.clear()
