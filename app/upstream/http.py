"""
Upstream JSON fetch.

requests is blocking, so calls run in a worker thread and are bounded by a
wall-clock timeout on the event loop side as well as requests' own timeout.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from app.upstream.errors import UpstreamError

logger = logging.getLogger("upstream.http")

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "news-edge-api/1.0",
}


def _get_json_sync(url: str, headers: Dict[str, str], timeout: float) -> Any:
    try:
        response = requests.get(url, headers=headers, timeout=timeout)
    except requests.Timeout as e:
        raise UpstreamError("Upstream timeout", status=504) from e
    except requests.RequestException as e:
        raise UpstreamError(f"Upstream request failed: {e}") from e

    if not response.ok:
        body = (response.text or "")[:200]
        raise UpstreamError(
            f"Upstream {response.status_code}: {body}",
            status=response.status_code,
            retry_after=response.headers.get("Retry-After"),
        )
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError("Upstream returned invalid JSON", status=502) from e


async def upstream_json(
    url: str,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 8.0,
) -> Any:
    """GET `url` and decode JSON, raising UpstreamError on any failure."""
    merged = {**DEFAULT_HEADERS, **(headers or {})}
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(_get_json_sync, url, merged, timeout),
            timeout=timeout + 0.5,
        )
    except asyncio.TimeoutError as e:
        logger.warning(f"Upstream timeout after {timeout}s: {_redact(url)}")
        raise UpstreamError("Upstream timeout", status=504) from e


def _redact(url: str) -> str:
    """Drop the query string so API tokens never reach the log."""
    return url.split("?", 1)[0]
