"""Duplicate-article removal by URL and by title similarity."""
import re
from typing import Any, Dict, List, Set
from urllib.parse import urlparse

_NON_WORD = re.compile(r"[^a-z0-9\s]+")
_NEWS_ID_PATH = re.compile(r"(/news/)(\d+)(?:/.*)?$", re.IGNORECASE)


def _url_of(item: Dict[str, Any]) -> str:
    return str(item.get("url") or item.get("link") or item.get("sourceUrl") or "")


def _key_of(item: Dict[str, Any]) -> str:
    return (_url_of(item) or str(item.get("id") or "")).lower()


def _title_tokens(title: str) -> Set[str]:
    words = _NON_WORD.sub(" ", (title or "").lower()).split()
    return {w for w in words if len(w) > 2}


def title_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the words longer than two characters."""
    left, right = _title_tokens(a), _title_tokens(b)
    if not left and not right:
        return 1.0
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def dedupe_by_title(items: List[Dict[str, Any]], threshold: float = 0.9) -> List[Dict[str, Any]]:
    seen: Set[str] = set()
    kept: List[Dict[str, Any]] = []
    for item in items:
        key = _key_of(item)
        if key and key in seen:
            continue
        title = str(item.get("title") or "")
        if title and any(
            title_similarity(title, str(existing.get("title") or "")) >= threshold
            for existing in kept
        ):
            continue
        if key:
            seen.add(key)
        kept.append(item)
    return kept


def canonicalize_url(raw: str) -> str:
    """
    host + path with www, query, fragment and trailing slash dropped.

    Slugged article paths collapse onto their numeric id:
    /news/1234/some-title -> /news/1234
    """
    s = (raw or "").strip()
    if not s:
        return ""
    parsed = urlparse(s)
    if not parsed.scheme or not parsed.netloc:
        return s.split("#")[0].split("?")[0].lower()
    host = re.sub(r"^www\.", "", parsed.hostname or "", flags=re.IGNORECASE).lower()
    path = _NEWS_ID_PATH.sub(lambda m: f"{m.group(1)}{m.group(2)}", parsed.path or "/")
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return f"{host}{path}"


def dedupe_by_canonical_url(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the first item per canonical URL (id when there is no URL)."""
    seen: Set[str] = set()
    kept: List[Dict[str, Any]] = []
    for item in items:
        key = canonicalize_url(_url_of(item)) or str(item.get("id") or "").lower()
        if key and key in seen:
            continue
        if key:
            seen.add(key)
        kept.append(item)
    return kept


def dedupe(items: List[Dict[str, Any]], title_threshold: float = 0.9) -> List[Dict[str, Any]]:
    return dedupe_by_title(dedupe_by_canonical_url(items), title_threshold)
