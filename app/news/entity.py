"""
HTTP entity validation: ETag and Last-Modified for article lists.

Tags are derived from the article ids and publish timestamps only, so two
fetches with the same stories produce the same tag and clients get a 304.
Weak mode (default) hashes count, newest timestamp and ids. Strong mode
also hashes titles, and optionally summaries.
"""
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import formatdate, parsedate_to_datetime
from typing import Any, Dict, List, Mapping, Optional

FNV_OFFSET = 0x811C9DC5
FNV_PRIME = 0x01000193


def fnv1a(text: str) -> str:
    """32-bit FNV-1a as 8 hex digits."""
    h = FNV_OFFSET
    for ch in text:
        h ^= ord(ch)
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return f"{h:08x}"


@dataclass
class EntityMeta:
    etag: str
    last_modified: str


@dataclass
class EntityOptions:
    mode: str = "weak"
    sort: Optional[bool] = None
    id_sample: int = 0
    include_summary: bool = False

    @property
    def strong(self) -> bool:
        return self.mode.lower() == "strong"

    @property
    def sorted(self) -> bool:
        return self.strong if self.sort is None else self.sort

    @classmethod
    def from_settings(cls, settings) -> "EntityOptions":
        return cls(
            mode=settings.etag_mode,
            sort=settings.etag_sort,
            id_sample=settings.etag_id_sample,
            include_summary=settings.etag_strong_include_summary,
        )


def _parse_http_or_iso(value: Any) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _timestamp_ms(value: Any) -> int:
    parsed = _parse_http_or_iso(value)
    return int(parsed.timestamp() * 1000) if parsed else 0


def build_entity_metadata(
    payload: Mapping[str, Any], options: Optional[EntityOptions] = None
) -> EntityMeta:
    options = options or EntityOptions()
    raw_items = payload.get("items")
    items: List[Dict[str, Any]] = list(raw_items) if isinstance(raw_items, list) else []
    if options.sorted:
        items.sort(key=lambda it: str(it.get("id") or ""))
        items.sort(key=lambda it: _timestamp_ms(it.get("publishDate")), reverse=True)
    consider = items[: options.id_sample] if options.id_sample else items

    newest = 0
    parts = []
    for item in consider:
        item_id = str(item.get("id") or "")
        ts = _timestamp_ms(item.get("publishDate"))
        newest = max(newest, ts)
        if options.strong:
            part = f"{item_id}:{ts}:{fnv1a(str(item.get('title') or '')[:160])}"
            if options.include_summary and item.get("summary"):
                part += ":" + fnv1a(str(item["summary"])[:200])
            parts.append(part)
        else:
            parts.append(item_id)

    if options.strong:
        etag = '"' + fnv1a(f"{len(items)}|{newest}|{'|'.join(parts)}") + '"'
    else:
        etag = 'W/"' + fnv1a(f"{len(items)}|{newest}|{','.join(parts)}") + '"'
    last_modified = formatdate(newest / 1000 if newest else time.time(), usegmt=True)
    return EntityMeta(etag=etag, last_modified=last_modified)


def attach_entity_meta(
    payload: Optional[Dict[str, Any]], options: Optional[EntityOptions] = None
) -> Optional[Dict[str, Any]]:
    """Stamp `__etag` / `__lm` into a payload once, so cached copies keep their tag."""
    if not payload or payload.get("__etag"):
        return payload
    meta = build_entity_metadata(payload, options)
    payload["__etag"] = meta.etag
    payload["__lm"] = meta.last_modified
    return payload


def extract_entity_meta(
    payload: Any, options: Optional[EntityOptions] = None
) -> Optional[EntityMeta]:
    if not isinstance(payload, dict):
        return None
    if payload.get("__etag") and payload.get("__lm"):
        return EntityMeta(etag=payload["__etag"], last_modified=payload["__lm"])
    if isinstance(payload.get("items"), list):
        return build_entity_metadata(payload, options)
    return None


def is_not_modified(headers: Mapping[str, str], meta: EntityMeta) -> bool:
    """If-None-Match wins over If-Modified-Since."""
    if_none_match = headers.get("if-none-match")
    if if_none_match:
        tokens = [token.strip() for token in if_none_match.split(",")]
        if meta.etag in tokens:
            return True
    since = _parse_http_or_iso(headers.get("if-modified-since"))
    modified = _parse_http_or_iso(meta.last_modified)
    if since and modified and modified <= since:
        return True
    return False


def entity_headers(meta: EntityMeta) -> Dict[str, str]:
    return {
        "ETag": meta.etag,
        "Last-Modified": meta.last_modified,
        "Vary": "Accept-Encoding",
    }


def strip_entity_meta(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Payload without the internal double-underscore fields."""
    return {k: v for k, v in payload.items() if not k.startswith("__")}
