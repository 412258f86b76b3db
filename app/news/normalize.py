"""
Article normalization.

Upstreams (GNews, RSS bridges, older aggregators) each name the same fields
differently. normalize() maps any of those shapes onto app.schemas.Article.
"""
import re
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlparse

from app.schemas import Article

_TLD_SUFFIX = re.compile(r"\.(com|net|org|pk|co|io|news)(\.[a-z]{2})?$", re.IGNORECASE)
_WORD_SPLIT = re.compile(r"[-_\s]+")


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    """First truthy value among `keys`."""
    for key in keys:
        value = raw.get(key)
        if value:
            return value
    return None


def _nested(raw: Dict[str, Any], outer: str, inner: str) -> Any:
    value = raw.get(outer)
    if isinstance(value, dict):
        return value.get(inner)
    return None


def _hostname(url: str) -> str:
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    return re.sub(r"^www\.", "", host)


def _display_name(source_name: str, source_domain: str) -> str:
    display = source_name
    if source_domain and (not display or display == source_domain):
        parts = source_domain.split(".")
        if len(parts) > 1:
            display = parts[0]
    elif display:
        display = _TLD_SUFFIX.sub("", display)
    return " ".join(w[:1].upper() + w[1:] for w in _WORD_SPLIT.split(display))


def _to_number(value: Any) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


def normalize(raw: Any) -> Optional[Dict[str, Any]]:
    """Map a raw upstream article to the client shape, or None for junk input."""
    if not isinstance(raw, dict) or not raw:
        return None

    source = raw.get("source")
    source_obj_name = source.get("name") if isinstance(source, dict) else None

    article_id = _first(raw, "id", "_id", "guid", "url", "link")
    if not article_id:
        published = _first(raw, "publishedAt", "pubDate") or int(time.time() * 1000)
        article_id = f"{source_obj_name or 'src'}-{published}"

    image_url = str(
        _first(raw, "imageUrl", "urlToImage", "image_url", "image", "main_image", "thumbnail")
        or _nested(raw, "enclosure", "url")
        or ""
    )

    source_url = str(
        _first(raw, "sourceUrl", "link", "url") or _nested(raw, "thread", "url") or ""
    )
    source_domain = _hostname(source_url) if source_url else ""

    source_name = source_obj_name or _first(
        raw,
        "source_name",
        "sourceName",
        "source_id",
        "publisher",
        "site",
        "site_full",
        "domain",
        "rights",
        "newsSite",
    )
    if not source_name and isinstance(source, str):
        source_name = source
    if not source_name and source_domain:
        source_name = source_domain
    source_name = str(source_name or "")

    tags = raw.get("tags")
    article = Article(
        id=str(article_id),
        title=str(_first(raw, "title", "heading") or "Untitled"),
        summary=str(
            _first(
                raw,
                "summary",
                "highlightText",
                "highlightTitle",
                "description",
                "excerpt",
                "contentSnippet",
            )
            or ""
        ),
        content=str(_first(raw, "content", "fullContent", "body", "text") or ""),
        author=str(_first(raw, "author", "creator", "byline") or "Unknown"),
        publish_date=str(_first(raw, "publishDate", "publishedAt", "pubDate") or ""),
        category=str(_first(raw, "category", "section", "topic") or "general"),
        image_url=image_url,
        has_image=bool(image_url),
        safe_image=image_url,
        url=source_url,
        link=source_url,
        tags=[str(t) for t in tags] if isinstance(tags, list) else [],
        is_breaking=bool(raw.get("isBreaking") or raw.get("breaking")),
        likes=_to_number(raw.get("likes")),
        shares=_to_number(raw.get("shares")),
        source_name=source_name,
        display_source_name=_display_name(source_name, source_domain),
        source_domain=source_domain,
        source_icon=(
            f"https://www.google.com/s2/favicons?sz=64&domain={quote(source_domain, safe='')}"
            if source_domain
            else ""
        ),
        source_url=source_url,
    )
    return article.model_dump(by_alias=True)


def normalize_all(raw_items: List[Any]) -> List[Dict[str, Any]]:
    """Normalize a provider result, dropping items that do not parse."""
    out = []
    for raw in raw_items or []:
        item = normalize(raw)
        if item is not None:
            out.append(item)
    return out
