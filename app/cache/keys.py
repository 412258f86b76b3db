"""
Canonical cache key construction.

Semantically identical requests must collide on one key regardless of
parameter order, casing, surrounding whitespace or duplicate list values.
"""
from typing import Any, Dict, List, Optional

KEY_VERSION = "v1"


def _canonical_list(values: List[Any]) -> Optional[List[str]]:
    cleaned = []
    for value in values:
        if value is None:
            continue
        text = str(value).strip().lower()
        if text:
            cleaned.append(text)
    if not cleaned:
        return None
    return sorted(set(cleaned))


def canonicalize_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Normalize request parameters into a deterministic mapping.

    - keys sorted, None values dropped
    - strings trimmed and case-folded, empty strings dropped
    - lists case-folded, sorted and de-duplicated, empty lists dropped
    - numbers and booleans kept as-is
    - nested mappings canonicalized recursively
    """
    out: Dict[str, Any] = {}
    for key in sorted((params or {}).keys()):
        value = params[key]
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            canonical = _canonical_list(list(value))
            if canonical:
                out[key] = canonical
        elif isinstance(value, str):
            trimmed = value.strip()
            if trimmed:
                out[key] = trimmed.lower()
        elif isinstance(value, (bool, int, float)):
            out[key] = value
        elif isinstance(value, dict):
            nested = canonicalize_params(value)
            if nested:
                out[key] = nested
    return out


def _encode_value(value: Any) -> str:
    if isinstance(value, list):
        return ",".join(value)
    if isinstance(value, dict):
        return "&".join(f"{k}={_encode_value(v)}" for k, v in value.items())
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_cache_key(prefix: str, params: Optional[Dict[str, Any]] = None) -> str:
    """
    Build a versioned cache key from a route name and its parameters.

    Example:
        build_cache_key("search", {"q": " Hello ", "country": "US"})
        -> "v1|search|country=us|q=hello"
    """
    parts = [KEY_VERSION, prefix]
    for key, value in canonicalize_params(params).items():
        parts.append(f"{key}={_encode_value(value)}")
    return "|".join(parts)


def short_hash_key(long_key: str) -> str:
    """Compact, stable alias for a long key (31-multiplier 32-bit hash, base36)."""
    h = 0
    for ch in long_key:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return "k" + _base36(h)


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))
