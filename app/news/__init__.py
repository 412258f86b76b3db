"""
Article shaping: normalization, dedup and entity validation.
"""
from .dedupe import (
    canonicalize_url,
    dedupe,
    dedupe_by_canonical_url,
    dedupe_by_title,
    title_similarity,
)
from .entity import (
    EntityMeta,
    EntityOptions,
    attach_entity_meta,
    build_entity_metadata,
    entity_headers,
    extract_entity_meta,
    fnv1a,
    is_not_modified,
    strip_entity_meta,
)
from .normalize import normalize, normalize_all

__all__ = [
    "canonicalize_url",
    "dedupe",
    "dedupe_by_canonical_url",
    "dedupe_by_title",
    "title_similarity",
    "EntityMeta",
    "EntityOptions",
    "attach_entity_meta",
    "build_entity_metadata",
    "entity_headers",
    "extract_entity_meta",
    "fnv1a",
    "is_not_modified",
    "strip_entity_meta",
    "normalize",
    "normalize_all",
]
