"""
Pydantic schemas for API responses
Articles are serialized with camelCase keys for the client apps
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


# ===== ARTICLE SCHEMAS =====

class Article(BaseModel):
    """Normalized article, independent of the upstream shape"""
    id: str
    title: str = "Untitled"
    summary: str = ""
    content: str = ""
    author: str = "Unknown"
    publish_date: str = ""
    category: str = "general"
    image_url: str = ""
    has_image: bool = False
    safe_image: str = ""
    image_aspect_ratio: Optional[float] = None
    url: str = ""
    link: str = ""
    read_time: str = "3 min read"
    tags: List[str] = []
    is_breaking: bool = False
    likes: int = 0
    shares: int = 0
    source_name: str = ""
    display_source_name: str = ""
    source_domain: str = ""
    source_icon: str = ""
    source_url: str = ""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ArticleList(BaseModel):
    """Payload served by /api/top and /api/search"""
    items: List[Dict[str, Any]]
    stale: Optional[bool] = None
    negative: Optional[bool] = None
    debug: Optional[Dict[str, Any]] = None


# ===== OPERATIONAL SCHEMAS =====

class HealthResponse(BaseModel):
    status: str
    time: str


class VersionResponse(BaseModel):
    name: str
    version: str
    providers: List[str]
    l2_enabled: bool


class PurgeResponse(BaseModel):
    purged: int
    mode: str


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None
    hint: Optional[str] = None
    attempts: Optional[List[str]] = None
    attempts_detail: Optional[List[str]] = None
