from enum import Enum
from pydantic import BaseModel, field_validator
from typing import List, Optional, Literal
from datetime import datetime

class SourceKind(str, Enum):
    FEED = "feed"
    STRUCTURED_API = "structured-api"
    HTML_SCRAPE = "html-scrape"

# names used by older registry rows
KIND_ALIASES = {
    "rss": SourceKind.FEED,
    "atom": SourceKind.FEED,
    "json_api": SourceKind.STRUCTURED_API,
    "json": SourceKind.STRUCTURED_API,
    "html": SourceKind.HTML_SCRAPE,
}

class SourceConfig(BaseModel):
    id: str
    kind: SourceKind
    base_url: str
    enabled: bool = True
    name: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v):
        return str(v) if v is not None else v

    @field_validator("kind", mode="before")
    @classmethod
    def _kind_alias(cls, v):
        if isinstance(v, str):
            key = v.strip().lower()
            return KIND_ALIASES.get(key, key)
        return v

class ArticleOut(BaseModel):
    id: str
    title: str
    url: str
    summary: str
    source_id: Optional[str] = None
    peril: str
    published_at: datetime
    lat: Optional[float] = None
    lng: Optional[float] = None
    location_text: Optional[str] = None

class EventOut(BaseModel):
    id: str
    event_key: str
    canonical_title: str
    peril: str
    location_text: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    last_updated_at: datetime
    articles: List[ArticleOut] = []

class RunResult(BaseModel):
    count: int
    status: Literal["ok", "timeout"] = "ok"
