"""Content, watch-event and query inputs shared across the scoring core."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

CONTENT_TYPES = ("movie", "tv", "documentary", "other")


def load_json(val):
    """Safely load a JSON list field; lists pass through unchanged."""
    if not val:
        return []
    if isinstance(val, (list, tuple)):
        return list(val)
    try:
        return json.loads(val)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse JSON '{str(val)[:50]}...': {e}")
        return []


def _pick(payload: dict, *keys, default=None):
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


@dataclass
class MediaContent:
    """A movie, show or other catalog item as seen by the scoring core."""

    id: str
    title: str
    overview: str = ""
    genres: list[str] = field(default_factory=list)
    genre_ids: list[int] = field(default_factory=list)
    content_type: str = "movie"
    popularity: float | None = None
    vote_average: float | None = None
    release_date: str | None = None
    runtime: float | None = None  # minutes
    keywords: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def embedding_text(self) -> str:
        parts = [self.title, self.overview, " ".join(self.keywords)]
        return " ".join(p for p in parts if p)

    @classmethod
    def from_dict(cls, payload: dict) -> "MediaContent":
        """Build from a catalog row; accepts camelCase or snake_case keys."""
        content_type = str(_pick(payload, "content_type", "contentType", "mediaType", "media_type", default="movie"))
        return cls(
            id=str(_pick(payload, "id", "slug", default="")),
            title=_pick(payload, "title", "name", default=""),
            overview=_pick(payload, "overview", default=""),
            genres=[str(g) for g in load_json(_pick(payload, "genres", default=[]))],
            genre_ids=[int(g) for g in load_json(_pick(payload, "genre_ids", "genreIds", default=[]))],
            content_type=content_type.lower(),
            popularity=_pick(payload, "popularity"),
            vote_average=_pick(payload, "vote_average", "voteAverage", "rating"),
            release_date=_pick(payload, "release_date", "releaseDate"),
            runtime=_pick(payload, "runtime"),
            keywords=[str(k) for k in load_json(_pick(payload, "keywords", default=[]))],
            metadata=dict(_pick(payload, "metadata", default={})),
        )


@dataclass
class WatchContext:
    day_of_week: int = 0   # 0-6
    hour_of_day: int = 0   # 0-23
    device: str | None = None
    is_group_watch: bool = False
    group_id: str | None = None


@dataclass
class WatchEvent:
    """One viewing of one piece of content, the raw learning signal."""

    user_id: str
    content_id: str
    duration: float          # seconds watched
    total_duration: float    # seconds of content
    completion_rate: float   # 0-1
    rating: float | None = None  # 0-10
    is_rewatch: bool = False
    context: WatchContext = field(default_factory=WatchContext)
    platform_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def duration_ratio(self) -> float:
        if self.total_duration <= 0:
            return 0.0
        return min(self.duration / self.total_duration, 1.0)


@dataclass
class RecommendationContext:
    mood: str | None = None
    available_time: float | None = None  # minutes
    group_members: list[str] = field(default_factory=list)
    occasion: str | None = None


@dataclass
class TastePreferences:
    """Declared tastes used to build an onboarding preference vector."""

    favorite_genres: list[str] = field(default_factory=list)
    preferred_content_types: list[str] = field(default_factory=list)
    rating_threshold: float | None = None
    recency_preference: float | None = None  # 0-1, higher = newer
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryState:
    """Structured browsing state (filters) to embed alongside content."""

    genres: list[str] = field(default_factory=list)
    content_type: str | None = None
    min_rating: float | None = None
    max_age: float | None = None  # years
    metadata: dict[str, Any] = field(default_factory=dict)
