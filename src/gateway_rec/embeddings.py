"""
Deterministic feature embeddings for content, taste preferences and queries.

Every vector is the L2-normalized concatenation of four weighted
sub-vectors: genre, content type, metadata and hashed keywords. Results
are memoized in an LRUCache under keys namespaced by the configuration
fingerprint, so two generators with different layouts never share entries.
"""

from __future__ import annotations

import json
import logging
import math
import re
from datetime import datetime
from typing import Callable, Iterable

import numpy as np

from .cache import CacheStats, LRUCache
from .embedding_config import DEFAULT_GENRE_KEY, EmbeddingConfig
from .models import MediaContent, QueryState, TastePreferences
from .similarity import combine_weighted, l2_normalize

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]", re.ASCII)
_DAYS_PER_YEAR = 365.0


def hash_token(token: str) -> int:
    """
    31-based rolling hash over UTF-16 code units, wrapped to signed 32 bits,
    then made non-negative.
    """
    units = token.encode("utf-16-le")
    h = 0
    for i in range(0, len(units), 2):
        h = (h * 31 + int.from_bytes(units[i:i + 2], "little")) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def tokenize(text: str, min_length: int = 4) -> list[str]:
    if not text:
        return []
    cleaned = _PUNCTUATION.sub(" ", text.lower())
    return [w for w in cleaned.split() if len(w) >= min_length]


def _canonical_key(payload: dict) -> str:
    return json.dumps(payload, sort_keys=True, default=str)


class FeatureEmbeddingGenerator:
    """Builds fixed-length feature vectors and caches them."""

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        cache: LRUCache | None = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or EmbeddingConfig()
        self.cache = cache if cache is not None else LRUCache()
        self._now = now
        self._prefix = self.config.fingerprint

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    def _key(self, kind: str, ident: str) -> str:
        return f"{self._prefix}:{kind}:{ident}"

    # Sub-vectors -----------------------------------------------------------
    def genre_vector(self, genres: Iterable[str]) -> np.ndarray:
        """Average of the table vectors for ``genres``; unknown names use the default."""
        table = self.config.genre_vectors
        genres = [g for g in (genres or []) if g is not None]
        if not genres:
            return np.array(table[DEFAULT_GENRE_KEY], dtype=np.float64)

        rows = [table.get(str(g).lower().strip(), table[DEFAULT_GENRE_KEY]) for g in genres]
        return np.asarray(rows, dtype=np.float64).mean(axis=0)

    def type_vector(self, content_type: str | None) -> np.ndarray:
        vec = np.zeros(self.config.type_dims)
        kind = (content_type or "").lower()
        if kind == "movie":
            vec[0], vec[1] = 1.0, 0.8
        elif kind == "tv":
            vec[2], vec[3] = 1.0, 0.8
        elif kind == "documentary":
            vec[4], vec[5] = 1.0, 0.8
        else:
            vec[6], vec[7] = 1.0, 0.5
        return vec

    def recency(self, release_date: str | None) -> float:
        cfg = self.config
        if not release_date:
            return cfg.neutral_recency
        try:
            released = datetime.fromisoformat(str(release_date)[:10])
        except ValueError:
            logger.debug("Unparseable release date %r, using neutral recency", release_date)
            return cfg.neutral_recency
        age_years = (self._now() - released).total_seconds() / 86400.0 / _DAYS_PER_YEAR
        return max(0.0, 1.0 - age_years / cfg.recency_horizon_years)

    def metadata_vector(self, content: MediaContent) -> np.ndarray:
        cfg = self.config
        vec = np.zeros(cfg.metadata_dims)

        popularity = content.popularity if content.popularity is not None else 0.0
        vec[0] = min(1.0, popularity / cfg.popularity_scale)
        vec[1] = math.sqrt(max(vec[0], 0.0))

        rating = content.vote_average if content.vote_average is not None else cfg.default_rating
        vec[2] = min(1.0, rating / cfg.rating_scale)
        vec[3] = max(vec[2], 0.0) ** cfg.rating_emphasis

        recency = self.recency(content.release_date)
        vec[4] = recency
        vec[5] = recency ** cfg.recency_power

        runtime = content.runtime if content.runtime is not None else 0.0
        duration = min(1.0, runtime / cfg.max_runtime_minutes)
        vec[6] = duration
        vec[7] = math.log1p(duration) / math.log1p(1.0)
        return vec

    def keyword_vector(self, text: str | None) -> np.ndarray:
        """Token counts hashed into buckets, divided by the token count."""
        buckets = self.config.keyword_dims
        vec = np.zeros(buckets)
        tokens = tokenize(text or "", self.config.min_token_length)
        if not tokens:
            return vec
        for token in tokens:
            vec[hash_token(token) % buckets] += 1.0
        return vec / len(tokens)

    def _compose(self, genre, type_, metadata, keywords) -> np.ndarray:
        w = self.config.weights
        vec = l2_normalize(
            np.concatenate([
                genre * w.genre,
                type_ * w.type,
                metadata * w.metadata,
                keywords * w.keywords,
            ])
        )
        # Cached and shared between callers
        vec.flags.writeable = False
        return vec

    def _neutral_type(self) -> np.ndarray:
        return np.full(self.config.type_dims, self.config.neutral_fill)

    # Public embeddings -------------------------------------------------------
    def embed_content(self, content: MediaContent) -> np.ndarray:
        def build():
            text = " ".join(p for p in [content.overview, " ".join(content.keywords)] if p)
            return self._compose(
                self.genre_vector(content.genres),
                self.type_vector(content.content_type),
                self.metadata_vector(content),
                self.keyword_vector(text),
            )

        return self.cache.get_or_compute(self._key("content", content.id), build)

    def embed_preferences(self, prefs: TastePreferences) -> np.ndarray:
        payload = {
            "genres": list(prefs.favorite_genres),
            "types": list(prefs.preferred_content_types),
            "rating_threshold": prefs.rating_threshold,
            "recency_preference": prefs.recency_preference,
        }

        def build():
            cfg = self.config
            types = prefs.preferred_content_types
            if types:
                type_vec = combine_weighted([self.type_vector(t) for t in types], [1.0] * len(types))
            else:
                type_vec = self._neutral_type()

            meta = np.zeros(cfg.metadata_dims)
            meta[0] = 0.7
            threshold = prefs.rating_threshold if prefs.rating_threshold is not None else 7.0
            meta[2] = threshold / cfg.rating_scale
            meta[4] = prefs.recency_preference if prefs.recency_preference is not None else cfg.neutral_recency
            meta[6] = 0.5

            return self._compose(
                self.genre_vector(prefs.favorite_genres),
                type_vec,
                meta,
                np.zeros(cfg.keyword_dims),
            )

        return self.cache.get_or_compute(self._key("prefs", _canonical_key(payload)), build)

    def embed_query_state(self, state: QueryState) -> np.ndarray:
        payload = {
            "genres": list(state.genres),
            "type": state.content_type,
            "min_rating": state.min_rating,
            "max_age": state.max_age,
        }

        def build():
            cfg = self.config
            type_vec = self.type_vector(state.content_type) if state.content_type else self._neutral_type()

            meta = np.zeros(cfg.metadata_dims)
            meta[0] = 0.5
            meta[2] = (state.min_rating or 0.0) / cfg.rating_scale
            if state.max_age:
                meta[4] = max(0.0, 1.0 - state.max_age / cfg.recency_horizon_years)
            else:
                meta[4] = cfg.neutral_recency
            meta[6] = 0.5

            return self._compose(
                self.genre_vector(state.genres),
                type_vec,
                meta,
                np.zeros(cfg.keyword_dims),
            )

        return self.cache.get_or_compute(self._key("state", _canonical_key(payload)), build)

    def embed_text(self, text: str) -> np.ndarray:
        """
        Embed a free-text query.

        Genre names mentioned in the text pick genre vectors; type and
        metadata stay neutral and the keyword buckets come from the text.
        """
        def build():
            cfg = self.config
            lowered = f" {_PUNCTUATION.sub(' ', (text or '').lower())} "
            mentioned = [
                g for g in cfg.genre_vectors
                if g != DEFAULT_GENRE_KEY and f" {g} " in lowered
            ]
            return self._compose(
                self.genre_vector(mentioned),
                self._neutral_type(),
                np.full(cfg.metadata_dims, cfg.neutral_fill),
                self.keyword_vector(text),
            )

        return self.cache.get_or_compute(self._key("text", text or ""), build)

    # Cache pass-throughs -------------------------------------------------
    def cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def cleanup_cache(self, max_age_ms: float | None = None) -> int:
        return self.cache.cleanup(max_age_ms)
