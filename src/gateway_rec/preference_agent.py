"""
Per-user preference agent.

Wraps the pure learning functions in ``profile`` with a preference store,
an embedding service and a short-lived cached copy of the profile. The
collaborator calls are the only suspension points; the profile is only
written back once the content embedding is in hand.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

import numpy as np

from .collaborators import EmbeddingService, PreferenceStore
from .config import (
    DEFAULT_QUERY_WEIGHT,
    EXPLAIN_ACCLAIMED_RATING,
    EXPLAIN_GENRE_AFFINITY,
    EXPLAIN_HIGH_MATCH,
    EXPLAIN_MEDIUM_MATCH,
    GENRE_AFFINITY_DEFAULT,
    GENRE_BOOST_FACTOR,
    NEUTRAL_SCORE,
    PREFERENCE_CACHE_TTL,
)
from .models import MediaContent, WatchEvent
from .profile import (
    PreferenceProfile,
    calculate_learning_rate,
    calculate_signal_strength,
    combine_query_with_preferences,
    create_initial_preferences,
    export_preferences,
    update_confidence,
    update_genre_affinities,
    update_preference_vector,
    update_temporal_patterns,
)
from .similarity import as_vector, cosine_similarity

logger = logging.getLogger(__name__)


class PreferenceAgent:
    """Learns, scores and explains for a single user."""

    def __init__(
        self,
        user_id: str,
        store: PreferenceStore,
        embedding_service: EmbeddingService,
        ttl_seconds: float = PREFERENCE_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.user_id = user_id
        self.store = store
        self.embedding_service = embedding_service
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cached: PreferenceProfile | None = None
        self._cached_at = 0.0

    def _remember(self, profile: PreferenceProfile) -> None:
        self._cached = profile
        self._cached_at = self._clock()

    async def get_preferences(self) -> PreferenceProfile:
        """Cached profile if still fresh, else the stored one, else a cold-start profile."""
        if self._cached is not None and self._clock() - self._cached_at < self.ttl_seconds:
            return self._cached

        profile = await self.store.get(self.user_id)
        if profile is not None:
            self._remember(profile)
            return profile
        return create_initial_preferences()

    async def learn_from_watch_event(self, event: WatchEvent, content: MediaContent) -> PreferenceProfile:
        current = await self.get_preferences()

        embedding = await self.embedding_service.generate(content)
        if embedding is None:
            logger.warning("No embedding for content %s; preferences for %s unchanged", content.id, self.user_id)
            return current

        signal = calculate_signal_strength(event)
        rate = calculate_learning_rate(current.confidence, signal)

        updated = PreferenceProfile(
            vector=update_preference_vector(current.vector, embedding, rate),
            confidence=update_confidence(current.confidence, signal),
            genre_affinities=update_genre_affinities(current.genre_affinities, content.genre_ids, signal),
            mood_mappings=list(current.mood_mappings),
            temporal_patterns=update_temporal_patterns(current.temporal_patterns, event, content.genre_ids),
            updated_at=datetime.now(),
        )

        await self.store.put(self.user_id, updated)
        self._remember(updated)
        logger.debug(
            "Learned from %s for %s (signal=%.2f, rate=%.2f, confidence=%.2f)",
            content.id, self.user_id, signal, rate, updated.confidence,
        )
        return updated

    async def score_content(self, content: MediaContent) -> float:
        """
        Taste match for ``content`` in [0, 1].

        Cosine similarity to the preference vector plus a small boost (or
        penalty) for every known genre affinity away from neutral. Users
        without a vector and content without an embedding score 0.5.
        """
        profile = await self.get_preferences()
        if profile.vector is None:
            return NEUTRAL_SCORE

        embedding = await self.embedding_service.generate(content)
        if embedding is None:
            return NEUTRAL_SCORE

        pref, emb = as_vector(profile.vector), as_vector(embedding)
        if not np.any(pref) or not np.any(emb):
            return NEUTRAL_SCORE

        similarity = cosine_similarity(pref, emb)
        boost = sum(
            (profile.genre_affinities[g] - GENRE_AFFINITY_DEFAULT) * GENRE_BOOST_FACTOR
            for g in content.genre_ids
            if g in profile.genre_affinities
        )
        return min(max(similarity + boost, 0.0), 1.0)

    async def get_personalized_query_embedding(
        self, query: str, query_weight: float = DEFAULT_QUERY_WEIGHT
    ) -> np.ndarray | None:
        profile = await self.get_preferences()
        query_embedding = await self.embedding_service.generate(query)
        if query_embedding is None:
            return None
        return combine_query_with_preferences(query_embedding, profile, query_weight)

    async def explain_recommendation(self, content: MediaContent) -> str:
        profile = await self.get_preferences()
        score = await self.score_content(content)
        reasons = []

        if any(profile.genre_affinities.get(g, 0.0) > EXPLAIN_GENRE_AFFINITY for g in content.genre_ids):
            reasons.append("matches your genre preferences")

        if score > EXPLAIN_HIGH_MATCH:
            reasons.append("highly matches your taste")
        elif score > EXPLAIN_MEDIUM_MATCH:
            reasons.append("aligns with your viewing history")

        if content.vote_average is not None and content.vote_average > EXPLAIN_ACCLAIMED_RATING:
            reasons.append("critically acclaimed")

        if not reasons:
            return "You might enjoy this based on your interests"
        text = ", ".join(reasons)
        return text[0].upper() + text[1:]

    async def get_top_genres(self, limit: int = 5) -> list[dict]:
        profile = await self.get_preferences()
        return [{"genre_id": g, "affinity": a} for g, a in profile.top_genres(limit)]

    async def export_preferences(self) -> dict:
        """Portable copy of the profile; the vector is never included."""
        profile = await self.get_preferences()
        exported = export_preferences(profile)
        exported["user_id"] = self.user_id
        exported["top_genres"] = await self.get_top_genres(10)
        exported["exported_at"] = datetime.now().isoformat()
        return exported

    async def delete_preferences(self) -> None:
        await self.store.delete(self.user_id)
        self._cached = None
        self._cached_at = 0.0
        logger.info("Deleted preferences for user %s", self.user_id)
