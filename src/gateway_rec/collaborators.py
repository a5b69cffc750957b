"""
Narrow interfaces to the services the scoring core depends on.

Agents and the consensus engine receive these at construction. The
in-memory implementations back the CLI and the test-suite.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, Protocol, Union

import numpy as np

from .embeddings import FeatureEmbeddingGenerator
from .models import MediaContent
from .profile import PreferenceProfile
from .similarity import batch_cosine

logger = logging.getLogger(__name__)

Embeddable = Union[str, MediaContent]


class EmbeddingService(Protocol):
    async def generate(self, item: Embeddable) -> np.ndarray | None: ...


class PreferenceStore(Protocol):
    async def get(self, user_id: str) -> PreferenceProfile | None: ...

    async def put(self, user_id: str, profile: PreferenceProfile) -> None: ...

    async def delete(self, user_id: str) -> None: ...

    async def list_users(self) -> list[str]: ...


class SocialGraphStore(Protocol):
    def record_connection(self, user_a: str, user_b: str) -> None: ...


class CandidateSource(Protocol):
    async def search_by_embedding(
        self, vector: np.ndarray, limit: int, threshold: float
    ) -> list[tuple[MediaContent, float]]: ...


class FeatureEmbeddingService:
    """EmbeddingService backed by the deterministic feature generator."""

    def __init__(self, generator: FeatureEmbeddingGenerator | None = None):
        self.generator = generator or FeatureEmbeddingGenerator()

    async def generate(self, item: Embeddable) -> np.ndarray | None:
        if isinstance(item, MediaContent):
            return self.generator.embed_content(item)
        if isinstance(item, str):
            return self.generator.embed_text(item)
        logger.warning("Cannot embed item of type %s", type(item).__name__)
        return None


class InMemoryPreferenceStore:
    def __init__(self, profiles: dict[str, PreferenceProfile] | None = None):
        self._profiles: dict[str, PreferenceProfile] = dict(profiles or {})

    async def get(self, user_id: str) -> PreferenceProfile | None:
        return self._profiles.get(user_id)

    async def put(self, user_id: str, profile: PreferenceProfile) -> None:
        self._profiles[user_id] = profile

    async def delete(self, user_id: str) -> None:
        self._profiles.pop(user_id, None)

    async def list_users(self) -> list[str]:
        return list(self._profiles)


class InMemorySocialGraph:
    """Symmetric connection strengths; each recorded connection adds 1."""

    def __init__(self):
        self._strengths: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))

    def record_connection(self, user_a: str, user_b: str) -> None:
        if user_a == user_b:
            return
        self._strengths[user_a][user_b] += 1.0
        self._strengths[user_b][user_a] += 1.0

    def strength(self, user_a: str, user_b: str) -> float:
        if user_a not in self._strengths:
            return 0.0
        return self._strengths[user_a].get(user_b, 0.0)

    def connections(self, user_id: str) -> dict[str, float]:
        if user_id not in self._strengths:
            return {}
        return dict(self._strengths[user_id])


class InMemoryCatalog:
    """Brute-force cosine search over a small list of content."""

    def __init__(self, contents: Iterable[MediaContent], generator: FeatureEmbeddingGenerator | None = None):
        self.contents = list(contents)
        self.generator = generator or FeatureEmbeddingGenerator()

    def get(self, content_id: str) -> MediaContent | None:
        for content in self.contents:
            if content.id == content_id:
                return content
        return None

    async def search_by_embedding(
        self, vector: np.ndarray, limit: int, threshold: float
    ) -> list[tuple[MediaContent, float]]:
        if not self.contents or limit <= 0:
            return []

        matrix = np.vstack([self.generator.embed_content(c) for c in self.contents])
        sims = batch_cosine(vector, matrix)
        order = sorted(range(len(self.contents)), key=lambda i: -sims[i])
        results = [(self.contents[i], float(sims[i])) for i in order if sims[i] >= threshold]
        return results[:limit]
