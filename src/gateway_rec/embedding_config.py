"""
Configuration for the feature embedding generator.

Sub-vector weights are loaded from a JSON file when one is configured and
fall back to the built-in defaults otherwise. The genre table is treated
as fixed data: it is frozen into a read-only mapping at construction.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from .config import EMBEDDING_WEIGHTS_PATH

logger = logging.getLogger(__name__)

DEFAULT_GENRE_KEY = "default"

GENRE_VECTORS: dict[str, tuple[float, ...]] = {
    "action": (1.0, 0.8, 0.2, 0.1, 0.0, 0.3, 0.9, 0.1, 0.2, 0.4),
    "adventure": (0.8, 1.0, 0.4, 0.3, 0.2, 0.5, 0.7, 0.2, 0.3, 0.6),
    "animation": (0.2, 0.4, 1.0, 0.8, 0.6, 0.7, 0.3, 0.9, 0.5, 0.4),
    "comedy": (0.1, 0.3, 0.8, 1.0, 0.7, 0.6, 0.2, 0.8, 0.7, 0.3),
    "crime": (0.9, 0.5, 0.1, 0.2, 1.0, 0.4, 0.8, 0.0, 0.3, 0.7),
    "documentary": (0.0, 0.1, 0.3, 0.2, 0.4, 1.0, 0.1, 0.5, 0.8, 0.6),
    "drama": (0.3, 0.4, 0.5, 0.6, 0.5, 0.7, 1.0, 0.4, 0.6, 0.8),
    "family": (0.2, 0.5, 0.9, 0.8, 0.1, 0.6, 0.4, 1.0, 0.5, 0.3),
    "fantasy": (0.5, 0.8, 0.7, 0.4, 0.2, 0.3, 0.6, 0.5, 1.0, 0.7),
    "horror": (0.8, 0.3, 0.1, 0.0, 0.7, 0.2, 0.5, 0.1, 0.4, 1.0),
    "mystery": (0.6, 0.4, 0.2, 0.3, 0.8, 0.5, 0.6, 0.2, 0.5, 0.7),
    "romance": (0.1, 0.3, 0.6, 0.7, 0.2, 0.4, 0.9, 0.6, 0.3, 0.2),
    "science fiction": (0.7, 0.6, 0.4, 0.2, 0.3, 0.5, 0.4, 0.3, 0.9, 0.5),
    "thriller": (0.9, 0.5, 0.1, 0.2, 0.9, 0.3, 0.6, 0.1, 0.4, 0.8),
    "western": (0.7, 0.8, 0.2, 0.3, 0.6, 0.4, 0.7, 0.2, 0.3, 0.5),
    "war": (0.9, 0.6, 0.1, 0.1, 0.5, 0.6, 0.8, 0.2, 0.3, 0.6),
    "music": (0.2, 0.3, 0.7, 0.8, 0.2, 0.5, 0.6, 0.7, 0.4, 0.3),
    "history": (0.3, 0.4, 0.3, 0.2, 0.4, 0.9, 0.7, 0.3, 0.4, 0.5),
    "tv": (0.4, 0.5, 0.6, 0.7, 0.4, 0.6, 0.8, 0.6, 0.5, 0.4),
    DEFAULT_GENRE_KEY: (0.5,) * 10,
}


@dataclass
class EmbeddingWeights:
    """Multipliers applied to each sub-vector before the final normalization."""

    genre: float = 0.30
    type: float = 0.15
    metadata: float = 0.25
    keywords: float = 0.30

    def validate(self) -> None:
        values = asdict(self)
        if any(v < 0 for v in values.values()):
            raise ValueError("embedding weights must be non-negative")
        if sum(values.values()) <= 0:
            raise ValueError("embedding weights must contain at least one positive weight")

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "EmbeddingWeights":
        defaults = cls()
        return cls(
            genre=float(payload.get("genre", defaults.genre)),
            type=float(payload.get("type", defaults.type)),
            metadata=float(payload.get("metadata", defaults.metadata)),
            keywords=float(payload.get("keywords", defaults.keywords)),
        )


WEIGHT_PRESETS: dict[str, EmbeddingWeights] = {
    "balanced": EmbeddingWeights(),
    "genre_heavy": EmbeddingWeights(genre=0.45, type=0.15, metadata=0.15, keywords=0.25),
    "text_heavy": EmbeddingWeights(genre=0.20, type=0.10, metadata=0.15, keywords=0.55),
    "metadata_heavy": EmbeddingWeights(genre=0.25, type=0.10, metadata=0.45, keywords=0.20),
}


def load_embedding_weights(path: str | Path | None = None) -> EmbeddingWeights | None:
    """Load weights from disk; return None if missing or invalid."""
    weight_path = Path(path) if path else EMBEDDING_WEIGHTS_PATH
    if weight_path is None or not weight_path.exists():
        logger.debug("Embedding weights file not found at %s; using defaults", weight_path)
        return None

    try:
        weights = EmbeddingWeights.from_dict(json.loads(weight_path.read_text()))
        weights.validate()
        return weights
    except (OSError, ValueError, TypeError, AttributeError) as exc:
        logger.warning("Failed to load embedding weights from %s: %s", weight_path, exc)
        return None


def save_embedding_weights(weights: EmbeddingWeights, path: str | Path) -> Path:
    """Persist weights to disk (used when tuning presets)."""
    weight_path = Path(path)
    weight_path.parent.mkdir(parents=True, exist_ok=True)
    weight_path.write_text(json.dumps(weights.to_dict(), indent=2))
    return weight_path


@dataclass
class EmbeddingConfig:
    """
    Layout and constants of the 64-dimensional content feature vector.

    The defaults reproduce the production layout: genre (10), content type
    (8), metadata (8) and hashed keywords (38).
    """

    genre_dims: int = 10
    type_dims: int = 8
    metadata_dims: int = 8
    keyword_dims: int = 38

    weights: EmbeddingWeights = field(default_factory=EmbeddingWeights)
    weights_preset: str | None = None
    weights_path: Path | None = field(default_factory=lambda: EMBEDDING_WEIGHTS_PATH)

    genre_vectors: Mapping[str, tuple[float, ...]] = field(default_factory=lambda: dict(GENRE_VECTORS))

    # Metadata normalization
    popularity_scale: float = 100.0
    default_rating: float = 5.0
    rating_scale: float = 10.0
    rating_emphasis: float = 1.5
    recency_horizon_years: float = 20.0
    recency_power: float = 0.7
    neutral_recency: float = 0.5
    max_runtime_minutes: float = 300.0

    # Keyword tokenization
    min_token_length: int = 4

    # Fill value for sub-vectors that carry no information for an input
    neutral_fill: float = 0.5

    def __post_init__(self) -> None:
        if isinstance(self.weights, Mapping):
            self.weights = EmbeddingWeights.from_dict(self.weights)
        if self.weights_path:
            self.weights_path = Path(self.weights_path)
        if self.weights_preset:
            self._apply_weights_preset(self.weights_preset)
        self._maybe_load_weights_file()
        self.genre_vectors = MappingProxyType(
            {str(k).lower().strip(): tuple(float(x) for x in v) for k, v in dict(self.genre_vectors).items()}
        )
        self.validate()

    def validate(self) -> None:
        for name in ("genre_dims", "type_dims", "metadata_dims", "keyword_dims"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.type_dims < 8:
            raise ValueError("type_dims must be at least 8")
        if self.metadata_dims < 8:
            raise ValueError("metadata_dims must be at least 8")
        if self.popularity_scale <= 0 or self.rating_scale <= 0:
            raise ValueError("popularity_scale and rating_scale must be positive")
        if self.recency_horizon_years <= 0:
            raise ValueError("recency_horizon_years must be positive")
        if self.max_runtime_minutes <= 0:
            raise ValueError("max_runtime_minutes must be positive")
        if self.min_token_length < 1:
            raise ValueError("min_token_length must be at least 1")
        self.weights.validate()

        if DEFAULT_GENRE_KEY not in self.genre_vectors:
            raise ValueError("genre_vectors must define a 'default' vector")
        bad = [g for g, vec in self.genre_vectors.items() if len(vec) != self.genre_dims]
        if bad:
            raise ValueError(f"genre vectors must have {self.genre_dims} dims: {sorted(bad)}")

    @property
    def dimensions(self) -> int:
        return self.genre_dims + self.type_dims + self.metadata_dims + self.keyword_dims

    @property
    def fingerprint(self) -> str:
        payload = {
            "dims": [self.genre_dims, self.type_dims, self.metadata_dims, self.keyword_dims],
            "weights": self.weights.to_dict(),
            "genre_vectors": {k: list(v) for k, v in self.genre_vectors.items()},
            "popularity_scale": self.popularity_scale,
            "default_rating": self.default_rating,
            "rating_scale": self.rating_scale,
            "rating_emphasis": self.rating_emphasis,
            "recency_horizon_years": self.recency_horizon_years,
            "recency_power": self.recency_power,
            "neutral_recency": self.neutral_recency,
            "max_runtime_minutes": self.max_runtime_minutes,
            "min_token_length": self.min_token_length,
            "neutral_fill": self.neutral_fill,
        }
        blob = json.dumps(payload, sort_keys=True)
        return hashlib.sha1(blob.encode("utf-8")).hexdigest()[:12]

    # Presets / external weights ---------------------------------------
    def _apply_weights_preset(self, preset: str) -> None:
        if preset not in WEIGHT_PRESETS:
            raise ValueError(f"unknown weights preset '{preset}'")
        self.weights = EmbeddingWeights(**WEIGHT_PRESETS[preset].to_dict())

    def _maybe_load_weights_file(self) -> None:
        if not self.weights_path:
            return
        loaded = load_embedding_weights(self.weights_path)
        if loaded is not None:
            self.weights = loaded
