import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

import numpy as np

from .config import (
    DEFAULT_LEARNING_RATE,
    MIN_LEARNING_RATE,
    MAX_LEARNING_RATE,
    MIN_CONFIDENCE,
    MAX_CONFIDENCE,
    CONFIDENCE_GAIN,
    CONFIDENCE_DECAY,
    STRONG_SIGNAL_THRESHOLD,
    GENRE_AFFINITY_DEFAULT,
    GENRE_AFFINITY_STEP,
    SIGNAL_WEIGHT_COMPLETION,
    SIGNAL_WEIGHT_RATING,
    SIGNAL_INFERRED_RATING_BONUS,
    SIGNAL_INFERRED_COMPLETION,
    SIGNAL_REWATCH_BONUS,
    SIGNAL_WEIGHT_DURATION,
    TEMPORAL_DURATION_DECAY,
    MAX_TEMPORAL_GENRES,
    PREFERENCE_STALE_DAYS,
    DEFAULT_QUERY_WEIGHT,
    ACCURACY_COMPLETION_THRESHOLD,
)
from .models import WatchEvent
from .similarity import as_vector, l2_normalize

logger = logging.getLogger(__name__)


@dataclass
class MoodMapping:
    mood: str
    content_vector: np.ndarray | None = None
    strength: float = 0.0


@dataclass
class TemporalPattern:
    """Viewing habits for one (day of week, hour of day) slot."""
    day_of_week: int
    hour_of_day: int
    preferred_genres: list[int] = field(default_factory=list)
    avg_watch_duration: float = 0.0


@dataclass
class PreferenceProfile:
    """A user's learned taste: vector, how far to trust it, and genre affinities."""
    vector: np.ndarray | None = None
    confidence: float = 0.0
    genre_affinities: dict[int, float] = field(default_factory=dict)
    mood_mappings: list[MoodMapping] = field(default_factory=list)
    temporal_patterns: list[TemporalPattern] = field(default_factory=list)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def has_vector(self) -> bool:
        return self.vector is not None

    def top_genres(self, n: int = 5) -> list[tuple[int, float]]:
        ranked = sorted(self.genre_affinities.items(), key=lambda item: -item[1])
        return ranked[:n]

    def genre_affinity(self, genre_id: int) -> float:
        return self.genre_affinities.get(genre_id, 0.0)

    def mood_mapping(self, mood: str) -> MoodMapping | None:
        mood = mood.lower()
        for mapping in self.mood_mappings:
            if mapping.mood.lower() == mood:
                return mapping
        return None

    def temporal_pattern_for(self, day_of_week: int, hour_of_day: int) -> TemporalPattern | None:
        for pattern in self.temporal_patterns:
            if pattern.day_of_week == day_of_week and pattern.hour_of_day == hour_of_day:
                return pattern
        return None

    def needs_update(self, max_age_days: int = PREFERENCE_STALE_DAYS, now: datetime | None = None) -> bool:
        now = now or datetime.now()
        return now - self.updated_at >= timedelta(days=max_age_days)


def create_initial_preferences() -> PreferenceProfile:
    """Cold-start profile: no vector, zero confidence, no affinities."""
    return PreferenceProfile()


def calculate_signal_strength(event: WatchEvent) -> float:
    """
    How strongly a watch event indicates genuine interest, in [0, 1].

    Completion is the primary signal; an explicit rating adds up to 0.3,
    and without one a mostly-finished watch earns a flat bonus instead.
    Rewatches and the watched share of the runtime add the rest.
    """
    strength = event.completion_rate * SIGNAL_WEIGHT_COMPLETION

    if event.rating is not None:
        strength += (event.rating / 10) * SIGNAL_WEIGHT_RATING
    elif event.completion_rate > SIGNAL_INFERRED_COMPLETION:
        strength += SIGNAL_INFERRED_RATING_BONUS

    if event.is_rewatch:
        strength += SIGNAL_REWATCH_BONUS

    strength += event.duration_ratio * SIGNAL_WEIGHT_DURATION
    return min(strength, 1.0)


def calculate_learning_rate(current_confidence: float, signal_strength: float) -> float:
    # Uncertain users and strong signals both learn faster
    alpha = DEFAULT_LEARNING_RATE
    alpha *= 1 + (1 - current_confidence)
    alpha *= 0.5 + 0.5 * signal_strength
    return min(max(alpha, MIN_LEARNING_RATE), MAX_LEARNING_RATE)


def update_preference_vector(current_vector, new_embedding, learning_rate: float) -> np.ndarray:
    """EMA step toward ``new_embedding``; a missing current vector adopts a copy of it."""
    new = as_vector(new_embedding)
    if current_vector is None:
        return new.copy()
    current = as_vector(current_vector)
    return l2_normalize((1 - learning_rate) * current + learning_rate * new)


def update_confidence(current_confidence: float, signal_strength: float) -> float:
    if signal_strength > STRONG_SIGNAL_THRESHOLD:
        delta = (1 - current_confidence) * CONFIDENCE_GAIN
    else:
        delta = -current_confidence * CONFIDENCE_DECAY
    return min(max(current_confidence + delta, MIN_CONFIDENCE), MAX_CONFIDENCE)


def update_genre_affinities(
    current: dict[int, float],
    genre_ids: Iterable[int],
    signal_strength: float,
) -> dict[int, float]:
    updated = dict(current)
    target = 1.0 if signal_strength > STRONG_SIGNAL_THRESHOLD else 0.0
    for genre_id in genre_ids:
        affinity = updated.get(genre_id, GENRE_AFFINITY_DEFAULT)
        affinity += (target - affinity) * GENRE_AFFINITY_STEP * signal_strength
        updated[genre_id] = min(max(affinity, 0.0), 1.0)
    return updated


def update_temporal_patterns(
    patterns: list[TemporalPattern],
    event: WatchEvent,
    genre_ids: Iterable[int] = (),
) -> list[TemporalPattern]:
    """Fold a watch into its (day, hour) slot, creating the slot if needed."""
    updated = [
        TemporalPattern(p.day_of_week, p.hour_of_day, list(p.preferred_genres), p.avg_watch_duration)
        for p in patterns
    ]
    day, hour = event.context.day_of_week, event.context.hour_of_day

    slot = next((p for p in updated if p.day_of_week == day and p.hour_of_day == hour), None)
    if slot is None:
        slot = TemporalPattern(day_of_week=day, hour_of_day=hour)
        updated.append(slot)

    slot.avg_watch_duration = (
        slot.avg_watch_duration * TEMPORAL_DURATION_DECAY
        + event.duration * (1 - TEMPORAL_DURATION_DECAY)
    )
    for genre_id in genre_ids:
        if genre_id not in slot.preferred_genres and len(slot.preferred_genres) < MAX_TEMPORAL_GENRES:
            slot.preferred_genres.append(genre_id)
    return updated


def combine_query_with_preferences(
    query_embedding,
    profile: PreferenceProfile,
    query_weight: float = DEFAULT_QUERY_WEIGHT,
) -> np.ndarray:
    """
    Blend a query vector with the user's taste vector.

    The preference share ``1 - query_weight`` is scaled by the profile's
    confidence, so a barely-trained profile barely moves the query.
    """
    query = as_vector(query_embedding)
    if profile.vector is None:
        return query

    preference_weight = (1 - query_weight) * profile.confidence
    blended = (1 - preference_weight) * query + preference_weight * as_vector(profile.vector)
    return l2_normalize(blended)


def export_preferences(profile: PreferenceProfile) -> dict:
    # No vector in exports
    return {
        "confidence": profile.confidence,
        "genre_affinities": dict(profile.genre_affinities),
        "mood_mappings": [{"mood": m.mood, "strength": m.strength} for m in profile.mood_mappings],
        "temporal_patterns": [
            {
                "day_of_week": p.day_of_week,
                "hour_of_day": p.hour_of_day,
                "preferred_genres": list(p.preferred_genres),
                "avg_watch_duration": p.avg_watch_duration,
            }
            for p in profile.temporal_patterns
        ],
        "updated_at": profile.updated_at.isoformat(),
    }


def calculate_recommendation_accuracy(
    recommended_ids: Iterable[str],
    watch_events: Iterable[WatchEvent],
) -> float:
    """Share of recommendations the user went on to (mostly) finish."""
    recommended = list(recommended_ids)
    if not recommended:
        return 0.0

    lookup = set(recommended)
    hits = sum(
        1 for event in watch_events
        if event.content_id in lookup and event.completion_rate > ACCURACY_COMPLETION_THRESHOLD
    )
    return hits / len(recommended)
