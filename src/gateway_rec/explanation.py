"""
Human-readable explanations for recommendations.

Strategy scores (``{"collaborative": 0.8, "trending": 0.3}``) are mapped to
weighted reason factors, filtered and ranked, then rendered as a short
sentence plus a confidence estimate.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from functools import cmp_to_key
from typing import Any, Mapping

from .config import (
    EXPLANATION_DIVERSITY_CAP,
    EXPLANATION_DIVERSITY_STEP,
    EXPLANATION_MAX_CONFIDENCE,
    EXPLANATION_MAX_FACTORS,
    EXPLANATION_MAX_MERGED_RELATED,
    EXPLANATION_MAX_RELATED,
    EXPLANATION_MIN_CONFIDENCE,
    EXPLANATION_MIN_WEIGHT,
    EXPLANATION_PRIORITY_GAP,
)

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "We think you might enjoy this based on your viewing history."


class ReasonCode(Enum):
    SIMILAR_TO_WATCHED = "SIMILAR_TO_WATCHED"
    TRENDING_NOW = "TRENDING_NOW"
    FRIEND_RECOMMENDED = "FRIEND_RECOMMENDED"
    MOOD_MATCH = "MOOD_MATCH"
    GENRE_PREFERENCE = "GENRE_PREFERENCE"
    ACTOR_PREFERENCE = "ACTOR_PREFERENCE"
    DIRECTOR_PREFERENCE = "DIRECTOR_PREFERENCE"
    COMPLETION_PATTERN = "COMPLETION_PATTERN"
    TIME_OF_DAY_MATCH = "TIME_OF_DAY_MATCH"
    HIGHLY_RATED = "HIGHLY_RATED"
    NEW_RELEASE = "NEW_RELEASE"
    POPULAR_IN_REGION = "POPULAR_IN_REGION"


# Tie-break order when two factors have nearly equal weight
PRIORITY_ORDER = [
    ReasonCode.SIMILAR_TO_WATCHED,
    ReasonCode.FRIEND_RECOMMENDED,
    ReasonCode.GENRE_PREFERENCE,
    ReasonCode.TRENDING_NOW,
    ReasonCode.HIGHLY_RATED,
    ReasonCode.MOOD_MATCH,
    ReasonCode.ACTOR_PREFERENCE,
    ReasonCode.DIRECTOR_PREFERENCE,
    ReasonCode.NEW_RELEASE,
    ReasonCode.POPULAR_IN_REGION,
    ReasonCode.TIME_OF_DAY_MATCH,
    ReasonCode.COMPLETION_PATTERN,
]

PRIMARY_TEMPLATES = {
    ReasonCode.SIMILAR_TO_WATCHED: "Recommended because you watched similar content",
    ReasonCode.TRENDING_NOW: "This is trending now and gaining popularity",
    ReasonCode.FRIEND_RECOMMENDED: "People in your network have enjoyed this",
    ReasonCode.MOOD_MATCH: "This matches your current mood perfectly",
    ReasonCode.GENRE_PREFERENCE: "This matches your preference for genres you love",
    ReasonCode.ACTOR_PREFERENCE: "Features actors you frequently watch and enjoy",
    ReasonCode.DIRECTOR_PREFERENCE: "From a director whose work you appreciate",
    ReasonCode.COMPLETION_PATTERN: "Based on content you typically finish watching",
    ReasonCode.TIME_OF_DAY_MATCH: "Perfect for your current time of day viewing",
    ReasonCode.HIGHLY_RATED: "Highly rated by viewers with similar tastes",
    ReasonCode.NEW_RELEASE: "A fresh addition you might enjoy",
    ReasonCode.POPULAR_IN_REGION: "Popular among viewers in your area",
}

SECONDARY_PHRASES = {
    ReasonCode.SIMILAR_TO_WATCHED: "is similar to what you watch",
    ReasonCode.TRENDING_NOW: "is trending right now",
    ReasonCode.FRIEND_RECOMMENDED: "was enjoyed by your network",
    ReasonCode.MOOD_MATCH: "fits your mood",
    ReasonCode.GENRE_PREFERENCE: "matches your genre preferences",
    ReasonCode.ACTOR_PREFERENCE: "features your favorite actors",
    ReasonCode.DIRECTOR_PREFERENCE: "is from a director you like",
    ReasonCode.COMPLETION_PATTERN: "fits your viewing patterns",
    ReasonCode.TIME_OF_DAY_MATCH: "matches your typical viewing time",
    ReasonCode.HIGHLY_RATED: "is highly rated",
    ReasonCode.NEW_RELEASE: "is newly released",
    ReasonCode.POPULAR_IN_REGION: "is popular in your region",
}


@dataclass
class ExplanationFactor:
    """One weighted reason behind a recommendation."""

    reason: ReasonCode
    weight: float  # 0-1
    details: str
    related_content_ids: list[str] | None = None
    related_user_ids: list[str] | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["reason"] = self.reason.value
        return data


@dataclass
class RecommendationExplanation:
    content_id: str
    factors: list[ExplanationFactor] = field(default_factory=list)
    summary: str = DEFAULT_SUMMARY
    confidence: float = 0.5

    def to_dict(self) -> dict:
        return {
            "content_id": self.content_id,
            "factors": [f.to_dict() for f in self.factors],
            "summary": self.summary,
            "confidence": self.confidence,
        }


def _ids(metadata: Mapping[str, Any], key: str) -> list | None:
    value = metadata.get(key)
    return list(value) if value else None


class RecommendationExplainer:
    """
    Turns per-strategy scores into ranked factors and a short summary.

    Args:
        max_factors: Most factors kept on an explanation
        min_weight: Factors lighter than this are dropped
        include_related: Attach related content/user ids to factors
    """

    def __init__(
        self,
        max_factors: int = EXPLANATION_MAX_FACTORS,
        min_weight: float = EXPLANATION_MIN_WEIGHT,
        include_related: bool = True,
    ):
        self.max_factors = max_factors
        self.min_weight = min_weight
        self.include_related = include_related
        self._content_titles: dict[str, str] = {}

    def cache_content(self, content_id: str, title: str) -> None:
        """Remember a title so summaries can name related content."""
        self._content_titles[str(content_id)] = title

    def clear_caches(self) -> None:
        self._content_titles.clear()

    def create_factor(
        self,
        reason: ReasonCode,
        weight: float,
        details: str,
        related_content_ids: list | None = None,
        related_user_ids: list | None = None,
    ) -> ExplanationFactor:
        factor = ExplanationFactor(reason=reason, weight=max(0.0, min(1.0, weight)), details=details)
        if self.include_related:
            if related_content_ids:
                factor.related_content_ids = [str(i) for i in related_content_ids[:EXPLANATION_MAX_RELATED]]
            if related_user_ids:
                factor.related_user_ids = [str(i) for i in related_user_ids[:EXPLANATION_MAX_RELATED]]
        return factor

    def analyze_strategy_contribution(
        self,
        strategy: str,
        score: float,
        metadata: Mapping[str, Any] | None = None,
    ) -> list[ExplanationFactor]:
        """Map a free-text strategy name to one or more reason factors."""
        name = strategy.lower()
        meta = metadata or {}

        if "collaborative" in name:
            return [self.create_factor(
                ReasonCode.SIMILAR_TO_WATCHED, score,
                "Similar to content enjoyed by users with similar tastes",
                _ids(meta, "similar_content_ids"), _ids(meta, "similar_user_ids"),
            )]
        if "content-based" in name:
            return [
                self.create_factor(
                    ReasonCode.GENRE_PREFERENCE, score * 0.6,
                    "Matches your preferred genres", _ids(meta, "genre_match_ids"),
                ),
                self.create_factor(
                    ReasonCode.ACTOR_PREFERENCE, score * 0.4,
                    "Features actors you frequently watch", _ids(meta, "actor_match_ids"),
                ),
            ]
        if "trending" in name:
            return [self.create_factor(
                ReasonCode.TRENDING_NOW, score,
                "Currently trending among all viewers", _ids(meta, "trending_content_ids"),
            )]
        if "social" in name:
            return [self.create_factor(
                ReasonCode.FRIEND_RECOMMENDED, score,
                "Recommended by users in your network",
                _ids(meta, "friend_content_ids"), _ids(meta, "friend_user_ids"),
            )]
        if "mood" in name:
            mood = meta.get("mood") or "mood"
            return [self.create_factor(
                ReasonCode.MOOD_MATCH, score,
                f"Perfect for your current {mood}", _ids(meta, "mood_match_ids"),
            )]
        if "temporal" in name or "time" in name:
            time_of_day = meta.get("time_of_day") or "typical"
            return [self.create_factor(
                ReasonCode.TIME_OF_DAY_MATCH, score,
                f"Matches your {time_of_day} viewing preferences", _ids(meta, "time_based_ids"),
            )]
        if "rating" in name:
            avg = meta.get("average_rating")
            shown = f"{avg:.1f}" if avg is not None else "N/A"
            return [self.create_factor(
                ReasonCode.HIGHLY_RATED, score,
                f"Highly rated by viewers ({shown}/5)", _ids(meta, "high_rated_ids"),
            )]
        if "regional" in name or "geographic" in name:
            region = meta.get("region") or "your region"
            return [self.create_factor(
                ReasonCode.POPULAR_IN_REGION, score,
                f"Popular in {region}", _ids(meta, "regional_content_ids"),
            )]
        if "new" in name or "release" in name:
            return [self.create_factor(
                ReasonCode.NEW_RELEASE, score,
                "Recently added to the platform", _ids(meta, "new_release_ids"),
            )]
        if "completion" in name or "pattern" in name:
            return [self.create_factor(
                ReasonCode.COMPLETION_PATTERN, score,
                "Based on your viewing completion patterns", _ids(meta, "completion_pattern_ids"),
            )]
        if "director" in name:
            return [self.create_factor(
                ReasonCode.DIRECTOR_PREFERENCE, score,
                "Features directors whose work you appreciate", _ids(meta, "director_match_ids"),
            )]

        return [self.create_factor(
            ReasonCode.SIMILAR_TO_WATCHED, score,
            f"Recommended based on {strategy}", _ids(meta, "related_content_ids"),
        )]

    def get_top_reasons(self, factors: list[ExplanationFactor], limit: int = 3) -> list[ExplanationFactor]:
        return [f for f in factors if f.weight >= self.min_weight][:limit]

    def generate_explanation(
        self,
        content_id: str,
        user_id: str,
        strategy_scores: Mapping[str, float],
        metadata: Mapping[str, Any] | None = None,
    ) -> RecommendationExplanation:
        factors: list[ExplanationFactor] = []
        for strategy, score in strategy_scores.items():
            factors.extend(self.analyze_strategy_contribution(strategy, score, metadata))

        factors.sort(key=lambda f: -f.weight)
        top = self.get_top_reasons(factors, self.max_factors)
        logger.debug("Explained %s for %s with %s factors", content_id, user_id, len(top))

        return RecommendationExplanation(
            content_id=str(content_id),
            factors=top,
            summary=self.format_natural_language(top),
            confidence=self.calculate_confidence(top),
        )

    def generate_batch_explanations(self, requests: list[dict]) -> list[RecommendationExplanation]:
        """Each request holds content_id, user_id, strategy_scores and optional metadata."""
        return [
            self.generate_explanation(
                req["content_id"], req["user_id"], req["strategy_scores"], req.get("metadata")
            )
            for req in requests
        ]

    def _primary_sentence(self, factor: ExplanationFactor) -> str:
        text = PRIMARY_TEMPLATES.get(factor.reason, factor.details)
        if factor.related_content_ids:
            title = self._content_titles.get(factor.related_content_ids[0])
            if title:
                text += f' like "{title}"'
        return text + "."

    def format_natural_language(self, factors: list[ExplanationFactor]) -> str:
        if not factors:
            return DEFAULT_SUMMARY

        parts = [self._primary_sentence(factors[0])]
        secondary = [SECONDARY_PHRASES.get(f.reason, "was recommended for you") for f in factors[1:3]]
        if len(secondary) == 1:
            parts.append(f"It also {secondary[0]}.")
        elif len(secondary) > 1:
            parts.append(f"Additionally, it {', '.join(secondary[:-1])} and {secondary[-1]}.")
        return " ".join(parts)

    def calculate_confidence(self, factors: list[ExplanationFactor]) -> float:
        """
        Self-weighted mean factor weight, scaled by 0.8, plus a bonus for
        distinct reasons, clamped to [0.3, 0.95].

        An empty factor list is neutral (0.5) rather than clamped.
        """
        if not factors:
            return 0.5

        total = sum(f.weight for f in factors)
        weighted = sum(f.weight * f.weight for f in factors) / total if total > 0 else 0.0
        diversity = min(len({f.reason for f in factors}) * EXPLANATION_DIVERSITY_STEP, EXPLANATION_DIVERSITY_CAP)
        return max(EXPLANATION_MIN_CONFIDENCE, min(EXPLANATION_MAX_CONFIDENCE, weighted * 0.8 + diversity))

    def compare_explanations(
        self, first: RecommendationExplanation, second: RecommendationExplanation
    ) -> dict:
        reasons1 = [f.reason for f in first.factors]
        reasons2 = [f.reason for f in second.factors]
        set1, set2 = set(reasons1), set(reasons2)

        common = [r for r in dict.fromkeys(reasons1) if r in set2]
        total = len(set1) + len(set2)
        return {
            "similarity": 2 * len(common) / total if total else 0.0,
            "common_reasons": common,
            "unique_to_first": [r for r in dict.fromkeys(reasons1) if r not in set2],
            "unique_to_second": [r for r in dict.fromkeys(reasons2) if r not in set1],
        }

    def export_explanation(self, explanation: RecommendationExplanation) -> str:
        return json.dumps(explanation.to_dict(), indent=2)


class ExplanationAggregator:
    """Merges, deduplicates and orders factors collected from several sources."""

    def __init__(self, max_factors: int = EXPLANATION_MAX_FACTORS):
        self.max_factors = max_factors

    def aggregate(self, factors: list[ExplanationFactor]) -> list[ExplanationFactor]:
        grouped: dict[ReasonCode, list[ExplanationFactor]] = {}
        for factor in factors:
            grouped.setdefault(factor.reason, []).append(factor)

        merged = [self._merge(group) for group in grouped.values()]
        merged.sort(key=lambda f: -f.weight)
        return merged[: self.max_factors]

    def _merge(self, factors: list[ExplanationFactor]) -> ExplanationFactor:
        first = factors[0]
        if len(factors) == 1:
            return first

        content_ids = list(dict.fromkeys(i for f in factors for i in (f.related_content_ids or [])))
        user_ids = list(dict.fromkeys(i for f in factors for i in (f.related_user_ids or [])))
        detailed = next((f for f in factors if len(f.details) > 20), first)

        return ExplanationFactor(
            reason=first.reason,
            weight=sum(f.weight for f in factors) / len(factors),
            details=detailed.details,
            related_content_ids=content_ids[:EXPLANATION_MAX_MERGED_RELATED] or None,
            related_user_ids=user_ids[:EXPLANATION_MAX_MERGED_RELATED] or None,
        )

    def prioritize(self, factors: list[ExplanationFactor]) -> list[ExplanationFactor]:
        """Weight descending; near-equal weights fall back to PRIORITY_ORDER."""
        def rank(reason: ReasonCode) -> int:
            return PRIORITY_ORDER.index(reason) if reason in PRIORITY_ORDER else 999

        def compare(a: ExplanationFactor, b: ExplanationFactor) -> float:
            diff = b.weight - a.weight
            if abs(diff) > EXPLANATION_PRIORITY_GAP:
                return diff
            return rank(a.reason) - rank(b.reason)

        return sorted(factors, key=cmp_to_key(compare))

    def deduplicate_factors(self, factors: list[ExplanationFactor]) -> list[ExplanationFactor]:
        """Collapse factors with the same reason and detail prefix, keeping the max weight."""
        kept: dict[str, ExplanationFactor] = {}
        for factor in factors:
            signature = f"{factor.reason.value}:{factor.details[:50]}"
            if signature in kept:
                existing = kept[signature]
                kept[signature] = replace(existing, weight=max(existing.weight, factor.weight))
            else:
                kept[signature] = factor
        return list(kept.values())


def create_explanation_from_strategies(
    content_id: str,
    user_id: str,
    strategies: Mapping[str, float],
    metadata: Mapping[str, Any] | None = None,
) -> RecommendationExplanation:
    return RecommendationExplainer().generate_explanation(content_id, user_id, strategies, metadata)


def format_explanation_as_text(explanation: RecommendationExplanation) -> str:
    lines = [
        f"Recommendation for Content #{explanation.content_id}",
        f"Confidence: {explanation.confidence * 100:.1f}%",
        "",
        "Summary:",
        explanation.summary,
        "",
        "Factors:",
    ]
    for idx, factor in enumerate(explanation.factors, start=1):
        lines.append(f"{idx}. {factor.reason.value} ({factor.weight * 100:.1f}%)")
        lines.append(f"   {factor.details}")
    return "\n".join(lines)
