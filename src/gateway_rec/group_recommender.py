"""
Group recommendation engine for watch parties.

Aggregates member taste vectors into a confidence-weighted centroid, scores
candidate content per member and for the group, and runs a small voting
session (voting -> decided) that settles on a single title.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from itertools import combinations
from typing import Callable

import numpy as np

from .collaborators import CandidateSource, EmbeddingService, PreferenceStore, SocialGraphStore
from .config import (
    APPROVAL_THRESHOLD,
    CANDIDATE_SEARCH_LIMIT,
    CANDIDATE_SEARCH_THRESHOLD,
    CONTEXT_TIME_BOOST,
    DEFAULT_RUNTIME_MINUTES,
    FAIRNESS_THRESHOLD,
    GROUP_MEAN_WEIGHT,
    GROUP_MIN_WEIGHT,
    MAX_SESSION_CANDIDATES,
    MAX_VOTE,
    MIN_VOTE,
    NEUTRAL_SCORE,
    SESSION_MAX_AGE_HOURS,
    VOTE_ALGORITHM_WEIGHT,
    VOTE_HUMAN_WEIGHT,
)
from .models import MediaContent, RecommendationContext
from .profile import PreferenceProfile, create_initial_preferences
from .similarity import as_vector, cosine_similarity

logger = logging.getLogger(__name__)


class AggregationStrategy(Enum):
    """Strategy for combining individual scores into a group score."""

    MAXIMIN = "maximin"  # Blend of least satisfied member and weighted mean
    LEAST_MISERY = "least_misery"  # No one should hate it
    MOST_PLEASURE = "most_pleasure"  # Someone should love it
    AVERAGE = "average"  # Democratic balance
    MULTIPLICATIVE = "multiplicative"  # Geometric mean (requires all positive)
    FAIRNESS = "fairness"  # Penalize variance
    APPROVAL = "approval"  # Count users above threshold


class SessionStatus(Enum):
    WAITING = "waiting"
    VOTING = "voting"
    DECIDED = "decided"


@dataclass
class GroupMember:
    """A member of a watch group with their learned preferences."""

    user_id: str
    profile: PreferenceProfile
    weight: float = 1.0  # For weighted voting (e.g., birthday person gets 2x)


@dataclass
class GroupScore:
    group_score: float
    member_scores: dict[str, float]
    min_satisfaction: float


@dataclass
class GroupCandidate:
    """A title proposed to the group, with per-member scores and votes."""

    content: MediaContent
    group_score: float
    member_scores: dict[str, float]
    fairness_score: float
    votes: dict[str, float] = field(default_factory=dict)  # user_id -> 0-10


@dataclass
class GroupSession:
    id: str
    group_id: str
    initiator_id: str
    member_ids: list[str] = field(default_factory=list)
    candidates: list[GroupCandidate] = field(default_factory=list)
    status: SessionStatus = SessionStatus.WAITING
    context: RecommendationContext = field(default_factory=RecommendationContext)
    selected_content_id: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    decided_at: datetime | None = None

    def candidate(self, content_id: str) -> GroupCandidate | None:
        for candidate in self.candidates:
            if candidate.content.id == content_id:
                return candidate
        return None


def calculate_group_centroid(members: list[GroupMember]) -> np.ndarray | None:
    """
    Confidence-weighted average of member vectors, unit-normalized.

    Members without a vector are ignored; returns None if none remain.
    """
    with_vectors = [m for m in members if m.profile.vector is not None]
    if not with_vectors:
        return None

    matrix = np.vstack([as_vector(m.profile.vector) for m in with_vectors])
    weights = np.array([m.weight * m.profile.confidence for m in with_vectors])

    centroid = weights @ matrix
    total = float(weights.sum())
    if total > 0:
        centroid = centroid / total

    norm = float(np.linalg.norm(centroid))
    if norm > 0:
        centroid = centroid / norm
    return centroid


def calculate_member_satisfaction(content_embedding, profile: PreferenceProfile) -> float:
    if profile.vector is None:
        return NEUTRAL_SCORE
    return cosine_similarity(content_embedding, profile.vector)


def aggregate_scores(
    scores: list[float],
    strategy: AggregationStrategy,
    weights: list[float] | None = None,
    approval_threshold: float = APPROVAL_THRESHOLD,
) -> float:
    """Combine individual scores into a group score."""
    if not scores:
        return 0.0

    mean = sum(scores) / len(scores)

    if strategy == AggregationStrategy.MAXIMIN:
        weights = weights or [1.0] * len(scores)
        total_weight = sum(weights)
        weighted_mean = (
            sum(s * w for s, w in zip(scores, weights)) / total_weight
            if total_weight > 0
            else mean
        )
        return GROUP_MIN_WEIGHT * min(scores) + GROUP_MEAN_WEIGHT * weighted_mean
    if strategy == AggregationStrategy.LEAST_MISERY:
        return min(scores)
    if strategy == AggregationStrategy.MOST_PLEASURE:
        return max(scores)
    if strategy == AggregationStrategy.AVERAGE:
        return mean
    if strategy == AggregationStrategy.MULTIPLICATIVE:
        if all(score > 0 for score in scores):
            return math.prod(scores) ** (1 / len(scores))
        return 0.0
    if strategy == AggregationStrategy.FAIRNESS:
        variance = sum((s - mean) ** 2 for s in scores) / len(scores)
        return mean - (variance ** 0.5) * 0.5
    if strategy == AggregationStrategy.APPROVAL:
        approvals = sum(1 for score in scores if score >= approval_threshold)
        return approvals / len(scores) + mean * 0.1

    return mean


def calculate_group_score(
    content_embedding,
    members: list[GroupMember],
    strategy: AggregationStrategy = AggregationStrategy.MAXIMIN,
) -> GroupScore:
    member_scores = {
        m.user_id: calculate_member_satisfaction(content_embedding, m.profile)
        for m in members
    }
    scores = list(member_scores.values())
    group_score = aggregate_scores(scores, strategy, weights=[m.weight for m in members])
    return GroupScore(
        group_score=group_score,
        member_scores=member_scores,
        min_satisfaction=min(scores) if scores else 0.0,
    )


def calculate_fairness_score(member_scores: dict[str, float]) -> float:
    """
    1 - Gini coefficient of the member scores (1 = perfectly even).

    A single member is always fair; all-zero scores are not.
    """
    scores = sorted(member_scores.values())
    n = len(scores)
    if n <= 1:
        return 1.0

    total = sum(scores)
    if total == 0:
        return 0.0

    diffs = sum(abs(a - b) for a in scores for b in scores)
    gini = diffs / (2 * n * total)
    return min(max(1 - gini, 0.0), 1.0)


def rank_group_candidates(
    candidates: list[tuple[MediaContent, np.ndarray]],
    members: list[GroupMember],
    fairness_threshold: float = FAIRNESS_THRESHOLD,
    strategy: AggregationStrategy = AggregationStrategy.MAXIMIN,
) -> list[GroupCandidate]:
    scored = []
    for content, embedding in candidates:
        result = calculate_group_score(embedding, members, strategy)
        fairness = calculate_fairness_score(result.member_scores)
        if fairness < fairness_threshold:
            continue
        scored.append(
            GroupCandidate(
                content=content,
                group_score=result.group_score,
                member_scores=result.member_scores,
                fairness_score=fairness,
            )
        )

    scored.sort(key=lambda c: -c.group_score)
    return scored


def apply_context_boosts(
    candidates: list[GroupCandidate],
    context: RecommendationContext,
) -> list[GroupCandidate]:
    """Boost titles whose runtime fits the available time, by up to 20%."""
    boosted = []
    for candidate in candidates:
        boost = 1.0
        if context.available_time:
            runtime = candidate.content.runtime or DEFAULT_RUNTIME_MINUTES
            time_fit = 1 - abs(runtime - context.available_time) / context.available_time
            boost *= 1 + max(0.0, time_fit) * CONTEXT_TIME_BOOST
        boosted.append(replace(candidate, group_score=candidate.group_score * boost))

    boosted.sort(key=lambda c: -c.group_score)
    return boosted


def calculate_vote_score(candidate: GroupCandidate) -> float:
    if not candidate.votes:
        return candidate.group_score
    avg_vote = sum(candidate.votes.values()) / len(candidate.votes)
    return VOTE_ALGORITHM_WEIGHT * candidate.group_score + VOTE_HUMAN_WEIGHT * (avg_vote / MAX_VOTE)


def process_votes(
    candidates: list[GroupCandidate],
    votes: dict[str, dict[str, float]],
) -> GroupCandidate | None:
    """
    Fold ``votes`` (user -> content id -> score) into the candidates and
    return the one with the best vote score. Ties keep the earlier candidate.
    """
    if not candidates:
        return None

    for candidate in candidates:
        for user_id, content_votes in votes.items():
            if candidate.content.id in content_votes:
                candidate.votes[user_id] = content_votes[candidate.content.id]

    winner = candidates[0]
    best = calculate_vote_score(winner)
    for candidate in candidates[1:]:
        score = calculate_vote_score(candidate)
        if score > best:
            winner, best = candidate, score
    return winner


def generate_group_explanation(candidate: GroupCandidate) -> str:
    scores = list(candidate.member_scores.values())
    avg = sum(scores) / len(scores) if scores else 0.0

    if candidate.fairness_score > 0.9:
        return "Everyone in the group will enjoy this equally"
    if avg > 0.7:
        return "Great match for most group members"
    if candidate.fairness_score > 0.7:
        return "Fair compromise that works for everyone"
    return "Balanced choice for the group"


def compatibility_label(score: float) -> str:
    if score >= 0.8:
        return "Excellent match! 🎬"
    if score >= 0.6:
        return "Good compatibility"
    if score >= 0.4:
        return "Some differences to navigate"
    return "Diverse tastes - finding common ground..."


class GroupConsensusEngine:
    """
    Runs group sessions: proposes candidates, collects votes, picks a winner.

    Sessions live in memory on the engine. Profiles, embeddings, candidate
    search and social signals come from the injected collaborators.
    """

    def __init__(
        self,
        store: PreferenceStore,
        embedding_service: EmbeddingService,
        candidate_source: CandidateSource,
        social_graph: SocialGraphStore | None = None,
        strategy: AggregationStrategy = AggregationStrategy.MAXIMIN,
        fairness_threshold: float = FAIRNESS_THRESHOLD,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.embedding_service = embedding_service
        self.candidate_source = candidate_source
        self.social_graph = social_graph
        self.strategy = strategy
        self.fairness_threshold = fairness_threshold
        self._clock = clock
        self._sessions: dict[str, GroupSession] = {}

    async def _load_members(self, member_ids: list[str]) -> list[GroupMember]:
        members = []
        for user_id in member_ids:
            profile = await self.store.get(user_id)
            members.append(GroupMember(user_id=user_id, profile=profile or create_initial_preferences()))
        return members

    async def _generate_candidates(
        self,
        members: list[GroupMember],
        context: RecommendationContext | None,
    ) -> list[GroupCandidate]:
        centroid = calculate_group_centroid(members)
        if centroid is None:
            logger.info("No member has a preference vector; session starts without candidates")
            return []

        results = await self.candidate_source.search_by_embedding(
            centroid, CANDIDATE_SEARCH_LIMIT, CANDIDATE_SEARCH_THRESHOLD
        )
        contents = [content for content, _score in results]
        embeddings = await asyncio.gather(*(self.embedding_service.generate(c) for c in contents))

        with_embeddings = []
        for content, embedding in zip(contents, embeddings):
            if embedding is None:
                logger.warning("No embedding for candidate %s; scoring against a zero vector", content.id)
                embedding = np.zeros_like(centroid)
            with_embeddings.append((content, embedding))

        candidates = rank_group_candidates(
            with_embeddings, members, self.fairness_threshold, self.strategy
        )
        if context is not None:
            candidates = apply_context_boosts(candidates, context)
        return candidates[:MAX_SESSION_CANDIDATES]

    async def create_session(
        self,
        group_id: str,
        initiator_id: str,
        member_ids: list[str],
        context: RecommendationContext | None = None,
    ) -> GroupSession:
        members = await self._load_members(member_ids)
        candidates = await self._generate_candidates(members, context)

        session = GroupSession(
            id=f"session_{uuid.uuid4().hex[:12]}",
            group_id=group_id,
            initiator_id=initiator_id,
            member_ids=list(member_ids),
            candidates=candidates,
            status=SessionStatus.VOTING,
            context=context or RecommendationContext(),
            created_at=self._clock(),
        )
        self._sessions[session.id] = session
        logger.info(
            "Created session %s for group %s with %s candidates",
            session.id, group_id, len(candidates),
        )
        return session

    def submit_vote(self, session_id: str, user_id: str, content_id: str, score: float) -> bool:
        session = self._sessions.get(session_id)
        if session is None or session.status != SessionStatus.VOTING:
            return False

        candidate = session.candidate(content_id)
        if candidate is None:
            return False

        if not math.isfinite(score):
            logger.warning("Ignoring non-finite vote from %s on %s", user_id, content_id)
            return False
        candidate.votes[user_id] = min(max(score, MIN_VOTE), MAX_VOTE)
        return True

    def finalize_session(self, session_id: str) -> GroupCandidate | None:
        """
        Pick the winner and close voting.

        Finalizing a decided session returns its existing selection. A
        session without candidates stays open and returns None.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.status == SessionStatus.DECIDED:
            return session.candidate(session.selected_content_id)

        all_votes: dict[str, dict[str, float]] = {}
        for candidate in session.candidates:
            for user_id, vote in candidate.votes.items():
                all_votes.setdefault(user_id, {})[candidate.content.id] = vote

        winner = process_votes(session.candidates, all_votes)
        if winner is None:
            return None

        session.selected_content_id = winner.content.id
        session.status = SessionStatus.DECIDED
        session.decided_at = self._clock()
        logger.info("Session %s decided on %s", session.id, winner.content.id)

        self._reinforce_connections(list(winner.votes))
        return winner

    def _reinforce_connections(self, voter_ids: list[str]) -> None:
        if self.social_graph is None:
            return
        for user_a, user_b in combinations(voter_ids, 2):
            try:
                self.social_graph.record_connection(user_a, user_b)
            except Exception as e:
                logger.warning("Failed to record connection %s <-> %s: %s", user_a, user_b, e)

    def get_session(self, session_id: str) -> GroupSession | None:
        return self._sessions.get(session_id)

    def get_user_sessions(self, user_id: str) -> list[GroupSession]:
        return [
            session
            for session in self._sessions.values()
            if session.initiator_id == user_id
            or user_id in session.member_ids
            or any(user_id in c.votes for c in session.candidates)
        ]

    def cleanup_sessions(self, max_age_ms: float = SESSION_MAX_AGE_HOURS * 3600 * 1000) -> int:
        now = self._clock()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if (now - session.created_at).total_seconds() * 1000 > max_age_ms
        ]
        for session_id in expired:
            del self._sessions[session_id]
        if expired:
            logger.info("Cleaned up %s expired sessions", len(expired))
        return len(expired)

    async def calculate_affinity(self, user_a: str, user_b: str) -> float:
        """Cosine similarity of two users' vectors; 0.5 if either has none."""
        prefs_a = await self.store.get(user_a)
        prefs_b = await self.store.get(user_b)
        if prefs_a is None or prefs_b is None or prefs_a.vector is None or prefs_b.vector is None:
            return NEUTRAL_SCORE

        va, vb = as_vector(prefs_a.vector), as_vector(prefs_b.vector)
        if not np.any(va) or not np.any(vb):
            return NEUTRAL_SCORE
        return cosine_similarity(va, vb)

    async def find_similar_users(self, user_id: str, limit: int = 10) -> list[dict]:
        own = await self.store.get(user_id)
        if own is None or own.vector is None or not np.any(as_vector(own.vector)):
            return []

        matches = []
        for other_id in await self.store.list_users():
            if other_id == user_id:
                continue
            other = await self.store.get(other_id)
            if other is None or other.vector is None or not np.any(as_vector(other.vector)):
                continue
            matches.append({"user_id": other_id, "affinity": cosine_similarity(own.vector, other.vector)})

        matches.sort(key=lambda m: -m["affinity"])
        return matches[:limit]

    async def calculate_content_group_score(
        self, content: MediaContent, member_ids: list[str]
    ) -> GroupScore | None:
        embedding = await self.embedding_service.generate(content)
        if embedding is None:
            return None
        members = await self._load_members(member_ids)
        return calculate_group_score(embedding, members, self.strategy)

    def get_explanation(self, candidate: GroupCandidate) -> str:
        return generate_group_explanation(candidate)

    async def explain_group(self, member_ids: list[str]) -> dict:
        """Generate a human-readable summary of group dynamics."""
        pairwise: dict[tuple[str, str], float] = {}
        for user_a, user_b in combinations(member_ids, 2):
            pairwise[(user_a, user_b)] = await self.calculate_affinity(user_a, user_b)

        overall = sum(pairwise.values()) / len(pairwise) if pairwise else NEUTRAL_SCORE
        return {
            "member_count": len(member_ids),
            "members": list(member_ids),
            "overall_compatibility": f"{overall:.0%}",
            "compatibility_label": compatibility_label(overall),
            "best_pair": self._best_pair(pairwise),
            "challenging_pair": self._challenging_pair(pairwise),
        }

    def _best_pair(self, pairwise: dict[tuple[str, str], float]) -> str | None:
        if not pairwise:
            return None
        best = max(pairwise.items(), key=lambda item: item[1])
        return f"{best[0][0]} & {best[0][1]} ({best[1]:.0%})"

    def _challenging_pair(self, pairwise: dict[tuple[str, str], float]) -> str | None:
        if not pairwise:
            return None
        worst = min(pairwise.items(), key=lambda item: item[1])
        if worst[1] < 0.4:
            return f"{worst[0][0]} & {worst[0][1]} ({worst[1]:.0%})"
        return None
