"""Probability-cloud sampling.

Every candidate gets a mass from a weighted blend of factor scores. Masses
are turned into probabilities with a softmax over ``mass / temperature`` and
the feed order is drawn by weighted sampling without replacement, so strong
candidates tend to come first while weak ones keep a non-zero chance at every
position.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from ..models import (
    ContentItem,
    EngagementSettings,
    FactorScores,
    FeedSettings,
    FeedStats,
    ScoringWeights,
    ViewerContext,
)
from ..utils.logging import get_logger
from ..utils.vectors import cosine_similarity, mean_vector
from .scoring import age_hours, build_metrics, engagement_score

FACTORS = ("recency", "reputation", "relationship", "topic_similarity", "trending", "randomness")


@dataclass
class ScoredCandidate:
    item: ContentItem
    scores: FactorScores
    mass: float


def normalized_weights(weights: ScoringWeights) -> Dict[str, float]:
    """Scale weights to sum to 1. An all-zero map weighs every factor equally."""

    raw = {factor: getattr(weights, factor) for factor in FACTORS}
    total = sum(raw.values())
    if total <= 0:
        return {factor: 1.0 / len(FACTORS) for factor in FACTORS}
    return {factor: value / total for factor, value in raw.items()}


def recency_score(created_at: datetime, now: datetime, half_life_hours: float) -> float:
    return math.pow(0.5, age_hours(created_at, now) / half_life_hours)


def reputation_score(reputation: float) -> float:
    return min(max(reputation, 0.0), 100.0) / 100.0


def relationship_score(author_id: str, viewer: ViewerContext, baseline: float) -> float:
    return 1.0 if author_id in viewer.following else baseline


def topic_similarity_score(embedding: Sequence[float], interest: Optional[Sequence[float]]) -> float:
    if not embedding or not interest:
        return 0.0
    return min(max(cosine_similarity(embedding, interest), 0.0), 1.0)


def visibility_multiplier(reputation: float) -> float:
    if reputation >= 95:
        return 1.1
    if reputation >= 50:
        return 1.0
    if reputation >= 30:
        return 0.9
    return 0.8


def score_factors(
    item: ContentItem,
    viewer: ViewerContext,
    interest: Optional[Sequence[float]],
    reputation: float,
    rng: random.Random,
    now: datetime,
    feed_settings: FeedSettings,
    engagement_settings: EngagementSettings,
) -> FactorScores:
    trend = engagement_score(build_metrics(item), item.created_at, reputation, engagement_settings, now)
    return FactorScores(
        recency=recency_score(item.created_at, now, feed_settings.recency_half_life_hours),
        reputation=reputation_score(reputation),
        relationship=relationship_score(item.author_id, viewer, feed_settings.non_followed_relationship),
        topic_similarity=topic_similarity_score(item.embedding, interest),
        trending=min(trend / feed_settings.trending_scale, 1.0),
        randomness=rng.random(),
        visibility_multiplier=visibility_multiplier(reputation),
    )


def combine_mass(scores: FactorScores, weights: ScoringWeights) -> float:
    norm = normalized_weights(weights)
    base = sum(norm[factor] * getattr(scores, factor) for factor in FACTORS)
    return base * scores.visibility_multiplier


def score_candidates(
    items: Iterable[ContentItem],
    viewer: ViewerContext,
    weights: ScoringWeights,
    rng: random.Random,
    *,
    reputations: Optional[Mapping[str, float]] = None,
    feed_settings: Optional[FeedSettings] = None,
    engagement_settings: Optional[EngagementSettings] = None,
    now: Optional[datetime] = None,
) -> List[ScoredCandidate]:
    feed_settings = feed_settings or FeedSettings()
    engagement_settings = engagement_settings or EngagementSettings()
    reputations = reputations or {}
    now = now or datetime.now(timezone.utc)
    interest = mean_vector(viewer.interest_embeddings)

    scored: List[ScoredCandidate] = []
    for item in items:
        reputation = reputations.get(item.author_id, feed_settings.default_reputation)
        try:
            scores = score_factors(item, viewer, interest, reputation, rng, now, feed_settings, engagement_settings)
        except (TypeError, ValueError, ArithmeticError) as exc:
            get_logger(__name__).warning("Skipping unscorable candidate", extra={"item_id": item.id, "error": str(exc)})
            continue
        scored.append(ScoredCandidate(item=item, scores=scores, mass=combine_mass(scores, weights)))
    return scored


def sampling_probabilities(masses: Sequence[float], temperature: float) -> List[float]:
    """Softmax over ``mass / temperature``; uniform when every mass is zero."""

    if not masses:
        return []
    if all(mass <= 0 for mass in masses):
        return [1.0 / len(masses)] * len(masses)
    scaled = [mass / temperature for mass in masses]
    peak = max(scaled)
    exps = [math.exp(value - peak) for value in scaled]
    total = sum(exps)
    return [value / total for value in exps]


def sample_order(masses: Sequence[float], count: int, rng: random.Random, temperature: float) -> List[int]:
    """Weighted sampling without replacement; returns indices into ``masses`` in draw order."""

    draw_weights = sampling_probabilities(masses, temperature)
    remaining = list(range(len(masses)))
    order: List[int] = []
    while remaining and len(order) < count:
        total = sum(draw_weights[i] for i in remaining)
        threshold = rng.random() * total
        picked = len(remaining) - 1
        accumulated = 0.0
        for position, index in enumerate(remaining):
            accumulated += draw_weights[index]
            if threshold < accumulated:
                picked = position
                break
        order.append(remaining.pop(picked))
    return order


def probability_sample(
    candidates: Sequence[ScoredCandidate],
    count: int,
    rng: random.Random,
    temperature: float = 0.1,
) -> List[ScoredCandidate]:
    if count <= 0 or not candidates:
        return []
    order = sample_order([candidate.mass for candidate in candidates], count, rng, temperature)
    return [candidates[index] for index in order]


def feed_stats(scored: Sequence[ScoredCandidate], selected: Sequence[ScoredCandidate], pool_size: int, seed: Optional[int]) -> FeedStats:
    def avg(field: str) -> float:
        if not scored:
            return 0.0
        return sum(getattr(candidate.scores, field) for candidate in scored) / len(scored)

    return FeedStats(
        candidate_count=len(scored),
        pool_size=pool_size,
        returned_count=len(selected),
        seed=seed,
        avg_recency=avg("recency"),
        avg_reputation=avg("reputation"),
        avg_relationship=avg("relationship"),
        avg_topic_similarity=avg("topic_similarity"),
        avg_trending=avg("trending"),
        avg_visibility_multiplier=avg("visibility_multiplier"),
    )
