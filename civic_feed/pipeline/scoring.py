from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from ..errors import ConfigurationError
from ..models import (
    DEFAULT_REPUTATION,
    CommentEngagement,
    CommentReactions,
    ContentItem,
    EngagementBreakdown,
    EngagementMetrics,
    EngagementModifiers,
    EngagementSettings,
    EngagementWeights,
)
from ..utils.logging import get_logger

PRESET_NAMES = ("standard", "controversy", "quality", "balanced")


def preset_settings(name: str) -> EngagementSettings:
    """Return a fresh copy of a named scoring preset."""

    if name == "balanced":
        return EngagementSettings(preset="balanced")
    if name == "standard":
        return EngagementSettings(
            preset="standard",
            weights=EngagementWeights(dislikes=0.0, disagrees=0.0, views=0.1, community_notes=1.0, reports=-1.0),
            modifiers=EngagementModifiers(half_life_hours=12.0),
        )
    if name == "controversy":
        return EngagementSettings(
            preset="controversy",
            weights=EngagementWeights(
                likes=0.5,
                dislikes=1.0,
                agrees=0.5,
                disagrees=2.0,
                comments=1.5,
                shares=2.0,
                community_notes=3.0,
                reports=0.0,
                comment_engagement=2.0,
            ),
            modifiers=EngagementModifiers(
                half_life_hours=36.0,
                controversy_boost=True,
                controversy_threshold=1.2,
                quality_bias=False,
                new_content_boost=False,
            ),
        )
    if name == "quality":
        return EngagementSettings(
            preset="quality",
            weights=EngagementWeights(
                likes=1.5,
                agrees=2.0,
                disagrees=0.0,
                comments=2.5,
                shares=4.0,
                community_notes=1.0,
                reports=-8.0,
                comment_engagement=3.0,
            ),
            modifiers=EngagementModifiers(half_life_hours=8.0, reputation_floor=0.3),
        )
    raise ConfigurationError(f"Unknown engagement preset {name!r}. Expected one of: {', '.join(PRESET_NAMES)}")


def comment_engagement(comments: Iterable[CommentReactions]) -> CommentEngagement:
    """Aggregate per-comment reactions into a sub-score normalized by comment count."""

    comments = list(comments)
    if not comments:
        return CommentEngagement()
    positive = sum(c.likes + c.agrees for c in comments)
    negative = sum(c.dislikes + c.disagrees for c in comments)
    total = positive + negative
    net = positive - negative
    return CommentEngagement(
        total_reactions=total,
        net_reactions=net,
        avg_net_per_comment=net / len(comments),
        quality_score=positive / total if total else 0.5,
    )


def build_metrics(item: ContentItem) -> EngagementMetrics:
    return EngagementMetrics(counters=item.counters, comment_engagement=comment_engagement(item.comment_reactions))


def age_hours(created_at: Optional[datetime], now: datetime) -> float:
    if created_at is None:
        return 0.0
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return max((now - created_at).total_seconds() / 3600.0, 0.0)


def decay_multiplier(hours: float, modifiers: EngagementModifiers) -> float:
    """Half-life decay that approaches ``decay_floor`` instead of zero."""

    floor = modifiers.decay_floor
    return floor + (1.0 - floor) * math.pow(0.5, hours / modifiers.half_life_hours)


def reputation_multiplier(reputation: Optional[float], modifiers: EngagementModifiers) -> float:
    if reputation is None or not math.isfinite(reputation):
        reputation = DEFAULT_REPUTATION
    reputation = min(max(reputation, 0.0), 100.0)
    credit = min(reputation / modifiers.reputation_full_credit, 1.0)
    return modifiers.reputation_floor + (1.0 - modifiers.reputation_floor) * credit


def quality_ratio(metrics: EngagementMetrics) -> float:
    c = metrics.counters
    positive = c.likes + c.agrees + c.comments * 0.5 + c.shares * 2
    negative = c.dislikes + c.disagrees + c.reports * 3
    total = positive + negative
    if total == 0:
        return 0.5
    return positive / total


def is_controversial(metrics: EngagementMetrics, threshold: float) -> bool:
    c = metrics.counters
    agreement = c.likes + c.agrees
    disagreement = c.dislikes + c.disagrees
    if agreement == 0 and disagreement == 0:
        return False
    return disagreement / max(1, agreement) >= threshold


def score_breakdown(
    metrics: EngagementMetrics,
    created_at: Optional[datetime],
    reputation: Optional[float] = None,
    settings: Optional[EngagementSettings] = None,
    now: Optional[datetime] = None,
) -> EngagementBreakdown:
    """Compute the engagement score and the contribution of every signal and modifier."""

    settings = settings or EngagementSettings()
    now = now or datetime.now(timezone.utc)
    weights = settings.weights
    mods = settings.modifiers
    c = metrics.counters

    components = {
        "likes": c.likes * weights.likes,
        "dislikes": c.dislikes * weights.dislikes,
        "agrees": c.agrees * weights.agrees,
        "disagrees": c.disagrees * weights.disagrees,
        "comments": c.comments * weights.comments,
        "shares": c.shares * weights.shares,
        "views": c.views * weights.views,
        "community_notes": c.community_notes * weights.community_notes,
        "reports": c.reports * weights.reports,
        "comment_engagement": metrics.comment_engagement.avg_net_per_comment * weights.comment_engagement,
    }
    base = sum(components.values())
    score = base
    applied: Dict[str, float] = {}

    hours = age_hours(created_at, now)
    applied["time_decay"] = decay_multiplier(hours, mods)
    score *= applied["time_decay"]

    if mods.controversy_boost and is_controversial(metrics, mods.controversy_threshold):
        applied["controversy"] = mods.controversy_multiplier
        score *= mods.controversy_multiplier

    if mods.quality_bias:
        applied["quality"] = 0.8 + quality_ratio(metrics) * 0.4
        score *= applied["quality"]

    if mods.new_content_boost and hours < mods.new_content_hours:
        applied["new_content"] = mods.new_content_multiplier
        score *= mods.new_content_multiplier

    applied["reputation"] = reputation_multiplier(reputation, mods)
    score *= applied["reputation"]

    raw_score = max(score, mods.min_score)
    return EngagementBreakdown(
        components=components,
        base_score=base,
        modifiers=applied,
        raw_score=raw_score,
        score=round(min(raw_score, mods.max_score), 2),
        preset=settings.preset,
    )


def engagement_score(
    metrics: EngagementMetrics,
    created_at: Optional[datetime],
    reputation: Optional[float] = None,
    settings: Optional[EngagementSettings] = None,
    now: Optional[datetime] = None,
) -> float:
    """Ranking score, floored at ``min_score``. Unlike ``EngagementBreakdown.score`` it is neither capped nor rounded."""

    return score_breakdown(metrics, created_at, reputation, settings, now).raw_score


def score_items(
    items: Iterable[ContentItem],
    settings: EngagementSettings,
    reputations: Optional[Mapping[str, float]] = None,
    now: Optional[datetime] = None,
) -> List[ContentItem]:
    """Annotate items with ``engagement_score``; malformed items are logged and dropped."""

    reputations = reputations or {}
    now = now or datetime.now(timezone.utc)
    scored: List[ContentItem] = []
    for item in items:
        try:
            item.engagement_score = engagement_score(
                build_metrics(item),
                item.created_at,
                reputations.get(item.author_id),
                settings,
                now,
            )
        except (TypeError, ValueError, ArithmeticError) as exc:
            get_logger(__name__).warning("Skipping unscorable item", extra={"item_id": item.id, "error": str(exc)})
            continue
        scored.append(item)
    return scored


def rank_by_engagement(items: Iterable[ContentItem]) -> List[ContentItem]:
    """Sort scored items descending; ties go to the newer item, then the id."""

    return sorted(
        items,
        key=lambda item: (-(item.engagement_score or 0.0), -_timestamp(item.created_at), item.id),
    )


def _timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()
