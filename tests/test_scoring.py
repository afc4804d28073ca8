from datetime import datetime, timedelta, timezone

import pytest

from civic_feed.errors import ConfigurationError
from civic_feed.models import (
    CommentReactions,
    ContentItem,
    EngagementCounters,
    EngagementMetrics,
    EngagementModifiers,
    EngagementSettings,
)
from civic_feed.pipeline.scoring import (
    comment_engagement,
    decay_multiplier,
    engagement_score,
    preset_settings,
    rank_by_engagement,
    reputation_multiplier,
    score_breakdown,
    score_items,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def metrics(**counters) -> EngagementMetrics:
    return EngagementMetrics(counters=EngagementCounters(**counters))


def make_item(item_id: str, likes: int, hours_ago: float = 1.0) -> ContentItem:
    return ContentItem(
        id=item_id,
        author_id="author",
        created_at=NOW - timedelta(hours=hours_ago),
        counters=EngagementCounters(likes=likes),
    )


def test_comment_engagement_normalizes_by_comment_count():
    comments = [
        CommentReactions(likes=10, agrees=2, dislikes=1, disagrees=1),
        CommentReactions(),
    ]
    result = comment_engagement(comments)
    assert result.total_reactions == 14
    assert result.net_reactions == 10
    assert result.avg_net_per_comment == 5.0
    assert result.quality_score == pytest.approx(12 / 14)


def test_comment_engagement_without_comments_is_neutral():
    result = comment_engagement([])
    assert result.avg_net_per_comment == 0.0
    assert result.quality_score == 0.5


@pytest.mark.parametrize(
    "younger,older,likes",
    [(1, 30, 10), (48, 72, 10), (0, 1, 10), (300, 310, 10), (1, 2, 1000)],
)
def test_older_item_scores_strictly_lower(younger, older, likes):
    m = metrics(likes=likes)
    fresh = engagement_score(m, NOW - timedelta(hours=younger), now=NOW)
    stale = engagement_score(m, NOW - timedelta(hours=older), now=NOW)
    assert stale < fresh


def test_display_score_is_capped_but_ranking_score_is_not():
    breakdown = score_breakdown(metrics(likes=5000), NOW, now=NOW)
    assert breakdown.score == 1000.0
    assert breakdown.raw_score > 1000.0
    assert engagement_score(metrics(likes=5000), NOW, now=NOW) == breakdown.raw_score


def test_viral_posts_past_the_display_cap_keep_their_order():
    items = [
        ContentItem(id="alpha", author_id="newcomer", created_at=NOW, counters=EngagementCounters(likes=2000)),
        ContentItem(id="zeta", author_id="veteran", created_at=NOW, counters=EngagementCounters(likes=2000)),
    ]
    scored = score_items(items, EngagementSettings(), reputations={"newcomer": 60, "veteran": 90}, now=NOW)
    ranked = rank_by_engagement(scored)
    assert [item.id for item in ranked] == ["zeta", "alpha"]
    assert ranked[0].model_dump()["engagement_score"] == round(ranked[0].engagement_score, 2)


def test_zero_engagement_at_zero_age_is_zero():
    assert engagement_score(EngagementMetrics(), NOW, now=NOW) == 0.0


def test_heavily_reported_content_clamps_to_zero():
    breakdown = score_breakdown(metrics(likes=1, reports=10), NOW, now=NOW)
    assert breakdown.base_score < 0
    assert breakdown.score == 0.0


def test_missing_counters_are_zero():
    item = ContentItem(id="p", author_id="a", created_at=NOW, counters={"likes": None, "shares": 2})
    assert item.counters.likes == 0
    assert item.counters.shares == 2


def test_shares_and_comments_outweigh_likes():
    components = score_breakdown(metrics(likes=1, comments=1, shares=1), NOW, now=NOW).components
    assert components["shares"] > components["comments"] > components["likes"]


def test_reputation_damps_without_zeroing():
    mods = EngagementModifiers()
    assert reputation_multiplier(0, mods) == pytest.approx(0.5)
    assert reputation_multiplier(35, mods) == pytest.approx(0.75)
    assert reputation_multiplier(70, mods) == pytest.approx(1.0)
    assert reputation_multiplier(100, mods) == pytest.approx(1.0)
    assert engagement_score(metrics(likes=50), NOW, reputation=0, now=NOW) > 0


def test_unknown_reputation_defaults_to_seventy():
    mods = EngagementModifiers()
    assert reputation_multiplier(None, mods) == reputation_multiplier(70, mods)
    assert reputation_multiplier(float("nan"), mods) == reputation_multiplier(70, mods)


def test_decay_approaches_floor_but_never_zero():
    mods = EngagementModifiers()
    assert decay_multiplier(0, mods) == pytest.approx(1.0)
    assert decay_multiplier(24, mods) == pytest.approx(0.05 + 0.95 * 0.5)
    assert decay_multiplier(10_000, mods) == pytest.approx(0.05)


def test_controversy_boost_only_in_controversy_preset():
    m = metrics(likes=2, disagrees=10)
    boosted = score_breakdown(m, NOW, settings=preset_settings("controversy"), now=NOW)
    balanced = score_breakdown(m, NOW, settings=EngagementSettings(), now=NOW)
    assert boosted.modifiers["controversy"] == pytest.approx(1.3)
    assert "controversy" not in balanced.modifiers
    assert boosted.preset == "controversy"


def test_unknown_preset_is_rejected():
    with pytest.raises(ConfigurationError):
        preset_settings("viral")


def test_score_items_ranks_by_engagement():
    items = [make_item("low", 1), make_item("high", 50), make_item("mid", 10)]
    ranked = rank_by_engagement(score_items(items, EngagementSettings(), now=NOW))
    assert [item.id for item in ranked] == ["high", "mid", "low"]
    assert all(item.engagement_score is not None for item in ranked)


def test_rank_breaks_ties_by_recency():
    items = [make_item("older", 0, hours_ago=5), make_item("newer", 0, hours_ago=1)]
    ranked = rank_by_engagement(score_items(items, EngagementSettings(), now=NOW))
    assert [item.id for item in ranked] == ["newer", "older"]
