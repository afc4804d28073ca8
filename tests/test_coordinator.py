import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from civic_feed.errors import ConfigurationError, SourceUnavailable
from civic_feed.models import ContentItem, EngagementCounters, FeedSettings, Settings
from civic_feed.pipeline.coordinator import NO_FOLLOWS_MESSAGE, FeedEngine
from civic_feed.sources.memory import InMemoryContentSource

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_post(post_id: str, author_id: str = "author", hours_ago: float = 2.0, likes: int = 0, **kwargs) -> ContentItem:
    return ContentItem(
        id=post_id,
        author_id=author_id,
        created_at=NOW - timedelta(hours=hours_ago),
        counters=EngagementCounters(likes=likes),
        **kwargs,
    )


def make_engine(source, settings=None) -> FeedEngine:
    return FeedEngine(source, settings or Settings(), clock=lambda: NOW)


def uniform_posts(count: int):
    return [make_post(f"p{i}", author_id=f"a{i}") for i in range(count)]


class SlowSource(InMemoryContentSource):
    async def fetch_candidate_posts(self, flt):
        await asyncio.sleep(1)
        return await super().fetch_candidate_posts(flt)


class BrokenSource(InMemoryContentSource):
    async def fetch_candidate_posts(self, flt):
        raise RuntimeError("connection reset")


class FlakyReputationSource(InMemoryContentSource):
    async def fetch_author_reputation(self, author_id):
        raise RuntimeError("reputation service down")


def ids(posts):
    return [post.id for post in posts]


def test_seeded_feed_is_reproducible():
    engine = make_engine(InMemoryContentSource([make_post(f"p{i}", hours_ago=i, likes=i) for i in range(10)]))
    first = asyncio.run(engine.generate_feed("viewer", pool_size=10, seed=42))
    second = asyncio.run(engine.generate_feed("viewer", pool_size=10, seed=42))
    assert ids(first.posts) == ids(second.posts)
    assert first.algorithm == "probability-cloud"
    assert first.stats.seed == 42


def test_unseeded_feeds_differ_across_calls():
    engine = make_engine(InMemoryContentSource(uniform_posts(8)))
    orders = {tuple(ids(asyncio.run(engine.generate_feed("viewer", pool_size=8)).posts)) for _ in range(20)}
    assert len(orders) > 1


def test_feed_never_exceeds_pool_size():
    engine = make_engine(InMemoryContentSource(uniform_posts(30)))
    result = asyncio.run(engine.generate_feed("viewer", pool_size=7, seed=1))
    assert len(result.posts) == 7
    assert result.stats.candidate_count == 30
    assert result.stats.returned_count == 7


@pytest.mark.parametrize("limit,offset", [(5, 0), (5, 10), (5, 12), (20, 0), (3, 40)])
def test_page_length_is_bounded_by_remaining_pool(limit, offset):
    engine = make_engine(InMemoryContentSource(uniform_posts(12)))
    page = asyncio.run(engine.get_feed_page("viewer", limit=limit, offset=offset, seed=9))
    assert len(page.posts) == min(limit, max(0, 12 - offset))
    assert page.pagination.count == len(page.posts)
    assert page.pagination.has_more == (len(page.posts) == limit)


def test_same_seed_pages_are_disjoint_slices():
    engine = make_engine(InMemoryContentSource(uniform_posts(10)))
    full = asyncio.run(engine.generate_feed("viewer", pool_size=6 + engine.settings.feed.pool_pad, seed=5))
    first = asyncio.run(engine.get_feed_page("viewer", limit=3, offset=0, seed=5))
    second = asyncio.run(engine.get_feed_page("viewer", limit=3, offset=3, seed=5))
    assert ids(first.posts) + ids(second.posts) == ids(full.posts)[:6]


def test_unseeded_pages_can_overlap():
    # Each page is drawn from a fresh ordering, so pages are not guaranteed disjoint.
    engine = make_engine(InMemoryContentSource(uniform_posts(8)))
    overlaps = 0
    for _ in range(20):
        first = asyncio.run(engine.get_feed_page("viewer", limit=3, offset=0))
        second = asyncio.run(engine.get_feed_page("viewer", limit=3, offset=3))
        if set(ids(first.posts)) & set(ids(second.posts)):
            overlaps += 1
    assert overlaps > 0


def test_likes_are_looked_up_for_the_page_only():
    source = InMemoryContentSource(uniform_posts(20), likes={"viewer": {"p1", "p2", "p3"}})
    engine = make_engine(source)
    page = asyncio.run(engine.get_feed_page("viewer", limit=5, offset=0, seed=3))
    assert source.like_lookups == [ids(page.posts)]
    for post in page.posts:
        assert post.is_liked == (post.id in {"p1", "p2", "p3"})


def test_anonymous_feed_skips_like_lookup():
    source = InMemoryContentSource(uniform_posts(4))
    page = asyncio.run(make_engine(source).get_feed_page(None, limit=4, seed=1))
    assert len(page.posts) == 4
    assert source.like_lookups == []
    assert all(post.is_liked is False for post in page.posts)


def test_unknown_weight_is_rejected_before_sampling():
    engine = make_engine(InMemoryContentSource(uniform_posts(3)))
    with pytest.raises(ConfigurationError, match="recencyy"):
        asyncio.run(engine.get_feed_page("viewer", weights={"recencyy": 1.0}))


def test_overrides_replace_only_given_weights():
    engine = make_engine(InMemoryContentSource(uniform_posts(3)))
    result = asyncio.run(engine.generate_feed("viewer", pool_size=3, weights={"recency": 0.9, "topicSimilarity": 0}))
    assert result.weights.recency == 0.9
    assert result.weights.topic_similarity == 0.0
    assert result.weights.relationship == Settings().feed.default_weights.relationship


def test_candidate_filtering():
    posts = [
        make_post("mine", author_id="viewer"),
        make_post("hidden", feed_visible=False),
        make_post("untagged", tags=["Draft"]),
        make_post("ancient", hours_ago=31 * 24),
        make_post("friends-only", author_id="pal", audience="FRIENDS_ONLY"),
        make_post("friends-only-stranger", author_id="stranger", audience="FRIENDS_ONLY"),
        make_post("non-friends", author_id="pal", audience="NON_FRIENDS"),
        make_post("official", tags=["Official Post"]),
        make_post("public"),
    ]
    engine = make_engine(InMemoryContentSource(posts, friends={"viewer": {"pal"}}))
    result = asyncio.run(engine.generate_feed("viewer", pool_size=20, seed=0))
    assert sorted(ids(result.posts)) == ["friends-only", "official", "public"]


def test_empty_pool_gives_empty_feed():
    result = asyncio.run(make_engine(InMemoryContentSource()).generate_feed("viewer", pool_size=10))
    assert result.posts == []
    assert result.algorithm == "fallback-empty"


def test_source_timeout_is_retryable_unavailable():
    settings = Settings(feed=FeedSettings(fetch_timeout_s=0.05))
    engine = make_engine(SlowSource(uniform_posts(3)), settings)
    with pytest.raises(SourceUnavailable) as excinfo:
        asyncio.run(engine.get_feed_page("viewer"))
    assert excinfo.value.retryable


def test_safe_feed_page_degrades_to_empty():
    page = asyncio.run(make_engine(BrokenSource(uniform_posts(3))).safe_feed_page("viewer", limit=10, offset=5))
    assert page.status == "unavailable"
    assert page.posts == []
    assert page.message
    assert page.pagination.limit == 10
    assert page.pagination.offset == 5


def test_reputation_failures_fall_back_to_default():
    engine = make_engine(FlakyReputationSource(uniform_posts(4)))
    result = asyncio.run(engine.generate_feed("viewer", pool_size=4, seed=2))
    assert len(result.posts) == 4
    assert result.stats.avg_reputation == pytest.approx(0.7)


def test_fresh_followed_post_usually_in_top_three():
    posts = [
        make_post("fresh-followed", author_id="friend", hours_ago=1, likes=10),
        make_post("old-viral", author_id="celebrity", hours_ago=29.5 * 24, likes=1000),
        make_post("recent", author_id="stranger-a", hours_ago=6, likes=5),
        make_post("yesterday", author_id="stranger-b", hours_ago=48, likes=20),
        make_post("last-week", author_id="stranger-c", hours_ago=120, likes=200),
    ]
    engine = make_engine(InMemoryContentSource(posts, follows={"viewer": {"friend"}}))
    hits = sum(
        "fresh-followed" in ids(asyncio.run(engine.get_feed_page("viewer", limit=3, seed=trial)).posts)
        for trial in range(200)
    )
    assert hits >= 160


def test_trending_ranks_recent_posts_by_engagement():
    posts = [
        make_post("quiet", likes=10),
        make_post("busy", likes=100),
        make_post("steady", likes=50),
        make_post("old-hit", hours_ago=48, likes=1000),
    ]
    engine = make_engine(InMemoryContentSource(posts))
    first = asyncio.run(engine.get_trending(window_hours=24, limit=2, offset=0))
    second = asyncio.run(engine.get_trending(window_hours=24, limit=2, offset=2))
    assert ids(first) == ["busy", "steady"]
    assert ids(second) == ["quiet"]
    assert first[0].engagement_score > first[1].engagement_score


def test_trending_is_deterministic():
    engine = make_engine(InMemoryContentSource([make_post(f"p{i}", likes=i) for i in range(6)]))
    first = asyncio.run(engine.get_trending(limit=6))
    second = asyncio.run(engine.get_trending(limit=6))
    assert ids(first) == ids(second)


def test_safe_trending_page_degrades_to_empty():
    page = asyncio.run(make_engine(BrokenSource()).safe_trending_page(limit=5))
    assert page.status == "unavailable"
    assert page.message == "Trending posts temporarily unavailable"
    assert page.posts == []


def test_following_page_without_relationships():
    page = asyncio.run(make_engine(InMemoryContentSource(uniform_posts(3))).get_following_page("viewer"))
    assert page.posts == []
    assert page.message == NO_FOLLOWS_MESSAGE


def test_following_page_orders_by_recency_with_friend_boost():
    posts = [
        make_post("followed-new", author_id="followed", hours_ago=1),
        make_post("friend-older", author_id="pal", hours_ago=10),
        make_post("followed-older", author_id="followed", hours_ago=12),
        make_post("stranger", author_id="stranger", hours_ago=0.5),
    ]
    source = InMemoryContentSource(
        posts,
        follows={"viewer": {"followed"}},
        friends={"viewer": {"pal"}},
        likes={"viewer": {"friend-older"}},
    )
    page = asyncio.run(make_engine(source).get_following_page("viewer", limit=10))
    # 0.5 ** (10 / 24) * 1.5 beats 0.5 ** (1 / 24)
    assert ids(page.posts) == ["friend-older", "followed-new", "followed-older"]
    assert [post.is_liked for post in page.posts] == [True, False, False]
