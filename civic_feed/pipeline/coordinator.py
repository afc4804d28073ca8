"""Feed generation entry points.

``FeedEngine`` fetches a candidate pool, hands it to the probability sampler
and cuts the requested page out of the sampled ordering.

Pagination over a sampled feed is not stable: each call draws a fresh
ordering, so page 2 requested on its own can repeat items from page 1 or
skip others. Pass the same ``seed`` (against an unchanged store) to replay
one ordering across pages; candidates are scored in a fixed order (newest
first, then id) so a seed maps to the same draws.
"""

from __future__ import annotations

import asyncio
import math
import random
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set

from ..config import merge_weights
from ..errors import SourceUnavailable
from ..models import (
    ContentItem,
    FeedPage,
    FeedResult,
    FeedStats,
    Pagination,
    Settings,
    SlotRollPage,
    SlotRollStats,
    TrendingPage,
    ViewerContext,
)
from ..sources.base import CandidateFilter, ContentSource
from ..utils.async_tools import with_deadline
from ..utils.logging import get_logger
from .dedupe import dedupe_items
from .normalizer import normalize_items
from .sampler import feed_stats, probability_sample, score_candidates
from .scoring import age_hours, rank_by_engagement, score_items
from .slot_roll import MAX_SLOTS, personalized_pool, random_pool, roll_slots, trending_pool

ALGORITHM = "probability-cloud"
EMPTY_ALGORITHM = "fallback-empty"
FOLLOWING_ALGORITHM = "following"
FRIEND_MULTIPLIER = 1.5
SLOT_ROLL_ALGORITHM = "slot-roll-personalized"
SLOT_ROLL_PUBLIC_ALGORITHM = "slot-roll-public"
NO_FOLLOWS_MESSAGE = "Follow or become friends with users to see their posts here!"
UNAVAILABLE_FEED_MESSAGE = "Feed temporarily unavailable"
UNAVAILABLE_TRENDING_MESSAGE = "Trending posts temporarily unavailable"


def filter_by_audience(items: Iterable[ContentItem], viewer: ViewerContext) -> List[ContentItem]:
    visible: List[ContentItem] = []
    for item in items:
        is_friend = item.author_id in viewer.friends
        if item.audience == "FRIENDS_ONLY" and not is_friend:
            continue
        if item.audience == "NON_FRIENDS" and is_friend:
            continue
        visible.append(item)
    return visible


def _pool_order(items: Iterable[ContentItem]) -> List[ContentItem]:
    return sorted(items, key=lambda item: (-item.created_at.timestamp(), item.id))


class FeedEngine:
    def __init__(
        self,
        source: ContentSource,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.source = source
        self.settings = settings or Settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def _timeout(self) -> float:
        return self.settings.feed.fetch_timeout_s

    async def build_viewer_context(self, viewer_id: Optional[str], weights: Optional[Mapping[str, float]] = None) -> ViewerContext:
        overrides = dict(weights or {})
        if not viewer_id:
            return ViewerContext(weights=overrides)
        following, friends = await asyncio.gather(
            with_deadline(self.source.fetch_viewer_following(viewer_id), self._timeout, "fetch_viewer_following"),
            with_deadline(self.source.fetch_viewer_friends(viewer_id), self._timeout, "fetch_viewer_friends"),
        )
        try:
            interests = await with_deadline(
                self.source.fetch_viewer_interests(viewer_id), self._timeout, "fetch_viewer_interests"
            )
        except SourceUnavailable as exc:
            get_logger(__name__).warning("Viewer interests unavailable", extra={"viewer_id": viewer_id, "error": str(exc)})
            interests = []
        return ViewerContext(
            viewer_id=viewer_id,
            following=set(following),
            friends=set(friends),
            interest_embeddings=interests,
            weights=overrides,
        )

    async def fetch_reputations(self, author_ids: Iterable[str]) -> Dict[str, float]:
        """Reputation per author; lookups that fail or come back empty use the default."""

        default = self.settings.feed.default_reputation
        ids = sorted(set(author_ids))
        results = await asyncio.gather(
            *(with_deadline(self.source.fetch_author_reputation(author_id), self._timeout, "fetch_author_reputation") for author_id in ids),
            return_exceptions=True,
        )
        reputations: Dict[str, float] = {}
        for author_id, value in zip(ids, results):
            if isinstance(value, SourceUnavailable):
                get_logger(__name__).warning("Reputation lookup failed", extra={"author_id": author_id, "error": str(value)})
                value = None
            elif isinstance(value, BaseException):
                raise value
            if value is None or not math.isfinite(value):
                value = default
            reputations[author_id] = float(value)
        return reputations

    async def _fetch_pool(self, flt: CandidateFilter) -> List[ContentItem]:
        posts = await with_deadline(self.source.fetch_candidate_posts(flt), self._timeout, "fetch_candidate_posts")
        return dedupe_items(normalize_items(posts))

    async def generate_feed(
        self,
        viewer_id: Optional[str] = None,
        pool_size: int = 50,
        weights: Optional[Mapping[str, float]] = None,
        seed: Optional[int] = None,
        viewer: Optional[ViewerContext] = None,
    ) -> FeedResult:
        """Sample up to ``pool_size`` posts for a viewer using probability-cloud sampling."""

        feed_cfg = self.settings.feed
        overrides = dict(viewer.weights if viewer else {})
        overrides.update(weights or {})
        effective = merge_weights(feed_cfg.default_weights, overrides)
        pool_size = max(pool_size, 0)

        if viewer is None:
            viewer = await self.build_viewer_context(viewer_id, overrides)
        now = self.clock()
        flt = CandidateFilter(
            since=now - timedelta(days=feed_cfg.candidate_window_days),
            exclude_author_id=viewer.viewer_id,
            tags=feed_cfg.feed_tags,
            limit=max(pool_size, feed_cfg.candidate_limit),
        )
        candidates = _pool_order(filter_by_audience(await self._fetch_pool(flt), viewer))
        if not candidates or pool_size == 0:
            return FeedResult(
                algorithm=EMPTY_ALGORITHM,
                weights=effective,
                stats=FeedStats(candidate_count=len(candidates), pool_size=pool_size, seed=seed),
            )

        reputations = await self.fetch_reputations(item.author_id for item in candidates)
        rng = random.Random(seed)
        scored = score_candidates(
            candidates,
            viewer,
            effective,
            rng,
            reputations=reputations,
            feed_settings=feed_cfg,
            engagement_settings=self.settings.engagement,
            now=now,
        )
        selected = probability_sample(scored, pool_size, rng, feed_cfg.softmax_temperature)
        stats = feed_stats(scored, selected, pool_size, seed)
        get_logger(__name__).info(
            "Feed generated",
            extra={"viewer_id": viewer.viewer_id, "candidates": stats.candidate_count, "returned": stats.returned_count},
        )
        return FeedResult(posts=[candidate.item for candidate in selected], algorithm=ALGORITHM, weights=effective, stats=stats)

    async def get_feed_page(
        self,
        viewer_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        weights: Optional[Mapping[str, float]] = None,
        seed: Optional[int] = None,
    ) -> FeedPage:
        limit = max(1, limit)
        offset = max(0, offset)
        pool_size = limit + offset + self.settings.feed.pool_pad
        result = await self.generate_feed(viewer_id, pool_size, weights, seed)
        page = result.posts[offset : offset + limit]
        await self.annotate_likes(viewer_id, page)
        return FeedPage(
            posts=page,
            algorithm=result.algorithm,
            weights=result.weights,
            stats=result.stats,
            pagination=Pagination(limit=limit, offset=offset, count=len(page), has_more=len(page) == limit),
        )

    async def annotate_likes(self, viewer_id: Optional[str], posts: List[ContentItem]) -> None:
        """Set ``is_liked`` with one lookup covering only the given posts."""

        liked: Set[str] = set()
        if viewer_id and posts:
            liked = await with_deadline(
                self.source.fetch_viewer_likes(viewer_id, [post.id for post in posts]), self._timeout, "fetch_viewer_likes"
            )
        for post in posts:
            post.is_liked = post.id in liked

    async def get_trending(self, window_hours: int = 24, limit: int = 20, offset: int = 0) -> List[ContentItem]:
        """Non-personalized ranking by engagement score, no sampling."""

        limit = max(1, limit)
        offset = max(0, offset)
        now = self.clock()
        flt = CandidateFilter(
            since=now - timedelta(hours=window_hours),
            tags=self.settings.feed.feed_tags,
            limit=(limit + offset) * 3,
        )
        candidates = await self._fetch_pool(flt)
        if not candidates:
            return []
        reputations = await self.fetch_reputations(item.author_id for item in candidates)
        ranked = rank_by_engagement(score_items(candidates, self.settings.engagement, reputations, now))
        return ranked[offset : offset + limit]

    async def get_trending_page(self, window_hours: int = 24, limit: int = 20, offset: int = 0) -> TrendingPage:
        limit = max(1, limit)
        offset = max(0, offset)
        posts = await self.get_trending(window_hours, limit, offset)
        return TrendingPage(posts=posts, pagination=Pagination(limit=limit, offset=offset, count=len(posts), has_more=len(posts) == limit))

    async def get_following_page(self, viewer_id: str, limit: int = 50, offset: int = 0) -> FeedPage:
        """Posts from followed users and friends, newest first, friends boosted."""

        limit = max(1, limit)
        offset = max(0, offset)
        feed_cfg = self.settings.feed
        viewer = await self.build_viewer_context(viewer_id)
        related = viewer.following | viewer.friends
        if not related:
            return FeedPage(
                algorithm=FOLLOWING_ALGORITHM,
                pagination=Pagination(limit=limit, offset=offset),
                message=NO_FOLLOWS_MESSAGE,
            )

        now = self.clock()
        flt = CandidateFilter(author_ids=related, limit=limit + offset + feed_cfg.pool_pad)
        posts = filter_by_audience(await self._fetch_pool(flt), viewer)

        def feed_score(item: ContentItem) -> float:
            recency = math.pow(0.5, age_hours(item.created_at, now) / feed_cfg.following_half_life_hours)
            return recency * (FRIEND_MULTIPLIER if item.author_id in viewer.friends else 1.0)

        ranked = sorted(posts, key=lambda item: (-feed_score(item), -item.created_at.timestamp(), item.id))
        page = ranked[offset : offset + limit]
        await self.annotate_likes(viewer_id, page)
        return FeedPage(
            posts=page,
            algorithm=FOLLOWING_ALGORITHM,
            pagination=Pagination(limit=limit, offset=offset, count=len(page), has_more=len(page) == limit),
        )

    async def generate_slot_roll_feed(
        self,
        viewer_id: Optional[str] = None,
        slots: Optional[int] = None,
        exclude_ids: Iterable[str] = (),
        seed: Optional[int] = None,
        weights: Optional[Mapping[str, float]] = None,
    ) -> SlotRollPage:
        """Fill each slot from the pool its own roll selects; ``exclude_ids`` pages through without repeats."""

        slot_cfg = self.settings.slot_roll
        feed_cfg = self.settings.feed
        slots = min(max(1, slots or slot_cfg.slots), MAX_SLOTS)
        exclude_ids = {item_id for item_id in exclude_ids if item_id}
        effective = merge_weights(feed_cfg.default_weights, weights)
        logged_in = bool(viewer_id)

        viewer = await self.build_viewer_context(viewer_id, weights)
        now = self.clock()
        flt = CandidateFilter(
            since=now - timedelta(days=feed_cfg.candidate_window_days),
            exclude_author_id=viewer.viewer_id,
            tags=feed_cfg.feed_tags,
            limit=feed_cfg.candidate_limit,
        )
        candidates = _pool_order(filter_by_audience(await self._fetch_pool(flt), viewer))
        reputations = await self.fetch_reputations(item.author_id for item in candidates) if candidates else {}
        rng = random.Random(seed)
        default_rep = feed_cfg.default_reputation

        pools = {
            "random": random_pool(candidates, reputations, now, slot_cfg, default_rep),
            "trending": trending_pool(
                score_items(candidates, self.settings.engagement, reputations, now), reputations, now, slot_cfg, default_rep
            ),
            "personalized": [],
        }
        if logged_in and candidates:
            scored = score_candidates(
                candidates,
                viewer,
                effective,
                rng,
                reputations=reputations,
                feed_settings=feed_cfg,
                engagement_settings=self.settings.engagement,
                now=now,
            )
            drawn = probability_sample(scored, slot_cfg.personalized_pool_size, rng, feed_cfg.softmax_temperature)
            pools["personalized"] = personalized_pool(drawn)

        posts, assignments, rolls, distribution = roll_slots(pools, slots, logged_in, exclude_ids, rng, slot_cfg)
        await self.annotate_likes(viewer_id, posts)
        get_logger(__name__).info(
            "Slot-roll feed generated",
            extra={"viewer_id": viewer_id, "slots": slots, "filled": len(posts), "pools": distribution},
        )
        return SlotRollPage(
            posts=posts,
            slots=assignments,
            algorithm=SLOT_ROLL_ALGORITHM if logged_in else SLOT_ROLL_PUBLIC_ALGORITHM,
            stats=SlotRollStats(
                total_slots=slots,
                filled_slots=len(posts),
                pool_distribution=distribution,
                rolls=rolls,
                is_logged_in=logged_in,
                excluded_count=len(exclude_ids),
                seed=seed,
            ),
        )

    async def safe_feed_page(self, viewer_id: Optional[str] = None, limit: int = 50, offset: int = 0, **kwargs) -> FeedPage:
        """``get_feed_page`` that degrades to an empty page when the source is unavailable."""

        try:
            return await self.get_feed_page(viewer_id, limit, offset, **kwargs)
        except SourceUnavailable as exc:
            get_logger(__name__).error("Feed generation failed", extra={"viewer_id": viewer_id, "error": str(exc)})
            return FeedPage(
                algorithm=EMPTY_ALGORITHM,
                pagination=Pagination(limit=max(1, limit), offset=max(0, offset)),
                status="unavailable",
                message=UNAVAILABLE_FEED_MESSAGE,
            )

    async def safe_trending_page(self, window_hours: int = 24, limit: int = 20, offset: int = 0) -> TrendingPage:
        try:
            return await self.get_trending_page(window_hours, limit, offset)
        except SourceUnavailable as exc:
            get_logger(__name__).error("Get trending posts failed", extra={"error": str(exc)})
            return TrendingPage(
                pagination=Pagination(limit=max(1, limit), offset=max(0, offset)),
                status="unavailable",
                message=UNAVAILABLE_TRENDING_MESSAGE,
            )

    async def safe_slot_roll_feed(self, viewer_id: Optional[str] = None, slots: Optional[int] = None, **kwargs) -> SlotRollPage:
        try:
            return await self.generate_slot_roll_feed(viewer_id, slots, **kwargs)
        except SourceUnavailable as exc:
            get_logger(__name__).error("Slot-roll feed failed", extra={"viewer_id": viewer_id, "error": str(exc)})
            return SlotRollPage(
                algorithm=SLOT_ROLL_ALGORITHM if viewer_id else SLOT_ROLL_PUBLIC_ALGORITHM,
                status="unavailable",
                message=UNAVAILABLE_FEED_MESSAGE,
            )
