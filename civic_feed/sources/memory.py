from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Set

from ..models import ContentItem
from .base import CandidateFilter, ContentSource


class InMemoryContentSource(ContentSource):
    """Content source backed by plain Python collections."""

    def __init__(
        self,
        posts: Iterable[ContentItem] = (),
        *,
        follows: Optional[Mapping[str, Iterable[str]]] = None,
        friends: Optional[Mapping[str, Iterable[str]]] = None,
        likes: Optional[Mapping[str, Iterable[str]]] = None,
        reputations: Optional[Mapping[str, float]] = None,
    ):
        self.posts: List[ContentItem] = list(posts)
        self.follows: Dict[str, Set[str]] = {k: set(v) for k, v in (follows or {}).items()}
        self.friends: Dict[str, Set[str]] = {k: set(v) for k, v in (friends or {}).items()}
        self.likes: Dict[str, Set[str]] = {k: set(v) for k, v in (likes or {}).items()}
        self.reputations: Dict[str, float] = dict(reputations or {})
        self.like_lookups: List[List[str]] = []

    async def fetch_candidate_posts(self, flt: CandidateFilter) -> List[ContentItem]:
        matched: List[ContentItem] = []
        for post in self.posts:
            if flt.since and _utc(post.created_at) < flt.since:
                continue
            if flt.exclude_author_id and post.author_id == flt.exclude_author_id:
                continue
            if flt.author_ids is not None and post.author_id not in flt.author_ids:
                continue
            if flt.tags and not set(flt.tags) & set(post.tags):
                continue
            if flt.visible_only and not post.feed_visible:
                continue
            matched.append(post.model_copy(deep=True))
        matched.sort(key=lambda post: _utc(post.created_at), reverse=True)
        return matched[: flt.limit]

    async def fetch_author_reputation(self, author_id: str) -> Optional[float]:
        return self.reputations.get(author_id)

    async def fetch_viewer_following(self, viewer_id: str) -> Set[str]:
        return set(self.follows.get(viewer_id, set()))

    async def fetch_viewer_friends(self, viewer_id: str) -> Set[str]:
        return set(self.friends.get(viewer_id, set()))

    async def fetch_viewer_likes(self, viewer_id: str, item_ids: Iterable[str]) -> Set[str]:
        ids = list(item_ids)
        self.like_lookups.append(ids)
        return self.likes.get(viewer_id, set()) & set(ids)

    async def fetch_viewer_interests(self, viewer_id: str) -> List[List[float]]:
        liked = self.likes.get(viewer_id, set())
        return [
            list(post.embedding)
            for post in self.posts
            if post.embedding and (post.id in liked or post.author_id == viewer_id)
        ]


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
