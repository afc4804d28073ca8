from __future__ import annotations

import abc
from datetime import datetime
from typing import Iterable, List, Optional, Set

from pydantic import BaseModel, Field

from ..models import ContentItem


class CandidateFilter(BaseModel):
    """Which posts a feed may consider."""

    since: Optional[datetime] = Field(None, description="Only posts created at or after this instant")
    exclude_author_id: Optional[str] = Field(None, description="Usually the viewer, to hide their own posts")
    author_ids: Optional[Set[str]] = Field(None, description="Restrict to these authors (following feed)")
    tags: List[str] = Field(default_factory=list, description="Post must carry at least one of these tags")
    visible_only: bool = True
    limit: int = Field(500, ge=1)


class ContentSource(abc.ABC):
    """Read-only view of the post store and the social graph."""

    @abc.abstractmethod
    async def fetch_candidate_posts(self, flt: CandidateFilter) -> List[ContentItem]:
        """Newest-first posts matching ``flt``."""

    @abc.abstractmethod
    async def fetch_author_reputation(self, author_id: str) -> Optional[float]:
        """Reputation on a 0-100 scale, or None when unknown."""

    @abc.abstractmethod
    async def fetch_viewer_following(self, viewer_id: str) -> Set[str]:
        """Ids of the authors the viewer follows."""

    @abc.abstractmethod
    async def fetch_viewer_likes(self, viewer_id: str, item_ids: Iterable[str]) -> Set[str]:
        """Subset of ``item_ids`` the viewer has liked."""

    async def fetch_viewer_friends(self, viewer_id: str) -> Set[str]:
        return set()

    async def fetch_viewer_interests(self, viewer_id: str) -> List[List[float]]:
        """Embeddings of content the viewer recently engaged with or wrote."""

        return []

    async def close(self) -> None:
        return None
