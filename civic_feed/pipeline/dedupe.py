from __future__ import annotations

from typing import Dict, Iterable, List

from ..models import ContentItem


def interaction_count(item: ContentItem) -> int:
    counters = item.counters
    return sum(counters.model_dump().values()) + len(item.comment_reactions)


def dedupe_items(items: Iterable[ContentItem]) -> List[ContentItem]:
    """Collapse repeated post ids.

    A post keeps the position of its first appearance. When copies differ, the
    snapshot with more recorded interactions wins; equal copies keep the first.
    """

    kept: Dict[str, ContentItem] = {}
    for item in items:
        current = kept.get(item.id)
        if current is None or interaction_count(item) > interaction_count(current):
            kept[item.id] = item
    return list(kept.values())
