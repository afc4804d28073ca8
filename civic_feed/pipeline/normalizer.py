from __future__ import annotations

from datetime import timezone
from typing import Iterable, List

from ..models import ContentItem


def normalize_items(items: Iterable[ContentItem]) -> List[ContentItem]:
    normalized: List[ContentItem] = []
    for item in items:
        if item.created_at.tzinfo is None:
            item.created_at = item.created_at.replace(tzinfo=timezone.utc)
        else:
            item.created_at = item.created_at.astimezone(timezone.utc)
        item.tags = [tag.strip() for tag in item.tags if tag and tag.strip()]
        normalized.append(item)
    return normalized
