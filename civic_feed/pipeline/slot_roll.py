"""Per-slot feed assembly.

Every slot rolls 0-99 independently and the roll picks the pool it is filled
from. Signed-in viewers get random / trending / personalized slots (10/10/80
by default), anonymous viewers random / trending (30/70). Inside a pool the
post is a weighted draw, not the top entry. Ids already shown (``exclude_ids``)
and ids picked earlier in the same call are never drawn again, which is what
lets infinite scroll page through the feed without repeats.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ..models import ContentItem, SlotAssignment, SlotRollSettings
from .sampler import ScoredCandidate, visibility_multiplier
from .scoring import age_hours

MAX_SLOTS = 50
POOL_NAMES = ("random", "trending", "personalized")
FALLBACK_ORDER: Dict[str, Tuple[str, ...]] = {
    "personalized": ("personalized", "trending", "random"),
    "trending": ("trending", "random"),
    "random": ("random", "trending"),
}


@dataclass
class PoolEntry:
    item: ContentItem
    weight: float


def determine_pool(roll: int, logged_in: bool, settings: SlotRollSettings) -> str:
    if logged_in:
        if roll < settings.logged_in_random:
            return "random"
        if roll < settings.logged_in_trending:
            return "trending"
        return "personalized"
    if roll < settings.logged_out_random:
        return "random"
    return "trending"


def daily_decay(created_at: datetime, now: datetime, settings: SlotRollSettings) -> float:
    return math.pow(settings.daily_decay, age_hours(created_at, now) / 24.0)


def random_pool(
    items: Iterable[ContentItem],
    reputations: Mapping[str, float],
    now: datetime,
    settings: SlotRollSettings,
    default_reputation: float,
) -> List[PoolEntry]:
    """Age and reputation only; engagement and personal signals are left out."""

    return [
        PoolEntry(
            item=item,
            weight=daily_decay(item.created_at, now, settings)
            * visibility_multiplier(reputations.get(item.author_id, default_reputation)),
        )
        for item in items
    ]


def trending_pool(
    scored_items: Iterable[ContentItem],
    reputations: Mapping[str, float],
    now: datetime,
    settings: SlotRollSettings,
    default_reputation: float,
) -> List[PoolEntry]:
    """Items must already carry ``engagement_score``."""

    return [
        PoolEntry(
            item=item,
            weight=(item.engagement_score or 0.0)
            * daily_decay(item.created_at, now, settings)
            * visibility_multiplier(reputations.get(item.author_id, default_reputation)),
        )
        for item in scored_items
    ]


def personalized_pool(candidates: Sequence[ScoredCandidate]) -> List[PoolEntry]:
    return [PoolEntry(item=candidate.item, weight=candidate.mass) for candidate in candidates]


def weighted_pick(entries: Sequence[PoolEntry], rng: random.Random, min_weight: float) -> Optional[PoolEntry]:
    if not entries:
        return None
    if len(entries) == 1:
        return entries[0]
    weights = [max(min_weight, entry.weight) for entry in entries]
    threshold = rng.random() * sum(weights)
    accumulated = 0.0
    for entry, weight in zip(entries, weights):
        accumulated += weight
        if threshold < accumulated:
            return entry
    return entries[-1]


def select_for_slot(
    pool: str,
    pools: Mapping[str, Sequence[PoolEntry]],
    taken: Set[str],
    rng: random.Random,
    min_weight: float,
) -> Optional[Tuple[str, ContentItem]]:
    """Draw from ``pool``, falling back along ``FALLBACK_ORDER`` once it is exhausted."""

    for name in FALLBACK_ORDER[pool]:
        available = [entry for entry in pools.get(name, ()) if entry.item.id not in taken]
        picked = weighted_pick(available, rng, min_weight)
        if picked is not None:
            return name, picked.item
    return None


def roll_slots(
    pools: Mapping[str, Sequence[PoolEntry]],
    slots: int,
    logged_in: bool,
    exclude_ids: Iterable[str],
    rng: random.Random,
    settings: SlotRollSettings,
) -> Tuple[List[ContentItem], List[SlotAssignment], List[int], Dict[str, int]]:
    taken = set(exclude_ids)
    posts: List[ContentItem] = []
    assignments: List[SlotAssignment] = []
    rolls: List[int] = []
    distribution = {name: 0 for name in POOL_NAMES}

    for _ in range(slots):
        roll = rng.randrange(100)
        rolls.append(roll)
        pool = determine_pool(roll, logged_in, settings)
        distribution[pool] += 1
        selection = select_for_slot(pool, pools, taken, rng, settings.min_weight)
        if selection is None:
            continue
        filled_from, item = selection
        taken.add(item.id)
        posts.append(item)
        assignments.append(SlotAssignment(post_id=item.id, roll=roll, pool=pool, filled_from=filled_from))
    return posts, assignments, rolls, distribution
