from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

MAX_DISPLAYED_BADGES = 5
DEFAULT_REPUTATION = 70.0
FEED_TAGS = ["Public Post", "Candidate Post", "Official Post"]


class ScoringWeights(BaseModel):
    """Sampler factor weights. Closed: unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    recency: float = Field(0.30, ge=0)
    reputation: float = Field(0.10, ge=0)
    relationship: float = Field(0.25, ge=0)
    topic_similarity: float = Field(0.20, ge=0, alias="topicSimilarity")
    trending: float = Field(0.10, ge=0)
    randomness: float = Field(0.05, ge=0)

    def as_map(self) -> Dict[str, float]:
        return self.model_dump(by_alias=True)

    def total(self) -> float:
        return sum(self.as_map().values())


class EngagementWeights(BaseModel):
    likes: float = 1.0
    dislikes: float = -0.5
    agrees: float = 1.0
    disagrees: float = -0.5
    comments: float = 2.0
    shares: float = 3.0
    views: float = 0.05
    community_notes: float = 0.5
    reports: float = -5.0
    comment_engagement: float = 1.0


class EngagementModifiers(BaseModel):
    half_life_hours: float = Field(24.0, gt=0, description="Hours for the decay multiplier to halve")
    decay_floor: float = Field(0.05, gt=0, le=1, description="Decay never drops below this multiplier")
    controversy_boost: bool = False
    controversy_threshold: float = Field(1.5, gt=0)
    controversy_multiplier: float = 1.3
    quality_bias: bool = True
    new_content_boost: bool = True
    new_content_hours: float = 24.0
    new_content_multiplier: float = 1.2
    reputation_floor: float = Field(0.5, ge=0, le=1, description="Multiplier applied at reputation 0")
    reputation_full_credit: float = Field(70.0, gt=0, le=100, description="Reputation at which the multiplier reaches 1.0")
    min_score: float = 0.0
    max_score: float = Field(1000.0, description="Cap for the displayed score only")


class EngagementSettings(BaseModel):
    preset: str = Field("balanced", description="standard, controversy, quality, balanced or custom")
    weights: EngagementWeights = Field(default_factory=EngagementWeights)
    modifiers: EngagementModifiers = Field(default_factory=EngagementModifiers)


class FeedSettings(BaseModel):
    default_weights: ScoringWeights = Field(default_factory=ScoringWeights)
    pool_pad: int = Field(50, ge=0, description="Extra candidates sampled beyond offset + limit")
    candidate_limit: int = Field(500, ge=1, description="Maximum candidates fetched per generation")
    candidate_window_days: int = Field(30, ge=1)
    feed_tags: List[str] = Field(default_factory=lambda: list(FEED_TAGS))
    recency_half_life_hours: float = Field(24.0, gt=0)
    following_half_life_hours: float = Field(24.0, gt=0)
    non_followed_relationship: float = Field(0.3, ge=0, le=1)
    trending_scale: float = Field(100.0, gt=0, description="Engagement score mapped to a trending factor of 1.0")
    softmax_temperature: float = Field(0.1, gt=0)
    fetch_timeout_s: float = Field(5.0, gt=0)
    default_reputation: float = Field(DEFAULT_REPUTATION, ge=0, le=100)


class StorageSettings(BaseModel):
    path: str = Field("data/feed.duckdb", description="DuckDB database file path")


class SourceSettings(BaseModel):
    kind: Literal["duckdb", "http"] = "duckdb"
    base_url: Optional[str] = Field(None, description="Backend API root for the http source")
    api_token: Optional[str] = None
    timeout_s: float = Field(10.0, ge=1, le=120)


class SlotRollSettings(BaseModel):
    slots: int = Field(15, ge=1, le=50)
    logged_in_random: int = Field(10, ge=0, le=100, description="Rolls below this use the random pool")
    logged_in_trending: int = Field(20, ge=0, le=100, description="Rolls below this use trending; the rest are personalized")
    logged_out_random: int = Field(30, ge=0, le=100, description="Rolls below this use random; the rest are trending")
    personalized_pool_size: int = Field(150, ge=1)
    daily_decay: float = Field(0.95, gt=0, le=1, description="Per-day decay for random and trending pool weights")
    min_weight: float = Field(0.1, gt=0, description="Floor for any candidate's draw weight inside a pool")

    @field_validator("logged_in_trending")
    @classmethod
    def _trending_after_random(cls, value: int, info) -> int:
        if value < info.data.get("logged_in_random", 0):
            raise ValueError("logged_in_trending must not be below logged_in_random")
        return value


class Settings(BaseModel):
    feed: FeedSettings = Field(default_factory=FeedSettings)
    engagement: EngagementSettings = Field(default_factory=EngagementSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    source: SourceSettings = Field(default_factory=SourceSettings)
    slot_roll: SlotRollSettings = Field(default_factory=SlotRollSettings)


class Badge(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    display_order: int = 0


class Author(BaseModel):
    id: str
    display_name: Optional[str] = None
    avatar: Optional[str] = None
    verified: bool = False
    badges: List[Badge] = Field(default_factory=list)

    @field_validator("badges")
    @classmethod
    def _cap_badges(cls, badges: List[Badge]) -> List[Badge]:
        return sorted(badges, key=lambda badge: badge.display_order)[:MAX_DISPLAYED_BADGES]


class _Counters(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def _none_is_zero(cls, value):
        return 0 if value is None else value


class CommentReactions(_Counters):
    likes: int = 0
    dislikes: int = 0
    agrees: int = 0
    disagrees: int = 0


class EngagementCounters(_Counters):
    likes: int = 0
    dislikes: int = 0
    agrees: int = 0
    disagrees: int = 0
    comments: int = 0
    shares: int = 0
    views: int = 0
    community_notes: int = 0
    reports: int = 0


class ContentItem(BaseModel):
    id: str
    author_id: str
    author: Optional[Author] = None
    content: Optional[str] = None
    created_at: datetime
    counters: EngagementCounters = Field(default_factory=EngagementCounters)
    comment_reactions: List[CommentReactions] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=lambda: ["Public Post"])
    is_political: bool = False
    embedding: List[float] = Field(default_factory=list)
    feed_visible: bool = True
    audience: Literal["PUBLIC", "FRIENDS_ONLY", "NON_FRIENDS"] = "PUBLIC"
    is_liked: Optional[bool] = None
    engagement_score: Optional[float] = None

    @field_serializer("engagement_score")
    def _display_score(self, value: Optional[float]) -> Optional[float]:
        return None if value is None else round(value, 2)


class ViewerContext(BaseModel):
    """Everything the engine knows about the requesting user for one call."""

    viewer_id: Optional[str] = None
    following: Set[str] = Field(default_factory=set)
    friends: Set[str] = Field(default_factory=set)
    state: Optional[str] = None
    city: Optional[str] = None
    interest_embeddings: List[List[float]] = Field(default_factory=list)
    weights: Dict[str, float] = Field(default_factory=dict, description="Per-request weight overrides")


class CommentEngagement(BaseModel):
    total_reactions: int = 0
    net_reactions: int = 0
    avg_net_per_comment: float = 0.0
    quality_score: float = 0.5


class EngagementMetrics(BaseModel):
    counters: EngagementCounters = Field(default_factory=EngagementCounters)
    comment_engagement: CommentEngagement = Field(default_factory=CommentEngagement)


class EngagementBreakdown(BaseModel):
    components: Dict[str, float] = Field(default_factory=dict)
    base_score: float = 0.0
    raw_score: float = 0.0
    modifiers: Dict[str, float] = Field(default_factory=dict)
    score: float = 0.0
    preset: str = "balanced"


class FactorScores(BaseModel):
    recency: float = 0.0
    reputation: float = 0.0
    relationship: float = 0.0
    topic_similarity: float = 0.0
    trending: float = 0.0
    randomness: float = 0.0
    visibility_multiplier: float = 1.0


class FeedStats(BaseModel):
    candidate_count: int = 0
    pool_size: int = 0
    returned_count: int = 0
    seed: Optional[int] = None
    avg_recency: float = 0.0
    avg_reputation: float = 0.0
    avg_relationship: float = 0.0
    avg_topic_similarity: float = 0.0
    avg_trending: float = 0.0
    avg_visibility_multiplier: float = 0.0


class FeedResult(BaseModel):
    posts: List[ContentItem] = Field(default_factory=list)
    algorithm: str = "probability-cloud"
    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    stats: FeedStats = Field(default_factory=FeedStats)


class Pagination(BaseModel):
    limit: int
    offset: int
    count: int = 0
    has_more: bool = False


class FeedPage(BaseModel):
    posts: List[ContentItem] = Field(default_factory=list)
    algorithm: str = "probability-cloud"
    weights: Optional[ScoringWeights] = None
    stats: Optional[FeedStats] = None
    pagination: Pagination
    status: Literal["ok", "unavailable"] = "ok"
    message: Optional[str] = None


class TrendingPage(BaseModel):
    posts: List[ContentItem] = Field(default_factory=list)
    algorithm: str = "engagement-scoring"
    pagination: Pagination
    status: Literal["ok", "unavailable"] = "ok"
    message: Optional[str] = None


SlotPool = Literal["random", "trending", "personalized"]


class SlotAssignment(BaseModel):
    post_id: str
    roll: int
    pool: SlotPool
    filled_from: SlotPool


class SlotRollStats(BaseModel):
    total_slots: int = 0
    filled_slots: int = 0
    pool_distribution: Dict[str, int] = Field(default_factory=dict)
    rolls: List[int] = Field(default_factory=list)
    is_logged_in: bool = False
    excluded_count: int = 0
    seed: Optional[int] = None


class SlotRollPage(BaseModel):
    posts: List[ContentItem] = Field(default_factory=list)
    slots: List[SlotAssignment] = Field(default_factory=list)
    algorithm: str = "slot-roll-public"
    stats: SlotRollStats = Field(default_factory=SlotRollStats)
    status: Literal["ok", "unavailable"] = "ok"
    message: Optional[str] = None
