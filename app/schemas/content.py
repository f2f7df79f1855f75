"""
Content item and content theme data models.

ContentItem is the external input of the core: one analysed post/video with
its embedding, engagement snapshot and sentiment, produced upstream by the
NLP/vision collaborators. ContentTheme is a cluster of items grouped by
embedding proximity and is owned by the Theme Aggregator.

Hierarchy: ContentItem → ContentTheme → Trend
"""

from datetime import datetime, timezone
from typing import List, Optional, Set
from uuid import uuid4

from pydantic import BaseModel, Field

from .base import EngagementMetrics, EngagementStats, EntityState


class ContentItem(BaseModel):
    """
    A single analysed piece of content.

    The embedding is loosely typed (Optional list): items with
    a missing, non-finite or wrong-dimension embedding must reach the
    aggregator so they can be skipped and counted instead of failing the
    whole batch at parse time.
    """
    item_id: str
    platform: str = "unknown"
    published_at: datetime
    engagement: EngagementMetrics = Field(default_factory=EngagementMetrics)
    embedding: Optional[List[float]] = None
    sentiment: float = 0.0  # -1.0 (negative) to +1.0 (positive)
    keywords: List[str] = Field(default_factory=list)  # ordered by weight, extracted upstream

    class Config:
        frozen = True

    @property
    def published_utc(self) -> datetime:
        pub = self.published_at
        if pub.tzinfo is None:
            pub = pub.replace(tzinfo=timezone.utc)
        return pub


class ContentTheme(BaseModel):
    """
    A cluster of content items grouped by embedding similarity.

    The centroid is the mean of member embeddings and is recomputed on every
    membership change. A live (ACTIVE) theme always has at least one member.
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = ""
    keywords: List[str] = Field(default_factory=list)
    centroid: List[float] = Field(default_factory=list)
    member_ids: Set[str] = Field(default_factory=set)
    average_sentiment: float = 0.0

    # Aggregates maintained by the aggregator
    platforms: Set[str] = Field(default_factory=set)
    stats: EngagementStats = Field(default_factory=EngagementStats)
    first_published_at: Optional[datetime] = None
    last_published_at: Optional[datetime] = None

    state: EntityState = EntityState.ACTIVE
    superseded_by: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def size(self) -> int:
        return len(self.member_ids)

    @property
    def is_active(self) -> bool:
        return self.state == EntityState.ACTIVE
