"""
Common enums and value objects used across the trend core.

These are foundational types that don't belong to any specific pipeline
stage: trend lifecycle status, platform tags, engagement snapshots and the
aggregated engagement statistics shared by themes and trends.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════════
# ENUMS - Classification Types
# ══════════════════════════════════════════════════════════════════════════════

class TrendStatus(str, Enum):
    """Trend lifecycle status. Initial state is EMERGING."""
    EMERGING = "emerging"
    PEAK = "peak"
    DECLINING = "declining"


class LifecycleSignal(str, Enum):
    """
    Signals derived from a recompute cycle that drive status transitions.

    NEW_HIGH:           velocity >= 0 and score above the trend's high-water mark
    FALLING:            velocity < 0
    SUSTAINED_DECLINE:  velocity < 0 for N consecutive cycles
    RECOVERY:           velocity > 0 and score above its value at the start of decline
    """
    NEW_HIGH = "new_high"
    FALLING = "falling"
    SUSTAINED_DECLINE = "sustained_decline"
    RECOVERY = "recovery"


class EntityState(str, Enum):
    """Whether a theme or trend is live or has been absorbed/retired."""
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    RETIRED = "retired"


# ══════════════════════════════════════════════════════════════════════════════
# VALUE OBJECTS
# ══════════════════════════════════════════════════════════════════════════════

class EngagementMetrics(BaseModel):
    """Engagement snapshot for a single content item."""
    views: int = Field(ge=0, default=0)
    likes: int = Field(ge=0, default=0)
    comments: int = Field(ge=0, default=0)
    shares: int = Field(ge=0, default=0)
    rate: float = Field(ge=0.0, default=0.0)  # engagement rate as reported by the platform
    timestamp: Optional[datetime] = None

    class Config:
        frozen = True

    @property
    def interactions(self) -> int:
        """Likes + comments + shares. Views are reach, not engagement."""
        return self.likes + self.comments + self.shares


class EngagementStats(BaseModel):
    """
    Aggregated engagement statistics for a theme or trend.

    Counts are sums, average_engagement_rate is the content-count weighted
    mean, growth_rate is the percentage change of window_engagement over
    prior_window_engagement (trailing window vs the preceding window of
    equal length).
    """
    total_views: int = 0
    total_likes: int = 0
    total_comments: int = 0
    total_shares: int = 0
    average_engagement_rate: float = 0.0
    content_count: int = 0
    growth_rate: float = 0.0
    window_engagement: float = 0.0
    prior_window_engagement: float = 0.0


def growth_pct(current: float, previous: float) -> float:
    """Percentage change from previous to current.

    A window with nothing before it counts as +100% when anything happened,
    0% otherwise.
    """
    if previous > 0:
        return (current - previous) / previous * 100.0
    return 100.0 if current > 0 else 0.0
