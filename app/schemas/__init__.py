"""
Schemas package, all data models for the trend core.

Models are organized by domain in submodules:
  - base.py: Enums and value objects (TrendStatus, EngagementMetrics, EngagementStats)
  - content.py: ContentItem, ContentTheme
  - trends.py: Trend, ScoreHistoryEntry, TrendPrediction, DailyPrediction, SeasonalPattern
  - pipeline.py: Batch results for each pipeline stage
"""

# base.py: enums and value objects
from app.schemas.base import (
    TrendStatus, LifecycleSignal, EntityState,
    EngagementMetrics, EngagementStats, growth_pct,
)

# content.py: input items and themes
from app.schemas.content import ContentItem, ContentTheme

# trends.py: trend models
from app.schemas.trends import (
    ScoreHistoryEntry, Trend, DailyPrediction, SeasonalPattern, TrendPrediction,
)

# pipeline.py: batch results
from app.schemas.pipeline import (
    ThemeBatchResult, FormationResult, RecomputeBatchResult, ForecastBatchResult,
)

__all__ = [
    # base
    "TrendStatus", "LifecycleSignal", "EntityState",
    "EngagementMetrics", "EngagementStats", "growth_pct",
    # content
    "ContentItem", "ContentTheme",
    # trends
    "ScoreHistoryEntry", "Trend", "DailyPrediction", "SeasonalPattern", "TrendPrediction",
    # pipeline
    "ThemeBatchResult", "FormationResult", "RecomputeBatchResult", "ForecastBatchResult",
]
