"""
Batch result models for each pipeline stage.

Every stage returns one of these instead of raising on per-item or
per-trend failures: recoverable failures are surfaced as counts and ids.
"""

from typing import Dict, List
from pydantic import BaseModel, Field

from .content import ContentTheme
from .trends import Trend, TrendPrediction


class ThemeBatchResult(BaseModel):
    """Outcome of aggregating one batch of content items into themes."""
    processed: int = 0
    clustered: int = 0
    skipped_invalid: int = 0
    skipped_duplicate: int = 0
    themes_created: List[str] = Field(default_factory=list)
    themes_updated: List[str] = Field(default_factory=list)
    themes_merged: Dict[str, str] = Field(default_factory=dict)  # absorbed id → survivor id
    themes: List[ContentTheme] = Field(default_factory=list)  # snapshots of touched themes


class FormationResult(BaseModel):
    """Outcome of one trend formation pass."""
    trends: List[Trend] = Field(default_factory=list)  # surviving / new trends
    created: List[str] = Field(default_factory=list)
    superseded: Dict[str, str] = Field(default_factory=dict)  # retired id → survivor id
    retired: List[Trend] = Field(default_factory=list)  # snapshots of superseded trends


class RecomputeBatchResult(BaseModel):
    """Outcome of recomputing scores for many trends."""
    updated: List[str] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)
    cancelled: int = 0
    status_changes: Dict[str, str] = Field(default_factory=dict)  # trend id → "old->new"


class ForecastBatchResult(BaseModel):
    """Outcome of forecasting many trends."""
    predictions: List[TrendPrediction] = Field(default_factory=list)
    insufficient_history: List[str] = Field(default_factory=list)
    high_opportunity: List[str] = Field(default_factory=list)
