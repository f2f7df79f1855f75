"""
Trend and trend prediction data models.

Trend is owned by two stages: Trend Formation owns identity and
theme membership, Trend Scoring & Lifecycle owns score/velocity/status and
appends to score_history. TrendPrediction is owned by the Forecaster and is
stored separately; the forecaster never mutates a Trend.

Score history is append-only and ascending by date. Entries recorded in the
same recompute cadence day all keep their own timestamp; consumers that
need a daily series (the forecaster, charting) collapse to the last entry of
each day.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from .base import EngagementStats, EntityState, TrendStatus

logger = logging.getLogger(__name__)


class ScoreHistoryEntry(BaseModel):
    """One recompute cycle's outcome."""
    date: datetime
    score: float = Field(ge=0.0, le=100.0)
    velocity: float = 0.0
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        frozen = True


class Trend(BaseModel):
    """
    A named cluster of related content themes with aggregate score,
    lifecycle status and history.

    Lifecycle bookkeeping (high_water_mark, consecutive_negative_cycles,
    negative_run_start_score, decline_start_score) lives alongside the trend
    so a transition can be evaluated from the two most recent history
    entries without rescanning the whole history.
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = ""
    description: str = ""
    theme_ids: Set[str] = Field(default_factory=set)
    score: float = Field(ge=0.0, le=100.0, default=0.0)
    velocity: float = 0.0
    status: TrendStatus = TrendStatus.EMERGING
    platforms: Set[str] = Field(default_factory=set)
    example_content_ids: List[str] = Field(default_factory=list)
    stats: EngagementStats = Field(default_factory=EngagementStats)
    score_history: List[ScoreHistoryEntry] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)

    # Explainability: {factor: {weight, raw, contribution}}
    score_breakdown: Dict[str, Dict[str, float]] = Field(default_factory=dict)

    # Lifecycle bookkeeping
    high_water_mark: float = 0.0
    consecutive_negative_cycles: int = 0
    negative_run_start_score: Optional[float] = None
    decline_start_score: Optional[float] = None

    state: EntityState = EntityState.ACTIVE
    superseded_by: Optional[str] = None
    version: int = 0

    first_detected: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v: Any) -> float:
        if v is None:
            return 0.0
        return max(0.0, min(100.0, float(v)))

    @property
    def is_active(self) -> bool:
        return self.state == EntityState.ACTIVE

    @property
    def previous_entry(self) -> Optional[ScoreHistoryEntry]:
        return self.score_history[-1] if self.score_history else None


class DailyPrediction(BaseModel):
    """Forecast for a single future day."""
    date: datetime
    predicted_score: float
    lower_bound: float
    upper_bound: float

    @model_validator(mode="after")
    def check_bounds(self) -> "DailyPrediction":
        if not (self.lower_bound <= self.predicted_score <= self.upper_bound):
            raise ValueError(
                f"Bounds out of order: {self.lower_bound} <= {self.predicted_score} "
                f"<= {self.upper_bound} does not hold"
            )
        return self


class SeasonalPattern(BaseModel):
    """Detected periodic component of a score history."""
    period: int  # days
    amplitude: float
    phase: int  # day offset of the seasonal peak within one period, from history start
    autocorrelation: float = 0.0


class TrendPrediction(BaseModel):
    """Multi-day forecast for one trend."""
    trend_id: str
    predictions: List[DailyPrediction] = Field(default_factory=list)
    seasonal_pattern: Optional[SeasonalPattern] = None
    confidence: float = Field(ge=0.0, le=1.0, default=0.0)
    horizon_days: int = 0
    projected_growth_pct: float = 0.0
    high_opportunity: bool = False
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def check_horizon(self) -> "TrendPrediction":
        if self.horizon_days and len(self.predictions) != self.horizon_days:
            raise ValueError(
                f"Prediction length {len(self.predictions)} != horizon {self.horizon_days}"
            )
        return self
