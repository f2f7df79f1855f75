"""
Configuration management for the trend formation, scoring and forecasting core.

All options are read from environment variables (or a .env file) and can be
overridden by keyword when constructing Settings directly (tests do this).
"""

import json
from functools import lru_cache
from typing import Dict, List

from pydantic_settings import BaseSettings
from pydantic import Field

_DEFAULT_SCORE_WEIGHTS = {
    "engagement_velocity": 0.4,
    "content_volume": 0.3,
    "recency": 0.2,
    "cross_platform": 0.1,
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Embeddings ──
    # Fixed dimension of upstream embeddings (paraphrase-multilingual-MiniLM-L12-v2 = 384)
    embedding_dim: int = Field(default=384, alias="EMBEDDING_DIM")

    # ── Theme Aggregator ──
    # Cosine similarity at which an item joins an existing theme
    theme_similarity_threshold: float = Field(default=0.80, alias="THEME_SIMILARITY_THRESHOLD")
    # Top keywords taken from each item when merging theme keyword sets
    theme_keywords_per_item: int = Field(default=10, alias="THEME_KEYWORDS_PER_ITEM")
    # Themes with no new member for this many days are retired
    theme_stale_days: int = Field(default=14, alias="THEME_STALE_DAYS")

    # ── Trend Formation ──
    # Pairwise centroid similarity at which themes merge into one trend
    trend_similarity_threshold: float = Field(default=0.85, alias="TREND_SIMILARITY_THRESHOLD")
    example_content_limit: int = Field(default=5, alias="EXAMPLE_CONTENT_LIMIT")

    # ── Trend Scoring ──
    scoring_window_days: int = Field(default=7, alias="SCORING_WINDOW_DAYS")
    recompute_cadence_hours: int = Field(default=6, alias="RECOMPUTE_CADENCE_HOURS")
    # Weights for the four score terms (JSON string, override via env). Should sum to 1.0.
    trend_score_weights: str = Field(
        default=json.dumps(_DEFAULT_SCORE_WEIGHTS),
        alias="TREND_SCORE_WEIGHTS",
    )
    # Engagement growth (as a fraction, 1.0 = +100%) mapped through tanh around the midpoint.
    # 1.0 → growth of +100% scores ~88, -100% scores ~12, 0% scores 50.
    velocity_growth_scale: float = Field(default=1.0, alias="VELOCITY_GROWTH_SCALE")
    # Item count at which ContentVolume saturates at 100 (log scale below it)
    content_volume_ceiling: int = Field(default=500, alias="CONTENT_VOLUME_CEILING")
    # Recency decay: e^(-ln2 * age_hours / half_life). 72h → 3-day-old content counts half.
    recency_half_life_hours: float = Field(default=72.0, alias="RECENCY_HALF_LIFE_HOURS")
    # CrossPlatformPresence saturates at this many distinct platforms
    max_platforms: int = Field(default=4, alias="MAX_PLATFORMS")

    # ── Lifecycle ──
    # Prior history entries required before a trend may transition to peak
    peak_min_history: int = Field(default=3, alias="PEAK_MIN_HISTORY")
    # Consecutive negative-velocity cycles for emerging → declining
    decline_negative_cycles: int = Field(default=3, alias="DECLINE_NEGATIVE_CYCLES")
    # Order in which simultaneous lifecycle signals are tried against the transition table
    lifecycle_signal_precedence: str = Field(
        default="sustained_decline,falling,recovery,new_high",
        alias="LIFECYCLE_SIGNAL_PRECEDENCE",
    )
    recompute_max_workers: int = Field(default=4, alias="RECOMPUTE_MAX_WORKERS")

    # ── Forecaster ──
    forecast_min_history: int = Field(default=30, alias="FORECAST_MIN_HISTORY")
    forecast_horizon_days: int = Field(default=30, alias="FORECAST_HORIZON_DAYS")
    # Largest lag (days) tested for seasonality; also capped at half the history length
    seasonal_max_period: int = Field(default=31, alias="SEASONAL_MAX_PERIOD")
    # Minimum autocorrelation for a lag to count as seasonal (raised to 1.96/sqrt(n) for short series)
    seasonal_acf_threshold: float = Field(default=0.3, alias="SEASONAL_ACF_THRESHOLD")
    # z-score for prediction interval half-width (1.96 ≈ 95%)
    forecast_interval_z: float = Field(default=1.96, alias="FORECAST_INTERVAL_Z")
    # Confidence decays as e^(-horizon / decay_days)
    forecast_confidence_decay_days: float = Field(default=180.0, alias="FORECAST_CONFIDENCE_DECAY_DAYS")
    high_opportunity_confidence: float = Field(default=0.8, alias="HIGH_OPPORTUNITY_CONFIDENCE")
    high_opportunity_growth_pct: float = Field(default=20.0, alias="HIGH_OPPORTUNITY_GROWTH_PCT")

    # ── Persistence / runtime ──
    database_url: str = Field(default="sqlite:///./trends.db", alias="DATABASE_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True

    def get_score_weights(self) -> Dict[str, float]:
        """Parse TREND_SCORE_WEIGHTS, falling back to defaults for missing keys."""
        weights = dict(_DEFAULT_SCORE_WEIGHTS)
        weights.update({k: float(v) for k, v in json.loads(self.trend_score_weights).items()})
        return weights

    def get_signal_precedence(self) -> List[str]:
        return [s.strip() for s in self.lifecycle_signal_precedence.split(",") if s.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
