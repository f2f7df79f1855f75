"""
Composite trend score: the single 0-100 number that ranks trends.

    score = 0.4·EngagementVelocity + 0.3·ContentVolume
          + 0.2·Recency + 0.1·CrossPlatformPresence

Each term is normalized to [0, 100] before weighting and the result is
clamped to [0, 100]. Every term is non-decreasing in its input, so raising
engagement growth or content count with everything else fixed can never
lower the score.

  EngagementVelocity:  50 + 50·tanh(growth / scale). Zero growth sits at the
                       midpoint so a stalled but large trend still registers.
  ContentVolume:       100·log(1+n)/log(1+ceiling), saturating at the ceiling
                       (diminishing returns for huge themes).
  Recency:             100 × mean exponential decay of publish times.
  CrossPlatform:       100 × min(platforms, max) / max.

The breakdown {factor: {weight, raw, contribution}} is returned alongside the
score so a consumer can explain WHY a trend ranks where it does.
"""

import logging
import math
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from app.schemas.base import EngagementStats
from .temporal import compute_recency

logger = logging.getLogger(__name__)


def engagement_velocity_term(stats: EngagementStats, scale: float = 1.0) -> float:
    growth = stats.growth_rate / 100.0
    return 50.0 + 50.0 * math.tanh(growth / max(scale, 1e-9))


def content_volume_term(content_count: int, ceiling: int = 500) -> float:
    if content_count <= 0:
        return 0.0
    ceiling = max(ceiling, 1)
    return 100.0 * min(1.0, math.log1p(content_count) / math.log1p(ceiling))


def recency_term(timestamps: Iterable[datetime], now: datetime, half_life_hours: float = 72.0) -> float:
    return 100.0 * compute_recency(timestamps, now, half_life_hours)


def cross_platform_term(platform_count: int, max_platforms: int = 4) -> float:
    max_platforms = max(max_platforms, 1)
    return 100.0 * min(platform_count, max_platforms) / max_platforms


def compute_trend_score(
    factors: Dict[str, float],
    weights: Dict[str, float],
) -> Tuple[float, Dict[str, Dict[str, float]]]:
    """Weighted sum of normalized factors. Returns (score, breakdown)."""
    score = 0.0
    breakdown: Dict[str, Dict[str, float]] = {}
    for name, raw in factors.items():
        raw = max(0.0, min(100.0, raw))
        weight = weights.get(name, 0.0)
        contribution = weight * raw
        score += contribution
        breakdown[name] = {
            "weight": round(weight, 3),
            "raw": round(raw, 3),
            "contribution": round(contribution, 4),
        }
    return max(0.0, min(100.0, score)), breakdown


def score_factors(
    stats: EngagementStats,
    timestamps: Iterable[datetime],
    platform_count: int,
    now: datetime,
    settings: Optional[object] = None,
) -> Dict[str, float]:
    """Compute the four normalized score terms using configured scales."""
    if settings is None:
        from app.config import get_settings
        settings = get_settings()
    return {
        "engagement_velocity": engagement_velocity_term(stats, settings.velocity_growth_scale),
        "content_volume": content_volume_term(stats.content_count, settings.content_volume_ceiling),
        "recency": recency_term(timestamps, now, settings.recency_half_life_hours),
        "cross_platform": cross_platform_term(platform_count, settings.max_platforms),
    }
