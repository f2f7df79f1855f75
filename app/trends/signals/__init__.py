"""
Signal computation modules for trend scoring.

Each module computes a family of signals independently:
- engagement.py: windowed engagement aggregation, growth rate, stat combination
- temporal.py: recency decay
- composite.py: the four normalized score terms and the weighted trend score
"""

from .engagement import aggregate_item_stats, combine_stats
from .temporal import compute_recency
from .composite import (
    compute_trend_score,
    content_volume_term,
    cross_platform_term,
    engagement_velocity_term,
    recency_term,
    score_factors,
)

__all__ = [
    "aggregate_item_stats", "combine_stats",
    "compute_recency",
    "compute_trend_score", "content_volume_term", "cross_platform_term",
    "engagement_velocity_term", "recency_term", "score_factors",
]
