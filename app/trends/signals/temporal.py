"""
Temporal signal computation for trend scoring.

SIGNALS:
  recency_score:  Mean exponential time-decay of publish timestamps,
                  e^(-ln2 * age_hours / half_life). 1.0 = just published,
                  0.5 = one half-life old. Future timestamps count as age 0.

Strictly monotonic in recency: shifting any timestamp later (towards now)
raises the score, which is what lets two equal-volume trends be told apart
by freshness alone.

REF: BERTrend (Boutaleb et al. 2024): exponential decay for trend freshness.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Iterable, List

logger = logging.getLogger(__name__)


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def compute_recency(timestamps: Iterable[datetime], now: datetime, half_life_hours: float = 72.0) -> float:
    """Mean decay weight in [0, 1]. Empty input scores 0."""
    now = _as_utc(now)
    decay = math.log(2) / max(half_life_hours, 1e-9)

    weights: List[float] = []
    for ts in timestamps:
        age_hours = max(0.0, (now - _as_utc(ts)).total_seconds() / 3600.0)
        weights.append(math.exp(-decay * age_hours))

    if not weights:
        return 0.0
    return sum(weights) / len(weights)
