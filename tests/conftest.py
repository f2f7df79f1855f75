"""Shared fixtures: small-dimension settings and synthetic content items."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import numpy as np
import pytest

from app.config import Settings
from app.schemas import ContentItem, EngagementMetrics, ScoreHistoryEntry, Trend

DIM = 16
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> Settings:
    return Settings(EMBEDDING_DIM=DIM, DATABASE_URL="sqlite://")


@pytest.fixture
def now() -> datetime:
    return NOW


def basis(i: int, dim: int = DIM) -> List[float]:
    vec = [0.0] * dim
    vec[i] = 1.0
    return vec


def blend(weights: Sequence[float], dim: int = DIM) -> List[float]:
    """Vector with the given leading components, rest zero."""
    vec = list(weights) + [0.0] * (dim - len(weights))
    return vec[:dim]


def jitter(base: Sequence[float], seed: int, scale: float = 0.02) -> List[float]:
    rng = np.random.default_rng(seed)
    return (np.asarray(base) + rng.normal(0.0, scale, len(base))).tolist()


def make_item(
    item_id: str,
    embedding: Optional[Sequence[float]],
    platform: str = "tiktok",
    hours_ago: float = 1.0,
    likes: int = 100,
    comments: int = 10,
    shares: int = 5,
    views: int = 1000,
    rate: float = 0.1,
    sentiment: float = 0.0,
    keywords: Sequence[str] = (),
    now: datetime = NOW,
) -> ContentItem:
    return ContentItem(
        item_id=item_id,
        platform=platform,
        published_at=now - timedelta(hours=hours_ago),
        engagement=EngagementMetrics(
            views=views, likes=likes, comments=comments, shares=shares, rate=rate,
            timestamp=now,
        ),
        embedding=list(embedding) if embedding is not None else None,
        sentiment=sentiment,
        keywords=list(keywords),
    )


def trend_with_history(scores: Sequence[float], start: datetime = NOW - timedelta(days=60)) -> Trend:
    """Trend whose history holds one entry per day with the given scores."""
    history = []
    prev = None
    for day, score in enumerate(scores):
        ts = start + timedelta(days=day)
        history.append(ScoreHistoryEntry(
            date=ts, score=score, velocity=0.0 if prev is None else score - prev, recorded_at=ts,
        ))
        prev = score
    return Trend(name="synthetic", score=scores[-1] if scores else 0.0, score_history=history)
