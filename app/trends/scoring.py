"""
Trend recompute: score, velocity, lifecycle status and history append.

recompute(trend, inputs) is a pure function: it returns a new Trend and
never touches the one passed in. Persisting the result (and refusing a
stale write) is the caller's job, see store.py.

At-most-one in-flight recompute per trend id is enforced by RecomputeGuard;
a second caller for the same id gets RecomputeConflict immediately instead
of queueing behind the first and then overwriting its result.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Mapping, Optional, Set

from pydantic import BaseModel, Field

from app.config import Settings, get_settings
from app.schemas.base import EngagementStats
from app.schemas.content import ContentItem, ContentTheme
from app.schemas.trends import ScoreHistoryEntry, Trend
from app.trends.errors import RecomputeConflict
from app.trends.lifecycle import LifecycleState, advance, parse_precedence
from app.trends.signals.composite import compute_trend_score, score_factors
from app.trends.signals.engagement import aggregate_item_stats, combine_stats

logger = logging.getLogger(__name__)


class ScoringInput(BaseModel):
    """Fresh statistics for one recompute cycle (the `newStats` of a trend)."""
    stats: EngagementStats = Field(default_factory=EngagementStats)
    published_at: List[datetime] = Field(default_factory=list)
    platforms: Set[str] = Field(default_factory=set)


def build_scoring_input(
    trend: Trend,
    themes: Mapping[str, ContentTheme],
    items: Mapping[str, ContentItem],
    now: datetime,
    window_days: int = 7,
) -> ScoringInput:
    """Gather a trend's current member items into a ScoringInput."""
    parts: List[EngagementStats] = []
    published: List[datetime] = []
    platforms: Set[str] = set()
    for theme_id in sorted(trend.theme_ids):
        theme = themes.get(theme_id)
        if theme is None:
            continue
        members = [items[i] for i in theme.member_ids if i in items]
        parts.append(aggregate_item_stats(members, now, window_days))
        published.extend(m.published_utc for m in members)
        platforms.update(m.platform for m in members)
    return ScoringInput(stats=combine_stats(parts), published_at=published, platforms=platforms)


def apply_score(
    trend: Trend,
    score: float,
    now: Optional[datetime] = None,
    breakdown: Optional[Dict[str, Dict[str, float]]] = None,
    settings: Optional[Settings] = None,
) -> Trend:
    """Record a new score: velocity, lifecycle transition and history append."""
    settings = settings or get_settings()
    now = now or datetime.now(timezone.utc)
    score = max(0.0, min(100.0, score))

    previous = trend.previous_entry
    velocity = score - previous.score if previous else 0.0

    state = LifecycleState(
        status=trend.status,
        high_water_mark=max(trend.high_water_mark, previous.score if previous else 0.0),
        consecutive_negative_cycles=trend.consecutive_negative_cycles,
        negative_run_start_score=trend.negative_run_start_score,
        decline_start_score=trend.decline_start_score,
    )
    new_state = advance(
        state,
        score,
        velocity,
        history_len=len(trend.score_history),
        min_history=settings.peak_min_history,
        negative_cycles=settings.decline_negative_cycles,
        precedence=parse_precedence(settings.get_signal_precedence()),
    )

    updated = trend.model_copy(deep=True)
    updated.score = score
    updated.velocity = velocity
    updated.status = new_state.status
    updated.high_water_mark = new_state.high_water_mark
    updated.consecutive_negative_cycles = new_state.consecutive_negative_cycles
    updated.negative_run_start_score = new_state.negative_run_start_score
    updated.decline_start_score = new_state.decline_start_score
    if breakdown is not None:
        updated.score_breakdown = breakdown
    updated.score_history.append(
        ScoreHistoryEntry(date=now, score=score, velocity=velocity, recorded_at=now)
    )
    updated.last_updated = now

    if new_state.status != trend.status:
        logger.info(
            f"Trend {trend.id[:8]} '{trend.name}': {trend.status.value} → {new_state.status.value} "
            f"(score={score:.1f}, velocity={velocity:+.1f})"
        )
    return updated


def recompute(
    trend: Trend,
    inputs: ScoringInput,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> Trend:
    """Compute the trend score from fresh stats and advance the trend one cycle."""
    settings = settings or get_settings()
    now = now or datetime.now(timezone.utc)

    factors = score_factors(inputs.stats, inputs.published_at, len(inputs.platforms), now, settings)
    score, breakdown = compute_trend_score(factors, settings.get_score_weights())

    updated = apply_score(trend, score, now, breakdown, settings)
    updated.stats = inputs.stats
    if inputs.platforms:
        updated.platforms = set(inputs.platforms)

    logger.debug(
        f"Recomputed {trend.id[:8]}: score={score:.2f} "
        + ", ".join(f"{k}={v['raw']:.1f}" for k, v in breakdown.items())
    )
    return updated


class RecomputeGuard:
    """At-most-one in-flight recompute per trend id (non-blocking)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight: Set[str] = set()

    def is_busy(self, trend_id: str) -> bool:
        with self._lock:
            return trend_id in self._in_flight

    @contextmanager
    def hold(self, trend_id: str) -> Iterator[None]:
        with self._lock:
            if trend_id in self._in_flight:
                raise RecomputeConflict(trend_id)
            self._in_flight.add(trend_id)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(trend_id)
