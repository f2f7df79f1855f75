"""
TrendPipeline: orchestrates the four stages of the trend core.

  Stage 1 (Aggregate): content items → ThemeAggregator → ContentThemes
  Stage 2 (Form):      themes → TrendFormation → Trends (atomic commit)
  Stage 3 (Score):     trends → recompute() → score, velocity, status, history
  Stage 4 (Forecast):  score history → Forecaster → TrendPredictions

Data flows one way and every stage can be triggered on its own schedule
(scoring every RECOMPUTE_CADENCE_HOURS, formation/forecast daily). Stages
are idempotent given the same inputs: re-ingesting items is a no-op, and
formation re-derives the same components from the same themes.

Scoring is data-parallel across trend ids on a thread pool. A single
trend is never recomputed concurrently with itself (RecomputeGuard), and
the store rejects stale writes, so the loser of a race sees
RecomputeConflict and must retry from fresh state. Cancellation is only
checked between trends: a started recompute always finishes.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from app.config import Settings, get_settings
from app.schemas.content import ContentItem
from app.schemas.pipeline import (
    ForecastBatchResult, FormationResult, RecomputeBatchResult, ThemeBatchResult,
)
from app.schemas.trends import Trend, TrendPrediction
from app.trends.errors import InsufficientHistory, RecomputeConflict
from app.trends.forecaster import Forecaster
from app.trends.formation import TrendFormation
from app.trends.scoring import RecomputeGuard, build_scoring_input, recompute
from app.trends.store import InMemoryTrendStore, TrendStore
from app.trends.themes import ThemeAggregator

logger = logging.getLogger(__name__)


class TrendPipeline:
    """Layered trend pipeline over a pluggable TrendStore."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[TrendStore] = None,
        aggregator: Optional[ThemeAggregator] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or InMemoryTrendStore()
        self.aggregator = aggregator or ThemeAggregator(self.settings)
        self.formation = TrendFormation(self.settings)
        self.forecaster = Forecaster(self.settings)
        self.guard = RecomputeGuard()
        self.cancel_event = threading.Event()

    # ── Stage 1: Aggregate ────────────────────────────────────────────

    def ingest(self, items: Iterable[ContentItem], now: Optional[datetime] = None) -> ThemeBatchResult:
        now = now or datetime.now(timezone.utc)
        retired = set(self.aggregator.retire_stale(now))
        result = self.aggregator.ingest(items, now)

        # Live snapshots come with the result; superseded and retired ones are persisted too
        inactive = retired | set(result.themes_merged)
        self.store.put_themes(result.themes)
        if inactive:
            self.store.put_themes(
                t for t in self.aggregator.themes(include_inactive=True) if t.id in inactive
            )
        return result

    # ── Stage 2: Form ─────────────────────────────────────────────────

    def form_trends(self, now: Optional[datetime] = None) -> FormationResult:
        now = now or datetime.now(timezone.utc)
        result = self.formation.form(
            self.aggregator.themes(),
            self.aggregator.items(),
            self.store.list_trends(active_only=True),
            now=now,
            theme_superseded=self.aggregator.superseded,
        )
        self.store.commit_formation(result)
        return result

    # ── Stage 3: Score ────────────────────────────────────────────────

    def recompute_trend(self, trend_id: str, now: Optional[datetime] = None) -> Trend:
        """Recompute one trend and persist it. Raises RecomputeConflict on overlap."""
        now = now or datetime.now(timezone.utc)
        with self.guard.hold(trend_id):
            trend = self.store.get(trend_id)
            if trend is None:
                raise KeyError(trend_id)
            themes = {t.id: t for t in self.aggregator.themes()}
            inputs = build_scoring_input(
                trend, themes, self.aggregator.items(), now, self.settings.scoring_window_days
            )
            updated = recompute(trend, inputs, now, self.settings)
            return self.store.put(updated, expected_version=trend.version)

    def recompute_all(
        self,
        now: Optional[datetime] = None,
        max_workers: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RecomputeBatchResult:
        """Recompute every live trend in parallel; failures are per trend.

        Cancellation comes from cancel_event when given, else from the
        pipeline-wide event set by cancel(). The pipeline-wide event is
        cleared once its batch finishes, so the next batch runs normally.
        """
        event = cancel_event if cancel_event is not None else self.cancel_event
        now = now or datetime.now(timezone.utc)
        max_workers = max_workers or self.settings.recompute_max_workers
        trend_ids = [t.id for t in self.store.list_trends(active_only=True)]
        before = {t.id: t.status for t in self.store.list_trends(active_only=True)}
        result = RecomputeBatchResult()
        lock = threading.Lock()

        def _run(trend_id: str) -> None:
            if event.is_set():
                with lock:
                    result.cancelled += 1
                return
            try:
                updated = self.recompute_trend(trend_id, now)
            except RecomputeConflict as e:
                logger.warning(str(e))
                with lock:
                    result.conflicts.append(trend_id)
                return
            except (KeyError, ValueError) as e:
                logger.warning(f"Recompute failed for {trend_id}: {type(e).__name__}: {e}")
                with lock:
                    result.failed[trend_id] = str(e)
                return
            with lock:
                result.updated.append(trend_id)
                old = before.get(trend_id)
                if old is not None and updated.status != old:
                    result.status_changes[trend_id] = f"{old.value}->{updated.status.value}"

        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            futures = [pool.submit(_run, tid) for tid in trend_ids]
            for future in as_completed(futures):
                future.result()
        if event is self.cancel_event:
            self.cancel_event.clear()

        logger.info(
            f"Recompute: {len(result.updated)} updated, {len(result.conflicts)} conflicts, "
            f"{len(result.failed)} failed, {result.cancelled} cancelled, "
            f"{len(result.status_changes)} status changes"
        )
        return result

    def cancel(self) -> None:
        """Stop starting new recomputes in the current or next batch; in-flight ones complete."""
        self.cancel_event.set()

    # ── Stage 4: Forecast ─────────────────────────────────────────────

    def forecast_trend(
        self,
        trend_id: str,
        horizon: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TrendPrediction:
        trend = self.store.get(trend_id)
        if trend is None:
            raise KeyError(trend_id)
        prediction = self.forecaster.forecast(trend, horizon, now)
        self.store.put_prediction(prediction)
        return prediction

    def forecast_all(self, horizon: Optional[int] = None, now: Optional[datetime] = None) -> ForecastBatchResult:
        result = ForecastBatchResult()
        for trend in self.store.list_trends(active_only=True):
            try:
                prediction = self.forecast_trend(trend.id, horizon, now)
            except InsufficientHistory as e:
                logger.debug(str(e))
                result.insufficient_history.append(trend.id)
                continue
            result.predictions.append(prediction)
            if prediction.high_opportunity:
                result.high_opportunity.append(trend.id)

        logger.info(
            f"Forecast: {len(result.predictions)} predictions, "
            f"{len(result.insufficient_history)} with insufficient history, "
            f"{len(result.high_opportunity)} high-opportunity"
        )
        return result

    # ── Full cycle / accessors ────────────────────────────────────────

    def run_cycle(self, items: Iterable[ContentItem], now: Optional[datetime] = None) -> List[Trend]:
        """Ingest → form → recompute. Returns live trends ranked by score."""
        now = now or datetime.now(timezone.utc)
        self.ingest(items, now)
        self.form_trends(now)
        self.recompute_all(now)
        return self.ranked_trends()

    def ranked_trends(self) -> List[Trend]:
        return sorted(self.store.list_trends(active_only=True), key=lambda t: (-t.score, t.id))

    def score_history(self, trend_id: str):
        return self.store.score_history(trend_id)
