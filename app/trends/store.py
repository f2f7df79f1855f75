"""
Storage-agnostic persistence contract for themes, trends and predictions.

The core treats storage as a key-addressed map:
  get(id) / put(entity) / append_history(trend_id, entry)
each atomic for a single entity. commit_formation() writes every trend of a
formation pass (survivors, new trends, superseded trends) in one step so a
reader never sees two live trends claiming the same theme.

Writes are optimistic: put() and commit_formation() compare the stored
version with the version the writer read, and raise RecomputeConflict when
someone else got there first. The stored copy always carries version + 1.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from app.schemas.content import ContentTheme
from app.schemas.pipeline import FormationResult
from app.schemas.trends import ScoreHistoryEntry, Trend, TrendPrediction
from app.trends.errors import RecomputeConflict

logger = logging.getLogger(__name__)


class TrendStore(ABC):
    """Persistence contract consumed by the pipeline."""

    @abstractmethod
    def get(self, trend_id: str) -> Optional[Trend]:
        ...

    @abstractmethod
    def put(self, trend: Trend, expected_version: Optional[int] = None) -> Trend:
        """Store a trend. expected_version=None skips the version check."""

    @abstractmethod
    def append_history(self, trend_id: str, entry: ScoreHistoryEntry) -> Trend:
        ...

    @abstractmethod
    def list_trends(self, active_only: bool = True) -> List[Trend]:
        ...

    @abstractmethod
    def commit_formation(self, result: FormationResult) -> None:
        ...

    @abstractmethod
    def put_prediction(self, prediction: TrendPrediction) -> None:
        ...

    @abstractmethod
    def get_prediction(self, trend_id: str) -> Optional[TrendPrediction]:
        ...

    @abstractmethod
    def put_themes(self, themes: Iterable[ContentTheme]) -> None:
        ...

    @abstractmethod
    def get_theme(self, theme_id: str) -> Optional[ContentTheme]:
        ...

    def score_history(self, trend_id: str) -> List[ScoreHistoryEntry]:
        """Ascending-by-date history for charting. Empty for unknown ids."""
        trend = self.get(trend_id)
        if trend is None:
            return []
        return sorted(trend.score_history, key=lambda e: (e.date, e.recorded_at))


class InMemoryTrendStore(TrendStore):
    """Thread-safe dict-backed store. Returns copies, never live references."""

    def __init__(self):
        self._lock = threading.RLock()
        self._trends: Dict[str, Trend] = {}
        self._predictions: Dict[str, TrendPrediction] = {}
        self._themes: Dict[str, ContentTheme] = {}

    def get(self, trend_id: str) -> Optional[Trend]:
        with self._lock:
            trend = self._trends.get(trend_id)
            return trend.model_copy(deep=True) if trend else None

    def _check_version(self, trend: Trend, expected_version: Optional[int]) -> int:
        current = self._trends.get(trend.id)
        current_version = current.version if current else 0
        if expected_version is not None and current_version != expected_version:
            raise RecomputeConflict(
                trend.id, f"stored version {current_version}, writer read {expected_version}"
            )
        return current_version

    def put(self, trend: Trend, expected_version: Optional[int] = None) -> Trend:
        with self._lock:
            current_version = self._check_version(trend, expected_version)
            stored = trend.model_copy(deep=True, update={"version": current_version + 1})
            self._trends[trend.id] = stored
            return stored.model_copy(deep=True)

    def append_history(self, trend_id: str, entry: ScoreHistoryEntry) -> Trend:
        with self._lock:
            trend = self._trends.get(trend_id)
            if trend is None:
                raise KeyError(trend_id)
            last = trend.score_history[-1] if trend.score_history else None
            if last is not None and entry.date < last.date:
                raise ValueError(
                    f"History for {trend_id} is append-only: {entry.date} precedes {last.date}"
                )
            updated = trend.model_copy(deep=True)
            updated.score_history.append(entry)
            updated.version = trend.version + 1
            self._trends[trend_id] = updated
            return updated.model_copy(deep=True)

    def list_trends(self, active_only: bool = True) -> List[Trend]:
        with self._lock:
            return [
                t.model_copy(deep=True)
                for t in self._trends.values()
                if t.is_active or not active_only
            ]

    def commit_formation(self, result: FormationResult) -> None:
        with self._lock:
            # Validate everything first so a conflict leaves the store untouched
            writes = list(result.trends) + list(result.retired)
            versions = {}
            for trend in writes:
                expected = trend.version if trend.id in self._trends else None
                versions[trend.id] = self._check_version(trend, expected)

            for trend in writes:
                self._trends[trend.id] = trend.model_copy(
                    deep=True, update={"version": versions[trend.id] + 1}
                )
        logger.debug(
            f"Committed formation: {len(result.trends)} live trends, {len(result.retired)} superseded"
        )

    def put_prediction(self, prediction: TrendPrediction) -> None:
        with self._lock:
            self._predictions[prediction.trend_id] = prediction.model_copy(deep=True)

    def get_prediction(self, trend_id: str) -> Optional[TrendPrediction]:
        with self._lock:
            prediction = self._predictions.get(trend_id)
            return prediction.model_copy(deep=True) if prediction else None

    def put_themes(self, themes: Iterable[ContentTheme]) -> None:
        with self._lock:
            for theme in themes:
                self._themes[theme.id] = theme.model_copy(deep=True)

    def get_theme(self, theme_id: str) -> Optional[ContentTheme]:
        with self._lock:
            theme = self._themes.get(theme_id)
            return theme.model_copy(deep=True) if theme else None
