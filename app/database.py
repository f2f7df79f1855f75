"""
SQLite/SQLAlchemy implementation of the TrendStore contract.

Tables:
  - trends: one row per trend (live or superseded), JSON payload + version
  - trend_predictions: latest prediction per trend, JSON payload
  - content_themes: theme snapshots, JSON payload

Entities are stored whole as JSON (pydantic model_dump_json) next to the few
columns needed for lookups and the optimistic version check. A formation
commit is one transaction.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import Column, DateTime, Float, Integer, String, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import get_settings
from .schemas.content import ContentTheme
from .schemas.pipeline import FormationResult
from .schemas.trends import ScoreHistoryEntry, Trend, TrendPrediction
from .trends.errors import RecomputeConflict
from .trends.store import TrendStore

logger = logging.getLogger(__name__)

Base = declarative_base()


# ── Models ───────────────────────────────────────────────────────────────────

class TrendModel(Base):
    """Trend record (live or superseded)."""
    __tablename__ = "trends"

    id = Column(String(64), primary_key=True)
    name = Column(String(500))
    state = Column(String(20), default="active", index=True)
    status = Column(String(20))
    score = Column(Float, default=0.0)
    version = Column(Integer, default=0, nullable=False)
    payload = Column(Text, nullable=False)  # Trend JSON
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PredictionModel(Base):
    """Latest forecast per trend."""
    __tablename__ = "trend_predictions"

    trend_id = Column(String(64), primary_key=True)
    payload = Column(Text, nullable=False)  # TrendPrediction JSON
    generated_at = Column(DateTime)


class ThemeModel(Base):
    """Content theme snapshot."""
    __tablename__ = "content_themes"

    id = Column(String(64), primary_key=True)
    state = Column(String(20), default="active", index=True)
    payload = Column(Text, nullable=False)  # ContentTheme JSON
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ── Store ────────────────────────────────────────────────────────────────────

class SqlTrendStore(TrendStore):
    """TrendStore backed by any SQLAlchemy URL (SQLite by default)."""

    def __init__(self, database_url: Optional[str] = None):
        url = database_url or get_settings().database_url
        if "aiosqlite" in url:
            url = url.replace("sqlite+aiosqlite", "sqlite")

        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same in-memory DB
            self.engine = create_engine(
                url, echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)
        # One connection may be shared across threads (in-memory SQLite); serialize sessions in-process
        self._lock = threading.RLock()

    def create_tables(self):
        """Create all tables (safe to call multiple times)."""
        Base.metadata.create_all(self.engine)

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        with self._lock:
            session = self.SessionLocal()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    # ── Trends ────────────────────────────────────────────────────────

    @staticmethod
    def _to_row(row: Optional[TrendModel], trend: Trend, version: int) -> TrendModel:
        stored = trend.model_copy(update={"version": version})
        row = row or TrendModel(id=trend.id)
        row.name = trend.name[:500]
        row.state = trend.state.value
        row.status = trend.status.value
        row.score = trend.score
        row.version = version
        row.payload = stored.model_dump_json()
        return row

    def _write(self, session: Session, trend: Trend, expected_version: Optional[int]) -> Trend:
        row = session.get(TrendModel, trend.id)
        current_version = row.version if row else 0
        if expected_version is not None and current_version != expected_version:
            raise RecomputeConflict(
                trend.id, f"stored version {current_version}, writer read {expected_version}"
            )
        row = self._to_row(row, trend, current_version + 1)
        session.add(row)
        return Trend.model_validate_json(row.payload)

    def get(self, trend_id: str) -> Optional[Trend]:
        with self.get_session() as session:
            row = session.get(TrendModel, trend_id)
            return Trend.model_validate_json(row.payload) if row else None

    def put(self, trend: Trend, expected_version: Optional[int] = None) -> Trend:
        with self.get_session() as session:
            return self._write(session, trend, expected_version)

    def append_history(self, trend_id: str, entry: ScoreHistoryEntry) -> Trend:
        with self.get_session() as session:
            row = session.get(TrendModel, trend_id)
            if row is None:
                raise KeyError(trend_id)
            trend = Trend.model_validate_json(row.payload)
            last = trend.previous_entry
            if last is not None and entry.date < last.date:
                raise ValueError(
                    f"History for {trend_id} is append-only: {entry.date} precedes {last.date}"
                )
            trend.score_history.append(entry)
            return self._write(session, trend, row.version)

    def list_trends(self, active_only: bool = True) -> List[Trend]:
        with self.get_session() as session:
            query = session.query(TrendModel)
            if active_only:
                query = query.filter(TrendModel.state == "active")
            return [Trend.model_validate_json(r.payload) for r in query.order_by(TrendModel.id).all()]

    def commit_formation(self, result: FormationResult) -> None:
        with self.get_session() as session:
            for trend in list(result.trends) + list(result.retired):
                existing = session.get(TrendModel, trend.id)
                self._write(session, trend, trend.version if existing else None)
        logger.debug(
            f"Committed formation: {len(result.trends)} live trends, {len(result.retired)} superseded"
        )

    # ── Predictions ───────────────────────────────────────────────────

    def put_prediction(self, prediction: TrendPrediction) -> None:
        with self.get_session() as session:
            session.merge(PredictionModel(
                trend_id=prediction.trend_id,
                payload=prediction.model_dump_json(),
                generated_at=prediction.generated_at,
            ))

    def get_prediction(self, trend_id: str) -> Optional[TrendPrediction]:
        with self.get_session() as session:
            row = session.get(PredictionModel, trend_id)
            return TrendPrediction.model_validate_json(row.payload) if row else None

    # ── Themes ────────────────────────────────────────────────────────

    def put_themes(self, themes: Iterable[ContentTheme]) -> None:
        with self.get_session() as session:
            for theme in themes:
                session.merge(ThemeModel(
                    id=theme.id,
                    state=theme.state.value,
                    payload=theme.model_dump_json(),
                ))

    def get_theme(self, theme_id: str) -> Optional[ContentTheme]:
        with self.get_session() as session:
            row = session.get(ThemeModel, theme_id)
            return ContentTheme.model_validate_json(row.payload) if row else None

