"""
Trend formation, scoring and forecasting core.

Pipeline (TrendPipeline):
  Stage 1 (Aggregate): items → similarity index → content themes
  Stage 2 (Form):      theme centroids → union-find → trends
  Stage 3 (Score):     weighted score → velocity → lifecycle → history
  Stage 4 (Forecast):  history → Holt-Winters + seasonality → prediction

Modules:
  - engine.py: TrendPipeline (orchestration, parallel recompute)
  - similarity.py: copy-on-write cosine similarity index
  - clustering.py: disjoint-set threshold clustering
  - themes.py: ThemeAggregator
  - formation.py: TrendFormation
  - signals/: engagement, temporal and composite score terms
  - lifecycle.py: status transition table
  - scoring.py: recompute(), RecomputeGuard
  - forecaster.py: Forecaster, flag_high_opportunity
  - store.py: TrendStore contract, InMemoryTrendStore
  - errors.py: typed failures
"""

from app.trends.engine import TrendPipeline
from app.trends.errors import (
    Conflict, DimensionMismatch, InsufficientHistory, RecomputeConflict,
    TrendEngineError, ValidationError,
)
from app.trends.forecaster import Forecaster, flag_high_opportunity
from app.trends.formation import TrendFormation
from app.trends.scoring import RecomputeGuard, ScoringInput, apply_score, recompute
from app.trends.similarity import SimilarityIndex, similarity
from app.trends.store import InMemoryTrendStore, TrendStore
from app.trends.themes import ThemeAggregator
