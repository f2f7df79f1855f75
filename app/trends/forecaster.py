"""
Trend forecaster: projects a trend's score trajectory from its history.

Pipeline:
  score_history → daily series (last entry per day, gaps interpolated)
  → seasonality detection (autocorrelation of the linearly detrended series
    at candidate lags; strongest local ACF peak above threshold wins)
  → Holt-Winters exponential smoothing (additive damped trend, additive
    seasonal component when a period was detected)
  → per-day prediction with bounds widening as z·σ·√h
  → one confidence scalar for the run: 1/(1 + σ/level) decayed by
    e^(-horizon / decay_days), so longer horizons never score higher.

Never mutates the Trend. Raises InsufficientHistory below
FORECAST_MIN_HISTORY score-history entries. Several entries on one day
collapse to a single point of the fitting series.

REF: statsmodels Holt-Winters ExponentialSmoothing; Box & Jenkins ACF
     significance bound ±1.96/√n.
"""

import logging
import math
import warnings
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from statsmodels.tools.sm_exceptions import ConvergenceWarning
from statsmodels.tsa.holtwinters import ExponentialSmoothing
from statsmodels.tsa.stattools import acf

from app.config import Settings, get_settings
from app.schemas.base import growth_pct
from app.schemas.trends import (
    DailyPrediction, ScoreHistoryEntry, SeasonalPattern, Trend, TrendPrediction,
)
from app.trends.errors import InsufficientHistory

logger = logging.getLogger(__name__)

# Holt-Winters needs a handful of daily points to estimate level, trend and damping
MIN_SMOOTHING_DAYS = 10


def daily_series(history: List[ScoreHistoryEntry]) -> Tuple[pd.Series, int]:
    """Collapse history to one value per calendar day.

    Returns (series, observed_days). The series has a daily index from the
    first to the last observed day; missing days are linearly interpolated.
    """
    if not history:
        return pd.Series(dtype=float), 0

    frame = pd.DataFrame(
        {
            "date": [e.date for e in history],
            "recorded_at": [e.recorded_at for e in history],
            "score": [e.score for e in history],
        }
    )
    frame["date"] = pd.to_datetime(frame["date"], utc=True)
    frame["recorded_at"] = pd.to_datetime(frame["recorded_at"], utc=True)
    frame = frame.sort_values(["date", "recorded_at"])
    frame["day"] = frame["date"].dt.normalize()

    per_day = frame.groupby("day")["score"].last()
    observed = int(per_day.shape[0])
    series = per_day.asfreq("D").interpolate(method="linear", limit_direction="both")
    return series, observed


def detect_seasonality(
    values: np.ndarray,
    max_period: int = 31,
    min_acf: float = 0.3,
) -> Optional[Tuple[int, float]]:
    """Find the dominant seasonal lag. Returns (period, autocorrelation) or None."""
    n = len(values)
    max_lag = min(max_period, n // 2)
    if max_lag < 2:
        return None

    x = np.arange(n, dtype=float)
    slope, intercept = np.polyfit(x, values, 1)
    detrended = values - (slope * x + intercept)
    if np.allclose(detrended, 0.0):
        return None

    correlations = acf(detrended, nlags=max_lag, fft=True)
    threshold = max(min_acf, 1.96 / math.sqrt(n))

    best: Optional[Tuple[int, float]] = None
    for lag in range(2, max_lag + 1):
        r = float(correlations[lag])
        if r < threshold or r <= correlations[lag - 1]:
            continue
        if lag < max_lag and r < correlations[lag + 1]:
            continue
        if best is None or r > best[1]:
            best = (lag, r)

    if best:
        logger.debug(f"Seasonality: period={best[0]}d acf={best[1]:.3f} (threshold {threshold:.3f})")
    return best


def _seasonal_profile(values: np.ndarray, period: int) -> np.ndarray:
    """Mean detrended value per position in the cycle (fallback when the fit has no season)."""
    x = np.arange(len(values), dtype=float)
    slope, intercept = np.polyfit(x, values, 1)
    detrended = values - (slope * x + intercept)
    profile = np.array([detrended[k::period].mean() for k in range(period)])
    return profile - profile.mean()


def flag_high_opportunity(
    prediction: TrendPrediction,
    settings: Optional[Settings] = None,
) -> bool:
    """High confidence plus strong projected growth (first → last predicted score)."""
    settings = settings or get_settings()
    if not prediction.predictions:
        return False
    first = prediction.predictions[0].predicted_score
    last = prediction.predictions[-1].predicted_score
    growth = growth_pct(last, first)
    return (
        prediction.confidence >= settings.high_opportunity_confidence
        and growth >= settings.high_opportunity_growth_pct
    )


class Forecaster:
    """Produces TrendPrediction records from score history."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def confidence(self, sigma: float, level: float, horizon: int) -> float:
        """Base confidence from residual spread, decayed with horizon length."""
        cv = sigma / max(abs(level), 1.0)
        base = 1.0 / (1.0 + cv)
        decay = math.exp(-max(horizon, 0) / max(self.settings.forecast_confidence_decay_days, 1e-9))
        return max(0.0, min(1.0, base * decay))

    def forecast(
        self,
        trend: Trend,
        horizon: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TrendPrediction:
        horizon = horizon if horizon is not None else self.settings.forecast_horizon_days
        if horizon < 1:
            raise ValueError(f"Forecast horizon must be at least 1 day, got {horizon}")
        now = now or datetime.now(timezone.utc)

        required = self.settings.forecast_min_history
        if len(trend.score_history) < required:
            raise InsufficientHistory(trend.id, len(trend.score_history), required)

        series, observed_days = daily_series(trend.score_history)

        values = series.to_numpy(dtype=float)
        n = len(values)

        detected = detect_seasonality(
            values, self.settings.seasonal_max_period, self.settings.seasonal_acf_threshold
        )
        period = detected[0] if detected else None

        fitted_values, forecast_values, season = self._fit(values, period, horizon)
        residuals = values - fitted_values
        sigma = float(np.std(residuals, ddof=1)) if n > 1 else 0.0
        if not math.isfinite(sigma):
            sigma = 0.0

        seasonal_pattern = None
        if period:
            if season is not None and len(season) >= period:
                profile = np.asarray(season[-period:], dtype=float)
                offset = n - period
            else:
                profile = _seasonal_profile(values, period)
                offset = 0
            seasonal_pattern = SeasonalPattern(
                period=period,
                amplitude=float((profile.max() - profile.min()) / 2.0),
                phase=int((offset + int(np.argmax(profile))) % period),
                autocorrelation=round(detected[1], 4),
            )

        z = self.settings.forecast_interval_z
        last_day = series.index[-1].to_pydatetime()
        predictions = []
        for h in range(1, horizon + 1):
            predicted = float(np.clip(forecast_values[h - 1], 0.0, 100.0))
            half_width = z * sigma * math.sqrt(h)
            predictions.append(
                DailyPrediction(
                    date=last_day + timedelta(days=h),
                    predicted_score=predicted,
                    lower_bound=max(0.0, predicted - half_width),
                    upper_bound=min(100.0, predicted + half_width),
                )
            )

        level = float(np.mean(values[-min(n, 7):]))
        prediction = TrendPrediction(
            trend_id=trend.id,
            predictions=predictions,
            seasonal_pattern=seasonal_pattern,
            confidence=self.confidence(sigma, level, horizon),
            horizon_days=horizon,
            projected_growth_pct=growth_pct(predictions[-1].predicted_score, predictions[0].predicted_score),
            generated_at=now,
        )
        prediction.high_opportunity = flag_high_opportunity(prediction, self.settings)

        logger.info(
            f"Forecast {trend.id[:8]}: {len(trend.score_history)} points over {observed_days} days → {horizon}d, "
            f"period={period or '-'}, sigma={sigma:.2f}, confidence={prediction.confidence:.2f}, "
            f"growth={prediction.projected_growth_pct:+.1f}%"
            f"{' [HIGH OPPORTUNITY]' if prediction.high_opportunity else ''}"
        )
        return prediction

    def _fit(
        self,
        values: np.ndarray,
        period: Optional[int],
        horizon: int,
    ) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
        """Holt-Winters fit. Returns (fitted, forecast, seasonal component or None)."""
        if np.ptp(values) < 1e-9:
            flat = np.full(horizon, values[-1])
            return values.copy(), flat, None

        if len(values) < MIN_SMOOTHING_DAYS:
            logger.debug(f"Only {len(values)} daily points, using damped linear fit")
            return self._linear_fallback(values, horizon)

        seasonal = "add" if period and len(values) >= 2 * period else None
        try:
            model = ExponentialSmoothing(
                values,
                trend="add",
                damped_trend=True,
                seasonal=seasonal,
                seasonal_periods=period if seasonal else None,
                initialization_method="estimated",
            )
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                warnings.simplefilter("ignore", RuntimeWarning)
                fit = model.fit()
            fitted = np.asarray(fit.fittedvalues, dtype=float)
            forecast = np.asarray(fit.forecast(horizon), dtype=float)
            season = np.asarray(fit.season, dtype=float) if seasonal else None
            if np.all(np.isfinite(fitted)) and np.all(np.isfinite(forecast)):
                return fitted, forecast, season
            logger.warning("Holt-Winters produced non-finite values, using damped linear fallback")
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.warning(f"Holt-Winters fit failed ({type(e).__name__}: {e}), using damped linear fallback")

        return self._linear_fallback(values, horizon)

    @staticmethod
    def _linear_fallback(values: np.ndarray, horizon: int) -> Tuple[np.ndarray, np.ndarray, None]:
        x = np.arange(len(values), dtype=float)
        slope, intercept = np.polyfit(x, values, 1)
        fitted = slope * x + intercept
        damping = 0.9 ** np.arange(1, horizon + 1)
        forecast = values[-1] + slope * np.cumsum(damping)
        return fitted, forecast, None
