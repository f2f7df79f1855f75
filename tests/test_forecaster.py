import math
from datetime import timedelta

import numpy as np
import pytest

from app.schemas import DailyPrediction, TrendPrediction
from app.trends.errors import InsufficientHistory
from app.trends.forecaster import Forecaster, daily_series, detect_seasonality, flag_high_opportunity
from app.trends.scoring import apply_score

from conftest import NOW, trend_with_history


def noisy(n, seed=3, base=50.0, slope=0.2, noise=2.0):
    rng = np.random.default_rng(seed)
    return [float(np.clip(base + slope * t + rng.normal(0, noise), 0, 100)) for t in range(n)]


def weekly(n, amplitude=10.0):
    return [50.0 + amplitude * math.sin(2 * math.pi * t / 7) + 0.1 * t for t in range(n)]


def test_rejects_short_history(settings):
    with pytest.raises(InsufficientHistory) as exc:
        Forecaster(settings).forecast(trend_with_history(noisy(29)), 7, NOW)
    assert exc.value.available == 29
    assert exc.value.required == 30


def test_minimum_history_is_enough(settings):
    prediction = Forecaster(settings).forecast(trend_with_history(noisy(30)), 7, NOW)
    assert len(prediction.predictions) == 7
    assert prediction.horizon_days == 7


def test_history_is_counted_in_points_not_days(settings):
    trend = trend_with_history([])
    start = NOW - timedelta(days=8)
    for cycle, score in enumerate(noisy(30)):
        trend = apply_score(trend, score, start + timedelta(hours=6 * cycle), settings=settings)
    assert len(trend.score_history) == 30

    prediction = Forecaster(settings).forecast(trend, 7, NOW)

    assert len(prediction.predictions) == 7
    for day in prediction.predictions:
        assert day.lower_bound <= day.predicted_score <= day.upper_bound

    trend.score_history.pop()
    with pytest.raises(InsufficientHistory):
        Forecaster(settings).forecast(trend, 7, NOW)


def test_daily_series_keeps_last_entry_and_fills_gaps():
    trend = trend_with_history([10.0, 20.0, 30.0])
    history = trend.score_history
    later_same_day = history[0].model_copy(update={
        "date": history[0].date + timedelta(hours=3),
        "score": 15.0,
        "recorded_at": history[0].recorded_at + timedelta(hours=3),
    })
    gap = history[2].model_copy(update={
        "date": history[2].date + timedelta(days=2),
        "score": 50.0,
        "recorded_at": history[2].recorded_at + timedelta(days=2),
    })
    series, observed = daily_series([history[0], later_same_day, history[1], history[2], gap])

    assert observed == 4
    assert list(series.round(3)) == [15.0, 20.0, 30.0, 40.0, 50.0]


def test_bounds_and_confidence(settings):
    prediction = Forecaster(settings).forecast(trend_with_history(noisy(45)), 14, NOW)

    assert 0.0 <= prediction.confidence <= 1.0
    for day in prediction.predictions:
        assert 0.0 <= day.lower_bound <= day.predicted_score <= day.upper_bound <= 100.0
    dates = [d.date for d in prediction.predictions]
    assert dates == sorted(dates)
    assert dates[0] > trend_with_history(noisy(45)).score_history[-1].date


def test_confidence_never_increases_with_horizon(settings):
    forecaster = Forecaster(settings)
    trend = trend_with_history(noisy(40))
    confidences = [forecaster.forecast(trend, h, NOW).confidence for h in (5, 15, 30, 90)]
    assert confidences == sorted(confidences, reverse=True)


def test_forecast_does_not_mutate_trend(settings):
    trend = trend_with_history(noisy(35))
    before = trend.model_dump()
    Forecaster(settings).forecast(trend, 10, NOW)
    assert trend.model_dump() == before


def test_detects_weekly_period(settings):
    values = np.asarray(weekly(60))
    period, r = detect_seasonality(values, settings.seasonal_max_period, settings.seasonal_acf_threshold)
    assert abs(period - 7) <= 0.7
    assert r > settings.seasonal_acf_threshold

    prediction = Forecaster(settings).forecast(trend_with_history(weekly(60)), 14, NOW)
    assert prediction.seasonal_pattern is not None
    assert abs(prediction.seasonal_pattern.period - 7) <= 0.7
    assert prediction.seasonal_pattern.amplitude > 0


def test_no_seasonality_in_straight_line():
    values = np.arange(40, dtype=float)
    assert detect_seasonality(values) is None


def test_flat_history_forecasts_flat(settings):
    prediction = Forecaster(settings).forecast(trend_with_history([42.0] * 30), 5, NOW)
    assert [d.predicted_score for d in prediction.predictions] == [42.0] * 5
    assert prediction.seasonal_pattern is None


def _prediction(start, end, confidence):
    days = [
        DailyPrediction(date=NOW + timedelta(days=i + 1), predicted_score=s, lower_bound=s, upper_bound=s)
        for i, s in enumerate(np.linspace(start, end, 5))
    ]
    return TrendPrediction(trend_id="t", predictions=days, confidence=confidence, horizon_days=5)


def test_high_opportunity_flag(settings):
    assert flag_high_opportunity(_prediction(40, 50, 0.85), settings) is True
    assert flag_high_opportunity(_prediction(40, 44, 0.85), settings) is False
    assert flag_high_opportunity(_prediction(40, 60, 0.5), settings) is False
