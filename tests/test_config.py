import pytest

from app.config import Settings


def test_defaults():
    settings = Settings()
    assert settings.theme_similarity_threshold == 0.80
    assert settings.trend_similarity_threshold == 0.85
    assert settings.forecast_min_history == 30
    assert settings.get_score_weights() == {
        "engagement_velocity": 0.4,
        "content_volume": 0.3,
        "recency": 0.2,
        "cross_platform": 0.1,
    }
    assert settings.get_signal_precedence() == ["sustained_decline", "falling", "recovery", "new_high"]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("THEME_SIMILARITY_THRESHOLD", "0.7")
    monkeypatch.setenv("TREND_SCORE_WEIGHTS", '{"recency": 0.5}')
    monkeypatch.setenv("LIFECYCLE_SIGNAL_PRECEDENCE", "new_high, recovery")

    settings = Settings()

    assert settings.theme_similarity_threshold == pytest.approx(0.7)
    assert settings.get_score_weights()["recency"] == 0.5
    assert settings.get_score_weights()["engagement_velocity"] == 0.4
    assert settings.get_signal_precedence() == ["new_high", "recovery"]
