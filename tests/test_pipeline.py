import threading
from datetime import timedelta

import pytest

from app.database import SqlTrendStore
from app.main import load_items
from app.schemas import TrendStatus
from app.trends import TrendPipeline
from app.trends.errors import RecomputeConflict

from conftest import NOW, basis, jitter, make_item, trend_with_history


def batch(prefix, seed=0, hours_ago=2):
    beauty = [
        make_item(f"{prefix}-b{i}", jitter(basis(0), seed + i), platform=p, hours_ago=hours_ago + i,
                  keywords=["glass skin", "serum"])
        for i, p in enumerate(["tiktok", "instagram", "tiktok"])
    ]
    cars = [
        make_item(f"{prefix}-c{i}", jitter(basis(5), seed + 100 + i), platform="youtube",
                  hours_ago=hours_ago + i, keywords=["ev"])
        for i in range(2)
    ]
    return beauty + cars


@pytest.fixture
def pipeline(settings):
    return TrendPipeline(settings=settings)


def test_run_cycle_forms_and_scores_trends(pipeline):
    trends = pipeline.run_cycle(batch("x"), NOW)

    assert len(trends) == 2
    assert trends[0].score >= trends[1].score
    beauty = [t for t in trends if "tiktok" in t.platforms][0]
    assert beauty.platforms == {"tiktok", "instagram"}
    assert beauty.keywords[:2] == ["glass skin", "serum"]
    for trend in trends:
        assert 0.0 <= trend.score <= 100.0
        assert len(trend.score_history) == 1
        assert trend.status == TrendStatus.EMERGING
        assert set(trend.score_breakdown) == {
            "engagement_velocity", "content_volume", "recency", "cross_platform",
        }


def test_repeated_cycles_keep_trend_identity(pipeline):
    first = {t.id for t in pipeline.run_cycle(batch("x"), NOW)}
    second = pipeline.run_cycle(batch("y", seed=50), NOW + timedelta(hours=6))

    assert {t.id for t in second} == first
    assert all(len(t.score_history) == 2 for t in second)
    beauty = [t for t in second if "tiktok" in t.platforms][0]
    assert beauty.stats.content_count == 6


def test_replaying_a_batch_is_idempotent(pipeline):
    pipeline.ingest(batch("x"), NOW)
    themes_before = sorted((t.id, tuple(sorted(t.member_ids))) for t in pipeline.aggregator.themes())

    result = pipeline.ingest(batch("x"), NOW)

    assert result.skipped_duplicate == 5
    themes_after = sorted((t.id, tuple(sorted(t.member_ids))) for t in pipeline.aggregator.themes())
    assert themes_after == themes_before


def test_themes_are_persisted(pipeline):
    result = pipeline.ingest(batch("x"), NOW)
    for theme in result.themes:
        assert pipeline.store.get_theme(theme.id).member_ids == theme.member_ids


def test_overlapping_recompute_conflicts(pipeline):
    trends = pipeline.run_cycle(batch("x"), NOW)
    busy = trends[0].id

    with pipeline.guard.hold(busy):
        with pytest.raises(RecomputeConflict):
            pipeline.recompute_trend(busy, NOW + timedelta(hours=6))
        result = pipeline.recompute_all(NOW + timedelta(hours=6))

    assert result.conflicts == [busy]
    assert result.updated == [trends[1].id]
    assert len(pipeline.store.get(busy).score_history) == 1


def test_cancel_stops_new_recomputes(pipeline):
    pipeline.run_cycle(batch("x"), NOW)
    pipeline.cancel()

    result = pipeline.recompute_all(NOW + timedelta(hours=6))

    assert result.cancelled == 2
    assert result.updated == []

    again = pipeline.recompute_all(NOW + timedelta(hours=12))
    assert again.cancelled == 0
    assert len(again.updated) == 2


def test_cancel_event_applies_to_its_own_call(pipeline):
    pipeline.run_cycle(batch("x"), NOW)
    stop = threading.Event()
    stop.set()

    stopped = pipeline.recompute_all(NOW + timedelta(hours=6), cancel_event=stop)
    assert stopped.cancelled == 2
    assert not pipeline.cancel_event.is_set()

    ran = pipeline.recompute_all(NOW + timedelta(hours=12))
    assert len(ran.updated) == 2
    assert stop.is_set()


def test_forecast_all_reports_short_histories(pipeline):
    trends = pipeline.run_cycle(batch("x"), NOW)
    seasoned = trend_with_history([40.0 + i * 0.5 for i in range(40)])
    pipeline.store.put(seasoned)

    result = pipeline.forecast_all(horizon=10, now=NOW)

    assert sorted(result.insufficient_history) == sorted(t.id for t in trends)
    assert [p.trend_id for p in result.predictions] == [seasoned.id]
    assert pipeline.store.get_prediction(seasoned.id).horizon_days == 10


def test_pipeline_over_sql_store(settings):
    store = SqlTrendStore("sqlite://")
    store.create_tables()
    pipeline = TrendPipeline(settings=settings, store=store)

    trends = pipeline.run_cycle(batch("x"), NOW)

    assert len(trends) == 2
    assert all(t.version >= 2 for t in trends)


def test_load_items_skips_malformed_lines(tmp_path):
    good = make_item("ok", basis(0)).model_dump_json()
    path = tmp_path / "items.jsonl"
    path.write_text(f"{good}\nnot json\n{{\"item_id\": 1}}\n\n", encoding="utf-8")

    items = load_items(path)

    assert [i.item_id for i in items] == ["ok"]
