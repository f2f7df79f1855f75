from datetime import timedelta

import numpy as np
import pytest

from app.schemas import ContentTheme, ScoreHistoryEntry, Trend
from app.schemas.base import EntityState
from app.trends.formation import TrendFormation, merge_histories

from conftest import NOW, basis, blend, make_item


def theme_of(theme_id, centroid, items, keywords=()):
    return ContentTheme(
        id=theme_id,
        name=theme_id,
        centroid=list(centroid),
        member_ids={i.item_id for i in items},
        platforms={i.platform for i in items},
        keywords=list(keywords),
    )


@pytest.fixture
def chain():
    """Three themes where t1~t2 and t2~t3 clear 0.85 but t1~t3 does not, plus an outlier."""
    angle = np.deg2rad(25)
    items = {
        "a": make_item("a", basis(0), platform="tiktok", likes=10),
        "b": make_item("b", basis(0), platform="instagram", likes=500),
        "c": make_item("c", basis(0), platform="youtube", likes=50),
        "d": make_item("d", basis(7), platform="reddit", likes=5),
    }
    themes = [
        theme_of("t1", blend([1.0, 0.0]), [items["a"]], ["glow"]),
        theme_of("t2", blend([np.cos(angle), np.sin(angle)]), [items["b"]], ["skin", "glow"]),
        theme_of("t3", blend([np.cos(2 * angle), np.sin(2 * angle)]), [items["c"]], ["skin"]),
        theme_of("t4", basis(7), [items["d"]], ["cars"]),
    ]
    return themes, items


def test_transitive_components_become_one_trend(settings, chain):
    themes, items = chain
    result = TrendFormation(settings).form(themes, items, now=NOW)

    by_themes = sorted(sorted(t.theme_ids) for t in result.trends)
    assert by_themes == [["t1", "t2", "t3"], ["t4"]]
    assert len(result.created) == 2


def test_trend_aggregates_constituent_themes(settings, chain):
    themes, items = chain
    result = TrendFormation(settings).form(themes, items, now=NOW)
    trend = [t for t in result.trends if "t1" in t.theme_ids][0]

    assert trend.platforms == {"tiktok", "instagram", "youtube"}
    assert trend.stats.content_count == 3
    assert trend.stats.total_likes == 560
    assert trend.example_content_ids == ["b", "c", "a"]
    assert trend.keywords[:2] == ["glow", "skin"]
    assert trend.name


def test_no_theme_is_claimed_twice(settings, chain):
    themes, items = chain
    result = TrendFormation(settings).form(themes, items, now=NOW)

    claimed = [tid for t in result.trends for tid in t.theme_ids]
    assert len(claimed) == len(set(claimed))


def test_existing_trend_keeps_its_identity(settings, chain):
    themes, items = chain
    formation = TrendFormation(settings)
    first = formation.form(themes, items, now=NOW)

    second = formation.form(themes, items, existing=first.trends, now=NOW + timedelta(hours=6))

    assert {t.id for t in second.trends} == {t.id for t in first.trends}
    assert second.created == []
    assert second.superseded == {}


def test_merging_existing_trends_supersedes_and_folds_history(settings, chain):
    themes, items = chain
    day1 = NOW - timedelta(days=2)
    day2 = NOW - timedelta(days=1)
    older = Trend(
        id="older", theme_ids={"t1", "t2"}, first_detected=NOW - timedelta(days=10),
        score_history=[
            ScoreHistoryEntry(date=day1, score=40, recorded_at=day1),
        ],
    )
    newer = Trend(
        id="newer", theme_ids={"t3"}, first_detected=NOW - timedelta(days=3),
        high_water_mark=70,
        score_history=[
            ScoreHistoryEntry(date=day1, score=45, recorded_at=day1 + timedelta(minutes=5)),
            ScoreHistoryEntry(date=day2, score=50, recorded_at=day2),
        ],
    )

    result = TrendFormation(settings).form(themes, items, existing=[older, newer], now=NOW)

    survivor = [t for t in result.trends if "t1" in t.theme_ids][0]
    assert survivor.id == "older"
    assert result.superseded == {"newer": "older"}
    assert [e.score for e in survivor.score_history] == [45, 50]
    assert survivor.high_water_mark == 70

    retired = result.retired[0]
    assert retired.id == "newer"
    assert retired.state == EntityState.SUPERSEDED
    assert retired.superseded_by == "older"
    assert retired.theme_ids == set()


def test_overlap_tie_goes_to_earliest_detected(settings, chain):
    themes, items = chain
    young = Trend(id="young", theme_ids={"t1"}, first_detected=NOW - timedelta(days=1))
    old = Trend(id="old", theme_ids={"t3"}, first_detected=NOW - timedelta(days=5))

    result = TrendFormation(settings).form(themes, items, existing=[young, old], now=NOW)

    assert result.superseded == {"young": "old"}


def test_merge_histories_later_recording_wins():
    day = NOW - timedelta(days=1)
    a = [ScoreHistoryEntry(date=day, score=10, recorded_at=day)]
    b = [
        ScoreHistoryEntry(date=day, score=20, recorded_at=day + timedelta(hours=1)),
        ScoreHistoryEntry(date=NOW, score=30, recorded_at=NOW),
    ]
    merged = merge_histories(a, b)
    assert [e.score for e in merged] == [20, 30]
    assert merge_histories(b, a) == merged
