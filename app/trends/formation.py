"""
Trend formation: merges related ContentThemes into Trend entities.

Pipeline: active theme centroids → pairwise cosine → union-find at
TREND_SIMILARITY_THRESHOLD → connected components → one Trend each.

Identity across runs: a component keeps the id of the existing trend that
already claims most of its themes. When a component spans several existing
trends, the others are retired: marked superseded (ids are never reused)
and their score history is folded into the survivor.

Pure transform: takes snapshots, returns new snapshots in a
FormationResult. The caller commits the result atomically so no reader ever
sees two live trends claiming the same theme.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Set

from app.config import Settings, get_settings
from app.schemas.base import EntityState, EngagementStats
from app.schemas.content import ContentItem, ContentTheme
from app.schemas.pipeline import FormationResult
from app.schemas.trends import ScoreHistoryEntry, Trend
from app.trends.clustering import threshold_components
from app.trends.signals.engagement import aggregate_item_stats, combine_stats

logger = logging.getLogger(__name__)


def merge_histories(
    survivor: List[ScoreHistoryEntry],
    retired: List[ScoreHistoryEntry],
) -> List[ScoreHistoryEntry]:
    """Union of two histories keyed by date; later-recorded entry wins a collision."""
    by_date: Dict[datetime, ScoreHistoryEntry] = {}
    for entry in list(survivor) + list(retired):
        current = by_date.get(entry.date)
        if current is None or entry.recorded_at >= current.recorded_at:
            by_date[entry.date] = entry
    return [by_date[d] for d in sorted(by_date)]


def _resolve(theme_id: str, superseded: Mapping[str, str]) -> str:
    seen: Set[str] = set()
    while theme_id in superseded and theme_id not in seen:
        seen.add(theme_id)
        theme_id = superseded[theme_id]
    return theme_id


class TrendFormation:
    """Owns Trend creation and constituent-theme membership."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.threshold = self.settings.trend_similarity_threshold

    def form(
        self,
        themes: Iterable[ContentTheme],
        items: Mapping[str, ContentItem],
        existing: Iterable[Trend] = (),
        now: Optional[datetime] = None,
        theme_superseded: Optional[Mapping[str, str]] = None,
    ) -> FormationResult:
        now = now or datetime.now(timezone.utc)
        theme_superseded = theme_superseded or {}

        live = {t.id: t for t in themes if t.is_active and t.member_ids and t.centroid}
        ids = sorted(live)
        components = threshold_components(ids, [live[i].centroid for i in ids], self.threshold)

        existing_trends = {t.id: t for t in existing if t.is_active}
        claims: Dict[str, Set[str]] = {}
        for trend in existing_trends.values():
            for theme_id in trend.theme_ids:
                claims.setdefault(_resolve(theme_id, theme_superseded), set()).add(trend.id)

        result = FormationResult()
        used: Set[str] = set()

        # Bigger components pick their trend identity first
        components.sort(key=lambda c: (-sum(live[t].size for t in c), min(c)))

        for component in components:
            overlap: Counter = Counter()
            for theme_id in component:
                for trend_id in claims.get(theme_id, ()):
                    if trend_id not in used:
                        overlap[trend_id] += 1

            if overlap:
                survivor_id = max(
                    overlap,
                    key=lambda tid: (overlap[tid], -existing_trends[tid].first_detected.timestamp()),
                )
                trend = existing_trends[survivor_id].model_copy(deep=True)
                used.add(survivor_id)

                for retired_id in sorted(set(overlap) - {survivor_id}):
                    retired = existing_trends[retired_id].model_copy(deep=True)
                    used.add(retired_id)
                    self._fold(trend, retired, now)
                    result.superseded[retired_id] = trend.id
                    result.retired.append(retired)
            else:
                trend = Trend(first_detected=now, last_updated=now)
                result.created.append(trend.id)

            self._populate(trend, [live[t] for t in component], items, now)
            result.trends.append(trend)

        logger.info(
            f"Trend formation: {len(live)} themes → {len(result.trends)} trends "
            f"({len(result.created)} new, {len(result.superseded)} superseded)"
        )
        return result

    def _fold(self, survivor: Trend, retired: Trend, now: datetime) -> None:
        """Absorb a retired trend into the survivor."""
        survivor.score_history = merge_histories(survivor.score_history, retired.score_history)
        survivor.high_water_mark = max(survivor.high_water_mark, retired.high_water_mark)
        if retired.first_detected < survivor.first_detected:
            survivor.first_detected = retired.first_detected

        retired.state = EntityState.SUPERSEDED
        retired.superseded_by = survivor.id
        retired.theme_ids = set()
        retired.last_updated = now
        logger.info(f"Trend {retired.id[:8]} superseded by {survivor.id[:8]}")

    def _populate(
        self,
        trend: Trend,
        themes: List[ContentTheme],
        items: Mapping[str, ContentItem],
        now: datetime,
    ) -> None:
        """Recompute membership-derived fields from the constituent themes."""
        window_days = self.settings.scoring_window_days
        theme_stats: List[EngagementStats] = []
        members: List[ContentItem] = []
        for theme in themes:
            theme_items = [items[i] for i in theme.member_ids if i in items]
            members.extend(theme_items)
            theme_stats.append(aggregate_item_stats(theme_items, now, window_days))

        trend.theme_ids = {t.id for t in themes}
        trend.platforms = set().union(*(t.platforms for t in themes))
        trend.stats = combine_stats(theme_stats)

        top = sorted(members, key=lambda m: (-m.engagement.interactions, m.item_id))
        trend.example_content_ids = [m.item_id for m in top[: self.settings.example_content_limit]]

        keyword_weight: Counter = Counter()
        for theme in themes:
            for kw in theme.keywords:
                keyword_weight[kw] += theme.size
        trend.keywords = [k for k, _ in sorted(keyword_weight.items(), key=lambda kv: (-kv[1], kv[0]))][:10]

        if not trend.name:
            largest = max(themes, key=lambda t: (t.size, t.id))
            trend.name = largest.name or " / ".join(trend.keywords[:3]) or f"trend-{trend.id[:8]}"
        trend.description = (
            f"{len(themes)} theme{'s' if len(themes) != 1 else ''}, "
            f"{trend.stats.content_count} items across {', '.join(sorted(trend.platforms)) or 'no platforms'}"
        )
        trend.last_updated = now
