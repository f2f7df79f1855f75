"""
Theme aggregation: groups incoming content items into ContentThemes.

For each unclustered item:
1. Validate the embedding (present, finite, right dimension). Invalid items
   are skipped, logged and counted; they never fail the batch.
2. Query theme centroids with similarity >= threshold. Best match wins,
   ties broken by larger membership, then by older theme.
3. No match: seed a new theme with the item's embedding as centroid.
4. Chain check: any already-clustered item within threshold of this one
   pulls its theme together with ours (largest theme survives), so every
   pair of items above threshold ends up in one theme, transitively.
5. Recompute centroid (mean of member embeddings), keyword union, mean
   sentiment, platforms and engagement stats of every touched theme.

Re-ingesting an item id that is already clustered is a no-op, so replaying
a batch is idempotent.

Centroid recomputation is serialized under the aggregator lock; the
similarity indexes themselves are copy-on-write and safe for concurrent
readers.
"""

import logging
import math
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

import numpy as np

from app.config import Settings, get_settings
from app.schemas.base import EntityState
from app.schemas.content import ContentItem, ContentTheme
from app.schemas.pipeline import ThemeBatchResult
from app.trends.errors import ValidationError
from app.trends.signals.engagement import aggregate_item_stats
from app.trends.similarity import SimilarityIndex

logger = logging.getLogger(__name__)


def validate_embedding(item: ContentItem, dim: int) -> np.ndarray:
    """Return the item's embedding as an array or raise ValidationError."""
    if item.embedding is None or len(item.embedding) == 0:
        raise ValidationError(item.item_id, "missing embedding")
    if len(item.embedding) != dim:
        raise ValidationError(
            item.item_id, f"wrong embedding dimension {len(item.embedding)} (expected {dim})"
        )
    vec = np.asarray(item.embedding, dtype=float)
    if not np.all(np.isfinite(vec)):
        raise ValidationError(item.item_id, "embedding contains NaN or infinite values")
    return vec


def theme_name(keywords: List[str], theme_id: str) -> str:
    if keywords:
        return " / ".join(keywords[:3])
    return f"theme-{theme_id[:8]}"


def best_candidate(
    candidates: List[Tuple[str, float]],
    sizes: Mapping[str, int],
    created_order: Mapping[str, int],
) -> Tuple[str, float]:
    """Highest similarity wins; ties go to the larger theme, then the older one."""
    return max(candidates, key=lambda c: (c[1], sizes[c[0]], -created_order[c[0]]))


class ThemeAggregator:
    """Owns ContentTheme lifecycle: create, update, merge, retire."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.dim = self.settings.embedding_dim
        self.threshold = self.settings.theme_similarity_threshold

        self._lock = threading.RLock()
        self._themes: Dict[str, ContentTheme] = {}
        self._seq: Dict[str, int] = {}  # creation order for tie-breaks
        self._items: Dict[str, ContentItem] = {}
        self._item_theme: Dict[str, str] = {}
        self._superseded: Dict[str, str] = {}

        self._centroids = SimilarityIndex(self.dim)
        self._item_vectors = SimilarityIndex(self.dim)

    # ── Accessors ─────────────────────────────────────────────────────

    def themes(self, include_inactive: bool = False) -> List[ContentTheme]:
        """Snapshots of themes (copies; mutating them does not touch the aggregator)."""
        with self._lock:
            return [
                t.model_copy(deep=True)
                for t in self._themes.values()
                if include_inactive or t.is_active
            ]

    def get_theme(self, theme_id: str) -> Optional[ContentTheme]:
        with self._lock:
            theme = self._themes.get(self.resolve(theme_id))
            return theme.model_copy(deep=True) if theme else None

    def items(self) -> Dict[str, ContentItem]:
        with self._lock:
            return dict(self._items)

    def theme_of(self, item_id: str) -> Optional[str]:
        with self._lock:
            theme_id = self._item_theme.get(item_id)
            return self.resolve(theme_id) if theme_id else None

    def resolve(self, theme_id: str) -> str:
        """Follow superseded links to the live theme id."""
        seen: Set[str] = set()
        while theme_id in self._superseded and theme_id not in seen:
            seen.add(theme_id)
            theme_id = self._superseded[theme_id]
        return theme_id

    @property
    def superseded(self) -> Dict[str, str]:
        with self._lock:
            return {old: self.resolve(old) for old in self._superseded}

    # ── Batch processing ──────────────────────────────────────────────

    def ingest(self, items: Iterable[ContentItem], now: Optional[datetime] = None) -> ThemeBatchResult:
        """Cluster a batch of items into themes."""
        now = now or datetime.now(timezone.utc)
        result = ThemeBatchResult()
        touched: Set[str] = set()
        created: Set[str] = set()

        with self._lock:
            for item in items:
                result.processed += 1
                if item.item_id in self._item_theme:
                    result.skipped_duplicate += 1
                    continue
                try:
                    vec = validate_embedding(item, self.dim)
                except ValidationError as e:
                    logger.warning(f"Skipping item: {e}")
                    result.skipped_invalid += 1
                    continue

                theme_id, is_new = self._assign(item, vec, now)
                if is_new:
                    created.add(theme_id)
                touched.add(theme_id)
                result.clustered += 1

                for absorbed, survivor in self._chain_merge(item.item_id, vec, theme_id, now).items():
                    result.themes_merged[absorbed] = survivor
                    touched.add(survivor)

            live = {self.resolve(t) for t in touched}
            for absorbed in list(result.themes_merged):
                result.themes_merged[absorbed] = self.resolve(absorbed)
            for theme_id in live:
                self._recompute(theme_id, now)

            result.themes_created = sorted(t for t in created if t in live)
            result.themes_updated = sorted(live - created)
            result.themes = [self._themes[t].model_copy(deep=True) for t in sorted(live)]

        logger.info(
            f"Theme batch: {result.processed} items → {result.clustered} clustered, "
            f"{result.skipped_invalid} invalid, {result.skipped_duplicate} duplicate, "
            f"{len(result.themes_created)} new themes, {len(result.themes_updated)} updated, "
            f"{len(result.themes_merged)} merged"
        )
        return result

    def _assign(self, item: ContentItem, vec: np.ndarray, now: datetime):
        """Attach the item to its best-matching theme, or seed a new one."""
        candidates = [
            (tid, sim) for tid, sim in self._centroids.ranked_above(vec, self.threshold)
            if tid in self._themes and self._themes[tid].is_active
        ]

        if candidates:
            theme_id, sim = best_candidate(
                candidates, {tid: self._themes[tid].size for tid, _ in candidates}, self._seq
            )
            theme = self._themes[theme_id]
            is_new = False
            logger.debug(f"Item {item.item_id} → theme {theme_id[:8]} (sim={sim:.3f}, size={theme.size})")
        else:
            theme = ContentTheme(centroid=vec.tolist(), created_at=now, updated_at=now)
            theme_id = theme.id
            self._themes[theme_id] = theme
            self._seq[theme_id] = len(self._seq)
            self._centroids.insert(theme_id, vec)
            is_new = True
            logger.debug(f"Item {item.item_id} seeded new theme {theme_id[:8]}")

        theme.member_ids.add(item.item_id)
        theme.updated_at = now
        self._items[item.item_id] = item
        self._item_theme[item.item_id] = theme_id
        self._item_vectors.insert(item.item_id, vec)

        if not is_new:
            self._recompute(theme_id, now)
        return theme_id, is_new

    def _chain_merge(self, item_id: str, vec: np.ndarray, theme_id: str, now: datetime) -> Dict[str, str]:
        """Merge every theme holding an item within threshold of this one."""
        neighbor_themes = {
            self.resolve(self._item_theme[n])
            for n in self._item_vectors.nearest_above(vec, self.threshold)
            if n != item_id and n in self._item_theme
        }
        group = {t for t in neighbor_themes | {self.resolve(theme_id)} if self._themes[t].is_active}
        if len(group) < 2:
            return {}

        survivor = max(group, key=lambda t: (self._themes[t].size, -self._seq[t]))
        merged = {}
        for absorbed in group - {survivor}:
            self._absorb(survivor, absorbed, now)
            merged[absorbed] = survivor
        self._recompute(survivor, now)
        return merged

    def _absorb(self, survivor_id: str, absorbed_id: str, now: datetime) -> None:
        survivor = self._themes[survivor_id]
        absorbed = self._themes[absorbed_id]

        survivor.member_ids |= absorbed.member_ids
        survivor.updated_at = now
        for member in absorbed.member_ids:
            self._item_theme[member] = survivor_id

        absorbed.state = EntityState.SUPERSEDED
        absorbed.superseded_by = survivor_id
        absorbed.member_ids = set()
        absorbed.updated_at = now
        self._superseded[absorbed_id] = survivor_id
        self._centroids.remove(absorbed_id)
        logger.info(f"Theme {absorbed_id[:8]} merged into {survivor_id[:8]} ({survivor.size} members)")

    def _recompute(self, theme_id: str, now: datetime) -> None:
        """Recompute centroid, keywords, sentiment, platforms and stats from members."""
        theme = self._themes[theme_id]
        if not theme.member_ids:
            return
        members = [self._items[i] for i in sorted(theme.member_ids)]

        vectors = self._item_vectors.vectors(sorted(theme.member_ids))
        centroid = vectors.mean(axis=0)
        theme.centroid = centroid.tolist()
        self._centroids.insert(theme_id, centroid)

        per_item = self.settings.theme_keywords_per_item
        counts: Counter = Counter()
        for m in members:
            counts.update({k.lower().strip() for k in m.keywords[:per_item] if k.strip()})
        theme.keywords = [k for k, _ in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))]
        theme.name = theme_name(theme.keywords, theme_id)

        sentiments = [m.sentiment for m in members if math.isfinite(m.sentiment)]
        theme.average_sentiment = sum(sentiments) / len(sentiments) if sentiments else 0.0

        theme.platforms = {m.platform for m in members}
        theme.stats = aggregate_item_stats(members, now, self.settings.scoring_window_days)
        published = [m.published_utc for m in members]
        theme.first_published_at = min(published)
        theme.last_published_at = max(published)

    # ── Retirement ────────────────────────────────────────────────────

    def retire_stale(self, now: Optional[datetime] = None) -> List[str]:
        """Retire themes that have not gained a member in THEME_STALE_DAYS."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.settings.theme_stale_days)
        retired = []

        with self._lock:
            for theme_id, theme in self._themes.items():
                updated = theme.updated_at
                if updated.tzinfo is None:
                    updated = updated.replace(tzinfo=timezone.utc)
                if theme.is_active and updated < cutoff:
                    theme.state = EntityState.RETIRED
                    self._centroids.remove(theme_id)
                    self._item_vectors.remove_many(theme.member_ids)
                    retired.append(theme_id)

        if retired:
            logger.info(f"Retired {len(retired)} stale themes (no activity since {cutoff.date()})")
        return retired
