"""
Similarity index over fixed-dimension embeddings.

Holds L2-normalized vectors in a single numpy matrix so a threshold query is
one matrix-vector product. Concurrency model is copy-on-write: writers
(insert/remove) are serialized by a lock and publish a brand new immutable
snapshot; readers grab whatever snapshot is current and never block.

Zero vectors are allowed and have similarity 0.0 to everything.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from app.trends.errors import DimensionMismatch

logger = logging.getLogger(__name__)


def _normalize(vec: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vec)
    if norm == 0:
        return vec
    return vec / norm


def similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]. Raises DimensionMismatch on unequal lengths."""
    vec_a = np.asarray(a, dtype=float)
    vec_b = np.asarray(b, dtype=float)
    if vec_a.shape != vec_b.shape:
        raise DimensionMismatch(vec_a.shape[0], vec_b.shape[0])

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    sim = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, sim))


class _Snapshot:
    """Immutable view of the index contents."""

    __slots__ = ("ids", "positions", "matrix", "raw")

    def __init__(self, ids: Tuple[str, ...], matrix: np.ndarray, raw: np.ndarray):
        self.ids = ids
        self.positions = {item_id: i for i, item_id in enumerate(ids)}
        self.matrix = matrix  # normalized rows
        self.raw = raw        # vectors as inserted

        self.matrix.setflags(write=False)
        self.raw.setflags(write=False)


class SimilarityIndex:
    """Brute-force cosine index with copy-on-write snapshots."""

    def __init__(self, dim: int):
        self.dim = dim
        self._write_lock = threading.Lock()
        self._snapshot = _Snapshot((), np.empty((0, dim)), np.empty((0, dim)))

    def __len__(self) -> int:
        return len(self._snapshot.ids)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._snapshot.positions

    @property
    def ids(self) -> Tuple[str, ...]:
        return self._snapshot.ids

    def _check(self, vec: Sequence[float]) -> np.ndarray:
        arr = np.asarray(vec, dtype=float)
        if arr.ndim != 1 or arr.shape[0] != self.dim:
            raise DimensionMismatch(self.dim, arr.shape[-1] if arr.ndim else 0)
        return arr

    # ── Writers ───────────────────────────────────────────────────────

    def insert(self, item_id: str, vector: Sequence[float]) -> None:
        """Insert or replace a vector."""
        self.insert_many([(item_id, vector)])

    def insert_many(self, entries: Iterable[Tuple[str, Sequence[float]]]) -> None:
        checked = [(item_id, self._check(vec)) for item_id, vec in entries]
        if not checked:
            return

        with self._write_lock:
            snap = self._snapshot
            raw: Dict[str, np.ndarray] = {i: snap.raw[p] for i, p in snap.positions.items()}
            order: List[str] = list(snap.ids)
            for item_id, vec in checked:
                if item_id not in raw:
                    order.append(item_id)
                raw[item_id] = vec
            self._publish(order, raw)

    def remove(self, item_id: str) -> bool:
        """Remove a vector. Returns False if it was not indexed."""
        return self.remove_many([item_id]) > 0

    def remove_many(self, item_ids: Iterable[str]) -> int:
        with self._write_lock:
            snap = self._snapshot
            doomed = {i for i in item_ids if i in snap.positions}
            if not doomed:
                return 0
            order = [i for i in snap.ids if i not in doomed]
            raw = {i: snap.raw[snap.positions[i]] for i in order}
            self._publish(order, raw)
            return len(doomed)

    def _publish(self, order: List[str], raw: Dict[str, np.ndarray]) -> None:
        if order:
            raw_matrix = np.vstack([raw[i] for i in order])
            norms = np.linalg.norm(raw_matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            matrix = raw_matrix / norms
        else:
            raw_matrix = np.empty((0, self.dim))
            matrix = np.empty((0, self.dim))
        self._snapshot = _Snapshot(tuple(order), matrix, raw_matrix)

    # ── Readers ───────────────────────────────────────────────────────

    def get(self, item_id: str) -> Optional[np.ndarray]:
        snap = self._snapshot
        pos = snap.positions.get(item_id)
        return None if pos is None else snap.raw[pos].copy()

    def vectors(self, item_ids: Iterable[str]) -> np.ndarray:
        """Stack the raw vectors for the given ids (skips unknown ids)."""
        snap = self._snapshot
        rows = [snap.positions[i] for i in item_ids if i in snap.positions]
        if not rows:
            return np.empty((0, self.dim))
        return snap.raw[rows]

    def similarities(self, query: Sequence[float]) -> List[Tuple[str, float]]:
        """Similarity of query against every indexed vector, highest first."""
        q = _normalize(self._check(query))
        snap = self._snapshot
        if not snap.ids:
            return []
        sims = np.clip(snap.matrix @ q, -1.0, 1.0)
        order = np.argsort(-sims, kind="stable")
        return [(snap.ids[i], float(sims[i])) for i in order]

    def ranked_above(self, query: Sequence[float], threshold: float) -> List[Tuple[str, float]]:
        """(id, similarity) pairs with similarity >= threshold, highest first."""
        return [(i, s) for i, s in self.similarities(query) if s >= threshold]

    def nearest_above(self, query: Sequence[float], threshold: float) -> Set[str]:
        """All indexed ids with similarity >= threshold (order irrelevant)."""
        return {i for i, _ in self.ranked_above(query, threshold)}
