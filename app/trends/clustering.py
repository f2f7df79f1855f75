"""
Threshold clustering via union-find.

Pipeline: centroids -> pairwise cosine matrix -> edges >= threshold ->
disjoint-set union -> connected components.

Transitive by construction: if A~B and B~C clear the threshold, A, B and C
end up in one component even when A~C does not. Components are keyed by
stable string identifiers (never list positions) so callers can map them
straight back onto themes or trends.
"""

import logging
from typing import Dict, Hashable, Iterable, List, Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from app.trends.errors import DimensionMismatch

logger = logging.getLogger(__name__)


class DisjointSet:
    """Union-find with path compression and union by size."""

    def __init__(self, items: Iterable[Hashable] = ()):
        self._parent: Dict[Hashable, Hashable] = {}
        self._size: Dict[Hashable, int] = {}
        for item in items:
            self.add(item)

    def __contains__(self, item: Hashable) -> bool:
        return item in self._parent

    def add(self, item: Hashable) -> None:
        if item not in self._parent:
            self._parent[item] = item
            self._size[item] = 1

    def find(self, item: Hashable) -> Hashable:
        self.add(item)
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        # Path compression
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: Hashable, b: Hashable) -> Hashable:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return root_a
        if self._size[root_a] < self._size[root_b]:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        self._size[root_a] += self._size[root_b]
        return root_a

    def groups(self) -> List[List[Hashable]]:
        """Components in first-seen order; members in insertion order."""
        by_root: Dict[Hashable, List[Hashable]] = {}
        for item in self._parent:
            by_root.setdefault(self.find(item), []).append(item)
        return list(by_root.values())


def similarity_matrix(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Pairwise cosine similarity. Zero vectors are similar to nothing."""
    if len(vectors) == 0:
        return np.empty((0, 0))
    lengths = {len(v) for v in vectors}
    if len(lengths) > 1:
        raise DimensionMismatch(min(lengths), max(lengths))
    matrix = np.asarray(vectors, dtype=float)
    return np.clip(cosine_similarity(matrix), -1.0, 1.0)


def threshold_components(
    ids: Sequence[str],
    vectors: Sequence[Sequence[float]],
    threshold: float,
) -> List[List[str]]:
    """Group ids whose vectors are connected by similarity >= threshold."""
    dsu = DisjointSet(ids)
    if len(ids) < 2:
        return dsu.groups()

    sims = similarity_matrix(vectors)
    rows, cols = np.where(np.triu(sims >= threshold, k=1))
    for i, j in zip(rows.tolist(), cols.tolist()):
        dsu.union(ids[i], ids[j])

    groups = dsu.groups()
    logger.debug(
        f"Threshold clustering: {len(ids)} nodes, {len(rows)} edges >= {threshold}, "
        f"{len(groups)} components"
    )
    return groups
