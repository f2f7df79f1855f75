import threading

import numpy as np
import pytest

from app.trends.clustering import DisjointSet, threshold_components
from app.trends.errors import DimensionMismatch
from app.trends.similarity import SimilarityIndex, similarity

from conftest import DIM, basis, blend


def test_similarity_range_and_known_values():
    assert similarity([1, 0, 0], [1, 0, 0]) == pytest.approx(1.0)
    assert similarity([1, 0, 0], [0, 1, 0]) == pytest.approx(0.0)
    assert similarity([1, 0, 0], [-1, 0, 0]) == pytest.approx(-1.0)
    assert similarity([1, 0, 0], [0.99, 0.1, 0]) == pytest.approx(0.99494, abs=1e-4)


def test_similarity_zero_vector_is_zero():
    assert similarity([0, 0, 0], [1, 2, 3]) == 0.0


def test_similarity_dimension_mismatch():
    with pytest.raises(DimensionMismatch):
        similarity([1, 0, 0], [1, 0])


def test_index_nearest_above():
    index = SimilarityIndex(DIM)
    index.insert("a", basis(0))
    index.insert("b", blend([0.99, 0.1]))
    index.insert("c", basis(1))

    assert index.nearest_above(basis(0), 0.80) == {"a", "b"}
    assert index.nearest_above(basis(1), 0.80) == {"c"}
    assert index.nearest_above(basis(2), 0.80) == set()


def test_index_ranked_above_orders_by_similarity():
    index = SimilarityIndex(DIM)
    index.insert_many([("far", blend([0.8, 0.6])), ("near", blend([0.99, 0.1]))])
    ranked = index.ranked_above(basis(0), 0.5)
    assert [i for i, _ in ranked] == ["near", "far"]


def test_index_insert_replaces_and_remove():
    index = SimilarityIndex(DIM)
    index.insert("a", basis(0))
    index.insert("a", basis(1))
    assert len(index) == 1
    assert index.nearest_above(basis(1), 0.99) == {"a"}

    assert index.remove("a") is True
    assert index.remove("a") is False
    assert len(index) == 0
    assert index.nearest_above(basis(1), 0.0) == set()


def test_index_rejects_wrong_dimension():
    index = SimilarityIndex(DIM)
    with pytest.raises(DimensionMismatch):
        index.insert("bad", [1.0, 0.0])
    with pytest.raises(DimensionMismatch):
        index.nearest_above([1.0, 0.0], 0.5)


def test_index_concurrent_readers_and_writer():
    index = SimilarityIndex(DIM)
    index.insert("seed", basis(0))
    errors = []
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            try:
                assert "seed" in index.nearest_above(basis(0), 0.9)
            except Exception as e:  # collected for the assertion below
                errors.append(e)
                return

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for t in readers:
        t.start()
    for i in range(200):
        index.insert(f"item-{i}", basis(1 + i % (DIM - 1)))
        if i % 3 == 0:
            index.remove(f"item-{i}")
    stop.set()
    for t in readers:
        t.join()

    assert errors == []
    assert "seed" in index


def test_disjoint_set_is_transitive():
    dsu = DisjointSet(["a", "b", "c", "d"])
    dsu.union("a", "b")
    dsu.union("b", "c")
    assert dsu.find("a") == dsu.find("c")
    assert dsu.find("d") != dsu.find("a")
    assert sorted(sorted(g) for g in dsu.groups()) == [["a", "b", "c"], ["d"]]


def test_threshold_components_chain():
    # a~b and b~c clear 0.85, a~c does not
    angle = np.deg2rad(25)
    a = blend([1.0, 0.0])
    b = blend([np.cos(angle), np.sin(angle)])
    c = blend([np.cos(2 * angle), np.sin(2 * angle)])
    far = basis(5)
    assert similarity(a, c) < 0.85

    groups = threshold_components(["a", "b", "c", "far"], [a, b, c, far], 0.85)
    assert sorted(sorted(g) for g in groups) == [["a", "b", "c"], ["far"]]


def test_threshold_components_dimension_mismatch():
    with pytest.raises(DimensionMismatch):
        threshold_components(["a", "b"], [[1.0, 0.0], [1.0, 0.0, 0.0]], 0.5)
