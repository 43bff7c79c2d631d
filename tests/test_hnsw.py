import numpy as np
import pytest

from conftest import make_reference
from geomatch.core.errors import (
    CatalogError,
    DimensionMismatchError,
    InvalidQueryError,
    NonFiniteVectorError,
)
from geomatch.vector.hnsw import HNSWIndex, HNSWParams
from geomatch.vector.index import ExactIndex


@pytest.fixture(scope="module")
def recall_setup():
    """1000 random references (D=32) with an HNSW graph and an exact baseline."""
    rng = np.random.default_rng(42)
    vectors = rng.normal(size=(1000, 32))
    references = [make_reference(f"ref-{i:05d}", vectors[i]) for i in range(1000)]
    index = HNSWIndex.build(references, HNSWParams(m=16, ef_construction=200, seed=1))
    exact = ExactIndex(references)
    queries = np.random.default_rng(7).normal(size=(50, 32))
    return index, exact, queries


def test_recall_at_10_against_brute_force(recall_setup):
    """Recall@10 with ef=128 is at least 0.9 compared to exact search."""
    index, exact, queries = recall_setup

    hits = 0
    for query in queries:
        truth = {m.id for m in exact.search(query, 10)}
        found = {m.id for m in index.search(query, 10, ef=128)}
        hits += len(truth & found)

    assert hits / (10 * len(queries)) >= 0.9


def test_results_distinct_sorted_and_bounded(recall_setup):
    index, _, queries = recall_setup

    for k in (1, 5, 25):
        results = index.search(queries[0], k)
        assert len(results) <= k
        ids = [m.id for m in results]
        assert len(ids) == len(set(ids))
        sims = [m.similarity for m in results]
        assert sims == sorted(sims, reverse=True)


def test_every_node_reachable(recall_setup):
    index, _, _ = recall_setup
    assert len(index) == 1000
    assert index.unreachable_count() == 0


def test_degree_bounds(recall_setup):
    index, _, _ = recall_setup
    m = index.params.m
    for node in range(len(index)):
        for level, neighbors in enumerate(index.node_links(node)):
            if level > 0:
                assert len(neighbors) <= m
            assert node not in neighbors


def test_entry_point_has_max_level(recall_setup):
    index, _, _ = recall_setup
    assert index.levels[index.entry_point] == index.max_level
    assert max(index.levels) == index.max_level


def test_exact_vector_query_finds_itself(recall_setup):
    index, exact, _ = recall_setup
    sample = exact.references[123]
    assert index.search(sample.vector, 1)[0].id == sample.id


def test_build_is_reproducible(random_references):
    references = random_references(200, 8, seed=5)
    params = HNSWParams(m=8, ef_construction=50, seed=11)

    first = HNSWIndex.build(references, params)
    second = HNSWIndex.build(references, params)

    assert first.levels == second.levels
    assert all(first.node_links(i) == second.node_links(i) for i in range(len(first)))


def test_graph_is_frozen(random_references):
    index = HNSWIndex.build(random_references(20, 4))
    assert isinstance(index.neighbors(0), tuple)
    with pytest.raises(ValueError):
        index._matrix[0, 0] = 1.0


def test_small_index_returns_all_nodes(random_references):
    references = random_references(3, 4)
    index = HNSWIndex.build(references)
    results = index.search(references[0].vector, k=10)
    assert sorted(m.id for m in results) == sorted(r.id for r in references)


def test_empty_build():
    index = HNSWIndex.build([], dimension=8)
    assert len(index) == 0
    assert index.entry_point is None
    assert index.unreachable_count() == 0
    assert index.search(np.ones(8), k=3) == []


def test_empty_build_requires_dimension():
    with pytest.raises(InvalidQueryError):
        HNSWIndex.build([])


def test_build_rejects_mixed_dimensions():
    references = [make_reference("a", [1.0, 0.0, 0.0]), make_reference("b", [1.0, 0.0])]
    with pytest.raises(DimensionMismatchError):
        HNSWIndex.build(references)


def test_build_rejects_non_finite_vectors():
    references = [make_reference("a", [1.0, 0.0]), make_reference("b", [np.inf, 0.0])]
    with pytest.raises(NonFiniteVectorError):
        HNSWIndex.build(references)


def test_build_rejects_duplicate_ids():
    references = [make_reference("a", [1.0, 0.0]), make_reference("a", [0.0, 1.0])]
    with pytest.raises(CatalogError):
        HNSWIndex.build(references)


def test_search_validates_query(random_references):
    index = HNSWIndex.build(random_references(10, 4))

    with pytest.raises(DimensionMismatchError):
        index.search(np.ones(5), k=3)
    with pytest.raises(NonFiniteVectorError):
        index.search([1.0, np.nan, 0.0, 0.0], k=3)
    with pytest.raises(InvalidQueryError):
        index.search(np.ones(4), k=0)


def test_duplicate_vectors_are_all_indexed():
    references = [make_reference(f"dup-{i}", [1.0, 1.0, 0.0]) for i in range(30)]
    index = HNSWIndex.build(references, HNSWParams(m=4, ef_construction=16))

    assert index.unreachable_count() == 0
    results = index.search([1.0, 1.0, 0.0], k=30, ef=64)
    assert len(results) == 30
    assert all(m.similarity == pytest.approx(1.0) for m in results)


def test_level_distribution_is_geometric():
    params = HNSWParams(m=16, seed=3)
    assert params.level_multiplier == pytest.approx(1 / np.log(16))
    assert params.max_degree(0) == 32
    assert params.max_degree(2) == 16


@pytest.mark.parametrize("kwargs", [{"m": 1}, {"m": 0}, {"ef_construction": 0}])
def test_params_reject_degenerate_values(kwargs):
    with pytest.raises(InvalidQueryError):
        HNSWParams(**kwargs)
