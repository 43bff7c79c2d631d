import numpy as np
import pytest

from conftest import make_reference
from geomatch.core.errors import DimensionMismatchError, InvalidQueryError, NonFiniteVectorError
from geomatch.vector.index import EmptyIndex, ExactIndex, IVectorIndex


def test_exact_index_implements_interface():
    index = ExactIndex([make_reference("a", [1.0, 0.0, 0.0])])
    assert isinstance(index, IVectorIndex)
    assert index.dimension == 3
    assert len(index) == 1


def test_exact_index_ranks_by_similarity():
    """Search returns results ordered by similarity."""
    index = ExactIndex([
        make_reference("a", [1.0, 0.0]),
        make_reference("b", [0.0, 1.0]),
        make_reference("c", [0.7, 0.7]),
    ])

    results = index.search([1.0, 0.1], k=3)
    assert [r.id for r in results] == ["a", "c", "b"]
    assert results[0].similarity >= results[1].similarity >= results[2].similarity


def test_exact_index_k_larger_than_size():
    index = ExactIndex([make_reference("a", [1.0, 0.0]), make_reference("b", [0.0, 1.0])])
    assert len(index.search([1.0, 0.0], k=10)) == 2


def test_exact_index_ties_break_by_id():
    index = ExactIndex([
        make_reference("z", [1.0, 0.0]),
        make_reference("m", [1.0, 0.0]),
        make_reference("a", [1.0, 0.0]),
    ])
    assert [r.id for r in index.search([1.0, 0.0], k=3)] == ["a", "m", "z"]


def test_exact_index_rejects_bad_queries():
    index = ExactIndex([make_reference("a", [1.0, 0.0])])

    with pytest.raises(InvalidQueryError):
        index.search([1.0, 0.0], k=0)
    with pytest.raises(DimensionMismatchError):
        index.search([1.0, 0.0, 0.0], k=1)
    with pytest.raises(NonFiniteVectorError):
        index.search([np.nan, 0.0], k=1)


def test_exact_index_rejects_mixed_dimensions():
    with pytest.raises(DimensionMismatchError):
        ExactIndex([make_reference("a", [1.0, 0.0]), make_reference("b", [1.0, 0.0, 0.0])])


def test_zero_query_yields_zero_similarity():
    index = ExactIndex([make_reference("a", [1.0, 0.0])])
    results = index.search([0.0, 0.0], k=1)
    assert results[0].similarity == 0.0


def test_empty_index():
    index = EmptyIndex(dimension=4)
    assert len(index) == 0
    assert index.search([1.0, 0.0, 0.0, 0.0], k=5) == []
    with pytest.raises(DimensionMismatchError):
        index.search([1.0, 0.0], k=5)


def test_exact_empty_reference_list():
    index = ExactIndex([], dimension=3)
    assert index.search([1.0, 0.0, 0.0], k=3) == []
    with pytest.raises(InvalidQueryError):
        ExactIndex([])
