"""Tests for the vector primitives used by the clustering engine."""

from __future__ import annotations

import math

import numpy as np
import pytest

from diaclust.clustering import vector_math as vm
from diaclust.clustering.vector_math import DimensionMismatchError


def test_cosine_similarity_is_scale_invariant():
    a = [1.0, 2.0, 3.0]
    b = [2.0, 4.0, 6.0]

    assert vm.cosine_similarity(a, b) == pytest.approx(1.0)
    assert vm.cosine_similarity(a, [-x for x in a]) == pytest.approx(-1.0)
    assert vm.cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_cosine_similarity_with_zero_vector_is_zero():
    assert vm.cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0
    assert vm.cosine_similarity([1.0, 2.0, 3.0], np.zeros(3)) == 0.0


def test_pairwise_helpers_reject_mismatched_dimensions():
    with pytest.raises(DimensionMismatchError) as excinfo:
        vm.cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])
    assert excinfo.value.expected == 2
    assert excinfo.value.actual == 3

    for func in (vm.dot, vm.add, vm.subtract, vm.euclidean_distance):
        with pytest.raises(DimensionMismatchError):
            func([1.0], [1.0, 2.0])


def test_norm_normalize_and_distance():
    assert vm.norm([3.0, 4.0]) == pytest.approx(5.0)
    np.testing.assert_allclose(vm.normalize([3.0, 4.0]), [0.6, 0.8])
    np.testing.assert_array_equal(vm.normalize([0.0, 0.0]), [0.0, 0.0])
    assert vm.euclidean_distance([0.0, 0.0], [3.0, 4.0]) == pytest.approx(5.0)
    assert vm.dot([1.0, 2.0], [3.0, 4.0]) == pytest.approx(11.0)
    np.testing.assert_allclose(vm.scale([1.0, -2.0], 0.5), [0.5, -1.0])


def test_mean_of_vectors():
    np.testing.assert_allclose(vm.mean([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]]), [3.0, 4.0])

    single = [0.25, 0.5]
    result = vm.mean([single])
    np.testing.assert_array_equal(result, single)


def test_mean_rejects_empty_and_ragged_input():
    with pytest.raises(ValueError):
        vm.mean([])
    with pytest.raises(DimensionMismatchError):
        vm.mean([[1.0, 2.0], [1.0, 2.0, 3.0]])


def test_as_embedding_returns_read_only_copy():
    source = np.array([1.0, 2.0])
    embedding = vm.as_embedding(source)
    source[0] = 99.0

    assert embedding[0] == 1.0
    assert not embedding.flags.writeable
    with pytest.raises(ValueError):
        vm.as_vector([[1.0, 2.0]])
    assert math.isclose(float(embedding.sum()), 3.0)
