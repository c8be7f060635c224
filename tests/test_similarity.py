"""Tests for cosine similarity."""

import math

import pytest

from gallery.core.errors import VectorLengthMismatch
from gallery.core.similarity import cosine_similarity, normalize


def test_vector_with_itself_is_one():
    v = [0.3, -1.2, 4.5, 0.01]
    assert cosine_similarity(v, v) == pytest.approx(1.0)


def test_orthogonal_unit_vectors_are_zero():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_opposite_vectors_are_minus_one():
    assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)


def test_similarity_is_symmetric():
    a = [0.2, 0.7, -0.1]
    b = [0.9, -0.3, 0.4]
    assert cosine_similarity(a, b) == cosine_similarity(b, a)


def test_scale_does_not_matter():
    assert cosine_similarity([1.0, 1.0], [10.0, 10.0]) == pytest.approx(1.0)


def test_zero_vector_gives_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([1.0, 2.0], [0.0, 0.0]) == 0.0
    assert not math.isnan(cosine_similarity([0.0], [0.0]))


def test_length_mismatch_raises():
    with pytest.raises(VectorLengthMismatch, match="same length"):
        cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


def test_normalize_returns_unit_vector():
    unit = normalize([3.0, 4.0])
    assert unit == pytest.approx([0.6, 0.8])


def test_normalize_leaves_zero_vector():
    assert normalize([0.0, 0.0]) == [0.0, 0.0]
