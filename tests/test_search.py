"""Tests for similarity ranking."""

from datetime import datetime

import pytest

from gallery.core.models import ImageRecord
from gallery.core.search import DEFAULT_THRESHOLD, SearchResult, rank_by_similarity


def make_record(record_id, embedding):
    return ImageRecord(
        id=record_id,
        name=f"{record_id}.png",
        mimetype="image/png",
        size=10,
        created_at=datetime(2024, 1, 1),
        embedding=embedding,
        is_processing=embedding is None,
    )


def test_orthogonal_record_kept_at_zero_threshold():
    a = make_record(1, [1.0, 0.0])
    b = make_record(2, [0.0, 1.0])

    results = rank_by_similarity([1.0, 0.0], [b, a], threshold=0)

    assert [r.id for r in results] == [1, 2]
    assert results[0].similarity == pytest.approx(1.0)
    assert results[1].similarity == pytest.approx(0.0)


def test_positive_threshold_drops_orthogonal_record():
    a = make_record(1, [1.0, 0.0])
    b = make_record(2, [0.0, 1.0])

    results = rank_by_similarity([1.0, 0.0], [a, b], threshold=0.01)

    assert results == [SearchResult(id=1, similarity=pytest.approx(1.0))]


def test_threshold_above_one_returns_nothing():
    records = [make_record(i, [1.0, float(i)]) for i in range(5)]
    assert rank_by_similarity([1.0, 1.0], records, threshold=1.1) == []


def test_records_without_embedding_are_ignored():
    records = [make_record(1, None), make_record(2, [1.0, 0.0])]
    results = rank_by_similarity([1.0, 0.0], records, threshold=0)
    assert [r.id for r in results] == [2]


def test_empty_input_returns_empty():
    assert rank_by_similarity([1.0, 0.0], [], threshold=0) == []


def test_length_mismatch_skips_only_that_record():
    records = [
        make_record(1, [1.0, 0.0, 0.0]),
        make_record(2, [1.0, 0.0]),
    ]
    results = rank_by_similarity([1.0, 0.0], records, threshold=0)
    assert [r.id for r in results] == [2]


def test_results_sorted_descending_and_stable_on_ties():
    records = [
        make_record(1, [0.0, 1.0]),
        make_record(2, [1.0, 1.0]),
        make_record(3, [1.0, 0.0]),
        make_record(4, [2.0, 0.0]),
    ]
    results = rank_by_similarity([1.0, 0.0], records, threshold=-1)
    assert [r.id for r in results] == [3, 4, 2, 1]


def test_default_threshold():
    assert DEFAULT_THRESHOLD == pytest.approx(0.235)
    weak = make_record(1, [1.0, 4.0])  # similarity ~0.24
    weaker = make_record(2, [1.0, 5.0])  # similarity ~0.196
    results = rank_by_similarity([1.0, 0.0], [weak, weaker])
    assert [r.id for r in results] == [1]
