"""Similarity ranking over stored embeddings.

Ranking is a linear scan: every record with an embedding is scored against
the query vector. This is fine for a personal gallery of a few thousand
images and needs no separate index to keep in sync.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from .errors import VectorLengthMismatch
from .models import ImageRecord
from .similarity import cosine_similarity

logger = logging.getLogger(__name__)

# Typical score of an unrelated image/text pair for CLIP ViT-B/32
DEFAULT_THRESHOLD = 0.235


@dataclass(frozen=True)
class SearchResult:
    """A matching record and its similarity to the query."""

    id: int
    similarity: float


def rank_by_similarity(
    query: Sequence[float],
    records: Iterable[ImageRecord],
    threshold: float = DEFAULT_THRESHOLD,
) -> list[SearchResult]:
    """Rank records by cosine similarity to a query vector.

    Records without an embedding are ignored. Records whose embedding length
    differs from the query are skipped with a warning so that a single bad
    vector cannot empty the whole result.

    Args:
        query: Query embedding
        records: Candidate records
        threshold: Minimum similarity to keep a result

    Returns:
        Results sorted by descending similarity (ties keep input order)
    """
    results = []
    for record in records:
        if record.embedding is None:
            continue
        try:
            similarity = cosine_similarity(query, record.embedding)
        except VectorLengthMismatch as e:
            logger.warning("Skipping image %d: %s", record.id, e)
            continue
        if similarity >= threshold:
            results.append(SearchResult(id=record.id, similarity=similarity))

    results.sort(key=lambda r: r.similarity, reverse=True)
    return results
