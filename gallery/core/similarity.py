"""Vector math for comparing embeddings."""

from typing import Sequence

import numpy as np

from .errors import VectorLengthMismatch


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors.

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        VectorLengthMismatch: If the vectors differ in length
    """
    if len(a) != len(b):
        raise VectorLengthMismatch(len(a), len(b))

    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    # Rounding can push identical vectors slightly past 1.0
    return max(-1.0, min(1.0, similarity))


def normalize(vector: Sequence[float]) -> list[float]:
    """Scale a vector to unit length. Zero vectors are returned unchanged."""
    vec = np.asarray(vector, dtype=np.float64)
    magnitude = np.linalg.norm(vec)
    if magnitude == 0:
        return vec.tolist()
    return (vec / magnitude).tolist()
