"""Cosine similarity and exact top-K ranking.

Every candidate is scored against the query with one numpy
matrix-vector product; there is no approximate index.
"""

from __future__ import annotations

from typing import Hashable, Sequence, TypeVar

import numpy as np

_K = TypeVar("_K", bound=Hashable)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine similarity of two vectors.

    Returns ``0.0`` (never NaN) when either vector has zero norm, when the
    vectors are empty, or when their lengths differ.  The result is clamped
    to ``[-1.0, 1.0]`` to absorb floating-point overshoot.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.size == 0 or va.shape != vb.shape:
        return 0.0

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = float(np.dot(va, vb)) / (norm_a * norm_b)
    return max(-1.0, min(1.0, score))


def _score_all(query: Sequence[float], vectors: list[Sequence[float]]) -> list[float]:
    """Cosine-score every vector against *query*, vectorised when dimensions agree."""
    q = np.asarray(query, dtype=np.float64)
    dims = {len(v) for v in vectors}
    if len(dims) != 1 or q.size == 0 or dims != {q.size}:
        return [cosine_similarity(query, v) for v in vectors]

    matrix = np.asarray(vectors, dtype=np.float64)
    q_norm = float(np.linalg.norm(q))
    if q_norm == 0.0:
        return [0.0] * len(vectors)

    norms = np.linalg.norm(matrix, axis=1)
    dots = matrix @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0.0, dots / (norms * q_norm), 0.0)
    return [max(-1.0, min(1.0, float(s))) for s in scores]


def rank(
    query: Sequence[float],
    candidates: Sequence[tuple[_K, Sequence[float]]],
    top_k: int,
) -> list[tuple[_K, float]]:
    """Return the *top_k* candidates by cosine similarity, highest first.

    Parameters
    ----------
    query:
        The query vector.
    candidates:
        ``(key, vector)`` pairs.  Keys are returned untouched.
    top_k:
        Maximum number of results.  Larger than ``len(candidates)`` returns
        every candidate; zero or negative returns nothing.

    Returns
    -------
    list[tuple[key, float]]
        ``(key, score)`` pairs.  Equal scores keep the input order of
        *candidates*.
    """
    if top_k <= 0 or not candidates:
        return []

    scores = _score_all(query, [vector for _, vector in candidates])
    # sorted() is stable, so ties keep candidate order.
    order = sorted(range(len(candidates)), key=lambda i: -scores[i])
    return [(candidates[i][0], scores[i]) for i in order[:top_k]]
