"""Vector primitives shared by the embedding, preference and group modules."""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple

import numpy as np


class DimensionMismatchError(ValueError):
    """Raised when two vectors that must be compared have different lengths."""


def as_vector(values) -> np.ndarray:
    return np.asarray(values, dtype=np.float64).ravel()


def _check_dims(a: np.ndarray, b: np.ndarray) -> None:
    if a.shape[0] != b.shape[0]:
        raise DimensionMismatchError(
            f"Vectors must have same length (got {a.shape[0]} and {b.shape[0]})"
        )


def l2_normalize(vector) -> np.ndarray:
    """Scale to unit length. A zero vector is returned unchanged."""
    v = as_vector(vector)
    norm = float(np.linalg.norm(v))
    if norm == 0:
        return v
    return v / norm


def cosine_similarity(a, b) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector has zero norm."""
    va, vb = as_vector(a), as_vector(b)
    _check_dims(va, vb)
    denom = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if denom == 0:
        return 0.0
    sim = float(np.dot(va, vb)) / denom
    # Guard against float drift just outside the valid range
    return max(-1.0, min(1.0, sim))


def euclidean_distance(a, b) -> float:
    va, vb = as_vector(a), as_vector(b)
    _check_dims(va, vb)
    return float(np.linalg.norm(va - vb))


def combine_weighted(vectors: Sequence, weights: Sequence[float]) -> np.ndarray:
    """
    Weighted elementwise sum of ``vectors`` followed by L2 normalization.

    Weights are rescaled to sum to 1 before combining.
    """
    if len(vectors) == 0:
        raise ValueError("At least one vector required")
    if len(vectors) != len(weights):
        raise ValueError("Vectors and weights must have same length")

    rows = [as_vector(v) for v in vectors]
    if not _same_dims(rows):
        raise DimensionMismatchError("All vectors must have same length")
    matrix = np.vstack(rows)

    w = np.asarray(weights, dtype=np.float64)
    total = float(w.sum())
    if total != 0:
        w = w / total
    return l2_normalize(w @ matrix)


def _same_dims(vectors: Sequence) -> bool:
    dims = {as_vector(v).shape[0] for v in vectors}
    return len(dims) == 1


def batch_cosine(query, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``matrix``."""
    q = as_vector(query)
    m = np.atleast_2d(np.asarray(matrix, dtype=np.float64))
    if m.shape[1] != q.shape[0]:
        raise DimensionMismatchError(
            f"Vectors must have same length (got {q.shape[0]} and {m.shape[1]})"
        )
    q_norm = float(np.linalg.norm(q))
    row_norms = np.linalg.norm(m, axis=1)
    denom = row_norms * q_norm
    dots = m @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denom > 0, dots / np.where(denom > 0, denom, 1.0), 0.0)
    return np.clip(sims, -1.0, 1.0)


def top_k(
    query,
    candidates: Iterable[Tuple[str, Sequence[float]]],
    k: int,
) -> list[tuple[str, float]]:
    """
    Rank ``(id, vector)`` candidates by cosine similarity to ``query``.

    Ties keep their input order.
    """
    candidates = list(candidates)
    if not candidates or k <= 0:
        return []

    ids = [cid for cid, _ in candidates]
    vectors = [as_vector(vec) for _, vec in candidates]
    if not _same_dims(vectors):
        raise DimensionMismatchError("All candidate vectors must have same length")

    sims = batch_cosine(query, np.vstack(vectors))
    order = sorted(range(len(ids)), key=lambda i: -sims[i])
    return [(ids[i], float(sims[i])) for i in order[:k]]
