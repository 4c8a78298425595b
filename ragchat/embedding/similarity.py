"""
Cosine similarity
------------------
Scalar and vectorised forms.  Both compare vectors over their shared prefix
length, and both score 0.0 when either side has zero norm.
"""
from __future__ import annotations

import math
from typing import Sequence, Union

import numpy as np

Vector = Union[np.ndarray, Sequence[float]]


def cosine_similarity(a: Vector, b: Vector) -> float:
    """dot(a, b) / (|a| * |b|) over min(len(a), len(b)) components, in [-1, 1]."""
    n = min(len(a), len(b))
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for i in range(n):
        va = float(a[i])
        vb = float(b[i])
        dot += va * vb
        norm_a += va * va
        norm_b += vb * vb
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # rounding can push |score| a hair past 1
    return max(-1.0, min(1.0, score))


def cosine_similarity_matrix(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """
    Score every row of `matrix` (n, d) against `query`.

    Accumulates in float64 so scores agree with cosine_similarity().
    Returns shape (n,) float64.
    """
    if matrix.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)

    d = min(matrix.shape[1], query.shape[0])
    rows = np.asarray(matrix[:, :d], dtype=np.float64)
    q = np.asarray(query[:d], dtype=np.float64)

    row_norms = np.linalg.norm(rows, axis=1)
    q_norm = float(np.linalg.norm(q))
    if q_norm == 0.0:
        return np.zeros(rows.shape[0], dtype=np.float64)

    denom = row_norms * q_norm
    dots = rows @ q
    scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom != 0)
    return np.clip(scores, -1.0, 1.0)
