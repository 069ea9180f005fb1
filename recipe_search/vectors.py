from __future__ import annotations

"""
Small numpy helpers for embedding vectors.

All vectors in the package are 1-D ``float32`` arrays.  Non-finite
components are zeroed before any arithmetic: a single NaN in a corpus
vector would otherwise turn every score computed against it into NaN
and break the ordering without raising.
"""

from typing import Iterable, Optional, Union

import numpy as np

from .errors import DimensionMismatchError

VectorLike = Union[np.ndarray, Iterable[float]]


def sanitize_vector(values: VectorLike) -> np.ndarray:
    """Return a float32 copy of ``values`` with NaN/Inf replaced by 0."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim != 1:
        raise ValueError(f"Expected a 1-D vector, got shape {arr.shape}")
    arr = np.where(np.isfinite(arr), arr, 0.0)
    return arr.astype(np.float32)


def check_dimension(vec: np.ndarray, expected: Optional[int], what: str = "vector") -> None:
    if expected is not None and vec.shape[-1] != expected:
        raise DimensionMismatchError(expected, int(vec.shape[-1]), what)


def cosine(a: VectorLike, b: VectorLike) -> float:
    """
    Cosine similarity in ``[-1, 1]``.  Defined as 0 when either vector
    has zero norm.
    """
    va = sanitize_vector(a).astype(np.float64)
    vb = sanitize_vector(b).astype(np.float64)
    check_dimension(vb, va.shape[0])
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    score = float(np.dot(va, vb) / (na * nb))
    return float(np.clip(score, -1.0, 1.0))


def cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Cosine of ``query`` against every row of ``matrix``.  Rows (or a
    query) with zero norm score 0.
    """
    q = np.asarray(query, dtype=np.float64)
    m = np.asarray(matrix, dtype=np.float64)
    check_dimension(q, m.shape[1] if m.ndim == 2 else None, "query vector")
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(m, axis=1)
    denom = row_norms * q_norm
    dots = m @ q
    scores = np.zeros(m.shape[0], dtype=np.float64)
    nonzero = denom > 0.0
    scores[nonzero] = dots[nonzero] / denom[nonzero]
    return np.clip(scores, -1.0, 1.0)
