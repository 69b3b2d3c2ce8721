"""Vector primitives shared by the speaker clustering engine.

Every pairwise helper validates that both operands have the same length and
raises :class:`DimensionMismatchError` otherwise.  Silently truncating or
padding would corrupt centroids, so a mismatch is always treated as a
programming error by callers.

Zero-magnitude vectors are handled explicitly: ``normalize`` returns a zero
vector and any cosine similarity involving one is ``0.0`` instead of NaN.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import numpy as np

Vector = Sequence[float] | np.ndarray


class DimensionMismatchError(ValueError):
    """Raised when two vectors of different dimensionality are combined."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Vector dimension mismatch: {expected} vs {actual}")
        self.expected = expected
        self.actual = actual


def as_vector(values: Vector) -> np.ndarray:
    """Return ``values`` as a one dimensional ``float64`` array."""

    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim != 1:
        raise ValueError(f"Expected a one dimensional vector, got shape {arr.shape}")
    return arr


def as_embedding(values: Vector) -> np.ndarray:
    """Return an immutable copy of ``values`` suitable for storing as an embedding."""

    arr = np.array(as_vector(values), dtype=np.float64, copy=True)
    arr.setflags(write=False)
    return arr


def _pair(a: Vector, b: Vector) -> tuple[np.ndarray, np.ndarray]:
    va = as_vector(a)
    vb = as_vector(b)
    if va.shape[0] != vb.shape[0]:
        raise DimensionMismatchError(va.shape[0], vb.shape[0])
    return va, vb


def dot(a: Vector, b: Vector) -> float:
    va, vb = _pair(a, b)
    return float(np.dot(va, vb))


def norm(vector: Vector) -> float:
    """L2 norm of ``vector``."""

    return float(np.linalg.norm(as_vector(vector)))


def normalize(vector: Vector) -> np.ndarray:
    """Scale ``vector`` to unit length; the zero vector is returned unchanged."""

    v = as_vector(vector)
    magnitude = float(np.linalg.norm(v))
    if magnitude == 0.0:
        return np.zeros_like(v)
    return v / magnitude


def cosine_similarity(a: Vector, b: Vector) -> float:
    """Cosine of the angle between ``a`` and ``b`` in ``[-1, 1]``.

    Scale invariant, so callers may pass raw (un-normalised) embeddings and
    centroids.  Returns ``0.0`` when either operand has zero magnitude.
    """

    va, vb = _pair(a, b)
    mag_a = float(np.linalg.norm(va))
    mag_b = float(np.linalg.norm(vb))
    if mag_a == 0.0 or mag_b == 0.0:
        return 0.0
    sim = float(np.dot(va, vb)) / (mag_a * mag_b)
    return min(1.0, max(-1.0, sim))


def euclidean_distance(a: Vector, b: Vector) -> float:
    va, vb = _pair(a, b)
    return float(np.linalg.norm(va - vb))


def add(a: Vector, b: Vector) -> np.ndarray:
    va, vb = _pair(a, b)
    return va + vb


def subtract(a: Vector, b: Vector) -> np.ndarray:
    va, vb = _pair(a, b)
    return va - vb


def scale(vector: Vector, factor: float) -> np.ndarray:
    return as_vector(vector) * float(factor)


def mean(vectors: Iterable[Vector]) -> np.ndarray:
    """Element-wise arithmetic mean of ``vectors``.

    Raises ``ValueError`` for an empty collection and
    :class:`DimensionMismatchError` when the vectors disagree on length.
    """

    items = [as_vector(v) for v in vectors]
    if not items:
        raise ValueError("Cannot calculate the mean of an empty collection of vectors")
    if len(items) == 1:
        return items[0].copy()
    dimensions = items[0].shape[0]
    total = np.zeros(dimensions, dtype=np.float64)
    for item in items:
        if item.shape[0] != dimensions:
            raise DimensionMismatchError(dimensions, item.shape[0])
        total += item
    return total / len(items)


__all__ = [
    "DimensionMismatchError",
    "Vector",
    "add",
    "as_embedding",
    "as_vector",
    "cosine_similarity",
    "dot",
    "euclidean_distance",
    "mean",
    "norm",
    "normalize",
    "scale",
    "subtract",
]
