"""
Vector normalization, similarity measures and the synthetic fallback embedding.
All functions are pure and never fail on well-formed numeric input.
"""

import hashlib
from typing import Sequence, Union

import numpy as np

VectorLike = Union[np.ndarray, Sequence[float]]

SYNTHETIC_NGRAM_SIZES = (1, 2, 3)


def _as_vector(vector: VectorLike) -> np.ndarray:
    return np.asarray(vector, dtype=np.float64).reshape(-1)


def normalize_l2(vector: VectorLike) -> np.ndarray:
    """Scale to unit Euclidean norm. The zero vector is returned unchanged."""
    v = _as_vector(vector)
    norm = np.linalg.norm(v)
    if norm == 0:
        return v.copy()
    return v / norm


def normalize_min_max(vector: VectorLike) -> np.ndarray:
    """
    Rescale into [0, 1] using the vector's own min and max.

    Each vector is scaled against itself, not a corpus-wide range, so two
    normalized vectors are only approximately comparable. Kept as-is for
    compatibility with stores built this way. A constant vector maps to zeros.
    """
    v = _as_vector(vector)
    if v.size == 0:
        return v.copy()

    low = v.min()
    value_range = v.max() - low
    if value_range == 0:
        return np.zeros_like(v)
    return (v - low) / value_range


def normalize_sigmoid(vector: VectorLike) -> np.ndarray:
    """Squash every component into (0, 1) with the logistic function."""
    v = _as_vector(vector)
    return 1.0 / (1.0 + np.exp(-v))


def _check_dimensions(a: np.ndarray, b: np.ndarray):
    if a.shape != b.shape:
        raise ValueError(f"Vector dimensions must match: {a.size} != {b.size}")


def cosine_similarity(vector_a: VectorLike, vector_b: VectorLike) -> float:
    """Cosine of the angle between two vectors; 0.0 when either is zero."""
    a = _as_vector(vector_a)
    b = _as_vector(vector_b)
    _check_dimensions(a, b)
    if a.size == 0:
        return 0.0

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def euclidean_distance(vector_a: VectorLike, vector_b: VectorLike) -> float:
    a = _as_vector(vector_a)
    b = _as_vector(vector_b)
    _check_dimensions(a, b)
    return float(np.linalg.norm(a - b))


def manhattan_distance(vector_a: VectorLike, vector_b: VectorLike) -> float:
    a = _as_vector(vector_a)
    b = _as_vector(vector_b)
    _check_dimensions(a, b)
    return float(np.abs(a - b).sum())


def _hash64(data: str) -> int:
    digest = hashlib.blake2b(data.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "little")


def generate_synthetic_embedding(text: str, dimension: int = 768) -> np.ndarray:
    """
    Deterministic, provider-independent embedding used when the embedding
    service is unavailable.

    Character n-grams (n = 1..3, lowercased) are hashed into `dimension`
    buckets with a hash-derived sign, so texts sharing vocabulary end up
    near each other. A digest of the exact text is mixed in so that distinct
    texts with the same n-gram counts still differ. The result depends only
    on the text and the dimension, identically across processes.

    Args:
        text: Input text
        dimension: Output dimensionality (768 matches nomic-embed-text)

    Returns:
        Raw (unnormalized) float64 vector of length `dimension`
    """
    if dimension < 1:
        raise ValueError(f"dimension must be >= 1: {dimension}")

    vector = np.zeros(dimension, dtype=np.float64)
    lowered = text.lower()

    for n in SYNTHETIC_NGRAM_SIZES:
        for i in range(len(lowered) - n + 1):
            value = _hash64(lowered[i:i + n])
            sign = -1.0 if value >> 63 else 1.0
            vector[value % dimension] += sign * n

    digest = hashlib.blake2b(text.encode("utf-8"), digest_size=32).digest()
    for offset in range(0, len(digest), 4):
        value = int.from_bytes(digest[offset:offset + 4], "little")
        vector[value % dimension] += (value >> 16) / 65535.0 * 2 - 1

    return vector
