"""
Vector utilities
================

Centralizes the vector math so the rest of the codebase does not care about
dtype, serialization or normalization details.
"""

from __future__ import annotations

import hashlib
import re
from typing import Iterable, Sequence

import numpy as np

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def as_vector(v) -> np.ndarray:
    """Return ``v`` as a writable 1-D float32 array."""
    # ``np.asarray`` may hand back a read-only view over foreign buffers.
    arr = np.array(v, dtype=np.float32, copy=True).reshape(-1)
    np.nan_to_num(arr, copy=False)
    return arr


def cosine_similarity(a, b) -> float:
    """
    Cosine of the angle between ``a`` and ``b``.

    Returns ``0.0`` when either vector has zero magnitude.

    :raises ValueError: when the dimensions differ.
    """
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors must have the same length ({va.shape[0]} != {vb.shape[0]})")
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def cosine_distance(a, b) -> float:
    return 1.0 - cosine_similarity(a, b)


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """Row-normalize a 2-D array; zero rows stay zero."""
    m = np.asarray(matrix, dtype=np.float64)
    norms = np.linalg.norm(m, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return m / norms


def similarity_matrix(points: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Pairwise cosine similarities, shape ``(len(points), len(centroids))``."""
    return normalize_rows(points) @ normalize_rows(centroids).T


def mean_vector(vectors: Sequence[np.ndarray]) -> np.ndarray:
    """Component-wise mean of equally sized vectors."""
    return np.mean(np.stack([as_vector(v) for v in vectors]), axis=0).astype(np.float32)


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall((text or "").lower())


def lexical_score(query: str, *texts: str) -> float:
    """
    Fraction of distinct query terms that occur in any of ``texts``.

    Stands in for a full-text rank in the hybrid strategy; range ``[0, 1]``.
    """
    terms = set(tokenize(query))
    if not terms:
        return 0.0
    vocab: set[str] = set()
    for t in texts:
        vocab.update(tokenize(t))
    return len(terms & vocab) / len(terms)


def to_bytes(vec) -> bytes:
    """Serialize an embedding to raw float32 bytes."""
    return as_vector(vec).tobytes()


def from_bytes(blob: bytes) -> np.ndarray:
    """Deserialize raw bytes into a writable float32 embedding."""
    return np.frombuffer(blob, dtype=np.float32).copy()


def blake16(parts: Iterable[str]) -> str:
    """Return a 16-byte BLAKE2b hex digest over ``parts``."""
    h = hashlib.blake2b(digest_size=16)
    for p in parts:
        h.update((p or "").encode("utf-8"))
        h.update(b"\x1f")
    return h.hexdigest()
