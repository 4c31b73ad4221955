"""Vector packing and similarity helpers."""

from __future__ import annotations

import math
from array import array
from typing import Sequence


def to_bytes(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def from_bytes(payload: bytes) -> list[float]:
    floats = array("f")
    floats.frombytes(payload)
    return list(floats)


def norm(vector: Sequence[float]) -> float:
    return math.sqrt(sum(value * value for value in vector))


def normalize(vector: Sequence[float]) -> list[float]:
    length = norm(vector)
    if length == 0:
        return list(vector)
    inv = 1.0 / length
    return [value * inv for value in vector]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in ``[-1, 1]``; zero vectors score 0."""
    if len(a) != len(b):
        raise ValueError("Vector dimension mismatch")
    denom = norm(a) * norm(b)
    if denom == 0:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / denom


__all__ = ["to_bytes", "from_bytes", "norm", "normalize", "cosine_similarity"]
