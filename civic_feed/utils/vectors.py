from __future__ import annotations

import math
from typing import List, Optional, Sequence


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors; 0.0 for empty, mismatched or zero vectors."""

    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def mean_vector(vectors: Sequence[Sequence[float]]) -> Optional[List[float]]:
    """Average the vectors sharing the first vector's dimension; None when nothing usable."""

    usable = [v for v in vectors if v]
    if not usable:
        return None
    dim = len(usable[0])
    usable = [v for v in usable if len(v) == dim]
    return [sum(column) / len(usable) for column in zip(*usable)]
