"""String similarity used by secondary suggestion scoring."""

from __future__ import annotations

from collections.abc import Callable

SimilarityFn = Callable[[str, str], float]


def positional_similarity(left: str, right: str) -> float:
    """Share of aligned positions holding the same character, case-insensitive.

    Counts equal characters over the shorter length and divides by the longer
    length, so the result is symmetric and lies in [0, 1].
    """

    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0

    a = left.lower()
    b = right.lower()
    matches = sum(1 for x, y in zip(a, b) if x == y)
    return matches / max(len(a), len(b))
