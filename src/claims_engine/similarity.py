"""String similarity primitive used for fuzzy column matching.

Similarity is a normalized edit distance: 1 - levenshtein(a, b) / max(len(a), len(b)),
computed on trimmed, case-folded inputs.
"""

from __future__ import annotations

from rapidfuzz.distance import Levenshtein


def levenshtein_distance(a: str, b: str) -> int:
    """Number of single-character edits needed to turn ``a`` into ``b``."""
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    """Return a similarity score in [0, 1] for two strings.

    Symmetric; identical strings (after trimming and case-folding) score 1.0,
    including two empty strings.
    """
    left = a.strip().lower()
    right = b.strip().lower()
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(left, right) / longest


def best_similarity(source: str, candidates: list[str] | tuple[str, ...]) -> float:
    """Highest similarity between ``source`` and any of ``candidates`` (0 when empty)."""
    return max((similarity(source, c) for c in candidates), default=0.0)
