"""
Feature Extraction for Duplicate Resolution.

Responsibilities:
- Compare individual fields of a pending record and a candidate record.
- Provide the edit-distance based string similarity used for names.

Non-Responsibilities:
- No weighting logic.
- No threshold logic.
- No collaborator calls.

Invariant:
Missing data must never be treated as a mismatch. Callers check presence
on both sides before comparing.
"""

from typing import Any, Optional


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance with unit cost insert, delete and substitute."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,        # deletion
                current[j - 1] + 1,     # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """
    ``1 - distance / max(len)`` on lowercased strings, in [0, 1].

    Symmetric; identical strings (including two empty ones) score 1.0.
    """
    a = a.lower()
    b = b.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def exact_match(a: Any, b: Any) -> float:
    return 1.0 if _clean(a) == _clean(b) else 0.0


def casefold_match(a: Any, b: Any) -> float:
    return 1.0 if _clean(a).casefold() == _clean(b).casefold() else 0.0


def fuzzy_match(a: Any, b: Any) -> float:
    return string_similarity(_clean(a), _clean(b))


def _clean(value: Optional[Any]) -> str:
    return "" if value is None else str(value).strip()
