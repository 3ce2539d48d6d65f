"""
Duplicate record resolution.

candidate_selector -> features -> scoring -> resolver. Each stage only
depends on the ones before it.
"""

from .features import levenshtein_distance, string_similarity
from .resolver import (
    Cancelled,
    CreateNew,
    DuplicateResolver,
    ResolutionDecision,
    ResolutionOutcome,
    ResolutionState,
    UpdateExisting,
)
from .scoring import SimilarityCandidate, rank_candidates, score_candidate

__all__ = [
    "Cancelled",
    "CreateNew",
    "DuplicateResolver",
    "ResolutionDecision",
    "ResolutionOutcome",
    "ResolutionState",
    "SimilarityCandidate",
    "UpdateExisting",
    "levenshtein_distance",
    "rank_candidates",
    "score_candidate",
    "string_similarity",
]
