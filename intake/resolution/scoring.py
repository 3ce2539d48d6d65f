"""
Scoring Logic for Duplicate Resolution.

Responsibilities:
- Compute a weighted [0, 100] similarity score between a pending record and
  one candidate record.
- Emit the per-field contributions and the match criteria shown to the user.
- Rank candidates against the surfacing threshold.

Non-Responsibilities:
- No collaborator calls.
- No user decision handling.

Invariant:
Given identical inputs, this module always returns the same scores in the
same order. Fields missing on either side are excluded from both the
numerator and the denominator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..fields import first_address, is_present
from .features import casefold_match, exact_match, fuzzy_match, string_similarity

DEFAULT_THRESHOLD = 70.0
FIRST_NAME_SIMILAR = 0.8


class MatchField(str, Enum):
    BIRTH_DATE = "birth_date"
    SURNAME = "surname"
    FIRST_NAME = "first_name"
    PHONE = "phone"
    LOCALITY = "locality"


class Comparison(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    CASEFOLD = "casefold"


_COMPARATORS: Dict[Comparison, Callable[[Any, Any], float]] = {
    Comparison.EXACT: exact_match,
    Comparison.FUZZY: fuzzy_match,
    Comparison.CASEFOLD: casefold_match,
}


def _key(name: str) -> Callable[[Mapping[str, Any]], Any]:
    return lambda record: record.get(name)


def _locality(record: Mapping[str, Any]) -> Any:
    address = first_address(record)
    return address.get("locality") if address else None


@dataclass(frozen=True)
class FieldDescriptor:
    name: MatchField
    weight: int
    comparison: Comparison
    extract: Callable[[Mapping[str, Any]], Any]

    def compare(self, a: Any, b: Any) -> float:
        return _COMPARATORS[self.comparison](a, b)


def build_weight_table(descriptors: Iterable[FieldDescriptor]) -> Tuple[FieldDescriptor, ...]:
    """
    Validate and freeze a weight table.

    Raises:
        ValueError: On duplicate fields, missing fields or non-positive weights
    """
    table = tuple(descriptors)
    names = [d.name for d in table]
    if len(set(names)) != len(names):
        raise ValueError("Weight table lists a field more than once")
    missing = set(MatchField) - set(names)
    if missing:
        raise ValueError(f"Weight table is missing: {', '.join(sorted(m.value for m in missing))}")
    for d in table:
        if d.weight <= 0:
            raise ValueError(f"Weight for {d.name.value} must be positive")
    return table


WEIGHT_TABLE = build_weight_table([
    FieldDescriptor(MatchField.BIRTH_DATE, 30, Comparison.EXACT, _key("birth_date")),
    FieldDescriptor(MatchField.SURNAME, 25, Comparison.FUZZY, _key("surname")),
    FieldDescriptor(MatchField.FIRST_NAME, 20, Comparison.FUZZY, _key("first_name")),
    FieldDescriptor(MatchField.PHONE, 15, Comparison.EXACT, _key("cell_phone")),
    FieldDescriptor(MatchField.LOCALITY, 10, Comparison.CASEFOLD, _locality),
])


@dataclass(frozen=True)
class SimilarityCandidate:
    candidate_id: Any
    fields: Mapping[str, Any]
    per_field_contribution: Mapping[MatchField, float]
    weighted_score: float
    match_criteria: Mapping[str, bool] = field(default_factory=dict)


def match_criteria(pending: Mapping[str, Any], candidate: Mapping[str, Any]) -> Dict[str, bool]:
    """Per-field match flags displayed next to a candidate. Missing on either side is False."""

    def both(a: Any, b: Any) -> bool:
        return is_present(a) and is_present(b)

    p_locality, c_locality = _locality(pending), _locality(candidate)
    return {
        "birth_date_match": both(pending.get("birth_date"), candidate.get("birth_date"))
        and exact_match(pending["birth_date"], candidate["birth_date"]) == 1.0,
        "surname_match": both(pending.get("surname"), candidate.get("surname"))
        and casefold_match(pending["surname"], candidate["surname"]) == 1.0,
        "first_name_similar": both(pending.get("first_name"), candidate.get("first_name"))
        and string_similarity(
            str(pending["first_name"]).strip(), str(candidate["first_name"]).strip()
        ) > FIRST_NAME_SIMILAR,
        "phone_match": both(pending.get("cell_phone"), candidate.get("cell_phone"))
        and exact_match(pending["cell_phone"], candidate["cell_phone"]) == 1.0,
        "address_similar": both(p_locality, c_locality)
        and casefold_match(p_locality, c_locality) == 1.0,
    }


def score_candidate(
    pending: Mapping[str, Any],
    candidate: Mapping[str, Any],
    table: Tuple[FieldDescriptor, ...] = WEIGHT_TABLE,
) -> Optional[SimilarityCandidate]:
    """
    Score one candidate against the pending record.

    Returns None when no field is present on both sides: such a candidate
    carries no evidence either way and is excluded rather than scored 0.
    """
    contributions: Dict[MatchField, float] = {}
    evaluated_weight = 0

    for descriptor in table:
        a = descriptor.extract(pending)
        b = descriptor.extract(candidate)
        if not (is_present(a) and is_present(b)):
            continue
        contributions[descriptor.name] = descriptor.weight * descriptor.compare(a, b)
        evaluated_weight += descriptor.weight

    if evaluated_weight == 0:
        return None

    score = sum(contributions.values()) / evaluated_weight * 100
    return SimilarityCandidate(
        candidate_id=candidate.get("id"),
        fields=candidate,
        per_field_contribution=contributions,
        weighted_score=score,
        match_criteria=match_criteria(pending, candidate),
    )


def rank_candidates(
    pending: Mapping[str, Any],
    candidates: Iterable[Mapping[str, Any]],
    threshold: float = DEFAULT_THRESHOLD,
    table: Tuple[FieldDescriptor, ...] = WEIGHT_TABLE,
) -> List[SimilarityCandidate]:
    """Candidates scoring at least ``threshold``, best first; ties keep input order."""
    scored = []
    for candidate in candidates:
        result = score_candidate(pending, candidate, table)
        if result is not None and result.weighted_score >= threshold:
            scored.append(result)
    # sorted() is stable, so equal scores keep fetch order
    return sorted(scored, key=lambda c: c.weighted_score, reverse=True)
