"""
Candidate Selection Logic.

Responsibilities:
- Build the loose search filter for a pending record.
- Fetch a bounded set of candidate records from the search collaborator.
- Drop candidates without an id and repeated ids.

Non-Responsibilities:
- No scoring.
- No similarity computation.
- No resolution decisions.

Invariant:
Candidate selection must never exclude a valid match.
It may include false positives but never false negatives.
"""

from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from ..fields import is_present
from ..logger import StructuredLogger, get_logger

SearchFn = Callable[[Mapping[str, Any]], Awaitable[List[Dict[str, Any]]]]

FILTER_FIELDS = ("surname", "first_name", "birth_date")


def build_search_filters(pending: Mapping[str, Any], limit: int = 20) -> Dict[str, Any]:
    """Filter on surname, first name and birth date; absent fields are left out."""
    filters: Dict[str, Any] = {
        name: str(pending[name]).strip()
        for name in FILTER_FIELDS
        if is_present(pending.get(name))
    }
    filters["include_details"] = True
    filters["limit"] = limit
    return filters


def deduplicate_candidates(
    candidates: List[Mapping[str, Any]],
    exclude_id: Optional[Any] = None,
    logger: Optional[StructuredLogger] = None,
) -> List[Mapping[str, Any]]:
    """Deduplicate candidates by id while preserving fetch order."""
    logger = logger or get_logger()
    seen = set()
    result = []
    for candidate in candidates:
        candidate_id = candidate.get("id") if isinstance(candidate, Mapping) else None
        if candidate_id is None:
            logger.warning("Skipping candidate without id")
            continue
        if candidate_id == exclude_id or candidate_id in seen:
            continue
        seen.add(candidate_id)
        result.append(candidate)
    return result


async def select_candidates(
    search: SearchFn,
    pending: Mapping[str, Any],
    limit: int = 20,
    logger: Optional[StructuredLogger] = None,
) -> List[Mapping[str, Any]]:
    """
    Fetch candidate records for ``pending``.

    Collaborator errors propagate; the resolver decides how to degrade.
    """
    filters = build_search_filters(pending, limit)
    results = await search(filters)
    if results is None:
        return []
    return deduplicate_candidates(list(results), exclude_id=pending.get("id"), logger=logger)
