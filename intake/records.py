"""
Record collaborator contract.

The intake core only talks to storage through RecordService. Records are
plain dicts: person fields at the top level plus ``aliases`` and
``addresses`` lists.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

ADDRESS_COMPARE_FIELDS = (
    "address_type",
    "street_line1",
    "street_line2",
    "locality",
    "town",
    "postal_code",
    "country",
    "province_code",
    "is_primary",
)


class RecordService(Protocol):
    async def search(self, filters: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """Full records (with nested sub-records) matching ``filters``."""
        ...

    async def get(self, record_id: Any) -> Dict[str, Any]:
        ...

    async def create(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Raises RecordValidationError when the payload is rejected."""
        ...

    async def update(self, record_id: Any, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Raises RecordValidationError when the payload is rejected."""
        ...


@dataclass
class AddressPlan:
    """Sub-record changes needed to turn existing addresses into new ones."""

    to_create: List[Dict[str, Any]] = field(default_factory=list)
    to_update: List[Dict[str, Any]] = field(default_factory=list)
    to_delete: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_update or self.to_delete)


def _same_slot(new: Mapping[str, Any], existing: Mapping[str, Any]) -> bool:
    if new.get("id") is not None and new.get("id") == existing.get("id"):
        return True
    return (
        new.get("address_type") == existing.get("address_type")
        and bool(new.get("is_primary")) == bool(existing.get("is_primary"))
    )


def addresses_equal(a: Mapping[str, Any], b: Mapping[str, Any]) -> bool:
    return all(a.get(f) == b.get(f) for f in ADDRESS_COMPARE_FIELDS)


def plan_address_changes(
    existing: Sequence[Mapping[str, Any]],
    new: Sequence[Mapping[str, Any]],
) -> AddressPlan:
    """
    Match new addresses to existing ones by id, or by (type, primary) slot.

    Unmatched existing addresses are deleted, matched ones whose data changed
    are updated (keeping the existing id), unmatched new ones are created.
    """
    plan = AddressPlan()
    for current in existing:
        match: Optional[Mapping[str, Any]] = next((n for n in new if _same_slot(n, current)), None)
        if match is None:
            plan.to_delete.append(dict(current))
        elif not addresses_equal(current, match):
            plan.to_update.append({**match, "id": current.get("id")})

    for candidate in new:
        if not any(_same_slot(candidate, current) for current in existing):
            plan.to_create.append(dict(candidate))
    return plan
