"""
Closed catalogue of person fields and record accessors.

Validators and the duplicate scorer look fields up through PersonField
rather than free-form strings, so an unknown name fails immediately.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class PersonField(str, Enum):
    # lookup
    DOCUMENT_TYPE = "document_type"
    DOCUMENT_NUMBER = "document_number"
    # details
    SURNAME = "surname"
    FIRST_NAME = "first_name"
    MIDDLE_NAME = "middle_name"
    PERSON_NATURE = "person_nature"
    BIRTH_DATE = "birth_date"
    NATIONALITY_CODE = "nationality_code"
    PREFERRED_LANGUAGE = "preferred_language"
    # contact
    EMAIL_ADDRESS = "email_address"
    CELL_PHONE = "cell_phone"
    WORK_PHONE = "work_phone"
    # documents (per alias)
    NAME_IN_DOCUMENT = "name_in_document"
    COUNTRY_OF_ISSUE = "country_of_issue"
    EXPIRY_DATE = "expiry_date"
    # address (per address)
    ADDRESS_TYPE = "address_type"
    STREET_LINE1 = "street_line1"
    LOCALITY = "locality"
    TOWN = "town"
    PROVINCE_CODE = "province_code"
    POSTAL_CODE = "postal_code"
    COUNTRY = "country"


PERSON_SCALAR_FIELDS = (
    PersonField.SURNAME,
    PersonField.FIRST_NAME,
    PersonField.MIDDLE_NAME,
    PersonField.PERSON_NATURE,
    PersonField.BIRTH_DATE,
    PersonField.NATIONALITY_CODE,
    PersonField.PREFERRED_LANGUAGE,
    PersonField.EMAIL_ADDRESS,
    PersonField.CELL_PHONE,
    PersonField.WORK_PHONE,
)

ALIAS_FIELDS = (
    PersonField.DOCUMENT_TYPE,
    PersonField.DOCUMENT_NUMBER,
    PersonField.NAME_IN_DOCUMENT,
    PersonField.COUNTRY_OF_ISSUE,
    PersonField.EXPIRY_DATE,
)

ADDRESS_FIELDS = (
    PersonField.ADDRESS_TYPE,
    PersonField.STREET_LINE1,
    PersonField.LOCALITY,
    PersonField.TOWN,
    PersonField.PROVINCE_CODE,
    PersonField.POSTAL_CODE,
    PersonField.COUNTRY,
)


def is_present(value: Any) -> bool:
    """True for non-blank values. Blank strings count as missing."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def _primary(items: Any) -> Optional[Mapping[str, Any]]:
    if not isinstance(items, list) or not items:
        return None
    for item in items:
        if isinstance(item, Mapping) and item.get("is_primary"):
            return item
    first = items[0]
    return first if isinstance(first, Mapping) else None


def primary_alias(record: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    return _primary(record.get("aliases"))


def first_address(record: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    addresses = record.get("addresses")
    if isinstance(addresses, list) and addresses and isinstance(addresses[0], Mapping):
        return addresses[0]
    return None


def build_person_payload(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Collect the person fields plus nested aliases and addresses from form data."""
    payload: Dict[str, Any] = {}
    for f in PERSON_SCALAR_FIELDS:
        value = data.get(f.value)
        if is_present(value):
            payload[f.value] = value.strip() if isinstance(value, str) else value
    payload["aliases"] = [dict(a) for a in data.get("aliases") or []]
    payload["addresses"] = [dict(a) for a in data.get("addresses") or []]
    return payload


def record_to_form_data(record: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Turn a persisted person record into wizard data.

    The lookup fields are filled from the primary document so the lookup
    step is satisfied as well.
    """
    data: Dict[str, Any] = {}
    for f in PERSON_SCALAR_FIELDS:
        if f.value in record and record[f.value] is not None:
            data[f.value] = record[f.value]
    aliases: List[Dict[str, Any]] = [dict(a) for a in record.get("aliases") or []]
    addresses: List[Dict[str, Any]] = [dict(a) for a in record.get("addresses") or []]
    data["aliases"] = aliases
    data["addresses"] = addresses
    alias = primary_alias(record)
    if alias is not None:
        data[PersonField.DOCUMENT_TYPE.value] = alias.get("document_type")
        data[PersonField.DOCUMENT_NUMBER.value] = alias.get("document_number")
    return data


def name_in_document(data: Mapping[str, Any]) -> str:
    """Upper-cased "first middle surname", as printed on identity documents."""
    parts = [
        str(data.get(f.value)).strip()
        for f in (PersonField.FIRST_NAME, PersonField.MIDDLE_NAME, PersonField.SURNAME)
        if is_present(data.get(f.value))
    ]
    return " ".join(parts).upper()
