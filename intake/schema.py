"""
Field validators and step completion predicates for person intake.

validate_field() is the field validator handed to the debounce scheduler.
validate_step() returns a list of error messages for a whole step; an empty
list means the step is complete.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional

from .config import ReferenceData
from .fields import ADDRESS_FIELDS, ALIAS_FIELDS, PersonField, is_present
from .scheduler import FieldState, FieldValidationResult
from .wizard import StepDefinition

LOOKUP_STEP = 0
DETAILS_STEP = 1
CONTACT_STEP = 2
DOCUMENTS_STEP = 3
ADDRESS_STEP = 4
REVIEW_STEP = 5

FIRST_DATA_ENTRY_STEP = DETAILS_STEP

STEP_LABELS = {
    LOOKUP_STEP: "Lookup",
    DETAILS_STEP: "Details",
    CONTACT_STEP: "Contact",
    DOCUMENTS_STEP: "Documents",
    ADDRESS_STEP: "Address",
    REVIEW_STEP: "Review",
}

ADDRESS_TYPES = ("RESIDENTIAL", "POSTAL")

_DIGITS = re.compile(r"^\d+$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CELL_PHONE = re.compile(r"^0\d{9}$")
_WORK_PHONE = re.compile(r"^\+?\d{7,15}$")
_POSTAL_CODE = re.compile(r"^\d{3}$")

Check = Callable[[str, ReferenceData], Optional[str]]


@dataclass(frozen=True)
class FieldRule:
    required: bool
    check: Check
    label: str


def _length(min_len: int, max_len: int = 100) -> Check:
    def check(value: str, _ctx: ReferenceData) -> Optional[str]:
        if len(value) < min_len:
            return f"must be at least {min_len} characters"
        if len(value) > max_len:
            return f"must not exceed {max_len} characters"
        return None
    return check


def _pattern(regex: "re.Pattern[str]", message: str) -> Check:
    def check(value: str, _ctx: ReferenceData) -> Optional[str]:
        return None if regex.match(value) else message
    return check


def _one_of(attr: str) -> Check:
    def check(value: str, ctx: ReferenceData) -> Optional[str]:
        allowed = getattr(ctx, attr)
        return None if value in allowed else "please select a valid option"
    return check


def _choice(options) -> Check:
    def check(value: str, _ctx: ReferenceData) -> Optional[str]:
        return None if value in options else "please select a valid option"
    return check


def _iso_date(allow_future: bool) -> Check:
    def check(value: str, _ctx: ReferenceData) -> Optional[str]:
        if not _ISO_DATE.match(value):
            return "date must be in YYYY-MM-DD format"
        try:
            parsed = date.fromisoformat(value)
        except ValueError:
            return "date is not a valid calendar date"
        if not allow_future and parsed > date.today():
            return "date cannot be in the future"
        return None
    return check


def _document_number(value: str, _ctx: ReferenceData) -> Optional[str]:
    if not _DIGITS.match(value):
        return "ID number must contain only digits"
    if len(value) < 9:
        return "ID number must be at least 9 digits"
    return None


def _any(value: str, _ctx: ReferenceData) -> Optional[str]:
    return None


FIELD_RULES: Dict[PersonField, FieldRule] = {
    PersonField.DOCUMENT_TYPE: FieldRule(True, _one_of("document_types"), "Document type"),
    PersonField.DOCUMENT_NUMBER: FieldRule(True, _document_number, "ID number"),
    PersonField.SURNAME: FieldRule(True, _length(2, 50), "Surname"),
    PersonField.FIRST_NAME: FieldRule(True, _length(2, 50), "First name"),
    PersonField.MIDDLE_NAME: FieldRule(False, _length(1, 50), "Middle name"),
    PersonField.PERSON_NATURE: FieldRule(True, _one_of("person_natures"), "Gender"),
    PersonField.BIRTH_DATE: FieldRule(True, _iso_date(allow_future=False), "Date of birth"),
    PersonField.NATIONALITY_CODE: FieldRule(True, _one_of("nationalities"), "Nationality"),
    PersonField.PREFERRED_LANGUAGE: FieldRule(True, _one_of("languages"), "Language"),
    PersonField.EMAIL_ADDRESS: FieldRule(
        True, _pattern(_EMAIL, "please enter a valid email address"), "Email address"
    ),
    PersonField.CELL_PHONE: FieldRule(
        True,
        _pattern(_CELL_PHONE, "cell phone must be exactly 10 digits starting with 0"),
        "Cell phone",
    ),
    PersonField.WORK_PHONE: FieldRule(
        False, _pattern(_WORK_PHONE, "work phone must be 7 to 15 digits"), "Work phone"
    ),
    PersonField.NAME_IN_DOCUMENT: FieldRule(True, _length(2, 100), "Name on document"),
    PersonField.COUNTRY_OF_ISSUE: FieldRule(True, _one_of("countries"), "Country of issue"),
    PersonField.EXPIRY_DATE: FieldRule(False, _iso_date(allow_future=True), "Expiry date"),
    PersonField.ADDRESS_TYPE: FieldRule(True, _choice(ADDRESS_TYPES), "Address type"),
    PersonField.STREET_LINE1: FieldRule(True, _length(5, 100), "Address line 1"),
    PersonField.LOCALITY: FieldRule(True, _length(2, 100), "Locality"),
    PersonField.TOWN: FieldRule(True, _length(2, 100), "Town"),
    PersonField.PROVINCE_CODE: FieldRule(True, _any, "Province"),
    PersonField.POSTAL_CODE: FieldRule(
        True, _pattern(_POSTAL_CODE, "postal code must be exactly 3 digits"), "Postal code"
    ),
    PersonField.COUNTRY: FieldRule(True, _one_of("countries"), "Country"),
}

_missing = [f.value for f in PersonField if f not in FIELD_RULES]
if _missing:
    raise RuntimeError(f"No validation rule for fields: {', '.join(_missing)}")


def validate_field(
    field_name: Any,
    value: Any,
    context: Optional[ReferenceData] = None,
) -> FieldValidationResult:
    """
    Validate a single field value.

    Raises:
        ValueError: If ``field_name`` is not a PersonField
    """
    field = PersonField(field_name)
    rule = FIELD_RULES[field]
    context = context or ReferenceData()

    if not is_present(value):
        if rule.required:
            return FieldValidationResult.required(f"{rule.label} is required")
        return FieldValidationResult(True, FieldState.DEFAULT)

    message = rule.check(str(value).strip(), context)
    if message:
        return FieldValidationResult.invalid(f"{rule.label}: {message}")
    return FieldValidationResult.valid()


def _field_errors(data: Mapping[str, Any], fields, context: ReferenceData, prefix: str = "") -> List[str]:
    errors: List[str] = []
    for f in fields:
        result = validate_field(f, data.get(f.value), context)
        if not result.is_valid:
            errors.append(f"{prefix}{result.error_message}")
    return errors


def _non_empty_list(data: Mapping[str, Any], key: str) -> Optional[List[Any]]:
    items = data.get(key)
    if not isinstance(items, list) or not items:
        return None
    return items


def _alias_errors(data: Mapping[str, Any], context: ReferenceData) -> List[str]:
    aliases = _non_empty_list(data, "aliases")
    if aliases is None:
        return ["At least one identification document is required"]
    errors: List[str] = []
    for i, alias in enumerate(aliases):
        prefix = f"aliases[{i}]: "
        if not isinstance(alias, Mapping):
            errors.append(f"{prefix}must be an object")
            continue
        number = alias.get("document_number")
        if not is_present(number):
            errors.append(f"{prefix}Document number is required")
        elif len(str(number).strip()) < 3:
            errors.append(f"{prefix}Document number must be at least 3 characters")
        errors.extend(_field_errors(
            alias,
            [f for f in ALIAS_FIELDS if f is not PersonField.DOCUMENT_NUMBER],
            context,
            prefix,
        ))
        if alias.get("document_type") == "PASSPORT" and not is_present(alias.get("expiry_date")):
            errors.append(f"{prefix}Expiry date is required for passports")
    return errors


def _address_errors(data: Mapping[str, Any], context: ReferenceData) -> List[str]:
    addresses = _non_empty_list(data, "addresses")
    if addresses is None:
        return ["At least one address is required"]
    errors: List[str] = []
    for i, address in enumerate(addresses):
        prefix = f"addresses[{i}]: "
        if not isinstance(address, Mapping):
            errors.append(f"{prefix}must be an object")
            continue
        errors.extend(_field_errors(address, ADDRESS_FIELDS, context, prefix))
    return errors


def validate_step(step_index: int, data: Mapping[str, Any], context: Optional[ReferenceData] = None) -> List[str]:
    """
    Returns a list of validation error messages for one step.
    Empty list means the step is complete.
    """
    context = context or ReferenceData()

    if step_index == LOOKUP_STEP:
        return _field_errors(data, (PersonField.DOCUMENT_TYPE, PersonField.DOCUMENT_NUMBER), context)
    if step_index == DETAILS_STEP:
        return _field_errors(data, (
            PersonField.SURNAME, PersonField.FIRST_NAME, PersonField.MIDDLE_NAME,
            PersonField.PERSON_NATURE, PersonField.BIRTH_DATE,
            PersonField.NATIONALITY_CODE, PersonField.PREFERRED_LANGUAGE,
        ), context)
    if step_index == CONTACT_STEP:
        return _field_errors(data, (
            PersonField.EMAIL_ADDRESS, PersonField.CELL_PHONE, PersonField.WORK_PHONE,
        ), context)
    if step_index == DOCUMENTS_STEP:
        return _alias_errors(data, context)
    if step_index == ADDRESS_STEP:
        return _address_errors(data, context)
    if step_index == REVIEW_STEP:
        errors: List[str] = []
        for earlier in range(LOOKUP_STEP, REVIEW_STEP):
            if validate_step(earlier, data, context):
                errors.append(f"{STEP_LABELS[earlier]} step is incomplete")
        return errors
    raise ValueError(f"Unknown step index: {step_index}")


def validate_record(data: Mapping[str, Any], context: Optional[ReferenceData] = None) -> Dict[str, List[str]]:
    """Errors for every data step, keyed by step label; complete steps are omitted."""
    report: Dict[str, List[str]] = {}
    for index in range(LOOKUP_STEP, REVIEW_STEP):
        errors = validate_step(index, data, context)
        if errors:
            report[STEP_LABELS[index]] = errors
    return report


def build_person_steps(context: Optional[ReferenceData] = None) -> List[StepDefinition]:
    """The six-step person registration wizard."""
    context = context or ReferenceData()

    def predicate(index: int):
        return lambda data: not validate_step(index, data, context)

    return [StepDefinition(i, STEP_LABELS[i], predicate(i)) for i in sorted(STEP_LABELS)]


def new_person_data(
    document_type: str,
    document_number: str,
    context: Optional[ReferenceData] = None,
) -> Dict[str, Any]:
    """
    Starting data for a person that was not found by lookup.

    The looked-up document becomes the primary alias and a primary address
    with default type and country is prepared for the Address step.
    """
    context = context or ReferenceData()
    country = context.countries[0] if context.countries else ""
    document_type = str(document_type or "").upper()
    document_number = str(document_number or "").strip().upper()
    return {
        PersonField.DOCUMENT_TYPE.value: document_type,
        PersonField.DOCUMENT_NUMBER.value: document_number,
        PersonField.PERSON_NATURE.value: context.person_natures[0] if context.person_natures else "",
        PersonField.NATIONALITY_CODE.value: context.nationalities[0] if context.nationalities else "",
        PersonField.PREFERRED_LANGUAGE.value: context.languages[0] if context.languages else "",
        "aliases": [{
            "document_type": document_type,
            "document_number": document_number,
            "country_of_issue": country,
            "name_in_document": "",
            "is_primary": True,
            "is_current": True,
        }],
        "addresses": [{
            "address_type": ADDRESS_TYPES[0],
            "country": country,
            "is_primary": True,
        }],
    }
