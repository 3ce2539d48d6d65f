"""
Pytest configuration and shared fixtures.
"""

import asyncio
import copy
from typing import Any, Dict, List

import pytest

from intake.errors import RecordValidationError, SearchCollaboratorFailure
from intake.logger import get_logger, reset_logger


@pytest.fixture(autouse=True)
def quiet_logger(tmp_path):
    """Fresh global logger per test, writing to a temp dir only."""
    reset_logger()
    logger = get_logger(level="DEBUG", log_dir=tmp_path / "logs", enable_console=False)
    yield logger
    for handler in list(logger.logger.handlers):
        handler.close()
        logger.logger.removeHandler(handler)
    reset_logger()


@pytest.fixture
def valid_person_data() -> Dict[str, Any]:
    """Wizard data that satisfies every step."""
    return {
        "document_type": "MG_ID",
        "document_number": "101234567890",
        "surname": "Rakoto",
        "first_name": "Jean",
        "person_nature": "MALE",
        "birth_date": "1990-05-14",
        "nationality_code": "MG",
        "preferred_language": "MG",
        "email_address": "jean.rakoto@example.mg",
        "cell_phone": "0341234567",
        "aliases": [
            {
                "document_type": "MG_ID",
                "document_number": "101234567890",
                "name_in_document": "Jean Rakoto",
                "country_of_issue": "MG",
                "is_primary": True,
            }
        ],
        "addresses": [
            {
                "address_type": "RESIDENTIAL",
                "street_line1": "Lot II M 45 Analakely",
                "locality": "Analakely",
                "town": "Antananarivo",
                "province_code": "T",
                "postal_code": "101",
                "country": "MG",
                "is_primary": True,
            }
        ],
    }


@pytest.fixture
def existing_person() -> Dict[str, Any]:
    """Stored record of the same person with a different cell phone."""
    return {
        "id": "p-100",
        "surname": "Rakoto",
        "first_name": "Jean",
        "person_nature": "MALE",
        "birth_date": "1990-05-14",
        "nationality_code": "MG",
        "preferred_language": "FR",
        "email_address": "j.rakoto@example.mg",
        "cell_phone": "0329876543",
        "aliases": [
            {
                "id": "a-1",
                "document_type": "MG_ID",
                "document_number": "109876543210",
                "name_in_document": "Jean Rakoto",
                "country_of_issue": "MG",
                "is_primary": True,
            }
        ],
        "addresses": [
            {
                "id": "ad-1",
                "address_type": "RESIDENTIAL",
                "street_line1": "Lot IV B 12 Analakely",
                "locality": "Analakely",
                "town": "Antananarivo",
                "province_code": "T",
                "postal_code": "101",
                "country": "MG",
                "is_primary": True,
            }
        ],
    }


@pytest.fixture
def unrelated_person() -> Dict[str, Any]:
    return {
        "id": "p-200",
        "surname": "Randria",
        "first_name": "Hery",
        "birth_date": "1975-01-02",
        "cell_phone": "0331112222",
        "aliases": [],
        "addresses": [{"address_type": "RESIDENTIAL", "locality": "Toamasina"}],
    }


class FakeRecordService:
    """In-memory async RecordService with call recording and failure injection."""

    def __init__(self, records: List[Dict[str, Any]] = None):
        self.records = {r["id"]: copy.deepcopy(r) for r in records or []}
        self.search_calls: List[Dict[str, Any]] = []
        self.created: List[Dict[str, Any]] = []
        self.updated: List[Any] = []
        self.fail_search = False
        self.search_delay = 0.0
        self.create_error: Exception = None
        self.update_error: Exception = None
        self._next_id = 1

    async def search(self, filters):
        self.search_calls.append(dict(filters))
        if self.search_delay:
            await asyncio.sleep(self.search_delay)
        if self.fail_search:
            raise SearchCollaboratorFailure("search backend unavailable")
        number = filters.get("document_number")
        if number:
            return [
                copy.deepcopy(r) for r in self.records.values()
                if any(a.get("document_number") == number for a in r.get("aliases", []))
            ]
        return [copy.deepcopy(r) for r in self.records.values()]

    async def get(self, record_id):
        return copy.deepcopy(self.records[record_id])

    async def create(self, payload):
        if self.create_error is not None:
            raise self.create_error
        record = copy.deepcopy(dict(payload))
        record["id"] = f"new-{self._next_id}"
        self._next_id += 1
        self.records[record["id"]] = record
        self.created.append(record)
        return copy.deepcopy(record)

    async def update(self, record_id, payload):
        if self.update_error is not None:
            raise self.update_error
        record = {**self.records[record_id], **copy.deepcopy(dict(payload)), "id": record_id}
        self.records[record_id] = record
        self.updated.append((record_id, record))
        return copy.deepcopy(record)


@pytest.fixture
def fake_records(existing_person, unrelated_person) -> FakeRecordService:
    return FakeRecordService([existing_person, unrelated_person])


@pytest.fixture
def rejecting_records(fake_records) -> FakeRecordService:
    fake_records.create_error = RecordValidationError({"surname": "already taken"})
    return fake_records
