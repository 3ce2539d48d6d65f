"""
Database schema and SQLAlchemy-backed record service.

Uses SQLite with SQLAlchemy for person storage. Persons own their aliases
(identity documents) and addresses.
"""

import asyncio
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, create_engine, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from .errors import RecordServiceError, RecordValidationError
from .fields import PERSON_SCALAR_FIELDS, is_present
from .logger import StructuredLogger, get_logger
from .records import plan_address_changes

Base = declarative_base()

REQUIRED_PERSON_FIELDS = ("surname", "first_name")


def _new_id() -> str:
    return str(uuid.uuid4())


class Person(Base):
    """Person model."""

    __tablename__ = "persons"

    id = Column(String, primary_key=True, default=_new_id)
    surname = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    middle_name = Column(String)
    person_nature = Column(String)
    birth_date = Column(String)  # ISO YYYY-MM-DD
    nationality_code = Column(String)
    preferred_language = Column(String)
    email_address = Column(String)
    cell_phone = Column(String)
    work_phone = Column(String)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    aliases = relationship(
        "Alias", back_populates="person", cascade="all, delete-orphan", order_by="Alias.position"
    )
    addresses = relationship(
        "Address", back_populates="person", cascade="all, delete-orphan", order_by="Address.position"
    )


class Alias(Base):
    """Identity document held by a person."""

    __tablename__ = "person_aliases"

    id = Column(String, primary_key=True, default=_new_id)
    person_id = Column(String, ForeignKey("persons.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    document_type = Column(String, nullable=False)
    document_number = Column(String, nullable=False)
    name_in_document = Column(String)
    country_of_issue = Column(String)
    expiry_date = Column(String)
    is_primary = Column(Boolean, nullable=False, default=False)
    is_current = Column(Boolean, nullable=False, default=True)

    person = relationship("Person", back_populates="aliases")


class Address(Base):
    """Residential or postal address of a person."""

    __tablename__ = "person_addresses"

    id = Column(String, primary_key=True, default=_new_id)
    person_id = Column(String, ForeignKey("persons.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    address_type = Column(String, nullable=False)
    street_line1 = Column(String)
    street_line2 = Column(String)
    locality = Column(String)
    town = Column(String)
    province_code = Column(String)
    postal_code = Column(String)
    country = Column(String)
    is_primary = Column(Boolean, nullable=False, default=False)

    person = relationship("Person", back_populates="addresses")


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    engine.dispose()


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    engine = create_engine(f"sqlite:///{db_path}")
    Session = sessionmaker(bind=engine)
    return Session()


def _columns(model) -> List[str]:
    return [c.key for c in model.__table__.columns if c.key not in ("id", "person_id", "position")]


def _row_to_dict(row, columns: List[str]) -> Dict[str, Any]:
    data = {"id": row.id}
    for name in columns:
        value = getattr(row, name)
        data[name] = value.isoformat() if isinstance(value, datetime) else value
    return data


def person_to_dict(person: Person) -> Dict[str, Any]:
    """Full record: person columns plus nested aliases and addresses."""
    record = _row_to_dict(person, _columns(Person))
    record["aliases"] = [_row_to_dict(a, _columns(Alias)) for a in person.aliases]
    record["addresses"] = [_row_to_dict(a, _columns(Address)) for a in person.addresses]
    return record


def _pick(model, values: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = set(_columns(model)) - {"created_at", "updated_at"}
    return {k: v for k, v in values.items() if k in allowed}


class SqlRecordService:
    """
    RecordService backed by SQLite.

    Search is intentionally loose: any of surname, first name (substring,
    case-insensitive) or birth date may match. A document filter narrows
    to persons holding that document.
    """

    def __init__(self, db_path: Path, logger: Optional[StructuredLogger] = None):
        init_database(db_path)
        self.db_path = db_path
        # calls run in worker threads
        self._engine = create_engine(
            f"sqlite:///{db_path}", connect_args={"check_same_thread": False}
        )
        self._Session = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._logger = logger or get_logger()

    def close(self) -> None:
        self._engine.dispose()

    # RecordService

    async def search(self, filters: Mapping[str, Any]) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._search_sync, dict(filters))

    async def get(self, record_id: Any) -> Dict[str, Any]:
        return await asyncio.to_thread(self._get_sync, record_id)

    async def create(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._create_sync, dict(payload))

    async def update(self, record_id: Any, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._update_sync, record_id, dict(payload))

    # Blocking implementations

    def _search_sync(self, filters: Mapping[str, Any]) -> List[Dict[str, Any]]:
        limit = int(filters.get("limit") or 20)
        session = self._Session()
        try:
            query = session.query(Person).filter(Person.is_active.is_(True))

            document_number = filters.get("document_number")
            if is_present(document_number):
                query = query.join(Person.aliases).filter(Alias.document_number == str(document_number).strip())
                if is_present(filters.get("document_type")):
                    query = query.filter(Alias.document_type == filters["document_type"])

            clauses = []
            for name in ("surname", "first_name"):
                value = filters.get(name)
                if is_present(value):
                    clauses.append(getattr(Person, name).ilike(f"%{str(value).strip()}%"))
            if is_present(filters.get("birth_date")):
                clauses.append(Person.birth_date == str(filters["birth_date"]).strip())

            if not clauses and not is_present(document_number):
                return []
            if clauses:
                query = query.filter(or_(*clauses))

            return [person_to_dict(p) for p in query.order_by(Person.created_at).limit(limit).all()]
        finally:
            session.close()

    def _get_sync(self, record_id: Any) -> Dict[str, Any]:
        session = self._Session()
        try:
            person = session.get(Person, record_id)
            if person is None:
                raise RecordServiceError(f"Person not found: {record_id}")
            return person_to_dict(person)
        finally:
            session.close()

    def _create_sync(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        errors = {
            name: f"{name.replace('_', ' ')} is required"
            for name in REQUIRED_PERSON_FIELDS
            if not is_present(payload.get(name))
        }
        if errors:
            raise RecordValidationError(errors)

        session = self._Session()
        try:
            person = Person(**_pick(Person, payload))
            for position, alias in enumerate(payload.get("aliases") or []):
                person.aliases.append(Alias(position=position, **_pick(Alias, alias)))
            for position, address in enumerate(payload.get("addresses") or []):
                person.addresses.append(Address(position=position, **_pick(Address, address)))
            session.add(person)
            self._commit(session)
            self._logger.info("Person created", person_id=person.id)
            return person_to_dict(person)
        finally:
            session.close()

    def _update_sync(self, record_id: Any, payload: Mapping[str, Any]) -> Dict[str, Any]:
        session = self._Session()
        try:
            person = session.get(Person, record_id)
            if person is None:
                raise RecordServiceError(f"Person not found: {record_id}")

            for name in (f.value for f in PERSON_SCALAR_FIELDS):
                if name in payload:
                    setattr(person, name, payload[name])
            missing = {
                name: f"{name.replace('_', ' ')} is required"
                for name in REQUIRED_PERSON_FIELDS
                if not is_present(getattr(person, name))
            }
            if missing:
                session.rollback()
                raise RecordValidationError(missing)

            if "aliases" in payload:
                person.aliases = [
                    Alias(position=position, **_pick(Alias, alias))
                    for position, alias in enumerate(payload.get("aliases") or [])
                ]
            if "addresses" in payload:
                self._apply_addresses(person, payload.get("addresses") or [])

            self._commit(session)
            self._logger.info("Person updated", person_id=person.id)
            return person_to_dict(person)
        finally:
            session.close()

    def _apply_addresses(self, person: Person, new_addresses: List[Mapping[str, Any]]) -> None:
        existing = [_row_to_dict(a, _columns(Address)) for a in person.addresses]
        plan = plan_address_changes(existing, new_addresses)
        by_id = {a.id: a for a in person.addresses}

        for gone in plan.to_delete:
            person.addresses.remove(by_id[gone["id"]])
        for changed in plan.to_update:
            row = by_id[changed["id"]]
            for key, value in _pick(Address, changed).items():
                setattr(row, key, value)
        next_position = max((a.position for a in person.addresses), default=-1) + 1
        for offset, created in enumerate(plan.to_create):
            values = _pick(Address, created)
            person.addresses.append(Address(position=next_position + offset, **values))

        self._logger.debug(
            "Address changes applied",
            person_id=person.id,
            created=len(plan.to_create),
            updated=len(plan.to_update),
            deleted=len(plan.to_delete),
        )

    def _commit(self, session) -> None:
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise RecordValidationError(message=f"Record rejected by storage: {e.orig}") from e
