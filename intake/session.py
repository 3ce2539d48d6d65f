"""
Person intake session.

Glues the person wizard, the debounce scheduler, the duplicate resolver and
a record service into the registration flow:

    Lookup -> (found)     edit mode at Details -> ... -> Review -> update
           -> (not found) new person at Details -> ... -> Review -> resolve -> create

Submission failures never move the wizard: the banner is set, a
SUBMISSION_FAILED event is published and the user stays on Review.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import IntakeConfig
from .errors import RecordValidationError, SubmissionFailure
from .events import EventBus, WizardEvent
from .fields import PersonField, build_person_payload, is_present, name_in_document, record_to_form_data
from .logger import StructuredLogger, get_logger
from .records import RecordService
from .resolution import (
    Cancelled,
    CreateNew,
    DuplicateResolver,
    ResolutionDecision,
    ResolutionState,
    SimilarityCandidate,
    UpdateExisting,
)
from .scheduler import DebouncedValidationScheduler, FieldValidationState
from .schema import (
    CONTACT_STEP,
    DETAILS_STEP,
    FIRST_DATA_ENTRY_STEP,
    LOOKUP_STEP,
    build_person_steps,
    new_person_data,
    validate_field,
    validate_step,
)
from .wizard import Wizard


class LookupOutcome(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    STALE = "stale"


@dataclass
class LookupResult:
    outcome: LookupOutcome
    record: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)


class SubmissionStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    AWAITING_DECISION = "awaiting_decision"
    EDIT_MODE = "edit_mode"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REJECTED = "rejected"
    STALE = "stale"


@dataclass
class SubmissionResult:
    status: SubmissionStatus
    record: Optional[Dict[str, Any]] = None
    matches: Tuple[SimilarityCandidate, ...] = ()
    message: Optional[str] = None
    field_errors: Dict[str, str] = field(default_factory=dict)
    error: Optional[SubmissionFailure] = None


def _holds_document(record: Mapping[str, Any], document_type: str, document_number: str) -> bool:
    for alias in record.get("aliases") or []:
        if not isinstance(alias, Mapping):
            continue
        if str(alias.get("document_number", "")).strip() != document_number:
            continue
        if not document_type or alias.get("document_type") in (None, document_type):
            return True
    return False


class IntakeSession:
    """
    One person registration or edit, from document lookup to submission.

    Args:
        records: Record service used for lookup, search, create and update
        config: Intake settings (defaults to IntakeConfig())
        logger: Structured logger (defaults to the global one)
    """

    def __init__(
        self,
        records: RecordService,
        config: Optional[IntakeConfig] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.records = records
        self.config = config or IntakeConfig()
        self._logger = logger or get_logger()

        self.bus = EventBus(self._logger)
        self.scheduler = DebouncedValidationScheduler(
            delay_ms=self.config.debounce_ms, bus=self.bus, logger=self._logger
        )
        self.wizard = Wizard(
            build_person_steps(self.config.reference),
            bus=self.bus,
            scheduler=self.scheduler,
            logger=self._logger,
            name="person",
        )
        self.resolver = DuplicateResolver(
            records.search,
            threshold=self.config.duplicate_threshold,
            search_limit=self.config.search_limit,
            logger=self._logger,
        )

        self.record_id: Optional[Any] = None
        self.banner: Optional[str] = None
        self._dialog_epoch: Optional[int] = None
        self._new_person = False
        self._step = self.wizard.current_step
        self.bus.subscribe(WizardEvent.STEP_CHANGED, self._step_changed)

    @property
    def is_edit_mode(self) -> bool:
        return self.record_id is not None

    @property
    def data(self) -> Dict[str, Any]:
        return self.wizard.data

    def payload(self) -> Dict[str, Any]:
        return build_person_payload(self.wizard.data)

    # Fields

    def set_field(self, field_name: Any, value: Any) -> None:
        """Store a value in the wizard data without validating it."""
        self.wizard.update(**{PersonField(field_name).value: value})

    async def validate_field(
        self,
        field_name: Any,
        value: Any,
        immediate: bool = False,
    ) -> Optional[FieldValidationState]:
        """
        Store ``value`` and validate it.

        Keystrokes go through the debounce window and return None; blur and
        submit-time checks pass ``immediate=True`` and get the state back.
        """
        key = PersonField(field_name)
        self.wizard.update(**{key.value: value})

        def check(v):
            return validate_field(key, v, self.config.reference)

        if immediate:
            return await self.scheduler.validate_immediate(key.value, value, check)
        self.scheduler.schedule(key.value, value, check)
        return None

    # Lookup

    async def lookup(self, document_type: str, document_number: str) -> LookupResult:
        """
        Look a person up by identity document.

        A search failure is logged and treated as "not found" so the
        operator can still register the person.
        """
        document_number = str(document_number or "").strip()
        self.wizard.update(document_type=document_type, document_number=document_number)
        errors = validate_step(LOOKUP_STEP, self.wizard.data, self.config.reference)
        if errors:
            return LookupResult(LookupOutcome.INVALID, errors=errors)

        epoch = self.wizard.epoch
        filters = {
            "document_type": document_type,
            "document_number": document_number,
            "include_details": True,
            "limit": 1,
        }
        self._logger.record_search_attempt()
        try:
            results = await self.records.search(filters)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.record_search_failure(type(e).__name__)
            self._logger.warning(
                "Document lookup failed; continuing as new person",
                error=str(e),
                error_type=type(e).__name__,
            )
            results = []

        if not self.wizard.is_current(epoch):
            self._logger.info("Discarding stale lookup result")
            return LookupResult(LookupOutcome.STALE)

        record = next(
            (r for r in results or [] if _holds_document(r, document_type, document_number)),
            None,
        )
        if record is not None:
            self._enter_edit_mode(record)
            return LookupResult(LookupOutcome.FOUND, record=dict(record))

        self.record_id = None
        self._new_person = True
        self.wizard.seed(
            new_person_data(document_type, document_number, self.config.reference),
            mark_valid=False,
        )
        self.banner = None
        self.wizard.force_step(FIRST_DATA_ENTRY_STEP)
        self._logger.info("No existing person for document", document_type=document_type)
        return LookupResult(LookupOutcome.NOT_FOUND)

    # Submission

    async def submit(self) -> SubmissionResult:
        """
        Submit from the final step.

        Edit mode updates the loaded record. New records go through duplicate
        resolution first; surfaced matches are returned for the dialog and
        nothing is written until resolve() is called.
        """
        last = self.wizard.last_step
        if self.wizard.current_step != last:
            return SubmissionResult(
                SubmissionStatus.REJECTED, message="Submission is only possible from the final step"
            )
        if not self.wizard.state.step_validity.get(last):
            return SubmissionResult(
                SubmissionStatus.REJECTED, message="Some steps are incomplete"
            )

        payload = self.payload()
        if self.is_edit_mode:
            return await self._commit(payload)

        epoch = self.wizard.epoch
        outcome = await self.resolver.evaluate(payload)
        if outcome is None:
            # a newer run owns the resolver now
            return SubmissionResult(SubmissionStatus.STALE)
        if not self.wizard.is_current(epoch):
            self.resolver.cancel()
            return SubmissionResult(SubmissionStatus.STALE)

        if outcome.state == ResolutionState.CREATE_DIRECTLY:
            return await self._commit(payload)

        self._dialog_epoch = epoch
        return SubmissionResult(SubmissionStatus.AWAITING_DECISION, matches=outcome.matches)

    async def resolve(self, decision: ResolutionDecision) -> SubmissionResult:
        """
        Apply the duplicate dialog choice.

        Raises:
            InvalidDecisionError: If no dialog is open or the decision names
                a candidate that was not surfaced
        """
        if self._dialog_epoch is not None and not self.wizard.is_current(self._dialog_epoch):
            self._logger.info("Discarding stale duplicate decision")
            self._dialog_epoch = None
            self.resolver.cancel()
            return SubmissionResult(SubmissionStatus.STALE)
        self.resolver.check_decision(decision)

        if isinstance(decision, Cancelled):
            self.resolver.decide(decision)
            return SubmissionResult(SubmissionStatus.CANCELLED, matches=self.resolver.matches)

        if isinstance(decision, CreateNew):
            pending = dict(self.resolver.pending or self.payload())
            self.resolver.decide(decision)
            self._dialog_epoch = None
            return await self._commit(pending)

        return await self._switch_to_existing(decision)

    async def _switch_to_existing(self, decision: UpdateExisting) -> SubmissionResult:
        epoch = self.wizard.epoch
        try:
            record = await self.records.get(decision.candidate_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._fail(SubmissionFailure(f"Could not load the selected person: {e}"), e)

        if not self.wizard.is_current(epoch):
            self._logger.info("Discarding stale record fetch", candidate_id=str(decision.candidate_id))
            return SubmissionResult(SubmissionStatus.STALE)

        self.resolver.decide(decision)
        self._dialog_epoch = None
        self._enter_edit_mode(record)
        return SubmissionResult(SubmissionStatus.EDIT_MODE, record=dict(record))

    async def _commit(self, payload: Dict[str, Any]) -> SubmissionResult:
        updating = self.is_edit_mode
        self._logger.record_submission_attempt()
        try:
            if updating:
                record = await self.records.update(self.record_id, payload)
            else:
                record = await self.records.create(payload)
        except asyncio.CancelledError:
            raise
        except RecordValidationError as e:
            return self._fail(SubmissionFailure(str(e), e.field_errors), e)
        except Exception as e:
            return self._fail(SubmissionFailure(f"Could not save the person: {e}"), e)

        self._logger.record_submission_success()
        self.banner = None
        if is_present(record.get("id")):
            self.record_id = record["id"]
        self._logger.info(
            "Person updated" if updating else "Person created",
            record_id=str(self.record_id),
        )
        return SubmissionResult(
            SubmissionStatus.UPDATED if updating else SubmissionStatus.CREATED, record=dict(record)
        )

    def _fail(self, failure: SubmissionFailure, cause: Optional[Exception] = None) -> SubmissionResult:
        if cause is not None:
            failure.__cause__ = cause
        error_type = type(cause or failure).__name__
        message = str(failure)
        self.banner = message
        self._logger.record_submission_failure(error_type)
        self._logger.error("Submission failed", error=message, error_type=error_type)
        self.bus.publish(
            WizardEvent.SUBMISSION_FAILED, message=message, field_errors=dict(failure.field_errors)
        )
        return SubmissionResult(
            SubmissionStatus.FAILED,
            message=message,
            field_errors=dict(failure.field_errors),
            error=failure,
        )

    # Mode switching

    def _step_changed(self, index: int, can_advance: bool) -> None:
        previous, self._step = self._step, index
        if previous == DETAILS_STEP and index == CONTACT_STEP and self._new_person:
            self._fill_name_in_document()

    def _fill_name_in_document(self) -> None:
        aliases = self.wizard.data.get("aliases")
        if not isinstance(aliases, list) or not aliases or not isinstance(aliases[0], dict):
            return
        name = name_in_document(self.wizard.data)
        if name:
            aliases[0]["name_in_document"] = name
            self.wizard.refresh_validity()

    def _enter_edit_mode(self, record: Mapping[str, Any]) -> None:
        self.record_id = record.get("id")
        self._new_person = False
        self.banner = None
        self.wizard.force_step(FIRST_DATA_ENTRY_STEP)
        self.wizard.seed(record_to_form_data(record), mark_valid=True)
        self.scheduler.clear()
        self._logger.info("Editing existing person", record_id=str(self.record_id))

    def reset(self) -> None:
        """Start over at the lookup step with empty data."""
        self.resolver.cancel()
        self.scheduler.clear()
        self.wizard.reset(LOOKUP_STEP)
        self.record_id = None
        self._new_person = False
        self.banner = None
        self._dialog_epoch = None

    def close(self) -> None:
        self.wizard.close()
        self.scheduler.close()
