"""
Debounced per-field validation.

Each field key owns one timer slot. Scheduling a key again before its timer
fires cancels the earlier timer (trailing-edge debounce), so only the last
value typed inside the quiet window is ever validated. Blur-style immediate
validation cancels the pending timer for its key first so a stale debounced
result can never overwrite the fresher one.
"""

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Union

from .errors import FieldValidationError
from .events import EventBus, WizardEvent
from .logger import StructuredLogger, get_logger
from .tasks import TaskSlots

GENERIC_VALIDATION_ERROR = "This value could not be validated. Please check it and try again."
GENERIC_INVALID_MESSAGE = "Invalid value"


class FieldState(str, Enum):
    DEFAULT = "default"
    REQUIRED = "required"
    INVALID = "invalid"
    VALID = "valid"


@dataclass(frozen=True)
class FieldValidationResult:
    """What a field validator returns."""

    is_valid: bool
    state: FieldState
    error_message: Optional[str] = None

    @classmethod
    def valid(cls) -> "FieldValidationResult":
        return cls(True, FieldState.VALID)

    @classmethod
    def invalid(cls, message: str) -> "FieldValidationResult":
        return cls(False, FieldState.INVALID, message)

    @classmethod
    def required(cls, message: str) -> "FieldValidationResult":
        return cls(False, FieldState.REQUIRED, message)


@dataclass(frozen=True)
class FieldValidationState:
    """Published state of one field after its latest validation."""

    field_key: Hashable
    state: FieldState
    last_validated_value: Any = None
    error_message: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.state == FieldState.VALID


ValidateFn = Callable[[Any], Union[FieldValidationResult, bool, Awaitable[Union[FieldValidationResult, bool]]]]


def _coerce_result(field_key: Hashable, value: Any, result: Any) -> FieldValidationState:
    if isinstance(result, FieldValidationResult):
        return FieldValidationState(field_key, result.state, value, result.error_message)
    if isinstance(result, bool):
        if result:
            return FieldValidationState(field_key, FieldState.VALID, value)
        return FieldValidationState(field_key, FieldState.INVALID, value, GENERIC_INVALID_MESSAGE)
    raise TypeError(f"Validator returned unsupported result type: {type(result).__name__}")


class DebouncedValidationScheduler:
    """
    Delays and deduplicates field validation calls.

    Args:
        delay_ms: Default quiet window in milliseconds
        bus: Optional event bus; completed validations are published as
            WizardEvent.FIELD_VALIDATED
        logger: Structured logger (defaults to the global one)
    """

    def __init__(
        self,
        delay_ms: int = 300,
        bus: Optional[EventBus] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.delay_ms = delay_ms
        self.bus = bus
        self._logger = logger or get_logger()
        self._slots = TaskSlots()
        self._states: Dict[Hashable, FieldValidationState] = {}
        self._generations: Dict[Hashable, int] = {}

    def schedule(
        self,
        field_key: Hashable,
        value: Any,
        validate_fn: ValidateFn,
        delay_ms: Optional[int] = None,
    ) -> None:
        """
        Arm (or re-arm) the timer for ``field_key``.

        Must be called from a running event loop. Returns immediately; the
        result is published when the timer fires.
        """
        delay = self.delay_ms if delay_ms is None else delay_ms
        generation = self._bump(field_key)
        self._slots.arm(field_key, self._fire(field_key, value, validate_fn, delay, generation))

    async def validate_immediate(
        self,
        field_key: Hashable,
        value: Any,
        validate_fn: ValidateFn,
    ) -> FieldValidationState:
        """Cancel any pending timer for ``field_key`` and validate now."""
        self._slots.cancel(field_key)
        generation = self._bump(field_key)
        return await self._run(field_key, value, validate_fn, generation)

    def cancel(self, field_key: Hashable) -> bool:
        """Drop the pending timer for one key; its last published state stays."""
        self._bump(field_key)
        return self._slots.cancel(field_key)

    def cancel_all(self) -> int:
        for key in list(self._generations):
            self._bump(key)
        cancelled = self._slots.cancel_all()
        if cancelled:
            self._logger.debug("Cancelled pending validations", count=cancelled)
        return cancelled

    def clear(self, field_key: Optional[Hashable] = None) -> None:
        """Cancel timers and forget cached states for one key or for all keys."""
        if field_key is None:
            self.cancel_all()
            self._states.clear()
            return
        self.cancel(field_key)
        self._states.pop(field_key, None)

    def close(self) -> None:
        self.cancel_all()

    def state_of(self, field_key: Hashable) -> FieldValidationState:
        """Latest published state, or DEFAULT when the field was never validated."""
        return self._states.get(field_key) or FieldValidationState(field_key, FieldState.DEFAULT)

    @property
    def states(self) -> Dict[Hashable, FieldValidationState]:
        return dict(self._states)

    @property
    def pending_keys(self) -> List[Hashable]:
        return self._slots.keys()

    def _bump(self, field_key: Hashable) -> int:
        generation = self._generations.get(field_key, 0) + 1
        self._generations[field_key] = generation
        return generation

    async def _fire(self, field_key, value, validate_fn, delay_ms, generation):
        await asyncio.sleep(delay_ms / 1000.0)
        await self._run(field_key, value, validate_fn, generation)

    async def _run(self, field_key, value, validate_fn, generation) -> FieldValidationState:
        try:
            result = validate_fn(value)
            if inspect.isawaitable(result):
                result = await result
            state = _coerce_result(field_key, value, result)
        except asyncio.CancelledError:
            raise
        except FieldValidationError as e:
            state = FieldValidationState(field_key, FieldState.INVALID, value, e.message)
        except Exception as e:
            self._logger.record_error(type(e).__name__)
            self._logger.warning(
                "Field validator failed",
                field_key=str(field_key),
                error=str(e),
                error_type=type(e).__name__,
            )
            state = FieldValidationState(field_key, FieldState.INVALID, value, GENERIC_VALIDATION_ERROR)

        if self._generations.get(field_key) != generation:
            self._logger.debug("Discarding stale validation result", field_key=str(field_key))
            return state

        self._states[field_key] = state
        self._logger.record_validation(str(field_key), state.state.value)
        if self.bus is not None:
            self.bus.publish(WizardEvent.FIELD_VALIDATED, field_key=field_key, state=state)
        return state
