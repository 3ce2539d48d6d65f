"""
Multi-step wizard orchestration.

Forward navigation is gated: only the next step may be entered, and only
while the current step's validity predicate holds. Backward and lateral
revisits are always allowed. Rejected transitions are silent no-ops.

Step validity is always evaluated against the current data, so a step the
user left in a valid state shows as incomplete again if its data regresses.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Sequence

from .events import EventBus, WizardEvent
from .logger import StructuredLogger, get_logger
from .tasks import TaskSlots

if TYPE_CHECKING:
    from .scheduler import DebouncedValidationScheduler


@dataclass(frozen=True)
class StepDefinition:
    """One wizard step. ``on_enter`` runs fire-and-forget when the step is entered."""

    index: int
    label: str
    validity_predicate: Callable[[Mapping[str, Any]], bool]
    on_enter: Optional[Callable[[int, Mapping[str, Any]], Any]] = None


class StepStatus(str, Enum):
    COMPLETED = "completed"
    CURRENT = "current"
    WARNING = "warning"
    DEFAULT = "default"


@dataclass
class WizardState:
    active_step_index: int = 0
    highest_visited_index: int = 0
    step_validity: Dict[int, bool] = field(default_factory=dict)


class Wizard:
    """
    Ordered steps with gated forward navigation.

    Args:
        steps: Step definitions, indexed 0..n-1 in order
        data: Initial wizard data (copied)
        start_index: Step to open on
        bus: Event bus for this wizard (a fresh one by default)
        scheduler: Debounce scheduler whose timers belong to this wizard
        logger: Structured logger (defaults to the global one)
        name: Label used in log context
    """

    def __init__(
        self,
        steps: Sequence[StepDefinition],
        data: Optional[Mapping[str, Any]] = None,
        *,
        start_index: int = 0,
        bus: Optional[EventBus] = None,
        scheduler: Optional["DebouncedValidationScheduler"] = None,
        logger: Optional[StructuredLogger] = None,
        name: str = "wizard",
    ):
        if not steps:
            raise ValueError("A wizard needs at least one step")
        for position, step in enumerate(steps):
            if step.index != position:
                raise ValueError(
                    f"Step '{step.label}' has index {step.index}, expected {position}"
                )
        if not 0 <= start_index < len(steps):
            raise ValueError(f"start_index {start_index} out of range")

        self.steps = tuple(steps)
        self.name = name
        self.data: Dict[str, Any] = dict(data or {})
        self._logger = logger or get_logger()
        self.bus = bus or EventBus(self._logger)
        self.scheduler = scheduler
        if scheduler is not None and scheduler.bus is None:
            scheduler.bus = self.bus
        self._side_effects = TaskSlots()
        self._state = WizardState(start_index, start_index, {})
        self.epoch = 0
        self._state.step_validity = {s.index: self.is_step_valid(s.index) for s in self.steps}

    # Queries

    @property
    def current_step(self) -> int:
        return self._state.active_step_index

    @property
    def last_step(self) -> int:
        return len(self.steps) - 1

    @property
    def state(self) -> WizardState:
        return WizardState(
            self._state.active_step_index,
            self._state.highest_visited_index,
            dict(self._state.step_validity),
        )

    def is_step_valid(self, index: int) -> bool:
        """Evaluate step ``index``'s predicate against the current data."""
        if not 0 <= index < len(self.steps):
            return False
        step = self.steps[index]
        try:
            return bool(step.validity_predicate(self.data))
        except Exception as e:
            self._logger.record_error(type(e).__name__)
            self._logger.warning(
                "Step validity predicate failed",
                wizard=self.name,
                step=step.label,
                error=str(e),
            )
            return False

    @property
    def can_advance(self) -> bool:
        return self.current_step < self.last_step and self.is_step_valid(self.current_step)

    def is_terminal_valid(self) -> bool:
        return self.is_step_valid(self.last_step)

    def step_status(self, index: int) -> StepStatus:
        if index == self.current_step:
            return StepStatus.CURRENT
        valid = self.is_step_valid(index)
        if index < self.current_step and valid:
            return StepStatus.COMPLETED
        if index <= self._state.highest_visited_index and not valid:
            return StepStatus.WARNING
        return StepStatus.DEFAULT

    def statuses(self) -> List[StepStatus]:
        return [self.step_status(s.index) for s in self.steps]

    def is_current(self, epoch: int) -> bool:
        """True while nothing has moved the wizard since ``epoch`` was read."""
        return epoch == self.epoch

    # Navigation

    def request_transition(self, target: int) -> bool:
        """
        Move to ``target`` if allowed.

        Allowed: any step at or before the current one, or the immediate next
        step while the current step is valid. Everything else is ignored and
        False is returned.
        """
        current = self.current_step
        if not isinstance(target, int) or isinstance(target, bool):
            return False
        if not 0 <= target < len(self.steps):
            return False

        if target <= current or (target == current + 1 and self.is_step_valid(current)):
            if target != current:
                self._enter(target)
            return True

        self._logger.debug(
            "Transition rejected",
            wizard=self.name,
            current=current,
            target=target,
        )
        return False

    def next(self) -> bool:
        return self.request_transition(self.current_step + 1)

    def back(self) -> bool:
        return self.request_transition(self.current_step - 1)

    def force_step(self, index: int) -> None:
        """Enter ``index`` regardless of gating (parent resets, edit-mode re-entry)."""
        if not 0 <= index < len(self.steps):
            raise ValueError(f"Step index {index} out of range")
        self._enter(index)

    def reset(self, start_index: int = 0, clear_data: bool = True) -> None:
        if not 0 <= start_index < len(self.steps):
            raise ValueError(f"start_index {start_index} out of range")
        self._cancel_pending()
        if clear_data:
            self.data = {}
        self._state = WizardState(start_index, start_index, {})
        self.epoch += 1
        self.refresh_validity(publish=False)
        self.bus.publish(WizardEvent.WIZARD_RESET, index=start_index)
        self.bus.publish(
            WizardEvent.STEP_CHANGED, index=start_index, can_advance=self.can_advance
        )

    def close(self) -> None:
        """Cancel pending validation timers and transition side effects."""
        self._cancel_pending()
        self.epoch += 1

    # Data

    def update(self, **fields: Any) -> Dict[int, bool]:
        self.data.update(fields)
        return self.refresh_validity()

    def seed(self, data: Mapping[str, Any], mark_valid: bool = True) -> None:
        """
        Replace the data wholesale.

        With ``mark_valid`` every step is recorded as valid, for records that
        were loaded from storage and already satisfy every step.
        """
        self.data = dict(data)
        if not mark_valid:
            self.refresh_validity()
            return
        for step in self.steps:
            self._set_validity(step.index, True, publish=True)

    def refresh_validity(self, publish: bool = True) -> Dict[int, bool]:
        """Re-evaluate every predicate; publishes VALIDATION_CHANGED for changed steps."""
        for step in self.steps:
            self._set_validity(step.index, self.is_step_valid(step.index), publish)
        return dict(self._state.step_validity)

    # Internals

    def _set_validity(self, index: int, is_valid: bool, publish: bool) -> None:
        previous = self._state.step_validity.get(index)
        self._state.step_validity[index] = is_valid
        if publish and previous != is_valid:
            self.bus.publish(WizardEvent.VALIDATION_CHANGED, index=index, is_valid=is_valid)

    def _enter(self, index: int) -> None:
        previous = self.current_step
        self._cancel_pending()
        self._state.active_step_index = index
        self._state.highest_visited_index = max(self._state.highest_visited_index, index)
        self.epoch += 1
        self._logger.debug("Step entered", wizard=self.name, previous=previous, step=index)
        self.bus.publish(WizardEvent.STEP_CHANGED, index=index, can_advance=self.can_advance)
        self._run_on_enter(self.steps[index])

    def _cancel_pending(self) -> None:
        if self.scheduler is not None:
            self.scheduler.cancel_all()
        self._side_effects.cancel_all()

    def _run_on_enter(self, step: StepDefinition) -> None:
        if step.on_enter is None:
            return
        try:
            result = step.on_enter(step.index, self.data)
        except Exception as e:
            self._log_side_effect_failure(step, e)
            return
        if not inspect.isawaitable(result):
            return
        try:
            self._side_effects.spawn(self._guard_side_effect(step, result))
        except RuntimeError:
            if inspect.iscoroutine(result):
                result.close()
            self._logger.warning(
                "No running event loop; step side effect skipped",
                wizard=self.name,
                step=step.label,
            )

    async def _guard_side_effect(self, step: StepDefinition, awaitable) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log_side_effect_failure(step, e)

    def _log_side_effect_failure(self, step: StepDefinition, error: Exception) -> None:
        self._logger.record_error(type(error).__name__)
        self._logger.error(
            "Step side effect failed",
            wizard=self.name,
            step=step.label,
            error=str(error),
        )


class ChildWizardBinding:
    """
    Embeds a child wizard inside one step of a parent wizard.

    The child owns its own step state. The parent observes it through
    ``on_step_change(index, can_advance)`` and
    ``on_validation_change(index, is_valid)``, and can only force a reset by
    changing ``external_step_index``. The parent step counts as valid when
    the child's terminal step is valid.
    """

    def __init__(
        self,
        child: Wizard,
        on_step_change: Optional[Callable[[int, bool], None]] = None,
        on_validation_change: Optional[Callable[[int, bool], None]] = None,
    ):
        self.child = child
        self.on_step_change = on_step_change
        self.on_validation_change = on_validation_change
        self.child_step = child.current_step
        self.child_can_advance = child.can_advance
        self._external_step_index: Optional[int] = None
        self._parent: Optional[Wizard] = None
        self._unsubscribe = [
            child.bus.subscribe(WizardEvent.STEP_CHANGED, self._child_step_changed),
            child.bus.subscribe(WizardEvent.VALIDATION_CHANGED, self._child_validation_changed),
        ]

    def step_definition(self, index: int, label: str, on_enter=None) -> StepDefinition:
        """A parent step whose validity is the child's terminal-step validity."""
        return StepDefinition(index, label, self.validity_predicate, on_enter)

    def validity_predicate(self, _parent_data: Mapping[str, Any]) -> bool:
        return self.child.is_terminal_valid()

    def attach(self, parent: Wizard) -> None:
        self._parent = parent
        parent.refresh_validity()

    def detach(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self._parent = None

    @property
    def external_step_index(self) -> Optional[int]:
        return self._external_step_index

    @external_step_index.setter
    def external_step_index(self, index: int) -> None:
        """Reset or resume the child at ``index``; unchanged values are ignored."""
        if index == self._external_step_index:
            return
        self._external_step_index = index
        self.child.force_step(index)

    def _child_step_changed(self, index: int, can_advance: bool) -> None:
        self.child_step = index
        self.child_can_advance = can_advance
        if self.on_step_change is not None:
            self.on_step_change(index, can_advance)

    def _child_validation_changed(self, index: int, is_valid: bool) -> None:
        if self.on_validation_change is not None:
            self.on_validation_change(index, is_valid)
        if self._parent is not None:
            self._parent.refresh_validity()
