"""
Tests for debounced field validation and keyed task slots.
"""

import asyncio

import pytest

from intake.errors import FieldValidationError
from intake.events import EventBus, WizardEvent
from intake.scheduler import (
    GENERIC_INVALID_MESSAGE,
    GENERIC_VALIDATION_ERROR,
    DebouncedValidationScheduler,
    FieldState,
    FieldValidationResult,
)
from intake.tasks import TaskSlots


class Recorder:
    """Validator that records every value it is called with."""

    def __init__(self, result=True):
        self.calls = []
        self.result = result

    def __call__(self, value):
        self.calls.append(value)
        return self.result


class TestTaskSlots:
    """Test keyed cancellable tasks."""

    @pytest.mark.asyncio
    async def test_arm_replaces_previous_task(self):
        slots = TaskSlots()
        first = slots.arm("k", asyncio.sleep(10))
        second = slots.arm("k", asyncio.sleep(10))
        await asyncio.sleep(0)

        assert first.cancelled()
        assert not second.done()
        assert slots.keys() == ["k"]
        slots.cancel_all()

    @pytest.mark.asyncio
    async def test_slot_released_when_done(self):
        slots = TaskSlots()
        task = slots.arm("k", asyncio.sleep(0))
        await task
        await asyncio.sleep(0)

        assert "k" not in slots
        assert len(slots) == 0

    @pytest.mark.asyncio
    async def test_cancel_all_counts_live_tasks(self):
        slots = TaskSlots()
        slots.arm("a", asyncio.sleep(10))
        slots.spawn(asyncio.sleep(10))

        assert slots.cancel_all() == 2
        assert slots.cancel("a") is False

    def test_arm_without_loop_raises(self):
        slots = TaskSlots()
        with pytest.raises(RuntimeError):
            slots.arm("k", asyncio.sleep(0))


class TestDebounce:
    """Test trailing-edge debounce behavior."""

    @pytest.mark.asyncio
    async def test_burst_validates_once_with_last_value(self):
        """N calls inside the window run the validator once, with the last value."""
        scheduler = DebouncedValidationScheduler(delay_ms=20)
        validator = Recorder()

        for value in ["J", "Je", "Jea", "Jean"]:
            scheduler.schedule("first_name", value, validator)
            await asyncio.sleep(0.005)
        await asyncio.sleep(0.06)

        assert validator.calls == ["Jean"]
        state = scheduler.state_of("first_name")
        assert state.state == FieldState.VALID
        assert state.last_validated_value == "Jean"

    @pytest.mark.asyncio
    async def test_separate_windows_validate_each(self):
        scheduler = DebouncedValidationScheduler(delay_ms=10)
        validator = Recorder()

        scheduler.schedule("surname", "Ra", validator)
        await asyncio.sleep(0.05)
        scheduler.schedule("surname", "Rakoto", validator)
        await asyncio.sleep(0.05)

        assert validator.calls == ["Ra", "Rakoto"]

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        scheduler = DebouncedValidationScheduler(delay_ms=10)
        validator = Recorder()

        scheduler.schedule("surname", "Rakoto", validator)
        scheduler.schedule("first_name", "Jean", validator)
        await asyncio.sleep(0.05)

        assert sorted(validator.calls) == ["Jean", "Rakoto"]
        assert scheduler.pending_keys == []

    @pytest.mark.asyncio
    async def test_per_call_delay_override(self):
        scheduler = DebouncedValidationScheduler(delay_ms=10_000)
        validator = Recorder()

        scheduler.schedule("surname", "Rakoto", validator, delay_ms=5)
        await asyncio.sleep(0.05)

        assert validator.calls == ["Rakoto"]

    @pytest.mark.asyncio
    async def test_immediate_cancels_pending(self):
        """Blur validation wins over a pending keystroke timer."""
        scheduler = DebouncedValidationScheduler(delay_ms=20)
        validator = Recorder()

        scheduler.schedule("email_address", "old", validator)
        state = await scheduler.validate_immediate("email_address", "new", validator)
        await asyncio.sleep(0.05)

        assert validator.calls == ["new"]
        assert state.last_validated_value == "new"
        assert scheduler.state_of("email_address").last_validated_value == "new"

    @pytest.mark.asyncio
    async def test_cancel_drops_pending_timer(self):
        scheduler = DebouncedValidationScheduler(delay_ms=10)
        validator = Recorder()

        scheduler.schedule("surname", "Rakoto", validator)
        assert scheduler.cancel("surname") is True
        await asyncio.sleep(0.05)

        assert validator.calls == []
        assert scheduler.state_of("surname").state == FieldState.DEFAULT

    @pytest.mark.asyncio
    async def test_stale_async_result_discarded(self):
        """A slow validator finishing after a newer run does not overwrite it."""
        scheduler = DebouncedValidationScheduler(delay_ms=0)
        release = asyncio.Event()

        async def slow(value):
            await release.wait()
            return FieldValidationResult.invalid("slow")

        first = asyncio.ensure_future(scheduler.validate_immediate("surname", "a", slow))
        await asyncio.sleep(0)
        scheduler.cancel("surname")
        fresh = await scheduler.validate_immediate("surname", "b", lambda v: True)
        release.set()
        await first

        assert fresh.state == FieldState.VALID
        assert scheduler.state_of("surname").last_validated_value == "b"

    @pytest.mark.asyncio
    async def test_clear_forgets_states(self):
        scheduler = DebouncedValidationScheduler(delay_ms=0)
        await scheduler.validate_immediate("surname", "Rakoto", lambda v: True)

        scheduler.clear()

        assert scheduler.states == {}


class TestValidatorResults:
    """Test how validator outcomes become field states."""

    @pytest.mark.asyncio
    async def test_exception_becomes_invalid_with_generic_message(self, quiet_logger):
        scheduler = DebouncedValidationScheduler(delay_ms=0)

        def broken(value):
            raise RuntimeError("validator crashed")

        state = await scheduler.validate_immediate("surname", "x", broken)

        assert state.state == FieldState.INVALID
        assert state.error_message == GENERIC_VALIDATION_ERROR
        assert quiet_logger.get_metrics()["errors_by_type"]["RuntimeError"] == 1

    @pytest.mark.asyncio
    async def test_field_validation_error_message_is_shown(self, quiet_logger):
        """A validator may reject a value by raising FieldValidationError."""
        scheduler = DebouncedValidationScheduler(delay_ms=0)

        def unreachable_domain(value):
            raise FieldValidationError("email_address", "mail domain does not accept messages")

        state = await scheduler.validate_immediate("email_address", "jean@nowhere.mg", unreachable_domain)

        assert state.state == FieldState.INVALID
        assert state.error_message == "mail domain does not accept messages"
        assert "FieldValidationError" not in quiet_logger.get_metrics()["errors_by_type"]

    @pytest.mark.asyncio
    async def test_false_becomes_invalid(self):
        scheduler = DebouncedValidationScheduler(delay_ms=0)
        state = await scheduler.validate_immediate("surname", "x", lambda v: False)

        assert state.state == FieldState.INVALID
        assert state.error_message == GENERIC_INVALID_MESSAGE

    @pytest.mark.asyncio
    async def test_required_result_kept(self):
        scheduler = DebouncedValidationScheduler(delay_ms=0)
        state = await scheduler.validate_immediate(
            "surname", "", lambda v: FieldValidationResult.required("Surname is required")
        )

        assert state.state == FieldState.REQUIRED
        assert not state.is_valid

    @pytest.mark.asyncio
    async def test_async_validator_awaited(self):
        scheduler = DebouncedValidationScheduler(delay_ms=0)

        async def check(value):
            return FieldValidationResult.valid()

        state = await scheduler.validate_immediate("surname", "Rakoto", check)
        assert state.is_valid

    @pytest.mark.asyncio
    async def test_unsupported_result_type_is_invalid(self):
        scheduler = DebouncedValidationScheduler(delay_ms=0)
        state = await scheduler.validate_immediate("surname", "x", lambda v: "ok")

        assert state.state == FieldState.INVALID
        assert state.error_message == GENERIC_VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_results_published_on_bus(self):
        bus = EventBus()
        seen = []
        bus.subscribe(WizardEvent.FIELD_VALIDATED, lambda field_key, state: seen.append((field_key, state.state)))
        scheduler = DebouncedValidationScheduler(delay_ms=5, bus=bus)

        scheduler.schedule("surname", "Rakoto", lambda v: True)
        await asyncio.sleep(0.05)

        assert seen == [("surname", FieldState.VALID)]

    @pytest.mark.asyncio
    async def test_validation_metrics_recorded(self, quiet_logger):
        scheduler = DebouncedValidationScheduler(delay_ms=0)
        await scheduler.validate_immediate("surname", "x", lambda v: False)
        await scheduler.validate_immediate("surname", "Rakoto", lambda v: True)

        metrics = quiet_logger.get_metrics()
        assert metrics["validations_run"] == 2
        assert metrics["validation_failures"] == 1
