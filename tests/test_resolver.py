"""
Tests for candidate selection and the duplicate resolution state machine.
"""

import asyncio

import pytest

from intake.errors import InvalidDecisionError, SearchCollaboratorFailure
from intake.resolution import (
    Cancelled,
    CreateNew,
    DuplicateResolver,
    ResolutionState,
    UpdateExisting,
)
from intake.resolution.candidate_selector import (
    build_search_filters,
    deduplicate_candidates,
    select_candidates,
)


class TestCandidateSelection:
    """Test search filter construction and candidate cleanup."""

    def test_filters_use_present_fields_only(self, valid_person_data):
        pending = {**valid_person_data, "first_name": "  "}
        filters = build_search_filters(pending, limit=5)

        assert filters == {
            "surname": "Rakoto",
            "birth_date": "1990-05-14",
            "include_details": True,
            "limit": 5,
        }

    def test_deduplicate_drops_missing_and_repeated_ids(self):
        candidates = [{"id": 1}, {"surname": "no id"}, {"id": 2}, {"id": 1, "surname": "again"}]
        assert deduplicate_candidates(candidates) == [{"id": 1}, {"id": 2}]

    def test_deduplicate_excludes_self(self):
        assert deduplicate_candidates([{"id": 1}, {"id": 2}], exclude_id=1) == [{"id": 2}]

    @pytest.mark.asyncio
    async def test_select_passes_filters(self, fake_records, valid_person_data):
        await select_candidates(fake_records.search, valid_person_data, limit=7)

        assert fake_records.search_calls[0]["limit"] == 7
        assert fake_records.search_calls[0]["surname"] == "Rakoto"

    @pytest.mark.asyncio
    async def test_select_handles_none(self, valid_person_data):
        async def search(filters):
            return None

        assert await select_candidates(search, valid_person_data) == []


class TestResolverStateMachine:
    """Test resolver transitions."""

    @pytest.fixture
    def resolver(self, fake_records):
        return DuplicateResolver(fake_records.search)

    @pytest.mark.asyncio
    async def test_matches_found_awaits_decision(self, resolver, valid_person_data):
        assert resolver.state == ResolutionState.IDLE

        outcome = await resolver.evaluate(valid_person_data)

        assert outcome.state == ResolutionState.AWAITING_USER_DECISION
        assert [m.candidate_id for m in outcome.matches] == ["p-100"]
        assert outcome.matches[0].weighted_score == pytest.approx(85.0)
        assert resolver.history == [
            ResolutionState.EVALUATING,
            ResolutionState.MATCHES_FOUND,
            ResolutionState.AWAITING_USER_DECISION,
        ]

    @pytest.mark.asyncio
    async def test_no_matches_creates_directly(self, fake_records):
        resolver = DuplicateResolver(fake_records.search)
        outcome = await resolver.evaluate({"surname": "Ravelo", "first_name": "Miora", "birth_date": "2001-11-30"})

        assert outcome.state == ResolutionState.CREATE_DIRECTLY
        assert outcome.matches == ()
        assert outcome.is_terminal
        assert resolver.history == [
            ResolutionState.EVALUATING,
            ResolutionState.NO_MATCHES,
            ResolutionState.CREATE_DIRECTLY,
        ]

    @pytest.mark.asyncio
    async def test_search_failure_degrades_to_no_matches(self, fake_records, valid_person_data, quiet_logger):
        fake_records.fail_search = True
        resolver = DuplicateResolver(fake_records.search)

        outcome = await resolver.evaluate(valid_person_data)

        assert outcome.state == ResolutionState.CREATE_DIRECTLY
        assert outcome.search_failed is True
        assert isinstance(resolver.last_failure, SearchCollaboratorFailure)
        metrics = quiet_logger.get_metrics()
        assert metrics["search_failures"] == 1
        assert metrics["errors_by_type"]["SearchCollaboratorFailure"] == 1

    @pytest.mark.asyncio
    async def test_create_new_keeps_pending(self, resolver, valid_person_data):
        await resolver.evaluate(valid_person_data)
        outcome = resolver.decide(CreateNew())

        assert outcome.state == ResolutionState.CREATE_DIRECTLY
        assert resolver.pending["surname"] == "Rakoto"

    @pytest.mark.asyncio
    async def test_update_existing_discards_pending(self, resolver, valid_person_data, quiet_logger):
        await resolver.evaluate(valid_person_data)
        outcome = resolver.decide(UpdateExisting("p-100"))

        assert outcome.state == ResolutionState.SWITCH_TO_EDIT_MODE
        assert outcome.decision == UpdateExisting("p-100")
        assert resolver.pending is None
        assert quiet_logger.get_metrics()["resolutions"] == {"update_existing": 1}

    @pytest.mark.asyncio
    async def test_cancel_returns_to_awaiting(self, resolver, valid_person_data):
        await resolver.evaluate(valid_person_data)
        outcome = resolver.decide(Cancelled())

        assert outcome.state == ResolutionState.AWAITING_USER_DECISION
        assert resolver.decide(CreateNew()).state == ResolutionState.CREATE_DIRECTLY

    @pytest.mark.asyncio
    async def test_unknown_candidate_rejected(self, resolver, valid_person_data):
        await resolver.evaluate(valid_person_data)

        with pytest.raises(InvalidDecisionError):
            resolver.decide(UpdateExisting("p-200"))
        assert resolver.state == ResolutionState.AWAITING_USER_DECISION

    @pytest.mark.asyncio
    async def test_decision_outside_dialog_rejected(self, resolver):
        with pytest.raises(InvalidDecisionError):
            resolver.decide(CreateNew())

    @pytest.mark.asyncio
    async def test_idempotent_on_unchanged_inputs(self, resolver, valid_person_data):
        first = await resolver.evaluate(valid_person_data)
        second = await resolver.evaluate(valid_person_data)

        assert [(m.candidate_id, m.weighted_score) for m in first.matches] == [
            (m.candidate_id, m.weighted_score) for m in second.matches
        ]
        assert first.state == second.state


class TestStaleRuns:
    """Test that superseded runs leave state alone."""

    @pytest.mark.asyncio
    async def test_cancel_while_searching_discards_result(self, existing_person, valid_person_data):
        release = asyncio.Event()

        async def slow_search(filters):
            await release.wait()
            return [existing_person]

        resolver = DuplicateResolver(slow_search)
        run = asyncio.ensure_future(resolver.evaluate(valid_person_data))
        await asyncio.sleep(0)
        resolver.cancel()
        release.set()

        assert await run is None
        assert resolver.state == ResolutionState.IDLE
        assert resolver.matches == ()

    @pytest.mark.asyncio
    async def test_failure_of_stale_run_ignored(self, valid_person_data):
        release = asyncio.Event()

        async def failing_search(filters):
            await release.wait()
            raise SearchCollaboratorFailure("late failure")

        resolver = DuplicateResolver(failing_search)
        run = asyncio.ensure_future(resolver.evaluate(valid_person_data))
        await asyncio.sleep(0)
        resolver.cancel()
        release.set()

        assert await run is None
        assert resolver.last_failure is None
