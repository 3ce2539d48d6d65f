"""
Duplicate Resolution Orchestrator.

Responsibilities:
- Coordinate candidate selection and scoring for a pending record.
- Drive the user-decision state machine:

    Evaluating -> NoMatches -> CreateDirectly
    Evaluating -> MatchesFound -> AwaitingUserDecision
    AwaitingUserDecision --CreateNew--> CreateDirectly
    AwaitingUserDecision --UpdateExisting(id)--> SwitchToEditMode
    AwaitingUserDecision --Cancelled--> AwaitingUserDecision

Non-Responsibilities:
- No create/update calls.
- No wizard manipulation.

Invariant:
A failed candidate search degrades to NoMatches and never blocks creation.
Re-running on unchanged inputs yields identical matches and scores.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..errors import InvalidDecisionError
from ..logger import StructuredLogger, get_logger
from .candidate_selector import SearchFn, select_candidates
from .scoring import DEFAULT_THRESHOLD, SimilarityCandidate, rank_candidates


class ResolutionState(str, Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    NO_MATCHES = "no_matches"
    MATCHES_FOUND = "matches_found"
    AWAITING_USER_DECISION = "awaiting_user_decision"
    CREATE_DIRECTLY = "create_directly"
    SWITCH_TO_EDIT_MODE = "switch_to_edit_mode"


TERMINAL_STATES = frozenset({ResolutionState.CREATE_DIRECTLY, ResolutionState.SWITCH_TO_EDIT_MODE})


@dataclass(frozen=True)
class CreateNew:
    """Keep the pending record and create it."""


@dataclass(frozen=True)
class UpdateExisting:
    """Discard the pending record and edit an existing one."""

    candidate_id: Any


@dataclass(frozen=True)
class Cancelled:
    """Dialog dismissed without a choice."""


ResolutionDecision = Union[CreateNew, UpdateExisting, Cancelled]


@dataclass(frozen=True)
class ResolutionOutcome:
    state: ResolutionState
    matches: Tuple[SimilarityCandidate, ...] = ()
    decision: Optional[ResolutionDecision] = None
    search_failed: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class DuplicateResolver:
    """
    Scores candidates for a pending record and tracks the user's decision.

    Args:
        search: Async record search collaborator
        threshold: Minimum weighted score for a candidate to be surfaced
        search_limit: Maximum candidates requested from the collaborator
        logger: Structured logger (defaults to the global one)
    """

    def __init__(
        self,
        search: SearchFn,
        threshold: float = DEFAULT_THRESHOLD,
        search_limit: int = 20,
        logger: Optional[StructuredLogger] = None,
    ):
        self.search = search
        self.threshold = threshold
        self.search_limit = search_limit
        self._logger = logger or get_logger()
        self.state = ResolutionState.IDLE
        self.pending: Optional[Dict[str, Any]] = None
        self.matches: Tuple[SimilarityCandidate, ...] = ()
        self.last_failure: Optional[Exception] = None
        self.history: List[ResolutionState] = []
        self._run_id = 0

    async def evaluate(self, pending: Mapping[str, Any]) -> Optional[ResolutionOutcome]:
        """
        Start a run for ``pending``.

        Returns None when the run was superseded by cancel() or a newer
        evaluate() while the search was in flight; state is then left to
        the newer run.
        """
        self._run_id += 1
        run_id = self._run_id
        self.pending = dict(pending)
        self.matches = ()
        self.last_failure = None
        self.history = []
        self._transition(ResolutionState.EVALUATING)
        self._logger.record_search_attempt()

        try:
            candidates = await select_candidates(
                self.search, self.pending, self.search_limit, self._logger
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if run_id != self._run_id:
                return None
            self.last_failure = e
            self._logger.record_search_failure(type(e).__name__)
            self._logger.warning(
                "Candidate search failed; continuing without duplicate check",
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._no_matches(search_failed=True)

        if run_id != self._run_id:
            self._logger.info("Discarding stale candidate search result")
            return None

        matches = rank_candidates(self.pending, candidates, self.threshold)
        self._logger.debug(
            "Candidates scored",
            fetched=len(candidates),
            surfaced=len(matches),
            threshold=self.threshold,
        )
        if not matches:
            return self._no_matches()

        self.matches = tuple(matches)
        self._transition(ResolutionState.MATCHES_FOUND)
        self._transition(ResolutionState.AWAITING_USER_DECISION)
        self._logger.info(
            "Potential duplicates found",
            count=len(matches),
            best_score=round(matches[0].weighted_score, 2),
        )
        return ResolutionOutcome(ResolutionState.AWAITING_USER_DECISION, self.matches)

    def check_decision(self, decision: ResolutionDecision) -> None:
        """
        Raises:
            InvalidDecisionError: If no decision is expected or the decision
                names a candidate that was not surfaced
        """
        if self.state != ResolutionState.AWAITING_USER_DECISION:
            raise InvalidDecisionError(f"No decision expected in state '{self.state.value}'")
        if not isinstance(decision, (CreateNew, UpdateExisting, Cancelled)):
            raise InvalidDecisionError(f"Unknown decision: {decision!r}")
        if isinstance(decision, UpdateExisting) and self.candidate(decision.candidate_id) is None:
            raise InvalidDecisionError(
                f"Candidate {decision.candidate_id!r} is not among the surfaced matches"
            )

    def decide(self, decision: ResolutionDecision) -> ResolutionOutcome:
        """Apply the user's choice from the duplicate dialog."""
        self.check_decision(decision)

        if isinstance(decision, Cancelled):
            self._logger.record_resolution("cancelled")
            self._logger.info("Duplicate dialog dismissed")
            return ResolutionOutcome(self.state, self.matches, decision)

        if isinstance(decision, CreateNew):
            self._transition(ResolutionState.CREATE_DIRECTLY)
            self._logger.record_resolution("keep_new")
            return ResolutionOutcome(self.state, self.matches, decision)

        self.pending = None
        self._transition(ResolutionState.SWITCH_TO_EDIT_MODE)
        self._logger.record_resolution("update_existing")
        self._logger.info("Switching to existing record", candidate_id=str(decision.candidate_id))
        return ResolutionOutcome(self.state, self.matches, decision)

    def candidate(self, candidate_id: Any) -> Optional[SimilarityCandidate]:
        for match in self.matches:
            if match.candidate_id == candidate_id:
                return match
        return None

    def cancel(self) -> None:
        """Abandon the current run; a search still in flight will be discarded."""
        self._run_id += 1
        self.state = ResolutionState.IDLE
        self.pending = None
        self.matches = ()
        self.history = []

    def _no_matches(self, search_failed: bool = False) -> ResolutionOutcome:
        self._transition(ResolutionState.NO_MATCHES)
        self._transition(ResolutionState.CREATE_DIRECTLY)
        self._logger.record_resolution("create_directly")
        return ResolutionOutcome(ResolutionState.CREATE_DIRECTLY, (), None, search_failed)

    def _transition(self, state: ResolutionState) -> None:
        self.state = state
        self.history.append(state)
