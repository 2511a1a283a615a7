"""Per-turn workflow state machine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Set

from app.core.scheduling.errors import SchedulingError


class TurnState(str, Enum):
    """States a single caller turn passes through."""

    IDLE = "idle"
    INTENT_CLASSIFIED = "intent_classified"
    PATIENT_RESOLVED = "patient_resolved"
    SLOT_RESOLUTION = "slot_resolution"
    CONFLICT_CHECK = "conflict_check"
    GATEWAY_MUTATION = "gateway_mutation"

    # Terminal
    RESPONSE_RENDERED = "response_rendered"


# Valid state transitions. Every state may short-circuit to
# RESPONSE_RENDERED (follow-up question, apology, options).
VALID_TRANSITIONS: dict[TurnState, Set[TurnState]] = {
    TurnState.IDLE: {
        TurnState.INTENT_CLASSIFIED,
        TurnState.RESPONSE_RENDERED,
    },
    TurnState.INTENT_CLASSIFIED: {
        TurnState.PATIENT_RESOLVED,
        TurnState.SLOT_RESOLUTION,  # check availability needs no patient
        TurnState.RESPONSE_RENDERED,
    },
    TurnState.PATIENT_RESOLVED: {
        TurnState.SLOT_RESOLUTION,
        TurnState.CONFLICT_CHECK,
        TurnState.GATEWAY_MUTATION,  # cancel / confirm / ASAP flag
        TurnState.RESPONSE_RENDERED,
    },
    TurnState.SLOT_RESOLUTION: {
        TurnState.CONFLICT_CHECK,
        TurnState.RESPONSE_RENDERED,
    },
    TurnState.CONFLICT_CHECK: {
        TurnState.GATEWAY_MUTATION,
        TurnState.SLOT_RESOLUTION,  # conflict -> alternatives
        TurnState.RESPONSE_RENDERED,
    },
    TurnState.GATEWAY_MUTATION: {
        TurnState.RESPONSE_RENDERED,
    },
    TurnState.RESPONSE_RENDERED: set(),
}


def can_transition(from_state: TurnState, to_state: TurnState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def is_terminal_state(state: TurnState) -> bool:
    return state == TurnState.RESPONSE_RENDERED


class InvalidTransition(SchedulingError):
    """A workflow tried to move the turn along an edge that does not exist."""
    pass


@dataclass
class TurnTrace:
    """Path one turn took through the state machine."""

    path: list[TurnState] = field(default_factory=lambda: [TurnState.IDLE])

    @property
    def state(self) -> TurnState:
        return self.path[-1]

    def advance(self, to_state: TurnState) -> None:
        """Move to a new state. Re-entering the current state is a no-op."""
        if to_state == self.state:
            return
        if not can_transition(self.state, to_state):
            raise InvalidTransition(f"{self.state.value} -> {to_state.value}")
        self.path.append(to_state)

    def finish(self) -> None:
        """Move to RESPONSE_RENDERED from wherever the turn stopped."""
        if not is_terminal_state(self.state):
            self.path.append(TurnState.RESPONSE_RENDERED)

    def to_list(self) -> list[str]:
        return [state.value for state in self.path]
