"""Enum-based workflow state machine pattern.

Defines workflow states as Python enums with explicit transition validation.
The in-memory stock store drives each hold through ReservationLifecycle.
The SQL store encodes the same rule in its UPDATE: only a row still in
CREATED may move, and only once.

Domain: the inventory reservation lifecycle.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# State definitions
# ---------------------------------------------------------------------------

class ReservationState(str, Enum):
    """Inventory reservation lifecycle states."""

    CREATED = "created"
    RELEASED = "released"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"


# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------

# Allowed transitions: {current_state: [allowed_next_states]}
_RESERVATION_TRANSITIONS: dict[ReservationState, list[ReservationState]] = {
    ReservationState.CREATED: [
        ReservationState.RELEASED,
        ReservationState.CONFIRMED,
        ReservationState.EXPIRED,
    ],
    ReservationState.RELEASED: [],   # terminal
    ReservationState.CONFIRMED: [],  # terminal
    ReservationState.EXPIRED: [],    # terminal
}


def can_transition(from_state: ReservationState, to_state: ReservationState) -> bool:
    """Check if a transition is allowed."""
    return to_state in _RESERVATION_TRANSITIONS.get(from_state, [])


def is_terminal(state: ReservationState) -> bool:
    return len(_RESERVATION_TRANSITIONS.get(state, [])) == 0


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

@dataclass
class WorkflowTransition:
    """Record of a single state transition."""

    from_state: str
    to_state: str
    timestamp: datetime
    actor: str = "system"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReservationLifecycle:
    """A reservation's state with transition history.

    Usage::

        lc = ReservationLifecycle(reservation_id="4f1c...")
        lc.transition(ReservationState.CONFIRMED, actor="checkout")
    """

    reservation_id: str
    current_state: ReservationState = ReservationState.CREATED
    history: list[WorkflowTransition] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def can_transition(self, to_state: ReservationState) -> bool:
        """Check if a transition is allowed from the current state."""
        return can_transition(self.current_state, to_state)

    def transition(
        self,
        to_state: ReservationState,
        actor: str = "system",
        metadata: dict[str, Any] | None = None,
    ) -> WorkflowTransition:
        """Execute a state transition.

        Raises ValueError if the transition is not allowed.
        """
        if not self.can_transition(to_state):
            allowed = _RESERVATION_TRANSITIONS.get(self.current_state, [])
            allowed_names = [s.value for s in allowed]
            raise ValueError(
                f"Cannot transition from {self.current_state.value} to {to_state.value}. "
                f"Allowed: {allowed_names}"
            )

        record = WorkflowTransition(
            from_state=self.current_state.value,
            to_state=to_state.value,
            timestamp=datetime.now(timezone.utc),
            actor=actor,
            metadata=metadata or {},
        )
        self.history.append(record)
        self.current_state = to_state
        return record

    @property
    def is_terminal(self) -> bool:
        """Check if the reservation is in a terminal state."""
        return is_terminal(self.current_state)

    @property
    def transition_count(self) -> int:
        """Number of transitions that have occurred."""
        return len(self.history)
