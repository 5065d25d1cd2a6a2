"""
Mutation State Machine for cart-affecting operations.

Every cart operation runs IDLE/SETTLED* -> MUTATING -> one of the settled
states. An operation can only start from a settled or idle state, which is
what keeps mutations of one tab strictly ordered.
"""

import logging
from typing import Dict, List, Set

from enums.mutation_status import MutationStatus

logger = logging.getLogger(__name__)


class MutationStatusTransition:
    """Represents a valid status transition with metadata"""

    def __init__(self, from_status: MutationStatus, to_status: MutationStatus, description: str = ""):
        self.from_status = from_status
        self.to_status = to_status
        self.description = description

    def __repr__(self):
        return f"{self.from_status.value} -> {self.to_status.value}"


class InvalidMutationTransitionError(RuntimeError):
    """Raised on a transition the state machine does not allow (a programming error)."""


class MutationStateMachine:
    """
    Finite state machine for one cart session's mutation status.

    Valid status transitions:
    - IDLE -> MUTATING
    - MUTATING -> SETTLED (applied as requested)
    - MUTATING -> SETTLED_WITH_WARNING (clamped to available stock)
    - MUTATING -> SETTLED_WITH_ERROR (rejected, cart unchanged)
    - SETTLED* -> MUTATING (next operation)
    - SETTLED* -> IDLE (state reset, e.g. after checkout)
    """

    SETTLED_STATES = (
        MutationStatus.SETTLED,
        MutationStatus.SETTLED_WITH_WARNING,
        MutationStatus.SETTLED_WITH_ERROR,
    )

    VALID_TRANSITIONS: List[MutationStatusTransition] = [
        MutationStatusTransition(MutationStatus.IDLE, MutationStatus.MUTATING, "First operation of the session"),
        MutationStatusTransition(MutationStatus.MUTATING, MutationStatus.SETTLED, "Operation applied"),
        MutationStatusTransition(MutationStatus.MUTATING, MutationStatus.SETTLED_WITH_WARNING,
                                 "Operation applied with quantity clamped to stock"),
        MutationStatusTransition(MutationStatus.MUTATING, MutationStatus.SETTLED_WITH_ERROR,
                                 "Operation rejected, cart unchanged"),
    ] + [
        MutationStatusTransition(settled, MutationStatus.MUTATING, "Next operation")
        for settled in SETTLED_STATES
    ] + [
        MutationStatusTransition(settled, MutationStatus.IDLE, "Session state reset")
        for settled in SETTLED_STATES
    ]

    _transition_map: Dict[MutationStatus, Set[MutationStatus]] = {}

    @classmethod
    def _build_transition_map(cls):
        if cls._transition_map:
            return
        for transition in cls.VALID_TRANSITIONS:
            cls._transition_map.setdefault(transition.from_status, set()).add(transition.to_status)

    @classmethod
    def is_valid_transition(cls, from_status: MutationStatus, to_status: MutationStatus) -> bool:
        cls._build_transition_map()
        return to_status in cls._transition_map.get(from_status, set())

    @classmethod
    def get_valid_transitions(cls, from_status: MutationStatus) -> List[MutationStatus]:
        cls._build_transition_map()
        return sorted(cls._transition_map.get(from_status, set()), key=lambda status: status.value)

    @classmethod
    def is_settled(cls, status: MutationStatus) -> bool:
        return status in cls.SETTLED_STATES

    @classmethod
    def transition(cls, from_status: MutationStatus, to_status: MutationStatus,
                   operation: str = "") -> MutationStatus:
        """
        Validate and log a transition.

        Returns:
            The new status

        Raises:
            InvalidMutationTransitionError: If the transition is not allowed
        """
        if not cls.is_valid_transition(from_status, to_status):
            logger.error(f"Invalid cart mutation transition {from_status.value} -> {to_status.value} ({operation})")
            raise InvalidMutationTransitionError(
                f"Cannot move from {from_status.value} to {to_status.value}"
            )
        logger.debug(f"CART_MUTATION: {operation} {from_status.value} -> {to_status.value}")
        return to_status
