"""
Unit Tests: MutationStateMachine
"""

import pytest

from enums.mutation_status import MutationStatus
from utils.mutation_state_machine import InvalidMutationTransitionError, MutationStateMachine


class TestMutationStateMachine:

    @pytest.mark.parametrize("from_status, to_status", [
        (MutationStatus.IDLE, MutationStatus.MUTATING),
        (MutationStatus.MUTATING, MutationStatus.SETTLED),
        (MutationStatus.MUTATING, MutationStatus.SETTLED_WITH_WARNING),
        (MutationStatus.MUTATING, MutationStatus.SETTLED_WITH_ERROR),
        (MutationStatus.SETTLED_WITH_ERROR, MutationStatus.MUTATING),
        (MutationStatus.SETTLED_WITH_WARNING, MutationStatus.IDLE),
    ])
    def test_valid_transitions(self, from_status, to_status):
        assert MutationStateMachine.is_valid_transition(from_status, to_status) is True
        assert MutationStateMachine.transition(from_status, to_status, "test") == to_status

    @pytest.mark.parametrize("from_status, to_status", [
        (MutationStatus.IDLE, MutationStatus.SETTLED),
        (MutationStatus.MUTATING, MutationStatus.MUTATING),
        (MutationStatus.MUTATING, MutationStatus.IDLE),
        (MutationStatus.SETTLED, MutationStatus.SETTLED_WITH_ERROR),
    ])
    def test_invalid_transitions_raise(self, from_status, to_status):
        with pytest.raises(InvalidMutationTransitionError):
            MutationStateMachine.transition(from_status, to_status, "test")

    def test_get_valid_transitions(self):
        assert MutationStateMachine.get_valid_transitions(MutationStatus.MUTATING) == [
            MutationStatus.SETTLED,
            MutationStatus.SETTLED_WITH_ERROR,
            MutationStatus.SETTLED_WITH_WARNING,
        ]
        assert MutationStateMachine.get_valid_transitions(MutationStatus.IDLE) == [MutationStatus.MUTATING]

    def test_is_settled(self):
        assert MutationStateMachine.is_settled(MutationStatus.SETTLED_WITH_WARNING) is True
        assert MutationStateMachine.is_settled(MutationStatus.MUTATING) is False
        assert MutationStateMachine.is_settled(MutationStatus.IDLE) is False
