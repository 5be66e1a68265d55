"""Tests for approval workflow state machine."""

import pytest
from uuid import uuid4

from approvable.core.approval.states import (
    ApprovalState, ApprovalTransition, Operation,
    VALID_TRANSITIONS, can_transition, get_transition_rule,
)
from approvable.core.approval.machine import ApprovalStateMachine
from approvable.core.exceptions import IllegalTransition


class TestApprovalStates:
    """Test approval state definitions."""

    def test_all_states_defined(self):
        """Test that exactly the three lifecycle states exist."""
        assert {s.value for s in ApprovalState} == {"pending", "approved", "rejected"}

    def test_operation_inverse(self):
        assert Operation.CREATE.inverse is Operation.DELETE
        assert Operation.DELETE.inverse is Operation.CREATE
        assert Operation.UPDATE.inverse is Operation.UPDATE


class TestApprovalTransitions:
    """Test valid state transitions."""

    def test_pending_transitions(self):
        assert can_transition(ApprovalState.PENDING, ApprovalTransition.APPROVE)
        assert can_transition(ApprovalState.PENDING, ApprovalTransition.REJECT)
        assert not can_transition(ApprovalState.PENDING, ApprovalTransition.ROLLBACK)

    def test_approved_transitions(self):
        assert can_transition(ApprovalState.APPROVED, ApprovalTransition.ROLLBACK)
        assert can_transition(ApprovalState.APPROVED, ApprovalTransition.ROLLBACK_BYPASS)
        assert not can_transition(ApprovalState.APPROVED, ApprovalTransition.APPROVE)
        assert not can_transition(ApprovalState.APPROVED, ApprovalTransition.REJECT)

    def test_rejected_has_no_outgoing(self):
        assert ApprovalState.REJECTED not in VALID_TRANSITIONS
        for transition in ApprovalTransition:
            assert not can_transition(ApprovalState.REJECTED, transition)

    def test_rollback_rules_target_states(self):
        assert get_transition_rule(ApprovalState.APPROVED, ApprovalTransition.ROLLBACK).to_state == ApprovalState.PENDING
        assert get_transition_rule(ApprovalState.APPROVED, ApprovalTransition.ROLLBACK_BYPASS).to_state == ApprovalState.APPROVED
        assert get_transition_rule(ApprovalState.REJECTED, ApprovalTransition.ROLLBACK) is None

    def test_rollback_rules_require_fresh_approval(self):
        rule = get_transition_rule(ApprovalState.APPROVED, ApprovalTransition.ROLLBACK)
        assert rule is not None
        assert rule.requires_not_rolled_back is True

        rule = get_transition_rule(ApprovalState.PENDING, ApprovalTransition.APPROVE)
        assert rule.requires_not_rolled_back is False


class TestApprovalStateMachine:
    """Test ApprovalStateMachine class."""

    def test_initial_state(self):
        machine = ApprovalStateMachine(entity_id=uuid4(), current_state=ApprovalState.PENDING)
        assert machine.state == ApprovalState.PENDING
        assert not machine.rolled_back

    def test_can_perform(self):
        machine = ApprovalStateMachine(entity_id=uuid4(), current_state=ApprovalState.PENDING)
        assert machine.can_perform(ApprovalTransition.APPROVE)
        assert machine.can_perform(ApprovalTransition.REJECT)
        assert not machine.can_perform(ApprovalTransition.ROLLBACK)

    def test_approve(self):
        machine = ApprovalStateMachine(entity_id=uuid4(), current_state=ApprovalState.PENDING)
        assert machine.transition(ApprovalTransition.APPROVE) == ApprovalState.APPROVED

    def test_approve_twice_raises(self):
        machine = ApprovalStateMachine(entity_id=uuid4(), current_state=ApprovalState.PENDING)
        machine.transition(ApprovalTransition.APPROVE)

        with pytest.raises(IllegalTransition) as exc_info:
            machine.transition(ApprovalTransition.APPROVE)

        assert exc_info.value.from_state == ApprovalState.APPROVED
        assert exc_info.value.transition == ApprovalTransition.APPROVE

    def test_reject_is_final(self):
        machine = ApprovalStateMachine(entity_id=uuid4(), current_state=ApprovalState.PENDING)
        machine.transition(ApprovalTransition.REJECT)

        assert not any(machine.can_perform(t) for t in ApprovalTransition)
        with pytest.raises(IllegalTransition):
            machine.transition(ApprovalTransition.ROLLBACK)

    def test_rollback_only_once(self):
        machine = ApprovalStateMachine(entity_id=uuid4(), current_state=ApprovalState.APPROVED)
        assert machine.transition(ApprovalTransition.ROLLBACK_BYPASS) == ApprovalState.APPROVED
        assert machine.rolled_back

        assert not machine.can_perform(ApprovalTransition.ROLLBACK)
        with pytest.raises(IllegalTransition, match="already rolled back"):
            machine.transition(ApprovalTransition.ROLLBACK)

    def test_rolled_back_flag_from_constructor(self):
        machine = ApprovalStateMachine(
            entity_id=uuid4(),
            current_state=ApprovalState.APPROVED,
            rolled_back=True,
        )
        assert not machine.can_perform(ApprovalTransition.ROLLBACK)
        assert not machine.can_perform(ApprovalTransition.ROLLBACK_BYPASS)

    def test_reapproval_allows_new_rollback(self):
        machine = ApprovalStateMachine(entity_id=uuid4(), current_state=ApprovalState.APPROVED)
        machine.transition(ApprovalTransition.ROLLBACK)
        assert machine.state == ApprovalState.PENDING

        machine.transition(ApprovalTransition.APPROVE)
        assert not machine.rolled_back
        assert machine.can_perform(ApprovalTransition.ROLLBACK)

    def test_failed_transition_keeps_state(self):
        machine = ApprovalStateMachine(entity_id=uuid4(), current_state=ApprovalState.PENDING)
        with pytest.raises(IllegalTransition):
            machine.transition(ApprovalTransition.ROLLBACK)
        assert machine.state == ApprovalState.PENDING
