"""Approval state machine implementation.

Validates transitions against the rule table.
"""

from typing import Any

from approvable.common.logger import get_logger
from approvable.core.exceptions import IllegalTransition

from .states import (
    ApprovalState,
    ApprovalTransition,
    can_transition,
    get_transition_rule,
)

logger = get_logger(__name__)


class ApprovalStateMachine:
    """
    State machine for a single approval.

    Manages transitions between approval states with:
    - Validation of valid transitions
    - The once-per-approval rollback rule
    """

    def __init__(
        self,
        entity_id: Any,
        current_state: ApprovalState,
        *,
        rolled_back: bool = False,
    ):
        """
        Initialize the state machine.

        Args:
            entity_id: ID of the approval
            current_state: Current approval state
            rolled_back: Whether the current approval has already been rolled back
        """
        self.entity_id = entity_id
        self._state = current_state
        self._rolled_back = rolled_back

    @property
    def state(self) -> ApprovalState:
        """Current state of the approval."""
        return self._state

    @property
    def rolled_back(self) -> bool:
        return self._rolled_back

    def can_perform(self, transition: ApprovalTransition) -> bool:
        """Check if a transition can be performed from current state."""
        if not can_transition(self._state, transition):
            return False

        rule = get_transition_rule(self._state, transition)
        if rule and rule.requires_not_rolled_back and self._rolled_back:
            return False

        return True

    def transition(self, transition: ApprovalTransition) -> ApprovalState:
        """
        Perform a state transition.

        Args:
            transition: The transition to perform

        Returns:
            The new state after transition

        Raises:
            IllegalTransition: If the transition is invalid
        """
        rule = get_transition_rule(self._state, transition)
        if rule is None:
            raise IllegalTransition(
                f"Cannot perform {transition.value} from state {self._state.value}",
                self._state,
                transition,
            )

        if rule.requires_not_rolled_back and self._rolled_back:
            raise IllegalTransition(
                f"Cannot perform {transition.value}: approval already rolled back",
                self._state,
                transition,
            )

        from_state = self._state
        self._state = rule.to_state
        if rule.requires_not_rolled_back:
            self._rolled_back = True
        elif transition is ApprovalTransition.APPROVE:
            self._rolled_back = False

        logger.debug(
            f"Approval {self.entity_id}: {from_state.value} -> {self._state.value} ({transition.value})"
        )
        return self._state
