"""Approval workflow states and transitions.

State Machine Diagram:

    ┌──────────┐
    │ PENDING  │ ← Initial state (write intercepted)
    └────┬─────┘
         │
         ├─────────────────────┐
         │                     │
    ┌────▼─────┐         ┌─────▼────┐
    │ APPROVED │         │ REJECTED │
    └────┬─────┘         └──────────┘
         │
         ├── rollback ──────────► PENDING
         └── rollback (bypass) ─► APPROVED

Rollback is only possible once per approval: ``rolled_back_at`` records it,
and a fresh approval is needed before the next one.
"""

from enum import Enum
from typing import Set, Dict, Optional, NamedTuple


class ApprovalState(str, Enum):
    """Lifecycle states of an approval."""

    PENDING = "pending"      # Change captured, awaiting a decision
    APPROVED = "approved"    # Change applied to the record
    REJECTED = "rejected"    # Change discarded


class ApprovalTransition(str, Enum):
    """Actions that trigger state transitions."""

    APPROVE = "approve"                    # PENDING → APPROVED
    REJECT = "reject"                      # PENDING → REJECTED
    ROLLBACK = "rollback"                  # APPROVED → PENDING
    ROLLBACK_BYPASS = "rollback_bypass"    # APPROVED → APPROVED


class Operation(str, Enum):
    """Kind of write an approval governs."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def inverse(self) -> "Operation":
        """The operation that undoes this one."""
        return _INVERSE_OPERATIONS[self]


_INVERSE_OPERATIONS = {
    Operation.CREATE: Operation.DELETE,
    Operation.UPDATE: Operation.UPDATE,
    Operation.DELETE: Operation.CREATE,
}


class TransitionRule(NamedTuple):
    """Defines a valid state transition."""
    from_state: ApprovalState
    to_state: ApprovalState
    transition: ApprovalTransition
    requires_not_rolled_back: bool = False


TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(ApprovalState.PENDING, ApprovalState.APPROVED, ApprovalTransition.APPROVE),
    TransitionRule(ApprovalState.PENDING, ApprovalState.REJECTED, ApprovalTransition.REJECT),
    TransitionRule(ApprovalState.APPROVED, ApprovalState.PENDING, ApprovalTransition.ROLLBACK,
                   requires_not_rolled_back=True),
    TransitionRule(ApprovalState.APPROVED, ApprovalState.APPROVED, ApprovalTransition.ROLLBACK_BYPASS,
                   requires_not_rolled_back=True),
]

# Build lookup tables for efficient access
VALID_TRANSITIONS: Dict[ApprovalState, Set[ApprovalTransition]] = {}
TRANSITION_TARGETS: Dict[tuple[ApprovalState, ApprovalTransition], TransitionRule] = {}

for rule in TRANSITION_RULES:
    VALID_TRANSITIONS.setdefault(rule.from_state, set()).add(rule.transition)
    TRANSITION_TARGETS[(rule.from_state, rule.transition)] = rule


def can_transition(from_state: ApprovalState, transition: ApprovalTransition) -> bool:
    """Check if a transition is valid from the given state."""
    return transition in VALID_TRANSITIONS.get(from_state, set())


def get_transition_rule(from_state: ApprovalState, transition: ApprovalTransition) -> Optional[TransitionRule]:
    """Get the transition rule for a state/action combination."""
    return TRANSITION_TARGETS.get((from_state, transition))
