"""Approval workflow module for approvable.

Implements the approval state machine, change snapshots, flush-time
interception, actor resolution and lifecycle events.
"""

from .states import ApprovalState, ApprovalTransition, Operation, VALID_TRANSITIONS
from .machine import ApprovalStateMachine
from .snapshot import Snapshot, take_snapshot
from .events import (
    ApprovalEvent,
    ApprovalCreated,
    ModelApproved,
    ModelRejected,
    ModelRolledBack,
    EventDispatcher,
)
from .requestor import RequestorResolver, acting_as
from .service import ApprovalService, RollbackResult
from .interception import ApprovalGate, bypass_approval

__all__ = [
    "ApprovalState",
    "ApprovalTransition",
    "Operation",
    "VALID_TRANSITIONS",
    "ApprovalStateMachine",
    "Snapshot",
    "take_snapshot",
    "ApprovalEvent",
    "ApprovalCreated",
    "ModelApproved",
    "ModelRejected",
    "ModelRolledBack",
    "EventDispatcher",
    "RequestorResolver",
    "acting_as",
    "ApprovalService",
    "RollbackResult",
    "ApprovalGate",
    "bypass_approval",
]
