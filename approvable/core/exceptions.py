"""Exceptions raised by the approval workflow."""

from typing import Optional


class ApprovalError(Exception):
    """Base class for approval workflow errors."""


class IllegalTransition(ApprovalError):
    """Raised when a state transition is not allowed from the current state."""

    def __init__(self, message: str, from_state, transition):
        super().__init__(message)
        self.from_state = from_state
        self.transition = transition


class SnapshotMismatch(ApprovalError):
    """Raised when original and proposed data do not cover the same fields."""

    def __init__(self, original_keys, new_keys):
        missing = sorted(set(new_keys) - set(original_keys))
        extra = sorted(set(original_keys) - set(new_keys))
        super().__init__(
            f"Snapshot key sets differ: missing originals {missing}, unexpected originals {extra}"
        )
        self.missing = missing
        self.extra = extra


class PersistenceFailure(ApprovalError):
    """Raised when the backing store rejects a write during an operation."""


class ApprovalNotFound(ApprovalError, LookupError):
    """Raised when an approval id does not match any row."""

    def __init__(self, approval_id):
        super().__init__(f"Approval {approval_id} not found")
        self.approval_id = approval_id


class UnknownMorphType(ApprovalError, LookupError):
    """Raised when a morph discriminator or class is not registered."""

    def __init__(self, name: str, detail: Optional[str] = None):
        super().__init__(detail or f"No model registered for morph type '{name}'")
        self.name = name
