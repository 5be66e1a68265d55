"""approvable: approval workflows for SQLAlchemy models.

Writes to models that mix in ``MustBeApproved`` are captured as pending
approvals and only reach the database once approved.
"""

from approvable.core.exceptions import (
    ApprovalError,
    ApprovalNotFound,
    IllegalTransition,
    PersistenceFailure,
    SnapshotMismatch,
    UnknownMorphType,
)
from approvable.db.mixins import MustBeApproved
from approvable.db.models.approval import Approval
from approvable.db.registry import MorphRef, get_registry, register_model

__version__ = "0.1.0"

__all__ = [
    "Approval",
    "ApprovalError",
    "ApprovalNotFound",
    "IllegalTransition",
    "MorphRef",
    "MustBeApproved",
    "PersistenceFailure",
    "SnapshotMismatch",
    "UnknownMorphType",
    "get_registry",
    "register_model",
]
