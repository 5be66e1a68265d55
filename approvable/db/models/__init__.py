"""Database models for approvable."""

from approvable.db.models.approval import Approval

__all__ = [
    "Approval",
]
