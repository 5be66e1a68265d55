"""Approval database model.

One row per proposed write to a governed record.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, String, DateTime, JSON, Uuid, Index

from approvable.db.base import Base
from approvable.db.registry import MorphRef


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Approval(Base):
    """
    A pending, approved or rejected change to a domain record.

    ``original_data`` and ``new_data`` always cover the same fields.
    ``rolled_back_at`` marks that the approved effect has since been
    reverted on the record.
    """
    __tablename__ = "approvals"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Target record
    approvable_type = Column(String(255), nullable=False)
    approvable_id = Column(String(64), nullable=True)  # NULL for a create until approved
    operation = Column(String(20), nullable=False, default="update")

    # Captured change
    original_data = Column(JSON, nullable=False, default=dict)
    new_data = Column(JSON, nullable=False, default=dict)

    # Workflow state
    state = Column(String(20), nullable=False, default="pending", index=True)

    # Proposer
    creator_type = Column(String(255), nullable=True)
    creator_id = Column(String(64), nullable=True)

    # Last decider
    approver_type = Column(String(255), nullable=True)
    approver_id = Column(String(64), nullable=True)

    approved_at = Column(DateTime, nullable=True)
    rolled_back_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_approvals_approvable", "approvable_type", "approvable_id"),
        Index("ix_approvals_creator", "creator_type", "creator_id"),
    )

    @property
    def approvable_ref(self) -> Optional[MorphRef]:
        if self.approvable_id is None:
            return None
        return MorphRef(self.approvable_type, self.approvable_id)

    @property
    def creator_ref(self) -> Optional[MorphRef]:
        if self.creator_type is None or self.creator_id is None:
            return None
        return MorphRef(self.creator_type, self.creator_id)

    @property
    def approver_ref(self) -> Optional[MorphRef]:
        if self.approver_type is None or self.approver_id is None:
            return None
        return MorphRef(self.approver_type, self.approver_id)

    def set_creator(self, ref: Optional[MorphRef]) -> None:
        self.creator_type, self.creator_id = ref if ref else (None, None)

    def set_approver(self, ref: Optional[MorphRef]) -> None:
        self.approver_type, self.approver_id = ref if ref else (None, None)

    @property
    def is_rolled_back(self) -> bool:
        """Whether the current approval has been rolled back.

        Rollbacks are stamped strictly after the approval they revert, and a
        re-approval no earlier than the last rollback.
        """
        if self.rolled_back_at is None:
            return False
        return self.approved_at is None or self.rolled_back_at > self.approved_at

    def __repr__(self) -> str:
        return f"<Approval {self.approvable_type}#{self.approvable_id} {self.operation} [{self.state}]>"
