"""Mixin for models whose writes require approval."""

from sqlalchemy import select
from sqlalchemy.orm import object_session

from approvable.db.models.approval import Approval
from approvable.db.registry import get_registry

BYPASS_ATTR = "_approval_bypassed"


def mark_bypassed(record) -> None:
    """Let the next flush of ``record`` skip approval."""
    setattr(record, BYPASS_ATTR, True)


def clear_bypass(record) -> None:
    setattr(record, BYPASS_ATTR, False)


def is_bypassed(record) -> bool:
    return getattr(record, BYPASS_ATTR, False)


class MustBeApproved:
    """
    Opt a mapped class into approval interception.

    Usage::

        @register_model
        class Post(MustBeApproved, Base):
            __tablename__ = "posts"
            ...

        post.without_approval()
        session.commit()  # written straight through
    """

    def without_approval(self):
        """Write this record through on its next flush, skipping approval."""
        mark_bypassed(self)
        return self

    def is_approval_bypassed(self) -> bool:
        return is_bypassed(self)

    def approvals(self):
        """``Select`` of the approvals targeting this record."""
        ref = get_registry().ref(self)
        return select(Approval).where(
            Approval.approvable_type == ref.type,
            Approval.approvable_id == ref.id,
        ).order_by(Approval.created_at.desc())

    def pending_approvals(self) -> list:
        """Pending approvals of this record, newest first."""
        session = object_session(self)
        if session is None:
            return []
        return list(session.scalars(self.approvals().where(Approval.state == "pending")))
