"""Resolution of the actors behind an approval.

The current actor is bound per session (``acting_as``) or supplied by a
provider callable. Resolution is best effort: no actor means ``None``.
"""

from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from approvable.common.logger import get_logger
from approvable.db.models.approval import Approval
from approvable.db.registry import MorphRef, MorphRegistry, get_registry

logger = get_logger(__name__)

ACTOR_KEY = "approvable.actor"


@contextmanager
def acting_as(session: Session, actor: Any) -> Iterator[Session]:
    """Bind ``actor`` as the current actor of ``session`` for the block."""
    missing = object()
    previous = session.info.get(ACTOR_KEY, missing)
    session.info[ACTOR_KEY] = actor
    try:
        yield session
    finally:
        if previous is missing:
            session.info.pop(ACTOR_KEY, None)
        else:
            session.info[ACTOR_KEY] = previous


class RequestorResolver:
    """Turns actors into morph references and back."""

    def __init__(
        self,
        registry: Optional[MorphRegistry] = None,
        provider: Optional[Callable[[], Any]] = None,
    ):
        """
        Args:
            registry: Morph registry, defaults to the global one
            provider: Callable returning the current actor; when omitted the
                actor bound with ``acting_as`` is used
        """
        self.registry = registry or get_registry()
        self.provider = provider

    def current_actor(self, session: Session) -> Optional[MorphRef]:
        """Reference to the current actor, or ``None``."""
        actor = self.provider() if self.provider else session.info.get(ACTOR_KEY)
        try:
            return self.registry.ref(actor)
        except ValueError:
            logger.debug("Current actor is not persisted; recording no actor")
            return None

    def ref(self, actor: Any) -> Optional[MorphRef]:
        """Reference to an explicitly passed actor (record, reference or ``None``)."""
        return self.registry.ref(actor)

    def requestor(self, session: Session, approval: Approval) -> Optional[Any]:
        """The actor that proposed the change."""
        return self.registry.load(session, approval.creator_ref)

    def approver(self, session: Session, approval: Approval) -> Optional[Any]:
        """The actor that last approved, rejected or rolled back the change."""
        return self.registry.load(session, approval.approver_ref)

    def requested_by(self, actor: Any, query=None):
        """
        Restrict a query to approvals proposed by ``actor``.

        Args:
            actor: Actor record or reference; ``None`` selects approvals
                proposed without an actor
            query: ``Query`` or ``Select`` over ``Approval``; defaults to a
                new ``select(Approval)``
        """
        if query is None:
            query = select(Approval)
        ref = self.ref(actor)
        if ref is None:
            return query.where(Approval.creator_type.is_(None), Approval.creator_id.is_(None))
        return query.where(Approval.creator_type == ref.type, Approval.creator_id == ref.id)

    def was_requested_by(self, approval: Approval, actor: Any) -> bool:
        """Whether ``actor`` proposed ``approval``."""
        ref = self.ref(actor)
        return ref is not None and approval.creator_ref == ref


_default_resolver = RequestorResolver()


def requestor(session: Session, approval: Approval) -> Optional[Any]:
    return _default_resolver.requestor(session, approval)


def requested_by(actor: Any, query=None):
    return _default_resolver.requested_by(actor, query)


def was_requested_by(approval: Approval, actor: Any) -> bool:
    return _default_resolver.was_requested_by(approval, actor)
