"""Approval service: the engine behind approve, reject and rollback.

Provides the high-level API over the approval state machine, including
applying captured data to the governed record, persistence and events.
"""

import uuid
from datetime import datetime, timedelta
from enum import Enum
from inspect import signature
from typing import Optional, Dict, Any, List, Callable, Union

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approvable.common.logger import get_logger
from approvable.core.config import get_settings
from approvable.core.exceptions import ApprovalNotFound, PersistenceFailure
from approvable.db.mixins import clear_bypass, mark_bypassed
from approvable.db.models.approval import Approval, utcnow
from approvable.db.registry import MorphRef, MorphRegistry, get_registry

from .events import EventDispatcher, ModelApproved, ModelRejected, ModelRolledBack
from .machine import ApprovalStateMachine
from .requestor import RequestorResolver
from .snapshot import Snapshot, from_snapshot_value, verify_snapshot
from .states import ApprovalState, ApprovalTransition, Operation

logger = get_logger(__name__)

ApprovalLike = Union[Approval, uuid.UUID, str]
Condition = Union[bool, Callable[[], bool], Callable[[Approval], bool]]

# smallest step a DateTime column keeps
_TICK = timedelta(microseconds=1)


def _evaluate(condition: Condition, approval: Approval) -> bool:
    """Resolve a rollback condition; callables may take the approval or nothing."""
    if not callable(condition):
        return bool(condition)
    try:
        parameters = signature(condition).parameters
    except (TypeError, ValueError):
        return bool(condition(approval))
    return bool(condition(approval) if parameters else condition())


def _stamp_after(previous: Optional[datetime], *, strictly: bool = False) -> datetime:
    """Current time, moved forward so it never precedes ``previous``."""
    now = utcnow()
    if previous is None:
        return now
    return max(now, previous + _TICK if strictly else previous)


class RollbackResult(str, Enum):
    """Outcome of a rollback call."""

    ROLLED_BACK = "rolled_back"
    SKIPPED = "skipped"      # condition evaluated false, nothing changed


class ApprovalService:
    """
    High-level service for managing approvals.

    Handles:
    - Creating pending approvals for intercepted writes
    - Approving, rejecting and rolling back with persistence
    - Querying approvals

    Every operation flushes its changes within the session's transaction;
    committing is up to the caller.
    """

    def __init__(
        self,
        db: Session,
        *,
        events: Optional[EventDispatcher] = None,
        registry: Optional[MorphRegistry] = None,
        resolver: Optional[RequestorResolver] = None,
        rollback_bypass_default: Optional[bool] = None,
    ):
        """
        Initialize the approval service.

        Args:
            db: Database session
            events: Dispatcher notified of lifecycle events
            registry: Morph registry, defaults to the global one
            resolver: Actor resolver
            rollback_bypass_default: Default ``bypass`` for ``rollback``
        """
        self.db = db
        self.events = events or EventDispatcher()
        self.registry = registry or get_registry()
        self.resolver = resolver or RequestorResolver(self.registry)
        if rollback_bypass_default is None:
            rollback_bypass_default = get_settings().rollback_bypass_default
        self.rollback_bypass_default = rollback_bypass_default

    def create_pending(
        self,
        approvable_type: str,
        operation: Operation,
        snapshot: Snapshot,
        *,
        approvable_id: Optional[str] = None,
        creator: Optional[MorphRef] = None,
    ) -> Approval:
        """
        Add a pending approval for a captured change.

        Called during a flush, so the row is only added to the session.

        Raises:
            SnapshotMismatch: If the snapshot key sets differ
        """
        verify_snapshot(snapshot.original_data, snapshot.new_data)

        approval = Approval(
            id=uuid.uuid4(),
            approvable_type=approvable_type,
            approvable_id=approvable_id,
            operation=operation.value,
            original_data=dict(snapshot.original_data),
            new_data=dict(snapshot.new_data),
            state=ApprovalState.PENDING.value,
        )
        approval.set_creator(creator)
        self.db.add(approval)

        logger.info(
            f"Pending {operation.value} of {approvable_type}#{approvable_id} "
            f"captured fields {snapshot.fields}"
        )
        return approval

    def get(self, approval_id: ApprovalLike) -> Approval:
        """Get an approval by ID.

        Raises:
            ApprovalNotFound: If no approval has this ID
        """
        if isinstance(approval_id, Approval):
            return approval_id
        approval = self.db.get(Approval, self._coerce_id(approval_id))
        if approval is None:
            raise ApprovalNotFound(approval_id)
        return approval

    def approve(self, approval: ApprovalLike, actor: Any = None) -> Approval:
        """
        Approve a pending change and apply ``new_data`` to its record.

        Args:
            approval: Approval or its ID
            actor: Approving actor (record, reference or ``None``)

        Returns:
            The updated approval

        Raises:
            IllegalTransition: If the approval is not pending
            PersistenceFailure: If the write fails
        """
        approval = self._lock(approval)
        actor_ref = self.resolver.ref(actor)
        machine = self._machine(approval)
        new_state = machine.transition(ApprovalTransition.APPROVE)

        def mutate():
            self._apply(approval, approval.new_data, Operation(approval.operation))
            approval.state = new_state.value
            approval.approved_at = _stamp_after(approval.rolled_back_at)
            approval.set_approver(actor_ref)

        self._persist(approval, mutate)
        logger.info(f"Approval {approval.id} approved by {actor_ref}")
        self.events.dispatch(ModelApproved(approval=approval, user=actor_ref))
        return approval

    def reject(self, approval: ApprovalLike, actor: Any = None) -> Approval:
        """
        Reject a pending change. The record is left untouched.

        Raises:
            IllegalTransition: If the approval is not pending
            PersistenceFailure: If the write fails
        """
        approval = self._lock(approval)
        actor_ref = self.resolver.ref(actor)
        machine = self._machine(approval)
        new_state = machine.transition(ApprovalTransition.REJECT)

        def mutate():
            approval.state = new_state.value
            approval.set_approver(actor_ref)

        self._persist(approval, mutate)
        logger.info(f"Approval {approval.id} rejected by {actor_ref}")
        self.events.dispatch(ModelRejected(approval=approval, user=actor_ref))
        return approval

    def rollback(
        self,
        approval: ApprovalLike,
        actor: Any = None,
        *,
        condition: Optional[Condition] = None,
        bypass: Optional[bool] = None,
    ) -> RollbackResult:
        """
        Revert an approved change on its record.

        The original values are written back and the captured mappings are
        swapped, so ``new_data`` describes the content now in force. With
        ``bypass`` the approval stays approved; otherwise it returns to
        pending and awaits a fresh decision.

        Args:
            approval: Approval or its ID
            actor: Acting user; ``None`` is recorded as is
            condition: Boolean, or callable taking the approval or no argument;
                a false result skips the rollback
            bypass: Keep the approval approved (defaults to the configured value)

        Returns:
            ``RollbackResult.ROLLED_BACK`` or ``RollbackResult.SKIPPED``

        Raises:
            IllegalTransition: If not approved, or already rolled back since approval
            PersistenceFailure: If the write fails
        """
        if bypass is None:
            bypass = self.rollback_bypass_default
        transition = ApprovalTransition.ROLLBACK_BYPASS if bypass else ApprovalTransition.ROLLBACK

        approval = self._lock(approval)
        machine = self._machine(approval)
        if not machine.can_perform(transition):
            # raises with the precise reason
            machine.transition(transition)

        if condition is not None and not _evaluate(condition, approval):
            logger.debug(f"Rollback of approval {approval.id} skipped by condition")
            return RollbackResult.SKIPPED

        actor_ref = self.resolver.ref(actor)
        new_state = machine.transition(transition)
        inverse = Operation(approval.operation).inverse

        def mutate():
            self._apply(approval, approval.original_data, inverse)
            approval.original_data, approval.new_data = approval.new_data, approval.original_data
            approval.operation = inverse.value
            approval.state = new_state.value
            approval.rolled_back_at = _stamp_after(approval.approved_at, strictly=True)
            approval.set_approver(actor_ref)

        self._persist(approval, mutate)
        logger.info(
            f"Approval {approval.id} rolled back by {actor_ref} "
            f"({'bypassed' if bypass else 'awaiting approval'})"
        )
        self.events.dispatch(ModelRolledBack(approval=approval, user=actor_ref))
        return RollbackResult.ROLLED_BACK

    def approve_if(self, approval: ApprovalLike, condition: bool, actor: Any = None) -> Optional[Approval]:
        """Approve when ``condition`` holds, otherwise do nothing."""
        return self.approve(approval, actor) if condition else None

    def approve_unless(self, approval: ApprovalLike, condition: bool, actor: Any = None) -> Optional[Approval]:
        return self.approve_if(approval, not condition, actor)

    def reject_if(self, approval: ApprovalLike, condition: bool, actor: Any = None) -> Optional[Approval]:
        """Reject when ``condition`` holds, otherwise do nothing."""
        return self.reject(approval, actor) if condition else None

    def reject_unless(self, approval: ApprovalLike, condition: bool, actor: Any = None) -> Optional[Approval]:
        return self.reject_if(approval, not condition, actor)

    def list_approvals(
        self,
        *,
        state: Optional[ApprovalState] = None,
        approvable: Any = None,
        requested_by: Any = None,
        limit: Optional[int] = 100,
        offset: int = 0,
    ) -> List[Approval]:
        """List approvals, oldest first, with optional filters."""
        query = select(Approval)
        if state is not None:
            query = query.where(Approval.state == ApprovalState(state).value)
        if approvable is not None:
            ref = self.registry.ref(approvable)
            query = query.where(
                Approval.approvable_type == ref.type,
                Approval.approvable_id == ref.id,
            )
        if requested_by is not None:
            query = self.resolver.requested_by(requested_by, query)

        query = query.order_by(Approval.created_at.asc()).offset(offset).limit(limit)
        return list(self.db.scalars(query))

    def pending(self, **filters) -> List[Approval]:
        return self.list_approvals(state=ApprovalState.PENDING, **filters)

    def approved(self, **filters) -> List[Approval]:
        return self.list_approvals(state=ApprovalState.APPROVED, **filters)

    def rejected(self, **filters) -> List[Approval]:
        return self.list_approvals(state=ApprovalState.REJECTED, **filters)

    def approvals_for(self, record: Any) -> List[Approval]:
        """All approvals targeting ``record``."""
        return self.list_approvals(approvable=record, limit=None)

    def _coerce_id(self, approval_id: Union[uuid.UUID, str]) -> uuid.UUID:
        if isinstance(approval_id, uuid.UUID):
            return approval_id
        try:
            return uuid.UUID(str(approval_id))
        except ValueError:
            raise ApprovalNotFound(approval_id) from None

    def _lock(self, approval: ApprovalLike) -> Approval:
        """Load the approval row for update."""
        approval_id = approval.id if isinstance(approval, Approval) else self._coerce_id(approval)
        locked = self.db.scalars(
            select(Approval).where(Approval.id == approval_id).with_for_update()
        ).first()
        if locked is None:
            raise ApprovalNotFound(approval_id)
        return locked

    def _machine(self, approval: Approval) -> ApprovalStateMachine:
        return ApprovalStateMachine(
            entity_id=approval.id,
            current_state=ApprovalState(approval.state),
            rolled_back=approval.is_rolled_back,
        )

    def _persist(self, approval: Approval, mutate: Callable[[], None]) -> None:
        """Run ``mutate`` and flush; on a store error roll the session back."""
        approval_id = approval.id
        try:
            mutate()
            self.db.flush()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceFailure(f"Failed to persist approval {approval_id}: {e}") from e

    def _apply(self, approval: Approval, data: Dict[str, Any], operation: Operation) -> Optional[Any]:
        """
        Write ``data`` onto the approval's record according to ``operation``.

        Fields are assigned in stored order and written by a single flush.
        A create on an approval without a target id records the new id.
        """
        model = self.registry.class_for(approval.approvable_type)
        record = self.registry.load(self.db, approval.approvable_ref)

        if operation is Operation.DELETE:
            if record is not None:
                mark_bypassed(record)
                self.db.delete(record)
                self.db.flush()
            return None

        if record is None:
            if operation is Operation.UPDATE:
                raise PersistenceFailure(
                    f"{approval.approvable_type}#{approval.approvable_id} no longer exists"
                )
            record = model()
            if approval.approvable_id is not None:
                mapper = inspect(model)
                key = mapper.get_property_by_column(mapper.primary_key[0]).key
                setattr(record, key, self.registry.coerce_id(model, approval.approvable_id))
            self.db.add(record)

        for key, value in data.items():
            setattr(record, key, from_snapshot_value(model, key, value))

        mark_bypassed(record)
        try:
            self.db.flush()
        finally:
            clear_bypass(record)

        if approval.approvable_id is None:
            approval.approvable_id = self.registry.ref(record).id
        return record
