"""Flush-time interception of writes to governed records.

``ApprovalGate`` listens to a session's ``before_flush`` event. For every
``MustBeApproved`` record about to be inserted, updated or deleted it either
lets the write through (bypass, or nothing approvable changed) or captures
the approvable part of the change in a pending ``Approval`` and keeps that
part out of the flush.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from approvable.common.config import ApprovalConfig, FieldPolicy, load_typed_config
from approvable.common.logger import get_logger, setup_from_settings
from approvable.core.config import Settings, get_settings
from approvable.db.mixins import MustBeApproved, clear_bypass, is_bypassed
from approvable.db.models.approval import Approval
from approvable.db.registry import MorphRef, MorphRegistry, get_registry

from .events import ApprovalCreated, EventDispatcher
from .requestor import RequestorResolver
from .service import ApprovalService
from .snapshot import Snapshot, take_snapshot, to_snapshot_value
from .states import ApprovalState, Operation

logger = get_logger(__name__)

BYPASS_KEY = "approvable.bypass"
CREATED_KEY = "approvable.created"


@contextmanager
def bypass_approval(session: Session) -> Iterator[Session]:
    """Write every governed record straight through while the block runs."""
    previous = session.info.get(BYPASS_KEY, False)
    session.info[BYPASS_KEY] = True
    try:
        yield session
    finally:
        session.info[BYPASS_KEY] = previous


class ApprovalGate:
    """
    Intercepts writes to ``MustBeApproved`` records.

    Usage::

        gate = ApprovalGate.from_settings(events=dispatcher)
        gate.install(SessionLocal)
    """

    def __init__(
        self,
        field_policy: FieldPolicy,
        *,
        events: Optional[EventDispatcher] = None,
        registry: Optional[MorphRegistry] = None,
        resolver: Optional[RequestorResolver] = None,
    ):
        self.field_policy = field_policy
        self.events = events or EventDispatcher()
        self.registry = registry or get_registry()
        self.resolver = resolver or RequestorResolver(self.registry)
        self._targets: List[Any] = []

    @classmethod
    def from_config(cls, config: ApprovalConfig, **kwargs) -> "ApprovalGate":
        """Resolve field sets for every registered governed model."""
        registry = kwargs.get("registry") or get_registry()
        policy = FieldPolicy.resolve(config, registry.columns_by_type(MustBeApproved))
        return cls(policy, **kwargs)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "ApprovalGate":
        """Set up logging, then build a gate from the configured YAML file, if any."""
        settings = settings or get_settings()
        setup_from_settings(settings)
        if settings.approval_config_path:
            config = load_typed_config(settings.approval_config_path)
        else:
            config = ApprovalConfig()
        return cls.from_config(config, **kwargs)

    def install(self, target: Any) -> None:
        """Listen on a ``Session``, ``sessionmaker`` or the ``Session`` class."""
        event.listen(target, "before_flush", self._before_flush)
        event.listen(target, "after_flush", self._after_flush)
        self._targets.append(target)

    def uninstall(self) -> None:
        for target in self._targets:
            event.remove(target, "before_flush", self._before_flush)
            event.remove(target, "after_flush", self._after_flush)
        self._targets.clear()

    def service(self, session: Session) -> ApprovalService:
        """An ``ApprovalService`` sharing this gate's events and registry."""
        return ApprovalService(
            session,
            events=self.events,
            registry=self.registry,
            resolver=self.resolver,
        )

    def _governed(self, obj: Any) -> bool:
        return isinstance(obj, MustBeApproved) and self.registry.is_registered(obj)

    def _before_flush(self, session: Session, flush_context, instances) -> None:
        session.info[CREATED_KEY] = []
        session_bypass = session.info.get(BYPASS_KEY, False)
        context = _FlushContext(self, session)

        for handler, objects in (
            (self._intercept_create, list(session.new)),
            (self._intercept_update, list(session.dirty)),
            (self._intercept_delete, list(session.deleted)),
        ):
            for obj in objects:
                if not self._governed(obj):
                    continue
                if session_bypass or is_bypassed(obj):
                    logger.debug(f"Approval bypassed for {type(obj).__name__}")
                    clear_bypass(obj)
                    continue
                handler(context, obj)

    def _after_flush(self, session: Session, flush_context) -> None:
        created = session.info.pop(CREATED_KEY, [])
        for approval, creator in created:
            self.events.dispatch(ApprovalCreated(approval=approval, user=creator))

    def _intercept_create(self, context: "_FlushContext", obj: Any) -> None:
        state = inspect(obj)
        model_type = self.registry.name_for(obj)
        fields = self.field_policy.approvable_fields(model_type)

        proposed = {
            key: state.dict[key]
            for key in self.registry.columns(type(obj))
            if key in state.dict
        }
        if not any(key in fields and value is not None for key, value in proposed.items()):
            return

        snapshot = Snapshot(
            original_data={key: None for key in proposed},
            new_data={key: to_snapshot_value(value) for key, value in proposed.items()},
        )
        identity = state.mapper.primary_key_from_instance(obj)
        approvable_id = str(identity[0]) if identity and identity[0] is not None else None

        context.session.expunge(obj)
        context.capture(model_type, Operation.CREATE, snapshot, approvable_id)

    def _intercept_update(self, context: "_FlushContext", obj: Any) -> None:
        state = inspect(obj)
        model_type = self.registry.name_for(obj)

        original: Dict[str, Any] = {}
        proposed: Dict[str, Any] = {}
        unloaded: List[str] = []
        for key in self.registry.columns(type(obj)):
            history = state.attrs[key].history
            if not history.has_changes():
                continue
            proposed[key] = history.added[0] if history.added else None
            if history.deleted:
                original[key] = history.deleted[0]
            else:
                unloaded.append(key)

        if not proposed:
            return
        if unloaded:
            original.update(self._load_committed(context.session, obj, unloaded))

        snapshot = take_snapshot(original, proposed, self.field_policy.approvable_fields(model_type))
        if snapshot.is_empty:
            return

        # keep approvable changes out of this flush
        for key in snapshot.new_data:
            set_committed_value(obj, key, original[key])

        if snapshot.passthrough:
            logger.debug(f"Writing {sorted(snapshot.passthrough)} of {model_type} without approval")
        context.capture(model_type, Operation.UPDATE, snapshot, self.registry.ref(obj).id)

    def _intercept_delete(self, context: "_FlushContext", obj: Any) -> None:
        model_type = self.registry.name_for(obj)
        original = {key: getattr(obj, key) for key in self.registry.columns(type(obj))}
        snapshot = Snapshot(
            original_data={key: to_snapshot_value(value) for key, value in original.items()},
            new_data={key: None for key in original},
        )
        approvable_id = self.registry.ref(obj).id

        # undo the pending delete
        context.session.expunge(obj)
        context.session.add(obj)
        context.capture(model_type, Operation.DELETE, snapshot, approvable_id)

    def _load_committed(self, session: Session, obj: Any, keys: List[str]) -> Dict[str, Any]:
        """Read the stored values of attributes that were replaced unloaded."""
        mapper = inspect(obj).mapper
        columns = [mapper.column_attrs[key].columns[0] for key in keys]
        identity = mapper.primary_key_from_instance(obj)
        row = session.execute(
            select(*columns).where(mapper.primary_key[0] == identity[0])
        ).one()
        return dict(zip(keys, row))


class _FlushContext:
    """Per-flush state: the lazily resolved creator and the service."""

    _unresolved = object()

    def __init__(self, gate: ApprovalGate, session: Session):
        self.gate = gate
        self.session = session
        self._creator: Any = self._unresolved
        self._service: Optional[ApprovalService] = None

    @property
    def creator(self) -> Optional[MorphRef]:
        if self._creator is self._unresolved:
            self._creator = self.gate.resolver.current_actor(self.session)
        return self._creator

    def capture(
        self,
        model_type: str,
        operation: Operation,
        snapshot: Snapshot,
        approvable_id: Optional[str],
    ) -> Optional[Approval]:
        """Create the pending approval unless an identical one is waiting."""
        if approvable_id is not None and self._has_identical_pending(
            model_type, approvable_id, operation, snapshot
        ):
            logger.debug(f"Identical pending {operation.value} exists for {model_type}#{approvable_id}")
            return None

        if self._service is None:
            self._service = self.gate.service(self.session)
        approval = self._service.create_pending(
            model_type,
            operation,
            snapshot,
            approvable_id=approvable_id,
            creator=self.creator,
        )
        self.session.info[CREATED_KEY].append((approval, self.creator))
        return approval

    def _has_identical_pending(
        self, model_type: str, approvable_id: str, operation: Operation, snapshot: Snapshot
    ) -> bool:
        pending = self.session.scalars(
            select(Approval).where(
                Approval.approvable_type == model_type,
                Approval.approvable_id == approvable_id,
                Approval.operation == operation.value,
                Approval.state == ApprovalState.PENDING.value,
            )
        )
        return any(approval.new_data == snapshot.new_data for approval in pending)
