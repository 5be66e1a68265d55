"""Approval lifecycle events.

Handlers subscribe to an event class (or ``ApprovalEvent`` for all of them)
and are called synchronously when the event is dispatched. A failing
handler is logged and does not fail the operation that fired the event.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Type

from approvable.common.logger import get_logger
from approvable.db.models.approval import Approval
from approvable.db.registry import MorphRef

logger = get_logger(__name__)


@dataclass(frozen=True)
class ApprovalEvent:
    """Base class for approval events."""

    approval: Approval
    user: Optional[MorphRef] = None


@dataclass(frozen=True)
class ApprovalCreated(ApprovalEvent):
    """A write was intercepted and is now pending."""


@dataclass(frozen=True)
class ModelApproved(ApprovalEvent):
    """A pending change was approved and applied."""


@dataclass(frozen=True)
class ModelRejected(ApprovalEvent):
    """A pending change was rejected and discarded."""


@dataclass(frozen=True)
class ModelRolledBack(ApprovalEvent):
    """An approved change was reverted on its record."""


Handler = Callable[[ApprovalEvent], None]


class EventDispatcher:
    """In-process subscriber list for approval events."""

    def __init__(self):
        self._handlers: Dict[Type[ApprovalEvent], List[Handler]] = {}

    def subscribe(self, event_type: Type[ApprovalEvent], handler: Handler) -> None:
        """
        Register a handler for an event type.

        Args:
            event_type: Event class; subclasses are delivered too
            handler: Function called with the event
        """
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: Type[ApprovalEvent], handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def listens_for(self, event_type: Type[ApprovalEvent]) -> Callable[[Handler], Handler]:
        """Decorator form of ``subscribe``."""
        def decorator(handler: Handler) -> Handler:
            self.subscribe(event_type, handler)
            return handler
        return decorator

    def dispatch(self, event: ApprovalEvent) -> None:
        """Deliver an event to every matching handler."""
        logger.debug(f"Dispatching {type(event).__name__} for approval {event.approval.id}")
        for event_type, handlers in list(self._handlers.items()):
            if not isinstance(event, event_type):
                continue
            for handler in list(handlers):
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        f"Handler {getattr(handler, '__name__', handler)!r} failed for {type(event).__name__}"
                    )

    def clear(self) -> None:
        self._handlers.clear()
