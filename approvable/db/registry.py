"""Registry for polymorphic model references.

Approvals point at their target record and at the actors involved through
``(type, id)`` pairs. The registry maps each type discriminator to the mapped
class that loads it.
"""

from typing import Any, Dict, List, NamedTuple, Optional, Type

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from approvable.common.logger import get_logger
from approvable.core.exceptions import UnknownMorphType

logger = get_logger(__name__)


class MorphRef(NamedTuple):
    """A ``(type discriminator, id)`` reference to a mapped record."""

    type: str
    id: str


class MorphRegistry:
    """Registry for morph types.

    Maps discriminators to mapped classes and back.
    """

    _instance: Optional["MorphRegistry"] = None
    _classes: Dict[str, type]
    _names: Dict[type, str]

    def __new__(cls) -> "MorphRegistry":
        """Singleton pattern for global registry."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._classes = {}
            cls._instance._names = {}
        return cls._instance

    def register(self, model: type, name: Optional[str] = None) -> str:
        """Register a mapped class.

        Args:
            model: Mapped class
            name: Discriminator, defaults to the table name

        Returns:
            The discriminator used
        """
        name = name or model.__tablename__
        if name in self._classes and self._classes[name] is not model:
            logger.warning(f"Overwriting existing morph type: {name}")
            self._names.pop(self._classes[name], None)

        self._classes[name] = model
        self._names[model] = name
        logger.debug(f"Registered morph type: {name} -> {model.__name__}")
        return name

    def unregister(self, name: str) -> None:
        model = self._classes.pop(name, None)
        if model is not None:
            self._names.pop(model, None)
            logger.debug(f"Unregistered morph type: {name}")

    def name_for(self, obj_or_class: Any) -> str:
        """Discriminator of a mapped instance or class."""
        model = obj_or_class if isinstance(obj_or_class, type) else type(obj_or_class)
        for klass in model.__mro__:
            if klass in self._names:
                return self._names[klass]
        raise UnknownMorphType(model.__name__, f"Class {model.__name__} is not registered")

    def class_for(self, name: str) -> type:
        try:
            return self._classes[name]
        except KeyError:
            raise UnknownMorphType(name) from None

    def is_registered(self, obj_or_class: Any) -> bool:
        model = obj_or_class if isinstance(obj_or_class, type) else type(obj_or_class)
        return any(klass in self._names for klass in model.__mro__)

    def ref(self, obj: Any) -> Optional[MorphRef]:
        """Build a reference to a persisted record.

        ``None`` and existing references are returned unchanged.

        Raises:
            ValueError: If the record has no primary key yet
        """
        if obj is None or isinstance(obj, MorphRef):
            return obj

        identity = inspect(obj).mapper.primary_key_from_instance(obj)
        if not identity or identity[0] is None:
            raise ValueError(f"Cannot reference unsaved {type(obj).__name__}")
        return MorphRef(self.name_for(obj), str(identity[0]))

    def coerce_id(self, model: type, raw_id: str) -> Any:
        """Convert a stored string id back to the primary key's Python type."""
        column = inspect(model).primary_key[0]
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            return raw_id
        if isinstance(raw_id, python_type):
            return raw_id
        return python_type(raw_id)

    def load(self, session: Session, ref: Optional[MorphRef]) -> Optional[Any]:
        """Load the record a reference points at, or ``None``."""
        if ref is None or ref.id is None:
            return None
        model = self.class_for(ref.type)
        return session.get(model, self.coerce_id(model, ref.id))

    def columns(self, model: type) -> List[str]:
        """Attribute names of the non primary key columns of a model."""
        mapper = inspect(model)
        primary = set(mapper.primary_key)
        return [
            prop.key
            for prop in mapper.column_attrs
            if not any(column in primary for column in prop.columns)
        ]

    def columns_by_type(self, base: Optional[Type] = None) -> Dict[str, List[str]]:
        """Column names of every registered class, optionally a subclass of ``base``."""
        return {
            name: self.columns(model)
            for name, model in self._classes.items()
            if base is None or issubclass(model, base)
        }

    def list_types(self) -> List[str]:
        return list(self._classes)

    def clear(self) -> None:
        """Clear all registered types (mainly for testing)."""
        self._classes.clear()
        self._names.clear()


# Global registry instance
_registry = MorphRegistry()


def get_registry() -> MorphRegistry:
    """Get the global morph registry."""
    return _registry


def register_model(model: type, name: Optional[str] = None) -> type:
    """Register a mapped class with the global registry.

    Usable as a class decorator.
    """
    _registry.register(model, name)
    return model
