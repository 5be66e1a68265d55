"""Change snapshots.

Diffs a record's persisted values against its proposed values and keeps
the approvable part of the change as two equally keyed mappings.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Iterable, Mapping, Optional

from pydantic import TypeAdapter
from pydantic_core import to_jsonable_python
from sqlalchemy import JSON, inspect

from approvable.core.exceptions import SnapshotMismatch


@dataclass
class Snapshot:
    """Captured original vs. proposed values of one change."""

    original_data: Dict[str, Any] = field(default_factory=dict)
    new_data: Dict[str, Any] = field(default_factory=dict)
    passthrough: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """True when no approvable field changed."""
        return not self.new_data

    @property
    def fields(self) -> list[str]:
        return list(self.new_data)


def verify_snapshot(original_data: Mapping[str, Any], new_data: Mapping[str, Any]) -> None:
    """Raise ``SnapshotMismatch`` unless both mappings cover the same fields."""
    if set(original_data) != set(new_data):
        raise SnapshotMismatch(original_data.keys(), new_data.keys())


def to_snapshot_value(value: Any) -> Any:
    """JSON-compatible form of a column value."""
    return to_jsonable_python(value)


@lru_cache(maxsize=None)
def _adapter(python_type: type) -> TypeAdapter:
    return TypeAdapter(python_type)


def from_snapshot_value(model: type, key: str, value: Any) -> Any:
    """Convert a stored snapshot value back to the column's Python type."""
    if value is None:
        return None

    column = inspect(model).column_attrs[key].columns[0]
    if isinstance(column.type, JSON):
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if isinstance(value, python_type):
        return value
    return _adapter(python_type).validate_python(value)


def take_snapshot(
    original: Mapping[str, Any],
    proposed: Mapping[str, Any],
    approvable_fields: Optional[Iterable[str]] = None,
) -> Snapshot:
    """
    Compute the snapshot of a proposed change.

    Args:
        original: Persisted values, keyed by field name
        proposed: Proposed values, keyed by field name
        approvable_fields: Fields requiring approval (``None`` means all)

    Returns:
        Snapshot holding changed approvable fields in proposal order, and
        the changed fields that bypass approval in ``passthrough``

    Raises:
        SnapshotMismatch: If a proposed field has no original value
    """
    allowed = None if approvable_fields is None else set(approvable_fields)
    snapshot = Snapshot()

    for key, new_value in proposed.items():
        if key not in original:
            raise SnapshotMismatch(original.keys(), proposed.keys())
        old_value = original[key]
        if old_value == new_value:
            continue

        if allowed is None or key in allowed:
            snapshot.original_data[key] = to_snapshot_value(old_value)
            snapshot.new_data[key] = to_snapshot_value(new_value)
        else:
            snapshot.passthrough[key] = new_value

    verify_snapshot(snapshot.original_data, snapshot.new_data)
    return snapshot
