"""Unique and identity constraint checks shared by the mutating services."""

from typing import Any, Collection, Mapping

from tablemanager.errors import ImmutableColumnError, UniqueConstraintError
from tablemanager.models.table import Table
from tablemanager.services.keys import RecordKeyResolver


def values_equal(left: Any, right: Any) -> bool:
    """Compare two cell values without letting booleans equal 0 or 1."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


def ensure_unique_value(
    table: Table,
    column_name: str,
    value: Any,
    resolver: RecordKeyResolver,
    exclude_keys: Collection[str] = (),
) -> None:
    """Reject ``value`` if another record already holds it in a unique column.

    Null values never collide, and columns without the unique flag are not
    checked.

    Args:
        table: Table whose records are searched.
        column_name: Column being written.
        value: Candidate value.
        resolver: Key resolver used to skip the records in ``exclude_keys``.
        exclude_keys: Keys of the records being written, which may already
            hold the value.

    Raises:
        UniqueConstraintError: If a different record holds ``value``.
    """
    column = table.column(column_name)
    if column is None or not column.unique or value is None:
        return
    for record in table.records:
        if exclude_keys and resolver.resolve_key(record, table.columns) in exclude_keys:
            continue
        if values_equal(record.get(column_name), value):
            raise UniqueConstraintError(column_name, value)


def ensure_unique_fields(
    table: Table,
    fields: Mapping[str, Any],
    resolver: RecordKeyResolver,
    exclude_keys: Collection[str] = (),
) -> None:
    for column_name, value in fields.items():
        ensure_unique_value(table, column_name, value, resolver, exclude_keys)


def ensure_unique_across(table: Table, records: list[Mapping[str, Any]]) -> None:
    """Reject a record list holding the same non-null value twice in a unique column."""
    for column in table.columns:
        if not column.unique:
            continue
        seen: list[Any] = []
        for record in records:
            value = record.get(column.name)
            if value is None:
                continue
            if any(values_equal(value, other) for other in seen):
                raise UniqueConstraintError(column.name, value)
            seen.append(value)


def ensure_primary_key_unchanged(table: Table, record: Mapping[str, Any], fields: Mapping[str, Any]) -> None:
    """Reject ``fields`` if they change a primary key value of ``record``.

    Raises:
        ImmutableColumnError: For the first primary key column whose value
            would change.
    """
    for column in table.primary_key_columns:
        if column.name in fields and not values_equal(fields[column.name], record.get(column.name)):
            raise ImmutableColumnError(column.name)
