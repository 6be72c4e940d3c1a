"""Record identity resolution.

Selection, inline editing, and bulk operations all match records by the
string returned from :meth:`RecordKeyResolver.resolve_key`. They must share
one resolver so they agree on identity within an operation.
"""

import json
from typing import Any, Iterable, Mapping, Sequence

from tablemanager.models.column import Column


class RecordKeyResolver:
    """Derives a stable identity string for a record.

    Tables with primary key columns use the key values in declaration order,
    joined by ``separator``. Tables without one fall back to a canonical JSON
    serialization of the whole record, so records with identical content
    share a key. That collapse is a known limitation of keyless tables.
    """

    DEFAULT_SEPARATOR = "__"

    def __init__(self, separator: str = DEFAULT_SEPARATOR) -> None:
        if not separator:
            raise ValueError("separator cannot be empty")
        self._separator = separator

    @property
    def separator(self) -> str:
        return self._separator

    def resolve_key(self, record: Mapping[str, Any], columns: Sequence[Column]) -> str:
        """Return the identity string for ``record``.

        Args:
            record: The record to identify.
            columns: Column definitions of the record's table.

        Returns:
            Joined primary key values, or the canonical record serialization
            when the table has no primary key.
        """
        key_columns = primary_key_columns(columns)
        if not key_columns:
            return canonical_json(record)
        return self._separator.join(_key_part(record.get(column.name)) for column in key_columns)

    def resolve_keys(self, records: Iterable[Mapping[str, Any]], columns: Sequence[Column]) -> list[str]:
        return [self.resolve_key(record, columns) for record in records]


def primary_key_columns(columns: Sequence[Column]) -> list[Column]:
    return [column for column in columns if column.primary_key]


def key_fields(record: Mapping[str, Any], columns: Sequence[Column]) -> dict[str, Any]:
    """Return the primary key column values of ``record``.

    Used to address a record in the persistence layer, which expects the
    key as a column to value mapping rather than the joined key string.
    """
    return {column.name: record.get(column.name) for column in primary_key_columns(columns)}


def canonical_json(record: Mapping[str, Any]) -> str:
    return json.dumps(record, sort_keys=True, separators=(",", ":"), default=str)


def _key_part(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
