from typing import Any, Iterator, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tablemanager.errors import UnknownColumnError
from tablemanager.models.base import ensure_non_empty_text, ensure_record_dict
from tablemanager.models.column import Column
from tablemanager.models.enums import TableKind

Record = dict[str, Any]


class Table(BaseModel):
    """A table held in the working set, with its columns and records.

    Unlike the value objects in this package a Table is mutable: the store
    replaces its ``records`` and ``columns`` lists as edits are applied.
    ``row_count`` is kept equal to ``len(records)`` by every mutation path;
    a table listed remotely but not yet loaded may carry the remote count.
    """

    name: str
    kind: TableKind = Field(default=TableKind.TABLE, alias="type")
    columns: list[Column] = Field(default_factory=list)
    records: list[Record] = Field(default_factory=list)
    row_count: int = Field(default=0, ge=0, alias="rowCount")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return ensure_non_empty_text(value, "name")

    @field_validator("records", mode="before")
    @classmethod
    def _normalize_records(cls, value: Any) -> list[Record]:
        if value is None:
            return []
        return [ensure_record_dict(item) for item in value]

    @model_validator(mode="after")
    def _validate_column_names(self) -> "Table":
        names = [column.name for column in self.columns]
        if len(names) != len(set(names)):
            raise ValueError("column names must be unique within a table")
        if self.records:
            self.row_count = len(self.records)
        return self

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    @property
    def primary_key_columns(self) -> list[Column]:
        return [column for column in self.columns if column.primary_key]

    @property
    def has_primary_key(self) -> bool:
        return any(column.primary_key for column in self.columns)

    def column(self, name: str) -> Column | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def require_column(self, name: str) -> Column:
        column = self.column(name)
        if column is None:
            raise UnknownColumnError(self.name, name)
        return column

    def refresh_row_count(self) -> int:
        self.row_count = len(self.records)
        return self.row_count

    def view(self, record: Mapping[str, Any]) -> "RecordView":
        return RecordView(record, self)


class RecordView:
    """Schema-checked read access to a record through its table's columns.

    Declared columns missing from the record read as ``None``; names that are
    not declared columns raise :class:`UnknownColumnError`.
    """

    __slots__ = ("_record", "_table")

    def __init__(self, record: Mapping[str, Any], table: Table) -> None:
        self._record = record
        self._table = table

    def __getitem__(self, column_name: str) -> Any:
        self._table.require_column(column_name)
        return self._record.get(column_name)

    def __iter__(self) -> Iterator[str]:
        return iter(self._table.column_names)

    def __len__(self) -> int:
        return len(self._table.columns)

    def get(self, column_name: str, default: Any = None) -> Any:
        value = self[column_name]
        return default if value is None else value

    def items(self) -> list[tuple[str, Any]]:
        return [(name, self._record.get(name)) for name in self._table.column_names]

    def as_dict(self) -> Record:
        """Return the record restricted to declared columns, absent ones as None."""
        return dict(self.items())

    def __repr__(self) -> str:
        return f"RecordView(table={self._table.name!r}, values={self.as_dict()!r})"
