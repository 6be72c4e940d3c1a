"""Commands accepted by :meth:`TableManager.dispatch`.

Each user action in the table view maps onto one command. Commands that
target a table default to the active table when ``table_name`` is omitted.
"""

from datetime import date
from typing import Any

from pydantic import Field

from tablemanager.models.base import FrozenModel
from tablemanager.models.column import Column
from tablemanager.models.enums import TableKind


class Command(FrozenModel):
    pass


class SelectTable(Command):
    table_name: str | None


class CreateTable(Command):
    name: str
    columns: list[Column] = Field(default_factory=list)
    kind: TableKind = TableKind.TABLE


class DeleteTable(Command):
    table_name: str


class AddColumn(Command):
    column: Column
    table_name: str | None = None


class UpdateColumn(Command):
    column_name: str
    changes: dict[str, Any]
    table_name: str | None = None


class RemoveColumn(Command):
    column_name: str
    table_name: str | None = None


class CreateRecord(Command):
    fields: dict[str, Any] = Field(default_factory=dict)


class UpdateRecord(Command):
    record_key: str
    fields: dict[str, Any]


class DeleteRecord(Command):
    record_key: str


class StartEdit(Command):
    record_key: str
    column_name: str
    current_value: Any = None


class UpdateDraft(Command):
    value: Any = None


class CommitEdit(Command):
    pass


class CancelEdit(Command):
    pass


class ToggleSelection(Command):
    record_key: str


class ToggleAllOnPage(Command):
    pass


class SetSearchTerm(Command):
    term: str = ""


class SetPage(Command):
    page: int


class RunBulkDelete(Command):
    pass


class RunBulkUpdate(Command):
    patch: Any


class RunImport(Command):
    payload: Any


class RunExport(Command):
    export_date: date | None = None


class RefreshRecords(Command):
    pass
