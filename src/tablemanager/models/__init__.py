from tablemanager.models.column import Column
from tablemanager.models.commands import (
    AddColumn,
    CancelEdit,
    Command,
    CommitEdit,
    CreateRecord,
    CreateTable,
    DeleteRecord,
    DeleteTable,
    RefreshRecords,
    RemoveColumn,
    RunBulkDelete,
    RunBulkUpdate,
    RunExport,
    RunImport,
    SelectTable,
    SetPage,
    SetSearchTerm,
    StartEdit,
    ToggleAllOnPage,
    ToggleSelection,
    UpdateColumn,
    UpdateDraft,
    UpdateRecord,
)
from tablemanager.models.config import EngineConfig
from tablemanager.models.editing import EditingCell
from tablemanager.models.enums import BulkOperation, EditorKind, EditState, InputMode, TableKind
from tablemanager.models.results import BulkOperationResult, ExportArtifact, Page
from tablemanager.models.table import Record, RecordView, Table

__all__ = [
    "AddColumn",
    "BulkOperation",
    "BulkOperationResult",
    "CancelEdit",
    "Column",
    "Command",
    "CommitEdit",
    "CreateRecord",
    "CreateTable",
    "DeleteRecord",
    "DeleteTable",
    "EditState",
    "EditingCell",
    "EditorKind",
    "EngineConfig",
    "ExportArtifact",
    "InputMode",
    "Page",
    "Record",
    "RecordView",
    "RefreshRecords",
    "RemoveColumn",
    "RunBulkDelete",
    "RunBulkUpdate",
    "RunExport",
    "RunImport",
    "SelectTable",
    "SetPage",
    "SetSearchTerm",
    "StartEdit",
    "Table",
    "TableKind",
    "ToggleAllOnPage",
    "ToggleSelection",
    "UpdateColumn",
    "UpdateDraft",
    "UpdateRecord",
]
