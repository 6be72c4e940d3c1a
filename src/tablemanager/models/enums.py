from enum import StrEnum


class TableKind(StrEnum):
    TABLE = "table"
    VIEW = "view"
    COLLECTION = "collection"


class EditState(StrEnum):
    IDLE = "idle"
    EDITING = "editing"


class EditorKind(StrEnum):
    TOGGLE = "toggle"
    MULTI_LINE = "multi_line"
    SINGLE_LINE = "single_line"


class InputMode(StrEnum):
    NUMBER = "number"
    DATE = "date"
    DATETIME = "datetime-local"
    TEXT = "text"


class BulkOperation(StrEnum):
    DELETE = "delete"
    UPDATE = "update"
    IMPORT = "import"
    EXPORT = "export"
