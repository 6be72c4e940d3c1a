"""Error taxonomy for the table editing engine.

Every error is raised before any mutation of the working set, so a caller
catching one of these can rely on the store being unchanged. Messages are
written to be shown to the user as-is.
"""


class TableManagerError(Exception):
    """Base class for all engine errors."""


class ImmutableColumnError(TableManagerError):
    """An edit targeted a primary key column of an existing record."""

    def __init__(self, column_name: str) -> None:
        self.column_name = column_name
        super().__init__(f"Primary key column '{column_name}' cannot be edited")


class UniqueConstraintError(TableManagerError):
    """A write would leave two records sharing a value in a unique column."""

    def __init__(self, column_name: str, value: object) -> None:
        self.column_name = column_name
        self.value = value
        super().__init__(f"Another record already has the value {value!r} for unique column '{column_name}'")


class NoPrimaryKeyError(TableManagerError):
    """The operation needs an identity column and the table has none."""

    def __init__(self, table_name: str) -> None:
        self.table_name = table_name
        super().__init__(f"No primary key defined for table '{table_name}'")


class MalformedPatchError(TableManagerError, ValueError):
    """Bulk update data did not parse into a flat field to value mapping."""


class MalformedImportError(TableManagerError, ValueError):
    """Import data did not parse into a list of record objects."""


class InvalidTableNameError(TableManagerError, ValueError):
    """A table name was empty or whitespace."""


class DuplicateTableNameError(TableManagerError):
    """A table with the requested name already exists."""

    def __init__(self, table_name: str) -> None:
        self.table_name = table_name
        super().__init__(f"Table '{table_name}' already exists")


class DuplicateColumnError(TableManagerError):
    """A column with the requested name already exists in the table."""

    def __init__(self, table_name: str, column_name: str) -> None:
        self.table_name = table_name
        self.column_name = column_name
        super().__init__(f"Column '{column_name}' already exists in table '{table_name}'")


class TableNotFoundError(TableManagerError, LookupError):
    def __init__(self, table_name: str) -> None:
        self.table_name = table_name
        super().__init__(f"Table '{table_name}' not found")


class RecordNotFoundError(TableManagerError, LookupError):
    def __init__(self, table_name: str, record_key: str) -> None:
        self.table_name = table_name
        self.record_key = record_key
        super().__init__(f"Record '{record_key}' not found in table '{table_name}'")


class UnknownColumnError(TableManagerError, LookupError):
    def __init__(self, table_name: str, column_name: str) -> None:
        self.table_name = table_name
        self.column_name = column_name
        super().__init__(f"Table '{table_name}' has no column '{column_name}'")


class ConnectionNotFoundError(TableManagerError, LookupError):
    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        super().__init__(f"Unknown connection '{connection_id}'")


class EditSessionStateError(TableManagerError):
    """An edit operation was called in a state that does not allow it."""


class NoActiveTableError(TableManagerError):
    """A command needs an active table and none is selected."""

    def __init__(self) -> None:
        super().__init__("No table is selected")


class PersistenceError(TableManagerError):
    """The persistence collaborator failed to store a change."""


class DataSourceError(TableManagerError):
    """The data-access collaborator failed to list tables or records."""
