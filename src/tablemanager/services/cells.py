"""Cell display formatting and editor selection by column type."""

import re
from datetime import date, datetime, timezone
from typing import Any

from tablemanager.models.base import FrozenModel
from tablemanager.models.column import Column
from tablemanager.models.enums import EditorKind, InputMode

_NUMERIC_TOKENS = frozenset(
    {"INT", "INTEGER", "TINYINT", "SMALLINT", "MEDIUMINT", "BIGINT", "DECIMAL", "NUMERIC", "FLOAT", "DOUBLE", "REAL"}
)
_DATETIME_TOKENS = frozenset({"TIMESTAMP", "TIMESTAMPTZ", "DATETIME"})
_TOKEN = re.compile(r"[A-Z]+")


class CellEditor(FrozenModel):
    """How a cell should be edited in place."""

    kind: EditorKind
    input_mode: InputMode | None = None


def is_boolean_column(column: Column) -> bool:
    return "BOOL" in column.type_tag


def is_text_column(column: Column) -> bool:
    return "TEXT" in column.type_tag


def is_temporal_column(column: Column) -> bool:
    tokens = type_tokens(column)
    return "DATE" in tokens or bool(tokens & _DATETIME_TOKENS)


def type_tokens(column: Column) -> set[str]:
    """Split a type such as ``BIGINT UNSIGNED`` or ``decimal(10,2)`` into words."""
    return set(_TOKEN.findall(column.type_tag))


def input_mode_for(column: Column) -> InputMode:
    tokens = type_tokens(column)
    if tokens & _NUMERIC_TOKENS:
        return InputMode.NUMBER
    if tokens & _DATETIME_TOKENS:
        return InputMode.DATETIME
    if "DATE" in tokens:
        return InputMode.DATE
    return InputMode.TEXT


def editor_for(column: Column) -> CellEditor:
    """Pick the in-place editor for a column.

    Boolean columns get a toggle and never free text, TEXT-family columns a
    multi-line editor, and everything else a single-line input whose mode
    follows the column type.
    """
    if is_boolean_column(column):
        return CellEditor(kind=EditorKind.TOGGLE)
    if is_text_column(column):
        return CellEditor(kind=EditorKind.MULTI_LINE, input_mode=InputMode.TEXT)
    return CellEditor(kind=EditorKind.SINGLE_LINE, input_mode=input_mode_for(column))


def format_cell_value(value: Any, column: Column) -> str:
    """Render a cell value for display.

    Args:
        value: Raw cell value.
        column: Column the value belongs to.

    Returns:
        Empty string for null, "Yes"/"No" for booleans, a locale date or
        date-time string for DATE/TIMESTAMP columns, otherwise ``str(value)``.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if is_temporal_column(column):
        parsed = parse_temporal(value)
        if isinstance(parsed, datetime):
            return parsed.strftime("%x %X")
        if isinstance(parsed, date):
            return parsed.strftime("%x")
    return str(value)


def parse_temporal(value: Any) -> date | datetime | None:
    """Interpret a stored value as a date or date-time.

    Strings are read as ISO-8601, numbers as epoch milliseconds. Aware
    date-times are converted to local time. Returns None when the value
    cannot be interpreted.
    """
    if isinstance(value, datetime):
        return value.astimezone() if value.tzinfo else value
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).astimezone()
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed.astimezone() if parsed.tzinfo else parsed
    return None
