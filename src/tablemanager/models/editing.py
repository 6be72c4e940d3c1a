from typing import Any

from pydantic import field_validator

from tablemanager.models.base import FrozenModel, ensure_non_empty_text


class EditingCell(FrozenModel):
    """The single cell currently being edited in place.

    ``original_value`` is captured when editing starts and never changes, so
    the draft in ``value`` can always be rolled back.
    """

    record_key: str
    column_name: str
    value: Any = None
    original_value: Any = None

    @field_validator("column_name")
    @classmethod
    def _validate_column_name(cls, value: str) -> str:
        return ensure_non_empty_text(value, "column_name")

    @property
    def is_dirty(self) -> bool:
        return self.value != self.original_value

    def with_value(self, value: Any) -> "EditingCell":
        return self.model_copy(update={"value": value})
