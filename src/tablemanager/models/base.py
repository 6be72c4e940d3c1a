from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict


class FrozenModel(BaseModel):
    """Base class for immutable value objects."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


def ensure_non_empty_text(value: str, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    if not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value


def ensure_record_dict(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    raise TypeError("record must be a mapping of column name to value")


def is_scalar(value: Any) -> bool:
    """Return True for values a single table cell can hold."""
    return value is None or isinstance(value, (str, int, float, bool))
