from typing import Any, ClassVar, Mapping

from pydantic import Field, field_validator

from tablemanager.models.base import FrozenModel, ensure_non_empty_text


class Column(FrozenModel):
    """Definition of one column of a table.

    Field names are snake_case; the camelCase names used by the data-access
    layer (``primaryKey``, ``foreignKey``, ``defaultValue``) are accepted as
    aliases.
    """

    DEFAULT_TYPE: ClassVar[str] = "TEXT"

    name: str
    type: str = Field(default=DEFAULT_TYPE)
    nullable: bool = True
    primary_key: bool = Field(default=False, alias="primaryKey")
    unique: bool = False
    foreign_key: bool = Field(default=False, alias="foreignKey")
    default_value: str | None = Field(default=None, alias="defaultValue")

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return ensure_non_empty_text(value, "name")

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        if value is None or (isinstance(value, str) and not value.strip()):
            return cls.DEFAULT_TYPE
        return str(value).strip()

    @field_validator("nullable", "primary_key", "unique", "foreign_key", mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any) -> bool:
        return bool(value)

    @field_validator("default_value", mode="before")
    @classmethod
    def _coerce_default(cls, value: Any) -> str | None:
        if value is None:
            return None
        return str(value)

    @property
    def type_tag(self) -> str:
        """Upper-cased logical type used for type-family checks."""
        return self.type.upper()

    @classmethod
    def from_remote(cls, payload: Any) -> "Column":
        """Build a Column from the loose shapes returned by database drivers.

        Drivers disagree on naming: a bare string is just a column name, SQL
        drivers send snake_case flags, and some send the default as a
        ``{"Valid": bool, "String": str}`` nullable-string object.
        """
        if isinstance(payload, str):
            return cls(name=payload)
        if not isinstance(payload, Mapping):
            raise TypeError("column payload must be a string or a mapping")

        return cls(
            name=payload.get("name"),
            type=payload.get("type") or payload.get("data_type") or cls.DEFAULT_TYPE,
            nullable=_first_present(payload, "nullable", default=True),
            primaryKey=_first_present(payload, "primaryKey", "primary_key", default=False),
            unique=_first_present(payload, "uniqueKey", "unique_key", "unique", default=False),
            foreignKey=_first_present(payload, "foreignKey", "foreign_key", default=False),
            defaultValue=_remote_default(payload),
        )


def _first_present(payload: Mapping[str, Any], *keys: str, default: Any) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return default


def _remote_default(payload: Mapping[str, Any]) -> Any:
    for key in ("defaultValue", "default"):
        if payload.get(key) is not None:
            return payload[key]
    raw = payload.get("Default")
    if isinstance(raw, Mapping):
        return raw.get("String") if raw.get("Valid") else None
    return raw
