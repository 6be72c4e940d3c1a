from pydantic import Field, ValidationInfo, field_validator

from tablemanager.models.base import FrozenModel, ensure_non_empty_text


class EngineConfig(FrozenModel):
    """Tunables shared by the engine's services.

    ``progress_delays`` are the pauses taken after the 30% and 80% progress
    marks of a bulk operation when no persistence collaborator is wired.
    """

    page_size: int = Field(default=10, gt=0)
    key_separator: str = "__"
    id_field: str = "id"
    created_at_field: str = "created_at"
    progress_delays: tuple[float, float] = (0.3, 0.2)
    enforce_unique_on_import: bool = False

    @field_validator("key_separator", "id_field", "created_at_field")
    @classmethod
    def _ensure_non_empty(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value")

    @field_validator("progress_delays")
    @classmethod
    def _validate_delays(cls, value: tuple[float, float]) -> tuple[float, float]:
        if any(delay < 0 for delay in value):
            raise ValueError("progress delays cannot be negative")
        return value
