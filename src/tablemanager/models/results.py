from pathlib import Path
from typing import Any

from pydantic import Field, model_validator

from tablemanager.models.base import FrozenModel
from tablemanager.models.enums import BulkOperation


class Page(FrozenModel):
    """One page of the filtered working set."""

    records: list[dict[str, Any]] = Field(default_factory=list)
    page: int
    page_size: int = Field(gt=0)
    total_records: int = Field(ge=0)
    total_pages: int = Field(ge=0)

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


class BulkOperationResult(FrozenModel):
    """Outcome of a completed bulk operation."""

    operation: BulkOperation
    table_name: str
    affected_count: int = Field(ge=0)
    row_count: int = Field(ge=0)


class ExportArtifact(FrozenModel):
    """A downloadable export of selected records."""

    filename: str
    content: str
    media_type: str = "application/json"

    @model_validator(mode="after")
    def _validate_filename(self) -> "ExportArtifact":
        if "/" in self.filename or "\\" in self.filename:
            raise ValueError("filename must not contain path separators")
        return self

    def write_to(self, directory: Path) -> Path:
        """Write the artifact into ``directory`` and return the file path."""
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / self.filename
        path.write_text(self.content, encoding="utf-8")
        return path
