"""Pydantic schemas for bulk import results and import sessions."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ImportRowError(BaseModel):
    """One normalized error message attributed to a source row (0 = general)."""
    model_config = ConfigDict(frozen=True)

    row: int
    field: str | None = None
    message: str


class ImportResult(BaseModel):
    """Outcome of a single dry-run or commit call. Never mutated."""
    model_config = ConfigDict(frozen=True)

    created_count: int = Field(default=0, ge=0)
    updated_count: int = Field(default=0, ge=0)
    validated_count: int | None = Field(default=None, ge=0)
    to_create: int | None = Field(default=None, ge=0)
    to_update: int | None = Field(default=None, ge=0)
    message: str | None = None
    errors: list[Any] = []
    dry_run: bool
    failed: bool = False
    row_errors: list[ImportRowError] = []
    field_errors: dict[str, list[str]] = {}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def error_count(self) -> int:
        return len(self.row_errors)

    @property
    def should_refresh(self) -> bool:
        """A commit that persisted something without a transport failure."""
        return (
            not self.dry_run
            and not self.failed
            and (self.created_count + self.updated_count) > 0
        )


class ImportFileOut(BaseModel):
    filename: str
    content_type: str
    size: int


class ImportSessionOut(BaseModel):
    """Snapshot of an import session for the console."""
    session_id: str
    entity: str
    state: str
    file: ImportFileOut | None = None
    result: ImportResult | None = None
    in_flight: bool = False
    updated_at: datetime


class ImportSessionCreated(BaseModel):
    session_id: str
    entity: str
    state: str
