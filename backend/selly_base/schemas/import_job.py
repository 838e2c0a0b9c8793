from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from selly_base.models.import_job import EntityType, ImportStatus


class ValidationFinding(BaseModel):
    row: int
    column: str
    value: Any | None = None
    message: str
    severity: Literal["error", "warning"]


class ImportJobResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID | None
    uploaded_by: uuid.UUID | None
    filename: str
    entity_type: EntityType
    status: ImportStatus
    total_records: int
    processed_records: int
    valid_records: int
    error_records: int
    errors: list[ValidationFinding]
    warnings: list[ValidationFinding]
    metadata: dict[str, Any]
    task_id: str | None
    created_at: datetime
    updated_at: datetime | None
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class CreateImportJobRequest(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    organization_id: uuid.UUID | None = None
    uploaded_by: uuid.UUID | None = None
    entity_type: EntityType = EntityType.COMPANIES


class ExecuteImportRequest(BaseModel):
    # 0-based positions in the parsed rows; None or [] means every row
    row_indices: list[int] | None = None
    skip_errors: bool = True


class ExecuteImportResponse(BaseModel):
    id: uuid.UUID
    status: ImportStatus
    message: str


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class ImportJobListResponse(BaseModel):
    data: list[ImportJobResponse]
    pagination: Pagination


class ValidationSummary(BaseModel):
    id: uuid.UUID
    status: ImportStatus
    total_records: int
    valid_records: int
    error_records: int
    warning_count: int
    message: str
    errors: list[ValidationFinding]
    warnings: list[ValidationFinding]


class PreviewRow(BaseModel):
    row_index: int
    data: dict[str, Any]
    errors: list[ValidationFinding]
    warnings: list[ValidationFinding]
    is_valid: bool


class ImportPreviewResponse(BaseModel):
    rows: list[PreviewRow]
    total_rows: int
    valid_rows: int
    invalid_rows: int
    columns: list[str]
    page: int
    limit: int


class TemplateColumnResponse(BaseModel):
    field: str
    label: str
    required: bool
    example: str
    description: str | None

    model_config = {"from_attributes": True}
