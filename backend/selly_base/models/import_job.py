from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, Index, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from selly_base.database import Base


class EntityType(str, enum.Enum):
    COMPANIES = "companies"
    CONTACTS = "contacts"
    ACTIVITIES = "activities"


class ImportStatus(str, enum.Enum):
    QUEUED = "queued"
    VALIDATING = "validating"
    VALIDATED = "validated"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        ImportStatus.COMPLETED,
        ImportStatus.COMPLETED_WITH_ERRORS,
        ImportStatus.FAILED,
        ImportStatus.CANCELLED,
    }
)


class ImportJob(Base):
    __tablename__ = "import_jobs"
    __table_args__ = (
        Index("idx_import_jobs_org_status", "organization_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    uploaded_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    filename: Mapped[str] = mapped_column(String(255))
    entity_type: Mapped[EntityType] = mapped_column(
        Enum(EntityType, name="import_entity_type_enum", create_constraint=False, values_callable=lambda e: [m.value for m in e]),
        default=EntityType.COMPANIES,
    )
    status: Mapped[ImportStatus] = mapped_column(
        Enum(ImportStatus, name="import_status_enum", create_constraint=False, values_callable=lambda e: [m.value for m in e]),
        default=ImportStatus.QUEUED,
    )
    total_records: Mapped[int] = mapped_column(Integer, default=0)
    processed_records: Mapped[int] = mapped_column(Integer, default=0)
    valid_records: Mapped[int] = mapped_column(Integer, default=0)
    error_records: Mapped[int] = mapped_column(Integer, default=0)
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    warnings: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    # "metadata" is reserved on declarative classes
    job_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
