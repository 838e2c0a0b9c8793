from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from selly_base.models.import_job import EntityType, ImportStatus


@dataclass
class ImportJobRecord:
    id: uuid.UUID
    filename: str
    entity_type: EntityType = EntityType.COMPANIES
    status: ImportStatus = ImportStatus.QUEUED
    organization_id: uuid.UUID | None = None
    uploaded_by: uuid.UUID | None = None
    total_records: int = 0
    processed_records: int = 0
    valid_records: int = 0
    error_records: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    task_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None
    completed_at: datetime | None = None


# Fields a backend may change after creation
MUTABLE_FIELDS = frozenset(
    {
        "total_records",
        "processed_records",
        "valid_records",
        "error_records",
        "errors",
        "warnings",
        "metadata",
        "task_id",
        "completed_at",
    }
)


def check_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update import job fields: {', '.join(sorted(unknown))}")


class DataBackend(ABC):
    """Storage for import jobs, their uploaded files and the rows they import.

    One backend is chosen at startup and shared by every request. Status is
    only ever changed through ``transition``, which is atomic with respect to
    the job's current status.
    """

    name: str = ""

    @abstractmethod
    async def create_job(self, record: ImportJobRecord) -> ImportJobRecord:
        """Persist a new job and return it as stored."""

    @abstractmethod
    async def get_job(
        self, job_id: uuid.UUID, organization_id: uuid.UUID | None = None
    ) -> ImportJobRecord | None:
        """Return the job, scoped to the tenant when ``organization_id`` is given."""

    @abstractmethod
    async def list_jobs(
        self,
        *,
        status: ImportStatus | None = None,
        organization_id: uuid.UUID | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[ImportJobRecord], int]:
        """Return one page of jobs, newest first, and the total number of matches."""

    @abstractmethod
    async def update_job(self, job_id: uuid.UUID, **changes: Any) -> ImportJobRecord | None:
        """Change non-status fields; returns None if the job does not exist."""

    @abstractmethod
    async def transition(
        self,
        job_id: uuid.UUID,
        allowed_from: Collection[ImportStatus],
        to_status: ImportStatus,
        **changes: Any,
    ) -> ImportJobRecord | None:
        """Move the job to ``to_status`` only if its status is in ``allowed_from``.

        Returns the updated job, or None when the job is missing or its status
        did not match.
        """

    @abstractmethod
    async def save_file(self, job_id: uuid.UUID, content: bytes) -> None: ...

    @abstractmethod
    async def load_file(self, job_id: uuid.UUID) -> bytes | None: ...

    @abstractmethod
    async def discard_file(self, job_id: uuid.UUID) -> None: ...

    @abstractmethod
    async def complete_import(
        self,
        job_id: uuid.UUID,
        entity_type: EntityType,
        entities: list[dict[str, Any]],
        *,
        to_status: ImportStatus,
        **changes: Any,
    ) -> ImportJobRecord | None:
        """Store mapped rows and finish a processing job in one transaction.

        Rows land in the entity's domain table under the job's organization.
        Returns None, storing nothing, when the job is no longer processing.
        """

    async def close(self) -> None:
        return None
