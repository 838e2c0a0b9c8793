from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections import defaultdict
from collections.abc import Collection, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from selly_base.backends.base import DataBackend, ImportJobRecord, check_changes
from selly_base.models.import_job import EntityType, ImportStatus

logger = logging.getLogger(__name__)


class InMemoryBackend(DataBackend):
    """Process-local backend used in mock mode and tests."""

    name = "memory"

    def __init__(self, seed: Iterable[ImportJobRecord] | None = None) -> None:
        self._jobs: dict[uuid.UUID, ImportJobRecord] = {}
        self._files: dict[uuid.UUID, bytes] = {}
        self._entities: dict[EntityType, list[dict[str, Any]]] = defaultdict(list)
        self._lock = asyncio.Lock()
        for record in seed or ():
            self._jobs[record.id] = copy.deepcopy(record)

    async def create_job(self, record: ImportJobRecord) -> ImportJobRecord:
        async with self._lock:
            stored = copy.deepcopy(record)
            stored.updated_at = stored.created_at
            self._jobs[stored.id] = stored
            return copy.deepcopy(stored)

    async def get_job(
        self, job_id: uuid.UUID, organization_id: uuid.UUID | None = None
    ) -> ImportJobRecord | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if organization_id is not None and job.organization_id != organization_id:
                return None
            return copy.deepcopy(job)

    async def list_jobs(
        self,
        *,
        status: ImportStatus | None = None,
        organization_id: uuid.UUID | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[ImportJobRecord], int]:
        async with self._lock:
            matches = [
                job
                for job in self._jobs.values()
                if (status is None or job.status == status)
                and (organization_id is None or job.organization_id == organization_id)
            ]
        matches.sort(key=lambda j: j.created_at, reverse=True)
        page = matches[offset : offset + limit]
        return [copy.deepcopy(j) for j in page], len(matches)

    async def update_job(self, job_id: uuid.UUID, **changes: Any) -> ImportJobRecord | None:
        check_changes(changes)
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            self._apply(job, changes)
            return copy.deepcopy(job)

    async def transition(
        self,
        job_id: uuid.UUID,
        allowed_from: Collection[ImportStatus],
        to_status: ImportStatus,
        **changes: Any,
    ) -> ImportJobRecord | None:
        check_changes(changes)
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in allowed_from:
                return None
            job.status = to_status
            self._apply(job, changes)
            return copy.deepcopy(job)

    @staticmethod
    def _apply(job: ImportJobRecord, changes: dict[str, Any]) -> None:
        for key, value in changes.items():
            setattr(job, key, copy.deepcopy(value))
        job.updated_at = datetime.now(UTC)

    async def save_file(self, job_id: uuid.UUID, content: bytes) -> None:
        self._files[job_id] = content

    async def load_file(self, job_id: uuid.UUID) -> bytes | None:
        return self._files.get(job_id)

    async def discard_file(self, job_id: uuid.UUID) -> None:
        self._files.pop(job_id, None)

    async def complete_import(
        self,
        job_id: uuid.UUID,
        entity_type: EntityType,
        entities: list[dict[str, Any]],
        *,
        to_status: ImportStatus,
        **changes: Any,
    ) -> ImportJobRecord | None:
        check_changes(changes)
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not ImportStatus.PROCESSING:
                return None
            organization_id = job.organization_id
            companies = {
                c["name_en"]: c["id"]
                for c in self._entities[EntityType.COMPANIES]
                if c["organization_id"] == organization_id
            }
            for entity in entities:
                stored = {
                    "id": uuid.uuid4(),
                    "organization_id": organization_id,
                    "import_job_id": job_id,
                    **entity,
                }
                if entity_type is EntityType.COMPANIES:
                    stored.setdefault("data_source", "import")
                    stored.setdefault("verification_status", "unverified")
                    companies.setdefault(stored["name_en"], stored["id"])
                elif entity.get("company_name"):
                    stored["company_id"] = companies.get(entity["company_name"])
                self._entities[entity_type].append(stored)
            job.status = to_status
            self._apply(job, changes)
            logger.debug("Stored %d %s in memory", len(entities), entity_type.value)
            return copy.deepcopy(job)

    def entities(self, entity_type: EntityType) -> list[dict[str, Any]]:
        """Rows stored so far for an entity type (inspection helper for demos and tests)."""
        return copy.deepcopy(self._entities[entity_type])


def demo_jobs(organization_id: uuid.UUID | None = None) -> list[ImportJobRecord]:
    """Fixture jobs served when the API runs without a database."""
    now = datetime.now(UTC)
    return [
        ImportJobRecord(
            id=uuid.UUID("6f1c2a4e-0b7d-4f3a-9a51-2d7e8c1b0a01"),
            filename="companies_q1.csv",
            entity_type=EntityType.COMPANIES,
            status=ImportStatus.COMPLETED_WITH_ERRORS,
            organization_id=organization_id,
            total_records=120,
            processed_records=118,
            valid_records=118,
            error_records=2,
            errors=[
                {
                    "row": 14,
                    "column": "Email",
                    "value": "sales@abc",
                    "message": "Invalid email format",
                    "severity": "error",
                },
                {
                    "row": 77,
                    "column": "Company Name (English)",
                    "value": None,
                    "message": 'Required field "Company Name (English)" is missing or empty',
                    "severity": "error",
                },
            ],
            created_at=now - timedelta(days=2),
            updated_at=now - timedelta(days=2),
            completed_at=now - timedelta(days=2) + timedelta(minutes=3),
        ),
        ImportJobRecord(
            id=uuid.UUID("6f1c2a4e-0b7d-4f3a-9a51-2d7e8c1b0a02"),
            filename="contacts_march.xlsx",
            entity_type=EntityType.CONTACTS,
            status=ImportStatus.QUEUED,
            organization_id=organization_id,
            total_records=45,
            created_at=now - timedelta(hours=3),
            updated_at=now - timedelta(hours=3),
        ),
    ]
