from __future__ import annotations

import logging
import uuid
from collections.abc import Collection
from typing import Any

from redis.asyncio import Redis
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from selly_base.backends.base import DataBackend, ImportJobRecord, check_changes
from selly_base.models.company import Company, CompanyActivity, CompanyContact
from selly_base.models.import_job import EntityType, ImportJob, ImportStatus

logger = logging.getLogger(__name__)

ENTITY_MODELS: dict[EntityType, type[Company] | type[CompanyContact] | type[CompanyActivity]] = {
    EntityType.COMPANIES: Company,
    EntityType.CONTACTS: CompanyContact,
    EntityType.ACTIVITIES: CompanyActivity,
}


def file_key(job_id: uuid.UUID) -> str:
    return f"import_file:{job_id}"


def to_record(job: ImportJob) -> ImportJobRecord:
    return ImportJobRecord(
        id=job.id,
        filename=job.filename,
        entity_type=EntityType(job.entity_type),
        status=ImportStatus(job.status),
        organization_id=job.organization_id,
        uploaded_by=job.uploaded_by,
        total_records=job.total_records or 0,
        processed_records=job.processed_records or 0,
        valid_records=job.valid_records or 0,
        error_records=job.error_records or 0,
        errors=list(job.errors or []),
        warnings=list(job.warnings or []),
        metadata=dict(job.job_metadata or {}),
        task_id=job.task_id,
        created_at=job.created_at,
        updated_at=job.updated_at,
        completed_at=job.completed_at,
    )


def _column_values(changes: dict[str, Any]) -> dict[str, Any]:
    values = dict(changes)
    if "metadata" in values:
        values["job_metadata"] = values.pop("metadata")
    return values


class PersistentBackend(DataBackend):
    """Import jobs and entities in SQL; uploaded files in Redis under a TTL."""

    name = "persistent"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client: Redis,
        *,
        file_ttl_seconds: int = 3600,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._redis = redis_client
        self._file_ttl = file_ttl_seconds
        # Only disposed on close() when this backend owns it
        self._engine = engine

    async def create_job(self, record: ImportJobRecord) -> ImportJobRecord:
        async with self._session_factory() as session:
            job = ImportJob(
                id=record.id,
                organization_id=record.organization_id,
                uploaded_by=record.uploaded_by,
                filename=record.filename,
                entity_type=record.entity_type,
                status=record.status,
                total_records=record.total_records,
                errors=record.errors,
                warnings=record.warnings,
                job_metadata=record.metadata,
            )
            session.add(job)
            await session.commit()
            await session.refresh(job)
            return to_record(job)

    async def get_job(
        self, job_id: uuid.UUID, organization_id: uuid.UUID | None = None
    ) -> ImportJobRecord | None:
        stmt = select(ImportJob).where(ImportJob.id == job_id)
        if organization_id is not None:
            stmt = stmt.where(ImportJob.organization_id == organization_id)
        async with self._session_factory() as session:
            job = (await session.execute(stmt)).scalar_one_or_none()
            return to_record(job) if job is not None else None

    async def list_jobs(
        self,
        *,
        status: ImportStatus | None = None,
        organization_id: uuid.UUID | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[ImportJobRecord], int]:
        filters = []
        if status is not None:
            filters.append(ImportJob.status == status)
        if organization_id is not None:
            filters.append(ImportJob.organization_id == organization_id)

        async with self._session_factory() as session:
            total = (
                await session.execute(select(func.count(ImportJob.id)).where(*filters))
            ).scalar_one()
            result = await session.execute(
                select(ImportJob)
                .where(*filters)
                .order_by(ImportJob.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return [to_record(j) for j in result.scalars().all()], total

    async def update_job(self, job_id: uuid.UUID, **changes: Any) -> ImportJobRecord | None:
        check_changes(changes)
        async with self._session_factory() as session:
            if changes:
                await session.execute(
                    update(ImportJob)
                    .where(ImportJob.id == job_id)
                    .values(**_column_values(changes))
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            job = await session.get(ImportJob, job_id, populate_existing=True)
            return to_record(job) if job is not None else None

    async def transition(
        self,
        job_id: uuid.UUID,
        allowed_from: Collection[ImportStatus],
        to_status: ImportStatus,
        **changes: Any,
    ) -> ImportJobRecord | None:
        check_changes(changes)
        async with self._session_factory() as session:
            result = await session.execute(
                update(ImportJob)
                .where(ImportJob.id == job_id, ImportJob.status.in_(list(allowed_from)))
                .values(status=to_status, **_column_values(changes))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount != 1:
                return None
            job = await session.get(ImportJob, job_id, populate_existing=True)
            return to_record(job) if job is not None else None

    async def save_file(self, job_id: uuid.UUID, content: bytes) -> None:
        await self._redis.set(file_key(job_id), content, ex=self._file_ttl)

    async def load_file(self, job_id: uuid.UUID) -> bytes | None:
        return await self._redis.get(file_key(job_id))

    async def discard_file(self, job_id: uuid.UUID) -> None:
        await self._redis.delete(file_key(job_id))

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
        async with self._session_factory() as session:
            # The status update comes first so a concurrent cancel waits on the row lock
            result = await session.execute(
                update(ImportJob)
                .where(ImportJob.id == job_id, ImportJob.status == ImportStatus.PROCESSING)
                .values(status=to_status, **_column_values(changes))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                return None

            job = await session.get(ImportJob, job_id, populate_existing=True)
            await self._add_entities(session, entity_type, entities, job.organization_id, job.id)
            await session.commit()
            logger.debug("Inserted %d %s for job %s", len(entities), entity_type.value, job_id)
            return to_record(job)

    async def _add_entities(
        self,
        session: AsyncSession,
        entity_type: EntityType,
        entities: list[dict[str, Any]],
        organization_id: uuid.UUID | None,
        import_job_id: uuid.UUID,
    ) -> None:
        model = ENTITY_MODELS[entity_type]
        company_ids: dict[str, uuid.UUID] = {}
        if entity_type is not EntityType.COMPANIES:
            company_ids = await self._company_ids(
                session, organization_id, {e["company_name"] for e in entities if e.get("company_name")}
            )
        for entity in entities:
            row = model(organization_id=organization_id, import_job_id=import_job_id, **entity)
            if company_ids and entity.get("company_name"):
                row.company_id = company_ids.get(entity["company_name"])
            session.add(row)

    @staticmethod
    async def _company_ids(
        session: AsyncSession, organization_id: uuid.UUID | None, names: set[str]
    ) -> dict[str, uuid.UUID]:
        if not names:
            return {}
        stmt = select(Company.name_en, Company.id).where(Company.name_en.in_(names))
        if organization_id is not None:
            stmt = stmt.where(Company.organization_id == organization_id)
        else:
            stmt = stmt.where(Company.organization_id.is_(None))
        result = await session.execute(stmt)
        ids: dict[str, uuid.UUID] = {}
        for name, company_id in result.all():
            ids.setdefault(name, company_id)
        return ids

    async def close(self) -> None:
        await self._redis.aclose()
        if self._engine is not None:
            await self._engine.dispose()
