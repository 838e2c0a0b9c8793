from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from selly_base.backends.base import DataBackend, ImportJobRecord
from selly_base.config import settings
from selly_base.models.import_job import TERMINAL_STATUSES, EntityType, ImportStatus
from selly_base.plugins.base import ParsedData
from selly_base.schemas.import_job import (
    ExecuteImportRequest,
    ExecuteImportResponse,
    ImportPreviewResponse,
    Pagination,
    PreviewRow,
    ValidationFinding,
    ValidationSummary,
)
from selly_base.services.errors import (
    EmptyFileError,
    ImportFileMissingError,
    ImportJobNotFoundError,
    InvalidStatusTransitionError,
    RowIndexOutOfRangeError,
)
from selly_base.services.file_parser import (
    coerce_entity,
    map_row_to_entity,
    parse_file,
    validate_row,
)

if TYPE_CHECKING:
    from selly_base.tasks.runners import JobRunner

logger = logging.getLogger(__name__)

# validating covers a run that stopped before writing its results
VALIDATABLE = frozenset({ImportStatus.QUEUED, ImportStatus.VALIDATING, ImportStatus.VALIDATED})
EXECUTABLE = frozenset({ImportStatus.QUEUED, ImportStatus.VALIDATED})
CANCELLABLE = frozenset(ImportStatus) - TERMINAL_STATUSES


# ---------------------------------------------------------------------------
# Job creation and lookup
# ---------------------------------------------------------------------------

async def create_import_job(
    backend: DataBackend,
    *,
    filename: str,
    organization_id: uuid.UUID | None = None,
    uploaded_by: uuid.UUID | None = None,
    entity_type: EntityType | str = EntityType.COMPANIES,
) -> ImportJobRecord:
    job = await backend.create_job(
        ImportJobRecord(
            id=uuid.uuid4(),
            filename=filename,
            entity_type=EntityType(entity_type),
            organization_id=organization_id,
            uploaded_by=uploaded_by,
        )
    )
    logger.info("Created import job %s for %s (%s)", job.id, filename, job.entity_type.value)
    return job


async def upload_import_file(
    backend: DataBackend,
    *,
    filename: str,
    content: bytes,
    entity_type: EntityType | str = EntityType.COMPANIES,
    organization_id: uuid.UUID | None = None,
    uploaded_by: uuid.UUID | None = None,
) -> ImportJobRecord:
    """Parse an uploaded file once, then record a queued job and keep the bytes."""
    if not content:
        raise EmptyFileError()
    parsed = await parse_file(content, filename)

    job = await backend.create_job(
        ImportJobRecord(
            id=uuid.uuid4(),
            filename=filename,
            entity_type=EntityType(entity_type),
            organization_id=organization_id,
            uploaded_by=uploaded_by,
            total_records=parsed.total_rows,
            metadata={"columns": parsed.columns, "file_size": len(content)},
        )
    )
    await backend.save_file(job.id, content)
    logger.info(
        "Uploaded %s as import job %s: %d rows, %d columns",
        filename,
        job.id,
        parsed.total_rows,
        len(parsed.columns),
    )
    return job


def _page_window(page: int, limit: int | None) -> tuple[int, int]:
    page = max(page, 1)
    if limit is None:
        limit = settings.IMPORT_DEFAULT_PAGE_SIZE
    limit = min(max(limit, 1), settings.IMPORT_MAX_PAGE_SIZE)
    return page, limit


async def get_import_jobs(
    backend: DataBackend,
    *,
    status: ImportStatus | None = None,
    organization_id: uuid.UUID | None = None,
    page: int = 1,
    limit: int | None = None,
) -> tuple[list[ImportJobRecord], Pagination]:
    page, limit = _page_window(page, limit)
    jobs, total = await backend.list_jobs(
        status=status,
        organization_id=organization_id,
        offset=(page - 1) * limit,
        limit=limit,
    )
    total_pages = math.ceil(total / limit) if total else 0
    pagination = Pagination(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )
    return jobs, pagination


async def get_import_job(
    backend: DataBackend, job_id: uuid.UUID, organization_id: uuid.UUID | None = None
) -> ImportJobRecord:
    job = await backend.get_job(job_id, organization_id)
    if job is None:
        raise ImportJobNotFoundError(job_id)
    return job


async def _load_parsed(backend: DataBackend, job: ImportJobRecord) -> ParsedData:
    content = await backend.load_file(job.id)
    if content is None:
        raise ImportFileMissingError(job.id)
    return await parse_file(content, job.filename)


async def _refused(
    backend: DataBackend, job_id: uuid.UUID, target: ImportStatus
) -> InvalidStatusTransitionError:
    """Build the error for a lost compare-and-set, naming the status that won."""
    current = await backend.get_job(job_id)
    if current is None:
        raise ImportJobNotFoundError(job_id)
    return InvalidStatusTransitionError(current.status, target)


def _split(findings: list[ValidationFinding]) -> tuple[list[ValidationFinding], list[ValidationFinding]]:
    errors = [f for f in findings if f.severity == "error"]
    warnings = [f for f in findings if f.severity == "warning"]
    return errors, warnings


def _dump(findings: list[ValidationFinding]) -> list[dict[str, Any]]:
    return [f.model_dump() for f in findings[: settings.IMPORT_MAX_STORED_FINDINGS]]


# ---------------------------------------------------------------------------
# Validation and preview
# ---------------------------------------------------------------------------

async def validate_import_data(
    backend: DataBackend, job_id: uuid.UUID, organization_id: uuid.UUID | None = None
) -> ValidationSummary:
    job = await get_import_job(backend, job_id, organization_id)
    if job.status not in VALIDATABLE:
        raise InvalidStatusTransitionError(job.status, ImportStatus.VALIDATED)
    parsed = await _load_parsed(backend, job)

    if job.status is ImportStatus.QUEUED:
        moved = await backend.transition(job.id, {ImportStatus.QUEUED}, ImportStatus.VALIDATING)
        if moved is None:
            raise await _refused(backend, job.id, ImportStatus.VALIDATING)

    all_errors: list[ValidationFinding] = []
    all_warnings: list[ValidationFinding] = []
    valid_count = 0
    error_count = 0
    for index, row in enumerate(parsed.rows, start=1):
        errors, warnings = _split(validate_row(row, index, job.entity_type))
        if errors:
            error_count += 1
            all_errors.extend(errors)
        else:
            valid_count += 1
        all_warnings.extend(warnings)

    validated = await backend.transition(
        job.id,
        {ImportStatus.VALIDATING, ImportStatus.VALIDATED},
        ImportStatus.VALIDATED,
        total_records=parsed.total_rows,
        valid_records=valid_count,
        error_records=error_count,
        errors=_dump(all_errors),
        warnings=_dump(all_warnings),
    )
    if validated is None:
        raise await _refused(backend, job.id, ImportStatus.VALIDATED)

    logger.info(
        "Validated import job %s: %d valid, %d with errors, %d warnings",
        job.id,
        valid_count,
        error_count,
        len(all_warnings),
    )
    return ValidationSummary(
        id=job.id,
        status=ImportStatus.VALIDATED,
        total_records=parsed.total_rows,
        valid_records=valid_count,
        error_records=error_count,
        warning_count=len(all_warnings),
        message="Validation completed",
        errors=all_errors,
        warnings=all_warnings,
    )


async def get_import_preview(
    backend: DataBackend,
    job_id: uuid.UUID,
    organization_id: uuid.UUID | None = None,
    *,
    page: int = 1,
    limit: int | None = None,
) -> ImportPreviewResponse:
    job = await get_import_job(backend, job_id, organization_id)
    parsed = await _load_parsed(backend, job)
    page, limit = _page_window(page, limit)
    skip = (page - 1) * limit

    rows: list[PreviewRow] = []
    for offset, row in enumerate(parsed.rows[skip : skip + limit]):
        row_index = skip + offset + 1
        errors, warnings = _split(validate_row(row, row_index, job.entity_type))
        rows.append(
            PreviewRow(
                row_index=row_index,
                data=row,
                errors=errors,
                warnings=warnings,
                is_valid=not errors,
            )
        )

    valid_rows = sum(1 for r in rows if r.is_valid)
    return ImportPreviewResponse(
        rows=rows,
        total_rows=parsed.total_rows,
        valid_rows=valid_rows,
        invalid_rows=len(rows) - valid_rows,
        columns=parsed.columns,
        page=page,
        limit=limit,
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

async def execute_import_job(
    backend: DataBackend,
    runner: JobRunner,
    job_id: uuid.UUID,
    organization_id: uuid.UUID | None = None,
    options: ExecuteImportRequest | None = None,
) -> ExecuteImportResponse:
    options = options or ExecuteImportRequest()
    job = await get_import_job(backend, job_id, organization_id)
    if job.status not in EXECUTABLE:
        raise InvalidStatusTransitionError(job.status, ImportStatus.PROCESSING)
    if await backend.load_file(job.id) is None:
        raise ImportFileMissingError(job.id)
    if options.row_indices:
        out_of_range = [i for i in options.row_indices if not 0 <= i < job.total_records]
        if out_of_range:
            raise RowIndexOutOfRangeError(out_of_range, job.total_records)

    moved = await backend.transition(
        job.id,
        EXECUTABLE,
        ImportStatus.PROCESSING,
        metadata={**job.metadata, "execute_options": options.model_dump()},
    )
    if moved is None:
        raise await _refused(backend, job.id, ImportStatus.PROCESSING)

    try:
        handle = await runner.submit(job.id, options.model_dump())
    except Exception as exc:
        logger.exception("Could not submit import job %s", job.id)
        await backend.transition(
            job.id,
            {ImportStatus.PROCESSING},
            ImportStatus.FAILED,
            errors=[_system_finding(f"Could not start processing: {exc}")],
            completed_at=datetime.now(UTC),
        )
        raise
    await backend.update_job(job.id, task_id=handle)

    logger.info("Submitted import job %s for processing (handle %s)", job.id, handle)
    return ExecuteImportResponse(
        id=job.id,
        status=ImportStatus.PROCESSING,
        message="Import job started. Check status for progress.",
    )


def _system_finding(message: str) -> dict[str, Any]:
    return ValidationFinding(row=0, column="system", message=message, severity="error").model_dump()


@dataclass
class _RowOutcome:
    entities: list[dict[str, Any]] = field(default_factory=list)
    errors: list[ValidationFinding] = field(default_factory=list)
    error_rows: int = 0


def _select_rows(
    rows: list[dict[str, Any]], row_indices: list[int] | None, outcome: _RowOutcome
) -> list[tuple[int, dict[str, Any]]]:
    """Pick the rows to import as (1-based row number, row) pairs.

    Repeated indices select their row once. Indices outside the file are
    reported as findings but are not rows, so they never count as error rows.
    """
    if not row_indices:
        return list(enumerate(rows, start=1))
    selected = []
    for idx in dict.fromkeys(row_indices):
        if 0 <= idx < len(rows):
            selected.append((idx + 1, rows[idx]))
        else:
            outcome.errors.append(
                ValidationFinding(
                    row=idx + 1,
                    column="row_indices",
                    value=idx,
                    message=f"Row index {idx} is out of range",
                    severity="error",
                )
            )
    return selected


def _collect_rows(
    parsed: ParsedData, entity_type: EntityType, options: ExecuteImportRequest
) -> _RowOutcome:
    outcome = _RowOutcome()
    for row_number, row in _select_rows(parsed.rows, options.row_indices, outcome):
        errors, _ = _split(validate_row(row, row_number, entity_type))
        if errors:
            outcome.error_rows += 1
            outcome.errors.extend(errors)
            if not options.skip_errors:
                break
            continue
        outcome.entities.append(coerce_entity(entity_type, map_row_to_entity(row, entity_type)))
    return outcome


async def process_import(
    backend: DataBackend,
    job_id: uuid.UUID,
    options: ExecuteImportRequest | dict[str, Any] | None = None,
) -> ImportJobRecord | None:
    """Import the rows of a processing job and record how it finished.

    Runs inside a Celery worker or an inline asyncio task. A job that is no
    longer ``processing`` when a write is due (it was cancelled) is left alone.
    """
    options = ExecuteImportRequest.model_validate(options or {})
    job = await backend.get_job(job_id)
    if job is None:
        logger.error("Import job %s not found", job_id)
        return None
    if job.status is not ImportStatus.PROCESSING:
        logger.info("Import job %s is %s, nothing to process", job_id, job.status.value)
        return job

    try:
        parsed = await _load_parsed(backend, job)
        outcome = _collect_rows(parsed, job.entity_type, options)

        final_status = (
            ImportStatus.COMPLETED_WITH_ERRORS if outcome.errors else ImportStatus.COMPLETED
        )
        # Rows and the final status are written together, or not at all when
        # the job left processing in the meantime
        finished = await backend.complete_import(
            job_id,
            job.entity_type,
            outcome.entities,
            to_status=final_status,
            processed_records=len(outcome.entities),
            error_records=outcome.error_rows,
            errors=_dump(outcome.errors),
            completed_at=datetime.now(UTC),
        )
    except Exception as exc:
        logger.exception("Import job %s failed", job_id)
        finished = await backend.transition(
            job_id,
            {ImportStatus.PROCESSING},
            ImportStatus.FAILED,
            errors=[_system_finding(str(exc))],
            completed_at=datetime.now(UTC),
        )
        await backend.discard_file(job_id)
        return finished if finished is not None else await backend.get_job(job_id)

    await backend.discard_file(job_id)
    if finished is None:
        logger.info("Import job %s was cancelled while processing", job_id)
        return await backend.get_job(job_id)

    logger.info(
        "Import job %s finished as %s: %d stored, %d rows with errors",
        job_id,
        finished.status.value,
        finished.processed_records,
        finished.error_records,
    )
    return finished


async def cancel_import_job(
    backend: DataBackend,
    runner: JobRunner,
    job_id: uuid.UUID,
    organization_id: uuid.UUID | None = None,
) -> ImportJobRecord:
    job = await get_import_job(backend, job_id, organization_id)
    if job.status not in CANCELLABLE:
        raise InvalidStatusTransitionError(job.status, ImportStatus.CANCELLED)

    cancelled = await backend.transition(
        job.id, CANCELLABLE, ImportStatus.CANCELLED, completed_at=datetime.now(UTC)
    )
    if cancelled is None:
        raise await _refused(backend, job.id, ImportStatus.CANCELLED)

    if job.status is ImportStatus.PROCESSING and cancelled.task_id:
        await runner.cancel(cancelled.task_id)
    await backend.discard_file(job.id)
    logger.info("Cancelled import job %s (was %s)", job.id, job.status.value)
    return cancelled
