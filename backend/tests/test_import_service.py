from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Any

import pytest

from selly_base.backends.memory import InMemoryBackend
from selly_base.config import settings
from selly_base.models.import_job import EntityType, ImportStatus
from selly_base.schemas.import_job import ExecuteImportRequest
from selly_base.services import import_service
from selly_base.services.errors import (
    EmptyFileError,
    FileParseError,
    ImportFileMissingError,
    ImportJobNotFoundError,
    InvalidStatusTransitionError,
    RowIndexOutOfRangeError,
    UnsupportedFileFormatError,
)
from selly_base.tasks.runners import InlineJobRunner, JobRunner

ORG_ID = uuid.UUID("0b7f4a6e-4c1d-4b7e-9a2f-5d3c1e8f9a10")


async def _upload(backend, content: bytes, filename: str = "companies.csv", **kwargs):
    kwargs.setdefault("entity_type", EntityType.COMPANIES)
    return await import_service.upload_import_file(
        backend, filename=filename, content=content, organization_id=ORG_ID, **kwargs
    )


async def test_create_import_job_is_queued(backend: InMemoryBackend):
    job = await import_service.create_import_job(
        backend, filename="companies.csv", organization_id=ORG_ID
    )
    assert job.status is ImportStatus.QUEUED
    assert job.entity_type is EntityType.COMPANIES
    assert (job.total_records, job.valid_records, job.error_records) == (0, 0, 0)
    assert await backend.load_file(job.id) is None


async def test_upload_parses_and_stores_file(backend: InMemoryBackend, companies_csv: bytes):
    job = await _upload(backend, companies_csv)

    assert job.status is ImportStatus.QUEUED
    assert job.total_records == 4
    assert job.organization_id == ORG_ID
    assert job.metadata["columns"][0] == "Company Name (English)"
    assert await backend.load_file(job.id) == companies_csv


async def test_upload_rejects_empty_and_unsupported(backend: InMemoryBackend):
    with pytest.raises(EmptyFileError):
        await _upload(backend, b"")
    with pytest.raises(UnsupportedFileFormatError):
        await _upload(backend, b"data", filename="companies.pdf")
    with pytest.raises(FileParseError):
        await _upload(backend, b'a,b\n"unterminated,2\n')

    _, pagination = await import_service.get_import_jobs(backend)
    assert pagination.total == 0


async def test_get_import_jobs_pagination(backend: InMemoryBackend):
    for i in range(5):
        await import_service.create_import_job(backend, filename=f"file{i}.csv")

    jobs, pagination = await import_service.get_import_jobs(backend, page=1, limit=2)
    assert len(jobs) == 2
    assert pagination.model_dump() == {
        "page": 1,
        "limit": 2,
        "total": 5,
        "total_pages": 3,
        "has_next": True,
        "has_prev": False,
    }
    created = [j.created_at for j in jobs]
    assert created == sorted(created, reverse=True)

    jobs, pagination = await import_service.get_import_jobs(backend, page=3, limit=2)
    assert len(jobs) == 1
    assert pagination.has_next is False
    assert pagination.has_prev is True


async def test_get_import_jobs_clamps_limit(backend: InMemoryBackend):
    _, pagination = await import_service.get_import_jobs(backend, page=0, limit=1000)
    assert pagination.page == 1
    assert pagination.limit == settings.IMPORT_MAX_PAGE_SIZE
    assert pagination.total_pages == 0

    _, pagination = await import_service.get_import_jobs(backend)
    assert pagination.limit == settings.IMPORT_DEFAULT_PAGE_SIZE


async def test_get_import_jobs_filters(backend: InMemoryBackend):
    await import_service.create_import_job(backend, filename="a.csv", organization_id=ORG_ID)
    other = await import_service.create_import_job(backend, filename="b.csv")
    await backend.transition(other.id, {ImportStatus.QUEUED}, ImportStatus.CANCELLED)

    jobs, _ = await import_service.get_import_jobs(backend, organization_id=ORG_ID)
    assert [j.filename for j in jobs] == ["a.csv"]

    jobs, _ = await import_service.get_import_jobs(backend, status=ImportStatus.CANCELLED)
    assert [j.filename for j in jobs] == ["b.csv"]


async def test_get_import_job_scoped_to_tenant(backend: InMemoryBackend):
    job = await import_service.create_import_job(backend, filename="a.csv", organization_id=ORG_ID)

    assert (await import_service.get_import_job(backend, job.id, ORG_ID)).id == job.id
    with pytest.raises(ImportJobNotFoundError):
        await import_service.get_import_job(backend, job.id, uuid.uuid4())
    with pytest.raises(ImportJobNotFoundError):
        await import_service.get_import_job(backend, uuid.uuid4())


async def test_validate_import_data(backend: InMemoryBackend, companies_csv: bytes):
    job = await _upload(backend, companies_csv)

    summary = await import_service.validate_import_data(backend, job.id, ORG_ID)

    assert summary.status is ImportStatus.VALIDATED
    assert summary.total_records == 4
    assert summary.valid_records == 2
    assert summary.error_records == 2
    assert summary.warning_count == 3
    assert summary.message == "Validation completed"
    # Row numbers count data rows from 1
    assert [e.row for e in summary.errors] == [2, 3, 3]
    assert [w.row for w in summary.warnings] == [3, 3, 4]

    stored = await backend.get_job(job.id)
    assert stored.status is ImportStatus.VALIDATED
    assert stored.valid_records == 2
    assert stored.error_records == 2
    assert len(stored.errors) == 3
    assert stored.errors[0]["column"] == "Company Name (English)"


async def test_validate_twice_recomputes(backend: InMemoryBackend, companies_csv: bytes):
    job = await _upload(backend, companies_csv)
    await import_service.validate_import_data(backend, job.id)
    summary = await import_service.validate_import_data(backend, job.id)
    assert summary.valid_records == 2


async def test_validate_caps_stored_findings(
    backend: InMemoryBackend, companies_csv: bytes, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setattr(settings, "IMPORT_MAX_STORED_FINDINGS", 1)
    job = await _upload(backend, companies_csv)

    summary = await import_service.validate_import_data(backend, job.id)

    assert len(summary.errors) == 3
    stored = await backend.get_job(job.id)
    assert len(stored.errors) == 1
    assert len(stored.warnings) == 1


async def test_validate_without_file(backend: InMemoryBackend):
    job = await import_service.create_import_job(backend, filename="companies.csv")
    with pytest.raises(ImportFileMissingError) as exc_info:
        await import_service.validate_import_data(backend, job.id)
    assert exc_info.value.message == "File data not found. Please re-upload the file."


async def test_validate_resumes_interrupted_run(backend: InMemoryBackend, companies_csv: bytes):
    job = await _upload(backend, companies_csv)
    # A previous run stopped after moving the job to validating
    await backend.transition(job.id, {ImportStatus.QUEUED}, ImportStatus.VALIDATING)

    summary = await import_service.validate_import_data(backend, job.id)

    assert summary.status is ImportStatus.VALIDATED
    assert summary.valid_records == 2
    assert (await backend.get_job(job.id)).status is ImportStatus.VALIDATED


async def test_validate_refused_while_processing(
    backend: InMemoryBackend, runner: InlineJobRunner, companies_csv: bytes
):
    job = await _upload(backend, companies_csv)
    await import_service.execute_import_job(backend, runner, job.id)

    with pytest.raises(InvalidStatusTransitionError) as exc_info:
        await import_service.validate_import_data(backend, job.id)
    assert exc_info.value.status_code == 409
    assert exc_info.value.current is ImportStatus.PROCESSING


async def test_preview_paginates_rows(backend: InMemoryBackend, companies_csv: bytes):
    job = await _upload(backend, companies_csv)

    preview = await import_service.get_import_preview(backend, job.id, page=1, limit=2)
    assert preview.total_rows == 4
    assert [r.row_index for r in preview.rows] == [1, 2]
    assert preview.valid_rows == 1
    assert preview.invalid_rows == 1
    assert preview.rows[1].errors[0].column == "Company Name (English)"
    assert preview.columns[0] == "Company Name (English)"

    preview = await import_service.get_import_preview(backend, job.id, page=2, limit=2)
    assert [r.row_index for r in preview.rows] == [3, 4]
    assert preview.rows[1].is_valid is True
    assert preview.rows[1].warnings[0].column == "Website"


async def test_execute_imports_valid_rows(
    backend: InMemoryBackend, runner: InlineJobRunner, companies_csv: bytes
):
    job = await _upload(backend, companies_csv)
    await import_service.validate_import_data(backend, job.id)

    result = await import_service.execute_import_job(backend, runner, job.id, ORG_ID)
    assert result.status is ImportStatus.PROCESSING
    assert result.message == "Import job started. Check status for progress."
    processing = await backend.get_job(job.id)
    assert processing.status is ImportStatus.PROCESSING
    assert processing.task_id == f"inline-{job.id}"

    await runner.drain()

    finished = await backend.get_job(job.id)
    assert finished.status is ImportStatus.COMPLETED_WITH_ERRORS
    assert finished.processed_records == 2
    assert finished.error_records == 2
    assert finished.completed_at is not None
    assert await backend.load_file(job.id) is None

    companies = backend.entities(EntityType.COMPANIES)
    assert [c["name_en"] for c in companies] == ["ABC Company Ltd.", "Delta Trading"]
    assert companies[0]["employee_count_estimate"] == 500
    assert companies[0]["annual_revenue_estimate"] == Decimal("50000000")
    assert companies[0]["is_shared_data"] is False
    assert companies[1]["is_shared_data"] is True
    assert all(c["organization_id"] == ORG_ID for c in companies)
    assert all(c["import_job_id"] == job.id for c in companies)


async def test_execute_selected_rows(
    backend: InMemoryBackend, runner: InlineJobRunner, companies_csv: bytes
):
    job = await _upload(backend, companies_csv)

    await import_service.execute_import_job(
        backend, runner, job.id, options=ExecuteImportRequest(row_indices=[0, 3])
    )
    await runner.drain()

    finished = await backend.get_job(job.id)
    assert finished.status is ImportStatus.COMPLETED
    assert finished.processed_records == 2
    assert finished.error_records == 0
    assert finished.errors == []


async def test_execute_rejects_out_of_range_row_index(
    backend: InMemoryBackend, runner: InlineJobRunner, companies_csv: bytes
):
    job = await _upload(backend, companies_csv)

    with pytest.raises(RowIndexOutOfRangeError) as exc_info:
        await import_service.execute_import_job(
            backend, runner, job.id, options=ExecuteImportRequest(row_indices=[0, 10, -1])
        )

    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "Row indices out of range: 10, -1. The file has 4 data rows."
    assert (await backend.get_job(job.id)).status is ImportStatus.QUEUED


async def test_execute_repeated_row_indices_import_once(
    backend: InMemoryBackend, runner: InlineJobRunner, companies_csv: bytes
):
    job = await _upload(backend, companies_csv)

    await import_service.execute_import_job(
        backend, runner, job.id, options=ExecuteImportRequest(row_indices=[0, 0, 3, 0])
    )
    await runner.drain()

    finished = await backend.get_job(job.id)
    assert finished.processed_records == 2
    assert finished.processed_records + finished.error_records <= finished.total_records
    assert [c["name_en"] for c in backend.entities(EntityType.COMPANIES)] == [
        "ABC Company Ltd.",
        "Delta Trading",
    ]


async def test_process_import_reports_stale_row_indices_without_counting_them(
    backend: InMemoryBackend, companies_csv: bytes
):
    job = await _upload(backend, companies_csv)
    await backend.transition(job.id, {ImportStatus.QUEUED}, ImportStatus.PROCESSING)

    finished = await import_service.process_import(
        backend, job.id, {"row_indices": [0, 0, 0, 7, 8]}
    )

    assert finished.status is ImportStatus.COMPLETED_WITH_ERRORS
    assert finished.processed_records == 1
    assert finished.error_records == 0
    assert [e["message"] for e in finished.errors] == [
        "Row index 7 is out of range",
        "Row index 8 is out of range",
    ]
    assert len(backend.entities(EntityType.COMPANIES)) == 1


async def test_execute_stops_at_first_error_without_skip(
    backend: InMemoryBackend, runner: InlineJobRunner, companies_csv: bytes
):
    job = await _upload(backend, companies_csv)

    await import_service.execute_import_job(
        backend, runner, job.id, options=ExecuteImportRequest(skip_errors=False)
    )
    await runner.drain()

    finished = await backend.get_job(job.id)
    assert finished.status is ImportStatus.COMPLETED_WITH_ERRORS
    assert finished.processed_records == 1
    assert finished.error_records == 1
    assert {e["row"] for e in finished.errors} == {2}
    assert [c["name_en"] for c in backend.entities(EntityType.COMPANIES)] == ["ABC Company Ltd."]


async def test_execute_refused_for_finished_job(
    backend: InMemoryBackend, runner: InlineJobRunner, companies_csv: bytes
):
    job = await _upload(backend, companies_csv)
    await import_service.execute_import_job(backend, runner, job.id)
    await runner.drain()

    with pytest.raises(InvalidStatusTransitionError):
        await import_service.execute_import_job(backend, runner, job.id)


async def test_execute_without_file(backend: InMemoryBackend, runner: InlineJobRunner):
    job = await import_service.create_import_job(backend, filename="companies.csv")
    with pytest.raises(ImportFileMissingError):
        await import_service.execute_import_job(backend, runner, job.id)
    assert (await backend.get_job(job.id)).status is ImportStatus.QUEUED


async def test_processing_failure_marks_job_failed(
    backend: InMemoryBackend, runner: InlineJobRunner, companies_csv: bytes
):
    job = await _upload(backend, companies_csv)
    # The stored copy went bad after upload
    await backend.save_file(job.id, b'a,b\n"unterminated,2\n')

    await import_service.execute_import_job(backend, runner, job.id)
    await runner.drain()

    failed = await backend.get_job(job.id)
    assert failed.status is ImportStatus.FAILED
    assert failed.errors[0]["column"] == "system"
    assert failed.errors[0]["row"] == 0
    assert "CSV parsing errors" in failed.errors[0]["message"]
    assert await backend.load_file(job.id) is None


class BrokenRunner(JobRunner):
    name = "broken"

    async def submit(self, job_id: uuid.UUID, options: dict[str, Any]) -> str:
        raise RuntimeError("broker unavailable")

    async def cancel(self, handle: str) -> None:
        return None


async def test_submit_failure_marks_job_failed(backend: InMemoryBackend, companies_csv: bytes):
    job = await _upload(backend, companies_csv)

    with pytest.raises(RuntimeError, match="broker unavailable"):
        await import_service.execute_import_job(backend, BrokenRunner(), job.id)

    failed = await backend.get_job(job.id)
    assert failed.status is ImportStatus.FAILED
    assert "broker unavailable" in failed.errors[0]["message"]


async def test_contacts_link_to_imported_companies(
    backend: InMemoryBackend,
    runner: InlineJobRunner,
    companies_csv: bytes,
    contacts_csv: bytes,
):
    companies_job = await _upload(backend, companies_csv)
    await import_service.execute_import_job(backend, runner, companies_job.id)
    await runner.drain()

    contacts_job = await _upload(
        backend, contacts_csv, filename="contacts.csv", entity_type=EntityType.CONTACTS
    )
    await import_service.execute_import_job(backend, runner, contacts_job.id)
    await runner.drain()

    finished = await backend.get_job(contacts_job.id)
    assert finished.status is ImportStatus.COMPLETED_WITH_ERRORS
    assert finished.processed_records == 1

    company_id = backend.entities(EntityType.COMPANIES)[0]["id"]
    contacts = backend.entities(EntityType.CONTACTS)
    assert contacts[0]["email"] == "john.doe@example.com"
    assert contacts[0]["company_id"] == company_id


async def test_activities_coerce_dates(
    backend: InMemoryBackend, runner: InlineJobRunner, activities_csv: bytes
):
    job = await _upload(
        backend, activities_csv, filename="activities.csv", entity_type=EntityType.ACTIVITIES
    )
    await import_service.execute_import_job(backend, runner, job.id)
    await runner.drain()

    activities = backend.entities(EntityType.ACTIVITIES)
    assert len(activities) == 1
    assert activities[0]["activity_date"] == date(2025, 1, 15)
    assert activities[0]["description"] == "Discussed targets, pricing"
    assert (await backend.get_job(job.id)).error_records == 1


async def test_cancel_queued_job(backend: InMemoryBackend, runner: InlineJobRunner, companies_csv: bytes):
    job = await _upload(backend, companies_csv)

    cancelled = await import_service.cancel_import_job(backend, runner, job.id)
    assert cancelled.status is ImportStatus.CANCELLED
    assert cancelled.completed_at is not None
    assert await backend.load_file(job.id) is None

    with pytest.raises(InvalidStatusTransitionError):
        await import_service.cancel_import_job(backend, runner, job.id)


async def test_cancel_processing_job_prevents_completion(
    backend: InMemoryBackend, runner: InlineJobRunner, companies_csv: bytes
):
    job = await _upload(backend, companies_csv)
    await import_service.execute_import_job(backend, runner, job.id)

    await import_service.cancel_import_job(backend, runner, job.id)
    await runner.drain()

    stored = await backend.get_job(job.id)
    assert stored.status is ImportStatus.CANCELLED
    assert stored.processed_records == 0
    assert backend.entities(EntityType.COMPANIES) == []


async def test_process_import_ignores_job_not_processing(
    backend: InMemoryBackend, companies_csv: bytes
):
    job = await _upload(backend, companies_csv)

    result = await import_service.process_import(backend, job.id)

    assert result.status is ImportStatus.QUEUED
    assert backend.entities(EntityType.COMPANIES) == []
    assert await import_service.process_import(backend, uuid.uuid4()) is None


async def test_complete_import_skips_job_that_left_processing(
    backend: InMemoryBackend, runner: InlineJobRunner, companies_csv: bytes
):
    job = await _upload(backend, companies_csv)
    await backend.transition(job.id, {ImportStatus.QUEUED}, ImportStatus.PROCESSING)
    await import_service.cancel_import_job(backend, runner, job.id)

    result = await backend.complete_import(
        job.id,
        EntityType.COMPANIES,
        [{"name_en": "ABC Company Ltd."}],
        to_status=ImportStatus.COMPLETED,
        processed_records=1,
    )

    assert result is None
    assert backend.entities(EntityType.COMPANIES) == []
    assert (await backend.get_job(job.id)).status is ImportStatus.CANCELLED
