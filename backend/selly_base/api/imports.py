from __future__ import annotations

import asyncio
import json
import uuid

from fastapi import APIRouter, Depends, Form, HTTPException, Query, UploadFile
from fastapi.responses import Response, StreamingResponse

from selly_base.api.deps import get_backend, get_runner
from selly_base.backends.base import DataBackend
from selly_base.models.import_job import TERMINAL_STATUSES, EntityType, ImportStatus
from selly_base.schemas.import_job import (
    CreateImportJobRequest,
    ExecuteImportRequest,
    ImportJobResponse,
    TemplateColumnResponse,
)
from selly_base.services import import_service
from selly_base.services.templates import (
    TemplateFormat,
    generate_template,
    get_column_mapping,
    get_template_filename,
)
from selly_base.tasks.runners import JobRunner

router = APIRouter(prefix="/imports", tags=["imports"])

MEDIA_TYPES = {
    TemplateFormat.CSV: "text/csv",
    TemplateFormat.XLSX: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
PROGRESS_POLL_SECONDS = 2.0


@router.get("", response_model=dict)
async def list_import_jobs(
    status: ImportStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    organization_id: uuid.UUID | None = None,
    backend: DataBackend = Depends(get_backend),
) -> dict:
    jobs, pagination = await import_service.get_import_jobs(
        backend, status=status, organization_id=organization_id, page=page, limit=limit
    )
    return {
        "data": [ImportJobResponse.model_validate(j) for j in jobs],
        "pagination": pagination,
    }


@router.post("", response_model=dict, status_code=201)
async def create_import_job(
    body: CreateImportJobRequest,
    backend: DataBackend = Depends(get_backend),
) -> dict:
    job = await import_service.create_import_job(
        backend,
        filename=body.filename,
        organization_id=body.organization_id,
        uploaded_by=body.uploaded_by,
        entity_type=body.entity_type,
    )
    return {"data": ImportJobResponse.model_validate(job)}


@router.post("/upload", response_model=dict, status_code=201)
async def upload_file(
    file: UploadFile,
    entity_type: EntityType = Form(EntityType.COMPANIES),
    organization_id: uuid.UUID | None = Form(None),
    uploaded_by: uuid.UUID | None = Form(None),
    backend: DataBackend = Depends(get_backend),
) -> dict:
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")
    content = await file.read()
    job = await import_service.upload_import_file(
        backend,
        filename=file.filename,
        content=content,
        entity_type=entity_type,
        organization_id=organization_id,
        uploaded_by=uploaded_by,
    )
    return {
        "data": ImportJobResponse.model_validate(job),
        "message": f"File parsed successfully: {job.total_records} rows found",
    }


@router.get("/templates/{entity_type}", response_model=dict)
async def template_columns(entity_type: EntityType) -> dict:
    return {
        "data": [
            TemplateColumnResponse.model_validate(c) for c in get_column_mapping(entity_type)
        ]
    }


@router.get("/templates/{entity_type}/{fmt}")
async def download_template(entity_type: EntityType, fmt: TemplateFormat) -> Response:
    filename = get_template_filename(entity_type, fmt)
    return Response(
        content=generate_template(entity_type, fmt),
        media_type=MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{job_id}", response_model=dict)
async def get_import_job(
    job_id: uuid.UUID,
    organization_id: uuid.UUID | None = None,
    backend: DataBackend = Depends(get_backend),
) -> dict:
    job = await import_service.get_import_job(backend, job_id, organization_id)
    return {"data": ImportJobResponse.model_validate(job)}


@router.get("/{job_id}/preview", response_model=dict)
async def preview_import(
    job_id: uuid.UUID,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    organization_id: uuid.UUID | None = None,
    backend: DataBackend = Depends(get_backend),
) -> dict:
    preview = await import_service.get_import_preview(
        backend, job_id, organization_id, page=page, limit=limit
    )
    return {"data": preview}


@router.post("/{job_id}/validate", response_model=dict)
async def validate_import(
    job_id: uuid.UUID,
    organization_id: uuid.UUID | None = None,
    backend: DataBackend = Depends(get_backend),
) -> dict:
    summary = await import_service.validate_import_data(backend, job_id, organization_id)
    return {"data": summary}


@router.post("/{job_id}/execute", response_model=dict, status_code=202)
async def execute_import(
    job_id: uuid.UUID,
    body: ExecuteImportRequest | None = None,
    organization_id: uuid.UUID | None = None,
    backend: DataBackend = Depends(get_backend),
    runner: JobRunner = Depends(get_runner),
) -> dict:
    result = await import_service.execute_import_job(
        backend, runner, job_id, organization_id, body
    )
    return {"data": result}


@router.post("/{job_id}/cancel", response_model=dict)
async def cancel_import(
    job_id: uuid.UUID,
    organization_id: uuid.UUID | None = None,
    backend: DataBackend = Depends(get_backend),
    runner: JobRunner = Depends(get_runner),
) -> dict:
    job = await import_service.cancel_import_job(backend, runner, job_id, organization_id)
    return {"data": ImportJobResponse.model_validate(job)}


@router.get("/{job_id}/progress")
async def import_job_progress(
    job_id: uuid.UUID,
    organization_id: uuid.UUID | None = None,
    backend: DataBackend = Depends(get_backend),
) -> StreamingResponse:
    # Verify the job exists (and belongs to the tenant) once
    await import_service.get_import_job(backend, job_id, organization_id)

    async def event_stream():
        while True:
            job = await backend.get_job(job_id)
            if job is None:
                break

            data = ImportJobResponse.model_validate(job).model_dump(mode="json")
            yield f"data: {json.dumps(data)}\n\n"

            if job.status in TERMINAL_STATUSES:
                break

            await asyncio.sleep(PROGRESS_POLL_SECONDS)

    return StreamingResponse(event_stream(), media_type="text/event-stream")
