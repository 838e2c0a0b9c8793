from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from selly_base.backends.factory import build_backend
from selly_base.config import settings
from selly_base.plugins import registry
from selly_base.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _ensure_plugins() -> None:
    """Discover plugins if not already loaded."""
    if not registry.get_all("parser"):
        registry.discover()


async def _run(job_id: uuid.UUID, options: dict[str, Any]) -> dict[str, Any]:
    from selly_base.services.import_service import process_import

    backend = build_backend(settings, worker=True)
    try:
        job = await process_import(backend, job_id, options)
    finally:
        await backend.close()

    if job is None:
        return {"job_id": str(job_id), "status": "failed", "error": "Job not found"}
    return {
        "job_id": str(job_id),
        "status": job.status.value,
        "processed": job.processed_records,
        "errors": job.error_records,
    }


@celery_app.task(name="selly_base.tasks.import_tasks.execute_import_task")
def execute_import_task(job_id: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
    """Import the rows of a job that was moved to processing by the API."""
    _ensure_plugins()
    logger.info("Worker picked up import job %s", job_id)
    return asyncio.run(_run(uuid.UUID(job_id), options or {}))
