from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any

from selly_base.backends.base import DataBackend
from selly_base.config import Settings

logger = logging.getLogger(__name__)


class JobRunner(ABC):
    """Runs ``process_import`` off the request path and hands back a cancellable handle."""

    name: str = ""

    @abstractmethod
    async def submit(self, job_id: uuid.UUID, options: dict[str, Any]) -> str: ...

    @abstractmethod
    async def cancel(self, handle: str) -> None: ...

    async def shutdown(self) -> None:
        return None


class CeleryJobRunner(JobRunner):
    name = "celery"

    async def submit(self, job_id: uuid.UUID, options: dict[str, Any]) -> str:
        from selly_base.tasks.import_tasks import execute_import_task

        result = execute_import_task.apply_async(args=[str(job_id), options])
        return result.id

    async def cancel(self, handle: str) -> None:
        from selly_base.tasks.celery_app import celery_app

        # A task already running is not interrupted; its final status write loses
        # the compare-and-set against the cancelled job instead.
        celery_app.control.revoke(handle)


class InlineJobRunner(JobRunner):
    """Processes jobs as asyncio tasks in the API process (mock mode and tests)."""

    name = "inline"

    def __init__(self, backend: DataBackend) -> None:
        self._backend = backend
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    async def submit(self, job_id: uuid.UUID, options: dict[str, Any]) -> str:
        from selly_base.services.import_service import process_import

        handle = f"inline-{job_id}"
        task = asyncio.create_task(
            process_import(self._backend, job_id, options), name=handle
        )
        self._tasks[handle] = task
        task.add_done_callback(lambda t: self._tasks.pop(handle, None))
        return handle

    async def cancel(self, handle: str) -> None:
        task = self._tasks.get(handle)
        if task is not None and not task.done():
            task.cancel()
            logger.info("Cancelled inline import task %s", handle)

    async def drain(self) -> None:
        """Wait for every submitted job to finish."""
        while self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await self.drain()


def build_runner(settings: Settings, backend: DataBackend) -> JobRunner:
    if settings.SKIP_DATABASE or settings.IMPORT_EXECUTOR == "inline":
        return InlineJobRunner(backend)
    return CeleryJobRunner()
