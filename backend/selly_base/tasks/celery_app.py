from __future__ import annotations

from celery import Celery
from celery.signals import worker_init

from selly_base.config import settings

celery_app = Celery(
    "selly_base",
    broker=settings.REDIS_URL,
    include=["selly_base.tasks.import_tasks"],
)
celery_app.conf.update(
    result_backend=settings.REDIS_URL,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
)


@worker_init.connect
def on_worker_init(**kwargs):  # type: ignore[no-untyped-def]
    """Configure logging and discover parser plugins when the worker starts."""
    from selly_base.logging_config import setup_logging
    from selly_base.plugins import registry

    setup_logging()
    registry.discover()
