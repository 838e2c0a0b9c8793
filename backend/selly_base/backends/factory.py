from __future__ import annotations

import logging

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from selly_base.backends.base import DataBackend
from selly_base.backends.memory import InMemoryBackend, demo_jobs
from selly_base.backends.persistent import PersistentBackend
from selly_base.config import Settings

logger = logging.getLogger(__name__)


def build_backend(settings: Settings, *, worker: bool = False) -> DataBackend:
    """Pick the data backend once, from configuration.

    Worker processes get their own engine without pooling, since every task
    runs on a fresh event loop.
    """
    if settings.SKIP_DATABASE:
        seed = demo_jobs() if settings.SEED_DEMO_DATA else []
        logger.warning("SKIP_DATABASE is set: import jobs are kept in memory only")
        return InMemoryBackend(seed=seed)

    if worker:
        engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
    else:
        # The shared engine outlives any one backend
        from selly_base.database import async_session_factory as session_factory

        engine = None

    return PersistentBackend(
        session_factory,
        Redis.from_url(settings.REDIS_URL),
        file_ttl_seconds=settings.IMPORT_FILE_TTL_SECONDS,
        engine=engine,
    )
