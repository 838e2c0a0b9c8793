from __future__ import annotations

import pathlib
from collections.abc import AsyncGenerator

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from selly_base.api.deps import get_backend, get_runner
from selly_base.backends.memory import InMemoryBackend
from selly_base.backends.persistent import PersistentBackend
from selly_base.database import Base
from selly_base.main import app
from selly_base.models import *  # noqa: F401, F403  ensure all models are loaded
from selly_base.plugins import registry
from selly_base.tasks.runners import InlineJobRunner

FIXTURES = pathlib.Path(__file__).parent / "fixtures"


class FakeRedis:
    """Just the slice of the redis.asyncio client that PersistentBackend uses."""

    def __init__(self) -> None:
        self.store: dict[str, bytes] = {}
        self.ttls: dict[str, int | None] = {}

    async def set(self, key: str, value: bytes, ex: int | None = None) -> bool:
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def get(self, key: str) -> bytes | None:
        return self.store.get(key)

    async def delete(self, key: str) -> int:
        self.ttls.pop(key, None)
        return 1 if self.store.pop(key, None) is not None else 0

    async def aclose(self) -> None:
        return None


@pytest.fixture(autouse=True)
def _parsers() -> None:
    registry.discover()


@pytest.fixture()
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture()
async def runner(backend: InMemoryBackend) -> AsyncGenerator[InlineJobRunner]:
    inline = InlineJobRunner(backend)
    yield inline
    await inline.shutdown()


@pytest.fixture()
async def client(
    backend: InMemoryBackend, runner: InlineJobRunner
) -> AsyncGenerator[httpx.AsyncClient]:
    app.dependency_overrides[get_backend] = lambda: backend
    app.dependency_overrides[get_runner] = lambda: runner

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
async def sql_backend(
    fake_redis: FakeRedis, tmp_path: pathlib.Path
) -> AsyncGenerator[PersistentBackend]:
    # One file per test so every session gets its own connection
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'imports.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    sql = PersistentBackend(
        async_sessionmaker(engine, expire_on_commit=False),
        fake_redis,  # type: ignore[arg-type]
        file_ttl_seconds=60,
        engine=engine,
    )
    yield sql
    await sql.close()


@pytest.fixture()
def companies_csv() -> bytes:
    return (FIXTURES / "companies.csv").read_bytes()


@pytest.fixture()
def contacts_csv() -> bytes:
    return (FIXTURES / "contacts.csv").read_bytes()


@pytest.fixture()
def activities_csv() -> bytes:
    return (FIXTURES / "activities.csv").read_bytes()
