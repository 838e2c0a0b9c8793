from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from selly_base.api import imports
from selly_base.backends.factory import build_backend
from selly_base.config import settings
from selly_base.logging_config import setup_logging
from selly_base.plugins.registry import discover
from selly_base.services.errors import ImportJobError
from selly_base.tasks.runners import build_runner

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    setup_logging()
    discover()
    backend = build_backend(settings)
    app.state.backend = backend
    app.state.runner = build_runner(settings, backend)
    logger.info(
        "Import pipeline ready: backend=%s runner=%s",
        backend.name,
        app.state.runner.name,
    )
    yield
    await app.state.runner.shutdown()
    await backend.close()


app = FastAPI(title="Selly Base Import API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ImportJobError)
async def import_job_error_handler(request: Request, exc: ImportJobError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Import request failed: %s", exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


api_prefix = "/api/v1"
app.include_router(imports.router, prefix=api_prefix)


@app.get("/api/v1/health")
async def health(request: Request) -> dict:
    backend = getattr(request.app.state, "backend", None)
    return {"status": "ok", "backend": backend.name if backend is not None else "unavailable"}
