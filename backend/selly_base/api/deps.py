from __future__ import annotations

from fastapi import Request

from selly_base.backends.base import DataBackend
from selly_base.tasks.runners import JobRunner


def get_backend(request: Request) -> DataBackend:
    return request.app.state.backend


def get_runner(request: Request) -> JobRunner:
    return request.app.state.runner
