from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from selly_base.config import settings

_LOGGING_CONFIGURED = False


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


def setup_logging() -> None:
    """Send ``selly_base`` logs to stdout, once per process."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    level_name = settings.LOG_LEVEL.strip().upper() or "INFO"
    level = getattr(logging, level_name, logging.INFO)

    formatter: logging.Formatter
    if settings.LOG_JSON:
        formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    app_logger = logging.getLogger("selly_base")
    app_logger.handlers.clear()
    app_logger.addHandler(handler)
    app_logger.setLevel(level)
    app_logger.propagate = False

    logging.getLogger(__name__).info(
        "Logging configured. level=%s json=%s", level_name, str(settings.LOG_JSON).lower()
    )
    _LOGGING_CONFIGURED = True
