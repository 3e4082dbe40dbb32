"""Logging setup for processes embedding the engine."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

_PLAIN_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JsonFormatter(logging.Formatter):
    """Serialize log records to one compact JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z")
        )
        payload: dict[str, Any] = {
            "ts": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: int | str = logging.INFO, *, json_output: bool = False) -> None:
    """Install a single stream handler on the `kb_engine` logger.

    Calling it again replaces the handler, so repeated setup in tests or
    scheduled jobs does not duplicate output.
    """

    logger = logging.getLogger("kb_engine")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(_PLAIN_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
