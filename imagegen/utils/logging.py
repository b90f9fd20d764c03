# imagegen/utils/logging.py
"""JSON log output with a per-generation correlation id.

Every line carries the correlation id of the generation (or HTTP request)
that emitted it. Pipeline fields passed through ``extra=`` (fingerprint,
model, handle, retry attempt) are lifted into the JSON object so a single
image can be followed from cache lookup to release.
"""

import json
import logging
from contextvars import ContextVar
from typing import Any

# Correlation id of the generation or HTTP request in progress
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# LogRecord attributes copied into the JSON object when present
CONTEXT_FIELDS = ("fingerprint", "model_id", "handle_id", "attempt")


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def get_request_id() -> str:
    """Correlation id of the current context, or "" outside a generation."""
    return request_id_var.get()


class StructuredFormatter(logging.Formatter):
    """Renders each record as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = get_request_id()
        if request_id:
            log_data["request_id"] = request_id

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_structured_logging(level: int | str = logging.INFO) -> None:
    """Install a JSON handler on the root logger.

    Args:
        level: Logging level, as an int or a name such as "DEBUG". Unknown
            names fall back to INFO.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(level)
