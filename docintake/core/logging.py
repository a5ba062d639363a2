"""Structured logging for the document intake engine.

Records are single ``key=value`` lines. Correlation ids (intake, upload,
client token) are lifted out of ``extra`` and always printed right after the
message so one intake's activity can be grepped across modules.
"""

import logging
import sys
from typing import Any

CORRELATION_FIELDS = ("intake_id", "upload_id", "client_token", "step")


def _render(value: Any) -> str:
    text = str(value)
    return f'"{text}"' if " " in text else text


class StructuredFormatter(logging.Formatter):
    """key=value formatter with correlation ids and free-form context."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }
        for key in CORRELATION_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                fields[key] = value
        fields.update(getattr(record, "extra_data", {}))

        line = " ".join(f"{k}={_render(v)}" for k, v in fields.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _level_for_env() -> int:
    try:
        from docintake.core.config import get_settings

        return logging.DEBUG if get_settings().INTAKE_ENV == "dev" else logging.INFO
    except Exception:
        # Settings may fail to load (e.g. a bad .env); logging must still work
        return logging.INFO


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger writing structured lines to stdout.

    Args:
        name: Logger name (typically __name__)
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level_for_env())
    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **context: Any) -> None:
    """
    Log with correlation ids and extra context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **context: intake_id / upload_id / client_token / step plus any other fields
    """
    extra: dict[str, Any] = {key: context.pop(key) for key in CORRELATION_FIELDS if key in context}
    extra["extra_data"] = context
    logger.log(level, msg, extra=extra)
