"""Logging setup: one JSON line per record, to syslog when available."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from logging.config import dictConfig
from logging.handlers import SysLogHandler
from pathlib import Path
from typing import Any

import msgspec

from ..const import LOG_STREAM_ENV
from .model import RuntimeConfig

SYSLOG_SOCKET = Path("/dev/log")
SYSLOG_SOCKET_FALLBACK = Path("/var/run/log")
SYSLOG_IDENT = "opcuagateway "

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return "[" + " ".join(f"{octet:02X}" for octet in value) + "]"
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Render records as JSON objects with ``ts``/``level``/``logger``/``message``."""

    PREFIX = "opcuagateway."

    def format(self, record: logging.LogRecord) -> str:
        name = record.name.removeprefix(self.PREFIX)
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        document: dict[str, Any] = {
            "ts": timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": name,
            "message": record.getMessage(),
        }

        extra = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if extra:
            document["extra"] = extra
        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)
        return msgspec.json.encode(document).decode("utf-8")


def _build_handler() -> logging.Handler:
    """Syslog if a local socket exists, stderr otherwise or when forced."""
    if not os.environ.get(LOG_STREAM_ENV):
        socket_path = next(
            (path for path in (SYSLOG_SOCKET, SYSLOG_SOCKET_FALLBACK) if path.exists()),
            None,
        )
        if socket_path is not None:
            handler = SysLogHandler(address=str(socket_path), facility=SysLogHandler.LOG_DAEMON)
            handler.ident = SYSLOG_IDENT
            return handler
    return logging.StreamHandler()


def configure_logging(config: RuntimeConfig) -> None:
    level = "DEBUG" if config.debug_logging else "INFO"
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {"()": StructuredLogFormatter},
            },
            "handlers": {
                "opcuagateway": {
                    "()": _build_handler,
                    "level": level,
                    "formatter": "structured",
                },
            },
            "root": {"level": level, "handlers": ["opcuagateway"]},
            # asyncua logs every service call at INFO.
            "loggers": {"asyncua": {"level": "WARNING"}},
        }
    )
    logging.getLogger("opcuagateway").info("Logging configured at level %s", level)
