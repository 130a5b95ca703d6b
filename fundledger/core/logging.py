"""
Logging configuration.

Three handlers hang off the root logger:

- stdout, coloured and human-readable, for local development;
- ``logs/fundledger.log``, one JSON object per line, for log aggregation;
- ``logs/fundledger-error.log``, the same JSON but ERROR and above only.

Every record is stamped with the id of the HTTP request being served (see
``RequestIDMiddleware``), so a ledger line can be traced back to the call
that caused it.  Ledger identifiers passed through ``extra=``
(``fund_id``, ``account_id``, ``transaction_id``) become top-level JSON keys
and are abbreviated on the console.

Call ``setup_logging()`` once at startup; modules log via
``logging.getLogger(__name__)``.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from fundledger.core.config import settings

LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "logs")
LOG_FILE = os.path.join(LOG_DIR, "fundledger.log")
ERROR_LOG_FILE = os.path.join(LOG_DIR, "fundledger-error.log")

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LEDGER_FIELDS = ("fund_id", "account_id", "transaction_id")
HTTP_FIELDS = ("status_code", "method", "path", "elapsed_ms", "client_ip")


def _utc(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


def _has_exception(record: logging.LogRecord) -> bool:
    return bool(record.exc_info) and record.exc_info[0] is not None


class RequestIDFilter(logging.Filter):
    """Stamp records with the id of the request currently being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_ctx.get()
        return True


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record::

        {"timestamp": "2024-05-15T10:30:00.123+00:00", "level": "INFO",
         "logger": "fundledger.services.redemption_service",
         "message": "Redeemed 40.000 units ...", "fund_id": "...",
         "account_id": "...", "request_id": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": _utc(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in ("request_id",) + HTTP_FIELDS + LEDGER_FIELDS:
            value = getattr(record, key, None)
            if value:
                payload[key] = value
        if _has_exception(record):
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """``time | LEVEL | logger [request] | message fund=…`` with a coloured level."""

    LEVEL_COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelname, self.RESET)
        parts = [
            _utc(record).strftime("%Y-%m-%d %H:%M:%S"),
            f"{colour}{record.levelname:<8}{self.RESET}",
        ]

        source = record.name
        request_id = getattr(record, "request_id", None)
        if request_id:
            source += f" [{request_id[:8]}]"
        parts.append(source)

        message = record.getMessage()
        tags = [
            f"{key[:-3]}={str(getattr(record, key))[:8]}"
            for key in LEDGER_FIELDS
            if getattr(record, key, None)
        ]
        if tags:
            message += "  " + " ".join(tags)
        parts.append(message)

        line = " | ".join(parts)
        if _has_exception(record):
            line += "\n" + self.formatException(record.exc_info)
        return line


def _rotating_json_handler(path: str, level: int, request_filter: logging.Filter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=path,
        maxBytes=settings.LOG_FILE_MAX_BYTES,
        backupCount=settings.LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(request_filter)
    return handler


def setup_logging() -> None:
    """
    Attach the console and rotating file handlers to the root logger.

    Does nothing when the root logger already has handlers (pytest, uvicorn
    ``--reload``).  ``DEBUG=true`` forces DEBUG level and turns on SQL echo
    through the ``sqlalchemy.engine`` logger.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    if settings.DEBUG:
        level = logging.DEBUG
    else:
        level = logging.getLevelName(settings.LOG_LEVEL.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)

    request_filter = RequestIDFilter()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(ConsoleFormatter())
    console.addFilter(request_filter)
    root.addHandler(console)

    os.makedirs(LOG_DIR, exist_ok=True)
    root.addHandler(_rotating_json_handler(LOG_FILE, level, request_filter))
    root.addHandler(_rotating_json_handler(ERROR_LOG_FILE, logging.ERROR, request_filter))

    for name, quiet_level in (
        ("uvicorn.access", logging.WARNING),
        ("uvicorn.error", logging.INFO),
        ("sqlalchemy.engine", logging.DEBUG if settings.DEBUG else logging.WARNING),
    ):
        logging.getLogger(name).setLevel(quiet_level)

    root.info(
        "Logging to %s at %s (rotating at %d MB, %d backups)",
        LOG_FILE,
        logging.getLevelName(level),
        settings.LOG_FILE_MAX_BYTES // (1024 * 1024),
        settings.LOG_FILE_BACKUP_COUNT,
    )
