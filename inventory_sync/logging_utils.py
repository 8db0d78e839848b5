"""
Logging helpers for sync cycles.

Push, pull and the engine log under ``inventory_sync.<component>``. A push
cycle binds its id (and, per failure, the entity collection and action)
onto its records so every line of one cycle can be grouped; the JSON
formatter lifts that context into top-level keys.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import IO, Any

PACKAGE_LOGGER = "inventory_sync"

# Record attributes a sync logger may carry as bound context.
SYNC_CONTEXT_KEYS = ("cycle_id", "mode", "entity", "action")


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per record: time, level, logger, message and sync context."""

    def __init__(self, context_keys: tuple[str, ...] = SYNC_CONTEXT_KEYS):
        super().__init__()
        self.context_keys = context_keys

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        line.update(
            (key, getattr(record, key))
            for key in self.context_keys
            if getattr(record, key, None) is not None
        )
        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = PACKAGE_LOGGER,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """
    Send a logger's records to ``stream`` (stdout by default) as JSON lines.

    Existing handlers are replaced. A named logger stops propagating so
    records are not written twice; ``logger_name=None`` configures root.
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = logger_name is None
    return logger


def get_sync_logger(name: str) -> logging.Logger:
    """Logger named ``inventory_sync.<name>``."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")


class SyncLoggerAdapter(logging.LoggerAdapter):
    """Stamps bound sync context onto every record; call-site ``extra`` wins."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context: Any) -> SyncLoggerAdapter:
        return SyncLoggerAdapter(self.logger, {**self.extra, **context})
