# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Structured logging for Credflow.

Loggers are named after the layer they belong to (credflow.api,
credflow.service.<name>, credflow.engine.<component>) and write one JSON
object per line by default. Fields passed through log_event() (execution_id,
node_id, from_status ...) become top-level keys of that object.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Optional
from pathlib import Path


# Attributes every LogRecord has; anything else came in through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON document per record, extra fields flattened into it."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, value) for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Human-readable format for local runs (logging.format: text)."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )


def get_logger(
    name: str,
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[Path] = None
) -> logging.Logger:
    """
    Return the named logger configured with a single stdout handler.

    Args:
        name: Dotted logger name
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "json" or "text"
        log_file: Also append to this file when given

    Calling it again for the same name replaces the handlers instead of
    stacking them.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.getLevelName(log_level.upper()))
    logger.handlers = []

    formatter = JSONFormatter() if log_format == "json" else TextFormatter()

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def log_event(
    logger: logging.Logger,
    event: str,
    level: str = "INFO",
    **fields: Any
) -> None:
    """Log `event` as the message with `fields` as structured keys."""
    logger.log(logging.getLevelName(level.upper()), event, extra=fields)


def _configured(name: str) -> logging.Logger:
    from credflow.core.config import get_config
    config = get_config()
    return get_logger(name, log_level=config.log_level, log_format=config.log_format)


def get_api_logger() -> logging.Logger:
    return _configured("credflow.api")


def get_service_logger(service_name: str) -> logging.Logger:
    return _configured(f"credflow.service.{service_name}")


def get_engine_logger(component: str) -> logging.Logger:
    """Logger for an engine component (scheduler, tracker, node handlers)."""
    return _configured(f"credflow.engine.{component}")
