"""
Logging configuration for the Inventory Agent.

Human-readable console output by default; JSON lines when the run feeds
a log aggregation system.
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

# Attributes every LogRecord has; anything else was passed through ``extra``.
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """JSON formatter, one object per line."""

    def __init__(self, extra_fields: dict[str, Any] | None = None):
        super().__init__()
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
            "thread": record.threadName,
        }
        log_data.update(self.extra_fields)

        for key, value in vars(record).items():
            if key not in _RESERVED and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, ensure_ascii=False, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Console formatter with level colours when attached to a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human reading."""
        levelname = f"{record.levelname:8}"
        if self.use_colors:
            color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
            levelname = f"{color}{levelname}{self.COLORS['RESET']}"

        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        message = record.getMessage()

        exc_text = ""
        if record.exc_info:
            exc_text = "\n" + "".join(traceback.format_exception(*record.exc_info))

        return f"{timestamp} {levelname} {record.name}: {message}{exc_text}"


def setup_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    log_file: str | None = None,
) -> logging.Logger:
    """
    Setup logging for the application.

    Args:
        level: Logging level
        json_format: If True, use JSON formatter; otherwise human-readable
        log_file: Optional file path that receives the same records

    Returns:
        Configured logger for the inventory_agent package
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter(extra_fields={"service": "inventory-agent"})
    else:
        formatter = HumanReadableFormatter(use_colors=True)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter(use_colors=False))
        file_handler.setLevel(level)
        root_logger.addHandler(file_handler)

    # urllib3 logs every connection at DEBUG; keep it out of verbose runs
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))

    logger = logging.getLogger("inventory_agent")
    logger.setLevel(level)
    return logger
