"""
Logging configuration.

Console output is human-readable by default; ``json_format=True`` emits
one JSON object per line for log aggregation.
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

# Attributes copied from ``extra={...}`` into structured output
EXTRA_FIELDS = ("stage", "project_id", "api_endpoint", "status_code", "duration_ms", "http_method", "run_id")


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(
        self,
        include_exc_info: bool = True,
        extra_fields: dict[str, Any] | None = None,
    ):
        super().__init__()
        self.include_exc_info = include_exc_info
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_data.update(self.extra_fields)

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if self.include_exc_info and record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, ensure_ascii=False, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

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
        levelname = record.levelname
        if self.use_colors:
            color = self.COLORS.get(levelname, self.COLORS["RESET"])
            levelname = f"{color}{levelname:8}{self.COLORS['RESET']}"
        else:
            levelname = f"{levelname:8}"

        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%H:%M:%S")
        message = record.getMessage()

        extra_info = []
        if hasattr(record, "stage"):
            extra_info.append(f"stage={record.stage}")
        if hasattr(record, "duration_ms"):
            extra_info.append(f"duration={record.duration_ms:.0f}ms")
        if extra_info:
            message = f"{message} [{', '.join(extra_info)}]"

        exc_text = ""
        if record.exc_info:
            exc_text = "\n" + "".join(traceback.format_exception(*record.exc_info))

        return f"{timestamp} {levelname} {record.name}: {message}{exc_text}"


def setup_structured_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    log_file: str | None = None,
    service_name: str = "gitlab-insights",
) -> logging.Logger:
    """
    Setup logging for the application.

    Args:
        level: Logging level
        json_format: If True, use JSON formatter; otherwise human-readable
        log_file: Optional file path for log output
        service_name: Service name added to JSON records

    Returns:
        Configured logger for the gitlab_insights package
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter(extra_fields={"service": service_name})
    else:
        formatter = HumanReadableFormatter(use_colors=True)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(StructuredFormatter(extra_fields={"service": service_name}))
        file_handler.setLevel(level)
        root_logger.addHandler(file_handler)

    # urllib3 connection chatter is noise at INFO
    logging.getLogger("urllib3").setLevel(max(level, logging.WARNING))

    logger = logging.getLogger("gitlab_insights")
    logger.setLevel(level)
    return logger


def log_api_call(
    logger: logging.Logger,
    method: str,
    endpoint: str,
    status_code: int,
    duration_ms: float,
) -> None:
    """
    Log an API call with structured information.

    Successful calls are logged at DEBUG; the client logs failures
    itself with their classification.
    """
    extra = {
        "api_endpoint": endpoint,
        "status_code": status_code,
        "duration_ms": duration_ms,
        "http_method": method,
    }
    logger.debug(f"{method} {endpoint} -> {status_code} ({duration_ms:.0f}ms)", extra=extra)
