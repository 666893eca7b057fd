"""
Logging setup for Certificate Expiry Exporter.

Check and cycle events carry their endpoint context as `extra` fields.
The console formatter appends that context to the line; the JSON file
formatter emits it as top-level keys so failures can be grouped by
endpoint and error type.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from cert_expiry_exporter.config import Config

LOGGER_PREFIX = "cert_expiry_exporter"

# Extra fields set by the helpers below, in output order
CONTEXT_FIELDS = (
    "url",
    "origin_prometheus",
    "error_type",
    "days_remaining",
    "cycle_duration",
    "endpoint_count",
    "failure_count",
)

# Third-party loggers that are only useful when debugging
QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "httpx", "httpcore")


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Context fields present on a record."""
    return {field: getattr(record, field) for field in CONTEXT_FIELDS if hasattr(record, field)}


class ConsoleFormatter(logging.Formatter):
    """Single-line console output, coloured by level on a TTY."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True) -> None:
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.use_color and record.levelname in self.COLORS:
            level = f"{self.COLORS[record.levelname]}{level}{self.RESET}"

        # "cert_expiry_exporter.checker" -> "checker"
        name = record.name
        if name.startswith(LOGGER_PREFIX + "."):
            name = name[len(LOGGER_PREFIX) + 1 :]

        line = f"{self.formatTime(record, '%Y-%m-%d %H:%M:%S')} | {level} | {name:<10} | {record.getMessage()}"

        # url is already part of every check message
        context = {k: v for k, v in record_context(record).items() if k != "url"}
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredFormatter(logging.Formatter):
    """One JSON object per line for the rotating log file."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(record_context(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(config: Config) -> None:
    """
    Configure the root logger from the exporter configuration.

    Console output always goes to stdout. When `log_file` is set, the same
    records are also written as JSON lines to a rotating file.
    """
    level = getattr(logging, config.log_level)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    use_color = hasattr(sys.stdout, "isatty") and sys.stdout.isatty()
    console_handler.setFormatter(ConsoleFormatter(use_color=use_color))
    root_logger.addHandler(console_handler)

    if config.log_file:
        Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)

        # 10MB per file, 5 backups
        file_handler = logging.handlers.RotatingFileHandler(
            config.log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    if level > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    app_logger = logging.getLogger(LOGGER_PREFIX)
    app_logger.info(
        f"Logging initialized - Level: {config.log_level}"
        + (f", file: {config.log_file}" if config.log_file else "")
    )


def get_logger(name: str) -> logging.Logger:
    """Logger for one exporter component."""
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


def log_check_success(logger: logging.Logger, url: str, origin: str, days_remaining: float) -> None:
    logger.debug(
        f"Endpoint {url} expires in {days_remaining} days",
        extra={"url": url, "origin_prometheus": origin, "days_remaining": days_remaining},
    )


def log_check_failure(
    logger: logging.Logger, url: str, origin: str, error: object, error_type: str
) -> None:
    """Log a failed endpoint check. Exactly one WARNING is emitted per failure."""
    logger.warning(
        f"Check failed for {url}: {error}",
        extra={"url": url, "origin_prometheus": origin, "error_type": error_type},
    )


def log_cycle_start(logger: logging.Logger, endpoint_count: int) -> None:
    logger.info(
        f"Starting check cycle - Endpoints: {endpoint_count}",
        extra={"endpoint_count": endpoint_count},
    )


def log_cycle_complete(
    logger: logging.Logger, duration: float, endpoint_count: int, failure_count: int
) -> None:
    logger.info(
        f"Check cycle completed in {duration:.2f}s",
        extra={
            "cycle_duration": round(duration, 3),
            "endpoint_count": endpoint_count,
            "failure_count": failure_count,
        },
    )
