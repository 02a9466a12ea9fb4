"""
Logging Configuration — Structured logging setup.

Provides consistent logging across all modules with:
- JSON output for automation (machine-readable)
- Human-readable output for interactive runs
- A persistent log file so unattended syncs can be inspected later

## Environment Variables

- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- LOG_FORMAT: json, text (default: text)
- LOG_FILE: append-mode log file (default: /tmp/forksync-sync.log)

## Usage

    from forksync.logging_config import setup_logging

    setup_logging()  # Call once at startup
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict

DEFAULT_LOG_FILE = "/tmp/forksync-sync.log"


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Output format:
    {"ts": "...", "level": "...", "logger": "...", "message": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields
        if hasattr(record, "session"):
            log_entry["session"] = record.session
        if hasattr(record, "stage"):
            log_entry["stage"] = record.stage

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


class HumanFormatter(logging.Formatter):
    """
    Human-readable log formatter.

    Output format:
    12:34:56 INFO  [module] Message
    """

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        time_str = datetime.now().strftime("%H:%M:%S")

        level = record.levelname
        if self.color and sys.stderr.isatty():
            color = self.COLORS.get(level, "")
            level = f"{color}{level:7}{self.RESET}"
        else:
            level = f"{level:7}"

        module = record.name.split(".")[-1][:15]
        msg = record.getMessage()

        return f"{time_str} {level} [{module:15}] {msg}"


def setup_logging(
    level: str | None = None,
    format_type: str | None = None,
    log_file: str | None = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
               Defaults to LOG_LEVEL env var or INFO.
        format_type: Output format (json, text).
                     Defaults to LOG_FORMAT env var or text.
        log_file: Path of the append-mode log file. Defaults to LOG_FILE
                  env var; an empty string disables the file handler.
    """
    log_level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    log_format = (format_type or os.environ.get("LOG_FORMAT", "text")).lower()
    if log_file is None:
        log_file = os.environ.get("LOG_FILE", DEFAULT_LOG_FILE)

    numeric_level = getattr(logging, log_level, logging.INFO)

    formatter: logging.Formatter
    if log_format == "json":
        formatter = JSONFormatter()
    else:
        formatter = HumanFormatter()

    root = logging.getLogger()
    root.setLevel(numeric_level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(numeric_level)
    root.addHandler(handler)

    # Log file always gets full detail, uncolored
    file_error = None
    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        except OSError as e:
            file_error = e
        else:
            file_handler.setFormatter(JSONFormatter() if log_format == "json" else HumanFormatter(color=False))
            file_handler.setLevel(logging.DEBUG)
            root.addHandler(file_handler)
            root.setLevel(min(numeric_level, logging.DEBUG))

    # Suppress noisy loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    if file_error is not None:
        logger.warning(f"Cannot write log file {log_file}: {file_error}")
    logger.debug(
        f"Logging configured: level={log_level}, format={log_format}, file={log_file or '-'}"
    )
