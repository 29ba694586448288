"""Logging setup for benchmark runs.

Plain text on the console by default; ``--json-log`` switches to one JSON
object per line so comparison summaries and entry failures (passed as
``extra=``) stay machine readable.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

__all__ = [
    "setup_logging",
    "JSONFormatter",
]

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` attributes land under "extra".

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123Z", "level": "ERROR",
         "logger": "querybench.lib.runner", "message": "queries entry 0 failed: ...",
         "extra": {"failure": {"entry": "queries[0]", "error_type": "ScanError"}}}
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_attrs = {
            k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS
        }
        if extra_attrs:
            log_data["extra"] = extra_attrs

        return json.dumps(log_data, default=str)


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure logging for a benchmark run.

    Args:
        verbose: Enable debug-level logging
        json_format: Use JSON output format (for log aggregation)
        log_file: Optional file path to write logs to
    """
    level = logging.DEBUG if verbose else logging.INFO

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # The Azure SDKs log every HTTP request at INFO
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
