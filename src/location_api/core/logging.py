"""Loguru logging configuration.

Lines carry whatever context is bound to them: the request line set by
:class:`~location_api.api.middleware.RequestLoggingMiddleware` and the
service operation named by the database helpers.  ``json_logs`` switches
stderr to one JSON object per line for log shippers.  Optionally writes to a
rotating log file when a ``log_dir`` is provided.
"""

import sys
from pathlib import Path
from typing import Any

from loguru import logger

_LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} | {message}"

LOG_FILE_NAME = "location-api.log"


def format_record(record: dict[str, Any]) -> str:
    """Build the format string for one record, appending bound context as ``key=value`` pairs."""
    context = " ".join(f"{key}={value}" for key, value in sorted(record["extra"].items()))
    if context:
        # Bound values are data, not format fields.
        context = " | " + context.replace("{", "{{").replace("}", "}}")
    return _LOG_FORMAT + context + "\n{exception}"


def setup_logging(log_level: str = "INFO", log_dir: str | None = None, *, json_logs: bool = False) -> None:
    """Configure Loguru sinks.

    Args:
        log_level: Minimum log level to emit.
        log_dir: Optional directory for log files.  When set, a rotating
            file sink is added (rotated every 24 hours, retained 7 days).
        json_logs: Serialize stderr records as JSON instead of text.
    """
    level = log_level.upper()
    logger.remove()
    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=format_record)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path / LOG_FILE_NAME,
            level=level,
            format=format_record,
            rotation="24h",
            retention="7 days",
        )
