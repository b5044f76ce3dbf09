"""Logging utilities for loopguard.

Guard events go through structlog, rendered and handed to the stdlib root
logger, so the same lines reach stdout and (outside CI) an in-memory buffer
that a caller can attach to a task transcript.
"""

import io
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

# Error text is cut to this length in log lines
LOG_TEXT_LIMIT = 100

BUFFER_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class JsonLogFormatter(logging.Formatter):
    """JSON formatter for the capture buffer, matching structlog's JSON output."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


_log_buffer: Optional[io.StringIO] = None
_buffer_handler: Optional[logging.Handler] = None


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: str = "INFO", json_logs: bool = False):
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Minimum level name; unknown names fall back to INFO
        json_logs: Render JSON instead of console output

    The capture buffer is skipped when the ``CI`` environment variable is set.
    """
    global _log_buffer, _buffer_handler

    numeric_level = _resolve_level(level)
    capture = os.getenv("CI") is None

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.format_exc_info,
    ]
    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    console_handler.setLevel(numeric_level)
    root_logger.addHandler(console_handler)

    if not capture:
        _log_buffer = None
        _buffer_handler = None
        return

    _log_buffer = io.StringIO()
    _buffer_handler = logging.StreamHandler(_log_buffer)
    _buffer_handler.setFormatter(
        JsonLogFormatter() if json_logs else logging.Formatter(BUFFER_FORMAT)
    )
    _buffer_handler.setLevel(numeric_level)
    root_logger.addHandler(_buffer_handler)


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def bind_task_context(**context: Any) -> None:
    """Attach key/values (e.g. ``task_id``) to every log line in this context."""
    structlog.contextvars.bind_contextvars(**context)


def clear_task_context() -> None:
    structlog.contextvars.clear_contextvars()


def truncate_for_log(text: Any, limit: int = LOG_TEXT_LIMIT) -> str:
    """Shorten error text for a log line."""
    text = str(text)
    return text if len(text) <= limit else text[:limit] + "..."


def get_captured_logs() -> Optional[str]:
    """
    Get all captured log content.

    Returns:
        The captured log content, or None when not capturing (running in CI)
    """
    if _log_buffer is not None:
        return _log_buffer.getvalue()
    return None


def clear_log_buffer():
    """Clear the log buffer (useful for tests)."""
    if _log_buffer is not None:
        _log_buffer.truncate(0)
        _log_buffer.seek(0)
