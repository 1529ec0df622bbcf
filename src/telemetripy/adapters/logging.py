"""Python logging integration for telemetripy.

Two pieces live here:

- ``get_logger`` returns the structlog logger used by the telemetry core
  itself (flush failures, scheduler errors); ``configure_logging`` routes
  it through the standard library for applications that want that.
- ``BatcherLogHandler`` bridges the standard library logging module to a
  ``LogBatcher`` so application log records are shipped with the rest of
  the request telemetry.
"""

import logging
import sys
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

import structlog
from structlog.typing import Processor

from telemetripy.core.models import LogLevel

if TYPE_CHECKING:
    from telemetripy.core.log_batcher import LogBatcher

# Records from these loggers are never forwarded, or a failed flush would
# queue its own failure report for the next flush.
_INTERNAL_LOGGER_PREFIX = "telemetripy"

# Set while a sink POST is in flight; records emitted then (httpx request
# lines included) describe the flush itself and are not forwarded.
_forwarding_suppressed: ContextVar[bool] = ContextVar(
    "telemetripy_forwarding_suppressed", default=False
)

# Standard LogRecord attributes that should not be treated as extra fields
_STANDARD_LOGRECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structlog to render through the standard library.

    Args:
        log_level: The log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Output format - "json" for production, "console" for development.
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "console":
        processors: list[Processor] = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=False),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Reduce noise from the sink client
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: The logger name (typically __name__).

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.error("Failed to push logs", status=502)
    """
    return structlog.stdlib.get_logger(name)


@contextmanager
def forwarding_suppressed() -> Iterator[None]:
    """Stop ``BatcherLogHandler`` from forwarding records in this context."""
    token = _forwarding_suppressed.set(True)
    try:
        yield
    finally:
        _forwarding_suppressed.reset(token)


def _level_for_record(record: logging.LogRecord) -> LogLevel:
    if record.levelno >= logging.ERROR:
        return LogLevel.ERROR
    if record.levelno >= logging.INFO:
        return LogLevel.INFO
    return LogLevel.DEBUG


class BatcherLogHandler(logging.Handler):
    """Logging handler that queues log records on a LogBatcher.

    Example:
        ```python
        handler = BatcherLogHandler(telemetry.log_batcher)
        logging.getLogger("app").addHandler(handler)
        ```
    """

    def __init__(self, batcher: "LogBatcher", message: str = "app_log") -> None:
        """Initialize the handler.

        Args:
            batcher: Batcher that receives the converted records.
            message: Tag used as the entry message; the formatted record text
                goes into the ``text`` field.
        """
        super().__init__()
        self._batcher = batcher
        self._message = message

    def emit(self, record: logging.LogRecord) -> None:
        """Queue a log record on the batcher.

        Args:
            record: The log record to emit.
        """
        if _forwarding_suppressed.get() or record.name.startswith(
            _INTERNAL_LOGGER_PREFIX
        ):
            return

        fields: dict[str, Any] = {
            "logger": record.name,
            "text": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName or "",
            "lineno": record.lineno,
        }

        # Add any extra attributes passed via logging call
        for key, value in record.__dict__.items():
            if key not in _STANDARD_LOGRECORD_ATTRS and isinstance(
                value, (str, int, float, bool)
            ):
                fields[key] = value

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            if exc_type is not None:
                fields["name"] = exc_type.__name__
            if exc_tb is not None:
                fields["stack"] = "".join(
                    traceback.format_exception(exc_type, exc_value, exc_tb)
                )

        self._batcher.record(_level_for_record(record), self._message, fields)
