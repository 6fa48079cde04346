"""Structured logging configuration for ccIndex.

Provides logging setup with correlation IDs, a Rich console handler,
JSON-structured file output and configurable log levels.
"""

from __future__ import annotations

import json
import logging
import logging.config
import sys
import time
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

from rich.console import Console
from rich.logging import RichHandler

from ccindex.utils.exceptions import CCIndexError

if TYPE_CHECKING:  # pragma: no cover
    from ccindex.models import ObservabilityConfig

# Context variable for correlation ID
correlation_id: ContextVar[str | None] = cast(
    "ContextVar[str | None]",
    ContextVar("correlation_id", default=None),
)

_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "correlation_id",
    }
)


class CorrelationFilter(logging.Filter):
    """Filter to add correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation ID to log record."""
        record.correlation_id = correlation_id.get() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for logs."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry: dict[str, Any] = {
            "timestamp": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "correlation_id"):
            log_entry["correlation_id"] = record.correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Extra fields passed via ``extra=``
        log_entry.update(
            {
                key: value
                for key, value in record.__dict__.items()
                if key not in _RESERVED_RECORD_KEYS
            }
        )

        return json.dumps(log_entry, default=str)


def create_rich_handler(level: str, console: Console | None = None) -> RichHandler:
    """Create the console handler."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        level=level,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
        log_time_format="[%Y-%m-%d %H:%M:%S]",
    )
    handler.addFilter(CorrelationFilter())
    return handler


def setup_logging(config: ObservabilityConfig) -> None:
    """Set up logging configuration.

    Console output goes through Rich (or a plain stream handler when
    ``rich_console`` is off); an optional rotating file handler writes
    JSON lines when ``structured_logging`` is on.
    """
    level = config.log_level.value

    logging_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": StructuredFormatter,
            },
            "simple": {
                "format": "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "filters": {
            "correlation": {
                "()": CorrelationFilter,
            },
        },
        "handlers": {},
        "loggers": {
            "ccindex": {
                "level": level,
                "handlers": [],
                "propagate": False,
            },
        },
    }

    if not config.rich_console:
        logging_config["handlers"]["console"] = {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "simple",
            "filters": ["correlation"],
            "stream": sys.stderr,
        }
        logging_config["loggers"]["ccindex"]["handlers"].append("console")

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "structured" if config.structured_logging else "simple",
            "filters": ["correlation"],
            "filename": str(log_path),
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
            "encoding": "utf-8",
        }
        logging_config["loggers"]["ccindex"]["handlers"].append("file")

    logging.config.dictConfig(logging_config)

    if config.rich_console:
        logging.getLogger("ccindex").addHandler(create_rich_handler(level))

    if config.log_correlation_id:
        correlation_id.set(str(uuid.uuid4()))


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``ccindex`` namespace."""
    if name == "ccindex" or name.startswith("ccindex."):
        return logging.getLogger(name)
    return logging.getLogger(f"ccindex.{name}")


def set_correlation_id(corr_id: str | None = None) -> str:
    """Set correlation ID for the current context."""
    if corr_id is None:
        corr_id = str(uuid.uuid4())
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str | None:
    """Get the current correlation ID."""
    return correlation_id.get()


class LoggingContext:
    """Context manager that times an operation and logs its outcome.

    Operations in ``INFO_OPERATIONS`` log at INFO; everything else logs at
    DEBUG unless it runs longer than ``slow_threshold``. Failures always log
    at ERROR. A correlation ID is created if the context has none.
    """

    INFO_OPERATIONS = frozenset(
        {
            "torrent_submit",
            "torrent_resubmit",
            "entry_transition",
            "entry_delete",
        }
    )

    def __init__(
        self,
        operation: str,
        log_level: int | None = None,
        slow_threshold: float = 1.0,
        logger: logging.Logger | None = None,
        **kwargs: Any,
    ):
        """Initialize operation context manager.

        Args:
            operation: Name of the operation
            log_level: Fixed level for start/completion messages
            slow_threshold: Duration in seconds above which completion logs at INFO
            logger: Logger to use (defaults to this module's logger)
            **kwargs: Additional context to include in logs

        """
        self.operation = operation
        self.kwargs = kwargs
        self.logger = logger or get_logger(__name__)
        self.start_time: float | None = None
        self.log_level = log_level
        self.slow_threshold = slow_threshold
        self._token = None

    def __enter__(self) -> LoggingContext:
        """Enter the context manager."""
        self.start_time = time.perf_counter()
        if correlation_id.get() is None:
            self._token = correlation_id.set(str(uuid.uuid4()))

        level = self.log_level
        if level is None:
            level = logging.DEBUG
        self.logger.log(level, "Starting %s", self.operation, extra=self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Exit the context manager."""
        duration = time.perf_counter() - self.start_time if self.start_time else 0.0

        if exc_type is None:
            level = self.log_level
            if level is None:
                if (
                    self.operation in self.INFO_OPERATIONS
                    or duration >= self.slow_threshold
                ):
                    level = logging.INFO
                else:
                    level = logging.DEBUG
            self.logger.log(
                level,
                "Completed %s in %.3fs",
                self.operation,
                duration,
                extra=self.kwargs,
            )
        elif isinstance(exc_val, CCIndexError):
            # Expected request-scoped failures; no traceback
            self.logger.info(
                "Rejected %s in %.3fs: %s",
                self.operation,
                duration,
                exc_val.message,
                extra=self.kwargs,
            )
        else:
            self.logger.error(
                "Failed %s in %.3fs: %s",
                self.operation,
                duration,
                exc_val,
                extra=self.kwargs,
                exc_info=exc_val is not None,
            )

        if self._token is not None:
            correlation_id.reset(self._token)
            self._token = None
        return False


def log_exception(logger: logging.Logger, exc: Exception, context: str = "") -> None:
    """Log an exception with context."""
    if isinstance(exc, CCIndexError):
        logger.error(
            "%s: %s",
            context,
            exc.message,
            extra={"details": exc.details},
            exc_info=True,
        )
    else:
        logger.exception("%s: %s", context, exc)
