"""Logging setup for the storage layer.

Two loggers are configured here:

- ``storage_call_logger`` records every facade call and its result to a
  rotating log file.
- ``error_logger`` emits structured JSON lines for failures, so operators can
  tell a missing record (no log line) from a backend failure (one log line).

``safe_operation`` / ``safe_async_operation`` turn a raising call into a
``(success, result, error)`` triple and log the failure, which is how the
facade keeps exceptions away from its callers.
"""

import functools
import inspect
import json
import logging
import os
import sys
import traceback
from datetime import datetime
from datetime import timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path

try:
    from .metrics_config import record_operation

    METRICS_AVAILABLE = True
except ImportError:
    METRICS_AVAILABLE = False


class ErrorCategory(Enum):
    """Severity buckets for structured error logging."""

    CRITICAL = "CRITICAL"
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


_CATEGORY_LEVELS = {
    ErrorCategory.CRITICAL: logging.CRITICAL,
    ErrorCategory.ERROR: logging.ERROR,
    ErrorCategory.WARNING: logging.WARNING,
    ErrorCategory.INFO: logging.INFO,
}

# Attributes present on every LogRecord; anything else was passed via ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys() | {"message", "asctime"}
)


class StructuredLogFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            log_entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
            }

        return json.dumps(log_entry, default=str)


# --- Logging Setup ---
log_dir = Path(os.environ.get("STORAGE_LOG_DIR", ".storage-logs"))

storage_call_logger = logging.getLogger("storage_call_logger")
storage_call_logger.setLevel(logging.INFO)
storage_call_logger.propagate = False

try:
    log_dir.mkdir(parents=True, exist_ok=True)
    # maxBytes: 10MB per file, backupCount: 5 files (total ~50MB)
    file_handler = RotatingFileHandler(
        log_dir / "storage_calls.log", maxBytes=10 * 1024 * 1024, backupCount=5, delay=True
    )
except OSError:
    file_handler = logging.NullHandler()
file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
storage_call_logger.addHandler(file_handler)

error_logger = logging.getLogger("error_logger")
error_logger.setLevel(logging.INFO)
error_logger.propagate = False
_error_handler = logging.StreamHandler(sys.stderr)
_error_handler.setFormatter(StructuredLogFormatter())
error_logger.addHandler(_error_handler)


def configure_log_level(level: str) -> None:
    """Apply ``level`` to the package loggers and the call and error loggers."""
    for name in ("nexus_storage", storage_call_logger.name, error_logger.name):
        logging.getLogger(name).setLevel(level)


def log_structured_error(
    category: ErrorCategory,
    message: str,
    exception: BaseException | None = None,
    context: dict | None = None,
    operation: str | None = None,
    **kwargs,
) -> None:
    """Log an error with its category, operation and arbitrary context fields."""
    extra = {"error_category": category.value}
    if operation:
        extra["operation"] = operation
    for key, value in {**(context or {}), **kwargs}.items():
        # LogRecord refuses extras that shadow its own attributes
        extra[f"ctx_{key}" if key in _RESERVED_ATTRS else key] = value

    if exception is not None:
        extra["exception_type"] = type(exception).__name__

    error_logger.log(
        _CATEGORY_LEVELS[category],
        message,
        exc_info=exception,
        extra=extra,
    )


def safe_operation(
    operation_name: str,
    func,
    *args,
    error_category: ErrorCategory = ErrorCategory.ERROR,
    context: dict | None = None,
    **kwargs,
):
    """Run ``func`` and return ``(success, result, error)`` instead of raising."""
    try:
        return True, func(*args, **kwargs), None
    except Exception as e:
        log_structured_error(
            category=error_category,
            message=f"Operation {operation_name} failed: {e}",
            exception=e,
            context=context,
            operation=operation_name,
        )
        return False, None, e


async def safe_async_operation(
    operation_name: str,
    func,
    *args,
    error_category: ErrorCategory = ErrorCategory.ERROR,
    context: dict | None = None,
    **kwargs,
):
    """Awaitable counterpart of :func:`safe_operation`."""
    try:
        return True, await func(*args, **kwargs), None
    except Exception as e:
        log_structured_error(
            category=error_category,
            message=f"Operation {operation_name} failed: {e}",
            exception=e,
            context=context,
            operation=operation_name,
        )
        return False, None, e


def _summarize(value) -> str:
    """Short repr for call logs; byte payloads are reported by size only."""
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    if isinstance(value, tuple):
        return "(" + ", ".join(_summarize(v) for v in value) + ")"
    return repr(value)


# --- Decorator for Logging Storage Calls with Metrics ---
def log_storage_call(func):
    """Log the arguments and result of an async facade method.

    Bound ``self`` is skipped in the logged arguments. Exceptions are logged
    and re-raised; the facade methods themselves are expected not to raise.
    """
    if not inspect.iscoroutinefunction(func):
        raise TypeError("log_storage_call expects a coroutine function")

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        func_name = getattr(func, "__name__", "unknown_function")
        logged_args = [_summarize(arg) for arg in args[1:]]
        logged_kwargs = {k: _summarize(v) for k, v in kwargs.items()}
        storage_call_logger.info(f"Calling {func_name} with args={logged_args}, kwargs={logged_kwargs}")

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            storage_call_logger.error(f"{func_name} raised exception: {e}", exc_info=True)
            log_structured_error(
                category=ErrorCategory.ERROR,
                message=f"Storage call {func_name} raised",
                exception=e,
                operation="storage_call",
                function=func_name,
            )
            if METRICS_AVAILABLE:
                record_operation(func_name, getattr(args[0], "mode_name", "unknown"), "error")
            raise

        storage_call_logger.info(f"{func_name} returned: {_summarize(result)}")
        if METRICS_AVAILABLE:
            status = "empty" if result is None or result is False or result == [] else "success"
            record_operation(func_name, getattr(args[0], "mode_name", "unknown"), status)
        return result

    return wrapper
