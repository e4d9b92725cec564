"""
Logging setup for the chat service.

Every record can carry the context of the connection it was emitted for
(`connection_id`, `user_id`), set once per connection with
`set_log_context()`, plus the correlation ID of the current HTTP request
or chat connection. Console output is human-readable or JSON; errors are
also written as JSON to LOG_FILE_PATH and, when enabled, shipped to Loki.
"""

import json
import logging
import sys
from contextvars import ContextVar
from typing import Any

from chathub.constants import LOKI_MAX_LOG_SIZE_BYTES
from chathub.middlewares.correlation_id import get_correlation_id
from chathub.settings import app_settings

log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

# Attributes every LogRecord has; anything else on a record came in via `extra`
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "correlation_id", "context"}

_DATEFMT = "%Y-%m-%d %H:%M:%S"


def set_log_context(**kwargs: Any) -> None:
    """
    Add fields to the log context of the current task.

    The stored dict is replaced, never mutated, so a connection's context
    does not leak into the tasks it was copied to.

    Example:
        >>> set_log_context(connection_id="3f2a9c1d")
        >>> set_log_context(user_id="u1")
        >>> logger.info("User u1 joined the chat")  # carries both fields
    """
    log_context.set({**log_context.get(), **kwargs})


def get_log_context() -> dict[str, Any]:
    return log_context.get()


def clear_log_context() -> None:
    log_context.set({})


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


class StructuredJSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Fields: timestamp, level, logger, message, source location,
    environment, the correlation ID (when set), the log context, any
    `extra` fields and the formatted exception. Records that would exceed
    Loki's entry size get their message cut.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, _DATEFMT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            "environment": app_settings.ENV.value,
        }

        if correlation_id := get_correlation_id():
            entry["correlation_id"] = correlation_id

        entry.update(get_log_context())
        entry.update(_extra_fields(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        serialized = json.dumps(entry, default=str)
        overflow = len(serialized) - LOKI_MAX_LOG_SIZE_BYTES
        if overflow > 0:
            entry["message"] = (
                entry["message"][: max(len(entry["message"]) - overflow - 32, 0)]
                + "... [TRUNCATED]"
            )
            serialized = json.dumps(entry, default=str)

        return serialized


class HumanReadableFormatter(logging.Formatter):
    """
    Single-line console format for development.

    INFO records are short; everything else also names the source
    location. The log context is appended as `key=value` pairs.
    """

    SHORT_FMT = "%(asctime)s - [%(correlation_id)s] %(levelname)s: %(message)s%(context)s"
    LONG_FMT = (
        "%(asctime)s - [%(correlation_id)s] %(levelname)s: "
        "%(module)s.%(funcName)s:%(lineno)d - %(message)s%(context)s"
    )

    def __init__(self) -> None:
        super().__init__()
        self._short = logging.Formatter(self.SHORT_FMT, datefmt=_DATEFMT)
        self._long = logging.Formatter(self.LONG_FMT, datefmt=_DATEFMT)

    def format(self, record: logging.LogRecord) -> str:
        record.correlation_id = get_correlation_id() or "-"

        context = get_log_context()
        record.context = (
            " (" + " ".join(f"{k}={v}" for k, v in context.items()) + ")"
            if context
            else ""
        )

        if record.levelno == logging.INFO:
            return self._short.format(record)
        return self._long.format(record)


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.DEBUG)
    if app_settings.LOG_CONSOLE_FORMAT == "json":
        handler.setFormatter(StructuredJSONFormatter())
    else:
        handler.setFormatter(HumanReadableFormatter())
    return handler


def _error_file_handler() -> logging.Handler:
    """
    JSON error log at LOG_FILE_PATH.

    Raises:
        OSError: If the file cannot be opened.
    """
    handler = logging.FileHandler(app_settings.LOG_FILE_PATH)
    handler.setLevel(logging.ERROR)
    handler.setFormatter(StructuredJSONFormatter())
    return handler


def _loki_handler() -> logging.Handler:
    """
    Handler pushing INFO and above to Loki.

    Needs the `loki` extra (python-logging-loki).
    """
    from logging_loki import LokiHandler

    handler = LokiHandler(
        url=f"{app_settings.LOKI_URL}/loki/api/v{app_settings.LOKI_VERSION}/push",
        tags={"application": "chathub", "environment": app_settings.ENV.value},
        version=app_settings.LOKI_VERSION,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(StructuredJSONFormatter())
    return handler


def setup_logging() -> logging.Logger:
    """
    Configure the root logger.

    Handlers that cannot be created (unwritable error log, Loki client not
    installed or misconfigured) are skipped with a warning; the console
    handler is always installed.

    Returns:
        The configured root logger.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, app_settings.LOG_LEVEL.upper()))
    root.handlers.clear()
    root.addHandler(_console_handler())

    try:
        root.addHandler(_error_file_handler())
    except OSError as ex:
        root.warning(f"Error log disabled, cannot open {app_settings.LOG_FILE_PATH}: {ex}")

    if app_settings.LOKI_ENABLED:
        try:
            root.addHandler(_loki_handler())
            root.info(f"Shipping logs to Loki at {app_settings.LOKI_URL}")
        except Exception as ex:
            root.warning(f"Loki logging disabled: {ex}")

    # Keep pytest output clean
    if sys.argv[0].split("/")[-1] == "pytest":
        logging.disable(logging.ERROR)

    return root


logger = setup_logging()
