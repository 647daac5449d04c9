"""Logging setup — console output plus an optional mirror of every record to CLS."""

import contextlib
import contextvars
import logging
import socket
import time
import traceback
from typing import Optional

from cls_shipper.config import CLSConfig, LoggingConfig
from cls_shipper.log_fields import ErrorCategory, LogFields
from cls_shipper.models import LogEntry
from cls_shipper.transport import CLSTransport

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

CONTEXT_KEYS = (LogFields.MESSAGE_ID, LogFields.CONVERSATION_ID, LogFields.CONNECTION_ID)

# Records from these loggers are never mirrored, otherwise a failing upload
# would feed its own diagnostics back into the buffer.
INTERNAL_LOGGERS = ("cls_shipper.transport", "cls_shipper.client", "urllib3", "requests")

SENSITIVE_KEYS = ("password", "secret", "token", "key", "apikey", "secretkey", "secretid")

LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}

_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

_log_context: contextvars.ContextVar[Optional[dict]] = contextvars.ContextVar(
    "log_context", default=None
)


# ----------------------------------------------------------------------
# Log context
# ----------------------------------------------------------------------

def get_log_context() -> dict:
    """Return a copy of the context attached to records in the current task/thread."""
    return dict(_log_context.get() or {})


def set_log_context(context: dict) -> contextvars.Token:
    """Replace the current log context. Returns a token for ``reset_log_context``."""
    return _log_context.set({k: v for k, v in context.items() if v is not None})


def reset_log_context(token: contextvars.Token) -> None:
    _log_context.reset(token)


@contextlib.contextmanager
def log_context(**values):
    """Merge *values* into the log context for the duration of the block."""
    token = _log_context.set({**get_log_context(), **{k: v for k, v in values.items() if v is not None}})
    try:
        yield
    finally:
        _log_context.reset(token)


def set_log_context_from_message(message: Optional[dict], connection_id: Optional[str] = None):
    """Set messageId/conversationId from an inbound message's ``meta`` block."""
    meta = (message or {}).get("meta") or {}
    return set_log_context({
        LogFields.MESSAGE_ID: meta.get("messageId"),
        LogFields.CONVERSATION_ID: meta.get("conversationId"),
        LogFields.CONNECTION_ID: connection_id,
    })


class LogContextFilter(logging.Filter):
    """Copy the current log context onto each record as attributes."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            setattr(record, key, value)
        return True


# ----------------------------------------------------------------------
# Record conversion
# ----------------------------------------------------------------------

def serialize_error(error: BaseException) -> dict:
    """Flatten an exception into name, message, stack and its public attributes."""
    result = {
        "name": type(error).__name__,
        "message": str(error),
        "stack": "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        ).rstrip(),
    }
    for key, value in vars(error).items():
        if not key.startswith("_") and key not in result:
            result[key] = value
    return result


def level_name(levelno: int) -> str:
    if levelno in LEVEL_NAMES:
        return LEVEL_NAMES[levelno]
    return logging.getLevelName(levelno).lower()


def record_to_entry(record: logging.LogRecord) -> LogEntry:
    """Convert a LogRecord into a LogEntry.

    ``data`` collects the record's ``extra`` fields (which include the log
    context once LogContextFilter has run); exception values are serialized,
    and ``exc_info`` is stored under ``error`` unless an extra already uses it.
    """
    data = {}
    for key, value in vars(record).items():
        if key in _RESERVED_ATTRS or key.startswith("_") or value is None:
            continue
        data[key] = serialize_error(value) if isinstance(value, BaseException) else value

    if record.exc_info and record.exc_info[1] is not None:
        data.setdefault(LogFields.ERROR, serialize_error(record.exc_info[1]))

    return LogEntry(
        timestamp=int(record.created * 1000),
        level=level_name(record.levelno),
        message=record.getMessage(),
        data=data or None,
        module=record.name,
    )


class CLSHandler(logging.Handler):
    """Logging handler that writes every record to a CLSTransport.

    The handler owns the transport: closing the handler closes the transport,
    which performs the final flush.
    """

    def __init__(self, transport: CLSTransport, level=logging.NOTSET):
        super().__init__(level)
        self._transport = transport
        self.addFilter(LogContextFilter())

    @property
    def transport(self) -> CLSTransport:
        return self._transport

    def emit(self, record: logging.LogRecord) -> None:
        if record.name.startswith(INTERNAL_LOGGERS):
            return
        try:
            self._transport.write(record_to_entry(record))
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        if not self._transport.closed:
            self._transport.flush()

    def close(self) -> None:
        try:
            self._transport.close()
        finally:
            super().close()


# ----------------------------------------------------------------------
# Setup / teardown
# ----------------------------------------------------------------------

def make_append_fields_fn(config: LoggingConfig):
    """Build the function that stamps every shipped record with app metadata."""
    fields = {
        "appId": config.app_id,
        "version": config.app_version,
        "environment": config.app_env,
        "hostname": socket.gethostname(),
    }

    def append_fields() -> dict:
        return dict(fields)

    return append_fields


def configure_logging(
    config: LoggingConfig,
    cls_config: Optional[CLSConfig] = None,
    client=None,
) -> Optional[CLSTransport]:
    """Configure console logging and, when CLS is configured, mirror logs to it.

    Returns the installed transport, or None when CLS is not configured or
    could not be initialised.
    """
    logging.basicConfig(level=config.level, format=LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(config.level)
    for handler in root.handlers:
        if not any(isinstance(f, LogContextFilter) for f in handler.filters):
            handler.addFilter(LogContextFilter())

    if cls_config is None:
        logger.debug("CLS_ENDPOINT/CLS_TOPIC_ID not set, CLS log shipping disabled")
        return None

    try:
        transport = CLSTransport(
            cls_config,
            client=client,
            append_fields_fn=make_append_fields_fn(config),
        )
    except Exception:
        logger.exception(
            "Failed to initialise CLS transport (endpoint=%s, topic=%s)",
            cls_config.endpoint,
            cls_config.topic_id,
        )
        return None

    root.addHandler(CLSHandler(transport))
    logger.debug("CLS transport initialised for topic %s", cls_config.topic_id)
    return transport


def active_transport() -> Optional[CLSTransport]:
    """The transport behind the CLSHandler installed on the root logger, if any."""
    for handler in logging.getLogger().handlers:
        if isinstance(handler, CLSHandler):
            return handler.transport
    return None


def shutdown_logging() -> None:
    """Detach CLS handlers from the root logger and flush what they still hold."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, CLSHandler):
            root.removeHandler(handler)
            handler.close()


# ----------------------------------------------------------------------
# Structured logging helpers
# ----------------------------------------------------------------------

def create_log_context(data: dict) -> dict:
    """Copy *data* and stamp it with the current time in milliseconds."""
    return {**data, "timestamp": int(time.time() * 1000)}


def format_safe_params(params, max_length: int = 1000):
    """Return a copy of *params* safe to log.

    Strings longer than *max_length* are truncated and values under keys that
    look like credentials are replaced with ``[REDACTED]``, recursively.
    """
    if params is None:
        return params

    if isinstance(params, str):
        if len(params) > max_length:
            return f"{params[:max_length]}... [truncated {len(params) - max_length} chars]"
        return params

    if isinstance(params, (list, tuple)):
        return [format_safe_params(item, max_length) for item in params]

    if isinstance(params, dict):
        result = {}
        for key, value in params.items():
            lower_key = str(key).lower()
            if any(sensitive in lower_key for sensitive in SENSITIVE_KEYS):
                result[key] = "[REDACTED]"
            else:
                result[key] = format_safe_params(value, max_length)
        return result

    return params


def log_command_input(log: logging.Logger, message: dict, connection_id: Optional[str] = None) -> None:
    """Record an inbound command together with its sanitized parameters."""
    meta = message.get("meta") or {}
    payload = message.get("payload") or {}
    action = payload.get("action")

    log.info(
        "Received command: %s",
        action,
        extra=create_log_context({
            LogFields.EVENT_TYPE: "command.receive",
            LogFields.MESSAGE_ID: meta.get("messageId"),
            LogFields.CONVERSATION_ID: meta.get("conversationId"),
            LogFields.CONNECTION_ID: connection_id,
            LogFields.CLIENT_TYPE: meta.get("clientType") or "web",
            LogFields.COMMAND_ACTION: action,
            LogFields.COMMAND_PARAMS: format_safe_params(payload.get("params")),
            LogFields.COMMAND_ORIGIN: payload.get("originalCmd") or "",
        }),
    )


def log_error_with_category(
    log: logging.Logger,
    error: BaseException,
    category: ErrorCategory,
    context: Optional[dict] = None,
) -> None:
    """Record *error* under *category* so failures can be counted per class."""
    error_code = getattr(error, "status_code", None) or getattr(error, "code", None)
    log.error(
        "Error occurred: %s - %s",
        category.value,
        error,
        extra=create_log_context({
            LogFields.EVENT_TYPE: "error.occurred",
            LogFields.ERROR: error,
            LogFields.ERROR_CATEGORY: category.value,
            LogFields.ERROR_CODE: error_code,
            **(context or {}),
        }),
    )
