"""
Structured logging for Guardian Recovery.

Engine modules log through ``get_logger(__name__)`` and pass identifiers in
``extra`` (request_id, guardian_id, operation...). ``configure_logging``
decides how records are rendered: one JSON object per line when
``LOG_FORMAT=json`` (for aggregation), colored single lines otherwise.

Anything that looks like a credential is redacted before it is written,
whether it arrives in the message, in ``extra`` or in the request context.
"""

import json
import logging
import os
import re
import sys
import threading
from datetime import UTC, datetime
from typing import Any

# ============================================================
# Redaction
# ============================================================

REDACTED = "[REDACTED]"

REDACTED_FIELDS = frozenset({
    "api_key",
    "apikey",
    "x_api_key",
    "authorization",
    "password",
    "secret",
    "token",
    "credentials",
})

_SECRET_ASSIGNMENT = re.compile(
    r"(api[_-]?key|token|secret|password)([\"']?\s*[:=]\s*[\"']?)([^\s\"',}{]+)",
    re.IGNORECASE,
)
_BEARER = re.compile(r"(Bearer\s+)(\S+)", re.IGNORECASE)

_MAX_REDACTION_DEPTH = 10


def _is_sensitive_key(key: Any) -> bool:
    return str(key).lower().replace("-", "_") in REDACTED_FIELDS


def redact_string(text: str) -> str:
    """Mask ``key=value`` style secrets and bearer tokens inside free text."""
    if not isinstance(text, str):
        return text
    text = _SECRET_ASSIGNMENT.sub(rf"\1\2{REDACTED}", text)
    return _BEARER.sub(rf"\1{REDACTED}", text)


def redact_sensitive_data(data: Any, _depth: int = 0) -> Any:
    """Return a copy of ``data`` with sensitive keys and strings masked."""
    if _depth > _MAX_REDACTION_DEPTH:
        return "[MAX_DEPTH_EXCEEDED]"
    if isinstance(data, dict):
        return {
            k: REDACTED if _is_sensitive_key(k) else redact_sensitive_data(v, _depth + 1)
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item, _depth + 1) for item in data]
    if isinstance(data, str):
        return redact_string(data)
    return data


# ============================================================
# Request context
# ============================================================

_local = threading.local()


def get_request_context() -> dict[str, Any]:
    """Context fields attached to every record logged by this thread."""
    return getattr(_local, "context", {})


def set_request_context(**fields) -> None:
    _local.context = {**get_request_context(), **fields}


def clear_request_context() -> None:
    _local.context = {}


class LoggingContext:
    """
    Temporarily add fields to the request context.

    Usage:
        with LoggingContext(caller="g-1", request_id=4):
            logger.info("Processing vote")

    The previous context is restored exactly on exit, so contexts nest.
    """

    def __init__(self, **fields):
        self.fields = fields
        self._saved: dict[str, Any] = {}

    def __enter__(self):
        self._saved = get_request_context()
        set_request_context(**self.fields)
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        _local.context = self._saved
        return False


# ============================================================
# Formatters
# ============================================================

# Attributes every LogRecord carries; anything else came from ``extra``
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record:

        {"timestamp": "...", "level": "INFO", "logger": "recovery_machine",
         "message": "Vote recorded", "request_id": 3, "guardian_id": "g-1",
         "context": {"caller": "g-1", ...}}

    Records at WARNING and above also carry ``source`` (file:line in function).
    """

    def __init__(self, redact: bool = True):
        super().__init__()
        self.redact = redact

    def _clean(self, value: Any) -> Any:
        return redact_sensitive_data(value) if self.redact else value

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": self._clean(record.getMessage()),
        }
        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        context = get_request_context()
        if context:
            entry["context"] = self._clean(context)
        for key, value in _extras(record).items():
            entry[key] = self._clean(value)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

        fields = {**get_request_context(), **_extras(record)}
        suffix = " ".join(f"{k}={v}" for k, v in redact_sensitive_data(fields).items())

        line = f"{color}{stamp} {record.levelname:<7}{self.RESET} {record.name}: {redact_string(record.getMessage())}"
        if suffix:
            line += f"  {suffix}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ============================================================
# Setup
# ============================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool | None = None,
    log_file: str | None = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: JSON lines on stdout; read from LOG_FORMAT if None
        log_file: Also append JSON lines to this file
    """
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "").lower() == "json"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root.addHandler(stream)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    # The request middleware already logs every request
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, normally called with ``__name__``."""
    return logging.getLogger(name)
