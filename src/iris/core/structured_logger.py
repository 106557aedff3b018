"""
Structured Logging with Trace IDs
=================================

Every routed request runs inside a TraceContext, so the threat assessment,
the cache lookup and each provider attempt it produces share one trace_id.

Two kinds of loggers feed the ``iris`` hierarchy:

- StructuredLogger (orchestrator, factories, CLI) emits one JSON object per
  call with keyword fields attached.
- Plain ``logging.getLogger(__name__)`` loggers in the component modules.
  With ``format: json`` their records are wrapped into the same JSON shape
  by configure_logging().

API keys and bearer tokens are redacted from both.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from iris.config.settings import LoggingConfig

_trace_id_var: ContextVar[str | None] = ContextVar('iris_trace_id', default=None)

# OpenAI/Groq/Gemini/GitHub keys and Authorization headers
_SECRET_PATTERNS = re.compile(
    r"(sk-[A-Za-z0-9_-]+|gsk_[A-Za-z0-9]+|AIza[A-Za-z0-9_-]+|"
    r"ghp_[A-Za-z0-9]+|Bearer\s+[A-Za-z0-9._~+/=-]+)",
    re.IGNORECASE,
)
_STRUCTURED_ATTR = 'iris_structured'


def redact(text: str) -> str:
    return _SECRET_PATTERNS.sub("[REDACTED]", text)


def _entry(level: str, component: str, message: str, fields: dict[str, Any]) -> dict[str, Any]:
    entry: dict[str, Any] = {
        'timestamp': datetime.now(tz=UTC).isoformat(),
        'level': level,
        'component': component,
        'message': redact(message),
    }
    trace_id = _trace_id_var.get()
    if trace_id:
        entry['trace_id'] = trace_id
    for key, value in fields.items():
        entry[key] = redact(value) if isinstance(value, str) else value
    return entry


class StructuredLogger:
    """
    Keyword-field JSON logger bound to a component name.

    Example output:
    {
        "timestamp": "2025-12-17T10:30:45.123+00:00",
        "level": "INFO",
        "component": "Orchestrator",
        "message": "Provider attempt succeeded",
        "trace_id": "3f9c1a7e",
        "provider": "ollama",
        "latency_ms": 812.4
    }
    """

    def __init__(
        self,
        component: str,
        logger: logging.Logger | None = None,
        fields: dict[str, Any] | None = None,
    ) -> None:
        self.component = component
        self.logger = logger or logging.getLogger(f"iris.{component}")
        self._fields = dict(fields or {})

    def bind(self, **fields: Any) -> StructuredLogger:
        """Child logger that adds ``fields`` to every entry."""
        return StructuredLogger(self.component, self.logger, {**self._fields, **fields})

    def _log(self, levelno: int, message: str, fields: dict[str, Any], exc_info: bool = False) -> None:
        if not self.logger.isEnabledFor(levelno):
            return
        entry = _entry(logging.getLevelName(levelno), self.component, message, {**self._fields, **fields})
        self.logger.log(
            levelno,
            redact(json.dumps(entry, default=str)),
            exc_info=exc_info,
            extra={_STRUCTURED_ATTR: True},
        )

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, fields)

    def exception(self, message: str, **fields: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, message, fields, exc_info=True)


class TraceContext:
    """
    Binds a trace_id to the current task or thread for the duration of a block.

    Usage:
        with TraceContext() as trace_id:
            logger.info("Routing request")   # entry carries trace_id
    """

    def __init__(self, trace_id: str | None = None) -> None:
        self.trace_id = trace_id or uuid.uuid4().hex[:8]
        self._token = None

    def __enter__(self) -> str:
        self._token = _trace_id_var.set(self.trace_id)
        return self.trace_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _trace_id_var.reset(self._token)


def current_trace_id() -> str | None:
    """trace_id of the enclosing TraceContext, if any."""
    return _trace_id_var.get()


def get_logger(component: str) -> StructuredLogger:
    return StructuredLogger(component)


class _JsonFormatter(logging.Formatter):
    """Pass StructuredLogger output through; wrap plain records in the same shape."""

    def format(self, record: logging.LogRecord) -> str:
        if getattr(record, _STRUCTURED_ATTR, False):
            text = record.getMessage()
        else:
            text = json.dumps(
                _entry(record.levelname, record.name, record.getMessage(), {}), default=str
            )
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return redact(text)


class _TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record))


def configure_logging(config: LoggingConfig) -> None:
    """Install a single stderr handler on the ``iris`` logger hierarchy."""
    handler = logging.StreamHandler(sys.stderr)
    if config.format == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(_TextFormatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s"))

    root = logging.getLogger("iris")
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(config.level)
    root.propagate = False
