"""
relaystream - Structured JSON Logging

Every relaystream module logs through get_logger(__name__) and passes its
fields as keyword arguments or `extra=`. setup_logging() renders them as one
JSON object per line.

Features:
- JSON-formatted logs for easy parsing
- Call-scoped context (request_id, model, attempt) via contextvars
- Level and format from LOG_LEVEL / LOG_FORMAT
- Redaction of credential fields and of anything that looks like an API key

Usage:
    from relaystream.observability.logging import setup_logging, get_logger

    setup_logging(level="INFO")
    logger = get_logger(__name__)

    with LogContext.bind(model="claude-sonnet-4-5"):
        logger.info("Session opened", messages=3)

Output:
    {"timestamp": "2026-01-15T10:30:00+00:00", "level": "INFO",
     "logger": "relaystream.streaming.session", "message": "Session opened",
     "model": "claude-sonnet-4-5", "messages": 3}
"""

import json
import logging
import os
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Union

_current_context: ContextVar[Optional["LogContext"]] = ContextVar("relaystream_log_context", default=None)

REDACTED = "[REDACTED]"

# Key names that mark a credential
SECRET_KEY_PARTS = ("api_key", "apikey", "x-api-key", "authorization", "password", "secret", "credential", "token")

# Names that contain "token" but hold counts
COUNT_FIELDS = frozenset({
    "input_tokens", "output_tokens", "approx_tokens", "max_tokens", "total_tokens",
    "cache_read_input_tokens", "cache_creation_input_tokens",
})

SECRET_VALUE_PREFIXES = ("sk-ant-",)

# Attributes every LogRecord carries; anything else came from `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def is_secret_key(key: str) -> bool:
    lowered = key.lower()
    if lowered in COUNT_FIELDS:
        return False
    return any(part in lowered for part in SECRET_KEY_PARTS)


def redact(key: str, value: Any) -> Any:
    """Mask a field whose name or value looks like a credential."""
    if is_secret_key(key):
        return REDACTED
    if isinstance(value, str) and any(prefix in value for prefix in SECRET_VALUE_PREFIXES):
        return REDACTED
    return value


@dataclass
class LogContext:
    """
    Fields attached to every record logged while the context is current.

    Context variables do not cross a `yield`, so async generators pass
    their fields per call instead of binding a context.
    """
    request_id: str = ""
    model: str = ""
    attempt: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def get_current(cls) -> Optional["LogContext"]:
        return _current_context.get()

    @classmethod
    def set_current(cls, ctx: Optional["LogContext"]) -> Token:
        return _current_context.set(ctx)

    @classmethod
    def clear(cls):
        _current_context.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator["LogContext"]:
        """Layer fields over the current context until the block exits."""
        base = cls.get_current() or cls()
        known = {k: v for k, v in fields.items() if k in ("request_id", "model", "attempt")}
        ctx = replace(base, extra={**base.extra, **{k: v for k, v in fields.items() if k not in known}}, **known)
        token = _current_context.set(ctx)
        try:
            yield ctx
        finally:
            _current_context.reset(token)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.request_id:
            result["request_id"] = self.request_id
        if self.model:
            result["model"] = self.model
        if self.attempt:
            result["attempt"] = self.attempt
        result.update(self.extra)
        return result


class JSONFormatter(logging.Formatter):
    """One JSON object per record: level, logger, message, context and extra fields."""

    def __init__(self, include_location: bool = False, redact_sensitive: bool = True):
        super().__init__()
        self.include_location = include_location
        self.redact_sensitive = redact_sensitive

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_location:
            data["location"] = f"{record.filename}:{record.lineno}"
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        ctx = LogContext.get_current()
        fields = ctx.to_dict() if ctx else {}
        fields.update((k, v) for k, v in vars(record).items() if k not in _RECORD_ATTRS)

        for key, value in fields.items():
            data[key] = redact(key, value) if self.redact_sensitive else value

        return json.dumps(data, default=str, ensure_ascii=False)


class StructuredLogger(logging.LoggerAdapter):
    """
    Logger adapter that turns keyword arguments into record fields.

        logger.warning("Retryable failure", error_type="overloaded_error", retry=1)
    """

    _LOGGING_KWARGS = ("exc_info", "stack_info", "stacklevel", "extra")

    def __init__(self, logger: logging.Logger):
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        fields = dict(kwargs.pop("extra", None) or {})
        for key in [k for k in kwargs if k not in self._LOGGING_KWARGS]:
            fields[key] = kwargs.pop(key)

        ctx = LogContext.get_current()
        if ctx:
            for key, value in ctx.to_dict().items():
                fields.setdefault(key, value)

        kwargs["extra"] = fields
        return msg, kwargs


def setup_logging(
    level: Union[str, int, None] = None,
    json_output: Optional[bool] = None,
    include_location: bool = False,
    redact_sensitive: bool = True,
) -> None:
    """
    Send the relaystream logger tree to stdout.

    Level and format default to LOG_LEVEL / LOG_FORMAT ("json" or "text").
    Only the "relaystream" logger is touched; the host application's root
    logger is left alone.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "json").lower() == "json"
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if json_output:
        handler.setFormatter(JSONFormatter(include_location=include_location, redact_sensitive=redact_sensitive))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    package_logger = logging.getLogger("relaystream")
    package_logger.handlers = [handler]
    package_logger.setLevel(level)
    package_logger.propagate = False

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name))


class TimedOperation:
    """
    Logs "<operation> completed" (or "failed") with duration_ms on exit.

        async with TimedOperation("send_message", logger) as timer:
            ...
        timer.duration_ms
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[StructuredLogger] = None,
        log_level: int = logging.DEBUG,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        self.logger = logger or get_logger("relaystream.timed")
        self.log_level = log_level
        self.extra = extra or {}
        self.duration_ms: Optional[float] = None
        self._started = 0.0

    def __enter__(self) -> "TimedOperation":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self._started) * 1000
        fields = {"operation": self.operation, "duration_ms": round(self.duration_ms, 2), **self.extra}
        if exc_type is None:
            self.logger.log(self.log_level, f"{self.operation} completed", extra=fields)
        else:
            self.logger.log(logging.ERROR, f"{self.operation} failed", extra={**fields, "error": str(exc_val)})

    async def __aenter__(self) -> "TimedOperation":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.__exit__(exc_type, exc_val, exc_tb)
