"""Beacon Observability - Structured logging and correlation tracking."""
from __future__ import annotations
import logging
import uuid
from contextvars import ContextVar
from enum import Enum
from typing import Any
import structlog

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


class LogLevel(str, Enum):
    """Logging levels accepted by configure_logging."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @classmethod
    def coerce(cls, value: LogLevel | str) -> LogLevel:
        """Accept enum members or level names in any case; unknown names fall back to INFO."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.INFO


def get_correlation_id() -> str:
    """Get current correlation ID from context, creating one if unset."""
    cid = _correlation_id.get()
    if not cid:
        cid = str(uuid.uuid4())
        _correlation_id.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID in context."""
    _correlation_id.set(correlation_id)


def configure_logging(
    service_name: str,
    environment: str = "development",
    log_level: LogLevel | str = LogLevel.INFO,
    log_format: str = "json",
) -> None:
    """Route structlog output to stdout, one event per line, tagged with service and correlation id."""
    service_fields = {"service": service_name, "environment": environment}

    def add_request_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        for key, value in service_fields.items():
            event_dict.setdefault(key, value)
        cid = _correlation_id.get()
        if cid:
            event_dict.setdefault("correlation_id", cid)
        return event_dict

    if log_format == "json":
        renderers: list[Any] = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=False)]
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_request_context,
            *renderers,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(LogLevel.coerce(log_level).value)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
