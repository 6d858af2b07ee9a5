"""
Beacon Exception Hierarchy.
Structured exception handling with correlation tracking for the analytics services.
"""
from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from pydantic import BaseModel, Field
import structlog

from .observability import get_correlation_id

logger = structlog.get_logger(__name__)


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    STORAGE = "storage"
    TIMEOUT = "timeout"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


class ErrorContext(BaseModel):
    """Structured context for error tracking."""
    correlation_id: str = Field(default_factory=get_correlation_id)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    service_name: str = Field(default="beacon")
    operation: str | None = None
    request_id: str | None = None
    additional_data: dict[str, Any] = Field(default_factory=dict)
    model_config = {"frozen": True}

    def with_operation(self, operation: str) -> ErrorContext:
        return ErrorContext(
            correlation_id=self.correlation_id, timestamp=self.timestamp,
            service_name=self.service_name, operation=operation,
            request_id=self.request_id, additional_data=self.additional_data,
        )


class BeaconError(Exception):
    """Base exception for all Beacon errors with structured tracking."""
    error_code: str = "BEACON_ERROR"
    category: ErrorCategory = ErrorCategory.INTERNAL
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    http_status: int = 500

    def __init__(self, message: str, *, user_message: str | None = None,
                 context: ErrorContext | None = None, cause: Exception | None = None,
                 details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.user_message = user_message or "An error occurred. Please try again."
        self.context = context or ErrorContext()
        self.cause = cause
        self.details = details or {}
        self._log_error()

    def _log_error(self) -> None:
        log_data = {
            "error_code": self.error_code, "category": self.category.value,
            "severity": self.severity.value, "correlation_id": self.context.correlation_id,
            "operation": self.context.operation, "details": self.details,
        }
        if self.cause:
            log_data["cause_type"] = type(self.cause).__name__
            log_data["cause_message"] = str(self.cause)
        if self.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            logger.error(self.message, **log_data)
        else:
            logger.warning(self.message, **log_data)

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.error_code, "message": self.user_message,
                          "correlation_id": self.context.correlation_id,
                          "timestamp": self.context.timestamp.isoformat()}}

    def to_internal_dict(self) -> dict[str, Any]:
        result = self.to_dict()
        result["internal"] = {"message": self.message, "category": self.category.value,
                              "severity": self.severity.value, "details": self.details,
                              "operation": self.context.operation}
        if self.cause:
            result["internal"]["cause"] = {"type": type(self.cause).__name__,
                                           "message": str(self.cause)}
        return result


# Request validation
class ValidationError(BeaconError):
    error_code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.LOW
    http_status = 400

    def __init__(self, message: str, *, field: str | None = None, value: Any = None,
                 constraint: str | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if constraint:
            details["constraint"] = constraint
        user_message = kwargs.pop("user_message", None) or message
        super().__init__(message, user_message=user_message, details=details, **kwargs)
        self.field, self.value, self.constraint = field, value, constraint


class BatchValidationError(ValidationError):
    error_code = "BAD_INPUT"

    def __init__(self, message: str, *, index: int | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if index is not None:
            details["index"] = index
        super().__init__(message, user_message="Invalid request body", details=details, **kwargs)
        self.index = index


class InvalidIntervalError(ValidationError):
    error_code = "INVALID_INTERVAL"

    def __init__(self, interval: str | None, allowed: list[str], **kwargs: Any) -> None:
        message = (f"invalid interval: {interval!r}" if interval
                   else "interval query parameter is required")
        super().__init__(
            message, field="interval", value=interval, constraint="|".join(allowed),
            user_message=f"interval must be one of: {', '.join(allowed)}", **kwargs,
        )


class MissingParameterError(ValidationError):
    error_code = "MISSING_PARAMETER"

    def __init__(self, parameter: str, **kwargs: Any) -> None:
        super().__init__(f"{parameter} query parameter is required", field=parameter,
                         constraint="required", **kwargs)
        self.parameter = parameter


class InvalidLimitError(ValidationError):
    error_code = "INVALID_LIMIT"

    def __init__(self, value: Any, **kwargs: Any) -> None:
        super().__init__(
            f"invalid limit: {value!r}", field="limit", value=value, constraint="positive_integer",
            user_message="Invalid 'limit' parameter. Must be a positive integer.", **kwargs,
        )


class InvalidTimestampError(ValidationError):
    error_code = "INVALID_TIMESTAMP"

    def __init__(self, field: str, value: Any, **kwargs: Any) -> None:
        super().__init__(
            f"invalid '{field}' timestamp: {value!r}", field=field, value=value, constraint="rfc3339",
            user_message=(f"Invalid '{field}' timestamp format. "
                          "Use RFC3339 (e.g., 2006-01-02T15:04:05Z)"),
            **kwargs,
        )


# Storage
class StorageError(BeaconError):
    error_code = "STORAGE_UNAVAILABLE"
    category = ErrorCategory.STORAGE
    severity = ErrorSeverity.HIGH
    http_status = 503

    def __init__(self, message: str, *, operation: str | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if operation:
            details["store_operation"] = operation
            kwargs["context"] = (kwargs.get("context") or ErrorContext()).with_operation(operation)
        super().__init__(message, user_message=kwargs.pop("user_message", None) or "Storage unavailable",
                         details=details, **kwargs)


class StorageTimeoutError(StorageError):
    error_code = "STORAGE_TIMEOUT"
    category = ErrorCategory.TIMEOUT
    http_status = 504

    def __init__(self, operation: str, deadline_seconds: float, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        details["deadline_seconds"] = deadline_seconds
        super().__init__(
            f"{operation} exceeded deadline of {deadline_seconds}s", operation=operation,
            user_message="The operation timed out", details=details, **kwargs,
        )
        self.deadline_seconds = deadline_seconds


class PartialRecordError(BeaconError):
    """A single record could not be appended; the rest of its batch proceeds."""
    error_code = "PARTIAL_RECORD"
    category = ErrorCategory.STORAGE
    severity = ErrorSeverity.LOW
    http_status = 400

    def __init__(self, event_id: str, reason: str, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        details.update({"event_id": event_id, "reason": reason})
        super().__init__(f"record {event_id} skipped: {reason}", details=details, **kwargs)
        self.event_id, self.reason = event_id, reason


class ConfigurationError(BeaconError):
    error_code = "CONFIGURATION_ERROR"
    category = ErrorCategory.CONFIGURATION
    severity = ErrorSeverity.CRITICAL
    http_status = 500

    def __init__(self, message: str, *, config_key: str | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        super().__init__(message, user_message="Service configuration error",
                         details=details, **kwargs)
