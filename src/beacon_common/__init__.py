"""
Beacon Common Library.

Shared primitives for the analytics services:
- Structured exception hierarchy with correlation tracking
- structlog configuration and correlation-id context
"""

from .exceptions import (
    BatchValidationError,
    BeaconError,
    ConfigurationError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    InvalidIntervalError,
    InvalidLimitError,
    InvalidTimestampError,
    MissingParameterError,
    PartialRecordError,
    StorageError,
    StorageTimeoutError,
    ValidationError,
)
from .observability import (
    LogLevel,
    configure_logging,
    get_correlation_id,
    set_correlation_id,
)

__all__ = [
    "BatchValidationError",
    "BeaconError",
    "ConfigurationError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    "InvalidIntervalError",
    "InvalidLimitError",
    "InvalidTimestampError",
    "LogLevel",
    "MissingParameterError",
    "PartialRecordError",
    "StorageError",
    "StorageTimeoutError",
    "ValidationError",
    "configure_logging",
    "get_correlation_id",
    "set_correlation_id",
]
