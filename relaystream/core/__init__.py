"""
relaystream Core Module

Data models, the error taxonomy and the HTTP transport.
"""

from .models import (
    # Enums
    Role,

    # Messages
    Message,

    # Usage
    Usage,
    merge_usage,

    # Requests
    StreamRequest,
)

from .errors import (
    # Error types
    ErrorKind,
    ErrorClass,
    ErrorDetails,
    StreamApiError,
    MissingApiKeyError,

    # Classification
    RETRYABLE_KINDS,
    classify_error,
    is_retryable,

    # Factories
    make_error,
    parse_retry_after,
    error_from_response,
    error_from_exception,
)

__all__ = [
    "Role",
    "Message",
    "Usage",
    "merge_usage",
    "StreamRequest",
    "ErrorKind",
    "ErrorClass",
    "ErrorDetails",
    "StreamApiError",
    "MissingApiKeyError",
    "RETRYABLE_KINDS",
    "classify_error",
    "is_retryable",
    "make_error",
    "parse_retry_after",
    "error_from_response",
    "error_from_exception",
]
