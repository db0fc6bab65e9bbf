"""
relaystream - Error Definitions

Error taxonomy for the streaming client with retryable vs fatal
classification.

Retryable (recovered locally by the resilient client):
- network_error, timeout, overloaded_error, rate_limit_error

Fatal (surfaced immediately):
- authentication_error, invalid_request_error, configuration_error,
  http_error and any other server-reported type
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

import httpx


class ErrorKind(str, Enum):
    """Known error types."""
    # Retryable
    NETWORK = "network_error"
    TIMEOUT = "timeout"
    OVERLOADED = "overloaded_error"
    RATE_LIMIT = "rate_limit_error"

    # Fatal
    AUTHENTICATION = "authentication_error"
    INVALID_REQUEST = "invalid_request_error"
    CONFIGURATION = "configuration_error"
    HTTP = "http_error"

    # Raised by the resilient client itself
    NETWORK_TIMEOUT = "network_timeout"
    MAX_RETRIES = "max_retries"


class ErrorClass(str, Enum):
    """Outcome of classifying an error."""
    RETRYABLE = "retryable"
    FATAL = "fatal"


RETRYABLE_KINDS = frozenset({
    ErrorKind.NETWORK.value,
    ErrorKind.TIMEOUT.value,
    ErrorKind.OVERLOADED.value,
    ErrorKind.RATE_LIMIT.value,
})


@dataclass(frozen=True)
class ErrorDetails:
    """Full error information carried by StreamApiError."""
    # Core fields (always present)
    type: str
    message: str

    # Context fields
    status_code: Optional[int] = None
    request_id: Optional[str] = None

    # Recovery fields
    retry_after_seconds: Optional[int] = None
    accumulated_chars: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "type": self.type,
            "message": self.message,
            "retryable": self.type in RETRYABLE_KINDS,
        }
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.request_id:
            result["request_id"] = self.request_id
        if self.retry_after_seconds is not None:
            result["retry_after_seconds"] = self.retry_after_seconds
        if self.accumulated_chars is not None:
            result["accumulated_chars"] = self.accumulated_chars
        return {"error": result}


class StreamApiError(Exception):
    """Base exception for all relaystream errors."""

    def __init__(self, details: ErrorDetails):
        self.details = details
        super().__init__(details.message)

    @property
    def type(self) -> str:
        return self.details.type

    @property
    def message(self) -> str:
        return self.details.message

    @property
    def retry_after_seconds(self) -> Optional[int]:
        return self.details.retry_after_seconds

    @property
    def is_rate_limit_error(self) -> bool:
        return self.type == ErrorKind.RATE_LIMIT.value

    @property
    def is_auth_error(self) -> bool:
        return self.type == ErrorKind.AUTHENTICATION.value

    @property
    def is_invalid_request(self) -> bool:
        return self.type == ErrorKind.INVALID_REQUEST.value

    @property
    def is_overloaded(self) -> bool:
        return self.type == ErrorKind.OVERLOADED.value

    @property
    def is_configuration_error(self) -> bool:
        return self.type == ErrorKind.CONFIGURATION.value

    def __repr__(self) -> str:
        return f"StreamApiError(type={self.type!r}, message={self.message!r})"


class MissingApiKeyError(StreamApiError):
    """No API key is configured."""

    def __init__(self, message: str = "ANTHROPIC_API_KEY not configured"):
        super().__init__(
            ErrorDetails(type=ErrorKind.CONFIGURATION.value, message=message)
        )


def make_error(
    kind: Union[ErrorKind, str],
    message: str,
    **kwargs: Any,
) -> StreamApiError:
    """Build a StreamApiError from a kind and message."""
    type_name = kind.value if isinstance(kind, ErrorKind) else kind
    return StreamApiError(ErrorDetails(type=type_name, message=message, **kwargs))


# ============================================================
# Classification
# ============================================================

def classify_error(error: Union[StreamApiError, str]) -> ErrorClass:
    """Map an error (or its type name) to retryable or fatal."""
    type_name = error.type if isinstance(error, StreamApiError) else str(error)
    if type_name in RETRYABLE_KINDS:
        return ErrorClass.RETRYABLE
    return ErrorClass.FATAL


def is_retryable(error: Union[StreamApiError, str]) -> bool:
    return classify_error(error) is ErrorClass.RETRYABLE


# ============================================================
# Factories
# ============================================================

def parse_retry_after(headers: Mapping[str, str]) -> Optional[int]:
    """Read a Retry-After header given in whole seconds."""
    raw = None
    for key, value in headers.items():
        if key.lower() == "retry-after":
            raw = value
            break
    if raw is None:
        return None
    try:
        return max(0, int(float(raw)))
    except (ValueError, OverflowError):
        return None


def error_from_response(
    status_code: int,
    body: Union[bytes, str, None],
    headers: Optional[Mapping[str, str]] = None,
) -> StreamApiError:
    """
    Convert a non-200 response to a StreamApiError.

    Error body format:
    {
        "type": "error",
        "error": {
            "type": "authentication_error|invalid_request_error|...",
            "message": "..."
        }
    }
    """
    headers = headers or {}
    retry_after = parse_retry_after(headers)
    request_id = None
    for key, value in headers.items():
        if key.lower() == "request-id":
            request_id = value

    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")

    try:
        data = json.loads(body or "")
        error_info = data["error"]
        error_type = str(error_info["type"])
        message = str(error_info.get("message", ""))
    except (ValueError, KeyError, TypeError):
        reason = httpx.codes.get_reason_phrase(status_code)
        return make_error(
            ErrorKind.HTTP,
            f"HTTP {status_code}: {reason}".rstrip(": "),
            status_code=status_code,
            request_id=request_id,
            retry_after_seconds=retry_after,
        )

    return make_error(
        error_type,
        message,
        status_code=status_code,
        request_id=request_id,
        retry_after_seconds=retry_after,
    )


def error_from_exception(error: BaseException) -> StreamApiError:
    """Convert a transport exception to a StreamApiError."""
    if isinstance(error, StreamApiError):
        return error

    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return make_error(ErrorKind.TIMEOUT, f"Request timed out: {error}")

    # Connect, read, write and protocol failures all mean the link is gone
    message = str(error) or type(error).__name__
    return make_error(ErrorKind.NETWORK, message)
