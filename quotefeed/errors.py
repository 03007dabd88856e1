"""
Centralized Exceptions
Error taxonomy and structured error handling.
"""

import re
from typing import Dict, Any, Optional

import httpx
from fastapi import HTTPException, status


class QuoteFeedError(Exception):
    """Base exception for the quote feed."""

    def __init__(self, message: str, error_code: str = "UNKNOWN", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(QuoteFeedError):
    """Configuration error (e.g. missing API credentials). Never retried."""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", details)


class NetworkError(QuoteFeedError):
    """Network connectivity error."""

    def __init__(self, message: str = "Network error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NETWORK_ERROR", details)


class ApiError(QuoteFeedError):
    """Provider rejected the request."""

    def __init__(self, message: str = "API error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "API_ERROR", details)


class RateLimitError(QuoteFeedError):
    """Rate limit exceeded."""

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "RATE_LIMIT", details)


class ValidationError(QuoteFeedError):
    """Data validation error."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class NotConnectedError(QuoteFeedError):
    """Operation needs a live connection."""

    def __init__(self, message: str = "Not connected or offline", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_CONNECTED", details)


# Error mapping to HTTP responses
ERROR_TO_HTTP_STATUS = {
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    NetworkError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ApiError: status.HTTP_502_BAD_GATEWAY,
    RateLimitError: status.HTTP_429_TOO_MANY_REQUESTS,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotConnectedError: status.HTTP_409_CONFLICT,
}

# Substrings that mark a failure message as connectivity-related
CONNECTIVITY_MARKERS = ("network", "timed out", "timeout", "connection")

SENSITIVE_PATTERN = re.compile(r"apikey|api_key|password|secret|token|private", re.IGNORECASE)


def create_http_exception(error: QuoteFeedError) -> HTTPException:
    """Convert QuoteFeedError to HTTPException with proper status code."""
    status_code = ERROR_TO_HTTP_STATUS.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail={
            "error": error.error_code,
            "message": error.message,
            "details": error.details
        }
    )


def is_connectivity_error(error: Any) -> bool:
    """
    Decide whether a failure should degrade the connection state.

    Accepts an exception or a plain error message. Configuration errors are
    never connectivity-related.
    """
    if isinstance(error, (ConfigurationError, ApiError, ValidationError)):
        return False
    if isinstance(error, (NetworkError, httpx.TransportError, TimeoutError)):
        return True

    message = str(error or "")
    if "not configured" in message:
        return False
    # Provider failures are prefixed with uppercase "API"
    if "API" in message:
        return True
    lowered = message.lower()
    return any(marker in lowered for marker in CONNECTIVITY_MARKERS)


def sanitize_error_message(message: str) -> str:
    """Mask credential-looking words before a message leaves the process."""
    return SENSITIVE_PATTERN.sub("***", message)


def create_structured_error_response(error: Exception) -> Dict[str, Any]:
    """Loggable/serialisable view of any exception; the caller stamps the time."""
    if isinstance(error, QuoteFeedError):
        error_type, message, details = error.error_code, error.message, error.details
    else:
        error_type, message, details = "UNKNOWN_ERROR", str(error), {}
    return {
        "error_type": error_type,
        "message": sanitize_error_message(message),
        "details": details,
        "timestamp": None,
    }


def error_from_message(message: Optional[str]) -> QuoteFeedError:
    """Rebuild a typed error from a `{success, error}` result message."""
    message = message or "Unknown error"
    if "not configured" in message:
        return ConfigurationError(message)
    if "Rate Limit" in message:
        return RateLimitError(message)
    if "required" in message or "at least" in message:
        return ValidationError(message)
    if is_connectivity_error(message):
        return NetworkError(message)
    return ApiError(message)
