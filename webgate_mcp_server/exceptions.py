"""
Exception hierarchy for the Webgate MCP Server.

Errors fall into two families:

- ``ToolError`` and its subclasses are *user-facing*: the message is written for
  the agent (or the person behind it) and is surfaced verbatim through the MCP
  response. Bad input, unknown element refs, rate limiting, navigation failures
  and exhausted browser reconnects all belong here.
- Everything else is *internal*. The tool dispatcher logs the full traceback to
  the operator-visible error stream and replaces it with ``InternalError``,
  whose message never includes stack detail.

``ConfigurationError`` is the only error that is fatal to the process; it is
raised at startup for a missing API token or an invalid rate-limit string.
"""
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ErrorType(str, Enum):
    """Categories used in structured error responses."""

    VALIDATION_ERROR = "validation_error"  # Input validation failed
    EXECUTION_ERROR = "execution_error"    # Error during execution
    NOT_FOUND_ERROR = "not_found_error"    # Element or resource not found
    TIMEOUT_ERROR = "timeout_error"        # Operation timed out
    RATE_LIMIT_ERROR = "rate_limit_error"  # Rate limit exceeded
    CONNECTION_ERROR = "connection_error"  # Remote browser transport failed
    EXTERNAL_ERROR = "external_error"      # Error in external service
    INTERNAL_ERROR = "internal_error"      # Unexpected failure


class ConfigurationError(Exception):
    """Raised when the server configuration is unusable at startup."""


class ToolError(Exception):
    """Base class for failures whose message is meant for the agent.

    Args:
        message: Human-readable error message
        error_code: Stable machine-readable code
        details: Additional structured details
    """

    error_type: ErrorType = ErrorType.EXECUTION_ERROR

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.error_type.value
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ToolInputError(ToolError):
    """Raised when a tool receives input it cannot act on."""

    error_type = ErrorType.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        param_name: Optional[str] = None,
        provided_value: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if param_name is not None:
            details["param_name"] = param_name
            details["provided_value"] = provided_value
        super().__init__(message, details=details)
        self.param_name = param_name
        self.provided_value = provided_value


class ElementNotFoundError(ToolInputError):
    """Raised when an element ref is not part of the latest snapshot."""

    error_type = ErrorType.NOT_FOUND_ERROR


class RateLimitError(ToolError):
    """Raised by the dispatcher when the rate gate denies a call."""

    error_type = ErrorType.RATE_LIMIT_ERROR

    def __init__(self, message: str, retry_after: float):
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after


class NavigationError(ToolError):
    """Raised when a page cannot be loaded for a reason the agent can act on."""


class BrowserConnectionError(ToolError):
    """Raised when the remote browser cannot be (re)connected within the retry budget."""

    error_type = ErrorType.CONNECTION_ERROR


class ExternalServiceError(ToolError):
    """Raised when the unblocking or collection API returns an error."""

    error_type = ErrorType.EXTERNAL_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.status_code = status_code


class PollingTimeoutError(ToolError):
    """Raised when a dataset snapshot is not ready before the polling ceiling."""

    error_type = ErrorType.TIMEOUT_ERROR


class InternalError(Exception):
    """Generic failure surfaced in place of an unexpected internal exception."""

    def __init__(self, tool_name: str):
        super().__init__(
            f"Tool '{tool_name}' failed because of an internal error. "
            "Details were logged on the server."
        )
        self.tool_name = tool_name


def format_error_response(
    error_type: Union[ErrorType, str],
    message: str,
    details: Optional[Dict[str, Any]] = None,
    retriable: bool = False,
    suggestions: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Format a standardized error response.

    Args:
        error_type: Type of error
        message: Human-readable error message
        details: Additional error details
        retriable: Whether the operation can be retried
        suggestions: List of suggestions for resolving the error

    Returns:
        Formatted error response
    """
    return {
        "success": False,
        "isError": True,  # MCP protocol flag
        "error": {
            "type": error_type if isinstance(error_type, str) else error_type.value,
            "message": message,
            "details": details or {},
            "retriable": retriable,
            "suggestions": suggestions or [],
            "timestamp": time.time(),
        },
    }


def error_response_from_exception(exc: BaseException) -> Dict[str, Any]:
    """Build a structured error response for an exception raised by a tool.

    User-facing errors keep their message and details; anything else is reduced
    to the generic internal message.
    """
    if isinstance(exc, ToolError):
        retriable = isinstance(exc, (RateLimitError, BrowserConnectionError, PollingTimeoutError))
        suggestions: List[str] = []
        if isinstance(exc, RateLimitError):
            suggestions = [f"Wait {exc.retry_after:.0f} seconds before retrying"]
        elif isinstance(exc, ElementNotFoundError):
            suggestions = ["Capture a fresh snapshot and use one of its refs"]
        return format_error_response(exc.error_type, exc.message, exc.details, retriable, suggestions)
    return format_error_response(ErrorType.INTERNAL_ERROR, str(exc))
