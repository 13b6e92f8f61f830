"""Error taxonomy for chatwarden.

Every failure that crosses a layer boundary is one of these classes. Each
carries a structured ErrorKind so that the retry layer can classify failures
by kind instead of sniffing messages.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Closed set of failure kinds attached at the point of failure."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    NETWORK = "network"
    SERVER = "server"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CLIENT = "client"
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.TIMEOUT,
    ErrorKind.CONNECTION,
    ErrorKind.NETWORK,
    ErrorKind.SERVER,
})


class AppError(Exception):
    """Base application error with context support."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        kind: Optional[ErrorKind] = None,
    ):
        """Initializes the error.

        Args:
            message: Human readable error message.
            context: Additional data attached for logging.
            kind: Overrides the class-level ErrorKind.
        """
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})
        if kind is not None:
            self.kind = kind
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_log_string(self) -> str:
        """Returns a single-line representation including context."""
        context_str = f" | Context: {self.context}" if self.context else ""
        return f"[{type(self).__name__}] {self.message}{context_str}"


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""

    kind = ErrorKind.CONFIGURATION


class ValidationError(AppError):
    """Raised when an identifier or parameter is malformed.

    Validation happens before any network attempt, so these errors never
    reach the retry or fetch layers.
    """

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, {**(context or {}), "field": field})
        self.field = field


class AuthorizationError(AppError):
    """Raised when the actor is not allowed to run a guarded command."""

    kind = ErrorKind.AUTHORIZATION

    def __init__(
        self,
        message: str,
        required_permission: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, {**(context or {}), "required_permission": required_permission})
        self.required_permission = required_permission


class ChatAPIError(AppError):
    """Raised when a call against the chat platform API fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        kind: Optional[ErrorKind] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            {**(context or {}), "status_code": status_code},
            kind=kind or kind_for_status(status_code),
        )
        self.status_code = status_code

    @property
    def status(self) -> Optional[int]:
        return self.status_code


class RateLimitError(ChatAPIError):
    """Raised when the platform signals a rate limit.

    Carries the server-mandated minimum wait in milliseconds.
    """

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, retry_after_ms: int = 1000, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            status_code=429,
            kind=ErrorKind.RATE_LIMITED,
            context={**(context or {}), "retry_after_ms": retry_after_ms},
        )
        self.retry_after_ms = retry_after_ms

    @property
    def retry_after(self) -> int:
        return self.retry_after_ms


class RequestTimeoutError(AppError):
    """Raised when a single network call exceeds its local timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, timeout_ms: Optional[int] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, {**(context or {}), "timeout_ms": timeout_ms})
        self.timeout_ms = timeout_ms


class RetryExhaustedError(AppError):
    """Raised when the retry policy gives up.

    Wraps the attempt count, the operation label and the last underlying error.
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
        context_label: str = "operation",
    ):
        super().__init__(
            message,
            {
                "attempts": attempts,
                "context": context_label,
                "last_error": str(last_error) if last_error is not None else None,
            },
        )
        self.attempts = attempts
        self.last_error = last_error
        self.context_label = context_label


def kind_for_status(status_code: Optional[int]) -> ErrorKind:
    """Maps an HTTP-like status code onto an ErrorKind."""
    if status_code is None:
        return ErrorKind.UNKNOWN
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code in (401, 403):
        return ErrorKind.FORBIDDEN
    if status_code == 408:
        return ErrorKind.TIMEOUT
    if 500 <= status_code < 600:
        return ErrorKind.SERVER
    if 400 <= status_code < 500:
        return ErrorKind.CLIENT
    return ErrorKind.UNKNOWN
