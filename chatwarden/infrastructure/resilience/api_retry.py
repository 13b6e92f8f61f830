"""Service for executing API calls with automatic retries.

Implements exponential backoff with jitter for transient failures such as
rate limits (429), timeouts, dropped connections and 5xx responses.
Failures are classified by their structured ErrorKind; message matching is
only a fallback for foreign exceptions that carry no kind.
"""

import asyncio
import logging
import random
import re
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiohttp

from chatwarden.domain.errors import AppError, ErrorKind, RetryExhaustedError
from chatwarden.domain.events.api_events import RetryScheduled

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]

# Foreign exceptions (no ErrorKind) whose message contains one of these are treated as transient.
RETRYABLE_MESSAGE_MARKERS = (
    "rate limit",
    "timeout",
    "timed out",
    "econnreset",
    "etimedout",
    "econnrefused",
    "connection reset",
    "connection refused",
    "socket hang up",
    "network",
    "temporar",
)
_SERVER_STATUS_RE = re.compile(r"\b5\d\d\b")

RETRYABLE_EXCEPTIONS = (
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    aiohttp.ClientConnectionError,
    aiohttp.ServerTimeoutError,
)


@dataclass(frozen=True)
class RetryOptions:
    """Per-call retry configuration. Delays are in milliseconds."""

    max_attempts: int = 5
    base_delay: int = 1000
    max_delay: int = 30000
    factor: float = 2
    jitter: bool = True
    context: str = "operation"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def merge(self, **overrides: Any) -> "RetryOptions":
        """Returns a copy with the non-None overrides applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self


DEFAULT_RETRY_OPTIONS = RetryOptions()


def _status_of(error: BaseException) -> Optional[int]:
    for attr in ("status", "status_code", "http_status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable(error: BaseException) -> bool:
    """Decides whether a failure is transient and worth another attempt."""
    if isinstance(error, AppError):
        return error.kind.retryable
    if isinstance(error, RETRYABLE_EXCEPTIONS):
        return True
    status = _status_of(error)
    if status is not None:
        return status == 429 or 500 <= status < 600
    message = str(error).lower()
    if any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS):
        return True
    return bool(_SERVER_STATUS_RE.search(message))


def is_rate_limit(error: BaseException) -> bool:
    if isinstance(error, AppError):
        return error.kind is ErrorKind.RATE_LIMITED
    return _status_of(error) == 429 or "rate limit" in str(error).lower()


def required_delay(error: BaseException) -> int:
    """Server-mandated minimum wait carried by the error, in milliseconds (0 if none)."""
    value = getattr(error, "retry_after_ms", None)
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    return 0


def compute_delay(attempt: int, options: RetryOptions, rng: Optional[random.Random] = None) -> int:
    """Backoff before the retry that follows the 0-indexed `attempt`.

    min(base_delay * factor**attempt, max_delay), plus a uniform addend in
    [0, base_delay) when jitter is enabled.
    """
    delay = min(options.base_delay * (options.factor ** attempt), options.max_delay)
    if options.jitter:
        delay += (rng or random).random() * options.base_delay
    return int(delay)


class RetryPolicy:
    """Handles async call execution with classified retries and backoff."""

    def __init__(
        self,
        options: RetryOptions = DEFAULT_RETRY_OPTIONS,
        sleep: Optional[Sleep] = None,
        rng: Optional[random.Random] = None,
        on_retry: Optional[Callable[[RetryScheduled], None]] = None,
    ):
        """Initializes the policy.

        Args:
            options: Default options; per-call overrides are merged on top.
            sleep: Coroutine used for backoff (defaults to asyncio.sleep).
            rng: Random source for jitter.
            on_retry: Optional observer notified for every scheduled retry.
        """
        self.options = options
        self._sleep = sleep or asyncio.sleep
        self._rng = rng
        self._on_retry = on_retry

    async def execute(self, operation: Callable[[], Awaitable[T]], **overrides: Any) -> T:
        """Runs `operation` until it succeeds, fails permanently, or attempts run out.

        Raises:
            RetryExhaustedError: If the last allowed attempt failed.
            Exception: The original error, immediately, if it is not retryable.
        """
        opts = self.options.merge(**overrides)
        last_error: Optional[BaseException] = None

        for attempt in range(opts.max_attempts):
            try:
                return await operation()
            except Exception as e:
                last_error = e

                if attempt == opts.max_attempts - 1:
                    break

                if not is_retryable(e):
                    raise

                delay_ms = max(compute_delay(attempt, opts, self._rng), required_delay(e))
                attempt_num = attempt + 1
                if is_rate_limit(e):
                    logger.warning(
                        f"Rate limit hit for {opts.context}. "
                        f"Retry {attempt_num}/{opts.max_attempts} in {delay_ms}ms"
                    )
                else:
                    logger.debug(
                        f"{opts.context} failed: {e}. "
                        f"Retry {attempt_num}/{opts.max_attempts} in {delay_ms}ms"
                    )
                if self._on_retry:
                    self._on_retry(RetryScheduled(
                        context=opts.context,
                        attempt_number=attempt_num,
                        max_attempts=opts.max_attempts,
                        delay_ms=delay_ms,
                        error_type=type(e).__name__,
                        error_message=str(e),
                    ))
                await self._sleep(delay_ms / 1000)

        logger.warning(f"Giving up on {opts.context} after {opts.max_attempts} attempts: {last_error}")
        raise RetryExhaustedError(
            f"Failed to execute {opts.context} after {opts.max_attempts} attempts",
            attempts=opts.max_attempts,
            last_error=last_error,
            context_label=opts.context,
        ) from last_error


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
    **overrides: Any,
) -> T:
    """Executes `operation` with the default retry policy.

    Example:
        messages = await with_retry(
            lambda: api.fetch_messages(channel_id, 100),
            context="fetching messages",
            max_attempts=3,
        )
    """
    return await RetryPolicy(options or DEFAULT_RETRY_OPTIONS).execute(operation, **overrides)


def create_retry_wrapper(**defaults: Any) -> Callable[..., Awaitable[Any]]:
    """Creates a retry function with pre-configured options.

    Per-call keyword overrides are merged on top of `defaults`.
    """
    policy = RetryPolicy(DEFAULT_RETRY_OPTIONS.merge(**defaults))
    return policy.execute
