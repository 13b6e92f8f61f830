"""Implementation of a rate limiter.

Controls the frequency of outgoing requests to stay under the platform's
partially-unknown quotas. Uses one global token bucket plus lazily created
per-route buckets whose size depends on the operation type.
"""

import asyncio
import logging
import math
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from chatwarden.domain.events.api_events import RequestDeferred
from chatwarden.domain.models.common import GLOBAL_ROUTE, OP_DEFAULT, OP_DELETE

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_GLOBAL_LIMIT = 50  # requests per second across all routes
DEFAULT_ROUTE_LIMIT = 5    # requests per second per route
DEFAULT_DELETE_LIMIT = 5   # deletes per second per route

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


class TokenBucket:
    """Token bucket with lazy, time-driven refill.

    The bucket starts full. Tokens are real-valued and always stay within
    [0, capacity].
    """

    def __init__(self, capacity: float, refill_rate: float, clock: Clock = time.monotonic):
        """Initializes the bucket.

        Args:
            capacity: Maximum number of tokens.
            refill_rate: Tokens added per second.
            clock: Monotonic clock returning seconds.
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if refill_rate <= 0:
            raise ValueError(f"refill_rate must be positive, got {refill_rate}")
        self.capacity = float(capacity)
        self.tokens = float(capacity)
        self.refill_rate = float(refill_rate)
        self._clock = clock
        self.last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def try_consume(self, count: float = 1) -> bool:
        """Consumes `count` tokens if available. Returns False without consuming otherwise."""
        self._refill()
        if self.tokens >= count:
            self.tokens -= count
            return True
        return False

    def get_wait_time(self, count: float = 1) -> int:
        """Milliseconds until `count` tokens are available (0 if they already are)."""
        self._refill()
        if self.tokens >= count:
            return 0
        tokens_needed = count - self.tokens
        return math.ceil(tokens_needed / self.refill_rate * 1000)

    def __repr__(self) -> str:
        return f"TokenBucket(capacity={self.capacity}, tokens={self.tokens:.2f}, refill_rate={self.refill_rate})"


class RateLimiter:
    """Global plus per-route token bucket rate limiter.

    The limiter never raises; it only delays. Concurrent waiters are not
    served in FIFO order.
    """

    def __init__(
        self,
        global_limit: int = DEFAULT_GLOBAL_LIMIT,
        route_limit: int = DEFAULT_ROUTE_LIMIT,
        delete_limit: int = DEFAULT_DELETE_LIMIT,
        clock: Clock = time.monotonic,
        sleep: Optional[Sleep] = None,
        on_deferred: Optional[Callable[[RequestDeferred], None]] = None,
    ):
        """Initializes the rate limiter.

        Args:
            global_limit: Requests per second allowed across all routes.
            route_limit: Requests per second per route for default operations.
            delete_limit: Requests per second per route for delete operations.
            clock: Monotonic clock shared by all buckets.
            sleep: Coroutine used to wait (defaults to asyncio.sleep).
            on_deferred: Optional observer notified whenever a request is delayed.
        """
        self.global_limit = global_limit
        self.route_limit = route_limit
        self.delete_limit = delete_limit
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._on_deferred = on_deferred
        self.global_bucket = TokenBucket(global_limit, global_limit, clock=clock)
        self.route_buckets: Dict[str, TokenBucket] = {}
        logger.info(
            f"RateLimiter initialized: global={global_limit}/s, "
            f"route={route_limit}/s, delete={delete_limit}/s"
        )

    def _capacity_for(self, op_type: str) -> int:
        return self.delete_limit if op_type == OP_DELETE else self.route_limit

    def _get_bucket(self, route: str, op_type: str) -> TokenBucket:
        """Gets or creates the bucket for a route. Capacity is fixed at creation."""
        bucket = self.route_buckets.get(route)
        if bucket is None:
            capacity = self._capacity_for(op_type)
            bucket = TokenBucket(capacity, capacity, clock=self._clock)
            self.route_buckets[route] = bucket
            logger.debug(f"Created bucket for route '{route}' ({op_type}, capacity={capacity})")
        return bucket

    async def _drain(self, bucket: TokenBucket, route: str) -> None:
        # Re-check after every sleep: another task may have taken the token meanwhile.
        while True:
            wait_ms = bucket.get_wait_time()
            if wait_ms <= 0 and bucket.try_consume():
                return
            if wait_ms > 0:
                logger.debug(f"Rate limit on '{route}': waiting {wait_ms}ms")
                if self._on_deferred:
                    self._on_deferred(RequestDeferred(route=route, wait_ms=wait_ms))
                await self._sleep(wait_ms / 1000)

    async def wait(self, route: str = GLOBAL_ROUTE, op_type: str = OP_DEFAULT) -> None:
        """Waits until the global bucket and, if given, the route bucket allow one request."""
        await self._drain(self.global_bucket, GLOBAL_ROUTE)
        if route != GLOBAL_ROUTE:
            await self._drain(self._get_bucket(route, op_type), route)

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        route: str = GLOBAL_ROUTE,
        op_type: str = OP_DEFAULT,
    ) -> T:
        """Waits for permission, then awaits `fn()`. Results and errors pass through unchanged."""
        await self.wait(route, op_type)
        return await fn()

    def route_capacity(self, route: str) -> Optional[float]:
        bucket = self.route_buckets.get(route)
        return bucket.capacity if bucket else None

    @property
    def bucket_count(self) -> int:
        return len(self.route_buckets)
