"""API Resilience Implementations.

Contains the token bucket rate limiter, the classifying retry policy with
exponential backoff, and the cursor-paginated bulk fetcher built on both.
Bounded Context: API Resilience
"""

from chatwarden.infrastructure.resilience.rate_limiter import RateLimiter, TokenBucket
from chatwarden.infrastructure.resilience.api_retry import (
    RetryOptions,
    RetryPolicy,
    create_retry_wrapper,
    is_retryable,
    with_retry,
)
from chatwarden.infrastructure.resilience.pagination import PageSource, PaginatedFetcher

__all__ = [
    "RateLimiter",
    "TokenBucket",
    "RetryOptions",
    "RetryPolicy",
    "create_retry_wrapper",
    "is_retryable",
    "with_retry",
    "PageSource",
    "PaginatedFetcher",
]
