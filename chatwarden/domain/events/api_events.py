"""Domain Events related to API calls and resilience.

Emitted when calls are deferred by the rate limiter, retried after a
transient failure, or when a paginated fetch makes progress.
"""

from dataclasses import dataclass, field
import time
from typing import Any, List, Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


@dataclass
class RequestDeferred(DomainEvent):
    """Event triggered when the rate limiter delays a request."""
    route: str
    wait_ms: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed call."""
    context: str
    attempt_number: int  # 1-based number of the attempt that failed
    max_attempts: int
    delay_ms: int
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class FetchProgress(DomainEvent):
    """Event yielded once per non-empty page of a paginated fetch."""
    items: List[Any]
    total_fetched: int
    limit: float  # math.inf when unlimited
    cursor: Optional[str]
    page_number: int
    timestamp: float = field(default_factory=time.time)

    @property
    def unlimited(self) -> bool:
        return self.limit == float("inf")
