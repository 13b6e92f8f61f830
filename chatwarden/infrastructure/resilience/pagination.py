"""Cursor-driven bulk retrieval on top of the rate limiter and retry policy.

Pages are requested newest-first; after each page the cursor moves to the
oldest item seen, so every request scans strictly older history. A fetch
never raises: if a page ultimately fails, whatever was accumulated so far is
returned.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Set

from chatwarden.domain.events.api_events import FetchProgress
from chatwarden.domain.models.common import GLOBAL_ROUTE, OP_DEFAULT
from chatwarden.infrastructure.resilience.api_retry import RetryPolicy
from chatwarden.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100

ProgressCallback = Callable[[int, float], None]


def default_item_id(item: Any) -> str:
    if isinstance(item, dict):
        return str(item["id"])
    return str(item.id)


@dataclass
class PageSource:
    """Where pages come from and which rate-limit route they are charged to.

    `fetch_page(count, before)` returns up to `count` items older than the
    `before` cursor, newest first, or an empty list when exhausted.
    """

    fetch_page: Callable[[int, Optional[str]], Awaitable[List[Any]]]
    route: str = GLOBAL_ROUTE
    op_type: str = OP_DEFAULT
    label: str = "items"
    item_id: Callable[[Any], str] = default_item_id


def normalize_limit(limit: Optional[float]) -> float:
    """None and infinity both mean unlimited."""
    if limit is None:
        return math.inf
    if limit < 0:
        raise ValueError(f"limit must be non-negative, got {limit}")
    return limit


class PaginatedFetcher:
    """Fetches paginated history under rate limiting and retries."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        retry_policy: Optional[RetryPolicy] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        if page_size < 1:
            raise ValueError(f"page_size must be at least 1, got {page_size}")
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy or RetryPolicy()
        self.page_size = page_size

    async def _fetch_page(self, source: PageSource, count: int, cursor: Optional[str]) -> List[Any]:
        async def attempt() -> List[Any]:
            await self.rate_limiter.wait(source.route, source.op_type)
            return await source.fetch_page(count, cursor)

        return await self.retry_policy.execute(attempt, context=f"fetching {source.label} on {source.route}")

    async def iter_pages(
        self,
        source: PageSource,
        limit: Optional[float] = None,
        before: Optional[str] = None,
    ) -> AsyncIterator[FetchProgress]:
        """Yields one FetchProgress event per non-empty page.

        The sequence is finite: it ends when the limit is reached, the source
        returns an empty page, or a page fetch fails after retries. Calling it
        again starts a fresh scan.
        """
        limit = normalize_limit(limit)
        cursor = before
        total_fetched = 0
        page_number = 0
        seen: Set[str] = set()

        logger.debug(f"Starting fetch from {source.route}, limit: {limit}")

        while total_fetched < limit:
            count = int(min(self.page_size, limit - total_fetched))
            try:
                page = await self._fetch_page(source, count, cursor)
            except Exception as e:
                logger.error(f"Fetch from {source.route} aborted after {total_fetched} {source.label}: {e}")
                return

            if not page:
                logger.debug(f"No more {source.label} to fetch from {source.route}")
                return

            page = page[:count]
            fresh = []
            for item in page:
                item_id = source.item_id(item)
                if item_id not in seen:
                    seen.add(item_id)
                    fresh.append(item)
            if not fresh:
                logger.warning(f"Page from {source.route} repeated known items; stopping")
                return

            total_fetched += len(fresh)
            cursor = source.item_id(page[-1])
            page_number += 1
            yield FetchProgress(
                items=fresh,
                total_fetched=total_fetched,
                limit=limit,
                cursor=cursor,
                page_number=page_number,
            )

    async def fetch_all(
        self,
        source: PageSource,
        limit: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
        before: Optional[str] = None,
    ) -> List[Any]:
        """Fetches up to `limit` items, preserving page order.

        Args:
            source: The page source to scan.
            limit: Maximum items to return; None or math.inf for unlimited.
            on_progress: Called with (total_fetched, limit) after every page.
            before: Initial cursor; only items older than it are fetched.

        Returns:
            The accumulated items. Shorter than `limit` only when the source
            was exhausted or a page fetch failed.
        """
        items: List[Any] = []
        async for progress in self.iter_pages(source, limit, before=before):
            items.extend(progress.items)
            if on_progress:
                on_progress(progress.total_fetched, progress.limit)
        logger.info(f"Fetched {len(items)} {source.label} from {source.route}")
        return items
