"""Core service for resilient access to the chat platform.

Every remote call goes through the same path: wait for rate-limit capacity on
the call's route, then run it under the retry policy. Bulk operations isolate
per-item failures and report one aggregate BulkResult.

Route keys:
    messages:<channel>   reading message history
    delete:<channel>     deleting messages        (delete capacity)
    channel:<channel>    deleting / closing a channel (delete capacity)
    guild                deleting a server         (delete capacity)
    relationship         rejecting requests        (delete capacity)
    user:<user>          opening a DM
"""

import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, List, Optional, TypeVar

from chatwarden.domain.errors import ValidationError
from chatwarden.domain.events.api_events import FetchProgress
from chatwarden.domain.interfaces.chat_api import ChatAPI
from chatwarden.domain.models.common import (
    GLOBAL_ROUTE,
    OP_DEFAULT,
    OP_DELETE,
    BulkResult,
    ChannelId,
    ChatMessage,
    GuildId,
    MessageId,
    UserId,
)
from chatwarden.infrastructure.config.settings import validate_snowflake
from chatwarden.infrastructure.resilience.api_retry import RetryPolicy
from chatwarden.infrastructure.resilience.pagination import PageSource, PaginatedFetcher, ProgressCallback
from chatwarden.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")
Item = TypeVar("Item")

BulkProgressCallback = Callable[[int, int], None]


class ChatService:
    """Rate-limited, retried facade over a ChatAPI."""

    def __init__(
        self,
        api: ChatAPI,
        rate_limiter: RateLimiter,
        retry_policy: RetryPolicy,
        fetcher: Optional[PaginatedFetcher] = None,
    ):
        """Initializes the ChatService with its dependencies.

        Args:
            api: The platform API adapter.
            rate_limiter: Shared limiter; every call waits on it first.
            retry_policy: Policy applied to every call.
            fetcher: Paginated fetcher; built from the limiter and policy if omitted.
        """
        self.api = api
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy
        self.fetcher = fetcher or PaginatedFetcher(rate_limiter, retry_policy)

    @staticmethod
    def validate_id(value: Any, field: str = "id") -> str:
        """Checks that a value is a snowflake id before any network call.

        Raises:
            ValidationError: If the value is not a 17-19 digit id.
        """
        text = str(value).strip() if value is not None else ""
        if not validate_snowflake(text):
            raise ValidationError(f"Invalid {field}: {value!r} (expected a 17-19 digit ID)", field=field)
        return text

    async def _call(self, route: str, op_type: str, context: str, fn: Callable[[], Awaitable[T]]) -> T:
        async def attempt() -> T:
            await self.rate_limiter.wait(route, op_type)
            return await fn()

        return await self.retry_policy.execute(attempt, context=context)

    def get_self_user_id(self) -> UserId:
        return self.api.get_self_user_id()

    # --- Reads ---

    def message_source(self, channel_id: ChannelId) -> PageSource:
        """Describes a channel's history as a page source for the fetcher."""
        async def fetch_page(count: int, before: Optional[str]) -> List[ChatMessage]:
            return await self.api.fetch_messages(channel_id, count, MessageId(before) if before else None)

        return PageSource(
            fetch_page=fetch_page,
            route=f"messages:{channel_id}",
            op_type=OP_DEFAULT,
            label="messages",
        )

    async def fetch_messages(
        self,
        channel_id: ChannelId,
        limit: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[ChatMessage]:
        """Fetches up to `limit` messages, newest first. Never raises on fetch failure."""
        channel_id = ChannelId(self.validate_id(channel_id, "channel_id"))
        return await self.fetcher.fetch_all(self.message_source(channel_id), limit, on_progress=on_progress)

    def iter_message_pages(self, channel_id: ChannelId, limit: Optional[float] = None) -> AsyncIterator[FetchProgress]:
        """Streams history page by page as FetchProgress events."""
        channel_id = ChannelId(self.validate_id(channel_id, "channel_id"))
        return self.fetcher.iter_pages(self.message_source(channel_id), limit)

    async def list_dm_channels(self) -> List[ChannelId]:
        return await self._call(GLOBAL_ROUTE, OP_DEFAULT, "listing DM channels", self.api.list_dm_channels)

    async def list_incoming_requests(self) -> List[UserId]:
        return await self._call(GLOBAL_ROUTE, OP_DEFAULT, "listing incoming requests", self.api.list_incoming_requests)

    # --- Single mutations ---

    async def delete_message(self, channel_id: ChannelId, message_id: MessageId) -> None:
        await self._call(
            f"delete:{channel_id}",
            OP_DELETE,
            f"deleting message {message_id}",
            lambda: self.api.delete_message(channel_id, message_id),
        )

    async def delete_channel(self, channel_id: ChannelId) -> None:
        await self._call(
            f"channel:{channel_id}",
            OP_DELETE,
            f"deleting channel {channel_id}",
            lambda: self.api.delete_channel(channel_id),
        )

    async def delete_guild(self, guild_id: GuildId) -> None:
        guild_id = GuildId(self.validate_id(guild_id, "guild_id"))
        await self._call("guild", OP_DELETE, f"deleting guild {guild_id}", lambda: self.api.delete_guild(guild_id))

    async def create_dm(self, user_id: UserId) -> ChannelId:
        user_id = UserId(self.validate_id(user_id, "user_id"))
        return await self._call(
            f"user:{user_id}", OP_DEFAULT, f"opening DM with {user_id}", lambda: self.api.create_dm(user_id)
        )

    async def reject_relationship(self, user_id: UserId) -> None:
        await self._call(
            "relationship",
            OP_DELETE,
            f"rejecting request from {user_id}",
            lambda: self.api.reject_relationship(user_id),
        )

    # --- Bulk mutations ---

    async def _bulk(
        self,
        items: Iterable[Item],
        action: Callable[[Item], Awaitable[None]],
        noun: str,
        on_progress: Optional[BulkProgressCallback] = None,
    ) -> BulkResult:
        """Applies `action` to each item; one item's failure never stops the rest."""
        items = list(items)
        result = BulkResult()
        for index, item in enumerate(items, start=1):
            try:
                await action(item)
                result.succeeded += 1
            except Exception as e:
                result.failed += 1
                logger.warning(f"Failed on {noun} item {item}: {e}")
            if on_progress:
                on_progress(index, len(items))
        logger.info(f"Bulk {noun}: {result.summary(noun)}")
        return result

    async def bulk_delete_messages(
        self,
        channel_id: ChannelId,
        messages: Iterable[ChatMessage],
        on_progress: Optional[BulkProgressCallback] = None,
    ) -> BulkResult:
        async def delete(message: ChatMessage) -> None:
            await self.delete_message(channel_id, message.id)

        return await self._bulk(messages, delete, "messages", on_progress)

    async def close_dm_channels(self, on_progress: Optional[BulkProgressCallback] = None) -> BulkResult:
        channels = await self.list_dm_channels()
        return await self._bulk(channels, self.delete_channel, "DM channels", on_progress)

    async def reject_all_requests(self, on_progress: Optional[BulkProgressCallback] = None) -> BulkResult:
        requests = await self.list_incoming_requests()
        return await self._bulk(requests, self.reject_relationship, "requests", on_progress)
