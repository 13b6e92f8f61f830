"""Interface for the remote chat platform API.

Defines the contract for paginated reads and mutating calls against the
platform. Implementations raise errors from chatwarden.domain.errors so that
failures can be classified by kind.
"""

import abc
from typing import List, Optional

from chatwarden.domain.models.common import ChannelId, ChatMessage, GuildId, MessageId, UserId


class ChatAPI(abc.ABC):
    """Abstract Base Class for chat platform access."""

    @abc.abstractmethod
    async def fetch_messages(
        self,
        channel_id: ChannelId,
        limit: int,
        before: Optional[MessageId] = None,
    ) -> List[ChatMessage]:
        """Fetches one page of messages older than `before`.

        Args:
            channel_id: The channel to read.
            limit: Maximum number of messages in the page.
            before: Cursor; only messages older than this id are returned.

        Returns:
            Messages in reverse-chronological order (newest first). An empty
            list means the channel is exhausted.
        """
        pass

    @abc.abstractmethod
    async def delete_message(self, channel_id: ChannelId, message_id: MessageId) -> None:
        pass

    @abc.abstractmethod
    async def delete_channel(self, channel_id: ChannelId) -> None:
        """Deletes a channel, or closes it when it is a DM."""
        pass

    @abc.abstractmethod
    async def delete_guild(self, guild_id: GuildId) -> None:
        pass

    @abc.abstractmethod
    async def create_dm(self, user_id: UserId) -> ChannelId:
        """Opens (or fetches) a DM channel with a user and returns its id."""
        pass

    @abc.abstractmethod
    async def reject_relationship(self, user_id: UserId) -> None:
        """Rejects a pending incoming relationship (friend) request."""
        pass

    @abc.abstractmethod
    async def list_dm_channels(self) -> List[ChannelId]:
        pass

    @abc.abstractmethod
    async def list_incoming_requests(self) -> List[UserId]:
        pass

    @abc.abstractmethod
    def get_self_user_id(self) -> UserId:
        """Returns the id of the account the API acts as."""
        pass
