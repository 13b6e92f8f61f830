"""Interface for replying to an invocation.

An invocation can be acknowledged once (reserving a response slot that is
edited later), replied to directly, or have its reserved slot edited.
"""

import abc


class ResponseChannel(abc.ABC):
    """Abstract Base Class for the response side of an invocation."""

    def __init__(self) -> None:
        self.deferred = False
        self.replied = False

    @abc.abstractmethod
    async def acknowledge(self, ephemeral: bool = True) -> None:
        """Acknowledges the invocation and reserves an editable response slot.

        Implementations must set `self.deferred = True` on success.
        """
        pass

    @abc.abstractmethod
    async def reply(self, content: str, ephemeral: bool = True) -> None:
        """Sends a fresh response. Implementations must set `self.replied = True`."""
        pass

    @abc.abstractmethod
    async def edit_reply(self, content: str) -> None:
        """Replaces the content of the reserved (or previously sent) response."""
        pass

    async def follow_up(self, content: str, ephemeral: bool = True) -> None:
        """Sends an additional message after the initial response.

        Defaults to a fresh reply; platforms with real follow-ups override it.
        """
        await self.reply(content, ephemeral=ephemeral)

    @property
    def responded(self) -> bool:
        return self.deferred or self.replied
