"""Defines common Value Objects used across different domain contexts.

These objects represent simple values or concepts like platform identifiers,
route keys and fetched messages, ensuring consistency and type safety.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, NewType, Optional

# === Platform Identifiers ===

# Using NewType for semantic clarity, although they are strings at runtime.
UserId = NewType("UserId", str)              # Snowflake id of a user/actor
ChannelId = NewType("ChannelId", str)        # Snowflake id of a channel or DM
GuildId = NewType("GuildId", str)            # Snowflake id of a server
MessageId = NewType("MessageId", str)        # Snowflake id of a message

# === Rate Limiting Context ===
RouteKey = NewType("RouteKey", str)          # Logical rate-limit scope, e.g. 'delete:<channel>'
OperationType = NewType("OperationType", str)  # 'default' or 'delete'

GLOBAL_ROUTE = RouteKey("global")
OP_DEFAULT = OperationType("default")
OP_DELETE = OperationType("delete")

# === Command Context ===
CommandName = NewType("CommandName", str)


@dataclass
class ChatMessage:
    """A single message as returned by a page fetch."""

    id: MessageId
    author_id: UserId
    timestamp: datetime
    content: str = ""
    attachments: List[str] = field(default_factory=list)
    channel_id: Optional[ChannelId] = None
    author_tag: Optional[str] = None


@dataclass
class BulkResult:
    """Aggregate outcome of a bulk operation with per-item failure isolation."""

    succeeded: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def summary(self, noun: str = "items") -> str:
        text = f"{self.succeeded}/{self.total} {noun} processed"
        if self.failed:
            text += f" ({self.failed} errors)"
        return text
