"""Domain models for the command execution pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from chatwarden.domain.interfaces.response_channel import ResponseChannel
from chatwarden.domain.models.common import CommandName, UserId


class InvocationState(str, Enum):
    """Lifecycle of a single invocation inside the pipeline.

    Received -> (Rejected) | (Acknowledged -> Executing -> Completed | Failed)
    """

    RECEIVED = "received"
    REJECTED = "rejected"
    AUTHORIZED = "authorized"
    ACKNOWLEDGED = "acknowledged"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (InvocationState.REJECTED, InvocationState.COMPLETED, InvocationState.FAILED)


@dataclass(frozen=True)
class Actor:
    """Identity of whoever triggered an invocation."""

    id: UserId
    tag: Optional[str] = None

    def __str__(self) -> str:
        return self.tag or self.id


@dataclass
class Invocation:
    """A single request to run a named command.

    Supplied by the event source; the pipeline only reads it and talks back
    through its response channel.
    """

    actor: Actor
    command_name: CommandName
    channel: ResponseChannel
    params: Dict[str, Any] = field(default_factory=dict)

    def get_param(self, name: str, default: Any = None) -> Any:
        return self.params.get(name, default)


Handler = Callable[[Invocation], Awaitable[None]]


@dataclass(frozen=True)
class CommandOptions:
    requires_auth: bool = True
    defer: bool = True


@dataclass
class CommandRegistration:
    name: CommandName
    handler: Handler
    options: CommandOptions = field(default_factory=CommandOptions)
    description: str = ""
