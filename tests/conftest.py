import random
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from typer.testing import CliRunner

from chatwarden.domain.interfaces.chat_api import ChatAPI
from chatwarden.domain.interfaces.response_channel import ResponseChannel
from chatwarden.domain.models.commands import Actor, Invocation
from chatwarden.domain.models.common import ChannelId, ChatMessage, CommandName, MessageId, UserId
from chatwarden.infrastructure.config.settings import clear_test_config
from chatwarden.infrastructure.resilience.api_retry import RetryOptions, RetryPolicy
from chatwarden.infrastructure.resilience.rate_limiter import RateLimiter

OWNER_ID = "111111111111111111"
OTHER_ID = "222222222222222222"
CHANNEL_ID = "333333333333333333"


class FakeClock:
    """Manual clock; `sleep` advances it instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    @property
    def slept(self) -> float:
        return sum(self.sleeps)


class FakeChannel(ResponseChannel):
    """Records every response; can be told to fail acknowledging or replying."""

    def __init__(self, fail_acknowledge: bool = False, fail_reply: bool = False, fail_edit: bool = False):
        super().__init__()
        self.events: List[tuple] = []
        self.fail_acknowledge = fail_acknowledge
        self.fail_reply = fail_reply
        self.fail_edit = fail_edit

    async def acknowledge(self, ephemeral: bool = True) -> None:
        if self.fail_acknowledge:
            raise RuntimeError("interaction expired")
        self.deferred = True
        self.events.append(("acknowledge", None))

    async def reply(self, content: str, ephemeral: bool = True) -> None:
        if self.fail_reply:
            raise RuntimeError("reply failed")
        self.replied = True
        self.events.append(("reply", content))

    async def edit_reply(self, content: str) -> None:
        if self.fail_edit:
            raise RuntimeError("edit failed")
        self.events.append(("edit", content))

    async def follow_up(self, content: str, ephemeral: bool = True) -> None:
        self.events.append(("follow_up", content))

    def contents(self, kind: Optional[str] = None) -> List[str]:
        return [content for event, content in self.events if kind is None or event == kind]


def make_message(message_id: int, author_id: str = OWNER_ID, content: str = "hi") -> ChatMessage:
    return ChatMessage(
        id=MessageId(str(message_id)),
        author_id=UserId(author_id),
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=message_id),
        content=content,
        channel_id=ChannelId(CHANNEL_ID),
        author_tag=f"user{author_id[:3]}",
    )


class FakeChatAPI(ChatAPI):
    """In-memory platform. Message history is stored newest first."""

    def __init__(self, self_user_id: str = OWNER_ID):
        self.self_user_id = self_user_id
        self.history: Dict[str, List[ChatMessage]] = {}
        self.dm_channels: List[str] = []
        self.incoming_requests: List[str] = []
        self.fetch_calls: List[tuple] = []
        self.deleted_messages: List[tuple] = []
        self.deleted_channels: List[str] = []
        self.deleted_guilds: List[str] = []
        self.rejected: List[str] = []
        # Exceptions raised by the next calls to a method, in order.
        self.failures: Dict[str, List[Exception]] = {}

    def fail_next(self, method: str, *errors: Exception) -> None:
        self.failures.setdefault(method, []).extend(errors)

    def _maybe_fail(self, method: str) -> None:
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    async def fetch_messages(self, channel_id, limit, before=None):
        self.fetch_calls.append((channel_id, limit, before))
        self._maybe_fail("fetch_messages")
        messages = self.history.get(channel_id, [])
        if before is not None:
            messages = [m for m in messages if int(m.id) < int(before)]
        return messages[:limit]

    async def delete_message(self, channel_id, message_id):
        self._maybe_fail("delete_message")
        self.deleted_messages.append((channel_id, message_id))

    async def delete_channel(self, channel_id):
        self._maybe_fail("delete_channel")
        self.deleted_channels.append(channel_id)

    async def delete_guild(self, guild_id):
        self._maybe_fail("delete_guild")
        self.deleted_guilds.append(guild_id)

    async def create_dm(self, user_id):
        self._maybe_fail("create_dm")
        return ChannelId(f"dm-{user_id}")

    async def reject_relationship(self, user_id):
        self._maybe_fail("reject_relationship")
        self.rejected.append(user_id)

    async def list_dm_channels(self):
        self._maybe_fail("list_dm_channels")
        return list(self.dm_channels)

    async def list_incoming_requests(self):
        self._maybe_fail("list_incoming_requests")
        return list(self.incoming_requests)

    def get_self_user_id(self):
        return UserId(self.self_user_id)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(global_limit=50, route_limit=5, delete_limit=5, clock=clock, sleep=clock.sleep)


@pytest.fixture
def retry_policy(clock):
    """Fast, deterministic retry policy: no jitter, sleeps recorded on the fake clock."""
    return RetryPolicy(
        RetryOptions(max_attempts=3, base_delay=10, max_delay=100, jitter=False),
        sleep=clock.sleep,
        rng=random.Random(0),
    )


@pytest.fixture
def fake_api():
    return FakeChatAPI()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def make_invocation(channel):
    def _make(name: str = "purge", actor_id: str = OWNER_ID, params: Optional[dict] = None, response=None):
        return Invocation(
            actor=Actor(id=UserId(actor_id), tag=f"tag-{actor_id[:3]}"),
            command_name=CommandName(name),
            channel=response or channel,
            params=params or {},
        )
    return _make


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keeps tests independent of the developer's environment and test overrides."""
    for name in ("OWNER_USER_ID", "CHATWARDEN_OWNER_USER_ID", "API_TOKEN", "CHATWARDEN_API_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    clear_test_config()
    yield
    clear_test_config()
