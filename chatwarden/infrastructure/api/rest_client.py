"""aiohttp implementation of the ChatAPI port against the platform REST API.

HTTP failures are turned into the error taxonomy at the point of failure so
the retry layer can classify them by kind:

    429            -> RateLimitError (server-mandated wait in ms)
    404            -> ChatAPIError(NOT_FOUND)
    401 / 403      -> ChatAPIError(FORBIDDEN)
    5xx            -> ChatAPIError(SERVER)
    other 4xx      -> ChatAPIError(CLIENT)
    local timeout  -> RequestTimeoutError
    socket failure -> ChatAPIError(CONNECTION)
"""

import asyncio
import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from chatwarden.domain.errors import (
    ChatAPIError,
    ConfigurationError,
    ErrorKind,
    RateLimitError,
    RequestTimeoutError,
)
from chatwarden.domain.interfaces.chat_api import ChatAPI
from chatwarden.domain.models.common import ChannelId, ChatMessage, GuildId, MessageId, UserId

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://discord.com/api/v10"
DEFAULT_RETRY_AFTER_MS = 1000

# Relationship type of a pending incoming request.
INCOMING_REQUEST_TYPE = 3
# Channel types of one-to-one and group DMs.
DM_CHANNEL_TYPES = (1, 3)


def parse_retry_after(body: Any, headers: Mapping[str, str]) -> int:
    """Reads the mandated wait from a 429 response, in whole milliseconds.

    The JSON body's `retry_after` (seconds, may be fractional) wins over the
    `Retry-After` header.
    """
    seconds: Optional[float] = None
    if isinstance(body, dict) and body.get("retry_after") is not None:
        try:
            seconds = float(body["retry_after"])
        except (TypeError, ValueError):
            seconds = None
    if seconds is None and headers.get("Retry-After"):
        try:
            seconds = float(headers["Retry-After"])
        except (TypeError, ValueError):
            seconds = None
    if seconds is None or seconds < 0:
        return DEFAULT_RETRY_AFTER_MS
    # Round first so 1.234s is 1234ms, not 1235ms from float error.
    return int(math.ceil(round(seconds * 1000, 3)))


def error_for_response(status: int, body: Any, headers: Mapping[str, str], context: str) -> ChatAPIError:
    """Builds the taxonomy error for a failed HTTP response."""
    detail = body.get("message") if isinstance(body, dict) else None
    message = f"{context} failed with HTTP {status}" + (f": {detail}" if detail else "")
    if status == 429:
        retry_after_ms = parse_retry_after(body, headers)
        return RateLimitError(f"Rate limited while {context}", retry_after_ms=retry_after_ms)
    return ChatAPIError(message, status_code=status, context={"request": context})


def parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_message(data: Dict[str, Any], channel_id: Optional[str] = None) -> ChatMessage:
    """Converts a raw message payload into a ChatMessage."""
    author = data.get("author") or {}
    username = author.get("username")
    discriminator = author.get("discriminator")
    if username and discriminator and discriminator != "0":
        author_tag = f"{username}#{discriminator}"
    else:
        author_tag = username
    return ChatMessage(
        id=MessageId(str(data["id"])),
        author_id=UserId(str(author.get("id", ""))),
        timestamp=parse_timestamp(data.get("timestamp")),
        content=data.get("content") or "",
        attachments=[a["url"] for a in data.get("attachments", []) if a.get("url")],
        channel_id=ChannelId(str(data.get("channel_id") or channel_id or "")) or None,
        author_tag=author_tag,
    )


class RestChatClient(ChatAPI):
    """ChatAPI adapter speaking HTTP through a shared aiohttp session.

    Use as an async context manager; the session is opened on entry and the
    acting account's id is resolved once.
    """

    def __init__(self, token: Optional[str], base_url: str = DEFAULT_BASE_URL, timeout_s: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._token = token
        self._session: Optional[aiohttp.ClientSession] = None
        self._self_user_id: Optional[UserId] = None

    async def __aenter__(self) -> "RestChatClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        if not self._token:
            raise ConfigurationError("API token is not configured (set API_TOKEN)")
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": self._token, "Content-Type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.timeout_s),
            )
        try:
            me = await self._request("GET", "/users/@me", context="fetching current user")
        except BaseException:
            # __aexit__ does not run when __aenter__ raises.
            await self.close()
            raise
        self._self_user_id = UserId(str(me["id"]))
        logger.info(f"REST client ready as user {self._self_user_id}")

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.debug("REST client session closed")

    async def _request(
        self,
        method: str,
        path: str,
        context: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if self._session is None:
            raise ConfigurationError("REST client used before open()")
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {path} params={params}")
        try:
            async with self._session.request(method, url, params=params, json=payload) as resp:
                text = await resp.text()
                body: Any = None
                if text:
                    try:
                        body = json.loads(text)
                    except ValueError:
                        body = text
                if resp.status >= 400:
                    raise error_for_response(resp.status, body, resp.headers, context)
                return body
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(
                f"Timed out after {self.timeout_s}s while {context}",
                timeout_ms=int(self.timeout_s * 1000),
            ) from e
        except aiohttp.ClientConnectionError as e:
            raise ChatAPIError(f"Connection error while {context}: {e}", kind=ErrorKind.CONNECTION) from e
        except aiohttp.ClientError as e:
            raise ChatAPIError(f"Network error while {context}: {e}", kind=ErrorKind.NETWORK) from e

    # --- ChatAPI ---

    async def fetch_messages(
        self,
        channel_id: ChannelId,
        limit: int,
        before: Optional[MessageId] = None,
    ) -> List[ChatMessage]:
        params: Dict[str, Any] = {"limit": limit}
        if before:
            params["before"] = before
        data = await self._request(
            "GET", f"/channels/{channel_id}/messages", context=f"fetching messages in {channel_id}", params=params
        )
        return [parse_message(item, channel_id) for item in data or []]

    async def delete_message(self, channel_id: ChannelId, message_id: MessageId) -> None:
        await self._request(
            "DELETE", f"/channels/{channel_id}/messages/{message_id}", context=f"deleting message {message_id}"
        )

    async def delete_channel(self, channel_id: ChannelId) -> None:
        await self._request("DELETE", f"/channels/{channel_id}", context=f"deleting channel {channel_id}")

    async def delete_guild(self, guild_id: GuildId) -> None:
        await self._request("DELETE", f"/guilds/{guild_id}", context=f"deleting guild {guild_id}")

    async def create_dm(self, user_id: UserId) -> ChannelId:
        data = await self._request(
            "POST", "/users/@me/channels", context=f"opening DM with {user_id}", payload={"recipient_id": user_id}
        )
        return ChannelId(str(data["id"]))

    async def reject_relationship(self, user_id: UserId) -> None:
        await self._request(
            "DELETE", f"/users/@me/relationships/{user_id}", context=f"rejecting request from {user_id}"
        )

    async def list_dm_channels(self) -> List[ChannelId]:
        data = await self._request("GET", "/users/@me/channels", context="listing DM channels")
        return [ChannelId(str(c["id"])) for c in data or [] if c.get("type") in DM_CHANNEL_TYPES]

    async def list_incoming_requests(self) -> List[UserId]:
        data = await self._request("GET", "/users/@me/relationships", context="listing relationships")
        return [UserId(str(r["id"])) for r in data or [] if r.get("type") == INCOMING_REQUEST_TYPE]

    def get_self_user_id(self) -> UserId:
        if self._self_user_id is None:
            raise ConfigurationError("Current user unknown; open the client first")
        return self._self_user_id
