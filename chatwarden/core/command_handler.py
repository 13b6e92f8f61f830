"""Command Handler: the built-in commands and their registration.

Each handler receives an Invocation, reads its parameters, delegates the work
to ChatService and answers through the invocation's response channel. Guarded
handlers run after the pipeline has acknowledged the invocation, so they
answer with `edit_reply`.
"""

import json
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from chatwarden.core.command_registry import CommandRegistry
from chatwarden.core.services.chat_service import ChatService
from chatwarden.domain.errors import AppError, ValidationError
from chatwarden.domain.interfaces.user_interface import UserInterface
from chatwarden.domain.models.commands import Invocation
from chatwarden.domain.models.common import ChannelId, ChatMessage
from chatwarden.infrastructure.config.settings import FetchSettings
from chatwarden.infrastructure.filesystem.local_fs import write_file_async

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "txt")
DEFAULT_SCRAPE_LIMIT = 100
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def _format_total(total: float) -> str:
    return "all" if math.isinf(total) else str(int(total))


def messages_to_json(messages: List[ChatMessage]) -> str:
    records = [
        {
            "id": m.id,
            "timestamp": m.timestamp.strftime(TIMESTAMP_FORMAT),
            "author": m.author_tag or m.author_id,
            "author_id": m.author_id,
            "content": m.content,
            "attachments": list(m.attachments),
        }
        for m in messages
    ]
    return json.dumps(records, indent=2, ensure_ascii=False)


def messages_to_text(messages: List[ChatMessage]) -> str:
    lines = []
    for m in messages:
        attachments = f" [Attachments: {', '.join(m.attachments)}]" if m.attachments else ""
        lines.append(f"[{m.timestamp.strftime(TIMESTAMP_FORMAT)}] {m.author_tag or m.author_id}: {m.content}{attachments}")
    return "\n".join(lines)


class CommandHandler:
    """Implements the built-in commands on top of ChatService."""

    def __init__(
        self,
        chat_service: ChatService,
        settings: FetchSettings,
        ui: Optional[UserInterface] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        """Initializes the CommandHandler.

        Args:
            chat_service: Resilient access to the platform.
            settings: Limits and export location.
            ui: Operator console for progress lines; optional.
            now: Clock used to stamp export file names.
        """
        self.chat_service = chat_service
        self.settings = settings
        self.ui = ui
        self._now = now
        self._registry: Optional[CommandRegistry] = None

    def register_all(self, registry: CommandRegistry) -> None:
        """Registers every built-in command on `registry`."""
        self._registry = registry
        registry.register(
            "help", self.handle_help, requires_auth=False, defer=False,
            description="List available commands",
        )
        registry.register(
            "purge", self.handle_purge,
            description="Delete your own messages in a channel (channel_id, limit)",
        )
        registry.register(
            "scrape", self.handle_scrape,
            description="Export channel history to JSON or TXT (channel_id, limit, format)",
        )
        registry.register(
            "close_dms", self.handle_close_dms,
            description="Close all DM channels and reject incoming requests",
        )
        logger.debug(f"Registered {registry.size} built-in commands")

    # --- Parameter helpers ---

    @staticmethod
    def _int_param(invocation: Invocation, name: str, default: int) -> int:
        raw = invocation.get_param(name, default)
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"Parameter '{name}' must be an integer, got {raw!r}", field=name)

    def _progress(self, message: str) -> None:
        if self.ui:
            self.ui.display_progress(message)

    def _end_progress(self) -> None:
        if self.ui:
            self.ui.end_progress()

    # --- Handlers ---

    async def handle_help(self, invocation: Invocation) -> None:
        registrations = self._registry.registrations() if self._registry else []
        lines = ["**Available Commands**", ""]
        for registration in sorted(registrations, key=lambda r: r.name):
            lock = " (owner only)" if registration.options.requires_auth else ""
            lines.append(f"- `/{registration.name}`{lock}: {registration.description or 'No description'}")
        await invocation.channel.reply("\n".join(lines), ephemeral=True)

    async def handle_purge(self, invocation: Invocation) -> None:
        """Deletes the acting account's own messages among the latest `limit`."""
        channel_id = ChannelId(self.chat_service.validate_id(invocation.get_param("channel_id"), "channel_id"))
        limit = self._int_param(invocation, "limit", self.settings.self_purge_limit)
        if limit < 1 or limit > self.settings.self_purge_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.settings.self_purge_limit}", field="limit"
            )

        logger.warning(f"Starting self-purge in channel {channel_id}, checking {limit} messages")
        messages = await self.chat_service.fetch_messages(
            channel_id,
            limit,
            on_progress=lambda fetched, total: self._progress(f"Scanning {fetched}/{_format_total(total)} messages..."),
        )
        self_id = self.chat_service.get_self_user_id()
        mine = [m for m in messages if m.author_id == self_id]

        if not mine:
            self._end_progress()
            await invocation.channel.edit_reply(
                f"No messages found to delete in the last {limit} messages in <#{channel_id}>."
            )
            return

        logger.info(f"Found {len(mine)} messages to delete")
        result = await self.chat_service.bulk_delete_messages(
            channel_id,
            mine,
            on_progress=lambda done, total: self._progress(f"Deleted {done}/{total} messages..."),
        )
        self._end_progress()
        logger.info(f"Self-purge complete: {result.succeeded} messages deleted")

        lines = ["**Operation Complete.**", f"Deleted: {result.succeeded} messages"]
        if result.failed:
            lines.append(f"Errors: {result.failed}")
        lines.append(f"Channel: <#{channel_id}>")
        await invocation.channel.edit_reply("\n".join(lines))

    async def handle_scrape(self, invocation: Invocation) -> None:
        """Exports channel history; a limit of 0 means the whole history."""
        channel_id = ChannelId(self.chat_service.validate_id(invocation.get_param("channel_id"), "channel_id"))
        requested = self._int_param(invocation, "limit", DEFAULT_SCRAPE_LIMIT)
        if requested < 0 or requested > self.settings.max_scrape_limit:
            raise ValidationError(
                f"limit must be between 0 and {self.settings.max_scrape_limit} (0 = all)", field="limit"
            )
        limit = math.inf if requested == 0 else requested

        export_format = str(invocation.get_param("format", "json")).lower()
        if export_format not in EXPORT_FORMATS:
            raise ValidationError(f"format must be one of {', '.join(EXPORT_FORMATS)}", field="format")

        logger.info(f"Starting deep scrape of {channel_id}, limit: {'0 (all)' if requested == 0 else requested}")
        messages = await self.chat_service.fetch_messages(
            channel_id,
            limit,
            on_progress=lambda fetched, total: self._progress(f"Fetched {fetched}/{_format_total(total)} messages..."),
        )
        self._end_progress()

        content = messages_to_text(messages) if export_format == "txt" else messages_to_json(messages)
        file_path = self.export_path(channel_id, export_format)
        if not await write_file_async(file_path, content):
            raise AppError(f"Could not write export file {file_path}", context={"channel_id": channel_id})

        logger.info(f"Scrape complete: {len(messages)} messages saved to {file_path}")
        await invocation.channel.edit_reply(
            f"Scrape complete\n`{len(messages)}` messages archived\nSaved to `{file_path}`"
        )

    def export_path(self, channel_id: ChannelId, export_format: str) -> Path:
        stamp = self._now().strftime("%Y%m%d_%H%M%S")
        return Path(self.settings.export_dir) / str(channel_id) / f"scrape_{stamp}.{export_format}"

    async def handle_close_dms(self, invocation: Invocation) -> None:
        """Closes every DM channel, then rejects every incoming request."""
        channel = invocation.channel
        await channel.follow_up(
            "**Starting Bulk Account Hygiene**\n"
            "Closing all DMs and rejecting all incoming requests. This is **irreversible**."
        )
        logger.warning("Starting bulk cleanup operation")

        dms = await self.chat_service.close_dm_channels(
            on_progress=lambda done, total: self._progress(f"Closed {done}/{total} DMs...")
        )
        self._end_progress()
        await channel.follow_up(
            f"Closed {dms.succeeded} DM channels" + (f" ({dms.failed} errors)." if dms.failed else ".")
        )

        requests = await self.chat_service.reject_all_requests(
            on_progress=lambda done, total: self._progress(f"Rejected {done}/{total} requests...")
        )
        self._end_progress()
        await channel.follow_up(
            f"Rejected {requests.succeeded} requests" + (f" ({requests.failed} errors)." if requests.failed else ".")
        )

        logger.info(f"Bulk cleanup complete: {dms.succeeded} DMs closed, {requests.succeeded} requests rejected")
        await channel.edit_reply(
            "**Bulk Hygiene Complete.**\n"
            f"DMs closed: {dms.succeeded}\n"
            f"Requests rejected: {requests.succeeded}"
        )
