import json
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from chatwarden.core.command_handler import CommandHandler
from chatwarden.core.command_registry import CommandRegistry
from chatwarden.core.services.chat_service import ChatService
from chatwarden.domain.errors import ChatAPIError, ValidationError
from chatwarden.domain.interfaces.user_interface import UserInterface
from chatwarden.domain.models.commands import InvocationState
from chatwarden.infrastructure.config.settings import FetchSettings

from tests.conftest import CHANNEL_ID, OTHER_ID, OWNER_ID, make_message


@pytest.fixture
def mock_ui():
    return MagicMock(spec=UserInterface)


@pytest.fixture
def settings(tmp_path: Path):
    return FetchSettings(page_size=100, max_scrape_limit=1000, self_purge_limit=200, export_dir=tmp_path / "exports")


@pytest.fixture
def command_handler(fake_api, rate_limiter, retry_policy, settings, mock_ui):
    """Fixture to create CommandHandler over the in-memory platform."""
    service = ChatService(api=fake_api, rate_limiter=rate_limiter, retry_policy=retry_policy)
    return CommandHandler(
        chat_service=service,
        settings=settings,
        ui=mock_ui,
        now=lambda: datetime(2024, 5, 6, 7, 8, 9),
    )


@pytest.fixture
def registry(command_handler):
    registry = CommandRegistry(owner_id=OWNER_ID)
    command_handler.register_all(registry)
    return registry


def test_register_all_registers_builtins(registry):
    assert set(registry.command_names()) == {"help", "purge", "scrape", "close_dms"}
    assert registry.get("help").options.requires_auth is False
    assert registry.get("purge").options.requires_auth is True


@pytest.mark.asyncio
async def test_help_lists_commands_for_anyone(registry, channel, make_invocation):
    state = await registry.execute("help", make_invocation("help", actor_id=OTHER_ID))

    assert state is InvocationState.COMPLETED
    [text] = channel.contents("reply")
    assert "`/purge` (owner only)" in text
    assert "`/help`: List available commands" in text


@pytest.mark.asyncio
async def test_purge_deletes_only_own_messages(registry, fake_api, channel, make_invocation, mock_ui):
    fake_api.history[CHANNEL_ID] = [
        make_message(i, author_id=OWNER_ID if i % 2 else OTHER_ID) for i in range(10, 0, -1)
    ]

    state = await registry.execute("purge", make_invocation(params={"channel_id": CHANNEL_ID, "limit": "10"}))

    assert state is InvocationState.COMPLETED
    assert sorted(int(m) for _, m in fake_api.deleted_messages) == [1, 3, 5, 7, 9]
    [summary] = channel.contents("edit")
    assert "Deleted: 5 messages" in summary
    assert "Errors" not in summary
    mock_ui.display_progress.assert_any_call("Scanning 10/10 messages...")


@pytest.mark.asyncio
async def test_purge_reports_per_item_errors(registry, fake_api, channel, make_invocation):
    fake_api.history[CHANNEL_ID] = [make_message(i) for i in range(3, 0, -1)]
    fake_api.fail_next("delete_message", ChatAPIError("Unknown Message", status_code=404))

    await registry.execute("purge", make_invocation(params={"channel_id": CHANNEL_ID, "limit": 5}))

    [summary] = channel.contents("edit")
    assert "Deleted: 2 messages" in summary
    assert "Errors: 1" in summary


@pytest.mark.asyncio
async def test_purge_with_nothing_to_delete(registry, fake_api, channel, make_invocation):
    fake_api.history[CHANNEL_ID] = [make_message(1, author_id=OTHER_ID)]

    await registry.execute("purge", make_invocation(params={"channel_id": CHANNEL_ID, "limit": 50}))

    assert channel.contents("edit") == [f"No messages found to delete in the last 50 messages in <#{CHANNEL_ID}>."]
    assert fake_api.deleted_messages == []


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [{"channel_id": "bad"}, {"channel_id": CHANNEL_ID, "limit": "999"},
                                    {"channel_id": CHANNEL_ID, "limit": "ten"}])
async def test_purge_validation_errors_are_reported(registry, fake_api, channel, make_invocation, params):
    state = await registry.execute("purge", make_invocation(params=params))

    assert state is InvocationState.FAILED
    [message] = channel.contents("edit")
    assert message.startswith("Command failed - Error: ")
    assert fake_api.fetch_calls == []


@pytest.mark.asyncio
async def test_scrape_exports_json(registry, fake_api, channel, make_invocation, settings):
    fake_api.history[CHANNEL_ID] = [make_message(i) for i in range(3, 0, -1)]

    state = await registry.execute("scrape", make_invocation("scrape", params={"channel_id": CHANNEL_ID, "limit": "0"}))

    assert state is InvocationState.COMPLETED
    path = settings.export_dir / CHANNEL_ID / "scrape_20240506_070809.json"
    records = json.loads(path.read_text(encoding="utf-8"))
    assert [r["id"] for r in records] == ["3", "2", "1"]
    assert records[0]["author_id"] == OWNER_ID
    assert records[0]["timestamp"] == "2024-01-01 00:00:03"
    [summary] = channel.contents("edit")
    assert "`3` messages archived" in summary


@pytest.mark.asyncio
async def test_scrape_exports_text_with_attachments(registry, fake_api, channel, make_invocation, settings):
    message = make_message(1, content="see file")
    message.attachments = ["https://cdn.example/a.png"]
    fake_api.history[CHANNEL_ID] = [message]

    await registry.execute(
        "scrape", make_invocation("scrape", params={"channel_id": CHANNEL_ID, "limit": 10, "format": "TXT"})
    )

    text = (settings.export_dir / CHANNEL_ID / "scrape_20240506_070809.txt").read_text(encoding="utf-8")
    assert text == "[2024-01-01 00:00:01] user111: see file [Attachments: https://cdn.example/a.png]"


@pytest.mark.asyncio
async def test_scrape_zero_limit_means_whole_history(command_handler, fake_api, make_invocation):
    fake_api.history[CHANNEL_ID] = [make_message(i) for i in range(250, 0, -1)]

    await command_handler.handle_scrape(make_invocation("scrape", params={"channel_id": CHANNEL_ID, "limit": 0}))

    assert len(fake_api.fetch_calls) == 4


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [{"channel_id": CHANNEL_ID, "limit": 5000},
                                    {"channel_id": CHANNEL_ID, "format": "csv"}])
async def test_scrape_rejects_bad_parameters(command_handler, make_invocation, params):
    with pytest.raises(ValidationError):
        await command_handler.handle_scrape(make_invocation("scrape", params=params))


@pytest.mark.asyncio
async def test_close_dms_reports_each_phase(registry, fake_api, channel, make_invocation):
    fake_api.dm_channels = ["dm-1", "dm-2"]
    fake_api.incoming_requests = [OTHER_ID]
    fake_api.fail_next("delete_channel", ChatAPIError("Missing Access", status_code=403))

    state = await registry.execute("close_dms", make_invocation("close_dms"))

    assert state is InvocationState.COMPLETED
    follow_ups = channel.contents("follow_up")
    assert follow_ups[0].startswith("**Starting Bulk Account Hygiene**")
    assert follow_ups[1] == "Closed 1 DM channels (1 errors)."
    assert follow_ups[2] == "Rejected 1 requests."
    [final] = channel.contents("edit")
    assert "DMs closed: 1" in final
    assert "Requests rejected: 1" in final


def test_export_path_uses_clock(command_handler, settings):
    path = command_handler.export_path(CHANNEL_ID, "json")
    assert path == settings.export_dir / CHANNEL_ID / "scrape_20240506_070809.json"
