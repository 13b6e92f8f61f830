from pathlib import Path

import pytest
from rich.console import Console
from typer.testing import CliRunner

from chatwarden import main
from chatwarden.main import app
from chatwarden.infrastructure.cli.display import ConsoleDisplay
from chatwarden.infrastructure.config.settings import set_config_for_testing

from tests.conftest import CHANNEL_ID, OTHER_ID, OWNER_ID, make_message

# These fixtures are defined in tests/conftest.py:
# runner: CliRunner
# fake_api: FakeChatAPI (in-memory platform)


@pytest.fixture
def cli_dependencies(monkeypatch, fake_api, tmp_path: Path):
    """Wires the real composition root around the in-memory platform."""
    set_config_for_testing({"owner_user_id": OWNER_ID, "export_dir": str(tmp_path / "exports")})
    dependencies = main.create_dependencies(chat_api=fake_api, ui=ConsoleDisplay(console=Console(width=120)))
    monkeypatch.setattr(main, "_dependencies", dependencies)
    return dependencies


def test_commands_lists_builtins(runner: CliRunner, cli_dependencies):
    result = runner.invoke(app, ["commands"])
    assert result.exit_code == 0, result.output
    for name in ("help", "purge", "scrape", "close_dms"):
        assert name in result.output


def test_help_runs_for_any_actor(runner: CliRunner, cli_dependencies):
    result = runner.invoke(app, ["run", "help", "--actor", OTHER_ID])
    assert result.exit_code == 0, result.output
    assert "/purge" in result.output


def test_purge_flow_as_owner(runner: CliRunner, cli_dependencies, fake_api):
    fake_api.history[CHANNEL_ID] = [make_message(i) for i in range(4, 0, -1)]

    result = runner.invoke(app, ["run", "purge", "-p", f"channel_id={CHANNEL_ID}", "-p", "limit=10"])

    assert result.exit_code == 0, result.output
    assert len(fake_api.deleted_messages) == 4
    assert "Deleted: 4 messages" in result.output


def test_scrape_flow_writes_export(runner: CliRunner, cli_dependencies, fake_api, tmp_path: Path):
    fake_api.history[CHANNEL_ID] = [make_message(i) for i in range(2, 0, -1)]

    result = runner.invoke(app, ["run", "scrape", "-p", f"channel_id={CHANNEL_ID}", "-p", "format=txt"])

    assert result.exit_code == 0, result.output
    exports = list((tmp_path / "exports" / CHANNEL_ID).glob("scrape_*.txt"))
    assert len(exports) == 1


def test_other_actor_is_rejected(runner: CliRunner, cli_dependencies, fake_api):
    result = runner.invoke(app, ["run", "purge", "--actor", OTHER_ID, "-p", f"channel_id={CHANNEL_ID}"])
    assert result.exit_code == 1
    assert "Authorization failed" in result.output
    assert fake_api.fetch_calls == []


def test_unknown_command_is_rejected(runner: CliRunner, cli_dependencies):
    result = runner.invoke(app, ["run", "nuke"])
    assert result.exit_code == 1
    assert "Unknown command: nuke" in result.output


def test_handler_failure_is_shown(runner: CliRunner, cli_dependencies):
    result = runner.invoke(app, ["run", "scrape", "-p", "channel_id=bad"])
    assert result.exit_code == 1
    assert "Command failed - Error" in result.output


def test_malformed_param_is_a_usage_error(runner: CliRunner, cli_dependencies):
    result = runner.invoke(app, ["run", "purge", "-p", "limit"])
    assert result.exit_code == 2


def test_config_shows_effective_settings(runner: CliRunner, cli_dependencies):
    result = runner.invoke(app, ["config"])
    assert result.exit_code == 0, result.output
    assert "rate_limit.delete" in result.output
    assert OWNER_ID in result.output
