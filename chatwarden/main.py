"""Main entry point for the chatwarden application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and runs invocations through the CommandRegistry.
"""

import asyncio
import contextlib
import logging
import sys
from typing import Any, Coroutine, Dict, List, Optional

import typer
from typing_extensions import Annotated

# --- Core Layer ---
from chatwarden.core.command_handler import CommandHandler
from chatwarden.core.command_registry import CommandRegistry
from chatwarden.core.services.chat_service import ChatService

# --- Domain Layer ---
from chatwarden.domain.errors import AppError
from chatwarden.domain.interfaces.chat_api import ChatAPI
from chatwarden.domain.interfaces.user_interface import UserInterface
from chatwarden.domain.models.commands import Actor, Invocation, InvocationState
from chatwarden.domain.models.common import CommandName, UserId

# --- Infrastructure Layer ---
from chatwarden.infrastructure.api.rest_client import RestChatClient
from chatwarden.infrastructure.cli.console_channel import ConsoleResponseChannel
from chatwarden.infrastructure.cli.display import ConsoleDisplay
from chatwarden.infrastructure.config.settings import (
    get_api_settings,
    get_config,
    get_fetch_settings,
    get_owner_user_id,
    get_rate_limit_settings,
    get_retry_settings,
    load_configuration,
)
from chatwarden.infrastructure.monitoring.logger_setup import setup_logging
from chatwarden.infrastructure.resilience.api_retry import RetryPolicy
from chatwarden.infrastructure.resilience.pagination import PaginatedFetcher
from chatwarden.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def configure() -> None:
    """Loads configuration and sets up logging from it."""
    load_configuration()
    setup_logging(
        log_level=get_config('logging.level', 'INFO'),
        log_file=get_config('logging.file'),
        log_format=get_config('logging.format'),
    )
    logger.info("Configuration and logging initialized.")


# --- Dependency Injection Container (Manual) ---

def create_dependencies(
    chat_api: Optional[ChatAPI] = None,
    ui: Optional[UserInterface] = None,
) -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root. Every stateful component (rate limiter,
    registry) is created exactly once here and injected where needed.

    Args:
        chat_api: Platform adapter; a RestChatClient from config if omitted.
        ui: Operator console; a rich ConsoleDisplay if omitted.
    """
    logger.info("Initializing application dependencies...")
    dependencies: Dict[str, Any] = {'ui': ui or ConsoleDisplay()}
    try:
        rate_settings = get_rate_limit_settings()
        retry_settings = get_retry_settings()
        fetch_settings = get_fetch_settings()

        if chat_api is None:
            api_settings = get_api_settings()
            chat_api = RestChatClient(
                token=api_settings.token,
                base_url=api_settings.base_url,
                timeout_s=api_settings.timeout_s,
            )
        dependencies['chat_api'] = chat_api

        dependencies['rate_limiter'] = RateLimiter(
            global_limit=rate_settings.global_limit,
            route_limit=rate_settings.route_limit,
            delete_limit=rate_settings.delete_limit,
        )
        dependencies['retry_policy'] = RetryPolicy(retry_settings.to_options())
        dependencies['fetcher'] = PaginatedFetcher(
            dependencies['rate_limiter'],
            dependencies['retry_policy'],
            page_size=fetch_settings.page_size,
        )
        dependencies['chat_service'] = ChatService(
            api=chat_api,
            rate_limiter=dependencies['rate_limiter'],
            retry_policy=dependencies['retry_policy'],
            fetcher=dependencies['fetcher'],
        )
        logger.info("Core services initialized.")

        owner_id = get_owner_user_id()
        if owner_id is None:
            logger.warning("OWNER_USER_ID is not set; every guarded command will be rejected.")
        dependencies['owner_id'] = owner_id
        dependencies['registry'] = CommandRegistry(owner_id=owner_id)
        dependencies['command_handler'] = CommandHandler(
            chat_service=dependencies['chat_service'],
            settings=fetch_settings,
            ui=dependencies['ui'],
        )
        dependencies['command_handler'].register_all(dependencies['registry'])
        logger.info("All dependencies initialized successfully.")
        return dependencies
    except AppError as e:
        logger.error(f"Fatal Error during application initialization: {e.to_log_string()}")
        dependencies['ui'].display_error(f"Application Initialization Failed: {e.message}")
        sys.exit(1)


_dependencies: Optional[Dict[str, Any]] = None


def get_dependencies() -> Dict[str, Any]:
    """Builds the dependency container on first use."""
    global _dependencies
    if _dependencies is None:
        configure()
        _dependencies = create_dependencies()
    return _dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="chatwarden",
    help="chatwarden: owner-only chat account automation with rate limiting and retries.",
    add_completion=False,
)


# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Manages running async functions from sync Typer commands."""
    try:
        return asyncio.run(coro)
    except Exception as e:
        logger.error(f"Error executing async command: {e}", exc_info=True)
        get_dependencies()['ui'].display_error(f"Command execution failed: {e}")
        return None


def parse_params(pairs: List[str]) -> Dict[str, str]:
    """Turns ['limit=10', 'format=txt'] into {'limit': '10', 'format': 'txt'}."""
    params: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got '{pair}'", param_hint="--param")
        params[key.strip()] = value.strip()
    return params


async def execute_command(
    dependencies: Dict[str, Any],
    name: str,
    params: Dict[str, str],
    actor_id: Optional[str],
) -> InvocationState:
    """Runs one invocation through the registry with a console response channel.

    The platform session is opened only for guarded commands, so `help` works
    without credentials.
    """
    registry: CommandRegistry = dependencies['registry']
    channel = ConsoleResponseChannel(dependencies['ui'], command_name=name)
    invocation = Invocation(
        actor=Actor(id=UserId(actor_id or "")),
        command_name=CommandName(name),
        channel=channel,
        params=params,
    )

    registration = registry.get(name)
    needs_api = registration is not None and registration.options.requires_auth
    api = dependencies['chat_api']
    async with contextlib.AsyncExitStack() as stack:
        if needs_api and registry.owner_id and actor_id == registry.owner_id and hasattr(api, "__aenter__"):
            await stack.enter_async_context(api)
        return await registry.execute(name, invocation)


# --- CLI Commands ---

@app.command()
def run(
    command: Annotated[str, typer.Argument(help="Name of the command to run (see `commands`).")],
    param: Annotated[
        Optional[List[str]],
        typer.Option("--param", "-p", help="Command parameter as key=value. Repeatable."),
    ] = None,
    actor: Annotated[
        Optional[str],
        typer.Option("--actor", "-a", help="Actor id to run as. Defaults to the configured owner."),
    ] = None,
):
    """Run a registered command through the guard pipeline."""
    params = parse_params(param or [])
    dependencies = get_dependencies()
    actor_id = actor if actor is not None else dependencies['owner_id']
    state = run_async(execute_command(dependencies, command, params, actor_id))
    logger.debug(f"Command {command} ended in state {state}")
    if state is not InvocationState.COMPLETED:
        raise typer.Exit(code=1)


@app.command(name="commands")
def list_commands():
    """List the registered commands."""
    dependencies = get_dependencies()
    registry: CommandRegistry = dependencies['registry']
    rows = [
        (r.name, "yes" if r.options.requires_auth else "no", "yes" if r.options.defer else "no", r.description)
        for r in registry.registrations()
    ]
    dependencies['ui'].display_table("Commands", ["Name", "Owner only", "Deferred", "Description"], rows)


@app.command(name="config")
def show_config():
    """Show the effective rate-limit, retry and fetch settings."""
    dependencies = get_dependencies()
    rate = get_rate_limit_settings()
    retry = get_retry_settings()
    fetch = get_fetch_settings()
    rows = [
        ("owner_user_id", dependencies['owner_id'] or "(not set)"),
        ("rate_limit.global", rate.global_limit),
        ("rate_limit.route", rate.route_limit),
        ("rate_limit.delete", rate.delete_limit),
        ("retry.max_attempts", retry.max_attempts),
        ("retry.base_delay_ms", retry.base_delay_ms),
        ("retry.max_delay_ms", retry.max_delay_ms),
        ("retry.backoff_factor", retry.backoff_factor),
        ("retry.jitter", retry.jitter),
        ("fetch.page_size", fetch.page_size),
        ("limits.max_scrape", fetch.max_scrape_limit),
        ("limits.self_purge", fetch.self_purge_limit),
        ("export_dir", fetch.export_dir),
    ]
    dependencies['ui'].display_table("Effective configuration", ["Key", "Value"], rows)


# --- Main Execution Guard ---
def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
