"""Composable guards for command handlers.

Each guard wraps a handler with one concern: authorization, automatic
acknowledgment, or error reporting. `guarded` applies them in the same fixed
order the CommandRegistry uses, for call sites that do not want a central
registry.
"""

import functools
import logging
from typing import Awaitable, Callable, Optional

from chatwarden.domain.errors import AppError, AuthorizationError
from chatwarden.domain.models.commands import Handler, Invocation, InvocationState

logger = logging.getLogger(__name__)

UNAUTHORIZED_MESSAGE = "Authorization failed. This command is restricted to the owner."

GuardedHandler = Callable[[Invocation], Awaitable[InvocationState]]


def is_authorized(actor_id: Optional[str], owner_id: Optional[str]) -> bool:
    """True only for the single configured privileged actor."""
    return bool(owner_id) and actor_id == owner_id


def failure_message(error: BaseException) -> str:
    detail = error.message if isinstance(error, AppError) else str(error)
    return f"Command failed - Error: {detail or type(error).__name__}"


async def send_rejection(invocation: Invocation, message: str) -> bool:
    """Best-effort ephemeral rejection reply. Delivery errors are logged and swallowed."""
    try:
        await invocation.channel.reply(message, ephemeral=True)
        return True
    except Exception as e:
        logger.debug(f"Could not deliver rejection of /{invocation.command_name}: {e}")
        return False


async def reject_unauthorized(invocation: Invocation) -> bool:
    logger.warning(
        f"Unauthorized attempt to run /{invocation.command_name} by {invocation.actor} ({invocation.actor.id})"
    )
    return await send_rejection(invocation, UNAUTHORIZED_MESSAGE)


async def report_failure(invocation: Invocation, error: BaseException) -> bool:
    """Best-effort delivery of a failure message to the invoker.

    Edits the reserved slot when the invocation was already acknowledged or
    answered, otherwise sends a fresh reply. Delivery errors are logged and
    swallowed. Returns whether delivery succeeded.
    """
    message = failure_message(error)
    channel = invocation.channel
    try:
        if channel.responded:
            await channel.edit_reply(message)
        else:
            await channel.reply(message, ephemeral=True)
        return True
    except Exception as report_error:
        logger.debug(f"Could not report failure of /{invocation.command_name}: {report_error}")
        return False


class InvocationRejected(AuthorizationError):
    """Raised by with_authorization after the rejection has been replied."""


def with_authorization(owner_id: Optional[str]) -> Callable[[Handler], Handler]:
    """Rejects non-owners before the handler runs.

    The rejection is replied to the invoker and then raised as
    InvocationRejected so outer guards can tell it apart from a failure.
    """
    def decorator(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def wrapper(invocation: Invocation) -> None:
            if not is_authorized(invocation.actor.id, owner_id):
                await reject_unauthorized(invocation)
                raise InvocationRejected(
                    "Unauthorized command execution attempt",
                    required_permission="owner",
                    context={"user_id": invocation.actor.id, "command": invocation.command_name},
                )
            await handler(invocation)
        return wrapper
    return decorator


def with_defer(ephemeral: bool = True) -> Callable[[Handler], Handler]:
    """Acknowledges the invocation before the handler starts."""
    def decorator(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def wrapper(invocation: Invocation) -> None:
            await invocation.channel.acknowledge(ephemeral=ephemeral)
            await handler(invocation)
        return wrapper
    return decorator


def with_error_handler(handler: Handler) -> Handler:
    """Logs and reports handler failures, then re-raises them."""
    @functools.wraps(handler)
    async def wrapper(invocation: Invocation) -> None:
        try:
            await handler(invocation)
        except Exception as e:
            logger.error(
                f"Command execution error: /{invocation.command_name} by {invocation.actor.id}: {e}",
                exc_info=True,
            )
            await report_failure(invocation, e)
            raise
    return wrapper


def guarded(handler: Handler, owner_id: Optional[str], requires_auth: bool = True, defer: bool = True) -> GuardedHandler:
    """Wraps a handler as authorize -> acknowledge -> handler, inside an error boundary.

    The error boundary also covers the acknowledgment. The returned coroutine
    never raises; it returns the terminal InvocationState, matching
    CommandRegistry.execute for the same inputs.
    """
    wrapped: Handler = handler
    if defer:
        wrapped = with_defer()(wrapped)
    wrapped = with_error_handler(wrapped)
    if requires_auth:
        wrapped = with_authorization(owner_id)(wrapped)

    @functools.wraps(handler)
    async def run(invocation: Invocation) -> InvocationState:
        try:
            await wrapped(invocation)
        except InvocationRejected:
            return InvocationState.REJECTED
        except Exception:
            # Already logged and reported by with_error_handler.
            return InvocationState.FAILED
        return InvocationState.COMPLETED

    return run
