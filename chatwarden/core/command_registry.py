"""Command Registry: guards and executes named command handlers.

Handlers register under a unique name with options. Executing a command runs
a fixed, ordered list of stages:

    resolve     -> the name must be registered            (else Rejected)
    authorize   -> guarded commands need the owner        (else Rejected)
    acknowledge -> defer the response when requested      (Acknowledged)
    run         -> call the handler inside an error boundary (Completed | Failed)

Each stage returns True to continue or False to stop. Nothing raised by a
handler, or by reporting its failure, escapes `execute`.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from chatwarden.core.guards import is_authorized, reject_unauthorized, report_failure, send_rejection
from chatwarden.domain.models.common import CommandName
from chatwarden.domain.models.commands import (
    CommandOptions,
    CommandRegistration,
    Handler,
    Invocation,
    InvocationState,
)

logger = logging.getLogger(__name__)


@dataclass
class _Execution:
    """Mutable state of one invocation while it moves through the stages."""

    name: str
    invocation: Invocation
    registration: Optional[CommandRegistration] = None
    state: InvocationState = InvocationState.RECEIVED


Stage = Callable[[_Execution], Awaitable[bool]]


class CommandRegistry:
    """Maps command names to handlers and runs them through the guard stages."""

    def __init__(self, owner_id: Optional[str] = None):
        """Initializes an empty registry.

        Args:
            owner_id: The single privileged actor allowed to run guarded commands.
                When unset, every guarded command is rejected.
        """
        self.owner_id = owner_id
        self._commands: Dict[str, CommandRegistration] = {}
        self._stages: List[Stage] = [self._resolve, self._authorize, self._acknowledge, self._run]

    def register(
        self,
        name: str,
        handler: Handler,
        requires_auth: bool = True,
        defer: bool = True,
        description: str = "",
    ) -> None:
        """Registers a handler, silently replacing any previous one with the same name."""
        self._commands[name] = CommandRegistration(
            name=CommandName(name),
            handler=handler,
            options=CommandOptions(requires_auth=requires_auth, defer=defer),
            description=description,
        )
        logger.debug(f"Registered command: {name}")

    def has(self, name: str) -> bool:
        return name in self._commands

    def get(self, name: str) -> Optional[CommandRegistration]:
        return self._commands.get(name)

    @property
    def size(self) -> int:
        return len(self._commands)

    def command_names(self) -> List[str]:
        return list(self._commands)

    def registrations(self) -> List[CommandRegistration]:
        return list(self._commands.values())

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __len__(self) -> int:
        return len(self._commands)

    async def execute(self, name: str, invocation: Invocation) -> InvocationState:
        """Runs a command by name and returns the terminal state it reached."""
        execution = _Execution(name=name, invocation=invocation)
        for stage in self._stages:
            try:
                proceed = await stage(execution)
            except Exception as e:
                logger.error(f"Command pipeline error at {stage.__name__} for /{name}: {e}", exc_info=True)
                execution.state = InvocationState.FAILED
                break
            if not proceed:
                break
        logger.debug(f"/{name} finished in state {execution.state.value}")
        return execution.state

    # --- Stages ---

    async def _resolve(self, execution: _Execution) -> bool:
        execution.registration = self._commands.get(execution.name)
        if execution.registration is None:
            logger.warning(f"Unknown command attempted: {execution.name}")
            execution.state = InvocationState.REJECTED
            await send_rejection(execution.invocation, f"Unknown command: {execution.name}")
            return False
        return True

    async def _authorize(self, execution: _Execution) -> bool:
        options = execution.registration.options
        actor = execution.invocation.actor
        if options.requires_auth and not is_authorized(actor.id, self.owner_id):
            execution.state = InvocationState.REJECTED
            await reject_unauthorized(execution.invocation)
            return False
        execution.state = InvocationState.AUTHORIZED
        logger.info(f"Executing command: /{execution.name} by {actor}")
        return True

    async def _acknowledge(self, execution: _Execution) -> bool:
        if not execution.registration.options.defer:
            return True
        try:
            await execution.invocation.channel.acknowledge(ephemeral=True)
        except Exception as e:
            await self._fail(execution, e)
            return False
        execution.state = InvocationState.ACKNOWLEDGED
        return True

    async def _run(self, execution: _Execution) -> bool:
        execution.state = InvocationState.EXECUTING
        try:
            await execution.registration.handler(execution.invocation)
        except Exception as e:
            await self._fail(execution, e)
            return False
        execution.state = InvocationState.COMPLETED
        return True

    async def _fail(self, execution: _Execution, error: Exception) -> None:
        logger.error(
            f"Command error: /{execution.name} by {execution.invocation.actor.id}: {error}",
            exc_info=True,
        )
        execution.state = InvocationState.FAILED
        await report_failure(execution.invocation, error)
