"""ResponseChannel that renders replies on the operator's terminal.

Used when commands are invoked from the command line rather than from the
chat platform. Acknowledging shows a "thinking" line; editing the reply
prints the final content.
"""

import logging
from typing import List

from chatwarden.domain.interfaces.response_channel import ResponseChannel
from chatwarden.domain.interfaces.user_interface import UserInterface

logger = logging.getLogger(__name__)

FAILURE_PREFIX = "Command failed"


class ConsoleResponseChannel(ResponseChannel):
    """Renders invocation responses through a UserInterface."""

    def __init__(self, ui: UserInterface, command_name: str = "command"):
        super().__init__()
        self.ui = ui
        self.command_name = command_name
        # Everything shown to the invoker, in order.
        self.transcript: List[str] = []

    async def acknowledge(self, ephemeral: bool = True) -> None:
        if self.deferred:
            logger.debug(f"/{self.command_name} already acknowledged")
            return
        self.deferred = True
        self.ui.display_progress(f"/{self.command_name} is thinking...")

    async def reply(self, content: str, ephemeral: bool = True) -> None:
        self.replied = True
        self._show(content, ephemeral)

    async def edit_reply(self, content: str) -> None:
        self._show(content, ephemeral=True)

    def _show(self, content: str, ephemeral: bool) -> None:
        self.transcript.append(content)
        if content.startswith(FAILURE_PREFIX):
            self.ui.display_error(content)
        else:
            self.ui.display_output(content, title=f"/{self.command_name}", ephemeral=ephemeral)
