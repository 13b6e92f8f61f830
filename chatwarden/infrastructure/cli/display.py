import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from chatwarden.domain.interfaces.user_interface import UserInterface

logger = logging.getLogger(__name__)


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        """Initializes the rich Console.

        Args:
            console: Console to render to. Tests pass one with `record=True`.
        """
        self._console = console or Console()
        self._progress_active = False

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays a response, rendering Markdown inside a panel.

        Args:
            output: The text to display.
            **kwargs: Additional arguments including:
                - title: Panel title (default: "Response")
                - ephemeral: Marks the panel as visible to the invoker only
        """
        self.end_progress()
        title = kwargs.get("title", "Response")
        timestamp = datetime.now().strftime("%H:%M:%S")
        header = f"[bold white]{title}[/bold white] [dim]·[/dim] [dim white]{timestamp}[/dim white]"
        if kwargs.get("ephemeral"):
            header += " [dim](only you)[/dim]"

        try:
            panel = Panel(
                Markdown(str(output)),
                title=header,
                title_align="left",
                border_style="blue",
                box=ROUNDED,
                padding=(0, 1),
            )
            self.console.print(panel)
        except Exception as e:
            # Fallback if Rich formatting fails
            logger.error(f"Error displaying formatted message: {e}")
            self.console.print(f"\n{title} ({timestamp}):\n{output}\n", markup=False)

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        self.end_progress()
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        self.end_progress()
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        self.end_progress()
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_progress(self, message: str) -> None:
        """Rewrites a single status line in place on terminals, prints it otherwise."""
        if self.console.is_terminal:
            self.console.print(f"\r[cyan]{message}[/cyan]", end="")
            self._progress_active = True
        else:
            self.console.print(message, style="cyan", markup=False)

    def end_progress(self) -> None:
        if self._progress_active:
            self.console.print("")
            self._progress_active = False

    def display_table(self, title: str, columns: List[str], rows: List[Tuple[Any, ...]]) -> None:
        """Displays rows in a rich table.

        Args:
            title: Title shown above the table.
            columns: Column headers.
            rows: One tuple per row, same length as `columns`.
        """
        self.end_progress()
        try:
            table = Table(title=title, show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
            for column in columns:
                table.add_column(column)
            for row in rows:
                table.add_row(*(str(cell) for cell in row))
            self.console.print(table)
        except Exception as e:
            logger.error(f"Failed to display table '{title}': {e}")
            super().display_table(title, columns, rows)
