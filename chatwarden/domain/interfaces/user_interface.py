"""Interface for interacting with the operator (output only).

Defines the contract for displaying results, errors, warnings and progress,
allowing different UI implementations (e.g., console, log-only).
"""

import abc
from typing import Any, List, Tuple


class UserInterface(abc.ABC):
    """Abstract Base Class for operator-facing output."""

    @abc.abstractmethod
    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays standard output to the user.

        Args:
            output: The text to display (may contain Markdown).
            **kwargs: Additional arguments for formatting (e.g., title).
        """
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        pass

    def display_progress(self, message: str) -> None:
        """Updates a single in-place progress line. No-op by default."""
        pass

    def end_progress(self) -> None:
        """Clears the progress line started by display_progress."""
        pass

    def display_table(self, title: str, columns: List[str], rows: List[Tuple[Any, ...]]) -> None:
        """Displays tabular data. Falls back to plain lines."""
        self.display_info(title)
        for row in rows:
            self.display_output(" | ".join(str(cell) for cell in row))
