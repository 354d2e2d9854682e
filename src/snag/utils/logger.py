import os
import sys
from contextlib import contextmanager
from enum import IntEnum
from typing import Any, TextIO

from rich.console import Console


class LogLevel(IntEnum):
    QUIET = 0  # errors only
    NORMAL = 1  # key operations
    VERBOSE = 2  # detailed operation logs
    DEBUG = 3  # everything, including CDP traffic


class Logger:
    """Formatted, levelled output to stderr.

    Content goes to stdout elsewhere, so everything printed here stays out of
    pipes and redirects.
    """

    def __init__(self, level: LogLevel = LogLevel.NORMAL, file: TextIO | None = None):
        self.level = level
        self.enabled = True
        # rich turns colour off by itself when NO_COLOR is set or stderr is not a tty
        self._console = Console(
            file=file if file is not None else sys.stderr,
            highlight=False,
            soft_wrap=True,
        )
        self._null_console = Console(file=open(os.devnull, "w"))

    def _emit(self, text: str, style: str | None = None, prefix: str = "", prefix_style: str | None = None):
        if not self.enabled:
            return
        if prefix:
            self._console.print(prefix, style=prefix_style, markup=False, end=" ")
        self._console.print(text, style=style, markup=False)

    def set_level(self, level: LogLevel):
        self.level = level

    def success(self, message: Any):
        """Green check mark, shown unless quiet."""
        if self.level >= LogLevel.NORMAL:
            self._emit(str(message), prefix="✓", prefix_style="green")

    def info(self, message: Any):
        if self.level >= LogLevel.NORMAL:
            self._emit(str(message), style="cyan")

    def progress(self, message: Any):
        """Operation in progress, plain text."""
        if self.level >= LogLevel.NORMAL:
            self._emit(str(message))

    def verbose(self, message: Any):
        if self.level >= LogLevel.VERBOSE:
            self._emit(str(message), style="cyan")

    def debug(self, message: Any):
        if self.level >= LogLevel.DEBUG:
            self._emit(f"[DEBUG] {message}", style="dim")

    def warning(self, message: Any):
        if self.level >= LogLevel.NORMAL:
            self._emit(str(message), prefix="⚠", prefix_style="yellow")

    def error(self, message: Any):
        """Errors are always shown, even in quiet mode."""
        self._emit(str(message), prefix="✗", prefix_style="red")

    def error_with_suggestion(self, message: Any, suggestion: str):
        self.error(message)
        self._emit(f"  Try: {suggestion}", style="cyan")

    @contextmanager
    def suppress(self):
        """Temporarily suppress all output."""
        old_enabled = self.enabled
        self.enabled = False
        try:
            yield
        finally:
            self.enabled = old_enabled

    @property
    def console(self) -> Console:
        """Get the underlying Rich console."""
        return self._console if self.enabled else self._null_console


# Create a default instance
logger = Logger()
