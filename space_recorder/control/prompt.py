"""Text prompt commands for the AI overlay.

Lines typed on stdin become commands on a queue the supervisor drains:

- ``/clear`` fades the overlay out
- ``/opacity 0.5`` sets the overlay opacity (0.0-1.0)
- anything else generates a clip from the text
"""

import logging
import queue
import sys
import threading
from dataclasses import dataclass
from typing import IO, Optional, Union

logger = logging.getLogger("space_recorder")


@dataclass(frozen=True)
class Generate:
    text: str


@dataclass(frozen=True)
class Clear:
    pass


@dataclass(frozen=True)
class SetOpacity:
    value: float


PromptCommand = Union[Generate, Clear, SetOpacity]


def parse_command(line: str) -> Optional[PromptCommand]:
    """Parse one input line.

    Returns None for empty input, unknown slash commands and invalid
    ``/opacity`` values; the reason is logged.
    """
    text = (line or "").strip()
    if not text:
        return None

    if not text.startswith("/"):
        return Generate(text)

    name, _, arg = text.partition(" ")
    name = name.lower()
    arg = arg.strip()

    if name == "/clear":
        return Clear()

    if name == "/opacity":
        if not arg:
            logger.warning("Usage: /opacity <0.0-1.0>")
            return None
        try:
            value = float(arg)
        except ValueError:
            logger.warning("Invalid opacity value: %s", arg)
            return None
        if not 0.0 <= value <= 1.0:
            logger.warning("Opacity must be between 0.0 and 1.0, got %s", arg)
            return None
        return SetOpacity(value)

    logger.warning("Unknown command: %s (try /clear or /opacity <value>)", name)
    return None


class PromptListener:
    """Reads prompt lines on a daemon thread and queues parsed commands."""

    def __init__(
        self,
        commands: "queue.Queue",
        stream: Optional[IO[str]] = None,
    ):
        self.commands = commands
        self.stream = stream or sys.stdin
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="prompt", daemon=True)
        self._thread.start()
        logger.info("Prompt active: type a description, /clear or /opacity <value>")

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def feed(self, line: str) -> Optional[PromptCommand]:
        """Parse a line and queue the resulting command, if any."""
        command = parse_command(line)
        if command is not None:
            self.commands.put(command)
        return command

    def _run(self) -> None:
        for line in self.stream:
            self.feed(line)
        logger.debug("Prompt input closed")
