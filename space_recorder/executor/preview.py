"""Preview player fed from the engine's stdout pipe."""

import logging
import shutil
from typing import IO, Optional

from ..errors import ProcessSpawnError
from .process_manager import EngineProcess, ProcessManager

logger = logging.getLogger("space_recorder")

WINDOW_TITLE = "space-recorder"

# Low-latency playback of a NUT stream on stdin
PLAYER_ARGS = {
    "ffplay": [
        "-fflags", "nobuffer",
        "-flags", "low_delay",
        "-framedrop",
        "-window_title", WINDOW_TITLE,
        "-i", "pipe:0",
    ],
    "mpv": [
        "--profile=low-latency",
        "--untimed",
        "--no-cache",
        f"--title={WINDOW_TITLE}",
        "-",
    ],
}


class PreviewPlayer:
    """Launches the preview window reading the engine's output."""

    def __init__(self, player: str = "ffplay", player_path: Optional[str] = None):
        """Initialize the player launcher.

        Args:
            player: ``ffplay`` or ``mpv``.
            player_path: Explicit executable path. If None, searches PATH.

        Raises:
            ProcessSpawnError: If the player is unknown or not installed.
        """
        if player not in PLAYER_ARGS:
            raise ProcessSpawnError(
                f"Unknown preview player '{player}' (expected one of {sorted(PLAYER_ARGS)})"
            )
        self.player = player
        self.player_path = player_path or shutil.which(player)
        if not self.player_path:
            raise ProcessSpawnError(f"{player} not found. Install it or use --no-preview")

    def command(self) -> list[str]:
        return [self.player_path, *PLAYER_ARGS[self.player]]

    def spawn(self, manager: ProcessManager, source: IO[bytes]) -> EngineProcess:
        """Start the player reading from ``source``.

        The parent's copy of ``source`` is closed afterwards so the engine
        sees a broken pipe once the player exits.
        """
        process = manager.spawn(self.command(), stdin=source, name=self.player)
        source.close()
        return process
