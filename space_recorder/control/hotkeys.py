"""Keyboard opacity control.

A listener thread reads single key presses from the terminal and updates
an :class:`OpacityChannel`. The supervisor polls the channel once per
iteration with :meth:`OpacityChannel.take_changed`.
"""

import logging
import os
import select
import sys
import termios
import threading
import tty
from typing import Optional, Protocol

logger = logging.getLogger("space_recorder")

OPACITY_STEP = 0.1

# Changes at or below this size are not reported
CHANGE_EPSILON = 0.001

KEY_BINDINGS = {
    "=": OPACITY_STEP,
    "+": OPACITY_STEP,
    "-": -OPACITY_STEP,
    "_": -OPACITY_STEP,
}


class OpacityChannel:
    """Single-slot opacity value with a consume-once changed flag.

    One writer (the listener) and one reader (the supervisor). The whole
    value is replaced under the lock, so a reader never sees a torn update.
    """

    def __init__(self, initial: float = 0.3):
        self._lock = threading.Lock()
        self._value = self._clamp(initial)
        self._changed = False

    @staticmethod
    def _clamp(value: float) -> float:
        return max(0.0, min(1.0, float(value)))

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    @property
    def changed(self) -> bool:
        with self._lock:
            return self._changed

    def set(self, value: float) -> bool:
        """Replace the value (clamped). Returns True if it counted as a change."""
        value = self._clamp(value)
        with self._lock:
            if abs(value - self._value) <= CHANGE_EPSILON:
                return False
            self._value = value
            self._changed = True
            return True

    def adjust(self, delta: float) -> bool:
        with self._lock:
            current = self._value
        return self.set(current + delta)

    def take_changed(self) -> Optional[float]:
        """Return the new value if it changed since the last call, else None."""
        with self._lock:
            if not self._changed:
                return None
            self._changed = False
            return self._value


class KeySource(Protocol):
    def __enter__(self) -> "KeySource": ...

    def __exit__(self, *exc) -> None: ...

    def read_key(self, timeout: float) -> Optional[str]: ...


class TerminalKeySource:
    """Reads unbuffered key presses from a TTY in cbreak mode.

    Terminal settings are restored on exit.
    """

    def __init__(self, stream=None):
        self.stream = stream or sys.stdin
        self._fd: Optional[int] = None
        self._saved = None

    def __enter__(self) -> "TerminalKeySource":
        self._fd = self.stream.fileno()
        if os.isatty(self._fd):
            self._saved = termios.tcgetattr(self._fd)
            tty.setcbreak(self._fd)
        return self

    def __exit__(self, *exc) -> None:
        if self._saved is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved)
            self._saved = None

    def read_key(self, timeout: float) -> Optional[str]:
        """Return one key, None on timeout.

        Raises:
            EOFError: When the input is closed.
        """
        ready, _, _ = select.select([self._fd], [], [], timeout)
        if not ready:
            return None
        data = os.read(self._fd, 1)
        if not data:
            raise EOFError
        return data.decode("utf-8", errors="ignore")


class HotkeyListener:
    """Maps ``=``/``+`` and ``-``/``_`` to opacity steps on a daemon thread."""

    def __init__(
        self,
        channel: OpacityChannel,
        source: Optional[KeySource] = None,
        poll_timeout: float = 0.1,
    ):
        self.channel = channel
        self.source = source or TerminalKeySource()
        self.poll_timeout = poll_timeout
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def handle_key(self, key: str) -> bool:
        """Apply one key press. Returns True if the opacity changed."""
        delta = KEY_BINDINGS.get(key)
        if delta is None:
            return False
        changed = self.channel.adjust(delta)
        if changed:
            logger.info("Webcam opacity: %.0f%%", self.channel.value * 100)
        return changed

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="hotkeys", daemon=True)
        self._thread.start()
        logger.info("Hotkeys active: '=' / '+' raise opacity, '-' lowers it")

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        with self.source:
            while not self._stop.is_set():
                try:
                    key = self.source.read_key(self.poll_timeout)
                except EOFError:
                    logger.debug("Hotkey input closed")
                    return
                if key:
                    self.handle_key(key)
