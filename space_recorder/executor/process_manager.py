"""Process management for the engine and the preview player."""

import logging
import shutil
import signal
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import IO, Optional

from ..errors import ProcessSpawnError, summarize_stderr
from .command_builder import FFMPEGCommand

logger = logging.getLogger("space_recorder")

# Graceful stop: SIGINT, then poll until the deadline before killing
SHUTDOWN_TIMEOUT = 2.0
SHUTDOWN_POLL_INTERVAL = 0.05

# Stderr lines kept per process
STDERR_HISTORY = 500


@dataclass
class ProcessResult:
    """Outcome of a finished process."""
    success: bool
    return_code: Optional[int]
    stderr: str
    command: str
    duration: Optional[float] = None
    error_message: Optional[str] = None


class EngineProcess:
    """A running child process with its stderr collected on a thread.

    Used for both the engine and the preview player.
    """

    def __init__(self, popen: subprocess.Popen, command: str, name: str = "ffmpeg"):
        self._popen = popen
        self.command = command
        self.name = name
        self.started_at = time.monotonic()
        self._stderr_lines: deque[str] = deque(maxlen=STDERR_HISTORY)
        self._lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None
        self.shutdown_requested = False

        if popen.stderr is not None:
            self._reader = threading.Thread(
                target=self._read_stderr,
                name=f"{name}-stderr",
                daemon=True,
            )
            self._reader.start()

    def _read_stderr(self) -> None:
        stream = self._popen.stderr
        for raw in iter(stream.readline, b""):
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            with self._lock:
                self._stderr_lines.append(line)
        stream.close()

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def stdout(self) -> Optional[IO[bytes]]:
        return self._popen.stdout

    def is_running(self) -> bool:
        return self._popen.poll() is None

    def stop(
        self,
        timeout: float = SHUTDOWN_TIMEOUT,
        poll_interval: float = SHUTDOWN_POLL_INTERVAL,
    ) -> Optional[int]:
        """Stop gracefully with SIGINT, killing after ``timeout`` seconds.

        Returns:
            The exit code, or None if the process could not be reaped.
        """
        if not self.is_running():
            self._join_reader()
            return self._popen.returncode

        self.shutdown_requested = True
        logger.debug("Sending SIGINT to %s (pid %d)", self.name, self.pid)
        try:
            self._popen.send_signal(signal.SIGINT)
        except ProcessLookupError:
            pass

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._popen.poll() is not None:
                self._join_reader()
                return self._popen.returncode
            time.sleep(poll_interval)

        logger.warning("%s did not exit within %.1fs, killing", self.name, timeout)
        self._popen.kill()
        try:
            code = self._popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.error("%s (pid %d) could not be reaped", self.name, self.pid)
            return None
        self._join_reader()
        return code

    def _join_reader(self, timeout: float = 1.0) -> None:
        if self._reader is not None and self._reader.is_alive():
            self._reader.join(timeout)

    def stderr_lines(self) -> list[str]:
        with self._lock:
            return list(self._stderr_lines)

    def stderr_text(self) -> str:
        return "\n".join(self.stderr_lines())

    def result(self) -> ProcessResult:
        """Snapshot of the exit status and collected stderr.

        Once the process has exited the reader thread is drained first so
        the final lines are included.
        """
        code = self._popen.poll()
        if code is not None:
            self._join_reader()
        stderr = self.stderr_text()
        success = code == 0
        return ProcessResult(
            success=success,
            return_code=code,
            stderr=stderr,
            command=self.command,
            duration=time.monotonic() - self.started_at,
            error_message=None if success else summarize_stderr(stderr),
        )


class ProcessManager:
    """Spawns engine and player processes."""

    def __init__(self, ffmpeg_path: Optional[str] = None):
        """Initialize process manager.

        Args:
            ffmpeg_path: Path to ffmpeg executable. If None, searches PATH.

        Raises:
            ProcessSpawnError: If ffmpeg cannot be found.
        """
        self.ffmpeg_path = ffmpeg_path or shutil.which("ffmpeg")
        if not self.ffmpeg_path:
            raise ProcessSpawnError.ffmpeg_not_found()

    def spawn(
        self,
        command: FFMPEGCommand | list[str],
        pipe_stdout: bool = False,
        stdin: Optional[IO[bytes]] = None,
        name: str = "ffmpeg",
    ) -> EngineProcess:
        """Start a process.

        Args:
            command: FFMPEGCommand object or list of arguments. A leading
                     ``ffmpeg`` is replaced with the resolved path.
            pipe_stdout: Capture stdout so another process can read it.
            stdin: Stream to connect to the child's stdin.
            name: Name used in logs and errors.

        Returns:
            The running process.

        Raises:
            ProcessSpawnError: If the executable is missing or cannot start.
        """
        if isinstance(command, FFMPEGCommand):
            args = command.to_args()
        else:
            args = list(command)
        if not args:
            raise ProcessSpawnError("Empty command")

        if args[0] == "ffmpeg":
            args[0] = self.ffmpeg_path
        cmd_string = " ".join(args)

        try:
            popen = subprocess.Popen(
                args,
                stdin=stdin if stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE if pipe_stdout else subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                # Own process group: terminal Ctrl+C reaches only the supervisor
                start_new_session=True,
            )
        except FileNotFoundError as e:
            if name == "ffmpeg":
                raise ProcessSpawnError.ffmpeg_not_found() from e
            raise ProcessSpawnError(f"{name} not found: {args[0]}") from e
        except OSError as e:
            raise ProcessSpawnError(f"Failed to start {name}: {e}") from e

        logger.info("Started %s (pid %d)", name, popen.pid)
        return EngineProcess(popen, cmd_string, name=name)
