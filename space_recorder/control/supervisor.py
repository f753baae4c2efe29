"""Pipeline supervisor.

Owns the running engine and preview player and polls, at a fixed short
interval, for anything that requires a new engine run:

- a webcam opacity change from the hotkey listener
- overlay commands from the prompt listener or a finished generation
- a crossfade or fade-out reaching its end

Each restart walks ``RUNNING -> SHUTTING_DOWN -> RESPAWNING -> RUNNING``.
A failed respawn gets exactly one recovery attempt with the last
parameters that launched successfully before :class:`RestartError` is
raised.
"""

import logging
import queue
import signal
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from ..compositor.planner import LayerCompositionPlanner
from ..compositor.transition import OverlaySlot, OverlaySnapshot
from ..config import PipelineConfig
from ..errors import (
    ProcessRuntimeError,
    ProcessSpawnError,
    RestartError,
    SpaceRecorderError,
)
from ..executor.arguments import ArgumentBuilder
from ..executor.preview import PreviewPlayer
from ..executor.process_manager import (
    SHUTDOWN_TIMEOUT,
    EngineProcess,
    ProcessManager,
)
from ..generation.generator import GenerationFailed, VideoGenerator, VideoReady
from ..video.analyzer import VideoAnalyzer
from .hotkeys import CHANGE_EPSILON, OpacityChannel
from .prompt import Clear, Generate, SetOpacity

logger = logging.getLogger("space_recorder")

POLL_INTERVAL = 0.1


class SupervisorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    RESPAWNING = "respawning"
    STOPPED = "stopped"


class ExitReason(str, Enum):
    INTERRUPTED = "interrupted"
    ENGINE_EXITED = "engine_exited"
    PREVIEW_CLOSED = "preview_closed"


@dataclass(frozen=True)
class ExitReport:
    """How a supervised session ended."""
    reason: ExitReason
    return_code: Optional[int] = None
    stderr: str = ""


@dataclass(frozen=True)
class LaunchParams:
    """Live parameters a single engine run was planned from."""
    webcam_opacity: float
    overlay: OverlaySnapshot


class PipelineSupervisor:
    """Runs the engine and restarts it when live parameters change."""

    def __init__(
        self,
        config: PipelineConfig,
        manager: Optional[ProcessManager] = None,
        player: Optional[PreviewPlayer] = None,
        opacity: Optional[OpacityChannel] = None,
        commands: Optional["queue.Queue"] = None,
        generator: Optional[VideoGenerator] = None,
        analyzer: Optional[VideoAnalyzer] = None,
        planner: Optional[LayerCompositionPlanner] = None,
        arguments: Optional[ArgumentBuilder] = None,
        poll_interval: float = POLL_INTERVAL,
        stop_timeout: float = SHUTDOWN_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the supervisor.

        Args:
            config: Validated pipeline configuration. The supervisor
                    updates its AI overlay fields as commands arrive.
            manager: Process spawner. Created on demand when None.
            player: Preview player; None runs without a preview window.
            opacity: Webcam opacity channel written by the hotkey listener.
            commands: Overlay command queue written by the prompt listener
                      and by generation workers.
            generator: Handles ``Generate`` commands; None disables them.
            analyzer: Probes new overlay clips; skipped when unavailable.
            planner: Layer planner.
            arguments: Argument builder; defaults to the manager's engine path.
            poll_interval: Seconds between loop iterations.
            stop_timeout: Seconds to wait after SIGINT before killing.
            clock: Monotonic clock in seconds.
            sleep: Sleep function used between iterations.
        """
        self.config = config
        self.manager = manager or ProcessManager()
        self.player = player
        self.opacity = opacity or OpacityChannel(config.webcam_opacity)
        self.commands = commands if commands is not None else queue.Queue()
        self.generator = generator
        self.analyzer = analyzer
        self.planner = planner or LayerCompositionPlanner()
        self.arguments = arguments or ArgumentBuilder(self.manager.ffmpeg_path)
        self.poll_interval = poll_interval
        self.stop_timeout = stop_timeout
        self._clock = clock
        self._sleep = sleep

        self.slot = OverlaySlot(
            opacity=config.ai_opacity,
            crossfade_duration_ms=config.crossfade_ms,
        )
        if config.ai_video:
            self.slot.queue(config.ai_video)

        self.state = SupervisorState.IDLE
        self.restarts = 0
        self._webcam_opacity = self.opacity.value
        self._engine: Optional[EngineProcess] = None
        self._player_process: Optional[EngineProcess] = None
        self._last_good: Optional[LaunchParams] = None
        self._last_tick: Optional[float] = None
        self._interrupted = threading.Event()

    # ------------------------------------------------------------------ #
    #  Properties                                                          #
    # ------------------------------------------------------------------ #

    @property
    def engine(self) -> Optional[EngineProcess]:
        return self._engine

    @property
    def player_process(self) -> Optional[EngineProcess]:
        return self._player_process

    @property
    def webcam_opacity(self) -> float:
        """Webcam opacity the running engine was (or will be) planned with."""
        return self._webcam_opacity

    @property
    def last_good(self) -> Optional[LaunchParams]:
        return self._last_good

    @property
    def wants_preview(self) -> bool:
        return self.player is not None and self.config.output.mode.wants_preview

    def current_params(self) -> LaunchParams:
        return LaunchParams(
            webcam_opacity=self._webcam_opacity,
            overlay=self.slot.snapshot(),
        )

    # ------------------------------------------------------------------ #
    #  Lifecycle                                                           #
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Validate the configuration and launch the first engine run.

        Raises:
            ConfigurationError: If the configuration is invalid.
            ProcessSpawnError: If the engine or player cannot be started.
        """
        self.config.validate()
        params = self.current_params()
        self._launch(params)
        self._last_good = params
        self._last_tick = self._clock()
        self.state = SupervisorState.RUNNING

    def run(self, handle_signals: bool = True) -> ExitReport:
        """Start and supervise until the session ends.

        Returns:
            ExitReport for an interrupt, a clean engine exit or a closed
            preview window.

        Raises:
            ProcessRuntimeError: If the engine exits with a non-zero status.
            RestartError: If a respawn and its recovery both fail.
        """
        previous_handler = None
        if handle_signals and threading.current_thread() is threading.main_thread():
            previous_handler = signal.signal(signal.SIGINT, self._on_signal)

        try:
            self.start()
            while True:
                report = self.poll_once()
                if report is not None:
                    return report
                self._sleep(self.poll_interval)
        finally:
            self.shutdown()
            if previous_handler is not None:
                signal.signal(signal.SIGINT, previous_handler)

    def request_shutdown(self) -> None:
        """Ask the loop to stop at its next iteration."""
        self._interrupted.set()

    def _on_signal(self, signum, frame) -> None:
        logger.debug("Received signal %d", signum)
        self.request_shutdown()

    def shutdown(self) -> None:
        """Stop the engine and player if they are running."""
        if self._engine is None and self._player_process is None:
            self.state = SupervisorState.STOPPED
            return
        self.state = SupervisorState.SHUTTING_DOWN
        self._stop_processes()
        self.state = SupervisorState.STOPPED

    # ------------------------------------------------------------------ #
    #  Loop                                                                #
    # ------------------------------------------------------------------ #

    def poll_once(self) -> Optional[ExitReport]:
        """Run one supervisor iteration.

        Returns:
            An ExitReport when the session is over, otherwise None.
        """
        if self._interrupted.is_set():
            logger.info("Interrupt received, stopping")
            return self._finish(ExitReason.INTERRUPTED)

        report = self._check_processes()
        if report is not None:
            return report

        reasons = []
        if self._tick_overlay():
            reasons.append("overlay transition finished")
        if self._apply_opacity():
            reasons.append(f"webcam opacity {self._webcam_opacity:.2f}")
        if self.drain_commands():
            reasons.append("overlay changed")

        if reasons:
            self.restart(", ".join(reasons))
        return None

    def _finish(self, reason: ExitReason) -> ExitReport:
        engine = self._engine
        self.shutdown()
        if engine is None:
            return ExitReport(reason)
        result = engine.result()
        return ExitReport(reason, result.return_code, result.stderr)

    def _check_processes(self) -> Optional[ExitReport]:
        engine = self._engine
        if engine is not None and not engine.is_running():
            result = engine.result()
            self._engine = None
            self._stop_player()
            self.state = SupervisorState.STOPPED
            if not result.success:
                logger.error(
                    "FFmpeg exited with code %s after %.1fs: %s",
                    result.return_code, result.duration or 0.0, result.error_message,
                )
                raise ProcessRuntimeError(result.return_code, result.stderr)
            logger.info("FFmpeg finished")
            return ExitReport(ExitReason.ENGINE_EXITED, result.return_code, result.stderr)

        player = self._player_process
        if player is not None and not player.is_running():
            logger.info("Preview window closed, stopping")
            self._player_process = None
            return self._finish(ExitReason.PREVIEW_CLOSED)
        return None

    def _tick_overlay(self) -> bool:
        now = self._clock()
        if self._last_tick is None:
            self._last_tick = now
            return False
        delta_ms = (now - self._last_tick) * 1000.0
        self._last_tick = now

        if self.slot.is_idle:
            return False
        fading_out = self.slot.is_fading_out
        if not self.slot.tick(delta_ms):
            return False
        if fading_out:
            self.config.set_ai_video(None)
        else:
            self.config.set_ai_video(self.slot.current)
        return True

    def _apply_opacity(self) -> bool:
        value = self.opacity.take_changed()
        if value is None or abs(value - self._webcam_opacity) <= CHANGE_EPSILON:
            return False
        self._webcam_opacity = value
        self.config.webcam_opacity = value
        if not self.config.has_webcam:
            logger.debug("Opacity %.2f ignored without a webcam layer", value)
            return False
        logger.info("Webcam opacity: %.0f%%", value * 100)
        return True

    def drain_commands(self) -> bool:
        """Process every queued command without blocking.

        Returns:
            True if any command changed what the engine should render.
        """
        changed = False
        while True:
            try:
                command = self.commands.get_nowait()
            except queue.Empty:
                return changed
            if self.handle_command(command):
                changed = True

    def handle_command(self, command) -> bool:
        """Apply one overlay command; True if a restart is needed."""
        if isinstance(command, Generate):
            if self.generator is None:
                logger.warning("AI generation is not configured, ignoring '%s'", command.text)
                return False
            logger.info("Generating overlay for '%s'", command.text)
            self.generator.submit(command.text, self.commands)
            return False

        if isinstance(command, VideoReady):
            return self._queue_clip(command.path)

        if isinstance(command, GenerationFailed):
            logger.warning("Could not generate '%s': %s", command.prompt, command.error)
            return False

        if isinstance(command, Clear):
            if not self.slot.is_active:
                logger.info("No overlay to clear")
                return False
            self.slot.clear()
            seconds = self.slot.snapshot().remaining_fade_seconds()
            if seconds <= 0:
                self.slot.tick(0)
                self.config.set_ai_video(None)
                logger.info("Overlay removed")
            else:
                logger.info("Fading out overlay over %.2fs", seconds)
            return True

        if isinstance(command, SetOpacity):
            self.slot.set_opacity(command.value)
            previous = self.config.set_ai_video_opacity(command.value)
            logger.info(
                "Overlay opacity: %.0f%% (was %.0f%%)",
                self.config.ai_opacity * 100, previous * 100,
            )
            return self.slot.is_active

        logger.warning("Ignoring unknown command %r", command)
        return False

    def _queue_clip(self, path: str) -> bool:
        if not Path(path).is_file():
            logger.warning("Overlay clip not found: %s", path)
            return False
        self._probe(path)
        self.slot.queue(path)
        if self.slot.is_idle:
            self.config.set_ai_video(path)
        logger.info("Overlay queued: %s", path)
        return True

    def _probe(self, path: str) -> None:
        if self.analyzer is None:
            try:
                self.analyzer = VideoAnalyzer()
            except ProcessSpawnError as e:
                logger.debug("Skipping clip probe: %s", e)
                return
        try:
            metadata = self.analyzer.analyze(path)
        except (OSError, RuntimeError) as e:
            logger.debug("Could not probe %s: %s", path, e)
            return
        logger.debug(
            "%s (needs conversion: %s)",
            metadata.describe(),
            metadata.needs_conversion(self.config.output.resolution),
        )

    # ------------------------------------------------------------------ #
    #  Restart                                                             #
    # ------------------------------------------------------------------ #

    def restart(self, reason: str = "parameters changed") -> None:
        """Stop everything and respawn with the current parameters.

        Raises:
            RestartError: If the respawn and the recovery respawn both fail.
        """
        logger.info("Restarting pipeline (%s)", reason)
        self.state = SupervisorState.SHUTTING_DOWN
        self._stop_processes()

        self.state = SupervisorState.RESPAWNING
        params = self.current_params()
        try:
            self._launch(params)
        except SpaceRecorderError as e:
            self._recover(e)
        else:
            self._last_good = params
        self.restarts += 1
        self.state = SupervisorState.RUNNING

    def _recover(self, error: SpaceRecorderError) -> None:
        last_good = self._last_good
        if last_good is None:
            self.state = SupervisorState.STOPPED
            raise RestartError(f"Respawn failed: {error}", cause=error) from error

        logger.warning("Respawn failed (%s), retrying with last good parameters", error)
        try:
            self._launch(last_good)
        except SpaceRecorderError as recovery_error:
            self.state = SupervisorState.STOPPED
            logger.error("Recovery respawn failed: %s", recovery_error)
            raise RestartError(
                f"Respawn failed: {error}; recovery failed: {recovery_error}",
                cause=recovery_error,
            ) from recovery_error
        self._webcam_opacity = last_good.webcam_opacity
        logger.info("Recovered with last good parameters")

    def _launch(self, params: LaunchParams) -> None:
        plan = self.planner.plan(self.config, params.webcam_opacity, params.overlay)
        command = self.arguments.build_command(plan, self.config)

        preview = self.wants_preview
        engine = self.manager.spawn(command, pipe_stdout=preview)
        player = None
        if preview:
            try:
                player = self.player.spawn(self.manager, engine.stdout)
            except ProcessSpawnError:
                engine.stop(timeout=self.stop_timeout)
                raise
        self._engine = engine
        self._player_process = player

    def _stop_processes(self) -> None:
        engine, self._engine = self._engine, None
        if engine is not None:
            engine.stop(timeout=self.stop_timeout)
        self._stop_player()

    def _stop_player(self) -> None:
        player, self._player_process = self._player_process, None
        if player is not None:
            player.stop(timeout=self.stop_timeout)
