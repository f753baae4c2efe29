"""Tests for PipelineSupervisor with fake processes."""

import queue

import pytest

from space_recorder.config import (
    OutputMode,
    OutputSpec,
    PipelineConfig,
    WebcamCapture,
)
from space_recorder.control.hotkeys import OpacityChannel
from space_recorder.control.prompt import Clear, Generate, SetOpacity
from space_recorder.control.supervisor import (
    ExitReason,
    PipelineSupervisor,
    SupervisorState,
)
from space_recorder.errors import (
    ConfigurationError,
    ProcessRuntimeError,
    ProcessSpawnError,
    RestartError,
    summarize_stderr,
)
from space_recorder.executor.process_manager import ProcessResult
from space_recorder.generation.generator import GenerationFailed, VideoReady
from space_recorder.video.analyzer import ClipMetadata, VideoStreamInfo


class FakeProcess:
    def __init__(self, name="ffmpeg"):
        self.name = name
        self.running = True
        self.code = None
        self.stderr = ""
        self.stdout = object()
        self.stopped = False

    def is_running(self):
        return self.running

    def stop(self, timeout=2.0):
        self.stopped = True
        if self.running:
            self.running = False
            self.code = 255
        return self.code

    def result(self):
        success = self.code == 0
        return ProcessResult(
            success=success,
            return_code=self.code,
            stderr=self.stderr,
            command=self.name,
            duration=1.0,
            error_message=None if success else summarize_stderr(self.stderr),
        )

    def exit(self, code, stderr=""):
        self.running = False
        self.code = code
        self.stderr = stderr


class FakeManager:
    ffmpeg_path = "ffmpeg"

    def __init__(self):
        self.commands = []
        self.processes = []
        self.failures = []

    def spawn(self, command, pipe_stdout=False, stdin=None, name="ffmpeg"):
        if self.failures:
            error = self.failures.pop(0)
            if error is not None:
                raise error
        self.commands.append(command)
        process = FakeProcess(name)
        self.processes.append(process)
        return process

    @property
    def last(self):
        return self.commands[-1]


class FakePlayer:
    def __init__(self, fail=False):
        self.fail = fail
        self.processes = []

    def spawn(self, manager, source):
        if self.fail:
            raise ProcessSpawnError("ffplay not found")
        process = FakeProcess("ffplay")
        self.processes.append(process)
        return process


class FakeGenerator:
    def __init__(self):
        self.prompts = []

    def submit(self, prompt, results):
        self.prompts.append((prompt, results))


class FakeAnalyzer:
    def __init__(self):
        self.paths = []

    def analyze(self, path):
        self.paths.append(path)
        return ClipMetadata(
            file_path=str(path),
            format_name="mov,mp4",
            video_streams=[VideoStreamInfo(index=0, codec_name="h264", width=1280, height=720)],
        )


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def graph(command) -> str:
    return command.complex_filter


def input_paths(command) -> list[str]:
    return [spec.path for spec in command.inputs]


@pytest.fixture
def clip(tmp_path):
    def make(name="a.mp4"):
        path = tmp_path / name
        path.write_bytes(b"\x00")
        return str(path)
    return make


@pytest.fixture
def harness():
    """Build a started supervisor around fakes."""
    def make(config=None, player=True, start=True, **kwargs):
        config = config or PipelineConfig(webcam=WebcamCapture())
        manager = FakeManager()
        clock = FakeClock()
        supervisor = PipelineSupervisor(
            config,
            manager=manager,
            player=FakePlayer() if player else None,
            opacity=OpacityChannel(config.webcam_opacity),
            commands=queue.Queue(),
            analyzer=FakeAnalyzer(),
            clock=clock,
            sleep=lambda _: None,
            **kwargs,
        )
        if start:
            supervisor.start()
        return supervisor, manager, clock
    return make


class TestStart:
    """Tests for the first launch."""

    def test_launches_engine_and_player(self, harness):
        supervisor, manager, _ = harness()
        assert supervisor.state == SupervisorState.RUNNING
        assert len(manager.commands) == 1
        assert supervisor.engine is manager.processes[0]
        assert supervisor.player_process is not None
        assert "colorchannelmixer=aa=0.30" in graph(manager.last)
        assert supervisor.last_good is not None

    def test_recording_only_has_no_player(self, harness):
        config = PipelineConfig(output=OutputSpec(mode=OutputMode.recording("/tmp/o.mp4")))
        supervisor, _, _ = harness(config=config)
        assert supervisor.player_process is None

    def test_invalid_config_rejected(self, harness):
        config = PipelineConfig(webcam_opacity=2.0)
        supervisor, manager, _ = harness(config=config, start=False)
        with pytest.raises(ConfigurationError, match="opacity"):
            supervisor.start()
        assert manager.commands == []

    def test_player_failure_stops_engine(self, harness):
        supervisor, manager, _ = harness(start=False)
        supervisor.player = FakePlayer(fail=True)
        with pytest.raises(ProcessSpawnError):
            supervisor.start()
        assert manager.processes[0].stopped

    def test_initial_ai_video_loaded(self, harness):
        config = PipelineConfig(ai_video="/tmp/ai.mp4")
        supervisor, manager, _ = harness(config=config)
        assert supervisor.slot.current == "/tmp/ai.mp4"
        assert "/tmp/ai.mp4" in input_paths(manager.last)


class TestOpacityChanges:
    """Tests for hotkey-driven restarts."""

    def test_change_restarts_with_new_opacity(self, harness):
        supervisor, manager, _ = harness()
        first_engine = supervisor.engine
        supervisor.opacity.set(0.5)

        assert supervisor.poll_once() is None
        assert len(manager.commands) == 2
        assert "colorchannelmixer=aa=0.50" in graph(manager.last)
        assert first_engine.stopped
        assert supervisor.restarts == 1
        assert supervisor.state == SupervisorState.RUNNING

    def test_flag_consumed_once(self, harness):
        supervisor, manager, _ = harness()
        supervisor.opacity.set(0.5)
        supervisor.poll_once()
        supervisor.poll_once()
        assert len(manager.commands) == 2

    def test_tiny_change_ignored(self, harness):
        supervisor, manager, _ = harness()
        supervisor.opacity.set(0.8)
        supervisor.opacity.set(0.3005)
        supervisor.poll_once()
        assert len(manager.commands) == 1
        assert supervisor.webcam_opacity == pytest.approx(0.3)

    def test_no_restart_without_webcam(self, harness):
        supervisor, manager, _ = harness(config=PipelineConfig())
        supervisor.opacity.set(0.9)
        supervisor.poll_once()
        assert len(manager.commands) == 1


class TestOverlayCommands:
    """Tests for prompt and generation commands."""

    def test_video_ready_loads_overlay(self, harness, clip):
        supervisor, manager, _ = harness()
        path = clip()
        supervisor.commands.put(VideoReady(prompt="stars", path=path))
        supervisor.poll_once()

        assert supervisor.slot.current == path
        assert supervisor.config.ai_video == path
        assert input_paths(manager.last)[2] == path
        assert supervisor.analyzer.paths == [path]

    def test_missing_clip_ignored(self, harness, tmp_path):
        supervisor, manager, _ = harness()
        supervisor.commands.put(VideoReady(prompt="x", path=str(tmp_path / "gone.mp4")))
        supervisor.poll_once()
        assert len(manager.commands) == 1
        assert not supervisor.slot.is_active

    def test_crossfade_then_single_clip(self, harness, clip):
        supervisor, manager, clock = harness()
        first, second = clip("a.mp4"), clip("b.mp4")
        supervisor.commands.put(VideoReady("a", first))
        supervisor.poll_once()

        supervisor.commands.put(VideoReady("b", second))
        supervisor.poll_once()
        assert supervisor.slot.is_crossfading
        assert input_paths(manager.last)[2:4] == [first, second]
        assert "xfade=transition=fade" in graph(manager.last)
        assert supervisor.config.ai_video == first

        clock.advance(0.6)
        supervisor.poll_once()
        assert supervisor.slot.is_idle
        assert supervisor.config.ai_video == second
        assert input_paths(manager.last)[2:] == [second]
        assert "xfade" not in graph(manager.last)
        assert len(manager.commands) == 4

    def test_clear_fades_out_then_removes(self, harness):
        config = PipelineConfig(webcam=WebcamCapture(), ai_video="/tmp/ai.mp4")
        supervisor, manager, clock = harness(config=config)

        supervisor.commands.put(Clear())
        supervisor.poll_once()
        assert supervisor.slot.is_fading_out
        assert len(manager.commands) == 2

        clock.advance(0.25)
        supervisor.poll_once()
        assert len(manager.commands) == 2

        clock.advance(0.25)
        supervisor.poll_once()
        assert not supervisor.slot.is_active
        assert supervisor.config.ai_video is None
        assert "/tmp/ai.mp4" not in input_paths(manager.last)
        assert len(manager.commands) == 3

    def test_clear_sends_fade_to_engine(self, harness):
        """The restart after Clear carries an alpha fade to zero."""
        config = PipelineConfig(webcam=WebcamCapture(), ai_video="/tmp/ai.mp4")
        supervisor, manager, _ = harness(config=config)
        before = graph(manager.last)
        assert "fade=t=out" not in before

        supervisor.commands.put(Clear())
        supervisor.poll_once()
        after = graph(manager.last)
        assert after != before
        assert "fade=t=out:st=0:d=0.50:alpha=1" in after

    def test_restart_mid_fade_keeps_fading(self, harness):
        config = PipelineConfig(webcam=WebcamCapture(), ai_video="/tmp/ai.mp4")
        supervisor, manager, clock = harness(config=config)
        supervisor.commands.put(Clear())
        supervisor.poll_once()

        clock.advance(0.2)
        supervisor.opacity.set(0.6)
        supervisor.poll_once()
        assert len(manager.commands) == 3
        assert "colorchannelmixer=aa=0.18" in graph(manager.last)
        assert "fade=t=out:st=0:d=0.30:alpha=1" in graph(manager.last)

    def test_clear_with_zero_crossfade_removes_overlay(self, harness):
        config = PipelineConfig(ai_video="/tmp/ai.mp4", crossfade_ms=0)
        supervisor, manager, _ = harness(config=config)
        supervisor.commands.put(Clear())
        supervisor.poll_once()
        assert supervisor.config.ai_video is None
        assert "/tmp/ai.mp4" not in input_paths(manager.last)

    def test_clear_without_overlay_is_noop(self, harness):
        supervisor, manager, _ = harness()
        supervisor.commands.put(Clear())
        supervisor.poll_once()
        assert len(manager.commands) == 1

    def test_set_opacity_updates_config(self, harness):
        supervisor, manager, _ = harness()
        supervisor.commands.put(SetOpacity(0.7))
        supervisor.poll_once()
        assert supervisor.config.ai_opacity == pytest.approx(0.7)
        assert supervisor.slot.opacity == pytest.approx(0.7)
        assert len(manager.commands) == 1

    def test_set_opacity_restarts_active_overlay(self, harness):
        config = PipelineConfig(ai_video="/tmp/ai.mp4")
        supervisor, manager, _ = harness(config=config)
        supervisor.commands.put(SetOpacity(0.7))
        supervisor.poll_once()
        assert "colorchannelmixer=aa=0.70" in graph(manager.last)

    def test_all_commands_drained_in_one_poll(self, harness):
        config = PipelineConfig(ai_video="/tmp/ai.mp4")
        supervisor, manager, _ = harness(config=config)
        for value in (0.4, 0.5, 0.6):
            supervisor.commands.put(SetOpacity(value))
        supervisor.poll_once()
        assert supervisor.commands.empty()
        assert len(manager.commands) == 2
        assert "colorchannelmixer=aa=0.60" in graph(manager.last)

    def test_generate_submits_to_generator(self, harness):
        generator = FakeGenerator()
        supervisor, manager, _ = harness(generator=generator)
        supervisor.commands.put(Generate("nebula"))
        supervisor.poll_once()
        assert generator.prompts == [("nebula", supervisor.commands)]
        assert len(manager.commands) == 1

    def test_generate_without_generator(self, harness):
        supervisor, manager, _ = harness()
        supervisor.commands.put(Generate("nebula"))
        supervisor.poll_once()
        assert len(manager.commands) == 1

    def test_generation_failure_logged(self, harness):
        supervisor, manager, _ = harness()
        supervisor.commands.put(GenerationFailed("nebula", "Rate limited"))
        assert supervisor.poll_once() is None
        assert len(manager.commands) == 1


class TestRestartRecovery:
    """Tests for respawn failure handling."""

    def test_recovers_with_last_good(self, harness):
        supervisor, manager, _ = harness()
        manager.failures = [ProcessSpawnError("boom")]
        supervisor.opacity.set(0.9)
        supervisor.poll_once()

        assert supervisor.state == SupervisorState.RUNNING
        assert "colorchannelmixer=aa=0.30" in graph(manager.last)
        assert supervisor.webcam_opacity == pytest.approx(0.3)
        assert supervisor.last_good.webcam_opacity == pytest.approx(0.3)

    def test_recovery_failure_is_fatal(self, harness):
        supervisor, manager, _ = harness()
        manager.failures = [ProcessSpawnError("boom"), ProcessSpawnError("again")]
        supervisor.opacity.set(0.9)
        with pytest.raises(RestartError, match="again") as excinfo:
            supervisor.poll_once()
        assert isinstance(excinfo.value.cause, ProcessSpawnError)
        assert supervisor.state == SupervisorState.STOPPED

    def test_successful_restart_updates_last_good(self, harness):
        supervisor, _, _ = harness()
        supervisor.opacity.set(0.6)
        supervisor.poll_once()
        assert supervisor.last_good.webcam_opacity == pytest.approx(0.6)


class TestExit:
    """Tests for how a session ends."""

    def test_clean_engine_exit(self, harness):
        supervisor, _, _ = harness()
        player = supervisor.player_process
        supervisor.engine.exit(0, "done")
        report = supervisor.poll_once()
        assert report.reason == ExitReason.ENGINE_EXITED
        assert report.return_code == 0
        assert report.stderr == "done"
        assert player.stopped
        assert supervisor.state == SupervisorState.STOPPED

    def test_engine_failure_raises(self, harness):
        supervisor, _, _ = harness()
        player = supervisor.player_process
        supervisor.engine.exit(1, "frame=1\n[avfoundation] Error opening input device")
        with pytest.raises(ProcessRuntimeError) as excinfo:
            supervisor.poll_once()
        assert excinfo.value.return_code == 1
        assert "Error opening input device" in str(excinfo.value)
        assert player.stopped

    def test_engine_failure_logs_summary(self, harness, caplog):
        supervisor, _, _ = harness()
        supervisor.engine.exit(1, "frame=1\n[avfoundation] Error opening input device")
        with caplog.at_level("ERROR", logger="space_recorder"):
            with pytest.raises(ProcessRuntimeError):
                supervisor.poll_once()
        assert "exited with code 1" in caplog.text
        assert "Error opening input device" in caplog.text

    def test_interrupt_reports_engine_status(self, harness):
        supervisor, _, _ = harness()
        supervisor.engine.stderr = "Exiting normally, received signal 2."
        supervisor.request_shutdown()
        report = supervisor.poll_once()
        assert report.return_code == 255
        assert report.stderr == "Exiting normally, received signal 2."

    def test_preview_closed(self, harness):
        supervisor, _, _ = harness()
        engine = supervisor.engine
        supervisor.player_process.exit(0)
        report = supervisor.poll_once()
        assert report.reason == ExitReason.PREVIEW_CLOSED
        assert engine.stopped

    def test_interrupt(self, harness):
        supervisor, _, _ = harness()
        engine, player = supervisor.engine, supervisor.player_process
        supervisor.request_shutdown()
        report = supervisor.poll_once()
        assert report.reason == ExitReason.INTERRUPTED
        assert engine.stopped and player.stopped
        assert supervisor.engine is None
        assert supervisor.state == SupervisorState.STOPPED

    def test_run_loop(self, harness):
        supervisor, manager, _ = harness(start=False)
        calls = []

        def sleep(seconds):
            calls.append(seconds)
            if len(calls) == 3:
                manager.processes[-1].exit(0)

        supervisor._sleep = sleep
        report = supervisor.run(handle_signals=False)
        assert report.reason == ExitReason.ENGINE_EXITED
        assert calls == [0.1, 0.1, 0.1]

    def test_run_shuts_down_on_error(self, harness):
        supervisor, manager, _ = harness(start=False)

        def sleep(seconds):
            manager.processes[-1].exit(1, "Invalid argument")

        supervisor._sleep = sleep
        with pytest.raises(ProcessRuntimeError):
            supervisor.run(handle_signals=False)
        assert supervisor.state == SupervisorState.STOPPED
        assert supervisor.player_process is None
