"""Render a stage plan plus capture/output config into engine arguments."""

import logging
from typing import Optional

from ..compositor.stages import FilterStagePlan
from ..config import OutputKind, OutputMode, PipelineConfig
from ..errors import ConfigurationError
from .command_builder import CommandBuilder, FFMPEGCommand

logger = logging.getLogger("space_recorder")

PREVIEW_PIPE = "pipe:1"
PREVIEW_MUXER = "nut"
RECORDING_MUXER_OPTIONS = "f=mp4:movflags=+faststart"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "128k"


class ArgumentBuilder:
    """Builds the engine invocation for a plan.

    Input order is fixed: primary capture (0), webcam, overlay clip(s)
    looped indefinitely, then the audio device.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path

    def build(
        self,
        plan: FilterStagePlan,
        config: PipelineConfig,
        mode: Optional[OutputMode] = None,
    ) -> list[str]:
        """Build the argument list (``argv[0]`` is the engine path)."""
        return self.build_command(plan, config, mode).to_args()

    def build_command(
        self,
        plan: FilterStagePlan,
        config: PipelineConfig,
        mode: Optional[OutputMode] = None,
    ) -> FFMPEGCommand:
        """Build the command object for a plan.

        Args:
            plan: Stage plan from the planner.
            config: Configuration the plan was built from.
            mode: Output mode; defaults to ``config.output.mode``.

        Returns:
            FFMPEGCommand ready to spawn.

        Raises:
            ConfigurationError: If the plan's input layout disagrees with
                the configured sources.
        """
        mode = mode or config.output.mode
        builder = CommandBuilder(self.ffmpeg_path)

        self._add_inputs(builder, plan, config)

        builder.filter_plan(plan)
        builder.map(plan.video_out)
        if plan.has_audio:
            builder.map(plan.audio_out)

        self._add_output(builder, mode, plan.has_audio)

        command = builder.build()
        logger.debug("Engine command: %s", command.to_string())
        return command

    def _add_inputs(
        self,
        builder: CommandBuilder,
        plan: FilterStagePlan,
        config: PipelineConfig,
    ) -> None:
        layout = plan.layout
        if (layout.webcam is not None) != config.has_webcam:
            raise ConfigurationError("Plan and config disagree on the webcam input")
        if (layout.audio is not None) != config.has_audio:
            raise ConfigurationError("Plan and config disagree on the audio input")
        if len(layout.overlay) != len(plan.overlay_paths):
            raise ConfigurationError("Plan overlay inputs do not match overlay paths")

        screen = config.screen
        builder.input(screen.device, screen.input_args())

        if config.webcam is not None:
            builder.input(config.webcam.device, config.webcam.input_args())

        for path in plan.overlay_paths:
            builder.input(path, ["-stream_loop", "-1"])

        if config.audio is not None:
            builder.input(config.audio.input_name, config.audio.input_args())

    def _add_output(self, builder: CommandBuilder, mode: OutputMode, has_audio: bool) -> None:
        if mode.kind == OutputKind.RECORDING:
            builder.profile("quality")
            if has_audio:
                builder.audio_codec(AUDIO_CODEC, bitrate=AUDIO_BITRATE)
            builder.output(mode.path)
            return

        builder.profile("low_latency")
        if has_audio:
            builder.audio_codec(AUDIO_CODEC, bitrate=AUDIO_BITRATE)

        if mode.kind == OutputKind.BOTH:
            builder.tee(
                (f"f={PREVIEW_MUXER}", PREVIEW_PIPE),
                (RECORDING_MUXER_OPTIONS, mode.path),
            )
        else:
            builder.format(PREVIEW_MUXER)
            builder.output(PREVIEW_PIPE)
