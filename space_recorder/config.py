"""Pipeline configuration and the YAML config file.

The runtime configuration is a tree of dataclasses created once at
startup. The supervisor mutates it in place only through
:meth:`PipelineConfig.set_ai_video`, :meth:`PipelineConfig.set_ai_video_opacity`
and the window bounds refresh.

Defaults can be supplied by a YAML file::

    capture:
      device: "1:none"
      window: Terminal
    webcam:
      device: "FaceTime HD Camera"
      mirror: true
      effect: cyberpunk
      opacity: 0.3
    audio:
      device: "MacBook Pro Microphone"
      volume: 1.2
      noise_gate: true
      compressor: true
    effects:
      vignette: true
      live_badge: true
    output:
      resolution: 1280x720
      framerate: 30
      record: ~/Movies/stream.mp4
    overlay:
      opacity: 0.3
      crossfade_ms: 500
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from .compositor.effects import VideoEffect, audio_ops, clamp_volume, post_effect_ops
from .compositor.stages import FilterOp
from .compositor.transition import DEFAULT_CROSSFADE_MS, DEFAULT_OVERLAY_OPACITY
from .errors import ConfigurationError
from .sanitize import clamp, parse_resolution

logger = logging.getLogger("space_recorder")

DEFAULT_SCREEN_DEVICE = "1:none"
DEFAULT_WEBCAM_OPACITY = 0.3
MAX_DIMENSION = 7680
MAX_FRAMERATE = 240


def default_config_path() -> Path:
    """``$XDG_CONFIG_HOME/space-recorder/config.yaml`` (``~/.config`` by default)."""
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(Path.home(), ".config")
    return Path(base) / "space-recorder" / "config.yaml"


# ------------------------------------------------------------------ #
#   Capture sources                                                    #
# ------------------------------------------------------------------ #

@dataclass(frozen=True)
class WindowBounds:
    """Window rectangle in logical (point) coordinates."""
    x: int
    y: int
    width: int
    height: int

    def crop_op(self, scale: int = 1) -> FilterOp:
        """Crop to this window; ``scale`` converts points to capture pixels."""
        return FilterOp.of(
            "crop",
            self.width * scale,
            self.height * scale,
            self.x * scale,
            self.y * scale,
        )


@dataclass
class ScreenCapture:
    """Primary capture: a whole screen, optionally cropped to one window."""
    device: str = DEFAULT_SCREEN_DEVICE
    framerate: int = 30
    window_app: Optional[str] = None
    bounds: Optional[WindowBounds] = None
    retina: bool = True

    def input_args(self) -> list[str]:
        return [
            "-f", "avfoundation",
            "-framerate", str(self.framerate),
            "-capture_cursor", "1",
        ]

    def crop_op(self) -> Optional[FilterOp]:
        """Crop for the detected window, or None without bounds."""
        if self.bounds is None:
            return None
        return self.bounds.crop_op(scale=2 if self.retina else 1)

    def refresh_bounds(self, bounds: Optional[WindowBounds]) -> Optional[WindowBounds]:
        previous, self.bounds = self.bounds, bounds
        return previous


@dataclass
class WebcamCapture:
    """Ghost webcam layer."""
    device: str = "0"
    mirror: bool = False
    effect: VideoEffect = VideoEffect.NONE
    framerate: int = 30
    video_size: str = "1280x720"

    def input_args(self) -> list[str]:
        return [
            "-f", "avfoundation",
            "-framerate", str(self.framerate),
            "-video_size", self.video_size,
        ]


@dataclass(frozen=True)
class NoiseGate:
    threshold: float = 0.01
    ratio: float = 2.0
    attack_ms: int = 20
    release_ms: int = 250


@dataclass(frozen=True)
class Compressor:
    threshold_db: float = -20.0
    ratio: float = 4.0
    attack_ms: int = 5
    release_ms: int = 50


@dataclass
class AudioCapture:
    """Microphone input with optional gate, compressor and volume."""
    device: str = "0"
    volume: float = 1.0
    noise_gate: Optional[NoiseGate] = None
    compressor: Optional[Compressor] = None

    def __post_init__(self):
        self.volume = clamp_volume(self.volume)

    def input_args(self) -> list[str]:
        return ["-f", "avfoundation"]

    @property
    def input_name(self) -> str:
        # Leading colon selects an audio-only avfoundation device
        return f":{self.device}"

    def filter_ops(self) -> tuple[FilterOp, ...]:
        return audio_ops(self.noise_gate, self.compressor, self.volume)


@dataclass
class EffectsConfig:
    """Post-composition toggles."""
    vignette: bool = False
    grain: bool = False
    live_badge: bool = False
    timestamp: bool = False

    @property
    def has_post_effects(self) -> bool:
        return self.vignette or self.grain or self.live_badge or self.timestamp

    def filter_ops(self) -> tuple[FilterOp, ...]:
        return post_effect_ops(self.vignette, self.grain, self.live_badge, self.timestamp)


# ------------------------------------------------------------------ #
#   Output                                                             #
# ------------------------------------------------------------------ #

class OutputKind(str, Enum):
    PREVIEW = "preview"
    RECORDING = "recording"
    BOTH = "both"


@dataclass(frozen=True)
class OutputMode:
    """Where the composited stream goes."""
    kind: OutputKind = OutputKind.PREVIEW
    path: Optional[str] = None

    @classmethod
    def preview(cls) -> "OutputMode":
        return cls(OutputKind.PREVIEW)

    @classmethod
    def recording(cls, path: str | Path) -> "OutputMode":
        return cls(OutputKind.RECORDING, str(path))

    @classmethod
    def both(cls, path: str | Path) -> "OutputMode":
        return cls(OutputKind.BOTH, str(path))

    @property
    def wants_preview(self) -> bool:
        return self.kind in (OutputKind.PREVIEW, OutputKind.BOTH)


@dataclass
class OutputSpec:
    width: int = 1280
    height: int = 720
    framerate: int = 30
    mode: OutputMode = field(default_factory=OutputMode.preview)

    @property
    def resolution(self) -> tuple[int, int]:
        return self.width, self.height


# ------------------------------------------------------------------ #
#   Aggregate                                                          #
# ------------------------------------------------------------------ #

@dataclass
class PipelineConfig:
    """Everything needed to plan and launch one engine run."""
    screen: ScreenCapture = field(default_factory=ScreenCapture)
    webcam: Optional[WebcamCapture] = None
    audio: Optional[AudioCapture] = None
    effects: EffectsConfig = field(default_factory=EffectsConfig)
    output: OutputSpec = field(default_factory=OutputSpec)
    webcam_opacity: float = DEFAULT_WEBCAM_OPACITY
    ai_video: Optional[str] = None
    ai_opacity: float = DEFAULT_OVERLAY_OPACITY
    crossfade_ms: int = DEFAULT_CROSSFADE_MS
    preview_player: str = "ffplay"

    @property
    def has_webcam(self) -> bool:
        return self.webcam is not None

    @property
    def has_audio(self) -> bool:
        return self.audio is not None

    @property
    def has_ai_video(self) -> bool:
        return self.ai_video is not None

    def validate(self) -> "PipelineConfig":
        """Reject values no plan can be built from.

        Raises:
            ConfigurationError: On out-of-range resolution, framerate or opacity.
        """
        out = self.output
        for name, value in (("width", out.width), ("height", out.height)):
            if not isinstance(value, int) or not 1 <= value <= MAX_DIMENSION:
                raise ConfigurationError(
                    f"Output {name} must be between 1 and {MAX_DIMENSION}, got {value}"
                )
        for name, value in (("output", out.framerate), ("screen", self.screen.framerate)):
            if not isinstance(value, int) or not 1 <= value <= MAX_FRAMERATE:
                raise ConfigurationError(
                    f"{name.capitalize()} framerate must be between 1 and "
                    f"{MAX_FRAMERATE}, got {value}"
                )
        for name, value in (("Webcam", self.webcam_opacity), ("AI overlay", self.ai_opacity)):
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(
                    f"{name} opacity must be between 0.0 and 1.0, got {value}"
                )
        if self.crossfade_ms < 0:
            raise ConfigurationError(
                f"Crossfade duration cannot be negative, got {self.crossfade_ms}"
            )
        if out.mode.kind != OutputKind.PREVIEW and not out.mode.path:
            raise ConfigurationError("Recording output requires a file path")
        return self

    def set_ai_video(self, path: Optional[str]) -> Optional[str]:
        """Replace the AI overlay clip; returns the previous path."""
        previous, self.ai_video = self.ai_video, path
        return previous

    def set_ai_video_opacity(self, opacity: float) -> float:
        """Replace the AI overlay opacity (clamped); returns the previous value."""
        previous, self.ai_opacity = self.ai_opacity, clamp(float(opacity))
        return previous


# ------------------------------------------------------------------ #
#   YAML config file                                                   #
# ------------------------------------------------------------------ #

class CaptureSection(BaseModel):
    device: str = DEFAULT_SCREEN_DEVICE
    framerate: int = 30
    window: Optional[str] = None
    retina: bool = True


class WebcamSection(BaseModel):
    enabled: bool = True
    device: str = "0"
    mirror: bool = False
    effect: str = "none"
    opacity: float = DEFAULT_WEBCAM_OPACITY

    @field_validator("effect")
    @classmethod
    def _known_effect(cls, value: str) -> str:
        effect = VideoEffect.parse(value)
        if effect is None:
            raise ValueError(
                f"unknown effect '{value}' (expected none, cyberpunk or dark_mode)"
            )
        return effect.value


class AudioSection(BaseModel):
    enabled: bool = False
    device: str = "0"
    volume: float = 1.0
    noise_gate: bool = False
    compressor: bool = False


class EffectsSection(BaseModel):
    vignette: bool = False
    grain: bool = False
    live_badge: bool = False
    timestamp: bool = False


class OutputSection(BaseModel):
    resolution: str = "1280x720"
    framerate: int = 30
    record: Optional[str] = None
    preview: bool = True
    player: str = "ffplay"

    @field_validator("resolution")
    @classmethod
    def _valid_resolution(cls, value: str) -> str:
        parse_resolution(value)
        return value


class OverlaySection(BaseModel):
    opacity: float = DEFAULT_OVERLAY_OPACITY
    crossfade_ms: int = DEFAULT_CROSSFADE_MS
    cache_dir: Optional[str] = None
    cache_max_mb: int = 500
    model: Optional[str] = None


class ConfigFile(BaseModel):
    """Schema of ``config.yaml``. Unknown sections are ignored."""
    capture: CaptureSection = CaptureSection()
    webcam: WebcamSection = WebcamSection()
    audio: AudioSection = AudioSection()
    effects: EffectsSection = EffectsSection()
    output: OutputSection = OutputSection()
    overlay: OverlaySection = OverlaySection()

    def to_pipeline_config(self) -> PipelineConfig:
        width, height = parse_resolution(self.output.resolution)

        mode = OutputMode.preview()
        if self.output.record:
            record = os.path.expanduser(self.output.record)
            mode = OutputMode.both(record) if self.output.preview else OutputMode.recording(record)

        webcam = None
        if self.webcam.enabled:
            webcam = WebcamCapture(
                device=self.webcam.device,
                mirror=self.webcam.mirror,
                effect=VideoEffect.parse(self.webcam.effect) or VideoEffect.NONE,
            )

        audio = None
        if self.audio.enabled:
            audio = AudioCapture(
                device=self.audio.device,
                volume=self.audio.volume,
                noise_gate=NoiseGate() if self.audio.noise_gate else None,
                compressor=Compressor() if self.audio.compressor else None,
            )

        return PipelineConfig(
            screen=ScreenCapture(
                device=self.capture.device,
                framerate=self.capture.framerate,
                window_app=self.capture.window,
                retina=self.capture.retina,
            ),
            webcam=webcam,
            audio=audio,
            effects=EffectsConfig(**self.effects.model_dump()),
            output=OutputSpec(
                width=width,
                height=height,
                framerate=self.output.framerate,
                mode=mode,
            ),
            webcam_opacity=self.webcam.opacity,
            ai_opacity=self.overlay.opacity,
            crossfade_ms=self.overlay.crossfade_ms,
            preview_player=self.output.player,
        )


def load_config_file(path: Optional[str | Path] = None) -> ConfigFile:
    """Load and validate the YAML config file.

    Args:
        path: Explicit file path. When None the default location is used
              and a missing file simply yields defaults.

    Returns:
        Parsed :class:`ConfigFile`.

    Raises:
        ConfigurationError: If an explicit file is missing, the YAML is
            malformed, or a value fails validation.
    """
    explicit = path is not None
    path = Path(os.path.expanduser(str(path))) if explicit else default_config_path()

    if not path.exists():
        if explicit:
            raise ConfigurationError(f"Config file not found: {path}")
        logger.debug("No config file at %s, using defaults", path)
        return ConfigFile()

    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse {path}: {e}") from e

    if data is None:
        return ConfigFile()
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")

    known = set(ConfigFile.model_fields)
    for key in data:
        if key not in known:
            logger.warning("Ignoring unknown config section '%s' in %s", key, path)

    try:
        return ConfigFile.model_validate({k: v for k, v in data.items() if k in known})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config file {path}:\n{e}") from e


def dump_config_file(config: ConfigFile) -> str:
    """Render a config as YAML text."""
    return yaml.safe_dump(config.model_dump(), sort_keys=False, default_flow_style=False)


def write_default_config(path: Optional[str | Path] = None, overwrite: bool = False) -> Path:
    """Write the default config file and return its path.

    Raises:
        ConfigurationError: If the file exists and ``overwrite`` is False.
    """
    path = Path(os.path.expanduser(str(path))) if path else default_config_path()
    if path.exists() and not overwrite:
        raise ConfigurationError(f"Config file already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_config_file(ConfigFile()), encoding="utf-8")
    logger.info("Wrote default config to %s", path)
    return path


def merge_overrides(data: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge ``overrides`` into ``data``, skipping None values."""
    merged = dict(data)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_overrides(merged[key], value)
        else:
            merged[key] = value
    return merged
