"""Typed filter-stage records produced by the planner.

Nothing in this module knows ffmpeg's textual filter-graph syntax;
rendering happens in :mod:`space_recorder.executor.command_builder`.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

VIDEO_OUT = "vout"
AUDIO_OUT = "aout"


class StageKind(str, Enum):
    """Role a stage plays in the composition."""
    SCREEN = "screen"
    WEBCAM = "webcam"
    AI = "ai"
    AI_CROSSFADE = "ai_crossfade"
    OVERLAY = "overlay"
    POST = "post"
    AUDIO = "audio"


class CompositionCase(str, Enum):
    """Layer combination selected from which optional layers are present."""
    WEBCAM_AND_AI = "webcam_and_ai"
    AI_ONLY = "ai_only"
    WEBCAM_ONLY = "webcam_only"
    SCREEN_ONLY = "screen_only"


@dataclass(frozen=True)
class FilterOp:
    """A single engine filter: positional arguments then named options."""
    name: str
    args: tuple = ()
    options: tuple[tuple[str, object], ...] = ()

    @classmethod
    def of(cls, name: str, *args, **options) -> "FilterOp":
        return cls(name=name, args=tuple(args), options=tuple(options.items()))


@dataclass(frozen=True)
class FilterStage:
    """One labelled stage of the graph: inputs -> ops -> label_out."""
    kind: StageKind
    inputs: tuple[str, ...]
    ops: tuple[FilterOp, ...]
    label_out: str

    def op_names(self) -> list[str]:
        return [op.name for op in self.ops]


@dataclass(frozen=True)
class InputLayout:
    """Engine input indices for each source.

    Index 0 is always the primary capture. The webcam follows, then the
    overlay clip(s), then the audio device.
    """
    webcam: Optional[int] = None
    overlay: tuple[int, ...] = ()
    audio: Optional[int] = None

    @classmethod
    def build(cls, has_webcam: bool, overlay_inputs: int, has_audio: bool) -> "InputLayout":
        next_index = 1
        webcam = None
        if has_webcam:
            webcam = next_index
            next_index += 1
        overlay = tuple(range(next_index, next_index + overlay_inputs))
        next_index += overlay_inputs
        audio = next_index if has_audio else None
        return cls(webcam=webcam, overlay=overlay, audio=audio)

    @property
    def count(self) -> int:
        return 1 + (self.webcam is not None) + len(self.overlay) + (self.audio is not None)


@dataclass(frozen=True)
class FilterStagePlan:
    """Ordered stages for one engine run. Never mutated, only rendered."""
    case: CompositionCase
    stages: tuple[FilterStage, ...]
    layout: InputLayout
    overlay_paths: tuple[str, ...] = ()
    video_out: str = VIDEO_OUT
    audio_out: Optional[str] = None

    def labels(self) -> list[str]:
        return [stage.label_out for stage in self.stages]

    def stages_of(self, kind: StageKind) -> list[FilterStage]:
        return [stage for stage in self.stages if stage.kind == kind]

    @property
    def has_audio(self) -> bool:
        return self.audio_out is not None

    def video_stages(self) -> list[FilterStage]:
        return [stage for stage in self.stages if stage.kind != StageKind.AUDIO]


def stream(index: int, kind: str = "v") -> str:
    """Label for an engine input stream, e.g. ``0:v``."""
    return f"{index}:{kind}"
