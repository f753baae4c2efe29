"""Layer composition planner.

Turns a configuration snapshot and the live webcam opacity into an
ordered :class:`FilterStagePlan`. The planner is a pure function of its
inputs: it performs no I/O and never builds filter-graph text.

Layers are folded over the base screen stage in a fixed order (webcam
ghost, then AI overlay), each overlay consuming the previous composite.
Post-composition effects, when enabled, take the last composite and write
the terminal label; otherwise the last compositing stage writes it.
"""

from dataclasses import replace
from typing import TYPE_CHECKING, Optional

from .effects import webcam_ops
from .stages import (
    AUDIO_OUT,
    VIDEO_OUT,
    CompositionCase,
    FilterOp,
    FilterStage,
    FilterStagePlan,
    InputLayout,
    StageKind,
    stream,
)
from .transition import OverlaySnapshot

if TYPE_CHECKING:
    from ..config import PipelineConfig

SCREEN_LABEL = "screen"
GHOST_LABEL = "ghost"
AI_LABEL = "ai"
PRE_AI_LABEL = "pre_ai"
COMPOSITED_LABEL = "composited"


def select_case(has_webcam: bool, has_ai_video: bool) -> CompositionCase:
    """Pick the composition case, highest priority first."""
    if has_webcam and has_ai_video:
        return CompositionCase.WEBCAM_AND_AI
    if has_ai_video:
        return CompositionCase.AI_ONLY
    if has_webcam:
        return CompositionCase.WEBCAM_ONLY
    return CompositionCase.SCREEN_ONLY


def overlay_op() -> FilterOp:
    return FilterOp.of("overlay", 0, 0, format="auto")


class LayerCompositionPlanner:
    """Builds filter-stage plans for the engine.

    Example:
        >>> planner = LayerCompositionPlanner()
        >>> plan = planner.plan(config, opacity=0.3)
        >>> plan.case
        <CompositionCase.WEBCAM_ONLY: 'webcam_only'>
    """

    def __init__(self, video_out: str = VIDEO_OUT, audio_out: str = AUDIO_OUT):
        self.video_out = video_out
        self.audio_out = audio_out

    def plan(
        self,
        config: "PipelineConfig",
        opacity: float,
        overlay: Optional[OverlaySnapshot] = None,
    ) -> FilterStagePlan:
        """Plan one engine run.

        Args:
            config: Capture, effects and output configuration.
            opacity: Webcam ghost opacity. Zero still yields a webcam layer.
            overlay: Snapshot of the AI overlay slot. When None the AI layer
                     comes from ``config.ai_video`` / ``config.ai_opacity``.

        Returns:
            Immutable stage plan ending in the terminal video label.
        """
        if overlay is None:
            overlay = OverlaySnapshot(current=config.ai_video, opacity=config.ai_opacity)

        has_webcam = config.has_webcam
        has_ai = overlay.active
        overlay_paths = overlay.input_paths()
        layout = InputLayout.build(has_webcam, len(overlay_paths), config.has_audio)
        width, height = config.output.resolution

        stages: list[FilterStage] = [self._screen_stage(config, width, height)]

        # (source stages, label) per optional layer, in stacking order
        layers: list[tuple[list[FilterStage], str]] = []
        if has_webcam:
            layers.append(([self._webcam_stage(config, opacity, layout, width, height)],
                           GHOST_LABEL))
        if has_ai:
            layers.append((overlay.filter_stages(layout.overlay, width, height, AI_LABEL),
                           AI_LABEL))

        for sources, _ in layers:
            stages.extend(sources)

        base = SCREEN_LABEL
        for i, (_, label) in enumerate(layers):
            out = PRE_AI_LABEL if i < len(layers) - 1 else COMPOSITED_LABEL
            stages.append(FilterStage(
                kind=StageKind.OVERLAY,
                inputs=(base, label),
                ops=(overlay_op(),),
                label_out=out,
            ))
            base = out

        post_ops = config.effects.filter_ops()
        if post_ops:
            stages.append(FilterStage(
                kind=StageKind.POST,
                inputs=(base,),
                ops=post_ops,
                label_out=self.video_out,
            ))
        else:
            stages[-1] = replace(stages[-1], label_out=self.video_out)

        audio_out = None
        if config.has_audio:
            stages.append(FilterStage(
                kind=StageKind.AUDIO,
                inputs=(stream(layout.audio, "a"),),
                ops=config.audio.filter_ops(),
                label_out=self.audio_out,
            ))
            audio_out = self.audio_out

        return FilterStagePlan(
            case=select_case(has_webcam, has_ai),
            stages=tuple(stages),
            layout=layout,
            overlay_paths=overlay_paths,
            video_out=self.video_out,
            audio_out=audio_out,
        )

    def _screen_stage(self, config: "PipelineConfig", width: int, height: int) -> FilterStage:
        ops = []
        crop = config.screen.crop_op()
        if crop is not None:
            ops.append(crop)
        ops.append(FilterOp.of("scale", width, height))
        return FilterStage(
            kind=StageKind.SCREEN,
            inputs=(stream(0),),
            ops=tuple(ops),
            label_out=SCREEN_LABEL,
        )

    def _webcam_stage(
        self,
        config: "PipelineConfig",
        opacity: float,
        layout: InputLayout,
        width: int,
        height: int,
    ) -> FilterStage:
        webcam = config.webcam
        return FilterStage(
            kind=StageKind.WEBCAM,
            inputs=(stream(layout.webcam),),
            ops=webcam_ops(
                webcam.mirror,
                webcam.effect,
                max(0.0, min(1.0, opacity)),
                width,
                height,
            ),
            label_out=GHOST_LABEL,
        )


def plan(
    config: "PipelineConfig",
    opacity: float,
    overlay: Optional[OverlaySnapshot] = None,
) -> FilterStagePlan:
    """Plan with the default terminal labels."""
    return LayerCompositionPlanner().plan(config, opacity, overlay)
