"""Layer composition planning and overlay transitions."""

from .effects import VideoEffect
from .planner import LayerCompositionPlanner, plan, select_case
from .stages import (
    CompositionCase,
    FilterOp,
    FilterStage,
    FilterStagePlan,
    InputLayout,
    StageKind,
)
from .transition import OverlaySlot, OverlaySnapshot, Idle, CrossfadeIn, FadeOut

__all__ = [
    "VideoEffect",
    "LayerCompositionPlanner",
    "plan",
    "select_case",
    "CompositionCase",
    "FilterOp",
    "FilterStage",
    "FilterStagePlan",
    "InputLayout",
    "StageKind",
    "OverlaySlot",
    "OverlaySnapshot",
    "Idle",
    "CrossfadeIn",
    "FadeOut",
]
