"""Overlay slot and its crossfade / fade-out transition state.

The transition state is a small tagged union (``Idle``, ``CrossfadeIn``,
``FadeOut``) advanced by pure functions. :class:`OverlaySlot` owns one
state value plus the ``current``/``pending`` clip paths and is the only
thing that mutates them.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Union

from .stages import FilterOp, FilterStage, StageKind, stream

logger = logging.getLogger("space_recorder")

DEFAULT_CROSSFADE_MS = 500
DEFAULT_OVERLAY_OPACITY = 0.3

# Frames buffered by the loop filter while blending two clips
LOOP_BUFFER_FRAMES = 9999


@dataclass(frozen=True)
class Idle:
    """No transition in progress."""


@dataclass(frozen=True)
class CrossfadeIn:
    """Blending from ``current`` into ``pending``."""
    progress: float = 0.0
    duration_ms: int = DEFAULT_CROSSFADE_MS


@dataclass(frozen=True)
class FadeOut:
    """Fading ``current`` to transparent before removing it."""
    progress: float = 0.0
    duration_ms: int = DEFAULT_CROSSFADE_MS


TransitionState = Union[Idle, CrossfadeIn, FadeOut]

IDLE = Idle()


def advance(state: TransitionState, delta_ms: float) -> tuple[TransitionState, bool]:
    """Advance a transition by ``delta_ms``.

    Returns:
        Tuple of (new state, completed). ``completed`` is True exactly when
        an in-flight transition reached the end on this step; the new state
        is then :data:`IDLE`.
    """
    if isinstance(state, Idle):
        return state, False

    if state.duration_ms <= 0:
        return IDLE, True

    progress = state.progress + max(0.0, delta_ms) / state.duration_ms
    if progress >= 1.0:
        return IDLE, True
    return replace(state, progress=progress), False


def faded_opacity(state: TransitionState, base: float) -> float:
    """Opacity to render for ``state`` given the slot's base opacity."""
    if isinstance(state, FadeOut):
        return base * (1.0 - min(1.0, max(0.0, state.progress)))
    return base


@dataclass(frozen=True)
class OverlaySnapshot:
    """Immutable view of a slot consumed by the planner."""
    current: Optional[str] = None
    pending: Optional[str] = None
    state: TransitionState = IDLE
    opacity: float = DEFAULT_OVERLAY_OPACITY

    @property
    def active(self) -> bool:
        return self.current is not None

    @property
    def blending(self) -> bool:
        return isinstance(self.state, CrossfadeIn) and self.pending is not None

    def effective_opacity(self) -> float:
        return faded_opacity(self.state, self.opacity)

    def remaining_fade_seconds(self) -> float:
        """Seconds left in a running fade-out, 0.0 otherwise."""
        if not isinstance(self.state, FadeOut):
            return 0.0
        remaining = 1.0 - min(1.0, max(0.0, self.state.progress))
        return self.state.duration_ms * remaining / 1000.0

    def _fade_out_ops(self) -> tuple[FilterOp, ...]:
        # The engine ramps alpha from the current faded level to zero
        if self.remaining_fade_seconds() <= 0:
            return ()
        return (
            FilterOp.of("fade", t="out", st=0,
                        d=f"{self.remaining_fade_seconds():.2f}", alpha=1),
        )

    def input_paths(self) -> tuple[str, ...]:
        """Clip paths the engine must open, in input order."""
        if self.current is None:
            return ()
        if self.blending:
            return (self.current, self.pending)
        return (self.current,)

    def filter_stages(
        self,
        input_indices: tuple[int, ...],
        width: int,
        height: int,
        label_out: str = "ai",
    ) -> list[FilterStage]:
        """Stages that turn the overlay input(s) into ``label_out``.

        A crossfade loops and scales both clips independently before the
        blend. Without a pending clip only the single-clip chain is built.

        Args:
            input_indices: Engine input indices from :meth:`input_paths`.
            width: Output width.
            height: Output height.
            label_out: Label of the finished overlay layer.

        Returns:
            Stage list, empty when the slot has no clip.
        """
        if self.current is None:
            return []

        alpha = (
            FilterOp.of("format", "rgba"),
            FilterOp.of("colorchannelmixer", aa=f"{self.effective_opacity():.2f}"),
        )

        if not self.blending or len(input_indices) < 2:
            return [FilterStage(
                kind=StageKind.AI,
                inputs=(stream(input_indices[0]),),
                ops=(FilterOp.of("scale", width, height),) + alpha + self._fade_out_ops(),
                label_out=label_out,
            )]

        loop_scale = (
            FilterOp.of("loop", -1, size=LOOP_BUFFER_FRAMES),
            FilterOp.of("scale", width, height),
        )
        seconds = self.state.duration_ms / 1000.0
        return [
            FilterStage(
                kind=StageKind.AI,
                inputs=(stream(input_indices[0]),),
                ops=loop_scale,
                label_out=f"{label_out}_c",
            ),
            FilterStage(
                kind=StageKind.AI,
                inputs=(stream(input_indices[1]),),
                ops=loop_scale,
                label_out=f"{label_out}_p",
            ),
            FilterStage(
                kind=StageKind.AI_CROSSFADE,
                inputs=(f"{label_out}_c", f"{label_out}_p"),
                ops=(
                    FilterOp.of("xfade", transition="fade",
                                duration=f"{seconds:.2f}", offset=0),
                ) + alpha,
                label_out=label_out,
            ),
        ]


class OverlaySlot:
    """A single AI overlay slot with crossfade and fade-out transitions.

    ``pending`` is only set while a crossfade is running. ``current`` is
    None until the first clip is queued, and again after a fade-out
    completes or :meth:`clear_immediate` is called.
    """

    def __init__(
        self,
        opacity: float = DEFAULT_OVERLAY_OPACITY,
        crossfade_duration_ms: int = DEFAULT_CROSSFADE_MS,
    ):
        self.current: Optional[str] = None
        self.pending: Optional[str] = None
        self.state: TransitionState = IDLE
        self.crossfade_duration_ms = max(0, int(crossfade_duration_ms))
        self._opacity = 0.0
        self.set_opacity(opacity)

    # ------------------------------------------------------------------ #
    #  Properties                                                          #
    # ------------------------------------------------------------------ #

    @property
    def opacity(self) -> float:
        return self._opacity

    def set_opacity(self, value: float) -> float:
        """Set the base opacity (clamped to [0, 1]); returns the old value."""
        previous = self._opacity
        self._opacity = max(0.0, min(1.0, float(value)))
        return previous

    @property
    def is_idle(self) -> bool:
        return isinstance(self.state, Idle)

    @property
    def is_crossfading(self) -> bool:
        return isinstance(self.state, CrossfadeIn)

    @property
    def is_fading_out(self) -> bool:
        return isinstance(self.state, FadeOut)

    @property
    def is_active(self) -> bool:
        return self.current is not None

    def effective_opacity(self) -> float:
        """Base opacity, scaled down by fade-out progress."""
        return faded_opacity(self.state, self._opacity)

    # ------------------------------------------------------------------ #
    #  Transitions                                                         #
    # ------------------------------------------------------------------ #

    def queue(self, path: str, duration_ms: Optional[int] = None) -> None:
        """Queue a clip, crossfading from the current one.

        The first clip in an empty slot appears without a transition and a
        zero duration is an instant cut.
        """
        if duration_ms is None:
            duration_ms = self.crossfade_duration_ms
        duration_ms = max(0, int(duration_ms))

        if self.current is None:
            self.current = path
            self.pending = None
            self.state = IDLE
            logger.debug("Overlay slot loaded %s", path)
        elif duration_ms == 0:
            self.cut_to(path)
        else:
            self.pending = path
            self.state = CrossfadeIn(progress=0.0, duration_ms=duration_ms)
            logger.debug("Crossfading overlay to %s over %dms", path, duration_ms)

    def cut_to(self, path: str) -> None:
        """Replace the current clip immediately."""
        self.current = path
        self.pending = None
        self.state = IDLE

    def tick(self, delta_ms: float) -> bool:
        """Advance the running transition.

        Returns:
            True if a transition completed during this tick.
        """
        previous = self.state
        self.state, completed = advance(self.state, delta_ms)
        if not completed:
            return False

        if isinstance(previous, CrossfadeIn):
            self.current, self.pending = self.pending, None
            logger.debug("Crossfade complete, overlay is now %s", self.current)
        elif isinstance(previous, FadeOut):
            self.current = None
            self.pending = None
            logger.debug("Overlay fade-out complete")
        return True

    def complete_crossfade(self) -> None:
        """Finish an in-flight crossfade immediately."""
        if isinstance(self.state, CrossfadeIn):
            self.tick(float("inf"))

    def clear(self) -> None:
        """Drop any pending clip and fade the current one out."""
        self.pending = None
        if self.current is not None:
            self.state = FadeOut(progress=0.0, duration_ms=self.crossfade_duration_ms)
        else:
            self.state = IDLE

    def clear_immediate(self) -> None:
        """Remove everything with no fade."""
        self.current = None
        self.pending = None
        self.state = IDLE

    def snapshot(self) -> OverlaySnapshot:
        return OverlaySnapshot(
            current=self.current,
            pending=self.pending,
            state=self.state,
            opacity=self._opacity,
        )

    def __repr__(self) -> str:
        return (
            f"OverlaySlot(current={self.current!r}, pending={self.pending!r}, "
            f"state={self.state!r}, opacity={self._opacity:.2f})"
        )
