"""Video effect presets, post-composition effects and the audio chain.

Color grading applies to the webcam stream only and always runs before the
alpha conversion, so grading never changes transparency. Post-composition
effects act on the whole composited frame in a fixed order: vignette, then
grain, then the LIVE badge, then the timestamp.
"""

from enum import Enum
from typing import Optional

from .stages import FilterOp

HELVETICA_FONT = "/System/Library/Fonts/Helvetica.ttc"

# Audio volume range accepted by the engine's volume filter
MIN_VOLUME = 0.0
MAX_VOLUME = 2.0


class VideoEffect(str, Enum):
    """Color-grading preset applied to the webcam."""
    NONE = "none"
    CYBERPUNK = "cyberpunk"
    DARK_MODE = "dark_mode"

    @classmethod
    def parse(cls, name: Optional[str]) -> Optional["VideoEffect"]:
        """Parse a preset name, case-insensitively.

        Accepts ``dark_mode``, ``darkmode`` and ``dark-mode`` for the dark
        preset. Returns None for unknown names.
        """
        if name is None:
            return None
        key = name.strip().lower()
        if key in ("dark_mode", "darkmode", "dark-mode"):
            return cls.DARK_MODE
        for effect in cls:
            if effect.value == key:
                return effect
        return None

    @property
    def is_active(self) -> bool:
        return self is not VideoEffect.NONE

    def filter_ops(self) -> tuple[FilterOp, ...]:
        return _PRESET_OPS[self]

    def __str__(self) -> str:
        return self.value


_PRESET_OPS: dict[VideoEffect, tuple[FilterOp, ...]] = {
    VideoEffect.NONE: (),
    # Blue/magenta shift with extra saturation and contrast
    VideoEffect.CYBERPUNK: (
        FilterOp.of(
            "curves",
            r="'0/0 0.25/0.2 0.5/0.45 0.75/0.8 1/1'",
            g="'0/0 0.25/0.25 0.5/0.5 0.75/0.75 1/1'",
            b="'0/0 0.25/0.3 0.5/0.6 0.75/0.85 1/1'",
        ),
        FilterOp.of("eq", saturation="1.4", contrast="1.1"),
        FilterOp.of(
            "colorbalance",
            rs="0.1", gs="-0.05", bs="0.2",
            rm="0.1", gm="-0.1", bm="0.15",
        ),
    ),
    # Subtle lift that keeps terminal text readable
    VideoEffect.DARK_MODE: (
        FilterOp.of("eq", brightness="0.05", contrast="1.05", saturation="1.1"),
        FilterOp.of("unsharp", 5, 5, "0.5", 5, 5, 0),
    ),
}


def alpha_ops(opacity: float) -> tuple[FilterOp, ...]:
    """RGBA conversion followed by the alpha multiplier."""
    return (
        FilterOp.of("format", "rgba"),
        FilterOp.of("colorchannelmixer", aa=f"{opacity:.2f}"),
    )


def webcam_ops(
    mirror: bool,
    effect: VideoEffect,
    opacity: float,
    width: int,
    height: int,
) -> tuple[FilterOp, ...]:
    """Webcam chain: mirror, scale, grade, then alpha.

    Args:
        mirror: Apply a horizontal flip first.
        effect: Color-grading preset.
        opacity: Ghost opacity (0.0-1.0).
        width: Output width.
        height: Output height.

    Returns:
        Ordered filter ops for the webcam stage.
    """
    ops: list[FilterOp] = []
    if mirror:
        ops.append(FilterOp.of("hflip"))
    ops.append(FilterOp.of("scale", width, height))
    ops.extend(effect.filter_ops())
    ops.extend(alpha_ops(opacity))
    return tuple(ops)


def vignette_op() -> FilterOp:
    return FilterOp.of("vignette", "PI/5")


def grain_op() -> FilterOp:
    # Temporal noise so the grain moves between frames
    return FilterOp.of("noise", alls=10, allf="t")


def live_badge_op() -> FilterOp:
    """Red LIVE badge, top-left with a 20px margin."""
    return FilterOp.of(
        "drawtext",
        text="'LIVE'",
        fontfile=HELVETICA_FONT,
        fontsize=24,
        fontcolor="white",
        box=1,
        boxcolor="red@0.8",
        boxborderw=8,
        x=20,
        y=20,
    )


def timestamp_op() -> FilterOp:
    """Wall-clock HH:MM:SS, top-right with a 20px margin."""
    return FilterOp.of(
        "drawtext",
        text=r"'%{localtime\:%H\\\:%M\\\:%S}'",
        fontfile=HELVETICA_FONT,
        fontsize=18,
        fontcolor="white@0.8",
        x="w-tw-20",
        y=20,
    )


def post_effect_ops(
    vignette: bool = False,
    grain: bool = False,
    live_badge: bool = False,
    timestamp: bool = False,
) -> tuple[FilterOp, ...]:
    """Enabled post-composition effects in their fixed order."""
    ops = []
    if vignette:
        ops.append(vignette_op())
    if grain:
        ops.append(grain_op())
    if live_badge:
        ops.append(live_badge_op())
    if timestamp:
        ops.append(timestamp_op())
    return tuple(ops)


def clamp_volume(volume: float) -> float:
    return max(MIN_VOLUME, min(MAX_VOLUME, float(volume)))


def audio_ops(
    noise_gate=None,
    compressor=None,
    volume: float = 1.0,
) -> tuple[FilterOp, ...]:
    """Audio chain: gate, compressor, then volume.

    ``noise_gate`` and ``compressor`` are the config objects (or None when
    disabled). Falls back to a passthrough when nothing is configured.
    """
    ops = []
    if noise_gate is not None:
        ops.append(FilterOp.of(
            "agate",
            threshold=f"{noise_gate.threshold:g}",
            ratio=f"{noise_gate.ratio:g}",
            attack=int(noise_gate.attack_ms),
            release=int(noise_gate.release_ms),
        ))
    if compressor is not None:
        ops.append(FilterOp.of(
            "acompressor",
            threshold=f"{int(compressor.threshold_db)}dB",
            ratio=f"{compressor.ratio:g}",
            attack=int(compressor.attack_ms),
            release=int(compressor.release_ms),
        ))
    volume = clamp_volume(volume)
    if abs(volume - 1.0) > 1e-6:
        ops.append(FilterOp.of("volume", f"{volume:.2f}"))
    if not ops:
        ops.append(FilterOp.of("anull"))
    return tuple(ops)
