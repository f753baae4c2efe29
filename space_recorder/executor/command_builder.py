"""FFMPEG command builder and filter-graph rendering.

This is the only place that knows ffmpeg's textual filter syntax. Stage
plans from :mod:`space_recorder.compositor` are rendered here.
"""

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..compositor.stages import FilterOp, FilterStage, FilterStagePlan


def _format_value(value) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


@dataclass
class Filter:
    """Represents a single FFMPEG filter."""
    name: str
    args: list = field(default_factory=list)
    params: dict[str, str | int | float] = field(default_factory=dict)
    inputs: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)

    @classmethod
    def from_op(cls, op: FilterOp) -> "Filter":
        return cls(name=op.name, args=list(op.args), params=dict(op.options))

    def to_string(self) -> str:
        """Convert filter to FFMPEG filter string."""
        parts = []

        for inp in self.inputs:
            parts.append(f"[{inp}]")

        values = [_format_value(a) for a in self.args]
        values.extend(
            f"{k}={_format_value(v)}" if v is not None else k
            for k, v in self.params.items()
        )
        if values:
            parts.append(f"{self.name}={':'.join(values)}")
        else:
            parts.append(self.name)

        for out in self.outputs:
            parts.append(f"[{out}]")

        return "".join(parts)


@dataclass
class FilterChain:
    """A chain of filters connected in sequence."""
    filters: list[Filter] = field(default_factory=list)
    inputs: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)

    @classmethod
    def from_stage(cls, stage: FilterStage) -> "FilterChain":
        return cls(
            filters=[Filter.from_op(op) for op in stage.ops],
            inputs=list(stage.inputs),
            outputs=[stage.label_out],
        )

    def to_string(self) -> str:
        """Convert filter chain to FFMPEG filter string.

        Stream labels wrap the whole chain: ``[in]f1,f2[out]``.
        """
        if not self.filters:
            return ""
        body = ",".join(f.to_string() for f in self.filters)
        ins = "".join(f"[{i}]" for i in self.inputs)
        outs = "".join(f"[{o}]" for o in self.outputs)
        return f"{ins}{body}{outs}"


_TEE_SPECIAL = "\\'|[]"


def escape_tee_target(dest: str) -> str:
    """Backslash-escape the characters the tee muxer splits or quotes on."""
    return "".join(f"\\{c}" if c in _TEE_SPECIAL else c for c in dest)


def render_filter_graph(plan: FilterStagePlan) -> str:
    """Render a stage plan as a ``-filter_complex`` graph."""
    return ";".join(
        FilterChain.from_stage(stage).to_string() for stage in plan.stages
    )


@dataclass
class InputSpec:
    """One ``-i`` input and the options that precede it."""
    path: str
    options: list[str] = field(default_factory=list)

    def to_args(self) -> list[str]:
        return [*self.options, "-i", self.path]


@dataclass
class FFMPEGCommand:
    """Represents a complete FFMPEG command."""
    inputs: list[InputSpec] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    output_options: list[str] = field(default_factory=list)
    complex_filter: Optional[str] = None
    maps: list[str] = field(default_factory=list)
    overwrite: bool = True
    executable: str = "ffmpeg"

    def to_args(self) -> list[str]:
        """Convert command to list of arguments for subprocess."""
        args = [self.executable]

        if self.overwrite:
            args.append("-y")

        for spec in self.inputs:
            args.extend(spec.to_args())

        if self.complex_filter:
            args.extend(["-filter_complex", self.complex_filter])

        for label in self.maps:
            args.extend(["-map", label])

        args.extend(self.output_options)
        args.extend(self.outputs)

        return args

    def to_string(self) -> str:
        """Convert command to shell string."""
        return " ".join(shlex.quote(arg) for arg in self.to_args())


class CommandBuilder:
    """Builder for constructing FFMPEG commands."""

    # Encoder profiles used by the output modes
    PROFILES = {
        "low_latency": {"preset": "ultrafast", "tune": "zerolatency"},
        "quality": {"preset": "medium", "crf": 23},
    }

    def __init__(self, executable: str = "ffmpeg"):
        self._command = FFMPEGCommand(executable=executable)

    def input(
        self,
        path: str | Path,
        options: Optional[list[str]] = None,
    ) -> "CommandBuilder":
        """Add an input with the options that apply to it."""
        self._command.inputs.append(InputSpec(str(path), list(options or [])))
        return self

    def output(self, target: str | Path) -> "CommandBuilder":
        """Add an output file, pipe or tee target."""
        self._command.outputs.append(str(target))
        return self

    def video_codec(self, codec: str, **params) -> "CommandBuilder":
        """Set video codec with optional parameters."""
        self._command.output_options.extend(["-c:v", codec])
        for key, value in params.items():
            if key == "preset":
                self._command.output_options.extend(["-preset", value])
            elif key == "tune":
                self._command.output_options.extend(["-tune", value])
            elif key == "crf":
                self._command.output_options.extend(["-crf", str(value)])
            elif key == "bitrate":
                self._command.output_options.extend(["-b:v", value])
        return self

    def audio_codec(self, codec: str, **params) -> "CommandBuilder":
        """Set audio codec with optional parameters."""
        self._command.output_options.extend(["-c:a", codec])
        for key, value in params.items():
            if key == "bitrate":
                self._command.output_options.extend(["-b:a", value])
            elif key == "sample_rate":
                self._command.output_options.extend(["-ar", str(value)])
        return self

    def profile(self, name: str, codec: str = "libx264") -> "CommandBuilder":
        """Apply a named encoder profile."""
        if name not in self.PROFILES:
            raise ValueError(f"Unknown encoder profile: {name}")
        return self.video_codec(codec, **self.PROFILES[name])

    def complex_filter(self, filter_graph: str) -> "CommandBuilder":
        """Set complex filtergraph."""
        self._command.complex_filter = filter_graph
        return self

    def filter_plan(self, plan: FilterStagePlan) -> "CommandBuilder":
        """Render a stage plan into ``-filter_complex``."""
        return self.complex_filter(render_filter_graph(plan))

    def map(self, label: str) -> "CommandBuilder":
        """Map a filter-graph label to the output."""
        if not label.startswith("["):
            label = f"[{label}]"
        self._command.maps.append(label)
        return self

    def format(self, fmt: str) -> "CommandBuilder":
        """Set output format."""
        self._command.output_options.extend(["-f", fmt])
        return self

    def tee(self, *targets: tuple[str, str]) -> "CommandBuilder":
        """Fan out to several muxers via the tee pseudo-muxer.

        Args:
            targets: ``(muxer options, destination)`` pairs, e.g.
                     ``("f=nut", "pipe:1")``.
        """
        self.format("tee")
        self.output("|".join(
            f"[{opts}]{escape_tee_target(str(dest))}" for opts, dest in targets
        ))
        return self

    def build(self) -> FFMPEGCommand:
        """Build and return the command."""
        return self._command
