"""FFMPEG command building and process execution."""

from .command_builder import (
    CommandBuilder,
    Filter,
    FilterChain,
    FFMPEGCommand,
    InputSpec,
    render_filter_graph,
)
from .arguments import ArgumentBuilder
from .process_manager import EngineProcess, ProcessManager, ProcessResult
from .preview import PreviewPlayer

__all__ = [
    "CommandBuilder",
    "Filter",
    "FilterChain",
    "FFMPEGCommand",
    "InputSpec",
    "render_filter_graph",
    "ArgumentBuilder",
    "EngineProcess",
    "ProcessManager",
    "ProcessResult",
    "PreviewPlayer",
]
