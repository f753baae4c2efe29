"""Live controls and the pipeline supervisor."""

from .hotkeys import HotkeyListener, OpacityChannel, TerminalKeySource
from .prompt import Clear, Generate, PromptListener, SetOpacity, parse_command
from .supervisor import ExitReason, ExitReport, PipelineSupervisor, SupervisorState

__all__ = [
    "HotkeyListener",
    "OpacityChannel",
    "TerminalKeySource",
    "Clear",
    "Generate",
    "PromptListener",
    "SetOpacity",
    "parse_command",
    "ExitReason",
    "ExitReport",
    "PipelineSupervisor",
    "SupervisorState",
]
