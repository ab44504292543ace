"""Agent CLI process supervision."""

from .channel import DEFAULT_CAPACITY, FrameChannel
from .options import PermissionMode, TurnOptions, build_command
from .supervisor import CancelSignal, ProcessSupervisor

__all__ = [
    "DEFAULT_CAPACITY",
    "CancelSignal",
    "FrameChannel",
    "PermissionMode",
    "ProcessSupervisor",
    "TurnOptions",
    "build_command",
]
