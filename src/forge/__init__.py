"""Forge - drive agent CLI sessions as a clean event stream."""

from .config import Settings, get_settings
from .errors import (
    ForgeError,
    NonZeroExitError,
    ProcessError,
    SessionNotFoundError,
    SpawnError,
    TurnInProgressError,
)
from .process import ProcessSupervisor, TurnOptions
from .sessions import NormalizedEvent, SessionRegistry

__version__ = "0.1.0"

__all__ = [
    "ForgeError",
    "NonZeroExitError",
    "NormalizedEvent",
    "ProcessError",
    "ProcessSupervisor",
    "SessionNotFoundError",
    "SessionRegistry",
    "Settings",
    "SpawnError",
    "TurnInProgressError",
    "TurnOptions",
    "get_settings",
]
