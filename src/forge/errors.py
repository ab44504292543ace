"""Application-level exception types for Forge."""

from __future__ import annotations


class ForgeError(Exception):
    """Base exception for Forge."""


class SpawnError(ForgeError):
    """Raised when the agent CLI process cannot be launched or its pipes captured."""


class ProcessError(ForgeError):
    """Base exception for failures of a running agent CLI process."""


class NonZeroExitError(ProcessError):
    """Raised when the agent CLI exits with a failure status."""

    def __init__(self, returncode: int) -> None:
        super().__init__(f"agent CLI exited with status {returncode}")
        self.returncode = returncode


class SupervisorReleasedError(ProcessError):
    """Raised when a supervisor is used after abort or wait released it."""


class SessionNotFoundError(ForgeError):
    """Raised when a session id is not present in the registry."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session not found: {session_id}")
        self.session_id = session_id


class TurnInProgressError(ForgeError):
    """Raised when a turn is started on a session that already has one in flight."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session already has a turn in flight: {session_id}")
        self.session_id = session_id


class ChannelClosedError(ForgeError):
    """Raised when sending on a frame channel whose receiver is gone."""
