"""Normalized events delivered to a turn's consumer."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

EventKind = Literal["user-echo", "assistant", "assistant-delta", "system-note", "error", "completed"]
TERMINAL_KINDS: frozenset[str] = frozenset({"error", "completed"})


@dataclass(frozen=True)
class NormalizedEvent:
    """One role-tagged text fragment of a turn."""

    session_id: str
    kind: EventKind
    text: str
    seq: int
    subtype: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS


type EventSink = Callable[[NormalizedEvent], Awaitable[None] | None]


async def deliver(sink: EventSink | None, event: NormalizedEvent) -> None:
    if sink is None:
        return
    result = sink(event)
    if inspect.isawaitable(result):
        await result
