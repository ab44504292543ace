"""Session state and conversation export models."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from forge.process import ProcessSupervisor

Role = Literal["user", "assistant", "system"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class HistoryMessage:
    """One message in a session's durable history."""

    role: Role
    content: str
    session_id: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class Session:
    """Registry-owned state of one conversation.

    A turn is in flight while `starting` is set (spawn pending) or a supervisor is
    attached; clearing the supervisor is what finishes a turn.
    """

    id: str
    agent_id: str
    messages: list[HistoryMessage] = field(default_factory=list)
    resume_token: str | None = None
    supervisor: ProcessSupervisor | None = None
    turn_task: asyncio.Task[None] | None = None
    starting: bool = False
    total_tokens: int = 0
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def in_flight(self) -> bool:
        return self.starting or self.supervisor is not None


class ExportedMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Role
    content: str
    timestamp: datetime
    session_id: str = Field(serialization_alias="sessionId")


class ExportMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")
    total_turns: int = Field(serialization_alias="totalTurns")
    total_tokens: int = Field(serialization_alias="totalTokens")


class ConversationExport(BaseModel):
    """Snapshot of one session's history for a UI or a file."""

    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(serialization_alias="agentId")
    session_id: str = Field(serialization_alias="sessionId")
    messages: list[ExportedMessage]
    metadata: ExportMetadata

    @classmethod
    def from_session(cls, session: Session) -> ConversationExport:
        messages = [
            ExportedMessage(role=m.role, content=m.content, timestamp=m.timestamp, session_id=m.session_id)
            for m in session.messages
        ]
        created = session.messages[0].timestamp if session.messages else session.created_at
        updated = session.messages[-1].timestamp if session.messages else session.created_at
        return cls(
            agent_id=session.agent_id,
            session_id=session.id,
            messages=messages,
            metadata=ExportMetadata(
                created_at=created,
                updated_at=updated,
                total_turns=sum(1 for m in session.messages if m.role == "user"),
                total_tokens=session.total_tokens,
            ),
        )
