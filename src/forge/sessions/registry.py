"""Session registry: session lifecycle and turn orchestration."""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections.abc import Awaitable, Callable

from loguru import logger

from forge.config import Settings
from forge.errors import ProcessError, SessionNotFoundError, TurnInProgressError
from forge.logging_utils import session_context
from forge.process import FrameChannel, ProcessSupervisor, TurnOptions

from .aggregator import TurnAggregator
from .events import EventSink
from .models import ConversationExport, HistoryMessage, Session

type SupervisorFactory = Callable[..., Awaitable[ProcessSupervisor]]


class SessionRegistry:
    """Owns every session and runs their turns.

    All reads and writes of session state go through the registry lock, held only
    for a lookup or a mutation and never across an await.
    """

    def __init__(self, settings: Settings | None = None, *, spawn: SupervisorFactory | None = None) -> None:
        self.settings = settings or Settings()
        self._spawn: SupervisorFactory = spawn or ProcessSupervisor.spawn
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def create_session(self, agent_id: str) -> str:
        with self._lock:
            session_id = f"{agent_id}-{uuid.uuid4()}"
            while session_id in self._sessions:
                session_id = f"{agent_id}-{uuid.uuid4()}"
            self._sessions[session_id] = Session(id=session_id, agent_id=agent_id)
        logger.info("session.create session_id={}", session_id)
        return session_id

    async def start_turn(
        self,
        session_id: str,
        prompt: str,
        options: TurnOptions | None = None,
        sink: EventSink | None = None,
    ) -> asyncio.Task[None]:
        """Spawn the agent CLI for one turn and aggregate it in the background.

        Returns as soon as the process is running. The returned task finishes when
        the turn is terminated; it does not raise, failures reach the sink as an
        `error` event.

        Raises:
            SessionNotFoundError: The session does not exist (or was aborted while spawning).
            TurnInProgressError: The session already has a turn in flight.
            SpawnError: The agent CLI could not be launched.
        """
        options = options or TurnOptions()
        with self._lock:
            session = self._require(session_id)
            if session.in_flight:
                raise TurnInProgressError(session_id)
            session.starting = True
            resume_token = session.resume_token
            user_message = HistoryMessage(role="user", content=prompt, session_id=session_id)
            session.messages.append(user_message)

        logger.info(
            "turn.start session_id={} prompt_length={} resume={}", session_id, len(prompt), resume_token is not None
        )
        channel = FrameChannel(self.settings.channel_capacity)
        try:
            with session_context(session_id):
                supervisor = await self._spawn(
                    prompt,
                    resume_token,
                    options,
                    channel,
                    binary=self.settings.cli_binary,
                    default_model=self.settings.default_model,
                    max_line_bytes=self.settings.max_line_bytes,
                )
        except BaseException:
            with self._lock:
                session.starting = False
                if session.messages and session.messages[-1] is user_message:
                    session.messages.pop()
            raise

        with self._lock:
            session.starting = False
            alive = self._sessions.get(session_id) is session
            if alive:
                session.supervisor = supervisor
        if not alive:
            logger.info("turn.start.aborted session_id={}", session_id)
            await supervisor.abort()
            raise SessionNotFoundError(session_id)

        aggregator = TurnAggregator(
            self,
            session_id,
            channel,
            sink,
            prompt=prompt,
            echo_prompt=options.echo_prompt,
        )
        with session_context(session_id):
            task = asyncio.create_task(aggregator.run(), name=f"forge.turn.{session_id}")
        with self._lock:
            if session.supervisor is supervisor:
                session.turn_task = task
        return task

    async def abort_turn(self, session_id: str) -> None:
        """Remove the session and kill its running process, if any.

        A turn whose process has printed its result but not exited yet is still
        running and is killed too. When the spawn of a turn is still pending there
        is no process yet; start_turn kills it as soon as the spawn returns and
        raises SessionNotFoundError to its caller.
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise SessionNotFoundError(session_id)
            supervisor, session.supervisor = session.supervisor, None
        if supervisor is None:
            logger.info("session.remove session_id={}", session_id)
            return
        logger.info("session.abort session_id={} pid={}", session_id, supervisor.pid)
        with session_context(session_id):
            await supervisor.abort()

    async def clear_session(self, session_id: str) -> None:
        await self.abort_turn(session_id)

    async def shutdown(self) -> None:
        """Abort every session; process failures are logged."""
        for session_id in self.session_ids():
            try:
                await self.abort_turn(session_id)
            except SessionNotFoundError:
                continue
            except ProcessError as exc:
                logger.warning("session.shutdown.error session_id={} error={}", session_id, exc)

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def contains(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def is_running(self, session_id: str) -> bool:
        with self._lock:
            return self._require(session_id).in_flight

    def get_history(self, session_id: str) -> list[HistoryMessage]:
        with self._lock:
            return list(self._require(session_id).messages)

    def get_resume_token(self, session_id: str) -> str | None:
        with self._lock:
            return self._require(session_id).resume_token

    def turn_task(self, session_id: str) -> asyncio.Task[None] | None:
        with self._lock:
            return self._require(session_id).turn_task

    def export_conversation(self, session_id: str) -> ConversationExport:
        with self._lock:
            return ConversationExport.from_session(self._require(session_id))

    # Mutations used by the turn aggregator. Missing sessions were aborted mid-turn and are ignored.

    def record_resume_token(self, session_id: str, token: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.resume_token = token

    def record_answers(self, session_id: str, answers: list[str], tokens: int = 0) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.messages.extend(
                HistoryMessage(role="assistant", content=text, session_id=session_id) for text in answers if text
            )
            session.total_tokens += tokens

    def turn_supervisor(self, session_id: str) -> ProcessSupervisor | None:
        """Return the process handle of the running turn; it stays attached to the session."""
        with self._lock:
            session = self._sessions.get(session_id)
            return session.supervisor if session is not None else None

    def finish_turn(self, session_id: str, supervisor: ProcessSupervisor | None) -> None:
        """Detach a handle whose process has exited, ending the turn."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.supervisor is not supervisor:
                return
            session.supervisor = None
            session.turn_task = None

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session
