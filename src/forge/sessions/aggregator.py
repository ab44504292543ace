"""Turn aggregation: protocol frames in, normalized events out."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from loguru import logger

from forge.errors import ProcessError
from forge.process import FrameChannel
from forge.protocol import (
    AssistantFrame,
    Frame,
    ImageBlock,
    McpToolResultBlock,
    McpToolUseBlock,
    ResultFrame,
    ServerToolUseBlock,
    SystemFrame,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UnknownFrame,
    Usage,
    UserFrame,
)

from .events import EventKind, EventSink, NormalizedEvent, deliver

if TYPE_CHECKING:
    from .registry import SessionRegistry

TurnState = Literal["spawning", "streaming", "terminated"]

ABORTED = "aborted"
COMPLETED_TEXT = "Completed successfully"
GENERIC_ERROR_TEXT = "The agent reported an error."
ERROR_MESSAGES: dict[str, str] = {
    "error_max_turns": "Maximum conversation turns reached.",
    "error_during_execution": "An error occurred during execution.",
    ResultFrame.INTERRUPTED: "The agent process ended before producing a result.",
    ABORTED: "Operation cancelled.",
}
_NOTE_PREVIEW_CHARS = 500


def error_text(frame: ResultFrame) -> str:
    """Human-readable message for an error result frame."""
    if frame.error:
        return frame.error
    if frame.result:
        return frame.result
    return ERROR_MESSAGES.get(frame.subtype, GENERIC_ERROR_TEXT)


def completion_text(frame: ResultFrame, turn_usage: Usage | None) -> str:
    usage = frame.usage if frame.usage is not None and frame.usage.total_tokens else turn_usage
    if usage is not None and usage.total_tokens:
        return f"{COMPLETED_TEXT} ({usage.input_tokens:,} input / {usage.output_tokens:,} output tokens)"
    if frame.duration_ms is not None:
        return f"{COMPLETED_TEXT} in {frame.duration_ms / 1000:.1f}s"
    return COMPLETED_TEXT


def _preview(text: str) -> str:
    text = text.strip()
    if len(text) <= _NOTE_PREVIEW_CHARS:
        return text
    return text[:_NOTE_PREVIEW_CHARS] + "..."


class TurnAggregator:
    """Drain one turn's frame channel into a sink and the owning session.

    Text of one logical answer (frames sharing an assistant message id) may arrive
    as cumulative resends or as separate fragments; only text not emitted before is
    forwarded. Exactly one terminal event (`completed` or `error`) is emitted per
    turn, and the session's process handle is released exactly once at the end.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        session_id: str,
        channel: FrameChannel,
        sink: EventSink | None = None,
        *,
        prompt: str = "",
        echo_prompt: bool = False,
    ) -> None:
        self._registry = registry
        self._session_id = session_id
        self._channel = channel
        self._sink = sink
        self._prompt = prompt
        self._echo_prompt = echo_prompt
        self.state: TurnState = "spawning"
        self._seq = 0
        self._answer_id: str | None = None
        self._answer_text = ""
        self._last_fragment = ""
        self._answer_labeled = False
        self._finished_answers: list[str] = []
        self._usage_by_message: dict[str, Usage] = {}
        self._tool_names: dict[str, str] = {}
        self._announced_tools: set[str] = set()
        self._terminal_emitted = False
        self._released = False

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def answer_text(self) -> str:
        return self._answer_text

    @property
    def answers(self) -> list[str]:
        return [text for text in [*self._finished_answers, self._answer_text] if text]

    def turn_usage(self) -> Usage | None:
        if not self._usage_by_message:
            return None
        total = Usage()
        for usage in self._usage_by_message.values():
            total = total + usage
        return total

    async def run(self) -> None:
        self.state = "streaming"
        try:
            if self._echo_prompt:
                await self._emit("user-echo", self._prompt)
            async for frame in self._channel:
                await self.handle(frame)
                if self._terminal_emitted:
                    break
            if not self._terminal_emitted:
                await self._end_without_result()
        except Exception as exc:
            logger.exception("turn.aggregator.error session_id={}", self._session_id)
            if not self._terminal_emitted:
                await self._emit_failure(exc)
        finally:
            self._channel.close()
            await self._release()

    async def handle(self, frame: Frame) -> None:
        match frame:
            case SystemFrame():
                self._on_system(frame)
            case AssistantFrame():
                await self._on_assistant(frame)
            case UserFrame():
                await self._on_user(frame)
            case ResultFrame(is_error=True):
                await self._finish_error(frame)
            case ResultFrame():
                await self._finish_success(frame)
            case UnknownFrame():
                logger.debug("turn.frame.unknown session_id={} type={}", self._session_id, frame.type)

    def _on_system(self, frame: SystemFrame) -> None:
        logger.info(
            "turn.system session_id={} subtype={} model={} tools={}",
            self._session_id,
            frame.subtype,
            frame.model,
            len(frame.tools),
        )
        if frame.session_id:
            self._registry.record_resume_token(self._session_id, frame.session_id)

    async def _on_assistant(self, frame: AssistantFrame) -> None:
        message = frame.message
        if message.id != self._answer_id:
            self._start_answer(message.id)
        if message.usage is not None:
            self._usage_by_message[message.id] = message.usage

        text = "".join(block.text for block in message.content if isinstance(block, TextBlock))
        delta = self._merge(text)
        if delta:
            kind: EventKind = "assistant-delta" if self._answer_labeled else "assistant"
            self._answer_labeled = True
            await self._emit(kind, delta)

        for block in message.content:
            match block:
                case ToolUseBlock(id=tool_id, name=name):
                    await self._announce_tool(tool_id, name, f"Using tool: {name}")
                case ServerToolUseBlock(id=tool_id, name=name):
                    await self._announce_tool(tool_id, name, f"Using server tool: {name}")
                case McpToolUseBlock(id=tool_id, name=name, server_name=server):
                    label = f"{server}/{name}" if server else name
                    await self._announce_tool(tool_id, label, f"Using MCP tool: {label}")
                case ImageBlock():
                    logger.debug("turn.image session_id={} media_type={}", self._session_id, block.media_type)

    async def _on_user(self, frame: UserFrame) -> None:
        for block in frame.message.content:
            match block:
                case ToolResultBlock(is_error=True):
                    await self._report_tool_failure(block.tool_use_id, block.text)
                case McpToolResultBlock(is_error=True):
                    content = block.content if isinstance(block.content, str) else None
                    await self._report_tool_failure(block.tool_use_id, content)

    def _start_answer(self, answer_id: str) -> None:
        if self._answer_text:
            self._finished_answers.append(self._answer_text)
        self._answer_id = answer_id
        self._answer_text = ""
        self._last_fragment = ""
        self._answer_labeled = False

    def _merge(self, text: str) -> str:
        """Fold one frame's text into the current answer and return the unseen part."""
        if not text:
            return ""
        current = self._answer_text
        if text.startswith(current):
            delta = text[len(current) :]
        elif current.startswith(text) or text == self._last_fragment:
            delta = ""
        else:
            delta = text
        self._last_fragment = text
        self._answer_text = current + delta
        return delta

    async def _announce_tool(self, tool_id: str, name: str, note: str) -> None:
        if tool_id:
            self._tool_names[tool_id] = name
            if tool_id in self._announced_tools:
                return
            self._announced_tools.add(tool_id)
        await self._emit("system-note", note, subtype="tool-use")

    async def _report_tool_failure(self, tool_use_id: str, detail: str | None) -> None:
        name = self._tool_names.get(tool_use_id, "tool")
        text = f"Tool {name} failed"
        if detail and detail.strip():
            text += f": {_preview(detail)}"
        await self._emit("system-note", text, subtype="tool-error")

    async def _finish_success(self, frame: ResultFrame) -> None:
        usage = frame.usage if frame.usage is not None and frame.usage.total_tokens else self.turn_usage()
        self._registry.record_answers(self._session_id, self.answers, usage.total_tokens if usage else 0)
        await self._emit("completed", completion_text(frame, self.turn_usage()), subtype=frame.subtype)

    async def _finish_error(self, frame: ResultFrame) -> None:
        logger.warning(
            "turn.error session_id={} subtype={} error={}", self._session_id, frame.subtype, frame.error
        )
        await self._emit("error", error_text(frame), subtype=frame.subtype)

    async def _end_without_result(self) -> None:
        subtype = ResultFrame.INTERRUPTED if self._registry.contains(self._session_id) else ABORTED
        await self._finish_error(ResultFrame(subtype=subtype, is_error=True))

    async def _emit_failure(self, exc: Exception) -> None:
        try:
            await self._emit("error", f"Turn failed: {exc}", subtype="internal")
        except Exception:
            logger.exception("turn.sink.error session_id={}", self._session_id)

    async def _emit(self, kind: EventKind, text: str, *, subtype: str | None = None) -> None:
        event = NormalizedEvent(session_id=self._session_id, kind=kind, text=text, seq=self._seq, subtype=subtype)
        self._seq += 1
        if event.terminal:
            self._terminal_emitted = True
        logger.debug("turn.event session_id={} seq={} kind={}", self._session_id, event.seq, kind)
        await deliver(self._sink, event)

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        # The handle stays attached until the process has exited.
        supervisor = self._registry.turn_supervisor(self._session_id)
        try:
            if supervisor is not None:
                await supervisor.wait()
        except ProcessError as exc:
            logger.warning("turn.release.error session_id={} error={}", self._session_id, exc)
        finally:
            self._registry.finish_turn(self._session_id, supervisor)
            self.state = "terminated"
