"""Typed frames and content blocks of the agent CLI stream-json protocol."""

from __future__ import annotations

from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class Usage(_WireModel):
    """Token counters attached to assistant messages and results."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @field_validator("*", mode="before")
    @classmethod
    def _none_as_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_input_tokens=self.cache_creation_input_tokens + other.cache_creation_input_tokens,
            cache_read_input_tokens=self.cache_read_input_tokens + other.cache_read_input_tokens,
        )


# Content blocks


class TextBlock(_WireModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolUseBlock(_WireModel):
    type: Literal["tool_use"] = "tool_use"
    id: str = ""
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(_WireModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = ""
    content: str | list[dict[str, Any]] | None = None
    is_error: bool = False

    @property
    def text(self) -> str | None:
        """Flatten string or text-part content into plain text."""
        if self.content is None or isinstance(self.content, str):
            return self.content
        parts = [str(part.get("text", "")) for part in self.content if part.get("type") == "text"]
        return "\n".join(parts) if parts else None


class ImageBlock(_WireModel):
    type: Literal["image"] = "image"
    source: dict[str, Any] = Field(default_factory=dict)

    @property
    def media_type(self) -> str | None:
        value = self.source.get("media_type")
        return str(value) if value is not None else None


class ThinkingBlock(_WireModel):
    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    signature: str | None = None


class RedactedThinkingBlock(_WireModel):
    type: Literal["redacted_thinking"] = "redacted_thinking"
    data: str = ""


class ServerToolUseBlock(_WireModel):
    type: Literal["server_tool_use"] = "server_tool_use"
    id: str = ""
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)


class WebSearchToolResultBlock(_WireModel):
    type: Literal["web_search_tool_result"] = "web_search_tool_result"
    tool_use_id: str = ""
    content: Any = None


class CodeExecutionToolResultBlock(_WireModel):
    type: Literal["code_execution_tool_result"] = "code_execution_tool_result"
    tool_use_id: str = ""
    content: Any = None


class McpToolUseBlock(_WireModel):
    type: Literal["mcp_tool_use"] = "mcp_tool_use"
    id: str = ""
    name: str = ""
    server_name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)


class McpToolResultBlock(_WireModel):
    type: Literal["mcp_tool_result"] = "mcp_tool_result"
    tool_use_id: str = ""
    content: Any = None
    is_error: bool = False


class UnknownBlock(_WireModel):
    """Extension or malformed block kept verbatim and ignored downstream."""

    type: str = "unknown"
    raw: dict[str, Any] = Field(default_factory=dict)


type ContentBlock = (
    TextBlock
    | ToolUseBlock
    | ToolResultBlock
    | ImageBlock
    | ThinkingBlock
    | RedactedThinkingBlock
    | ServerToolUseBlock
    | WebSearchToolResultBlock
    | CodeExecutionToolResultBlock
    | McpToolUseBlock
    | McpToolResultBlock
    | UnknownBlock
)

BLOCK_TYPES: dict[str, type[_WireModel]] = {
    "text": TextBlock,
    "tool_use": ToolUseBlock,
    "tool_result": ToolResultBlock,
    "image": ImageBlock,
    "thinking": ThinkingBlock,
    "redacted_thinking": RedactedThinkingBlock,
    "server_tool_use": ServerToolUseBlock,
    "web_search_tool_result": WebSearchToolResultBlock,
    "code_execution_tool_result": CodeExecutionToolResultBlock,
    "mcp_tool_use": McpToolUseBlock,
    "mcp_tool_result": McpToolResultBlock,
}


def decode_block(raw: Any) -> ContentBlock:
    """Decode one content block; anything unrecognised becomes an UnknownBlock."""
    if not isinstance(raw, dict):
        return UnknownBlock(raw={"value": raw})
    block_type = raw.get("type")
    model = BLOCK_TYPES.get(block_type) if isinstance(block_type, str) else None
    if model is None:
        return UnknownBlock(type=str(block_type or "unknown"), raw=raw)
    try:
        return model.model_validate(raw)  # type: ignore[return-value]
    except ValidationError:
        return UnknownBlock(type=str(block_type), raw=raw)


def _decode_blocks(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        # Plain string content is shorthand for a single text block.
        return [TextBlock(text=value)]
    if not isinstance(value, list):
        return value
    return [decode_block(item) for item in value]


# Messages carried by frames


class AssistantMessage(_WireModel):
    id: str
    type: str = "message"
    role: str = "assistant"
    model: str | None = None
    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: str | None = None
    usage: Usage | None = None

    @field_validator("content", mode="before")
    @classmethod
    def _decode_content(cls, value: Any) -> Any:
        return _decode_blocks(value)

    @property
    def text(self) -> str:
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))


class UserMessage(_WireModel):
    role: str = "user"
    content: list[ContentBlock] = Field(default_factory=list)

    @field_validator("content", mode="before")
    @classmethod
    def _decode_content(cls, value: Any) -> Any:
        return _decode_blocks(value)


# Frames


class SystemFrame(_WireModel):
    type: Literal["system"] = "system"
    subtype: str = "init"
    session_id: str | None = None
    cwd: str | None = None
    model: str | None = None
    tools: list[Any] = Field(default_factory=list)
    permission_mode: str | None = Field(default=None, alias="permissionMode")

    @field_validator("tools", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class AssistantFrame(_WireModel):
    type: Literal["assistant"] = "assistant"
    message: AssistantMessage
    session_id: str | None = None
    parent_tool_use_id: str | None = None


class UserFrame(_WireModel):
    type: Literal["user"] = "user"
    message: UserMessage = Field(default_factory=UserMessage)
    session_id: str | None = None
    parent_tool_use_id: str | None = None


class ResultFrame(_WireModel):
    """Terminal frame of a turn."""

    INTERRUPTED: ClassVar[str] = "interrupted"

    type: Literal["result"] = "result"
    subtype: str = "success"
    is_error: bool = False
    result: str | None = None
    error: str | None = None
    session_id: str | None = None
    duration_ms: int | None = None
    duration_api_ms: int | None = None
    num_turns: int | None = None
    total_cost_usd: float | None = None
    usage: Usage | None = None

    @classmethod
    def interrupted(cls, detail: str | None = None) -> ResultFrame:
        """Build the terminal frame used when the stream ends without one."""
        return cls(subtype=cls.INTERRUPTED, is_error=True, error=detail)


class UnknownFrame(_WireModel):
    """Frame with a type this decoder does not know; ignored downstream."""

    type: str
    raw: dict[str, Any] = Field(default_factory=dict)


type Frame = SystemFrame | AssistantFrame | UserFrame | ResultFrame | UnknownFrame

FRAME_TYPES: dict[str, type[_WireModel]] = {
    "system": SystemFrame,
    "assistant": AssistantFrame,
    "user": UserFrame,
    "result": ResultFrame,
}
