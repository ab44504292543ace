"""Agent CLI stream-json protocol."""

from .codec import DecodeError, decode_frame
from .frames import (
    AssistantFrame,
    AssistantMessage,
    CodeExecutionToolResultBlock,
    ContentBlock,
    Frame,
    ImageBlock,
    McpToolResultBlock,
    McpToolUseBlock,
    RedactedThinkingBlock,
    ResultFrame,
    ServerToolUseBlock,
    SystemFrame,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
    UnknownFrame,
    Usage,
    UserFrame,
    UserMessage,
    WebSearchToolResultBlock,
    decode_block,
)

__all__ = [
    "AssistantFrame",
    "AssistantMessage",
    "CodeExecutionToolResultBlock",
    "ContentBlock",
    "DecodeError",
    "Frame",
    "ImageBlock",
    "McpToolResultBlock",
    "McpToolUseBlock",
    "RedactedThinkingBlock",
    "ResultFrame",
    "ServerToolUseBlock",
    "SystemFrame",
    "TextBlock",
    "ThinkingBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "UnknownBlock",
    "UnknownFrame",
    "Usage",
    "UserFrame",
    "UserMessage",
    "WebSearchToolResultBlock",
    "decode_block",
    "decode_frame",
]
