"""Per-turn options for the agent CLI invocation."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

PermissionMode = Literal["default", "acceptEdits", "bypassPermissions", "plan"]


class TurnOptions(BaseModel):
    """Options for one turn; accepts the camelCase names a UI sends."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model: str | None = None
    fallback_model: str | None = Field(default=None, alias="fallbackModel")
    allowed_tools: list[str] = Field(default_factory=list, alias="allowedTools")
    disallowed_tools: list[str] = Field(default_factory=list, alias="disallowedTools")
    max_turns: int | None = Field(default=None, ge=1, alias="maxTurns")
    working_directory: str | None = Field(default=None, alias="cwd")
    custom_system_prompt: str | None = Field(default=None, alias="customSystemPrompt")
    append_system_prompt: str | None = Field(default=None, alias="appendSystemPrompt")
    permission_mode: PermissionMode | None = Field(default=None, alias="permissionMode")
    echo_prompt: bool = Field(default=False, alias="echoPrompt")

    @field_validator("allowed_tools", "disallowed_tools", mode="before")
    @classmethod
    def _normalize_tools(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, list | tuple | set):
            return [str(name).strip() for name in value if str(name).strip()]
        return value


def build_command(
    binary: str,
    prompt: str,
    resume_token: str | None,
    options: TurnOptions,
    *,
    default_model: str | None = None,
) -> list[str]:
    """Build the argument vector for one streaming turn; the prompt is always last."""
    command = [binary, "--print", "--output-format", "stream-json", "--verbose"]
    if resume_token:
        command += ["--resume", resume_token]
    model = options.model or default_model
    if model:
        command += ["--model", model]
    if options.fallback_model:
        command += ["--fallback-model", options.fallback_model]
    if options.max_turns is not None:
        command += ["--max-turns", str(options.max_turns)]
    if options.custom_system_prompt:
        command += ["--system-prompt", options.custom_system_prompt]
    if options.append_system_prompt:
        command += ["--append-system-prompt", options.append_system_prompt]
    if options.permission_mode:
        command += ["--permission-mode", options.permission_mode]
    if options.allowed_tools:
        command += ["--allowedTools", ",".join(options.allowed_tools)]
    if options.disallowed_tools:
        command += ["--disallowedTools", ",".join(options.disallowed_tools)]
    command.append(prompt)
    return command
