from __future__ import annotations

import json
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from forge.config import Settings

_FAKE_CLI_TEMPLATE = """\
#!{python}
import json
import os
import sys
import time

ARGS_FILE = {args_file!r}
if ARGS_FILE:
    with open(ARGS_FILE, "w", encoding="utf-8") as fh:
        json.dump({{"argv": sys.argv[1:], "cwd": os.getcwd(), "pid": os.getpid()}}, fh)

sys.stderr.write({stderr!r})
sys.stderr.flush()
for line in {lines!r}:
    sys.stdout.write(line + "\\n")
    sys.stdout.flush()
if {hang!r}:
    time.sleep(60)
sys.exit({exit_code!r})
"""


class ProtocolLines:
    """Builders for stream-json lines as the agent CLI prints them."""

    @staticmethod
    def system(session_id: str | None = "abc", **extra: Any) -> str:
        payload: dict[str, Any] = {"type": "system", "subtype": "init", "model": "test-model", "tools": ["Bash"]}
        if session_id is not None:
            payload["session_id"] = session_id
        payload.update(extra)
        return json.dumps(payload)

    @staticmethod
    def assistant(message_id: str, *content: Any, usage: dict[str, int] | None = None) -> str:
        blocks = [{"type": "text", "text": item} if isinstance(item, str) else item for item in content]
        message: dict[str, Any] = {
            "id": message_id,
            "type": "message",
            "role": "assistant",
            "model": "test-model",
            "content": blocks,
            "stop_reason": None,
        }
        if usage is not None:
            message["usage"] = usage
        return json.dumps({"type": "assistant", "message": message, "session_id": "abc"})

    @staticmethod
    def user(*content: dict[str, Any]) -> str:
        return json.dumps({"type": "user", "message": {"role": "user", "content": list(content)}, "session_id": "abc"})

    @staticmethod
    def result(*, is_error: bool = False, subtype: str | None = None, **extra: Any) -> str:
        payload: dict[str, Any] = {
            "type": "result",
            "subtype": subtype or ("error_during_execution" if is_error else "success"),
            "is_error": is_error,
        }
        payload.update(extra)
        return json.dumps(payload)


@pytest.fixture
def lines() -> type[ProtocolLines]:
    return ProtocolLines


@pytest.fixture
def make_cli(tmp_path: Path) -> Callable[..., Path]:
    """Write an executable stand-in for the agent CLI that replays canned stdout lines."""
    counter = {"n": 0}

    def _make(
        output: list[str],
        *,
        exit_code: int = 0,
        hang: bool = False,
        stderr: str = "",
        args_file: Path | None = None,
    ) -> Path:
        counter["n"] += 1
        script = tmp_path / f"fake-agent-{counter['n']}"
        script.write_text(
            _FAKE_CLI_TEMPLATE.format(
                python=sys.executable,
                args_file=str(args_file) if args_file is not None else "",
                stderr=stderr,
                lines=list(output),
                hang=hang,
                exit_code=exit_code,
            ),
            encoding="utf-8",
        )
        os.chmod(script, 0o755)
        return script

    return _make


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    def _make(binary: Path | str = "claude", **overrides: Any) -> Settings:
        return Settings(cli_binary=str(binary), **overrides)

    return _make
