"""Forge command line interface."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console

from forge import __version__
from forge.config import Settings, get_settings
from forge.errors import ForgeError
from forge.process import TurnOptions
from forge.sessions import NormalizedEvent, SessionRegistry

app = typer.Typer(name="forge", help="Drive agent CLI sessions as a clean event stream", add_completion=False)


class EventRenderer:
    """Render one turn's events to a rich console."""

    def __init__(self, console: Console) -> None:
        self.console = console
        self.in_answer = False
        self.failed = False

    def __call__(self, event: NormalizedEvent) -> None:
        if event.kind in ("assistant", "assistant-delta"):
            if event.kind == "assistant" and self.in_answer:
                self.console.print()
            self.console.print(event.text, end="", markup=False, highlight=False)
            self.in_answer = True
            return

        self._end_answer()
        if event.kind == "user-echo":
            self.console.print(f"> {event.text}", style="bold", markup=False, highlight=False)
        elif event.kind == "system-note":
            self.console.print(f"• {event.text}", style="dim", markup=False, highlight=False)
        elif event.kind == "error":
            self.failed = True
            self.console.print(f"error: {event.text}", style="bold red", markup=False, highlight=False)
        elif event.kind == "completed":
            self.console.print(event.text, style="green", markup=False, highlight=False)

    def _end_answer(self) -> None:
        if self.in_answer:
            self.console.print()
            self.in_answer = False


async def _run_turn(
    settings: Settings,
    agent_id: str,
    prompt: str,
    options: TurnOptions,
    console: Console,
    resume: str | None = None,
) -> bool:
    registry = SessionRegistry(settings)
    renderer = EventRenderer(console)
    session_id = registry.create_session(agent_id)
    if resume:
        registry.record_resume_token(session_id, resume)
    try:
        task = await registry.start_turn(session_id, prompt, options, renderer)
        await task
    except ForgeError as exc:
        console.print(f"error: {exc}", style="bold red", markup=False, highlight=False)
        return False
    finally:
        await registry.shutdown()
    return not renderer.failed


@app.command("run")
def run(
    prompt: str = typer.Argument(..., help="Prompt sent to the agent"),
    model: str | None = typer.Option(None, "--model", "-m", help="Model identifier"),
    cwd: Path | None = typer.Option(None, "--cwd", "-C", help="Working directory for the agent"),  # noqa: B008
    allowed_tools: list[str] = typer.Option([], "--allowed-tool", help="Tool to allow"),  # noqa: B008
    disallowed_tools: list[str] = typer.Option([], "--disallowed-tool", help="Tool to deny"),  # noqa: B008
    max_turns: int | None = typer.Option(None, "--max-turns", min=1, help="Maximum agent turns"),
    permission_mode: str | None = typer.Option(None, "--permission-mode", help="Agent permission mode"),
    resume: str | None = typer.Option(None, "--resume", help="Resumption token of an earlier conversation"),
    binary: str | None = typer.Option(None, "--binary", help="Agent CLI executable"),
    agent_id: str = typer.Option("cli", "--agent-id", help="Prefix of the session id"),
    echo: bool = typer.Option(False, "--echo", help="Echo the prompt before the answer"),
) -> None:
    """Run one prompt through the agent CLI and stream the answer."""

    overrides: dict[str, object] = {"log_profile": "chat"}
    if binary:
        overrides["cli_binary"] = binary
    settings = get_settings(**overrides)
    try:
        options = TurnOptions(
            model=model,
            allowed_tools=allowed_tools,
            disallowed_tools=disallowed_tools,
            max_turns=max_turns,
            working_directory=str(cwd) if cwd is not None else None,
            permission_mode=permission_mode,
            echo_prompt=echo,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    console = Console()
    try:
        ok = asyncio.run(_run_turn(settings, agent_id, prompt, options, console, resume))
    except KeyboardInterrupt:
        console.print("interrupted", style="yellow", markup=False, highlight=False)
        raise typer.Exit(code=130) from None
    if not ok:
        raise typer.Exit(code=1)


@app.command("version")
def version() -> None:
    """Show the Forge version."""

    typer.echo(__version__)
