from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from forge import __version__
from forge.cli import app


def test_run_streams_answer(make_cli, lines) -> None:
    output = [lines.system("abc"), lines.assistant("m1", "Hel"), lines.assistant("m1", "Hello"), lines.result()]
    binary = make_cli(output)
    runner = CliRunner()

    result = runner.invoke(app, ["run", "hi there", "--binary", str(binary)])

    assert result.exit_code == 0, result.output
    assert "Hello" in result.output
    assert "Completed successfully" in result.output


def test_run_forwards_options(make_cli, lines, tmp_path: Path) -> None:
    args_file = tmp_path / "args.json"
    binary = make_cli([lines.result()], args_file=args_file)
    runner = CliRunner()

    result = runner.invoke(
        app,
        [
            "run",
            "go",
            "--binary",
            str(binary),
            "--model",
            "sonnet",
            "--allowed-tool",
            "Read",
            "--allowed-tool",
            "Grep",
            "--max-turns",
            "2",
            "--resume",
            "abc",
            "--cwd",
            str(tmp_path),
        ],
    )

    assert result.exit_code == 0, result.output
    recorded = json.loads(args_file.read_text(encoding="utf-8"))
    argv = recorded["argv"]
    assert argv[argv.index("--resume") + 1] == "abc"
    assert argv[argv.index("--model") + 1] == "sonnet"
    assert argv[argv.index("--allowedTools") + 1] == "Read,Grep"
    assert argv[argv.index("--max-turns") + 1] == "2"
    assert argv[-1] == "go"
    assert Path(recorded["cwd"]).resolve() == tmp_path.resolve()


def test_run_echo_prints_prompt(make_cli, lines) -> None:
    binary = make_cli([lines.assistant("m1", "Hi"), lines.result()])
    runner = CliRunner()

    result = runner.invoke(app, ["run", "ping", "--binary", str(binary), "--echo"])

    assert result.exit_code == 0, result.output
    assert "> ping" in result.output


def test_run_exits_non_zero_on_agent_error(make_cli, lines) -> None:
    binary = make_cli([lines.result(is_error=True, error="quota exceeded")])
    runner = CliRunner()

    result = runner.invoke(app, ["run", "go", "--binary", str(binary)])

    assert result.exit_code == 1
    assert "quota exceeded" in result.output


def test_run_exits_non_zero_when_binary_missing(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["run", "go", "--binary", str(tmp_path / "absent")])

    assert result.exit_code == 1
    assert "failed to launch" in result.output


def test_run_rejects_unknown_permission_mode(make_cli, lines) -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["run", "go", "--binary", str(make_cli([lines.result()])), "--permission-mode", "yolo"])

    assert result.exit_code != 0


def test_version_command() -> None:
    result = CliRunner().invoke(app, ["version"])

    assert result.exit_code == 0
    assert result.output.strip() == __version__
