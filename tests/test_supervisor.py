from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from forge.errors import NonZeroExitError, SpawnError, SupervisorReleasedError
from forge.process import FrameChannel, ProcessSupervisor, TurnOptions
from forge.protocol import AssistantFrame, Frame, ResultFrame, SystemFrame


async def _drain(channel: FrameChannel) -> list[Frame]:
    return [frame async for frame in channel]


async def _spawn(binary: Path, channel: FrameChannel, **kwargs) -> ProcessSupervisor:
    prompt = kwargs.pop("prompt", "hello")
    resume = kwargs.pop("resume", None)
    options = kwargs.pop("options", TurnOptions())
    return await ProcessSupervisor.spawn(prompt, resume, options, channel, binary=str(binary), **kwargs)


@pytest.mark.asyncio
async def test_frames_are_forwarded_in_order(make_cli, lines) -> None:
    binary = make_cli([lines.system("abc"), lines.assistant("m1", "Hi"), lines.result()])
    channel = FrameChannel()

    supervisor = await _spawn(binary, channel)
    frames = await _drain(channel)
    await supervisor.wait()

    assert [type(frame) for frame in frames] == [SystemFrame, AssistantFrame, ResultFrame]
    assert supervisor.returncode == 0
    assert not supervisor.running


@pytest.mark.asyncio
async def test_malformed_and_blank_lines_are_skipped(make_cli, lines) -> None:
    binary = make_cli(["not json", "", "   ", lines.assistant("m1", "ok"), '{"no": "type"}', lines.result()])
    channel = FrameChannel()

    supervisor = await _spawn(binary, channel)
    frames = await _drain(channel)
    await supervisor.wait()

    assert [type(frame) for frame in frames] == [AssistantFrame, ResultFrame]


@pytest.mark.asyncio
async def test_missing_result_is_synthesized_as_interrupted(make_cli, lines) -> None:
    binary = make_cli([lines.assistant("m1", "partial")])
    channel = FrameChannel()

    supervisor = await _spawn(binary, channel)
    frames = await _drain(channel)
    await supervisor.wait()

    assert isinstance(frames[-1], ResultFrame)
    assert frames[-1].is_error
    assert frames[-1].subtype == "interrupted"
    assert sum(isinstance(frame, ResultFrame) for frame in frames) == 1


@pytest.mark.asyncio
async def test_silent_process_still_yields_one_terminal_frame(make_cli) -> None:
    channel = FrameChannel()

    supervisor = await _spawn(make_cli([]), channel)
    frames = await _drain(channel)
    await supervisor.wait()

    assert frames == [ResultFrame.interrupted()]


@pytest.mark.asyncio
async def test_real_result_is_not_duplicated(make_cli, lines) -> None:
    binary = make_cli([lines.result(is_error=True, error="boom")])
    channel = FrameChannel()

    supervisor = await _spawn(binary, channel)
    frames = await _drain(channel)
    await supervisor.wait()

    assert len(frames) == 1
    assert frames[0].error == "boom"


@pytest.mark.asyncio
async def test_wait_reports_non_zero_exit(make_cli, lines) -> None:
    binary = make_cli([lines.result()], exit_code=3, stderr="fatal: nope\n")
    channel = FrameChannel()

    supervisor = await _spawn(binary, channel)
    await _drain(channel)

    with pytest.raises(NonZeroExitError) as exc_info:
        await supervisor.wait()
    assert exc_info.value.returncode == 3
    assert supervisor.stderr_tail == ["fatal: nope"]


@pytest.mark.asyncio
async def test_abort_kills_hanging_process(make_cli, lines) -> None:
    binary = make_cli([lines.assistant("m1", "working")], hang=True)
    channel = FrameChannel()
    supervisor = await _spawn(binary, channel)

    first = await asyncio.wait_for(channel.receive(), timeout=10)
    assert isinstance(first, AssistantFrame)

    await asyncio.wait_for(supervisor.abort(), timeout=10)

    assert supervisor.returncode is not None
    assert not supervisor.running
    assert await channel.receive() is None


@pytest.mark.asyncio
async def test_supervisor_is_released_once(make_cli, lines) -> None:
    channel = FrameChannel()
    supervisor = await _spawn(make_cli([lines.result()]), channel)
    await _drain(channel)
    await supervisor.wait()

    with pytest.raises(SupervisorReleasedError):
        await supervisor.wait()
    with pytest.raises(SupervisorReleasedError):
        await supervisor.abort()


@pytest.mark.asyncio
async def test_abort_kills_process_while_wait_is_pending(make_cli, lines) -> None:
    channel = FrameChannel()
    supervisor = await _spawn(make_cli([lines.result()], hang=True), channel)
    assert isinstance(await asyncio.wait_for(channel.receive(), timeout=10), ResultFrame)
    waiter = asyncio.create_task(supervisor.wait())
    await asyncio.sleep(0.05)
    assert not waiter.done()

    await asyncio.wait_for(supervisor.abort(), timeout=10)
    await asyncio.wait_for(waiter, timeout=10)

    assert supervisor.returncode is not None
    assert not supervisor.running
    with pytest.raises(SupervisorReleasedError):
        await supervisor.abort()


@pytest.mark.asyncio
async def test_abort_after_exit_is_not_an_error(make_cli, lines) -> None:
    channel = FrameChannel()
    supervisor = await _spawn(make_cli([lines.result()]), channel)
    await _drain(channel)
    await asyncio.sleep(0.1)

    await supervisor.abort()

    assert supervisor.returncode == 0


@pytest.mark.asyncio
async def test_receiver_gone_does_not_block_wait(make_cli, lines) -> None:
    output = [lines.assistant("m1", f"chunk {i}") for i in range(20)] + [lines.result()]
    channel = FrameChannel(capacity=2)
    supervisor = await _spawn(make_cli(output), channel)

    await channel.receive()
    channel.close()

    await asyncio.wait_for(supervisor.wait(), timeout=10)
    assert supervisor.returncode == 0


@pytest.mark.asyncio
async def test_spawn_passes_arguments_and_working_directory(make_cli, lines, tmp_path: Path) -> None:
    args_file = tmp_path / "args.json"
    workdir = tmp_path / "work"
    workdir.mkdir()
    binary = make_cli([lines.result()], args_file=args_file)
    options = TurnOptions(model="sonnet", allowed_tools=["Read", "Grep"], working_directory=str(workdir))
    channel = FrameChannel()

    supervisor = await _spawn(binary, channel, prompt="do it", resume="abc", options=options)
    await _drain(channel)
    await supervisor.wait()

    recorded = json.loads(args_file.read_text(encoding="utf-8"))
    assert recorded["argv"] == [
        "--print",
        "--output-format",
        "stream-json",
        "--verbose",
        "--resume",
        "abc",
        "--model",
        "sonnet",
        "--allowedTools",
        "Read,Grep",
        "do it",
    ]
    assert Path(recorded["cwd"]).resolve() == workdir.resolve()
    assert supervisor.command[-1] == "do it"


@pytest.mark.asyncio
async def test_missing_binary_is_spawn_error(tmp_path: Path) -> None:
    with pytest.raises(SpawnError):
        await _spawn(tmp_path / "no-such-agent", FrameChannel())


@pytest.mark.asyncio
async def test_non_executable_binary_is_spawn_error(tmp_path: Path) -> None:
    binary = tmp_path / "agent"
    binary.write_text("#!/bin/sh\n", encoding="utf-8")
    binary.chmod(0o644)

    with pytest.raises(SpawnError):
        await _spawn(binary, FrameChannel())


@pytest.mark.asyncio
async def test_missing_working_directory_is_spawn_error(make_cli, lines, tmp_path: Path) -> None:
    options = TurnOptions(working_directory=str(tmp_path / "missing"))

    with pytest.raises(SpawnError):
        await _spawn(make_cli([lines.result()]), FrameChannel(), options=options)
