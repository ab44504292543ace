"""Supervisor for one agent CLI invocation."""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import suppress

from loguru import logger

from forge.concurrency import Stopped, wait_until_stopped
from forge.errors import ChannelClosedError, NonZeroExitError, ProcessError, SpawnError, SupervisorReleasedError
from forge.protocol import DecodeError, ResultFrame, decode_frame

from .channel import FrameChannel
from .options import TurnOptions, build_command

DEFAULT_MAX_LINE_BYTES = 8 * 1024 * 1024
_STDERR_TAIL_LINES = 20


class CancelSignal:
    """Single-use cooperative cancel signal."""

    def __init__(self) -> None:
        self.event = asyncio.Event()

    @property
    def fired(self) -> bool:
        return self.event.is_set()

    def fire(self) -> bool:
        """Fire the signal; returns False if it had already been fired."""
        if self.event.is_set():
            return False
        self.event.set()
        return True


class ProcessSupervisor:
    """Owns one agent CLI process: its pipes, its readers and its termination.

    Create instances with spawn(). A supervisor is released by exactly one call to
    abort() or wait(); any later call raises SupervisorReleasedError. abort() may
    still be called while a wait() is pending, which kills the process it waits on.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        channel: FrameChannel,
        command: list[str],
    ) -> None:
        self._process = process
        self._channel = channel
        self._command = command
        self._cancel = CancelSignal()
        self._waiting = False
        self._released = False
        self._result_forwarded = False
        self._stderr_tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        self._stdout_task = asyncio.create_task(self._read_stdout(), name=f"forge.stdout.{process.pid}")
        self._stderr_task = asyncio.create_task(self._read_stderr(), name=f"forge.stderr.{process.pid}")

    @classmethod
    async def spawn(
        cls,
        prompt: str,
        resume_token: str | None,
        options: TurnOptions,
        channel: FrameChannel,
        *,
        binary: str = "claude",
        default_model: str | None = None,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
    ) -> ProcessSupervisor:
        """Launch the agent CLI for one turn and start streaming its frames into channel."""
        command = build_command(binary, prompt, resume_token, options, default_model=default_model)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=options.working_directory,
                limit=max_line_bytes,
            )
        except (OSError, ValueError) as exc:
            raise SpawnError(f"failed to launch {binary}: {exc}") from exc

        if process.stdout is None or process.stderr is None:
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise SpawnError(f"failed to capture output streams of {binary}")

        logger.info(
            "process.spawn pid={} resume={} cwd={}",
            process.pid,
            resume_token is not None,
            options.working_directory or ".",
        )
        return cls(process, channel, command)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def command(self) -> list[str]:
        return list(self._command)

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def running(self) -> bool:
        return self._process.returncode is None

    @property
    def stderr_tail(self) -> list[str]:
        return list(self._stderr_tail)

    async def abort(self) -> None:
        """Cancel the readers, kill the process and wait for the stdout reader to finish.

        A wait() pending in another task returns once the process is gone.
        """
        if self._released and not self._waiting:
            raise SupervisorReleasedError(f"supervisor for pid={self.pid} was already released")
        self._released = True
        self._waiting = False
        self._cancel.fire()
        try:
            self._process.kill()
        except ProcessLookupError:
            pass
        except OSError as exc:
            raise ProcessError(f"failed to kill agent CLI pid={self.pid}: {exc}") from exc
        await self._process.wait()
        await self._join_reader(self._stdout_task, strict=False)
        await self._join_reader(self._stderr_task, strict=False)
        logger.info("process.abort pid={} returncode={}", self.pid, self._process.returncode)

    async def wait(self) -> None:
        """Wait for the process to exit and its readers to finish."""
        self._release()
        self._waiting = True
        try:
            returncode = await self._process.wait()
            await self._join_reader(self._stdout_task, strict=True)
            await self._join_reader(self._stderr_task, strict=False)
        finally:
            self._waiting = False
        logger.info("process.exit pid={} returncode={}", self.pid, returncode)
        if self._cancel.fired:
            return
        if returncode != 0:
            if self._stderr_tail:
                logger.warning("process.exit.stderr pid={} tail={}", self.pid, " | ".join(self._stderr_tail))
            raise NonZeroExitError(returncode)

    def _release(self) -> None:
        if self._released:
            raise SupervisorReleasedError(f"supervisor for pid={self.pid} was already released")
        self._released = True

    async def _join_reader(self, task: asyncio.Task[None], *, strict: bool) -> None:
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        except Exception as exc:
            if strict:
                raise ProcessError(f"output reader failed for pid={self.pid}: {exc}") from exc
            logger.opt(exception=exc).warning("process.reader.error pid={}", self.pid)

    async def _read_stdout(self) -> None:
        stdout = self._process.stdout
        assert stdout is not None
        forwarding = True
        try:
            while True:
                try:
                    raw = await wait_until_stopped(stdout.readline(), self._cancel.event)
                except Stopped:
                    logger.debug("process.stdout.cancelled pid={}", self.pid)
                    return
                except ValueError as exc:
                    # Line longer than the reader limit; the rest of it decodes as garbage and is skipped.
                    logger.warning("process.stdout.oversized_line pid={} error={}", self.pid, exc)
                    continue
                except OSError as exc:
                    logger.error("process.stdout.error pid={} error={}", self.pid, exc)
                    break
                if not raw:
                    break
                if not forwarding:
                    continue

                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                frame = decode_frame(line)
                if isinstance(frame, DecodeError):
                    logger.warning("process.stdout.decode_error pid={} error={}", self.pid, frame)
                    continue
                try:
                    await wait_until_stopped(self._channel.send(frame), self._cancel.event)
                except Stopped:
                    return
                except ChannelClosedError:
                    # Receiver gone; keep draining so the child never blocks on a full pipe.
                    logger.debug("process.stdout.receiver_gone pid={}", self.pid)
                    forwarding = False
                    continue
                if isinstance(frame, ResultFrame):
                    self._result_forwarded = True

            if forwarding and not self._result_forwarded and not self._cancel.fired:
                logger.warning("process.stdout.no_result pid={}", self.pid)
                with suppress(ChannelClosedError, Stopped):
                    await wait_until_stopped(self._channel.send(ResultFrame.interrupted()), self._cancel.event)
        finally:
            if self._cancel.fired:
                self._channel.abort_sender()
            else:
                await self._channel.close_sender()

    async def _read_stderr(self) -> None:
        stderr = self._process.stderr
        assert stderr is not None
        while True:
            try:
                raw = await wait_until_stopped(stderr.readline(), self._cancel.event)
            except Stopped:
                return
            except (ValueError, OSError) as exc:
                logger.debug("process.stderr.error pid={} error={}", self.pid, exc)
                return
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                self._stderr_tail.append(line)
                logger.debug("process.stderr pid={} line={}", self.pid, line)
