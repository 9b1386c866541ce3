from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Mapping, Sequence

from toolrun.errors import InvalidArgument, SpawnError

log = logging.getLogger(__name__)

READ_CHUNK_BYTES = 64 * 1024
# after a kill, readers get this long to hit EOF before they are abandoned
KILL_GRACE_S = 2.0

StdinWriter = Callable[[asyncio.StreamWriter], Awaitable[None] | None]


def _decode(data: bytes) -> str:
    return data.decode("utf-8", "replace")


@dataclass(frozen=True, slots=True)
class Completed:
    exit_code: int
    stdout_bytes: bytes = b""
    stderr_bytes: bytes = b""

    @property
    def stdout(self) -> str:
        return _decode(self.stdout_bytes)

    @property
    def stderr(self) -> str:
        return _decode(self.stderr_bytes)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True, slots=True)
class TimedOut:
    timeout_s: float
    stdout_bytes: bytes = b""
    stderr_bytes: bytes = b""

    @property
    def stdout(self) -> str:
        return _decode(self.stdout_bytes)

    @property
    def stderr(self) -> str:
        return _decode(self.stderr_bytes)


ProcessOutcome = Completed | TimedOut


async def _drain(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            return
        sink.extend(chunk)


async def _feed(stdin: asyncio.StreamWriter | None, writer: StdinWriter) -> None:
    if stdin is None:
        return
    try:
        result = writer(stdin)
        if inspect.isawaitable(result):
            await result
        await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        log.debug("Process closed stdin before the payload was fully written")
    finally:
        stdin.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await stdin.wait_closed()


class TimedProcessRunner:
    """Run an external command with a hard wall-clock limit.

    Output is read concurrently with the process so a chatty tool can never
    stall on a full pipe. The result is ``Completed`` when the process exited
    on its own and ``TimedOut`` when it had to be killed.
    """

    async def run(
        self,
        command: str,
        args: Sequence[str],
        timeout_s: float,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        stdin_writer: StdinWriter | None = None,
    ) -> ProcessOutcome:
        """Run ``command`` with ``args`` and return how it ended."""
        if timeout_s <= 0:
            raise InvalidArgument(f"timeout must be positive, got {timeout_s!r}")

        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=str(cwd) if cwd else None,
                stdin=asyncio.subprocess.PIPE if stdin_writer else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(env) if env is not None else None,
            )
        except OSError as e:
            raise SpawnError(command, e.strerror or str(e)) from e
        log.debug("Spawned %s (pid %s)", command, proc.pid)

        stdout_buf = bytearray()
        stderr_buf = bytearray()
        io_tasks = [
            asyncio.create_task(_drain(proc.stdout, stdout_buf)),
            asyncio.create_task(_drain(proc.stderr, stderr_buf)),
        ]
        if stdin_writer is not None:
            io_tasks.append(asyncio.create_task(_feed(proc.stdin, stdin_writer)))

        killed = False

        def _on_timeout() -> None:
            nonlocal killed
            if proc.returncode is not None:
                return
            killed = True
            log.warning("Killing %s (pid %s) after %ss", command, proc.pid, timeout_s)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()

        timer = asyncio.get_running_loop().call_later(timeout_s, _on_timeout)
        try:
            await proc.wait()
        except asyncio.CancelledError:
            # the awaiting task was cancelled; reap the child and stop its readers
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            for task in io_tasks:
                task.cancel()
            await asyncio.shield(asyncio.gather(proc.wait(), *io_tasks, return_exceptions=True))
            raise
        finally:
            timer.cancel()

        if killed:
            _, pending = await asyncio.wait(io_tasks, timeout=KILL_GRACE_S)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            return TimedOut(
                timeout_s=timeout_s,
                stdout_bytes=bytes(stdout_buf),
                stderr_bytes=bytes(stderr_buf),
            )

        await asyncio.gather(*io_tasks)
        return Completed(
            exit_code=int(proc.returncode or 0),
            stdout_bytes=bytes(stdout_buf),
            stderr_bytes=bytes(stderr_buf),
        )

