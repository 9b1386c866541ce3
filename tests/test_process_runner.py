import asyncio
import os
import sys
import time
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from toolrun.errors import InvalidArgument, SpawnError  # noqa: E402
from toolrun.process import Completed, TimedOut, TimedProcessRunner  # noqa: E402

PY = sys.executable


def _run(args: list[str], timeout_s: float, **kwargs):
    return asyncio.run(TimedProcessRunner().run(PY, args, timeout_s, **kwargs))


def test_completed_process_reports_exit_code_and_output() -> None:
    outcome = _run(
        ["-c", "import sys; print('hello'); print('oops', file=sys.stderr); sys.exit(3)"],
        10,
    )

    assert isinstance(outcome, Completed)
    assert outcome.exit_code == 3
    assert not outcome.ok
    assert outcome.stdout.strip() == "hello"
    assert outcome.stderr.strip() == "oops"


def test_timeout_kills_process_and_keeps_partial_output() -> None:
    script = "import sys, time; print('started', flush=True); time.sleep(30)"
    start = time.monotonic()
    outcome = _run(["-c", script], 0.5)
    elapsed = time.monotonic() - start

    assert isinstance(outcome, TimedOut)
    assert not hasattr(outcome, "exit_code")
    assert outcome.stdout.strip() == "started"
    assert elapsed < 10


def test_large_output_does_not_block_on_pipe() -> None:
    script = "import sys; sys.stdout.write('x' * 1_000_000); sys.stderr.write('y' * 500_000)"
    outcome = _run(["-c", script], 20)

    assert isinstance(outcome, Completed)
    assert outcome.exit_code == 0
    assert len(outcome.stdout_bytes) == 1_000_000
    assert len(outcome.stderr_bytes) == 500_000


def test_stdin_writer_payload_reaches_process() -> None:
    def _writer(stdin: asyncio.StreamWriter) -> None:
        stdin.write(b"piped payload")

    outcome = _run(
        ["-c", "import sys; sys.stdout.write(sys.stdin.read().upper())"],
        10,
        stdin_writer=_writer,
    )

    assert isinstance(outcome, Completed)
    assert outcome.stdout == "PIPED PAYLOAD"


def test_working_directory_is_used(tmp_path: Path) -> None:
    outcome = _run(["-c", "import os; print(os.getcwd())"], 10, cwd=tmp_path)

    assert isinstance(outcome, Completed)
    assert Path(outcome.stdout.strip()).resolve() == tmp_path.resolve()


def test_missing_binary_raises_spawn_error(tmp_path: Path) -> None:
    runner = TimedProcessRunner()
    with pytest.raises(SpawnError):
        asyncio.run(runner.run(str(tmp_path / "no-such-tool"), [], 5))


def test_non_positive_timeout_is_rejected() -> None:
    with pytest.raises(InvalidArgument):
        _run(["-c", "pass"], 0)


def test_cancelled_run_reaps_child_and_leaves_no_tasks(tmp_path: Path) -> None:
    pid_file = tmp_path / "pid"
    script = f"import os, time; open({str(pid_file)!r}, 'w').write(str(os.getpid())); time.sleep(30)"

    async def _run() -> list[asyncio.Task]:
        task = asyncio.create_task(TimedProcessRunner().run(PY, ["-c", script], 20))
        for _ in range(100):
            if pid_file.exists() and pid_file.read_text():
                break
            await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]

    start = time.monotonic()
    leftover = asyncio.run(_run())

    assert leftover == []
    assert time.monotonic() - start < 10
    with pytest.raises(ProcessLookupError):
        os.kill(int(pid_file.read_text()), 0)
