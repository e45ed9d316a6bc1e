"""Tests for subprocess helpers."""

import asyncio

import pytest

from barwatch.errors import CommandFailed
from barwatch.process import run_checked, run_command, spawn_group, terminate_group
from conftest import pid_alive


@pytest.mark.asyncio
async def test_run_command_captures_output():
    """stdout, stderr and exit code are captured."""
    result = await run_command(["sh", "-c", "echo out; echo err >&2; exit 2"])

    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert result.exit_code == 2
    assert not result.ok


@pytest.mark.asyncio
async def test_run_checked_returns_stdout():
    """A zero exit returns stdout."""
    assert await run_checked(["echo", "hello"]) == "hello\n"


@pytest.mark.asyncio
async def test_run_checked_raises_command_failed():
    """A non-zero exit raises with the exit code and stderr."""
    with pytest.raises(CommandFailed) as exc_info:
        await run_checked(["sh", "-c", "echo nope >&2; exit 4"])

    assert exc_info.value.exit_code == 4
    assert exc_info.value.stderr == "nope\n"
    assert "exit code 4" in str(exc_info.value)


@pytest.mark.asyncio
async def test_run_command_missing_executable():
    """An unknown executable raises OSError."""
    with pytest.raises(OSError):
        await run_command(["/nonexistent/barwatch-query-binary"])


@pytest.mark.asyncio
async def test_terminate_group_sigterm():
    """A cooperative child exits on SIGTERM."""
    proc = await spawn_group(["sleep", "30"])

    code = await terminate_group(proc, timeout=2.0)

    assert code < 0
    assert not pid_alive(proc.pid)


@pytest.mark.asyncio
async def test_terminate_group_escalates_to_sigkill(tmp_path):
    """A child ignoring SIGTERM is killed after the timeout."""
    ready = tmp_path / "ready"
    proc = await spawn_group(
        ["sh", "-c", f"trap '' TERM; touch {ready}; while true; do sleep 0.1; done"]
    )
    for _ in range(100):
        if ready.exists():
            break
        await asyncio.sleep(0.02)

    code = await asyncio.wait_for(terminate_group(proc, timeout=0.2), timeout=5.0)

    assert code == -9


@pytest.mark.asyncio
async def test_terminate_group_on_exited_process():
    """An already-exited child returns its exit code."""
    proc = await spawn_group(["true"])
    await proc.wait()

    assert await terminate_group(proc) == 0


@pytest.mark.asyncio
async def test_run_command_cancel_kills_child(tmp_path):
    """Cancelling a one-shot command does not leave the child running."""
    pid_file = tmp_path / "child.pid"
    task = asyncio.create_task(
        run_command(["sh", "-c", f"echo $$ > {pid_file}; exec sleep 30"])
    )
    for _ in range(100):
        if pid_file.exists() and pid_file.read_text().strip():
            break
        await asyncio.sleep(0.02)
    child_pid = int(pid_file.read_text().strip())

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=5.0)

    assert not pid_alive(child_pid)
