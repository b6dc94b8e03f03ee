"""Unit tests for the supervised Daemon."""

import asyncio
import os
import signal

import pytest

from sanecommand.core.exceptions import (
    DaemonStateError,
    LaunchError,
    UnexpectedExitError,
)
from sanecommand.core.executors.daemon import Daemon, DaemonState
from sanecommand.core.options import DaemonOptions


def process_gone(pid: int) -> bool:
    """Return True if no process with ``pid`` exists or it is a zombie."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    try:
        with open(f"/proc/{pid}/stat") as f:
            state = f.read().rsplit(")", 1)[1].split()[0]
    except (OSError, IndexError):
        return True
    return state in ("Z", "X")


async def wait_gone(pid: int, timeout: float = 2.0) -> bool:
    """Poll until ``pid`` is gone or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not process_gone(pid):
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.05)
    return True


async def read_pidfile(path, timeout: float = 2.0) -> int:
    """Wait for a shell to write a background pid into ``path``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        if path.exists() and path.read_text().strip():
            return int(path.read_text())
        if loop.time() > deadline:
            raise TimeoutError(f"{path} was never written")
        await asyncio.sleep(0.05)


async def wait_for_error(daemon: Daemon, timeout: float = 5.0) -> BaseException:
    """Wait until the daemon publishes an error on its channel."""
    received = asyncio.Event()
    errors: list[BaseException] = []

    def handler(err):
        errors.append(err)
        received.set()

    daemon.on_error(handler)
    await asyncio.wait_for(received.wait(), timeout=timeout)
    return errors[0]


class TestDaemonLifecycle:
    """Test starting and stopping daemons."""

    @pytest.mark.asyncio
    async def test_runs_and_stops(self):
        """Test a long-running daemon stops cleanly."""
        d = Daemon(["sleep", "3600"])
        await d.start()
        await asyncio.sleep(0.1)

        assert d.running
        pid = d.pid
        await d.stop()

        assert d.state is DaemonState.STOPPED
        assert d.error is None
        assert not d.running
        assert process_gone(pid)

    @pytest.mark.asyncio
    async def test_stop_does_not_emit(self):
        """Test the exit caused by stop() is never published as an error."""
        seen = []
        d = Daemon(["sleep", "3600"], DaemonOptions(emit_errors=True))
        d.on_error(seen.append)

        await d.start()
        await asyncio.sleep(0.1)
        await d.stop()
        await asyncio.sleep(0.1)

        assert seen == []
        assert d.error is None

    @pytest.mark.asyncio
    async def test_custom_kill_signal(self):
        """Test stop() sends the configured signal."""
        d = Daemon(["sleep", "3600"], DaemonOptions(kill_signal="SIGKILL"))
        await d.start()
        await d.stop()

        assert d.process is not None
        assert d.process.returncode == -9

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        """Test async with starts and stops the daemon."""
        async with Daemon(["sleep", "3600"]) as d:
            assert d.state is DaemonState.RUNNING
            pid = d.pid

        assert d.state is DaemonState.STOPPED
        assert process_gone(pid)

    @pytest.mark.asyncio
    async def test_shell_mode(self):
        """Test shell=True runs the joined command through the shell."""
        d = Daemon(["exec sleep 30"], DaemonOptions(shell=True, shell_escape=False))
        await d.start()
        await asyncio.sleep(0.1)

        assert d.running
        await d.stop()

    @pytest.mark.asyncio
    async def test_shell_mode_stops_background_children(self, tmp_path):
        """Test stop() takes down programs the shell started, not only the shell."""
        pidfile = tmp_path / "child.pid"
        d = Daemon(
            [f"sleep 30 & echo $! > {pidfile}; wait"],
            DaemonOptions(shell=True, shell_escape=False),
        )
        await d.start()
        child = await read_pidfile(pidfile)

        await asyncio.wait_for(d.stop(), timeout=5)

        assert d.error is None
        assert await wait_gone(child)

    @pytest.mark.asyncio
    async def test_kill_signal_from_environment(self, monkeypatch):
        """Test a daemon without explicit config picks up SANECOMMAND_KILL_SIGNAL."""
        monkeypatch.setenv("SANECOMMAND_KILL_SIGNAL", "SIGKILL")
        d = Daemon(["sleep", "3600"])

        assert d.kill_signal.name == "SIGKILL"
        await d.start()
        await d.stop()

        assert d.process is not None
        assert d.process.returncode == -9

    @pytest.mark.asyncio
    async def test_stop_can_be_cancelled(self):
        """Test cancelling stop() while it detaches the watcher propagates."""
        d = Daemon(["sleep", "3600"])
        await d.start()
        await asyncio.sleep(0.1)

        stop_task = asyncio.create_task(d.stop())
        await asyncio.sleep(0)
        stop_task.cancel()

        try:
            with pytest.raises(asyncio.CancelledError):
                await asyncio.wait_for(stop_task, timeout=2)
            assert d.running is False
            assert d.process is not None
            assert d.process.returncode is None
        finally:
            os.killpg(d.pid, signal.SIGKILL)
            await d.process.wait()


class TestDaemonErrors:
    """Test failure latching and reporting."""

    @pytest.mark.asyncio
    async def test_stop_fails_after_launch_error(self):
        """Test stop() raises when the program could not be started."""
        d = Daemon(["doesnotexist"])
        await d.start()

        with pytest.raises(LaunchError) as exc_info:
            await d.stop()

        assert exc_info.value is not None
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
        assert d.state is DaemonState.STOPPED

    @pytest.mark.asyncio
    async def test_emits_launch_error(self):
        """Test launch errors are published when emit_errors is enabled."""
        seen = []
        d = Daemon(["doesnotexist"], DaemonOptions(emit_errors=True))
        d.on_error(seen.append)

        await d.start()

        assert len(seen) == 1
        assert seen[0] is d.error
        with pytest.raises(LaunchError):
            await d.stop()

    @pytest.mark.asyncio
    async def test_silent_by_default(self):
        """Test errors are latched but not published without emit_errors."""
        seen = []
        d = Daemon(["doesnotexist"])
        d.on_error(seen.append)

        await d.start()

        assert seen == []
        assert isinstance(d.error, LaunchError)
        with pytest.raises(LaunchError):
            await d.stop()

    @pytest.mark.asyncio
    async def test_unexpected_exit_is_emitted(self):
        """Test a child that exits on its own is reported."""
        d = Daemon(["true"], DaemonOptions(emit_errors=True))
        await d.start()

        err = await wait_for_error(d)

        assert isinstance(err, UnexpectedExitError)
        assert err.exit_code == 0
        assert err.signal is None
        assert str(err) == "Unexpected exit, code: 0, signal: None"
        with pytest.raises(UnexpectedExitError):
            await d.stop()

    @pytest.mark.asyncio
    async def test_unexpected_exit_latched_silently(self):
        """Test stop() raises after an unexpected exit without emit_errors."""
        d = Daemon(["sh", "-c", "exit 3"], DaemonOptions(shell_escape=False))
        await d.start()
        await asyncio.sleep(0.5)

        with pytest.raises(UnexpectedExitError) as exc_info:
            await d.stop()

        assert exc_info.value.exit_code == 3

    @pytest.mark.asyncio
    async def test_exit_missed_by_watcher_raises_on_stop(self):
        """Test stop() reports an exit the watcher never saw, without emitting it."""
        seen = []
        d = Daemon(["true"], DaemonOptions(emit_errors=True))
        d.on_error(seen.append)
        await d.start()

        d._watcher.cancel()
        await asyncio.sleep(0)
        await d.process.wait()
        assert d.error is None

        with pytest.raises(UnexpectedExitError) as exc_info:
            await d.stop()

        assert exc_info.value.exit_code == 0
        assert d.error is exc_info.value
        assert seen == []

    @pytest.mark.asyncio
    async def test_first_error_wins(self):
        """Test the latched error is never overwritten."""
        d = Daemon(["true"], DaemonOptions(emit_errors=True))
        await d.start()
        first = await wait_for_error(d)

        d._latch(RuntimeError("later"))

        assert d.error is first
        with pytest.raises(UnexpectedExitError):
            await d.stop()

    @pytest.mark.asyncio
    async def test_escaped_tokens(self):
        """Test each token is escaped individually."""
        d = Daemon(["echo", "a b", "plain"])

        assert d.command == ("echo", "'a b'", "plain")

    def test_empty_command_rejected(self):
        """Test an empty command raises ValueError."""
        with pytest.raises(ValueError):
            Daemon([])


class TestDaemonStateErrors:
    """Test invalid lifecycle transitions."""

    @pytest.mark.asyncio
    async def test_stop_before_start(self):
        d = Daemon(["sleep", "3600"])

        with pytest.raises(DaemonStateError) as exc_info:
            await d.stop()

        assert exc_info.value.operation == "stop"
        assert exc_info.value.state == "created"

    @pytest.mark.asyncio
    async def test_start_twice(self):
        d = Daemon(["sleep", "3600"])
        await d.start()

        with pytest.raises(DaemonStateError):
            await d.start()

        await d.stop()

    @pytest.mark.asyncio
    async def test_restart_after_stop(self):
        d = Daemon(["sleep", "3600"])
        await d.start()
        await d.stop()

        with pytest.raises(DaemonStateError):
            await d.start()

    @pytest.mark.asyncio
    async def test_stop_twice(self):
        d = Daemon(["sleep", "3600"])
        await d.start()
        await d.stop()

        with pytest.raises(DaemonStateError):
            await d.stop()

    @pytest.mark.asyncio
    async def test_channel_closed_after_stop(self):
        d = Daemon(["sleep", "3600"])
        await d.start()
        await d.stop()

        assert d.errors.closed

    @pytest.mark.asyncio
    async def test_stop_without_process_handle(self):
        """Test stop() raises DaemonStateError instead of asserting when the handle is lost."""
        d = Daemon(["sleep", "3600"])
        await d.start()
        process, d.process = d.process, None

        try:
            with pytest.raises(DaemonStateError) as exc_info:
                await d.stop()
            assert exc_info.value.operation == "stop"
        finally:
            os.killpg(process.pid, signal.SIGKILL)
            await process.wait()
