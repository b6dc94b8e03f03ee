"""Supervised long-running subprocess.

You run a daemon just for its side effects (not its stdin, stdout or
stderr) and need to control its lifetime. This is handy in test suites
that run an external server for the duration of the suite and stop it at
the end:

    daemon = Daemon(["redis-server", "--port", "6380"])
    await daemon.start()
    ...
    await daemon.stop()  # raises if redis died on its own meanwhile

The first failure (launch error or unexpected exit) is latched in
``daemon.error`` and never overwritten. With ``emit_errors`` it is also
published on ``daemon.errors`` as soon as it happens.
"""

import asyncio
import signal
from collections.abc import Sequence
from enum import Enum

from sanecommand.core.config import RunnerConfig, load_config, resolve_signal
from sanecommand.core.escape import escape_each
from sanecommand.core.events import ErrorChannel, ErrorHandler
from sanecommand.core.exceptions import (
    DaemonStateError,
    DaemonStopError,
    LaunchError,
    UnexpectedExitError,
)
from sanecommand.core.executors.runner import describe_returncode, signal_process_group
from sanecommand.core.logger import CommandLogger
from sanecommand.core.options import DaemonOptions
from sanecommand.core.service import Service

logger = CommandLogger()


class DaemonState(Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


class Daemon(Service):
    """A child process supervised for the duration of a start/stop window.

    Lifecycle: CREATED -> RUNNING -> STOPPED. Each transition happens once;
    calling ``start``/``stop`` out of order raises DaemonStateError.

    The child leads its own process group and ``stop`` signals the whole
    group, so programs started by a ``shell=True`` command go down with it.
    Without a ``config``, one is loaded from the environment and
    ``.sanecommand/config.json`` in the current directory.
    """

    def __init__(
        self,
        command: Sequence[str],
        options: DaemonOptions | None = None,
        config: RunnerConfig | None = None,
    ) -> None:
        if not command:
            raise ValueError("command must contain at least the program name")

        self.options = options or DaemonOptions()
        self.config = config or load_config(use_dotenv=False)
        self.kill_signal: signal.Signals = resolve_signal(
            self.options.kill_signal or self.config.kill_signal
        )
        if self.options.shell_escape is not False:
            self.command: tuple[str, ...] = escape_each(command)
        else:
            self.command = tuple(command)

        self.process: asyncio.subprocess.Process | None = None
        self.error: BaseException | None = None
        self.errors = ErrorChannel()
        self._state = DaemonState.CREATED
        self._watcher: asyncio.Task[None] | None = None

    @property
    def state(self) -> DaemonState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    @property
    def running(self) -> bool:
        """True while the child is alive and the daemon has not been stopped."""
        return (
            self._state is DaemonState.RUNNING
            and self.process is not None
            and self.process.returncode is None
        )

    @property
    def command_line(self) -> str:
        return " ".join(self.command)

    def on_error(self, handler: ErrorHandler) -> None:
        """Subscribe ``handler`` to errors published on ``self.errors``."""
        self.errors.subscribe(handler)

    async def start(self) -> None:
        """Spawn the child and begin watching it.

        Does not wait for the child to become ready. A launch failure does
        not raise here; it is latched and surfaces on ``stop()`` (and on
        ``errors`` when ``emit_errors`` is set).
        """
        if self._state is not DaemonState.CREATED:
            raise DaemonStateError(
                f"Cannot start daemon in state {self._state.value}",
                state=self._state.value,
                operation="start",
            )
        self._state = DaemonState.RUNNING

        stdio = asyncio.subprocess.DEVNULL
        try:
            if self.options.shell:
                self.process = await asyncio.create_subprocess_shell(
                    self.command_line,
                    stdin=stdio,
                    stdout=stdio,
                    stderr=stdio,
                    start_new_session=True,
                    **self.options.spawn_kwargs(),
                )
            else:
                self.process = await asyncio.create_subprocess_exec(
                    *self.command,
                    stdin=stdio,
                    stdout=stdio,
                    stderr=stdio,
                    start_new_session=True,
                    **self.options.spawn_kwargs(),
                )
        except (OSError, ValueError) as e:
            error = LaunchError(
                f"Failed to start daemon: {e}", command=self.command_line, reason=str(e)
            )
            error.__cause__ = e
            self._latch(error)
            return

        # Watch for exit before yielding to the loop so an early exit is never missed
        self._watcher = asyncio.create_task(self._watch(self.process))
        logger.info("daemon_started", command=self.command_line, pid=self.process.pid)

    async def stop(self) -> None:
        """Stop the child with the configured kill signal and wait for it to exit.

        Raises:
            DaemonStateError: If the daemon is not running
            SaneCommandException: The latched error, if the daemon already failed;
                the child is not signalled in that case
            DaemonStopError: If the signal could not be delivered
        """
        if self._state is not DaemonState.RUNNING:
            raise DaemonStateError(
                f"Cannot stop daemon in state {self._state.value}",
                state=self._state.value,
                operation="stop",
            )
        self._state = DaemonState.STOPPED

        try:
            # Detach first so the exit we are about to cause is not reported as unexpected
            await self._detach()

            process = self.process
            if self.error is None and process is not None and process.returncode is not None:
                # Exited before the watcher got to run
                exit_code, signal_name = describe_returncode(process.returncode)
                self.error = UnexpectedExitError.from_exit(exit_code, signal_name)

            if self.error is not None:
                logger.info("daemon_stop_failed", command=self.command_line, error=str(self.error))
                raise self.error

            if process is None:
                raise DaemonStateError(
                    "Daemon has no process to stop", state=self._state.value, operation="stop"
                )
            logger.debug(
                "daemon_stopping",
                command=self.command_line,
                pid=process.pid,
                signal=self.kill_signal.name,
            )
            try:
                signal_process_group(process, self.kill_signal)
            except ProcessLookupError as e:
                raise DaemonStopError(
                    f"Failed to signal daemon: {e}", command=self.command_line, reason=str(e)
                ) from e

            await process.wait()
            logger.info(
                "daemon_stopped",
                command=self.command_line,
                pid=process.pid,
                returncode=process.returncode,
            )
        finally:
            self.errors.close()

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        exit_code, signal_name = describe_returncode(returncode)
        if self.error is None:
            logger.warn(
                "daemon_unexpected_exit",
                command=self.command_line,
                pid=process.pid,
                exit_code=exit_code,
                signal=signal_name,
            )
            self._latch(UnexpectedExitError.from_exit(exit_code, signal_name))

    async def _detach(self) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is None or watcher.done():
            return
        watcher.cancel()
        try:
            await watcher
        except asyncio.CancelledError:
            # Only the watcher was cancelled; a cancel aimed at stop() propagates
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise

    def _latch(self, error: BaseException) -> None:
        """Record the first error; later errors are logged and dropped."""
        if self.error is not None:
            logger.debug("daemon_error_ignored", error=str(error), latched=str(self.error))
            return

        self.error = error
        logger.warn("daemon_error", command=self.command_line, error=str(error))
        if self.options.emit_errors:
            self.errors.publish(error)
