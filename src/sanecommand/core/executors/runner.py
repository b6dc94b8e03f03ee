"""One-shot command runner.

Runs a command line through the shell, captures its output, and either
returns stdout or raises. Failures are all-or-nothing: a non-zero exit,
a launch failure, a timeout, an oversized stream, or (by default) any
stderr output raises a SaneCommandException subclass.
"""

import asyncio
import os
import signal
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from sanecommand.core.config import RunnerConfig, load_config, resolve_signal
from sanecommand.core.escape import build_command_line
from sanecommand.core.exceptions import (
    CommandTimeoutError,
    LaunchError,
    NonZeroExitError,
    OutputLimitError,
    StderrPolicyError,
)
from sanecommand.core.logger import CommandLogger
from sanecommand.core.options import CommandOptions

logger = CommandLogger()

_READ_CHUNK = 64 * 1024


@dataclass
class CommandResult:
    """Result from command execution.

    Attributes:
        stdout: Standard output, decoded
        stderr: Standard error, decoded
        exit_code: Command exit code (0 = success, negative = killed by signal)
        duration_ms: Execution time in milliseconds
        metadata: Command line, pid and platform details
    """

    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    metadata: dict[str, Any] | None = None


def signal_process_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    """Send ``sig`` to every process in the group led by ``process``.

    Children are spawned with ``start_new_session=True``, so the group id is
    the child's pid and shell grandchildren share it.

    Raises:
        ProcessLookupError: If the group no longer exists
    """
    os.killpg(process.pid, sig)


def describe_returncode(returncode: int) -> tuple[int | None, str | None]:
    """Split an asyncio return code into (exit code, signal name)."""
    if returncode < 0:
        try:
            return None, signal.Signals(-returncode).name
        except ValueError:
            return None, str(-returncode)
    return returncode, None


async def _read_capped(
    stream: asyncio.StreamReader | None,
    limit: int,
    command_line: str,
    stream_name: str,
) -> bytes:
    """Read a pipe to EOF, failing as soon as it passes ``limit`` bytes."""
    if stream is None:
        return b""

    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            raise OutputLimitError(
                f"{stream_name} maxBuffer length exceeded",
                command=command_line,
                max_buffer=limit,
                stream=stream_name,
            )
        chunks.append(chunk)
    return b"".join(chunks)


async def _discard(stream: asyncio.StreamReader | None) -> None:
    if stream is None:
        return
    while await stream.read(_READ_CHUNK):
        pass


class CommandRunner:
    """Execute one-shot commands with ``asyncio.create_subprocess_shell``.

    Options left unset fall back to ``config``. Without one, the config is
    loaded from the environment and ``.sanecommand/config.json`` in the
    current directory.
    """

    def __init__(self, config: RunnerConfig | None = None) -> None:
        self.config = config or load_config(use_dotenv=False)

    async def run(
        self,
        command: Sequence[str],
        options: CommandOptions | None = None,
    ) -> str:
        """Run ``command`` to completion and return its stdout.

        Args:
            command: Program followed by its arguments
            options: Command options (defaults apply when omitted)

        Returns:
            Decoded stdout

        Raises:
            LaunchError: If the shell could not be started
            NonZeroExitError: If the command exited with a non-zero status
            StderrPolicyError: If stderr was written and ``check_error`` is not False
            CommandTimeoutError: If ``timeout`` elapsed
            OutputLimitError: If a stream exceeded ``max_buffer``
        """
        options = options or CommandOptions()
        result = await self.execute(command, options)
        command_line = result.metadata["command"] if result.metadata else ""

        if result.exit_code != 0:
            exit_code, signal_name = describe_returncode(result.exit_code)
            if signal_name:
                message = f"Command failed (signal {signal_name}): {command_line}"
            else:
                message = f"Command failed (exit code {exit_code}): {command_line}"
            if result.stderr:
                message = f"{message}\n{result.stderr}"
            logger.info(
                "command_failed",
                command=command_line,
                exit_code=exit_code,
                signal=signal_name,
            )
            raise NonZeroExitError(
                message,
                command=command_line,
                exit_code=exit_code,
                signal=signal_name,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        if options.check_error is not False and result.stderr:
            logger.info("command_stderr_rejected", command=command_line)
            raise StderrPolicyError.from_stderr(command_line, result.stderr)

        return result.stdout

    async def execute(
        self,
        command: Sequence[str],
        options: CommandOptions | None = None,
    ) -> CommandResult:
        """Run ``command`` and return everything it produced.

        Unlike ``run``, a non-zero exit or stderr output is reported in the
        result rather than raised. Launch failures, timeouts and oversized
        output still raise.
        """
        if not command:
            raise ValueError("command must contain at least the program name")

        options = options or CommandOptions()
        max_buffer = options.max_buffer or self.config.max_buffer
        encoding = options.encoding or self.config.encoding
        kill_signal = resolve_signal(options.kill_signal or self.config.kill_signal)
        command_line = build_command_line(command, options.shell_escape)

        loop = asyncio.get_running_loop()
        start_time = loop.time()

        with logger.operation("command_run", command=command_line):
            try:
                process = await asyncio.create_subprocess_shell(
                    command_line,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    start_new_session=True,
                    **options.spawn_kwargs(),
                )
            except (OSError, ValueError) as e:
                logger.warn("command_launch_failed", command=command_line, error=str(e))
                raise LaunchError(
                    f"Failed to execute command: {e}", command=command_line, reason=str(e)
                ) from e

            logger.debug("command_spawned", command=command_line, pid=process.pid)

            try:
                stdout_data, stderr_data = await asyncio.wait_for(
                    self._communicate(process, max_buffer, command_line),
                    timeout=options.timeout,
                )
            except TimeoutError:
                logger.warn(
                    "command_timeout",
                    command=command_line,
                    timeout=options.timeout,
                    signal=kill_signal.name,
                )
                await self._kill(process, kill_signal)
                raise CommandTimeoutError(
                    f"Command timed out after {options.timeout} seconds",
                    command=command_line,
                    timeout=options.timeout or 0.0,
                ) from None
            except OutputLimitError as e:
                logger.warn(
                    "command_output_limit",
                    command=command_line,
                    stream=e.stream,
                    max_buffer=max_buffer,
                )
                await self._kill(process, kill_signal)
                raise

        duration_ms = int((loop.time() - start_time) * 1000)

        return CommandResult(
            stdout=stdout_data.decode(encoding, errors="replace"),
            stderr=stderr_data.decode(encoding, errors="replace"),
            exit_code=process.returncode if process.returncode is not None else 0,
            duration_ms=duration_ms,
            metadata={
                "command": command_line,
                "pid": process.pid,
                "uid": options.uid,
                "gid": options.gid,
                "platform": sys.platform,
            },
        )

    async def _communicate(
        self,
        process: asyncio.subprocess.Process,
        max_buffer: int,
        command_line: str,
    ) -> tuple[bytes, bytes]:
        """Drain stdout and stderr concurrently, then wait for exit."""
        stdout_task = asyncio.create_task(
            _read_capped(process.stdout, max_buffer, command_line, "stdout")
        )
        stderr_task = asyncio.create_task(
            _read_capped(process.stderr, max_buffer, command_line, "stderr")
        )
        try:
            stdout_data, stderr_data = await asyncio.gather(stdout_task, stderr_task)
            await process.wait()
        finally:
            pending = [task for task in (stdout_task, stderr_task) if not task.done()]
            for task in pending:
                task.cancel()
            # Readers must be finished before the streams are read again in _kill
            await asyncio.gather(*pending, return_exceptions=True)
        return stdout_data, stderr_data

    async def _kill(self, process: asyncio.subprocess.Process, kill_signal: signal.Signals) -> None:
        """Signal the command's process group and wait for it to go away.

        Both pipes are drained to EOF while waiting: asyncio only reports the
        exit once every pipe has closed, and a reader paused on a full buffer
        never sees EOF.
        """
        try:
            signal_process_group(process, kill_signal)
        except ProcessLookupError:
            logger.debug("command_already_exited", pid=process.pid)
        await asyncio.gather(
            _discard(process.stdout), _discard(process.stderr), process.wait()
        )


async def run(command: Sequence[str], options: CommandOptions | None = None) -> str:
    """Run ``command`` with a default CommandRunner. See ``CommandRunner.run``."""
    return await CommandRunner().run(command, options)
