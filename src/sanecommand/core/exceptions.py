"""Exception hierarchy with error codes for sane-command.

Every failure raised by the runner or the daemon is a SaneCommandException
subclass carrying an error code and structured metadata for logging.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

# Standard error codes
E_LAUNCH = "E_LAUNCH"
E_EXIT = "E_EXIT"
E_STDERR = "E_STDERR"
E_TIMEOUT = "E_TIMEOUT"
E_MAX_BUFFER = "E_MAX_BUFFER"
E_UNEXPECTED_EXIT = "E_UNEXPECTED_EXIT"
E_STATE = "E_STATE"
E_STOP = "E_STOP"
E_VALIDATION = "E_VALIDATION"


def _command_text(command: Sequence[str] | str) -> str:
    if isinstance(command, str):
        return command
    return " ".join(command)


@dataclass
class SaneCommandException(Exception):  # noqa: N818
    """Base exception for all sane-command errors.

    Provides structured error handling with error codes and metadata for
    consistent error reporting across the runner and the daemon.
    """

    message: str
    error_code: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Return human-readable error message."""
        return self.message

    def __post_init__(self) -> None:
        """Initialize the exception with the message."""
        super().__init__(self.message)


@dataclass
class LaunchError(SaneCommandException):
    """The program could not be started (not found, permission denied, bad cwd)."""

    command: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        if not self.error_code:
            self.error_code = E_LAUNCH
        if self.command:
            self.metadata["command"] = self.command
        if self.reason:
            self.metadata["reason"] = self.reason
        super().__post_init__()


@dataclass
class NonZeroExitError(SaneCommandException):
    """A one-shot command finished with a failing exit status.

    ``exit_code`` is None and ``signal`` holds the signal name when the
    process was terminated by a signal.
    """

    command: str = ""
    exit_code: int | None = None
    signal: str | None = None
    stdout: str = ""
    stderr: str = ""

    def __post_init__(self) -> None:
        if not self.error_code:
            self.error_code = E_EXIT
        if self.command:
            self.metadata["command"] = self.command
        self.metadata["exit_code"] = self.exit_code
        if self.signal:
            self.metadata["signal"] = self.signal
        super().__post_init__()


@dataclass
class StderrPolicyError(SaneCommandException):
    """A command exited cleanly but wrote to stderr while stderr checking is on."""

    command: str = ""
    stderr: str = ""

    def __post_init__(self) -> None:
        if not self.error_code:
            self.error_code = E_STDERR
        if self.command:
            self.metadata["command"] = self.command
        super().__post_init__()

    @classmethod
    def from_stderr(cls, command: Sequence[str] | str, stderr: str) -> "StderrPolicyError":
        """Build the error with the canonical ``command failed: <stderr>`` message."""
        return cls(
            message=f"command failed: {stderr}",
            command=_command_text(command),
            stderr=stderr,
        )


@dataclass
class CommandTimeoutError(SaneCommandException):
    """A one-shot command did not finish within its timeout."""

    command: str = ""
    timeout: float = 0.0

    def __post_init__(self) -> None:
        if not self.error_code:
            self.error_code = E_TIMEOUT
        if self.command:
            self.metadata["command"] = self.command
        if self.timeout:
            self.metadata["timeout"] = self.timeout
        super().__post_init__()


@dataclass
class OutputLimitError(SaneCommandException):
    """A captured stream grew beyond ``max_buffer`` bytes."""

    command: str = ""
    max_buffer: int = 0
    stream: str = ""

    def __post_init__(self) -> None:
        if not self.error_code:
            self.error_code = E_MAX_BUFFER
        if self.command:
            self.metadata["command"] = self.command
        if self.max_buffer:
            self.metadata["max_buffer"] = self.max_buffer
        if self.stream:
            self.metadata["stream"] = self.stream
        super().__post_init__()


@dataclass
class UnexpectedExitError(SaneCommandException):
    """A supervised daemon terminated without being asked to."""

    exit_code: int | None = None
    signal: str | None = None

    def __post_init__(self) -> None:
        if not self.error_code:
            self.error_code = E_UNEXPECTED_EXIT
        self.metadata["exit_code"] = self.exit_code
        self.metadata["signal"] = self.signal
        super().__post_init__()

    @classmethod
    def from_exit(cls, exit_code: int | None, signal: str | None) -> "UnexpectedExitError":
        """Build the error with the canonical ``Unexpected exit`` message."""
        return cls(
            message=f"Unexpected exit, code: {exit_code}, signal: {signal}",
            exit_code=exit_code,
            signal=signal,
        )


@dataclass
class DaemonStateError(SaneCommandException):
    """A lifecycle operation was called in a state that does not allow it."""

    state: str = ""
    operation: str = ""

    def __post_init__(self) -> None:
        if not self.error_code:
            self.error_code = E_STATE
        if self.state:
            self.metadata["state"] = self.state
        if self.operation:
            self.metadata["operation"] = self.operation
        super().__post_init__()


@dataclass
class DaemonStopError(SaneCommandException):
    """The kill signal could not be delivered to a running daemon."""

    command: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        if not self.error_code:
            self.error_code = E_STOP
        if self.command:
            self.metadata["command"] = self.command
        if self.reason:
            self.metadata["reason"] = self.reason
        super().__post_init__()


@dataclass
class ConfigurationError(SaneCommandException):
    """Error in options or runner configuration.

    Raised for invalid option values, unknown signals,
    or configuration file problems.
    """

    key: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        """Initialize with configuration-specific metadata."""
        if not self.error_code:
            self.error_code = E_VALIDATION
        if self.key:
            self.metadata["config_key"] = self.key
        if self.reason:
            self.metadata["reason"] = self.reason
        super().__post_init__()


def format_error_for_user(exception: SaneCommandException) -> str:
    """Format exception for user-friendly display.

    Args:
        exception: The sane-command exception to format

    Returns:
        Human-readable error message without internal details
    """
    if isinstance(exception, LaunchError):
        if exception.command:
            return f"Could not start '{exception.command}': {exception.message}"
        return f"Launch failed: {exception.message}"

    if isinstance(exception, NonZeroExitError):
        if exception.signal:
            return f"Command '{exception.command}' killed by {exception.signal}"
        return f"Command '{exception.command}' exited with code {exception.exit_code}"

    if isinstance(exception, CommandTimeoutError):
        return f"Command '{exception.command}' timed out after {exception.timeout} seconds"

    if isinstance(exception, OutputLimitError):
        return (
            f"Command '{exception.command}' exceeded {exception.max_buffer} bytes "
            f"on {exception.stream or 'output'}"
        )

    if isinstance(exception, ConfigurationError):
        if exception.key:
            return f"Configuration error '{exception.key}': {exception.message}"
        return f"Configuration error: {exception.message}"

    return str(exception.message)


def format_error_for_log(exception: SaneCommandException) -> dict[str, Any]:
    """Format exception for structured logging.

    Args:
        exception: The sane-command exception to format

    Returns:
        Dictionary with structured error information for logs
    """
    log_data: dict[str, Any] = {
        "error_type": type(exception).__name__,
        "message": exception.message,
        "error_code": exception.error_code,
    }

    if exception.metadata:
        log_data["metadata"] = exception.metadata

    if isinstance(exception, NonZeroExitError | StderrPolicyError):
        if exception.stderr:
            log_data["stderr"] = exception.stderr

    elif isinstance(exception, ConfigurationError):
        if exception.key:
            log_data["config_key"] = exception.key
        if exception.reason:
            log_data["reason"] = exception.reason

    return log_data
