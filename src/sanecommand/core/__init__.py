"""Core modules for sane-command.

Exceptions, logging, configuration, option shapes, argument escaping, the
error channel and the service interface shared by the executors.
"""

from .config import RunnerConfig, load_config, resolve_signal
from .escape import build_command_line, escape_arg, escape_command, escape_each
from .events import ErrorChannel
from .exceptions import (
    # Error codes
    E_EXIT,
    E_LAUNCH,
    E_MAX_BUFFER,
    E_STATE,
    E_STDERR,
    E_STOP,
    E_TIMEOUT,
    E_UNEXPECTED_EXIT,
    E_VALIDATION,
    CommandTimeoutError,
    ConfigurationError,
    DaemonStateError,
    DaemonStopError,
    LaunchError,
    NonZeroExitError,
    OutputLimitError,
    SaneCommandException,
    StderrPolicyError,
    UnexpectedExitError,
    format_error_for_log,
    format_error_for_user,
)
from .options import CommandOptions, DaemonOptions, Options
from .service import Service

__all__ = [
    # Error codes
    "E_EXIT",
    "E_LAUNCH",
    "E_MAX_BUFFER",
    "E_STATE",
    "E_STDERR",
    "E_STOP",
    "E_TIMEOUT",
    "E_UNEXPECTED_EXIT",
    "E_VALIDATION",
    # Exception classes
    "CommandTimeoutError",
    "ConfigurationError",
    "DaemonStateError",
    "DaemonStopError",
    "LaunchError",
    "NonZeroExitError",
    "OutputLimitError",
    "SaneCommandException",
    "StderrPolicyError",
    "UnexpectedExitError",
    # Error formatting utilities
    "format_error_for_log",
    "format_error_for_user",
    # Options and configuration
    "CommandOptions",
    "DaemonOptions",
    "Options",
    "RunnerConfig",
    "load_config",
    "resolve_signal",
    # Escaping
    "build_command_line",
    "escape_arg",
    "escape_command",
    "escape_each",
    # Other core components
    "ErrorChannel",
    "Service",
]
