"""
sane-command

Run external programs from async Python: one-shot commands that return
their output, and supervised daemons with an explicit start/stop lifecycle.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from sanecommand.core.config import RunnerConfig, load_config
from sanecommand.core.exceptions import (
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
)
from sanecommand.core.executors.daemon import Daemon, DaemonState
from sanecommand.core.executors.runner import CommandResult, CommandRunner, run
from sanecommand.core.options import CommandOptions, DaemonOptions, Options
from sanecommand.core.service import Service

# Convenience alias
cmd = run

__all__ = [
    # Version
    "__version__",
    # Executors
    "CommandResult",
    "CommandRunner",
    "Daemon",
    "DaemonState",
    "Service",
    "cmd",
    "run",
    # Options and configuration
    "CommandOptions",
    "DaemonOptions",
    "Options",
    "RunnerConfig",
    "load_config",
    # Exceptions
    "SaneCommandException",
    "LaunchError",
    "NonZeroExitError",
    "StderrPolicyError",
    "CommandTimeoutError",
    "OutputLimitError",
    "UnexpectedExitError",
    "DaemonStateError",
    "DaemonStopError",
    "ConfigurationError",
]
