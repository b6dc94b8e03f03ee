"""Process executors.

- CommandRunner: one-shot commands run to completion through the shell
- Daemon: supervised long-running child processes
"""

from sanecommand.core.executors.daemon import Daemon, DaemonState
from sanecommand.core.executors.runner import CommandResult, CommandRunner, run

__all__ = ["CommandResult", "CommandRunner", "Daemon", "DaemonState", "run"]
