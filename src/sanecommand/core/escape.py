"""Shell argument escaping.

The runner escapes a whole command line before handing it to the shell;
the daemon escapes each token on its own.
"""

import shlex
from collections.abc import Sequence


def escape_arg(arg: str) -> str:
    """Quote a single argument so a POSIX shell reads it as one literal word."""
    return shlex.quote(arg)


def escape_each(args: Sequence[str]) -> tuple[str, ...]:
    """Escape every token individually, keeping them as separate items."""
    return tuple(escape_arg(arg) for arg in args)


def escape_command(args: Sequence[str]) -> str:
    """Escape every argument and join them into one command line."""
    return " ".join(escape_each(args))


def build_command_line(args: Sequence[str], shell_escape: bool | None = None) -> str:
    """Build the command line handed to the shell.

    Escaping is on unless ``shell_escape`` is exactly ``False``; ``None``
    (unset) counts as on.
    """
    if shell_escape is not False:
        return escape_command(args)
    return " ".join(args)
