"""Option shapes shared by the command runner and the daemon.

Boolean flags that default to "on" (``shell_escape``, ``check_error``) are
three-state: ``None`` means unset and behaves like ``True``. Only an
explicit ``False`` turns them off.
"""

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields
from typing import Any

from sanecommand.core.config import resolve_signal
from sanecommand.core.exceptions import ConfigurationError

EnvLike = Mapping[str, str] | Sequence[tuple[str, str]] | Sequence[Sequence[str]]


def normalize_env(env: EnvLike | None) -> dict[str, str] | None:
    """Turn a mapping or an ordered list of key/value pairs into a dict.

    Later pairs win when a key repeats, matching how the pairs would be
    applied one after another.

    Raises:
        ConfigurationError: If a pair does not have exactly two items
    """
    if env is None:
        return None
    if isinstance(env, Mapping):
        return {str(k): str(v) for k, v in env.items()}

    result: dict[str, str] = {}
    for pair in env:
        if isinstance(pair, str) or len(pair) != 2:
            raise ConfigurationError(
                f"env entries must be (key, value) pairs, got {pair!r}", key="env"
            )
        key, value = pair
        result[str(key)] = str(value)
    return result


@dataclass
class Options:
    """Options common to one-shot commands and daemons.

    Attributes:
        shell_escape: Escape arguments before shell interpretation (unset = on)
        shell: Run through a shell; a string names the shell binary
        cwd: Working directory for the child
        env: Complete child environment, as a mapping or ordered pairs
        uid: User id to run the child as
        gid: Group id to run the child as
    """

    shell_escape: bool | None = None
    shell: bool | str | None = None
    cwd: str | os.PathLike[str] | None = None
    env: EnvLike | None = None
    uid: int | None = None
    gid: int | None = None

    def __post_init__(self) -> None:
        """Validate option values."""
        for key in ("uid", "gid"):
            value = getattr(self, key)
            if value is not None and value < 0:
                raise ConfigurationError(f"{key} must be >= 0, got {value}", key=key)
        normalize_env(self.env)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Options":
        """Create options from dictionary, ignoring unknown keys."""
        valid_keys = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in valid_keys})

    def spawn_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``asyncio.create_subprocess_*``."""
        kwargs: dict[str, Any] = {}
        if self.cwd is not None:
            kwargs["cwd"] = self.cwd
        env = normalize_env(self.env)
        if env is not None:
            kwargs["env"] = env
        if self.uid is not None:
            kwargs["user"] = self.uid
        if self.gid is not None:
            kwargs["group"] = self.gid
        if isinstance(self.shell, str) and self.shell:
            kwargs["executable"] = self.shell
        return kwargs


@dataclass
class CommandOptions(Options):
    """Options for a one-shot command.

    Unset values fall back to the runner's RunnerConfig.
    """

    check_error: bool | None = None
    max_buffer: int | None = None
    encoding: str | None = None
    kill_signal: str | int | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.max_buffer is not None and self.max_buffer < 1:
            raise ConfigurationError(
                f"max_buffer must be >= 1, got {self.max_buffer}", key="max_buffer"
            )
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(f"timeout must be > 0, got {self.timeout}", key="timeout")
        if self.kill_signal is not None:
            resolve_signal(self.kill_signal)


@dataclass
class DaemonOptions(Options):
    """Options for a supervised daemon.

    The child's stdin, stdout and stderr are always discarded.
    """

    emit_errors: bool = False
    kill_signal: str | int | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.kill_signal is not None:
            resolve_signal(self.kill_signal)
