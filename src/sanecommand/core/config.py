"""Runner configuration.

Provides the defaults the runner and the daemon fall back to when an
option is left unset, with precedence:
1. Environment variables (highest, including a project ``.env`` file)
2. Project config (.sanecommand/config.json)
3. Defaults (lowest)
"""

import json
import os
import signal
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from sanecommand.core.exceptions import ConfigurationError

DEFAULT_MAX_BUFFER = 10 * 1024 * 1024
DEFAULT_KILL_SIGNAL = "SIGTERM"
DEFAULT_ENCODING = "utf-8"


def resolve_signal(value: str | int | signal.Signals) -> signal.Signals:
    """Map a signal name, number or enum member to ``signal.Signals``.

    Names are accepted with or without the ``SIG`` prefix, in any case.

    Raises:
        ConfigurationError: If the value names no signal on this platform
    """
    if isinstance(value, signal.Signals):
        return value

    if isinstance(value, int):
        try:
            return signal.Signals(value)
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown signal number: {value}", key="kill_signal", reason="unknown"
            ) from e

    name = str(value).strip().upper()
    if not name.startswith("SIG"):
        name = f"SIG{name}"
    try:
        return signal.Signals[name]
    except KeyError as e:
        raise ConfigurationError(
            f"Unknown signal: {value}", key="kill_signal", reason="unknown"
        ) from e


@dataclass
class RunnerConfig:
    """Fallback values for options the caller leaves unset."""

    max_buffer: int = DEFAULT_MAX_BUFFER
    kill_signal: str = DEFAULT_KILL_SIGNAL
    encoding: str = DEFAULT_ENCODING

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_buffer < 1:
            raise ConfigurationError(
                f"max_buffer must be >= 1, got {self.max_buffer}", key="max_buffer"
            )
        resolve_signal(self.kill_signal)
        if not self.encoding:
            raise ConfigurationError("encoding must not be empty", key="encoding")

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunnerConfig":
        """Create config from dictionary, ignoring unknown keys."""
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered)


def load_project_config(project_root: Path | None = None) -> RunnerConfig | None:
    """Load project-specific configuration from .sanecommand/config.json.

    Args:
        project_root: Root directory to search for .sanecommand/config.json
                     (default: current directory)

    Returns:
        RunnerConfig if config file exists, None otherwise

    Raises:
        ConfigurationError: If config file is invalid JSON
    """
    if project_root is None:
        project_root = Path.cwd()

    config_path = project_root / ".sanecommand" / "config.json"

    if not config_path.exists():
        return None

    try:
        with config_path.open() as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in project config: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to load project config: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError("Project config must be a JSON object")
    return RunnerConfig.from_dict(data)


def load_env_overrides() -> dict[str, Any]:
    """Load configuration overrides from environment variables.

    Supported environment variables:
    - SANECOMMAND_MAX_BUFFER: Per-stream capture limit in bytes
    - SANECOMMAND_KILL_SIGNAL: Default kill signal name
    - SANECOMMAND_ENCODING: Default output encoding

    Returns:
        Dictionary of configuration overrides
    """
    overrides: dict[str, Any] = {}

    if max_buffer_str := os.getenv("SANECOMMAND_MAX_BUFFER"):
        try:
            overrides["max_buffer"] = int(max_buffer_str)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid SANECOMMAND_MAX_BUFFER: {max_buffer_str}", key="max_buffer"
            ) from e

    if kill_signal := os.getenv("SANECOMMAND_KILL_SIGNAL"):
        overrides["kill_signal"] = kill_signal

    if encoding := os.getenv("SANECOMMAND_ENCODING"):
        overrides["encoding"] = encoding

    return overrides


def merge_configs(
    base: RunnerConfig,
    project: RunnerConfig | None = None,
    env_overrides: dict[str, Any] | None = None,
) -> RunnerConfig:
    """Merge configurations with precedence: env > project > base.

    Project values only override base values when they differ from the defaults.
    """
    merged = base.to_dict()
    defaults = RunnerConfig().to_dict()

    if project:
        for key, value in project.to_dict().items():
            if value != defaults.get(key):
                merged[key] = value

    if env_overrides:
        merged.update(env_overrides)

    return RunnerConfig.from_dict(merged)


def load_config(project_root: Path | None = None, use_dotenv: bool = True) -> RunnerConfig:
    """Load and merge all configuration sources.

    Args:
        project_root: Project root directory (default: current directory)
        use_dotenv: Load ``<project_root>/.env`` into the environment first;
            variables already set are left alone

    Returns:
        Merged configuration

    Raises:
        ConfigurationError: If any config source is invalid
    """
    if project_root is None:
        project_root = Path.cwd()

    if use_dotenv:
        load_dotenv(project_root / ".env", override=False)

    project_config = load_project_config(project_root)
    env_overrides = load_env_overrides()

    return merge_configs(RunnerConfig(), project_config, env_overrides)
