"""Unit tests for option shapes."""

import pytest

from sanecommand.core.exceptions import ConfigurationError
from sanecommand.core.options import CommandOptions, DaemonOptions, Options, normalize_env


class TestNormalizeEnv:
    """Test env normalization."""

    def test_none(self):
        assert normalize_env(None) is None

    def test_mapping(self):
        assert normalize_env({"A": "1"}) == {"A": "1"}

    def test_pairs_in_order(self):
        env = [["A", "1"], ["B", "2"], ["A", "3"]]
        assert normalize_env(env) == {"A": "3", "B": "2"}

    def test_bad_pair(self):
        with pytest.raises(ConfigurationError, match="pairs"):
            normalize_env([("A", "1", "extra")])

    def test_string_entry_rejected(self):
        with pytest.raises(ConfigurationError):
            normalize_env(["AB"])


class TestOptions:
    """Test option defaults, validation and spawn kwargs."""

    def test_defaults_unset(self):
        opts = CommandOptions()
        assert opts.shell_escape is None
        assert opts.check_error is None
        assert opts.max_buffer is None

    def test_daemon_defaults(self):
        opts = DaemonOptions()
        assert opts.emit_errors is False
        assert opts.kill_signal is None

    def test_negative_uid(self):
        with pytest.raises(ConfigurationError) as exc_info:
            Options(uid=-1)
        assert exc_info.value.key == "uid"

    def test_invalid_max_buffer(self):
        with pytest.raises(ConfigurationError):
            CommandOptions(max_buffer=0)

    def test_invalid_timeout(self):
        with pytest.raises(ConfigurationError):
            CommandOptions(timeout=0)

    def test_invalid_kill_signal(self):
        with pytest.raises(ConfigurationError):
            DaemonOptions(kill_signal="SIGNOPE")

    def test_spawn_kwargs(self, tmp_path):
        opts = Options(cwd=tmp_path, env=[("A", "1")], uid=1000, gid=1001, shell="/bin/bash")
        assert opts.spawn_kwargs() == {
            "cwd": tmp_path,
            "env": {"A": "1"},
            "user": 1000,
            "group": 1001,
            "executable": "/bin/bash",
        }

    def test_spawn_kwargs_empty(self):
        assert Options(shell=True).spawn_kwargs() == {}

    def test_from_dict_ignores_unknown(self):
        opts = CommandOptions.from_dict({"check_error": False, "bogus": 1})
        assert isinstance(opts, CommandOptions)
        assert opts.check_error is False
