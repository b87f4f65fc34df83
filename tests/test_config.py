"""Config module tests.

Tests FORKPIPE_* environment variable parsing and configuration management.
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest import mock

import pytest

from forkpipe.config import (
    DEFAULT_CANCEL_ATTEMPTS,
    DEFAULT_CANCEL_INTERVAL,
    CancelPolicy,
    Config,
    get_config,
    load_config,
    reload_config,
)

FORKPIPE_VARS = ("FORKPIPE_CANCEL_ATTEMPTS", "FORKPIPE_CANCEL_INTERVAL", "FORKPIPE_LOG_DEBUG")


@pytest.fixture
def clean_env():
    """Environment without any FORKPIPE_* variables."""
    env = {k: v for k, v in os.environ.items() if k not in FORKPIPE_VARS}
    with mock.patch.dict(os.environ, env, clear=True):
        yield
    reload_config()


class TestDefaults:
    """Defaults when nothing is set."""

    def test_unset_uses_defaults(self, clean_env):
        config = load_config()
        assert config.cancel_policy == CancelPolicy(
            attempts=DEFAULT_CANCEL_ATTEMPTS, interval=DEFAULT_CANCEL_INTERVAL
        )
        assert config.log_debug is False
        assert config.log_file is None

    def test_default_policy_matches_three_polls_one_second(self):
        assert CancelPolicy() == CancelPolicy(attempts=3, interval=1.0)

    def test_policy_is_frozen(self):
        policy = CancelPolicy()
        with pytest.raises(AttributeError):
            policy.attempts = 10  # type: ignore[misc]


class TestCancelAttempts:
    """FORKPIPE_CANCEL_ATTEMPTS parsing."""

    def test_valid_value(self, clean_env):
        with mock.patch.dict(os.environ, {"FORKPIPE_CANCEL_ATTEMPTS": "5"}):
            assert load_config().cancel_policy.attempts == 5

    @pytest.mark.parametrize("value,expected", [("0", 1), ("-4", 1), ("1000", 100)])
    def test_clamped(self, clean_env, value: str, expected: int):
        with mock.patch.dict(os.environ, {"FORKPIPE_CANCEL_ATTEMPTS": value}):
            assert load_config().cancel_policy.attempts == expected

    @pytest.mark.parametrize("value", ["", "three", "2.5"])
    def test_invalid_falls_back(self, clean_env, value: str):
        with mock.patch.dict(os.environ, {"FORKPIPE_CANCEL_ATTEMPTS": value}):
            assert load_config().cancel_policy.attempts == DEFAULT_CANCEL_ATTEMPTS


class TestCancelInterval:
    """FORKPIPE_CANCEL_INTERVAL parsing."""

    def test_valid_value(self, clean_env):
        with mock.patch.dict(os.environ, {"FORKPIPE_CANCEL_INTERVAL": "0.25"}):
            assert load_config().cancel_policy.interval == 0.25

    @pytest.mark.parametrize("value,expected", [("0", 0.01), ("-1", 0.01), ("3600", 60.0)])
    def test_clamped(self, clean_env, value: str, expected: float):
        with mock.patch.dict(os.environ, {"FORKPIPE_CANCEL_INTERVAL": value}):
            assert load_config().cancel_policy.interval == expected

    def test_invalid_falls_back(self, clean_env):
        with mock.patch.dict(os.environ, {"FORKPIPE_CANCEL_INTERVAL": "soon"}):
            assert load_config().cancel_policy.interval == DEFAULT_CANCEL_INTERVAL


class TestLogDebug:
    """FORKPIPE_LOG_DEBUG parsing."""

    @pytest.mark.parametrize("value", ["true", "True", "1", "yes", "on"])
    def test_truthy_values(self, clean_env, tmp_path: Path, value: str):
        with mock.patch.dict(os.environ, {"FORKPIPE_LOG_DEBUG": value}), \
                mock.patch("forkpipe.config.tempfile.gettempdir", return_value=str(tmp_path)):
            config = load_config()
        assert config.log_debug is True
        assert config.log_file is not None
        log_file = Path(config.log_file)
        assert log_file.parent == (tmp_path / "forkpipe").resolve()
        assert log_file.name.startswith("forkpipe_debug_")

    @pytest.mark.parametrize("value", ["false", "0", "no", "off", ""])
    def test_falsy_values(self, clean_env, value: str):
        with mock.patch.dict(os.environ, {"FORKPIPE_LOG_DEBUG": value}):
            config = load_config()
        assert config.log_debug is False
        assert config.log_file is None


class TestGlobalConfig:
    """get_config / reload_config caching."""

    def test_get_config_is_cached(self, clean_env):
        reload_config()
        assert get_config() is get_config()

    def test_reload_picks_up_changes(self, clean_env):
        reload_config()
        with mock.patch.dict(os.environ, {"FORKPIPE_CANCEL_ATTEMPTS": "7"}):
            assert get_config().cancel_policy.attempts == DEFAULT_CANCEL_ATTEMPTS
            assert reload_config().cancel_policy.attempts == 7
            assert get_config().cancel_policy.attempts == 7

    def test_repr(self):
        config = Config(cancel_policy=CancelPolicy(attempts=2, interval=0.5))
        text = repr(config)
        assert "cancel_attempts=2" in text
        assert "cancel_interval=0.5" in text
        assert "log_debug=False" in text
