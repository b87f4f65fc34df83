"""forkpipe environment configuration.

Environment variables:
    FORKPIPE_CANCEL_ATTEMPTS: non-blocking polls after SIGTERM before SIGKILL
        - default 3, clamped to 1-100

    FORKPIPE_CANCEL_INTERVAL: seconds slept between polls
        - default 1.0, clamped to 0.01-60

    FORKPIPE_LOG_DEBUG: debug logging
        - true/1/yes/on = DEBUG logs written to a temp file
        - false/0/no = INFO logs to stderr (default)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

__all__ = ["CancelPolicy", "Config", "load_config", "get_config", "reload_config"]

DEFAULT_CANCEL_ATTEMPTS = 3
DEFAULT_CANCEL_INTERVAL = 1.0


@dataclass(frozen=True)
class CancelPolicy:
    """Escalation timing used by ``Process.cancel``.

    Attributes:
        attempts: Number of non-blocking polls after SIGTERM
        interval: Seconds to sleep after each poll that finds the child running
    """

    attempts: int = DEFAULT_CANCEL_ATTEMPTS
    interval: float = DEFAULT_CANCEL_INTERVAL


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_attempts(value: str | None) -> int:
    if not value:
        return DEFAULT_CANCEL_ATTEMPTS
    try:
        attempts = int(value)
    except ValueError:
        return DEFAULT_CANCEL_ATTEMPTS
    return max(1, min(attempts, 100))


def _parse_interval(value: str | None) -> float:
    if not value:
        return DEFAULT_CANCEL_INTERVAL
    try:
        interval = float(value)
    except ValueError:
        return DEFAULT_CANCEL_INTERVAL
    return max(0.01, min(interval, 60.0))


@dataclass
class Config:
    """forkpipe configuration.

    Attributes:
        cancel_policy: Default escalation timing for ``Process.cancel``
        log_debug: Write DEBUG logs to a temp file
        log_file: Log file path (set when log_debug is true)
    """

    cancel_policy: CancelPolicy = field(default_factory=CancelPolicy)
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(cancel_attempts={self.cancel_policy.attempts}, "
            f"cancel_interval={self.cancel_policy.interval}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """Return a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "forkpipe"
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return str((log_dir / f"forkpipe_debug_{timestamp}.log").resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("FORKPIPE_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        cancel_policy=CancelPolicy(
            attempts=_parse_attempts(os.environ.get("FORKPIPE_CANCEL_ATTEMPTS")),
            interval=_parse_interval(os.environ.get("FORKPIPE_CANCEL_INTERVAL")),
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global config instance (lazy)
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
