"""forkpipe - forked child processes with piped standard streams.

Environment variables:
    FORKPIPE_CANCEL_ATTEMPTS: polls after SIGTERM before SIGKILL (default 3)
    FORKPIPE_CANCEL_INTERVAL: seconds between polls (default 1.0)
    FORKPIPE_LOG_DEBUG: write DEBUG logs to a temp file (default false)

Usage:
    from forkpipe import spawn

    with spawn(worker) as process:
        process.write_input(b"data\\n")
        info = process.wait()
"""

__version__ = "0.1.0"

from .errors import (
    ContractViolation,
    InvalidStateError,
    ProcessError,
    ProcessPanic,
    UnableToForkError,
)
from .runtime import ExitInfo, Process, ProcessState, spawn

__all__ = [
    "__version__",
    "ContractViolation",
    "ExitInfo",
    "InvalidStateError",
    "Process",
    "ProcessError",
    "ProcessPanic",
    "ProcessState",
    "UnableToForkError",
    "spawn",
]
