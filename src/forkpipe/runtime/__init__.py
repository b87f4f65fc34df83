"""Runtime module for forked child processes.

forkpipe runtime module v0.1.0

Spawns Python callables in forked children with piped standard streams and
manages their lifecycle through to reaping and teardown.
"""

from __future__ import annotations

from .communicate import cancel_async, communicate, wait_async
from .pipe import Pipe
from .process import ExitInfo, Process, ProcessState, spawn

__all__ = [
    "ExitInfo",
    "Pipe",
    "Process",
    "ProcessState",
    "cancel_async",
    "communicate",
    "spawn",
    "wait_async",
]
