"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from forkpipe.config import CancelPolicy
from forkpipe.runtime import Process, ProcessState, spawn


@pytest.fixture
def fast_policy() -> CancelPolicy:
    """Cancel policy with short polls for children that honor SIGTERM."""
    return CancelPolicy(attempts=40, interval=0.05)


@pytest.fixture
def spawned() -> Iterator[Callable[[Callable[[], object]], Process]]:
    """Spawn children that are cancelled and torn down after the test."""
    processes: list[Process] = []

    def _spawn(fn: Callable[[], object]) -> Process:
        process = spawn(fn)
        processes.append(process)
        return process

    yield _spawn

    for process in processes:
        if process.state is ProcessState.ALIVE:
            process.cancel(CancelPolicy(attempts=1, interval=0.01))
        if process.state is ProcessState.TERMINATED:
            process.teardown()


def read_until_eof(read: Callable[[int], bytes], chunk_size: int = 4096) -> bytes:
    """Call ``read`` until it returns b""."""
    chunks = []
    while True:
        chunk = read(chunk_size)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


@pytest.fixture
def read_all() -> Callable[..., bytes]:
    """Drain a read function until EOF."""
    return read_until_eof
