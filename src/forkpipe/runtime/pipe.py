"""Pipes and descriptor-table operations.

forkpipe runtime module v0.1.0

Closing, duplicating and allocating descriptors are assumed never to fail under
correct usage; a failure raises ``ProcessPanic`` instead of a recoverable error.
"""

from __future__ import annotations

import logging
import os
from typing import NoReturn

from ..errors import ProcessPanic

__all__ = ["Pipe", "close_fd", "move_fd", "panic"]

logger = logging.getLogger(__name__)

# Marks a pipe end that has been closed or handed off
CLOSED = -1


def panic(message: str, cause: BaseException | None = None) -> NoReturn:
    """Log and raise a fatal error."""
    if cause is not None:
        logger.critical(f"{message}: {cause}")
        raise ProcessPanic(message) from cause
    logger.critical(message)
    raise ProcessPanic(message)


def close_fd(fd: int) -> None:
    """Close ``fd``; any failure is fatal."""
    try:
        os.close(fd)
    except OSError as e:
        panic(f"Unable to close file descriptor {fd}", e)


def move_fd(src: int, dst: int) -> None:
    """Duplicate ``src`` onto ``dst`` and close ``src``.

    dup2 closes ``dst`` first if it is open. Python retries EINTR itself.
    """
    if src == dst:
        os.set_inheritable(dst, True)
        return
    try:
        os.dup2(src, dst)
    except OSError as e:
        panic(f"Unable to duplicate file descriptor {src} onto {dst}", e)
    close_fd(src)


class Pipe:
    """Unidirectional OS pipe whose ends can be handed off one at a time.

    Each end is either owned by the Pipe or taken by a caller. ``close()`` only
    closes the ends the Pipe still owns, so a Pipe used as a context manager
    never leaks a descriptor and never closes one it gave away.

    Example:
        with Pipe() as pipe:
            read_fd = pipe.take_read()
        # write end closed, read end now belongs to the caller
    """

    def __init__(self) -> None:
        try:
            self.read_fd, self.write_fd = os.pipe()
        except OSError as e:
            panic("Unable to open pipe", e)

    def take_read(self) -> int:
        """Transfer ownership of the read end to the caller."""
        fd, self.read_fd = self.read_fd, CLOSED
        return fd

    def take_write(self) -> int:
        """Transfer ownership of the write end to the caller."""
        fd, self.write_fd = self.write_fd, CLOSED
        return fd

    def close(self) -> None:
        """Close every end still owned by this pipe."""
        if self.read_fd != CLOSED:
            close_fd(self.take_read())
        if self.write_fd != CLOSED:
            close_fd(self.take_write())

    def __enter__(self) -> "Pipe":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Pipe(read_fd={self.read_fd}, write_fd={self.write_fd})"
