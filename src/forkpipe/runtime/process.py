"""Forked child processes with piped standard streams.

forkpipe runtime module v0.1.0

This module provides:
- Spawning a child that runs a Python callable with stdin/stdout/stderr
  redirected to pipes owned by the parent
- Raw pass-through reads and writes on those pipes
- Reaping with exit status decoding (normal exit vs. terminating signal)
- Escalating cancellation (SIGTERM -> bounded polling -> SIGKILL -> reap)

Lifecycle:
    UNSPAWNED --spawn--> ALIVE --wait/cancel--> TERMINATED --teardown--> TORN_DOWN

Descriptors stay open in TERMINATED so buffered output can still be drained.
A TORN_DOWN record behaves like a never-spawned one and may be spawned again.

Notes:
- Blocking reads are not interrupted by ``cancel``; a thread stuck reading a
  child's stream stays blocked until the stream reaches EOF.
- Writing a lot of input while the child writes a lot of output can deadlock a
  single-threaded caller. ``forkpipe.runtime.communicate`` handles that case.
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import sys
import time
import traceback
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, NoReturn

from ..config import CancelPolicy, get_config
from ..errors import ContractViolation, InvalidStateError, ProcessPanic, UnableToForkError
from .pipe import CLOSED, Pipe, close_fd, move_fd, panic

__all__ = [
    "ExitInfo",
    "Process",
    "ProcessState",
    "spawn",
]

logger = logging.getLogger(__name__)

STDIN_FILENO = 0
STDOUT_FILENO = 1
STDERR_FILENO = 2

# Size sentinel rejected by the read/write operations
MAX_SIZE = sys.maxsize

# Records whose parent-side descriptors are still open in this process
_open_records: "weakref.WeakSet[Process]" = weakref.WeakSet()


class ProcessState(Enum):
    """Lifecycle state of a ``Process`` record."""

    UNSPAWNED = "unspawned"
    ALIVE = "alive"
    TERMINATED = "terminated"
    TORN_DOWN = "torn_down"


@dataclass(frozen=True)
class ExitInfo:
    """How a child terminated.

    Attributes:
        exited_normally: True if the child exited, False if a signal killed it
        exit_code: Exit status, or the terminating signal number
    """

    exited_normally: bool
    exit_code: int


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ContractViolation(message)


def _flush_std_streams() -> None:
    for stream in (sys.stdout, sys.stderr):
        if stream is None:
            continue
        try:
            stream.flush()
        except (AttributeError, ValueError):
            pass


def _rebind_std_streams() -> None:
    """Point the sys-level text streams at descriptors 0, 1 and 2."""
    sys.stdin = open(STDIN_FILENO, "r", closefd=False)
    sys.stdout = open(STDOUT_FILENO, "w", closefd=False)
    sys.stderr = open(
        STDERR_FILENO, "w", buffering=1, errors="backslashreplace", closefd=False
    )


def _system_exit_code(exc: SystemExit) -> int:
    code = exc.code
    if code is None:
        return 0
    if isinstance(code, int):
        return code
    print(code, file=sys.stderr)
    return 1


def _run_target(fn: Callable[[], object]) -> int:
    """Run ``fn`` and translate its outcome into an exit status."""
    try:
        fn()
    except SystemExit as e:
        return _system_exit_code(e)
    except BaseException:
        traceback.print_exc()
        return 1
    return 0


def _child_main(
    fn: Callable[[], object],
    stdin_pipe: Pipe,
    stdout_pipe: Pipe,
    stderr_pipe: Pipe,
) -> NoReturn:
    """Body of the forked child. Never returns to the caller's stack."""
    code = 1
    try:
        _flush_std_streams()

        # Descriptors of sibling children belong to the parent only
        for record in list(_open_records):
            record._close_descriptors()

        close_fd(stdin_pipe.take_write())
        close_fd(stdout_pipe.take_read())
        close_fd(stderr_pipe.take_read())

        move_fd(stdin_pipe.take_read(), STDIN_FILENO)
        move_fd(stderr_pipe.take_write(), STDERR_FILENO)
        move_fd(stdout_pipe.take_write(), STDOUT_FILENO)
        _rebind_std_streams()

        code = _run_target(fn)
        _flush_std_streams()
    except BaseException:
        traceback.print_exc()
    finally:
        os._exit(code)


class Process:
    """A child process running a Python callable behind three pipes.

    Example:
        def shout():
            print(sys.stdin.read().upper(), end="")

        with spawn(shout) as process:
            process.write_input(b"hello")
            process.close_input()
            info = process.wait()
            assert process.read_output(64) == b"HELLO"

    Operations on a record that was never spawned or was torn down are
    contract violations, checked only when ``__debug__`` is set.
    """

    def __init__(self) -> None:
        self._reset(ProcessState.UNSPAWNED)

    def _reset(self, state: ProcessState) -> None:
        self._state = state
        self._pid = 0
        self._input_fd = CLOSED
        self._output_fd = CLOSED
        self._error_fd = CLOSED
        self._exited_normally = False
        self._exit_code = 0

    # ------------------------------------------------------------------
    # Spawn
    # ------------------------------------------------------------------

    def spawn(self, fn: Callable[[], object]) -> "Process":
        """Fork a child that runs ``fn`` with its standard streams piped.

        Args:
            fn: Zero-argument callable executed in the child

        Returns:
            self, now alive

        Raises:
            UnableToForkError: If the OS could not create the child
        """
        if __debug__:
            _require(callable(fn), "fn must be callable")
            _require(
                self._state in (ProcessState.UNSPAWNED, ProcessState.TORN_DOWN),
                f"Cannot spawn a {self._state.value} process",
            )

        _flush_std_streams()

        with contextlib.ExitStack() as stack:
            stderr_pipe = stack.enter_context(Pipe())
            stdout_pipe = stack.enter_context(Pipe())
            stdin_pipe = stack.enter_context(Pipe())

            try:
                pid = os.fork()
            except OSError as e:
                logger.warning(f"fork failed: {e}")
                raise UnableToForkError() from e

            if pid == 0:
                _child_main(fn, stdin_pipe, stdout_pipe, stderr_pipe)

            self._pid = pid
            self._input_fd = stdin_pipe.take_write()
            self._output_fd = stdout_pipe.take_read()
            self._error_fd = stderr_pipe.take_read()
            # Leaving the stack closes the child-side ends

        self._state = ProcessState.ALIVE
        self._exited_normally = False
        self._exit_code = 0
        _open_records.add(self)

        logger.debug(
            f"Spawned child pid={pid} stdin={self._input_fd} "
            f"stdout={self._output_fd} stderr={self._error_fd}"
        )
        return self

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def _check_spawned(self) -> None:
        if __debug__:
            _require(
                self._state in (ProcessState.ALIVE, ProcessState.TERMINATED),
                f"Process is {self._state.value}",
            )

    @property
    def state(self) -> ProcessState:
        """Current lifecycle state."""
        return self._state

    @property
    def id(self) -> int:
        """OS process id of the child."""
        self._check_spawned()
        return self._pid

    @property
    def is_alive(self) -> bool:
        """True until the child's termination has been observed."""
        self._check_spawned()
        return self._state is ProcessState.ALIVE

    @property
    def input_fd(self) -> int:
        return self._input_fd

    @property
    def output_fd(self) -> int:
        return self._output_fd

    @property
    def error_fd(self) -> int:
        return self._error_fd

    def exit_info(self) -> ExitInfo:
        """Return the recorded exit status without blocking.

        Raises:
            InvalidStateError: If the child has not been reaped yet
        """
        self._check_spawned()
        if self._state is ProcessState.ALIVE:
            raise InvalidStateError("Process is still alive", state=self._state)
        return ExitInfo(exited_normally=self._exited_normally, exit_code=self._exit_code)

    # ------------------------------------------------------------------
    # Stream I/O
    # ------------------------------------------------------------------

    @staticmethod
    def _check_size(size: int) -> None:
        if __debug__:
            _require(0 <= size < MAX_SIZE, f"Invalid transfer size: {size}")

    def write_input(self, data: bytes | bytearray | memoryview, size: int | None = None) -> int:
        """Write to the child's stdin.

        Args:
            data: Bytes to write
            size: Write only the first ``size`` bytes (default: all of ``data``)

        Returns:
            Number of bytes actually written, possibly fewer than requested

        Raises:
            OSError: On an I/O error (BrokenPipeError once the child closed stdin)
        """
        self._check_spawned()
        if size is not None:
            self._check_size(size)
            data = data[:size]
        if __debug__:
            _require(self._input_fd != CLOSED, "Input stream already closed")
        return os.write(self._input_fd, data)

    def read_output(self, size: int) -> bytes:
        """Read at most ``size`` bytes from the child's stdout (b"" at EOF)."""
        self._check_spawned()
        self._check_size(size)
        return os.read(self._output_fd, size)

    def read_error(self, size: int) -> bytes:
        """Read at most ``size`` bytes from the child's stderr (b"" at EOF)."""
        self._check_spawned()
        self._check_size(size)
        return os.read(self._error_fd, size)

    def close_input(self) -> None:
        """Close the child's stdin so it sees EOF. Idempotent."""
        self._check_spawned()
        if self._input_fd != CLOSED:
            fd, self._input_fd = self._input_fd, CLOSED
            close_fd(fd)

    def input_stream(self) -> BinaryIO:
        """Unbuffered, non-owning binary file over the input descriptor."""
        self._check_spawned()
        return open(self._input_fd, "wb", buffering=0, closefd=False)

    def output_stream(self) -> BinaryIO:
        """Unbuffered, non-owning binary file over the output descriptor."""
        self._check_spawned()
        return open(self._output_fd, "rb", buffering=0, closefd=False)

    def error_stream(self) -> BinaryIO:
        """Unbuffered, non-owning binary file over the error descriptor."""
        self._check_spawned()
        return open(self._error_fd, "rb", buffering=0, closefd=False)

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def _record_status(self, status: int) -> None:
        if os.WIFEXITED(status):
            self._exited_normally = True
            self._exit_code = os.WEXITSTATUS(status)
        elif os.WIFSIGNALED(status):
            self._exited_normally = False
            self._exit_code = os.WTERMSIG(status)
        else:
            panic(f"Unexpected wait status {status:#x} for pid={self._pid}")
        self._state = ProcessState.TERMINATED
        logger.debug(
            f"Reaped child pid={self._pid} exited_normally={self._exited_normally} "
            f"exit_code={self._exit_code}"
        )

    def wait(self) -> ExitInfo:
        """Block until the child terminates and record its exit status.

        Returns:
            The recorded ``ExitInfo``

        Raises:
            InvalidStateError: If termination was already observed
        """
        self._check_spawned()
        if self._state is not ProcessState.ALIVE:
            raise InvalidStateError("Process already terminated", state=self._state)

        try:
            pid, status = os.waitpid(self._pid, 0)
        except OSError as e:
            panic(f"waitpid failed for pid={self._pid}", e)
        if pid != self._pid:
            panic(f"waitpid returned pid={pid}, expected pid={self._pid}")

        self._record_status(status)
        return self.exit_info()

    def _send_signal(self, sig: signal.Signals) -> None:
        try:
            os.kill(self._pid, sig)
        except OSError as e:
            panic(f"Unable to send {sig.name} to pid={self._pid}", e)
        logger.debug(f"Sent {sig.name} to pid={self._pid}")

    def cancel(self, policy: CancelPolicy | None = None) -> None:
        """Terminate the child, escalating to SIGKILL if it ignores SIGTERM.

        Termination strategy:
        1. Send SIGTERM
        2. Poll without blocking up to ``policy.attempts`` times, sleeping
           ``policy.interval`` seconds after each poll that finds it running
        3. If still running, send SIGKILL
        4. Reap the child

        Args:
            policy: Escalation timing (default: from configuration)
        """
        self._check_spawned()
        if __debug__:
            _require(self._state is ProcessState.ALIVE, "Cannot cancel a terminated process")
        if policy is None:
            policy = get_config().cancel_policy

        pid = self._pid
        self._send_signal(signal.SIGTERM)

        try:
            for _ in range(policy.attempts):
                try:
                    reaped, status = os.waitpid(pid, os.WNOHANG)
                except OSError as e:
                    panic(f"waitpid failed for pid={pid}", e)
                if reaped == pid:
                    self._record_status(status)
                    return
                time.sleep(policy.interval)
        except ProcessPanic:
            raise
        except BaseException as e:
            # The child is never left unreaped once SIGTERM was sent
            if self._state is ProcessState.ALIVE:
                logger.warning(
                    f"Cancel of pid={pid} interrupted by {type(e).__name__}, "
                    f"sending SIGKILL"
                )
                self._send_signal(signal.SIGKILL)
                self.wait()
            raise

        logger.warning(
            f"Child pid={pid} still running after SIGTERM "
            f"({policy.attempts} polls), sending SIGKILL"
        )
        self._send_signal(signal.SIGKILL)
        self.wait()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _close_descriptors(self) -> None:
        for name in ("_input_fd", "_output_fd", "_error_fd"):
            fd = getattr(self, name)
            if fd != CLOSED:
                setattr(self, name, CLOSED)
                close_fd(fd)

    def teardown(self) -> None:
        """Close the pipes and reset the record.

        The child must have been reaped first (``wait`` or ``cancel``).
        """
        self._check_spawned()
        if __debug__:
            _require(
                self._state is ProcessState.TERMINATED,
                "Cannot tear down a live process; wait or cancel it first",
            )
        pid = self._pid
        self._close_descriptors()
        _open_records.discard(self)
        self._reset(ProcessState.TORN_DOWN)
        logger.debug(f"Tore down child pid={pid}")

    def __enter__(self) -> "Process":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._state is ProcessState.ALIVE:
            self.cancel()
        if self._state is ProcessState.TERMINATED:
            self.teardown()

    def __repr__(self) -> str:
        return f"Process(pid={self._pid}, state={self._state.value})"


def spawn(fn: Callable[[], object]) -> Process:
    """Spawn a new ``Process`` running ``fn``.

    Raises:
        UnableToForkError: If the OS could not create the child
    """
    return Process().spawn(fn)
