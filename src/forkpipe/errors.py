"""Exception classes for forkpipe.

Two tiers:
- ``ProcessError`` subclasses are recoverable and meant to be caught.
- ``ProcessPanic`` and ``ContractViolation`` signal environment corruption or a
  programming defect; callers are not expected to recover from them.
"""

from __future__ import annotations

__all__ = [
    "ProcessError",
    "UnableToForkError",
    "InvalidStateError",
    "ProcessPanic",
    "ContractViolation",
]


class ProcessError(Exception):
    """Base class for recoverable process errors."""
    pass


class UnableToForkError(ProcessError):
    """The OS refused to create a child process."""

    def __init__(self, message: str = "Unable to fork") -> None:
        super().__init__(message)


class InvalidStateError(ProcessError):
    """Operation is not valid in the current lifecycle state.

    Attributes:
        state: Lifecycle state the process was in
    """

    def __init__(self, message: str = "Invalid process state", state: object = None) -> None:
        self.state = state
        super().__init__(message)


class ProcessPanic(RuntimeError):
    """A descriptor, signal or wait operation failed where it must not."""
    pass


class ContractViolation(AssertionError):
    """A precondition was violated (only checked when ``__debug__`` is set)."""
    pass
