"""Async helpers on top of the blocking ``Process`` API.

forkpipe runtime module v0.1.0

The blocking calls run in anyio worker threads, so they can be awaited from
asyncio (or trio) code without stalling the event loop.
"""

from __future__ import annotations

import logging

import anyio
import anyio.to_thread

from ..config import CancelPolicy
from .process import ExitInfo, Process

__all__ = ["communicate", "wait_async", "cancel_async"]

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4096


def _feed_input(process: Process, data: bytes) -> None:
    view = memoryview(data)
    try:
        while view:
            written = process.write_input(view)
            view = view[written:]
    except BrokenPipeError:
        logger.debug(
            f"Child pid={process.id} closed stdin with {len(view)} bytes unwritten"
        )
    finally:
        process.close_input()


def _drain(read, chunk_size: int) -> bytes:
    chunks: list[bytes] = []
    while True:
        chunk = read(chunk_size)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


async def communicate(
    process: Process,
    data: bytes = b"",
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> tuple[bytes, bytes]:
    """Send ``data`` to the child and collect its output and error streams.

    Input is written and then closed while stdout and stderr are drained
    concurrently, each on its own worker thread. A child that fills its output
    pipe before consuming all of its input therefore cannot deadlock us.

    Does not reap the child; call ``wait`` or ``wait_async`` afterwards.

    Args:
        process: An alive (or terminated, not torn down) process
        data: Bytes to send to the child's stdin
        chunk_size: Read size for the drain loops

    Returns:
        Tuple of (stdout_bytes, stderr_bytes), read until EOF
    """
    results: dict[str, bytes] = {}

    async def drain(name: str, read) -> None:
        results[name] = await anyio.to_thread.run_sync(_drain, read, chunk_size)

    async with anyio.create_task_group() as tg:
        tg.start_soon(anyio.to_thread.run_sync, _feed_input, process, data)
        tg.start_soon(drain, "stdout", process.read_output)
        tg.start_soon(drain, "stderr", process.read_error)

    logger.debug(
        f"Communicated with pid={process.id}: sent={len(data)} "
        f"stdout={len(results['stdout'])} stderr={len(results['stderr'])}"
    )
    return results["stdout"], results["stderr"]


async def wait_async(process: Process) -> ExitInfo:
    """Await ``process.wait()`` on a worker thread."""
    return await anyio.to_thread.run_sync(process.wait)


async def cancel_async(process: Process, policy: CancelPolicy | None = None) -> None:
    """Await ``process.cancel()`` on a worker thread.

    Shielded from cancellation: once started, the escalation always runs to
    completion and the child is always reaped.
    """
    with anyio.CancelScope(shield=True):
        await anyio.to_thread.run_sync(process.cancel, policy)
