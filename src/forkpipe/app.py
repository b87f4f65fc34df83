"""forkpipe demo driver.

Spawns a batch of workers, cancels one of them, feeds the rest a timestamp
and reports how each one terminated.

Usage:
    python -m forkpipe [--count N] [--cancel-index I] [--max-delay SECONDS]
"""

from __future__ import annotations

import argparse
import contextlib
import functools
import logging
import os
import random
import sys
import time
from typing import TextIO

from .config import CancelPolicy, get_config
from .runtime import Process, spawn

__all__ = ["do_something", "run_demo", "main"]

logger = logging.getLogger(__name__)

BUFFER_SIZE = 256


def do_something(max_delay: float) -> None:
    """Worker body: sleep a while, echo one stdin line with pid and time."""
    pid = os.getpid()
    rng = random.Random(pid)
    time.sleep(max_delay - rng.random() * max_delay / 2)
    line = sys.stdin.readline().rstrip("\n")
    print(f"do_something:{pid}:{line}:{int(time.time())}", end="")


def run_demo(
    count: int = 5,
    cancel_index: int = 2,
    max_delay: float = 10.0,
    *,
    policy: CancelPolicy | None = None,
    out: TextIO | None = None,
) -> int:
    """Run the demo and return an exit status.

    Args:
        count: Number of workers to spawn
        cancel_index: Index of the worker to cancel (out of range = none)
        max_delay: Upper bound of each worker's sleep in seconds
        policy: Cancel escalation timing (default: from configuration)
        out: Report destination (default: sys.stdout)
    """
    out = out if out is not None else sys.stdout
    worker = functools.partial(do_something, max_delay)

    with contextlib.ExitStack() as stack:
        processes: list[Process] = []
        for _ in range(count):
            process = stack.enter_context(spawn(worker))
            processes.append(process)
            print(f"Spawned: {process.id}", file=out)

        if 0 <= cancel_index < count:
            victim = processes[cancel_index]
            print(f"Canceling: {victim.id}", file=out)
            victim.cancel(policy)
            print(f"Canceled: {victim.id}", file=out)

        for process in processes:
            if process.is_alive:
                process.write_input(f"{int(time.time())}\n".encode())

        for process in processes:
            info = process.wait() if process.is_alive else process.exit_info()
            output = process.read_output(BUFFER_SIZE).decode(errors="replace")
            print(
                f"Process: {process.id} "
                f"normallyExited: {int(info.exited_normally)} "
                f"exitValue: {info.exit_code:2d} "
                f"output: {output}",
                file=out,
            )
            process.teardown()

    return 0


def _configure_logging() -> None:
    config = get_config()
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    # Only the forkpipe namespace is verbose
    logging.getLogger("forkpipe").setLevel(log_level)


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    parser = argparse.ArgumentParser(
        prog="forkpipe",
        description="Spawn forked workers over pipes, cancel one, report exit status.",
    )
    parser.add_argument("--count", type=int, default=5, help="workers to spawn (default: 5)")
    parser.add_argument(
        "--cancel-index", type=int, default=2, help="worker to cancel (default: 2)"
    )
    parser.add_argument(
        "--max-delay", type=float, default=10.0, help="max worker sleep in seconds (default: 10)"
    )
    args = parser.parse_args(argv)

    _configure_logging()
    logger.info(f"Starting demo: {get_config()}")

    sys.exit(run_demo(args.count, args.cancel_index, args.max_delay))


if __name__ == "__main__":
    main()
