"""
Reading captured bot output.

The supervisor appends one ``[<iso timestamp>] <text>`` line per output line to
stdout.log and stderr.log in each bot's log directory. These helpers read them
back without modifying anything.
"""

import heapq
from collections import deque
from pathlib import Path
from typing import Iterator

LOG_FILES = ("stdout.log", "stderr.log")


def _read_lines(path: Path) -> Iterator[str]:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                yield line.rstrip("\n")
    except FileNotFoundError:
        return


def iter_log_lines(log_dir: Path) -> Iterator[str]:
    """
    Yield captured lines from both streams in timestamp order.

    The sequence ends at the current end of the files; call again to pick up
    lines written since.
    """
    streams = [_read_lines(Path(log_dir) / name) for name in LOG_FILES]
    # ISO timestamps sort lexicographically, and each file is already in order
    yield from heapq.merge(*streams)


def tail_lines(log_dir: Path, limit: int = 100) -> list[str]:
    """Get the last ``limit`` captured lines."""
    return list(deque(iter_log_lines(log_dir), maxlen=limit))
