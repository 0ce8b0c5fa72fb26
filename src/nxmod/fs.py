"""Filesystem timestamp helpers shared by the staleness checks."""

from __future__ import annotations

import os
from pathlib import Path


def get_mtime(path: str | Path) -> int | None:
    """Return the modification time in nanoseconds, or ``None`` if absent."""
    try:
        return os.stat(path).st_mtime_ns
    except FileNotFoundError:
        return None


def up_to_date(input_mtime: int | None, output_mtime: int | None) -> bool:
    """True when the output is at least as new as the input.

    Equal timestamps count as fresh. A missing side is never up to date.
    """
    if input_mtime is None or output_mtime is None:
        return False
    return input_mtime <= output_mtime


def set_mtime(path: str | Path, mtime_ns: int) -> None:
    os.utime(path, ns=(mtime_ns, mtime_ns))
