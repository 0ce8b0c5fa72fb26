"""Stable keys for derived build artifacts."""

from __future__ import annotations

import hashlib
from pathlib import Path


def path_hash(path: str | Path) -> str:
    """Return a 64-bit hash of *path* as 16 lower-case hex digits.

    The value only depends on the path string, so it is identical across
    runs and interpreter versions.
    """
    digest = hashlib.sha256(str(path).encode("utf-8")).digest()
    return f"{int.from_bytes(digest[:8], 'big'):016x}"
