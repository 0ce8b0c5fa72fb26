"""Parser for compiler-emitted Makefile dependency files (``-MMD -MP``).

A depfile produced for one object looks like::

    /build/o/main-1a2b3c4d5e6f7a8b.o: /src/main.c /src/include/my\\ header.h \\
     /src/include/util.h

    /src/include/my\\ header.h:

    /src/include/util.h:

Only the first rule matters. The phony rules added by ``-MP`` start at the
first line that ends with ``:`` and are ignored.
"""

from __future__ import annotations

import re
from pathlib import Path

from nxmod.errors import DepfileError
from nxmod.fs import get_mtime, up_to_date

_TARGET_PREFIX = re.compile(r"^(?:\\.|[^:])*:(?=\s|$)")


def parse_depfile(path: str | Path) -> set[str]:
    """Return the prerequisite paths of the first rule in *path*."""
    depfile = Path(path)
    try:
        lines = depfile.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise DepfileError(
            "Cannot read dependency file.",
            context={"path": str(depfile), "reason": str(exc)},
        ) from exc
    if not lines:
        raise DepfileError("Dependency file is empty.", context={"path": str(depfile)})

    head = _TARGET_PREFIX.match(lines[0])
    if head is None:
        raise DepfileError(
            "Dependency file does not start with a target.",
            context={"path": str(depfile), "line": lines[0]},
        )

    prerequisites: set[str] = set()
    prerequisites.update(_split_paths(_strip_continuation(lines[0][head.end() :])))
    for line in lines[1:]:
        part = _strip_continuation(line)
        if not part:
            continue
        if part.endswith(":"):
            break
        prerequisites.update(_split_paths(part))
    return prerequisites


def deps_up_to_date(depfile: str | Path, target: str | Path) -> bool:
    """True when *target* is at least as new as every file listed in *depfile*.

    Missing or malformed depfiles, and prerequisites that cannot be stat'd,
    all count as stale.
    """
    target_mtime = get_mtime(target)
    if target_mtime is None:
        return False
    try:
        prerequisites = parse_depfile(depfile)
    except DepfileError:
        return False
    for prerequisite in prerequisites:
        try:
            mtime = get_mtime(prerequisite)
        except OSError:
            return False
        if not up_to_date(mtime, target_mtime):
            return False
    return True


def _strip_continuation(line: str) -> str:
    part = line.strip()
    if part.endswith("\\") and not part.endswith("\\\\"):
        part = part[:-1].rstrip()
    return part


def _split_paths(text: str) -> list[str]:
    """Split on unescaped spaces; ``a\\ b`` is the single path ``a b``."""
    paths: list[str] = []
    pending: str | None = None
    for token in text.split(" "):
        if pending is not None:
            token = f"{pending} {token}"
            pending = None
        if token.endswith("\\"):
            pending = token[:-1]
            continue
        if token:
            paths.append(token.replace("$$", "$"))
    if pending:
        paths.append(pending.replace("$$", "$"))
    return paths
