"""Small persisted caches: object list and last link command.

Both caches are optimizations. Reads fail soft (a damaged or missing file
reads as "no cache"), writes are atomic and never raise.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from nxmod.models import LinkCommand
from nxmod.observability import BuildLogger


def serialize_object_list(objects: Iterable[str]) -> str:
    ordered = sorted(objects)
    return f"{len(ordered)}\n" + "\n".join(ordered)


def read_object_list(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def object_list_changed(path: Path, objects: Iterable[str]) -> bool:
    return read_object_list(path) != serialize_object_list(objects)


def write_object_list(path: Path, objects: Iterable[str], *, logger: BuildLogger) -> None:
    _write_atomic(path, serialize_object_list(objects), logger=logger, what="objects cache")


def read_link_command(path: Path) -> LinkCommand | None:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return None
    return _parse_link_command(payload)


def write_link_command(path: Path, command: LinkCommand, *, logger: BuildLogger) -> None:
    payload = {
        "linker": command.linker,
        "arguments": list(command.arguments),
        "output": command.output,
    }
    _write_atomic(
        path,
        json.dumps(payload, indent=2, sort_keys=True) + "\n",
        logger=logger,
        what="link cache",
    )


def _parse_link_command(payload: Any) -> LinkCommand | None:
    if not isinstance(payload, dict):
        return None
    linker = payload.get("linker")
    arguments = payload.get("arguments")
    output = payload.get("output")
    if not isinstance(linker, str) or not isinstance(output, str):
        return None
    if not isinstance(arguments, list) or not all(isinstance(item, str) for item in arguments):
        return None
    return LinkCommand(linker=linker, arguments=tuple(arguments), output=output)


def _write_atomic(path: Path, content: str, *, logger: BuildLogger, what: str) -> None:
    tmp_path = path.with_name(f"{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as exc:
        logger.error("Error", f"Failed to save {what}: {exc}", stage="persist")
        return
    logger.verbose(f"saved '{path}'", stage="persist")
