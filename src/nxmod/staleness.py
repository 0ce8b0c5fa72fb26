"""Decide which stages of a build must run.

Every decision errs towards rebuilding: an unreadable timestamp, depfile
or cache entry counts as stale.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from nxmod.compdb import CompileDatabase
from nxmod.depfile import deps_up_to_date
from nxmod.errors import ConfigError
from nxmod.fs import get_mtime, up_to_date
from nxmod.models import CompileCommand, LinkCommand, SourceFile


class SourceAction(StrEnum):
    UP_TO_DATE = "up-to-date"
    COMPILE = "compile"


@dataclass(frozen=True, slots=True)
class SourceStatus:
    source: SourceFile
    command: CompileCommand
    action: SourceAction
    reason: str | None = None

    @property
    def needs_compile(self) -> bool:
        return self.action is SourceAction.COMPILE


def check_source(
    source: SourceFile,
    command: CompileCommand,
    previous: CompileDatabase | None = None,
) -> SourceStatus:
    """Decide whether *source* must be recompiled.

    *previous* is given only when compile commands may have changed. The
    record for *source* is removed from it whether or not the command
    matches, so after a full scan the remaining records are the sources
    that no longer exist.
    """
    record = previous.remove(source.path_hash) if previous is not None else None

    def compile_because(reason: str) -> SourceStatus:
        return SourceStatus(source, command, SourceAction.COMPILE, reason)

    if get_mtime(command.output) is None:
        return compile_because("object missing")
    if not deps_up_to_date(command.depfile, command.output):
        return compile_because("dependencies changed")
    if previous is not None:
        if record is None:
            return compile_because("no previous command")
        if not record.command.same_invocation(command):
            return compile_because("command changed")
    return SourceStatus(source, command, SourceAction.UP_TO_DATE)


def resolve_static_libraries(libpaths: Iterable[Path], libraries: Iterable[str]) -> list[Path]:
    """Find ``lib<name>.a`` for each library in the library search paths.

    Libraries that are not found are skipped; the linker resolves them
    from its own search path.
    """
    search = list(libpaths)
    resolved: list[Path] = []
    for name in libraries:
        for directory in search:
            candidate = directory / f"lib{name}.a"
            if candidate.is_file():
                resolved.append(candidate)
                break
    return resolved


def link_reason(
    *,
    binary: Path,
    command: LinkCommand,
    previous_command: LinkCommand | None,
    objects: Sequence[str],
    objects_compiled: bool = False,
    sources_removed: bool = False,
    object_list_changed: bool = False,
    config_changed: bool = False,
    ldscripts: Sequence[Path] = (),
    static_libraries: Sequence[Path] = (),
) -> str | None:
    """Return why the binary must be relinked, or ``None`` if it is current."""
    if objects_compiled:
        return "objects recompiled"
    if sources_removed:
        return "sources removed"
    if object_list_changed:
        return "object list changed"
    if config_changed:
        return "configuration changed"
    binary_mtime = get_mtime(binary)
    if binary_mtime is None:
        return "binary missing"
    if previous_command is None or not previous_command.same_invocation(command):
        return "link command changed"
    for script in ldscripts:
        script_mtime = get_mtime(script)
        if script_mtime is None:
            raise ConfigError(
                "Cannot process linker script.",
                hint="Check the `build.ldscripts` entries in the configuration file.",
                context={"path": str(script)},
            )
        if not up_to_date(script_mtime, binary_mtime):
            return f"linker script '{script.name}' changed"
    for obj in objects:
        if not up_to_date(get_mtime(obj), binary_mtime):
            return f"object '{Path(obj).name}' is newer"
    for library in static_libraries:
        if not up_to_date(get_mtime(library), binary_mtime):
            return f"library '{library.name}' is newer"
    return None


def conversion_reason(
    *,
    linked: bool,
    binary: Path,
    converted: Path,
    symbol_listings: Sequence[Path] | None = None,
) -> str | None:
    """Return why the converted artifact must be regenerated.

    *symbol_listings* is ``None`` when no check is configured.
    """
    if linked:
        return "binary relinked"
    converted_mtime = get_mtime(converted)
    if converted_mtime is None:
        return "converted artifact missing"
    if not up_to_date(get_mtime(binary), converted_mtime):
        return "binary is newer"
    for listing in symbol_listings or ():
        if not up_to_date(get_mtime(listing), converted_mtime):
            return f"symbol listing '{listing.name}' changed"
    return None
