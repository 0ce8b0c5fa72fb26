"""Tests for per-source, link and conversion staleness decisions."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from nxmod.compdb import CompileDatabase
from nxmod.errors import ConfigError
from nxmod.models import CompileCommand, CompileRecord, LinkCommand, SourceFile
from nxmod.staleness import (
    SourceAction,
    check_source,
    conversion_reason,
    link_reason,
    resolve_static_libraries,
)

T0 = 1_000_000_000
T1 = 2_000_000_000
T2 = 3_000_000_000

# ── check_source ────────────────────────────────────────────────────


def test_missing_object_recompiles(tmp_path: Path) -> None:
    source, command = _unit(tmp_path, compiled=False)
    status = check_source(source, command)
    assert status.action is SourceAction.COMPILE
    assert status.reason == "object missing"


def test_fresh_object_is_up_to_date(tmp_path: Path) -> None:
    source, command = _unit(tmp_path)
    status = check_source(source, command)
    assert status.action is SourceAction.UP_TO_DATE
    assert not status.needs_compile


def test_edited_source_recompiles(tmp_path: Path) -> None:
    source, command = _unit(tmp_path)
    os.utime(source.path, ns=(T2, T2))
    assert check_source(source, command).reason == "dependencies changed"


def test_without_previous_records_commands_are_not_compared(tmp_path: Path) -> None:
    source, command = _unit(tmp_path)
    assert check_source(source, command, None).action is SourceAction.UP_TO_DATE


def test_absent_record_recompiles(tmp_path: Path) -> None:
    source, command = _unit(tmp_path)
    previous = CompileDatabase()
    assert check_source(source, command, previous).reason == "no previous command"


def test_changed_command_recompiles_and_removes_record(tmp_path: Path) -> None:
    source, command = _unit(tmp_path)
    old = CompileCommand(
        compiler=command.compiler,
        arguments=("-O0", *command.arguments),
        source=command.source,
        output=command.output,
        depfile=command.depfile,
    )
    previous = CompileDatabase(
        records={source.path_hash: CompileRecord(source.path_hash, old)}
    )

    status = check_source(source, command, previous)

    assert status.reason == "command changed"
    assert previous.find(source.path_hash) is None
    assert previous.records == {}


def test_matching_command_is_up_to_date_and_removes_record(tmp_path: Path) -> None:
    source, command = _unit(tmp_path)
    previous = CompileDatabase(
        records={
            source.path_hash: CompileRecord(source.path_hash, command),
            "deadbeefdeadbeef": CompileRecord("deadbeefdeadbeef", command),
        }
    )

    status = check_source(source, command, previous)

    assert status.action is SourceAction.UP_TO_DATE
    assert list(previous.records) == ["deadbeefdeadbeef"]


# ── link_reason ─────────────────────────────────────────────────────


def test_link_up_to_date(tmp_path: Path) -> None:
    assert link_reason(**_link_inputs(tmp_path)) is None


@pytest.mark.parametrize(
    ("flag", "reason"),
    [
        ("objects_compiled", "objects recompiled"),
        ("sources_removed", "sources removed"),
        ("object_list_changed", "object list changed"),
        ("config_changed", "configuration changed"),
    ],
)
def test_link_flags(tmp_path: Path, flag: str, reason: str) -> None:
    inputs = _link_inputs(tmp_path)
    inputs[flag] = True
    assert link_reason(**inputs) == reason


def test_link_missing_binary(tmp_path: Path) -> None:
    inputs = _link_inputs(tmp_path)
    inputs["binary"].unlink()
    assert link_reason(**inputs) == "binary missing"


def test_link_command_changed(tmp_path: Path) -> None:
    inputs = _link_inputs(tmp_path)
    inputs["previous_command"] = None
    assert link_reason(**inputs) == "link command changed"
    command = inputs["command"]
    inputs["previous_command"] = LinkCommand(command.linker, ("-O0",), command.output)
    assert link_reason(**inputs) == "link command changed"


def test_link_newer_linker_script(tmp_path: Path) -> None:
    inputs = _link_inputs(tmp_path)
    os.utime(inputs["ldscripts"][0], ns=(T2, T2))
    assert link_reason(**inputs) == "linker script 'syms.ld' changed"


def test_link_missing_linker_script_is_fatal(tmp_path: Path) -> None:
    inputs = _link_inputs(tmp_path)
    inputs["ldscripts"][0].unlink()
    with pytest.raises(ConfigError):
        link_reason(**inputs)


def test_link_newer_object_or_library(tmp_path: Path) -> None:
    inputs = _link_inputs(tmp_path)
    os.utime(inputs["objects"][0], ns=(T2, T2))
    assert link_reason(**inputs) == "object 'main.o' is newer"

    inputs = _link_inputs(tmp_path)
    os.utime(inputs["static_libraries"][0], ns=(T2, T2))
    assert link_reason(**inputs) == "library 'libextra.a' is newer"


def test_link_unreadable_object_relinks(tmp_path: Path) -> None:
    inputs = _link_inputs(tmp_path)
    Path(inputs["objects"][0]).unlink()
    assert link_reason(**inputs) == "object 'main.o' is newer"


def test_resolve_static_libraries(tmp_path: Path) -> None:
    first = tmp_path / "first"
    second = tmp_path / "second"
    first.mkdir()
    second.mkdir()
    (second / "libfoo.a").write_bytes(b"")
    (first / "libfoo.a").write_bytes(b"")
    (second / "libbar.a").write_bytes(b"")

    resolved = resolve_static_libraries([first, second], ["foo", "bar", "nx"])

    assert resolved == [first / "libfoo.a", second / "libbar.a"]


# ── conversion_reason ───────────────────────────────────────────────


def test_conversion_reasons(tmp_path: Path) -> None:
    binary = _file(tmp_path / "m.elf", T0)
    converted = tmp_path / "m.nso"
    listing = _file(tmp_path / "main.syms", T0)

    assert conversion_reason(linked=True, binary=binary, converted=converted) == "binary relinked"
    assert (
        conversion_reason(linked=False, binary=binary, converted=converted)
        == "converted artifact missing"
    )
    _file(converted, T1)
    assert conversion_reason(linked=False, binary=binary, converted=converted) is None
    assert (
        conversion_reason(
            linked=False, binary=binary, converted=converted, symbol_listings=[listing]
        )
        is None
    )

    os.utime(binary, ns=(T2, T2))
    assert conversion_reason(linked=False, binary=binary, converted=converted) == "binary is newer"

    os.utime(binary, ns=(T0, T0))
    os.utime(listing, ns=(T2, T2))
    assert (
        conversion_reason(
            linked=False, binary=binary, converted=converted, symbol_listings=[listing]
        )
        == "symbol listing 'main.syms' changed"
    )
    assert conversion_reason(linked=False, binary=binary, converted=converted) is None


def _unit(root: Path, *, compiled: bool = True) -> tuple[SourceFile, CompileCommand]:
    path = _file(root / "src" / "main.c", T0)
    source = SourceFile.discover(path)
    assert source is not None
    output = root / "o" / source.object_name
    depfile = root / "o" / source.depfile_name
    command = CompileCommand(
        compiler="/bin/gcc",
        arguments=("-O3", "-c", "-o", str(output), str(source.path)),
        source=str(source.path),
        output=str(output),
        depfile=str(depfile),
    )
    if compiled:
        _file(output, T1)
        depfile.write_text(f"{output}: {source.path}\n", encoding="utf-8")
    return source, command


def _link_inputs(root: Path) -> dict:
    binary = _file(root / "m.elf", T1)
    obj = _file(root / "o" / "main.o", T0)
    script = _file(root / "syms.ld", T0)
    library = _file(root / "lib" / "libextra.a", T0)
    command = LinkCommand(
        linker="/bin/g++", arguments=(str(obj), "-o", str(binary)), output=str(binary)
    )
    return {
        "binary": binary,
        "command": command,
        "previous_command": command,
        "objects": [str(obj)],
        "objects_compiled": False,
        "sources_removed": False,
        "object_list_changed": False,
        "config_changed": False,
        "ldscripts": [script],
        "static_libraries": [library],
    }


def _file(path: Path, ns: int) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"")
    os.utime(path, ns=(ns, ns))
    return path
