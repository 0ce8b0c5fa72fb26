"""Shared test fixtures.

``FakeToolRunner`` stands in for the cross toolchain: it writes the files
a real compiler, linker, converter or manifest tool would produce and
returns canned ``objdump`` output, so the whole pipeline runs in-process.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from nxmod.observability import BuildLogger
from nxmod.process import ProcessResult
from nxmod.toolchain import Toolchain

FAKE_BIN = Path("/opt/fake-devkit/bin")

EMPTY_SYMBOL_DUMP = (
    "\ndemo.elf:     file format elf64-littleaarch64\n\nDYNAMIC SYMBOL TABLE:\n"
)


@dataclass(slots=True)
class FakeToolRunner:
    version: str = "13.2.0"
    symbol_dump: str = EMPTY_SYMBOL_DUMP
    disassembly: str = ""
    fail_sources: set[str] = field(default_factory=set)
    extra_deps: dict[str, list[str]] = field(default_factory=dict)
    fail_link: bool = False
    fail_objdump: bool = False
    calls: list[tuple[str, ...]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def run(self, argv: Sequence[str], *, cwd: Path | None = None) -> ProcessResult:
        command = tuple(str(arg) for arg in argv)
        with self._lock:
            self.calls.append(command)
        tool = Path(command[0]).name
        if "--version" in command:
            return ProcessResult(command, 0, stdout=f"{tool} (fake) {self.version}\nCopyright\n")
        if tool in {"aarch64-none-elf-gcc", "aarch64-none-elf-g++"}:
            if "-c" in command:
                return self._compile(command)
            return self._link(command)
        if tool == "aarch64-none-elf-objdump":
            if self.fail_objdump:
                return ProcessResult(command, 1, stderr="objdump: cannot read file\n")
            output = self.symbol_dump if command[1] == "-T" else self.disassembly
            return ProcessResult(command, 0, stdout=output)
        if tool in {"elf2nso", "npdmtool"}:
            Path(command[2]).write_bytes(f"{tool}:{command[1]}".encode())
            return ProcessResult(command, 0)
        if tool == "cargo":
            return ProcessResult(command, 0)
        return ProcessResult(command, 127, stderr=f"{tool}: not found\n")

    def _compile(self, command: tuple[str, ...]) -> ProcessResult:
        source = command[-1]
        output = command[command.index("-o") + 1]
        depfile = command[command.index("-MF") + 1]
        name = Path(source).name
        if name in self.fail_sources:
            return ProcessResult(command, 1, stderr=f"{source}:1:1: error: expected ';'\n")
        deps = " ".join(_escape(path) for path in [source, *self.extra_deps.get(name, [])])
        Path(output).write_bytes(f"object:{source}".encode())
        Path(depfile).write_text(f"{_escape(output)}: {deps}\n", encoding="utf-8")
        return ProcessResult(command, 0)

    def _link(self, command: tuple[str, ...]) -> ProcessResult:
        if self.fail_link:
            return ProcessResult(command, 1, stderr="ld: undefined reference to `main'\n")
        output = command[command.index("-o") + 1]
        Path(output).write_bytes(b"\x7fELF")
        return ProcessResult(command, 0)

    def compiles(self) -> list[str]:
        return [call[-1] for call in self.calls if "-c" in call]

    def links(self) -> list[tuple[str, ...]]:
        return [
            call
            for call in self.calls
            if Path(call[0]).name == "aarch64-none-elf-g++"
            and "-c" not in call
            and "--version" not in call
        ]

    def tool_calls(self, tool: str) -> list[tuple[str, ...]]:
        return [call for call in self.calls if Path(call[0]).name == tool]

    def reset(self) -> None:
        with self._lock:
            self.calls.clear()


def _escape(path: str) -> str:
    return path.replace(" ", "\\ ")


@pytest.fixture
def fake_runner() -> FakeToolRunner:
    return FakeToolRunner()


@pytest.fixture
def fake_toolchain() -> Toolchain:
    return Toolchain(
        cc=FAKE_BIN / "aarch64-none-elf-gcc",
        cxx=FAKE_BIN / "aarch64-none-elf-g++",
        objdump=FAKE_BIN / "aarch64-none-elf-objdump",
        elf2nso=FAKE_BIN / "elf2nso",
        npdmtool=FAKE_BIN / "npdmtool",
        libnx_include=Path("/opt/fake-devkit/libnx/include"),
        system_includes_c=(Path("/opt/fake-devkit/include"),),
        system_includes_cxx=(Path("/opt/fake-devkit/include/c++"),),
    )


@pytest.fixture
def quiet_logger() -> BuildLogger:
    """Logger that keeps records without printing."""
    return BuildLogger(verbose_enabled=True, stream=None)
