"""Cross toolchain paths and fingerprinting.

Locating the toolchain is simple glue: everything lives at fixed paths under
a devkitPro installation (``$DEVKITPRO``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from nxmod.errors import ToolchainError
from nxmod.process import ToolRunner

DEVKITPRO_ENV = "DEVKITPRO"
TOOL_PREFIX = "aarch64-none-elf-"


@dataclass(frozen=True, slots=True)
class Toolchain:
    cc: Path
    cxx: Path
    objdump: Path
    elf2nso: Path
    npdmtool: Path
    assembler: Path | None = None
    libnx_include: Path | None = None
    system_includes_c: tuple[Path, ...] = ()
    system_includes_cxx: tuple[Path, ...] = ()
    cargo: Path = field(default_factory=lambda: Path("cargo"))

    @property
    def as_driver(self) -> Path:
        """Assembly goes through the C++ driver unless a separate one is set."""
        return self.assembler or self.cxx

    @property
    def linker(self) -> Path:
        return self.cxx

    @classmethod
    def from_devkitpro(cls, root: str | Path) -> Toolchain:
        base = Path(root)
        bin_dir = base / "devkitA64" / "bin"
        gcc_include = base / "devkitA64" / "aarch64-none-elf" / "include"
        return cls(
            cc=bin_dir / f"{TOOL_PREFIX}gcc",
            cxx=bin_dir / f"{TOOL_PREFIX}g++",
            objdump=bin_dir / f"{TOOL_PREFIX}objdump",
            elf2nso=base / "tools" / "bin" / "elf2nso",
            npdmtool=base / "tools" / "bin" / "npdmtool",
            libnx_include=base / "libnx" / "include",
            system_includes_c=(gcc_include,),
            system_includes_cxx=(gcc_include / "c++", gcc_include),
        )

    @classmethod
    def from_env(cls) -> Toolchain:
        root = os.environ.get(DEVKITPRO_ENV, "")
        if not root:
            raise ToolchainError(
                f"{DEVKITPRO_ENV} is not set.",
                hint="Install devkitPro and export DEVKITPRO=/opt/devkitpro.",
            )
        if not Path(root).is_absolute():
            raise ToolchainError(
                f"{DEVKITPRO_ENV} is not an absolute path.",
                hint="Set DEVKITPRO to the absolute path of your devkitPro installation.",
                context={"value": root},
            )
        return cls.from_devkitpro(root)

    def ensure_available(self) -> None:
        required = {
            "cc": self.cc,
            "cxx": self.cxx,
            "objdump": self.objdump,
            "elf2nso": self.elf2nso,
            "npdmtool": self.npdmtool,
        }
        missing = {name: str(path) for name, path in required.items() if not path.exists()}
        if missing:
            raise ToolchainError(
                "Toolchain executables are missing.",
                hint="Install devkitA64 and switch-tools with devkitPro pacman.",
                context=missing,
            )

    def fingerprint(self, runner: ToolRunner) -> dict[str, str]:
        """Identify the compilers by their ``--version`` banner.

        A tool that cannot report its version gets an ``unknown:<path>``
        entry so the fingerprint still changes when the path does.
        """
        drivers = {"c": self.cc, "cxx": self.cxx, "asm": self.as_driver}
        fingerprint: dict[str, str] = {}
        for language, driver in drivers.items():
            result = runner.run([str(driver), "--version"])
            banner = result.stdout.splitlines()[0].strip() if result.stdout else ""
            if not result.ok or not banner:
                banner = f"unknown:{driver}"
            fingerprint[language] = banner
        return fingerprint
