"""Compiler and linker flag resolution.

User flag lists replace the defaults unless they contain the ``<default>``
placeholder, which splices the default list in at that position. The
language lists then extend each other: C extends common, C++ extends C,
assembly extends C++ and link extends common.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from nxmod.config import FlagConfig

DEFAULT_PLACEHOLDER = "<default>"

DEFAULT_COMMON = (
    "-march=armv8-a+crc+crypto",
    "-mtune=cortex-a57",
    "-mtp=soft",
    "-fPIC",
    "-fvisibility=hidden",
    "-g",
)

DEFAULT_C = (
    "-Wall",
    "-Werror",
    "-ffunction-sections",
    "-fdata-sections",
    "-O3",
)

DEFAULT_CXX = (
    "-std=c++20",
    "-fno-rtti",
    "-fno-exceptions",
    "-fno-asynchronous-unwind-tables",
    "-fno-unwind-tables",
)

DEFAULT_AS: tuple[str, ...] = ()

DEFAULT_LD = (
    "-nostartfiles",
    "-nodefaultlibs",
    "-Wl,--shared",
    "-Wl,--export-dynamic",
    "-Wl,-z,nodynamic-undefined-weak",
    "-Wl,--build-id=sha1",
    "-Wl,--gc-sections",
    "-Wl,--nx-module-name",
)


def expand_flags(
    configured: Sequence[str] | None,
    defaults: Sequence[str],
    base: Sequence[str] = (),
) -> list[str]:
    flags = list(base)
    if configured is None:
        flags.extend(defaults)
        return flags
    for flag in configured:
        if flag == DEFAULT_PLACEHOLDER:
            flags.extend(defaults)
        else:
            flags.append(flag)
    return flags


@dataclass(slots=True)
class Flags:
    cflags: list[str] = field(default_factory=list)
    cxxflags: list[str] = field(default_factory=list)
    sflags: list[str] = field(default_factory=list)
    ldflags: list[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: FlagConfig) -> Flags:
        common = expand_flags(config.common, DEFAULT_COMMON)
        cflags = expand_flags(config.c, DEFAULT_C, common)
        cxxflags = expand_flags(config.cxx, DEFAULT_CXX, cflags)
        sflags = expand_flags(config.as_, DEFAULT_AS, cxxflags)
        ldflags = expand_flags(config.ld, DEFAULT_LD, common)
        return cls(cflags=cflags, cxxflags=cxxflags, sflags=sflags, ldflags=ldflags)

    def add_defines(self, defines: Iterable[str]) -> None:
        flags = [f"-D{define}" for define in defines]
        self.cflags.extend(flags)
        self.cxxflags.extend(flags)

    def add_includes(self, includes: Iterable[object]) -> None:
        """Add ``-I`` flags for C, C++ and assembly (preprocessed with cpp)."""
        flags = [f"-I{include}" for include in includes]
        self.cflags.extend(flags)
        self.cxxflags.extend(flags)
        self.sflags.extend(flags)

    def set_init(self, symbol: str) -> None:
        self.ldflags.append(f"-Wl,-init={symbol}")

    def set_version_script(self, path: object) -> None:
        self.ldflags.append(f"-Wl,--version-script={path}")

    def add_libpaths(self, paths: Iterable[object]) -> None:
        self.ldflags.extend(f"-L{path}" for path in paths)

    def add_libraries(self, libraries: Iterable[str]) -> None:
        self.ldflags.extend(f"-l{library}" for library in libraries)

    def add_ldscripts(self, scripts: Iterable[object]) -> None:
        self.ldflags.extend(f"-Wl,-T,{script}" for script in scripts)
