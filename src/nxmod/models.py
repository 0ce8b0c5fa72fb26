"""Core typed dataclasses for sources, commands and build results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from nxmod.cache.keys import path_hash

DISPLAY_LIMIT = 10


class Language(StrEnum):
    C = "c"
    CXX = "cxx"
    ASM = "asm"

    @classmethod
    def from_suffix(cls, suffix: str) -> Language | None:
        """Map a file suffix (with or without the dot) to a language."""
        return _SUFFIXES.get(suffix.removeprefix("."))


_SUFFIXES: dict[str, Language] = {
    "c": Language.C,
    "cpp": Language.CXX,
    "cc": Language.CXX,
    "cxx": Language.CXX,
    "c++": Language.CXX,
    "s": Language.ASM,
    "S": Language.ASM,
    "asm": Language.ASM,
}


@dataclass(frozen=True, slots=True)
class SourceFile:
    path: Path
    language: Language
    path_hash: str

    @classmethod
    def discover(cls, path: str | Path) -> SourceFile | None:
        """Classify *path*; return ``None`` if it is not a compilable source."""
        resolved = Path(path).resolve()
        language = Language.from_suffix(resolved.suffix)
        if language is None or not resolved.stem:
            return None
        return cls(path=resolved, language=language, path_hash=path_hash(resolved))

    @property
    def derived_stem(self) -> str:
        return f"{self.path.stem}-{self.path_hash}"

    @property
    def object_name(self) -> str:
        return f"{self.derived_stem}.o"

    @property
    def depfile_name(self) -> str:
        return f"{self.derived_stem}.d"


@dataclass(frozen=True, slots=True)
class CompileCommand:
    compiler: str
    arguments: tuple[str, ...]
    source: str
    output: str
    depfile: str

    @property
    def argv(self) -> tuple[str, ...]:
        return (self.compiler, *self.arguments)

    def same_invocation(self, other: CompileCommand) -> bool:
        """Cache-invalidation equality: compiler path and ordered arguments."""
        return self.compiler == other.compiler and self.arguments == other.arguments


@dataclass(frozen=True, slots=True)
class CompileRecord:
    path_hash: str
    command: CompileCommand


@dataclass(frozen=True, slots=True)
class LinkCommand:
    linker: str
    arguments: tuple[str, ...]
    output: str

    @property
    def argv(self) -> tuple[str, ...]:
        return (self.linker, *self.arguments)

    def same_invocation(self, other: LinkCommand) -> bool:
        return self.linker == other.linker and self.arguments == other.arguments


@dataclass(frozen=True, slots=True)
class DisallowedInstruction:
    address: str
    instruction: str

    def __str__(self) -> str:
        return f"{self.address}: {self.instruction}"


@dataclass(frozen=True, slots=True)
class CheckResult:
    missing_symbols: tuple[str, ...] = ()
    disallowed_instructions: tuple[DisallowedInstruction, ...] = ()

    @property
    def passed(self) -> bool:
        return not self.missing_symbols and not self.disallowed_instructions


@dataclass(slots=True)
class BuildResult:
    """Terminal state of one build run."""

    ok: bool
    profile: str
    artifact: str | None = None
    stage: str | None = None
    diagnostics: tuple[str, ...] = ()
    compiled: list[str] = field(default_factory=list)
    linked: bool = False
    checked: bool = False
    converted: bool = False

    @classmethod
    def failure(
        cls,
        *,
        profile: str,
        stage: str,
        diagnostics: tuple[str, ...],
        compiled: list[str] | None = None,
    ) -> BuildResult:
        return cls(
            ok=False,
            profile=profile,
            stage=stage,
            diagnostics=diagnostics,
            compiled=list(compiled or []),
        )


def summarize(items: list[str], limit: int = DISPLAY_LIMIT) -> list[str]:
    """Return at most *limit* entries plus a ``... (N more)`` line."""
    head = list(items[:limit])
    if len(items) > limit:
        head.append(f"... ({len(items) - limit} more)")
    return head
