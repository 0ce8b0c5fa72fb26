"""Per-profile layout of build outputs and persisted state."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

TARGET_SUBDIR = Path("target") / "nxmod"


@dataclass(frozen=True, slots=True)
class BuildLayout:
    root: Path
    profile: str
    module_name: str

    @property
    def target(self) -> Path:
        return self.root / TARGET_SUBDIR / self.profile

    @property
    def object_dir(self) -> Path:
        return self.target / "o"

    @property
    def compdb_cache(self) -> Path:
        return self.target / "compdb.cbor"

    @property
    def compile_commands(self) -> Path:
        return self.target / "compile_commands.json"

    @property
    def objects_cache(self) -> Path:
        return self.target / "objects.cache"

    @property
    def link_cache(self) -> Path:
        return self.target / "link.cache"

    @property
    def manifest_json(self) -> Path:
        return self.target / "main.npdm.json"

    @property
    def manifest(self) -> Path:
        return self.target / "main.npdm"

    @property
    def version_script(self) -> Path:
        return self.target / "verfile"

    @property
    def elf(self) -> Path:
        return self.target / f"{self.module_name}.elf"

    @property
    def nso(self) -> Path:
        return self.target / f"{self.module_name}.nso"

    @property
    def missing_symbols(self) -> Path:
        return self.target / "missing_symbols.txt"

    @property
    def disallowed_instructions(self) -> Path:
        return self.target / "disallowed_instructions.txt"

    def ensure(self) -> None:
        self.object_dir.mkdir(parents=True, exist_ok=True)

    def display(self, path: Path) -> str:
        """Render *path* relative to the project root when possible."""
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)
