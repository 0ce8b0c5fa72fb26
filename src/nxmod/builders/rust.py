"""Rust static library builder (cargo)."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from nxmod.config import RustConfig
from nxmod.errors import CompileError
from nxmod.process import ProcessResult, ToolRunner


@dataclass(slots=True)
class CargoBuilder:
    config: RustConfig
    root: Path
    tool: str = "cargo"

    @property
    def manifest_path(self) -> Path:
        return (self.root / self.config.manifest).resolve()

    @property
    def staticlib_path(self) -> Path:
        return (
            self.manifest_path.parent
            / "target"
            / self.config.target
            / "release"
            / f"lib{self.config.staticlib}.a"
        )

    def command(self) -> tuple[str, ...]:
        return (
            self.tool,
            "build",
            "--release",
            "--target",
            self.config.target,
            "--manifest-path",
            str(self.manifest_path),
            *self.config.flags,
        )

    def build(self, runner: ToolRunner) -> ProcessResult:
        """Run cargo; it does its own incremental tracking."""
        result = runner.run(self.command(), cwd=self.manifest_path.parent)
        return result.check(
            CompileError,
            "cargo build failed.",
            hint="Check the cargo output above.",
        )
