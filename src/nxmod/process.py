"""Subprocess execution for compiler, linker and inspection tools."""

from __future__ import annotations

import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from nxmod.errors import BuildError

STDERR_CONTEXT_LIMIT = 2000


@dataclass(frozen=True, slots=True)
class ProcessResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)

    def check(
        self,
        error_cls: type[BuildError],
        message: str,
        *,
        hint: str | None = None,
    ) -> ProcessResult:
        """Return ``self`` on success, raise *error_cls* otherwise."""
        if self.ok:
            return self
        raise error_cls(
            message,
            hint=hint,
            context={
                "returncode": str(self.returncode),
                "command": self.command_line,
                "stderr": self.stderr[:STDERR_CONTEXT_LIMIT],
            },
        )


class ToolRunner(Protocol):
    def run(self, argv: Sequence[str], *, cwd: Path | None = None) -> ProcessResult:
        """Run *argv* to completion and capture its output."""


@dataclass(slots=True)
class SubprocessRunner:
    """Runs tools as child processes with stdout and stderr captured."""

    def run(self, argv: Sequence[str], *, cwd: Path | None = None) -> ProcessResult:
        command = tuple(str(arg) for arg in argv)
        try:
            result = subprocess.run(
                command,
                cwd=str(cwd) if cwd is not None else None,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            return ProcessResult(argv=command, returncode=127, stderr=f"{command[0]}: {exc}")
        return ProcessResult(
            argv=command,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )
