"""Public package entrypoint for the nxmod module build engine."""

from .build import ModuleBuild
from .checker import BinaryChecker
from .compdb import CompileDatabase
from .config import Config
from .errors import (
    BuildError,
    CheckFailedError,
    CheckToolError,
    CompileError,
    ConfigError,
    ConversionError,
    DepfileError,
    LinkError,
    ManifestError,
    SourceError,
    ToolchainError,
)
from .executor import Executor
from .models import (
    BuildResult,
    CheckResult,
    CompileCommand,
    CompileRecord,
    DisallowedInstruction,
    Language,
    LinkCommand,
    SourceFile,
)
from .observability import BuildLogger
from .toolchain import Toolchain

__all__ = [
    "BinaryChecker",
    "BuildError",
    "BuildLogger",
    "BuildResult",
    "CheckFailedError",
    "CheckResult",
    "CheckToolError",
    "CompileCommand",
    "CompileDatabase",
    "CompileError",
    "CompileRecord",
    "Config",
    "ConfigError",
    "ConversionError",
    "DepfileError",
    "DisallowedInstruction",
    "Executor",
    "Language",
    "LinkCommand",
    "LinkError",
    "ManifestError",
    "ModuleBuild",
    "SourceError",
    "SourceFile",
    "Toolchain",
    "ToolchainError",
]
