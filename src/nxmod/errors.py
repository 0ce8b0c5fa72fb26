"""Typed build error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import Self


class ErrorCode(StrEnum):
    """Stable error identifiers used across build stages."""

    CONFIG = "E_CONFIG"
    TOOLCHAIN = "E_TOOLCHAIN"
    SOURCE = "E_SOURCE"
    DEPFILE = "E_DEPFILE"
    COMPILE = "E_COMPILE"
    LINK = "E_LINK"
    MANIFEST = "E_MANIFEST"
    CHECK_TOOL = "E_CHECK_TOOL"
    CHECK_FAILED = "E_CHECK_FAILED"
    CONVERSION = "E_CONVERSION"


class BuildError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: dict[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""

    def with_context(self, **items: str) -> Self:
        """Attach call-site context and return the same error for re-raising."""
        for key, value in items.items():
            self.context.setdefault(key, value)
        return self

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ConfigError(BuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CONFIG, hint=hint, context=context)


class ToolchainError(BuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.TOOLCHAIN, hint=hint, context=context)


class SourceError(BuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.SOURCE, hint=hint, context=context)


class DepfileError(BuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.DEPFILE, hint=hint, context=context)


class CompileError(BuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.COMPILE, hint=hint, context=context)


class LinkError(BuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.LINK, hint=hint, context=context)


class ManifestError(BuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.MANIFEST, hint=hint, context=context)


class CheckToolError(BuildError):
    """The inspection tool failed or produced output that could not be parsed."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CHECK_TOOL, hint=hint, context=context)


class CheckFailedError(BuildError):
    """The binary was produced but violates the verification policy."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CHECK_FAILED, hint=hint, context=context)


class ConversionError(BuildError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CONVERSION, hint=hint, context=context)


__all__ = [
    "BuildError",
    "CheckFailedError",
    "CheckToolError",
    "CompileError",
    "ConfigError",
    "ConversionError",
    "DepfileError",
    "ErrorCode",
    "LinkError",
    "ManifestError",
    "SourceError",
    "ToolchainError",
]
