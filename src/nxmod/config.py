"""Typed project configuration loaded from ``Module.toml``.

Sections ``[build]`` and ``[check]`` support named profiles under
``[<section>.profiles.<name>]``; a profile extends the base section.
"""

from __future__ import annotations

import tomllib
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Generic, Protocol, Self, TypeVar

from nxmod.errors import ConfigError

CONFIG_FILE = "Module.toml"
BASE_PROFILE = "none"


class Profilable(Protocol):
    def extend(self, other: Self) -> Self:
        """Return this section extended with *other*."""


T = TypeVar("T", bound=Profilable)


@dataclass(frozen=True, slots=True)
class ModuleConfig:
    name: str
    title_id: int
    default_profile: str | None = None
    disallow_base_profile: bool = False

    @property
    def title_id_hex(self) -> str:
        return f"{self.title_id:016x}"


@dataclass(frozen=True, slots=True)
class FlagConfig:
    common: tuple[str, ...] | None = None
    c: tuple[str, ...] | None = None
    cxx: tuple[str, ...] | None = None
    as_: tuple[str, ...] | None = None
    ld: tuple[str, ...] | None = None

    def extend(self, other: FlagConfig) -> FlagConfig:
        return FlagConfig(
            common=_extend_flags(self.common, other.common),
            c=_extend_flags(self.c, other.c),
            cxx=_extend_flags(self.cxx, other.cxx),
            as_=_extend_flags(self.as_, other.as_),
            ld=_extend_flags(self.ld, other.ld),
        )


@dataclass(frozen=True, slots=True)
class BuildConfig:
    entry: str | None = None
    sources: tuple[str, ...] = ()
    includes: tuple[str, ...] = ()
    defines: tuple[str, ...] = ()
    libpaths: tuple[str, ...] = ()
    libraries: tuple[str, ...] = ()
    ldscripts: tuple[str, ...] = ()
    flags: FlagConfig = field(default_factory=FlagConfig)

    def extend(self, other: BuildConfig) -> BuildConfig:
        return BuildConfig(
            entry=other.entry if other.entry is not None else self.entry,
            sources=self.sources + other.sources,
            includes=self.includes + other.includes,
            defines=self.defines + other.defines,
            libpaths=self.libpaths + other.libpaths,
            libraries=self.libraries + other.libraries,
            ldscripts=self.ldscripts + other.ldscripts,
            flags=self.flags.extend(other.flags),
        )


@dataclass(frozen=True, slots=True)
class CheckConfig:
    ignore: tuple[str, ...] = ()
    symbols: tuple[str, ...] = ()
    disallowed_instructions: tuple[str, ...] = ()

    def extend(self, other: CheckConfig) -> CheckConfig:
        return CheckConfig(
            ignore=self.ignore + other.ignore,
            symbols=self.symbols + other.symbols,
            disallowed_instructions=self.disallowed_instructions
            + other.disallowed_instructions,
        )


@dataclass(frozen=True, slots=True)
class RustConfig:
    manifest: str
    staticlib: str
    target: str = "aarch64-nintendo-switch-freestanding"
    flags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ProfileContainer(Generic[T]):
    base: T
    profiles: dict[str, T] = field(default_factory=dict)

    def get_profile(self, name: str) -> T:
        """Return the base section, extended by profile *name* if it exists."""
        if name == BASE_PROFILE or name not in self.profiles:
            return self.base
        return self.base.extend(self.profiles[name])


@dataclass(frozen=True, slots=True)
class Config:
    module: ModuleConfig
    build: ProfileContainer[BuildConfig]
    check: ProfileContainer[CheckConfig] | None = None
    rust: RustConfig | None = None

    @classmethod
    def from_path(cls, path: str | Path) -> Config:
        config_path = Path(path)
        try:
            raw = config_path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise ConfigError(
                "Configuration file does not exist.",
                hint=f"Create {CONFIG_FILE} at the project root.",
                context={"path": str(config_path)},
            ) from exc
        try:
            payload = tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(
                "Configuration file is not valid TOML.",
                hint=str(exc),
                context={"path": str(config_path)},
            ) from exc
        try:
            return parse_config(payload)
        except ConfigError as exc:
            raise exc.with_context(path=str(config_path))

    def select_profile(self, requested: str = BASE_PROFILE) -> str:
        profile = requested
        if requested == BASE_PROFILE and self.module.default_profile is not None:
            if not self.module.default_profile:
                raise ConfigError(
                    "No profile specified.",
                    hint="Specify a profile with `--profile`.",
                )
            profile = self.module.default_profile
        if profile == BASE_PROFILE and self.module.disallow_base_profile:
            raise ConfigError(
                "Base profile is disallowed.",
                hint="Set `module.default-profile` or specify a profile with `--profile`.",
            )
        return profile


def find_root(start: str | Path) -> Path:
    """Return the nearest directory at or above *start* holding the config file."""
    current = Path(start).resolve()
    for candidate in (current, *current.parents):
        if (candidate / CONFIG_FILE).is_file():
            return candidate
    raise ConfigError(
        f"Cannot find {CONFIG_FILE}.",
        hint=f"Run inside a project or create {CONFIG_FILE} at its root.",
        context={"start": str(current)},
    )


def parse_config(payload: dict[str, Any]) -> Config:
    module = _parse_module(_required_table(payload, "module"))
    build = _parse_profiles(_required_table(payload, "build"), _parse_build, "build")
    check_raw = payload.get("check")
    check = None
    if check_raw is not None:
        check = _parse_profiles(_as_table(check_raw, "check"), _parse_check, "check")
    rust_raw = payload.get("rust")
    rust = _parse_rust(_as_table(rust_raw, "rust")) if rust_raw is not None else None
    return Config(module=module, build=build, check=check, rust=rust)


def _parse_module(table: dict[str, Any]) -> ModuleConfig:
    title_id = table.get("title-id")
    if not isinstance(title_id, int) or title_id < 0:
        raise ConfigError(
            "Invalid `module.title-id` value.",
            hint="Use a 64-bit integer, e.g. `title-id = 0x0100000000000000`.",
        )
    default_profile = table.get("default-profile")
    if default_profile is not None and not isinstance(default_profile, str):
        raise ConfigError("Invalid `module.default-profile` value.")
    disallow = table.get("disallow-base-profile", False)
    if not isinstance(disallow, bool):
        raise ConfigError("Invalid `module.disallow-base-profile` value.")
    return ModuleConfig(
        name=_required_str(table, "name", "module"),
        title_id=title_id,
        default_profile=default_profile,
        disallow_base_profile=disallow,
    )


def _parse_build(table: dict[str, Any]) -> BuildConfig:
    entry = table.get("entry")
    if entry is not None and (not isinstance(entry, str) or not entry):
        raise ConfigError("Invalid `build.entry` value.")
    flags_raw = table.get("flags", {})
    flags_table = _as_table(flags_raw, "build.flags")
    return BuildConfig(
        entry=entry,
        sources=_str_list(table, "sources", "build"),
        includes=_str_list(table, "includes", "build"),
        defines=_str_list(table, "defines", "build"),
        libpaths=_str_list(table, "libpaths", "build"),
        libraries=_str_list(table, "libraries", "build"),
        ldscripts=_str_list(table, "ldscripts", "build"),
        flags=FlagConfig(
            common=_optional_str_list(flags_table, "common", "build.flags"),
            c=_optional_str_list(flags_table, "c", "build.flags"),
            cxx=_optional_str_list(flags_table, "cxx", "build.flags"),
            as_=_optional_str_list(flags_table, "as", "build.flags"),
            ld=_optional_str_list(flags_table, "ld", "build.flags"),
        ),
    )


def _parse_check(table: dict[str, Any]) -> CheckConfig:
    return CheckConfig(
        ignore=_str_list(table, "ignore", "check"),
        symbols=_str_list(table, "symbols", "check"),
        disallowed_instructions=_str_list(table, "disallowed-instructions", "check"),
    )


def _parse_rust(table: dict[str, Any]) -> RustConfig:
    rust = RustConfig(
        manifest=_required_str(table, "manifest", "rust"),
        staticlib=_required_str(table, "staticlib", "rust"),
        flags=_str_list(table, "flags", "rust"),
    )
    target = table.get("target")
    if target is not None:
        if not isinstance(target, str) or not target:
            raise ConfigError("Invalid `rust.target` value.")
        rust = replace(rust, target=target)
    return rust


def _parse_profiles(
    table: dict[str, Any],
    parse: Callable[[dict[str, Any]], T],
    section: str,
) -> ProfileContainer[T]:
    body = {key: value for key, value in table.items() if key != "profiles"}
    profiles_raw = _as_table(table.get("profiles", {}), f"{section}.profiles")
    profiles = {
        name: parse(_as_table(value, f"{section}.profiles.{name}"))
        for name, value in profiles_raw.items()
    }
    return ProfileContainer(base=parse(body), profiles=profiles)


def _extend_flags(
    base: tuple[str, ...] | None,
    other: tuple[str, ...] | None,
) -> tuple[str, ...] | None:
    if other is None:
        return base
    if base is None:
        # An unset base list means "defaults", so keep them in the merged list.
        if "<default>" in other:
            return other
        return (*other, "<default>")
    return base + tuple(flag for flag in other if flag not in base)


def _required_table(payload: dict[str, Any], key: str) -> dict[str, Any]:
    if key not in payload:
        raise ConfigError(f"Missing `[{key}]` section.")
    return _as_table(payload[key], key)


def _as_table(value: Any, key: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"Invalid `{key}` value: expected a table.")
    return value


def _required_str(table: dict[str, Any], key: str, section: str) -> str:
    value = table.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Invalid `{section}.{key}` value.")
    return value


def _str_list(table: dict[str, Any], key: str, section: str) -> tuple[str, ...]:
    return _optional_str_list(table, key, section) or ()


def _optional_str_list(table: dict[str, Any], key: str, section: str) -> tuple[str, ...] | None:
    value = table.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"Invalid `{section}.{key}` value: expected a list of strings.")
    return tuple(value)
