"""Tests for Module.toml parsing, profiles and project root discovery."""

from __future__ import annotations

from pathlib import Path

import pytest

from nxmod.config import (
    BASE_PROFILE,
    Config,
    FlagConfig,
    find_root,
    parse_config,
)
from nxmod.errors import ConfigError

BASIC = """
[module]
name = "demo"
title-id = 0x0100000000001000

[build]
entry = "module_main"
sources = ["src"]
includes = ["include"]
libraries = ["nx"]

[build.flags]
c = ["<default>", "-DBASE"]

[build.profiles.debug]
defines = ["DEBUG"]

[build.profiles.debug.flags]
c = ["-DDEBUG_FLAG"]

[check]
ignore = ["__custom_init"]
symbols = ["syms/main.syms"]

[check.profiles.debug]
disallowed-instructions = ["^brk"]
"""


def test_from_path_parses_sections(tmp_path: Path) -> None:
    config = Config.from_path(_write(tmp_path, BASIC))
    assert config.module.name == "demo"
    assert config.module.title_id_hex == "0100000000001000"
    build = config.build.get_profile(BASE_PROFILE)
    assert build.entry == "module_main"
    assert build.sources == ("src",)
    assert build.flags.c == ("<default>", "-DBASE")
    assert config.check is not None
    assert config.check.get_profile(BASE_PROFILE).symbols == ("syms/main.syms",)
    assert config.rust is None


def test_profile_extends_base(tmp_path: Path) -> None:
    config = Config.from_path(_write(tmp_path, BASIC))
    debug = config.build.get_profile("debug")
    assert debug.entry == "module_main"
    assert debug.defines == ("DEBUG",)
    assert debug.flags.c == ("<default>", "-DBASE", "-DDEBUG_FLAG")
    assert config.check is not None
    assert config.check.get_profile("debug").disallowed_instructions == ("^brk",)
    assert config.check.get_profile("debug").ignore == ("__custom_init",)


def test_unknown_profile_falls_back_to_base(tmp_path: Path) -> None:
    config = Config.from_path(_write(tmp_path, BASIC))
    assert config.build.get_profile("release") == config.build.get_profile(BASE_PROFILE)


def test_profile_flags_over_unset_base_keep_defaults() -> None:
    merged = FlagConfig().extend(FlagConfig(c=("-DX",)))
    assert merged.c == ("-DX", "<default>")


def test_select_profile_honours_default_and_disallow() -> None:
    config = parse_config(
        {
            "module": {
                "name": "demo",
                "title-id": 1,
                "default-profile": "release",
                "disallow-base-profile": True,
            },
            "build": {"entry": "main"},
        }
    )
    assert config.select_profile() == "release"
    assert config.select_profile("debug") == "debug"

    strict = parse_config(
        {
            "module": {"name": "demo", "title-id": 1, "disallow-base-profile": True},
            "build": {},
        }
    )
    with pytest.raises(ConfigError) as exc_info:
        strict.select_profile()
    assert exc_info.value.hint is not None


def test_rust_section() -> None:
    config = parse_config(
        {
            "module": {"name": "demo", "title-id": 1},
            "build": {},
            "rust": {"manifest": "rs/Cargo.toml", "staticlib": "demo_rs", "flags": ["-q"]},
        }
    )
    assert config.rust is not None
    assert config.rust.staticlib == "demo_rs"
    assert config.rust.target == "aarch64-nintendo-switch-freestanding"
    assert config.rust.flags == ("-q",)


@pytest.mark.parametrize(
    "payload",
    [
        {"build": {}},
        {"module": {"name": "demo"}, "build": {}},
        {"module": {"name": "demo", "title-id": 1}},
        {"module": {"name": "demo", "title-id": 1}, "build": {"sources": "src"}},
        {"module": {"name": "demo", "title-id": 1}, "build": {"entry": 3}},
        {"module": {"name": "", "title-id": 1}, "build": {}},
    ],
)
def test_malformed_config_raises(payload: dict) -> None:
    with pytest.raises(ConfigError):
        parse_config(payload)


def test_invalid_toml_reports_path(tmp_path: Path) -> None:
    path = _write(tmp_path, "[module\nname = ")
    with pytest.raises(ConfigError) as exc_info:
        Config.from_path(path)
    assert exc_info.value.context["path"] == str(path)


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        Config.from_path(tmp_path / "Module.toml")


def test_find_root_walks_up(tmp_path: Path) -> None:
    _write(tmp_path, BASIC)
    nested = tmp_path / "src" / "deep"
    nested.mkdir(parents=True)
    assert find_root(nested) == tmp_path.resolve()


def test_find_root_without_config(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        find_root(tmp_path)


def _write(root: Path, content: str) -> Path:
    path = root / "Module.toml"
    path.write_text(content, encoding="utf-8")
    return path
