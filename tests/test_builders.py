from __future__ import annotations

from pathlib import Path

import pytest

from nxmod.builders import CargoBuilder, CBuilder
from nxmod.config import BuildConfig, FlagConfig, RustConfig
from nxmod.errors import CompileError, ConfigError
from nxmod.layout import BuildLayout
from nxmod.models import Language, SourceFile
from nxmod.process import ProcessResult
from nxmod.toolchain import Toolchain


def _builder(root: Path, toolchain: Toolchain, **overrides: object) -> CBuilder:
    build = BuildConfig(entry="module_main", **overrides)  # type: ignore[arg-type]
    layout = BuildLayout(root=root, profile="none", module_name="demo")
    return CBuilder.for_profile(toolchain=toolchain, build=build, root=root, layout=layout)


def _source(root: Path, name: str) -> SourceFile:
    path = root / "src" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n", encoding="utf-8")
    source = SourceFile.discover(path)
    assert source is not None
    return source


# ── CBuilder ────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("name", "language", "driver"),
    [
        ("main.c", Language.C, "aarch64-none-elf-gcc"),
        ("hook.cpp", Language.CXX, "aarch64-none-elf-g++"),
        ("crt0.s", Language.ASM, "aarch64-none-elf-g++"),
    ],
)
def test_compile_command_picks_driver(
    tmp_path: Path,
    fake_toolchain: Toolchain,
    name: str,
    language: Language,
    driver: str,
) -> None:
    builder = _builder(tmp_path, fake_toolchain)
    source = _source(tmp_path, name)

    command = builder.compile_command(source)

    assert source.language is language
    assert Path(command.compiler).name == driver
    assert command.arguments[:4] == ("-MMD", "-MP", "-MF", command.depfile)
    assert command.arguments[-4:] == ("-c", "-o", command.output, str(source.path))
    assert command.output == str(builder.object_path(source))
    assert command.depfile.endswith(f"{source.derived_stem}.d")


def test_assembly_is_preprocessed_with_cxx_flags(
    tmp_path: Path, fake_toolchain: Toolchain
) -> None:
    builder = _builder(tmp_path, fake_toolchain)
    command = builder.compile_command(_source(tmp_path, "crt0.s"))

    start = command.arguments.index("-x")
    assert command.arguments[start : start + 2] == ("-x", "assembler-with-cpp")
    assert "-std=c++20" in command.arguments


def test_includes_and_defines_are_resolved(tmp_path: Path, fake_toolchain: Toolchain) -> None:
    builder = _builder(
        tmp_path, fake_toolchain, includes=("include",), defines=("NDEBUG", "LEVEL=2")
    )
    command = builder.compile_command(_source(tmp_path, "main.c"))

    includes = [arg for arg in command.arguments if arg.startswith("-I")]
    assert includes == [
        f"-I{fake_toolchain.libnx_include}",
        f"-I{(tmp_path / 'include').resolve()}",
    ]
    assert "-DNDEBUG" in command.arguments
    assert "-DLEVEL=2" in command.arguments


def test_user_flags_replace_defaults(tmp_path: Path, fake_toolchain: Toolchain) -> None:
    builder = _builder(tmp_path, fake_toolchain, flags=FlagConfig(c=("-O0",)))
    command = builder.compile_command(_source(tmp_path, "main.c"))
    assert "-O0" in command.arguments
    assert "-O3" not in command.arguments


def test_missing_entry_is_config_error(tmp_path: Path, fake_toolchain: Toolchain) -> None:
    layout = BuildLayout(root=tmp_path, profile="none", module_name="demo")
    with pytest.raises(ConfigError, match="No entry point"):
        CBuilder.for_profile(
            toolchain=fake_toolchain, build=BuildConfig(), root=tmp_path, layout=layout
        )


def test_link_command_layout(tmp_path: Path, fake_toolchain: Toolchain) -> None:
    builder = _builder(
        tmp_path,
        fake_toolchain,
        libpaths=("lib",),
        libraries=("hook",),
        ldscripts=("link.ld",),
    )
    output = tmp_path / "demo.elf"

    command = builder.link_command(["a.o", "b.o"], output, extra_inputs=["librs.a"])

    assert Path(command.linker).name == "aarch64-none-elf-g++"
    assert command.arguments[-5:] == ("a.o", "b.o", "librs.a", "-o", str(output))
    assert "-Wl,-init=module_main" in command.arguments
    assert f"-L{(tmp_path / 'lib').resolve()}" in command.arguments
    assert "-lhook" in command.arguments
    assert f"-Wl,-T,{(tmp_path / 'link.ld').resolve()}" in command.arguments
    assert command.output == str(output)


# ── CargoBuilder ────────────────────────────────────────────────────


def test_cargo_command_and_staticlib(tmp_path: Path) -> None:
    config = RustConfig(manifest="rs/Cargo.toml", staticlib="hooks", flags=("--locked",))
    cargo = CargoBuilder(config, tmp_path)

    assert cargo.command() == (
        "cargo",
        "build",
        "--release",
        "--target",
        "aarch64-nintendo-switch-freestanding",
        "--manifest-path",
        str((tmp_path / "rs" / "Cargo.toml").resolve()),
        "--locked",
    )
    assert cargo.staticlib_path == (
        (tmp_path / "rs").resolve()
        / "target"
        / "aarch64-nintendo-switch-freestanding"
        / "release"
        / "libhooks.a"
    )


def test_cargo_runs_in_manifest_dir(tmp_path: Path, fake_runner) -> None:
    cargo = CargoBuilder(RustConfig(manifest="rs/Cargo.toml", staticlib="hooks"), tmp_path)
    cargo.build(fake_runner)
    assert fake_runner.tool_calls("cargo") == [cargo.command()]


def test_cargo_failure_is_compile_error(tmp_path: Path) -> None:
    class FailingRunner:
        def run(self, argv, *, cwd=None) -> ProcessResult:
            return ProcessResult(tuple(argv), 101, stderr="error[E0425]\n")

    cargo = CargoBuilder(RustConfig(manifest="Cargo.toml", staticlib="hooks"), tmp_path)
    with pytest.raises(CompileError) as exc_info:
        cargo.build(FailingRunner())
    assert exc_info.value.context["returncode"] == "101"
