"""C/C++/assembly compile and link command construction."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from nxmod.config import BuildConfig
from nxmod.errors import ConfigError
from nxmod.flags import Flags
from nxmod.layout import BuildLayout
from nxmod.models import CompileCommand, Language, LinkCommand, SourceFile
from nxmod.toolchain import Toolchain


@dataclass(slots=True)
class CBuilder:
    toolchain: Toolchain
    flags: Flags
    object_dir: Path

    @classmethod
    def for_profile(
        cls,
        *,
        toolchain: Toolchain,
        build: BuildConfig,
        root: Path,
        layout: BuildLayout,
    ) -> CBuilder:
        if build.entry is None:
            raise ConfigError(
                "No entry point specified.",
                hint="Please specify `build.entry` in the configuration file.",
            )
        flags = Flags.from_config(build.flags)
        includes: list[Path] = []
        if toolchain.libnx_include is not None:
            includes.append(toolchain.libnx_include)
        includes.extend((root / include).resolve() for include in build.includes)
        flags.add_includes(includes)
        flags.add_defines(build.defines)
        flags.set_init(build.entry)
        flags.set_version_script(layout.version_script)
        flags.add_libpaths((root / libpath).resolve() for libpath in build.libpaths)
        flags.add_libraries(build.libraries)
        flags.add_ldscripts((root / script).resolve() for script in build.ldscripts)
        return cls(toolchain=toolchain, flags=flags, object_dir=layout.object_dir)

    def object_path(self, source: SourceFile) -> Path:
        return self.object_dir / source.object_name

    def depfile_path(self, source: SourceFile) -> Path:
        return self.object_dir / source.depfile_name

    def compile_command(self, source: SourceFile) -> CompileCommand:
        """Build the exact compiler invocation for *source*. Pure."""
        output = str(self.object_path(source))
        depfile = str(self.depfile_path(source))
        arguments = ["-MMD", "-MP", "-MF", depfile]
        match source.language:
            case Language.C:
                compiler = self.toolchain.cc
                arguments.extend(self.flags.cflags)
            case Language.CXX:
                compiler = self.toolchain.cxx
                arguments.extend(self.flags.cxxflags)
            case Language.ASM:
                compiler = self.toolchain.as_driver
                arguments.extend(["-x", "assembler-with-cpp", *self.flags.sflags])
        arguments.extend(["-c", "-o", output, str(source.path)])
        return CompileCommand(
            compiler=str(compiler),
            arguments=tuple(arguments),
            source=str(source.path),
            output=output,
            depfile=depfile,
        )

    def link_command(
        self,
        objects: Sequence[str],
        output: Path,
        *,
        extra_inputs: Sequence[str] = (),
    ) -> LinkCommand:
        arguments = (*self.flags.ldflags, *objects, *extra_inputs, "-o", str(output))
        return LinkCommand(
            linker=str(self.toolchain.linker),
            arguments=arguments,
            output=str(output),
        )
