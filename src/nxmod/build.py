"""Build orchestration for one module and one profile.

A run walks a fixed sequence of stages::

    scan -> compile -> aux -> link -> check -> convert

Compiles, auxiliary file generation and the cargo build run concurrently
on one shared executor. Every other ordering is enforced by an explicit
join: all compiles finish before the link decision, the version script
exists before linking, the check passes before conversion. Each persisted
cache is written once the stage it describes has succeeded: the compile
database after the compiles join, the object list and link command after
the link. A failure never touches the caches of stages that did not run.
"""

from __future__ import annotations

import os
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from nxmod.builders import CargoBuilder, CBuilder
from nxmod.cache.store import (
    object_list_changed,
    read_link_command,
    write_link_command,
    write_object_list,
)
from nxmod.checker import BinaryChecker, report
from nxmod.compdb import CompileDatabase
from nxmod.config import BASE_PROFILE, CONFIG_FILE, BuildConfig, CheckConfig, Config
from nxmod.errors import (
    BuildError,
    CheckFailedError,
    CompileError,
    ConfigError,
    ConversionError,
    LinkError,
    SourceError,
)
from nxmod.executor import Executor, Task
from nxmod.fs import get_mtime, up_to_date
from nxmod.layout import BuildLayout
from nxmod.manifest import generate_manifest, write_version_script
from nxmod.models import (
    BuildResult,
    CompileCommand,
    CompileRecord,
    LinkCommand,
    SourceFile,
    summarize,
)
from nxmod.observability import BuildLogger
from nxmod.process import ProcessResult, SubprocessRunner, ToolRunner
from nxmod.staleness import check_source, conversion_reason, link_reason, resolve_static_libraries
from nxmod.toolchain import Toolchain


class Stage(StrEnum):
    SCAN = "scan"
    COMPILE = "compile"
    AUX = "aux"
    LINK = "link"
    CHECK = "check"
    CONVERT = "convert"
    PERSIST = "persist"


@dataclass(slots=True)
class _PendingCompile:
    source: SourceFile
    command: CompileCommand
    display: str
    task: Task[ProcessResult]


@dataclass(slots=True)
class _RunState:
    """Mutable state of a single traversal. Never reused across runs."""

    stage: Stage = Stage.SCAN
    config_mtime: int = 0
    config_changed: bool = False
    rechecked: bool = False
    loaded: CompileDatabase = field(default_factory=CompileDatabase)
    database: CompileDatabase = field(default_factory=CompileDatabase)
    previous: CompileDatabase | None = None
    objects: list[str] = field(default_factory=list)
    pending: list[_PendingCompile] = field(default_factory=list)
    compiled: list[str] = field(default_factory=list)
    manifest_task: Task[Path] | None = None
    version_task: Task[Path] | None = None
    cargo_task: Task[ProcessResult] | None = None
    link_command: LinkCommand | None = None
    linked: bool = False
    checked: bool = False
    converted: bool = False


@dataclass(slots=True)
class ModuleBuild:
    root: Path
    config: Config
    toolchain: Toolchain
    profile: str = BASE_PROFILE
    runner: ToolRunner = field(default_factory=SubprocessRunner)
    logger: BuildLogger = field(default_factory=BuildLogger)
    workers: int | None = None

    @classmethod
    def from_root(
        cls,
        root: str | Path,
        *,
        profile: str = BASE_PROFILE,
        toolchain: Toolchain | None = None,
        runner: ToolRunner | None = None,
        logger: BuildLogger | None = None,
        workers: int | None = None,
    ) -> ModuleBuild:
        project_root = Path(root).resolve()
        config = Config.from_path(project_root / CONFIG_FILE)
        return cls(
            root=project_root,
            config=config,
            toolchain=toolchain if toolchain is not None else Toolchain.from_env(),
            profile=config.select_profile(profile),
            runner=runner if runner is not None else SubprocessRunner(),
            logger=logger if logger is not None else BuildLogger(),
            workers=workers,
        )

    @property
    def layout(self) -> BuildLayout:
        return BuildLayout(
            root=self.root, profile=self.profile, module_name=self.config.module.name
        )

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILE

    def run(self) -> BuildResult:
        """Run the build to completion; errors become a failed result."""
        started = time.monotonic()
        name = self.config.module.name
        self.logger.info("Building", f"{name} (profile `{self.profile}`)")
        state = _RunState()
        with Executor(self.workers) as executor:
            try:
                self._run(state, executor)
            except BuildError as exc:
                self._report_error(state.stage, exc)
                return BuildResult.failure(
                    profile=self.profile,
                    stage=state.stage.value,
                    diagnostics=_diagnostics(exc),
                    compiled=state.compiled,
                )
        elapsed = time.monotonic() - started
        self.logger.info("Finished", f"{name} (profile `{self.profile}`) in {elapsed:.2f}s")
        return BuildResult(
            ok=True,
            profile=self.profile,
            artifact=str(self.layout.nso),
            compiled=state.compiled,
            linked=state.linked,
            checked=state.checked,
            converted=state.converted,
        )

    def _run(self, state: _RunState, executor: Executor) -> None:
        layout = self.layout
        build = self.config.build.get_profile(self.profile)
        check = self.config.check.get_profile(self.profile) if self.config.check else None

        state.stage = Stage.SCAN
        layout.ensure()
        builder = CBuilder.for_profile(
            toolchain=self.toolchain, build=build, root=self.root, layout=layout
        )
        ldscripts = self._ldscripts(build)
        self._load_database(state)
        self._scan(state, executor, builder, build)

        state.stage = Stage.AUX
        self._start_aux(state, executor, build)

        state.stage = Stage.COMPILE
        self._join_compiles(state)
        objects_changed = object_list_changed(layout.objects_cache, state.objects)
        sources_removed = state.previous is not None and bool(state.previous.records)

        state.stage = Stage.PERSIST
        self._save_database(state, refresh=objects_changed or sources_removed)

        state.stage = Stage.COMPILE
        extra_inputs: list[str] = []
        static_libraries = resolve_static_libraries(
            [(self.root / path).resolve() for path in build.libpaths], build.libraries
        )
        if state.cargo_task is not None and self.config.rust is not None:
            state.cargo_task.join()
            staticlib = CargoBuilder(self.config.rust, self.root).staticlib_path
            extra_inputs.append(str(staticlib))
            static_libraries.append(staticlib)

        state.stage = Stage.LINK
        state.link_command = builder.link_command(
            state.objects, layout.elf, extra_inputs=extra_inputs
        )
        reason = link_reason(
            binary=layout.elf,
            command=state.link_command,
            previous_command=read_link_command(layout.link_cache),
            objects=state.objects,
            objects_compiled=bool(state.compiled),
            sources_removed=sources_removed,
            object_list_changed=objects_changed,
            config_changed=state.config_changed,
            ldscripts=ldscripts,
            static_libraries=static_libraries,
        )
        if reason is not None:
            self.logger.verbose(f"linking because {reason}", stage=Stage.LINK)
            self._link(state, state.link_command)

        checker = self._checker(check, executor)
        reason = conversion_reason(
            linked=state.linked,
            binary=layout.elf,
            converted=layout.nso,
            symbol_listings=checker.symbol_listings if checker is not None else None,
        )
        if reason is not None:
            self.logger.verbose(f"converting because {reason}", stage=Stage.CONVERT)
            if checker is not None:
                state.stage = Stage.CHECK
                self._check(state, checker)
            state.stage = Stage.CONVERT
            self._convert(state)

        state.stage = Stage.AUX
        if state.manifest_task is not None:
            state.manifest_task.join()
        if state.version_task is not None:
            state.version_task.join()

    def _ldscripts(self, build: BuildConfig) -> list[Path]:
        scripts = [(self.root / script).resolve() for script in build.ldscripts]
        for script in scripts:
            if not script.is_file():
                raise ConfigError(
                    "Cannot process linker script.",
                    hint="Check the `build.ldscripts` entries in the configuration file.",
                    context={"path": self.layout.display(script)},
                )
        return scripts

    def _load_database(self, state: _RunState) -> None:
        config_mtime = get_mtime(self.config_path)
        if config_mtime is None:
            raise ConfigError(
                "Configuration file does not exist.",
                hint=f"Create {CONFIG_FILE} at the project root.",
                context={"path": str(self.config_path)},
            )
        state.config_mtime = config_mtime
        state.config_changed = not up_to_date(config_mtime, get_mtime(self.layout.manifest_json))
        fingerprint = self.toolchain.fingerprint(self.runner)
        state.loaded = CompileDatabase.load(self.layout.compdb_cache, logger=self.logger)
        state.database = CompileDatabase(fingerprint=fingerprint)
        # an empty fingerprint means no usable database, not a new toolchain
        fingerprint_changed = bool(
            state.loaded.fingerprint
        ) and not state.loaded.fingerprint_matches(fingerprint)
        if fingerprint_changed:
            self.logger.verbose("toolchain changed, recompiling everything", stage=Stage.SCAN)
            state.loaded = CompileDatabase(fingerprint=fingerprint)
        state.rechecked = state.config_changed or fingerprint_changed
        if state.rechecked:
            state.previous = CompileDatabase(
                fingerprint=fingerprint, records=dict(state.loaded.records)
            )

    def _scan(
        self,
        state: _RunState,
        executor: Executor,
        builder: CBuilder,
        build: BuildConfig,
    ) -> None:
        for source in self._discover(build):
            command = builder.compile_command(source)
            status = check_source(source, command, state.previous)
            state.objects.append(command.output)
            state.database.update(CompileRecord(path_hash=source.path_hash, command=command))
            display = self.layout.display(source.path)
            if not status.needs_compile:
                self.logger.verbose(f"skipped '{display}'", stage=Stage.SCAN)
                continue
            self.logger.verbose(f"compiling '{display}' ({status.reason})", stage=Stage.SCAN)
            task = executor.submit(self._compile, command, display)
            state.pending.append(_PendingCompile(source, command, display, task))

    def _discover(self, build: BuildConfig) -> Iterator[SourceFile]:
        seen: set[str] = set()
        for entry in build.sources:
            source_dir = self.root / entry
            if not source_dir.is_dir():
                raise SourceError(
                    "Source directory does not exist.",
                    hint="Check the `build.sources` entries in the configuration file.",
                    context={"path": entry},
                )
            for dirpath, dirnames, filenames in os.walk(source_dir):
                dirnames.sort()
                for filename in sorted(filenames):
                    source = SourceFile.discover(Path(dirpath) / filename)
                    if source is None or source.path_hash in seen:
                        continue
                    seen.add(source.path_hash)
                    yield source

    def _compile(self, command: CompileCommand, display: str) -> ProcessResult:
        self.logger.info("Compiling", display, stage=Stage.COMPILE)
        result = self.runner.run(command.argv)
        if result.ok:
            self.logger.verbose(f"built '{display}'", stage=Stage.COMPILE)
        else:
            self.logger.verbose(f"failed to build '{display}'", stage=Stage.COMPILE)
        return result

    def _start_aux(self, state: _RunState, executor: Executor, build: BuildConfig) -> None:
        layout = self.layout
        if state.config_changed:
            state.manifest_task = executor.submit(
                generate_manifest,
                layout,
                npdmtool=self.toolchain.npdmtool,
                runner=self.runner,
                title_id_hex=self.config.module.title_id_hex,
                config_mtime=state.config_mtime,
                logger=self.logger,
            )
        if build.entry is not None and (
            state.config_changed or not layout.version_script.exists()
        ):
            state.version_task = executor.submit(
                write_version_script, layout.version_script, build.entry, logger=self.logger
            )
        if self.config.rust is not None:
            cargo = CargoBuilder(self.config.rust, self.root, tool=str(self.toolchain.cargo))
            state.cargo_task = executor.submit(self._cargo, cargo)

    def _cargo(self, cargo: CargoBuilder) -> ProcessResult:
        self.logger.info("Compiling", f"{cargo.config.staticlib} (cargo)", stage=Stage.COMPILE)
        try:
            return cargo.build(self.runner)
        except CompileError as exc:
            self.logger.dump_stderr(exc.context.get("stderr", ""), stage=Stage.COMPILE)
            raise

    def _join_compiles(self, state: _RunState) -> None:
        """Wait for every compile, then fail if any of them did."""
        failures: list[tuple[str, str]] = []
        for pending in state.pending:
            try:
                result = pending.task.join()
            except BuildError as exc:
                failures.append((pending.display, str(exc)))
                self._discard_object(pending)
                continue
            if not result.ok:
                failures.append((pending.display, result.stderr))
                self._discard_object(pending)
                continue
            state.compiled.append(str(pending.source.path))
        if not failures:
            return
        for display, stderr in failures[:10]:
            self.logger.error("Error", f"failed to compile '{display}'", stage=Stage.COMPILE)
            self.logger.dump_stderr(stderr, stage=Stage.COMPILE)
        if len(failures) > 10:
            self.logger.error("Error", f"+{len(failures) - 10} more", stage=Stage.COMPILE)
        raise CompileError(
            "One or more object files failed to compile.",
            hint="Please check the errors above.",
            context={"failed": ", ".join(summarize([display for display, _ in failures]))},
        )

    def _discard_object(self, pending: _PendingCompile) -> None:
        """Remove the object of a failed compile so the next run retries it."""
        try:
            Path(pending.command.output).unlink(missing_ok=True)
        except OSError as exc:
            self.logger.verbose(
                f"cannot remove stale object for '{pending.display}': {exc}",
                stage=Stage.COMPILE,
            )

    def _link(self, state: _RunState, command: LinkCommand) -> None:
        layout = self.layout
        if state.version_task is not None:
            state.stage = Stage.AUX
            state.version_task.join()
            state.version_task = None
            state.stage = Stage.LINK
        self.logger.info("Linking", layout.elf.name, stage=Stage.LINK)
        result = self.runner.run(command.argv)
        if not result.ok:
            self.logger.dump_stderr(result.stderr, stage=Stage.LINK)
        result.check(LinkError, "Linking failed.", hint="Please check the errors above.")
        self.logger.verbose(f"linked '{layout.elf.name}'", stage=Stage.LINK)
        state.linked = True
        write_object_list(layout.objects_cache, state.objects, logger=self.logger)
        write_link_command(layout.link_cache, command, logger=self.logger)

    def _checker(self, check: CheckConfig | None, executor: Executor) -> BinaryChecker | None:
        if check is None:
            return None
        return BinaryChecker(
            objdump=self.toolchain.objdump,
            runner=self.runner,
            executor=executor,
            config=check,
            root=self.root,
        )

    def _check(self, state: _RunState, checker: BinaryChecker) -> None:
        layout = self.layout
        self.logger.info("Checking", layout.elf.name, stage=Stage.CHECK)
        result = checker.run(layout.elf)
        report(result, self.logger, layout)
        state.checked = True
        if not result.passed:
            context: dict[str, str] = {}
            if result.missing_symbols:
                context["missing_symbols"] = str(len(result.missing_symbols))
                context["missing_symbols_file"] = layout.display(layout.missing_symbols)
            if result.disallowed_instructions:
                context["disallowed_instructions"] = str(len(result.disallowed_instructions))
                context["disallowed_instructions_file"] = layout.display(
                    layout.disallowed_instructions
                )
            raise CheckFailedError(
                "Check failed. Please fix the errors above.",
                hint="Please fix the errors above.",
                context=context,
            )

    def _convert(self, state: _RunState) -> None:
        layout = self.layout
        self.logger.info("Creating", layout.nso.name, stage=Stage.CONVERT)
        result = self.runner.run([str(self.toolchain.elf2nso), str(layout.elf), str(layout.nso)])
        if not result.ok:
            self.logger.dump_stderr(result.stderr, stage=Stage.CONVERT)
        result.check(ConversionError, "elf2nso failed.", hint="Please check the errors above.")
        state.converted = True

    def _save_database(self, state: _RunState, *, refresh: bool) -> None:
        """Save the compile database and IDE export once every compile succeeded.

        *refresh* forces a save when the set of sources changed without
        anything being compiled.
        """
        layout = self.layout
        database = state.database
        if not state.rechecked:
            live = set(state.objects)

            def keep(record: CompileRecord) -> bool:
                # this profile's objects that were not scanned belong to removed sources
                output = Path(record.command.output)
                return output.parent != layout.object_dir or record.command.output in live

            database.merge_missing(state.loaded, keep=keep)
        changed = bool(state.compiled) or state.rechecked or refresh
        if changed or not layout.compdb_cache.exists():
            database.save(layout.compdb_cache, logger=self.logger)
        if changed or not layout.compile_commands.exists():
            self._export(database)

    def _export(self, database: CompileDatabase) -> None:
        includes = [*self.toolchain.system_includes_cxx, *self.toolchain.system_includes_c]
        try:
            database.export_compile_commands(
                self.layout.compile_commands,
                directory=self.root,
                system_includes=list(dict.fromkeys(includes)),
            )
        except OSError as exc:
            self.logger.error(
                "Error", f"Failed to save compile_commands.json: {exc}", stage=Stage.PERSIST
            )
            return
        self.logger.verbose("saved compile_commands.json", stage=Stage.PERSIST)

    def _report_error(self, stage: Stage, exc: BuildError) -> None:
        if isinstance(exc, CheckFailedError):
            return
        self.logger.error("Error", exc.message, stage=stage)
        # compile failures were already listed per source
        if not isinstance(exc, CompileError):
            for key, value in exc.context.items():
                if value and key != "stderr":
                    self.logger.error("Error", f"  {key}: {value}", stage=stage)
        if exc.hint:
            self.logger.hint("Hint", exc.hint, stage=stage)


def _diagnostics(exc: BuildError) -> tuple[str, ...]:
    lines = [exc.message]
    lines.extend(f"{key}: {value}" for key, value in exc.context.items() if value)
    return tuple(lines)
