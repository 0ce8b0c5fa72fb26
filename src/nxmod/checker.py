"""Post-link verification of the module binary.

Two checks run against the linked ELF:

* every dynamic symbol it imports must be provided by one of the configured
  symbol listings (``objdump -T`` dumps of the host program) or be ignored;
* no instruction may match a disallowed pattern. The built-in patterns are
  privileged system-register accesses and ``hlt``, which abort when executed
  from a module.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from nxmod.config import CheckConfig
from nxmod.errors import CheckToolError, ConfigError
from nxmod.executor import Executor, Task
from nxmod.layout import BuildLayout
from nxmod.models import CheckResult, DisallowedInstruction, summarize
from nxmod.observability import BuildLogger
from nxmod.process import ToolRunner

SYMBOL_TABLE_MARKER = "DYNAMIC SYMBOL TABLE:"
SYMBOL_COLUMN = 25

DEFAULT_DISALLOWED = (
    r"^msr\s*spsel",
    r"^msr\s*daifset",
    r"^mrs\s.*daif",
    r"^mrs\s.*tpidr_el1",
    r"^msr\s*tpidr_el1",
    r"^hlt",
)

MISSING_SYMBOLS_HINT = (
    "Include the symbols in the linker scripts, or add them to the `ignore` section."
)

_MANGLED_PREFIX = re.compile(r"^_Z\d*")


def parse_symbol_dump(lines: Iterable[str], source_id: str) -> list[str]:
    """Extract symbol names from ``objdump -T`` output.

    Example line (the name follows the first space after column 25)::

        0000000000000000      DF *UND*\t0000000000000000 nnsocketGetPeerName
    """
    iterator = iter(lines)
    for line in iterator:
        if line.rstrip("\r\n") == SYMBOL_TABLE_MARKER:
            break
    symbols: list[str] = []
    for raw in iterator:
        line = raw.rstrip("\r\n")
        if len(line) <= SYMBOL_COLUMN:
            continue
        _, sep, symbol = line[SYMBOL_COLUMN:].partition(" ")
        if not sep:
            raise CheckToolError(
                "Cannot parse symbol listing.",
                hint="Symbol listings must be the output of `objdump -T`.",
                context={"source": source_id, "line": line},
            )
        symbols.append(symbol)
    return symbols


def parse_disassembly(lines: Iterable[str]) -> list[tuple[str, str]]:
    """Extract ``(address, instruction)`` pairs from ``objdump -d`` output.

    Instruction lines look like ``"       8:\\td503201f \\tnop"``; anything
    else (section headers, labels, blank lines) is skipped.
    """
    pairs: list[tuple[str, str]] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        address, sep, rest = line.partition(":\t")
        if not sep:
            continue
        _, sep, instruction = rest.partition(" \t")
        if not sep:
            continue
        pairs.append((address, instruction))
    return pairs


def compile_patterns(extra: Sequence[str] = ()) -> list[re.Pattern[str]]:
    patterns = [re.compile(pattern) for pattern in DEFAULT_DISALLOWED]
    for pattern in extra:
        try:
            patterns.append(re.compile(pattern))
        except re.error as exc:
            raise ConfigError(
                "Invalid disallowed instruction pattern.",
                hint="Values of `check.disallowed-instructions` are regular expressions.",
                context={"pattern": pattern, "reason": str(exc)},
            ) from exc
    return patterns


def symbol_sort_key(symbol: str) -> str:
    """Order mangled names by their identifier rather than by length prefix."""
    return _MANGLED_PREFIX.sub("", symbol, count=1)


@dataclass(slots=True)
class BinaryChecker:
    objdump: Path
    runner: ToolRunner
    executor: Executor
    config: CheckConfig
    root: Path
    _patterns: list[re.Pattern[str]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._patterns = compile_patterns(self.config.disallowed_instructions)

    @property
    def symbol_listings(self) -> list[Path]:
        return [(self.root / listing).resolve() for listing in self.config.symbols]

    def run(self, binary: Path) -> CheckResult:
        """Run both checks concurrently and wait for both."""
        listing_tasks = [
            self.executor.submit(self._load_listing, listing) for listing in self.symbol_listings
        ]
        dump_task = self.executor.submit(self._dump, "-T", binary)
        disasm_task = self.executor.submit(self._dump, "-d", binary)
        instructions = self._find_disallowed(disasm_task.join())
        missing = self._find_missing(dump_task, listing_tasks)
        return CheckResult(
            missing_symbols=tuple(missing),
            disallowed_instructions=tuple(instructions),
        )

    def _load_listing(self, path: Path) -> list[str]:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise CheckToolError(
                "Cannot read symbol listing.",
                hint="Check the `check.symbols` entries in the configuration file.",
                context={"path": str(path), "reason": str(exc)},
            ) from exc
        return parse_symbol_dump(text.splitlines(), str(path))

    def _dump(self, mode: str, binary: Path) -> str:
        result = self.runner.run([str(self.objdump), mode, str(binary)])
        result.check(CheckToolError, f"objdump {mode} failed.")
        return result.stdout

    def _find_missing(
        self, dump_task: Task[str], listing_tasks: list[Task[list[str]]]
    ) -> list[str]:
        provided: set[str] = set()
        # join every listing before surfacing the first failure
        errors: list[CheckToolError] = []
        for task in listing_tasks:
            try:
                provided.update(task.join())
            except CheckToolError as exc:
                errors.append(exc)
        dump = parse_symbol_dump(dump_task.join().splitlines(), "(output of `objdump -T`)")
        if errors:
            raise errors[0]
        ignored = set(self.config.ignore)
        missing = {symbol for symbol in dump if symbol not in ignored and symbol not in provided}
        return sorted(missing, key=lambda symbol: (symbol_sort_key(symbol), symbol))

    def _find_disallowed(self, disassembly: str) -> list[DisallowedInstruction]:
        found: list[DisallowedInstruction] = []
        for address, instruction in parse_disassembly(disassembly.splitlines()):
            if any(pattern.search(instruction) for pattern in self._patterns):
                found.append(DisallowedInstruction(address=address, instruction=instruction))
        return found


def report(result: CheckResult, logger: BuildLogger, layout: BuildLayout) -> None:
    """Print check failures and save the full lists next to the build output."""
    if result.missing_symbols:
        _report_list(
            logger,
            heading="There are unresolved symbols:",
            entries=list(result.missing_symbols),
            summary=f"Found {len(result.missing_symbols)} unresolved symbols!",
        )
        logger.hint("Hint", MISSING_SYMBOLS_HINT, stage="check")
        _save_list(
            logger, layout, layout.missing_symbols, list(result.missing_symbols), "missing symbols"
        )
    if result.disallowed_instructions:
        entries = [str(item) for item in result.disallowed_instructions]
        _report_list(
            logger,
            heading="There are unsupported/disallowed instructions:",
            entries=entries,
            summary=f"Found {len(entries)} disallowed instructions!",
        )
        _save_list(
            logger, layout, layout.disallowed_instructions, entries, "disallowed instructions"
        )
    if result.passed:
        logger.hint("Checked", "Looks good to me", stage="check")
    else:
        logger.error("Error", "Check failed. Please fix the errors above.", stage="check")


def _report_list(logger: BuildLogger, *, heading: str, entries: list[str], summary: str) -> None:
    logger.error("Error", heading, stage="check")
    logger.error("Error", "", stage="check")
    for line in summarize(entries):
        logger.error("Error", f"  {line}", stage="check")
    logger.error("Error", "", stage="check")
    logger.error("Error", summary, stage="check")


def _save_list(
    logger: BuildLogger,
    layout: BuildLayout,
    path: Path,
    entries: list[str],
    what: str,
) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(entries) + "\n", encoding="utf-8")
    except OSError:
        logger.hint("Error", f"Failed to save {what}", stage="check")
        return
    logger.hint("Saved", f"All {what} to `{layout.display(path)}`", stage="check")
