"""Persisted record of the compile command last used for each source.

The database is stored as canonical CBOR. It is an optimization: loading
never fails (a damaged file reads as empty) and saving never raises.
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import cbor2

from nxmod.models import CompileCommand, CompileRecord
from nxmod.observability import BuildLogger

SCHEMA_VERSION = 1
ARCH_FLAG_PREFIXES = ("-march", "-mtune", "-mcpu", "-mtp")


@dataclass(slots=True)
class CompileDatabase:
    fingerprint: dict[str, str] = field(default_factory=dict)
    records: dict[str, CompileRecord] = field(default_factory=dict)

    @classmethod
    def load(cls, path: str | Path, *, logger: BuildLogger | None = None) -> CompileDatabase:
        db_path = Path(path)
        try:
            payload = cbor2.loads(db_path.read_bytes())
        except FileNotFoundError:
            return cls()
        except (OSError, ValueError) as exc:
            if logger is not None:
                logger.verbose(f"ignoring unreadable compile database: {exc}", stage="scan")
            return cls()
        database = _from_payload(payload)
        if database is None:
            if logger is not None:
                logger.verbose("ignoring malformed compile database", stage="scan")
            return cls()
        return database

    def save(self, path: str | Path, *, logger: BuildLogger) -> bool:
        """Write the database atomically. Failures are logged, not raised."""
        db_path = Path(path)
        tmp_path = db_path.with_name(f"{db_path.name}.tmp")
        try:
            encoded = cbor2.dumps(self._payload(), canonical=True)
            db_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(encoded)
            os.replace(tmp_path, db_path)
        except (OSError, cbor2.CBOREncodeError) as exc:
            logger.error("Error", f"Failed to save compile database: {exc}", stage="persist")
            return False
        logger.verbose(f"saved compile database ({len(self.records)} records)", stage="persist")
        return True

    def find(self, path_hash: str) -> CompileRecord | None:
        return self.records.get(path_hash)

    def update(self, record: CompileRecord) -> None:
        self.records[record.path_hash] = record

    def remove(self, path_hash: str) -> CompileRecord | None:
        return self.records.pop(path_hash, None)

    def fingerprint_matches(self, current: Mapping[str, str]) -> bool:
        return self.fingerprint == dict(current)

    def merge_missing(
        self,
        other: CompileDatabase | Mapping[str, CompileRecord],
        *,
        keep: Callable[[CompileRecord], bool] | None = None,
    ) -> None:
        """Copy records absent from this database; existing entries win.

        Records rejected by *keep* are not copied.
        """
        records = other.records if isinstance(other, CompileDatabase) else other
        for path_hash, record in records.items():
            if self.find(path_hash) is None and (keep is None or keep(record)):
                self.records[path_hash] = record

    def export_compile_commands(
        self,
        path: str | Path,
        *,
        directory: str | Path,
        system_includes: Iterable[str | Path] = (),
        strip_arch_flags: bool = True,
    ) -> Path:
        """Write an IDE ``compile_commands.json`` for the current records."""
        output_path = Path(path)
        includes = [str(include) for include in system_includes]
        entries = [
            _ide_entry(
                record.command,
                directory=str(directory),
                system_includes=includes,
                strip_arch_flags=strip_arch_flags,
            )
            for record in sorted(self.records.values(), key=lambda item: item.command.source)
        ]
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(entries, indent=2) + "\n", encoding="utf-8")
        return output_path

    def _payload(self) -> dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "fingerprint": dict(self.fingerprint),
            "records": {
                path_hash: {
                    "compiler": record.command.compiler,
                    "arguments": list(record.command.arguments),
                    "source": record.command.source,
                    "output": record.command.output,
                    "depfile": record.command.depfile,
                }
                for path_hash, record in self.records.items()
            },
        }


def ide_arguments(
    command: CompileCommand,
    *,
    system_includes: Iterable[str] = (),
    strip_arch_flags: bool = True,
) -> list[str]:
    """Rewrite a compile command into a form language servers understand."""
    arguments = [command.compiler]
    injected = False
    for argument in command.arguments:
        if strip_arch_flags and argument.startswith(ARCH_FLAG_PREFIXES):
            continue
        if argument == "-c" and not injected:
            for include in system_includes:
                arguments.extend(["-isystem", include])
            injected = True
        arguments.append(argument)
    if not injected:
        for include in system_includes:
            arguments.extend(["-isystem", include])
    return arguments


def _ide_entry(
    command: CompileCommand,
    *,
    directory: str,
    system_includes: list[str],
    strip_arch_flags: bool,
) -> dict[str, Any]:
    return {
        "directory": directory,
        "file": command.source,
        "output": command.output,
        "arguments": ide_arguments(
            command,
            system_includes=system_includes,
            strip_arch_flags=strip_arch_flags,
        ),
    }


def _from_payload(payload: Any) -> CompileDatabase | None:
    if not isinstance(payload, dict) or payload.get("version") != SCHEMA_VERSION:
        return None
    fingerprint = payload.get("fingerprint")
    raw_records = payload.get("records")
    if not isinstance(fingerprint, dict) or not isinstance(raw_records, dict):
        return None
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in fingerprint.items()):
        return None
    records: dict[str, CompileRecord] = {}
    for path_hash, raw in raw_records.items():
        command = _parse_command(raw)
        if not isinstance(path_hash, str) or command is None:
            return None
        records[path_hash] = CompileRecord(path_hash=path_hash, command=command)
    return CompileDatabase(fingerprint=dict(fingerprint), records=records)


def _parse_command(raw: Any) -> CompileCommand | None:
    if not isinstance(raw, dict):
        return None
    arguments = raw.get("arguments")
    if not isinstance(arguments, list) or not all(isinstance(a, str) for a in arguments):
        return None
    values = {key: raw.get(key) for key in ("compiler", "source", "output", "depfile")}
    if not all(isinstance(value, str) for value in values.values()):
        return None
    return CompileCommand(arguments=tuple(arguments), **values)
