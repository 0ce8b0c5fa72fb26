"""Build logging: status lines on a stream plus structured records."""

from __future__ import annotations

import json
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, TextIO

Level = Literal["verbose", "info", "hint", "error"]

TAG_WIDTH = 12


@dataclass(slots=True)
class BuildLogger:
    """Logger passed explicitly to every build component.

    ``verbose`` lines are recorded always but only printed when
    ``verbose=True``. Set ``stream=None`` to keep records only.
    """

    verbose_enabled: bool = False
    stream: TextIO | None = field(default_factory=lambda: sys.stderr)
    records: list[dict[str, Any]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def log(
        self,
        *,
        level: Level,
        tag: str,
        message: str,
        stage: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "level": level,
            "stage": stage,
            "tag": tag,
            "message": message,
        }
        if extra is not None:
            record["extra"] = extra
        with self._lock:
            self.records.append(record)
            if self.stream is None:
                return
            if level == "verbose" and not self.verbose_enabled:
                return
            print(f"{tag:>{TAG_WIDTH}} {message}", file=self.stream)

    def verbose(self, message: str, *, stage: str | None = None) -> None:
        self.log(level="verbose", tag="", message=message, stage=stage)

    def info(self, tag: str, message: str, *, stage: str | None = None) -> None:
        self.log(level="info", tag=tag, message=message, stage=stage)

    def hint(self, tag: str, message: str, *, stage: str | None = None) -> None:
        self.log(level="hint", tag=tag, message=message, stage=stage)

    def error(self, tag: str, message: str, *, stage: str | None = None) -> None:
        self.log(level="error", tag=tag, message=message, stage=stage)

    def dump_stderr(self, stderr: str, *, stage: str | None = None) -> None:
        """Echo captured tool output line by line under an ``Error`` tag."""
        for line in stderr.splitlines():
            self.error("Error", line, stage=stage)

    def records_for_stage(self, stage: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("stage") == stage]

    def to_json_lines(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        lines = [json.dumps(record, sort_keys=True) for record in self.records]
        output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return output_path
