import io
import json
from pathlib import Path

from nxmod.observability import BuildLogger


def test_verbose_lines_are_recorded_but_not_printed() -> None:
    stream = io.StringIO()
    logger = BuildLogger(stream=stream)

    logger.verbose("skipped 'src/main.c'", stage="scan")
    logger.info("Compiling", "src/main.c", stage="compile")

    assert [record["level"] for record in logger.records] == ["verbose", "info"]
    assert stream.getvalue() == "   Compiling src/main.c\n"


def test_dump_stderr_logs_each_line() -> None:
    logger = BuildLogger(stream=None)
    logger.dump_stderr("main.c:1: error\nmain.c:2: note\n", stage="compile")
    assert [record["message"] for record in logger.records_for_stage("compile")] == [
        "main.c:1: error",
        "main.c:2: note",
    ]


def test_json_lines_export(tmp_path: Path) -> None:
    logger = BuildLogger(stream=None)
    logger.hint("Hint", "Please check the errors above.", stage="link")

    path = logger.to_json_lines(tmp_path / "logs" / "build.jsonl")

    (line,) = path.read_text(encoding="utf-8").splitlines()
    assert json.loads(line) == {
        "level": "hint",
        "stage": "link",
        "tag": "Hint",
        "message": "Please check the errors above.",
    }
