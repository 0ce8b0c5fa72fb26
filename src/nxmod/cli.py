"""Command line entry points: ``nxmod build`` and ``nxmod clean``."""

from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path

from nxmod.build import ModuleBuild
from nxmod.config import BASE_PROFILE, find_root
from nxmod.errors import BuildError, ConfigError
from nxmod.layout import TARGET_SUBDIR
from nxmod.observability import BuildLogger
from nxmod.toolchain import Toolchain


def _add_directory_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-C",
        "--directory",
        default=".",
        help="Run as if started in this directory (defaults to current directory).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nxmod",
        description="Incrementally build a console module from C, C++ and assembly sources.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Build the module.")
    _add_directory_option(build_parser)
    build_parser.add_argument(
        "-p",
        "--profile",
        default=BASE_PROFILE,
        help="Build profile to use (defaults to the configured default profile).",
    )
    build_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Print every build decision.",
    )
    build_parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Number of parallel workers (defaults to CPU count minus one).",
    )
    build_parser.add_argument(
        "--log-json",
        default=None,
        help="Also write structured build records to this JSON lines file.",
    )

    clean_parser = subparsers.add_parser("clean", help="Remove build outputs.")
    _add_directory_option(clean_parser)
    clean_parser.add_argument(
        "-p",
        "--profile",
        default=None,
        help="Only clean this profile (all profiles are cleaned by default).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logger = BuildLogger(verbose_enabled=bool(getattr(args, "verbose", False)))
    try:
        if args.command == "build":
            return _run_build(args, logger)
        if args.command == "clean":
            return _run_clean(args, logger)
    except BuildError as exc:
        logger.error("Error", exc.message)
        for key, value in exc.context.items():
            if value:
                logger.error("Error", f"  {key}: {value}")
        if exc.hint:
            logger.hint("Hint", exc.hint)
        return 1
    parser.error(f"unknown command: {args.command}")
    return 2


def _run_build(args: argparse.Namespace, logger: BuildLogger) -> int:
    root = find_root(args.directory)
    toolchain = Toolchain.from_env()
    toolchain.ensure_available()
    build = ModuleBuild.from_root(
        root,
        profile=_profile_dir_name(args.profile),
        toolchain=toolchain,
        logger=logger,
        workers=args.jobs,
    )
    result = build.run()
    if args.log_json:
        logger.to_json_lines(args.log_json)
    return 0 if result.ok else 1


def _run_clean(args: argparse.Namespace, logger: BuildLogger) -> int:
    root = find_root(args.directory)
    output = root / TARGET_SUBDIR
    if args.profile is not None:
        output = output / _profile_dir_name(args.profile)
    try:
        shutil.rmtree(output)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.error("Failed", f"Cannot remove '{_relativize(output, root)}': {exc}")
        return 1
    logger.info("Cleaned", _relativize(output, root))
    return 0


def _profile_dir_name(profile: str) -> str:
    """Return *profile* if it names a single directory under the target root."""
    if profile in {"", ".", ".."} or Path(profile).name != profile or "\\" in profile:
        raise ConfigError(
            "Invalid profile name.",
            hint="Profile names cannot contain path separators or `..`.",
            context={"profile": profile},
        )
    return profile


def _relativize(path: Path, root: Path) -> str:
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
