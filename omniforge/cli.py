"""
Command Line Interface
======================
`omniforge run|list|status|reset`

Exit codes:
    0    success
    1    a unit failed (or the ledger could not be used)
    2    units could not be loaded, or the command line is invalid
    130  the run was cancelled

Run flags (--dry-run, --skip-install, --dev-only, --no-dev, --force[=IDS],
--force-unit ID, --no-verify and any other --flag a unit understands) are
accepted after `run` and handed to the flag registry unchanged.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger

from omniforge.config import PATHS, TIMEOUTS
from omniforge.errors import DuplicateUnitIdentity, LedgerError, MalformedMetadata
from omniforge.flags import parse_run_flags
from omniforge.ledger import IdempotencyLedger
from omniforge.log import configure_logging
from omniforge.runner import (
    CancellationToken,
    build_resolver,
    default_ledger_path,
    load_units,
    run_units,
    sigint_cancels,
)
from omniforge.scheduler import schedule
from omniforge.settings import parse_override_pairs

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def _common_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--project-root", default=".", help="Project root (default: current directory)")
    common.add_argument(
        "--units-dir",
        default=None,
        help=f"Directory of unit scripts (default: <project-root>/{PATHS.UNITS_DIR})",
    )
    common.add_argument(
        "--state-file",
        default=None,
        help=f"Ledger file (default: <project-root>/{PATHS.STATE_FILE})",
    )
    common.add_argument("--log-level", choices=["quiet", "status", "verbose"], default=None)
    common.add_argument("--log-format", choices=["plain", "json"], default=None)
    common.add_argument("--log-file", default=None)
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_parser()
    parser = argparse.ArgumentParser(prog="omniforge", description="Bootstrap orchestrator")
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser(
        "run",
        parents=[common],
        allow_abbrev=False,
        help="Run units in phase order",
        description="Run units in phase order. Unrecognized --flags are passed to units.",
    )
    run_p.add_argument("--install-dir", default=None, help="Where packages are installed (default: project root)")
    run_p.add_argument("--env-file", default=None, help=f"Settings file (default: <project-root>/{PATHS.ENV_FILE})")
    run_p.add_argument("--set", dest="overrides", action="append", default=[], metavar="KEY=VALUE")
    run_p.add_argument("--profile", dest="profiles", action="append", default=[], metavar="TAG")
    run_p.add_argument("--only", action="append", default=[], metavar="ID", help="Run only these unit ids")
    run_p.add_argument("--report", default=None, help="Write the run report JSON here")
    run_p.add_argument("--unit-timeout", type=int, default=None, help=f"Seconds per script unit (default: {TIMEOUTS.UNIT})")

    list_p = sub.add_parser("list", parents=[common], allow_abbrev=False, help="Show the schedule")
    list_p.add_argument("--profile", dest="profiles", action="append", default=[], metavar="TAG")

    sub.add_parser("status", parents=[common], allow_abbrev=False, help="Show ledger entries")

    reset_p = sub.add_parser("reset", parents=[common], allow_abbrev=False, help="Clear ledger entries")
    reset_p.add_argument("unit_ids", nargs="*", metavar="ID", help="Units to clear (default: all)")

    return parser


def _ledger_for(args: argparse.Namespace, project_root: Path) -> IdempotencyLedger:
    path = Path(args.state_file) if args.state_file else default_ledger_path(project_root)
    return IdempotencyLedger(path)


def _units_dir_for(args: argparse.Namespace, project_root: Path) -> Path:
    return Path(args.units_dir) if args.units_dir else project_root / PATHS.UNITS_DIR


def _split_ids(values: Sequence[str]) -> List[str]:
    return [part.strip() for value in values for part in value.split(",") if part.strip()]


def _cmd_run(args: argparse.Namespace, passthrough: List[str], project_root: Path) -> int:
    try:
        flags = parse_run_flags(passthrough)
        overrides = parse_override_pairs(args.overrides)
        units = load_units(_units_dir_for(args, project_root), timeout_seconds=args.unit_timeout)
    except (MalformedMetadata, DuplicateUnitIdentity, FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        return EXIT_USAGE

    install_dir = Path(args.install_dir).expanduser().resolve() if args.install_dir else project_root
    resolver = build_resolver(project_root, env_file=args.env_file, overrides=overrides, install_dir=install_dir)

    token = CancellationToken()
    try:
        with sigint_cancels(token):
            report = run_units(
                units,
                flags=flags,
                project_root=project_root,
                install_dir=install_dir,
                resolver=resolver,
                ledger=_ledger_for(args, project_root),
                profiles=args.profiles,
                only=_split_ids(args.only),
                cancel=token,
            )
    except KeyError as e:
        logger.error(str(e.args[0]) if e.args else str(e))
        return EXIT_USAGE
    except KeyboardInterrupt:
        logger.error("Run aborted")
        return EXIT_CANCELLED

    if args.report:
        try:
            report.write_json(Path(args.report))
        except OSError as e:
            logger.warning(f"Could not write report to {args.report}: {e}")

    return report.exit_code()


def _cmd_list(args: argparse.Namespace, project_root: Path) -> int:
    try:
        units = load_units(_units_dir_for(args, project_root))
    except (MalformedMetadata, DuplicateUnitIdentity, FileNotFoundError) as e:
        logger.error(str(e))
        return EXIT_USAGE

    try:
        done = _ledger_for(args, project_root).entries()
    except LedgerError as e:
        logger.error(str(e))
        return EXIT_FAILURE

    for unit in schedule(units, profiles=args.profiles):
        status = "done" if unit.id in done else "pending"
        print(f"{unit.phase:>3}  {status:<8} {unit.id}  {unit.descriptor.name}")
    return EXIT_OK


def _cmd_status(args: argparse.Namespace, project_root: Path) -> int:
    ledger = _ledger_for(args, project_root)
    try:
        entries = ledger.entries()
    except LedgerError as e:
        logger.error(str(e))
        return EXIT_FAILURE

    print(f"ledger: {ledger.path}")
    if not entries:
        print("no completed units")
    for unit_id in sorted(entries):
        entry = entries[unit_id]
        print(f"{entry.status:<10} {entry.timestamp}  {unit_id}")
    return EXIT_OK


def _cmd_reset(args: argparse.Namespace, project_root: Path) -> int:
    ledger = _ledger_for(args, project_root)
    try:
        if args.unit_ids:
            for unit_id in args.unit_ids:
                if ledger.clear(unit_id):
                    print(f"cleared: {unit_id}")
                else:
                    print(f"not in ledger: {unit_id}")
        else:
            print(f"cleared {ledger.clear_all()} entries")
    except LedgerError as e:
        logger.error(str(e))
        return EXIT_FAILURE
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args, unknown = parser.parse_known_args(argv)

    if unknown and args.command != "run":
        parser.error(f"unrecognized arguments: {' '.join(unknown)}")

    configure_logging(level=args.log_level, fmt=args.log_format, log_file=args.log_file)
    project_root = Path(args.project_root).expanduser().resolve()

    if args.command == "run":
        return _cmd_run(args, unknown, project_root)
    if args.command == "list":
        return _cmd_list(args, project_root)
    if args.command == "status":
        return _cmd_status(args, project_root)
    return _cmd_reset(args, project_root)


if __name__ == "__main__":
    raise SystemExit(main())
