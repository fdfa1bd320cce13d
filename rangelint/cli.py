#!/usr/bin/env python3
"""rangelint/cli.py — command-line driver.

Usage examples
--------------
    # Run every built-in check over two serialised units
    rangelint analyze app.sexp lib.sexp

    # Add call rules and target an older language version
    rangelint analyze app.sexp --rules rules/stdlib.rules --target-version 1.18

    # Only some checks, four units at a time, JSON output
    rangelint analyze *.sexp --checks SA1019,RL0001 --workers 4 --format json

    # Show the registered analyzers
    rangelint list --rules rules/stdlib.rules

Each ``--rules`` file becomes one check, numbered ``RL0001``, ``RL0002`` …
in command-line order.

Exit codes
----------
    0   No diagnostics.
    1   One or more diagnostics were reported.
    2   Infrastructure or configuration failure (bad file, unknown check,
        malformed rule table, a unit that could not be read or whose
        analysis failed, or an unexpected internal error).

The module doubles as ``python -m rangelint`` via the companion
``rangelint/__main__.py``.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, TextIO

from rangelint import __version__
from rangelint.analysis import AnalyzerDescriptor
from rangelint.analyzers import build_registry, make_call_check
from rangelint.config import EngineConfig
from rangelint.errors import ConfigurationError, MalformedIRError
from rangelint.ir import Unit
from rangelint.ir_loader import load_units
from rangelint.options import TARGET_VERSION
from rangelint.registry import AnalyzerRegistry
from rangelint.rules import load_rules
from rangelint.scheduler import (
    ALL_ANALYZERS,
    DependencyScheduler,
    RunReport,
    UnitFailure,
    UnitReport,
)

_log = logging.getLogger("rangelint")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_DIAGNOSTICS: int = 1
EXIT_INFRA: int = 2

RULE_CHECK_PREFIX = "RL"

# Analyzer name reported for units that could not be read at all.
UNIT_LOADER = "load"


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``rangelint`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("rangelint")
    root.setLevel(level)
    for old in [h for h in root.handlers if isinstance(h, logging.StreamHandler)]:
        root.removeHandler(old)
    root.addHandler(handler)


def _resolve_path(raw: str, label: str = "file") -> Path:
    """Resolve *raw* to an absolute ``Path``, raising on missing files."""
    p = Path(raw).expanduser().resolve()
    if not p.exists():
        _log.error("%s not found: %s", label, p)
        raise SystemExit(EXIT_INFRA)
    return p


def _open_output(dest: Optional[str]) -> TextIO:
    """Stream for the report: ``sys.stdout`` for ``None`` or ``"-"``.

    Any other value is a file path; missing parent directories are
    created and an existing file is overwritten.

    Raises
    ------
    OSError
        If the path cannot be opened for writing.
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _rule_checks(paths: Sequence[str]) -> List[AnalyzerDescriptor]:
    """Turn each rule file into one check.

    Raises
    ------
    RuleSyntaxError
    """
    checks: List[AnalyzerDescriptor] = []
    for n, raw in enumerate(paths, start=1):
        path = _resolve_path(raw, "rule file")
        rules = load_rules(path)
        identifier = f"{RULE_CHECK_PREFIX}{n:04d}"
        doc = f"Call rules loaded from {path.name}\n\n" + "\n".join(
            f"{r.name}: {r.selector} argument {r.arg} when {r.predicate}" for r in rules
        )
        checks.append(make_call_check(identifier, doc, rules))
        _log.info("%s: %d rule(s) from %s", identifier, len(rules), path)
    return checks


def _build_registry(rule_paths: Sequence[str]) -> AnalyzerRegistry:
    return build_registry(_rule_checks(rule_paths))


def _split_ids(raw: Optional[str]) -> Optional[List[str]]:
    if raw is None:
        return None
    ids = [part.strip() for part in raw.split(",") if part.strip()]
    return ids or None


def _unreadable_reports(errors: Sequence[MalformedIRError]) -> List[UnitReport]:
    """One failed :class:`UnitReport` per unit the loader had to skip."""
    return [
        UnitReport(
            unit=err.unit or "",
            failures=[UnitFailure.from_error(err.unit or "", UNIT_LOADER, err)],
        )
        for err in errors
    ]


def _emit_report(report: RunReport, fmt: str, stream: TextIO) -> None:
    """Write *report* to *stream* in the chosen format."""
    if fmt == "json":
        json.dump(report.to_dict(), stream, indent=2, sort_keys=True)
        stream.write("\n")
        return
    for diag in report.diagnostics:
        stream.write(diag.to_gcc_format() + "\n")
    for failure in report.failures:
        stream.write(
            f"{failure.unit}: error: {failure.analyzer}: "
            f"{failure.message} ({failure.kind.value})\n"
        )


# ===========================================================================
# Sub-command implementations
# ===========================================================================

# ---------------------------------------------------------------------------
# analyze
# ---------------------------------------------------------------------------

def cmd_analyze(args: argparse.Namespace) -> int:
    """Analyse serialised units and report diagnostics.

    Workflow:
        1. Build the registry (built-ins plus one check per rule file).
        2. Read every unit file.
        3. Run the selected checks through the scheduler.
        4. Emit the report and map it to an exit code.
    """
    try:
        registry = _build_registry(args.rules)
    except ConfigurationError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    units: List[Unit] = []
    unreadable: List[MalformedIRError] = []
    for raw in args.units:
        path = _resolve_path(raw, "unit file")
        try:
            units.extend(load_units(path, unreadable))
        except (OSError, MalformedIRError) as exc:
            _log.error("Cannot read %s: %s", path, exc)
            return EXIT_INFRA

    changes: Dict[str, Any] = {}
    if args.workers is not None:
        changes["workers"] = args.workers
    if args.timeout is not None:
        changes["unit_timeout"] = args.timeout
    config = EngineConfig.from_env().replace(**changes)

    options: Dict[str, Dict[str, Any]] = {}
    if args.target_version is not None:
        options[ALL_ANALYZERS] = {TARGET_VERSION: args.target_version}

    scheduler = DependencyScheduler(registry, config)
    try:
        report = scheduler.run(units, _split_ids(args.checks), options)
    except ConfigurationError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA
    report.units.extend(_unreadable_reports(unreadable))

    try:
        stream = _open_output(args.output)
    except OSError as exc:
        _log.error("Cannot write %s: %s", args.output, exc)
        return EXIT_INFRA
    try:
        _emit_report(report, args.format, stream)
    finally:
        if stream is not sys.stdout:
            stream.close()

    if report.failures:
        return EXIT_INFRA
    return EXIT_DIAGNOSTICS if report.diagnostics else EXIT_OK


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------

def cmd_list(args: argparse.Namespace) -> int:
    """Print every registered analyzer with its dependencies."""
    try:
        registry = _build_registry(args.rules)
    except ConfigurationError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    out = sys.stdout
    for desc in registry:
        if desc.is_check or args.all:
            requires = ", ".join(desc.requires) or "-"
            out.write(f"{desc.identifier:<18} {desc.title}\n")
            out.write(f"{'':<18} requires: {requires}\n")
    return EXIT_OK


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    """Construct the full CLI argument parser with subcommands."""

    parser = argparse.ArgumentParser(
        prog="rangelint",
        description=(
            "rangelint — value-range analysis and call-rule checks over\n"
            "programs in single-assignment form."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              rangelint analyze app.sexp --rules stdlib.rules
              rangelint analyze app.sexp --checks SA1019 --format json
              rangelint list --all
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    def _add_rules_arg(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--rules",
            action="append",
            default=[],
            metavar="FILE",
            help="Rule table to load as an extra check (repeatable).",
        )

    # --- analyze -----------------------------------------------------------
    p_analyze = subparsers.add_parser(
        "analyze",
        aliases=["analyse"],
        help="Analyse serialised units.",
        description="Run checks over units in S-expression SSA form.",
    )
    p_analyze.add_argument(
        "units",
        nargs="+",
        metavar="UNIT",
        help="Unit file(s) in S-expression form.",
    )
    _add_rules_arg(p_analyze)
    p_analyze.add_argument(
        "--checks",
        default=None,
        metavar="IDS",
        help="Comma-separated analyzer identifiers (default: every check).",
    )
    p_analyze.add_argument(
        "--target-version",
        default=None,
        metavar="1.N",
        help="Language version targeted by the code ('1.N' or 'latest').",
    )
    g = p_analyze.add_argument_group("runtime tuning")
    g.add_argument(
        "--workers",
        type=int,
        default=None,
        metavar="N",
        help="Units analysed concurrently (default: 1).",
    )
    g.add_argument(
        "--timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Time budget per unit (default: none).",
    )
    p_analyze.add_argument(
        "-o", "--output",
        default=None,
        metavar="FILE",
        help='Output file ("-" or omit for stdout).',
    )
    p_analyze.add_argument(
        "-f", "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text).",
    )
    p_analyze.set_defaults(func=cmd_analyze)

    # --- list --------------------------------------------------------------
    p_list = subparsers.add_parser(
        "list",
        help="List registered analyzers.",
        description="Show every check (and, with --all, every fact analyzer).",
    )
    _add_rules_arg(p_list)
    p_list.add_argument(
        "--all",
        action="store_true",
        help="Include fact analyzers.",
    )
    p_list.set_defaults(func=cmd_list)

    return parser


# ===========================================================================
# Main entry-point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the rangelint CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA
    except Exception:
        _log.error("Internal error while running %r", args.command, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
