#!/usr/bin/env python3
"""canopy/main.py — CLI entry-point for canopy.

Usage examples
--------------
    # Run a script and list the branch outcomes it never took
    python -m canopy run script.rb

    # Same, as JSON, failing on malformed input
    python -m canopy run script.rb --format json --strict

    # Dump the parsed tree as an s-expression
    python -m canopy parse script.rb

    # Show what the instrumentation pass produces
    python -m canopy instrument script.rb --format source
    python -m canopy instrument script.rb --format python

    # Show version and exit
    python -m canopy --version

A SCRIPT argument of ``-`` reads the script from standard input.

Exit codes
----------
    0   Success; for ``run``, every branch outcome was observed.
    1   ``run`` found uncovered branch outcomes.
    2   Infrastructure failure (bad file, invalid options, syntax error
        in strict mode, render failure).
    3   The script itself faulted; the partial report is still printed.
"""

from __future__ import annotations

import argparse
import io
import json
import logging
import sys
import textwrap
from pathlib import Path
from typing import List, Optional, Sequence, TextIO, Tuple

from . import __version__
from .config import CoverageConfig
from .errors import CanopyError, ExecutionError, ScriptSyntaxError
from .hooks import HookRegistry
from .parser import parse
from .session import CoverageSession, run_coverage
from .unparser import unparse

_log = logging.getLogger("canopy")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_UNCOVERED: int = 1
EXIT_INFRA: int = 2
EXIT_SCRIPT_FAULT: int = 3


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``canopy`` logger.

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
    handler.set_name("canopy-cli")
    root = logging.getLogger("canopy")
    for previous in [h for h in root.handlers if h.get_name() == "canopy-cli"]:
        root.removeHandler(previous)
    root.setLevel(level)
    root.addHandler(handler)


def _read_script(raw: str) -> Tuple[str, str]:
    """Return ``(text, file_tag)`` for a SCRIPT argument."""
    if raw == "-":
        return sys.stdin.read(), "-"
    p = Path(raw).expanduser()
    if not p.is_file():
        _log.error("script not found: %s", p)
        raise SystemExit(EXIT_INFRA)
    try:
        return p.read_text(encoding="utf-8"), raw
    except (OSError, UnicodeDecodeError) as exc:
        _log.error("cannot read %s: %s", p, exc)
        raise SystemExit(EXIT_INFRA)


def _config_from_args(args: argparse.Namespace) -> CoverageConfig:
    config = CoverageConfig(
        reevaluate_case_operand=getattr(args, "reevaluate_case_operand", False),
        strict_parse=getattr(args, "strict", False),
        max_loop_iterations=getattr(args, "max_loop_iterations", None),
    )
    problems = config.validate()
    for problem in problems:
        _log.error("invalid configuration: %s", problem)
    if problems:
        raise SystemExit(EXIT_INFRA)
    return config


def _report_error(exc: CanopyError, stream: TextIO) -> None:
    stream.write(exc.to_gcc_format() + "\n")


def _emit_report(lines: List[str], file_tag: str, fmt: str,
                 stream: TextIO, fault: Optional[CanopyError] = None) -> None:
    if fmt == "json":
        payload = {
            "file": file_tag,
            "covered": not lines and fault is None,
            "diagnostics": lines,
        }
        if fault is not None:
            payload["fault"] = fault.to_json()
        stream.write(json.dumps(payload, indent=2) + "\n")
        return
    for line in lines:
        stream.write(line + "\n")


# ===========================================================================
# Subcommand handlers
# ===========================================================================

# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

def cmd_run(args: argparse.Namespace) -> int:
    """Instrument and run a script, then print its coverage report."""
    text, file_tag = _read_script(args.script)
    config = _config_from_args(args)
    script_out = io.StringIO() if args.quiet else sys.stdout

    try:
        lines = run_coverage(text, file_tag, config=config, stdout=script_out)
    except ScriptSyntaxError as exc:
        _report_error(exc, sys.stderr)
        return EXIT_INFRA
    except ExecutionError as exc:
        _report_error(exc, sys.stderr)
        _emit_report(exc.report, file_tag, args.format, sys.stdout, fault=exc)
        return EXIT_SCRIPT_FAULT
    except CanopyError as exc:
        _report_error(exc, sys.stderr)
        return EXIT_INFRA

    _emit_report(lines, file_tag, args.format, sys.stdout)
    _log.info("%s: %d uncovered branch outcome(s)", file_tag, len(lines))
    return EXIT_UNCOVERED if lines else EXIT_OK


# ---------------------------------------------------------------------------
# parse
# ---------------------------------------------------------------------------

def cmd_parse(args: argparse.Namespace) -> int:
    """Parse a script and print its tree."""
    text, file_tag = _read_script(args.script)
    try:
        tree = parse(text, file_tag)
    except ScriptSyntaxError as exc:
        _report_error(exc, sys.stderr)
        return EXIT_INFRA

    if tree is None:
        _log.info("%s: empty program", file_tag)
        return EXIT_OK
    if args.format == "source":
        sys.stdout.write(unparse(tree) + "\n")
    else:
        sys.stdout.write(tree.dumps() + "\n")
    return EXIT_OK


# ---------------------------------------------------------------------------
# instrument
# ---------------------------------------------------------------------------

def cmd_instrument(args: argparse.Namespace) -> int:
    """Print the instrumented tree or the Python generated for it."""
    text, file_tag = _read_script(args.script)
    config = _config_from_args(args)

    try:
        with CoverageSession(HookRegistry(), config) as session:
            script = session.compile(text, file_tag)
    except CanopyError as exc:
        _report_error(exc, sys.stderr)
        return EXIT_INFRA

    if script is None:
        _log.info("%s: empty program", file_tag)
        return EXIT_OK
    if args.format == "python":
        sys.stdout.write(script.source)
    elif args.format == "source":
        sys.stdout.write(unparse(script.tree) + "\n")
    else:
        sys.stdout.write(script.tree.dumps() + "\n")
    if args.list_hooks:
        for hook in session.hooks:
            sys.stderr.write(
                f"#{hook.hook_id} {hook.kind.value} {hook.file}:{hook.line} {hook.expr}\n"
            )
    return EXIT_OK


# ===========================================================================
# Argument parser construction
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    """Construct the full CLI argument parser with subcommands."""

    parser = argparse.ArgumentParser(
        prog="canopy",
        description=(
            "canopy — branch and decision coverage for scripts.\n\n"
            "Instruments if/unless, while/until, and/or and case/when\n"
            "branch points and reports outcomes that never happened."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              canopy run script.rb
              canopy run script.rb --format json --max-loop-iterations 100000
              canopy instrument script.rb --format python
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

    def _add_script_arg(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "script",
            metavar="SCRIPT",
            help='Script file ("-" for stdin).',
        )

    def _add_instrument_args(p: argparse.ArgumentParser) -> None:
        g = p.add_argument_group("instrumentation")
        g.add_argument(
            "--reevaluate-case-operand",
            action="store_true",
            help="Re-evaluate a case operand in every when-test instead of once.",
        )

    # --- run ---------------------------------------------------------------
    p_run = subparsers.add_parser(
        "run",
        help="Run a script and report uncovered branch outcomes.",
        description=(
            "Instrument SCRIPT, execute it once and print one line per "
            "branch outcome that was never observed."
        ),
    )
    _add_script_arg(p_run)
    p_run.add_argument(
        "-f", "--format",
        choices=["text", "json"],
        default="text",
        help="Report format (default: text).",
    )
    p_run.add_argument(
        "--strict",
        action="store_true",
        help="Fail on malformed scripts instead of reporting nothing.",
    )
    p_run.add_argument(
        "--max-loop-iterations",
        type=int,
        default=None,
        metavar="N",
        help="Abort the script after N loop iterations.",
    )
    p_run.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Discard the script's own output.",
    )
    _add_instrument_args(p_run)
    p_run.set_defaults(func=cmd_run)

    # --- parse -------------------------------------------------------------
    p_parse = subparsers.add_parser(
        "parse",
        help="Parse a script and dump the tree.",
        description="Parse SCRIPT and print its tree. Useful for front-end debugging.",
    )
    _add_script_arg(p_parse)
    p_parse.add_argument(
        "-f", "--format",
        choices=["sexp", "source"],
        default="sexp",
        help="Tree output format (default: sexp).",
    )
    p_parse.set_defaults(func=cmd_parse)

    # --- instrument --------------------------------------------------------
    p_instrument = subparsers.add_parser(
        "instrument",
        help="Dump the instrumented tree or the generated Python.",
        description=(
            "Instrument SCRIPT without running it and print the rewritten "
            "tree, its source rendering or the generated Python module."
        ),
    )
    _add_script_arg(p_instrument)
    p_instrument.add_argument(
        "-f", "--format",
        choices=["sexp", "source", "python"],
        default="sexp",
        help="Output format (default: sexp).",
    )
    p_instrument.add_argument(
        "--list-hooks",
        action="store_true",
        help="Also list the registered hooks on stderr.",
    )
    _add_instrument_args(p_instrument)
    p_instrument.set_defaults(func=cmd_instrument)

    return parser


# ===========================================================================
# Main entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the canopy CLI.

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
