"""canopy — branch and decision coverage for scripts.

Parses a small Ruby-flavoured scripting language, instruments every
branch point (``if``/``unless``, ``while``/``until``, ``and``/``or``,
``case``/``when``), runs the result and reports the branch outcomes
that never happened.

Submodules
----------
tree
    Positioned tree nodes with s-expression dump/load.
grammar, parser
    PEG grammar and the tree builder.
unparser
    Renders trees back into script source.
hooks
    ``Hook`` (per branch point coverage state) and ``HookRegistry``.
instrument
    The instrumentation pass.
codegen, runtime, builtins
    Tree → Python compilation and the environment it runs in.
session
    ``CoverageSession``, ``compile_script`` and ``run_coverage*``.
main
    CLI entry-point with subcommands ``run``, ``parse``, ``instrument``.

Usage
-----
Command-line::

    python -m canopy run script.rb
    python -m canopy instrument script.rb --format python

Programmatic::

    from canopy import run_coverage

    for line in run_coverage("x = 3; if x > 4; 1; end"):
        print(line)
"""

from __future__ import annotations

__version__: str = "1.0.0"

from .config import CoverageConfig
from .errors import (
    CanopyError,
    ExecutionError,
    NoActiveSessionError,
    RenderError,
    ScriptRuntimeError,
    ScriptSyntaxError,
    SessionError,
    StaleHookError,
)
from .hooks import Hook, HookKind, HookRegistry, Outcome
from .instrument import Instrumenter, instrument
from .parser import parse, parse_file
from .session import (
    CoverageSession,
    InstrumentedScript,
    compile_script,
    default_registry,
    report,
    run_coverage,
    run_coverage_around,
    run_coverage_file,
)
from .tree import Tree
from .unparser import unparse

__all__: list[str] = [
    "__version__",
    "CoverageConfig",
    "CanopyError",
    "ExecutionError",
    "NoActiveSessionError",
    "RenderError",
    "ScriptRuntimeError",
    "ScriptSyntaxError",
    "SessionError",
    "StaleHookError",
    "Hook",
    "HookKind",
    "HookRegistry",
    "Outcome",
    "Instrumenter",
    "instrument",
    "parse",
    "parse_file",
    "CoverageSession",
    "InstrumentedScript",
    "compile_script",
    "default_registry",
    "report",
    "run_coverage",
    "run_coverage_around",
    "run_coverage_file",
    "Tree",
    "unparse",
]
