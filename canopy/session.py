"""
canopy/session.py
=================

Coverage sessions and the convenience entry points built on them.

A session is one pushed branch table of a :class:`~canopy.hooks.HookRegistry`.
Everything instrumented while it is active is attributed to it, and
popping it yields its hooks for reporting.  Sessions nest: an inner
session collects its own hooks and leaves the outer one untouched.

Typical use::

    report = run_coverage("a = 2; if a > 4; 1; end")
    # ['-:1: Branch condition (a > 4) was never true.']

or, to run the same instrumented script several times::

    with CoverageSession() as session:
        script = session.compile(text, "calc.rb")
        for value in (1, 2, 3):
            script.run({"n": value})
    print("\\n".join(session.report()))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TextIO, Union

from .codegen import RenderedProgram, generate
from .config import CoverageConfig
from .errors import (
    CanopyErrorCodes,
    ExecutionError,
    RenderError,
    ScriptRuntimeError,
    ScriptSyntaxError,
)
from .hooks import Hook, HookRegistry
from .instrument import Instrumenter
from .parser import parse
from .runtime import Environment, execute
from .tree import Tree, recursion_headroom

__all__ = [
    "CoverageSession",
    "InstrumentedScript",
    "compile_script",
    "run_coverage",
    "run_coverage_file",
    "run_coverage_around",
    "report",
    "default_registry",
]

logger = logging.getLogger(__name__)

_DEFAULT_REGISTRY = HookRegistry()


def default_registry() -> HookRegistry:
    """The process-wide registry used when none is passed."""
    return _DEFAULT_REGISTRY


def report(hooks: Iterable[Hook]) -> List[str]:
    """Concatenate the diagnostics of *hooks*, in order."""
    lines: List[str] = []
    for hook in hooks:
        lines.extend(hook.report())
    return lines


# ═══════════════════════════════════════════════════════════════════════════
# SESSIONS
# ═══════════════════════════════════════════════════════════════════════════

class CoverageSession:
    """Context manager owning one branch table of a registry.

    While active, :attr:`hooks` tracks the table as it fills; after exit
    it holds the popped hooks.  The table is popped even when the body
    raises.
    """

    def __init__(self, registry: Optional[HookRegistry] = None,
                 config: Optional[CoverageConfig] = None) -> None:
        self.registry = registry if registry is not None else _DEFAULT_REGISTRY
        self.config = config or CoverageConfig()
        self._popped: Optional[List[Hook]] = None
        self._active = False

    def __enter__(self) -> "CoverageSession":
        self.registry.push()
        self._active = True
        self._popped = None
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._active = False
        self._popped = self.registry.pop()

    @property
    def active(self) -> bool:
        return self._active

    @property
    def hooks(self) -> List[Hook]:
        if self._active:
            return self.registry.current
        return list(self._popped or [])

    def report(self) -> List[str]:
        return report(self.hooks)

    @property
    def covered(self) -> bool:
        return not self.report()

    def compile(self, text: str, file_tag: Optional[str] = None) -> Optional["InstrumentedScript"]:
        """Instrument *text* into this session; see :func:`compile_script`."""
        return compile_script(text, file_tag, registry=self.registry, config=self.config)


@dataclass
class InstrumentedScript:
    """A parsed, instrumented and compiled script.

    Runnable only while the session it was compiled in is active; its
    generated code resolves hooks by id through the registry.
    """

    tree: Tree
    program: RenderedProgram
    hooks: List[Hook]
    registry: HookRegistry
    config: CoverageConfig = field(default_factory=CoverageConfig)

    @property
    def source(self) -> str:
        return self.program.source

    def run(self, bindings: Optional[Dict[str, Any]] = None, *,
            stdout: Optional[TextIO] = None) -> Any:
        """Execute the script; returns the value of its last statement."""
        environment = Environment(
            stdout=stdout,
            max_loop_iterations=self.config.max_loop_iterations,
        )
        return execute(self.program, environment, self.registry.lookup, bindings)


def compile_script(
    text: str,
    file_tag: Optional[str] = None,
    *,
    registry: Optional[HookRegistry] = None,
    config: Optional[CoverageConfig] = None,
) -> Optional[InstrumentedScript]:
    """Parse, instrument and compile *text* into the active session.

    Returns ``None`` when *text* holds no statements.  Raises
    :class:`~canopy.errors.ScriptSyntaxError` on malformed input and
    :class:`~canopy.errors.NoActiveSessionError` when *registry* has no
    active session to register hooks into.
    """
    registry = registry if registry is not None else _DEFAULT_REGISTRY
    config = config or CoverageConfig()
    tag = file_tag if file_tag is not None else config.file_tag

    tree = parse(text, tag)
    if tree is None:
        logger.debug("%s: empty program", tag)
        return None

    instrumenter = Instrumenter(registry, config)
    with recursion_headroom():
        try:
            instrumented = instrumenter.instrument(tree)
        except RecursionError as exc:
            raise RenderError(
                "script is nested too deeply to instrument",
                code=CanopyErrorCodes.UNRENDERABLE_NODE,
                span=tree.span,
            ) from exc
    tree = instrumented
    program = generate(tree, tag)
    logger.info("%s: instrumented %d branch points", tag, len(instrumenter.hooks))
    return InstrumentedScript(
        tree=tree,
        program=program,
        hooks=instrumenter.hooks,
        registry=registry,
        config=config,
    )


# ═══════════════════════════════════════════════════════════════════════════
# ONE-SHOT ENTRY POINTS
# ═══════════════════════════════════════════════════════════════════════════

def run_coverage(
    text: str,
    file_tag: Optional[str] = None,
    *,
    bindings: Optional[Dict[str, Any]] = None,
    config: Optional[CoverageConfig] = None,
    registry: Optional[HookRegistry] = None,
    stdout: Optional[TextIO] = None,
) -> List[str]:
    """Instrument and run *text* once; return its coverage report.

    *bindings* is used as the script's top-level variable table, so the
    caller sees the script's assignments afterwards.

    Malformed input yields an empty report (logged) unless
    ``config.strict_parse`` is set.  A fault raised by the script is
    re-raised as :class:`~canopy.errors.ExecutionError` carrying the
    coverage collected up to that point.
    """
    config = config or CoverageConfig()
    for problem in config.validate():
        logger.warning("configuration: %s", problem)
    tag = file_tag if file_tag is not None else config.file_tag

    script: Optional[InstrumentedScript] = None
    fault: Optional[BaseException] = None
    span = None
    with CoverageSession(registry, config) as session:
        try:
            script = session.compile(text, tag)
        except ScriptSyntaxError as exc:
            if config.strict_parse:
                raise
            logger.warning("%s: not instrumented: %s", tag, exc.message)
        if script is not None:
            try:
                script.run(bindings, stdout=stdout)
            except (ScriptRuntimeError, RecursionError) as exc:
                fault = exc
                span = script.program.locate(exc)

    lines = session.report()
    if fault is not None:
        if isinstance(fault, ScriptRuntimeError):
            message = fault.message
            span = span or fault.span
        else:
            message = "stack level too deep"
        raise ExecutionError(
            f"script failed: {message}",
            report=lines,
            fault=fault,
            span=span,
        ) from fault
    return lines


def run_coverage_file(path: Union[str, Path], **kwargs: Any) -> List[str]:
    """:func:`run_coverage` over a UTF-8 file, tagged with its path."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    return run_coverage(text, str(path), **kwargs)


def run_coverage_around(block: Callable[[], Any], *,
                        registry: Optional[HookRegistry] = None) -> List[str]:
    """Call *block* inside a fresh session and report what it instrumented."""
    with CoverageSession(registry) as session:
        block()
    return session.report()
