"""
canopy/runtime.py
=================

Execution environment for generated script code.

Generated modules (see :mod:`canopy.codegen`) run against three names
bound into their namespace:

* ``_rt``   – this module (``Scope``, ``truthy``, ``make_range`` and the
  control-flow signals)
* ``_env``  – an :class:`Environment`: method table, builtins, output
* ``_hook`` – a lookup function ``id -> Hook`` resolving instrumentation
  callbacks to the exact registered hook instances

Control flow that crosses Python function boundaries (``break`` out of a
block, ``return`` from inside a block) is carried by the
:class:`BlockBreak` and :class:`MethodReturn` signals.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Callable, Dict, List, Optional, TextIO

from .builtins import (
    CONSTANTS,
    ScriptRange,
    call_method,
    inspect,
    make_range,
    to_s,
    truthy,
)
from .errors import (
    InvalidJumpError,
    ScriptRaise,
    ScriptTypeError,
    StepLimitExceeded,
    UndefinedNameError,
)

__all__ = [
    "Scope",
    "BlockBreak",
    "MethodReturn",
    "Environment",
    "execute",
    "truthy",
    "make_range",
    "ScriptRange",
]

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# SCOPES
# ═══════════════════════════════════════════════════════════════════════════

class Scope:
    """Local variables of a program, method or block.

    Block scopes chain to their enclosing scope: reads and assignments
    reach variables already defined outside, new names stay local.
    """

    __slots__ = ("parent", "vars")

    def __init__(self, parent: Optional["Scope"] = None,
                 bindings: Optional[Dict[str, Any]] = None) -> None:
        self.parent = parent
        self.vars: Dict[str, Any] = bindings if bindings is not None else {}

    def find(self, name: str) -> Optional["Scope"]:
        scope: Optional[Scope] = self
        while scope is not None:
            if name in scope.vars:
                return scope
            scope = scope.parent
        return None

    def __contains__(self, name: str) -> bool:
        return self.find(name) is not None

    def lookup(self, name: str) -> Any:
        scope = self.find(name)
        if scope is None:
            raise KeyError(name)
        return scope.vars[name]

    def assign(self, name: str, value: Any) -> Any:
        scope = self.find(name) or self
        scope.vars[name] = value
        return value

    def bind_params(self, names: List[str], args: tuple) -> None:
        # A single array argument is spread over several block parameters.
        if len(names) > 1 and len(args) == 1 and isinstance(args[0], list):
            args = tuple(args[0])
        for i, name in enumerate(names):
            self.vars[name] = args[i] if i < len(args) else None

    def bind_arguments(self, method: str, names: List[str], args: tuple) -> None:
        if len(args) != len(names):
            raise ScriptTypeError(
                f"wrong number of arguments to '{method}' "
                f"(given {len(args)}, expected {len(names)})"
            )
        self.vars.update(zip(names, args))


# ═══════════════════════════════════════════════════════════════════════════
# CONTROL-FLOW SIGNALS
# ═══════════════════════════════════════════════════════════════════════════

class BlockBreak(Exception):
    """``break`` inside a block: unwinds to the call the block was given to."""

    def __init__(self, block: Callable[..., Any], value: Any = None) -> None:
        super().__init__("break")
        self.block = block
        self.value = value


class MethodReturn(Exception):
    """``return`` inside a block: unwinds to the method owning *scope*."""

    def __init__(self, scope: Scope, value: Any = None) -> None:
        super().__init__("return")
        self.scope = scope
        self.value = value


# ═══════════════════════════════════════════════════════════════════════════
# ENVIRONMENT
# ═══════════════════════════════════════════════════════════════════════════

class Environment:
    """Method table, builtins and output stream for one script run."""

    def __init__(
        self,
        stdout: Optional[TextIO] = None,
        max_loop_iterations: Optional[int] = None,
    ) -> None:
        self.stdout = stdout
        self.max_loop_iterations = max_loop_iterations
        self.methods: Dict[str, Callable[..., Any]] = {}
        self.loop_iterations = 0
        self._builtins: Dict[str, Callable[[List[Any], Any], Any]] = {
            "puts": self._puts,
            "print": self._print,
            "p": self._p,
            "raise": self._raise,
            "loop": self._loop,
        }

    @property
    def out(self) -> TextIO:
        return self.stdout if self.stdout is not None else sys.stdout

    # ── definitions and lookup ───────────────────────────────────────

    def define_method(self, name: str, fn: Callable[..., Any]) -> str:
        logger.debug("defining method %s", name)
        self.methods[name] = fn
        return name

    def constant(self, name: str) -> Any:
        try:
            return CONSTANTS[name]
        except KeyError:
            raise UndefinedNameError(name) from None

    def resolve(self, scope: Scope, name: str) -> Any:
        """A bare name: local variable first, then a zero-argument call."""
        holder = scope.find(name)
        if holder is not None:
            return holder.vars[name]
        if name in self.methods or name in self._builtins:
            return self.call(name, [])
        raise UndefinedNameError(name)

    # ── calls ────────────────────────────────────────────────────────

    def call(self, name: str, args: List[Any], block: Any = None) -> Any:
        """A receiverless call ``name(args)``."""
        try:
            if name in self.methods:
                return self.methods[name](*args)
            if name in self._builtins:
                return self._builtins[name](args, block)
            raise UndefinedNameError(name)
        except BlockBreak as brk:
            if block is not None and brk.block is block:
                return brk.value
            raise

    def send(self, receiver: Any, name: str, args: List[Any], block: Any = None) -> Any:
        """A method call ``receiver.name(args) { block }``."""
        try:
            return call_method(receiver, name, args, block)
        except BlockBreak as brk:
            if block is not None and brk.block is block:
                return brk.value
            raise

    def tick(self) -> None:
        """Count one loop iteration against ``max_loop_iterations``."""
        self.loop_iterations += 1
        limit = self.max_loop_iterations
        if limit is not None and self.loop_iterations > limit:
            raise StepLimitExceeded(limit)

    def invalid_jump(self, keyword: str) -> None:
        raise InvalidJumpError(keyword)

    # ── builtins ─────────────────────────────────────────────────────

    def _puts(self, args: List[Any], block: Any) -> None:
        if not args:
            self.out.write("\n")
        for arg in args:
            if isinstance(arg, list) and arg:
                self._puts(arg, None)
            elif isinstance(arg, list):
                self.out.write("\n")
            else:
                text = to_s(arg)
                self.out.write(text if text.endswith("\n") else text + "\n")
        return None

    def _print(self, args: List[Any], block: Any) -> None:
        self.out.write("".join(to_s(a) for a in args))
        return None

    def _p(self, args: List[Any], block: Any) -> Any:
        for arg in args:
            self.out.write(inspect(arg) + "\n")
        if not args:
            return None
        return args[0] if len(args) == 1 else list(args)

    def _raise(self, args: List[Any], block: Any) -> None:
        message = to_s(args[-1]) if args else "unhandled exception"
        raise ScriptRaise(message)

    def _loop(self, args: List[Any], block: Any) -> Any:
        if block is None:
            raise ScriptTypeError("loop called without a block")
        while True:
            self.tick()
            block()


# ═══════════════════════════════════════════════════════════════════════════
# EXECUTION
# ═══════════════════════════════════════════════════════════════════════════

def execute(
    program: Any,
    environment: Environment,
    hook_lookup: Callable[[int], Any],
    bindings: Optional[Dict[str, Any]] = None,
) -> Any:
    """Run a :class:`~canopy.codegen.RenderedProgram`.

    *bindings* becomes the top-level variable table and is shared, not
    copied: assignments made by the script are visible to the caller.
    Returns the value of the last top-level statement.
    """
    namespace: Dict[str, Any] = {
        "__name__": "__canopy__",
        "_rt": sys.modules[__name__],
        "_env": environment,
        "_hook": hook_lookup,
    }
    exec(program.code, namespace)
    entry = namespace[program.entry_point]
    top = Scope(None, bindings if bindings is not None else {})
    logger.debug("executing %s", program.filename)
    return entry(top)
