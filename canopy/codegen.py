#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
canopy/codegen.py
=================

Compiles (possibly instrumented) trees into Python.

The generated module defines a single entry point, ``_main(_s0)``, that
runs the script against the top-level :class:`~canopy.runtime.Scope`
``_s0``.  Expressions are flattened into statements over temporaries
(``_t1``, ``_t2``, ...) so that the evaluation order of the tree is
kept exactly, including inside short-circuit operators and loop
conditions::

    if a > 4; 1; end          _t3 = _env.resolve(_s0, 'a')
                              _t2 = _env.send(_t3, '>', [4])
                              if _rt.truthy(_t2):
                                  _t1 = 1
                              else:
                                  _t1 = None

Mapping
-------
- **variables** — ``Scope.assign`` / ``Environment.resolve`` on the
  innermost scope object (``_s0``, ``_s1``, ...)
- **blocks** — nested ``def _blkN(*_args)`` with a child scope; ``next``
  returns, ``break`` raises ``BlockBreak``
- **def** — nested function registered with ``_env.define_method``;
  ``return`` from inside a block raises ``MethodReturn``
- **while/until** — ``while True:`` with the test at the top
- **hook** — ``_hook(id).hook(value)``
- **elsif chains, case arms, and/or chains** — sibling ``if`` blocks
  guarded by a "done" flag instead of ever deeper ``else:`` nesting
- **deep nesting** — bodies that would pass Python's indentation or
  block limits move into module-level helpers ``_hN(scopes...)``

Every emitted line is mapped back to the script line it came from, so a
fault inside generated code can be reported against the script.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from io import StringIO
from types import CodeType, TracebackType
from typing import Any, Dict, List, Optional, Tuple

from .errors import CanopyErrorCodes, RenderError, SourceSpan
from .tree import Child, Tree, recursion_headroom

__all__ = [
    "generate",
    "PythonGenerator",
    "CodeEmitter",
    "RenderedProgram",
]

logger = logging.getLogger(__name__)

SourceLocation = Tuple[str, int]

ENTRY_POINT = "_main"

# CPython allows 100 indentation levels and 20 nested loop/try blocks
# per function; bodies nested deeper than this move into helpers.
_MAX_INDENT = 60
_MAX_BLOCKS = 16


# ═══════════════════════════════════════════════════════════════════════════
# CODE EMITTER
# ═══════════════════════════════════════════════════════════════════════════

class CodeEmitter:
    """Low-level code emission with indentation management.

    Provides a structured way to emit Python code with:
    - Automatic indentation tracking
    - Block context managers
    - Line and source mapping
    """

    def __init__(self, indent_str: str = "    ") -> None:
        self._buffer = StringIO()
        self._indent_str = indent_str
        self._indent_level = 0
        self._line_number = 1
        self._source_map: Dict[int, SourceLocation] = {}
        self._current_source: Optional[SourceLocation] = None

    @property
    def indent_level(self) -> int:
        return self._indent_level

    @property
    def line_number(self) -> int:
        """Number of the next line to be emitted."""
        return self._line_number

    def emit(self, code: str) -> None:
        """Emit a line of code at the current indentation."""
        if code.strip():
            self._buffer.write(self._indent_str * self._indent_level)
            self._buffer.write(code)
            if self._current_source:
                self._source_map[self._line_number] = self._current_source
        self._buffer.write("\n")
        self._line_number += 1

    def emit_comment(self, text: str) -> None:
        for line in text.split("\n"):
            self.emit(f"# {line}")

    def indent(self) -> None:
        self._indent_level += 1

    def dedent(self) -> None:
        self._indent_level = max(0, self._indent_level - 1)

    def block(self, header: str) -> "CodeEmitter._BlockContext":
        """Context manager for indented blocks."""
        return self._BlockContext(self, header)

    class _BlockContext:
        def __init__(self, emitter: "CodeEmitter", header: str) -> None:
            self._emitter = emitter
            self._header = header

        def __enter__(self) -> "CodeEmitter":
            self._emitter.emit(self._header)
            self._emitter.indent()
            return self._emitter

        def __exit__(self, *args: Any) -> None:
            self._emitter.dedent()

    @property
    def current_source(self) -> Optional[SourceLocation]:
        return self._current_source

    def set_source(self, location: Optional[SourceLocation]) -> None:
        """Set current source location for mapping."""
        self._current_source = location

    def get_code(self) -> str:
        return self._buffer.getvalue()

    def get_source_map(self) -> Dict[int, SourceLocation]:
        """Get the source map (generated line -> script location)."""
        return dict(self._source_map)


# ═══════════════════════════════════════════════════════════════════════════
# GENERATED PROGRAM
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class RenderedProgram:
    """Generated Python source, its code object and line mapping."""

    source: str
    filename: str
    code: CodeType
    source_map: Dict[int, SourceLocation] = field(default_factory=dict)
    entry_point: str = ENTRY_POINT

    @property
    def code_filename(self) -> str:
        return self.code.co_filename

    def locate(self, exc: BaseException) -> Optional[SourceSpan]:
        """Script position of the innermost generated frame in *exc*'s traceback."""
        tb: Optional[TracebackType] = exc.__traceback__
        lineno = None
        while tb is not None:
            if tb.tb_frame.f_code.co_filename == self.code_filename:
                lineno = tb.tb_lineno
            tb = tb.tb_next
        if lineno is None or lineno not in self.source_map:
            return None
        file, line = self.source_map[lineno]
        return SourceSpan(file=file, line=line)


# ═══════════════════════════════════════════════════════════════════════════
# GENERATOR
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class _Frame:
    """A lexical context that jumps resolve against."""

    kind: str                      # "main", "method", "block" or "loop"
    scope: str                     # variable holding the innermost Scope
    owner: str                     # scope of the enclosing method or program
    function: str = ""             # block function name
    target: Optional[str] = None   # loop result variable


_CONSTANT_VALUES = {"true": "True", "false": "False", "nil": "None"}


def _escapes(node: Child, in_loop: bool = False, in_block: bool = False) -> bool:
    """Whether *node* holds a jump aimed outside of it.

    Such a jump only works from inside the enclosing Python function, so
    the body cannot be moved into a helper.
    """
    if not isinstance(node, Tree):
        return False
    kind = node.kind
    if kind == "defn":
        return False
    if kind in ("break", "next"):
        return not in_loop or _escapes(node[0], in_loop, in_block)
    if kind == "return":
        return not in_block or _escapes(node[0], in_loop, in_block)
    if kind in ("while", "until"):
        return any(_escapes(c, True, in_block) for c in node.children)
    if kind == "iter":
        return (_escapes(node[0], in_loop, in_block)
                or any(_escapes(c, True, True) for c in node.children[1:]))
    return any(_escapes(c, in_loop, in_block) for c in node.children)


class PythonGenerator:
    """Generates a Python module from a script tree."""

    def __init__(self, filename: str = "-") -> None:
        self.filename = filename
        self._out = CodeEmitter()
        self._frames: List[_Frame] = []
        self._counter = 0
        self._blocks = 0                          # loop/try nesting in the current def
        self._helpers: List[CodeEmitter] = []

    # ── entry ────────────────────────────────────────────────────────

    def generate(self, tree: Optional[Tree]) -> RenderedProgram:
        self._out.emit_comment(f"generated by canopy from {self.filename}")
        with recursion_headroom():
            try:
                with self._out.block(f"def {ENTRY_POINT}(_s0):"):
                    self._frames = [_Frame("main", "_s0", "_s0")]
                    self._function_body(tree, "_s0")
                source, source_map = self._link()
                code_filename = f"<canopy {self.filename}>"
                code = compile(source, code_filename, "exec")
            except SyntaxError as exc:
                raise RenderError(
                    f"generated code does not compile: {exc.msg} (line {exc.lineno})",
                    code=CanopyErrorCodes.INVALID_GENERATED_CODE,
                    span=SourceSpan(file=self.filename),
                ) from exc
            except RecursionError as exc:
                raise RenderError(
                    "script is nested too deeply to compile",
                    code=CanopyErrorCodes.INVALID_GENERATED_CODE,
                    span=SourceSpan(file=self.filename),
                ) from exc
        logger.debug("generated %d lines of Python for %s (%d helpers)",
                     source.count("\n"), self.filename, len(self._helpers))
        return RenderedProgram(
            source=source,
            filename=self.filename,
            code=code,
            source_map=source_map,
        )

    def _link(self) -> Tuple[str, Dict[int, SourceLocation]]:
        """Append the helper functions to the entry point, shifting their line maps."""
        parts = [self._out.get_code()]
        source_map = self._out.get_source_map()
        offset = self._out.line_number - 1
        for helper in self._helpers:
            parts.append(helper.get_code())
            for line, location in helper.get_source_map().items():
                source_map[line + offset] = location
            offset += helper.line_number - 1
        return "".join(parts), source_map

    # ── helpers ──────────────────────────────────────────────────────

    def _name(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter}"

    def _temp(self) -> str:
        return self._name("_t")

    @property
    def _frame(self) -> _Frame:
        return self._frames[-1]

    def _assign(self, target: Optional[str], expr: str) -> None:
        if target is not None:
            self._out.emit(f"{target} = {expr}")
        elif expr.endswith(")"):
            # Only calls have effects worth keeping.
            self._out.emit(expr)

    def _suite(self, node: Child, target: Optional[str]) -> None:
        """Emit an indented body, never leaving it empty."""
        too_deep = (self._out.indent_level >= _MAX_INDENT
                    or self._blocks >= _MAX_BLOCKS)
        if too_deep and not _escapes(node):
            self._emit_helper(node, target)
            return
        mark = self._out.line_number
        self._emit_into(node, target)
        if self._out.line_number == mark:
            self._out.emit("pass")

    def _emit_helper(self, node: Child, target: Optional[str]) -> None:
        """Emit *node* as a module-level function and call it from here.

        The helper takes the scopes of the current frame as parameters
        under their own names, which is all the code inside it reads.
        """
        frame = self._frame
        params = ", ".join(dict.fromkeys((frame.scope, frame.owner)))
        fn = self._name("_h")
        call = f"{fn}({params})"
        self._out.emit(f"{target} = {call}" if target is not None else call)

        outer, blocks = self._out, self._blocks
        self._out, self._blocks = CodeEmitter(), 0
        self._out.set_source(outer.current_source)
        with self._out.block(f"def {call}:"):
            result = self._temp()
            self._suite(node, result)
            self._out.emit(f"return {result}")
        self._helpers.append(self._out)
        self._out, self._blocks = outer, blocks

    def _function_body(self, body: Child, scope: str) -> None:
        self._blocks += 1
        with self._out.block("try:"):
            result = self._temp()
            self._suite(body, result)
            self._out.emit(f"return {result}")
        self._blocks -= 1
        with self._out.block("except _rt.MethodReturn as _ret:"):
            with self._out.block(f"if _ret.scope is not {scope}:"):
                self._out.emit("raise")
            self._out.emit("return _ret.value")

    def _value(self, node: Child) -> str:
        """Evaluate *node* and return an atomic Python expression for it."""
        if node is None:
            return "None"
        if not isinstance(node, Tree):
            raise RenderError(f"unexpected terminal {node!r} in expression position")
        if node.kind in ("lit", "str"):
            return repr(node[0])
        if node.kind in _CONSTANT_VALUES:
            return _CONSTANT_VALUES[node.kind]
        temp = self._temp()
        self._emit_into(node, temp)
        return temp

    def _values(self, nodes: List[Child]) -> str:
        return ", ".join(self._value(n) for n in nodes)

    # ── dispatch ─────────────────────────────────────────────────────

    def _emit_into(self, node: Child, target: Optional[str]) -> None:
        """Emit code evaluating *node*, storing its value in *target*."""
        if node is None:
            self._assign(target, "None")
            return
        if not isinstance(node, Tree):
            raise RenderError(f"unexpected terminal {node!r} in statement position")
        previous = self._out.current_source
        if node.line > 0:
            self._out.set_source((node.file, node.line))
        self._dispatch(node, target)
        self._out.set_source(previous)

    def _dispatch(self, node: Tree, target: Optional[str]) -> None:
        kind = node.kind
        if kind == "block":
            self._emit_block(node, target)
        elif kind in ("lit", "str") or kind in _CONSTANT_VALUES:
            self._assign(target, self._value(node))
        elif kind == "array":
            self._assign(target, f"[{self._values(node.children)}]")
        elif kind in ("dot2", "dot3"):
            low, high = self._value(node[0]), self._value(node[1])
            self._assign(target, f"_rt.make_range({low}, {high}, {kind == 'dot3'})")
        elif kind == "lvar":
            self._assign(target, f"_env.resolve({self._frame.scope}, {node[0]!r})")
        elif kind == "const":
            self._assign(target, f"_env.constant({node[0]!r})")
        elif kind == "lasgn":
            value = self._value(node[1])
            self._out.emit(f"{self._frame.scope}.assign({node[0]!r}, {value})")
            self._assign(target, value)
        elif kind == "call":
            self._emit_call(node, None, target)
        elif kind == "iter":
            self._emit_call(node[0], node, target)
        elif kind == "if":
            self._emit_if(node, target)
        elif kind in ("while", "until"):
            self._emit_loop(node, target)
        elif kind in ("and", "or"):
            self._emit_logical(node, target)
        elif kind == "not":
            value = self._value(node[0])
            self._assign(target, f"(not _rt.truthy({value}))")
        elif kind == "case":
            self._emit_case(node, target)
        elif kind == "break":
            self._emit_break(node)
        elif kind == "next":
            self._emit_next(node)
        elif kind == "return":
            self._emit_return(node)
        elif kind == "defn":
            self._emit_defn(node, target)
        elif kind == "hook":
            value = self._value(node[1])
            self._assign(target, f"_hook({node[0]!r}).hook({value})")
        else:
            raise RenderError(
                f"cannot render node kind {kind!r}",
                code=CanopyErrorCodes.UNRENDERABLE_NODE,
                span=node.span,
            )

    # ── statements and expressions ───────────────────────────────────

    def _emit_block(self, node: Tree, target: Optional[str]) -> None:
        if not node.children:
            self._assign(target, "None")
            return
        for child in node.children[:-1]:
            self._emit_into(child, None)
        self._emit_into(node.children[-1], target)

    def _emit_call(self, call: Tree, iter_node: Optional[Tree], target: Optional[str]) -> None:
        receiver, name, args = call[0], call[1], call.children[2:]
        recv = self._value(receiver) if receiver is not None else None
        arg_list = self._values(args)
        block = ""
        if iter_node is not None:
            block = ", " + self._block_function(iter_node[1], iter_node[2])
        if recv is None:
            self._assign(target, f"_env.call({name!r}, [{arg_list}]{block})")
        else:
            self._assign(target, f"_env.send({recv}, {name!r}, [{arg_list}]{block})")

    def _emit_if(self, node: Tree, target: Optional[str]) -> None:
        arms = [node]
        rest = node[2]
        while isinstance(rest, Tree) and rest.kind == "if":
            arms.append(rest)
            rest = rest[2]
        if len(arms) == 1:
            test = self._value(node[0])
            with self._out.block(f"if _rt.truthy({test}):"):
                self._suite(node[1], target)
            with self._out.block("else:"):
                self._suite(node[2], target)
            return

        # if/elsif/.../else as sibling blocks, at constant depth
        done = self._temp()
        self._out.emit(f"{done} = False")
        previous = self._out.current_source
        for i, arm in enumerate(arms):
            if arm.line > 0:
                self._out.set_source((arm.file, arm.line))
            if i:
                self._out.emit(f"if not {done}:")
                self._out.indent()
            test = self._value(arm[0])
            with self._out.block(f"if _rt.truthy({test}):"):
                self._out.emit(f"{done} = True")
                self._suite(arm[1], target)
            if i:
                self._out.dedent()
        self._out.set_source(previous)
        with self._out.block(f"if not {done}:"):
            self._suite(rest, target)

    def _emit_loop(self, node: Tree, target: Optional[str]) -> None:
        frame = self._frame
        if target is not None:
            self._out.emit(f"{target} = None")
        self._frames.append(_Frame("loop", frame.scope, frame.owner, target=target))
        self._blocks += 1
        with self._out.block("while True:"):
            self._out.emit("_env.tick()")
            test = self._value(node[0])
            negate = "not " if node.kind == "while" else ""
            with self._out.block(f"if {negate}_rt.truthy({test}):"):
                self._out.emit("break")
            self._suite(node[1], None)
        self._blocks -= 1
        self._frames.pop()

    def _emit_logical(self, node: Tree, target: Optional[str]) -> None:
        # (or a (or b c)) runs as one flat chain over a, b, c
        operands = [node[0]]
        rest = node[1]
        while isinstance(rest, Tree) and rest.kind == node.kind:
            operands.append(rest[0])
            rest = rest[1]
        operands.append(rest)

        result = target or self._temp()
        left = self._value(operands[0])
        self._out.emit(f"{result} = {left}")
        negate = "" if node.kind == "and" else "not "
        for operand in operands[1:]:
            with self._out.block(f"if {negate}_rt.truthy({result}):"):
                self._suite(operand, result)

    def _emit_case(self, node: Tree, target: Optional[str]) -> None:
        operand = self._value(node[0])
        whens = node.children[1:-1]
        otherwise = node[-1]
        done = self._temp()
        self._out.emit(f"{done} = False")
        for when in whens:
            matched = self._temp()
            with self._out.block(f"if not {done}:"):
                self._out.emit(f"{matched} = False")
                for value in when[0].children:
                    with self._out.block(f"if not {matched}:"):
                        v = self._value(value)
                        self._out.emit(
                            f"{matched} = _rt.truthy(_env.send({v}, '===', [{operand}]))"
                        )
                with self._out.block(f"if {matched}:"):
                    self._out.emit(f"{done} = True")
                    self._suite(when[1], target)
        with self._out.block(f"if not {done}:"):
            self._suite(otherwise, target)

    # ── jumps ────────────────────────────────────────────────────────

    def _emit_break(self, node: Tree) -> None:
        frame = self._frame
        if frame.kind == "loop":
            value = self._value(node[0])
            if frame.target is not None:
                self._out.emit(f"{frame.target} = {value}")
            self._out.emit("break")
        elif frame.kind == "block":
            value = self._value(node[0])
            self._out.emit(f"raise _rt.BlockBreak({frame.function}, {value})")
        else:
            self._out.emit("_env.invalid_jump('break')")

    def _emit_next(self, node: Tree) -> None:
        frame = self._frame
        if frame.kind == "loop":
            self._value(node[0])
            self._out.emit("continue")
        elif frame.kind == "block":
            self._out.emit(f"return {self._value(node[0])}")
        else:
            self._out.emit("_env.invalid_jump('next')")

    def _emit_return(self, node: Tree) -> None:
        value = self._value(node[0])
        crossed = False
        for frame in reversed(self._frames):
            if frame.kind == "block":
                crossed = True
            elif frame.kind in ("main", "method"):
                break
        if crossed:
            self._out.emit(f"raise _rt.MethodReturn({self._frame.owner}, {value})")
        else:
            self._out.emit(f"return {value}")

    # ── functions ────────────────────────────────────────────────────

    def _block_function(self, params: Optional[Tree], body: Child) -> str:
        outer = self._frame
        fn = self._name("_blk")
        scope = self._name("_s")
        names = list(params.children) if params is not None else []
        blocks, self._blocks = self._blocks, 0
        with self._out.block(f"def {fn}(*_args):"):
            self._out.emit(f"{scope} = _rt.Scope({outer.scope})")
            if names:
                self._out.emit(f"{scope}.bind_params({names!r}, _args)")
            self._frames.append(_Frame("block", scope, outer.owner, function=fn))
            result = self._temp()
            self._suite(body, result)
            self._out.emit(f"return {result}")
            self._frames.pop()
        self._blocks = blocks
        return fn

    def _emit_defn(self, node: Tree, target: Optional[str]) -> None:
        name, params, body = node[0], node[1], node[2]
        fn = self._name("_m")
        scope = self._name("_s")
        blocks, self._blocks = self._blocks, 0
        with self._out.block(f"def {fn}(*_args):"):
            self._out.emit(f"{scope} = _rt.Scope()")
            self._out.emit(
                f"{scope}.bind_arguments({name!r}, {list(params.children)!r}, _args)"
            )
            self._frames.append(_Frame("method", scope, scope))
            self._function_body(body, scope)
            self._frames.pop()
        self._blocks = blocks
        self._out.emit(f"_env.define_method({name!r}, {fn})")
        self._assign(target, repr(name))


def generate(tree: Optional[Tree], filename: str = "-") -> RenderedProgram:
    """Render *tree* as a compiled Python program."""
    return PythonGenerator(filename).generate(tree)
