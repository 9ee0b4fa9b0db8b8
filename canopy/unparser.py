"""
canopy/unparser.py
==================

Renders trees back to script source.

The output is single-line, re-parseable, and is what diagnostics show as
``<expr>``: binary operators are parenthesised (``(a > 4)``),
``and``/``or``/``not`` become ``(a and b)``, ``(not a)``, and other
method calls use dot syntax (``3.===(x)``).  Hook wrappers are
transparent, so an instrumented tree renders like the original.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from .errors import CanopyErrorCodes, RenderError, SourceSpan
from .tree import Child, Tree, recursion_headroom

__all__ = ["Unparser", "unparse", "BINARY_OPERATORS"]

BINARY_OPERATORS = frozenset({
    "+", "-", "*", "/", "%", "**", "<<", ">>", "&", "|", "^",
    "<", ">", "<=", ">=", "==", "!=", "<=>",
})

_STRING_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\t": "\\t", "\r": "\\r", "\x1b": "\\e"}


class Unparser:
    """Convert trees into script source text."""

    def __init__(self) -> None:
        self._dispatch: Dict[str, Callable[[Tree], str]] = {
            "block": self._unparse_block,
            "lit": self._unparse_lit,
            "str": self._unparse_str,
            "true": lambda t: "true",
            "false": lambda t: "false",
            "nil": lambda t: "nil",
            "array": self._unparse_array,
            "dot2": self._unparse_range,
            "dot3": self._unparse_range,
            "lvar": lambda t: t[0],
            "const": lambda t: t[0],
            "lasgn": self._unparse_lasgn,
            "call": self._unparse_call,
            "iter": self._unparse_iter,
            "args": lambda t: ", ".join(t.children),
            "if": self._unparse_if,
            "while": self._unparse_loop,
            "until": self._unparse_loop,
            "and": self._unparse_logical,
            "or": self._unparse_logical,
            "not": lambda t: f"(not {self.unparse(t[0])})",
            "case": self._unparse_case,
            "when": self._unparse_when,
            "break": self._unparse_jump,
            "next": self._unparse_jump,
            "return": self._unparse_jump,
            "defn": self._unparse_defn,
            "hook": lambda t: self.unparse(t[1]),
        }

    def unparse(self, node: Child) -> str:
        if not isinstance(node, Tree):
            return "nil" if node is None else repr(node)
        handler = self._dispatch.get(node.kind)
        if handler is None:
            raise RenderError(
                f"cannot render node kind {node.kind!r}",
                code=CanopyErrorCodes.UNRENDERABLE_NODE,
                span=node.span,
            )
        return handler(node)

    # ── helpers ──────────────────────────────────────────────────────

    def _body(self, node: Optional[Tree]) -> str:
        """Render a branch body, leading space included when non-empty."""
        if node is None:
            return ""
        return " " + self.unparse(node)

    def _args(self, args: List[Child]) -> str:
        return ", ".join(self.unparse(a) for a in args)

    # ── kinds ────────────────────────────────────────────────────────

    def _unparse_block(self, node: Tree) -> str:
        return "; ".join(self.unparse(c) for c in node)

    def _unparse_lit(self, node: Tree) -> str:
        return repr(node[0])

    def _unparse_str(self, node: Tree) -> str:
        return '"' + "".join(_STRING_ESCAPES.get(ch, ch) for ch in node[0]) + '"'

    def _unparse_array(self, node: Tree) -> str:
        return f"[{self._args(node.children)}]"

    def _unparse_range(self, node: Tree) -> str:
        op = "..." if node.kind == "dot3" else ".."
        return f"({self.unparse(node[0])}{op}{self.unparse(node[1])})"

    def _unparse_lasgn(self, node: Tree) -> str:
        return f"{node[0]} = {self.unparse(node[1])}"

    def _unparse_call(self, node: Tree) -> str:
        receiver, name, args = node[0], node[1], node.children[2:]
        if receiver is None:
            return f"{name}({self._args(args)})" if args else name
        recv = self.unparse(receiver)
        if name in BINARY_OPERATORS and len(args) == 1:
            return f"({recv} {name} {self.unparse(args[0])})"
        if name == "-@" and not args:
            return f"-{recv}"
        if name == "[]":
            return f"{recv}[{self._args(args)}]"
        if args:
            return f"{recv}.{name}({self._args(args)})"
        return f"{recv}.{name}"

    def _unparse_iter(self, node: Tree) -> str:
        call, params, body = node[0], node[1], node[2]
        head = self.unparse(call)
        bars = f"|{self.unparse(params)}| " if params is not None else ""
        inner = self.unparse(body) + " " if body is not None else ""
        return f"{head} {{ {bars}{inner}}}"

    def _unparse_if(self, node: Tree) -> str:
        test, then, otherwise = node[0], node[1], node[2]
        cond = self.unparse(test)
        if then is None and otherwise is not None:
            return f"unless {cond} then{self._body(otherwise)} end"
        text = f"if {cond} then{self._body(then)}"
        while (
            isinstance(otherwise, Tree)
            and otherwise.kind == "if"
            and otherwise[1] is not None
        ):
            text += f" elsif {self.unparse(otherwise[0])} then{self._body(otherwise[1])}"
            otherwise = otherwise[2]
        if otherwise is not None:
            text += f" else{self._body(otherwise)}"
        return text + " end"

    def _unparse_loop(self, node: Tree) -> str:
        return f"{node.kind} {self.unparse(node[0])} do{self._body(node[1])} end"

    def _unparse_logical(self, node: Tree) -> str:
        return f"({self.unparse(node[0])} {node.kind} {self.unparse(node[1])})"

    def _unparse_case(self, node: Tree) -> str:
        parts = [f"case {self.unparse(node[0])}"]
        parts.extend(self.unparse(w) for w in node.children[1:-1])
        if node[-1] is not None:
            parts.append(f"else{self._body(node[-1])}")
        parts.append("end")
        return " ".join(parts)

    def _unparse_when(self, node: Tree) -> str:
        return f"when {self._args(node[0].children)} then{self._body(node[1])}"

    def _unparse_jump(self, node: Tree) -> str:
        if node[0] is None:
            return node.kind
        return f"{node.kind} {self.unparse(node[0])}"

    def _unparse_defn(self, node: Tree) -> str:
        name, params, body = node[0], node[1], node[2]
        return f"def {name}({self.unparse(params)}){self._body(body)} end"


def unparse(node: Child) -> str:
    """Render *node* as script source."""
    with recursion_headroom():
        try:
            return Unparser().unparse(node)
        except RecursionError as exc:
            span = node.span if isinstance(node, Tree) else SourceSpan()
            raise RenderError(
                "expression is nested too deeply to render",
                code=CanopyErrorCodes.UNRENDERABLE_NODE,
                span=span,
            ) from exc
