"""
canopy/tree.py
==============

Positioned, mutable syntax-tree nodes.

A :class:`Tree` is a node-kind label, an ordered list of children and a
source position.  Children are further trees or terminals (``None``,
numbers, names and string payloads).  The instrumentation pass rewrites
trees in place, so :meth:`Tree.deep_copy` is used wherever a pristine
snapshot of a subtree has to outlive the rewrite.

Trees round-trip through S-expressions with ``sexpdata``::

    >>> Tree.call(Tree.lvar("a"), ">", Tree.lit(4)).dumps()
    '(call (lvar a) > (lit 4))'
"""

from __future__ import annotations

import sys
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Union

import sexpdata
from sexpdata import Symbol

from .errors import CanopyErrorCodes, ScriptSyntaxError, SourceSpan

__all__ = ["Tree", "Terminal", "Child", "loads", "recursion_headroom"]

Terminal = Union[None, int, float, str]
Child = Union["Tree", Terminal]

# parsimonious and the tree passes recurse a few frames per nesting level.
RECURSION_LIMIT = 10_000

# Kinds whose single terminal child is a string payload rather than a name.
_STRING_PAYLOAD_KINDS = frozenset({"str"})


class Tree:
    """A syntax-tree node.

    Equality is structural (kind and children) and ignores position, so
    tests can compare rewritten trees against hand-built ones.
    """

    __slots__ = ("kind", "children", "file", "line")

    def __init__(
        self,
        kind: str,
        children: Sequence[Child] = (),
        file: str = "-",
        line: int = 0,
    ) -> None:
        self.kind = kind
        self.children: List[Child] = list(children)
        self.file = file
        self.line = line

    # ── sequence protocol ───────────────────────────────────────────────

    def __getitem__(self, index: int) -> Child:
        return self.children[index]

    def __setitem__(self, index: int, value: Child) -> None:
        self.children[index] = value

    def __len__(self) -> int:
        return len(self.children)

    def __iter__(self) -> Iterator[Child]:
        return iter(self.children)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tree):
            return NotImplemented
        return self.kind == other.kind and self.children == other.children

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<Tree {self.dumps()} @{self.file}:{self.line}>"

    # ── position ────────────────────────────────────────────────────────

    @property
    def position(self) -> tuple:
        return (self.file, self.line)

    @property
    def span(self) -> SourceSpan:
        return SourceSpan(file=self.file, line=self.line)

    def at(self, other: "Tree") -> "Tree":
        """Copy *other*'s position onto this node and return it."""
        self.file = other.file
        self.line = other.line
        return self

    # ── copying and rewriting ───────────────────────────────────────────

    def deep_copy(self) -> "Tree":
        """Return an independent snapshot of this subtree.

        Terminals are immutable and shared; every tree node is new.
        """
        return Tree(
            self.kind,
            [c.deep_copy() if isinstance(c, Tree) else c for c in self.children],
            self.file,
            self.line,
        )

    def replace(self, other: "Tree") -> "Tree":
        """Overwrite this node's content with *other*'s, in place.

        Parents holding a reference to this node see the new content.
        """
        self.kind = other.kind
        self.children = list(other.children)
        self.file = other.file
        self.line = other.line
        return self

    def walk(self) -> Iterator["Tree"]:
        """Pre-order iteration over this node and its tree descendants."""
        stack: List[Tree] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(
                c for c in reversed(node.children) if isinstance(c, Tree)
            )

    # ── constructors ────────────────────────────────────────────────────

    @staticmethod
    def lit(value: Union[int, float], file: str = "-", line: int = 0) -> "Tree":
        return Tree("lit", [value], file, line)

    @staticmethod
    def string(value: str, file: str = "-", line: int = 0) -> "Tree":
        return Tree("str", [value], file, line)

    @staticmethod
    def nil(file: str = "-", line: int = 0) -> "Tree":
        return Tree("nil", [], file, line)

    @staticmethod
    def lvar(name: str, file: str = "-", line: int = 0) -> "Tree":
        return Tree("lvar", [name], file, line)

    @staticmethod
    def lasgn(name: str, value: "Tree", file: str = "-", line: int = 0) -> "Tree":
        return Tree("lasgn", [name, value], file, line)

    @staticmethod
    def call(
        receiver: Optional["Tree"],
        name: str,
        *args: "Tree",
        file: str = "-",
        line: int = 0,
    ) -> "Tree":
        return Tree("call", [receiver, name, *args], file, line)

    @staticmethod
    def if_(
        test: "Tree",
        then: Optional["Tree"],
        otherwise: Optional["Tree"],
        file: str = "-",
        line: int = 0,
    ) -> "Tree":
        return Tree("if", [test, then, otherwise], file, line)

    @staticmethod
    def hook(hook_id: int, expr: "Tree") -> "Tree":
        return Tree("hook", [hook_id, expr], expr.file, expr.line)

    # ── S-expressions ───────────────────────────────────────────────────

    def to_sexp(self) -> list:
        """Convert to the nested list structure ``sexpdata`` dumps."""
        out: list = [Symbol(self.kind)]
        for child in self.children:
            if isinstance(child, Tree):
                out.append(child.to_sexp())
            elif child is None:
                out.append(Symbol("nil"))
            elif isinstance(child, str) and self.kind not in _STRING_PAYLOAD_KINDS:
                out.append(Symbol(child))
            else:
                out.append(child)
        return out

    def dumps(self) -> str:
        with recursion_headroom():
            return sexpdata.dumps(self.to_sexp())

    @classmethod
    def from_sexp(cls, sexp: Any, file: str = "-", line: int = 0) -> "Tree":
        """Build a tree from ``sexpdata.loads`` output.

        Every node receives the given position; S-expressions carry none.
        """
        if not isinstance(sexp, list) or not sexp or not isinstance(sexp[0], Symbol):
            raise ScriptSyntaxError(
                f"expected a (kind ...) list, got {sexp!r}",
                code=CanopyErrorCodes.INVALID_LITERAL,
                span=SourceSpan(file=file, line=line),
            )
        kind = str(sexp[0])
        children: List[Child] = []
        for item in sexp[1:]:
            if isinstance(item, list):
                children.append(cls.from_sexp(item, file, line))
            elif isinstance(item, Symbol):
                name = str(item)
                children.append(None if name == "nil" else name)
            else:
                children.append(item)
        return cls(kind, children, file, line)


@contextmanager
def recursion_headroom(limit: int = RECURSION_LIMIT) -> Iterator[None]:
    """Raise the interpreter recursion limit to at least *limit* for a while.

    Deeply nested scripts produce deep trees, and every pass over them
    recurses per level.  Nesting the context manager is harmless.
    """
    previous = sys.getrecursionlimit()
    if previous < limit:
        sys.setrecursionlimit(limit)
    try:
        yield
    finally:
        if previous < limit:
            sys.setrecursionlimit(previous)


def loads(text: str, file: str = "-", line: int = 0) -> Tree:
    """Parse the output of :meth:`Tree.dumps` back into a tree."""
    try:
        raw = sexpdata.loads(text, nil=None, true=None, false=None)
    except Exception as exc:
        raise ScriptSyntaxError(
            f"malformed tree S-expression: {exc}",
            code=CanopyErrorCodes.INVALID_LITERAL,
            span=SourceSpan(file=file, line=line),
        ) from exc
    return Tree.from_sexp(raw, file, line)
