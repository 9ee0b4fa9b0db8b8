"""
canopy/parser.py
================

Turns script text into positioned :class:`~canopy.tree.Tree` nodes.

The parsimonious parse tree is rewritten bottom-up by
:class:`TreeBuilder`.  Intermediate results that are not yet trees
(operators, argument lists, clauses, blocks) travel upwards wrapped in
small token classes; :func:`_items` flattens a visitor's children down
to those tokens and trees, dropping punctuation and whitespace nodes.

Line numbers are 1-based and computed from each parse node's start
offset, so every tree carries the line its construct begins on.
"""

from __future__ import annotations

import bisect
import logging
import re
from typing import Any, List, Optional, Sequence

from parsimonious.exceptions import IncompleteParseError, ParseError, VisitationError
from parsimonious.nodes import Node, NodeVisitor

from .errors import CanopyErrorCodes, ScriptSyntaxError, SourceSpan
from .grammar import SCRIPT_GRAMMAR
from .tree import Tree, recursion_headroom

__all__ = ["TreeBuilder", "parse", "parse_file"]

logger = logging.getLogger(__name__)

_ESCAPES = {
    "n": "\n", "t": "\t", "r": "\r", "0": "\0", "s": " ",
    "e": "\x1b", "a": "\a", "b": "\b", "f": "\f", "v": "\v",
}


# ═══════════════════════════════════════════════════════════════════
#  Intermediate tokens
# ═══════════════════════════════════════════════════════════════════

class _Tok:
    """An operator or keyword."""
    __slots__ = ("text",)

    def __init__(self, text: str) -> None:
        self.text = text


class _Name:
    __slots__ = ("name", "line")

    def __init__(self, name: str, line: int) -> None:
        self.name = name
        self.line = line


class _Body:
    __slots__ = ("tree",)

    def __init__(self, tree: Optional[Tree]) -> None:
        self.tree = tree


class _Args:
    __slots__ = ("items",)

    def __init__(self, items: Sequence[Tree]) -> None:
        self.items = list(items)


class _Params:
    __slots__ = ("names",)

    def __init__(self, names: Sequence[str]) -> None:
        self.names = list(names)


class _Block:
    __slots__ = ("params", "body")

    def __init__(self, params: Optional[_Params], body: Optional[Tree]) -> None:
        self.params = params
        self.body = body


class _Postfix:
    __slots__ = ("name", "args", "block")

    def __init__(self, name: str, args: List[Tree], block: Optional[_Block]) -> None:
        self.name = name
        self.args = args
        self.block = block


class _Clause:
    """A tail: ``elsif``/``else``/``when``, modifiers, ternary and range tails."""
    __slots__ = ("kind", "head", "body", "line")

    def __init__(self, kind: str, head: Any, body: Any, line: int = 0) -> None:
        self.kind = kind
        self.head = head
        self.body = body
        self.line = line


def _items(children: Any) -> List[Any]:
    """Flatten visited children, dropping raw parse nodes."""
    out: List[Any] = []
    stack = [children]
    while stack:
        item = stack.pop()
        if isinstance(item, list):
            stack.extend(reversed(item))
        elif item is None or isinstance(item, Node):
            continue
        else:
            out.append(item)
    return out


def _first(items: List[Any], cls: type) -> Any:
    for item in items:
        if isinstance(item, cls):
            return item
    return None


def _of(items: List[Any], cls: type) -> List[Any]:
    return [item for item in items if isinstance(item, cls)]


# ═══════════════════════════════════════════════════════════════════
#  Parse tree → Tree
# ═══════════════════════════════════════════════════════════════════

class TreeBuilder(NodeVisitor):
    """Transforms a parsimonious parse tree into canopy trees."""

    grammar = SCRIPT_GRAMMAR
    unwrapped_exceptions = (ScriptSyntaxError,)

    def __init__(self, text: str, file: str = "-") -> None:
        self._file = file
        self._line_starts = [0] + [m.end() for m in re.finditer(r"\n", text)]

    def generic_visit(self, node, visited_children):
        return visited_children or node

    # ── helpers ──────────────────────────────────────────────────────

    def _line(self, offset: int) -> int:
        return bisect.bisect_right(self._line_starts, offset)

    def _tree(self, kind: str, children: Sequence[Any], line: int) -> Tree:
        return Tree(kind, children, self._file, line)

    def _at(self, node: Node) -> int:
        return self._line(node.start)

    def _keyword_line(self, node: Node) -> int:
        # Clauses open with optional whitespace; the keyword is child 1.
        return self._line(node.children[1].start)

    def _fold_calls(self, items: List[Any]) -> Tree:
        left = items[0]
        for op, right in zip(items[1::2], items[2::2]):
            left = self._tree("call", [left, op.text, right], left.line)
        return left

    def _fold_logical(self, kind: str, items: List[Tree]) -> Tree:
        # a || b || c nests to the right: (or a (or b c))
        right = items[-1]
        for left in reversed(items[:-1]):
            right = self._tree(kind, [left, right], left.line)
        return right

    # ── program structure ────────────────────────────────────────────

    def visit_program(self, node, visited_children):
        return _first(_items(visited_children), _Body).tree

    def visit_body(self, node, visited_children):
        statements = _of(_items(visited_children), Tree)
        if not statements:
            return _Body(None)
        if len(statements) == 1:
            return _Body(statements[0])
        return _Body(self._tree("block", statements, statements[0].line))

    def visit_statements(self, node, visited_children):
        return _of(_items(visited_children), Tree)

    def visit_stmt(self, node, visited_children):
        return _first(_items(visited_children), Tree)

    def visit_stmt_expr(self, node, visited_children):
        items = _items(visited_children)
        result = items[0]
        for mod in items[1:]:
            if mod.kind == "if":
                result = self._tree("if", [mod.head, result, None], result.line)
            elif mod.kind == "unless":
                result = self._tree("if", [mod.head, None, result], result.line)
            else:
                result = self._tree(mod.kind, [mod.head, result], result.line)
        return result

    def visit_modifier(self, node, visited_children):
        kw, cond = _items(visited_children)
        return _Clause(kw.text, cond, None)

    def visit_modifier_kw(self, node, visited_children):
        return _Tok(node.text)

    # ── operators ────────────────────────────────────────────────────

    def visit_expr(self, node, visited_children):
        # "and"/"or" share one precedence level and associate to the left,
        # but a run of the same keyword nests to the right.
        items = _items(visited_children)
        result = items[0]
        run: List[Tree] = []
        kind = None
        for op, right in zip(items[1::2], items[2::2]):
            if op.text != kind:
                if run:
                    result = self._fold_logical(kind, run)
                run, kind = [result], op.text
            run.append(right)
        if run:
            result = self._fold_logical(kind, run)
        return result

    def visit_andor_op(self, node, visited_children):
        return _Tok(node.text)

    def visit_not_expr(self, node, visited_children):
        return _first(_items(visited_children), Tree)

    def visit_not_kw(self, node, visited_children):
        operand = _first(_items(visited_children), Tree)
        return self._tree("not", [operand], self._at(node))

    def visit_assign_expr(self, node, visited_children):
        return _first(_items(visited_children), Tree)

    def visit_assignment(self, node, visited_children):
        name, op, value = _items(visited_children)
        line = name.line
        if op.text == "=":
            return self._tree("lasgn", [name.name, value], line)
        current = self._tree("lvar", [name.name], line)
        if op.text == "||=":
            value = self._tree("or", [current, value], line)
        elif op.text == "&&=":
            value = self._tree("and", [current, value], line)
        else:
            value = self._tree("call", [current, op.text[0], value], line)
        return self._tree("lasgn", [name.name, value], line)

    def visit_assign_op(self, node, visited_children):
        return _Tok(node.text)

    def visit_ternary(self, node, visited_children):
        items = _items(visited_children)
        cond = items[0]
        if len(items) == 1:
            return cond
        tail = items[1]
        return self._tree("if", [cond, tail.head, tail.body], cond.line)

    def visit_ternary_tail(self, node, visited_children):
        then, otherwise = _of(_items(visited_children), Tree)
        return _Clause("?", then, otherwise)

    def visit_range_expr(self, node, visited_children):
        items = _items(visited_children)
        low = items[0]
        if len(items) == 1:
            return low
        tail = items[1]
        kind = "dot3" if tail.kind == "..." else "dot2"
        return self._tree(kind, [low, tail.head], low.line)

    def visit_range_tail(self, node, visited_children):
        op, high = _items(visited_children)
        return _Clause(op.text, high, None)

    def visit_range_op(self, node, visited_children):
        return _Tok(node.text)

    def visit_oror_expr(self, node, visited_children):
        return self._fold_logical("or", _of(_items(visited_children), Tree))

    def visit_andand_expr(self, node, visited_children):
        return self._fold_logical("and", _of(_items(visited_children), Tree))

    def visit_equality_expr(self, node, visited_children):
        items = _items(visited_children)
        left = items[0]
        if len(items) == 1:
            return left
        tail = items[1]
        return self._tree("call", [left, tail.kind, tail.head], left.line)

    def visit_equality_tail(self, node, visited_children):
        op, right = _items(visited_children)
        return _Clause(op.text, right, None)

    def visit_comparison_expr(self, node, visited_children):
        return self._fold_calls(_items(visited_children))

    def visit_shift_expr(self, node, visited_children):
        return self._fold_calls(_items(visited_children))

    def visit_additive_expr(self, node, visited_children):
        return self._fold_calls(_items(visited_children))

    def visit_multiplicative_expr(self, node, visited_children):
        return self._fold_calls(_items(visited_children))

    def visit_equality_op(self, node, visited_children):
        return _Tok(node.text)

    visit_comparison_op = visit_equality_op
    visit_shift_op = visit_equality_op
    visit_additive_op = visit_equality_op
    visit_mul_op = visit_equality_op
    visit_unary_op = visit_equality_op

    def visit_unary_expr(self, node, visited_children):
        items = _items(visited_children)
        if len(items) == 1:
            return items[0]
        op, operand = items
        line = self._at(node)
        if op.text == "!":
            return self._tree("not", [operand], line)
        if operand.kind == "lit":
            return self._tree("lit", [-operand[0]], line)
        return self._tree("call", [operand, "-@"], line)

    def visit_power_expr(self, node, visited_children):
        items = _items(visited_children)
        base = items[0]
        if len(items) == 1:
            return base
        return self._tree("call", [base, "**", items[1].head], base.line)

    def visit_power_tail(self, node, visited_children):
        return _Clause("**", _first(_items(visited_children), Tree), None)

    # ── calls and blocks ─────────────────────────────────────────────

    def visit_postfix_expr(self, node, visited_children):
        items = _items(visited_children)
        result = items[0]
        for post in items[1:]:
            call = self._tree("call", [result, post.name, *post.args], result.line)
            result = self._attach_block(call, post.block)
        return result

    def _attach_block(self, call: Tree, block: Optional[_Block]) -> Tree:
        if block is None:
            return call
        params = None
        if block.params is not None:
            params = self._tree("args", block.params.names, call.line)
        return self._tree("iter", [call, params, block.body], call.line)

    def visit_method_call(self, node, visited_children):
        items = _items(visited_children)
        name = _first(items, _Tok).text
        args = _first(items, _Args)
        return _Postfix(name, args.items if args else [], _first(items, _Block))

    def visit_method_name(self, node, visited_children):
        return _Tok(node.text)

    def visit_index_call(self, node, visited_children):
        return _Postfix("[]", _first(_items(visited_children), _Args).items, None)

    def visit_call_args(self, node, visited_children):
        return _first(_items(visited_children), _Args) or _Args([])

    def visit_arg_list(self, node, visited_children):
        return _Args(_of(_items(visited_children), Tree))

    def visit_block(self, node, visited_children):
        return _first(_items(visited_children), _Block)

    def visit_brace_block(self, node, visited_children):
        items = _items(visited_children)
        return _Block(_first(items, _Params), _first(items, _Body).tree)

    visit_do_block = visit_brace_block

    def visit_block_params(self, node, visited_children):
        return _first(_items(visited_children), _Params) or _Params([])

    visit_params = visit_block_params

    def visit_param_list(self, node, visited_children):
        return _Params([n.name for n in _of(_items(visited_children), _Name)])

    def visit_fcall(self, node, visited_children):
        items = _items(visited_children)
        name = items[0]
        args = _first(items, _Args)
        call = self._tree(
            "call", [None, name.name, *(args.items if args else [])], name.line
        )
        return self._attach_block(call, _first(items, _Block))

    def visit_fcall_block(self, node, visited_children):
        return _first(_items(visited_children), _Block)

    def visit_command_call(self, node, visited_children):
        items = _items(visited_children)
        args = _first(items, _Args)
        return self._tree(
            "call", [None, items[0].text, *(args.items if args else [])], self._at(node)
        )

    def visit_command_name(self, node, visited_children):
        return _Tok(node.text)

    def visit_command_args(self, node, visited_children):
        return _first(_items(visited_children), _Args)

    # ── primaries ────────────────────────────────────────────────────

    def visit_primary(self, node, visited_children):
        item = _items(visited_children)[0]
        if isinstance(item, _Name):
            return self._tree("lvar", [item.name], item.line)
        return item

    def visit_if_expr(self, node, visited_children):
        items = _items(visited_children)
        cond, body = items[0], items[1]
        clauses = _of(items[2:], _Clause)
        otherwise = None
        if clauses and clauses[-1].kind == "else":
            otherwise = clauses.pop().body
        for clause in reversed(clauses):
            otherwise = self._tree(
                "if", [clause.head, clause.body, otherwise], clause.line
            )
        return self._tree("if", [cond, body.tree, otherwise], self._at(node))

    def visit_elsif_clause(self, node, visited_children):
        cond, body = _items(visited_children)
        return _Clause("elsif", cond, body.tree, self._keyword_line(node))

    def visit_else_clause(self, node, visited_children):
        body = _first(_items(visited_children), _Body)
        return _Clause("else", None, body.tree, self._keyword_line(node))

    def visit_unless_expr(self, node, visited_children):
        items = _items(visited_children)
        cond, body = items[0], items[1]
        otherwise = _first(items[2:], _Clause)
        return self._tree(
            "if",
            [cond, otherwise.body if otherwise else None, body.tree],
            self._at(node),
        )

    def visit_while_expr(self, node, visited_children):
        cond, body = _items(visited_children)
        return self._tree("while", [cond, body.tree], self._at(node))

    def visit_until_expr(self, node, visited_children):
        cond, body = _items(visited_children)
        return self._tree("until", [cond, body.tree], self._at(node))

    def visit_case_expr(self, node, visited_children):
        items = _items(visited_children)
        operand = items[0]
        clauses = _of(items[1:], _Clause)
        otherwise = None
        if clauses and clauses[-1].kind == "else":
            otherwise = clauses.pop().body
        whens = [
            self._tree(
                "when",
                [self._tree("array", c.head, c.line), c.body],
                c.line,
            )
            for c in clauses
        ]
        return self._tree("case", [operand, *whens, otherwise], self._at(node))

    def visit_when_clause(self, node, visited_children):
        items = _items(visited_children)
        args = _first(items, _Args)
        body = _first(items, _Body)
        return _Clause("when", args.items, body.tree, self._keyword_line(node))

    def visit_def_expr(self, node, visited_children):
        items = _items(visited_children)
        name = _first(items, _Tok).text
        params = _first(items, _Params) or _Params([])
        body = _first(items, _Body)
        line = self._at(node)
        return self._tree(
            "defn",
            [name, self._tree("args", params.names, line), body.tree],
            line,
        )

    def visit_jump_expr(self, node, visited_children):
        items = _items(visited_children)
        value = _first(items, Tree)
        return self._tree(items[0].text, [value], self._at(node))

    def visit_jump_kw(self, node, visited_children):
        return _Tok(node.text)

    def visit_jump_value(self, node, visited_children):
        return _first(_items(visited_children), Tree)

    def visit_paren_expr(self, node, visited_children):
        body = _first(_items(visited_children), _Body)
        if body.tree is None:
            return self._tree("nil", [], self._at(node))
        return body.tree

    def visit_array(self, node, visited_children):
        args = _first(_items(visited_children), _Args)
        return self._tree("array", args.items if args else [], self._at(node))

    def visit_array_items(self, node, visited_children):
        return _first(_items(visited_children), _Args)

    def visit_number(self, node, visited_children):
        text = node.text.replace("_", "")
        value = float(text) if "." in text else int(text)
        return self._tree("lit", [value], self._at(node))

    def visit_string(self, node, visited_children):
        return self._tree("str", [self._decode_string(node)], self._at(node))

    def _decode_string(self, node: Node) -> str:
        quote, raw = node.text[0], node.text[1:-1]
        if quote == "'":
            return re.sub(r"\\([\\'])", r"\1", raw)

        def unescape(match: "re.Match[str]") -> str:
            ch = match.group(1)
            return _ESCAPES.get(ch, ch)

        return re.sub(r"\\(.)", unescape, raw, flags=re.DOTALL)

    def visit_nil_lit(self, node, visited_children):
        return self._tree("nil", [], self._at(node))

    def visit_true_lit(self, node, visited_children):
        return self._tree("true", [], self._at(node))

    def visit_false_lit(self, node, visited_children):
        return self._tree("false", [], self._at(node))

    def visit_constant(self, node, visited_children):
        return self._tree("const", [node.text], self._at(node))

    def visit_identifier(self, node, visited_children):
        return _Name(node.text, self._at(node))


# ═══════════════════════════════════════════════════════════════════
#  Public API
# ═══════════════════════════════════════════════════════════════════

def parse(text: str, file: str = "-") -> Optional[Tree]:
    """Parse script *text* into a tree tagged with *file*.

    Returns ``None`` for input without statements (empty, blank or
    comment-only).

    Raises
    ------
    ScriptSyntaxError
        If the text is malformed.
    """
    builder = TreeBuilder(text, file)
    with recursion_headroom():
        try:
            parse_tree = SCRIPT_GRAMMAR.parse(text)
        except ParseError as exc:
            raise _syntax_error(exc, text, file) from exc
        except RecursionError as exc:
            raise ScriptSyntaxError(
                "script is nested too deeply to parse",
                span=SourceSpan(file=file, line=1),
            ) from exc
        try:
            tree = builder.visit(parse_tree)
        except VisitationError as exc:
            raise ScriptSyntaxError(
                f"cannot build tree: {exc.original_class.__name__}",
                span=SourceSpan(file=file),
            ) from exc
    logger.debug("parsed %s: %s", file, "empty program" if tree is None else tree.kind)
    return tree


def parse_file(path: str) -> Optional[Tree]:
    """Read a script from *path* and parse it, tagging nodes with the path."""
    with open(path, "r", encoding="utf-8") as fh:
        return parse(fh.read(), str(path))


def _syntax_error(exc: ParseError, text: str, file: str) -> ScriptSyntaxError:
    line, column = exc.line(), exc.column()
    excerpt = text[exc.pos:exc.pos + 20].split("\n", 1)[0]
    if isinstance(exc, IncompleteParseError):
        message = f"unexpected input {excerpt!r}" if excerpt else "unexpected end of input"
    else:
        message = "unexpected end of input" if exc.pos >= len(text) else f"unexpected input {excerpt!r}"
    return ScriptSyntaxError(
        message,
        span=SourceSpan(file=file, line=line, column=column),
        excerpt=excerpt,
    )
