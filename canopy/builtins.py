#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
canopy/builtins.py
==================

Value semantics and built-in methods of the script language.

Script values are plain Python objects:

- **nil / true / false** — ``None`` / ``True`` / ``False``
- **Integer / Float / String / Array** — ``int`` / ``float`` / ``str`` / ``list``
- **Range** — :class:`ScriptRange`
- **Class constants** — :class:`ScriptClass`

Only ``nil`` and ``false`` are falsy.  ``true`` and ``false`` are never
numbers, so ``1 == true`` is false and ``Integer === true`` does not hold.

Built-in Methods
----------------
:func:`call_method` dispatches ``receiver.name(args) { block }`` through
per-type method tables, falling back to methods every object has.
Blocks are plain Python callables.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import (
    ScriptTypeError,
    ScriptZeroDivisionError,
    UndefinedMethodError,
)

__all__ = [
    "truthy",
    "ScriptRange",
    "ScriptClass",
    "CONSTANTS",
    "class_of",
    "class_name",
    "inspect",
    "to_s",
    "script_equal",
    "case_equal",
    "call_method",
    "make_range",
]

Block = Optional[Callable[..., Any]]
Method = Callable[[Any, List[Any], Block], Any]


def truthy(value: Any) -> bool:
    """Script truthiness: everything except ``nil`` and ``false``."""
    return value is not None and value is not False


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ═══════════════════════════════════════════════════════════════════════════
# VALUE TYPES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ScriptRange:
    """``low..high`` (inclusive) or ``low...high`` (exclusive)."""

    low: Any
    high: Any
    exclusive: bool = False

    def __iter__(self):
        if not (_is_int(self.low) and _is_int(self.high)):
            raise ScriptTypeError(f"can't iterate from {class_name(self.low)}")
        stop = self.high if self.exclusive else self.high + 1
        return iter(range(self.low, stop))

    def covers(self, value: Any) -> bool:
        if not (_is_number(value) and _is_number(self.low) and _is_number(self.high)):
            if isinstance(value, str) and isinstance(self.low, str) and isinstance(self.high, str):
                return self.low <= value and (value < self.high if self.exclusive else value <= self.high)
            return False
        if value < self.low:
            return False
        return value < self.high if self.exclusive else value <= self.high


@dataclass(frozen=True)
class ScriptClass:
    """A built-in class constant such as ``Integer``."""

    name: str
    test: Callable[[Any], bool]

    def __repr__(self) -> str:
        return self.name


CONSTANTS: Dict[str, ScriptClass] = {
    "Integer": ScriptClass("Integer", _is_int),
    "Float": ScriptClass("Float", lambda v: isinstance(v, float)),
    "Numeric": ScriptClass("Numeric", _is_number),
    "String": ScriptClass("String", lambda v: isinstance(v, str)),
    "Array": ScriptClass("Array", lambda v: isinstance(v, list)),
    "Range": ScriptClass("Range", lambda v: isinstance(v, ScriptRange)),
    "NilClass": ScriptClass("NilClass", lambda v: v is None),
    "TrueClass": ScriptClass("TrueClass", lambda v: v is True),
    "FalseClass": ScriptClass("FalseClass", lambda v: v is False),
    "Class": ScriptClass("Class", lambda v: isinstance(v, ScriptClass)),
    "Object": ScriptClass("Object", lambda v: True),
}

_CLASS_ORDER = (
    "NilClass", "TrueClass", "FalseClass", "Integer", "Float",
    "String", "Array", "Range", "Class",
)


def class_of(value: Any) -> ScriptClass:
    for name in _CLASS_ORDER:
        if CONSTANTS[name].test(value):
            return CONSTANTS[name]
    return CONSTANTS["Object"]


def class_name(value: Any) -> str:
    return class_of(value).name


def make_range(low: Any, high: Any, exclusive: bool = False) -> ScriptRange:
    if not ((_is_number(low) and _is_number(high))
            or (isinstance(low, str) and isinstance(high, str))):
        raise ScriptTypeError("bad value for range")
    return ScriptRange(low, high, exclusive)


# ═══════════════════════════════════════════════════════════════════════════
# RENDERING
# ═══════════════════════════════════════════════════════════════════════════

def _format_float(value: float) -> str:
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if math.isnan(value):
        return "NaN"
    return repr(value)


def inspect(value: Any) -> str:
    """Render like ``Object#inspect``."""
    if value is None:
        return "nil"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n").replace("\t", "\\t")
        return f'"{escaped}"'
    if isinstance(value, list):
        return "[" + ", ".join(inspect(v) for v in value) + "]"
    if isinstance(value, ScriptRange):
        op = "..." if value.exclusive else ".."
        return f"{inspect(value.low)}{op}{inspect(value.high)}"
    return repr(value)


def to_s(value: Any) -> str:
    """Render like ``Object#to_s``."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return inspect(value)


# ═══════════════════════════════════════════════════════════════════════════
# EQUALITY
# ═══════════════════════════════════════════════════════════════════════════

def script_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool) or a is None or b is None:
        return a is b
    if _is_number(a) and _is_number(b):
        return a == b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(script_equal(x, y) for x, y in zip(a, b))
    if type(a) is not type(b):
        return False
    return a == b


def case_equal(pattern: Any, value: Any) -> bool:
    """``pattern === value`` as used by ``case``/``when``."""
    if isinstance(pattern, ScriptClass):
        return pattern.test(value)
    if isinstance(pattern, ScriptRange):
        return pattern.covers(value)
    return script_equal(pattern, value)


# ═══════════════════════════════════════════════════════════════════════════
# METHOD TABLES
# ═══════════════════════════════════════════════════════════════════════════

def _arity(name: str, args: List[Any], *counts: int) -> None:
    if len(args) not in counts:
        expected = " or ".join(str(c) for c in counts)
        raise ScriptTypeError(
            f"wrong number of arguments to '{name}' (given {len(args)}, expected {expected})"
        )


def _need_block(name: str, block: Block) -> Callable[..., Any]:
    if block is None:
        raise ScriptTypeError(f"'{name}' requires a block")
    return block


def _coerce(recv: Any, other: Any) -> None:
    if not _is_number(other):
        raise ScriptTypeError(f"{class_name(other)} can't be coerced into {class_name(recv)}")


# ── numbers ────────────────────────────────────────────────────────────────

def _num_div(recv: Any, other: Any) -> Any:
    _coerce(recv, other)
    if _is_int(recv) and _is_int(other):
        if other == 0:
            raise ScriptZeroDivisionError("divided by 0")
        return recv // other
    if other == 0:
        return math.nan if recv == 0 else math.copysign(math.inf, recv)
    return recv / other


def _num_mod(recv: Any, other: Any) -> Any:
    _coerce(recv, other)
    if other == 0:
        raise ScriptZeroDivisionError("divided by 0")
    return recv % other


def _num_compare(op: Callable[[Any, Any], bool], symbol: str) -> Method:
    def method(recv: Any, args: List[Any], block: Block) -> Any:
        _arity(symbol, args, 1)
        if not _is_number(args[0]):
            raise ScriptTypeError(
                f"comparison of {class_name(recv)} with {inspect(args[0])} failed"
            )
        return op(recv, args[0])
    return method


def _num_binary(fn: Callable[[Any, Any], Any], symbol: str) -> Method:
    def method(recv: Any, args: List[Any], block: Block) -> Any:
        _arity(symbol, args, 1)
        _coerce(recv, args[0])
        return fn(recv, args[0])
    return method


def _spaceship(recv: Any, args: List[Any], block: Block) -> Any:
    _arity("<=>", args, 1)
    other = args[0]
    comparable = (_is_number(recv) and _is_number(other)) or (
        type(recv) is type(other) and isinstance(recv, str)
    )
    if not comparable:
        return None
    return (recv > other) - (recv < other)


def _times(recv: int, args: List[Any], block: Block) -> Any:
    fn = _need_block("times", block)
    for i in range(recv):
        fn(i)
    return recv


def _upto(recv: int, args: List[Any], block: Block) -> Any:
    _arity("upto", args, 1)
    fn = _need_block("upto", block)
    for i in range(recv, args[0] + 1):
        fn(i)
    return recv


def _downto(recv: int, args: List[Any], block: Block) -> Any:
    _arity("downto", args, 1)
    fn = _need_block("downto", block)
    for i in range(recv, args[0] - 1, -1):
        fn(i)
    return recv


_NUMBER_METHODS: Dict[str, Method] = {
    "+": _num_binary(lambda a, b: a + b, "+"),
    "-": _num_binary(lambda a, b: a - b, "-"),
    "*": _num_binary(lambda a, b: a * b, "*"),
    "/": lambda r, a, b: (_arity("/", a, 1), _num_div(r, a[0]))[1],
    "%": lambda r, a, b: (_arity("%", a, 1), _num_mod(r, a[0]))[1],
    "**": _num_binary(lambda a, b: a ** b, "**"),
    "<": _num_compare(lambda a, b: a < b, "<"),
    ">": _num_compare(lambda a, b: a > b, ">"),
    "<=": _num_compare(lambda a, b: a <= b, "<="),
    ">=": _num_compare(lambda a, b: a >= b, ">="),
    "<=>": _spaceship,
    "-@": lambda r, a, b: -r,
    "abs": lambda r, a, b: abs(r),
    "zero?": lambda r, a, b: r == 0,
    "positive?": lambda r, a, b: r > 0,
    "negative?": lambda r, a, b: r < 0,
    "to_i": lambda r, a, b: int(r),
    "to_f": lambda r, a, b: float(r),
    "between?": lambda r, a, b: (_arity("between?", a, 2), a[0] <= r <= a[1])[1],
}

_INTEGER_METHODS: Dict[str, Method] = {
    "times": _times,
    "upto": _upto,
    "downto": _downto,
    "even?": lambda r, a, b: r % 2 == 0,
    "odd?": lambda r, a, b: r % 2 == 1,
    "succ": lambda r, a, b: r + 1,
    "pred": lambda r, a, b: r - 1,
}


# ── strings ────────────────────────────────────────────────────────────────

def _str_plus(recv: str, args: List[Any], block: Block) -> str:
    _arity("+", args, 1)
    if not isinstance(args[0], str):
        raise ScriptTypeError(f"no implicit conversion of {class_name(args[0])} into String")
    return recv + args[0]


def _str_times(recv: str, args: List[Any], block: Block) -> str:
    _arity("*", args, 1)
    if not _is_int(args[0]):
        raise ScriptTypeError(f"no implicit conversion of {class_name(args[0])} into Integer")
    return recv * args[0]


def _str_compare(op: Callable[[Any, Any], bool], symbol: str) -> Method:
    def method(recv: str, args: List[Any], block: Block) -> Any:
        _arity(symbol, args, 1)
        if not isinstance(args[0], str):
            raise ScriptTypeError(f"comparison of String with {inspect(args[0])} failed")
        return op(recv, args[0])
    return method


def _str_to_i(recv: str, args: List[Any], block: Block) -> int:
    digits = ""
    for i, ch in enumerate(recv.strip()):
        if ch.isdigit() or (i == 0 and ch in "+-"):
            digits += ch
        else:
            break
    try:
        return int(digits)
    except ValueError:
        return 0


def _index(recv: Any, args: List[Any], block: Block) -> Any:
    _arity("[]", args, 1, 2)
    if not _is_int(args[0]):
        raise ScriptTypeError(f"no implicit conversion of {class_name(args[0])} into Integer")
    start = args[0]
    if len(args) == 2:
        if start > len(recv):
            return None
        if start < 0:
            start += len(recv)
        return recv[start:start + args[1]]
    if -len(recv) <= start < len(recv):
        return recv[start]
    return None


_STRING_METHODS: Dict[str, Method] = {
    "+": _str_plus,
    "*": _str_times,
    "<<": _str_plus,
    "<": _str_compare(lambda a, b: a < b, "<"),
    ">": _str_compare(lambda a, b: a > b, ">"),
    "<=": _str_compare(lambda a, b: a <= b, "<="),
    ">=": _str_compare(lambda a, b: a >= b, ">="),
    "<=>": _spaceship,
    "[]": _index,
    "size": lambda r, a, b: len(r),
    "length": lambda r, a, b: len(r),
    "empty?": lambda r, a, b: not r,
    "upcase": lambda r, a, b: r.upper(),
    "downcase": lambda r, a, b: r.lower(),
    "capitalize": lambda r, a, b: r.capitalize(),
    "reverse": lambda r, a, b: r[::-1],
    "strip": lambda r, a, b: r.strip(),
    "chars": lambda r, a, b: list(r),
    "include?": lambda r, a, b: (_arity("include?", a, 1), a[0] in r)[1],
    "start_with?": lambda r, a, b: any(r.startswith(p) for p in a),
    "end_with?": lambda r, a, b: any(r.endswith(p) for p in a),
    "split": lambda r, a, b: r.split(a[0]) if a else r.split(),
    "to_i": _str_to_i,
    "to_f": lambda r, a, b: float(r) if r.strip().replace(".", "", 1).lstrip("+-").isdigit() else 0.0,
}


# ── enumerables (Array and Range) ──────────────────────────────────────────

def _each(recv: Any, args: List[Any], block: Block) -> Any:
    fn = _need_block("each", block)
    for item in list(recv):
        fn(item)
    return recv


def _each_with_index(recv: Any, args: List[Any], block: Block) -> Any:
    fn = _need_block("each_with_index", block)
    for i, item in enumerate(list(recv)):
        fn(item, i)
    return recv


def _map(recv: Any, args: List[Any], block: Block) -> List[Any]:
    fn = _need_block("map", block)
    return [fn(item) for item in list(recv)]


def _select(recv: Any, args: List[Any], block: Block) -> List[Any]:
    fn = _need_block("select", block)
    return [item for item in list(recv) if truthy(fn(item))]


def _reject(recv: Any, args: List[Any], block: Block) -> List[Any]:
    fn = _need_block("reject", block)
    return [item for item in list(recv) if not truthy(fn(item))]


def _find(recv: Any, args: List[Any], block: Block) -> Any:
    fn = _need_block("find", block)
    for item in list(recv):
        if truthy(fn(item)):
            return item
    return None


def _predicate(name: str, combine: Callable[[Iterable[bool]], bool]) -> Method:
    def method(recv: Any, args: List[Any], block: Block) -> bool:
        items = list(recv)
        if block is None:
            return combine(truthy(item) for item in items)
        return combine(truthy(block(item)) for item in items)
    return method


def _none(values: Iterable[bool]) -> bool:
    return not any(values)


def _count(recv: Any, args: List[Any], block: Block) -> int:
    items = list(recv)
    if args:
        return sum(1 for item in items if script_equal(item, args[0]))
    if block is not None:
        return sum(1 for item in items if truthy(block(item)))
    return len(items)


def _include(recv: Any, args: List[Any], block: Block) -> bool:
    _arity("include?", args, 1)
    if isinstance(recv, ScriptRange):
        return recv.covers(args[0])
    return any(script_equal(item, args[0]) for item in recv)


def _inject(recv: Any, args: List[Any], block: Block) -> Any:
    fn = _need_block("inject", block)
    items = list(recv)
    if args:
        acc = args[0]
    elif items:
        acc, items = items[0], items[1:]
    else:
        return None
    for item in items:
        acc = fn(acc, item)
    return acc


def _sum(recv: Any, args: List[Any], block: Block) -> Any:
    total = args[0] if args else 0
    for item in list(recv):
        value = block(item) if block is not None else item
        _coerce(total, value)
        total = total + value
    return total


def _first(recv: Any, args: List[Any], block: Block) -> Any:
    items = list(recv)
    if args:
        return items[:args[0]]
    return items[0] if items else None


def _extreme(pick: Callable[..., Any]) -> Method:
    def method(recv: Any, args: List[Any], block: Block) -> Any:
        items = list(recv)
        return pick(items) if items else None
    return method


def _sort(recv: Any, args: List[Any], block: Block) -> List[Any]:
    return sorted(recv)


def _join(recv: List[Any], args: List[Any], block: Block) -> str:
    sep = args[0] if args else ""

    def flat(items: List[Any]) -> Iterable[str]:
        for item in items:
            if isinstance(item, list):
                yield from flat(item)
            else:
                yield to_s(item)

    return sep.join(flat(recv))


_ENUMERABLE_METHODS: Dict[str, Method] = {
    "each": _each,
    "each_with_index": _each_with_index,
    "map": _map,
    "collect": _map,
    "select": _select,
    "filter": _select,
    "reject": _reject,
    "find": _find,
    "detect": _find,
    "any?": _predicate("any?", any),
    "all?": _predicate("all?", all),
    "none?": _predicate("none?", _none),
    "count": _count,
    "include?": _include,
    "member?": _include,
    "inject": _inject,
    "reduce": _inject,
    "sum": _sum,
    "first": _first,
    "min": _extreme(min),
    "max": _extreme(max),
    "sort": _sort,
    "to_a": lambda r, a, b: list(r),
}


# ── arrays ─────────────────────────────────────────────────────────────────

def _push(recv: List[Any], args: List[Any], block: Block) -> List[Any]:
    recv.extend(args)
    return recv


def _array_plus(recv: List[Any], args: List[Any], block: Block) -> List[Any]:
    _arity("+", args, 1)
    if not isinstance(args[0], list):
        raise ScriptTypeError(f"no implicit conversion of {class_name(args[0])} into Array")
    return recv + args[0]


def _array_minus(recv: List[Any], args: List[Any], block: Block) -> List[Any]:
    _arity("-", args, 1)
    other = args[0]
    if not isinstance(other, list):
        raise ScriptTypeError(f"no implicit conversion of {class_name(other)} into Array")
    return [item for item in recv if not any(script_equal(item, o) for o in other)]


def _uniq(recv: List[Any], args: List[Any], block: Block) -> List[Any]:
    out: List[Any] = []
    for item in recv:
        if not any(script_equal(item, seen) for seen in out):
            out.append(item)
    return out


def _flatten(recv: List[Any], args: List[Any], block: Block) -> List[Any]:
    out: List[Any] = []
    for item in recv:
        if isinstance(item, list):
            out.extend(_flatten(item, args, block))
        else:
            out.append(item)
    return out


_ARRAY_METHODS: Dict[str, Method] = {
    "+": _array_plus,
    "-": _array_minus,
    "*": lambda r, a, b: (_arity("*", a, 1), r * a[0])[1],
    "<<": lambda r, a, b: (_arity("<<", a, 1), _push(r, a, b))[1],
    "push": _push,
    "[]": _index,
    "pop": lambda r, a, b: r.pop() if r else None,
    "shift": lambda r, a, b: r.pop(0) if r else None,
    "last": lambda r, a, b: r[-1] if r else None,
    "size": lambda r, a, b: len(r),
    "length": lambda r, a, b: len(r),
    "empty?": lambda r, a, b: not r,
    "reverse": lambda r, a, b: r[::-1],
    "join": _join,
    "uniq": _uniq,
    "flatten": _flatten,
    "compact": lambda r, a, b: [x for x in r if x is not None],
    "take": lambda r, a, b: r[:a[0]],
    "drop": lambda r, a, b: r[a[0]:],
    "index": lambda r, a, b: next((i for i, x in enumerate(r) if script_equal(x, a[0])), None),
}


# ── ranges ─────────────────────────────────────────────────────────────────

_RANGE_METHODS: Dict[str, Method] = {
    "cover?": _include,
    "last": lambda r, a, b: r.high,
    "begin": lambda r, a, b: r.low,
    "end": lambda r, a, b: r.high,
    "size": lambda r, a, b: len(list(r)),
    "exclude_end?": lambda r, a, b: r.exclusive,
}


# ── every object ───────────────────────────────────────────────────────────

def _is_a(recv: Any, args: List[Any], block: Block) -> bool:
    _arity("is_a?", args, 1)
    klass = args[0]
    if not isinstance(klass, ScriptClass):
        raise ScriptTypeError("class or module required")
    return klass.test(recv)


_OBJECT_METHODS: Dict[str, Method] = {
    "==": lambda r, a, b: (_arity("==", a, 1), script_equal(r, a[0]))[1],
    "!=": lambda r, a, b: (_arity("!=", a, 1), not script_equal(r, a[0]))[1],
    "===": lambda r, a, b: (_arity("===", a, 1), case_equal(r, a[0]))[1],
    "equal?": lambda r, a, b: (_arity("equal?", a, 1), r is a[0])[1],
    "!": lambda r, a, b: not truthy(r),
    "nil?": lambda r, a, b: r is None,
    "to_s": lambda r, a, b: to_s(r),
    "inspect": lambda r, a, b: inspect(r),
    "class": lambda r, a, b: class_of(r),
    "is_a?": _is_a,
    "kind_of?": _is_a,
    "instance_of?": lambda r, a, b: (_arity("instance_of?", a, 1), class_of(r) is a[0])[1],
    "freeze": lambda r, a, b: r,
    "dup": lambda r, a, b: list(r) if isinstance(r, list) else r,
    "then": lambda r, a, b: _need_block("then", b)(r),
}

_NIL_METHODS: Dict[str, Method] = {
    "to_a": lambda r, a, b: [],
    "to_i": lambda r, a, b: 0,
}


def _tables_for(recv: Any) -> List[Dict[str, Method]]:
    if recv is None:
        return [_NIL_METHODS]
    if isinstance(recv, bool):
        return []
    if _is_int(recv):
        return [_INTEGER_METHODS, _NUMBER_METHODS]
    if isinstance(recv, float):
        return [_NUMBER_METHODS]
    if isinstance(recv, str):
        return [_STRING_METHODS]
    if isinstance(recv, list):
        return [_ARRAY_METHODS, _ENUMERABLE_METHODS]
    if isinstance(recv, ScriptRange):
        return [_RANGE_METHODS, _ENUMERABLE_METHODS]
    return []


def find_method(recv: Any, name: str) -> Optional[Method]:
    for table in _tables_for(recv) + [_OBJECT_METHODS]:
        method = table.get(name)
        if method is not None:
            return method
    return None


def call_method(recv: Any, name: str, args: List[Any], block: Block = None) -> Any:
    """Invoke built-in method *name* on *recv*."""
    method = find_method(recv, name)
    if method is None:
        raise UndefinedMethodError(name, f"{inspect(recv)}:{class_name(recv)}")
    try:
        return method(recv, args, block)
    except TypeError as exc:
        raise ScriptTypeError(f"{name}: {exc}") from exc
    except IndexError as exc:
        raise ScriptTypeError(f"{name}: {exc}") from exc
