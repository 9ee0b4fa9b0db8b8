"""
canopy/hooks.py
===============

Coverage-tracking hooks and the registry that owns them.

A :class:`Hook` is tied to one branch point found by the
instrumentation pass.  Instrumented code calls ``hook(value)`` every
time control passes that point; the hook records what it saw and hands
the value back unchanged.  After the run, :meth:`Hook.report` lists the
outcomes that were never observed.

Hook kinds
----------
- **CONDITION** – if/unless/while/until tests and tracked and/or
  operands; must be seen both truthy and falsy.
- **CASE** – one ``when`` candidate value; must match at least once.
- **CASE_ELSE** – the fallthrough of a ``case``; must be reached.

The :class:`HookRegistry` is an arena of hooks indexed by integer id
plus a stack of branch tables, one per active session.  Generated code
embeds only the id and resolves it with :meth:`HookRegistry.lookup`.
"""

from __future__ import annotations

import enum
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .builtins import truthy
from .errors import NoActiveSessionError, SessionError, StaleHookError
from .tree import Tree
from .unparser import unparse

__all__ = ["HookKind", "Outcome", "Hook", "HookRegistry"]

logger = logging.getLogger(__name__)


class HookKind(enum.Enum):
    CONDITION = "condition"
    CASE = "case"
    CASE_ELSE = "case_else"


class Outcome(enum.Flag):
    """Truth values a condition has been observed with."""
    NONE = 0
    TRUE = 1
    FALSE = 2
    BOTH = 3


@dataclass(eq=False)
class Hook:
    """One branch point and the coverage observed for it.

    ``ref`` is a snapshot of the branch-point expression taken before
    instrumentation; it provides the position and the ``expr`` text of
    diagnostics.  Only the field matching ``kind`` is meaningful:
    ``seen`` for conditions, ``matched`` for case values, ``reached``
    for case fallthroughs.
    """

    kind: Optional[HookKind]
    ref: Tree
    hook_id: int = 0
    seen: Outcome = Outcome.NONE
    matched: bool = False
    reached: bool = False
    _expr: Optional[str] = field(default=None, repr=False)

    @staticmethod
    def condition(ref: Tree) -> "Hook":
        return Hook(HookKind.CONDITION, ref)

    @staticmethod
    def case(ref: Tree) -> "Hook":
        return Hook(HookKind.CASE, ref)

    @staticmethod
    def case_else(ref: Tree) -> "Hook":
        return Hook(HookKind.CASE_ELSE, ref)

    # ── runtime callback ─────────────────────────────────────────────

    def hook(self, value: Any) -> Any:
        """Record *value* and return it unchanged."""
        if self.kind is HookKind.CONDITION:
            self.seen |= Outcome.TRUE if truthy(value) else Outcome.FALSE
        elif self.kind is HookKind.CASE:
            if truthy(value):
                self.matched = True
        elif self.kind is HookKind.CASE_ELSE:
            self.reached = True
        else:
            raise NotImplementedError(f"hook() on a hook without a kind ({self.kind!r})")
        return value

    # ── reporting ────────────────────────────────────────────────────

    @property
    def expr(self) -> str:
        """Source text of ``ref``, rendered on first use."""
        if self._expr is None:
            self._expr = unparse(self.ref)
        return self._expr

    @property
    def file(self) -> str:
        return self.ref.file

    @property
    def line(self) -> int:
        return self.ref.line

    @property
    def position(self) -> Tuple[str, int]:
        return (self.ref.file, self.ref.line)

    def report(self) -> List[str]:
        """Diagnostics for unobserved outcomes; empty when fully covered."""
        where = f"{self.file}:{self.line}"
        if self.kind is HookKind.CONDITION:
            lines = []
            if Outcome.TRUE not in self.seen:
                lines.append(f"{where}: Branch condition {self.expr} was never true.")
            if Outcome.FALSE not in self.seen:
                lines.append(f"{where}: Branch condition {self.expr} was never false.")
            return lines
        if self.kind is HookKind.CASE:
            if self.matched:
                return []
            return [f"{where}: case operand never matched {self.expr}."]
        if self.kind is HookKind.CASE_ELSE:
            if self.reached:
                return []
            return [f"{where}: case operand never matched nothing."]
        raise NotImplementedError(f"report() on a hook without a kind ({self.kind!r})")

    @property
    def covered(self) -> bool:
        return not self.report()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.hook_id,
            "kind": self.kind.value if self.kind else None,
            "file": self.file,
            "line": self.line,
            "expr": self.expr,
            "covered": self.covered,
        }
        if self.kind is HookKind.CONDITION:
            data["seen_true"] = Outcome.TRUE in self.seen
            data["seen_false"] = Outcome.FALSE in self.seen
        elif self.kind is HookKind.CASE:
            data["matched"] = self.matched
        elif self.kind is HookKind.CASE_ELSE:
            data["reached"] = self.reached
        return data


class HookRegistry:
    """Arena of live hooks plus the stack of per-session branch tables.

    Not thread-safe: sessions on different threads must use different
    registries.
    """

    def __init__(self) -> None:
        self._arena: Dict[int, Hook] = {}
        self._tables: List[List[Hook]] = []
        self._ids = itertools.count(1)

    @property
    def depth(self) -> int:
        return len(self._tables)

    @property
    def active(self) -> bool:
        return bool(self._tables)

    @property
    def current(self) -> List[Hook]:
        """Hooks registered so far into the innermost session."""
        if not self._tables:
            raise NoActiveSessionError()
        return list(self._tables[-1])

    def __len__(self) -> int:
        return len(self._arena)

    def push(self) -> None:
        self._tables.append([])
        logger.debug("pushed branch table (depth %d)", len(self._tables))

    def pop(self) -> List[Hook]:
        if not self._tables:
            raise SessionError("pop without a matching push")
        hooks = self._tables.pop()
        for h in hooks:
            self._arena.pop(h.hook_id, None)
        logger.debug("popped branch table with %d hooks (depth %d)", len(hooks), len(self._tables))
        return hooks

    def register(self, hook: Hook) -> int:
        """Append *hook* to the innermost table and assign its id."""
        if not self._tables:
            raise NoActiveSessionError("cannot register a hook outside a coverage session")
        hook.hook_id = next(self._ids)
        self._arena[hook.hook_id] = hook
        self._tables[-1].append(hook)
        logger.debug("registered %s hook #%d at %s:%d",
                     hook.kind.value if hook.kind else "untyped",
                     hook.hook_id, hook.file, hook.line)
        return hook.hook_id

    def lookup(self, hook_id: int) -> Hook:
        try:
            return self._arena[hook_id]
        except KeyError:
            raise StaleHookError(hook_id) from None
