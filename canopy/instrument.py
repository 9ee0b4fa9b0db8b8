"""
canopy/instrument.py
====================

The instrumentation pass.

:class:`Instrumenter` walks a tree, finds branch points, registers one
:class:`~canopy.hooks.Hook` per branch point into the active session of
a :class:`~canopy.hooks.HookRegistry`, and splices ``(hook <id> expr)``
wrappers around them.  A wrapper evaluates ``expr``, passes the value
through the hook and yields it, so the rewritten program computes
exactly what the original did.

``case`` statements are desugared into nested ``if``/``or`` chains of
``value === operand`` tests so that every candidate value and the
fallthrough get a hook of their own::

    case x                       if (v1 === x) or (v2 === x)
    when v1, v2 then a    ==>      a
    else b                       else
    end                            b            # case-else hook
                                 end

Callers must always use the tree :meth:`Instrumenter.instrument`
returns; ``case`` nodes are rewritten wholesale.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import CoverageConfig
from .hooks import Hook, HookRegistry
from .tree import Child, Tree, recursion_headroom

__all__ = ["Instrumenter", "instrument"]

logger = logging.getLogger(__name__)

# Operands that can be re-evaluated for every ``when`` test unchanged.
_PURE_KINDS = frozenset({"lvar", "const", "lit", "str", "true", "false", "nil"})


class Instrumenter:
    """Rewrites trees so that branch outcomes are recorded at run time."""

    def __init__(self, registry: HookRegistry,
                 config: Optional[CoverageConfig] = None) -> None:
        self.registry = registry
        self.config = config or CoverageConfig()
        self.hooks: List[Hook] = []

    def _register(self, hook: Hook) -> int:
        hook_id = self.registry.register(hook)
        self.hooks.append(hook)
        return hook_id

    # ── dispatch ─────────────────────────────────────────────────────

    def instrument(self, node: Child, in_condition: bool = False) -> Child:
        """Instrument *node* and return the node to use in its place.

        *in_condition* tells whether the value of *node* itself decides a
        branch; it controls whether the right operand of ``and``/``or``
        is tracked as a condition.
        """
        if not isinstance(node, Tree):
            return node
        kind = node.kind
        if kind in ("if", "while", "until"):
            node[0] = self.instrument_condition(node[0], True)
            for i in range(1, len(node)):
                node[i] = self.instrument(node[i], in_condition)
        elif kind in ("and", "or"):
            node[0] = self.instrument_condition(node[0], True)
            if in_condition:
                node[1] = self.instrument_condition(node[1], True)
            else:
                node[1] = self.instrument(node[1], False)
        elif kind == "case":
            return self.instrument_case(node, in_condition)
        elif kind == "hook":
            # Already instrumented.
            return node
        else:
            for i, child in enumerate(node.children):
                node[i] = self.instrument(child, in_condition)
        return node

    def instrument_condition(self, node: Tree, in_condition: bool) -> Tree:
        """Wrap *node* in a condition hook, instrumenting inside it first."""
        if node.kind == "hook":
            return node
        ref = node.deep_copy()
        inner = self.instrument(node, in_condition)
        hook_id = self._register(Hook.condition(ref))
        return Tree("hook", [hook_id, inner], ref.file, ref.line)

    # ── case / when ──────────────────────────────────────────────────

    def instrument_case(self, node: Tree, in_condition: bool = False) -> Tree:
        """Desugar a ``case`` node in place into hooked ``if``/``or`` tests."""
        operand: Tree = node[0]
        whens: List[Tree] = node.children[1:-1]
        otherwise: Optional[Tree] = node[-1]

        if otherwise is None:
            otherwise = Tree.nil(node.file, node.line)
        else_ref = otherwise.deep_copy()
        otherwise = self.instrument(otherwise, in_condition)
        else_id = self._register(Hook.case_else(else_ref))
        result = Tree("hook", [else_id, otherwise], else_ref.file, else_ref.line)

        operand_ref = operand.deep_copy()
        if self.config.reevaluate_case_operand or operand.kind in _PURE_KINDS:
            temp = None
            # Instrumented once; every test gets a copy sharing its hooks.
            subject = self.instrument(operand, False)
        else:
            temp = f"%case{else_id}"
            subject = Tree.lvar(temp, operand.file, operand.line)

        for when in reversed(whens):
            values: Tree = when[0]
            body = self.instrument(when[1], in_condition)
            tests: Optional[Tree] = None
            for value in reversed(values.children):
                ref = Tree.call(value.deep_copy(), "===", operand_ref.deep_copy(),
                                file=value.file, line=value.line)
                test = Tree.call(self.instrument(value, False), "===", subject.deep_copy(),
                                 file=value.file, line=value.line)
                hook_id = self._register(Hook.case(ref))
                wrapped = Tree("hook", [hook_id, test], value.file, value.line)
                if tests is None:
                    tests = wrapped
                else:
                    tests = Tree("or", [wrapped, tests], value.file, value.line)
            result = Tree("if", [tests, body, result], when.file, when.line)

        if temp is not None:
            operand = self.instrument(operand, False)
            result = Tree("block", [
                Tree.lasgn(temp, operand, operand.file, operand.line),
                result,
            ], node.file, node.line)

        logger.debug("desugared case at %s:%d into %d when-clauses",
                     node.file, node.line, len(whens))
        return node.replace(result)


def instrument(tree: Child, registry: HookRegistry,
               config: Optional[CoverageConfig] = None,
               in_condition: bool = False) -> Child:
    """Instrument *tree* into the active session of *registry*."""
    with recursion_headroom():
        return Instrumenter(registry, config).instrument(tree, in_condition)
