# tests/test_hooks.py
"""
Tests for coverage hooks and the hook registry.
"""

import pytest

from canopy.errors import NoActiveSessionError, SessionError, StaleHookError
from canopy.hooks import Hook, HookKind, Outcome
from canopy.tree import Tree, loads


def _cond_ref():
    return loads("(call (lvar a) > (lit 4))", "calc.rb", 3)


class TestConditionHook:

    def test_passes_value_through(self):
        h = Hook.condition(_cond_ref())
        marker = object()
        assert h.hook(marker) is marker
        assert h.hook(None) is None

    def test_records_outcomes(self):
        h = Hook.condition(_cond_ref())
        assert h.seen == Outcome.NONE
        h.hook(0)
        assert h.seen == Outcome.TRUE
        h.hook(False)
        assert h.seen == Outcome.BOTH

    def test_zero_and_empty_string_are_truthy(self):
        h = Hook.condition(_cond_ref())
        h.hook(0)
        h.hook("")
        h.hook([])
        assert Outcome.FALSE not in h.seen

    def test_report_never_seen(self):
        h = Hook.condition(_cond_ref())
        assert h.report() == [
            "calc.rb:3: Branch condition (a > 4) was never true.",
            "calc.rb:3: Branch condition (a > 4) was never false.",
        ]

    def test_report_only_false(self):
        h = Hook.condition(_cond_ref())
        h.hook(None)
        assert h.report() == ["calc.rb:3: Branch condition (a > 4) was never true."]
        assert not h.covered

    def test_report_covered(self):
        h = Hook.condition(_cond_ref())
        h.hook(True)
        h.hook(None)
        assert h.report() == []
        assert h.covered


class TestCaseHooks:

    def test_case_matched(self):
        ref = Tree.call(Tree.lit(3, "c.rb", 2), "===", Tree.lvar("x"), file="c.rb", line=2)
        h = Hook.case(ref)
        assert h.report() == ["c.rb:2: case operand never matched 3.===(x)."]
        assert h.hook(False) is False
        assert not h.matched
        h.hook(True)
        assert h.matched
        assert h.report() == []

    def test_case_else_reached(self):
        h = Hook.case_else(Tree.nil("c.rb", 5))
        assert h.report() == ["c.rb:5: case operand never matched nothing."]
        assert h.hook(None) is None
        assert h.reached
        assert h.report() == []

    def test_untyped_hook(self):
        h = Hook(None, Tree.nil())
        with pytest.raises(NotImplementedError):
            h.hook(1)
        with pytest.raises(NotImplementedError):
            h.report()


class TestHookMetadata:

    def test_position(self):
        h = Hook.condition(_cond_ref())
        assert h.position == ("calc.rb", 3)
        assert h.file == "calc.rb"
        assert h.line == 3

    def test_expr_is_rendered_once(self):
        ref = _cond_ref()
        h = Hook.condition(ref)
        assert h.expr == "(a > 4)"
        ref[1] = "<"
        assert h.expr == "(a > 4)"

    def test_to_dict(self):
        h = Hook.condition(_cond_ref())
        h.hook(True)
        assert h.to_dict() == {
            "id": 0,
            "kind": "condition",
            "file": "calc.rb",
            "line": 3,
            "expr": "(a > 4)",
            "covered": False,
            "seen_true": True,
            "seen_false": False,
        }

    def test_to_dict_case_kinds(self):
        assert Hook.case(Tree.lit(1)).to_dict()["matched"] is False
        assert Hook.case_else(Tree.nil()).to_dict()["reached"] is False

    def test_kinds(self):
        assert Hook.condition(Tree.nil()).kind is HookKind.CONDITION
        assert Hook.case(Tree.nil()).kind is HookKind.CASE
        assert Hook.case_else(Tree.nil()).kind is HookKind.CASE_ELSE


class TestHookRegistry:

    def test_register_requires_session(self, registry):
        with pytest.raises(NoActiveSessionError):
            registry.register(Hook.condition(Tree.nil()))

    def test_register_and_lookup(self, session_registry):
        h = Hook.condition(Tree.nil())
        hook_id = session_registry.register(h)
        assert hook_id == h.hook_id
        assert hook_id > 0
        assert session_registry.lookup(hook_id) is h
        assert session_registry.current == [h]
        assert len(session_registry) == 1

    def test_ids_are_unique(self, session_registry):
        ids = {session_registry.register(Hook.condition(Tree.nil())) for _ in range(5)}
        assert len(ids) == 5

    def test_pop_returns_hooks_and_retires_them(self, registry):
        registry.push()
        h = Hook.case_else(Tree.nil())
        hook_id = registry.register(h)
        assert registry.pop() == [h]
        assert len(registry) == 0
        with pytest.raises(StaleHookError) as info:
            registry.lookup(hook_id)
        assert info.value.hook_id == hook_id

    def test_unknown_id(self, registry):
        with pytest.raises(StaleHookError):
            registry.lookup(999)

    def test_pop_without_push(self, registry):
        with pytest.raises(SessionError):
            registry.pop()

    def test_current_without_session(self, registry):
        with pytest.raises(NoActiveSessionError):
            registry.current

    def test_nested_tables_are_independent(self, registry):
        registry.push()
        outer = Hook.condition(Tree.nil())
        registry.register(outer)
        registry.push()
        assert registry.depth == 2
        inner = Hook.condition(Tree.nil())
        registry.register(inner)
        assert registry.current == [inner]
        # Outer hooks stay live while an inner session runs.
        assert registry.lookup(outer.hook_id) is outer
        assert registry.pop() == [inner]
        assert registry.current == [outer]
        assert registry.pop() == [outer]
        assert not registry.active
        assert registry.depth == 0

    def test_current_is_a_copy(self, session_registry):
        session_registry.current.append("junk")
        assert session_registry.current == []
