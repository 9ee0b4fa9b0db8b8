# tests/test_tree.py
"""
Tests for the positioned tree model and its S-expression form.
"""

import sys

import pytest

from canopy.errors import ScriptSyntaxError
from canopy.tree import Tree, loads, recursion_headroom


def _sample():
    return Tree("if", [
        Tree.call(Tree.lvar("a", "f.rb", 2), ">", Tree.lit(4, "f.rb", 2), file="f.rb", line=2),
        Tree.lit(1, "f.rb", 3),
        None,
    ], "f.rb", 2)


class TestTreeBasics:

    def test_sequence_protocol(self):
        t = _sample()
        assert len(t) == 3
        assert t[1] == Tree.lit(1)
        assert list(t)[2] is None

    def test_setitem_replaces_child(self):
        t = _sample()
        t[2] = Tree.lit(2)
        assert t[2] == Tree.lit(2)

    def test_equality_ignores_position(self):
        assert Tree.lit(1, "a.rb", 1) == Tree.lit(1, "b.rb", 9)
        assert Tree.lit(1) != Tree.lit(2)
        assert Tree.lit(1) != Tree("str", [1])

    def test_unhashable(self):
        with pytest.raises(TypeError):
            hash(Tree.nil())

    def test_position_and_span(self):
        t = _sample()
        assert t.position == ("f.rb", 2)
        assert str(t.span) == "f.rb:2"

    def test_at_copies_position(self):
        t = Tree.nil().at(_sample())
        assert t.position == ("f.rb", 2)


class TestCopyAndReplace:

    def test_deep_copy_is_equal_and_positioned(self):
        t = _sample()
        c = t.deep_copy()
        assert c == t
        assert c.position == t.position
        assert c[0][0].position == ("f.rb", 2)

    def test_deep_copy_does_not_alias(self):
        t = _sample()
        c = t.deep_copy()
        t[0][0][0] = "b"
        t[1] = None
        assert c[0][0][0] == "a"
        assert c[1] == Tree.lit(1)

    def test_replace_in_place(self):
        t = _sample()
        parent = Tree("block", [t])
        result = t.replace(Tree.lit(7, "g.rb", 5))
        assert result is t
        assert parent[0] == Tree.lit(7)
        assert parent[0].position == ("g.rb", 5)

    def test_walk_is_preorder(self):
        kinds = [n.kind for n in _sample().walk()]
        assert kinds == ["if", "call", "lvar", "lit", "lit"]


class TestSexp:

    def test_dumps(self):
        assert _sample().dumps() == "(if (call (lvar a) > (lit 4)) (lit 1) nil)"

    def test_dumps_string_payload(self):
        assert Tree.string("hi there").dumps() == '(str "hi there")'

    def test_dumps_nil_node(self):
        assert Tree("if", [Tree("true"), Tree.nil(), None]).dumps() == "(if (true) (nil) nil)"

    def test_loads_roundtrip(self):
        t = _sample()
        assert loads(t.dumps()) == t

    def test_loads_positions(self):
        t = loads("(lasgn x (lit 1))", "f.rb", 4)
        assert t.position == ("f.rb", 4)
        assert t[1].position == ("f.rb", 4)

    def test_loads_nil_symbol_is_none(self):
        t = loads("(if (lvar a) nil (lit 2))")
        assert t[1] is None
        assert t[2] == Tree.lit(2)

    def test_loads_rejects_atom(self):
        with pytest.raises(ScriptSyntaxError):
            loads("42")

    def test_loads_rejects_garbage(self):
        with pytest.raises(ScriptSyntaxError):
            loads("(lit 1")


class TestRecursionHeadroom:

    def test_limit_raised_and_restored(self):
        before = sys.getrecursionlimit()
        with recursion_headroom(before + 500):
            assert sys.getrecursionlimit() == before + 500
        assert sys.getrecursionlimit() == before

    def test_never_lowers_the_limit(self):
        before = sys.getrecursionlimit()
        with recursion_headroom(10):
            assert sys.getrecursionlimit() == before
        assert sys.getrecursionlimit() == before

    def test_nesting(self):
        before = sys.getrecursionlimit()
        with recursion_headroom(before + 500):
            with recursion_headroom(before + 100):
                assert sys.getrecursionlimit() == before + 500
            assert sys.getrecursionlimit() == before + 500
        assert sys.getrecursionlimit() == before

    def test_deep_tree_dumps(self):
        tree = Tree.lit(1)
        for _ in range(2000):
            tree = Tree("not", [tree])
        assert tree.dumps().startswith("(not (not ")
