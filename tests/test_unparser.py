# tests/test_unparser.py
"""
Tests for rendering trees back into script source.
"""

import pytest

from canopy.errors import RenderError
from canopy.parser import parse
from canopy.tree import Tree, loads
from canopy.unparser import unparse


class TestUnparseExpressions:

    @pytest.mark.parametrize("sexp, expected", [
        ("(true)", "true"),
        ("(false)", "false"),
        ("(nil)", "nil"),
        ("(lit 4)", "4"),
        ("(lit 1.5)", "1.5"),
        ("(lvar a)", "a"),
        ("(const Integer)", "Integer"),
        ("(call (lvar a) > (lit 4))", "(a > 4)"),
        ("(and (lvar a) (lvar b))", "(a and b)"),
        ("(or (lvar a) (false))", "(a or false)"),
        ("(not (lvar a))", "(not a)"),
        ("(lasgn x (lit 1))", "x = 1"),
        ("(dot2 (lit 1) (lit 3))", "(1..3)"),
        ("(dot3 (lit 1) (lit 3))", "(1...3)"),
        ("(array (lit 1) (lit 2))", "[1, 2]"),
        ("(call nil f (lit 1))", "f(1)"),
        ("(call nil raise)", "raise"),
        ("(call (lvar x) foo (lit 1) (lit 2))", "x.foo(1, 2)"),
        ("(call (lvar x) -@)", "-x"),
    ])
    def test_render(self, sexp, expected):
        assert unparse(loads(sexp)) == expected

    def test_case_equality_uses_method_syntax(self):
        ref = Tree.call(Tree.lit(3), "===", Tree.lvar("x"))
        assert unparse(ref) == "3.===(x)"

    def test_index(self):
        assert unparse(Tree.call(Tree.lvar("a"), "[]", Tree.lit(0))) == "a[0]"

    def test_predicate_method(self):
        assert unparse(Tree.call(Tree.lvar("x"), "nil?")) == "x.nil?"

    def test_string_escapes(self):
        assert unparse(Tree.string('say "hi"\n')) == '"say \\"hi\\"\\n"'

    def test_hook_is_transparent(self):
        inner = loads("(call (lvar a) > (lit 4))")
        assert unparse(Tree.hook(7, inner)) == "(a > 4)"

    def test_terminals(self):
        assert unparse(None) == "nil"

    def test_unknown_kind(self):
        with pytest.raises(RenderError):
            unparse(Tree("bogus", [1]))


class TestUnparseStatements:

    def test_if_else(self):
        assert unparse(parse("if a; 1; else 2; end")) == "if a then 1 else 2 end"

    def test_if_without_else(self):
        assert unparse(parse("if a; 1; end")) == "if a then 1 end"

    def test_unless(self):
        assert unparse(parse("1 unless b")) == "unless b then 1 end"

    def test_elsif(self):
        src = "if a then 1 elsif b then 2 else 3 end"
        assert unparse(parse(src)) == src

    def test_loops(self):
        assert unparse(parse("while x; x = false; end")) == "while x do x = false end"
        assert unparse(parse("until x; end")) == "until x do end"

    def test_case(self):
        assert unparse(parse("case x; when 1, 2; 3; else 4; end")) == (
            "case x when 1, 2 then 3 else 4 end"
        )

    def test_block_statements(self):
        assert unparse(parse("x = 1\ny = 2")) == "x = 1; y = 2"

    def test_iter(self):
        assert unparse(parse("[1].each { |x| x }")) == "[1].each { |x| x }"
        assert unparse(parse("loop { }")) == "loop { }"

    def test_defn(self):
        assert unparse(parse("def f(a)\n  a\nend")) == "def f(a) a end"

    def test_jumps(self):
        assert unparse(parse("while true; break; end")) == "while true do break end"
        assert unparse(parse("return 2")) == "return 2"


class TestUnparseRoundTrip:

    @pytest.mark.parametrize("src", [
        "a = 2; if a > 4; 1; end",
        "x ? 1 : 2",
        "[1, 2].each { |x| case x; when 1, 3; 2; end }",
        "while i < 3 do i += 1 end",
        "a && (b || !c)",
        "def f(a, b) a * b end; f(2, 3)",
        "unless x; 1; else 2; end",
        "x.nil? and y.empty?",
        "(1..3).map { |i| -i }",
    ])
    def test_reparses_to_same_tree(self, src):
        tree = parse(src)
        assert parse(unparse(tree)) == tree
