# tests/test_codegen.py
"""
Tests for Python code generation from script trees.
"""

import io

import pytest

from canopy.codegen import ENTRY_POINT, CodeEmitter, PythonGenerator, generate
from canopy.errors import (
    CanopyErrorCodes,
    RenderError,
    UndefinedMethodError,
    UndefinedNameError,
)
from canopy.parser import parse
from canopy.runtime import Environment, execute
from canopy.tree import Tree


def _no_hooks(hook_id):
    raise AssertionError(f"unexpected hook lookup #{hook_id}")


class TestCodeEmitter:

    def test_indentation(self):
        out = CodeEmitter()
        with out.block("def f():"):
            out.emit("x = 1")
            with out.block("if x:"):
                out.emit("return x")
        out.emit("f()")
        assert out.get_code() == (
            "def f():\n"
            "    x = 1\n"
            "    if x:\n"
            "        return x\n"
            "f()\n"
        )

    def test_line_numbers(self):
        out = CodeEmitter()
        assert out.line_number == 1
        out.emit("a = 1")
        out.emit("")
        assert out.line_number == 3

    def test_source_map(self):
        out = CodeEmitter()
        out.emit("# header")
        out.set_source(("t.rb", 4))
        out.emit("a = 1")
        out.emit("")
        out.emit("b = 2")
        out.set_source(None)
        out.emit("c = 3")
        assert out.get_source_map() == {2: ("t.rb", 4), 4: ("t.rb", 4)}

    def test_comment_lines(self):
        out = CodeEmitter()
        out.emit_comment("one\ntwo")
        assert out.get_code() == "# one\n# two\n"

    def test_dedent_never_goes_negative(self):
        out = CodeEmitter()
        out.dedent()
        out.emit("x")
        assert out.get_code() == "x\n"


class TestGenerate:

    def test_entry_point(self):
        program = generate(parse("x = 1"), "t.rb")
        assert f"def {ENTRY_POINT}(_s0):" in program.source
        assert program.filename == "t.rb"
        assert program.code_filename == "<canopy t.rb>"

    def test_empty_program(self):
        program = generate(None)
        assert execute(program, Environment(), _no_hooks) is None

    def test_deterministic(self):
        src = "if a > 1; [1].map { |x| x }; end"
        assert generate(parse(src)).source == generate(parse(src)).source

    def test_hook_call(self):
        program = generate(Tree("hook", [7, Tree.lit(1)]))
        assert "_hook(7).hook(1)" in program.source

    def test_loops_tick(self):
        program = generate(parse("while x; end"))
        assert "while True:" in program.source
        assert "_env.tick()" in program.source

    def test_unknown_kind(self):
        with pytest.raises(RenderError) as info:
            generate(Tree("bogus", [], "t.rb", 3))
        assert info.value.code == CanopyErrorCodes.UNRENDERABLE_NODE
        assert info.value.span.line == 3

    def test_stray_terminal(self):
        with pytest.raises(RenderError):
            generate(Tree("block", ["oops"]))

    def test_generator_class(self):
        program = PythonGenerator("a.rb").generate(parse("x = 1"))
        assert program.source.startswith("# generated by canopy from a.rb\n")


class TestSourceMapping:

    def test_fault_is_located_on_script_line(self):
        program = generate(parse("x = 1\nfoo()", "t.rb"), "t.rb")
        with pytest.raises(UndefinedNameError) as info:
            execute(program, Environment(stdout=io.StringIO()), _no_hooks)
        span = program.locate(info.value)
        assert span.file == "t.rb"
        assert span.line == 2

    def test_fault_inside_block_body(self):
        src = "xs = [1, 2]\nxs.each do |x|\n  y = x\n  x.bogus\nend"
        program = generate(parse(src, "t.rb"), "t.rb")
        with pytest.raises(UndefinedMethodError) as info:
            execute(program, Environment(), _no_hooks)
        assert program.locate(info.value).line == 4

    def test_unrelated_exception(self):
        program = generate(parse("x = 1"))
        try:
            raise ValueError("elsewhere")
        except ValueError as exc:
            assert program.locate(exc) is None


def _run(src, bindings=None):
    program = generate(parse(src, "t.rb"), "t.rb")
    bindings = {} if bindings is None else bindings
    execute(program, Environment(stdout=io.StringIO()), _no_hooks, bindings)
    return program, bindings


class TestDeepNesting:

    def test_long_elsif_chain(self):
        src = ("x = 137\nif x == 0\n  r = 0\n"
               + "".join(f"elsif x == {i}\n  r = {i}\n" for i in range(1, 150))
               + "else\n  r = -1\nend\n")
        program, bindings = _run(src)
        assert bindings["r"] == 137
        assert "def _h" not in program.source

    def test_elsif_chain_falls_through(self):
        src = ("x = 500\nif x == 0\n  r = 0\n"
               + "".join(f"elsif x == {i}\n  r = {i}\n" for i in range(1, 150))
               + "else\n  r = -1\nend\n")
        assert _run(src)[1]["r"] == -1

    def test_many_when_clauses(self):
        src = ("x = 137\nr = case x\n"
               + "".join(f"when {i} then {i}\n" for i in range(150))
               + "else -1\nend\n")
        assert _run(src)[1]["r"] == 137

    def test_many_values_in_one_when(self):
        values = ", ".join(str(i) for i in range(150))
        src = f"x = 149\nr = case x\nwhen {values} then 1\nelse 2\nend\n"
        assert _run(src)[1]["r"] == 1

    def test_long_logical_chain(self):
        src = "x = nil\ny = " + " || ".join(["x"] * 150) + " || 7\n"
        assert _run(src)[1]["y"] == 7

    def test_nested_ifs_move_into_helpers(self):
        src = "x = 1\n" + "if true\n" * 80 + "r = x\n" + "end\n" * 80
        program, bindings = _run(src)
        assert "def _h" in program.source
        assert bindings["r"] == 1

    def test_nested_loops_move_into_helpers(self):
        src = ""
        for d in range(25):
            src += f"i{d} = 0\nwhile i{d} < 1\ni{d} += 1\n"
        src += "hits = 1\n" + "end\n" * 25
        program, bindings = _run(src)
        assert "def _h" in program.source
        assert bindings["hits"] == 1
        assert bindings["i24"] == 1

    def test_fault_inside_helper_is_located(self):
        src = "x = 1\n" + "if true\n" * 80 + "x.bogus\n" + "end\n" * 80
        program = generate(parse(src, "t.rb"), "t.rb")
        assert "def _h" in program.source
        with pytest.raises(UndefinedMethodError) as info:
            execute(program, Environment(), _no_hooks)
        assert program.locate(info.value).line == 82
