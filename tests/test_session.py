# tests/test_session.py
"""
Tests for coverage sessions and the one-shot entry points.
"""

import io
import logging

import pytest

from canopy.config import CoverageConfig
from canopy.errors import (
    ExecutionError,
    NoActiveSessionError,
    ScriptRaise,
    ScriptSyntaxError,
    StaleHookError,
    StepLimitExceeded,
)
from canopy.session import (
    CoverageSession,
    compile_script,
    default_registry,
    report,
    run_coverage,
    run_coverage_around,
    run_coverage_file,
)
from tests.conftest import FAULTY_SCRIPT


class TestCoverageSession:

    def test_push_and_pop(self, registry):
        session = CoverageSession(registry)
        assert not session.active
        with session:
            assert session.active
            assert registry.depth == 1
        assert not session.active
        assert registry.depth == 0

    def test_hooks_before_and_after_exit(self, registry):
        with CoverageSession(registry) as session:
            script = session.compile("if a; end", "s.rb")
            assert session.hooks == script.hooks
        assert session.hooks == script.hooks
        assert session.report() == [
            "s.rb:1: Branch condition a was never true.",
            "s.rb:1: Branch condition a was never false.",
        ]
        assert not session.covered

    def test_repeated_runs_accumulate(self, registry):
        with CoverageSession(registry) as session:
            script = session.compile("if n > 1; end")
            script.run({"n": 0})
            assert not session.covered
            script.run({"n": 5})
        assert session.report() == []
        assert session.covered

    def test_run_returns_last_value(self, registry):
        with CoverageSession(registry) as session:
            script = session.compile("x = 2\nx * 21")
            assert script.run() == 42

    def test_pops_when_body_raises(self, registry):
        with pytest.raises(RuntimeError):
            with CoverageSession(registry):
                raise RuntimeError("boom")
        assert registry.depth == 0

    def test_nested_sessions(self, registry):
        with CoverageSession(registry) as outer:
            first = outer.compile("if a; end")
            with CoverageSession(registry) as inner:
                inner_script = inner.compile("while b; end")
                assert inner.hooks == inner_script.hooks
            second = outer.compile("until c; end")
            assert outer.hooks == first.hooks + second.hooks
        assert [h.expr for h in inner.hooks] == ["b"]
        assert [h.expr for h in outer.hooks] == ["a", "c"]

    def test_outer_script_runs_inside_inner_session(self, registry):
        with CoverageSession(registry) as outer:
            script = outer.compile("if true; end")
            with CoverageSession(registry) as inner:
                script.run()
            assert inner.report() == []
        assert outer.report() == ["-:1: Branch condition true was never false."]

    def test_run_after_exit_is_stale(self, registry):
        with CoverageSession(registry) as session:
            script = session.compile("if true; end")
        with pytest.raises(StaleHookError):
            script.run()

    def test_empty_program(self, registry):
        with CoverageSession(registry) as session:
            assert session.compile("# nothing here\n") is None
        assert session.report() == []

    def test_script_source(self, registry):
        with CoverageSession(registry) as session:
            script = session.compile("if a; end")
        assert "_hook(" in script.source

    def test_default_registry(self):
        session = CoverageSession()
        assert session.registry is default_registry()
        with session:
            session.compile("if true; end")
        assert default_registry().depth == 0


class TestCompileScript:

    def test_requires_session(self, registry):
        with pytest.raises(NoActiveSessionError):
            compile_script("if a; end", registry=registry)

    def test_tag_defaults_to_config(self, session_registry):
        script = compile_script("if a; end", registry=session_registry,
                                config=CoverageConfig(file_tag="cfg.rb"))
        assert script.hooks[0].file == "cfg.rb"
        assert script.program.filename == "cfg.rb"

    def test_syntax_error(self, session_registry):
        with pytest.raises(ScriptSyntaxError):
            compile_script("if", registry=session_registry)


class TestRunCoverage:

    def test_report_helper(self, registry):
        with CoverageSession(registry) as session:
            session.compile("if a; end\nif b; end")
        assert report(session.hooks) == session.report()
        assert len(report(session.hooks)) == 4

    def test_stdout_capture(self, registry):
        buf = io.StringIO()
        assert run_coverage('puts "hi"', registry=registry, stdout=buf) == []
        assert buf.getvalue() == "hi\n"

    def test_lenient_parse(self, registry, caplog):
        with caplog.at_level(logging.WARNING, logger="canopy"):
            assert run_coverage("if x", "bad.rb", registry=registry) == []
        assert registry.depth == 0
        assert "bad.rb: not instrumented" in caplog.text

    def test_strict_parse(self, registry):
        config = CoverageConfig(strict_parse=True)
        with pytest.raises(ScriptSyntaxError):
            run_coverage("if x", registry=registry, config=config)
        assert registry.depth == 0

    def test_runtime_fault_carries_partial_report(self, registry):
        with pytest.raises(ExecutionError) as info:
            run_coverage(FAULTY_SCRIPT, "f.rb", registry=registry)
        err = info.value
        assert err.message == "script failed: boom"
        assert err.report == ["f.rb:2: Branch condition (x > 0) was never false."]
        assert isinstance(err.fault, ScriptRaise)
        assert err.__cause__ is err.fault
        assert err.span.file == "f.rb"
        assert err.span.line == 3
        assert registry.depth == 0

    def test_step_limit(self, registry):
        config = CoverageConfig(max_loop_iterations=10)
        with pytest.raises(ExecutionError) as info:
            run_coverage("while true; end", registry=registry, config=config)
        assert isinstance(info.value.fault, StepLimitExceeded)
        assert info.value.report == ["-:1: Branch condition true was never false."]

    def test_deep_recursion(self, registry):
        with pytest.raises(ExecutionError) as info:
            run_coverage("def f(n) f(n + 1) end\nf(0)", registry=registry)
        assert info.value.message == "script failed: stack level too deep"
        assert isinstance(info.value.fault, RecursionError)
        assert registry.depth == 0

    def test_config_warnings_are_logged(self, registry, caplog):
        config = CoverageConfig(max_loop_iterations=0)
        with caplog.at_level(logging.WARNING, logger="canopy"):
            run_coverage("x = 1", registry=registry, config=config)
        assert "max_loop_iterations must be positive" in caplog.text

    def test_inside_an_outer_session(self, registry):
        with CoverageSession(registry) as outer:
            outer.compile("if a; end")
            assert run_coverage("if true; end", registry=registry) == [
                "-:1: Branch condition true was never false.",
            ]
            assert len(outer.hooks) == 1

    def test_run_coverage_file(self, registry, tmp_path):
        path = tmp_path / "script.rb"
        path.write_text("x = 3\nif x > 4\n  1\nend\n", encoding="utf-8")
        assert run_coverage_file(path, registry=registry) == [
            f"{path}:2: Branch condition (x > 4) was never true.",
        ]

    def test_run_coverage_around(self, registry):
        def block():
            compile_script("if true; end", "blk.rb", registry=registry).run()

        assert run_coverage_around(block, registry=registry) == [
            "blk.rb:1: Branch condition true was never false.",
        ]
        assert registry.depth == 0
