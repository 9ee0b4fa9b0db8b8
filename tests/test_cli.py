# tests/test_cli.py
"""
Tests for the canopy command-line interface.
"""

import io
import json
import logging

import pytest

from canopy import __version__
from canopy.main import (
    EXIT_INFRA,
    EXIT_OK,
    EXIT_SCRIPT_FAULT,
    EXIT_UNCOVERED,
    main,
)
from tests.conftest import FAULTY_SCRIPT


@pytest.fixture(autouse=True)
def _reset_cli_logging():
    yield
    log = logging.getLogger("canopy")
    for handler in [h for h in log.handlers if h.get_name() == "canopy-cli"]:
        log.removeHandler(handler)
    log.setLevel(logging.NOTSET)


@pytest.fixture
def script(tmp_path):
    def _write(text, name="script.rb"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)
    return _write


class TestRunCommand:

    def test_fully_covered(self, script, capsys):
        path = script("x = true; while x; x = false; end")
        assert main(["run", path]) == EXIT_OK
        assert capsys.readouterr().out == ""

    def test_uncovered(self, script, capsys):
        path = script("if true; 1; end")
        assert main(["run", path]) == EXIT_UNCOVERED
        assert capsys.readouterr().out == f"{path}:1: Branch condition true was never false.\n"

    def test_script_fault(self, script, capsys):
        path = script(FAULTY_SCRIPT)
        assert main(["run", path]) == EXIT_SCRIPT_FAULT
        captured = capsys.readouterr()
        assert captured.out == f"{path}:2: Branch condition (x > 0) was never false.\n"
        assert f"{path}:3: error: script failed: boom [CNPY-5100]" in captured.err

    def test_json_report(self, script, capsys):
        path = script("a = 2\nif a > 4\n  1\nend")
        assert main(["run", path, "--format", "json"]) == EXIT_UNCOVERED
        payload = json.loads(capsys.readouterr().out)
        assert payload == {
            "file": path,
            "covered": False,
            "diagnostics": [f"{path}:2: Branch condition (a > 4) was never true."],
        }

    def test_json_fault(self, script, capsys):
        path = script(FAULTY_SCRIPT)
        assert main(["run", path, "-f", "json"]) == EXIT_SCRIPT_FAULT
        payload = json.loads(capsys.readouterr().out)
        assert payload["covered"] is False
        assert payload["fault"]["code"] == "CNPY-5100"
        assert payload["fault"]["line"] == 3

    def test_quiet_discards_script_output(self, script, capsys):
        path = script('puts "hello"')
        assert main(["run", path, "-q"]) == EXIT_OK
        assert capsys.readouterr().out == ""

    def test_script_output_shown_by_default(self, script, capsys):
        path = script('puts "hello"')
        assert main(["run", path]) == EXIT_OK
        assert capsys.readouterr().out == "hello\n"

    def test_malformed_script_is_lenient(self, script, capsys):
        path = script("if x")
        assert main(["run", path]) == EXIT_OK

    def test_malformed_script_strict(self, script, capsys):
        path = script("if x")
        assert main(["run", path, "--strict"]) == EXIT_INFRA
        assert "CNPY-1001" in capsys.readouterr().err

    def test_loop_limit(self, script, capsys):
        path = script("while true; end")
        assert main(["run", path, "--max-loop-iterations", "50"]) == EXIT_SCRIPT_FAULT
        assert "CNPY-5100" in capsys.readouterr().err

    def test_invalid_loop_limit(self, script):
        path = script("x = 1")
        assert main(["run", path, "--max-loop-iterations", "0"]) == EXIT_INFRA

    def test_missing_file(self, tmp_path):
        assert main(["run", str(tmp_path / "absent.rb")]) == EXIT_INFRA

    def test_stdin(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO("if false; end\n"))
        assert main(["run", "-"]) == EXIT_UNCOVERED
        assert capsys.readouterr().out == "-:1: Branch condition false was never true.\n"


class TestParseCommand:

    def test_sexp(self, script, capsys):
        path = script("a = 2")
        assert main(["parse", path]) == EXIT_OK
        assert capsys.readouterr().out == "(lasgn a (lit 2))\n"

    def test_source(self, script, capsys):
        path = script("x = 1 unless y")
        assert main(["parse", path, "--format", "source"]) == EXIT_OK
        assert capsys.readouterr().out == "unless y then x = 1 end\n"

    def test_syntax_error(self, script, capsys):
        path = script("if x")
        assert main(["parse", path]) == EXIT_INFRA
        assert f"{path}:1:1: error: unexpected input 'if x' [CNPY-1001]" in capsys.readouterr().err

    def test_empty(self, script, capsys):
        path = script("")
        assert main(["parse", path]) == EXIT_OK
        assert capsys.readouterr().out == ""


class TestInstrumentCommand:

    def test_sexp(self, script, capsys):
        path = script("if a; end")
        assert main(["instrument", path]) == EXIT_OK
        assert capsys.readouterr().out == "(if (hook 1 (lvar a)) nil nil)\n"

    def test_source_hides_hooks(self, script, capsys):
        path = script("if a; end")
        assert main(["instrument", path, "-f", "source"]) == EXIT_OK
        assert capsys.readouterr().out == "if a then end\n"

    def test_python(self, script, capsys):
        path = script("if a; end")
        assert main(["instrument", path, "--format", "python"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "def _main(_s0):" in out
        assert "_hook(1).hook(" in out

    def test_list_hooks(self, script, capsys):
        path = script("x = 1\ncase x\nwhen 1 then 2\nend")
        assert main(["instrument", path, "--list-hooks"]) == EXIT_OK
        err = capsys.readouterr().err
        assert f"#1 case_else {path}:2 nil" in err
        assert f"#2 case {path}:3 1.===(x)" in err


class TestGlobalOptions:

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as info:
            main(["--version"])
        assert info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_no_command(self, capsys):
        assert main([]) == EXIT_INFRA
        assert "usage:" in capsys.readouterr().err

    def test_verbose_logging(self, script, capsys):
        path = script("if true; end")
        main(["-vv", "run", path])
        assert "instrumented 1 branch points" in capsys.readouterr().err
