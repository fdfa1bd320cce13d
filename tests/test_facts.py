# tests/test_facts.py
"""
Tests for the fact analyzers and the built-in checks that read them.
"""

import pytest

from rangelint.errors import ErrorKind
from rangelint.facts import TokenFile, TokenFiles, deprecation_notice, is_generated, pure_functions
from rangelint.ir import Position, SourceFile
from rangelint.scheduler import DependencyScheduler
from tests.conftest import func_unit

GENERATED_HEADER = "// Code generated by stringer. DO NOT EDIT.\n\npackage main\n"


class TestTokenFile:

    @pytest.fixture
    def tokens(self):
        return TokenFile(SourceFile("main.go", "package main\n\nfunc f() {\n}\n"))

    def test_line_table(self, tokens):
        assert tokens.line_starts == [0, 13, 14, 25, 27]
        assert tokens.line_count == 5

    def test_offset_to_position(self, tokens):
        assert tokens.position(0) == Position("main.go", 1, 1, 0)
        assert tokens.position(19) == Position("main.go", 3, 6, 19)

    def test_position_to_offset(self, tokens):
        assert tokens.offset(3, 6) == 19
        assert tokens.offset(99, 1) == -1

    def test_out_of_range_offset_is_kept(self, tokens):
        assert tokens.position(500) == Position("main.go", offset=500)

    def test_resolve_fills_missing_half(self, tokens):
        files = TokenFiles({"main.go": tokens})
        assert files.resolve(Position("main.go", offset=19)).line == 3
        assert files.resolve(Position("main.go", 3, 6)).offset == 19
        other = Position("other.go", offset=3)
        assert files.resolve(other) is other


class TestGenerated:

    @pytest.mark.parametrize("text", [
        GENERATED_HEADER,
        "package main\n// Code generated by protoc-gen-go. DO NOT EDIT.\n",
        "# Code generated by a script. DO NOT EDIT.\n",
    ])
    def test_marker(self, text):
        assert is_generated(text)

    @pytest.mark.parametrize("text", [
        "package main\n",
        "// Code generated by hand, feel free to edit.\n",
        "// x := \"Code generated by x. DO NOT EDIT.\"\n",
    ])
    def test_no_marker(self, text):
        assert not is_generated(text)


class TestDeprecation:

    def test_paragraph(self):
        doc = "Old does x.\n\nDeprecated: use New\ninstead."
        assert deprecation_notice(doc) == "use New instead."

    def test_must_start_a_paragraph(self):
        assert deprecation_notice("Old is not Deprecated: really.") is None
        assert deprecation_notice("") is None


class TestPurity:

    UNIT = '''
        (func "pkg.Sum" :params (a b)
          (block 0
            (r + a b)
            (return r)))
        (func "pkg.Twice" :params (a)
          (block 0
            (r call "pkg.Sum" a a)
            (return r)))
        (func "pkg.Load"
          (block 0
            (v load "pkg.global")
            (return v)))
        (func "pkg.Indirect" :params (a)
          (block 0
            (r call "pkg.Load")
            (return r)))
        (func "pkg.Print" :params (a)
          (block 0
            (call "fmt.Println" a)
            (return)))
    '''

    def test_pure_set(self):
        assert pure_functions(func_unit(self.UNIT)) == {"pkg.Sum", "pkg.Twice"}


DEPRECATED_UNIT = '''
    (func "pkg.Old" :doc "Old does x.

Deprecated: use New."
      (block 0
        (return)))
    (func "pkg.Older" :doc "Deprecated: gone."
      (block 0
        (call "pkg.Old" :pos (9 2))
        (return)))
    (func "main.use"
      (block 0
        (call "pkg.Old" :pos (4 2))
        (return)))
'''

PURE_UNIT = '''
    (func "pkg.Sum" :params (a b)
      (block 0
        (r + a b)
        (return r)))
    (func "pkg.Noop"
      (block 0
        (return)))
    (func "main.use"
      (block 0
        (call "pkg.Sum" 1 2 :pos (3 2))
        (s call "pkg.Sum" 3 4 :pos (4 2))
        (call "pkg.Noop" :pos (5 2))
        (return s)))
'''


def run_check(unit, identifier):
    return DependencyScheduler().run([unit], [identifier])


class TestDeprecatedCheck:

    def test_reports_call(self):
        report = run_check(func_unit(DEPRECATED_UNIT), "SA1019")
        (d,) = report.diagnostics
        assert d.message == "pkg.Old has been deprecated: use New."
        assert (d.position.line, d.position.column) == (4, 2)
        assert d.analyzer == "SA1019"

    def test_silent_in_generated_file(self):
        unit = func_unit(DEPRECATED_UNIT, file_text=GENERATED_HEADER)
        assert run_check(unit, "SA1019").diagnostics == []


class TestPureCheck:

    def test_reports_discarded_result(self):
        report = run_check(func_unit(PURE_UNIT), "SA4017")
        (d,) = report.diagnostics
        assert d.message == "pkg.Sum doesn't have side effects and its return value is ignored"
        assert d.position.line == 3

    def test_silent_in_generated_file(self):
        unit = func_unit(PURE_UNIT, file_text=GENERATED_HEADER)
        assert run_check(unit, "SA4017").diagnostics == []


class TestBuildIR:

    def test_duplicate_function_fails_unit(self):
        unit = func_unit('''
            (func "pkg.F" (block 0 (return)))
            (func "pkg.F" (block 0 (return)))
        ''')
        report = run_check(unit, "SA1019")
        kinds = {f.analyzer: f.kind for f in report.failures}
        assert kinds["buildir"] is ErrorKind.MALFORMED_IR
        assert kinds["SA1019"] is ErrorKind.DEPENDENCY_UNSATISFIED
