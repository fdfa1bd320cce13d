# tests/test_cli.py
"""
Tests for the ``rangelint`` command-line driver.
"""

import json

import pytest

from rangelint.cli import EXIT_DIAGNOSTICS, EXIT_INFRA, EXIT_OK, main
from rangelint.scheduler import DependencyScheduler
from tests.conftest import LOOP_SCENARIO, SCENARIO_RULES

SCENARIO_LINE = "main.go:8:5: warning: main.f called with {160} [RL0001]"


@pytest.fixture
def workdir(tmp_path):
    (tmp_path / "scenario.sexp").write_text(LOOP_SCENARIO, encoding="utf-8")
    (tmp_path / "scenario.rules").write_text(SCENARIO_RULES, encoding="utf-8")
    return tmp_path


def analyze(workdir, *extra):
    return main([
        "analyze", str(workdir / "scenario.sexp"),
        "--rules", str(workdir / "scenario.rules"),
        *extra,
    ])


class TestAnalyze:

    def test_reports_rule_violation(self, workdir, capsys):
        assert analyze(workdir) == EXIT_DIAGNOSTICS
        assert capsys.readouterr().out.splitlines() == [SCENARIO_LINE]

    def test_clean_run(self, workdir, capsys):
        assert analyze(workdir, "--checks", "SA1019,SA4017") == EXIT_OK
        assert capsys.readouterr().out == ""

    def test_json_output(self, workdir, capsys):
        assert analyze(workdir, "--format", "json") == EXIT_DIAGNOSTICS
        data = json.loads(capsys.readouterr().out)
        (diag,) = data["diagnostics"]
        assert diag["analyzer"] == "RL0001"
        assert (diag["file"], diag["line"], diag["column"]) == ("main.go", 8, 5)
        assert data["failures"] == []

    def test_output_file(self, workdir):
        out = workdir / "out" / "report.txt"
        assert analyze(workdir, "-o", str(out)) == EXIT_DIAGNOSTICS
        assert out.read_text(encoding="utf-8").splitlines() == [SCENARIO_LINE]

    def test_target_version_and_workers(self, workdir, capsys):
        code = analyze(workdir, "--target-version", "1.21", "--workers", "2")
        assert code == EXIT_DIAGNOSTICS
        assert SCENARIO_LINE in capsys.readouterr().out

    def test_missing_unit_file(self, workdir):
        assert main(["analyze", str(workdir / "nope.sexp")]) == EXIT_INFRA

    def test_malformed_unit_file(self, workdir):
        bad = workdir / "bad.sexp"
        bad.write_text('(unit "u" (func "f"', encoding="utf-8")
        assert main(["analyze", str(bad)]) == EXIT_INFRA

    def test_malformed_unit_does_not_stop_the_others(self, workdir, capsys):
        mixed = workdir / "mixed.sexp"
        mixed.write_text(
            LOOP_SCENARIO + '\n(unit "bad" (func "main.g" (block :succs (1) (return))))\n',
            encoding="utf-8",
        )
        code = main(["analyze", str(mixed), "--rules", str(workdir / "scenario.rules")])
        assert code == EXIT_INFRA
        out = capsys.readouterr().out.splitlines()
        assert out == [
            SCENARIO_LINE,
            "bad: error: load: main.g: block without an index (malformed-ir)",
        ]

    def test_malformed_unit_in_json_report(self, workdir, capsys):
        bad = workdir / "bad.sexp"
        bad.write_text('(unit "u" (func "f" :pos (line col) (block 0 (return))))', encoding="utf-8")
        assert main(["analyze", str(bad), "--format", "json"]) == EXIT_INFRA
        (failure,) = json.loads(capsys.readouterr().out)["failures"]
        assert failure["unit"] == "u"
        assert failure["kind"] == "malformed-ir"
        assert "expected an integer" in failure["message"]

    def test_same_unit_name_in_two_files(self, workdir, capsys):
        copy = workdir / "copy.sexp"
        copy.write_text(LOOP_SCENARIO, encoding="utf-8")
        code = main(["analyze", str(workdir / "scenario.sexp"), str(copy)])
        assert code == EXIT_INFRA
        assert capsys.readouterr().out == ""

    def test_unwritable_output(self, workdir):
        out = workdir / "scenario.rules" / "report.txt"
        assert analyze(workdir, "-o", str(out)) == EXIT_INFRA

    def test_internal_error_maps_to_infrastructure(self, workdir, monkeypatch, capsys):
        def explode(self, *args, **kwargs):
            raise RuntimeError("kaboom")

        monkeypatch.setattr(DependencyScheduler, "run", explode)
        assert analyze(workdir) == EXIT_INFRA
        assert "RuntimeError: kaboom" in capsys.readouterr().err

    def test_malformed_rule_file(self, workdir):
        bad = workdir / "bad.rules"
        bad.write_text('(rule r :call "pkg.F" :arg 0 :message "m")', encoding="utf-8")
        code = main(["analyze", str(workdir / "scenario.sexp"), "--rules", str(bad)])
        assert code == EXIT_INFRA

    def test_unknown_check(self, workdir):
        assert analyze(workdir, "--checks", "ZZ9999") == EXIT_INFRA

    def test_bad_target_version(self, workdir):
        assert analyze(workdir, "--target-version", "banana") == EXIT_INFRA

    def test_unit_failure_is_infrastructure_error(self, workdir, capsys):
        bad = workdir / "dup.sexp"
        bad.write_text(
            '(unit "dup" (func "f" (block 0 (return))) (func "f" (block 0 (return))))',
            encoding="utf-8",
        )
        assert main(["analyze", str(bad)]) == EXIT_INFRA
        assert "dup: error: buildir:" in capsys.readouterr().out


class TestList:

    def test_lists_checks(self, workdir, capsys):
        assert main(["list", "--rules", str(workdir / "scenario.rules")]) == EXIT_OK
        out = capsys.readouterr().out
        assert "SA1019" in out
        assert "RL0001" in out
        assert "Call rules loaded from scenario.rules" in out
        assert not any(line.startswith("valueranges") for line in out.splitlines())

    def test_all_includes_facts(self, capsys):
        assert main(["list", "--all"]) == EXIT_OK
        out = capsys.readouterr().out
        assert any(line.startswith("valueranges") for line in out.splitlines())


def test_no_command():
    assert main([]) == EXIT_INFRA
