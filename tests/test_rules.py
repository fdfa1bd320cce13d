# tests/test_rules.py
"""
Tests for rule tables, rule files and the call-rule checker.
"""

import pytest

from rangelint.errors import RuleSyntaxError
from rangelint.interp import analyze_unit
from rangelint.ir import Position
from rangelint.ranges import Range
from rangelint.rules import CallRuleChecker, RuleSet, load_rules, loads_rules, make_rule
from tests.conftest import SCENARIO_RULES, func_unit


def run_checker(unit, rules, version=None):
    return CallRuleChecker(rules).check(
        unit, analyze_unit(unit), analyzer="RL0001", version=version
    )


class TestRuleFiles:

    def test_load(self):
        rules = loads_rules(SCENARIO_RULES)
        (rule,) = list(rules)
        assert rule.name == "big-count"
        assert rule.selector == "main.f"
        assert rule.arg == 0
        assert str(rule.predicate) == "always >= 100"

    def test_versions(self):
        rules = loads_rules('''
            (rule r :call "pkg.F" :arg 0 :when "constant" :message "m"
                    :since "1.4" :until "go1.21")
        ''')
        (rule,) = list(rules)
        assert (rule.since, rule.until) == (4, 21)

    def test_load_from_path(self, tmp_path):
        path = tmp_path / "scenario.rules"
        path.write_text(SCENARIO_RULES, encoding="utf-8")
        assert len(load_rules(path)) == 1

    def test_missing_file(self, tmp_path):
        with pytest.raises(RuleSyntaxError, match="cannot read"):
            load_rules(tmp_path / "nope.rules")

    @pytest.mark.parametrize("text,message", [
        ('(rule r :call "pkg.F" :arg 0 :message "m")', "missing :when"),
        ('(rule r :call "pkg.F" :arg 0 :when "constant" :message "m" :color 1)', "unknown keyword"),
        ('(rule r :call "pkg.F" :arg 0 :when "always <" :message "m")', "invalid predicate"),
        ('(rule r :call "pkg.F" :arg -1 :when "constant" :message "m")', "negative argument"),
        ('(rule r :call "pkg.F" :arg "0" :when "constant" :message "m")', "expected an integer"),
        ('(rule r :call "pkg.F" :arg 0 :when "constant" :message "m" :since "2.0")', "bad :since"),
        ('(rule r :call "" :arg 0 :when "constant" :message "m")', "empty call selector"),
        ('(check r)', "expected \\(rule"),
        ('(rule r :call "pkg.F"', "cannot parse"),
    ])
    def test_syntax_errors(self, text, message):
        with pytest.raises(RuleSyntaxError, match=message):
            loads_rules(text)

    def test_duplicate_names(self):
        text = '''
            (rule r :call "pkg.F" :arg 0 :when "constant" :message "a")
            (rule r :call "pkg.G" :arg 0 :when "constant" :message "b")
        '''
        with pytest.raises(RuleSyntaxError, match="more than once"):
            loads_rules(text)


class TestRuleSet:

    def test_for_callee_keeps_order(self):
        rules = RuleSet([
            make_rule("a", "pkg.F", 0, "constant", "a"),
            make_rule("b", "pkg.G", 0, "constant", "b"),
            make_rule("c", "pkg.F", 1, "constant", "c"),
        ])
        assert [r.name for r in rules.for_callee("pkg.F")] == ["a", "c"]
        assert rules.for_callee("pkg.H") == []
        assert rules.callees == ["pkg.F", "pkg.G"]

    def test_version_window(self):
        rule = make_rule("r", "pkg.F", 0, "constant", "m", since="1.10", until="1.20")
        assert not rule.applies_to(9)
        assert rule.applies_to(10)
        assert rule.applies_to(19)
        assert not rule.applies_to(20)
        assert not rule.applies_to(None)

    def test_open_window_applies_to_latest(self):
        rule = make_rule("r", "pkg.F", 0, "constant", "m", since="1.10")
        assert rule.applies_to(None)

    def test_render(self):
        rule = make_rule("r", "pkg.F", 1, "constant", "{callee} arg {arg} is {range}")
        assert rule.render(Range.interval(0, 3), "pkg.F") == "pkg.F arg 1 is [0, 3]"


class TestCallRuleChecker:

    def test_scenario_fires_once(self, scenario_unit):
        diags = run_checker(scenario_unit, loads_rules(SCENARIO_RULES))
        assert len(diags) == 1
        (d,) = diags
        assert d.message == "main.f called with {160}"
        assert (d.position.file, d.position.line, d.position.column) == ("main.go", 8, 5)
        assert d.analyzer == "RL0001"
        assert d.unit == "scenario"
        assert d.severity == "warning"

    def test_no_false_positive_from_unknown(self):
        unit = func_unit('''
            (func "main.g" :params (n)
              (block 0
                (call "pkg.Repeat" "x" n)
                (return)))
        ''')
        rules = RuleSet([make_rule("neg", "pkg.Repeat", 1, "may < 0", "negative count")])
        assert run_checker(unit, rules) == []

    def test_unknown_rule_fires_on_unknown(self):
        unit = func_unit('''
            (func "main.g" :params (n)
              (block 0
                (call "pkg.Repeat" "x" n)
                (return)))
        ''')
        rules = RuleSet([make_rule("unk", "pkg.Repeat", 1, "unknown", "count is {range}")])
        (d,) = run_checker(unit, rules)
        assert d.message == "count is unknown"

    def test_indirect_call_skipped(self):
        unit = func_unit('''
            (func "main.g"
              (block 0
                (fv load "pkg.Repeat")
                (call-indirect fv "x" -1)
                (return)))
        ''')
        rules = RuleSet([make_rule("neg", "pkg.Repeat", 1, "always < 0", "negative")])
        assert run_checker(unit, rules) == []

    def test_every_matching_rule_fires(self):
        unit = func_unit('''
            (func "main.g"
              (block 0
                (call "pkg.Repeat" "x" -1 :pos (2 3))
                (return)))
        ''')
        rules = RuleSet([
            make_rule("neg", "pkg.Repeat", 1, "always < 0", "negative"),
            make_rule("const", "pkg.Repeat", 1, "constant", "constant {range}"),
            make_rule("other-arg", "pkg.Repeat", 0, "always == \"y\"", "never"),
            make_rule("out-of-range", "pkg.Repeat", 5, "constant", "never"),
        ])
        assert [d.message for d in run_checker(unit, rules)] == ["negative", "constant {-1}"]

    def test_unreachable_call_skipped(self):
        unit = func_unit('''
            (func "main.g"
              (block 0 :succs (1 2)
                (c < 1 0)
                (if c))
              (block 1
                (call "pkg.Repeat" "x" -1)
                (return))
              (block 2
                (return)))
        ''')
        rules = RuleSet([make_rule("neg", "pkg.Repeat", 1, "always < 0", "negative")])
        assert run_checker(unit, rules) == []

    def test_version_selects_rules(self):
        unit = func_unit('''
            (func "main.g"
              (block 0
                (call "pkg.Repeat" "x" -1)
                (return)))
        ''')
        rules = RuleSet([
            make_rule("old", "pkg.Repeat", 1, "constant", "old", until="1.10"),
            make_rule("new", "pkg.Repeat", 1, "constant", "new", since="1.10"),
        ])
        assert [d.message for d in run_checker(unit, rules, version=9)] == ["old"]
        assert [d.message for d in run_checker(unit, rules, version=12)] == ["new"]
        assert [d.message for d in run_checker(unit, rules)] == ["new"]

    def test_missing_position_falls_back_to_function(self):
        unit = func_unit('''
            (func "main.g" :pos (10 1)
              (block 0
                (call "pkg.Repeat" "x" -1)
                (return)))
        ''')
        rules = RuleSet([make_rule("neg", "pkg.Repeat", 1, "always < 0", "negative")])
        (d,) = run_checker(unit, rules)
        assert d.position == Position("main.go", 10, 1)
