# tests/test_predicates.py
"""
Tests for the rule predicate language.
"""

import pytest

from rangelint.errors import RuleSyntaxError
from rangelint.predicates import And, Compare, Member, Not, Or, compile_predicate
from rangelint.ranges import Range


def holds(text, r):
    return compile_predicate(text).holds(r)


class TestParsing:

    def test_comparison(self):
        p = compile_predicate("always < 0")
        assert p.root == Compare("always", "<", 0)
        assert str(p) == "always < 0"

    def test_membership(self):
        p = compile_predicate('may in {"", "utf-7"}')
        assert p.root == Member("may", frozenset({"", "utf-7"}))

    def test_precedence(self):
        p = compile_predicate("may < 0 or may > 9 and constant")
        assert isinstance(p.root, Or)
        assert isinstance(p.root.operands[1], And)

    def test_not_and_grouping(self):
        p = compile_predicate("not (always >= 0 or unknown)")
        assert isinstance(p.root, Not)
        assert isinstance(p.root.operand, Or)

    def test_keywords_need_a_boundary(self):
        with pytest.raises(RuleSyntaxError):
            compile_predicate("constants")

    @pytest.mark.parametrize("text", [
        "",
        "always <",
        "sometimes < 0",
        "always < 0 and",
        "may in {}",
        'matches "("',
        "always < x",
    ])
    def test_syntax_errors(self, text):
        with pytest.raises(RuleSyntaxError):
            compile_predicate(text)


class TestQuantifiers:

    def test_always_on_interval(self):
        assert holds("always < 0", Range.interval(-5, -1))
        assert not holds("always < 0", Range.interval(-5, 5))

    def test_may_on_interval(self):
        assert holds("may < 0", Range.interval(-5, 5))
        assert not holds("may < 0", Range.at_least(0))

    def test_equality_on_interval(self):
        assert holds("may == 3", Range.interval(0, 10))
        assert not holds("always == 3", Range.interval(0, 10))
        assert holds("always != 30", Range.interval(0, 10))

    def test_constant_sets(self):
        assert holds("always > 1", Range.of([2, 3]))
        assert holds("may == 3", Range.of([2, 3]))
        assert not holds("always == 3", Range.of([2, 3]))

    def test_membership(self):
        assert holds("always in {1, 2, 4}", Range.of([1, 4]))
        assert not holds("always in {1, 2, 4}", Range.of([1, 3]))
        assert holds("always in {1, 2, 3}", Range.interval(1, 3))
        assert holds("may in {7, 100}", Range.interval(0, 10))

    def test_strings(self):
        assert holds('always == "utf-7"', Range.const("utf-7"))
        assert holds('may in {"utf-7"}', Range.of(["utf-7", "utf-8"]))

    def test_mismatched_family_never_equal(self):
        assert not holds('always == "a"', Range.interval(0, 10))
        assert not holds("may == 1", Range.const("1"))
        assert holds("always != 1", Range.const("1"))

    def test_booleans(self):
        assert holds("always == true", Range.const(True))
        assert not holds("always == 1", Range.const(True))

    def test_constant(self):
        assert holds("constant", Range.const(5))
        assert not holds("constant", Range.of([5, 6]))

    def test_matches_every_value(self):
        assert holds('matches "^utf"', Range.of(["utf-8", "utf-16"]))
        assert not holds('matches "^utf"', Range.of(["latin1", "utf-8"]))
        assert not holds('matches "^utf"', Range.interval(0, 3))

    def test_boolean_connectives(self):
        r = Range.interval(-3, 3)
        assert holds("may < 0 and may > 0", r)
        assert holds("always > 5 or may == 0", r)
        assert holds("not constant", r)


class TestGuardedEvaluation:

    def test_unknown_never_matches_comparisons(self):
        assert not holds("may < 0", Range.unknown())
        assert not holds("not (always >= 0)", Range.unknown())

    def test_unknown_when_asked_for(self):
        assert holds("unknown", Range.unknown())
        assert holds("unknown or always < 0", Range.unknown())
        assert not holds("unknown", Range.const(1))

    def test_unreachable_never_matches(self):
        assert not holds("unknown", Range.unreachable())
        assert not holds("not constant", Range.unreachable())

    def test_unguarded_call(self):
        p = compile_predicate("may < 0")
        assert p(Range.unknown())
        assert not p.targets_unknown

    def test_compiled_once(self):
        assert compile_predicate("always < 0") is compile_predicate("always < 0")
