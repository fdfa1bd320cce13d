# tests/test_registry.py
"""
Tests for registry validation and planning.
"""

import pytest

from rangelint.analysis import AnalyzerDescriptor, AnalyzerKind
from rangelint.analyzers import build_registry, make_call_check
from rangelint.errors import (
    CyclicDependencyError,
    DuplicateAnalyzerError,
    InvalidAnalyzerError,
    UnknownAnalyzerError,
)
from rangelint.options import Option
from rangelint.registry import AnalyzerRegistry, default_registry
from rangelint.rules import RuleSet
from tests.conftest import check, fact, noop


class TestValidation:

    def test_cycle_is_named(self):
        with pytest.raises(CyclicDependencyError) as excinfo:
            AnalyzerRegistry([
                fact("t.a", noop, requires=["t.b"]),
                fact("t.b", noop, requires=["t.a"]),
                check("XX0001", noop, requires=["t.a"]),
            ])
        assert set(excinfo.value.cycle) == {"t.a", "t.b"}
        assert "t.a -> t.b -> t.a" in str(excinfo.value)

    def test_self_dependency(self):
        with pytest.raises(CyclicDependencyError) as excinfo:
            AnalyzerRegistry([fact("t.a", noop, requires=["t.a"])])
        assert excinfo.value.cycle == ("t.a",)

    def test_duplicate(self):
        with pytest.raises(DuplicateAnalyzerError, match="XX0001"):
            AnalyzerRegistry([check("XX0001", noop), check("XX0001", noop)])

    @pytest.mark.parametrize("ident", ["X0001", "xx0001", "XX001", "XX00012", "facts.x"])
    def test_bad_check_identifier(self, ident):
        with pytest.raises(InvalidAnalyzerError, match="malformed check identifier"):
            AnalyzerRegistry([check(ident, noop)])

    @pytest.mark.parametrize("ident", ["SA1000", "Facts.x", "facts..x", "1facts", ""])
    def test_bad_fact_identifier(self, ident):
        with pytest.raises(InvalidAnalyzerError, match="malformed fact identifier"):
            AnalyzerRegistry([fact(ident, noop)])

    def test_empty_documentation(self):
        desc = AnalyzerDescriptor("XX0001", "   ", noop)
        with pytest.raises(InvalidAnalyzerError, match="no documentation"):
            AnalyzerRegistry([desc])

    def test_dependency_listed_twice(self):
        with pytest.raises(InvalidAnalyzerError, match="twice"):
            AnalyzerRegistry([
                fact("t.a", noop),
                check("XX0001", noop, requires=["t.a", "t.a"]),
            ])

    def test_option_declared_twice(self):
        opts = [Option("limit", "a"), Option("limit", "b")]
        with pytest.raises(InvalidAnalyzerError, match="option twice"):
            AnalyzerRegistry([check("XX0001", noop, options=opts)])

    def test_unknown_dependency_names_referrer(self):
        with pytest.raises(UnknownAnalyzerError) as excinfo:
            AnalyzerRegistry([check("XX0001", noop, requires=["t.missing"])])
        assert excinfo.value.identifier == "t.missing"
        assert excinfo.value.referrer == "XX0001"

    def test_dependency_may_be_declared_later(self):
        registry = AnalyzerRegistry([
            check("XX0001", noop, requires=["t.a"]),
            fact("t.a", noop),
        ])
        assert registry.plan_order(["XX0001"]) == ["t.a", "XX0001"]


class TestLookup:

    @pytest.fixture
    def registry(self):
        return AnalyzerRegistry([
            fact("t.a", noop),
            fact("t.b", noop, requires=["t.a"]),
            fact("t.c", noop),
            check("XX0001", noop, requires=["t.b"], options=[Option("limit", "l", default=3)]),
            check("XX0002", noop, requires=["t.c"]),
        ])

    def test_get_unknown(self, registry):
        with pytest.raises(UnknownAnalyzerError):
            registry.get("XX0009")

    def test_contents(self, registry):
        assert len(registry) == 5
        assert "t.b" in registry
        assert registry.identifiers == ["t.a", "t.b", "t.c", "XX0001", "XX0002"]
        assert [d.identifier for d in registry.checks()] == ["XX0001", "XX0002"]
        assert registry.get("t.a").kind is AnalyzerKind.FACT

    def test_dependencies(self, registry):
        assert registry.dependencies("XX0001") == ["t.b"]
        assert registry.dependencies("t.a") == []

    def test_closure(self, registry):
        assert registry.closure(["XX0001"]) == {"XX0001", "t.b", "t.a"}

    def test_plan_order_only_needed(self, registry):
        assert registry.plan_order(["XX0001"]) == ["t.a", "t.b", "XX0001"]

    def test_plan_order_is_deterministic(self, registry):
        order = registry.plan_order(["XX0002", "XX0001"])
        assert order == ["t.a", "t.b", "t.c", "XX0001", "XX0002"]

    def test_default_options(self, registry):
        assert registry.default_options("XX0001") == {"limit": 3}

    def test_documentation(self, registry):
        assert registry.documentation()["XX0002"] == "XX0002 test check"


class TestDefaultRegistry:

    def test_built_in_checks(self):
        assert [d.identifier for d in default_registry().checks()] == ["SA1019", "SA4017"]

    def test_plan_for_deprecation_check(self):
        assert default_registry().plan_order(["SA1019"]) == [
            "buildir", "facts.generated", "facts.deprecated", "SA1019",
        ]

    def test_built_in_checks_take_no_options(self):
        registry = default_registry()
        assert registry.default_options("SA1019") == {}
        assert registry.default_options("SA4017") == {}

    def test_rule_checks_take_target_version(self):
        registry = build_registry([make_call_check("RL0001", "rules", RuleSet())])
        assert registry.default_options("RL0001") == {"target-version": None}

    def test_shared_instance(self):
        assert default_registry() is default_registry()
