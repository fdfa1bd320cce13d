"""
rangelint — Value-Range Analysis and Pluggable Static Checks
============================================================

This package provides a static-analysis engine for programs already
lowered to single-assignment form: a forward abstract interpreter over a
range lattice, a registry of analyzers with declared dependencies, a
scheduler that runs them per unit in dependency order, and a declarative
call-rule checker built on the computed ranges.

Core modules
------------
ranges
    The range lattice (constant sets, intervals) and transfer functions.
interp
    Worklist fixpoint over a function's blocks with threshold widening.
registry
    Static analyzer declarations, validated and cycle-checked.
scheduler
    Dependency-ordered execution with a write-once fact store.
rules
    Rule tables, the predicate language and the call-site checker.

Quick start
-----------
>>> from rangelint import Range
>>> print(Range.interval(0, 10).join(Range.const(20)))
[0, 20]

Package layout
--------------
::

    rangelint/
    ├── __init__.py            ← this file
    ├── errors.py  config.py
    ├── ir.py  ir_loader.py  sexp.py
    ├── ranges.py  graphs.py  interp.py
    ├── analysis.py  options.py  factstore.py
    ├── registry.py  scheduler.py
    ├── predicates.py  rules.py
    ├── facts.py  analyzers.py
    └── cli.py
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import TYPE_CHECKING, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__all__: List[str] = []          # populated below

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

# ---------------------------------------------------------------------------
# Re-exported names, by submodule
# ---------------------------------------------------------------------------

_EXPORTS = {
    "errors": [
        "RangelintError",
        "ConfigurationError",
        "UnitError",
        "CyclicDependencyError",
        "DependencyUnsatisfiedError",
        "MalformedIRError",
        "RuleSyntaxError",
        "StalePassError",
    ],
    "config": ["EngineConfig"],
    "ir": ["Unit", "Function", "BasicBlock", "Instruction", "Position"],
    "ir_loader": ["loads_units", "loads_unit", "load_units"],
    "ranges": ["Range", "RangeKind"],
    "interp": ["analyze_function", "analyze_unit", "FunctionRanges", "UnitRanges"],
    "analysis": ["AnalyzerDescriptor", "AnalyzerKind", "Diagnostic", "Pass"],
    "factstore": ["FactStore"],
    "registry": ["AnalyzerRegistry", "default_registry"],
    "scheduler": ["DependencyScheduler", "RunReport"],
    "predicates": ["compile_predicate"],
    "rules": ["Rule", "RuleSet", "CallRuleChecker", "make_rule", "loads_rules", "load_rules"],
    "analyzers": ["make_call_check", "build_registry"],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace."""
    mod = importlib.import_module(f"{__name__}.{module_rel_name}")
    current_module = sys.modules[__name__]
    for name in names:
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)
    setattr(current_module, module_rel_name, mod)


for _mod, _names in _EXPORTS.items():
    _import_names(_mod, _names)

del _mod, _names

__all__ += ["__version__"]

if TYPE_CHECKING:
    from .errors import (
        RangelintError as RangelintError,
        ConfigurationError as ConfigurationError,
        UnitError as UnitError,
        CyclicDependencyError as CyclicDependencyError,
        DependencyUnsatisfiedError as DependencyUnsatisfiedError,
        MalformedIRError as MalformedIRError,
        RuleSyntaxError as RuleSyntaxError,
        StalePassError as StalePassError,
    )
    from .config import EngineConfig as EngineConfig
    from .ir import (
        Unit as Unit,
        Function as Function,
        BasicBlock as BasicBlock,
        Instruction as Instruction,
        Position as Position,
    )
    from .ir_loader import (
        loads_units as loads_units,
        loads_unit as loads_unit,
        load_units as load_units,
    )
    from .ranges import Range as Range, RangeKind as RangeKind
    from .interp import (
        analyze_function as analyze_function,
        analyze_unit as analyze_unit,
        FunctionRanges as FunctionRanges,
        UnitRanges as UnitRanges,
    )
    from .analysis import (
        AnalyzerDescriptor as AnalyzerDescriptor,
        AnalyzerKind as AnalyzerKind,
        Diagnostic as Diagnostic,
        Pass as Pass,
    )
    from .factstore import FactStore as FactStore
    from .registry import (
        AnalyzerRegistry as AnalyzerRegistry,
        default_registry as default_registry,
    )
    from .scheduler import DependencyScheduler as DependencyScheduler, RunReport as RunReport
    from .predicates import compile_predicate as compile_predicate
    from .rules import (
        Rule as Rule,
        RuleSet as RuleSet,
        CallRuleChecker as CallRuleChecker,
        make_rule as make_rule,
        loads_rules as loads_rules,
        load_rules as load_rules,
    )
    from .analyzers import make_call_check as make_call_check, build_registry as build_registry
