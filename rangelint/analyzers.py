"""
rangelint/analyzers.py
══════════════════════

The static declaration list of built-in analyzers.

Facts come from :mod:`rangelint.facts`; the checks declared here read
them.  Rule-table checks are built with :func:`make_call_check`, either
by a client library or by the command-line driver from rule files.
"""

from __future__ import annotations

import logging
from typing import Iterable, Set, Tuple

from rangelint.analysis import AnalyzerDescriptor, AnalyzerKind, Pass
from rangelint.facts import FACT_ANALYZERS
from rangelint.ir import OP_CALL, OP_RETURN, Function
from rangelint.options import target_version_option
from rangelint.registry import AnalyzerRegistry
from rangelint.rules import RuleSet, call_checker

logger = logging.getLogger(__name__)

CALL_CHECK_REQUIRES: Tuple[str, ...] = (
    "buildir",
    "valueranges",
    "facts.tokenfile",
    "facts.generated",
)


def _used_names(fn: Function) -> Set[str]:
    return {op for _, _, instr in fn.instructions() for op in instr.operands}


def _returns_value(fn: Function) -> bool:
    return any(
        instr.op == OP_RETURN and instr.operands
        for _, _, instr in fn.instructions()
    )


# ═══════════════════════════════════════════════════════════════════════════
#  SA1019 — use of deprecated function
# ═══════════════════════════════════════════════════════════════════════════

def run_sa1019(pass_: Pass) -> None:
    deprecated = pass_.result_of("facts.deprecated")
    generated = pass_.result_of("facts.generated")
    for fn in pass_.unit.functions:
        if fn.name in deprecated:
            # deprecated code may keep using deprecated code
            continue
        for _, _, instr in fn.calls():
            if instr.op != OP_CALL or instr.callee not in deprecated:
                continue
            if instr.position.file in generated:
                continue
            pass_.report(
                instr.position,
                f"{instr.callee} has been deprecated: {deprecated[instr.callee]}",
            )


SA1019 = AnalyzerDescriptor(
    identifier="SA1019",
    doc=(
        "Using a deprecated function\n\n"
        "Reports calls to functions whose documentation contains a "
        "paragraph starting with 'Deprecated: '."
    ),
    run=run_sa1019,
    requires=("buildir", "facts.generated", "facts.deprecated"),
)


# ═══════════════════════════════════════════════════════════════════════════
#  SA4017 — discarded result of a pure function
# ═══════════════════════════════════════════════════════════════════════════

def run_sa4017(pass_: Pass) -> None:
    index = pass_.result_of("buildir")
    pure = pass_.result_of("facts.purity")
    generated = pass_.result_of("facts.generated")
    for fn in pass_.unit.functions:
        used = _used_names(fn)
        for _, _, instr in fn.calls():
            if instr.op != OP_CALL or instr.callee not in pure:
                continue
            if instr.name is not None and instr.name in used:
                continue
            callee = index.get(instr.callee)
            if callee is None or not _returns_value(callee):
                continue
            if instr.position.file in generated:
                continue
            pass_.report(
                instr.position,
                f"{instr.callee} doesn't have side effects and its return value is ignored",
            )


SA4017 = AnalyzerDescriptor(
    identifier="SA4017",
    doc=(
        "Discarding the return values of a function without side effects\n\n"
        "Calling a pure function only to drop its result is a no-op."
    ),
    run=run_sa4017,
    requires=("buildir", "facts.purity", "facts.generated"),
)


# ═══════════════════════════════════════════════════════════════════════════
#  RULE-TABLE CHECKS
# ═══════════════════════════════════════════════════════════════════════════

def make_call_check(identifier: str, doc: str, rules: RuleSet) -> AnalyzerDescriptor:
    """Declare a check that applies ``rules`` at call sites."""
    return AnalyzerDescriptor(
        identifier=identifier,
        doc=doc,
        run=call_checker(rules),
        requires=CALL_CHECK_REQUIRES,
        options=(target_version_option(),),
        kind=AnalyzerKind.CHECK,
    )


DEFAULT_ANALYZERS: Tuple[AnalyzerDescriptor, ...] = FACT_ANALYZERS + (SA1019, SA4017)


def build_registry(extra: Iterable[AnalyzerDescriptor] = ()) -> AnalyzerRegistry:
    """A registry of the built-in analyzers plus ``extra`` checks."""
    return AnalyzerRegistry(DEFAULT_ANALYZERS + tuple(extra))
