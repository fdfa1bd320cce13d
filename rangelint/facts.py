"""
rangelint/facts.py
══════════════════

Foundational fact analyzers shared by the checks.

    ┌──────────────────┬──────────────────────────────────────────────┐
    │ identifier       │ Result                                       │
    ├──────────────────┼──────────────────────────────────────────────┤
    │ buildir          │ IRIndex: validated functions by name         │
    │ facts.tokenfile  │ TokenFiles: offset ↔ line/column lookup      │
    │ facts.generated  │ frozenset of generated file names            │
    │ facts.deprecated │ {function: deprecation message}              │
    │ facts.purity     │ frozenset of side-effect-free functions      │
    │ valueranges      │ UnitRanges from the abstract interpreter     │
    └──────────────────┴──────────────────────────────────────────────┘

Facts never report diagnostics; they exist to be read through
``Pass.result_of`` by analyzers that declare them in ``requires``.
"""

from __future__ import annotations

import bisect
import logging
import re
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Set

from rangelint.analysis import AnalyzerDescriptor, AnalyzerKind, Pass
from rangelint.errors import MalformedIRError
from rangelint.interp import UnitRanges, analyze_unit
from rangelint.ir import (
    BINARY_OPS,
    COMPARE_OPS,
    OP_CALL,
    OP_COPY,
    OP_LEN,
    OP_PHI,
    TERMINATORS,
    UNARY_OPS,
    Function,
    Position,
    SourceFile,
    Unit,
    validate_function,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  buildir
# ═══════════════════════════════════════════════════════════════════════════

class IRIndex(Mapping[str, Function]):
    """Read-only index of a unit's validated functions."""

    def __init__(self, functions: Dict[str, Function]) -> None:
        self._functions = MappingProxyType(dict(functions))

    def __getitem__(self, name: str) -> Function:
        return self._functions[name]

    def __iter__(self):
        return iter(self._functions)

    def __len__(self) -> int:
        return len(self._functions)


def run_buildir(pass_: Pass) -> IRIndex:
    unit = pass_.unit
    functions: Dict[str, Function] = {}
    for fn in unit.functions:
        if fn.name in functions:
            raise MalformedIRError("function defined more than once", function=fn.name)
        validate_function(fn, unit=unit.name)
        functions[fn.name] = fn
    return IRIndex(functions)


# ═══════════════════════════════════════════════════════════════════════════
#  facts.tokenfile
# ═══════════════════════════════════════════════════════════════════════════

class TokenFile:
    """Line table of one source file (byte offsets, 1-based lines)."""

    def __init__(self, source: SourceFile) -> None:
        self.name = source.name
        data = source.text.encode("utf-8")
        self.size = len(data)
        self.line_starts: List[int] = [0]
        for i, byte in enumerate(data):
            if byte == 0x0A:
                self.line_starts.append(i + 1)

    @property
    def line_count(self) -> int:
        return len(self.line_starts)

    def position(self, offset: int) -> Position:
        if not 0 <= offset <= self.size:
            return Position(self.name, offset=offset)
        line = bisect.bisect_right(self.line_starts, offset)
        column = offset - self.line_starts[line - 1] + 1
        return Position(self.name, line, column, offset)

    def offset(self, line: int, column: int) -> int:
        if not 1 <= line <= len(self.line_starts):
            return -1
        return self.line_starts[line - 1] + max(column, 1) - 1


class TokenFiles:
    """Resolves positions between byte offsets and line/column form."""

    def __init__(self, files: Mapping[str, TokenFile]) -> None:
        self._files = dict(files)

    def file(self, name: str) -> Optional[TokenFile]:
        return self._files.get(name)

    def resolve(self, pos: Position) -> Position:
        """Fill in whichever of offset / line-column is missing."""
        tf = self._files.get(pos.file)
        if tf is None:
            return pos
        if pos.line == 0 and pos.offset >= 0:
            return tf.position(pos.offset)
        if pos.line > 0 and pos.offset < 0:
            return Position(pos.file, pos.line, pos.column, tf.offset(pos.line, pos.column))
        return pos


def run_tokenfile(pass_: Pass) -> TokenFiles:
    return TokenFiles({f.name: TokenFile(f) for f in pass_.unit.files})


# ═══════════════════════════════════════════════════════════════════════════
#  facts.generated
# ═══════════════════════════════════════════════════════════════════════════

GENERATED_RE = re.compile(
    r"^\s*(?://|#|;+)?\s*Code generated .* DO NOT EDIT\.\s*$",
    re.MULTILINE,
)


def is_generated(text: str) -> bool:
    return GENERATED_RE.search(text) is not None


def run_generated(pass_: Pass) -> FrozenSet[str]:
    return frozenset(f.name for f in pass_.unit.files if is_generated(f.text))


# ═══════════════════════════════════════════════════════════════════════════
#  facts.deprecated
# ═══════════════════════════════════════════════════════════════════════════

_DEPRECATED_PREFIX = "Deprecated: "


def deprecation_notice(doc: str) -> Optional[str]:
    """The text of a ``Deprecated:`` paragraph in ``doc``, if any.

    >>> deprecation_notice("Foo does x.\\n\\nDeprecated: use Bar.")
    'use Bar.'
    """
    for paragraph in re.split(r"\n\s*\n", doc):
        text = paragraph.strip()
        if text.startswith(_DEPRECATED_PREFIX):
            return " ".join(text[len(_DEPRECATED_PREFIX):].split())
    return None


def run_deprecated(pass_: Pass) -> Mapping[str, str]:
    found: Dict[str, str] = {}
    for fn in pass_.unit.functions:
        notice = deprecation_notice(fn.doc)
        if notice is not None:
            found[fn.name] = notice
    return MappingProxyType(found)


# ═══════════════════════════════════════════════════════════════════════════
#  facts.purity
# ═══════════════════════════════════════════════════════════════════════════

_PURE_OPS = BINARY_OPS | COMPARE_OPS | UNARY_OPS | TERMINATORS | {OP_COPY, OP_LEN, OP_PHI}


def pure_functions(unit: Unit) -> FrozenSet[str]:
    """Functions of ``unit`` without side effects.

    Optimistic fixpoint: start from every function whose own instructions
    are side-effect free, then drop those calling anything outside the
    set until nothing changes.
    """
    callees: Dict[str, Set[str]] = {}
    pure: Set[str] = set()
    for fn in unit.functions:
        ok = True
        calls: Set[str] = set()
        for _, _, instr in fn.instructions():
            if instr.op == OP_CALL:
                calls.add(instr.callee or "")
            elif instr.op not in _PURE_OPS:
                ok = False
                break
        if ok:
            pure.add(fn.name)
            callees[fn.name] = calls

    changed = True
    while changed:
        changed = False
        for name in sorted(pure):
            if not callees[name] <= pure:
                pure.discard(name)
                changed = True
    return frozenset(pure)


def run_purity(pass_: Pass) -> FrozenSet[str]:
    return pure_functions(pass_.unit)


# ═══════════════════════════════════════════════════════════════════════════
#  valueranges
# ═══════════════════════════════════════════════════════════════════════════

def run_valueranges(pass_: Pass) -> UnitRanges:
    pass_.result_of("buildir")
    return analyze_unit(pass_.unit, pass_.config, deadline=pass_.deadline)


# ═══════════════════════════════════════════════════════════════════════════
#  DESCRIPTORS
# ═══════════════════════════════════════════════════════════════════════════

BUILDIR = AnalyzerDescriptor(
    identifier="buildir",
    doc="Validates the SSA form of every function and indexes it by name.",
    run=run_buildir,
    kind=AnalyzerKind.FACT,
)

TOKENFILE = AnalyzerDescriptor(
    identifier="facts.tokenfile",
    doc="Line tables for the unit's source files (byte offset to line/column).",
    run=run_tokenfile,
    kind=AnalyzerKind.FACT,
)

GENERATED = AnalyzerDescriptor(
    identifier="facts.generated",
    doc="Files carrying a 'Code generated ... DO NOT EDIT.' marker.",
    run=run_generated,
    kind=AnalyzerKind.FACT,
)

DEPRECATED = AnalyzerDescriptor(
    identifier="facts.deprecated",
    doc="Functions whose documentation has a 'Deprecated: ' paragraph.",
    run=run_deprecated,
    kind=AnalyzerKind.FACT,
)

PURITY = AnalyzerDescriptor(
    identifier="facts.purity",
    doc="Functions with no side effects (arithmetic, comparisons and pure calls only).",
    run=run_purity,
    kind=AnalyzerKind.FACT,
)

VALUERANGES = AnalyzerDescriptor(
    identifier="valueranges",
    doc="Value ranges of every SSA value, computed by abstract interpretation.",
    run=run_valueranges,
    requires=("buildir",),
    kind=AnalyzerKind.FACT,
)

FACT_ANALYZERS = (BUILDIR, TOKENFILE, GENERATED, DEPRECATED, PURITY, VALUERANGES)
