"""
rangelint/analysis.py
═════════════════════

The contract between the engine and an analyzer.

    AnalyzerDescriptor ── declared once, immutable
        identifier   "SA1019" (check) or "facts.purity" (fact)
        doc          non-empty documentation
        run          Callable[[Pass], Result]
        requires     identifiers whose Results this analyzer reads
        options      declared Option records

    Pass ── one invocation of one analyzer on one unit
        unit         the unit being analysed (read-only)
        result_of()  Results of *declared* dependencies only
        report()     diagnostic sink
        options      resolved option values
        config       EngineConfig

A Pass is only valid while ``run`` executes; afterwards every access
raises :class:`~rangelint.errors.StalePassError`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from rangelint.config import EngineConfig
from rangelint.errors import (
    DependencyUnsatisfiedError,
    StalePassError,
    UnitTimeoutError,
)
from rangelint.ir import NO_POSITION, Position, Unit
from rangelint.options import Option

SEVERITY_WARNING = "warning"


class AnalyzerKind(Enum):
    CHECK = "check"
    FACT = "fact"


# ═══════════════════════════════════════════════════════════════════════════
#  DIAGNOSTICS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Diagnostic:
    """A single finding.

    Attributes
    ----------
    position : Position
        Where the defect is (usually the call site).
    message  : str
        Rendered message.
    analyzer : str
        Identifier of the check that produced it.
    unit     : str
        Name of the analysed unit.
    severity : str
        Always ``"warning"``.
    """

    position: Position
    message: str
    analyzer: str = ""
    unit: str = ""
    severity: str = SEVERITY_WARNING

    def sort_key(self) -> Tuple[Any, ...]:
        p = self.position
        return (p.file, p.line, p.column, p.offset, self.analyzer, self.message)

    def __lt__(self, other: "Diagnostic") -> bool:
        return self.sort_key() < other.sort_key()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.position.file,
            "line": self.position.line,
            "column": self.position.column,
            "offset": self.position.offset,
            "severity": self.severity,
            "message": self.message,
            "analyzer": self.analyzer,
            "unit": self.unit,
        }

    def to_gcc_format(self) -> str:
        """GCC-style line: ``file:line:col: severity: message [ID]``."""
        return f"{self.position}: {self.severity}: {self.message} [{self.analyzer}]"


# ═══════════════════════════════════════════════════════════════════════════
#  DESCRIPTORS
# ═══════════════════════════════════════════════════════════════════════════

RunFunction = Callable[["Pass"], Any]


@dataclass(frozen=True)
class AnalyzerDescriptor:
    """Static declaration of an analyzer.

    ``requires`` is the ordered, explicit (possibly empty) list of
    identifiers this analyzer reads through :meth:`Pass.result_of`.
    """

    identifier: str
    doc: str
    run: RunFunction
    requires: Tuple[str, ...] = ()
    options: Tuple[Option, ...] = ()
    kind: AnalyzerKind = AnalyzerKind.CHECK

    def __post_init__(self) -> None:
        object.__setattr__(self, "requires", tuple(self.requires))
        object.__setattr__(self, "options", tuple(self.options))

    @property
    def title(self) -> str:
        """First line of the documentation."""
        return self.doc.strip().splitlines()[0] if self.doc.strip() else ""

    @property
    def is_check(self) -> bool:
        return self.kind is AnalyzerKind.CHECK

    def option(self, name: str) -> Optional[Option]:
        for o in self.options:
            if o.name == name:
                return o
        return None


# ═══════════════════════════════════════════════════════════════════════════
#  PASS
# ═══════════════════════════════════════════════════════════════════════════

class Pass:
    """Capability object handed to ``run`` for a single invocation.

    Parameters
    ----------
    analyzer : AnalyzerDescriptor
        The analyzer being run.
    unit : Unit
        The unit under analysis.
    lookup : callable(str) → Any
        Supplied by the scheduler; returns the Result of a dependency or
        raises :class:`DependencyUnsatisfiedError`.
    options : Mapping[str, Any]
        Resolved option values of this analyzer.
    config : EngineConfig
    deadline : float, optional
        ``time.monotonic()`` value at which the unit's budget runs out.
    """

    def __init__(
        self,
        analyzer: AnalyzerDescriptor,
        unit: Unit,
        lookup: Callable[[str], Any],
        options: Optional[Mapping[str, Any]] = None,
        config: Optional[EngineConfig] = None,
        deadline: Optional[float] = None,
    ) -> None:
        self._analyzer = analyzer
        self._unit = unit
        self._lookup = lookup
        self._options = dict(options or {})
        self._config = config or EngineConfig()
        self._deadline = deadline
        self._diagnostics: List[Diagnostic] = []
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise StalePassError(
                f"pass of {self._analyzer.identifier} on {self._unit.name} used after its run"
            )

    # ---- read-only views -------------------------------------------------

    @property
    def analyzer(self) -> AnalyzerDescriptor:
        self._check_open()
        return self._analyzer

    @property
    def unit(self) -> Unit:
        self._check_open()
        return self._unit

    @property
    def options(self) -> Dict[str, Any]:
        self._check_open()
        return dict(self._options)

    @property
    def config(self) -> EngineConfig:
        self._check_open()
        return self._config

    @property
    def deadline(self) -> Optional[float]:
        self._check_open()
        return self._deadline

    @property
    def closed(self) -> bool:
        return self._closed

    # ---- operations ------------------------------------------------------

    def option(self, name: str, default: Any = None) -> Any:
        self._check_open()
        return self._options.get(name, default)

    def result_of(self, identifier: str) -> Any:
        """Result of a declared dependency.

        Raises
        ------
        DependencyUnsatisfiedError
            If ``identifier`` is not in ``requires`` or produced no Result
            for this unit.
        """
        self._check_open()
        if identifier not in self._analyzer.requires:
            raise DependencyUnsatisfiedError(
                identifier,
                reason="not declared in requires",
                unit=self._unit.name,
                analyzer=self._analyzer.identifier,
            )
        return self._lookup(identifier)

    def report(self, position: Optional[Position], message: str) -> Diagnostic:
        self._check_open()
        diag = Diagnostic(
            position=position or NO_POSITION,
            message=message,
            analyzer=self._analyzer.identifier,
            unit=self._unit.name,
        )
        self._diagnostics.append(diag)
        return diag

    def check_deadline(self) -> None:
        """Raise :class:`UnitTimeoutError` if the unit's budget is spent."""
        self._check_open()
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise UnitTimeoutError(
                "time budget exhausted",
                unit=self._unit.name,
                analyzer=self._analyzer.identifier,
            )

    def close(self) -> List[Diagnostic]:
        """End the invocation and hand back what was reported."""
        self._closed = True
        diags, self._diagnostics = self._diagnostics, []
        return diags
