# rangelint/errors.py
"""
Error types for the rangelint engine.

Error Hierarchy:
────────────────
┌─────────────────────────────────────────────────────────────────────┐
│  RangelintError (base)                                              │
│  ├── ConfigurationError        - detected before any unit runs      │
│  │   ├── CyclicDependencyError - analyzer graph is not a DAG        │
│  │   ├── DuplicateAnalyzerError                                     │
│  │   ├── InvalidAnalyzerError  - bad identifier / empty doc         │
│  │   ├── UnknownAnalyzerError                                       │
│  │   ├── InvalidOptionError                                         │
│  │   ├── RuleSyntaxError       - predicate or rule-file errors      │
│  │   └── DuplicateUnitError    - two units of one run share a name  │
│  ├── UnitError                 - fatal for one unit only            │
│  │   ├── MalformedIRError                                           │
│  │   ├── DependencyUnsatisfiedError                                 │
│  │   ├── FixpointError                                              │
│  │   ├── UnitTimeoutError                                           │
│  │   └── AnalyzerFailure       - unexpected exception in a run      │
│  └── StalePassError            - Pass used after its invocation     │
└─────────────────────────────────────────────────────────────────────┘

Error Codes:
────────────
Each error class carries a code of the form ``RL-XXXX``:
  - 1000-1999: configuration errors
  - 2000-2999: per-unit errors
  - 9000-9999: internal misuse of the engine API

Imprecision (unknown ranges, unresolved indirect calls) is never an
error; it only suppresses rules.
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Optional, Sequence


@unique
class ErrorKind(Enum):
    """Coarse classification used in run reports."""

    CONFIGURATION = "configuration"
    MALFORMED_IR = "malformed-ir"
    DEPENDENCY_UNSATISFIED = "dependency-unsatisfied"
    FIXPOINT = "fixpoint"
    TIMEOUT = "timeout"
    ANALYZER_FAILURE = "analyzer-failure"
    INTERNAL = "internal"


# ═══════════════════════════════════════════════════════════════════════════
#  BASE
# ═══════════════════════════════════════════════════════════════════════════

class RangelintError(Exception):
    """Base exception for all rangelint errors."""

    code: str = "RL-0000"
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# ═══════════════════════════════════════════════════════════════════════════
#  CONFIGURATION ERRORS  (fatal for the whole run)
# ═══════════════════════════════════════════════════════════════════════════

class ConfigurationError(RangelintError):
    """Registry, option or rule-table problem found at startup."""

    code = "RL-1000"
    kind = ErrorKind.CONFIGURATION


class CyclicDependencyError(ConfigurationError):
    """The analyzer dependency graph contains a cycle."""

    code = "RL-1001"

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = tuple(cycle)
        path = " -> ".join(list(self.cycle) + [self.cycle[0]]) if self.cycle else ""
        super().__init__(f"dependency cycle between analyzers: {path}")


class DuplicateAnalyzerError(ConfigurationError):
    code = "RL-1002"

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"analyzer {identifier!r} registered more than once")


class InvalidAnalyzerError(ConfigurationError):
    code = "RL-1003"


class UnknownAnalyzerError(ConfigurationError):
    code = "RL-1004"

    def __init__(self, identifier: str, referrer: Optional[str] = None) -> None:
        self.identifier = identifier
        self.referrer = referrer
        if referrer:
            msg = f"analyzer {referrer!r} requires unknown analyzer {identifier!r}"
        else:
            msg = f"unknown analyzer {identifier!r}"
        super().__init__(msg)


class InvalidOptionError(ConfigurationError):
    code = "RL-1005"

    def __init__(self, option: str, value: object, reason: str) -> None:
        self.option = option
        self.value = value
        super().__init__(f"invalid value {value!r} for option {option!r}: {reason}")


class RuleSyntaxError(ConfigurationError):
    """A rule table or predicate expression could not be parsed."""

    code = "RL-1006"


class DuplicateUnitError(ConfigurationError):
    """Facts are keyed by unit name, so names must be unique within a run."""

    code = "RL-1007"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"unit {name!r} given more than once")


# ═══════════════════════════════════════════════════════════════════════════
#  PER-UNIT ERRORS  (fatal for one unit, the run continues)
# ═══════════════════════════════════════════════════════════════════════════

class UnitError(RangelintError):
    """An error that aborts analysis of a single unit."""

    code = "RL-2000"
    kind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        unit: Optional[str] = None,
        analyzer: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.unit = unit
        self.analyzer = analyzer


class MalformedIRError(UnitError):
    """The intermediate form violates an SSA well-formedness rule."""

    code = "RL-2001"
    kind = ErrorKind.MALFORMED_IR

    def __init__(
        self,
        message: str,
        *,
        function: Optional[str] = None,
        unit: Optional[str] = None,
        analyzer: Optional[str] = None,
    ) -> None:
        if function:
            message = f"{function}: {message}"
        super().__init__(message, unit=unit, analyzer=analyzer)
        self.function = function


class DependencyUnsatisfiedError(UnitError):
    """A required analyzer result is absent for this unit."""

    code = "RL-2002"
    kind = ErrorKind.DEPENDENCY_UNSATISFIED

    def __init__(
        self,
        dependency: str,
        *,
        reason: str = "",
        unit: Optional[str] = None,
        analyzer: Optional[str] = None,
    ) -> None:
        self.dependency = dependency
        msg = f"dependency {dependency!r} unsatisfied"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg, unit=unit, analyzer=analyzer)


class FixpointError(UnitError):
    code = "RL-2003"
    kind = ErrorKind.FIXPOINT


class UnitTimeoutError(UnitError):
    code = "RL-2004"
    kind = ErrorKind.TIMEOUT


class AnalyzerFailure(UnitError):
    """Wraps an unexpected exception raised by an analyzer's run function."""

    code = "RL-2005"
    kind = ErrorKind.ANALYZER_FAILURE


# ═══════════════════════════════════════════════════════════════════════════
#  API MISUSE
# ═══════════════════════════════════════════════════════════════════════════

class StalePassError(RangelintError):
    """A Pass was used after the analyzer invocation it belonged to ended."""

    code = "RL-9001"
