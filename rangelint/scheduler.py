"""
rangelint/scheduler.py
══════════════════════

Runs analyzers over units in dependency order.

    targets ──► plan() ──► [buildir, facts.generated, valueranges, SA1000]
                                    │
             ┌──────────────────────┼──────────────────────┐
             ▼                      ▼                      ▼
          unit A                 unit B                 unit C      (threads)
      for analyzer in plan:  …                      …
        deps settled?  ── failed dep ──► skip, "dependency unsatisfied"
        run(Pass)      ── exception  ──► failure, diagnostics dropped
        publish Fact
             │
             ▼
         UnitReport ──► RunReport (unit order, sorted diagnostics)

Every analyzer runs at most once per unit per run; its Result is published
in the :class:`~rangelint.factstore.FactStore` and shared by reference.
Analyzers already settled on the store are not rerun: their diagnostics
and failures are replayed from the store.  Unit names are unique per run.
Only the requested targets contribute diagnostics.  A failure is local to
``(unit, analyzer)``: unrelated analyzers and other units continue.  A
unit whose time budget runs out is abandoned as a whole.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from rangelint.analysis import AnalyzerDescriptor, Diagnostic, Pass
from rangelint.config import EngineConfig
from rangelint.errors import (
    AnalyzerFailure,
    DependencyUnsatisfiedError,
    DuplicateUnitError,
    ErrorKind,
    UnitError,
    UnitTimeoutError,
)
from rangelint.factstore import FactStore
from rangelint.ir import Unit
from rangelint.options import resolve_options
from rangelint.registry import AnalyzerRegistry, default_registry

logger = logging.getLogger(__name__)

# Key in the options mapping whose values apply to every analyzer that
# declares an option of that name.
ALL_ANALYZERS = "*"

OptionsMapping = Mapping[str, Mapping[str, Any]]


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — REPORTS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class UnitFailure:
    """One analyzer that produced no Result for one unit."""

    unit: str
    analyzer: str
    kind: ErrorKind
    message: str
    code: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit": self.unit,
            "analyzer": self.analyzer,
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
        }

    @classmethod
    def from_error(cls, unit: str, analyzer: str, error: UnitError) -> "UnitFailure":
        return cls(unit, analyzer, error.kind, error.message, error.code)


@dataclass
class UnitReport:
    unit: str
    diagnostics: List[Diagnostic] = field(default_factory=list)
    failures: List[UnitFailure] = field(default_factory=list)
    timed_out: bool = False
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class RunReport:
    """Outcome of :meth:`DependencyScheduler.run`, in unit order."""

    targets: List[str]
    units: List[UnitReport] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return sorted(d for u in self.units for d in u.diagnostics)

    @property
    def failures(self) -> List[UnitFailure]:
        return [f for u in self.units for f in u.failures]

    @property
    def ok(self) -> bool:
        return all(u.ok for u in self.units)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targets": list(self.targets),
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "failures": [f.to_dict() for f in self.failures],
        }


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — THE SCHEDULER
# ═══════════════════════════════════════════════════════════════════════════

class DependencyScheduler:
    """Orders and runs analyzers.

    Parameters
    ----------
    registry : AnalyzerRegistry, optional
        Defaults to :func:`~rangelint.registry.default_registry`.
    config : EngineConfig, optional
        Worker count, per-unit timeout and interpreter knobs.
    """

    def __init__(
        self,
        registry: Optional[AnalyzerRegistry] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.registry = registry if registry is not None else default_registry()
        self.config = config or EngineConfig()
        for warning in self.config.validate():
            logger.warning("EngineConfig: %s", warning)
        self.store = FactStore()
        self._units: Dict[str, Unit] = {}

    # ---- planning --------------------------------------------------------

    def plan(self, targets: Iterable[str]) -> List[AnalyzerDescriptor]:
        """Linear order in which every analyzer follows its dependencies.

        Raises
        ------
        UnknownAnalyzerError
            If a target is not registered.
        """
        order = self.registry.plan_order(list(targets))
        return [self.registry.get(i) for i in order]

    def resolve_options(
        self,
        plan: Sequence[AnalyzerDescriptor],
        options: Optional[OptionsMapping] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """Parse option values for every analyzer of ``plan``.

        Raises
        ------
        UnknownAnalyzerError, InvalidOptionError
        """
        options = options or {}
        for key in options:
            if key != ALL_ANALYZERS:
                self.registry.get(key)
        shared = options.get(ALL_ANALYZERS, {})
        resolved: Dict[str, Dict[str, Any]] = {}
        for desc in plan:
            declared = {o.name for o in desc.options}
            supplied = {k: v for k, v in shared.items() if k in declared}
            supplied.update(options.get(desc.identifier, {}))
            resolved[desc.identifier] = resolve_options(desc.identifier, desc.options, supplied)
        return resolved

    # ---- execution -------------------------------------------------------

    def _lookup(self, unit: Unit, analyzer: str):
        def lookup(identifier: str) -> Any:
            fact = self.store.get(unit.name, identifier)
            if fact is not None:
                return fact.result
            failed = self.store.failure(unit.name, identifier)
            reason = f"{identifier} failed: {failed.error.message}" if failed else "no result"
            raise DependencyUnsatisfiedError(
                identifier, reason=reason, unit=unit.name, analyzer=analyzer
            )
        return lookup

    def _unsatisfied(self, unit: Unit, desc: AnalyzerDescriptor) -> Optional[str]:
        for dep in desc.requires:
            if self.store.get(unit.name, dep) is None:
                return dep
        return None

    def _run_one(
        self,
        unit: Unit,
        desc: AnalyzerDescriptor,
        options: Mapping[str, Any],
        deadline: Optional[float],
    ) -> Tuple[List[Diagnostic], Optional[UnitFailure]]:
        ident = desc.identifier
        missing = self._unsatisfied(unit, desc)
        if missing is not None:
            err = DependencyUnsatisfiedError(
                missing, reason="required analyzer failed", unit=unit.name, analyzer=ident
            )
            self.store.publish_failure(unit.name, ident, err)
            logger.warning("%s: skipping %s: %s", unit.name, ident, err.message)
            return [], UnitFailure.from_error(unit.name, ident, err)

        pass_ = Pass(desc, unit, self._lookup(unit, ident), options, self.config, deadline)
        t0 = time.monotonic()
        try:
            result = desc.run(pass_)
        except UnitTimeoutError:
            pass_.close()
            raise
        except UnitError as exc:
            pass_.close()
            if exc.unit is None:
                exc.unit = unit.name
            if exc.analyzer is None:
                exc.analyzer = ident
            return self._fail(unit, ident, exc)
        except Exception as exc:
            pass_.close()
            logger.debug("%s: %s raised", unit.name, ident, exc_info=True)
            err = AnalyzerFailure(f"{type(exc).__name__}: {exc}", unit=unit.name, analyzer=ident)
            return self._fail(unit, ident, err)

        diagnostics = pass_.close()
        self.store.publish(unit.name, ident, result, diagnostics)
        logger.debug(
            "%s: ran %s in %.3fs (%d diagnostic(s))",
            unit.name, ident, time.monotonic() - t0, len(diagnostics),
        )
        return diagnostics, None

    def _fail(
        self, unit: Unit, ident: str, err: UnitError
    ) -> Tuple[List[Diagnostic], Optional[UnitFailure]]:
        self.store.publish_failure(unit.name, ident, err)
        logger.warning("%s: analyzer %s failed: %s", unit.name, ident, err)
        return [], UnitFailure.from_error(unit.name, ident, err)

    def _claim(self, unit: Unit) -> None:
        """Bind ``unit.name`` to ``unit`` for the lifetime of the store.

        Raises
        ------
        DuplicateUnitError
            If a different unit with the same name was analysed before.
        """
        known = self._units.setdefault(unit.name, unit)
        if known is not unit and known != unit:
            raise DuplicateUnitError(unit.name)

    def _replay(self, unit: Unit, ident: str, wanted: bool, report: UnitReport) -> None:
        """Report an analyzer settled earlier on this store as if it had just run."""
        failed = self.store.failure(unit.name, ident)
        if failed is not None:
            report.failures.append(UnitFailure.from_error(unit.name, ident, failed.error))
            return
        fact = self.store.get(unit.name, ident)
        if wanted and fact is not None:
            report.diagnostics.extend(fact.diagnostics)

    def _execute(
        self,
        unit: Unit,
        plan: Sequence[AnalyzerDescriptor],
        targets: Iterable[str],
        options: Mapping[str, Mapping[str, Any]],
    ) -> UnitReport:
        t0 = time.monotonic()
        deadline = None
        if self.config.unit_timeout is not None:
            deadline = t0 + self.config.unit_timeout
        wanted = set(targets)
        report = UnitReport(unit=unit.name)

        try:
            for desc in plan:
                if self.store.has(unit.name, desc.identifier):
                    self._replay(unit, desc.identifier, desc.identifier in wanted, report)
                    continue
                if deadline is not None and time.monotonic() > deadline:
                    raise UnitTimeoutError(
                        "time budget exhausted", unit=unit.name, analyzer=desc.identifier
                    )
                diags, failure = self._run_one(
                    unit, desc, options.get(desc.identifier, {}), deadline
                )
                if failure is not None:
                    report.failures.append(failure)
                elif desc.identifier in wanted:
                    report.diagnostics.extend(diags)
        except UnitTimeoutError as exc:
            logger.warning("%s: abandoned: %s", unit.name, exc)
            self.store.discard_unit(unit.name)
            report.diagnostics = []
            report.failures.append(
                UnitFailure.from_error(unit.name, exc.analyzer or "", exc)
            )
            report.timed_out = True

        report.diagnostics.sort()
        report.elapsed_seconds = time.monotonic() - t0
        return report

    def run_unit(
        self,
        unit: Unit,
        targets: Iterable[str],
        options: Optional[OptionsMapping] = None,
    ) -> UnitReport:
        """Run ``targets`` (and their dependencies) on a single unit.

        Facts already on the store are reused, so asking twice reports the
        same diagnostics without running anything again.
        """
        self._claim(unit)
        targets = list(targets)
        plan = self.plan(targets)
        resolved = self.resolve_options(plan, options)
        return self._execute(unit, plan, targets, resolved)

    def run(
        self,
        units: Iterable[Unit],
        targets: Optional[Iterable[str]] = None,
        options: Optional[OptionsMapping] = None,
    ) -> RunReport:
        """Analyse ``units`` with ``targets`` (default: every check).

        Configuration problems (unknown analyzers, bad option values,
        two units with the same name) are raised before any unit is
        analysed.  Facts from a previous run are discarded.

        Raises
        ------
        UnknownAnalyzerError, InvalidOptionError, DuplicateUnitError
        """
        t0 = time.monotonic()
        if targets is None:
            targets = [d.identifier for d in self.registry.checks()]
        targets = list(targets)
        plan = self.plan(targets)
        resolved = self.resolve_options(plan, options)
        units = list(units)
        seen: Set[str] = set()
        for unit in units:
            if unit.name in seen:
                raise DuplicateUnitError(unit.name)
            seen.add(unit.name)
        self.store = FactStore()
        self._units = {u.name: u for u in units}

        workers = max(1, self.config.workers)
        if workers == 1 or len(units) < 2:
            reports = [self._execute(u, plan, targets, resolved) for u in units]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rangelint") as pool:
                reports = list(pool.map(lambda u: self._execute(u, plan, targets, resolved), units))

        run = RunReport(targets=targets, units=reports, elapsed_seconds=time.monotonic() - t0)
        logger.info(
            "analysed %d unit(s) with %d analyzer(s): %d diagnostic(s), %d failure(s) in %.2fs",
            len(units), len(plan), len(run.diagnostics), len(run.failures), run.elapsed_seconds,
        )
        return run

    def result(
        self,
        unit: Unit,
        identifier: str,
        options: Optional[OptionsMapping] = None,
    ) -> Any:
        """The Result of ``identifier`` for ``unit``, computed on demand.

        A second request returns the cached Result without rerunning.

        Raises
        ------
        DependencyUnsatisfiedError
            If the analyzer (or one of its dependencies) failed.
        DuplicateUnitError
            If another unit with this name was analysed on this store.
        """
        self._claim(unit)
        fact = self.store.get(unit.name, identifier)
        if fact is not None:
            return fact.result
        if not self.store.has(unit.name, identifier):
            self.run_unit(unit, [identifier], options)
        fact = self.store.get(unit.name, identifier)
        if fact is None:
            failed = self.store.failure(unit.name, identifier)
            reason = failed.error.message if failed else "no result"
            raise DependencyUnsatisfiedError(identifier, reason=reason, unit=unit.name)
        return fact.result
