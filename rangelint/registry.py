"""
rangelint/registry.py
═════════════════════

The analyzer registry: a declarative table built once at startup.

Descriptors name their dependencies by identifier; the registry resolves
them into an index-based adjacency list over its own arena of
descriptors::

    _descriptors   [buildir, valueranges, facts.generated, SA1019, …]
    _deps          [[],      [0],         [],              [4, 0], …]

Validation happens in the constructor, before any unit is analysed:

  - identifiers are unique and well-formed
      CHECK: two upper-case letters and four digits   (``SA1019``)
      FACT:  lower-case dotted name                   (``facts.purity``)
  - documentation is non-empty and ``run`` is callable
  - every dependency is registered
  - the dependency graph is acyclic (Tarjan SCC; the error names the cycle)

After construction the registry is read-only.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set

from rangelint.analysis import AnalyzerDescriptor, AnalyzerKind
from rangelint.errors import (
    CyclicDependencyError,
    DuplicateAnalyzerError,
    InvalidAnalyzerError,
    UnknownAnalyzerError,
)
from rangelint.graphs import find_cycle, topological_order

logger = logging.getLogger(__name__)

CHECK_ID_RE = re.compile(r"^[A-Z]{2}\d{4}$")
FACT_ID_RE = re.compile(r"^[a-z][a-z0-9_]*(?:\.[a-z][a-z0-9_]*)*$")


class AnalyzerRegistry:
    """Immutable table of :class:`AnalyzerDescriptor` records.

    Usage
    -----
    >>> registry = AnalyzerRegistry(DEFAULT_ANALYZERS)
    >>> registry.get("SA1019").requires
    ('buildir', 'facts.generated', 'facts.deprecated')
    >>> registry.plan_order(["SA1019"])
    ['buildir', 'facts.generated', 'facts.deprecated', 'SA1019']
    """

    def __init__(self, descriptors: Iterable[AnalyzerDescriptor]) -> None:
        self._descriptors: List[AnalyzerDescriptor] = []
        self._index: Dict[str, int] = {}
        for desc in descriptors:
            self._validate_descriptor(desc)
            if desc.identifier in self._index:
                raise DuplicateAnalyzerError(desc.identifier)
            self._index[desc.identifier] = len(self._descriptors)
            self._descriptors.append(desc)

        self._deps: List[List[int]] = []
        for desc in self._descriptors:
            deps: List[int] = []
            for req in desc.requires:
                if req not in self._index:
                    raise UnknownAnalyzerError(req, referrer=desc.identifier)
                deps.append(self._index[req])
            self._deps.append(deps)

        cycle = find_cycle(self._deps)
        if cycle is not None:
            raise CyclicDependencyError([self._descriptors[i].identifier for i in cycle])
        logger.debug("registry built with %d analyzers", len(self._descriptors))

    @staticmethod
    def _validate_descriptor(desc: AnalyzerDescriptor) -> None:
        ident = desc.identifier
        pattern = CHECK_ID_RE if desc.kind is AnalyzerKind.CHECK else FACT_ID_RE
        if not isinstance(ident, str) or not pattern.match(ident):
            kind = desc.kind.value
            raise InvalidAnalyzerError(f"malformed {kind} identifier {ident!r}")
        if not desc.doc or not desc.doc.strip():
            raise InvalidAnalyzerError(f"analyzer {ident!r} has no documentation")
        if not callable(desc.run):
            raise InvalidAnalyzerError(f"analyzer {ident!r} has no run function")
        if len(set(desc.requires)) != len(desc.requires):
            raise InvalidAnalyzerError(f"analyzer {ident!r} lists a dependency twice")
        names = [o.name for o in desc.options]
        if len(set(names)) != len(names):
            raise InvalidAnalyzerError(f"analyzer {ident!r} declares an option twice")

    # ---- lookup ----------------------------------------------------------

    def get(self, identifier: str) -> AnalyzerDescriptor:
        try:
            return self._descriptors[self._index[identifier]]
        except KeyError:
            raise UnknownAnalyzerError(identifier) from None

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._index

    def __iter__(self) -> Iterator[AnalyzerDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def index_of(self, identifier: str) -> int:
        if identifier not in self._index:
            raise UnknownAnalyzerError(identifier)
        return self._index[identifier]

    @property
    def identifiers(self) -> List[str]:
        return [d.identifier for d in self._descriptors]

    def checks(self) -> List[AnalyzerDescriptor]:
        return [d for d in self._descriptors if d.kind is AnalyzerKind.CHECK]

    def dependencies(self, identifier: str) -> List[str]:
        """Direct dependencies of ``identifier`` in declaration order."""
        return [self._descriptors[i].identifier for i in self._deps[self.index_of(identifier)]]

    def closure(self, identifiers: Iterable[str]) -> Set[str]:
        """``identifiers`` plus everything they transitively require."""
        seen: Set[int] = set()
        stack = [self.index_of(i) for i in identifiers]
        while stack:
            v = stack.pop()
            if v in seen:
                continue
            seen.add(v)
            stack.extend(self._deps[v])
        return {self._descriptors[i].identifier for i in seen}

    def default_options(self, identifier: str) -> Dict[str, Any]:
        return {o.name: o.default for o in self.get(identifier).options}

    def documentation(self) -> Dict[str, str]:
        """Identifier → documentation, in declaration order."""
        return {d.identifier: d.doc for d in self._descriptors}

    def plan_order(self, targets: Iterable[str]) -> List[str]:
        wanted = self.closure(targets)
        idx = sorted(self._index[i] for i in wanted)
        local = {v: k for k, v in enumerate(idx)}
        deps = [[local[d] for d in self._deps[v]] for v in idx]
        return [self._descriptors[idx[k]].identifier for k in topological_order(deps)]


_default_registry: Optional[AnalyzerRegistry] = None
_default_lock = threading.Lock()


def default_registry() -> AnalyzerRegistry:
    """Process-wide registry of the built-in analyzers (built lazily)."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            from rangelint.analyzers import DEFAULT_ANALYZERS

            _default_registry = AnalyzerRegistry(DEFAULT_ANALYZERS)
        return _default_registry
