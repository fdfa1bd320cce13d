"""
rangelint/factstore.py
══════════════════════

Write-once cache of analyzer results for the duration of one run.

A *fact* is the result one analyzer produced for one unit.  It is keyed
by ``(unit name, analyzer identifier)``, published exactly once and then
shared by reference with every dependent analyzer.  Failures are cached
too, so a failed analyzer is never retried for the same unit and its
dependents learn why their input is missing.  A fact also keeps the
diagnostics its analyzer reported, so asking for the same analyzer again
replays them instead of losing them.  Unit names must be unique within
one store.

Publication is guarded by a lock; readers only ever see completely
published entries.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple

from rangelint.errors import UnitError

logger = logging.getLogger(__name__)

FactKey = Tuple[str, str]


@dataclass(frozen=True)
class Fact:
    """Immutable record of one analyzer result for one unit."""

    unit: str
    analyzer: str
    result: Any
    diagnostics: Tuple[Any, ...] = ()

    @property
    def key(self) -> FactKey:
        return (self.unit, self.analyzer)


@dataclass(frozen=True)
class FailedFact:
    """Marker stored when an analyzer could not produce a result."""

    unit: str
    analyzer: str
    error: UnitError

    @property
    def key(self) -> FactKey:
        return (self.unit, self.analyzer)


class FactStore:
    """Cache of :class:`Fact` records keyed by ``(unit, analyzer)``.

    >>> store = FactStore()
    >>> store.publish("u", "buildir", {"f": None}).result
    {'f': None}
    >>> store.get("u", "buildir").analyzer
    'buildir'
    """

    def __init__(self) -> None:
        self._entries: Dict[FactKey, Any] = {}
        self._lock = threading.Lock()

    def publish(
        self, unit: str, analyzer: str, result: Any, diagnostics: Sequence[Any] = ()
    ) -> Fact:
        """Store ``result`` and the diagnostics reported while computing it.

        Raises ``KeyError`` if the key is already set.
        """
        fact = Fact(unit, analyzer, result, tuple(diagnostics))
        self._insert(fact)
        return fact

    def publish_failure(self, unit: str, analyzer: str, error: UnitError) -> FailedFact:
        failed = FailedFact(unit, analyzer, error)
        self._insert(failed)
        return failed

    def _insert(self, entry: Any) -> None:
        with self._lock:
            if entry.key in self._entries:
                raise KeyError(f"fact {entry.key!r} already published")
            self._entries[entry.key] = entry
        logger.debug("published %s for %s/%s", type(entry).__name__, entry.unit, entry.analyzer)

    def get(self, unit: str, analyzer: str) -> Optional[Fact]:
        """The published fact, or ``None`` if absent or failed."""
        entry = self._entries.get((unit, analyzer))
        return entry if isinstance(entry, Fact) else None

    def failure(self, unit: str, analyzer: str) -> Optional[FailedFact]:
        entry = self._entries.get((unit, analyzer))
        return entry if isinstance(entry, FailedFact) else None

    def has(self, unit: str, analyzer: str) -> bool:
        """Has the analyzer been settled (success or failure) for ``unit``?"""
        return (unit, analyzer) in self._entries

    def discard_unit(self, unit: str) -> None:
        """Forget every entry of ``unit`` (used when a unit is abandoned)."""
        with self._lock:
            for key in [k for k in self._entries if k[0] == unit]:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Fact]:
        with self._lock:
            entries = list(self._entries.values())
        return iter([e for e in entries if isinstance(e, Fact)])
