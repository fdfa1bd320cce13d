"""
rangelint/config.py
═══════════════════

Tuning knobs for the analysis engine.

The values here trade precision for speed; none of them changes the
soundness of the range computation.  ``widening_delay`` and ``set_limit``
together decide how long a loop is iterated exactly before its ranges are
generalised.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

_ENV_PREFIX = "RANGELINT_"


@dataclass(frozen=True)
class EngineConfig:
    """Engine-wide configuration shared by the scheduler and the interpreter.

    Attributes
    ----------
    set_limit:
        Maximum size of an enumerated constant set before a join widens it
        to an interval.
    widening_delay:
        Number of visits to a loop head before widening is applied there.
    narrowing_passes:
        Decreasing passes run after the widening fixpoint.
    max_iterations:
        Safety bound on worklist iterations per function.
    workers:
        Number of units analysed concurrently (1 = sequential).
    unit_timeout:
        Seconds allotted to one unit, or ``None`` for no budget.
    """

    set_limit: int = 8
    widening_delay: int = 2
    narrowing_passes: int = 2
    max_iterations: int = 100_000
    workers: int = 1
    unit_timeout: Optional[float] = None

    def validate(self) -> List[str]:
        """Return a list of validation warnings (empty if valid)."""
        warnings: List[str] = []
        if self.set_limit < 1:
            warnings.append("set_limit must be at least 1")
        if self.widening_delay < 0:
            warnings.append("widening_delay must be non-negative")
        if self.narrowing_passes < 0:
            warnings.append("narrowing_passes must be non-negative")
        if self.max_iterations <= 0:
            warnings.append("max_iterations must be positive")
        if self.workers < 1:
            warnings.append("workers must be at least 1")
        if self.unit_timeout is not None and self.unit_timeout <= 0:
            warnings.append("unit_timeout must be positive")
        return warnings

    def replace(self, **changes: Any) -> "EngineConfig":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "EngineConfig":
        """Build a config from a plain mapping, ignoring unknown keys."""
        known = {f.name: f for f in dataclasses.fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, raw in values.items():
            f = known.get(key)
            if f is None:
                logger.warning("EngineConfig: ignoring unknown setting %r", key)
                continue
            kwargs[key] = _coerce(key, raw)
        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Read ``RANGELINT_<FIELD>`` overrides from the environment."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            raw = environ.get(_ENV_PREFIX + f.name.upper())
            if raw is not None and raw != "":
                values[f.name] = raw
        return cls.from_mapping(values)


def _coerce(key: str, raw: Any) -> Any:
    if key == "unit_timeout":
        if raw is None or (isinstance(raw, str) and raw.lower() in ("", "none")):
            return None
        return float(raw)
    return int(raw)
