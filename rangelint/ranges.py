"""
rangelint/ranges.py
═══════════════════

The value-range lattice and its transfer functions.

    ┌────────────────────────────────────────────────────────────────┐
    │                         UNKNOWN  (⊤)                           │
    │                 ┌──────────┴───────────┐                       │
    │           INTERVAL [lo, hi]      CONSTANTS {c₁ … cₖ}           │
    │                 └──────────┬───────────┘                       │
    │                       UNREACHABLE (⊥)                          │
    └────────────────────────────────────────────────────────────────┘

A :class:`Range` over-approximates the set of concrete values one SSA
value may hold.  Two finite shapes are tracked:

  - CONSTANTS: up to ``set_limit`` exact constants of one family
    (ints, strings, bools or floats; families never mix in a set)
  - INTERVAL:  closed integer interval, bounds may be ±∞

Ordering:
    ⊥ ⊑ r ⊑ ⊤ for every r
    S ⊑ T           ⟺  S ⊆ T
    S ⊑ [a, b]      ⟺  every s ∈ S is an int with a ≤ s ≤ b
    [a, b] ⊑ [c, d] ⟺  c ≤ a ∧ b ≤ d

Join:
    [a, b] ⊔ [c, d] = [min(a, c), max(b, d)]
    S ⊔ T           = S ∪ T   while |S ∪ T| ≤ set_limit, else the hull
                      (non-integer sets that overflow go to ⊤)

Normal forms: ``[n, n]`` is the singleton ``{n}``; ``[-∞, +∞]`` is ⊤;
bounds past ±2⁶⁴ saturate to ±∞, so interval arithmetic never grows
without limit in the abstract domain.

Widening (Cousot & Cousot 1977) with thresholds:

    [a, b] ∇ [c, d] = [ c < a ? max{t ∈ T | t ≤ c} : a,
                        d > b ? min{t ∈ T | t ≥ d} : b ]

falling back to ±∞ when no threshold applies.  Constant sets still below
``set_limit`` keep growing by union; their height is bounded.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Final,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

Bound = Union[int, float]

NEG_INF: Final[float] = float("-inf")
POS_INF: Final[float] = float("inf")

# Bounds beyond this magnitude saturate to ±∞.
MAX_BOUND: Final[int] = 2 ** 64

DEFAULT_SET_LIMIT: Final[int] = 8

# Shift counts above this are not folded.
_MAX_SHIFT: Final[int] = 64


# ═══════════════════════════════════════════════════════════════════════════
#  PART 0 — HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def _family(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "str"
    return type(value).__name__


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _saturate(x: Bound) -> Bound:
    if isinstance(x, float):
        if math.isnan(x):
            raise ValueError("NaN bound")
        if math.isinf(x):
            return x
        if x != int(x):
            raise ValueError(f"non-integral bound {x!r}")
        x = int(x)
    if x > MAX_BOUND:
        return POS_INF
    if x < -MAX_BOUND:
        return NEG_INF
    return x


def _fmt_bound(b: Bound) -> str:
    if b == NEG_INF:
        return "-inf"
    if b == POS_INF:
        return "+inf"
    return str(int(b))


def _sort_key(value: Any) -> Tuple[str, Any]:
    # sets never mix families, so values of one family are comparable
    return (_family(value), value)


class RangeKind(Enum):
    UNREACHABLE = "unreachable"
    CONSTANTS = "constants"
    INTERVAL = "interval"
    UNKNOWN = "unknown"


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — THE RANGE ELEMENT
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Range:
    """One element of the value-range lattice.

    Use the classmethod constructors; they keep every element in normal
    form so that structural equality is lattice equality.

    Examples
    --------
    >>> Range.interval(0, 10).join(Range.interval(5, 20))
    Range([0, 20])
    >>> Range.const(3).join(Range.const(4))
    Range({3, 4})
    >>> Range.interval(0, 10).widen(Range.interval(0, 11))
    Range([0, +inf])
    """

    kind: RangeKind
    lo: Bound = NEG_INF
    hi: Bound = POS_INF
    values: FrozenSet[Any] = frozenset()

    # ---- Constructors ----------------------------------------------------

    @classmethod
    def unknown(cls) -> "Range":
        return _UNKNOWN

    @classmethod
    def unreachable(cls) -> "Range":
        return _UNREACHABLE

    @classmethod
    def const(cls, value: Any) -> "Range":
        return cls(RangeKind.CONSTANTS, values=frozenset((value,)))

    @classmethod
    def of(cls, values: Iterable[Any], limit: int = DEFAULT_SET_LIMIT) -> "Range":
        """The smallest range holding ``values``.

        Sets above ``limit`` become their integer hull, or unknown when the
        values are not integers.  Mixed families are unknown.
        """
        vals = frozenset(values)
        if not vals:
            return _UNREACHABLE
        families = {_family(v) for v in vals}
        if len(families) > 1:
            return _UNKNOWN
        if len(vals) <= limit:
            return cls(RangeKind.CONSTANTS, values=vals)
        if families == {"int"}:
            return cls.interval(min(vals), max(vals))
        return _UNKNOWN

    @classmethod
    def interval(cls, lo: Bound, hi: Bound) -> "Range":
        lo, hi = _saturate(lo), _saturate(hi)
        if lo > hi:
            return _UNREACHABLE
        if lo == NEG_INF and hi == POS_INF:
            return _UNKNOWN
        if lo == hi:
            return cls.const(int(lo))
        return cls(RangeKind.INTERVAL, lo=lo, hi=hi)

    @classmethod
    def at_least(cls, lo: Bound) -> "Range":
        return cls.interval(lo, POS_INF)

    @classmethod
    def at_most(cls, hi: Bound) -> "Range":
        return cls.interval(NEG_INF, hi)

    @classmethod
    def boolean(cls) -> "Range":
        return BOOL

    # ---- Predicates ------------------------------------------------------

    @property
    def is_unknown(self) -> bool:
        return self.kind is RangeKind.UNKNOWN

    @property
    def is_unreachable(self) -> bool:
        return self.kind is RangeKind.UNREACHABLE

    @property
    def is_constant_set(self) -> bool:
        return self.kind is RangeKind.CONSTANTS

    @property
    def is_interval(self) -> bool:
        return self.kind is RangeKind.INTERVAL

    @property
    def family(self) -> Optional[str]:
        """Value family of a constant set (``"int"``, ``"str"`` …)."""
        if self.kind is RangeKind.INTERVAL:
            return "int"
        if self.kind is RangeKind.CONSTANTS:
            return _family(next(iter(self.values)))
        return None

    @property
    def is_numeric(self) -> bool:
        """Integer-valued and finite in shape (interval or int set)."""
        return self.family == "int"

    @property
    def is_bounded(self) -> bool:
        b = self.bounds()
        return b is not None and math.isfinite(b[0]) and math.isfinite(b[1])

    def bounds(self) -> Optional[Tuple[Bound, Bound]]:
        """``(lo, hi)`` for integer ranges, ``None`` otherwise."""
        if self.kind is RangeKind.INTERVAL:
            return (self.lo, self.hi)
        if self.kind is RangeKind.CONSTANTS and self.family == "int":
            return (min(self.values), max(self.values))
        return None

    @property
    def constant(self) -> Any:
        """The single concrete value, or ``None``."""
        if self.kind is RangeKind.CONSTANTS and len(self.values) == 1:
            return next(iter(self.values))
        return None

    @property
    def is_singleton(self) -> bool:
        return self.kind is RangeKind.CONSTANTS and len(self.values) == 1

    def contains(self, value: Any) -> bool:
        """May the concrete ``value`` be held?  (Always true for ⊤.)"""
        if self.kind is RangeKind.UNKNOWN:
            return True
        if self.kind is RangeKind.UNREACHABLE:
            return False
        if self.kind is RangeKind.INTERVAL:
            return _is_int(value) and self.lo <= value <= self.hi
        return _family(value) == self.family and value in self.values

    def sorted_values(self) -> List[Any]:
        return sorted(self.values, key=_sort_key)

    # ---- Lattice operations ----------------------------------------------

    def leq(self, other: "Range") -> bool:
        """Partial order ``self ⊑ other``."""
        if self.is_unreachable or other.is_unknown:
            return True
        if other.is_unreachable or self.is_unknown:
            return False
        if self.is_constant_set:
            if other.is_constant_set:
                return self.family == other.family and self.values <= other.values
            return self.is_numeric and all(other.lo <= v <= other.hi for v in self.values)
        # self is an interval
        if other.is_interval:
            return other.lo <= self.lo and self.hi <= other.hi
        if other.family != "int" or not self.is_bounded:
            return False
        if self.hi - self.lo + 1 > len(other.values):
            return False
        return all(v in other.values for v in range(int(self.lo), int(self.hi) + 1))

    def join(self, other: "Range", limit: int = DEFAULT_SET_LIMIT) -> "Range":
        """Least upper bound (up to the set-size threshold)."""
        if self.is_unreachable:
            return other
        if other.is_unreachable:
            return self
        if self.is_unknown or other.is_unknown:
            return _UNKNOWN
        if self.is_constant_set and other.is_constant_set:
            if self.family != other.family:
                return _UNKNOWN
            return Range.of(self.values | other.values, limit)
        a, b = self.bounds(), other.bounds()
        if a is None or b is None:
            return _UNKNOWN
        return Range.interval(min(a[0], b[0]), max(a[1], b[1]))

    def meet(self, other: "Range") -> "Range":
        """Greatest lower bound; used to refine ranges on branch edges.

        Meeting with a range of a different family keeps ``self``: the
        result must never claim an edge infeasible without proof.
        """
        if self.is_unreachable or other.is_unreachable:
            return _UNREACHABLE
        if self.is_unknown:
            return other
        if other.is_unknown:
            return self
        if self.is_constant_set and other.is_constant_set:
            if self.family != other.family:
                return self
            return Range.of(self.values & other.values, max(len(self.values), 1))
        if self.is_constant_set:
            if not self.is_numeric:
                return self
            return Range.of(
                (v for v in self.values if other.lo <= v <= other.hi),
                max(len(self.values), 1),
            )
        if other.is_constant_set:
            if not other.is_numeric:
                return self
            return Range.of(
                (v for v in other.values if self.lo <= v <= self.hi),
                max(len(other.values), 1),
            )
        return Range.interval(max(self.lo, other.lo), min(self.hi, other.hi))

    def widen(
        self,
        other: "Range",
        thresholds: Sequence[int] = (),
        limit: int = DEFAULT_SET_LIMIT,
    ) -> "Range":
        """Widening ``self ∇ other`` with optional thresholds.

        ``thresholds`` must be sorted ascending.
        """
        if other.leq(self):
            return self
        if self.is_unreachable:
            return other
        joined = self.join(other, limit)
        if not joined.is_interval:
            return joined
        old = self.bounds()
        new = joined.bounds()
        assert new is not None
        if old is None:
            return joined
        lo, hi = old
        if new[0] < lo:
            lo = NEG_INF
            for t in thresholds:
                if t <= new[0]:
                    lo = t
                else:
                    break
        if new[1] > hi:
            hi = POS_INF
            for t in reversed(thresholds):
                if t >= new[1]:
                    hi = t
                else:
                    break
        return Range.interval(lo, hi)

    def narrow(self, other: "Range") -> "Range":
        """Narrowing ``self Δ other``: only infinite bounds are refined."""
        if self.is_unreachable:
            return self
        if other.leq(self):
            if self.is_interval or self.is_unknown:
                a = (NEG_INF, POS_INF) if self.is_unknown else (self.lo, self.hi)
                b = other.bounds()
                if b is None:
                    return other if self.is_unknown else self
                lo = b[0] if a[0] == NEG_INF else a[0]
                hi = b[1] if a[1] == POS_INF else a[1]
                narrowed = Range.interval(lo, hi)
                return other if other.leq(narrowed) and other.is_constant_set else narrowed
            return other
        return self

    # ---- Presentation ------------------------------------------------------

    def describe(self) -> str:
        if self.is_unknown:
            return "unknown"
        if self.is_unreachable:
            return "unreachable"
        if self.is_interval:
            return f"[{_fmt_bound(self.lo)}, {_fmt_bound(self.hi)}]"
        return "{" + ", ".join(repr(v) if isinstance(v, str) else str(v)
                               for v in self.sorted_values()) + "}"

    def __str__(self) -> str:
        return self.describe()

    def __repr__(self) -> str:
        return f"Range({self.describe()})"


_UNKNOWN = Range(RangeKind.UNKNOWN)
_UNREACHABLE = Range(RangeKind.UNREACHABLE)

TRUE = Range.const(True)
FALSE = Range.const(False)
BOOL = Range(RangeKind.CONSTANTS, values=frozenset((True, False)))


def join_all(ranges: Iterable[Range], limit: int = DEFAULT_SET_LIMIT) -> Range:
    result = _UNREACHABLE
    for r in ranges:
        result = result.join(r, limit)
    return result


def from_type(type_name: Optional[str]) -> Range:
    """Seed range for a value of a fixed-width integer type."""
    from rangelint.ir import INTEGER_TYPES

    if type_name is None:
        return _UNKNOWN
    if type_name == "bool":
        return BOOL
    bounds = INTEGER_TYPES.get(type_name)
    if bounds is None:
        return _UNKNOWN
    return Range.interval(*bounds)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — CONCRETE OPERATIONS  (used for exact constant folding)
# ═══════════════════════════════════════════════════════════════════════════

class _NoValue(Exception):
    """The concrete operation has no result (division by zero, …)."""


class _NotFoldable(Exception):
    """The operation cannot be folded for these operand types."""


def _trunc_div(x: int, y: int) -> int:
    q = abs(x) // abs(y)
    return q if (x >= 0) == (y >= 0) else -q


def _concrete_binary(op: str, x: Any, y: Any) -> Any:
    if _is_int(x) and _is_int(y):
        if op == "+":
            return x + y
        if op == "-":
            return x - y
        if op == "*":
            return x * y
        if op in ("/", "%"):
            if y == 0:
                raise _NoValue
            q = _trunc_div(x, y)
            return q if op == "/" else x - y * q
        if op == "&":
            return x & y
        if op == "|":
            return x | y
        if op == "^":
            return x ^ y
        if op in ("<<", ">>"):
            if y < 0:
                raise _NoValue
            if y > _MAX_SHIFT:
                raise _NotFoldable
            return x << y if op == "<<" else x >> y
    if isinstance(x, str) and isinstance(y, str) and op == "+":
        return x + y
    if isinstance(x, float) and isinstance(y, float) and op in ("+", "-", "*"):
        return {"+": x + y, "-": x - y, "*": x * y}[op]
    raise _NotFoldable


_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda x, y: x == y,
    "!=": lambda x, y: x != y,
    "<": lambda x, y: x < y,
    "<=": lambda x, y: x <= y,
    ">": lambda x, y: x > y,
    ">=": lambda x, y: x >= y,
}

NEGATED_OP: Dict[str, str] = {
    "<": ">=", "<=": ">", ">": "<=", ">=": "<", "==": "!=", "!=": "==",
}
SWAPPED_OP: Dict[str, str] = {
    "<": ">", "<=": ">=", ">": "<", ">=": "<=", "==": "==", "!=": "!=",
}


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — ABSTRACT ARITHMETIC
# ═══════════════════════════════════════════════════════════════════════════

def _fold(op: str, a: Range, b: Range, limit: int) -> Optional[Range]:
    """Exact evaluation over two small constant sets, or ``None``."""
    if not (a.is_constant_set and b.is_constant_set):
        return None
    if len(a.values) * len(b.values) > limit * limit:
        return None
    results = set()
    try:
        for x in a.values:
            for y in b.values:
                try:
                    results.add(_concrete_binary(op, x, y))
                except _NoValue:
                    continue
    except _NotFoldable:
        return None
    return Range.of(results, limit)


def _mul_bounds(a: Tuple[Bound, Bound], b: Tuple[Bound, Bound]) -> Tuple[Bound, Bound]:
    products = []
    for x in a:
        for y in b:
            p = x * y
            if isinstance(p, float) and math.isnan(p):
                p = 0  # ∞ · 0 contributes 0 in interval arithmetic
            products.append(p)
    return min(products), max(products)


def _div_segment(a: Tuple[Bound, Bound], b: Tuple[Bound, Bound]) -> Tuple[Bound, Bound]:
    """Truncating division by a divisor interval that excludes 0."""
    quotients: List[Bound] = []
    for x in a:
        for y in b:
            if math.isinf(x) and math.isinf(y):
                quotients.append(0)
                continue
            if math.isinf(y):
                quotients.append(0)
                continue
            if math.isinf(x):
                quotients.append(x if (x > 0) == (y > 0) else -x)
                continue
            quotients.append(_trunc_div(int(x), int(y)))
    return min(quotients), max(quotients)


def _interval_div(a: Tuple[Bound, Bound], b: Tuple[Bound, Bound]) -> Range:
    parts: List[Range] = []
    if b[0] <= -1:
        neg = (b[0], min(b[1], -1))
        parts.append(Range.interval(*_div_segment(a, neg)))
    if b[1] >= 1:
        pos = (max(b[0], 1), b[1])
        parts.append(Range.interval(*_div_segment(a, pos)))
    return join_all(parts)


def _interval_mod(a: Tuple[Bound, Bound], b: Tuple[Bound, Bound]) -> Range:
    if b == (0, 0):
        return _UNREACHABLE
    m = max(abs(b[0]), abs(b[1]))
    cap = m - 1
    if a[0] >= 0:
        return Range.interval(0, min(a[1], cap))
    if a[1] <= 0:
        return Range.interval(max(a[0], -cap), 0)
    return Range.interval(max(a[0], -cap), min(a[1], cap))


def _shift_right(x: Bound, k: int) -> Bound:
    if math.isinf(x):
        return x
    return int(x) >> k


def binary(op: str, a: Range, b: Range, limit: int = DEFAULT_SET_LIMIT) -> Range:
    """Abstract ``a OP b`` for arithmetic and bitwise operators."""
    if a.is_unreachable or b.is_unreachable:
        return _UNREACHABLE
    folded = _fold(op, a, b, limit)
    if folded is not None:
        return folded
    ab, bb = a.bounds(), b.bounds()
    if ab is None or bb is None:
        return _UNKNOWN

    if op == "+":
        return Range.interval(ab[0] + bb[0], ab[1] + bb[1])
    if op == "-":
        return Range.interval(ab[0] - bb[1], ab[1] - bb[0])
    if op == "*":
        return Range.interval(*_mul_bounds(ab, bb))
    if op == "/":
        return _interval_div(ab, bb)
    if op == "%":
        return _interval_mod(ab, bb)
    if op == "&":
        if ab[0] >= 0 and bb[0] >= 0:
            return Range.interval(0, min(ab[1], bb[1]))
        if ab[0] >= 0:
            return Range.interval(0, ab[1])
        if bb[0] >= 0:
            return Range.interval(0, bb[1])
        return _UNKNOWN
    if op in ("|", "^"):
        if ab[0] >= 0 and bb[0] >= 0 and math.isfinite(ab[1]) and math.isfinite(bb[1]):
            width = max(int(ab[1]), int(bb[1])).bit_length()
            lo = max(ab[0], bb[0]) if op == "|" else 0
            return Range.interval(lo, (1 << width) - 1)
        return _UNKNOWN
    if op == "<<":
        if bb[0] < 0 or bb[1] > _MAX_SHIFT:
            return _UNKNOWN
        factor = (1 << int(bb[0]), 1 << int(bb[1]))
        return Range.interval(*_mul_bounds(ab, factor))
    if op == ">>":
        if bb[0] < 0:
            return _UNKNOWN
        k_lo = int(bb[0])
        k_hi = _MAX_SHIFT if math.isinf(bb[1]) else int(min(bb[1], _MAX_SHIFT))
        candidates = [
            _shift_right(x, k) for x in ab for k in (k_lo, k_hi)
        ]
        return Range.interval(min(candidates), max(candidates))
    return _UNKNOWN


def unary(op: str, a: Range, limit: int = DEFAULT_SET_LIMIT) -> Range:
    if a.is_unreachable:
        return _UNREACHABLE
    if op == "neg":
        if a.is_constant_set:
            if a.family in ("int", "float"):
                return Range.of((-v for v in a.values), limit)
            return _UNKNOWN
        if a.is_interval:
            return Range.interval(-a.hi, -a.lo)
        return _UNKNOWN
    if op == "not":
        if a.is_constant_set and a.family == "bool":
            return Range.of((not v for v in a.values), limit)
        return BOOL
    return _UNKNOWN


def compare(op: str, a: Range, b: Range, limit: int = DEFAULT_SET_LIMIT) -> Range:
    """Abstract comparison; the result is a subset of ``{True, False}``."""
    if a.is_unreachable or b.is_unreachable:
        return _UNREACHABLE
    cmp = _COMPARATORS[op]
    if (
        a.is_constant_set
        and b.is_constant_set
        and len(a.values) * len(b.values) <= limit * limit
    ):
        if op in ("==", "!=") or a.family == b.family:
            return Range.of(cmp(x, y) for x in a.values for y in b.values)
        return BOOL
    ab, bb = a.bounds(), b.bounds()
    if ab is None or bb is None:
        return BOOL
    if op in (">", ">="):
        return compare(SWAPPED_OP[op], b, a, limit)
    if op == "<":
        if ab[1] < bb[0]:
            return TRUE
        if ab[0] >= bb[1]:
            return FALSE
        return BOOL
    if op == "<=":
        if ab[1] <= bb[0]:
            return TRUE
        if ab[0] > bb[1]:
            return FALSE
        return BOOL
    disjoint = ab[1] < bb[0] or bb[1] < ab[0]
    if op == "==":
        return FALSE if disjoint else BOOL
    return TRUE if disjoint else BOOL


def refine(op: str, a: Range, b: Range) -> Range:
    """Narrow ``a`` assuming ``a OP b`` holds.

    ``refine("<", [-inf, +inf], {10})`` is ``[-inf, 9]``.  The result is
    unreachable when the assumption contradicts what is known.
    """
    if a.is_unreachable or b.is_unreachable:
        return _UNREACHABLE
    if op == "==":
        return a.meet(b)
    if op == "!=":
        v = b.constant
        if v is None or not b.is_singleton:
            return a
        if a.is_constant_set:
            if a.family != _family(v):
                return a
            return Range.of(a.values - {v}, max(len(a.values), 1))
        if a.is_interval and _is_int(v):
            if a.lo == v:
                return Range.interval(a.lo + 1, a.hi)
            if a.hi == v:
                return Range.interval(a.lo, a.hi - 1)
        return a
    bb = b.bounds()
    if bb is None:
        return a
    if op == "<":
        return a.meet(Range.at_most(bb[1] - 1))
    if op == "<=":
        return a.meet(Range.at_most(bb[1]))
    if op == ">":
        return a.meet(Range.at_least(bb[0] + 1))
    if op == ">=":
        return a.meet(Range.at_least(bb[0]))
    return a


def thresholds_for(constants: Iterable[int]) -> Tuple[int, ...]:
    """Widening thresholds: 0, ±1 and every constant with its neighbours."""
    points = {-1, 0, 1}
    for c in constants:
        if -MAX_BOUND <= c <= MAX_BOUND:
            points.update((c - 1, c, c + 1))
    return tuple(sorted(points))
