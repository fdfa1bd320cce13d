"""
rangelint/predicates.py
═══════════════════════

A small predicate language over :class:`~rangelint.ranges.Range` values,
used by rule tables to say *when* an argument is a misuse.

Syntax
──────
::

    always < 0                 every admitted value is negative
    may == 0                   zero is admitted
    always in {1, 2, 4}        every admitted value is listed
    may in {"", "utf-7"}       some listed value is admitted
    constant                   exactly one value
    unknown                    nothing is known
    matches "^[a-z]+$"         every admitted value is a string matching
    not (always >= 0) and constant
    may < 0 or may > 255

``always`` is universal over the admitted values, ``may`` existential.
Comparison operators are ``< <= > >= == !=``; literals are integers,
double-quoted strings and ``true`` / ``false``.

Evaluation through :meth:`Predicate.holds` is guarded: an unreachable
range never satisfies a predicate, and neither does an unknown range
unless the predicate mentions ``unknown`` itself.  This is what keeps
imprecision from turning into false positives.

The grammar is a parsimonious PEG; :class:`PredicateBuilder` turns the
parse tree into evaluator nodes.
"""

from __future__ import annotations

import ast
import functools
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Tuple

from parsimonious.exceptions import ParseError, VisitationError
from parsimonious.grammar import Grammar
from parsimonious.nodes import NodeVisitor

from rangelint.errors import RuleSyntaxError
from rangelint.ranges import Range

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — GRAMMAR
# ═══════════════════════════════════════════════════════════════════

PREDICATE_GRAMMAR = Grammar(r'''
    expr            = _ or_expr _

    or_expr         = and_expr (_ "or" !ident_char _ and_expr)*
    and_expr        = not_expr (_ "and" !ident_char _ not_expr)*
    not_expr        = negation / atom
    negation        = "not" !ident_char _ not_expr

    atom            = group / comparison / membership / constant / unknown / matches
    group           = "(" _ or_expr _ ")"
    comparison      = quantifier _ cmp_op _ literal
    membership      = quantifier _ "in" !ident_char _ "{" _ literal_list _ "}"
    literal_list    = literal (_ "," _ literal)*
    quantifier      = ("always" / "may") !ident_char
    cmp_op          = "<=" / ">=" / "==" / "!=" / "<" / ">"
    constant        = "constant" !ident_char
    unknown         = "unknown" !ident_char
    matches         = "matches" !ident_char _ string

    literal         = number / string / boolean
    boolean         = ("true" / "false") !ident_char
    number          = ~"-?[0-9]+"
    string          = ~r'"(?:[^"\\]|\\.)*"'
    ident_char      = ~"[A-Za-z0-9_]"
    _               = ~r"\s*"
''')


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — EVALUATOR NODES
# ═══════════════════════════════════════════════════════════════════

_COMPARE: Dict[str, Callable[[Any, Any], bool]] = {
    "<": lambda x, y: x < y,
    "<=": lambda x, y: x <= y,
    ">": lambda x, y: x > y,
    ">=": lambda x, y: x >= y,
    "==": lambda x, y: x == y,
    "!=": lambda x, y: x != y,
}


def _same_family(value: Any, literal: Any) -> bool:
    if isinstance(value, bool) or isinstance(literal, bool):
        return isinstance(value, bool) and isinstance(literal, bool)
    if isinstance(value, (int, float)) and isinstance(literal, (int, float)):
        return True
    return type(value) is type(literal)


class Node:
    """Base class of predicate tree nodes."""

    def evaluate(self, r: Range) -> bool:
        raise NotImplementedError

    def mentions_unknown(self) -> bool:
        return False


@dataclass(frozen=True)
class Compare(Node):
    quantifier: str
    op: str
    literal: Any

    def evaluate(self, r: Range) -> bool:
        if r.is_unknown:
            return self.quantifier == "may"
        cmp = _COMPARE[self.op]
        if r.is_constant_set:
            values = r.values
            if not all(_same_family(v, self.literal) for v in values):
                return self.op == "!="
            results = [cmp(v, self.literal) for v in values]
            return all(results) if self.quantifier == "always" else any(results)
        bounds = r.bounds()
        if bounds is None:
            return False
        if not _same_family(0, self.literal):
            return self.op == "!="
        lo, hi = bounds
        n = self.literal
        if self.quantifier == "always":
            return {
                "<": hi < n,
                "<=": hi <= n,
                ">": lo > n,
                ">=": lo >= n,
                "==": lo == hi == n,
                "!=": n < lo or n > hi,
            }[self.op]
        return {
            "<": lo < n,
            "<=": lo <= n,
            ">": hi > n,
            ">=": hi >= n,
            "==": lo <= n <= hi,
            "!=": not (lo == hi == n),
        }[self.op]


@dataclass(frozen=True)
class Member(Node):
    quantifier: str
    literals: FrozenSet[Any]

    def evaluate(self, r: Range) -> bool:
        if r.is_unknown:
            return self.quantifier == "may"
        if self.quantifier == "may":
            return any(r.contains(lit) for lit in self.literals)
        if r.is_constant_set:
            return all(
                any(_same_family(v, lit) and v == lit for lit in self.literals)
                for v in r.values
            )
        if not r.is_bounded:
            return False
        lo, hi = r.bounds()  # type: ignore[misc]
        if hi - lo + 1 > len(self.literals):
            return False
        return all(v in self.literals for v in range(int(lo), int(hi) + 1))


class Constant(Node):
    def evaluate(self, r: Range) -> bool:
        return r.is_singleton

    def __repr__(self) -> str:
        return "Constant()"


class Unknown(Node):
    def evaluate(self, r: Range) -> bool:
        return r.is_unknown

    def mentions_unknown(self) -> bool:
        return True

    def __repr__(self) -> str:
        return "Unknown()"


@dataclass(frozen=True)
class Matches(Node):
    pattern: str

    def evaluate(self, r: Range) -> bool:
        if not r.is_constant_set or r.family != "str":
            return False
        rx = re.compile(self.pattern)
        return all(rx.search(v) is not None for v in r.values)


@dataclass(frozen=True)
class Not(Node):
    operand: Node

    def evaluate(self, r: Range) -> bool:
        return not self.operand.evaluate(r)

    def mentions_unknown(self) -> bool:
        return self.operand.mentions_unknown()


@dataclass(frozen=True)
class And(Node):
    operands: Tuple[Node, ...]

    def evaluate(self, r: Range) -> bool:
        return all(o.evaluate(r) for o in self.operands)

    def mentions_unknown(self) -> bool:
        return any(o.mentions_unknown() for o in self.operands)


@dataclass(frozen=True)
class Or(Node):
    operands: Tuple[Node, ...]

    def evaluate(self, r: Range) -> bool:
        return any(o.evaluate(r) for o in self.operands)

    def mentions_unknown(self) -> bool:
        return any(o.mentions_unknown() for o in self.operands)


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — PARSE TREE → PREDICATE
# ═══════════════════════════════════════════════════════════════════

def _repeated(children: Any) -> List[Any]:
    """Visited children of a ``(...)*`` node (a bare node when empty)."""
    return children if isinstance(children, list) else []


class PredicateBuilder(NodeVisitor):
    """Transforms the parsimonious parse tree into :class:`Node` objects."""

    grammar = PREDICATE_GRAMMAR
    unwrapped_exceptions = (RuleSyntaxError,)

    def generic_visit(self, node, visited_children):
        return visited_children or node

    def visit_expr(self, node, visited_children):
        _, value, _ = visited_children
        return value

    def visit_or_expr(self, node, visited_children):
        first, rest = visited_children
        operands = [first] + [group[-1] for group in _repeated(rest)]
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def visit_and_expr(self, node, visited_children):
        first, rest = visited_children
        operands = [first] + [group[-1] for group in _repeated(rest)]
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def visit_not_expr(self, node, visited_children):
        return visited_children[0]

    def visit_negation(self, node, visited_children):
        return Not(visited_children[-1])

    def visit_atom(self, node, visited_children):
        return visited_children[0]

    def visit_group(self, node, visited_children):
        return visited_children[2]

    def visit_comparison(self, node, visited_children):
        quantifier, _, op, _, literal = visited_children
        return Compare(quantifier, op, literal)

    def visit_membership(self, node, visited_children):
        return Member(visited_children[0], frozenset(visited_children[7]))

    def visit_literal_list(self, node, visited_children):
        first, rest = visited_children
        return [first] + [group[-1] for group in _repeated(rest)]

    def visit_quantifier(self, node, visited_children):
        return node.text

    def visit_cmp_op(self, node, visited_children):
        return node.text

    def visit_constant(self, node, visited_children):
        return Constant()

    def visit_unknown(self, node, visited_children):
        return Unknown()

    def visit_matches(self, node, visited_children):
        pattern = visited_children[-1]
        try:
            re.compile(pattern)
        except re.error as exc:
            raise RuleSyntaxError(f"invalid regular expression {pattern!r}: {exc}") from exc
        return Matches(pattern)

    def visit_literal(self, node, visited_children):
        return visited_children[0]

    def visit_boolean(self, node, visited_children):
        return node.text == "true"

    def visit_number(self, node, visited_children):
        return int(node.text)

    def visit_string(self, node, visited_children):
        return ast.literal_eval(node.text)


# ═══════════════════════════════════════════════════════════════════
#  PART 4 — PUBLIC API
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Predicate:
    """A compiled predicate; remembers its source text."""

    source: str
    root: Node

    @property
    def targets_unknown(self) -> bool:
        return self.root.mentions_unknown()

    def __call__(self, r: Range) -> bool:
        return self.root.evaluate(r)

    def holds(self, r: Range) -> bool:
        """Guarded evaluation: never true on ⊥, on ⊤ only if asked for."""
        if r.is_unreachable:
            return False
        if r.is_unknown and not self.targets_unknown:
            return False
        return self.root.evaluate(r)

    def __str__(self) -> str:
        return self.source


@functools.lru_cache(maxsize=256)
def compile_predicate(text: str) -> Predicate:
    """Parse ``text`` into a :class:`Predicate`.

    Raises
    ------
    RuleSyntaxError
        If ``text`` is not a valid predicate.
    """
    try:
        tree = PREDICATE_GRAMMAR.parse(text)
        root = PredicateBuilder().visit(tree)
    except ParseError as exc:
        raise RuleSyntaxError(f"invalid predicate {text!r}: {exc}") from exc
    except VisitationError as exc:
        raise RuleSyntaxError(f"invalid predicate {text!r}: {exc}") from exc
    logger.debug("compiled predicate %r", text)
    return Predicate(text.strip(), root)
