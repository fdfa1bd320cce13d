"""
rangelint/rules.py
══════════════════

Declarative call rules and the checker that applies them.

A rule says: *when a call targets function F and argument K's range
satisfies predicate P, report a defect*.  Rules are pure data; a table of
them is turned into an analyzer run function by :func:`call_checker`.

Rule files
──────────
::

    ; negative sizes are always a bug
    (rule negative-size
      :call "bytes.Repeat" :arg 1
      :when "may < 0 and always < 0"
      :message "{callee} called with negative count {range}")

    (rule bad-base
      :call "strconv.ParseInt" :arg 1
      :when "always in {1} or always > 36"
      :message "invalid base {range}"
      :since "1.0" :until "1.30")

``:since`` / ``:until`` bound the target versions a rule applies to
(``since ≤ target < until``).  Templates may use ``{range}``,
``{callee}`` and ``{arg}``.

Matching
────────
For every reachable static call, every rule keyed on the callee and the
argument index fires independently.  Indirect calls are skipped.  The
predicate is evaluated through :meth:`Predicate.holds`, so unknown and
unreachable ranges never produce a diagnostic unless a rule asks for
``unknown`` explicitly.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from rangelint.analysis import Diagnostic, Pass, RunFunction
from rangelint.errors import RuleSyntaxError
from rangelint.interp import UnitRanges
from rangelint.ir import OP_CALL_INDIRECT, Unit
from rangelint.options import TARGET_VERSION, format_version, parse_version
from rangelint.predicates import Predicate, compile_predicate
from rangelint.ranges import Range
from rangelint.sexp import as_int, as_text, head, loads_forms, split_keywords

logger = logging.getLogger(__name__)

_RULE_KEYWORDS = frozenset({"call", "arg", "when", "message", "since", "until"})


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — RULES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Rule:
    """One declarative call rule.

    Attributes
    ----------
    name      : str
    selector  : str              fully qualified callee, e.g. ``"bytes.Repeat"``
    arg       : int              zero-based argument index
    predicate : Predicate
    template  : str              message template
    since     : int or None      first target minor version the rule applies to
    until     : int or None      first target minor version it no longer applies to
    """

    name: str
    selector: str
    arg: int
    predicate: Predicate
    template: str
    since: Optional[int] = None
    until: Optional[int] = None

    def applies_to(self, version: Optional[int]) -> bool:
        """Does the rule apply when targeting minor ``version`` (``None`` = latest)?"""
        if version is None:
            return self.until is None
        if self.since is not None and version < self.since:
            return False
        if self.until is not None and version >= self.until:
            return False
        return True

    def matches(self, r: Range) -> bool:
        return self.predicate.holds(r)

    def render(self, r: Range, callee: str) -> str:
        return (
            self.template
            .replace("{range}", r.describe())
            .replace("{callee}", callee)
            .replace("{arg}", str(self.arg))
        )


def make_rule(
    name: str,
    selector: str,
    arg: int,
    when: str,
    message: str,
    since: Optional[str] = None,
    until: Optional[str] = None,
) -> Rule:
    """Build a :class:`Rule`, compiling its predicate.

    Raises
    ------
    RuleSyntaxError
        If the predicate or a version bound is malformed.
    """
    if not selector:
        raise RuleSyntaxError(f"rule {name!r}: empty call selector")
    if arg < 0:
        raise RuleSyntaxError(f"rule {name!r}: negative argument index {arg}")
    return Rule(
        name=name,
        selector=selector,
        arg=arg,
        predicate=compile_predicate(when),
        template=message,
        since=_version(name, "since", since),
        until=_version(name, "until", until),
    )


def _version(rule: str, key: str, raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        minor = parse_version(raw)
    except ValueError as exc:
        raise RuleSyntaxError(f"rule {rule!r}: bad :{key} {raw!r}: {exc}") from exc
    if minor is None:
        raise RuleSyntaxError(f"rule {rule!r}: :{key} must name a version")
    return minor


class RuleSet:
    """Rules indexed by callee, in declaration order.

    >>> rules = RuleSet([make_rule("r", "pkg.F", 0, "always < 0", "neg")])
    >>> [r.name for r in rules.for_callee("pkg.F")]
    ['r']
    """

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self._rules: List[Rule] = []
        self._by_callee: Dict[str, List[Rule]] = OrderedDict()
        for rule in rules:
            self.add(rule)

    def add(self, rule: Rule) -> None:
        if any(r.name == rule.name for r in self._rules):
            raise RuleSyntaxError(f"rule {rule.name!r} defined more than once")
        self._rules.append(rule)
        self._by_callee.setdefault(rule.selector, []).append(rule)

    def for_callee(self, callee: str) -> List[Rule]:
        return list(self._by_callee.get(callee, ()))

    def for_version(self, version: Optional[int]) -> "RuleSet":
        return RuleSet(r for r in self._rules if r.applies_to(version))

    @property
    def callees(self) -> List[str]:
        return list(self._by_callee)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — RULE FILES
# ═══════════════════════════════════════════════════════════════════════════

def _read_rule(form: Any) -> Rule:
    if head(form, RuleSyntaxError) != "rule":
        raise RuleSyntaxError(f"expected (rule ...), got ({head(form, RuleSyntaxError)} ...)")
    positional, keywords = split_keywords(form[1:], RuleSyntaxError)
    if len(positional) != 1:
        raise RuleSyntaxError(f"rule form needs exactly one name, got {positional!r}")
    name = as_text(positional[0], RuleSyntaxError)

    unknown = set(keywords) - _RULE_KEYWORDS
    if unknown:
        raise RuleSyntaxError(f"rule {name!r}: unknown keyword(s) {sorted(unknown)}")
    for required in ("call", "arg", "when", "message"):
        if required not in keywords:
            raise RuleSyntaxError(f"rule {name!r}: missing :{required}")

    def opt(key: str) -> Optional[str]:
        return as_text(keywords[key], RuleSyntaxError) if key in keywords else None

    return make_rule(
        name=name,
        selector=as_text(keywords["call"], RuleSyntaxError),
        arg=as_int(keywords["arg"], RuleSyntaxError),
        when=as_text(keywords["when"], RuleSyntaxError),
        message=as_text(keywords["message"], RuleSyntaxError),
        since=opt("since"),
        until=opt("until"),
    )


def loads_rules(text: str) -> RuleSet:
    """Parse a rule table from text.

    Raises
    ------
    RuleSyntaxError
    """
    rules = RuleSet(_read_rule(form) for form in loads_forms(text, RuleSyntaxError))
    logger.debug("loaded %d rule(s)", len(rules))
    return rules


def load_rules(path: Union[str, Path]) -> RuleSet:
    p = Path(path)
    logger.info("Loading rules from %s", p)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise RuleSyntaxError(f"cannot read rule file {p}: {exc}") from exc
    return loads_rules(text)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — CHECKER
# ═══════════════════════════════════════════════════════════════════════════

class CallRuleChecker:
    """Applies a :class:`RuleSet` to the call sites of a unit."""

    def __init__(self, rules: RuleSet) -> None:
        self.rules = rules

    def check(
        self,
        unit: Unit,
        ranges: UnitRanges,
        *,
        analyzer: str = "",
        version: Optional[int] = None,
    ) -> List[Diagnostic]:
        rules = self.rules.for_version(version)
        diagnostics: List[Diagnostic] = []
        for fn in unit.functions:
            fr = ranges.get(fn.name)
            if fr is None:
                continue
            for block, i, instr in fn.calls():
                if instr.op == OP_CALL_INDIRECT:
                    logger.debug("%s: skipping indirect call at %s", fn.name, instr.position)
                    continue
                candidates = rules.for_callee(instr.callee or "")
                if not candidates or not fr.is_reachable(block.index):
                    continue
                args = fr.args_at(block.index, i)
                if args is None:
                    continue
                for rule in candidates:
                    if rule.arg >= len(args):
                        continue
                    r = args[rule.arg]
                    if not rule.matches(r):
                        continue
                    position = instr.position if instr.position.is_valid else fn.position
                    diagnostics.append(Diagnostic(
                        position=position,
                        message=rule.render(r, instr.callee or ""),
                        analyzer=analyzer,
                        unit=unit.name,
                    ))
        return diagnostics


def call_checker(rules: RuleSet) -> RunFunction:
    """Adapt a rule table to an analyzer run function.

    The returned function reads ``valueranges``, ``facts.tokenfile`` and
    ``facts.generated``, honours the target-version option and drops
    diagnostics positioned in generated files.
    """
    checker = CallRuleChecker(rules)

    def run(pass_: Pass) -> None:
        ranges = pass_.result_of("valueranges")
        tokens = pass_.result_of("facts.tokenfile")
        generated = pass_.result_of("facts.generated")
        version = pass_.option(TARGET_VERSION)
        found = checker.check(
            pass_.unit, ranges, analyzer=pass_.analyzer.identifier, version=version
        )
        for diag in found:
            position = tokens.resolve(diag.position)
            if position.file in generated:
                logger.debug("dropping diagnostic in generated file %s", position.file)
                continue
            pass_.report(position, diag.message)
        logger.debug(
            "%s: %d rule(s) for %s, %d diagnostic(s)",
            pass_.unit.name, len(rules), format_version(version), len(found),
        )

    return run
