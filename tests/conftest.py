# tests/conftest.py
"""
Shared builders for the rangelint test-suite.

Units are written in the S-expression form read by
``rangelint.ir_loader`` so that the tests read like the inputs a
front-end would hand over.
"""

import textwrap
from typing import Callable, Sequence

import pytest

from rangelint.analysis import AnalyzerDescriptor, AnalyzerKind
from rangelint.ir import Unit
from rangelint.ir_loader import loads_unit


def make_unit(text: str) -> Unit:
    """Parse a single dedented ``(unit ...)`` form."""
    return loads_unit(textwrap.dedent(text))


def func_unit(body: str, name: str = "u", file_text: str = "package main\n") -> Unit:
    """Wrap one or more ``(func ...)`` forms in a unit with a ``main.go`` file."""
    return make_unit(
        f'(unit "{name}"\n'
        f'  (file "main.go" "{file_text}")\n'
        f"{textwrap.dedent(body)})"
    )


def fact(ident: str, run: Callable, requires: Sequence[str] = ()) -> AnalyzerDescriptor:
    return AnalyzerDescriptor(
        identifier=ident,
        doc=f"{ident} test fact",
        run=run,
        requires=tuple(requires),
        kind=AnalyzerKind.FACT,
    )


def check(ident: str, run: Callable, requires: Sequence[str] = (), options=()) -> AnalyzerDescriptor:
    return AnalyzerDescriptor(
        identifier=ident,
        doc=f"{ident} test check",
        run=run,
        requires=tuple(requires),
        options=tuple(options),
        kind=AnalyzerKind.CHECK,
    )


def noop(pass_):
    return None


# ── Canonical programs ──────────────────────────────────────────

# x := 5; for x < 100 { x = x * 2 }; f(x)
LOOP_SCENARIO = '''
(unit "scenario"
  (file "main.go" "package main

func run() {
    x := 5
    for x < 100 {
        x = x * 2
    }
    f(x)
}
")
  (func "main.run" :pos (3 1)
    (block 0 :succs (1)
      (jump))
    (block 1 :succs (2 3)
      (x phi 5 y)
      (c < x 100)
      (if c))
    (block 2 :succs (1)
      (y * x 2)
      (jump))
    (block 3
      (call "main.f" x :pos (8 5))
      (return))))
'''

# x := 0; for x < 10^12 { x++ }; f(x)
COUNTER_LOOP = '''
(unit "counter"
  (func "main.count"
    (block 0 :succs (1)
      (jump))
    (block 1 :succs (2 3)
      (x phi 0 y)
      (c < x 1000000000000)
      (if c))
    (block 2 :succs (1)
      (y + x 1)
      (jump))
    (block 3
      (call "main.f" x)
      (return))))
'''

# if n < 0 { neg(n) } else { pos(n) }
BRANCHES = '''
(unit "branches"
  (func "main.split" :params ((n int32))
    (block 0 :succs (1 2)
      (c < n 0)
      (if c))
    (block 1
      (call "main.neg" n)
      (return))
    (block 2
      (call "main.pos" n)
      (return))))
'''

SCENARIO_RULES = '''
; the loop leaves x at or above 100
(rule big-count
  :call "main.f" :arg 0
  :when "always >= 100"
  :message "{callee} called with {range}")
'''


@pytest.fixture
def scenario_unit() -> Unit:
    return make_unit(LOOP_SCENARIO)


@pytest.fixture
def counter_unit() -> Unit:
    return make_unit(COUNTER_LOOP)


@pytest.fixture
def branches_unit() -> Unit:
    return make_unit(BRANCHES)
