"""
rangelint/sexp.py
═════════════════

Shared helpers for the S-expression formats read by rangelint (SSA units
and rule tables).  Parsing is done by ``sexpdata``; these helpers give the
raw output a keyword-argument shape::

    (rule R1 :call "pkg.F" :arg 0)  →  positional [R1], {"call": ..., "arg": 0}

Every helper takes the exception class to raise, so each format reports
errors in its own taxonomy.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple, Type

import sexpdata
from sexpdata import Symbol

# Type alias for raw sexpdata output
Sexp = Any  # Union[list, Symbol, str, int, float]


def is_symbol(s: Sexp) -> bool:
    return isinstance(s, Symbol)


def symbol_name(s: Symbol) -> str:
    value = getattr(s, "value", None)
    if callable(value):
        return str(value())
    return str(s)


def is_keyword(s: Sexp) -> bool:
    return isinstance(s, Symbol) and symbol_name(s).startswith(":")


def as_text(s: Sexp, error: Type[Exception]) -> str:
    """Coerce *s* to a Python ``str``: accepts Symbol or string literal."""
    if isinstance(s, Symbol):
        return symbol_name(s)
    if isinstance(s, str):
        return s
    raise error(f"expected a name, got {type(s).__name__}: {s!r}")


def as_int(s: Sexp, error: Type[Exception]) -> int:
    if isinstance(s, int) and not isinstance(s, bool):
        return s
    raise error(f"expected an integer, got {type(s).__name__}: {s!r}")


def head(s: Sexp, error: Type[Exception]) -> str:
    """Return the head symbol name of a list form ``(tag ...)``."""
    if not isinstance(s, list) or not s:
        raise error(f"expected a non-empty list, got {s!r}")
    return as_text(s[0], error)


def loads_forms(text: str, error: Type[Exception]) -> List[Sexp]:
    """Parse every top-level form of ``text``.

    ``sexpdata`` reads a single form, so the stream is wrapped in one
    extra list that is stripped again.  ``nil`` and ``t`` stay symbols.
    """
    try:
        parsed = sexpdata.loads(f"({text}\n)", nil=None, true=None)
    except Exception as exc:
        raise error(f"cannot parse S-expression: {exc}") from exc
    return list(parsed)


def split_keywords(
    form: Sequence[Sexp], error: Type[Exception]
) -> Tuple[List[Sexp], Dict[str, Sexp]]:
    """Separate positional items from ``:keyword value`` pairs."""
    positional: List[Sexp] = []
    keywords: Dict[str, Sexp] = {}
    i = 0
    while i < len(form):
        item = form[i]
        if is_keyword(item):
            name = symbol_name(item)[1:]
            if i + 1 >= len(form):
                raise error(f"keyword :{name} has no value")
            if name in keywords:
                raise error(f"keyword :{name} given twice")
            keywords[name] = form[i + 1]
            i += 2
        else:
            positional.append(item)
            i += 1
    return positional, keywords
