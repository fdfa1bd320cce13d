"""
rangelint/ir_loader.py
══════════════════════

Reader for the S-expression serialisation of SSA units.

The front-end that lowers source code to SSA lives outside this package;
it hands units over in this textual form (and the test-suite writes them
by hand).  Parsing is done with the ``sexpdata`` library.

Format
──────
::

    (unit "example"
      (file "main.go" "package main\\n...")
      (func "example.run"
        :params ((n int32) s)
        :file "main.go"
        :pos (3 1)
        :doc "Deprecated: use run2."
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
          (call "example.f" x :pos (9 2))
          (return))))

Inside an instruction the head is either an opcode (the instruction
defines no value) or the name of the value being defined followed by the
opcode.  Symbols are value names; integers, strings and the symbols
``true`` / ``false`` are constants.  ``call`` takes the callee as its first
argument, ``load`` takes the loaded symbol.  ``:pos (LINE COL [OFFSET])``
or ``:at OFFSET`` attach a source position.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from rangelint.errors import MalformedIRError
from rangelint.ir import (
    ALL_OPS,
    NO_POSITION,
    OP_CALL,
    OP_LOAD,
    BasicBlock,
    Const,
    Function,
    Instruction,
    Param,
    Position,
    SourceFile,
    Unit,
    compute_predecessors,
    const_name,
)
from rangelint.sexp import (
    as_int,
    as_text,
    head,
    is_symbol,
    loads_forms,
    split_keywords,
    symbol_name,
)

logger = logging.getLogger(__name__)


def _split(form: Sequence[Any]) -> Tuple[List[Any], Dict[str, Any]]:
    return split_keywords(form, MalformedIRError)


def _text(obj: Any) -> str:
    return as_text(obj, MalformedIRError)


def _head(form: Any) -> str:
    return head(form, MalformedIRError)


def _int(obj: Any) -> int:
    return as_int(obj, MalformedIRError)


def _list(obj: Any, what: str, function: Optional[str] = None) -> List[Any]:
    if not isinstance(obj, list):
        raise MalformedIRError(f"{what} must be a list, got {obj!r}", function=function)
    return obj


# ===================================================================
#  PART 1 — UNIT BUILDER
# ===================================================================

class _FunctionReader:
    """Builds one :class:`Function`, collecting its constants on the way."""

    def __init__(self, form: List[Any], default_file: str) -> None:
        positional, keywords = _split(form[1:])
        if not positional:
            raise MalformedIRError("func form without a name")
        self.name = _text(positional[0])
        self.file = _text(keywords["file"]) if "file" in keywords else default_file
        self.constants: Dict[str, Const] = {}
        self._keywords = keywords
        self._block_forms = positional[1:]

    def read(self) -> Function:
        params = tuple(
            self._param(p) for p in _list(self._keywords.get("params", []), ":params", self.name)
        )
        pos = self._position(self._keywords)

        raw_blocks: List[Tuple[int, Tuple[int, ...], Tuple[Instruction, ...]]] = []
        for bform in self._block_forms:
            if _head(bform) != "block":
                raise MalformedIRError(
                    f"unexpected form {_head(bform)!r}", function=self.name
                )
            raw_blocks.append(self._block(bform))
        raw_blocks.sort(key=lambda b: b[0])

        preds = compute_predecessors([succs for _, succs, _ in raw_blocks])
        blocks = tuple(
            BasicBlock(index=index, instructions=instrs, succs=succs, preds=preds[pos_])
            for pos_, (index, succs, instrs) in enumerate(raw_blocks)
        )
        doc = self._keywords.get("doc", "")
        return Function(
            name=self.name,
            blocks=blocks,
            params=params,
            constants=MappingProxyType(dict(self.constants)),
            position=pos,
            doc=doc if isinstance(doc, str) else "",
        )

    def _param(self, form: Any) -> Param:
        if isinstance(form, list):
            if len(form) != 2:
                raise MalformedIRError(f"bad parameter {form!r}", function=self.name)
            return Param(_text(form[0]), _text(form[1]))
        return Param(_text(form))

    def _position(self, keywords: Dict[str, Any]) -> Position:
        if "pos" in keywords:
            parts = keywords["pos"]
            if not isinstance(parts, list) or not 1 <= len(parts) <= 3:
                raise MalformedIRError(f"bad :pos {parts!r}", function=self.name)
            nums = [self._number(p) for p in parts] + [0, 0, -1][len(parts):]
            return Position(self.file, nums[0], nums[1], nums[2])
        if "at" in keywords:
            return Position(self.file, offset=self._number(keywords["at"]))
        return Position(self.file) if self.file else NO_POSITION

    def _number(self, obj: Any) -> int:
        try:
            return _int(obj)
        except MalformedIRError as exc:
            raise MalformedIRError(exc.message, function=self.name) from None

    def _constant(self, value: Any) -> str:
        name = const_name(value)
        self.constants.setdefault(name, Const(name, value))
        return name

    def _operand(self, obj: Any) -> str:
        if is_symbol(obj):
            text = symbol_name(obj)
            if text in ("true", "false"):
                return self._constant(text == "true")
            return text
        if isinstance(obj, (bool, int, float, str)):
            return self._constant(obj)
        raise MalformedIRError(f"unsupported operand {obj!r}", function=self.name)

    def _block(self, form: List[Any]) -> Tuple[int, Tuple[int, ...], Tuple[Instruction, ...]]:
        positional, keywords = _split(form[1:])
        if not positional or not isinstance(positional[0], int):
            raise MalformedIRError("block without an index", function=self.name)
        index = positional[0]
        succs = tuple(
            self._number(s) for s in _list(keywords.get("succs", []), ":succs", self.name)
        )
        instrs = tuple(self._instruction(i) for i in positional[1:])
        return index, succs, instrs

    def _instruction(self, form: Any) -> Instruction:
        if not isinstance(form, list) or not form:
            raise MalformedIRError(f"bad instruction {form!r}", function=self.name)
        positional, keywords = _split(form)
        if not positional:
            raise MalformedIRError(f"instruction without an opcode: {form!r}", function=self.name)
        first = _text(positional[0])
        if first in ALL_OPS:
            name, op, rest = None, first, positional[1:]
        else:
            if len(positional) < 2:
                raise MalformedIRError(f"instruction {first!r} has no opcode", function=self.name)
            name, op, rest = first, _text(positional[1]), positional[2:]

        callee: Optional[str] = None
        if op in (OP_CALL, OP_LOAD):
            if not rest:
                raise MalformedIRError(f"{op} without a target", function=self.name)
            callee, rest = _text(rest[0]), rest[1:]

        return Instruction(
            op=op,
            name=name,
            operands=tuple(self._operand(o) for o in rest),
            callee=callee,
            type=_text(keywords["type"]) if "type" in keywords else None,
            position=self._position(keywords),
        )


def _read_unit(form: List[Any]) -> Unit:
    positional, _ = _split(form[1:])
    if not positional:
        raise MalformedIRError("unit form without a name")
    name = _text(positional[0])
    try:
        return _build_unit(name, positional[1:])
    except MalformedIRError as exc:
        if exc.unit is None:
            exc.unit = name
        raise


def _build_unit(name: str, items: Sequence[Any]) -> Unit:
    files: List[SourceFile] = []
    func_forms: List[List[Any]] = []
    for item in items:
        tag = _head(item)
        if tag == "file":
            parts = item[1:]
            if not parts:
                raise MalformedIRError("file form without a name")
            text = parts[1] if len(parts) > 1 and isinstance(parts[1], str) else ""
            files.append(SourceFile(_text(parts[0]), text))
        elif tag == "func":
            func_forms.append(item)
        else:
            raise MalformedIRError(f"unexpected form {tag!r} in unit")

    default_file = files[0].name if files else ""
    functions = [_FunctionReader(fform, default_file).read() for fform in func_forms]
    return Unit(name=name, functions=tuple(functions), files=tuple(files))


# ===================================================================
#  PART 2 — PUBLIC API
# ===================================================================

def loads_units(
    text: str,
    errors: Optional[List[MalformedIRError]] = None,
    source: str = "",
) -> List[Unit]:
    """Parse every ``(unit ...)`` form in ``text``.

    Parameters
    ----------
    text:
        Zero or more ``(unit ...)`` forms.
    errors:
        When given, a malformed unit is appended here (its ``unit``
        attribute names it) and the remaining forms are still read.
        Otherwise the first malformed unit raises.
    source:
        Where ``text`` came from; used to label units that have no
        readable name.

    Raises
    ------
    MalformedIRError
        If ``text`` is not a sequence of S-expressions, or (without
        ``errors``) if any unit is malformed.
    """
    units: List[Unit] = []
    for n, form in enumerate(loads_forms(text, MalformedIRError), start=1):
        try:
            tag = _head(form)
            if tag != "unit":
                raise MalformedIRError(f"top-level form must be 'unit', got {tag!r}")
            units.append(_read_unit(form))
        except MalformedIRError as exc:
            if errors is None:
                raise
            if exc.unit is None:
                exc.unit = f"<unit {n} of {source}>" if source else f"<unit {n}>"
            logger.warning("%s: skipped: %s", exc.unit, exc)
            errors.append(exc)
    logger.debug("read %d unit(s)", len(units))
    return units


def loads_unit(text: str) -> Unit:
    """Parse text holding exactly one unit."""
    units = loads_units(text)
    if len(units) != 1:
        raise MalformedIRError(f"expected exactly one unit, found {len(units)}")
    return units[0]


def load_units(
    path: Union[str, Path],
    errors: Optional[List[MalformedIRError]] = None,
) -> List[Unit]:
    p = Path(path)
    logger.info("Loading units from %s", p)
    return loads_units(p.read_text(encoding="utf-8"), errors, source=p.name)
