"""
rangelint/ir.py
═══════════════

Single-assignment intermediate form consumed by the engine.

Building this form from source is the job of a compiler front-end and is
not done here; this module only fixes the shape the engine reads, plus a
well-formedness check.

    ┌──────────────────────────────────────────────────────────────┐
    │  Unit                                                        │
    │    ├── SourceFile*        (name, text)                       │
    │    └── Function*                                             │
    │          ├── Param*       values seeded from their type      │
    │          ├── Const*       values that are not instructions   │
    │          └── BasicBlock*  instructions, succs, preds         │
    │                └── Instruction   (name = Value identity)     │
    └──────────────────────────────────────────────────────────────┘

Operands refer to values by name.  A name is defined exactly once per
function: by a parameter, by a value-producing instruction, or as a
constant.  Blocks refer to each other by index, so the whole function is
an arena with index-based edges and no object cycles.

Invariants checked by :func:`validate_function`:

  - every operand names a defined value
  - no name is defined twice
  - phis come first in a block and have one operand per predecessor
  - every block ends in exactly one terminator (``if``/``jump``/``return``)
  - ``if`` has two successors (true edge first), ``jump`` one, ``return`` none
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from rangelint.errors import MalformedIRError

# ═══════════════════════════════════════════════════════════════════════════
#  OPCODES
# ═══════════════════════════════════════════════════════════════════════════

BINARY_OPS: FrozenSet[str] = frozenset(
    {"+", "-", "*", "/", "%", "&", "|", "^", "<<", ">>"}
)
COMPARE_OPS: FrozenSet[str] = frozenset({"==", "!=", "<", "<=", ">", ">="})
UNARY_OPS: FrozenSet[str] = frozenset({"neg", "not"})

OP_LOAD = "load"
OP_COPY = "copy"
OP_LEN = "len"
OP_PHI = "phi"
OP_CALL = "call"
OP_CALL_INDIRECT = "call-indirect"
OP_IF = "if"
OP_JUMP = "jump"
OP_RETURN = "return"

TERMINATORS: FrozenSet[str] = frozenset({OP_IF, OP_JUMP, OP_RETURN})
CALL_OPS: FrozenSet[str] = frozenset({OP_CALL, OP_CALL_INDIRECT})

VALUE_OPS: FrozenSet[str] = (
    BINARY_OPS
    | COMPARE_OPS
    | UNARY_OPS
    | frozenset({OP_LOAD, OP_COPY, OP_LEN, OP_PHI})
)

ALL_OPS: FrozenSet[str] = VALUE_OPS | CALL_OPS | TERMINATORS

# Fixed-width integer types whose bounds seed parameter ranges.
INTEGER_TYPES: Mapping[str, Tuple[int, int]] = MappingProxyType({
    "int8": (-(2 ** 7), 2 ** 7 - 1),
    "int16": (-(2 ** 15), 2 ** 15 - 1),
    "int32": (-(2 ** 31), 2 ** 31 - 1),
    "int64": (-(2 ** 63), 2 ** 63 - 1),
    "uint8": (0, 2 ** 8 - 1),
    "uint16": (0, 2 ** 16 - 1),
    "uint32": (0, 2 ** 32 - 1),
    "uint64": (0, 2 ** 64 - 1),
    "byte": (0, 2 ** 8 - 1),
    "bool": (0, 1),
})


# ═══════════════════════════════════════════════════════════════════════════
#  SOURCE POSITIONS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, order=True)
class Position:
    """A point in a source file.

    ``line``/``column`` are 1-based and 0 when unknown; ``offset`` is a byte
    offset into the file and -1 when unknown.  Either form may be supplied;
    the ``facts.tokenfile`` analyzer fills in one from the other.
    """

    file: str = ""
    line: int = 0
    column: int = 0
    offset: int = -1

    @property
    def is_valid(self) -> bool:
        return bool(self.file) and (self.line > 0 or self.offset >= 0)

    def __str__(self) -> str:
        if self.line:
            if self.column:
                return f"{self.file}:{self.line}:{self.column}"
            return f"{self.file}:{self.line}"
        if self.offset >= 0:
            return f"{self.file}:#{self.offset}"
        return self.file or "-"


NO_POSITION = Position()


@dataclass(frozen=True)
class SourceFile:
    name: str
    text: str = ""


# ═══════════════════════════════════════════════════════════════════════════
#  VALUES AND INSTRUCTIONS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Param:
    name: str
    type: Optional[str] = None


@dataclass(frozen=True)
class Const:
    """A constant value; constants are values but not instructions."""

    name: str
    value: Any


def const_name(value: Any) -> str:
    """Canonical value name for a literal constant."""
    return "#" + repr(value)


@dataclass(frozen=True)
class Instruction:
    """One SSA instruction.

    ``name`` is the Value this instruction defines, or ``None`` for
    instructions that produce nothing (terminators, calls whose result is
    discarded).  For ``call`` the static target is ``callee``; for
    ``call-indirect`` the first operand is the function value and the
    callee is unknown.  For ``load`` the loaded symbol is kept in
    ``callee``.
    """

    op: str
    name: Optional[str] = None
    operands: Tuple[str, ...] = ()
    callee: Optional[str] = None
    type: Optional[str] = None
    position: Position = NO_POSITION

    @property
    def is_terminator(self) -> bool:
        return self.op in TERMINATORS

    @property
    def is_call(self) -> bool:
        return self.op in CALL_OPS

    @property
    def is_phi(self) -> bool:
        return self.op == OP_PHI

    @property
    def args(self) -> Tuple[str, ...]:
        """Call arguments (the function value of an indirect call excluded)."""
        if self.op == OP_CALL_INDIRECT:
            return self.operands[1:]
        return self.operands

    def __str__(self) -> str:
        head = f"{self.name} = " if self.name else ""
        target = f" {self.callee}" if self.callee else ""
        ops = " ".join(self.operands)
        return f"{head}{self.op}{target} {ops}".rstrip()


@dataclass(frozen=True)
class BasicBlock:
    index: int
    instructions: Tuple[Instruction, ...]
    succs: Tuple[int, ...] = ()
    preds: Tuple[int, ...] = ()

    @property
    def terminator(self) -> Optional[Instruction]:
        if self.instructions and self.instructions[-1].is_terminator:
            return self.instructions[-1]
        return None

    def phis(self) -> Iterator[Instruction]:
        for instr in self.instructions:
            if not instr.is_phi:
                break
            yield instr


@dataclass(frozen=True)
class Function:
    """A function body in SSA form.  Block 0 is the entry."""

    name: str
    blocks: Tuple[BasicBlock, ...]
    params: Tuple[Param, ...] = ()
    constants: Mapping[str, Const] = field(default_factory=lambda: MappingProxyType({}))
    position: Position = NO_POSITION
    doc: str = ""

    @property
    def entry(self) -> BasicBlock:
        return self.blocks[0]

    def instructions(self) -> Iterator[Tuple[BasicBlock, int, Instruction]]:
        """Yield ``(block, index, instruction)`` for every instruction."""
        for block in self.blocks:
            for i, instr in enumerate(block.instructions):
                yield block, i, instr

    def calls(self) -> Iterator[Tuple[BasicBlock, int, Instruction]]:
        for block, i, instr in self.instructions():
            if instr.is_call:
                yield block, i, instr

    def definitions(self) -> Dict[str, Instruction]:
        return {
            instr.name: instr
            for _, _, instr in self.instructions()
            if instr.name is not None
        }

    def int_constants(self) -> List[int]:
        return [
            c.value for c in self.constants.values()
            if isinstance(c.value, int) and not isinstance(c.value, bool)
        ]


@dataclass(frozen=True)
class Unit:
    """The smallest thing an analyzer runs over.

    A unit is identified by ``name``; it is never mutated once built.
    """

    name: str
    functions: Tuple[Function, ...] = ()
    files: Tuple[SourceFile, ...] = ()

    def function(self, name: str) -> Optional[Function]:
        for fn in self.functions:
            if fn.name == name:
                return fn
        return None

    def file(self, name: str) -> Optional[SourceFile]:
        for f in self.files:
            if f.name == name:
                return f
        return None


# ═══════════════════════════════════════════════════════════════════════════
#  CONSTRUCTION HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def compute_predecessors(succs: Sequence[Sequence[int]]) -> List[Tuple[int, ...]]:
    """Derive predecessor lists from successor lists.

    A block that reaches the same successor along two edges appears twice,
    so phi arity always matches the number of incoming edges.
    """
    preds: List[List[int]] = [[] for _ in succs]
    for src, targets in enumerate(succs):
        for dst in targets:
            if 0 <= dst < len(preds):
                preds[dst].append(src)
    return [tuple(p) for p in preds]


def _operand_arity(instr: Instruction) -> Optional[Tuple[int, Optional[int]]]:
    op = instr.op
    if op in BINARY_OPS or op in COMPARE_OPS:
        return (2, 2)
    if op in UNARY_OPS or op in (OP_COPY, OP_LEN, OP_IF):
        return (1, 1)
    if op in (OP_LOAD, OP_JUMP):
        return (0, 0)
    if op == OP_RETURN:
        return (0, 1)
    if op == OP_CALL_INDIRECT:
        return (1, None)
    return None


def validate_function(fn: Function, *, unit: Optional[str] = None) -> None:
    """Check SSA well-formedness of ``fn``.

    Raises
    ------
    MalformedIRError
        On the first violation found.
    """

    def fail(msg: str) -> None:
        raise MalformedIRError(msg, function=fn.name, unit=unit)

    if not fn.blocks:
        fail("function has no blocks")

    defined: Counter = Counter(p.name for p in fn.params)
    defined.update(fn.constants.keys())
    for _, _, instr in fn.instructions():
        if instr.name is not None:
            defined[instr.name] += 1
    dupes = sorted(name for name, n in defined.items() if n > 1)
    if dupes:
        fail(f"value {dupes[0]!r} defined more than once")

    n_blocks = len(fn.blocks)
    expected_preds = compute_predecessors([b.succs for b in fn.blocks])
    for pos, block in enumerate(fn.blocks):
        if block.index != pos:
            fail(f"block at position {pos} has index {block.index}")
        if not block.instructions:
            fail(f"block {pos} is empty")
        for succ in block.succs:
            if not 0 <= succ < n_blocks:
                fail(f"block {pos} branches to missing block {succ}")
        if Counter(block.preds) != Counter(expected_preds[pos]):
            fail(f"block {pos}: predecessor list does not match the edges")

        seen_non_phi = False
        for i, instr in enumerate(block.instructions):
            where = f"block {pos}, instruction {i} ({instr.op})"
            if instr.op not in ALL_OPS:
                fail(f"{where}: unknown opcode")
            if instr.is_terminator and i != len(block.instructions) - 1:
                fail(f"{where}: terminator is not last in block")
            if instr.is_phi:
                if seen_non_phi:
                    fail(f"{where}: phi after non-phi instruction")
                if len(instr.operands) != len(block.preds):
                    fail(
                        f"{where}: phi has {len(instr.operands)} operands "
                        f"but block has {len(block.preds)} predecessors"
                    )
            else:
                seen_non_phi = True
            if instr.op in VALUE_OPS and instr.name is None:
                fail(f"{where}: value-producing instruction has no name")
            if instr.is_terminator and instr.name is not None:
                fail(f"{where}: terminator cannot define a value")
            if instr.op == OP_CALL and not instr.callee:
                fail(f"{where}: static call without callee")
            arity = _operand_arity(instr)
            if arity is not None:
                lo, hi = arity
                n = len(instr.operands)
                if n < lo or (hi is not None and n > hi):
                    fail(f"{where}: wrong number of operands ({n})")
            for operand in instr.operands:
                if operand not in defined:
                    fail(f"{where}: reference to undefined value {operand!r}")

        term = block.terminator
        if term is None:
            fail(f"block {pos} does not end in a terminator")
        expected = {OP_IF: 2, OP_JUMP: 1, OP_RETURN: 0}[term.op]
        if len(block.succs) != expected:
            fail(
                f"block {pos}: {term.op} needs {expected} successor(s), "
                f"has {len(block.succs)}"
            )
