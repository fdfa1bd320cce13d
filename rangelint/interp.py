"""
rangelint/interp.py
═══════════════════

Forward abstract interpreter computing a :class:`~rangelint.ranges.Range`
for every value of an SSA function.

    ┌──────────────┐   RPO worklist   ┌──────────────────────────────┐
    │ seeds        │ ───────────────► │ block entry state            │
    │  params      │                  │   phis from edge states      │
    │  constants   │                  │   ∇ at loop heads (delay k)  │
    └──────────────┘                  └──────────────┬───────────────┘
                                                     │ transfer
                                      ┌──────────────▼───────────────┐
                                      │ block exit state             │
                                      │   if c: refine per edge      │
                                      │   infeasible edge → ⊥        │
                                      └──────────────────────────────┘

The abstract state of a block maps value names to ranges.  Because the
form is single-assignment a value's definition range never changes along
a path, but branch conditions refine what is known about it: on the true
edge of ``if c`` with ``c = a < b`` the state for ``a`` is met with
``[-∞, max(b) - 1]``, and the false edge uses the negated comparison.

Loop heads are the targets of retreating edges found by a depth-first
search from the entry.  After ``widening_delay`` visits a loop head's
entry state is widened (threshold widening, see :mod:`rangelint.ranges`);
``narrowing_passes`` decreasing passes follow once the worklist is empty.

Calls to functions of the same unit use the callee's joined return range
when :func:`analyze_unit` has already computed it (callees are analysed
first; recursive components get no summary).  Everything else a call
returns is unknown.
"""

from __future__ import annotations

import heapq
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Set, Tuple

from rangelint.config import EngineConfig
from rangelint.errors import FixpointError, UnitTimeoutError
from rangelint.graphs import is_recursive, strongly_connected_components
from rangelint.ir import (
    BINARY_OPS,
    COMPARE_OPS,
    OP_CALL,
    OP_COPY,
    OP_IF,
    OP_LEN,
    OP_RETURN,
    UNARY_OPS,
    Function,
    Instruction,
    Unit,
    validate_function,
)
from rangelint.ranges import (
    NEGATED_OP,
    SWAPPED_OP,
    Range,
    binary,
    compare,
    from_type,
    refine,
    thresholds_for,
    unary,
)

logger = logging.getLogger(__name__)

State = Dict[str, Range]

# Deadline checks happen every this many block visits.
_DEADLINE_STRIDE = 64


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — RESULTS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class FunctionRanges:
    """Ranges computed for one function.

    Attributes
    ----------
    ranges:
        Definition range of every value (parameters, constants and
        instructions).  Values in unreachable blocks are ⊥.
    unreachable:
        Indices of blocks no feasible path reaches.
    call_args:
        ``(block, instruction index)`` → argument ranges at that call
        site, including branch refinements in effect there.
    returns:
        Join of every returned range (⊥ if the function never returns).
    """

    function: Function
    ranges: Dict[str, Range] = field(default_factory=dict)
    unreachable: FrozenSet[int] = frozenset()
    call_args: Dict[Tuple[int, int], Tuple[Range, ...]] = field(default_factory=dict)
    returns: Range = field(default_factory=Range.unreachable)
    iterations: int = 0
    widenings: int = 0

    def range_of(self, name: str) -> Range:
        return self.ranges.get(name, Range.unknown())

    def is_reachable(self, block: int) -> bool:
        return block not in self.unreachable

    def args_at(self, block: int, index: int) -> Optional[Tuple[Range, ...]]:
        return self.call_args.get((block, index))


@dataclass
class UnitRanges:
    """Per-function results for a whole unit."""

    unit: str
    functions: Dict[str, FunctionRanges] = field(default_factory=dict)

    def __getitem__(self, name: str) -> FunctionRanges:
        return self.functions[name]

    def __contains__(self, name: str) -> bool:
        return name in self.functions

    def get(self, name: str) -> Optional[FunctionRanges]:
        return self.functions.get(name)

    def summaries(self) -> Dict[str, Range]:
        return {name: fr.returns for name, fr in self.functions.items()}


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — CONTROL-FLOW STRUCTURE
# ═══════════════════════════════════════════════════════════════════════════

def _depth_first(fn: Function) -> Tuple[List[int], Set[int]]:
    """Reverse post-order of the reachable blocks and the loop heads."""
    n = len(fn.blocks)
    visited = [False] * n
    on_path = [False] * n
    post: List[int] = []
    heads: Set[int] = set()

    visited[0] = True
    on_path[0] = True
    stack: List[Tuple[int, int]] = [(0, 0)]
    while stack:
        b, i = stack[-1]
        succs = fn.blocks[b].succs
        if i < len(succs):
            stack[-1] = (b, i + 1)
            s = succs[i]
            if on_path[s]:
                heads.add(s)
            elif not visited[s]:
                visited[s] = True
                on_path[s] = True
                stack.append((s, 0))
        else:
            stack.pop()
            on_path[b] = False
            post.append(b)
    post.reverse()
    return post, heads


def _edge_positions(fn: Function) -> List[List[int]]:
    """For block ``b`` and its ``k``-th predecessor ``p``: which successor
    slot of ``p`` the edge leaves from.  Needed when ``p`` branches to ``b``
    on both edges."""
    result: List[List[int]] = []
    for block in fn.blocks:
        seen: Dict[int, int] = {}
        slots: List[int] = []
        for p in block.preds:
            occurrence = seen.get(p, 0)
            seen[p] = occurrence + 1
            matching = [j for j, s in enumerate(fn.blocks[p].succs) if s == block.index]
            slots.append(matching[occurrence])
        result.append(slots)
    return result


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — THE SOLVER
# ═══════════════════════════════════════════════════════════════════════════

class RangeInterpreter:
    """Fixpoint engine for one function.

    Parameters
    ----------
    fn : Function
        A well-formed SSA function.
    config : EngineConfig
        Set limit, widening delay, narrowing passes, iteration bound.
    summaries : Mapping[str, Range], optional
        Return ranges of callees keyed by qualified name.
    deadline : float, optional
        ``time.monotonic()`` value after which the analysis is abandoned.
    """

    def __init__(
        self,
        fn: Function,
        config: Optional[EngineConfig] = None,
        summaries: Optional[Mapping[str, Range]] = None,
        deadline: Optional[float] = None,
        unit: Optional[str] = None,
    ) -> None:
        self.fn = fn
        self.config = config or EngineConfig()
        self.summaries = summaries or {}
        self.deadline = deadline
        self.unit = unit
        self.limit = self.config.set_limit
        self.thresholds = thresholds_for(fn.int_constants())
        self._defs = fn.definitions()
        self._rpo, self._loop_heads = _depth_first(fn)
        self._rpo_index = {b: i for i, b in enumerate(self._rpo)}
        self._slots = _edge_positions(fn)
        self._seed: State = {p.name: from_type(p.type) for p in fn.params}

        self._entry: List[Optional[State]] = [None] * len(fn.blocks)
        self._exit: List[Optional[State]] = [None] * len(fn.blocks)
        self._call_args: Dict[Tuple[int, int], Tuple[Range, ...]] = {}
        self._visits: Dict[int, int] = {}
        self._iterations = 0
        self._widenings = 0

    # ---- value lookup ----------------------------------------------------

    def _lookup(self, state: State, name: str) -> Range:
        r = state.get(name)
        if r is not None:
            return r
        const = self.fn.constants.get(name)
        if const is not None:
            return Range.const(const.value)
        return Range.unknown()

    # ---- edges -----------------------------------------------------------

    def _edge_state(self, pred: int, slot: int) -> Optional[State]:
        """State flowing along successor ``slot`` of ``pred``; ``None`` if
        the edge is infeasible."""
        out = self._exit[pred]
        if out is None:
            return None
        term = self.fn.blocks[pred].terminator
        if term is None or term.op != OP_IF:
            return out
        return self._assume(out, term.operands[0], slot == 0)

    def _assume(self, state: State, cond: str, truth: bool) -> Optional[State]:
        cond_range = self._lookup(state, cond)
        if not cond_range.contains(truth):
            return None
        refined = dict(state)
        if cond not in self.fn.constants:
            refined[cond] = Range.const(truth)

        name = cond
        instr = self._defs.get(name)
        while instr is not None and instr.op == "not":
            truth = not truth
            name = instr.operands[0]
            if name not in self.fn.constants:
                refined[name] = Range.const(truth)
            instr = self._defs.get(name)

        if instr is None or instr.op not in COMPARE_OPS:
            return refined

        op = instr.op if truth else NEGATED_OP[instr.op]
        a, b = instr.operands
        ra, rb = self._lookup(refined, a), self._lookup(refined, b)
        new_a = refine(op, ra, rb)
        new_b = refine(SWAPPED_OP[op], rb, ra)
        if new_a.is_unreachable or new_b.is_unreachable:
            return None
        if a not in self.fn.constants:
            refined[a] = new_a
        if b not in self.fn.constants:
            refined[b] = new_b
        return refined

    # ---- block entry -----------------------------------------------------

    def _merge(self, block_index: int) -> Optional[State]:
        block = self.fn.blocks[block_index]
        incoming: List[Tuple[int, State]] = []
        for k, p in enumerate(block.preds):
            st = self._edge_state(p, self._slots[block_index][k])
            if st is not None:
                incoming.append((k, st))

        if block_index == 0:
            incoming.insert(0, (-1, self._seed))
        if not incoming:
            return None

        merged: State = {}
        for _, st in incoming:
            for name, r in st.items():
                old = merged.get(name)
                merged[name] = r if old is None else old.join(r, self.limit)

        for phi in block.phis():
            value = Range.unreachable()
            for k, st in incoming:
                if k < 0:
                    continue
                value = value.join(self._lookup(st, phi.operands[k]), self.limit)
            merged[phi.name] = value
        return merged

    def _widen(self, old: State, new: State) -> State:
        widened = dict(old)
        for name, r in new.items():
            prev = old.get(name)
            widened[name] = r if prev is None else prev.widen(r, self.thresholds, self.limit)
        return widened

    def _narrow(self, old: State, new: State) -> State:
        narrowed: State = {}
        for name, r in new.items():
            prev = old.get(name)
            narrowed[name] = r if prev is None else prev.narrow(r)
        return narrowed

    # ---- transfer --------------------------------------------------------

    def _evaluate(self, instr: Instruction, state: State) -> Range:
        op = instr.op
        if op in BINARY_OPS:
            a, b = (self._lookup(state, o) for o in instr.operands)
            return binary(op, a, b, self.limit)
        if op in COMPARE_OPS:
            a, b = (self._lookup(state, o) for o in instr.operands)
            return compare(op, a, b, self.limit)
        if op in UNARY_OPS:
            return unary(op, self._lookup(state, instr.operands[0]), self.limit)
        if op == OP_COPY:
            return self._lookup(state, instr.operands[0])
        if op == OP_LEN:
            return Range.at_least(0)
        if op == OP_CALL:
            summary = self.summaries.get(instr.callee or "")
            return summary if summary is not None else Range.unknown()
        # load, call-indirect
        return Range.unknown()

    def _transfer(self, block_index: int, entry: State) -> State:
        state = dict(entry)
        for i, instr in enumerate(self.fn.blocks[block_index].instructions):
            if instr.is_phi:
                continue
            if instr.is_call:
                self._call_args[(block_index, i)] = tuple(
                    self._lookup(state, a) for a in instr.args
                )
            if instr.name is not None:
                state[instr.name] = self._evaluate(instr, state)
        return state

    def _tick(self) -> None:
        self._iterations += 1
        if self._iterations > self.config.max_iterations:
            raise FixpointError(
                f"{self.fn.name}: no fixpoint after "
                f"{self.config.max_iterations} iterations",
                unit=self.unit,
            )
        if (
            self.deadline is not None
            and self._iterations % _DEADLINE_STRIDE == 0
            and time.monotonic() > self.deadline
        ):
            raise UnitTimeoutError(f"{self.fn.name}: time budget exhausted", unit=self.unit)

    # ---- driver ----------------------------------------------------------

    def solve(self) -> FunctionRanges:
        worklist: List[int] = [0]
        queued: Set[int] = {0}

        while worklist:
            pos = heapq.heappop(worklist)
            b = self._rpo[pos]
            queued.discard(pos)
            self._tick()
            self._visits[b] = self._visits.get(b, 0) + 1

            new_entry = self._merge(b)
            if new_entry is None:
                continue
            old_entry = self._entry[b]
            if old_entry is not None and b in self._loop_heads:
                if self._visits[b] > self.config.widening_delay:
                    new_entry = self._widen(old_entry, new_entry)
                    self._widenings += 1
            if old_entry is not None and new_entry == old_entry:
                continue

            self._entry[b] = new_entry
            self._exit[b] = self._transfer(b, new_entry)
            for s in self.fn.blocks[b].succs:
                spos = self._rpo_index[s]
                if spos not in queued:
                    heapq.heappush(worklist, spos)
                    queued.add(spos)

        for _ in range(self.config.narrowing_passes):
            if not self._narrowing_pass():
                break

        return self._result()

    def _narrowing_pass(self) -> bool:
        changed = False
        for b in self._rpo:
            self._tick()
            old_entry = self._entry[b]
            if old_entry is None:
                continue
            new_entry = self._merge(b)
            if new_entry is None:
                self._entry[b] = None
                self._exit[b] = None
                self._drop_call_sites(b)
                changed = True
                continue
            if b in self._loop_heads:
                new_entry = self._narrow(old_entry, new_entry)
            if new_entry != old_entry:
                changed = True
            self._entry[b] = new_entry
            self._exit[b] = self._transfer(b, new_entry)
        return changed

    def _drop_call_sites(self, block_index: int) -> None:
        for key in [k for k in self._call_args if k[0] == block_index]:
            del self._call_args[key]

    def _result(self) -> FunctionRanges:
        fn = self.fn
        ranges: Dict[str, Range] = {name: Range.const(c.value) for name, c in fn.constants.items()}
        ranges.update(self._seed)
        returns = Range.unreachable()
        unreachable: Set[int] = set()

        for block in fn.blocks:
            out = self._exit[block.index]
            if out is None:
                unreachable.add(block.index)
                for instr in block.instructions:
                    if instr.name is not None:
                        ranges[instr.name] = Range.unreachable()
                continue
            for instr in block.instructions:
                if instr.name is None:
                    continue
                ranges[instr.name] = out[instr.name]
            term = block.terminator
            if term is not None and term.op == OP_RETURN and term.operands:
                returns = returns.join(self._lookup(out, term.operands[0]), self.limit)

        return FunctionRanges(
            function=fn,
            ranges=ranges,
            unreachable=frozenset(unreachable),
            call_args=dict(self._call_args),
            returns=returns,
            iterations=self._iterations,
            widenings=self._widenings,
        )


# ═══════════════════════════════════════════════════════════════════════════
#  PART 4 — PUBLIC API
# ═══════════════════════════════════════════════════════════════════════════

def analyze_function(
    fn: Function,
    config: Optional[EngineConfig] = None,
    *,
    summaries: Optional[Mapping[str, Range]] = None,
    deadline: Optional[float] = None,
    unit: Optional[str] = None,
) -> FunctionRanges:
    """Compute ranges for every value of ``fn``.

    Raises
    ------
    MalformedIRError
        If ``fn`` is not well-formed SSA.
    FixpointError
        If ``config.max_iterations`` block visits do not stabilise.
    UnitTimeoutError
        If ``deadline`` passes during the iteration.
    """
    validate_function(fn, unit=unit)
    result = RangeInterpreter(fn, config, summaries, deadline, unit).solve()
    logger.debug(
        "%s: %d iterations, %d widenings, %d unreachable block(s)",
        fn.name, result.iterations, result.widenings, len(result.unreachable),
    )
    return result


def analyze_unit(
    unit: Unit,
    config: Optional[EngineConfig] = None,
    *,
    deadline: Optional[float] = None,
) -> UnitRanges:
    """Analyse every function of ``unit``, callees before callers.

    The return range of a non-recursive function becomes the result of
    calls to it from later functions.
    """
    config = config or EngineConfig()
    names = [fn.name for fn in unit.functions]
    index = {name: i for i, name in enumerate(names)}
    adj: List[List[int]] = [
        sorted({index[i.callee] for _, _, i in fn.calls() if i.op == OP_CALL and i.callee in index})
        for fn in unit.functions
    ]

    summaries: Dict[str, Range] = {}
    result = UnitRanges(unit=unit.name)
    for scc in strongly_connected_components(adj):
        recursive = is_recursive(scc, adj)
        for i in scc:
            fn = unit.functions[i]
            fr = analyze_function(
                fn, config, summaries=summaries, deadline=deadline, unit=unit.name
            )
            result.functions[fn.name] = fr
        if not recursive:
            fn = unit.functions[scc[0]]
            returns = result.functions[fn.name].returns
            if not returns.is_unreachable:
                summaries[fn.name] = returns
    # keep declaration order
    result.functions = {n: result.functions[n] for n in names}
    return result
