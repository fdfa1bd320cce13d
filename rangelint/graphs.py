"""
rangelint/graphs.py
═══════════════════

Small graph algorithms over index-based adjacency lists.

Nodes are the integers ``0 … n-1``; ``adj[v]`` lists the successors of
``v``.  Used for the analyzer dependency graph (cycle detection, planning)
and for call graphs inside a unit (callee-first summary order, purity).
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Dict, List, Optional, Sequence, Set, Tuple


def strongly_connected_components(adj: Sequence[Sequence[int]]) -> List[List[int]]:
    """Compute SCCs using Tarjan's algorithm.

    Returns a list of SCCs in reverse topological order: every component
    comes after all components reachable from it (callees before callers,
    dependencies before dependents).

    The depth-first search keeps its own stack of ``(node, next edge)``
    frames, so long call chains do not hit the interpreter's recursion
    limit.
    """
    counter = 0
    stack: List[int] = []
    lowlink: Dict[int, int] = {}
    index: Dict[int, int] = {}
    on_stack: Set[int] = set()
    result: List[List[int]] = []

    for root in range(len(adj)):
        if root in index:
            continue
        index[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        frames: List[Tuple[int, int]] = [(root, 0)]

        while frames:
            v, edge = frames[-1]
            if edge < len(adj[v]):
                frames[-1] = (v, edge + 1)
                w = adj[v][edge]
                if w not in index:
                    index[w] = lowlink[w] = counter
                    counter += 1
                    stack.append(w)
                    on_stack.add(w)
                    frames.append((w, 0))
                elif w in on_stack:
                    lowlink[v] = min(lowlink[v], index[w])
                continue

            frames.pop()
            if frames:
                parent = frames[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[v])
            if lowlink[v] == index[v]:
                scc: List[int] = []
                while True:
                    w = stack.pop()
                    on_stack.discard(w)
                    scc.append(w)
                    if w == v:
                        break
                result.append(sorted(scc))

    return result


def find_cycle(adj: Sequence[Sequence[int]]) -> Optional[List[int]]:
    """Return the nodes of one cycle (in edge order), or ``None``."""
    for scc in strongly_connected_components(adj):
        if len(scc) == 1 and scc[0] not in adj[scc[0]]:
            continue
        members = set(scc)
        start = scc[0]
        path = [start]
        seen = {start}
        v = start
        while True:
            nxt = next(w for w in adj[v] if w in members)
            if nxt in seen:
                return path[path.index(nxt):]
            path.append(nxt)
            seen.add(nxt)
            v = nxt
    return None


def is_recursive(scc: Sequence[int], adj: Sequence[Sequence[int]]) -> bool:
    """Does the component contain a cycle (mutual or self recursion)?"""
    return len(scc) > 1 or scc[0] in adj[scc[0]]


def topological_order(
    deps: Sequence[Sequence[int]],
    priority: Optional[Sequence[int]] = None,
) -> List[int]:
    """Kahn's algorithm: every node after all of its ``deps``.

    Ties are broken by ascending ``priority`` (node index by default), so
    the order is deterministic.  The graph must be acyclic.
    """
    n = len(deps)
    rank = list(priority) if priority is not None else list(range(n))
    in_deg = [len(set(d)) for d in deps]
    dependents: List[List[int]] = [[] for _ in range(n)]
    for v, ds in enumerate(deps):
        for d in set(ds):
            dependents[d].append(v)

    ready: Deque[int] = deque(sorted((v for v in range(n) if in_deg[v] == 0),
                                     key=lambda v: rank[v]))
    order: List[int] = []
    while ready:
        v = ready.popleft()
        order.append(v)
        released = []
        for w in dependents[v]:
            in_deg[w] -= 1
            if in_deg[w] == 0:
                released.append(w)
        if released:
            ready = deque(sorted(list(ready) + released, key=lambda v: rank[v]))
    if len(order) != n:
        raise ValueError("graph contains a cycle")
    return order
