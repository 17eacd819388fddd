"""
Roadmap graph (v1).

Vertices own belief states; edges own one direction-specific controller and an
immutable (cost, success probability) weight. Connected components are kept
incrementally in a union-find that is only ever grown; removing a (transient)
vertex does not touch it.

Locking: `graph.lock` is the single exclusive lock for every mutation and
every policy solve. It is re-entrant so that recovery inside the executor can
insert a vertex and re-solve while holding it.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from firm_planner.belief.state import BeliefState
from firm_planner.controllers.controller import ControllerRecord


@dataclass(frozen=True)
class FIRMWeight:
    cost: float
    success_probability: float

    def __post_init__(self) -> None:
        if not (self.cost >= 0.0):
            raise ValueError(f"FIRMWeight.cost must be >= 0, got {self.cost}")
        if not (0.0 <= self.success_probability <= 1.0):
            raise ValueError(f"FIRMWeight.success_probability must be in [0,1], got {self.success_probability}")


@dataclass(eq=False)
class Vertex:
    vid: int
    state: BeliefState
    node_controller: Optional[ControllerRecord] = None
    total_connection_attempts: int = 1
    successful_connection_attempts: int = 0
    transient: bool = False

    def failure_ratio(self) -> float:
        t = max(1, int(self.total_connection_attempts))
        return float(t - int(self.successful_connection_attempts)) / float(t)


@dataclass(eq=False)
class Edge:
    eid: int
    source: int
    target: int
    controller: ControllerRecord
    weight: FIRMWeight


class DisjointSets:
    """Union-find with path compression and union by rank."""

    def __init__(self) -> None:
        self._parent: Dict[int, int] = {}
        self._rank: Dict[int, int] = {}

    def make_set(self, v: int) -> None:
        self._parent[v] = v
        self._rank[v] = 0

    def __contains__(self, v: int) -> bool:
        return v in self._parent

    def find(self, v: int) -> int:
        root = v
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[v] != root:
            nxt = self._parent[v]
            self._parent[v] = root
            v = nxt
        return root

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if self._rank[ra] < self._rank[rb]:
            ra, rb = rb, ra
        self._parent[rb] = ra
        if self._rank[ra] == self._rank[rb]:
            self._rank[ra] += 1

    def same(self, a: int, b: int) -> bool:
        if a not in self._parent or b not in self._parent:
            return False
        return self.find(a) == self.find(b)

    def clear(self) -> None:
        self._parent.clear()
        self._rank.clear()


class RoadmapGraph:
    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._vertices: Dict[int, Vertex] = {}
        self._out: Dict[int, List[Edge]] = {}
        self._edges: Dict[int, Edge] = {}
        self.components = DisjointSets()
        self._next_vid = 0
        self._next_eid = 0
        # bumped on every mutation; policies remember the version they saw
        self.version = 0

    # ----- vertices -----
    def add_vertex(self, state: BeliefState, transient: bool = False) -> Vertex:
        with self.lock:
            v = Vertex(vid=self._next_vid, state=state, transient=bool(transient))
            self._next_vid += 1
            self._vertices[v.vid] = v
            self._out[v.vid] = []
            if not transient:
                self.components.make_set(v.vid)
            self.version += 1
            return v

    def remove_vertex(self, vid: int) -> None:
        """Remove a vertex and every edge touching it (rollout transients only)."""
        with self.lock:
            if vid not in self._vertices:
                return
            for e in self._out.pop(vid, []):
                self._edges.pop(e.eid, None)
            for u, lst in self._out.items():
                kept = [e for e in lst if e.target != vid]
                if len(kept) != len(lst):
                    for e in lst:
                        if e.target == vid:
                            self._edges.pop(e.eid, None)
                    self._out[u] = kept
            del self._vertices[vid]
            self.version += 1

    def vertex(self, vid: int) -> Vertex:
        return self._vertices[vid]

    def has_vertex(self, vid: int) -> bool:
        return vid in self._vertices

    def vertices(self) -> List[Vertex]:
        return list(self._vertices.values())

    def vertex_ids(self) -> List[int]:
        return list(self._vertices.keys())

    @property
    def num_vertices(self) -> int:
        return len(self._vertices)

    # ----- edges -----
    def add_edge(self, source: int, target: int, controller: ControllerRecord, weight: FIRMWeight) -> Edge:
        with self.lock:
            if source not in self._vertices or target not in self._vertices:
                raise KeyError(f"add_edge: unknown vertex {source} or {target}")
            e = Edge(eid=self._next_eid, source=source, target=target, controller=controller, weight=weight)
            self._next_eid += 1
            self._edges[e.eid] = e
            self._out[source].append(e)
            self.version += 1
            return e

    def out_edges(self, vid: int) -> List[Edge]:
        return list(self._out.get(vid, []))

    def out_degree(self, vid: int) -> int:
        return len(self._out.get(vid, []))

    def edge(self, eid: int) -> Edge:
        return self._edges[eid]

    def edges(self) -> Iterator[Edge]:
        for eid in sorted(self._edges.keys()):
            yield self._edges[eid]

    @property
    def num_edges(self) -> int:
        return len(self._edges)

    # ----- components -----
    def unite(self, a: int, b: int) -> None:
        with self.lock:
            self.components.union(a, b)

    def same_component(self, a: int, b: int) -> bool:
        with self.lock:
            return self.components.same(a, b)

    def component_of(self, vid: int) -> int:
        with self.lock:
            return self.components.find(vid)

    def reachable(self, a: int, b: int) -> bool:
        """Undirected BFS; used to cross-check the union-find, not by the planner."""
        if a not in self._vertices or b not in self._vertices:
            return False
        adj: Dict[int, List[int]] = {v: [] for v in self._vertices}
        for e in self._edges.values():
            adj[e.source].append(e.target)
            adj[e.target].append(e.source)
        seen = {a}
        stack = [a]
        while stack:
            u = stack.pop()
            if u == b:
                return True
            for w in adj[u]:
                if w not in seen:
                    seen.add(w)
                    stack.append(w)
        return False

    def clear(self) -> None:
        with self.lock:
            self._vertices.clear()
            self._out.clear()
            self._edges.clear()
            self.components.clear()
            self.version += 1

    def summary(self) -> Dict[str, Any]:
        return {"num_vertices": int(self.num_vertices), "num_edges": int(self.num_edges), "version": int(self.version)}
