"""
Roadmap builder (v1).

Owns the roadmap graph, the nearest-neighbour index and the connection
strategy. Every mutation happens under `graph.lock`.

Contract:
  - add_state_to_graph(belief, add_reverse_edge=False, transient=False) -> Vertex
  - generate_edge_controller_with_cost(start, target, rng=None) -> (ControllerRecord, FIRMWeight)
  - grow_roadmap(ptc) / expand_roadmap(ptc) / construct_roadmap(ptc)

Do NOT rename public API.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from firm_planner.belief.state import BeliefState
from firm_planner.controllers.controller import (
    ControllerRecord,
    execute,
    stationary_covariance,
    synthesize_edge_controller,
    synthesize_node_controller,
)
from firm_planner.planner.defaults import (
    CONTROLLER_DEFAULTS,
    EXTREMELY_HIGH_EDGE_COST,
    FIND_VALID_STATE_ATTEMPTS,
    PLANNER_DEFAULTS,
    merged,
)
from firm_planner.planner.viz_sink import VisualizationSink
from firm_planner.roadmap.connection import NearestNeighbors, make_connection_strategy
from firm_planner.roadmap.graph import FIRMWeight, RoadmapGraph, Vertex


Termination = Callable[[], bool]

# Beliefs closer than this are the same roadmap state.
SAME_STATE_TOL = 1e-6


class RoadmapBuilder:
    def __init__(
        self,
        space,
        cfg: Optional[Dict[str, Any]] = None,
        controller_cfg: Optional[Dict[str, Any]] = None,
        graph: Optional[RoadmapGraph] = None,
        viz: Optional[VisualizationSink] = None,
    ):
        self.space = space
        self.cfg = merged(PLANNER_DEFAULTS, cfg)
        self.controller_cfg = merged(CONTROLLER_DEFAULTS, controller_cfg)
        self.graph = graph if graph is not None else RoadmapGraph()
        self.viz = viz if viz is not None else VisualizationSink()
        self.debug = bool(self.cfg.get("debug", False))

        self.nn = NearestNeighbors()
        self.rng = np.random.default_rng(int(self.cfg.get("seed", 0)))
        self.num_particles = max(1, int(self.cfg.get("num_particles", 1)))
        self.add_reverse = bool(self.cfg.get("add_reverse_edges", True))
        self.milestones: List[int] = []
        self.connection_strategy = None
        self.set_connection_strategy(str(self.cfg.get("connection_strategy", "k_nearest")))

    # ----- configuration -----
    def set_connection_strategy(self, name: str) -> None:
        scfg = dict(self.cfg)
        scfg.setdefault("dim", self.space.state_dimension())
        self.connection_strategy = make_connection_strategy(
            name, scfg, self.nn, milestone_count=lambda: len(self.milestones)
        )
        self.cfg["connection_strategy"] = name

    def set_max_nearest_neighbors(self, k: int) -> None:
        self.cfg["max_nearest_neighbors"] = int(k)
        self.set_connection_strategy(str(self.cfg["connection_strategy"]))

    # ----- edge weights -----
    def generate_edge_controller_with_cost(
        self,
        start: BeliefState,
        target: BeliefState,
        rng: Optional[np.random.Generator] = None,
    ) -> Tuple[ControllerRecord, FIRMWeight]:
        """
        Synthesize the a->b controller and estimate its weight by Monte Carlo.

        Every particle starts with true state = belief = start. Cost is the
        mean over successful particles; if none succeed the edge gets
        EXTREMELY_HIGH_EDGE_COST and is still returned.
        """
        controller = synthesize_edge_controller(self.space, start, target)
        rng = rng if rng is not None else self.rng

        successes = 0
        cost_sum = 0.0
        for _ in range(self.num_particles):
            out = execute(controller, self.space, start.x, start.copy(), rng=rng, cfg=self.controller_cfg)
            if out.success:
                successes += 1
                cost_sum += float(out.cost)

        cost = cost_sum / successes if successes > 0 else EXTREMELY_HIGH_EDGE_COST
        p = float(successes) / float(self.num_particles)
        if self.debug:
            print(f"[DEBUG edge] {start.as_list()} -> {target.as_list()} cost={cost:.4g} p={p:.3f}")
        return controller, FIRMWeight(cost=float(cost), success_probability=p)

    def is_stabilizable(self, x: np.ndarray) -> bool:
        ok, _ = stationary_covariance(self.space, x)
        return bool(ok)

    # ----- insertion -----
    def add_state_to_graph(self, belief: BeliefState, add_reverse_edge: bool = False, transient: bool = False) -> Vertex:
        with self.graph.lock:
            v = self.graph.add_vertex(belief.copy(), transient=transient)
            v.node_controller = synthesize_node_controller(self.space, v.state, debug=self.debug)
            v.state = v.node_controller.goal.copy()

            neighbours = self.connection_strategy(v.vid, v.state.x)
            if not transient:
                self.nn.add(v.vid, v.state.x)
                self.milestones.append(v.vid)
            self.viz.add_vertex(v)

            for nid in neighbours:
                if not self.graph.has_vertex(nid):
                    continue
                n = self.graph.vertex(nid)
                if n.state.distance(v.state) < SAME_STATE_TOL:
                    continue
                v.total_connection_attempts += 1
                n.total_connection_attempts += 1
                if not self.space.check_motion(v.state.x, n.state.x):
                    continue
                v.successful_connection_attempts += 1
                n.successful_connection_attempts += 1

                self._add_edge(v, n)
                if add_reverse_edge:
                    self._add_edge(n, v)
                if not transient:
                    self.graph.unite(v.vid, n.vid)
            return v

    def _add_edge(self, a: Vertex, b: Vertex) -> None:
        controller, weight = self.generate_edge_controller_with_cost(a.state, b.state)
        e = self.graph.add_edge(a.vid, b.vid, controller, weight)
        self.viz.add_edge(e, a.state, b.state)

    def _connect_pair(self, a: Vertex, b: Vertex) -> None:
        """Bidirectional link used to chain random-bounce states."""
        with self.graph.lock:
            self._add_edge(a, b)
            self._add_edge(b, a)
            self.graph.unite(a.vid, b.vid)

    # ----- construction loops -----
    def _sample_belief(self) -> Optional[BeliefState]:
        x = self.space.sample_valid(self.rng, max_attempts=FIND_VALID_STATE_ATTEMPTS)
        if x is None:
            return None
        if bool(self.cfg.get("reject_unstabilizable", False)) and not self.is_stabilizable(x):
            if self.debug:
                print(f"[DEBUG grow] rejected unstabilizable sample {[float(v) for v in x]}")
            return None
        return BeliefState(x=x, cov=None)

    def grow_roadmap(self, ptc: Termination) -> int:
        """Insert valid samples until ptc() fires. Returns how many were added."""
        added = 0
        while not ptc():
            b = self._sample_belief()
            if b is None:
                continue
            self.add_state_to_graph(b, add_reverse_edge=self.add_reverse)
            added += 1
        return added

    def _pick_expansion_vertex(self) -> Optional[Vertex]:
        with self.graph.lock:
            cands = [self.graph.vertex(vid) for vid in self.milestones if self.graph.has_vertex(vid)]
        if not cands:
            return None
        w = np.asarray([v.failure_ratio() for v in cands], dtype=np.float64)
        if float(w.sum()) <= 0.0:
            return cands[int(self.rng.integers(len(cands)))]
        return cands[int(self.rng.choice(len(cands), p=w / w.sum()))]

    def expand_roadmap(self, ptc: Termination) -> int:
        """
        Random-bounce expansion from vertices that connect poorly.

        The bounce end point becomes a milestone; intermediate bounce states
        are chained to the parent by bidirectional edges.
        """
        steps = int(self.cfg.get("max_bounce_steps", 2))
        added = 0
        while not ptc():
            parent = self._pick_expansion_vertex()
            if parent is None:
                return added
            path = self.space.random_bounce_motion(self.rng, parent.state.x, steps)
            if not path:
                continue
            last = self.add_state_to_graph(BeliefState(x=path[-1], cov=None), add_reverse_edge=self.add_reverse)
            added += 1
            prev = parent
            for x in path[:-1]:
                mid = self.add_state_to_graph(BeliefState(x=x, cov=None), add_reverse_edge=self.add_reverse)
                added += 1
                if not self.graph.same_component(prev.vid, mid.vid) and self.space.check_motion(prev.state.x, mid.state.x):
                    self._connect_pair(prev, mid)
                prev = mid
            if not self.graph.same_component(prev.vid, last.vid) and self.space.check_motion(prev.state.x, last.state.x):
                self._connect_pair(prev, last)
        return added

    def construct_roadmap(self, ptc: Termination) -> None:
        """Alternate growth (2 slices) and expansion (1 slice) until ptc() fires."""
        slice_s = float(self.cfg.get("roadmap_build_time", 0.5))
        grow = True
        while not ptc():
            deadline = time.monotonic() + (2.0 * slice_s if grow else slice_s)
            sub = lambda d=deadline: ptc() or time.monotonic() >= d
            if grow:
                self.grow_roadmap(sub)
            else:
                self.expand_roadmap(sub)
            grow = not grow

    # ----- housekeeping -----
    def remove_transient(self, vid: int) -> None:
        with self.graph.lock:
            if self.graph.has_vertex(vid) and self.graph.vertex(vid).transient:
                self.graph.remove_vertex(vid)

    def clear(self) -> None:
        with self.graph.lock:
            self.graph.clear()
            self.nn.clear()
            self.milestones.clear()
            self.rng = np.random.default_rng(int(self.cfg.get("seed", 0)))
