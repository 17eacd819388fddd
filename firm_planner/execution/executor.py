"""
Feedback execution with failure-driven replanning (v1).

Standard loop (per edge):
  AT_VERTEX(v) -> run feedback edge from the live belief
     success -> AT_VERTEX(target)  (node controller stabilizes first)
     failure -> insert live belief as a vertex (with reverse edges),
                re-solve for the same goal, resume from the new vertex
  until v == goal (vertex identity).

Rollout loop: run at most `rollout_steps` primitive steps, insert the live
belief as a transient vertex (dropping the previous one), pick its best edge
by a one-step Bellman update, repeat while the belief is farther than
`goal_tolerance` from the goal. When the picked edge leads to a non-goal
vertex already within `arrival_tolerance`, the robot counts as arrived there
and continues on that vertex's own feedback edge.

The feedback edge is looked up from the current policy at every step; after
a re-solve the old policy object is dropped.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import numpy as np

from firm_planner.belief.state import BeliefState
from firm_planner.controllers.controller import ControllerOutcome, execute, execute_up_to
from firm_planner.planner.defaults import EXECUTION_DEFAULTS, PLANNER_DEFAULTS, merged
from firm_planner.roadmap.builder import RoadmapBuilder
from firm_planner.roadmap.graph import Edge
from firm_planner.solver.dynamic_program import FeedbackPolicy, best_edge, solve_dynamic_program


@dataclass
class ExecutionReport:
    reached: bool = False
    stuck: bool = False
    steps: int = 0
    recoveries: int = 0
    cost: float = 0.0
    visited: List[int] = field(default_factory=list)
    inserted: List[int] = field(default_factory=list)
    trace: List[Dict[str, Any]] = field(default_factory=list)
    stop_reason: str = ""
    final_belief: Optional[BeliefState] = None

    def as_summary(self) -> Dict[str, Any]:
        return {
            "reached_flag": int(self.reached),
            "stuck_flag": int(self.stuck),
            "steps_executed": int(self.steps),
            "recoveries": int(self.recoveries),
            "execution_cost": float(self.cost),
            "inserted_vertices": [int(v) for v in self.inserted],
            "stop_reason": str(self.stop_reason),
            "final_belief": None if self.final_belief is None else self.final_belief.as_list(),
        }


class FeedbackExecutor:
    def __init__(self, builder: RoadmapBuilder, cfg: Optional[Dict[str, Any]] = None,
                 planner_cfg: Optional[Dict[str, Any]] = None):
        self.builder = builder
        self.graph = builder.graph
        self.space = builder.space
        self.cfg = merged(EXECUTION_DEFAULTS, cfg)
        self.planner_cfg = merged(PLANNER_DEFAULTS, planner_cfg)
        self.debug = bool(self.planner_cfg.get("debug", False))
        self.policy: Optional[FeedbackPolicy] = None

        self._hook_lock = threading.Lock()
        self._pending_kidnap: Optional[np.ndarray] = None
        self._scheduled_kidnaps: Dict[int, np.ndarray] = {}
        self._forced_failures: Set[int] = set()

    # ----- test hooks -----
    def kidnap(self, state) -> None:
        """Overwrite the live true state before the next controller step."""
        with self._hook_lock:
            self._pending_kidnap = np.asarray(state, dtype=np.float64).copy()

    def schedule_kidnapping(self, step: int, state) -> None:
        with self._hook_lock:
            self._scheduled_kidnaps[int(step)] = np.asarray(state, dtype=np.float64).copy()

    def inject_failure_at(self, vertex_id: int) -> None:
        """One-shot: the next controller leaving vertex_id stops halfway and fails."""
        with self._hook_lock:
            self._forced_failures.add(int(vertex_id))

    def _take_kidnap(self, step: int) -> Optional[np.ndarray]:
        with self._hook_lock:
            x = self._scheduled_kidnaps.pop(int(step), None)
            if self._pending_kidnap is not None:
                x = self._pending_kidnap
                self._pending_kidnap = None
            return x

    def _take_forced_failure(self, vid: int) -> bool:
        with self._hook_lock:
            if vid in self._forced_failures:
                self._forced_failures.discard(vid)
                return True
            return False

    # ----- policy -----
    def solve(self, goal: int) -> FeedbackPolicy:
        self.policy = solve_dynamic_program(
            self.graph,
            goal,
            max_iterations=int(self.planner_cfg["dp_max_iterations"]),
            threshold=float(self.planner_cfg["dp_convergence_threshold"]),
            discount=float(self.planner_cfg["discount_factor"]),
            debug=self.debug,
        )
        return self.policy

    def _ensure_policy(self, goal: int) -> FeedbackPolicy:
        if self.policy is None or self.policy.goal != goal or self.policy.is_stale(self.graph):
            return self.solve(goal)
        return self.policy

    # ----- pieces -----
    def _run_edge(self, edge: Edge, true_state: np.ndarray, belief: BeliefState,
                  rng: np.random.Generator, budget: Optional[int] = None) -> ControllerOutcome:
        ctl = edge.controller
        if self._take_forced_failure(edge.source):
            half = max(1, ctl.num_steps // 2)
            out = execute_up_to(half, ctl, self.space, true_state, belief, rng=rng, cfg=self.builder.controller_cfg)
            if self.debug:
                print(f"[DEBUG exec] forced failure leaving vertex {edge.source} after {out.steps} steps")
            out.success = False
            return out
        if budget is None:
            return execute(ctl, self.space, true_state, belief, rng=rng, cfg=self.builder.controller_cfg)
        return execute_up_to(budget, ctl, self.space, true_state, belief, rng=rng, cfg=self.builder.controller_cfg)

    def _stabilize(self, vid: int, true_state: np.ndarray, belief: BeliefState,
                   rng: np.random.Generator) -> ControllerOutcome:
        node = self.graph.vertex(vid).node_controller
        return execute(node, self.space, true_state, belief, rng=rng, cfg=self.builder.controller_cfg)

    def _recover(self, belief: BeliefState, goal: int) -> int:
        with self.graph.lock:
            v = self.builder.add_state_to_graph(belief, add_reverse_edge=True)
            self.solve(goal)
        print(f"[FIRM] recovery: inserted vertex {v.vid} at {v.state.as_list()}, re-solved")
        return v.vid

    def _row(self, step: int, mode: str, vid: int, edge: Optional[Edge], true_state: np.ndarray,
             belief: BeliefState, out: Optional[ControllerOutcome], recovery: int, inserted: Optional[int],
             kidnapped: int, cost_to_go: Optional[float] = None) -> Dict[str, Any]:
        if cost_to_go is None:
            cost_to_go = self.policy.value(vid) if self.policy is not None else float("nan")
        return {
            "step": int(step),
            "mode": mode,
            "vertex": int(vid),
            "edge": "" if edge is None else int(edge.eid),
            "target": "" if edge is None else int(edge.target),
            "x": float(belief.x[0]),
            "y": float(belief.x[1]) if belief.dim > 1 else float("nan"),
            "true_x": float(true_state[0]),
            "true_y": float(true_state[1]) if true_state.shape[0] > 1 else float("nan"),
            "cov_trace": belief.cov_trace(),
            "edge_cost": float(out.cost) if out is not None else 0.0,
            "primitive_steps": int(out.steps) if out is not None else 0,
            "success": int(out.success) if out is not None else 0,
            "recovery": int(recovery),
            "inserted_vertex": "" if inserted is None else int(inserted),
            "cost_to_go": float(cost_to_go),
            "kidnapped": int(kidnapped),
        }

    def _rng(self) -> np.random.Generator:
        return np.random.default_rng(int(self.cfg.get("seed", 1)))

    # ----- standard -----
    def execute_feedback(self, start: int, goal: int) -> ExecutionReport:
        rep = ExecutionReport()
        rng = self._rng()
        max_steps = int(self.cfg["max_execution_steps"])
        tol = float(self.cfg["arrival_tolerance"])
        stabilize = bool(self.cfg.get("stabilize_at_nodes", True))

        current = int(start)
        true_state = self.graph.vertex(current).state.x.copy()
        belief = self.graph.vertex(current).state.copy()
        rep.visited.append(current)
        self._ensure_policy(goal)

        while current != goal:
            if rep.steps >= max_steps:
                rep.stop_reason = "step_cap"
                break
            kidnapped = 0
            kx = self._take_kidnap(rep.steps)
            if kx is not None:
                true_state = kx
                kidnapped = 1
                print(f"[FIRM] kidnapped to {[float(v) for v in kx]} at step {rep.steps}")

            policy = self._ensure_policy(goal)
            edge = policy.edge_for(self.graph, current)
            if edge is None:
                rep.stuck = True
                rep.stop_reason = "no_feedback_edge"
                break

            out = self._run_edge(edge, true_state, belief, rng)
            rep.steps += 1
            rep.cost += float(out.cost)
            true_state, belief = out.true_state, out.belief

            ok = out.success
            if ok and stabilize:
                st = self._stabilize(edge.target, true_state, belief, rng)
                rep.cost += float(st.cost)
                true_state, belief = st.true_state, st.belief
                ok = st.success
            if ok and belief.distance(self.graph.vertex(edge.target).state) > tol:
                ok = False

            if ok:
                rep.trace.append(self._row(rep.steps, "standard", current, edge, true_state, belief, out, 0, None, kidnapped))
                current = edge.target
                rep.visited.append(current)
                continue

            new_vid = self._recover(belief, goal)
            rep.recoveries += 1
            rep.inserted.append(new_vid)
            rep.trace.append(self._row(rep.steps, "standard", current, edge, true_state, belief, out, 1, new_vid, kidnapped))
            current = new_vid
            rep.visited.append(current)
            if current != goal and (self.policy.edge_for(self.graph, current) is None
                                    or not self.graph.same_component(current, goal)):
                rep.stuck = True
                rep.stop_reason = "recovery_not_connected"
                print(f"[WARN] stuck: recovery vertex {current} has no path to goal {goal}")
                break

        rep.reached = current == goal
        if rep.reached:
            rep.stop_reason = "goal"
        rep.final_belief = belief
        return rep

    # ----- rollout -----
    def execute_feedback_with_rollout(self, start: int, goal: int) -> ExecutionReport:
        rep = ExecutionReport()
        rng = self._rng()
        max_steps = int(self.cfg["max_execution_steps"])
        budget = max(1, int(self.cfg["rollout_steps"]))
        goal_tol = float(self.cfg["goal_tolerance"])
        arrive_tol = float(self.cfg["arrival_tolerance"])
        stabilize = bool(self.cfg.get("stabilize_at_nodes", True))
        discount = float(self.planner_cfg["discount_factor"])
        goal_state = self.graph.vertex(goal).state

        current = int(start)
        true_state = self.graph.vertex(current).state.x.copy()
        belief = self.graph.vertex(current).state.copy()
        rep.visited.append(current)
        policy = self._ensure_policy(goal)
        edge = policy.edge_for(self.graph, current)
        transient: Optional[int] = None

        try:
            while belief.distance(goal_state) > goal_tol:
                if rep.steps >= max_steps:
                    rep.stop_reason = "step_cap"
                    break
                if edge is None:
                    rep.stuck = True
                    rep.stop_reason = "no_feedback_edge"
                    break
                kidnapped = 0
                kx = self._take_kidnap(rep.steps)
                if kx is not None:
                    true_state = kx
                    kidnapped = 1
                    print(f"[FIRM] kidnapped to {[float(v) for v in kx]} at step {rep.steps}")

                out = self._run_edge(edge, true_state, belief, rng, budget=budget)
                rep.steps += 1
                rep.cost += float(out.cost)
                true_state, belief = out.true_state, out.belief

                if transient is not None:
                    self.builder.remove_transient(transient)
                    transient = None

                nxt: Optional[Edge] = None
                if out.success:
                    with self.graph.lock:
                        tv = self.builder.add_state_to_graph(belief, transient=True)
                        transient = tv.vid
                        nxt, value = best_edge(self.graph, tv.vid, self.policy.cost_to_go, discount)
                    rep.visited.append(tv.vid)
                    if nxt is not None and nxt.target != goal and \
                            belief.distance(self.graph.vertex(nxt.target).state) <= arrive_tol:
                        # already at the chosen vertex: hand over to its own feedback edge
                        arrived = nxt.target
                        if stabilize:
                            st = self._stabilize(arrived, true_state, belief, rng)
                            rep.cost += float(st.cost)
                            true_state, belief = st.true_state, st.belief
                        rep.visited.append(arrived)
                        nxt = self.policy.edge_for(self.graph, arrived)
                        value = self.policy.value(arrived)
                    if nxt is not None:
                        rep.trace.append(self._row(rep.steps, "rollout", edge.source, edge, true_state, belief, out,
                                                   0, None, kidnapped, cost_to_go=value))
                        edge = nxt
                        continue
                    self.builder.remove_transient(transient)
                    transient = None

                new_vid = self._recover(belief, goal)
                rep.recoveries += 1
                rep.inserted.append(new_vid)
                rep.visited.append(new_vid)
                rep.trace.append(self._row(rep.steps, "rollout", edge.source, edge, true_state, belief, out,
                                           1, new_vid, kidnapped, cost_to_go=self.policy.value(new_vid)))
                edge = self.policy.edge_for(self.graph, new_vid)
                if edge is None or not self.graph.same_component(new_vid, goal):
                    rep.stuck = True
                    rep.stop_reason = "recovery_not_connected"
                    print(f"[WARN] stuck: recovery vertex {new_vid} has no path to goal {goal}")
                    break
        finally:
            if transient is not None:
                self.builder.remove_transient(transient)

        rep.reached = belief.distance(goal_state) <= goal_tol
        if rep.reached:
            rep.stop_reason = "goal"
        rep.final_belief = belief
        return rep
