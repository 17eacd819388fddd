"""
FIRM planner (v1).

solve(ptc):
  - validates the query (goal type, start states, goal samples)
  - grows the roadmap on the calling thread until ptc() or a solution
  - a watcher thread checks start/goal connectivity every watch_interval_s
    and, once the roadmap is big enough, solves the policy and publishes
    the feedback path
  - the watcher is always joined before solve() returns

Statuses: EXACT_SOLUTION, APPROXIMATE_SOLUTION, TIMEOUT, INVALID_START,
INVALID_GOAL, UNRECOGNIZED_GOAL_TYPE. Infeasible queries are reported as a
status, never raised.

Do NOT rename public API.
"""
from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from firm_planner.belief.state import BeliefState
from firm_planner.controllers.controller import ControllerRecord
from firm_planner.execution.executor import ExecutionReport, FeedbackExecutor
from firm_planner.planner.defaults import CONTROLLER_DEFAULTS, EXECUTION_DEFAULTS, PLANNER_DEFAULTS, merged
from firm_planner.planner.goals import GoalSampleableRegion, ProblemDefinition
from firm_planner.planner.termination import Termination, or_ptc
from firm_planner.planner.viz_sink import VisualizationSink
from firm_planner.roadmap.builder import RoadmapBuilder
from firm_planner.solver.dynamic_program import FeedbackPolicy


class PlannerStatus(enum.Enum):
    EXACT_SOLUTION = "exact_solution"
    APPROXIMATE_SOLUTION = "approximate_solution"
    TIMEOUT = "timeout"
    INVALID_START = "invalid_start"
    INVALID_GOAL = "invalid_goal"
    UNRECOGNIZED_GOAL_TYPE = "unrecognized_goal_type"

    def is_solved(self) -> bool:
        return self in (PlannerStatus.EXACT_SOLUTION, PlannerStatus.APPROXIMATE_SOLUTION)


@dataclass
class FeedbackPath:
    """(belief, controller to apply next) pairs; the last controller is None."""
    steps: List[Tuple[BeliefState, Optional[ControllerRecord]]] = field(default_factory=list)
    vertices: List[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def num_edges(self) -> int:
        return max(0, len(self.steps) - 1)

    def states(self) -> List[List[float]]:
        return [b.as_list() for b, _ in self.steps]


class FIRM:
    def __init__(
        self,
        space,
        pdef: Optional[ProblemDefinition] = None,
        cfg: Optional[Dict[str, Any]] = None,
        controller_cfg: Optional[Dict[str, Any]] = None,
        execution_cfg: Optional[Dict[str, Any]] = None,
        viz: Optional[VisualizationSink] = None,
    ):
        self.space = space
        self.pdef = pdef if pdef is not None else ProblemDefinition(space)
        self.cfg = merged(PLANNER_DEFAULTS, cfg)
        self.controller_cfg = merged(CONTROLLER_DEFAULTS, controller_cfg)
        self.execution_cfg = merged(EXECUTION_DEFAULTS, execution_cfg)
        self.viz = viz if viz is not None else VisualizationSink()
        self.debug = bool(self.cfg.get("debug", False))

        self.builder = RoadmapBuilder(space, self.cfg, self.controller_cfg, viz=self.viz)
        self.graph = self.builder.graph
        self.executor = FeedbackExecutor(self.builder, self.execution_cfg, self.cfg)

        self.start_ids: List[int] = []
        self.goal_ids: List[int] = []
        self.policy: Optional[FeedbackPolicy] = None
        self.feedback_path: Optional[FeedbackPath] = None
        self.solution_pair: Optional[Tuple[int, int]] = None
        self._solution_found = threading.Event()
        self._stop_watch = threading.Event()

    # ----- configuration -----
    def set_problem_definition(self, pdef: ProblemDefinition) -> None:
        self.pdef = pdef
        self.clear_query()

    def set_max_nearest_neighbors(self, k: int) -> None:
        self.builder.set_max_nearest_neighbors(k)

    def set_connection_strategy(self, name: str) -> None:
        self.builder.set_connection_strategy(name)

    # ----- roadmap -----
    def construct_roadmap(self, ptc: Termination) -> None:
        self.builder.construct_roadmap(ptc)

    def _check_for_solution(self) -> bool:
        with self.graph.lock:
            if self.graph.num_vertices < int(self.cfg["min_vertices"]):
                return False
            for s in self.start_ids:
                for g in self.goal_ids:
                    if self.graph.same_component(s, g):
                        self._publish(s, g)
                        return True
        return False

    def _publish(self, start: int, goal: int) -> None:
        self.policy = self.executor.solve(goal)
        self.solution_pair = (int(start), int(goal))
        self.feedback_path = self._build_feedback_path(start, goal)
        self.viz.set_feedback_edges([self.graph.edge(eid) for eid in self.policy.feedback.values()])
        if self.debug:
            print(f"[DEBUG firm] solution {start}->{goal}, path length {len(self.feedback_path)}")

    def _watch(self) -> None:
        interval = float(self.cfg["watch_interval_s"])
        while not self._stop_watch.is_set():
            if self._check_for_solution():
                self._solution_found.set()
                return
            self._stop_watch.wait(interval)

    def _build_feedback_path(self, start: int, goal: int) -> FeedbackPath:
        path = FeedbackPath()
        cur = start
        # a policy without cycles visits each vertex at most once
        for _ in range(self.graph.num_vertices + 1):
            if cur == goal:
                break
            edge = self.policy.edge_for(self.graph, cur)
            if edge is None:
                break
            path.steps.append((self.graph.vertex(cur).state.copy(), edge.controller))
            path.vertices.append(cur)
            cur = edge.target
        path.steps.append((self.graph.vertex(cur).state.copy(), None))
        path.vertices.append(cur)
        return path

    # ----- query -----
    def _setup_query(self) -> Optional[PlannerStatus]:
        goal = self.pdef.goal
        if not isinstance(goal, GoalSampleableRegion):
            print("[FIRM] goal is not sampleable")
            return PlannerStatus.UNRECOGNIZED_GOAL_TYPE

        if not self.start_ids:
            for s in self.pdef.starts:
                if not self.space.is_valid(s.x):
                    print(f"[WARN] invalid start state {s.as_list()}")
                    continue
                v = self.builder.add_state_to_graph(s, add_reverse_edge=True)
                self.start_ids.append(v.vid)
        if not self.start_ids:
            return PlannerStatus.INVALID_START

        if not goal.could_sample():
            return PlannerStatus.INVALID_GOAL
        attempts = 0
        while len(self.goal_ids) < goal.max_sample_count() and attempts < 10 * goal.max_sample_count():
            attempts += 1
            g = goal.sample_goal(self.builder.rng)
            if g is None:
                continue
            if not any(goal.is_start_goal_pair_valid(self.graph.vertex(s).state, g) for s in self.start_ids):
                continue
            v = self.builder.add_state_to_graph(g, add_reverse_edge=True)
            self.goal_ids.append(v.vid)
        if not self.goal_ids:
            return PlannerStatus.INVALID_GOAL
        return None

    def solve(self, ptc: Termination) -> PlannerStatus:
        bad = self._setup_query()
        if bad is not None:
            return bad

        self._solution_found.clear()
        self._stop_watch.clear()
        watcher = threading.Thread(target=self._watch, name="firm-solution-watcher", daemon=True)
        watcher.start()
        try:
            self.builder.construct_roadmap(or_ptc(ptc, self._solution_found.is_set))
        finally:
            self._stop_watch.set()
            watcher.join()

        if self._solution_found.is_set():
            print(f"[FIRM] exact solution with {self.graph.num_vertices} vertices, {self.graph.num_edges} edges")
            return PlannerStatus.EXACT_SOLUTION

        # connected but the watcher never accepted it (e.g. below min_vertices)
        with self.graph.lock:
            for s in self.start_ids:
                for g in self.goal_ids:
                    if self.graph.same_component(s, g):
                        self._publish(s, g)
                        print(f"[FIRM] approximate solution with {self.graph.num_vertices} vertices")
                        return PlannerStatus.APPROXIMATE_SOLUTION
        print(f"[FIRM] no solution found ({self.graph.num_vertices} vertices)")
        return PlannerStatus.TIMEOUT

    def get_feedback_path(self) -> Optional[FeedbackPath]:
        return self.feedback_path

    # ----- execution -----
    def _require_solution(self) -> Tuple[int, int]:
        if self.solution_pair is None:
            raise RuntimeError("FIRM: no solution; call solve() first")
        return self.solution_pair

    def execute_feedback(self) -> ExecutionReport:
        start, goal = self._require_solution()
        rep = self.executor.execute_feedback(start, goal)
        self.policy = self.executor.policy
        return rep

    def execute_feedback_with_rollout(self) -> ExecutionReport:
        start, goal = self._require_solution()
        rep = self.executor.execute_feedback_with_rollout(start, goal)
        self.policy = self.executor.policy
        return rep

    # ----- export / reset -----
    def get_planner_data(self) -> Dict[str, Any]:
        with self.graph.lock:
            vertices = []
            for v in self.graph.vertices():
                vertices.append({
                    "id": int(v.vid),
                    "x": v.state.as_list(),
                    "cov_trace": v.state.cov_trace(),
                    "component": int(self.graph.component_of(v.vid)) if v.vid in self.graph.components else -1,
                    "stabilizable": bool(v.node_controller.stabilizable) if v.node_controller is not None else False,
                    "attempts": int(v.total_connection_attempts),
                    "successes": int(v.successful_connection_attempts),
                    "start": v.vid in self.start_ids,
                    "goal": v.vid in self.goal_ids,
                })
            edges = [{
                "id": int(e.eid),
                "source": int(e.source),
                "target": int(e.target),
                "cost": float(e.weight.cost),
                "success_probability": float(e.weight.success_probability),
            } for e in self.graph.edges()]
            feedback = {}
            cost_to_go = {}
            if self.policy is not None:
                feedback = {str(k): int(v) for k, v in self.policy.feedback.items()}
                cost_to_go = {str(k): float(v) for k, v in self.policy.cost_to_go.items()}
            return {
                "version": "v1",
                "vertices": vertices,
                "edges": edges,
                "start_ids": [int(v) for v in self.start_ids],
                "goal_ids": [int(v) for v in self.goal_ids],
                "feedback": feedback,
                "cost_to_go": cost_to_go,
                "graph": self.graph.summary(),
            }

    def clear_query(self) -> None:
        """Forget start/goal and the solution; the roadmap is kept."""
        self.start_ids = []
        self.goal_ids = []
        self.policy = None
        self.executor.policy = None
        self.feedback_path = None
        self.solution_pair = None
        self._solution_found.clear()

    def clear(self) -> None:
        self.clear_query()
        self.builder.clear()
