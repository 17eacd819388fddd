"""
Stochastic dynamic programming over the roadmap (v1).

Value iteration for the stochastic shortest path to one goal vertex:

  J(v) = discount * min_e [ p_e * J(t_e) + (1 - p_e) * OBSTACLE_COST_TO_GO + cost_e ]

Every non-goal vertex with at least one outgoing edge starts at
INIT_COST_TO_GO, a small optimistic value, not infinity, and is iterated, so
each of them ends up with exactly one feedback edge. The convergence test only
looks at vertices in the goal's connected component: values elsewhere can
never reach the goal and grow by their edge cost on every sweep. A vertex
without out-edges keeps OBSTACLE_COST_TO_GO when it shows up as an edge target
(the goal keeps GOAL_COST_TO_GO).

The whole solve holds graph.lock.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from firm_planner.planner.defaults import (
    DP_CONVERGENCE_THRESHOLD,
    DP_MAX_ITERATIONS,
    DYNAMIC_PROGRAMMING_DISCOUNT_FACTOR,
    GOAL_COST_TO_GO,
    INIT_COST_TO_GO,
    OBSTACLE_COST_TO_GO,
)
from firm_planner.roadmap.graph import Edge, RoadmapGraph


@dataclass
class FeedbackPolicy:
    goal: int
    cost_to_go: Dict[int, float]
    feedback: Dict[int, int]          # vertex id -> edge id
    iterations: int = 0
    converged: bool = False
    residuals: List[float] = field(default_factory=list)
    graph_version: int = -1

    def is_stale(self, graph: RoadmapGraph) -> bool:
        return int(graph.version) != int(self.graph_version)

    def edge_for(self, graph: RoadmapGraph, vid: int) -> Optional[Edge]:
        eid = self.feedback.get(vid)
        if eid is None:
            return None
        return graph.edge(eid)

    def value(self, vid: int) -> float:
        return float(self.cost_to_go.get(vid, OBSTACLE_COST_TO_GO))


def edge_value(edge: Edge, cost_to_go: Dict[int, float]) -> float:
    j_t = cost_to_go.get(edge.target, OBSTACLE_COST_TO_GO)
    p = edge.weight.success_probability
    return p * j_t + (1.0 - p) * OBSTACLE_COST_TO_GO + edge.weight.cost


def best_edge(graph: RoadmapGraph, vid: int, cost_to_go: Dict[int, float],
              discount: float = DYNAMIC_PROGRAMMING_DISCOUNT_FACTOR) -> Tuple[Optional[Edge], float]:
    """One-vertex Bellman update: first minimum in edge insertion order."""
    best: Optional[Edge] = None
    best_val = float("inf")
    for e in graph.out_edges(vid):
        val = edge_value(e, cost_to_go)
        if val < best_val:
            best_val = val
            best = e
    if best is None:
        return None, OBSTACLE_COST_TO_GO
    return best, float(discount) * best_val


def solve_dynamic_program(
    graph: RoadmapGraph,
    goal: int,
    max_iterations: int = DP_MAX_ITERATIONS,
    threshold: float = DP_CONVERGENCE_THRESHOLD,
    discount: float = DYNAMIC_PROGRAMMING_DISCOUNT_FACTOR,
    debug: bool = False,
) -> FeedbackPolicy:
    with graph.lock:
        if not graph.has_vertex(goal):
            raise KeyError(f"solve_dynamic_program: unknown goal vertex {goal}")

        cost_to_go: Dict[int, float] = {}
        iterated: List[int] = []
        measured: List[int] = []
        for vid in graph.vertex_ids():
            if vid == goal:
                cost_to_go[vid] = GOAL_COST_TO_GO
            elif graph.out_degree(vid) > 0:
                cost_to_go[vid] = INIT_COST_TO_GO
                iterated.append(vid)
                if graph.same_component(vid, goal):
                    measured.append(vid)

        feedback: Dict[int, int] = {}
        residuals: List[float] = []
        converged = False
        it = 0
        while it < int(max_iterations):
            it += 1
            new_cost = dict(cost_to_go)
            for vid in iterated:
                e, val = best_edge(graph, vid, cost_to_go, discount)
                feedback[vid] = e.eid
                new_cost[vid] = val
            diff = max((abs(new_cost[v] - cost_to_go[v]) for v in measured), default=0.0)
            residuals.append(float(diff))
            cost_to_go = new_cost
            if diff <= float(threshold):
                converged = True
                break

        if not converged:
            last = residuals[-1] if residuals else float("nan")
            print(f"[WARN] value iteration hit the cap ({max_iterations}) with residual {last:.4g}; keeping best policy")
        if debug:
            print(f"[DEBUG dp] goal={goal} iterated={len(iterated)} goal_component={len(measured)} "
                  f"iterations={it} converged={converged}")

        return FeedbackPolicy(
            goal=int(goal),
            cost_to_go=cost_to_go,
            feedback=feedback,
            iterations=it,
            converged=converged,
            residuals=residuals,
            graph_version=int(graph.version),
        )
