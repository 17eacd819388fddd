"""Tests for the FIRM planner: query statuses, watcher, feedback path, export."""

import threading

import pytest

from firm_planner.belief.state import BeliefState
from firm_planner.planner.firm import FIRM, PlannerStatus
from firm_planner.planner.goals import Goal, ProblemDefinition
from firm_planner.planner.termination import CancellationToken, or_ptc, timed_ptc, vertex_count_ptc
from firm_planner.planner.viz_sink import RecordingSink
from firm_planner.space.plane_space import PlaneSpace


PLANNER_CFG = {"num_particles": 1, "max_nearest_neighbors": 6, "seed": 2, "roadmap_build_time": 0.05}


# ============================================================
# Helpers
# ============================================================

def open_space() -> PlaneSpace:
    return PlaneSpace([[0.0, 10.0], [0.0, 10.0]], [[4.0, 4.0, 6.0, 6.0]])


def walled_space() -> PlaneSpace:
    return PlaneSpace([[0.0, 10.0], [0.0, 10.0]], [[4.0, 0.0, 6.0, 10.0]])


def make_planner(space, start, goal, cfg=None, viz=None) -> FIRM:
    pdef = ProblemDefinition(space)
    pdef.set_start_and_goal(BeliefState.from_xy(start), BeliefState.from_xy(goal), threshold=0.3)
    c = dict(PLANNER_CFG)
    c.update(cfg or {})
    return FIRM(space, pdef, cfg=c, viz=viz)


def watcher_alive() -> bool:
    return any(t.name == "firm-solution-watcher" and t.is_alive() for t in threading.enumerate())


# ============================================================
# Query validation
# ============================================================

def test_unsampleable_goal_is_unrecognized():
    space = open_space()
    pdef = ProblemDefinition(space, [BeliefState.from_xy([1.0, 1.0])], Goal(space))
    planner = FIRM(space, pdef, cfg=PLANNER_CFG)
    assert planner.solve(timed_ptc(1.0)) == PlannerStatus.UNRECOGNIZED_GOAL_TYPE
    assert planner.graph.num_vertices == 0


def test_start_in_obstacle_is_invalid_start():
    planner = make_planner(open_space(), [5.0, 5.0], [9.0, 9.0])
    assert planner.solve(timed_ptc(1.0)) == PlannerStatus.INVALID_START


def test_goal_in_obstacle_is_invalid_goal():
    planner = make_planner(open_space(), [1.0, 1.0], [5.0, 5.0])
    assert planner.solve(timed_ptc(1.0)) == PlannerStatus.INVALID_GOAL


def test_status_is_solved():
    assert PlannerStatus.EXACT_SOLUTION.is_solved()
    assert PlannerStatus.APPROXIMATE_SOLUTION.is_solved()
    assert not PlannerStatus.TIMEOUT.is_solved()


# ============================================================
# Solving
# ============================================================

def test_exact_solution_and_feedback_path():
    sink = RecordingSink()
    planner = make_planner(open_space(), [1.0, 1.0], [9.0, 9.0], viz=sink)
    status = planner.solve(timed_ptc(10.0))
    assert status == PlannerStatus.EXACT_SOLUTION
    assert not watcher_alive()

    path = planner.get_feedback_path()
    assert path is not None
    assert path.vertices[0] == planner.start_ids[0]
    assert path.vertices[-1] == planner.goal_ids[0]
    assert path.steps[-1][1] is None
    assert all(ctl is not None for _, ctl in path.steps[:-1])
    assert path.num_edges == len(path.vertices) - 1
    assert len(sink.feedback) == len(planner.policy.feedback)


def test_walled_query_times_out():
    planner = make_planner(walled_space(), [2.0, 5.0], [8.0, 5.0])
    status = planner.solve(timed_ptc(0.3))
    assert status == PlannerStatus.TIMEOUT
    assert not watcher_alive()
    assert planner.get_feedback_path() is None
    assert not planner.graph.same_component(planner.start_ids[0], planner.goal_ids[0])


def test_connected_below_min_vertices_is_approximate():
    planner = make_planner(open_space(), [1.0, 1.0], [2.0, 2.0], cfg={"min_vertices": 1000})
    status = planner.solve(vertex_count_ptc(planner.graph, 8))
    assert status == PlannerStatus.APPROXIMATE_SOLUTION
    assert planner.get_feedback_path() is not None


def test_cancellation_token_stops_solve():
    planner = make_planner(walled_space(), [2.0, 5.0], [8.0, 5.0])
    token = CancellationToken()
    token.cancel()
    assert planner.solve(or_ptc(token, timed_ptc(10.0))) == PlannerStatus.TIMEOUT
    assert not watcher_alive()


def test_second_solve_reuses_query_vertices():
    planner = make_planner(open_space(), [1.0, 1.0], [9.0, 9.0])
    planner.solve(timed_ptc(10.0))
    starts, goals = list(planner.start_ids), list(planner.goal_ids)
    assert planner.solve(timed_ptc(10.0)) == PlannerStatus.EXACT_SOLUTION
    assert planner.start_ids == starts
    assert planner.goal_ids == goals


# ============================================================
# Execution through the planner
# ============================================================

def test_execute_before_solve_raises():
    planner = make_planner(open_space(), [1.0, 1.0], [9.0, 9.0])
    with pytest.raises(RuntimeError):
        planner.execute_feedback()
    with pytest.raises(RuntimeError):
        planner.execute_feedback_with_rollout()


def test_execute_after_solve_reaches_goal():
    planner = make_planner(open_space(), [1.0, 1.0], [9.0, 9.0])
    assert planner.solve(timed_ptc(10.0)).is_solved()
    rep = planner.execute_feedback()
    assert rep.reached
    assert planner.policy is planner.executor.policy


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_rollout_with_default_noise_reaches_goal(seed):
    planner = make_planner(open_space(), [1.0, 1.0], [9.0, 9.0], cfg={"seed": seed})
    assert planner.solve(timed_ptc(10.0)).is_solved()
    rep = planner.execute_feedback_with_rollout()
    assert rep.reached
    assert rep.stop_reason == "goal"
    assert rep.steps < int(planner.executor.cfg["max_execution_steps"])
    assert not any(v.transient for v in planner.graph.vertices())


# ============================================================
# Export / reset
# ============================================================

def test_planner_data_export():
    planner = make_planner(open_space(), [1.0, 1.0], [9.0, 9.0])
    planner.solve(timed_ptc(10.0))
    data = planner.get_planner_data()
    for key in ("version", "vertices", "edges", "start_ids", "goal_ids", "feedback", "cost_to_go", "graph"):
        assert key in data
    assert len(data["vertices"]) == planner.graph.num_vertices
    assert len(data["edges"]) == planner.graph.num_edges
    assert data["cost_to_go"][str(planner.goal_ids[0])] == 0.0
    starts = [v for v in data["vertices"] if v["start"]]
    assert [v["id"] for v in starts] == planner.start_ids


def test_clear_query_keeps_roadmap():
    planner = make_planner(open_space(), [1.0, 1.0], [9.0, 9.0])
    planner.solve(timed_ptc(10.0))
    n = planner.graph.num_vertices
    planner.clear_query()
    assert planner.start_ids == []
    assert planner.goal_ids == []
    assert planner.get_feedback_path() is None
    assert planner.graph.num_vertices == n


def test_clear_drops_roadmap():
    planner = make_planner(open_space(), [1.0, 1.0], [9.0, 9.0])
    planner.solve(timed_ptc(10.0))
    planner.clear()
    assert planner.graph.num_vertices == 0
    assert planner.solution_pair is None
