"""Tests for roadmap construction: insertion, Monte Carlo weights, strategies, expansion."""

import math

import numpy as np
import pytest

from firm_planner.belief.state import BeliefState
from firm_planner.models.motion_model import OmnidirectionalMotionModel
from firm_planner.models.observation_model import LandmarkObservationModel
from firm_planner.planner.defaults import EXTREMELY_HIGH_EDGE_COST
from firm_planner.planner.termination import iteration_ptc, or_ptc, timed_ptc, vertex_count_ptc
from firm_planner.planner.viz_sink import RecordingSink
from firm_planner.roadmap.builder import RoadmapBuilder
from firm_planner.roadmap.connection import KStarStrategy, NearestNeighbors, make_connection_strategy
from firm_planner.space.plane_space import PlaneSpace


# ============================================================
# Helpers
# ============================================================

def noisy_space(obstacles=None) -> PlaneSpace:
    mm = OmnidirectionalMotionModel({"dt": 0.1, "max_speed": 1.0, "sigma_0": 0.03, "eta": 0.1})
    om = LandmarkObservationModel([[5.0, 5.0]], {"sigma_0": 0.05, "eta": 0.05, "sensing_range": 20.0})
    return PlaneSpace([[0.0, 10.0], [0.0, 10.0]], obstacles, mm, om)


def make_builder(space=None, **cfg) -> RoadmapBuilder:
    base = {"num_particles": 3, "max_nearest_neighbors": 5, "seed": 3}
    base.update(cfg)
    return RoadmapBuilder(space if space is not None else noisy_space(), base)


# ============================================================
# Insertion
# ============================================================

def test_vertex_gets_node_controller_before_edges():
    b = make_builder()
    v = b.add_state_to_graph(BeliefState.from_xy([2.0, 2.0]))
    assert v.node_controller is not None
    assert v.state.cov_trace() > 0.0


def test_connection_updates_attempt_counters_and_components():
    b = make_builder()
    v0 = b.add_state_to_graph(BeliefState.from_xy([2.0, 2.0]))
    v1 = b.add_state_to_graph(BeliefState.from_xy([3.0, 2.0]), add_reverse_edge=True)
    assert v0.total_connection_attempts == 2
    assert v0.successful_connection_attempts == 1
    assert v1.total_connection_attempts == 2
    assert v1.successful_connection_attempts == 1
    assert b.graph.out_degree(v1.vid) == 1
    assert b.graph.out_degree(v0.vid) == 1
    assert b.graph.same_component(v0.vid, v1.vid)


def test_without_reverse_edge_only_new_vertex_gets_out_edge():
    b = make_builder()
    v0 = b.add_state_to_graph(BeliefState.from_xy([2.0, 2.0]))
    v1 = b.add_state_to_graph(BeliefState.from_xy([3.0, 2.0]), add_reverse_edge=False)
    assert b.graph.out_degree(v1.vid) == 1
    assert b.graph.out_degree(v0.vid) == 0


def test_blocked_neighbour_counts_attempt_but_no_edge():
    b = make_builder(noisy_space(obstacles=[[4.0, 0.0, 6.0, 10.0]]))
    v0 = b.add_state_to_graph(BeliefState.from_xy([2.0, 5.0]))
    v1 = b.add_state_to_graph(BeliefState.from_xy([8.0, 5.0]), add_reverse_edge=True)
    assert v0.total_connection_attempts == 2
    assert v0.successful_connection_attempts == 0
    assert b.graph.num_edges == 0
    assert not b.graph.same_component(v0.vid, v1.vid)


def test_duplicate_belief_is_not_connected():
    b = make_builder()
    b.add_state_to_graph(BeliefState.from_xy([2.0, 2.0]))
    v1 = b.add_state_to_graph(BeliefState.from_xy([2.0, 2.0]), add_reverse_edge=True)
    assert b.graph.num_edges == 0
    assert v1.total_connection_attempts == 1


def test_transient_vertex_is_not_indexed_or_unioned():
    b = make_builder()
    v0 = b.add_state_to_graph(BeliefState.from_xy([2.0, 2.0]))
    t = b.add_state_to_graph(BeliefState.from_xy([2.5, 2.0]), transient=True)
    assert b.graph.out_degree(t.vid) == 1
    assert not b.graph.same_component(v0.vid, t.vid)
    assert b.nn.size() == 1
    b.remove_transient(t.vid)
    assert not b.graph.has_vertex(t.vid)
    assert b.graph.num_edges == 0


def test_viz_sink_sees_vertices_and_edges():
    sink = RecordingSink()
    b = RoadmapBuilder(noisy_space(), {"num_particles": 1}, viz=sink)
    b.add_state_to_graph(BeliefState.from_xy([2.0, 2.0]))
    b.add_state_to_graph(BeliefState.from_xy([3.0, 3.0]), add_reverse_edge=True)
    assert len(sink.vertices) == 2
    assert len(sink.edges) == 2


# ============================================================
# Monte Carlo edge weights
# ============================================================

def test_edge_weights_in_range():
    b = make_builder(noisy_space(obstacles=[[4.0, 3.0, 6.0, 7.0]]))
    b.grow_roadmap(vertex_count_ptc(b.graph, 20))
    assert b.graph.num_edges > 0
    for e in b.graph.edges():
        assert 0.0 <= e.weight.success_probability <= 1.0
        assert e.weight.cost >= 0.0
        if e.weight.success_probability == 0.0:
            assert e.weight.cost == EXTREMELY_HIGH_EDGE_COST


def test_all_trials_failing_gives_sentinel_cost():
    b = make_builder(noisy_space(obstacles=[[4.0, 0.0, 6.0, 10.0]]))
    ctl, w = b.generate_edge_controller_with_cost(BeliefState.from_xy([2.0, 5.0]), BeliefState.from_xy([8.0, 5.0]))
    assert w.success_probability == 0.0
    assert w.cost == EXTREMELY_HIGH_EDGE_COST
    assert ctl.num_steps > 0


def test_edge_estimate_is_reproducible_with_seeded_rng():
    b = make_builder(num_particles=8)
    a = BeliefState.from_xy([1.0, 1.0])
    t = BeliefState.from_xy([4.0, 3.0])
    _, w1 = b.generate_edge_controller_with_cost(a, t, rng=np.random.default_rng(42))
    _, w2 = b.generate_edge_controller_with_cost(a, t, rng=np.random.default_rng(42))
    assert w1 == w2


def test_edge_cost_is_step_count_without_covariance_weight():
    b = make_builder(num_particles=4)
    a = BeliefState.from_xy([1.0, 1.0])
    ctl, w = b.generate_edge_controller_with_cost(a, BeliefState.from_xy([4.0, 3.0]))
    assert w.success_probability == 1.0
    assert w.cost == pytest.approx(float(ctl.num_steps))


# ============================================================
# Connection strategies
# ============================================================

def test_nearest_neighbors_order_and_exclusion():
    nn = NearestNeighbors()
    for vid, x in enumerate([[0.0, 0.0], [1.0, 0.0], [3.0, 0.0], [0.5, 0.0]]):
        nn.add(vid, np.array(x))
    assert nn.nearest_k(np.array([0.0, 0.0]), 2, exclude=0) == [3, 1]
    assert nn.nearest_r(np.array([0.0, 0.0]), 1.2) == [0, 3, 1]
    nn.remove(3)
    assert nn.nearest_k(np.array([0.0, 0.0]), 2) == [0, 1]


def test_k_star_grows_with_roadmap_size():
    nn = NearestNeighbors()
    count = {"n": 1}
    s = KStarStrategy(nn, {"dim": 2}, milestone_count=lambda: count["n"])
    assert s.current_k() == 1
    count["n"] = 100
    assert s.current_k() == int(math.ceil(math.e * 1.5 * math.log(100)))


def test_unknown_strategy_raises():
    with pytest.raises(ValueError):
        make_connection_strategy("nope", {}, NearestNeighbors())


def test_set_max_nearest_neighbors_limits_connections():
    b = make_builder(num_particles=1, max_nearest_neighbors=10)
    for x in range(1, 7):
        b.add_state_to_graph(BeliefState.from_xy([float(x), 1.0]))
    b.set_max_nearest_neighbors(2)
    v = b.add_state_to_graph(BeliefState.from_xy([3.5, 2.0]))
    assert b.graph.out_degree(v.vid) == 2


def test_radius_strategy_connects_only_close_vertices():
    b = make_builder(num_particles=1, connection_strategy="radius", connection_radius=1.5)
    b.add_state_to_graph(BeliefState.from_xy([1.0, 1.0]))
    b.add_state_to_graph(BeliefState.from_xy([8.0, 8.0]))
    v = b.add_state_to_graph(BeliefState.from_xy([2.0, 1.0]))
    assert [e.target for e in b.graph.out_edges(v.vid)] == [0]


def test_radius_strategy_ignores_k_nearest_cap():
    b = make_builder(num_particles=1, connection_strategy="radius", connection_radius=3.0,
                     max_nearest_neighbors=2)
    for x in range(1, 6):
        b.add_state_to_graph(BeliefState.from_xy([float(x), 1.0]))
    v = b.add_state_to_graph(BeliefState.from_xy([3.0, 2.0]))
    assert b.graph.out_degree(v.vid) == 5


def test_radius_strategy_own_cap():
    b = make_builder(num_particles=1, connection_strategy="radius", connection_radius=3.0,
                     radius_max_neighbors=3)
    for x in range(1, 6):
        b.add_state_to_graph(BeliefState.from_xy([float(x), 1.0]))
    v = b.add_state_to_graph(BeliefState.from_xy([3.0, 2.0]))
    assert sorted(e.target for e in b.graph.out_edges(v.vid)) == [1, 2, 3]


def test_nearest_neighbors_ties_keep_insertion_order():
    nn = NearestNeighbors()
    for vid, x in enumerate([[2.0, 0.0], [0.0, 1.0], [1.0, 0.0], [0.0, -1.0], [-1.0, 0.0]]):
        nn.add(vid, np.array(x))
    assert nn.nearest_k(np.array([0.0, 0.0]), 2) == [1, 2]
    assert nn.nearest_r(np.array([0.0, 0.0]), 1.5) == [1, 2, 3, 4]
    nn.add(7, np.array([0.0, 0.5]))
    assert nn.nearest_k(np.array([0.0, 0.0]), 1) == [7]
    nn.clear()
    assert nn.size() == 0
    assert nn.nearest_k(np.array([0.0, 0.0]), 3) == []


# ============================================================
# Growth / expansion / termination
# ============================================================

def test_grow_roadmap_stops_on_predicate():
    b = make_builder(num_particles=1)
    added = b.grow_roadmap(vertex_count_ptc(b.graph, 12))
    assert added == 12
    assert b.graph.num_vertices == 12


def test_reject_unstabilizable_samples():
    mm = OmnidirectionalMotionModel({"sigma_0": 0.01, "eta": 0.0})
    om = LandmarkObservationModel([[1.0, 1.0]], {"sensing_range": 2.0})
    space = PlaneSpace([[0.0, 10.0], [0.0, 10.0]], None, mm, om)
    b = RoadmapBuilder(space, {"num_particles": 1, "reject_unstabilizable": True, "seed": 5})
    b.grow_roadmap(vertex_count_ptc(b.graph, 5))
    for v in b.graph.vertices():
        assert v.node_controller.stabilizable


def test_expand_roadmap_adds_vertices_from_existing_ones():
    b = make_builder(num_particles=1, seed=9)
    b.grow_roadmap(vertex_count_ptc(b.graph, 5))
    added = b.expand_roadmap(or_ptc(vertex_count_ptc(b.graph, 9), timed_ptc(5.0)))
    assert added >= 1


def test_construct_roadmap_alternates_until_predicate():
    b = make_builder(num_particles=1, roadmap_build_time=0.05)
    b.construct_roadmap(or_ptc(vertex_count_ptc(b.graph, 15), timed_ptc(10.0)))
    assert b.graph.num_vertices >= 15


def test_iteration_ptc_counts_calls():
    p = iteration_ptc(2)
    assert [p(), p(), p()] == [False, False, True]


def test_clear_resets_roadmap():
    b = make_builder(num_particles=1)
    b.grow_roadmap(vertex_count_ptc(b.graph, 4))
    b.clear()
    assert b.graph.num_vertices == 0
    assert b.nn.size() == 0
    assert b.milestones == []
