"""Tests for the roadmap graph: weights, union-find, vertex/edge bookkeeping."""

import itertools

import numpy as np
import pytest

from firm_planner.belief.state import BeliefState
from firm_planner.controllers.controller import EDGE, ControllerRecord
from firm_planner.roadmap.builder import RoadmapBuilder
from firm_planner.roadmap.graph import DisjointSets, FIRMWeight, RoadmapGraph
from firm_planner.space.plane_space import PlaneSpace


# ============================================================
# Helpers
# ============================================================

def dummy_controller(x=(0.0, 0.0)) -> ControllerRecord:
    return ControllerRecord(kind=EDGE, goal=BeliefState.from_xy(x))


def small_graph(n=4) -> RoadmapGraph:
    g = RoadmapGraph()
    for i in range(n):
        g.add_vertex(BeliefState.from_xy([float(i), 0.0]))
    return g


# ============================================================
# FIRMWeight
# ============================================================

def test_weight_accepts_valid_range():
    w = FIRMWeight(cost=3.5, success_probability=0.25)
    assert w.cost == 3.5
    assert w.success_probability == 0.25
    FIRMWeight(cost=0.0, success_probability=0.0)
    FIRMWeight(cost=1e6, success_probability=1.0)


def test_weight_rejects_negative_cost():
    with pytest.raises(ValueError):
        FIRMWeight(cost=-1.0, success_probability=0.5)


def test_weight_rejects_probability_out_of_range():
    with pytest.raises(ValueError):
        FIRMWeight(cost=1.0, success_probability=1.5)
    with pytest.raises(ValueError):
        FIRMWeight(cost=1.0, success_probability=-0.1)


def test_weight_rejects_nan():
    with pytest.raises(ValueError):
        FIRMWeight(cost=float("nan"), success_probability=0.5)


def test_weight_is_immutable():
    w = FIRMWeight(cost=1.0, success_probability=1.0)
    with pytest.raises(Exception):
        w.cost = 2.0


# ============================================================
# DisjointSets
# ============================================================

def test_disjoint_sets_union_and_find():
    ds = DisjointSets()
    for v in range(6):
        ds.make_set(v)
    ds.union(0, 1)
    ds.union(2, 3)
    ds.union(1, 3)
    assert ds.same(0, 2)
    assert ds.same(1, 3)
    assert not ds.same(0, 4)
    assert ds.find(0) == ds.find(3)


def test_disjoint_sets_unknown_vertex_is_never_same():
    ds = DisjointSets()
    ds.make_set(0)
    assert not ds.same(0, 99)
    assert 0 in ds
    assert 99 not in ds


# ============================================================
# RoadmapGraph
# ============================================================

def test_add_edge_is_directed():
    g = small_graph(2)
    e = g.add_edge(0, 1, dummy_controller(), FIRMWeight(1.0, 1.0))
    assert g.out_degree(0) == 1
    assert g.out_degree(1) == 0
    assert g.edge(e.eid).target == 1


def test_add_edge_unknown_vertex_raises():
    g = small_graph(2)
    with pytest.raises(KeyError):
        g.add_edge(0, 7, dummy_controller(), FIRMWeight(1.0, 1.0))


def test_remove_vertex_drops_incident_edges():
    g = small_graph(3)
    g.add_edge(0, 1, dummy_controller(), FIRMWeight(1.0, 1.0))
    g.add_edge(1, 2, dummy_controller(), FIRMWeight(1.0, 1.0))
    g.add_edge(2, 1, dummy_controller(), FIRMWeight(1.0, 1.0))
    g.remove_vertex(1)
    assert not g.has_vertex(1)
    assert g.num_edges == 0
    assert g.out_degree(0) == 0
    assert g.out_degree(2) == 0


def test_transient_vertex_has_no_component():
    g = small_graph(1)
    t = g.add_vertex(BeliefState.from_xy([5.0, 5.0]), transient=True)
    assert t.vid not in g.components
    assert not g.same_component(0, t.vid)


def test_ids_are_never_reused():
    g = small_graph(3)
    e0 = g.add_edge(0, 1, dummy_controller(), FIRMWeight(1.0, 1.0))
    g.remove_vertex(2)
    v = g.add_vertex(BeliefState.from_xy([9.0, 9.0]))
    assert v.vid == 3
    g.clear()
    v2 = g.add_vertex(BeliefState.from_xy([0.0, 0.0]))
    v3 = g.add_vertex(BeliefState.from_xy([1.0, 0.0]))
    e1 = g.add_edge(v2.vid, v3.vid, dummy_controller(), FIRMWeight(1.0, 1.0))
    assert v2.vid == 4
    assert e1.eid > e0.eid


def test_version_bumps_on_mutation():
    g = small_graph(2)
    v0 = g.version
    g.add_edge(0, 1, dummy_controller(), FIRMWeight(1.0, 1.0))
    assert g.version > v0


def test_failure_ratio():
    g = small_graph(1)
    v = g.vertex(0)
    assert v.failure_ratio() == 1.0
    v.total_connection_attempts = 4
    v.successful_connection_attempts = 3
    assert v.failure_ratio() == pytest.approx(0.25)


# ============================================================
# Union-find agrees with reachability on a built roadmap
# ============================================================

def test_union_find_consistent_with_reachability():
    space = PlaneSpace(
        bounds=[[0.0, 10.0], [0.0, 10.0]],
        obstacles=[[4.5, 0.0, 5.5, 8.0], [0.0, 4.5, 3.0, 5.5]],
    )
    builder = RoadmapBuilder(space, {"max_nearest_neighbors": 3, "num_particles": 1, "seed": 11})
    builder.grow_roadmap(lambda: builder.graph.num_vertices >= 25)
    g = builder.graph
    assert g.num_vertices == 25
    for a, b in itertools.combinations(g.vertex_ids(), 2):
        if g.same_component(a, b):
            assert g.reachable(a, b)
        else:
            assert not g.reachable(a, b)
