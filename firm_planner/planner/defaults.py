"""
FIRM planner defaults (v1).

Fixed constants used when a config dict does not override them.
Do NOT rename keys; runners and tests read them by name.
"""
from __future__ import annotations

from typing import Any, Dict


# Roadmap construction
MAX_RANDOM_BOUNCE_STEPS = 2
DEFAULT_NEAREST_NEIGHBORS = 10
ROADMAP_BUILD_TIME = 0.5          # seconds per expansion slice (growth gets 2x)
FIND_VALID_STATE_ATTEMPTS = 2     # sampler attempts between termination checks

# Monte Carlo edge estimation
NUM_MONTE_CARLO_PARTICLES = 2
EXTREMELY_HIGH_EDGE_COST = 1e6

# Node controllers
NON_OBSERVABLE_NODE_COVARIANCE = 1e2

# Dynamic programming
DYNAMIC_PROGRAMMING_DISCOUNT_FACTOR = 1.0
GOAL_COST_TO_GO = 0.0
INIT_COST_TO_GO = 0.0
OBSTACLE_COST_TO_GO = 500.0
DP_CONVERGENCE_THRESHOLD = 1e-3
DP_MAX_ITERATIONS = 1000

# Solution watcher
WATCH_INTERVAL_S = 0.001
MIN_VERTICES_FOR_SOLUTION = 2


PLANNER_DEFAULTS: Dict[str, Any] = {
    "connection_strategy": "k_nearest",
    "max_nearest_neighbors": DEFAULT_NEAREST_NEIGHBORS,
    "connection_radius": 2.0,
    "radius_max_neighbors": 0,     # cap for the radius strategy, 0 means unbounded
    "num_particles": NUM_MONTE_CARLO_PARTICLES,
    "add_reverse_edges": True,
    "reject_unstabilizable": False,
    "roadmap_build_time": ROADMAP_BUILD_TIME,
    "max_bounce_steps": MAX_RANDOM_BOUNCE_STEPS,
    "min_vertices": MIN_VERTICES_FOR_SOLUTION,
    "watch_interval_s": WATCH_INTERVAL_S,
    "dp_max_iterations": DP_MAX_ITERATIONS,
    "dp_convergence_threshold": DP_CONVERGENCE_THRESHOLD,
    "discount_factor": DYNAMIC_PROGRAMMING_DISCOUNT_FACTOR,
    "seed": 0,
    "debug": False,
}

EXECUTION_DEFAULTS: Dict[str, Any] = {
    "mode": "standard",            # standard | rollout
    "rollout_steps": 5,
    "goal_tolerance": 0.3,
    "arrival_tolerance": 0.5,      # live belief farther than this from the edge target counts as failure
    "max_execution_steps": 200,
    "stabilize_at_nodes": True,
    "seed": 1,
}

CONTROLLER_DEFAULTS: Dict[str, Any] = {
    "tracking_gain": 0.5,
    "node_gain": 0.6,
    "node_max_steps": 10,
    "node_reach_tolerance": 0.1,
    "step_time_cost": 1.0,
    "covariance_cost_weight": 0.0,
}


def merged(defaults: Dict[str, Any], cfg: Dict[str, Any] | None) -> Dict[str, Any]:
    """Return a copy of `defaults` overridden by the keys present in `cfg`."""
    out = dict(defaults)
    out.update(dict(cfg or {}))
    return out
