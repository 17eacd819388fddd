"""
Scenario generation and scene building (v1).

Contract note:
- scenario_spec is JSON-serializable: bounds, rectangular obstacles,
  landmarks, start, goal, model parameters.
- PlaneSpace.from_scene(scene) consumes the dict returned by
  build_scene_dict_from_scenario_spec.
"""
from __future__ import annotations

import copy
import random
from typing import Any, Dict, List, Optional, Sequence, Tuple

from firm_planner.belief.state import BeliefState
from firm_planner.space.plane_space import PlaneSpace


# Fixed world defaults
WORLD_DEFAULTS = {
    "bounds": [[0.0, 10.0], [0.0, 10.0]],
    "motion_resolution": 0.05,
    "goal_threshold": 0.3,
    "start_goal_margin": 0.4,       # clearance kept around start/goal when placing obstacles
    "motion": {"dt": 0.1, "max_speed": 1.0, "sigma_0": 0.01, "eta": 0.05},
    "observation": {"sigma_0": 0.02, "eta": 0.05, "sensing_range": 6.0},
}

SCENARIO_FAMILIES = ("open_field", "cluttered")


def _point_in_rect(p: Sequence[float], r: Sequence[float], margin: float = 0.0) -> bool:
    return (r[0] - margin) <= p[0] <= (r[2] + margin) and (r[1] - margin) <= p[1] <= (r[3] + margin)


def _rects_overlap(a: Sequence[float], b: Sequence[float], gap: float = 0.0) -> bool:
    return not (a[2] + gap < b[0] or b[2] + gap < a[0] or a[3] + gap < b[1] or b[3] + gap < a[1])


def _corner_points(bounds: List[List[float]], inset: float) -> Tuple[List[float], List[float]]:
    (x0, x1), (y0, y1) = bounds
    return [x0 + inset, y0 + inset], [x1 - inset, y1 - inset]


def _landmark_ring(bounds: List[List[float]], n: int) -> List[List[float]]:
    """n landmarks on the boundary midpoints and corners, in a fixed order."""
    (x0, x1), (y0, y1) = bounds
    cx, cy = 0.5 * (x0 + x1), 0.5 * (y0 + y1)
    ring = [[cx, cy], [x0, y0], [x1, y1], [x0, y1], [x1, y0], [cx, y0], [cx, y1], [x0, cy], [x1, cy]]
    return [list(p) for p in ring[: max(1, int(n))]]


def _base_spec(family: str, seed: int, params: Dict[str, Any]) -> Dict[str, Any]:
    bounds = copy.deepcopy(params.get("bounds", WORLD_DEFAULTS["bounds"]))
    inset = float(params.get("corner_inset", 1.0))
    start, goal = _corner_points(bounds, inset)
    return {
        "version": "v1",
        "family": family,
        "seed": int(seed),
        "bounds": bounds,
        "obstacles": [],
        "landmarks": _landmark_ring(bounds, int(params.get("n_landmarks", 5))),
        "start": [float(v) for v in params.get("start", start)],
        "goal": [float(v) for v in params.get("goal", goal)],
        "goal_threshold": float(params.get("goal_threshold", WORLD_DEFAULTS["goal_threshold"])),
        "motion_resolution": float(params.get("motion_resolution", WORLD_DEFAULTS["motion_resolution"])),
        "models": {
            "motion": dict(WORLD_DEFAULTS["motion"], **(params.get("motion", {}) or {})),
            "observation": dict(WORLD_DEFAULTS["observation"], **(params.get("observation", {}) or {})),
        },
    }


def generate_open_field(seed: int, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return _base_spec("open_field", seed, dict(params or {}))


def generate_cluttered(seed: int, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Random axis-aligned boxes. Boxes never cover the start/goal (with margin)
    and never touch each other, so free space stays connected.
    """
    params = dict(params or {})
    spec = _base_spec("cluttered", seed, params)
    rng = random.Random(int(seed) + 2024)

    n_obs = int(params.get("n_obstacles", 6))
    size_lo, size_hi = params.get("obstacle_size_range", [0.6, 1.6])
    gap = float(params.get("obstacle_gap", 0.6))
    margin = float(params.get("start_goal_margin", WORLD_DEFAULTS["start_goal_margin"]))
    (x0, x1), (y0, y1) = spec["bounds"]

    obstacles: List[List[float]] = []
    tries = 0
    while len(obstacles) < n_obs and tries < 200 * max(1, n_obs):
        tries += 1
        w = rng.uniform(float(size_lo), float(size_hi))
        h = rng.uniform(float(size_lo), float(size_hi))
        ox = rng.uniform(x0 + gap, x1 - gap - w)
        oy = rng.uniform(y0 + gap, y1 - gap - h)
        r = [ox, oy, ox + w, oy + h]
        if _point_in_rect(spec["start"], r, margin) or _point_in_rect(spec["goal"], r, margin):
            continue
        if any(_rects_overlap(r, o, gap) for o in obstacles):
            continue
        obstacles.append([round(v, 4) for v in r])
    spec["obstacles"] = obstacles
    spec["landmarks"] = [lm for lm in spec["landmarks"] if not any(_point_in_rect(lm, o) for o in obstacles)]
    return spec


def build_scene_dict_from_scenario_spec(scenario_spec: Dict[str, Any]) -> Dict[str, Any]:
    for k in ["bounds", "start", "goal"]:
        if k not in scenario_spec:
            raise KeyError(f"scenario_spec missing '{k}'")
    return {
        "bounds": [[float(lo), float(hi)] for lo, hi in scenario_spec["bounds"]],
        "obstacles": [[float(v) for v in r] for r in scenario_spec.get("obstacles", [])],
        "landmarks": [[float(v) for v in lm] for lm in scenario_spec.get("landmarks", [])],
        "models": copy.deepcopy(scenario_spec.get("models", {})),
        "motion_resolution": float(scenario_spec.get("motion_resolution", WORLD_DEFAULTS["motion_resolution"])),
    }


def build_problem_from_spec(scenario_spec: Dict[str, Any]) -> Tuple[PlaneSpace, BeliefState, BeliefState, float]:
    """(space, start belief, goal belief, goal threshold)"""
    space = PlaneSpace.from_scene(build_scene_dict_from_scenario_spec(scenario_spec))
    start = BeliefState.from_xy(scenario_spec["start"])
    goal = BeliefState.from_xy(scenario_spec["goal"])
    thr = float(scenario_spec.get("goal_threshold", WORLD_DEFAULTS["goal_threshold"]))
    return space, start, goal, thr
