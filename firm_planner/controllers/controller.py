"""
Edge / node controllers (v1).

A controller is an immutable record created once at synthesis time:
  - edge: nominal controls + nominal intermediate states from a start belief
          to a target belief (noise-free rollout of the motion model)
  - node: the node belief carrying its stationary covariance; no nominal
          controls, stabilizes with linear feedback toward the node

execute() is a pure function of (record, true state, belief, noise source).
Nothing here touches the roadmap; the builder and the executor call in.

Step cost = step_time_cost + covariance_cost_weight * trace(cov).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np

from firm_planner.belief.kalman import LinearSystem, LinearizedKF
from firm_planner.belief.state import BeliefState
from firm_planner.planner.defaults import CONTROLLER_DEFAULTS, NON_OBSERVABLE_NODE_COVARIANCE, merged


EDGE = "edge"
NODE = "node"

# Innovation covariance jitter (noise-free sensors give R = 0).
_JITTER = 1e-12

_KF = LinearizedKF()


@dataclass(frozen=True, eq=False)
class ControllerRecord:
    kind: str
    goal: BeliefState
    start: Optional[np.ndarray] = None
    intermediates: Tuple[np.ndarray, ...] = field(default_factory=tuple)
    controls: Tuple[np.ndarray, ...] = field(default_factory=tuple)
    stabilizable: bool = True

    @property
    def num_steps(self) -> int:
        return len(self.controls)

    def is_degenerate(self) -> bool:
        return len(self.controls) == 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "goal": self.goal.as_dict(),
            "num_steps": int(self.num_steps),
            "stabilizable": bool(self.stabilizable),
        }


@dataclass
class ControllerOutcome:
    success: bool
    true_state: np.ndarray
    belief: BeliefState
    cost: float
    steps: int


# ---------------------------------------------------------------------------
# synthesis
# ---------------------------------------------------------------------------

def stationary_covariance(space, x: np.ndarray) -> Tuple[bool, np.ndarray]:
    """Riccati fixed point of the models linearized at x with zero control."""
    ls = LinearSystem.linearize(space, np.asarray(x, dtype=np.float64))
    ls.R = ls.R + np.eye(ls.R.shape[0]) * _JITTER
    return _KF.compute_stationary_covariance(ls)


def synthesize_edge_controller(space, start: BeliefState, target: BeliefState) -> ControllerRecord:
    mm = space.motion_model
    controls = mm.generate_open_loop_controls(start.x, target.x)
    intermediates = []
    x = start.x.copy()
    for u in controls:
        x = mm.evolve(x, u, mm.zero_noise())
        intermediates.append(x.copy())
    return ControllerRecord(
        kind=EDGE,
        goal=target.copy(),
        start=start.x.copy(),
        intermediates=tuple(intermediates),
        controls=tuple(np.asarray(u, dtype=np.float64).copy() for u in controls),
    )


def synthesize_node_controller(space, belief: BeliefState, debug: bool = False) -> ControllerRecord:
    node = belief.copy()
    ok = False
    if space.observation_model.is_observable(node.x):
        ok, cov = stationary_covariance(space, node.x)
        if ok:
            if debug:
                print(f"[DEBUG node] observable node at {node.as_list()}, trace(P_s)={float(np.trace(cov)):.4g}")
            node.cov = cov
    if not ok:
        if debug:
            print(f"[DEBUG node] node at {node.as_list()} cannot be stabilized, using large covariance")
        node.cov = np.eye(node.dim) * NON_OBSERVABLE_NODE_COVARIANCE
    return ControllerRecord(kind=NODE, goal=node, stabilizable=bool(ok))


# ---------------------------------------------------------------------------
# execution
# ---------------------------------------------------------------------------

def _filter_step(space, x_true: np.ndarray, belief: BeliefState, u: np.ndarray,
                 rng: Optional[np.random.Generator]) -> Tuple[np.ndarray, BeliefState]:
    mm = space.motion_model
    om = space.observation_model

    w = mm.generate_noise(x_true, u, rng) if rng is not None else mm.zero_noise()
    x_next = mm.evolve(x_true, u, w)
    z = om.observe(x_next, rng, noisy=rng is not None)

    ls = LinearSystem.linearize(space, belief.x, u)
    x_pred = mm.evolve(belief.x, u, mm.zero_noise())
    cov_pred = _KF.predict(belief.cov, ls)

    ls_obs = LinearSystem.linearize(space, x_pred, u)
    ls_obs.R = ls_obs.R + np.eye(ls_obs.R.shape[0]) * _JITTER
    innovation = z - om.observe(x_pred, None, noisy=False)
    x_new, cov_new = _KF.update(x_pred, cov_pred, innovation, ls_obs)
    return x_next, BeliefState(x=x_new, cov=cov_new)


def _clip_speed(space, u: np.ndarray) -> np.ndarray:
    vmax = float(getattr(space.motion_model, "max_speed", 0.0) or 0.0)
    if vmax <= 0.0:
        return u
    n = float(np.linalg.norm(u))
    lim = 2.0 * vmax
    if n > lim:
        return u * (lim / n)
    return u


def _step_cost(belief: BeliefState, cfg: Dict[str, Any]) -> float:
    return float(cfg["step_time_cost"]) + float(cfg["covariance_cost_weight"]) * belief.cov_trace()


def execute(
    record: ControllerRecord,
    space,
    true_state: np.ndarray,
    belief: BeliefState,
    rng: Optional[np.random.Generator] = None,
    cfg: Optional[Dict[str, Any]] = None,
    max_steps: Optional[int] = None,
) -> ControllerOutcome:
    """
    Run the controller from (true_state, belief).

    Returns success=False as soon as the true state becomes invalid. With
    rng=None the run is noise-free.
    """
    c = merged(CONTROLLER_DEFAULTS, cfg)
    x_true = np.asarray(true_state, dtype=np.float64).copy()
    b = belief.copy()
    cost = 0.0
    steps = 0

    if record.kind == EDGE:
        n = record.num_steps if max_steps is None else min(record.num_steps, max(0, int(max_steps)))
        dt = float(space.motion_model.dt)
        gain = float(c["tracking_gain"])
        for k in range(n):
            ref = record.start if k == 0 else record.intermediates[k - 1]
            u = record.controls[k].copy()
            if gain > 0.0 and ref is not None:
                u = u + (gain / dt) * (np.asarray(ref) - b.x)
            u = _clip_speed(space, u)
            x_true, b = _filter_step(space, x_true, b, u, rng)
            steps += 1
            cost += _step_cost(b, c)
            if not space.is_valid(x_true):
                return ControllerOutcome(False, x_true, b, cost, steps)
        return ControllerOutcome(True, x_true, b, cost, steps)

    if record.kind == NODE:
        limit = int(c["node_max_steps"])
        if max_steps is not None:
            limit = min(limit, max(0, int(max_steps)))
        dt = float(space.motion_model.dt)
        gain = float(c["node_gain"])
        tol = float(c["node_reach_tolerance"])
        for _ in range(limit):
            err = record.goal.x - b.x
            if float(np.linalg.norm(err)) <= tol:
                break
            u = _clip_speed(space, (gain / dt) * err)
            x_true, b = _filter_step(space, x_true, b, u, rng)
            steps += 1
            cost += _step_cost(b, c)
            if not space.is_valid(x_true):
                return ControllerOutcome(False, x_true, b, cost, steps)
        return ControllerOutcome(True, x_true, b, cost, steps)

    raise ValueError(f"Unknown controller kind '{record.kind}'")


def execute_up_to(
    step_budget: int,
    record: ControllerRecord,
    space,
    true_state: np.ndarray,
    belief: BeliefState,
    rng: Optional[np.random.Generator] = None,
    cfg: Optional[Dict[str, Any]] = None,
) -> ControllerOutcome:
    """Partial execution: at most step_budget primitive steps."""
    return execute(record, space, true_state, belief, rng=rng, cfg=cfg, max_steps=int(step_budget))
