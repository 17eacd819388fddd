"""
Linearized Kalman filter (v1).

Two jobs:
  - one predict/update step of the belief while a controller runs
  - the stationary covariance of a node (discrete Riccati fixed point),
    which characterizes what a node controller can stabilize to

Model (linearized about a node):
  x_{k+1} = A x_k + B u_k + G w_k,   w ~ N(0, Q)
  z_k     = H x_k + v_k,             v ~ N(0, R)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


RICCATI_MAX_ITERS = 500
RICCATI_TOL = 1e-9
RICCATI_DIVERGENCE = 1e8


@dataclass
class LinearSystem:
    A: np.ndarray
    B: np.ndarray
    G: np.ndarray
    Q: np.ndarray
    H: np.ndarray
    R: np.ndarray

    @classmethod
    def linearize(cls, space, x: np.ndarray, u: Optional[np.ndarray] = None) -> "LinearSystem":
        """Linearize the space's motion/observation models about (x, u)."""
        mm = space.motion_model
        om = space.observation_model
        if u is None:
            u = mm.zero_control()
        return cls(
            A=mm.state_jacobian(x, u),
            B=mm.control_jacobian(x, u),
            G=mm.noise_jacobian(x, u),
            Q=mm.process_noise_covariance(x, u),
            H=om.observation_jacobian(x),
            R=om.noise_covariance(x),
        )


class LinearizedKF:
    def predict(self, cov: np.ndarray, ls: LinearSystem) -> np.ndarray:
        return ls.A @ cov @ ls.A.T + ls.G @ ls.Q @ ls.G.T

    def update(self, x_pred: np.ndarray, cov_pred: np.ndarray, innovation: np.ndarray,
               ls: LinearSystem) -> Tuple[np.ndarray, np.ndarray]:
        S = ls.H @ cov_pred @ ls.H.T + ls.R
        K = cov_pred @ ls.H.T @ np.linalg.inv(S)
        x_new = x_pred + K @ innovation
        n = cov_pred.shape[0]
        cov_new = (np.eye(n) - K @ ls.H) @ cov_pred
        # keep it symmetric against round-off
        cov_new = 0.5 * (cov_new + cov_new.T)
        return x_new, cov_new

    def compute_stationary_covariance(self, ls: LinearSystem) -> Tuple[bool, np.ndarray]:
        """
        Iterate the filter Riccati recursion to its fixed point.

        Returns (ok, cov). ok is False when the iteration diverges or does not
        settle within RICCATI_MAX_ITERS; cov is then the last iterate.
        """
        n = ls.A.shape[0]
        P = ls.G @ ls.Q @ ls.G.T + np.eye(n) * 1e-6
        S = P
        for _ in range(RICCATI_MAX_ITERS):
            innov = ls.H @ P @ ls.H.T + ls.R
            try:
                gain = P @ ls.H.T @ np.linalg.inv(innov)
            except np.linalg.LinAlgError:
                return False, S
            S_next = P - gain @ ls.H @ P
            S_next = 0.5 * (S_next + S_next.T)
            P_next = ls.A @ S_next @ ls.A.T + ls.G @ ls.Q @ ls.G.T
            if not np.all(np.isfinite(P_next)) or float(np.max(np.abs(P_next))) > RICCATI_DIVERGENCE:
                return False, S_next
            if float(np.max(np.abs(S_next - S))) < RICCATI_TOL:
                return True, S_next
            S = S_next
            P = P_next
        return False, S
