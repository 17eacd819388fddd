"""
Motion model contract (v1) + omnidirectional point robot.

Do NOT rename public methods; controllers and the Kalman filter call them.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

import numpy as np


class MotionModel:
    """
    Abstract motion model.

    Methods:
      - generate_open_loop_controls(start, target) -> list of controls
      - evolve(x, u, w) -> next state
      - generate_noise(rng) / zero_noise() / zero_control()
      - state_jacobian / control_jacobian / noise_jacobian / process_noise_covariance
    """
    dt: float = 0.1

    def generate_open_loop_controls(self, start: np.ndarray, target: np.ndarray) -> List[np.ndarray]:
        raise NotImplementedError

    def evolve(self, x: np.ndarray, u: np.ndarray, w: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def generate_noise(self, x: np.ndarray, u: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        raise NotImplementedError

    def zero_noise(self) -> np.ndarray:
        raise NotImplementedError

    def zero_control(self) -> np.ndarray:
        raise NotImplementedError

    def state_jacobian(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def control_jacobian(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def noise_jacobian(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def process_noise_covariance(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class OmnidirectionalMotionModel(MotionModel):
    """
    x_{k+1} = x_k + dt * u_k + w_k

    Noise: w ~ N(0, Q), Q = diag(sigma_0^2 + (eta * |u_i| * dt)^2), so the
    robot is noisier when it moves fast. sigma_0 = eta = 0 gives a noise-free
    model.
    """

    def __init__(self, cfg: Optional[Dict[str, Any]] = None, dim: int = 2):
        cfg = dict(cfg or {})
        self.dim = int(cfg.get("dim", dim))
        self.dt = float(cfg.get("dt", 0.1))
        self.max_speed = float(cfg.get("max_speed", 1.0))
        self.sigma_0 = float(cfg.get("sigma_0", 0.01))
        self.eta = float(cfg.get("eta", 0.05))

    def generate_open_loop_controls(self, start: np.ndarray, target: np.ndarray) -> List[np.ndarray]:
        start = np.asarray(start, dtype=np.float64)
        target = np.asarray(target, dtype=np.float64)
        delta = target - start
        dist = float(np.linalg.norm(delta))
        if dist < 1e-12:
            return []
        step_len = self.max_speed * self.dt
        n = max(1, int(math.ceil(dist / step_len - 1e-9)))
        u = delta / (n * self.dt)
        return [u.copy() for _ in range(n)]

    def evolve(self, x: np.ndarray, u: np.ndarray, w: np.ndarray) -> np.ndarray:
        return np.asarray(x, dtype=np.float64) + self.dt * np.asarray(u, dtype=np.float64) + np.asarray(w, dtype=np.float64)

    def generate_noise(self, x: np.ndarray, u: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        std = np.sqrt(np.diag(self.process_noise_covariance(x, u)))
        return rng.normal(0.0, 1.0, size=self.dim) * std

    def zero_noise(self) -> np.ndarray:
        return np.zeros((self.dim,), dtype=np.float64)

    def zero_control(self) -> np.ndarray:
        return np.zeros((self.dim,), dtype=np.float64)

    def state_jacobian(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        return np.eye(self.dim)

    def control_jacobian(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        return np.eye(self.dim) * self.dt

    def noise_jacobian(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        return np.eye(self.dim)

    def process_noise_covariance(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        u = np.asarray(u, dtype=np.float64)
        var = self.sigma_0 ** 2 + (self.eta * np.abs(u) * self.dt) ** 2
        return np.diag(var)
