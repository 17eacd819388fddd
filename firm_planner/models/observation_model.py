"""
Observation model contract (v1) + landmark position sensor.

The reference sensor measures the robot position directly (H = I). Its noise
grows with the distance to the nearest landmark and the robot is blind
(not observable) farther than `sensing_range` from every landmark.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import numpy as np


# Noise std used outside the sensing range; effectively "no information".
BLIND_SIGMA = 1e3


class ObservationModel:
    """
    Abstract observation model.

    Methods:
      - is_observable(x) -> bool
      - observe(x, rng, noisy) -> z
      - observation_jacobian(x) -> H
      - noise_covariance(x) -> R
    """

    def is_observable(self, x: np.ndarray) -> bool:
        raise NotImplementedError

    def observe(self, x: np.ndarray, rng: Optional[np.random.Generator] = None, noisy: bool = True) -> np.ndarray:
        raise NotImplementedError

    def observation_jacobian(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def noise_covariance(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class LandmarkObservationModel(ObservationModel):
    def __init__(self, landmarks: Sequence[Sequence[float]], cfg: Optional[Dict[str, Any]] = None, dim: int = 2):
        cfg = dict(cfg or {})
        self.dim = int(cfg.get("dim", dim))
        self.landmarks = np.asarray([[float(v) for v in lm] for lm in landmarks], dtype=np.float64).reshape(-1, self.dim)
        self.sigma_0 = float(cfg.get("sigma_0", 0.02))
        self.eta = float(cfg.get("eta", 0.05))
        self.sensing_range = float(cfg.get("sensing_range", 5.0))

    def _nearest_landmark_dist(self, x: np.ndarray) -> float:
        if self.landmarks.shape[0] == 0:
            return float("inf")
        d = np.linalg.norm(self.landmarks - np.asarray(x, dtype=np.float64)[None, :], axis=1)
        return float(np.min(d))

    def is_observable(self, x: np.ndarray) -> bool:
        return self._nearest_landmark_dist(x) <= self.sensing_range

    def observation_jacobian(self, x: np.ndarray) -> np.ndarray:
        return np.eye(self.dim)

    def noise_covariance(self, x: np.ndarray) -> np.ndarray:
        d = self._nearest_landmark_dist(x)
        if d > self.sensing_range:
            sigma = BLIND_SIGMA
        else:
            sigma = self.sigma_0 + self.eta * d
        return np.eye(self.dim) * sigma ** 2

    def observe(self, x: np.ndarray, rng: Optional[np.random.Generator] = None, noisy: bool = True) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        if not noisy or rng is None:
            return x.copy()
        std = np.sqrt(np.diag(self.noise_covariance(x)))
        return x + rng.normal(0.0, 1.0, size=self.dim) * std

    def landmark_list(self) -> List[List[float]]:
        return [[float(v) for v in lm] for lm in self.landmarks.tolist()]
