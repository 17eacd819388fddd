"""
Plane space (v1): bounded 2D world with axis-aligned rectangular obstacles.

Dependency policy: stdlib + numpy only.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .base_space import SpaceInformation
from firm_planner.models.motion_model import MotionModel, OmnidirectionalMotionModel
from firm_planner.models.observation_model import LandmarkObservationModel, ObservationModel


Rect = Tuple[float, float, float, float]  # (x0, y0, x1, y1)


class PlaneSpace(SpaceInformation):
    def __init__(
        self,
        bounds: Sequence[Sequence[float]],
        obstacles: Optional[Sequence[Sequence[float]]] = None,
        motion_model: Optional[MotionModel] = None,
        observation_model: Optional[ObservationModel] = None,
        motion_resolution: float = 0.05,
    ):
        self.bounds = np.asarray([[float(lo), float(hi)] for lo, hi in bounds], dtype=np.float64)
        self.obstacles: List[Rect] = []
        for r in (obstacles or []):
            x0, y0, x1, y1 = (float(v) for v in r)
            self.obstacles.append((min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1)))
        self.motion_model = motion_model if motion_model is not None else OmnidirectionalMotionModel(dim=self.state_dimension())
        if observation_model is None:
            center = self.bounds.mean(axis=1)
            observation_model = LandmarkObservationModel([center.tolist()], {"sensing_range": 1e9})
        self.observation_model = observation_model
        self.motion_resolution = float(motion_resolution)

    @classmethod
    def from_scene(cls, scene: Dict[str, Any]) -> "PlaneSpace":
        """Build from a scene dict (see scenarios.base_scenario.build_scene_dict_from_scenario_spec)."""
        models = scene.get("models", {}) or {}
        mm = OmnidirectionalMotionModel(models.get("motion", {}))
        om = LandmarkObservationModel(scene.get("landmarks", []) or [], models.get("observation", {}))
        return cls(
            bounds=scene["bounds"],
            obstacles=scene.get("obstacles", []),
            motion_model=mm,
            observation_model=om,
            motion_resolution=float(scene.get("motion_resolution", 0.05)),
        )

    def state_dimension(self) -> int:
        return int(self.bounds.shape[0])

    def _in_obstacle(self, x: np.ndarray) -> bool:
        px, py = float(x[0]), float(x[1])
        for (x0, y0, x1, y1) in self.obstacles:
            if x0 <= px <= x1 and y0 <= py <= y1:
                return True
        return False

    def is_valid(self, x: np.ndarray) -> bool:
        x = np.asarray(x, dtype=np.float64)
        if not np.all(np.isfinite(x)):
            return False
        if np.any(x < self.bounds[:, 0]) or np.any(x > self.bounds[:, 1]):
            return False
        return not self._in_obstacle(x)

    def _segment_points(self, a: np.ndarray, b: np.ndarray) -> List[np.ndarray]:
        a = np.asarray(a, dtype=np.float64)
        b = np.asarray(b, dtype=np.float64)
        d = float(np.linalg.norm(b - a))
        n = max(1, int(math.ceil(d / max(1e-9, self.motion_resolution))))
        return [a + (b - a) * (k / n) for k in range(n + 1)]

    def check_motion(self, a: np.ndarray, b: np.ndarray) -> bool:
        for p in self._segment_points(a, b):
            if not self.is_valid(p):
                return False
        return True

    def last_valid_on_segment(self, a: np.ndarray, b: np.ndarray) -> Tuple[np.ndarray, float]:
        """Walk a->b; return the last valid point and the fraction travelled."""
        pts = self._segment_points(a, b)
        last = np.asarray(a, dtype=np.float64).copy()
        n = len(pts) - 1
        for k, p in enumerate(pts):
            if not self.is_valid(p):
                return last, max(0.0, (k - 1) / max(1, n))
            last = p
        return last, 1.0

    def distance(self, a: np.ndarray, b: np.ndarray) -> float:
        return float(np.linalg.norm(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)))

    def sample_uniform(self, rng: np.random.Generator) -> np.ndarray:
        lo = self.bounds[:, 0]
        hi = self.bounds[:, 1]
        return lo + (hi - lo) * rng.random(self.state_dimension())

    def sample_valid(self, rng: np.random.Generator, max_attempts: int = 100) -> Optional[np.ndarray]:
        for _ in range(max(1, int(max_attempts))):
            x = self.sample_uniform(rng)
            if self.is_valid(x):
                return x
        return None

    def random_bounce_motion(self, rng: np.random.Generator, start: np.ndarray, steps: int) -> List[np.ndarray]:
        """
        Random bounce: move toward uniform samples, stopping at the first
        obstacle on each leg. Legs that make no progress are dropped.
        """
        out: List[np.ndarray] = []
        prev = np.asarray(start, dtype=np.float64).copy()
        for _ in range(max(0, int(steps))):
            target = self.sample_uniform(rng)
            if self.check_motion(prev, target):
                out.append(target)
                prev = target
                continue
            last, frac = self.last_valid_on_segment(prev, target)
            if frac > 1e-6 and self.distance(prev, last) > self.motion_resolution:
                out.append(last)
                prev = last
        return out

    def obstacle_list(self) -> List[List[float]]:
        return [[float(v) for v in r] for r in self.obstacles]
