"""
Space information contract (v1).

Everything the planner needs to know about the world goes through this class.
Do NOT rename public class/methods. Only append.
"""
from __future__ import annotations

from typing import List, Optional

import numpy as np


class SpaceInformation:
    """
    Abstract state/belief space used by the planner.

    Attributes:
      - motion_model, observation_model

    Methods:
      - state_dimension() -> int
      - is_valid(x) -> bool
      - check_motion(a, b) -> bool
      - distance(a, b) -> float
      - sample_uniform(rng) -> x
      - sample_valid(rng, max_attempts) -> x | None
      - random_bounce_motion(rng, start, steps) -> [x, ...]
    """
    motion_model = None
    observation_model = None

    def state_dimension(self) -> int:
        raise NotImplementedError

    def is_valid(self, x: np.ndarray) -> bool:
        raise NotImplementedError

    def check_motion(self, a: np.ndarray, b: np.ndarray) -> bool:
        raise NotImplementedError

    def distance(self, a: np.ndarray, b: np.ndarray) -> float:
        raise NotImplementedError

    def sample_uniform(self, rng: np.random.Generator) -> np.ndarray:
        raise NotImplementedError

    def sample_valid(self, rng: np.random.Generator, max_attempts: int = 100) -> Optional[np.ndarray]:
        raise NotImplementedError

    def random_bounce_motion(self, rng: np.random.Generator, start: np.ndarray, steps: int) -> List[np.ndarray]:
        raise NotImplementedError
