"""
Belief state (v1): mean configuration + estimation covariance.

The roadmap owns one BeliefState per vertex; everything else works on copies.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

import numpy as np


@dataclass
class BeliefState:
    x: np.ndarray    # (n,) float64 mean
    cov: np.ndarray  # (n,n) float64

    def __post_init__(self) -> None:
        self.x = np.asarray(self.x, dtype=np.float64).reshape(-1)
        n = self.x.shape[0]
        if self.cov is None:
            self.cov = np.zeros((n, n), dtype=np.float64)
        self.cov = np.asarray(self.cov, dtype=np.float64).reshape(n, n)

    @classmethod
    def from_xy(cls, xy: Sequence[float], cov_scale: float = 0.0) -> "BeliefState":
        x = np.asarray([float(v) for v in xy], dtype=np.float64)
        return cls(x=x, cov=np.eye(x.shape[0]) * float(cov_scale))

    @property
    def dim(self) -> int:
        return int(self.x.shape[0])

    def copy(self) -> "BeliefState":
        return BeliefState(x=self.x.copy(), cov=self.cov.copy())

    def distance(self, other: "BeliefState") -> float:
        return float(np.linalg.norm(self.x - other.x))

    def equals(self, other: "BeliefState", tol: float = 1e-9) -> bool:
        return bool(np.allclose(self.x, other.x, atol=tol) and np.allclose(self.cov, other.cov, atol=tol))

    def cov_trace(self) -> float:
        return float(np.trace(self.cov))

    def as_dict(self) -> Dict[str, Any]:
        return {"x": [float(v) for v in self.x.tolist()], "cov_trace": self.cov_trace()}

    def as_list(self) -> List[float]:
        return [float(v) for v in self.x.tolist()]
