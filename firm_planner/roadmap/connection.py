"""
Nearest neighbours + connection strategies (v1).

A connection strategy maps a freshly inserted vertex to the ordered list of
existing vertices the builder should try to connect it to.
"""
from __future__ import annotations

import math
from typing import Any, Callable, Dict, List, Optional, Type

import numpy as np
from scipy.spatial import cKDTree

from firm_planner.planner.defaults import DEFAULT_NEAREST_NEIGHBORS

# Distance slack when collecting points tied with the k-th neighbour.
_TIE_EPS = 1e-12


class NearestNeighbors:
    """
    cKDTree index over vertex mean states.

    The tree is rebuilt lazily on the first query after an add/remove.
    Results are ordered by distance, then by insertion.
    """

    def __init__(self) -> None:
        self._rows: Dict[int, np.ndarray] = {}
        self._ids: List[int] = []
        self._pts: Optional[np.ndarray] = None
        self._tree: Optional[cKDTree] = None

    def add(self, vid: int, x: np.ndarray) -> None:
        self._rows[int(vid)] = np.asarray(x, dtype=np.float64).copy()
        self._tree = None

    def remove(self, vid: int) -> None:
        if self._rows.pop(int(vid), None) is not None:
            self._tree = None

    def clear(self) -> None:
        self._rows.clear()
        self._ids = []
        self._pts = None
        self._tree = None

    def size(self) -> int:
        return len(self._rows)

    def _index(self) -> Optional[cKDTree]:
        if self._tree is None and self._rows:
            self._ids = list(self._rows.keys())
            self._pts = np.vstack(list(self._rows.values()))
            self._tree = cKDTree(self._pts)
        return self._tree

    def nearest_r(self, x: np.ndarray, r: float, exclude: Optional[int] = None) -> List[int]:
        tree = self._index()
        if tree is None:
            return []
        x = np.asarray(x, dtype=np.float64)
        rows = np.asarray(tree.query_ball_point(x, float(r)), dtype=np.int64)
        if rows.size == 0:
            return []
        d = np.linalg.norm(self._pts[rows] - x[None, :], axis=1)
        order = np.lexsort((rows, d))
        out = [self._ids[k] for k in rows[order].tolist()]
        if exclude is not None:
            out = [vid for vid in out if vid != exclude]
        return out

    def nearest_k(self, x: np.ndarray, k: int, exclude: Optional[int] = None) -> List[int]:
        tree = self._index()
        k = int(k)
        if tree is None or k <= 0:
            return []
        x = np.asarray(x, dtype=np.float64)
        m = min(tree.n, k + (1 if exclude is not None else 0))
        d, _ = tree.query(x, k=m)
        # re-collect every point tied with the farthest hit so ties keep insertion order
        r = float(np.max(np.atleast_1d(d)))
        return self.nearest_r(x, r + _TIE_EPS, exclude=exclude)[:k]


class ConnectionStrategy:
    name: str = "BaseStrategy"

    def __init__(self, nn: NearestNeighbors, cfg: Optional[Dict[str, Any]] = None):
        self.nn = nn
        self.cfg = dict(cfg or {})

    def __call__(self, vid: int, x: np.ndarray) -> List[int]:
        raise NotImplementedError


class KStrategy(ConnectionStrategy):
    name = "k_nearest"

    def __init__(self, nn: NearestNeighbors, cfg: Optional[Dict[str, Any]] = None):
        super().__init__(nn, cfg)
        self.k = int(self.cfg.get("max_nearest_neighbors", DEFAULT_NEAREST_NEIGHBORS))

    def __call__(self, vid: int, x: np.ndarray) -> List[int]:
        return self.nn.nearest_k(x, self.k, exclude=vid)


class KStarStrategy(ConnectionStrategy):
    """k = ceil(e * (1 + 1/d) * log(n)), the asymptotically optimal PRM* rule."""
    name = "k_star"

    def __init__(self, nn: NearestNeighbors, cfg: Optional[Dict[str, Any]] = None,
                 milestone_count: Optional[Callable[[], int]] = None):
        super().__init__(nn, cfg)
        self.dim = int(self.cfg.get("dim", 2))
        self._milestone_count = milestone_count

    def current_k(self) -> int:
        n = self._milestone_count() if self._milestone_count is not None else self.nn.size()
        n = max(1, int(n))
        k_rrg = math.e * (1.0 + 1.0 / float(self.dim))
        return max(1, int(math.ceil(k_rrg * math.log(float(n)))))

    def __call__(self, vid: int, x: np.ndarray) -> List[int]:
        return self.nn.nearest_k(x, self.current_k(), exclude=vid)


class RadiusStrategy(ConnectionStrategy):
    name = "radius"

    def __init__(self, nn: NearestNeighbors, cfg: Optional[Dict[str, Any]] = None):
        super().__init__(nn, cfg)
        self.radius = float(self.cfg.get("connection_radius", 2.0))
        # 0 means unbounded
        self.max_neighbors = int(self.cfg.get("radius_max_neighbors", 0) or 0)

    def __call__(self, vid: int, x: np.ndarray) -> List[int]:
        out = self.nn.nearest_r(x, self.radius, exclude=vid)
        if self.max_neighbors > 0:
            out = out[: self.max_neighbors]
        return out


_REGISTRY: Dict[str, Type[ConnectionStrategy]] = {
    "k_nearest": KStrategy,
    "k_star": KStarStrategy,
    "radius": RadiusStrategy,
}


def make_connection_strategy(name: str, cfg: Dict[str, Any], nn: NearestNeighbors,
                             milestone_count: Optional[Callable[[], int]] = None) -> ConnectionStrategy:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown connection_strategy '{name}'. Known: {sorted(_REGISTRY.keys())}")
    if name == "k_star":
        return KStarStrategy(nn, cfg, milestone_count=milestone_count)
    return _REGISTRY[name](nn, cfg)
