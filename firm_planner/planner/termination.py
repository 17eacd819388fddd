"""
Planner termination predicates (v1).

A predicate is a zero-argument callable returning True once planning must
stop. They compose with or_ptc.
"""
from __future__ import annotations

import threading
import time
from typing import Callable


Termination = Callable[[], bool]


def timed_ptc(seconds: float) -> Termination:
    deadline = time.monotonic() + float(seconds)
    return lambda: time.monotonic() >= deadline


def or_ptc(*ptcs: Termination) -> Termination:
    return lambda: any(p() for p in ptcs)


def vertex_count_ptc(graph, n: int) -> Termination:
    """Fires once the roadmap holds at least n vertices."""
    return lambda: graph.num_vertices >= int(n)


def iteration_ptc(n: int) -> Termination:
    """Fires on the (n+1)-th call."""
    calls = {"k": 0}

    def _ptc() -> bool:
        calls["k"] += 1
        return calls["k"] > int(n)

    return _ptc


class CancellationToken:
    """Externally settable stop flag, usable as a predicate."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __call__(self) -> bool:
        return self._event.is_set()
