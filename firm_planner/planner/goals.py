"""
Goals and the problem definition (v1).

FIRM only accepts goals it can sample (GoalSampleableRegion); anything else
makes solve() return UNRECOGNIZED_GOAL_TYPE.
"""
from __future__ import annotations

from typing import List, Optional

import numpy as np

from firm_planner.belief.state import BeliefState


class Goal:
    """Plain goal: can only answer whether a belief satisfies it."""

    def __init__(self, space):
        self.space = space

    def is_satisfied(self, belief: BeliefState) -> bool:
        raise NotImplementedError


class GoalSampleableRegion(Goal):
    def sample_goal(self, rng: np.random.Generator) -> Optional[BeliefState]:
        raise NotImplementedError

    def could_sample(self) -> bool:
        return self.max_sample_count() > 0

    def max_sample_count(self) -> int:
        raise NotImplementedError

    def is_start_goal_pair_valid(self, start: BeliefState, goal: BeliefState) -> bool:
        return True


class GoalRegion(GoalSampleableRegion):
    """
    Disc of radius `threshold` around a goal belief.

    sample_goal() returns the centre while it is valid; the region is a single
    milestone, so max_sample_count() is 1 (0 if the centre is invalid).
    """

    def __init__(self, space, goal: BeliefState, threshold: float = 0.3):
        super().__init__(space)
        self.goal = goal.copy()
        self.threshold = float(threshold)

    def is_satisfied(self, belief: BeliefState) -> bool:
        return belief.distance(self.goal) <= self.threshold

    def sample_goal(self, rng: np.random.Generator) -> Optional[BeliefState]:
        if not self.space.is_valid(self.goal.x):
            return None
        return self.goal.copy()

    def max_sample_count(self) -> int:
        return 1 if self.space.is_valid(self.goal.x) else 0

    def is_start_goal_pair_valid(self, start: BeliefState, goal: BeliefState) -> bool:
        return self.space.is_valid(start.x) and self.space.is_valid(goal.x)


class ProblemDefinition:
    def __init__(self, space, starts: Optional[List[BeliefState]] = None, goal: Optional[Goal] = None):
        self.space = space
        self.starts: List[BeliefState] = [s.copy() for s in (starts or [])]
        self.goal = goal

    def add_start_state(self, belief: BeliefState) -> None:
        self.starts.append(belief.copy())

    def set_goal(self, goal: Goal) -> None:
        self.goal = goal

    def set_start_and_goal(self, start: BeliefState, goal: BeliefState, threshold: float = 0.3) -> None:
        self.starts = [start.copy()]
        self.goal = GoalRegion(self.space, goal, threshold=threshold)

    def clear_starts(self) -> None:
        self.starts = []
