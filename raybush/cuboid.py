"""
Axis-aligned bounding boxes.

Used as the broad-phase primitive when resolving overlapping branch candidates.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np


class Cuboid:
    """Axis-aligned box spanning `min_bound` to `max_bound` (inclusive)."""

    def __init__(self, min_bound: Iterable[float], max_bound: Iterable[float]):
        self.min_bound = np.asarray(min_bound, dtype=float).reshape(3)
        self.max_bound = np.asarray(max_bound, dtype=float).reshape(3)

    @classmethod
    def around_segment(
        cls, start: np.ndarray, end: np.ndarray, radius: float
    ) -> "Cuboid":
        """Box enclosing the segment start-end grown by `radius` on every axis."""
        start = np.asarray(start, dtype=float)
        end = np.asarray(end, dtype=float)
        rad = np.full(3, float(radius))
        return cls(np.minimum(start, end) - rad, np.maximum(start, end) + rad)

    def overlaps(self, other: "Cuboid") -> bool:
        outside = np.any(other.min_bound > self.max_bound) or np.any(
            other.max_bound < self.min_bound
        )
        return not bool(outside)

    def __repr__(self) -> str:
        return f"Cuboid(min_bound={self.min_bound.tolist()}, max_bound={self.max_bound.tolist()})"
