"""
Ray cloud container.

A ray cloud stores, per ray, the measured end point and whether the ray was
bounded (it hit something) or unbounded (a miss or out-of-range return). Only
bounded end points carry geometry; branch extraction ignores the rest.

PLY ray clouds mark unbounded rays with a zero colour alpha. Loading and saving
goes through `trimesh`, which reads vertex-only PLY files as a `PointCloud`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
import trimesh
from scipy.spatial import cKDTree

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class RayCloud:
    """
    End points of a set of rays plus a per-ray "bounded" flag.

    Attributes:
        ends: (N, 3) float64 end points.
        bounded: (N,) bool, True where the end point is a real measurement.
    """

    def __init__(self, ends: np.ndarray, bounded: Optional[np.ndarray] = None):
        E = np.asarray(ends, dtype=float)
        if E.size == 0:
            E = np.zeros((0, 3), dtype=float)
        if E.ndim != 2 or E.shape[1] != 3:
            raise ValueError("ends must be an (N,3) array")
        if bounded is None:
            B = np.ones(E.shape[0], dtype=bool)
        else:
            B = np.asarray(bounded, dtype=bool).reshape(-1)
            if B.shape[0] != E.shape[0]:
                raise ValueError(
                    f"bounded has {B.shape[0]} entries for {E.shape[0]} end points"
                )
        self.ends = E.copy()
        self.bounded = B.copy()

    # ------------------------------------------------------------------
    # Construction / IO
    # ------------------------------------------------------------------
    @staticmethod
    def from_points(points: np.ndarray) -> "RayCloud":
        """All points bounded."""
        return RayCloud(points)

    @staticmethod
    def from_ply(path: Union[str, Path]) -> "RayCloud":
        """Load a ray cloud PLY. Rays with colour alpha 0 are unbounded."""
        loaded = trimesh.load(str(path), process=False)
        vertices = np.asarray(getattr(loaded, "vertices", np.zeros((0, 3))), dtype=float)
        colors = getattr(loaded, "colors", None)
        if colors is None and hasattr(loaded, "visual"):
            colors = getattr(loaded.visual, "vertex_colors", None)
        bounded = None
        if colors is not None:
            C = np.asarray(colors)
            if C.ndim == 2 and C.shape[0] == vertices.shape[0] and C.shape[1] == 4:
                bounded = C[:, 3] > 0
        cloud = RayCloud(vertices, bounded)
        logger.info(
            "Loaded ray cloud %s: %d rays (%d bounded)",
            path,
            cloud.point_count(),
            int(cloud.bounded.sum()),
        )
        return cloud

    def to_ply(self, path: Union[str, Path]) -> None:
        """Save as a PLY point cloud; unbounded rays get alpha 0."""
        colors = np.full((self.point_count(), 4), 255, dtype=np.uint8)
        colors[~self.bounded, 3] = 0
        pc = trimesh.PointCloud(self.ends, colors=colors)
        pc.export(str(path))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def point_count(self) -> int:
        return int(self.ends.shape[0])

    def end_point(self, i: int) -> np.ndarray:
        return self.ends[i].copy()

    def is_bounded(self, i: int) -> bool:
        return bool(self.bounded[i])

    # Name used by the ray cloud tooling
    ray_bounded = is_bounded

    def bounded_points(self) -> np.ndarray:
        return self.ends[self.bounded]

    def calc_min_bound(self) -> np.ndarray:
        P = self.bounded_points()
        if P.shape[0] == 0:
            return np.zeros(3, dtype=float)
        return P.min(axis=0)

    def calc_max_bound(self) -> np.ndarray:
        P = self.bounded_points()
        if P.shape[0] == 0:
            return np.zeros(3, dtype=float)
        return P.max(axis=0)

    def estimate_point_spacing(self) -> float:
        """Mean distance from each bounded point to its nearest neighbour.

        Returns 0.0 when fewer than two bounded points exist.
        """
        P = self.bounded_points()
        if P.shape[0] < 2:
            return 0.0
        dd, _ = cKDTree(P).query(P, k=2)
        nearest = np.asarray(dd, dtype=float)[:, 1]
        nearest = nearest[np.isfinite(nearest)]
        return float(nearest.mean()) if nearest.size else 0.0

    def __len__(self) -> int:
        return self.point_count()

    def __repr__(self) -> str:
        return f"RayCloud({self.point_count()} rays, {int(self.bounded.sum())} bounded)"
