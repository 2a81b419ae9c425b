"""
Cylindrical branch candidates.

A `Branch` is a provisional cylinder (centre, axis direction, radius, length)
fitted to the points around it. Refinement alternates between gathering the
points near the current cylinder and re-fitting it:

- `estimate_pose`: first fit from an arbitrary seed. Principal axis of the
  points gives the direction, a circle fit in the perpendicular plane gives the
  centre and radius, the axial extent gives the length.
- `update_direction`, `update_centre`, `update_radius_and_score`: the steady
  refinement steps, applied in that order.

Scoring: points within a surface band of the fitted radius support the
cylinder, each weighted by how close it sits to the surface. Points outside
the band but inside the boundary radius (inside the solid, or in the empty
shell a real branch should have around it) count against it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

import numpy as np

from .cuboid import Cuboid
from .grid import PointGrid

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

UP = np.array([0.0, 0.0, 1.0], dtype=float)


@dataclass
class Branch:
    """
    A branch candidate and, after skeleton building, a skeleton node.

    Attributes:
        centre: Cylinder midpoint.
        dir: Unit axis direction.
        radius: Cylinder radius.
        length: Cylinder length along `dir`.
        score: Support score; higher is more confidently a real branch.
        active: Whether refinement continues on this candidate.
        pose_estimated: False while the candidate still needs its initial pose
            fit, True once it is in steady refinement.
        visited: Finalised by the skeleton search.
        parent: Index of the parent branch in the skeleton, -1 for none.
        distance_to_ground: Summed centre-to-centre distance along the path
            to the root.
        tree_score: Accumulated path cost used to order the skeleton search.
    """

    centre: np.ndarray
    dir: np.ndarray = field(default_factory=lambda: UP.copy())
    radius: float = 0.0
    length: float = 0.0
    score: float = 0.0
    active: bool = True
    pose_estimated: bool = False
    visited: bool = False
    parent: int = -1
    distance_to_ground: float = math.inf
    tree_score: float = math.inf

    def __post_init__(self):
        self.centre = np.asarray(self.centre, dtype=float).reshape(3).copy()
        self.dir = np.asarray(self.dir, dtype=float).reshape(3).copy()
        self.radius = float(self.radius)
        self.length = float(self.length)
        self.score = float(self.score)

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------
    @property
    def base(self) -> np.ndarray:
        return self.centre - self.dir * (0.5 * self.length)

    @property
    def top(self) -> np.ndarray:
        return self.centre + self.dir * (0.5 * self.length)

    @property
    def volume(self) -> float:
        """Volume proxy used to rank overlapping candidates (radius^2 * length)."""
        return self.radius * self.radius * self.length

    def bounding_cuboid(self) -> Cuboid:
        return Cuboid.around_segment(self.base, self.top, self.radius)

    def copy(self) -> "Branch":
        return replace(self, centre=self.centre.copy(), dir=self.dir.copy())

    def cylinder_coordinates(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Axial offset and radial distance of each point from this cylinder."""
        offsets = np.asarray(points, dtype=float) - self.centre
        t = offsets @ self.dir
        radial = offsets - np.outer(t, self.dir)
        return t, np.linalg.norm(radial, axis=1)

    def contains(self, pos: np.ndarray) -> bool:
        """True if `pos` lies inside the cylinder (ends included)."""
        d = np.asarray(pos, dtype=float) - self.centre
        t = float(d @ self.dir)
        if t > 0.5 * self.length or t < -0.5 * self.length:
            return False
        d = d - self.dir * t
        return float(d @ d) < self.radius * self.radius

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------
    def boundary_radius(self, spacing: float, boundary_radius_scale: float) -> float:
        return boundary_radius_scale * self.radius + spacing

    def get_overlap(
        self, grid: PointGrid, spacing: float, boundary_radius_scale: float = 2.0
    ) -> np.ndarray:
        """
        Points in the neighbourhood of this cylinder.

        The neighbourhood extends half a length past each end along the axis
        and out to the boundary radius around it.
        """
        outer = self.boundary_radius(spacing, boundary_radius_scale)
        start = self.centre - self.dir * self.length
        end = self.centre + self.dir * self.length
        lo = np.minimum(start, end) - outer
        hi = np.maximum(start, end) + outer
        candidates = grid.points_in_box(lo, hi)
        if candidates.shape[0] == 0:
            return candidates
        t, d = self.cylinder_coordinates(candidates)
        mask = (np.abs(t) <= self.length) & (d <= outer)
        return candidates[mask]

    def estimate_pose(self, points: np.ndarray) -> None:
        """Initial pose from the point distribution; moves to steady refinement."""
        P = np.asarray(points, dtype=float)
        centroid = P.mean(axis=0)
        axis = _principal_axis(P - centroid)
        if axis is not None:
            self.dir = axis if axis[2] >= 0.0 else -axis
        u, v = _perpendicular_basis(self.dir)
        rel = P - centroid
        fit = _fit_circle_2d(np.column_stack([rel @ u, rel @ v]))
        t = rel @ self.dir
        if fit is not None:
            (cx, cy), r = fit
            self.centre = centroid + u * cx + v * cy
            self.radius = r
        else:
            self.centre = centroid
            radial = rel - np.outer(t, self.dir)
            self.radius = float(np.mean(np.linalg.norm(radial, axis=1)))
        self.length = float(t.max() - t.min()) if t.size else 0.0
        self.pose_estimated = True

    def update_direction(self, points: np.ndarray) -> None:
        """Principal axis of the points, sign kept consistent with the current axis."""
        P = np.asarray(points, dtype=float)
        axis = _principal_axis(P - P.mean(axis=0))
        if axis is None:
            return
        if float(axis @ self.dir) < 0.0:
            axis = -axis
        self.dir = axis

    def update_centre(self, points: np.ndarray) -> None:
        """Circle-fit centre across the axis, mean position along it."""
        rel = np.asarray(points, dtype=float) - self.centre
        u, v = _perpendicular_basis(self.dir)
        t = rel @ self.dir
        fit = _fit_circle_2d(np.column_stack([rel @ u, rel @ v]))
        if fit is not None:
            (cx, cy), _ = fit
            shift = u * cx + v * cy
        else:
            radial = rel - np.outer(t, self.dir)
            shift = radial.mean(axis=0)
        self.centre = self.centre + shift + self.dir * float(t.mean())

    def update_radius_and_score(
        self,
        points: np.ndarray,
        spacing: float,
        boundary_radius_scale: float = 2.0,
    ) -> None:
        """Joint radius, length and score update from the radial spread of the points."""
        t, d = self.cylinder_coordinates(points)
        self.radius = float(np.median(d)) if d.size else 0.0
        if not self.radius > 0.0 or not np.isfinite(self.radius):
            self.radius = 0.0
            self.length = 0.0
            self.score = 0.0
            return
        band = max(float(spacing), 0.25 * self.radius)
        residual = (d - self.radius) / band
        in_band = np.abs(residual) <= 1.0
        outer = self.boundary_radius(spacing, boundary_radius_scale)
        # Points beyond the boundary radius were never gathered, so everything
        # off the band counts against the fit
        penalties = int(np.count_nonzero(~in_band & (d <= outer)))
        support = float(np.sum(1.0 - residual[in_band] ** 2))
        self.score = max(0.0, support - penalties)
        if np.count_nonzero(in_band) >= 2:
            t_in = t[in_band]
            self.length = float(t_in.max() - t_in.min())
        else:
            self.length = 0.0

    def __repr__(self) -> str:
        c = ", ".join(f"{v:.3f}" for v in self.centre)
        d = ", ".join(f"{v:.3f}" for v in self.dir)
        return (
            f"Branch(centre=[{c}], dir=[{d}], radius={self.radius:.4f}, "
            f"length={self.length:.4f}, score={self.score:.2f}, parent={self.parent})"
        )


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _principal_axis(centred: np.ndarray) -> Optional[np.ndarray]:
    """Unit direction of largest variance, or None for degenerate input."""
    if centred.shape[0] < 2:
        return None
    _, s, vh = np.linalg.svd(centred, full_matrices=False)
    if s.size == 0 or not s[0] > 0.0:
        return None
    axis = vh[0]
    norm = float(np.linalg.norm(axis))
    if norm <= 1e-12:
        return None
    return axis / norm


def _perpendicular_basis(direction: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Orthonormal (u, v) spanning the plane perpendicular to `direction`."""
    n = np.asarray(direction, dtype=float)
    n = n / (np.linalg.norm(n) + 1e-12)
    ref = np.array([1.0, 2.0, 3.0], dtype=float)
    u = np.cross(ref, n)
    if np.linalg.norm(u) < 1e-6:
        u = np.cross(np.array([1.0, 0.0, 0.0]), n)
    u = u / np.linalg.norm(u)
    v = np.cross(n, u)
    return u, v


def _fit_circle_2d(points_2d: np.ndarray) -> Optional[Tuple[Tuple[float, float], float]]:
    """Algebraic least-squares circle fit.

    Returns None if the fit is under-determined, or if the circle is much
    larger than the spread of the points (nearly collinear input).
    """
    if points_2d.shape[0] < 3:
        return None
    x = points_2d[:, 0]
    y = points_2d[:, 1]
    A = np.c_[2 * x, 2 * y, np.ones_like(x)]
    b = x**2 + y**2
    sol, _, rank, _ = np.linalg.lstsq(A, b, rcond=None)
    if rank < 3:
        return None
    a, c, k = sol
    r2 = k + a**2 + c**2
    if not r2 > 0.0 or not np.isfinite(r2):
        return None
    spread = float(np.max(np.linalg.norm(points_2d - points_2d.mean(axis=0), axis=1)))
    if math.sqrt(r2) > 2.0 * spread:
        return None
    return (float(a), float(c)), float(math.sqrt(r2))
