"""
Demo ray cloud generation for raybush.

Synthetic point clouds sampled on cylinder surfaces: single stems, a simple
tree (fallen log, trunk and side branch) and a small forest of such trees.
These are used by the tests, scripts and tutorials.
"""

import logging
import os
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .cloud import RayCloud

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def _perpendicular_frame(axis: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    ref = np.array([0.0, 0.0, 1.0]) if abs(axis[2]) < 0.9 else np.array([1.0, 0.0, 0.0])
    u = np.cross(axis, ref)
    u /= np.linalg.norm(u)
    v = np.cross(axis, u)
    return u, v


def sample_cylinder_surface(
    start: Sequence[float],
    end: Sequence[float],
    radius: float,
    ring_spacing: float = 0.02,
    points_per_ring: Optional[int] = None,
    jitter: float = 0.0,
    seed: int = 0,
) -> np.ndarray:
    """
    Sample points on the lateral surface of a cylinder in evenly spaced rings.

    Args:
        start: Centre of the first ring.
        end: Centre of the last ring.
        radius: Cylinder radius.
        ring_spacing: Axial distance between rings.
        points_per_ring: Points on each ring. Defaults to a circumferential
            spacing close to `ring_spacing`.
        jitter: Standard deviation of Gaussian noise added to every coordinate.
        seed: Random seed for the jitter.

    Returns:
        (N, 3) array of surface points.
    """
    a = np.asarray(start, dtype=float)
    b = np.asarray(end, dtype=float)
    axis = b - a
    length = float(np.linalg.norm(axis))
    if length <= 0.0:
        raise ValueError("start and end must differ")
    if radius <= 0.0 or ring_spacing <= 0.0:
        raise ValueError("radius and ring_spacing must be > 0")
    axis /= length
    if points_per_ring is None:
        points_per_ring = max(3, int(round(2.0 * np.pi * radius / ring_spacing)))

    rng = np.random.default_rng(seed)
    u, v = _perpendicular_frame(axis)
    n_rings = int(np.floor(length / ring_spacing + 1e-9)) + 1
    ts = np.arange(n_rings, dtype=float) * ring_spacing
    angles = 2.0 * np.pi * np.arange(points_per_ring, dtype=float) / points_per_ring

    rings = []
    for k, t in enumerate(ts):
        # stagger alternate rings by half a step
        theta = angles + (np.pi / points_per_ring) * (k % 2)
        ring = (
            a
            + axis * t
            + radius * (np.outer(np.cos(theta), u) + np.outer(np.sin(theta), v))
        )
        rings.append(ring)
    points = np.vstack(rings)
    if jitter > 0.0:
        points = points + rng.normal(scale=jitter, size=points.shape)
    return points


def create_cylinder_cloud(
    start: Sequence[float] = (0.0, 0.0, 0.0),
    end: Sequence[float] = (0.0, 0.0, 2.0),
    radius: float = 0.05,
    ring_spacing: float = 0.02,
    points_per_ring: Optional[int] = None,
    jitter: float = 0.0,
    seed: int = 0,
) -> RayCloud:
    """
    Ray cloud of a single straight stem.

    Defaults give a 2 m vertical stem of radius 5 cm sampled every 2 cm.
    """
    points = sample_cylinder_surface(start, end, radius, ring_spacing, points_per_ring, jitter, seed)
    return RayCloud.from_points(points)


def tree_segments(
    origin: Sequence[float] = (0.0, 0.0, 0.0),
    trunk_height: float = 2.0,
    trunk_radius: float = 0.05,
    branch_radius: float = 0.035,
    log_length: float = 0.8,
) -> Dict[str, Tuple[np.ndarray, np.ndarray, float]]:
    """
    Cylinder segments (start, end, radius) of a simple demo tree.

    The tree is a log on the ground sloping gently up towards a vertical
    trunk, with one side branch angled up and out from 60% of the trunk height.
    """
    o = np.asarray(origin, dtype=float)
    fork = o + np.array([0.0, 0.0, trunk_height * 0.6])
    return {
        "log": (
            o + np.array([-0.6 - log_length, 0.0, trunk_radius]),
            o + np.array([-0.6, 0.0, trunk_radius + 0.1]),
            trunk_radius,
        ),
        "trunk": (o.copy(), o + np.array([0.0, 0.0, trunk_height]), trunk_radius),
        "side_branch": (
            fork + np.array([branch_radius + trunk_radius, 0.0, 0.0]),
            fork + np.array([0.6, 0.0, 0.6]),
            branch_radius,
        ),
    }


def create_tree_cloud(
    origin: Sequence[float] = (0.0, 0.0, 0.0),
    trunk_height: float = 2.0,
    trunk_radius: float = 0.05,
    branch_radius: float = 0.035,
    ring_spacing: float = 0.02,
    jitter: float = 0.0,
    seed: int = 0,
) -> RayCloud:
    """Ray cloud of the demo tree from `tree_segments`."""
    parts = []
    for k, (a, b, r) in enumerate(
        tree_segments(origin, trunk_height, trunk_radius, branch_radius).values()
    ):
        parts.append(sample_cylinder_surface(a, b, r, ring_spacing, None, jitter, seed + k))
    return RayCloud.from_points(np.vstack(parts))


def create_forest_cloud(
    origins: Sequence[Sequence[float]] = ((0.0, 0.0, 0.0), (0.0, 20.0, 0.0)),
    ring_spacing: float = 0.02,
    jitter: float = 0.0,
    num_unbounded: int = 0,
    seed: int = 0,
) -> RayCloud:
    """
    Ray cloud of several demo trees, optionally with unbounded (miss) rays.

    Unbounded rays end at random positions in a box around the trees; they carry no
    geometry and should not influence extraction.
    """
    parts = [
        create_tree_cloud(o, ring_spacing=ring_spacing, jitter=jitter, seed=seed + 10 * i).ends
        for i, o in enumerate(origins)
    ]
    ends = np.vstack(parts)
    bounded = np.ones(ends.shape[0], dtype=bool)
    if num_unbounded > 0:
        rng = np.random.default_rng(seed)
        lo = ends.min(axis=0) - 1.0
        hi = ends.max(axis=0) + 1.0
        misses = rng.uniform(lo, hi, size=(num_unbounded, 3))
        ends = np.vstack([ends, misses])
        bounded = np.concatenate([bounded, np.zeros(num_unbounded, dtype=bool)])
    return RayCloud(ends, bounded)


def save_demo_clouds(output_dir: str = "data/cloud/demo") -> Dict[str, str]:
    """
    Generate and save example ray clouds as PLY files.

    Args:
        output_dir: Directory to save cloud files

    Returns:
        Dictionary mapping cloud names to file paths
    """
    os.makedirs(output_dir, exist_ok=True)

    clouds = {
        "stem": create_cylinder_cloud(),
        "tree": create_tree_cloud(jitter=0.002),
        "forest": create_forest_cloud(jitter=0.002, num_unbounded=500),
    }
    paths: Dict[str, str] = {}
    for name, cloud in clouds.items():
        path = os.path.join(output_dir, f"{name}.ply")
        cloud.to_ply(path)
        paths[name] = path
        logger.info("Saved demo cloud %s (%d rays) to %s", name, cloud.point_count(), path)
    return paths
