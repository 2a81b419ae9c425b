"""
Spatial acceleration structures for branch extraction.

- `PointGrid`: uniform grid of point buckets, answering "which points lie in
  the cells overlapping this box" during candidate refinement.
- `IntegerVoxels`: sparse occupancy counter used to seed one branch candidate
  per occupied cell.
- `knn`: k-nearest-neighbour query over a set of points (scipy cKDTree).
"""

from __future__ import annotations

import itertools
import logging
from typing import Callable, Dict, Iterable, List, Tuple

import numpy as np
from scipy.spatial import cKDTree

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

CellIndex = Tuple[int, int, int]


def _as_points(points: np.ndarray) -> np.ndarray:
    P = np.asarray(points, dtype=float)
    if P.size == 0:
        return np.zeros((0, 3), dtype=float)
    if P.ndim != 2 or P.shape[1] != 3:
        raise ValueError("points must be an (N,3) array")
    return P


class PointGrid:
    """
    Uniform grid of point buckets.

    Cells are indexed by ``floor((p - min_bound) / voxel_width)``. Points are
    appended with `insert`/`insert_points`; queries concatenate the buckets of
    every cell overlapping an axis-aligned box. Call `finalise` once all
    points are in; after that queries do not mutate the grid and it can be
    shared between worker threads.
    """

    def __init__(
        self,
        min_bound: Iterable[float],
        max_bound: Iterable[float],
        voxel_width: float,
    ):
        if not voxel_width > 0.0:
            raise ValueError("voxel_width must be > 0")
        self.min_bound = np.asarray(min_bound, dtype=float).reshape(3)
        self.max_bound = np.asarray(max_bound, dtype=float).reshape(3)
        self.voxel_width = float(voxel_width)
        self._buckets: Dict[CellIndex, List[np.ndarray]] = {}
        self._arrays: Dict[CellIndex, np.ndarray] = {}
        self._count = 0

    def __len__(self) -> int:
        return self._count

    @property
    def num_cells(self) -> int:
        return len(self._buckets)

    def index(self, pos: Iterable[float]) -> CellIndex:
        p = np.asarray(pos, dtype=float)
        ijk = np.floor((p - self.min_bound) / self.voxel_width).astype(int)
        return (int(ijk[0]), int(ijk[1]), int(ijk[2]))

    def insert(self, pos: Iterable[float]) -> None:
        p = np.asarray(pos, dtype=float).reshape(3)
        key = self.index(p)
        self._buckets.setdefault(key, []).append(p.copy())
        self._arrays.pop(key, None)
        self._count += 1

    def insert_points(self, points: np.ndarray) -> None:
        """Bulk insert an (N,3) array."""
        P = _as_points(points)
        if P.shape[0] == 0:
            return
        ijk = np.floor((P - self.min_bound) / self.voxel_width).astype(int)
        for key, p in zip(map(tuple, ijk.tolist()), P):
            self._buckets.setdefault(key, []).append(p)
            self._arrays.pop(key, None)
        self._count += int(P.shape[0])

    def finalise(self) -> None:
        """Convert every bucket to an array up front."""
        for key, bucket in self._buckets.items():
            if key not in self._arrays:
                self._arrays[key] = np.vstack(bucket)

    def cell_points(self, key: CellIndex) -> np.ndarray:
        arr = self._arrays.get(key)
        if arr is None:
            bucket = self._buckets.get(key)
            if not bucket:
                return np.zeros((0, 3), dtype=float)
            arr = np.vstack(bucket)
            self._arrays[key] = arr
        return arr

    def points_in_box(self, lo: Iterable[float], hi: Iterable[float]) -> np.ndarray:
        """All points stored in cells that overlap the box [lo, hi]."""
        if not self._buckets:
            return np.zeros((0, 3), dtype=float)
        i0 = self.index(lo)
        i1 = self.index(hi)
        ranges = [range(i0[a], i1[a] + 1) for a in range(3)]
        n_range = len(ranges[0]) * len(ranges[1]) * len(ranges[2])
        if n_range > len(self._buckets):
            # Box covers more cells than are occupied: filter occupied keys instead
            keys = sorted(
                k
                for k in self._buckets
                if all(i0[a] <= k[a] <= i1[a] for a in range(3))
            )
        else:
            keys = [k for k in itertools.product(*ranges) if k in self._buckets]
        if not keys:
            return np.zeros((0, 3), dtype=float)
        return np.vstack([self.cell_points(k) for k in keys])


class IntegerVoxels:
    """
    Sparse voxel occupancy counter.

    Args:
        voxel_width: Cell edge length.
        offset: World position of the corner of cell (0, 0, 0).
    """

    def __init__(self, voxel_width: float, offset: Iterable[float]):
        if not voxel_width > 0.0:
            raise ValueError("voxel_width must be > 0")
        self.voxel_width = float(voxel_width)
        self.offset = np.asarray(offset, dtype=float).reshape(3)
        self.counts: Dict[CellIndex, int] = {}

    def increment_points(self, points: np.ndarray) -> None:
        P = _as_points(points)
        if P.shape[0] == 0:
            return
        ijk = np.floor((P - self.offset) / self.voxel_width).astype(int)
        keys, counts = np.unique(ijk, axis=0, return_counts=True)
        for key, c in zip(map(tuple, keys.tolist()), counts.tolist()):
            self.counts[key] = self.counts.get(key, 0) + int(c)

    def for_each(
        self, callback: Callable[[float, np.ndarray, CellIndex, int], None]
    ) -> None:
        """Call ``callback(voxel_width, offset, index, count)`` per occupied cell.

        Cells are visited in sorted index order.
        """
        for key in sorted(self.counts):
            callback(self.voxel_width, self.offset, key, self.counts[key])


def knn(
    points: np.ndarray, k: int, *, exclude_self: bool = False
) -> Tuple[np.ndarray, np.ndarray]:
    """
    k-nearest neighbours of every point within the same set.

    Args:
        points: (N,3) array.
        k: Number of neighbours requested. Clamped to N.
        exclude_self: If True, drop the query point itself from each row.

    Returns:
        (indices, dists2): (N, k) int and float arrays sorted by increasing
        distance. Missing neighbours are padded with index -1 and distance inf.
    """
    P = _as_points(points)
    k = int(k)
    if k < 1:
        raise ValueError("k must be >= 1")
    n = P.shape[0]
    if n == 0:
        return np.zeros((0, k), dtype=int), np.zeros((0, k), dtype=float)

    k_query = min(k + (1 if exclude_self else 0), n)
    tree = cKDTree(P)
    dd, ii = tree.query(P, k=k_query)
    dd = np.asarray(dd, dtype=float).reshape(n, k_query)
    ii = np.asarray(ii, dtype=int).reshape(n, k_query)
    if exclude_self:
        rows_i: List[np.ndarray] = []
        rows_d: List[np.ndarray] = []
        for r in range(n):
            keep = ii[r] != r
            rows_i.append(ii[r][keep][: k_query - 1])
            rows_d.append(dd[r][keep][: k_query - 1])
        k_found = k_query - 1
        ii = np.vstack(rows_i) if k_found > 0 else np.zeros((n, 0), dtype=int)
        dd = np.vstack(rows_d) if k_found > 0 else np.zeros((n, 0), dtype=float)
    else:
        k_found = k_query

    indices = np.full((n, k), -1, dtype=int)
    dists2 = np.full((n, k), np.inf, dtype=float)
    indices[:, :k_found] = ii[:, :k_found]
    dists2[:, :k_found] = dd[:, :k_found] ** 2
    logger.debug("knn: %d points, k=%d (found %d)", n, k, k_found)
    return indices, dists2
