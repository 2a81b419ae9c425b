"""
Skeleton assembly over branch candidates.

Connects the surviving branches into a forest of rooted trees with a
shortest-path search from the ground upwards:

1. Root selection (`find_root_branches`): a branch is a ground root unless some
   other branch j satisfies

       h_i > d_ij^2 / (2 h_j)

   where h is the centre height above the cloud's minimum bound and d_ij the
   horizontal distance between centres. This is a tunable heuristic (a
   paraboloid "shading" test), kept exactly as stated.

2. Neighbour graph (`neighbour_table`): the k nearest other branch centres,
   the query branch itself excluded.

3. Relaxation (`connect_branches`): a heap ordered by ascending `tree_score`.
   The edge cost is the squared centre distance divided by the squared
   alignment between the edge and the mean axis of the two branches, so paths
   prefer to run along branches rather than across them:

       cost = |c_j - c_i|^2 / max(0.001, dot(unit(c_j - c_i), unit(d_i + s d_j)))^2

   with s = +-1 chosen so the two axes agree in sign. Improved nodes are pushed
   again rather than having their key decreased; stale heap entries for
   finalised nodes are skipped on pop.

Branches never reached keep `parent == -1` and an infinite `tree_score`; they
are isolated fragments, not trees.
"""

from __future__ import annotations

import heapq
import logging
import math
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

import numpy as np

from .branch import Branch
from .grid import knn

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

MIN_ALIGNMENT = 0.001
ALIGNMENT_POWER = 2.0


@dataclass(order=True)
class QueueNode:
    """Heap entry. Ordered by `score`, then by push sequence for stable ties."""

    score: float
    seq: int
    id: int = field(compare=False)


def heights_above(branches: Sequence[Branch], min_bound: np.ndarray) -> np.ndarray:
    if not branches:
        return np.zeros(0, dtype=float)
    z0 = float(np.asarray(min_bound, dtype=float).reshape(3)[2])
    return np.array([b.centre[2] - z0 for b in branches], dtype=float)


def is_root(index: int, branches: Sequence[Branch], min_bound: np.ndarray) -> bool:
    """Root test for a single branch against all others."""
    h = heights_above(branches, min_bound)
    centres = np.array([b.centre for b in branches], dtype=float)
    return _is_root(index, centres, h)


def _is_root(i: int, centres: np.ndarray, h: np.ndarray) -> bool:
    dif = centres[:, :2] - centres[i, :2]
    x2 = np.einsum("ij,ij->i", dif, dif)
    # h_j == 0 gives inf (or nan when coincident), which never excludes i;
    # h_j < 0 gives a negative threshold, which excludes any i above it
    with np.errstate(divide="ignore", invalid="ignore"):
        threshold = x2 / (2.0 * h)
    threshold[i] = np.inf
    return not bool(np.any(h[i] > threshold))


def find_root_branches(branches: Sequence[Branch], min_bound: np.ndarray) -> List[int]:
    """Indices of all branches passing the ground root test, in index order."""
    if not branches:
        return []
    h = heights_above(branches, min_bound)
    centres = np.array([b.centre for b in branches], dtype=float)
    return [i for i in range(len(branches)) if _is_root(i, centres, h)]


def edge_cost(node: Branch, child: Branch) -> float:
    """Angle-penalised squared distance from `node` to `child`."""
    dif = child.centre - node.centre
    dist2 = float(dif @ dif)
    if dist2 <= 0.0:
        return 0.0
    dif = dif / math.sqrt(dist2)
    d1 = node.dir
    d2 = child.dir
    if float(d2 @ d1) < 0.0:
        d2 = -d2
    mean_dir = d1 + d2
    norm = float(np.linalg.norm(mean_dir))
    mean_dir = mean_dir / norm if norm > 0.0 else d1
    alignment = max(MIN_ALIGNMENT, float(dif @ mean_dir))
    return dist2 / alignment**ALIGNMENT_POWER


def neighbour_table(branches: Sequence[Branch], knn_size: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    KNN graph over branch centres for `connect_branches`.

    Each row holds up to `knn_size` other branches, nearest first; the branch
    itself is never listed. A lone branch gets a single `-1` padded slot.
    """
    n = len(branches)
    centres = np.array([b.centre for b in branches], dtype=float).reshape(-1, 3)
    k = max(1, min(int(knn_size), n - 1))
    return knn(centres, k, exclude_self=True)


def connect_branches(
    branches: List[Branch],
    roots: Sequence[int],
    indices: np.ndarray,
    dists2: np.ndarray,
    min_bound: np.ndarray,
) -> int:
    """
    Run the ground-up shortest-path search, writing `parent`, `tree_score`,
    `distance_to_ground` and `visited` on each branch in place.

    Args:
        branches: Surviving branches. Skeleton fields are reset first.
        roots: Indices of the seed branches.
        indices, dists2: (N, k) neighbour table from `raybush.grid.knn`.
        min_bound: Cloud minimum bound; seeds start at their height above it.

    Returns:
        Number of branches reached (roots included).
    """
    n = len(branches)
    indices = np.asarray(indices)
    dists2 = np.asarray(dists2, dtype=float)
    if indices.shape != dists2.shape or (n and indices.shape[0] != n):
        raise ValueError(
            f"neighbour table shapes {indices.shape}/{dists2.shape} do not match {n} branches"
        )
    for b in branches:
        b.visited = False
        b.parent = -1
        b.tree_score = math.inf
        b.distance_to_ground = math.inf

    h = heights_above(branches, min_bound)
    heap: List[QueueNode] = []
    seq = 0
    for r in roots:
        b = branches[r]
        b.distance_to_ground = float(h[r])
        b.tree_score = float(h[r]) ** 2
        heapq.heappush(heap, QueueNode(b.tree_score, seq, int(r)))
        seq += 1

    reached = 0
    while heap:
        node = heapq.heappop(heap)
        current = branches[node.id]
        if current.visited:
            continue
        for slot in range(indices.shape[1]):
            child_id = int(indices[node.id, slot])
            if child_id < 0:
                break
            if child_id == node.id:
                continue
            child = branches[child_id]
            if child.visited:
                continue
            new_score = current.tree_score + edge_cost(current, child)
            if new_score < child.tree_score:
                child.tree_score = new_score
                child.distance_to_ground = current.distance_to_ground + math.sqrt(
                    float(dists2[node.id, slot])
                )
                child.parent = node.id
                heapq.heappush(heap, QueueNode(new_score, seq, child_id))
                seq += 1
        current.visited = True
        reached += 1

    logger.debug("Skeleton search reached %d of %d branches", reached, n)
    return reached


def root_of(branches: Sequence[Branch], index: int) -> int:
    """Follow parent links from `index` to its root.

    Raises:
        ValueError: if the parent links contain a cycle.
    """
    seen = set()
    i = index
    while branches[i].parent != -1:
        if i in seen:
            raise ValueError(f"Cycle in parent links at branch {i}")
        seen.add(i)
        i = branches[i].parent
    return i
