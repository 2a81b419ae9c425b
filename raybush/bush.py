"""
Bush: tree skeleton extraction from a ray cloud.

The pipeline finds cylindrical branch segments in the bounded points of a ray
cloud and links them into rooted trees:

1. Voxel index: bounded points go into a `PointGrid` with cells twice the
   expected branch radius.
2. Candidates (`initialise_branches`): one cylinder per occupied cell over four
   overlapping voxelisations (two resolutions x two offsets), which avoids
   missing branches that straddle cell boundaries of a single grid.
3. Refinement (`refine_branches`): each active candidate repeatedly gathers
   the points around it and re-fits its pose. The best-scoring state of each
   candidate is kept, since fits can degrade as they take in more data.
4. Pruning (`prune_branches`, `remove_overlapping_branches`): drop low-score
   candidates, then resolve pairs of overlapping cylinders in favour of the
   larger one.
5. Skeleton (`raybush.skeleton`): ground roots, k-nearest-neighbour graph and a
   shortest-path search that sets each branch's parent.

Important terminology:
- "Branch candidate": a provisional cylinder fit to a hypothesised branch
  segment.
- "Support points": cloud points on or near a candidate's surface.
- "Skeleton": the forest of branches linked by `parent`, rooted at ground
  branches.
- "Branch base": the bottom end point of a branch cylinder,
  ``centre - dir * length / 2``.

Example:
    >>> from raybush import Bush, RayCloud
    >>> cloud = RayCloud.from_ply("trees.ply")
    >>> bush = Bush(cloud, mid_radius=0.1, verbose=True)
    >>> bush.save("trees_bases.txt")
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np
import trimesh

from .branch import Branch
from .cloud import RayCloud
from .grid import IntegerVoxels, PointGrid
from .skeleton import connect_branches, find_root_branches, neighbour_table, root_of

logger = logging.getLogger(__name__)
# Ensure no "No handler" warnings in library usage; applications can configure handlers.
logger.addHandler(logging.NullHandler())

BASES_HEADER = "# Tree base location list: x, y, z, radius"

# ============================================================================
# Configuration
# ============================================================================


@dataclass
class BushParams:
    # Tuning: defines how sparse a tree feature can be, compared to the point spacing
    minimum_score: float = 40.0
    # Cylinder length relative to its diameter, for new candidates
    branch_height_to_width: float = 4.0
    # How much farther out the empty boundary is than the branch radius.
    # Larger requires more clear space around a cylinder to declare it a branch.
    boundary_radius_scale: float = 2.0
    min_num_points: int = 6  # fewer gathered points than this deactivates a candidate
    knn_size: int = 20  # neighbours per branch in the skeleton graph
    num_iterations: int = 5  # refinement passes over all candidates
    num_workers: int = 1  # threads used for refinement; 1 runs in the caller
    min_voxel_count: int = 2  # points a cell needs before it seeds a candidate
    overlap_ratio: float = 0.4  # inside fraction above which two cylinders collide

    def __post_init__(self):
        positive = {
            "minimum_score": self.minimum_score,
            "branch_height_to_width": self.branch_height_to_width,
            "boundary_radius_scale": self.boundary_radius_scale,
        }
        for name, value in positive.items():
            if not float(value) > 0.0:
                raise ValueError(f"{name} must be > 0, got {value!r}")
        for name in ("min_num_points", "knn_size", "num_iterations", "num_workers", "min_voxel_count"):
            if int(getattr(self, name)) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)!r}")
        if not 0.0 <= float(self.overlap_ratio) < 1.0:
            raise ValueError("overlap_ratio must be in [0, 1)")


# ============================================================================
# Pipeline stages
# ============================================================================


def initialise_branches(
    cloud: RayCloud,
    min_bound: np.ndarray,
    voxel_width: float,
    params: Optional[BushParams] = None,
) -> List[Branch]:
    """
    Seed one branch candidate per occupied voxel over four voxelisations.

    Grids: `voxel_width` at `min_bound`, `voxel_width` offset by half a cell,
    `2 * voxel_width` at `min_bound`, `2 * voxel_width` offset by a full base
    cell. Cells with fewer than `params.min_voxel_count` bounded points are
    skipped. Each candidate starts vertical, with a diameter of
    ``width / sqrt(2)`` and a length of ``diameter * branch_height_to_width``.
    """
    if params is None:
        params = BushParams()
    if not voxel_width > 0.0:
        raise ValueError("voxel_width must be > 0")
    min_bound = np.asarray(min_bound, dtype=float).reshape(3)
    half_voxel = np.full(3, 0.5 * voxel_width)
    voxels = [
        # normal size, with offset grid
        IntegerVoxels(voxel_width, min_bound),
        IntegerVoxels(voxel_width, min_bound + half_voxel),
        # double size with offset grid
        IntegerVoxels(2.0 * voxel_width, min_bound),
        IntegerVoxels(2.0 * voxel_width, min_bound + 2.0 * half_voxel),
    ]
    points = cloud.bounded_points()
    for grid in voxels:
        grid.increment_points(points)

    branches: List[Branch] = []

    def add_branch(width: float, offset: np.ndarray, index: Tuple[int, int, int], count: int) -> None:
        if count < params.min_voxel_count:
            return
        centre = (np.asarray(index, dtype=float) + 0.5) * width + offset
        diameter = width / math.sqrt(2.0)
        branches.append(
            Branch(
                centre=centre,
                radius=diameter / 2.0,
                length=diameter * params.branch_height_to_width,
                score=0.0,
            )
        )

    for grid in voxels:
        grid.for_each(add_branch)
    return branches


def _refine_one(
    branch: Branch,
    best: Branch,
    grid: PointGrid,
    spacing: float,
    mid_radius: float,
    params: BushParams,
) -> Branch:
    """One refinement pass of a single candidate. Returns the (possibly new) best."""
    points = branch.get_overlap(grid, spacing, params.boundary_radius_scale)
    if points.shape[0] < params.min_num_points:  # not enough data to use
        branch.active = False
        return best

    if not branch.pose_estimated:
        branch.estimate_pose(points)
        return best

    branch.update_direction(points)
    branch.update_centre(points)
    branch.update_radius_and_score(points, spacing, params.boundary_radius_scale)

    if branch.score > best.score:
        best = branch.copy()

    if branch.length < mid_radius or not branch.radius > 0.0:
        # geometry collapsed below a measurable scale
        branch.active = False
    return best


def refine_branches(
    branches: List[Branch],
    grid: PointGrid,
    spacing: float,
    mid_radius: float,
    params: Optional[BushParams] = None,
    *,
    verbosity: int = 0,
) -> List[Branch]:
    """
    Iteratively refine candidates in place and return the best state per slot.

    The returned list is parallel to `branches`. Slots whose candidate never
    scored above zero hold an inactive copy of the seed.
    """
    if params is None:
        params = BushParams()
    best_branches = [b.copy() for b in branches]
    for b in best_branches:
        b.active = False

    executor = ThreadPoolExecutor(max_workers=params.num_workers) if params.num_workers > 1 else None
    try:
        for it in range(params.num_iterations):
            active_ids = [i for i, b in enumerate(branches) if b.active]
            if verbosity >= 1:
                logger.info(
                    "iteration %d / %d: %d active of %d branches",
                    it,
                    params.num_iterations,
                    len(active_ids),
                    len(branches),
                )
            if not active_ids:
                break

            def work(i: int) -> Branch:
                return _refine_one(branches[i], best_branches[i], grid, spacing, mid_radius, params)

            if executor is None:
                results = [work(i) for i in active_ids]
            else:
                # map() returns once every candidate has finished this iteration
                results = list(executor.map(work, active_ids))
            for i, best in zip(active_ids, results):
                best_branches[i] = best
    finally:
        if executor is not None:
            executor.shutdown(wait=True)
    return best_branches


def prune_branches(branches: List[Branch], minimum_score: float) -> List[Branch]:
    """Remove inactive and low-scoring candidates (swap with last, revisit index)."""
    i = 0
    while i < len(branches):
        b = branches[i]
        if not b.active or b.score < minimum_score:
            branches[i] = branches[-1]
            branches.pop()
            continue
        i += 1
    return branches


_OVERLAP_SAMPLE = 0.8
_OVERLAP_XS = (0.0, _OVERLAP_SAMPLE, 0.0, -_OVERLAP_SAMPLE, 0.0)
_OVERLAP_YS = (0.0, 0.0, _OVERLAP_SAMPLE, 0.0, -_OVERLAP_SAMPLE)
_OVERLAP_ZS = tuple(f * _OVERLAP_SAMPLE for f in (-0.5, -0.25, 0.0, 0.25, 0.5))


def overlap_samples(branch: Branch) -> np.ndarray:
    """5x5 sample points inside `branch`: five axial stations times five radial offsets."""
    ax1 = np.cross(np.array([1.0, 2.0, 3.0]), branch.dir)
    if np.linalg.norm(ax1) < 1e-9:
        ax1 = np.cross(np.array([1.0, 0.0, 0.0]), branch.dir)
    ax1 = ax1 / np.linalg.norm(ax1)
    ax2 = np.cross(branch.dir, ax1)
    samples = []
    for z in _OVERLAP_ZS:
        for x, y in zip(_OVERLAP_XS, _OVERLAP_YS):
            samples.append(
                branch.centre
                + branch.dir * (z * branch.length)
                + (ax1 * x + ax2 * y) * branch.radius
            )
    return np.asarray(samples, dtype=float)


def inside_ratio(branch: Branch, cylinder: Branch) -> float:
    """Fraction of `branch`'s overlap samples inside `cylinder`."""
    samples = overlap_samples(branch)
    num_inside = sum(1 for pos in samples if cylinder.contains(pos))
    return float(num_inside) / float(len(samples))


def remove_overlapping_branches(
    branches: List[Branch],
    overlap_ratio: float = 0.4,
    *,
    verbosity: int = 0,
) -> List[Branch]:
    """
    Pairwise removal of duplicate cylinders.

    For each active branch i and each other active branch j whose bounding
    cuboids overlap, if more than `overlap_ratio` of i's samples fall inside
    j, the smaller volume of the two is removed (the higher index on a tie).
    Swap-removals compact the list, so index i is visited again after one;
    an earlier j is only marked inactive. On return no two surviving branches
    collide in either order.

    Returns:
        The active branches, in order. The input list is modified.
    """
    i = 0
    while i < len(branches):
        if verbosity >= 2 and i % 1000 == 0:
            logger.debug("overlap check %d / %d", i, len(branches))
        branch = branches[i]
        if not branch.active:
            i += 1
            continue
        cuboid = branch.bounding_cuboid()
        revisit = False
        for j in range(len(branches)):
            if i == j:
                continue
            cylinder = branches[j]
            if not cylinder.active:
                continue
            if not cuboid.overlaps(cylinder.bounding_cuboid()):  # broad-phase exclusion
                continue
            if inside_ratio(branch, cylinder) <= overlap_ratio:
                continue
            vol_branch = branch.volume
            vol_cylinder = cylinder.volume
            # remove the smaller one
            if vol_branch < vol_cylinder or (vol_branch == vol_cylinder and i > j):
                branches[i] = branches[-1]
                branches.pop()
                revisit = True
                break
            if j > i:
                branches[j] = branches[-1]
                branches.pop()
                revisit = True
                break
            cylinder.active = False
        if not revisit:
            i += 1
    return [b for b in branches if b.active]


# ============================================================================
# Branch base text format
# ============================================================================


def save_branch_bases(
    filepath: Union[str, Path], bases: Sequence[Tuple[np.ndarray, float]]
) -> bool:
    """
    Write `(base, radius)` records as ``x, y, z, radius`` lines under a comment header.

    Returns:
        False (with an error logged) if the file cannot be written.
    """
    try:
        with open(filepath, "w", encoding="utf-8") as f:
            f.write(BASES_HEADER + "\n")
            for base, radius in bases:
                x, y, z = (float(c) for c in np.asarray(base, dtype=float).reshape(3))
                f.write(f"{x:.17g}, {y:.17g}, {z:.17g}, {float(radius):.17g}\n")
    except OSError as e:
        logger.error("Cannot open %s for writing: %s", filepath, e)
        return False
    return True


def load_branch_bases(filepath: Union[str, Path]) -> List[Tuple[np.ndarray, float]]:
    """
    Read a branch base list written by `save_branch_bases`.

    Blank lines and lines starting with ``#`` are skipped. Any other line must
    have exactly four comma-separated fields; otherwise the whole file is
    rejected and an empty list is returned.
    """
    bases: List[Tuple[np.ndarray, float]] = []
    try:
        with open(filepath, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                s = line.strip()
                if not s or s.startswith("#"):
                    continue
                if s.count(",") != 3:
                    logger.error(
                        "%s line %d: bad input, there should be 4 fields per line: x, y, z, radius",
                        filepath,
                        line_no,
                    )
                    return []
                try:
                    vals = [float(tok) for tok in s.split(",")]
                except ValueError:
                    logger.error("%s line %d: non-numeric field", filepath, line_no)
                    return []
                bases.append((np.array(vals[:3], dtype=float), vals[3]))
    except OSError as e:
        logger.error("Cannot open %s for reading: %s", filepath, e)
        return []
    return bases


# ============================================================================
# Bush
# ============================================================================


class Bush:
    """
    Branch skeleton of the trees in a ray cloud.

    Construction runs the whole pipeline. Results:
        branches: Surviving `Branch` objects with `parent` and `tree_score` set.
        roots: Indices of the ground root branches the search started from.

    Args:
        cloud: Source ray cloud. Only bounded rays are used.
        mid_radius: Typical branch radius; the point grid uses cells of twice
            this width.
        verbose: Log progress at INFO level (same as ``verbosity=1``). Only
            logging is affected; nothing is drawn during construction. Call
            `draw`, `visualize_3d` or `to_trimesh` afterwards to render the
            branch cylinders and skeleton lines.
        verbosity: 0 silent, 1 progress, 2 detail (DEBUG). Overrides `verbose`.
        params: Tuning constants.
    """

    def __init__(
        self,
        cloud: RayCloud,
        mid_radius: float,
        verbose: bool = False,
        *,
        verbosity: Optional[int] = None,
        params: Optional[BushParams] = None,
    ):
        if not mid_radius > 0.0:
            raise ValueError("mid_radius must be > 0")
        self.cloud = cloud
        self.mid_radius = float(mid_radius)
        self.params = params if params is not None else BushParams()
        self.verbosity = (1 if verbose else 0) if verbosity is None else int(verbosity)
        self.branches: List[Branch] = []
        self.roots: List[int] = []
        self.num_candidates = 0
        self.num_scored = 0

        self.spacing = cloud.estimate_point_spacing()
        self.min_bound = cloud.calc_min_bound()
        self.max_bound = cloud.calc_max_bound()
        self._build()

    # ------------------------------------------------------------------
    # Logging helpers
    # ------------------------------------------------------------------
    def v_info(self, msg: str, *args: Any) -> None:
        if self.verbosity >= 1:
            logger.info(msg, *args)

    def v_debug(self, msg: str, *args: Any) -> None:
        if self.verbosity >= 2:
            logger.debug(msg, *args)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def _build(self) -> None:
        params = self.params
        self.v_info(
            "av radius: %g, estimated point spacing: %g, minimum score: %g",
            self.mid_radius,
            self.spacing,
            params.minimum_score,
        )
        self.v_info("cloud from: %s to: %s", self.min_bound, self.max_bound)

        points = self.cloud.bounded_points()
        if points.shape[0] == 0:
            logger.warning("Ray cloud has no bounded points; no branches extracted")
            return

        # 1. voxel grid of points (an acceleration structure)
        voxel_width = self.mid_radius * 2.0
        grid = PointGrid(self.min_bound, self.max_bound, voxel_width)
        grid.insert_points(points)
        grid.finalise()
        self.v_debug("point grid: %d points in %d cells", len(grid), grid.num_cells)

        # 2. one branch candidate for each occupied voxel
        branches = initialise_branches(self.cloud, self.min_bound, voxel_width, params)
        self.num_candidates = len(branches)
        self.v_info("initial candidates: %d", len(branches))

        # 3. iterate every candidate several times
        best = refine_branches(
            branches, grid, self.spacing, self.mid_radius, params, verbosity=self.verbosity
        )

        # 4. prune low scores, then overlapping cylinders
        best = prune_branches(best, params.minimum_score)
        self.num_scored = len(best)
        self.v_info("num valid branches: %d", len(best))
        self.branches = remove_overlapping_branches(
            best, params.overlap_ratio, verbosity=self.verbosity
        )
        self.v_info("num non-overlapping branches: %d", len(self.branches))

        # 5. forest shortest-path search from the ground up
        self.roots = find_root_branches(self.branches, self.min_bound)
        self.v_info("number of ground branches: %d", len(self.roots))
        if not self.branches:
            return
        indices, dists2 = neighbour_table(self.branches, params.knn_size)
        reached = connect_branches(self.branches, self.roots, indices, dists2, self.min_bound)
        self.v_info("branches connected to a root: %d / %d", reached, len(self.branches))

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------
    def connected(self) -> List[int]:
        """Indices of branches reached from a root (roots included)."""
        return [i for i, b in enumerate(self.branches) if np.isfinite(b.tree_score)]

    def tree_roots(self) -> List[int]:
        """Roots that still head a tree (a cheaper path may have adopted a seed)."""
        return [i for i in self.roots if self.branches[i].parent == -1]

    def trees(self) -> Dict[int, List[int]]:
        """Map of root index to the indices of every branch in its tree."""
        out: Dict[int, List[int]] = {r: [] for r in self.tree_roots()}
        for i in self.connected():
            out.setdefault(root_of(self.branches, i), []).append(i)
        return out

    def branch_bases(self, roots_only: bool = True) -> List[Tuple[np.ndarray, float]]:
        """(base, radius) of each tree root, or of every connected branch."""
        ids = self.tree_roots() if roots_only else self.connected()
        return [(self.branches[i].base.copy(), self.branches[i].radius) for i in ids]

    def save(self, filepath: Union[str, Path], *, roots_only: bool = True) -> bool:
        """Write the tree base location list. Returns False if the file cannot be opened."""
        return save_branch_bases(filepath, self.branch_bases(roots_only=roots_only))

    @staticmethod
    def load(filepath: Union[str, Path]) -> List[Tuple[np.ndarray, float]]:
        """Read a tree base location list; empty on I/O error or malformed lines."""
        return load_branch_bases(filepath)

    def to_networkx(self) -> nx.DiGraph:
        """Directed forest: one node per branch, edges parent -> child."""
        G = nx.DiGraph()
        for i, b in enumerate(self.branches):
            G.add_node(
                i,
                center=b.centre.copy(),
                dir=b.dir.copy(),
                radius=float(b.radius),
                length=float(b.length),
                score=float(b.score),
                tree_score=float(b.tree_score),
                root=bool(i in self.roots and b.parent == -1),
            )
        for i, b in enumerate(self.branches):
            if b.parent != -1:
                G.add_edge(b.parent, i, distance=float(np.linalg.norm(b.centre - self.branches[b.parent].centre)))
        return G

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------
    def branch_cylinders(
        self,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Parallel arrays for a cylinder drawing sink.

        Returns:
            (starts, ends, radii, colours): colours are RGBA rows shaded by
            ``min(score / (2 * minimum_score), 1)``, blue once over half way.
        """
        active = [b for b in self.branches if b.active]
        starts = np.array([b.base for b in active], dtype=float).reshape(-1, 3)
        ends = np.array([b.top for b in active], dtype=float).reshape(-1, 3)
        radii = np.array([b.radius for b in active], dtype=float)
        colours = np.zeros((len(active), 4), dtype=float)
        for k, b in enumerate(active):
            shade = min(b.score / (2.0 * self.params.minimum_score), 1.0)
            colours[k] = (shade, shade, 1.0 if shade > 0.5 else 0.0, 0.5)
        return starts, ends, radii, colours

    def skeleton_lines(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Line segments from each child centre to its parent centre.

        Returns:
            (starts, ends, colours): colour channels cycle with the tree score at
            three scales (1, 10, 100) so neighbouring paths are distinguishable.
        """
        starts, ends, colours = [], [], []
        for b in self.branches:
            if b.parent == -1:
                continue
            starts.append(b.centre)
            ends.append(self.branches[b.parent].centre)
            colours.append(
                (
                    math.fmod(b.tree_score, 1.0),
                    math.fmod(b.tree_score / 10.0, 1.0),
                    math.fmod(b.tree_score / 100.0, 1.0),
                )
            )
        return (
            np.array(starts, dtype=float).reshape(-1, 3),
            np.array(ends, dtype=float).reshape(-1, 3),
            np.array(colours, dtype=float).reshape(-1, 3),
        )

    def to_trimesh(self, sections: int = 12) -> Optional[trimesh.Trimesh]:
        """All branch cylinders as a single mesh, or None if there are no branches."""
        starts, ends, radii, colours = self.branch_cylinders()
        meshes = []
        for s, e, r, c in zip(starts, ends, radii, colours):
            if not r > 0.0 or np.allclose(s, e):
                continue
            cyl = trimesh.creation.cylinder(radius=float(r), segment=np.vstack([s, e]), sections=sections)
            cyl.visual.face_colors = (np.asarray(c) * 255).astype(np.uint8)
            meshes.append(cyl)
        if not meshes:
            return None
        return trimesh.util.concatenate(meshes)

    def draw(
        self,
        axis: str = "x",
        ax: Any = None,
        figsize: Optional[Tuple[float, float]] = None,
        node_size: int = 20,
        node_color: str = "C2",
        edge_color: str = "0.4",
        root_color: str = "C3",
        **kwargs: Any,
    ) -> Any:
        """Draw the skeleton in 2D using (x,z) or (y,z) coordinates.

        Args:
            axis: Horizontal axis to use ("x" or "y"). Vertical axis is always z.
            ax: Optional matplotlib Axes to draw into. If None, a new figure/axes is created.
            figsize: Optional (width, height) in inches when creating a new figure.
            node_size: Node marker size passed to networkx.draw.
            node_color: Colour of ordinary branch nodes.
            edge_color: Colour of parent links.
            root_color: Colour of tree roots.
            **kwargs: Additional kwargs forwarded to networkx.draw.

        Returns:
            The matplotlib Axes used for drawing.
        """
        axis = axis.lower()
        if axis not in ("x", "y"):
            raise ValueError("axis must be 'x' or 'y'")
        idx = 0 if axis == "x" else 1

        G = self.to_networkx()
        if ax is None:
            fig, ax = plt.subplots(figsize=figsize)
        if G.number_of_nodes() > 0:
            pos = {n: (float(a["center"][idx]), float(a["center"][2])) for n, a in G.nodes(data=True)}
            colors = [root_color if a["root"] else node_color for _, a in G.nodes(data=True)]
            nx.draw(
                G,
                pos=pos,
                ax=ax,
                node_size=node_size,
                node_color=colors,
                edge_color=edge_color,
                arrows=False,
                **kwargs,
            )
            try:
                ax.set_aspect("equal", adjustable="datalim")
            except Exception:
                # Fallback to auto if backend cannot honor equal aspect
                ax.set_aspect("auto")
        ax.set_xlabel(f"{axis} (horizontal)")
        ax.set_ylabel("z (vertical)")
        return ax

    def visualize_3d(
        self,
        title: str = "Branch skeleton",
        *,
        show_cylinders: bool = True,
        width: int = 800,
        height: int = 600,
        line_width: float = 3.0,
    ) -> Optional[object]:
        """Plotly figure of branch axes (shaded by score) and skeleton links.

        Returns:
            A plotly Figure, or None if plotly is unavailable.
        """
        try:
            import plotly.graph_objects as go
        except Exception as e:
            logger.warning("Plotly visualization failed: %s", e)
            return None

        fig = go.Figure()
        if show_cylinders:
            starts, ends, radii, colours = self.branch_cylinders()
            for k, (s, e, c) in enumerate(zip(starts, ends, colours)):
                rgb = "rgb({:d},{:d},{:d})".format(*(int(255 * v) for v in c[:3]))
                fig.add_trace(
                    go.Scatter3d(
                        x=[s[0], e[0]],
                        y=[s[1], e[1]],
                        z=[s[2], e[2]],
                        mode="lines",
                        line=dict(color=rgb, width=float(line_width) * 2.0),
                        name=f"Branch {k} (r={radii[k]:.3f})",
                    )
                )
        l_starts, l_ends, _ = self.skeleton_lines()
        if len(l_starts):
            xs: List[Optional[float]] = []
            ys: List[Optional[float]] = []
            zs: List[Optional[float]] = []
            for s, e in zip(l_starts, l_ends):
                xs += [s[0], e[0], None]
                ys += [s[1], e[1], None]
                zs += [s[2], e[2], None]
            fig.add_trace(
                go.Scatter3d(
                    x=xs,
                    y=ys,
                    z=zs,
                    mode="lines",
                    line=dict(color="crimson", width=float(line_width)),
                    name="Skeleton",
                )
            )
        fig.update_layout(
            title=title,
            autosize=False,
            width=int(width),
            height=int(height),
            scene=dict(aspectmode="data"),
            showlegend=False,
        )
        return fig

    def __repr__(self) -> str:
        return (
            f"Bush({len(self.branches)} branches, {len(self.tree_roots())} trees, "
            f"mid_radius={self.mid_radius:g})"
        )
