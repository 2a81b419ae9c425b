"""
RAYBUSH: tree branch skeletons from LiDAR ray clouds

A Python package that detects cylindrical branch segments in the bounded points
of a ray cloud, scores and de-duplicates them, and connects the survivors into
rooted tree skeletons with a ground-up shortest-path search.
"""

__version__ = "0.1.0"
__author__ = "Jordan M. R. Fox"
__email__ = "jordanmrfox@gmail.com"

# Branch candidates
from .branch import Branch

# Pipeline
from .bush import (
    Bush,
    BushParams,
    initialise_branches,
    load_branch_bases,
    prune_branches,
    refine_branches,
    remove_overlapping_branches,
    save_branch_bases,
)

# Ray clouds (primary input)
from .cloud import RayCloud

# Geometry and acceleration structures
from .cuboid import Cuboid
from .grid import IntegerVoxels, PointGrid, knn

# Demo cloud functions
from .demo import (
    create_cylinder_cloud,
    create_forest_cloud,
    create_tree_cloud,
    save_demo_clouds,
)

# Utility functions
from .path import data_path

# Skeleton assembly
from .skeleton import connect_branches, edge_cost, find_root_branches, neighbour_table

__all__ = [
    # Ray cloud input
    "RayCloud",
    # Pipeline
    "Bush",
    "BushParams",
    "Branch",
    "initialise_branches",
    "refine_branches",
    "prune_branches",
    "remove_overlapping_branches",
    # Skeleton assembly
    "find_root_branches",
    "connect_branches",
    "edge_cost",
    "neighbour_table",
    # Branch base text format
    "save_branch_bases",
    "load_branch_bases",
    # Geometry and grids
    "Cuboid",
    "PointGrid",
    "IntegerVoxels",
    "knn",
    # Demo cloud functions
    "create_cylinder_cloud",
    "create_tree_cloud",
    "create_forest_cloud",
    "save_demo_clouds",
    # Path functions
    "data_path",
]
