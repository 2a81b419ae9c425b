import matplotlib

matplotlib.use("Agg")

import networkx as nx
import numpy as np
import pytest

from raybush import (
    Branch,
    Bush,
    BushParams,
    PointGrid,
    RayCloud,
    initialise_branches,
    prune_branches,
    refine_branches,
)
from raybush.bush import inside_ratio
from raybush.demo import create_cylinder_cloud, create_forest_cloud, sample_cylinder_surface
from raybush.skeleton import is_root, root_of


def _angle_deg(a: np.ndarray, b: np.ndarray) -> float:
    c = abs(float(np.dot(a, b))) / (np.linalg.norm(a) * np.linalg.norm(b))
    return float(np.degrees(np.arccos(min(1.0, c))))


def _centres(bush: Bush) -> np.ndarray:
    return np.array([b.centre for b in bush.branches]).reshape(-1, 3)


@pytest.fixture(scope="module")
def stem_cloud() -> RayCloud:
    # 2 m vertical stem, radius 5 cm, sampled every 2 cm
    return create_cylinder_cloud()


@pytest.fixture(scope="module")
def stem_bush(stem_cloud) -> Bush:
    return Bush(stem_cloud, mid_radius=0.1)


@pytest.fixture(scope="module")
def forest_bush() -> Bush:
    return Bush(create_forest_cloud(), mid_radius=0.1)


# ---------------------------------------------------------------------------
# Parameters and seeding
# ---------------------------------------------------------------------------


def test_params_defaults_and_validation():
    p = BushParams()
    assert p.minimum_score == 40.0
    assert p.branch_height_to_width == 4.0
    assert p.boundary_radius_scale == 2.0
    assert p.min_num_points == 6
    assert p.knn_size == 20
    assert p.num_iterations == 5
    with pytest.raises(ValueError):
        BushParams(minimum_score=0.0)
    with pytest.raises(ValueError):
        BushParams(knn_size=0)
    with pytest.raises(ValueError):
        BushParams(overlap_ratio=1.5)


def test_invalid_mid_radius_raises(stem_cloud):
    with pytest.raises(ValueError):
        Bush(stem_cloud, mid_radius=0.0)


def test_initial_candidates_from_four_grids():
    # two points in one cell of every grid
    cloud = RayCloud.from_points(np.array([[0.0, 0.0, 0.0], [0.01, 0.01, 0.01]]))
    branches = initialise_branches(cloud, cloud.calc_min_bound(), 0.2)
    assert len(branches) == 4
    radii = sorted(b.radius for b in branches)
    np.testing.assert_allclose(radii, [0.1 / np.sqrt(2.0)] * 2 + [0.2 / np.sqrt(2.0)] * 2)
    for b in branches:
        assert b.length == pytest.approx(b.radius * 2.0 * 4.0)
        np.testing.assert_allclose(b.dir, [0.0, 0.0, 1.0])
        assert b.active and b.score == 0.0
    np.testing.assert_allclose(branches[0].centre, [0.1, 0.1, 0.1])
    np.testing.assert_allclose(branches[1].centre, [0.0, 0.0, 0.0])
    np.testing.assert_allclose(branches[2].centre, [0.2, 0.2, 0.2])
    np.testing.assert_allclose(branches[3].centre, [0.0, 0.0, 0.0])


def test_single_point_cells_are_not_seeded():
    cloud = RayCloud.from_points(np.array([[0.0, 0.0, 0.0], [5.0, 5.0, 5.0]]))
    assert initialise_branches(cloud, cloud.calc_min_bound(), 0.2) == []


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_single_straight_branch(stem_bush):
    assert len(stem_bush.branches) == 1
    b = stem_bush.branches[0]
    assert b.radius == pytest.approx(0.05, rel=0.2)
    assert _angle_deg(b.dir, np.array([0.0, 0.0, 1.0])) < 5.0
    assert b.score >= 40.0
    assert stem_bush.roots == [0]
    assert b.parent == -1
    assert stem_bush.trees() == {0: [0]}
    np.testing.assert_allclose(b.base, [0.0, 0.0, 0.0], atol=0.05)


def test_dense_stem_kept_sparse_stem_rejected():
    dense = sample_cylinder_surface([0.0, 0.0, 0.0], [0.0, 0.0, 0.6], 0.05, ring_spacing=0.1, points_per_ring=10)
    sparse = sample_cylinder_surface([1.0, 0.0, 0.0], [1.0, 0.0, 0.6], 0.05, ring_spacing=0.1, points_per_ring=5)
    assert dense.shape[0] == 70 and sparse.shape[0] == 35
    bush = Bush(RayCloud.from_points(np.vstack([dense, sparse])), mid_radius=0.1)
    assert len(bush.branches) == 1
    assert abs(bush.branches[0].centre[0]) < 0.05


def test_co_located_sparse_ghost_fails_score_before_overlap():
    dense = sample_cylinder_surface([0.0, 0.0, 0.0], [0.0, 0.0, 0.6], 0.05, ring_spacing=0.1, points_per_ring=10)
    # every other point of each ring: same surface, half the support
    ghost = dense[::2]
    assert dense.shape[0] == 70 and ghost.shape[0] == 35
    spacing = RayCloud.from_points(dense).estimate_point_spacing()

    def refine(points: np.ndarray) -> Branch:
        cloud = RayCloud.from_points(points)
        grid = PointGrid(cloud.calc_min_bound(), cloud.calc_max_bound(), 0.2)
        grid.insert_points(points)
        grid.finalise()
        radius = (0.2 / np.sqrt(2.0)) / 2.0
        seed = Branch(centre=[0.01, 0.0, 0.3], radius=radius, length=radius * 8.0)
        return refine_branches([seed], grid, spacing, 0.1)[0]

    kept = refine(dense)
    ghost_best = refine(ghost)
    # the two candidates describe the same cylinder
    assert inside_ratio(ghost_best, kept) > 0.4
    assert inside_ratio(kept, ghost_best) > 0.4
    assert kept.score >= 40.0 > ghost_best.score > 0.0

    survivors = prune_branches([ghost_best, kept], 40.0)
    assert len(survivors) == 1
    assert survivors[0] is kept


def test_disconnected_forest(forest_bush):
    def cluster(i: int) -> int:
        return 0 if forest_bush.branches[i].centre[1] < 10.0 else 1

    roots = forest_bush.tree_roots()
    assert {cluster(r) for r in roots} == {0, 1}
    for r in roots:
        assert is_root(r, forest_bush.branches, forest_bush.min_bound)

    connected = forest_bush.connected()
    assert len(connected) > len(roots)
    for i in connected:
        b = forest_bush.branches[i]
        if b.parent != -1:
            assert cluster(b.parent) == cluster(i)
        # every path down terminates at a root of the same cluster
        r = root_of(forest_bush.branches, i)
        assert r in roots
        assert cluster(r) == cluster(i)

    trees = forest_bush.trees()
    members = sorted(i for ids in trees.values() for i in ids)
    assert members == sorted(connected)


def test_unparented_branches_pass_root_test(forest_bush):
    for i, b in enumerate(forest_bush.branches):
        if b.parent == -1 and np.isfinite(b.tree_score):
            assert is_root(i, forest_bush.branches, forest_bush.min_bound)


def test_empty_cloud_gives_empty_results(tmp_path):
    bush = Bush(RayCloud(np.zeros((0, 3))), mid_radius=0.1)
    assert bush.branches == [] and bush.roots == []
    assert bush.trees() == {}
    assert bush.to_networkx().number_of_nodes() == 0
    assert bush.to_trimesh() is None
    path = tmp_path / "empty.txt"
    assert bush.save(path)
    assert Bush.load(path) == []


def test_only_unbounded_rays_gives_empty_results():
    cloud = RayCloud(np.random.default_rng(0).uniform(size=(50, 3)), bounded=np.zeros(50, dtype=bool))
    bush = Bush(cloud, mid_radius=0.1)
    assert bush.branches == []


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


def test_deterministic(stem_cloud, stem_bush):
    again = Bush(stem_cloud, mid_radius=0.1)
    np.testing.assert_array_equal(_centres(again), _centres(stem_bush))
    assert [b.score for b in again.branches] == [b.score for b in stem_bush.branches]


def test_parallel_refinement_matches_sequential(stem_cloud, stem_bush):
    parallel = Bush(stem_cloud, mid_radius=0.1, params=BushParams(num_workers=4))
    np.testing.assert_allclose(_centres(parallel), _centres(stem_bush), rtol=0, atol=1e-12)
    np.testing.assert_allclose(
        [b.radius for b in parallel.branches], [b.radius for b in stem_bush.branches], rtol=0, atol=1e-12
    )


def test_unbounded_rays_are_ignored(stem_cloud, stem_bush):
    rng = np.random.default_rng(5)
    misses = rng.uniform([-1.0, -1.0, -1.0], [1.0, 1.0, 3.0], size=(300, 3))
    cloud = RayCloud(
        np.vstack([stem_cloud.ends, misses]),
        np.concatenate([stem_cloud.bounded, np.zeros(300, dtype=bool)]),
    )
    bush = Bush(cloud, mid_radius=0.1)
    np.testing.assert_allclose(_centres(bush), _centres(stem_bush), rtol=0, atol=1e-12)


def test_score_increases_with_density():
    params = BushParams(minimum_score=1.0)
    scores = []
    for per_ring in (6, 10, 16):
        pts = sample_cylinder_surface([0.0, 0.0, 0.0], [0.0, 0.0, 0.6], 0.05, ring_spacing=0.1, points_per_ring=per_ring)
        bush = Bush(RayCloud.from_points(pts), mid_radius=0.1, params=params)
        scores.append(max(b.score for b in bush.branches))
    assert scores[0] < scores[1] < scores[2]


def test_skeleton_is_acyclic(forest_bush):
    G = forest_bush.to_networkx()
    assert G.number_of_nodes() == len(forest_bush.branches)
    assert nx.is_directed_acyclic_graph(G)
    assert all(G.in_degree(n) <= 1 for n in G.nodes)
    for u, v in G.edges:
        assert forest_bush.branches[v].parent == u


# ---------------------------------------------------------------------------
# Drawing outputs
# ---------------------------------------------------------------------------


def test_branch_cylinders_arrays(forest_bush):
    starts, ends, radii, colours = forest_bush.branch_cylinders()
    n = len(forest_bush.branches)
    assert starts.shape == (n, 3) and ends.shape == (n, 3)
    assert radii.shape == (n,) and colours.shape == (n, 4)
    assert np.all(colours[:, 3] == 0.5)
    assert np.all((colours[:, :3] >= 0.0) & (colours[:, :3] <= 1.0))
    for b, s, e in zip(forest_bush.branches, starts, ends):
        np.testing.assert_allclose(s, b.base)
        np.testing.assert_allclose(e, b.top)


def test_skeleton_lines_one_per_parent_link(forest_bush):
    starts, ends, colours = forest_bush.skeleton_lines()
    n_links = sum(1 for b in forest_bush.branches if b.parent != -1)
    assert starts.shape == (n_links, 3) == ends.shape
    assert colours.shape == (n_links, 3)


def test_draw_and_mesh_outputs(stem_bush):
    ax = stem_bush.draw(axis="y")
    assert ax.get_ylabel() == "z (vertical)"
    with pytest.raises(ValueError):
        stem_bush.draw(axis="z")
    mesh = stem_bush.to_trimesh()
    assert mesh is not None
    assert mesh.vertices.shape[0] > 0
    lo, hi = mesh.bounds
    assert hi[2] - lo[2] == pytest.approx(stem_bush.branches[0].length, rel=1e-6)


def test_visualize_3d_returns_figure(forest_bush):
    fig = forest_bush.visualize_3d()
    assert fig is not None
    assert len(fig.data) >= 1


def test_verbose_only_logs(stem_cloud, stem_bush, caplog):
    import matplotlib.pyplot as plt

    plt.close("all")
    with caplog.at_level("INFO", logger="raybush.bush"):
        bush = Bush(stem_cloud, mid_radius=0.1, verbose=True)
    assert plt.get_fignums() == []
    assert any("initial candidates" in r.getMessage() for r in caplog.records)
    np.testing.assert_allclose(_centres(bush), _centres(stem_bush), rtol=0, atol=1e-12)
