import numpy as np
import pytest

from raybush.grid import IntegerVoxels, PointGrid, knn


def _grid_with_two_points() -> PointGrid:
    grid = PointGrid([0.0, 0.0, 0.0], [1.0, 1.0, 1.0], 0.1)
    grid.insert_points(np.array([[0.05, 0.05, 0.05], [0.95, 0.95, 0.95]]))
    return grid


def test_point_grid_index_and_counts():
    grid = _grid_with_two_points()
    assert len(grid) == 2
    assert grid.num_cells == 2
    assert grid.index([0.05, 0.05, 0.05]) == (0, 0, 0)
    assert grid.index([0.95, 0.95, 0.95]) == (9, 9, 9)
    assert grid.index([-0.05, 0.0, 0.0]) == (-1, 0, 0)


def test_points_in_box_returns_overlapping_cells_only():
    grid = _grid_with_two_points()
    pts = grid.points_in_box([0.0, 0.0, 0.0], [0.1, 0.1, 0.1])
    np.testing.assert_allclose(pts, [[0.05, 0.05, 0.05]])
    assert grid.points_in_box([0.3, 0.3, 0.3], [0.6, 0.6, 0.6]).shape == (0, 3)


def test_points_in_large_box_scans_occupied_cells():
    grid = _grid_with_two_points()
    pts = grid.points_in_box([-10.0, -10.0, -10.0], [10.0, 10.0, 10.0])
    assert pts.shape == (2, 3)
    # cells come back in sorted index order
    np.testing.assert_allclose(pts[0], [0.05, 0.05, 0.05])


def test_insert_after_query_is_visible():
    grid = _grid_with_two_points()
    grid.finalise()
    assert grid.cell_points((0, 0, 0)).shape == (1, 3)
    grid.insert([0.06, 0.06, 0.06])
    assert grid.cell_points((0, 0, 0)).shape == (2, 3)
    assert len(grid) == 3


def test_empty_grid_queries():
    grid = PointGrid([0.0, 0.0, 0.0], [1.0, 1.0, 1.0], 0.5)
    grid.insert_points(np.zeros((0, 3)))
    assert len(grid) == 0
    assert grid.points_in_box([0.0, 0.0, 0.0], [1.0, 1.0, 1.0]).shape == (0, 3)
    assert grid.cell_points((0, 0, 0)).shape == (0, 3)


def test_invalid_inputs_raise():
    with pytest.raises(ValueError):
        PointGrid([0.0, 0.0, 0.0], [1.0, 1.0, 1.0], 0.0)
    grid = PointGrid([0.0, 0.0, 0.0], [1.0, 1.0, 1.0], 0.5)
    with pytest.raises(ValueError):
        grid.insert_points(np.zeros((4, 2)))
    with pytest.raises(ValueError):
        IntegerVoxels(-1.0, [0.0, 0.0, 0.0])


def test_integer_voxels_counts_and_order():
    voxels = IntegerVoxels(1.0, [0.5, 0.0, 0.0])
    voxels.increment_points(
        np.array(
            [
                [0.6, 0.1, 0.1],
                [1.4, 0.9, 0.9],
                [-0.1, 0.1, 0.1],
                [2.0, 0.0, 0.0],
            ]
        )
    )
    assert voxels.counts == {(0, 0, 0): 2, (-1, 0, 0): 1, (1, 0, 0): 1}

    seen = []
    voxels.for_each(lambda width, offset, index, count: seen.append((width, index, count)))
    assert seen == [(1.0, (-1, 0, 0), 1), (1.0, (0, 0, 0), 2), (1.0, (1, 0, 0), 1)]


def test_knn_includes_self_first():
    points = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [3.0, 0.0, 0.0], [6.0, 0.0, 0.0]])
    indices, dists2 = knn(points, 2)
    assert indices.shape == (4, 2)
    assert indices[0].tolist() == [0, 1]
    np.testing.assert_allclose(dists2[0], [0.0, 1.0])
    assert indices[3].tolist() == [3, 2]
    np.testing.assert_allclose(dists2[3], [0.0, 9.0])


def test_knn_exclude_self():
    points = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [3.0, 0.0, 0.0], [6.0, 0.0, 0.0]])
    indices, dists2 = knn(points, 2, exclude_self=True)
    assert indices[0].tolist() == [1, 2]
    np.testing.assert_allclose(dists2[0], [1.0, 9.0])


def test_knn_pads_when_k_exceeds_count():
    points = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 2.0]])
    indices, dists2 = knn(points, 5)
    assert indices.shape == (2, 5)
    assert indices[0].tolist() == [0, 1, -1, -1, -1]
    assert np.all(np.isinf(dists2[:, 2:]))
    np.testing.assert_allclose(dists2[1, :2], [0.0, 4.0])


def test_knn_empty_and_invalid_k():
    indices, dists2 = knn(np.zeros((0, 3)), 3)
    assert indices.shape == (0, 3) and dists2.shape == (0, 3)
    with pytest.raises(ValueError):
        knn(np.zeros((2, 3)), 0)
