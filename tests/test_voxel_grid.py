import numpy as np
import pytest

from kiss_matcher.core.errors import InvalidResolutionError
from kiss_matcher.core.point_cloud import VoxelResolutionGrid, clean_points


@pytest.mark.parametrize("resolution", [0.0, -0.5, float('nan'), float('inf'), "coarse", None])
def test_invalid_resolution_is_rejected(resolution):
    with pytest.raises(InvalidResolutionError):
        VoxelResolutionGrid(resolution)


def test_invalid_resolution_is_a_value_error():
    with pytest.raises(ValueError):
        VoxelResolutionGrid(0.0)


def test_centroid_of_shared_voxel():
    points = np.array([
        [0.1, 0.1, 0.1],
        [0.3, 0.3, 0.3],
        [1.5, 0.2, 0.2]
    ])
    keypoints = VoxelResolutionGrid(1.0).downsample(points)

    assert len(keypoints) == 2
    np.testing.assert_allclose(keypoints.points[0], [0.2, 0.2, 0.2])
    np.testing.assert_allclose(keypoints.points[1], [1.5, 0.2, 0.2])
    np.testing.assert_array_equal(keypoints.point_counts, [2, 1])
    np.testing.assert_array_equal(keypoints.voxel_keys, [[0, 0, 0], [1, 0, 0]])


def test_keypoints_follow_first_occurrence_order():
    points = np.array([
        [5.2, 0.0, 0.0],
        [-3.7, 0.0, 0.0],
        [5.4, 0.0, 0.0],
        [0.1, 0.0, 0.0]
    ])
    keypoints = VoxelResolutionGrid(1.0).downsample(points)

    np.testing.assert_allclose(keypoints.points[:, 0], [5.3, -3.7, 0.1])


def test_negative_coordinates_use_floor_cells():
    points = np.array([[-0.1, 0.0, 0.0], [0.1, 0.0, 0.0]])
    keypoints = VoxelResolutionGrid(1.0).downsample(points)

    assert len(keypoints) == 2
    np.testing.assert_array_equal(keypoints.voxel_keys[:, 0], [-1, 0])


def test_keypoint_count_bounded_by_points(terrain):
    keypoints = VoxelResolutionGrid(0.25).downsample(terrain)

    assert 0 < len(keypoints) <= len(terrain)
    assert keypoints.point_counts.sum() == len(terrain)


def test_count_non_increasing_for_nested_resolutions(terrain):
    counts = [len(VoxelResolutionGrid(0.05 * factor).downsample(terrain)) for factor in (1, 2, 4, 8)]

    assert counts == sorted(counts, reverse=True)


def test_at_most_one_keypoint_per_cell(terrain):
    keypoints = VoxelResolutionGrid(0.2).downsample(terrain)

    assert len(np.unique(keypoints.voxel_keys, axis=0)) == len(keypoints)


def test_downsample_is_deterministic_and_stable(terrain):
    grid = VoxelResolutionGrid(0.2)
    first = grid.downsample(terrain)
    second = grid.downsample(terrain)

    np.testing.assert_array_equal(first.points, second.points)
    assert len(grid.downsample(first.points)) == len(first)


def test_non_finite_rows_are_dropped_without_mutating_input():
    points = np.array([
        [0.1, 0.1, 0.1],
        [np.nan, 0.0, 0.0],
        [0.0, np.inf, 0.0],
        [2.5, 2.5, 2.5]
    ])
    original = points.copy()
    keypoints = VoxelResolutionGrid(1.0).downsample(points)

    assert len(keypoints) == 2
    np.testing.assert_array_equal(points, original)


def test_empty_cloud_yields_no_keypoints():
    keypoints = VoxelResolutionGrid(0.5).downsample(np.empty((0, 3)))

    assert len(keypoints) == 0
    assert keypoints.points.shape == (0, 3)


def test_clean_points_rejects_bad_shape():
    with pytest.raises(ValueError):
        clean_points(np.zeros((4, 2)))
