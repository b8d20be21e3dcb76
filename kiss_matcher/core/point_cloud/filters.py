"""
KISS-Matcher - Point Cloud Filtering
Input validation and voxel-grid keypoint sampling
"""

import logging

import numpy as np

from ..errors import InvalidResolutionError
from ..matcher_models import KeypointSet

logger = logging.getLogger(__name__)


def clean_points(points) -> np.ndarray:
    """
    Validate an input cloud and drop NaN / infinite rows

    Args:
        points: Sequence of 3D points

    Returns:
        New Nx3 float64 array (the input is never modified)
    """
    points = np.array(points, dtype=np.float64, copy=True)
    if points.size == 0:
        return points.reshape(0, 3)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"Expected Nx3 points, got shape {points.shape}")

    valid_mask = np.isfinite(points).all(axis=1)
    removed_count = len(points) - int(valid_mask.sum())
    if removed_count > 0:
        logger.info(f"Removed {removed_count} invalid points")
        points = points[valid_mask]
    return points


class VoxelResolutionGrid:
    """
    Cubic voxel grid emitting one centroid per occupied cell
    Cells are anchored at the origin: cell = floor(p / resolution)
    """

    def __init__(self, resolution: float):
        try:
            resolution = float(resolution)
        except (TypeError, ValueError):
            raise InvalidResolutionError(resolution)
        if not np.isfinite(resolution) or resolution <= 0:
            raise InvalidResolutionError(resolution)
        self.resolution = resolution

    def voxel_keys(self, points: np.ndarray) -> np.ndarray:
        """Integer cell coordinates of each point"""
        return np.floor(points / self.resolution).astype(np.int64)

    def downsample(self, cloud) -> KeypointSet:
        """
        Voxel grid downsampling
        Groups points into voxels and averages coordinates

        Args:
            cloud: Nx3 points

        Returns:
            KeypointSet ordered by first occurrence of each cell in the input
        """
        points = clean_points(cloud)
        if len(points) == 0:
            return KeypointSet(
                points=np.empty((0, 3)),
                voxel_keys=np.empty((0, 3), dtype=np.int64),
                point_counts=np.empty(0, dtype=np.int64),
                resolution=self.resolution
            )

        keys = self.voxel_keys(points)
        _, first_indices, inverse_indices, counts = np.unique(
            keys, axis=0, return_index=True, return_inverse=True, return_counts=True
        )
        inverse_indices = inverse_indices.reshape(-1)

        # Relabel cells so keypoints follow input order
        order = np.argsort(first_indices, kind='stable')
        rank = np.empty_like(order)
        rank[order] = np.arange(len(order))
        labels = rank[inverse_indices]

        num_cells = len(order)
        sums = np.zeros((num_cells, 3))
        np.add.at(sums, labels, points)
        point_counts = counts[order]
        centroids = sums / point_counts[:, np.newaxis]

        logger.debug(f"Voxel downsampled {len(points)} -> {num_cells} points "
                     f"(resolution {self.resolution})")

        return KeypointSet(
            points=centroids,
            voxel_keys=keys[first_indices[order]],
            point_counts=point_counts.astype(np.int64),
            resolution=self.resolution
        )
