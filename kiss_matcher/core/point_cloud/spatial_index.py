"""
KISS-Matcher - Spatial Index
Read-only k-d tree over a point set, scoped to a single registration call
"""

import logging
from typing import List, Tuple

import numpy as np
from scipy.spatial import cKDTree

logger = logging.getLogger(__name__)


class SpatialIndex:
    """
    Nearest-neighbor search structure built once and queried many times
    Use as a context manager so the tree is released when the call ends
    """

    def __init__(self, points: np.ndarray, workers: int = -1):
        self.points = np.asarray(points, dtype=np.float64)
        if self.points.ndim != 2 or self.points.shape[1] != 3:
            raise ValueError(f"Expected Nx3 points, got shape {self.points.shape}")
        self.workers = workers
        self._tree = cKDTree(self.points)

    def __enter__(self) -> "SpatialIndex":
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_open(self) -> bool:
        return self._tree is not None

    def close(self):
        """Release the tree"""
        self._tree = None

    def _require_tree(self) -> cKDTree:
        if self._tree is None:
            raise RuntimeError("Spatial index has been released")
        return self._tree

    def radius_neighbors(self, queries: np.ndarray, radius: float) -> List[np.ndarray]:
        """
        Find every indexed point within radius of each query

        Args:
            queries: Qx3 query points
            radius: Search radius

        Returns:
            List of Q sorted index arrays (a query point present in the index
            is included in its own neighborhood)
        """
        tree = self._require_tree()
        queries = np.asarray(queries, dtype=np.float64).reshape(-1, 3)
        if len(queries) == 0:
            return []
        neighborhoods = tree.query_ball_point(
            queries, r=radius, workers=self.workers, return_sorted=True
        )
        return [np.asarray(neighbors, dtype=np.int64) for neighbors in neighborhoods]

    def knn(self, queries: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        k nearest neighbors of each query

        Returns:
            Tuple of (QxK distances, QxK indices); missing neighbors have
            infinite distance and index len(self)
        """
        tree = self._require_tree()
        queries = np.asarray(queries, dtype=np.float64).reshape(-1, 3)
        distances, indices = tree.query(queries, k=k, workers=self.workers)
        if k == 1:
            distances = distances[:, np.newaxis]
            indices = indices[:, np.newaxis]
        return distances, indices.astype(np.int64)
