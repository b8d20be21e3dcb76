"""
KISS-Matcher - Feature Extractor
FasterPFH: fast point feature histograms over voxel keypoints
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Tuple

import numpy as np
from scipy import sparse

from .errors import InsufficientNeighborsError
from .matcher_models import FeatureSet, KISSMatcherConfig
from .point_cloud.spatial_index import SpatialIndex

logger = logging.getLogger(__name__)

# Sensor origin; normals are flipped to face it
VIEWPOINT = np.zeros(3)


def compute_pair_features(p1: np.ndarray, n1: np.ndarray,
                          p2: np.ndarray, n2: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Darboux-frame features of point pairs

    Args:
        p1, n1: Px3 source points and normals
        p2, n2: Px3 target points and normals

    Returns:
        Tuple of (Px3 features [alpha, phi, theta], P bool validity)
    """
    dp = p2 - p1
    dist = np.linalg.norm(dp, axis=1)
    valid = dist > 0
    dp = dp / np.where(valid, dist, 1.0)[:, np.newaxis]

    angle1 = np.einsum('ij,ij->i', n1, dp)
    angle2 = np.einsum('ij,ij->i', n2, dp)

    # The point whose normal is closer to the connecting line becomes the source
    swap = np.abs(angle1) < np.abs(angle2)
    u = np.where(swap[:, np.newaxis], n2, n1)
    n_target = np.where(swap[:, np.newaxis], n1, n2)
    dp = np.where(swap[:, np.newaxis], -dp, dp)
    theta = np.where(swap, -angle2, angle1)

    v = np.cross(dp, u)
    v_norm = np.linalg.norm(v, axis=1)
    valid &= v_norm > 0
    v = v / np.where(v_norm > 0, v_norm, 1.0)[:, np.newaxis]
    w = np.cross(u, v)

    phi = np.einsum('ij,ij->i', v, n_target)
    alpha = np.arctan2(np.einsum('ij,ij->i', w, n_target), np.einsum('ij,ij->i', u, n_target))

    features = np.stack([alpha, phi, theta], axis=1)
    features[~valid] = 0.0
    return features, valid


class FasterPFH:
    """
    Approximate FPFH descriptor computed with a spatial index
    Isolated or degenerate keypoints get an all-zero descriptor and are
    marked invalid instead of aborting the pipeline
    """

    def __init__(self, config: KISSMatcherConfig, chunk_size: int = 4096):
        self.config = config
        self.num_bins = config.num_bins
        self.chunk_size = chunk_size

    @property
    def dimension(self) -> int:
        return 3 * self.num_bins

    def compute(self, keypoints, cloud=None) -> FeatureSet:
        """
        Compute descriptors for keypoints

        Args:
            keypoints: Mx3 keypoints (or a KeypointSet)
            cloud: Nx3 points used for normal estimation (defaults to keypoints)

        Returns:
            FeatureSet with unit-sum descriptors for valid keypoints
        """
        start_time = time.perf_counter()
        keypoints = np.asarray(getattr(keypoints, 'points', keypoints), dtype=np.float64).reshape(-1, 3)
        cloud = keypoints if cloud is None else \
            np.asarray(getattr(cloud, 'points', cloud), dtype=np.float64).reshape(-1, 3)

        num_keypoints = len(keypoints)
        normals = np.zeros((num_keypoints, 3))
        valid = np.zeros(num_keypoints, dtype=bool)
        descriptors = np.zeros((num_keypoints, self.dimension))

        if num_keypoints == 0 or len(cloud) == 0:
            raise InsufficientNeighborsError("No keypoints to describe")

        with ThreadPoolExecutor(max_workers=self.config.worker_count) as executor:
            with SpatialIndex(cloud, workers=1) as cloud_index:
                list(executor.map(
                    lambda bounds: self._estimate_normals(cloud_index, keypoints, normals, valid, *bounds),
                    self._chunks(num_keypoints)
                ))

            valid_indices = np.flatnonzero(valid)
            if len(valid_indices) < 2:
                raise InsufficientNeighborsError(
                    f"Only {len(valid_indices)} of {num_keypoints} keypoints have "
                    f"{self.config.min_neighbors}+ neighbors within {self.config.normal_radius:.3f}"
                )

            points = keypoints[valid_indices]
            point_normals = normals[valid_indices]
            spfh = np.zeros((len(valid_indices), self.dimension))
            neighborhoods: List[Tuple[np.ndarray, np.ndarray, np.ndarray]] = []

            with SpatialIndex(points, workers=1) as keypoint_index:
                neighborhoods = list(executor.map(
                    lambda bounds: self._compute_spfh(keypoint_index, points, point_normals, spfh, *bounds),
                    self._chunks(len(valid_indices))
                ))

        fpfh = self._weight_spfh(spfh, neighborhoods)

        sums = fpfh.sum(axis=1)
        described = sums > 0
        descriptors[valid_indices[described]] = fpfh[described] / sums[described, np.newaxis]
        valid[valid_indices[~described]] = False
        normals[~valid] = 0.0

        num_valid = int(valid.sum())
        if num_valid == 0:
            raise InsufficientNeighborsError(
                f"No keypoint has neighbors within FPFH radius {self.config.fpfh_radius:.3f}"
            )

        logger.debug(f"Described {num_valid}/{num_keypoints} keypoints in "
                     f"{time.perf_counter() - start_time:.3f}s")

        return FeatureSet(points=keypoints, normals=normals, descriptors=descriptors, valid=valid)

    def _chunks(self, total: int) -> List[Tuple[int, int]]:
        return [(start, min(start + self.chunk_size, total))
                for start in range(0, total, self.chunk_size)]

    def _estimate_normals(self, index: SpatialIndex, keypoints: np.ndarray,
                          normals: np.ndarray, valid: np.ndarray, start: int, stop: int):
        """PCA normals for keypoints[start:stop], written in place"""
        neighborhoods = index.radius_neighbors(keypoints[start:stop], self.config.normal_radius)
        counts = np.array([len(n) for n in neighborhoods], dtype=np.int64)
        enough = counts >= self.config.min_neighbors
        if not enough.any():
            return

        rows = np.repeat(np.arange(len(counts)), counts)
        neighbor_points = index.points[np.concatenate(neighborhoods)]

        safe_counts = np.maximum(counts, 1)[:, np.newaxis]
        means = np.zeros((len(counts), 3))
        np.add.at(means, rows, neighbor_points)
        means /= safe_counts

        centered = neighbor_points - means[rows]
        covariances = np.zeros((len(counts), 3, 3))
        np.add.at(covariances, rows, centered[:, :, np.newaxis] * centered[:, np.newaxis, :])
        covariances /= safe_counts[:, :, np.newaxis]

        eigenvalues, eigenvectors = np.linalg.eigh(covariances)
        chunk_normals = eigenvectors[:, :, 0]

        largest = eigenvalues[:, 2]
        spread = largest > 0
        linearity = np.where(spread, (largest - eigenvalues[:, 1]) / np.where(spread, largest, 1.0), 1.0)
        chunk_valid = enough & spread & (linearity <= self.config.thr_linearity)

        # Flip towards the viewpoint
        to_view = VIEWPOINT - keypoints[start:stop]
        flip = np.einsum('ij,ij->i', chunk_normals, to_view) < 0
        chunk_normals[flip] *= -1.0

        normals[start:stop] = np.where(chunk_valid[:, np.newaxis], chunk_normals, 0.0)
        valid[start:stop] = chunk_valid

    def _compute_spfh(self, index: SpatialIndex, points: np.ndarray, normals: np.ndarray,
                      spfh: np.ndarray, start: int, stop: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Simplified point feature histograms for points[start:stop], written in place

        Returns:
            Tuple of (rows, neighbor columns, distances) of the neighbor pairs used
        """
        neighborhoods = index.radius_neighbors(points[start:stop], self.config.fpfh_radius)
        counts = np.array([len(n) for n in neighborhoods], dtype=np.int64)
        rows = np.repeat(np.arange(start, stop), counts)
        cols = np.concatenate(neighborhoods) if len(neighborhoods) else np.empty(0, dtype=np.int64)

        not_self = rows != cols
        rows, cols = rows[not_self], cols[not_self]
        if len(rows) == 0:
            return rows, cols, np.empty(0)

        features, pair_valid = compute_pair_features(points[rows], normals[rows], points[cols], normals[cols])
        distances = np.linalg.norm(points[cols] - points[rows], axis=1)
        rows, cols, distances, features = rows[pair_valid], cols[pair_valid], distances[pair_valid], features[pair_valid]
        if len(rows) == 0:
            return rows, cols, distances

        bins = self.num_bins
        alpha_bins = np.floor(bins * (features[:, 0] + np.pi) / (2.0 * np.pi))
        phi_bins = np.floor(bins * (features[:, 1] + 1.0) * 0.5)
        theta_bins = np.floor(bins * (features[:, 2] + 1.0) * 0.5)
        feature_bins = np.clip(np.stack([alpha_bins, phi_bins, theta_bins], axis=1), 0, bins - 1).astype(np.int64)

        pair_counts = np.bincount(rows - start, minlength=stop - start)
        increments = 100.0 / pair_counts[rows - start]

        local = np.zeros((stop - start, self.dimension))
        for feature in range(3):
            np.add.at(local, (rows - start, feature * bins + feature_bins[:, feature]), increments)
        spfh[start:stop] = local
        return rows, cols, distances

    def _weight_spfh(self, spfh: np.ndarray,
                     neighborhoods: List[Tuple[np.ndarray, np.ndarray, np.ndarray]]) -> np.ndarray:
        """FPFH(p) = SPFH(p) + per-feature normalized sum of SPFH(k) / d_k"""
        num_points = len(spfh)
        rows = np.concatenate([n[0] for n in neighborhoods]) if neighborhoods else np.empty(0, dtype=np.int64)
        cols = np.concatenate([n[1] for n in neighborhoods]) if neighborhoods else np.empty(0, dtype=np.int64)
        distances = np.concatenate([n[2] for n in neighborhoods]) if neighborhoods else np.empty(0)

        weights = sparse.csr_matrix((1.0 / distances, (rows, cols)), shape=(num_points, num_points))
        weighted = np.asarray(weights @ spfh)

        bins = self.num_bins
        for feature in range(3):
            block = weighted[:, feature * bins:(feature + 1) * bins]
            totals = block.sum(axis=1, keepdims=True)
            np.divide(block * 100.0, totals, out=block, where=totals > 0)

        fpfh = spfh + weighted
        # Keypoints without any neighbor pair carry no geometry
        fpfh[spfh.sum(axis=1) == 0] = 0.0
        return fpfh
