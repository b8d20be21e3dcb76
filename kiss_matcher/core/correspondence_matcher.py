"""
KISS-Matcher - Correspondence Matcher
Nearest-neighbor descriptor matching with ratio test and mutual filtering
"""

import logging
import time
from typing import Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree

from .matcher_models import Correspondences, FeatureSet, KISSMatcherConfig

logger = logging.getLogger(__name__)


class CorrespondenceMatcher:
    """
    Descriptor matcher producing putative keypoint correspondences
    Direction is source -> target; the mutual filter adds the target -> source check
    """

    def __init__(self, config: KISSMatcherConfig):
        self.config = config

        # Matching backends by name
        self.backends = {
            'KDTREE': self._knn_kdtree,
            'BF': self._knn_brute_force
        }

    def match(self, features_a: FeatureSet, features_b: FeatureSet,
              use_ratio_test: Optional[bool] = None) -> Correspondences:
        """
        Match descriptors of A against descriptors of B

        Args:
            features_a: Source features
            features_b: Target features
            use_ratio_test: Override for config.use_ratio_test

        Returns:
            Correspondences indexing into features_a / features_b
        """
        start_time = time.perf_counter()
        if use_ratio_test is None:
            use_ratio_test = self.config.use_ratio_test

        valid_a = np.flatnonzero(features_a.valid)
        valid_b = np.flatnonzero(features_b.valid)
        if len(valid_a) == 0 or len(valid_b) == 0:
            logger.debug("No valid descriptors to match")
            return Correspondences.empty()
        if features_a.dimension != features_b.dimension:
            raise ValueError(
                f"Descriptor dimensions differ: {features_a.dimension} != {features_b.dimension}"
            )

        descriptors_a = features_a.descriptors[valid_a]
        descriptors_b = features_b.descriptors[valid_b]
        knn = self.backends[self.config.matcher_type]

        distances, indices = knn(descriptors_a, descriptors_b, k=2)
        best = indices[:, 0]
        best_distances = distances[:, 0]
        keep = np.ones(len(valid_a), dtype=bool)

        if use_ratio_test:
            # Lowe's ratio test; a missing second neighbor has infinite distance
            keep &= best_distances < self.config.ratio_threshold * distances[:, 1]

        if self.config.use_mutual_filter:
            _, reverse = knn(descriptors_b, descriptors_a, k=1)
            keep &= reverse[best, 0] == np.arange(len(valid_a))

        source_local = np.flatnonzero(keep)
        target_local = best[keep]
        match_distances = best_distances[keep]

        limit = self.config.num_max_correspondences
        if len(source_local) > limit:
            strongest = np.sort(np.argsort(match_distances, kind='stable')[:limit])
            source_local = source_local[strongest]
            target_local = target_local[strongest]
            match_distances = match_distances[strongest]

        correspondences = Correspondences(
            source_indices=valid_a[source_local].astype(np.int64),
            target_indices=valid_b[target_local].astype(np.int64),
            distances=match_distances.astype(np.float64)
        )

        logger.debug(f"Matched {len(correspondences)} of {len(valid_a)} descriptors "
                     f"in {time.perf_counter() - start_time:.3f}s")
        return correspondences

    def _knn_kdtree(self, queries: np.ndarray, train: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """Exact k-NN with a k-d tree over descriptors"""
        tree = cKDTree(train)
        distances, indices = tree.query(queries, k=k, workers=self.config.num_threads)
        if k == 1:
            distances = distances[:, np.newaxis]
            indices = indices[:, np.newaxis]
        return distances, indices.astype(np.int64)

    def _knn_brute_force(self, queries: np.ndarray, train: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """Brute force k-NN with OpenCV"""
        import cv2

        matcher = cv2.BFMatcher(cv2.NORM_L2, crossCheck=False)
        raw_matches = matcher.knnMatch(queries.astype(np.float32), train.astype(np.float32), k=k)

        distances = np.full((len(queries), k), np.inf)
        indices = np.full((len(queries), k), len(train), dtype=np.int64)
        for match_list in raw_matches:
            for rank, m in enumerate(match_list):
                distances[m.queryIdx, rank] = m.distance
                indices[m.queryIdx, rank] = m.trainIdx
        return distances, indices
