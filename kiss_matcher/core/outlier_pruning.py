"""
KISS-Matcher - Outlier Pruning
Max-core selection on the pairwise consistency graph of correspondences
"""

import logging
import time
from typing import Tuple

import numpy as np
from scipy.spatial.distance import pdist, squareform

from .matcher_models import Correspondences

logger = logging.getLogger(__name__)


def consistency_graph(source_points: np.ndarray, target_points: np.ndarray,
                      noise_bound: float) -> np.ndarray:
    """
    Adjacency of correspondences that preserve pairwise distances

    Args:
        source_points: Kx3 source points of the correspondences
        target_points: Kx3 target points of the correspondences
        noise_bound: Per-point noise bound

    Returns:
        KxK boolean adjacency (no self loops)
    """
    source_distances = pdist(source_points)
    target_distances = pdist(target_points)
    consistent = np.abs(source_distances - target_distances) <= 2.0 * noise_bound
    adjacency = squareform(consistent)
    np.fill_diagonal(adjacency, False)
    return adjacency


def max_core(adjacency: np.ndarray) -> Tuple[np.ndarray, int]:
    """
    Vertices of the maximum k-core by iterative peeling

    Returns:
        Tuple of (boolean membership mask, core number)
    """
    num_vertices = len(adjacency)
    alive = np.ones(num_vertices, dtype=bool)
    degrees = adjacency.sum(axis=1).astype(np.int64)
    best = alive.copy()
    best_core = 0

    while alive.any():
        core = int(degrees[alive].min())
        best, best_core = alive.copy(), core

        # Peel every vertex that cannot belong to a (core + 1)-core
        while True:
            peel = alive & (degrees <= core)
            if not peel.any():
                break
            alive &= ~peel
            degrees -= adjacency[:, peel].sum(axis=1)

    return best, best_core


class MaxCorePruner:
    """
    Graph-theoretic outlier rejection ahead of the robust solvers
    Correspondences outside the densest consistent core are dropped
    """

    def __init__(self, noise_bound: float, max_correspondences: int = 5000):
        self.noise_bound = noise_bound
        self.max_correspondences = max_correspondences

    def prune(self, source_points: np.ndarray, target_points: np.ndarray,
              correspondences: Correspondences) -> Correspondences:
        """
        Keep the max-core of the consistency graph

        Args:
            source_points: Source keypoints
            target_points: Target keypoints
            correspondences: Putative correspondences

        Returns:
            Pruned correspondences (unchanged if fewer than 3 or too many)
        """
        if len(correspondences) < 3:
            return correspondences
        if len(correspondences) > self.max_correspondences:
            logger.warning(f"Skipping pruning of {len(correspondences)} correspondences "
                           f"(limit {self.max_correspondences})")
            return correspondences

        start_time = time.perf_counter()
        adjacency = consistency_graph(
            source_points[correspondences.source_indices],
            target_points[correspondences.target_indices],
            self.noise_bound
        )
        members, core = max_core(adjacency)
        pruned = correspondences.subset(members)

        logger.debug(f"Max-core pruning kept {len(pruned)}/{len(correspondences)} "
                     f"correspondences (core {core}) in {time.perf_counter() - start_time:.3f}s")
        return pruned
