"""
KISS-Matcher - SO(3) Robust Solver
Full rotation and translation estimation with GNC-TLS
"""

import logging
from typing import Optional

from ..matcher_models import Correspondences, SolverResult, SolverType
from .gnc import gnc_tls
from .registration import paired_points, weighted_rigid_transform

logger = logging.getLogger(__name__)


class SO3RobustSolver:
    """
    Outlier-robust rigid registration over the full rotation group
    Alternates weighted SVD registration with TLS weight updates
    """

    solver_type = SolverType.SO3

    def __init__(self, noise_bound: float, max_iterations: int = 100, epsilon: float = 1e-6,
                 gnc_factor: float = 1.4, inlier_threshold: float = 0.5):
        self.noise_bound = noise_bound
        self.max_iterations = max_iterations
        self.epsilon = epsilon
        self.gnc_factor = gnc_factor
        self.inlier_threshold = inlier_threshold

    def solve(self, source_points, target_points, correspondences: Correspondences,
              max_iterations: Optional[int] = None, epsilon: Optional[float] = None) -> SolverResult:
        """
        Estimate (R, t) with target ~ R source + t

        Args:
            source_points: Source keypoints
            target_points: Target keypoints
            correspondences: Correspondences indexing both keypoint sets
            max_iterations: Override of the GNC iteration bound
            epsilon: Override of the weight-change threshold

        Returns:
            SolverResult with the inlier correspondences

        Raises:
            DegenerateInputError: fewer than 3 correspondences
            NumericalFailureError: decomposition failure
        """
        src, tgt = paired_points(source_points, target_points, correspondences)

        result = gnc_tls(
            src, tgt, weighted_rigid_transform,
            noise_bound=self.noise_bound,
            max_iterations=max_iterations or self.max_iterations,
            epsilon=epsilon or self.epsilon,
            gnc_factor=self.gnc_factor,
            inlier_threshold=self.inlier_threshold
        )

        logger.debug(f"SO(3) GNC: {result.num_inliers}/{len(correspondences)} inliers")

        return SolverResult(
            rotation=result.rotation,
            translation=result.translation,
            inliers=correspondences.subset(result.inlier_mask),
            weights=result.weights,
            num_iterations=result.num_iterations,
            converged=result.converged,
            solver=self.solver_type.value
        )
