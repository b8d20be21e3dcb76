"""
KISS-Matcher - Quatro Solver
Yaw-constrained robust registration for gravity-aligned clouds
"""

import logging
import warnings
from typing import Optional

import numpy as np

from ..errors import AxisAssumptionViolated, NumericalFailureError
from ..matcher_models import Correspondences, SolverResult, SolverType
from .gnc import gnc_tls
from .registration import (
    MIN_CORRESPONDENCES, paired_points, tilt_angle_deg,
    weighted_rigid_transform, weighted_yaw_transform
)

logger = logging.getLogger(__name__)


class YawRobustSolver:
    """
    Quatro: GNC-TLS restricted to rotations about the z axis
    Valid when roll and pitch between the clouds are negligible
    """

    solver_type = SolverType.QUATRO

    def __init__(self, noise_bound: float, max_iterations: int = 100, epsilon: float = 1e-6,
                 gnc_factor: float = 1.4, inlier_threshold: float = 0.5,
                 axis_tilt_threshold_deg: float = 5.0):
        self.noise_bound = noise_bound
        self.max_iterations = max_iterations
        self.epsilon = epsilon
        self.gnc_factor = gnc_factor
        self.inlier_threshold = inlier_threshold
        self.axis_tilt_threshold_deg = axis_tilt_threshold_deg

    def solve(self, source_points, target_points, correspondences: Correspondences,
              max_iterations: Optional[int] = None, epsilon: Optional[float] = None) -> SolverResult:
        """
        Estimate (Rz(theta), t) with target ~ Rz(theta) source + t

        Args:
            source_points: Source keypoints
            target_points: Target keypoints
            correspondences: Correspondences indexing both keypoint sets
            max_iterations: Override of the GNC iteration bound
            epsilon: Override of the weight-change threshold

        Returns:
            SolverResult; axis_assumption_violated is set (and an
            AxisAssumptionViolated warning issued) when the inliers imply
            more roll/pitch than the tilt threshold

        Raises:
            DegenerateInputError: fewer than 3 correspondences
            NumericalFailureError: no horizontal spread or non-finite values
        """
        src, tgt = paired_points(source_points, target_points, correspondences)

        result = gnc_tls(
            src, tgt, weighted_yaw_transform,
            noise_bound=self.noise_bound,
            max_iterations=max_iterations or self.max_iterations,
            epsilon=epsilon or self.epsilon,
            gnc_factor=self.gnc_factor,
            inlier_threshold=self.inlier_threshold
        )

        tilt_deg = self._residual_tilt(src, tgt, result.weights, result.inlier_mask)
        violated = tilt_deg > self.axis_tilt_threshold_deg
        if violated:
            message = (f"Inliers imply {tilt_deg:.1f} deg of roll/pitch "
                       f"(threshold {self.axis_tilt_threshold_deg:.1f} deg); "
                       f"consider the SO(3) solver")
            logger.warning(message)
            warnings.warn(message, AxisAssumptionViolated, stacklevel=2)

        logger.debug(f"Quatro GNC: {result.num_inliers}/{len(correspondences)} inliers, "
                     f"yaw {np.degrees(np.arctan2(result.rotation[1, 0], result.rotation[0, 0])):.2f} deg")

        return SolverResult(
            rotation=result.rotation,
            translation=result.translation,
            inliers=correspondences.subset(result.inlier_mask),
            weights=result.weights,
            num_iterations=result.num_iterations,
            converged=result.converged,
            solver=self.solver_type.value,
            tilt_deg=tilt_deg,
            axis_assumption_violated=violated
        )

    def _residual_tilt(self, src: np.ndarray, tgt: np.ndarray,
                       weights: np.ndarray, inlier_mask: np.ndarray) -> float:
        """Tilt of an unconstrained fit on the inliers (0 when it cannot be measured)"""
        if np.count_nonzero(inlier_mask) < MIN_CORRESPONDENCES:
            return 0.0
        try:
            rotation, _ = weighted_rigid_transform(src[inlier_mask], tgt[inlier_mask], weights[inlier_mask])
        except NumericalFailureError as e:
            logger.debug(f"Tilt check skipped: {e}")
            return 0.0
        return tilt_angle_deg(rotation)
