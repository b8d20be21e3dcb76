"""
KISS-Matcher - Graduated Non-Convexity
GNC over a truncated least squares cost, generic in the weighted estimator
"""

import logging
from dataclasses import dataclass
from typing import Callable, Tuple

import numpy as np

from .registration import MIN_CORRESPONDENCES, residuals

logger = logging.getLogger(__name__)

WeightedEstimator = Callable[[np.ndarray, np.ndarray, np.ndarray], Tuple[np.ndarray, np.ndarray]]


@dataclass
class GncResult:
    """Converged GNC-TLS estimate"""
    rotation: np.ndarray
    translation: np.ndarray
    weights: np.ndarray
    inlier_mask: np.ndarray
    num_iterations: int
    converged: bool

    @property
    def num_inliers(self) -> int:
        return int(np.count_nonzero(self.inlier_mask))


def tls_weights(residuals_sq: np.ndarray, noise_bound_sq: float, mu: float) -> np.ndarray:
    """
    GNC surrogate weights of the truncated least squares cost

    w = 1 inside mu/(mu+1) c^2, 0 beyond (mu+1)/mu c^2, and
    sqrt(c^2 mu (mu+1) / r^2) - mu in between
    """
    upper = (mu + 1.0) / mu * noise_bound_sq
    lower = mu / (mu + 1.0) * noise_bound_sq

    weights = np.zeros_like(residuals_sq)
    inside = residuals_sq <= lower
    between = ~inside & (residuals_sq < upper)
    weights[inside] = 1.0
    weights[between] = np.sqrt(noise_bound_sq * mu * (mu + 1.0) / residuals_sq[between]) - mu
    return np.clip(weights, 0.0, 1.0)


def gnc_tls(src: np.ndarray, tgt: np.ndarray, estimator: WeightedEstimator,
            noise_bound: float, max_iterations: int = 100, epsilon: float = 1e-6,
            gnc_factor: float = 1.4, inlier_threshold: float = 0.5) -> GncResult:
    """
    Robust estimate of tgt ~ R src + t by graduated non-convexity

    Args:
        src: Kx3 source points of the correspondences
        tgt: Kx3 target points of the correspondences
        estimator: Weighted closed-form estimator (src, tgt, weights) -> (R, t)
        noise_bound: Truncation threshold on the residual
        max_iterations: Iteration bound
        epsilon: Stop once the largest weight change falls below this. The loop
            also stops, keeping the previous estimate, once fewer than
            MIN_CORRESPONDENCES weights remain non-zero
        gnc_factor: Multiplier applied to mu after every iteration
        inlier_threshold: Converged weight above which a pair is an inlier

    Returns:
        GncResult
    """
    noise_bound_sq = noise_bound ** 2
    weights = np.ones(len(src))
    rotation, translation = estimator(src, tgt, weights)

    residuals_sq = residuals(src, tgt, rotation, translation) ** 2
    max_residual_sq = float(residuals_sq.max())
    converged = False
    iteration = 0

    if 2.0 * max_residual_sq <= noise_bound_sq:
        # Every residual already sits inside the bound
        converged = True
    else:
        mu = 1.0 / (2.0 * max_residual_sq / noise_bound_sq - 1.0)

        for iteration in range(1, max_iterations + 1):
            new_weights = tls_weights(residuals_sq, noise_bound_sq, mu)
            num_supported = int(np.count_nonzero(new_weights))
            if num_supported < MIN_CORRESPONDENCES:
                # Fewer supporting pairs cannot constrain a rigid transform
                logger.debug(f"GNC support fell to {num_supported} at iteration {iteration}, "
                             f"keeping the previous estimate")
                break

            weight_change = float(np.max(np.abs(new_weights - weights)))
            weights = new_weights
            rotation, translation = estimator(src, tgt, weights)
            residuals_sq = residuals(src, tgt, rotation, translation) ** 2

            if weight_change < epsilon:
                converged = True
                break
            mu *= gnc_factor

    inlier_mask = weights > inlier_threshold
    logger.debug(f"GNC finished after {iteration} iterations "
                 f"({int(inlier_mask.sum())}/{len(src)} inliers, converged={converged})")

    return GncResult(
        rotation=rotation,
        translation=translation,
        weights=weights,
        inlier_mask=inlier_mask,
        num_iterations=iteration,
        converged=converged
    )
