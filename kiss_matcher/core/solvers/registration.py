"""
KISS-Matcher - Weighted Rigid Registration
Closed-form weighted estimators shared by the robust solvers
"""

from typing import Tuple

import numpy as np

from ..errors import DegenerateInputError, NumericalFailureError

MIN_CORRESPONDENCES = 3


def as_points(points) -> np.ndarray:
    """Convert to a contiguous Nx3 float64 array"""
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"Expected Nx3 points, got shape {points.shape}")
    return points


def paired_points(source_points, target_points, correspondences) -> Tuple[np.ndarray, np.ndarray]:
    """
    Gather the matched point pairs of a correspondence set

    Raises:
        DegenerateInputError: fewer than 3 correspondences
    """
    if len(correspondences) < MIN_CORRESPONDENCES:
        raise DegenerateInputError(len(correspondences), MIN_CORRESPONDENCES)
    source_points = as_points(source_points)
    target_points = as_points(target_points)
    return (source_points[correspondences.source_indices],
            target_points[correspondences.target_indices])


def _weighted_centroids(src: np.ndarray, tgt: np.ndarray,
                        weights: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Weighted centroids and the weighted cross-covariance H = sum w a b^T"""
    total = weights.sum()
    if not np.isfinite(total) or total <= 0:
        raise NumericalFailureError("Weights sum to zero")
    src_centroid = weights @ src / total
    tgt_centroid = weights @ tgt / total
    src_centered = src - src_centroid
    tgt_centered = tgt - tgt_centroid
    covariance = (src_centered * weights[:, np.newaxis]).T @ tgt_centered
    return src_centroid, tgt_centroid, covariance


def weighted_rigid_transform(src: np.ndarray, tgt: np.ndarray,
                             weights: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Weighted least-squares rigid transform tgt ~ R src + t

    The rotation comes from the SVD of the weighted cross-covariance,
    reflection-corrected so that det(R) = +1

    Raises:
        NumericalFailureError: SVD failure or non-finite result
    """
    src_centroid, tgt_centroid, covariance = _weighted_centroids(src, tgt, weights)
    if not np.all(np.isfinite(covariance)):
        raise NumericalFailureError("Non-finite cross-covariance")

    try:
        U, _, Vt = np.linalg.svd(covariance)
    except np.linalg.LinAlgError as e:
        raise NumericalFailureError(f"SVD failed: {e}") from e

    correction = np.eye(3)
    correction[2, 2] = np.sign(np.linalg.det(Vt.T @ U.T)) or 1.0
    rotation = Vt.T @ correction @ U.T
    translation = tgt_centroid - rotation @ src_centroid

    if not (np.all(np.isfinite(rotation)) and np.all(np.isfinite(translation))):
        raise NumericalFailureError("Non-finite rigid transform")
    return rotation, translation


def weighted_yaw_transform(src: np.ndarray, tgt: np.ndarray,
                           weights: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Weighted least-squares transform with rotation restricted to the z axis

    The optimal yaw maximizes sum w b . Rz(theta) a, which gives
    theta = atan2(H01 - H10, H00 + H11)

    Raises:
        NumericalFailureError: no horizontal spread or non-finite result
    """
    src_centroid, tgt_centroid, covariance = _weighted_centroids(src, tgt, weights)
    cos_term = covariance[0, 0] + covariance[1, 1]
    sin_term = covariance[0, 1] - covariance[1, 0]
    if not (np.isfinite(cos_term) and np.isfinite(sin_term)):
        raise NumericalFailureError("Non-finite cross-covariance")
    if np.hypot(cos_term, sin_term) <= np.finfo(np.float64).tiny:
        raise NumericalFailureError("Correspondences have no horizontal spread")

    rotation = yaw_rotation(np.arctan2(sin_term, cos_term))
    translation = tgt_centroid - rotation @ src_centroid
    if not np.all(np.isfinite(translation)):
        raise NumericalFailureError("Non-finite translation")
    return rotation, translation


def yaw_rotation(theta: float) -> np.ndarray:
    """Rotation by theta radians about the z axis"""
    c, s = np.cos(theta), np.sin(theta)
    return np.array([[c, -s, 0.0],
                     [s, c, 0.0],
                     [0.0, 0.0, 1.0]])


def residuals(src: np.ndarray, tgt: np.ndarray,
              rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    """Post-transform distance of every pair"""
    return np.linalg.norm(tgt - (src @ rotation.T + translation), axis=1)


def tilt_angle_deg(rotation: np.ndarray) -> float:
    """Angle between the rotated z axis and the z axis, in degrees"""
    return float(np.degrees(np.arccos(np.clip(rotation[2, 2], -1.0, 1.0))))


def rotation_error_deg(rotation_a: np.ndarray, rotation_b: np.ndarray) -> float:
    """Geodesic distance between two rotations, in degrees"""
    cos_angle = (np.trace(rotation_a.T @ rotation_b) - 1.0) / 2.0
    return float(np.degrees(np.arccos(np.clip(cos_angle, -1.0, 1.0))))
