import warnings

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from kiss_matcher.core.errors import AxisAssumptionViolated, DegenerateInputError, NumericalFailureError
from kiss_matcher.core.matcher_models import Correspondences, KISSMatcherConfig, SolverType
from kiss_matcher.core.solvers import SO3RobustSolver, YawRobustSolver, create_solver, tls_weights
from kiss_matcher.core.solvers.registration import (
    rotation_error_deg, weighted_rigid_transform, weighted_yaw_transform, yaw_rotation
)


def assert_orthonormal(rotation):
    np.testing.assert_allclose(rotation @ rotation.T, np.eye(3), atol=1e-5)
    assert abs(np.linalg.det(rotation) - 1.0) < 1e-5


def test_tls_weights_regions():
    residuals_sq = np.array([0.0, 0.5, 1.0, 1.5, 4.0])

    weights = tls_weights(residuals_sq, noise_bound_sq=1.0, mu=1.0)

    # mu = 1: full weight below 0.5, zero weight beyond 2
    np.testing.assert_allclose(weights[:2], 1.0)
    np.testing.assert_allclose(weights[2], np.sqrt(2.0) - 1.0)
    assert 0.0 < weights[3] < weights[2]
    assert weights[4] == 0.0


def test_weighted_rigid_transform_recovers_exact_motion(rng):
    source = rng.normal(size=(20, 3))
    rotation = Rotation.from_euler('xyz', [30.0, -40.0, 100.0], degrees=True).as_matrix()
    translation = np.array([0.5, -1.0, 2.0])
    target = source @ rotation.T + translation

    estimated_rotation, estimated_translation = weighted_rigid_transform(source, target, np.ones(20))

    np.testing.assert_allclose(estimated_rotation, rotation, atol=1e-9)
    np.testing.assert_allclose(estimated_translation, translation, atol=1e-9)


def test_weighted_rigid_transform_never_reflects(rng):
    source = rng.normal(size=(10, 3))
    mirrored = source * np.array([1.0, 1.0, -1.0])

    rotation, _ = weighted_rigid_transform(source, mirrored, np.ones(10))

    assert_orthonormal(rotation)


def test_weighted_yaw_transform_recovers_yaw(rng):
    source = rng.normal(size=(20, 3))
    target = source @ yaw_rotation(1.2).T + np.array([0.1, 0.2, 0.3])

    rotation, translation = weighted_yaw_transform(source, target, np.ones(20))

    np.testing.assert_allclose(rotation, yaw_rotation(1.2), atol=1e-9)
    np.testing.assert_allclose(translation, [0.1, 0.2, 0.3], atol=1e-9)


def test_yaw_transform_needs_horizontal_spread():
    source = np.array([[0.0, 0.0, float(i)] for i in range(5)])

    with pytest.raises(NumericalFailureError):
        weighted_yaw_transform(source, source, np.ones(5))


def test_zero_weights_are_a_numerical_failure(rng):
    points = rng.normal(size=(5, 3))

    with pytest.raises(NumericalFailureError):
        weighted_rigid_transform(points, points, np.zeros(5))


def test_so3_solver_with_outliers(paired_scene):
    rotation = Rotation.from_euler('xyz', [45.0, -30.0, 120.0], degrees=True).as_matrix()
    translation = np.array([1.0, -0.5, 0.25])
    source, target, correspondences, inlier_mask = paired_scene(rotation, translation)

    result = SO3RobustSolver(noise_bound=0.05).solve(source, target, correspondences)

    assert_orthonormal(result.rotation)
    assert rotation_error_deg(result.rotation, rotation) < 1.0
    np.testing.assert_allclose(result.translation, translation, atol=0.02)
    assert set(result.inliers.source_indices.tolist()) == set(np.flatnonzero(inlier_mask).tolist())
    assert result.solver == SolverType.SO3.value


def test_yaw_solver_with_outliers(paired_scene):
    rotation = yaw_rotation(np.radians(-75.0))
    translation = np.array([-0.4, 0.8, 0.1])
    source, target, correspondences, inlier_mask = paired_scene(rotation, translation)

    with warnings.catch_warnings():
        warnings.simplefilter("error", AxisAssumptionViolated)
        result = YawRobustSolver(noise_bound=0.05).solve(source, target, correspondences)

    assert_orthonormal(result.rotation)
    assert abs(np.degrees(np.arctan2(result.rotation[1, 0], result.rotation[0, 0])) + 75.0) < 1.0
    np.testing.assert_allclose(result.translation, translation, atol=0.02)
    assert result.inliers.source_indices.tolist() == np.flatnonzero(inlier_mask).tolist()
    assert not result.axis_assumption_violated


def test_yaw_solver_flags_tilted_inliers(paired_scene):
    rotation = Rotation.from_euler('xz', [15.0, 30.0], degrees=True).as_matrix()
    source, target, correspondences, _ = paired_scene(rotation, np.zeros(3), outlier_ratio=0.0)

    with pytest.warns(AxisAssumptionViolated):
        result = YawRobustSolver(noise_bound=1.0).solve(source, target, correspondences)

    assert result.axis_assumption_violated
    assert result.tilt_deg > 10.0
    assert_orthonormal(result.rotation)


@pytest.mark.parametrize("solver_class", [SO3RobustSolver, YawRobustSolver])
@pytest.mark.parametrize("count", [0, 1, 2])
def test_too_few_correspondences_are_degenerate(solver_class, count):
    points = np.eye(3)
    indices = np.arange(count, dtype=np.int64)
    correspondences = Correspondences(indices, indices.copy(), np.zeros(count))

    with pytest.raises(DegenerateInputError) as excinfo:
        solver_class(noise_bound=0.1).solve(points, points, correspondences)

    assert excinfo.value.num_correspondences == count


def test_outlier_free_input_converges_immediately(paired_scene):
    source, target, correspondences, _ = paired_scene(np.eye(3), np.zeros(3), outlier_ratio=0.0, noise=0.0)

    result = SO3RobustSolver(noise_bound=0.1).solve(source, target, correspondences)

    assert result.converged
    assert result.num_iterations == 0
    assert len(result.inliers) == len(correspondences)


def test_iteration_override_bounds_the_loop(paired_scene):
    rotation = Rotation.from_euler('z', 10.0, degrees=True).as_matrix()
    source, target, correspondences, _ = paired_scene(rotation, np.zeros(3))

    result = SO3RobustSolver(noise_bound=0.05).solve(source, target, correspondences, max_iterations=2)

    assert result.num_iterations <= 2


def test_create_solver_follows_configuration():
    so3 = create_solver(KISSMatcherConfig(resolution=0.2))
    quatro = create_solver(KISSMatcherConfig(resolution=0.2, use_quatro=True, axis_tilt_threshold_deg=3.0))

    assert isinstance(so3, SO3RobustSolver)
    assert isinstance(quatro, YawRobustSolver)
    assert quatro.axis_tilt_threshold_deg == 3.0
    assert so3.noise_bound == pytest.approx(0.15)


@pytest.mark.parametrize("solver_class", [SO3RobustSolver, YawRobustSolver])
def test_unrelated_pairs_return_an_estimate(solver_class, rng):
    source = rng.uniform(-2.0, 2.0, size=(60, 3))
    target = rng.uniform(-2.0, 2.0, size=(60, 3))
    indices = np.arange(60, dtype=np.int64)
    correspondences = Correspondences(indices, indices.copy(), np.zeros(60))

    result = solver_class(noise_bound=0.05).solve(source, target, correspondences)

    assert_orthonormal(result.rotation)
    assert np.all(np.isfinite(result.translation))
    # The annealing keeps at least three supporting pairs
    assert np.count_nonzero(result.weights) >= 3
