"""
Shared fixtures: deterministic synthetic scenes for registration tests
"""

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from kiss_matcher.core.matcher_models import Correspondences, KISSMatcherConfig

# Jittered grid spacing and jitter keep every pair of terrain points farther
# apart than a voxel diagonal at SCENE_RESOLUTION, so voxelization keeps them all
GRID_SPACING = 0.1
GRID_JITTER = 0.02
SCENE_RESOLUTION = 0.03

# At this resolution every voxel merges several terrain points. A quarter turn
# about z and a translation by whole cells map voxels onto voxels, so the
# centroids of source and target stay exact rigid copies
MERGE_RESOLUTION = 0.2


def make_terrain(rng: np.random.Generator, half_extent: float = 2.0, depth: float = 3.0,
                 num_bumps: int = 12) -> np.ndarray:
    """Bumpy ground patch below the origin, facing the sensor"""
    axis = np.arange(-half_extent, half_extent + 1e-9, GRID_SPACING)
    xx, yy = np.meshgrid(axis, axis)
    xy = np.stack([xx.ravel(), yy.ravel()], axis=1)
    xy += rng.uniform(-GRID_JITTER, GRID_JITTER, size=xy.shape)

    z = np.full(len(xy), -depth)
    centers = rng.uniform(-half_extent, half_extent, size=(num_bumps, 2))
    amplitudes = rng.uniform(-0.2, 0.2, size=num_bumps)
    sigmas = rng.uniform(0.5, 0.8, size=num_bumps)
    for center, amplitude, sigma in zip(centers, amplitudes, sigmas):
        z += amplitude * np.exp(-np.sum((xy - center) ** 2, axis=1) / (2.0 * sigma ** 2))

    return np.column_stack([xy, z])


def make_outliers(rng: np.random.Generator, count: int) -> np.ndarray:
    """Sparse clutter well below the terrain"""
    return np.column_stack([
        rng.uniform(-4.0, 4.0, size=count),
        rng.uniform(-4.0, 4.0, size=count),
        rng.uniform(-8.0, -4.5, size=count)
    ])


def transform(points: np.ndarray, rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    return points @ rotation.T + translation


def make_scene(rng: np.random.Generator, rotation: np.ndarray, translation: np.ndarray,
               outlier_ratio: float = 0.2):
    """
    Source terrain plus clutter, and the transformed terrain plus independent clutter
    Target rows are shuffled so correspondences cannot follow input order
    """
    terrain = make_terrain(rng)
    num_outliers = int(outlier_ratio * len(terrain))
    source = np.vstack([terrain, make_outliers(rng, num_outliers)])
    target = np.vstack([transform(terrain, rotation, translation), make_outliers(rng, num_outliers)])
    target = target[rng.permutation(len(target))]
    return source, target


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def terrain(rng):
    return make_terrain(rng)


@pytest.fixture
def scene_config():
    """Configuration for the synthetic terrain at its native resolution"""
    def build(**overrides):
        options = {
            'normal_radius_gain': 8.0,
            'fpfh_radius_gain': 12.0,
            'num_threads': 2
        }
        options.update(overrides)
        return KISSMatcherConfig(resolution=SCENE_RESOLUTION, **options)
    return build


@pytest.fixture
def yaw_transform():
    rotation = Rotation.from_euler('z', 60.0, degrees=True).as_matrix()
    translation = np.array([0.3, -0.2, 0.1])
    return rotation, translation


@pytest.fixture
def so3_transform():
    rotation = Rotation.from_euler('xyz', [25.0, -15.0, 70.0], degrees=True).as_matrix()
    translation = np.array([-0.2, 0.25, 0.15])
    return rotation, translation


@pytest.fixture
def paired_scene(rng):
    """
    Known correspondences with 20% outliers for solver tests

    Returns:
        Tuple of (source, target, correspondences, inlier mask)
    """
    def build(rotation, translation, num_points=100, outlier_ratio=0.2, noise=0.005):
        source = rng.uniform(-2.0, 2.0, size=(num_points, 3))
        target = transform(source, rotation, translation) + rng.normal(0.0, noise, size=source.shape)

        num_outliers = int(outlier_ratio * num_points)
        outlier_indices = rng.choice(num_points, size=num_outliers, replace=False)
        target[outlier_indices] = rng.uniform(-3.0, 3.0, size=(num_outliers, 3))

        inlier_mask = np.ones(num_points, dtype=bool)
        inlier_mask[outlier_indices] = False
        indices = np.arange(num_points, dtype=np.int64)
        correspondences = Correspondences(indices, indices.copy(), np.zeros(num_points))
        return source, target, correspondences, inlier_mask
    return build


@pytest.fixture
def scene(rng):
    """Factory for (source, target) terrain scenes under a given transform"""
    def build(rotation, translation, outlier_ratio=0.2):
        return make_scene(rng, rotation, translation, outlier_ratio)
    return build


@pytest.fixture
def merged_config():
    """Default radius gains at a resolution coarser than the terrain spacing"""
    def build(**overrides):
        return KISSMatcherConfig(resolution=MERGE_RESOLUTION, num_threads=2, **overrides)
    return build


@pytest.fixture
def cell_aligned_transform():
    rotation = Rotation.from_euler('z', 90.0, degrees=True).as_matrix()
    translation = np.array([2.0, -1.0, 1.0]) * MERGE_RESOLUTION
    return rotation, translation


@pytest.fixture
def unrelated_terrains():
    """Factory for two independently generated terrains sharing only a footprint"""
    def build(seed):
        return make_terrain(np.random.default_rng(seed)), make_terrain(np.random.default_rng(seed + 100))
    return build
