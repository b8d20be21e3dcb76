"""
KISS-Matcher - Data Models
Configuration and data structures shared by the registration pipeline
"""

import math
from dataclasses import dataclass, asdict, field, fields
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np
from scipy.spatial.transform import Rotation

from .errors import InvalidResolutionError

STAGES = ('voxelization', 'extraction', 'matching', 'pruning', 'solving', 'total')


class SolverType(str, Enum):
    """Robust solver branch"""
    SO3 = "so3_gnc"
    QUATRO = "quatro"


class SolutionStatus(str, Enum):
    """How far a Solution can be trusted"""
    CONFIDENT = "confident"
    LOW_CONFIDENCE = "low_confidence"
    DEGENERATE = "degenerate"


@dataclass(frozen=True)
class KISSMatcherConfig:
    """Registration configuration, immutable once a matcher is built"""
    resolution: float
    use_quatro: bool = False              # yaw-only solver instead of full SO(3)
    use_ratio_test: bool = True           # prune ambiguous descriptor matches
    use_mutual_filter: bool = True        # keep only mutual nearest neighbors
    use_voxel_sampling: bool = True
    use_pruning: bool = True              # max-core consistency pruning
    matcher_type: str = "KDTREE"          # KDTREE or BF
    ratio_threshold: float = 0.9
    normal_radius_gain: float = 3.0
    fpfh_radius_gain: float = 5.0
    min_neighbors: int = 3
    thr_linearity: float = 1.0
    num_bins: int = 11
    num_max_correspondences: int = 5000
    pruning_noise_bound_gain: float = 1.0
    solver_noise_bound_gain: float = 0.75
    max_iterations: int = 100
    epsilon: float = 1e-6
    gnc_factor: float = 1.4
    inlier_threshold: float = 0.5
    num_min_inliers: int = 5
    axis_tilt_threshold_deg: float = 5.0
    num_threads: int = -1                 # -1 uses every core

    def __post_init__(self):
        """Validate configuration parameters"""
        try:
            resolution = float(self.resolution)
        except (TypeError, ValueError):
            raise InvalidResolutionError(self.resolution)
        if not math.isfinite(resolution) or resolution <= 0:
            raise InvalidResolutionError(self.resolution)
        object.__setattr__(self, 'resolution', resolution)

        if self.matcher_type.upper() not in ("KDTREE", "BF"):
            raise ValueError(f"Unknown matcher type: {self.matcher_type}")
        object.__setattr__(self, 'matcher_type', self.matcher_type.upper())
        if not 0 < self.ratio_threshold <= 1:
            raise ValueError("Ratio threshold must be in (0, 1]")
        if self.min_neighbors < 3:
            raise ValueError("Normal estimation needs at least 3 neighbors")
        if self.num_bins < 2:
            raise ValueError("Descriptor needs at least 2 bins per feature")
        if self.num_max_correspondences < 3:
            raise ValueError("Maximum correspondences must be at least 3")
        if self.max_iterations < 1:
            raise ValueError("Maximum iterations must be at least 1")
        if self.epsilon <= 0:
            raise ValueError("Epsilon must be positive")
        if self.gnc_factor <= 1:
            raise ValueError("GNC factor must be greater than 1")
        if not 0 < self.inlier_threshold < 1:
            raise ValueError("Inlier threshold must be in (0, 1)")
        if self.num_threads == 0 or self.num_threads < -1:
            raise ValueError("Thread count must be positive or -1")

    @property
    def normal_radius(self) -> float:
        return self.normal_radius_gain * self.resolution

    @property
    def fpfh_radius(self) -> float:
        return self.fpfh_radius_gain * self.resolution

    @property
    def pruning_noise_bound(self) -> float:
        return self.pruning_noise_bound_gain * self.resolution

    @property
    def solver_noise_bound(self) -> float:
        return self.solver_noise_bound_gain * self.resolution

    @property
    def solver_type(self) -> SolverType:
        return SolverType.QUATRO if self.use_quatro else SolverType.SO3

    @property
    def worker_count(self) -> Optional[int]:
        """Thread count for executors (None lets the executor decide)"""
        return None if self.num_threads == -1 else self.num_threads

    @classmethod
    def from_settings(cls, resolution: float, settings=None, **overrides) -> "KISSMatcherConfig":
        """
        Build a configuration from environment settings

        Args:
            resolution: Voxel size in cloud units
            settings: Settings instance (defaults to the module-level settings)
            **overrides: Explicit option values that win over the settings

        Returns:
            KISSMatcherConfig
        """
        if settings is None:
            from ..utils.config import settings
        options = settings.get_matcher_config()
        options.update(overrides)
        known = {f.name for f in fields(cls)}
        unknown = set(options) - known
        if unknown:
            raise ValueError(f"Unknown configuration options: {', '.join(sorted(unknown))}")
        return cls(resolution=resolution, **options)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class KeypointSet:
    """Voxel centroids produced by the resolution grid"""
    points: np.ndarray        # Mx3 centroids
    voxel_keys: np.ndarray    # Mx3 integer cell coordinates
    point_counts: np.ndarray  # M input points per cell
    resolution: float

    def __len__(self) -> int:
        return len(self.points)


@dataclass
class FeatureSet:
    """FasterPFH descriptors attached 1:1 to keypoints"""
    points: np.ndarray       # Mx3
    normals: np.ndarray      # Mx3, zero rows where invalid
    descriptors: np.ndarray  # MxD, unit-sum rows where valid
    valid: np.ndarray        # M bool

    def __len__(self) -> int:
        return len(self.points)

    @property
    def num_valid(self) -> int:
        return int(np.count_nonzero(self.valid))

    @property
    def dimension(self) -> int:
        return self.descriptors.shape[1]


@dataclass
class Correspondences:
    """Putative point pairs between source and target keypoints"""
    source_indices: np.ndarray
    target_indices: np.ndarray
    distances: np.ndarray

    @classmethod
    def empty(cls) -> "Correspondences":
        return cls(np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64), np.empty(0))

    def __len__(self) -> int:
        return len(self.source_indices)

    def subset(self, selector) -> "Correspondences":
        """Select by boolean mask or index array"""
        return Correspondences(
            source_indices=self.source_indices[selector],
            target_indices=self.target_indices[selector],
            distances=self.distances[selector]
        )

    def as_array(self) -> np.ndarray:
        """Kx2 array of (source, target) indices"""
        return np.stack([self.source_indices, self.target_indices], axis=1)


@dataclass
class SolverResult:
    """Output of a robust solver"""
    rotation: np.ndarray
    translation: np.ndarray
    inliers: Correspondences
    weights: np.ndarray
    num_iterations: int
    converged: bool
    solver: str
    tilt_deg: float = 0.0
    axis_assumption_violated: bool = False


@dataclass
class Solution:
    """Registration result returned to the caller"""
    rotation: np.ndarray
    translation: np.ndarray
    status: SolutionStatus
    inliers: Correspondences
    num_source_keypoints: int = 0
    num_target_keypoints: int = 0
    num_correspondences: int = 0
    num_pruned_correspondences: int = 0
    num_iterations: int = 0
    timing: Dict[str, float] = field(default_factory=lambda: {stage: 0.0 for stage in STAGES})
    solver: str = ""
    axis_assumption_violated: bool = False
    message: str = ""

    @classmethod
    def degenerate(cls, message: str, **kwargs) -> "Solution":
        """Identity transform explicitly marked as a failed estimate"""
        return cls(
            rotation=np.eye(3),
            translation=np.zeros(3),
            status=SolutionStatus.DEGENERATE,
            inliers=Correspondences.empty(),
            message=message,
            **kwargs
        )

    @property
    def valid(self) -> bool:
        return self.status != SolutionStatus.DEGENERATE

    @property
    def num_inliers(self) -> int:
        return len(self.inliers)

    @property
    def inlier_ratio(self) -> float:
        """Inliers over correspondences that reached the solver"""
        if self.num_pruned_correspondences == 0:
            return 0.0
        return self.num_inliers / self.num_pruned_correspondences

    @property
    def transformation(self) -> np.ndarray:
        """4x4 homogeneous transform mapping source into target"""
        matrix = np.eye(4)
        matrix[:3, :3] = self.rotation
        matrix[:3, 3] = self.translation
        return matrix

    @property
    def quaternion(self) -> np.ndarray:
        """Unit quaternion (x, y, z, w)"""
        return Rotation.from_matrix(self.rotation).as_quat()

    @property
    def yaw(self) -> float:
        """Rotation about the z axis in radians"""
        return float(np.arctan2(self.rotation[1, 0], self.rotation[0, 0]))

    def to_summary_dict(self) -> Dict[str, Any]:
        """Convert to summary dictionary (without correspondence arrays)"""
        return {
            'status': self.status.value,
            'valid': self.valid,
            'solver': self.solver,
            'rotation': self.rotation.tolist(),
            'translation': self.translation.tolist(),
            'quaternion': self.quaternion.tolist(),
            'num_source_keypoints': self.num_source_keypoints,
            'num_target_keypoints': self.num_target_keypoints,
            'num_correspondences': self.num_correspondences,
            'num_pruned_correspondences': self.num_pruned_correspondences,
            'num_inliers': self.num_inliers,
            'inlier_ratio': self.inlier_ratio,
            'num_iterations': self.num_iterations,
            'axis_assumption_violated': self.axis_assumption_violated,
            'timing': dict(self.timing),
            'message': self.message
        }


@dataclass
class MatcherStats:
    """Running statistics of a matcher instance"""
    total_estimations: int = 0
    successful_estimations: int = 0
    degenerate_estimations: int = 0
    failed_estimations: int = 0
    average_processing_time: float = 0.0
    average_inliers: float = 0.0

    def update(self, solution: Solution):
        """Update statistics with a finished estimate"""
        self.total_estimations += 1
        if solution.valid:
            self.successful_estimations += 1
            total = self.successful_estimations
            self.average_inliers = ((self.average_inliers * (total - 1)) + solution.num_inliers) / total
        else:
            self.degenerate_estimations += 1

        total = self.successful_estimations + self.degenerate_estimations
        self.average_processing_time = \
            ((self.average_processing_time * (total - 1)) + solution.timing.get('total', 0.0)) / total

    def record_failure(self):
        self.total_estimations += 1
        self.failed_estimations += 1

    @property
    def success_rate(self) -> float:
        if self.total_estimations == 0:
            return 0.0
        return self.successful_estimations / self.total_estimations

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for monitoring"""
        return {**asdict(self), 'success_rate': self.success_rate}
