"""
KISS-Matcher - Registration Pipeline
Voxelization, FasterPFH description, matching, pruning and robust solving
"""

import logging
import time
from typing import Any, Dict, Optional

import numpy as np

from ..utils.logging_config import performance_logger
from .correspondence_matcher import CorrespondenceMatcher
from .errors import DegenerateInputError, InsufficientNeighborsError, NumericalFailureError
from .feature_extractor import FasterPFH
from .matcher_models import (
    STAGES, KeypointSet, KISSMatcherConfig,
    MatcherStats, Solution, SolutionStatus
)
from .outlier_pruning import MaxCorePruner
from .point_cloud import VoxelResolutionGrid, clean_points
from .solvers import create_solver
from .solvers.registration import MIN_CORRESPONDENCES

logger = logging.getLogger(__name__)


class KISSMatcher:
    """
    Global point cloud registration without an initial guess
    One instance may serve any number of estimate() calls; the configuration
    is never modified and no buffers survive between calls
    """

    def __init__(self, config: KISSMatcherConfig):
        self.config = config
        self.stats = MatcherStats()

        self.voxel_grid = VoxelResolutionGrid(config.resolution)
        self.extractor = FasterPFH(config)
        self.matcher = CorrespondenceMatcher(config)
        self.pruner = MaxCorePruner(config.pruning_noise_bound, config.num_max_correspondences)
        self.solver = create_solver(config)

        self.last_solution: Optional[Solution] = None

        logger.info(f"KISS-Matcher initialized (resolution {config.resolution}, "
                    f"solver {config.solver_type.value}, matcher {config.matcher_type})")

    def estimate(self, source, target) -> Solution:
        """
        Estimate the rigid transform mapping source onto target

        Args:
            source: Nx3 source points
            target: Mx3 target points

        Returns:
            Solution; status DEGENERATE (identity, valid False) when the
            clouds do not support an estimate

        Raises:
            NumericalFailureError: decomposition failure inside a solver
            ValueError: malformed input arrays
        """
        timing = {stage: 0.0 for stage in STAGES}
        start_time = time.perf_counter()
        counts: Dict[str, int] = {}

        try:
            stage_start = time.perf_counter()
            source_cloud = clean_points(source)
            target_cloud = clean_points(target)
            source_keypoints = self._keypoints(source_cloud)
            target_keypoints = self._keypoints(target_cloud)
            timing['voxelization'] = time.perf_counter() - stage_start
            counts['num_source_keypoints'] = len(source_keypoints)
            counts['num_target_keypoints'] = len(target_keypoints)

            stage_start = time.perf_counter()
            source_features = self.extractor.compute(source_keypoints, source_cloud)
            target_features = self.extractor.compute(target_keypoints, target_cloud)
            timing['extraction'] = time.perf_counter() - stage_start

            stage_start = time.perf_counter()
            correspondences = self.matcher.match(source_features, target_features)
            timing['matching'] = time.perf_counter() - stage_start
            counts['num_correspondences'] = len(correspondences)

            stage_start = time.perf_counter()
            if self.config.use_pruning:
                correspondences = self.pruner.prune(
                    source_keypoints.points, target_keypoints.points, correspondences
                )
            timing['pruning'] = time.perf_counter() - stage_start
            counts['num_pruned_correspondences'] = len(correspondences)

            if len(correspondences) < MIN_CORRESPONDENCES:
                raise DegenerateInputError(len(correspondences), MIN_CORRESPONDENCES)

            stage_start = time.perf_counter()
            result = self.solver.solve(source_keypoints.points, target_keypoints.points, correspondences)
            timing['solving'] = time.perf_counter() - stage_start

        except (InsufficientNeighborsError, DegenerateInputError) as e:
            timing['total'] = time.perf_counter() - start_time
            logger.warning(f"Degenerate registration: {e}")
            solution = Solution.degenerate(
                str(e), timing=timing, solver=self.config.solver_type.value, **counts
            )
            return self._finish(solution)

        except NumericalFailureError as e:
            self.stats.record_failure()
            performance_logger.log_registration(
                success=False,
                processing_time=time.perf_counter() - start_time,
                error=str(e)
            )
            logger.error(f"Registration failed: {e}")
            raise

        timing['total'] = time.perf_counter() - start_time

        num_inliers = len(result.inliers)
        if num_inliers < MIN_CORRESPONDENCES:
            message = f"Only {num_inliers} inliers (< {MIN_CORRESPONDENCES}), the transform is underdetermined"
            logger.warning(f"Degenerate registration: {message}")
            solution = Solution.degenerate(
                message, timing=timing, solver=result.solver,
                num_iterations=result.num_iterations, **counts
            )
            return self._finish(solution)

        if num_inliers < self.config.num_min_inliers:
            status = SolutionStatus.LOW_CONFIDENCE
            message = f"Only {num_inliers} inliers (< {self.config.num_min_inliers})"
        else:
            status = SolutionStatus.CONFIDENT
            message = ""

        solution = Solution(
            rotation=result.rotation,
            translation=result.translation,
            status=status,
            inliers=result.inliers,
            num_iterations=result.num_iterations,
            timing=timing,
            solver=result.solver,
            axis_assumption_violated=result.axis_assumption_violated,
            message=message,
            **counts
        )
        return self._finish(solution)

    def _keypoints(self, points: np.ndarray) -> KeypointSet:
        if self.config.use_voxel_sampling:
            return self.voxel_grid.downsample(points)
        return KeypointSet(
            points=points,
            voxel_keys=self.voxel_grid.voxel_keys(points),
            point_counts=np.ones(len(points), dtype=np.int64),
            resolution=self.config.resolution
        )

    def _finish(self, solution: Solution) -> Solution:
        self.stats.update(solution)
        self.last_solution = solution
        performance_logger.log_registration(
            success=solution.valid,
            processing_time=solution.timing['total'],
            num_correspondences=solution.num_pruned_correspondences,
            num_inliers=solution.num_inliers,
            solver=solution.solver,
            error=None if solution.valid else solution.message
        )
        return solution

    def print(self):
        """Log stage timings and counts of the last estimate"""
        solution = self.last_solution
        if solution is None:
            logger.info("No registration has been run yet")
            return

        logger.info(
            f"Keypoints: {solution.num_source_keypoints} / {solution.num_target_keypoints}, "
            f"correspondences: {solution.num_correspondences} -> {solution.num_pruned_correspondences} "
            f"after pruning, inliers: {solution.num_inliers}"
        )
        timing = solution.timing
        logger.info(
            f"Timing [s] voxelization {timing['voxelization']:.3f} | "
            f"extraction {timing['extraction']:.3f} | matching {timing['matching']:.3f} | "
            f"pruning {timing['pruning']:.3f} | solving {timing['solving']:.3f} | "
            f"total {timing['total']:.3f}"
        )
        logger.info(f"Status: {solution.status.value} ({solution.solver})"
                    + (f" - {solution.message}" if solution.message else ""))

    def get_statistics(self) -> Dict[str, Any]:
        """Running statistics of this matcher instance"""
        return {
            'config': self.config.to_dict(),
            'statistics': self.stats.to_dict()
        }


def estimate(source, target, config: KISSMatcherConfig) -> Solution:
    """Register source onto target with a single-use matcher"""
    return KISSMatcher(config).estimate(source, target)


__all__ = ['KISSMatcher', 'estimate']
