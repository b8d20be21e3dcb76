"""
KISS-Matcher - Core Registration Package
"""

from .errors import (
    KISSMatcherError, InvalidResolutionError, InsufficientNeighborsError,
    DegenerateInputError, NumericalFailureError, AxisAssumptionViolated
)
from .matcher_models import (
    KISSMatcherConfig, KeypointSet, FeatureSet, Correspondences,
    SolverResult, Solution, SolutionStatus, SolverType, MatcherStats
)
from .feature_extractor import FasterPFH
from .correspondence_matcher import CorrespondenceMatcher
from .outlier_pruning import MaxCorePruner
from .solvers import SO3RobustSolver, YawRobustSolver, create_solver
from .matcher import KISSMatcher, estimate

__all__ = [
    'KISSMatcherError',
    'InvalidResolutionError',
    'InsufficientNeighborsError',
    'DegenerateInputError',
    'NumericalFailureError',
    'AxisAssumptionViolated',
    'KISSMatcherConfig',
    'KeypointSet',
    'FeatureSet',
    'Correspondences',
    'SolverResult',
    'Solution',
    'SolutionStatus',
    'SolverType',
    'MatcherStats',
    'FasterPFH',
    'CorrespondenceMatcher',
    'MaxCorePruner',
    'SO3RobustSolver',
    'YawRobustSolver',
    'create_solver',
    'KISSMatcher',
    'estimate'
]
