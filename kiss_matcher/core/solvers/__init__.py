"""
KISS-Matcher - Robust Solvers
Solver branches selected by configuration, sharing the GNC-TLS primitive
"""

from ..matcher_models import KISSMatcherConfig, SolverType
from .gnc import GncResult, gnc_tls, tls_weights
from .quatro_solver import YawRobustSolver
from .so3_solver import SO3RobustSolver

# Solver classes by branch
SOLVERS = {
    SolverType.SO3: SO3RobustSolver,
    SolverType.QUATRO: YawRobustSolver
}


def create_solver(config: KISSMatcherConfig):
    """Instantiate the solver branch selected by config.use_quatro"""
    options = {
        'noise_bound': config.solver_noise_bound,
        'max_iterations': config.max_iterations,
        'epsilon': config.epsilon,
        'gnc_factor': config.gnc_factor,
        'inlier_threshold': config.inlier_threshold
    }
    if config.solver_type == SolverType.QUATRO:
        options['axis_tilt_threshold_deg'] = config.axis_tilt_threshold_deg
    return SOLVERS[config.solver_type](**options)


__all__ = [
    'GncResult',
    'gnc_tls',
    'tls_weights',
    'SO3RobustSolver',
    'YawRobustSolver',
    'SOLVERS',
    'create_solver'
]
