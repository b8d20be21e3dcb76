"""
KISS-Matcher - Error Taxonomy
Exceptions and warnings raised by the registration pipeline
"""


class KISSMatcherError(Exception):
    """Base class for all registration pipeline errors"""


class InvalidResolutionError(KISSMatcherError, ValueError):
    """Voxel resolution is not a positive finite number"""

    def __init__(self, resolution):
        self.resolution = resolution
        super().__init__(f"Voxel resolution must be a positive finite number, got {resolution!r}")


class InsufficientNeighborsError(KISSMatcherError):
    """
    No keypoint has enough neighbors to build a descriptor
    Raised only when the whole cloud is degenerate; isolated keypoints are
    excluded locally and never raise
    """


class DegenerateInputError(KISSMatcherError):
    """Too few correspondences reached a solver for a rigid estimate"""

    def __init__(self, num_correspondences: int, required: int = 3):
        self.num_correspondences = num_correspondences
        self.required = required
        super().__init__(
            f"Insufficient correspondences: {num_correspondences} < {required}"
        )


class NumericalFailureError(KISSMatcherError):
    """Decomposition failed or produced non-finite values during estimation"""


class AxisAssumptionViolated(UserWarning):
    """Inliers of a yaw-only solution imply significant roll/pitch"""
