"""
KISS-Matcher
Global point cloud registration from voxel keypoints, FasterPFH
descriptors and graduated non-convexity solvers
"""

from .core import *  # noqa: F401,F403
from .core import __all__ as _core_all
from .core.point_cloud import PointCloudLoader, PointCloudWriter, SpatialIndex, VoxelResolutionGrid

__version__ = "0.1.0"

__all__ = list(_core_all) + [
    'PointCloudLoader',
    'PointCloudWriter',
    'SpatialIndex',
    'VoxelResolutionGrid'
]
