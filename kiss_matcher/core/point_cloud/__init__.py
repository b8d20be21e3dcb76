"""
KISS-Matcher - Point Cloud Package
Input cleaning, voxel sampling, spatial indexing and file I/O
"""

from .filters import VoxelResolutionGrid, clean_points
from .spatial_index import SpatialIndex
from .loaders import PointCloudLoader, PointCloudWriter

__all__ = [
    'VoxelResolutionGrid',
    'clean_points',
    'SpatialIndex',
    'PointCloudLoader',
    'PointCloudWriter'
]
