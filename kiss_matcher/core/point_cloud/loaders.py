"""
KISS-Matcher - Point Cloud File Loaders
Point cloud file format parsers (PCD, PLY, XYZ, NPY) and a PCD writer
"""

import io
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

# PCD TYPE/SIZE and PLY property names to numpy dtypes
_PCD_DTYPES = {
    ('F', 4): 'f4', ('F', 8): 'f8',
    ('I', 1): 'i1', ('I', 2): 'i2', ('I', 4): 'i4', ('I', 8): 'i8',
    ('U', 1): 'u1', ('U', 2): 'u2', ('U', 4): 'u4', ('U', 8): 'u8',
}
_PLY_DTYPES = {
    'char': 'i1', 'int8': 'i1', 'uchar': 'u1', 'uint8': 'u1',
    'short': 'i2', 'int16': 'i2', 'ushort': 'u2', 'uint16': 'u2',
    'int': 'i4', 'int32': 'i4', 'uint': 'u4', 'uint32': 'u4',
    'float': 'f4', 'float32': 'f4', 'double': 'f8', 'float64': 'f8',
}


class PointCloudLoader:
    """
    Point cloud loader supporting multiple formats
    Returns plain Nx3 float64 arrays, the only representation the matcher consumes
    """

    @staticmethod
    def load_file(path: Union[str, Path]) -> np.ndarray:
        """Load a point cloud from disk, dispatching on the file suffix"""
        path = Path(path)
        if not path.is_file():
            raise ValueError(f"Point cloud file not found: {path}")
        points = PointCloudLoader.load_point_cloud(path.read_bytes(), suffix=path.suffix)
        logger.info(f"Loaded {len(points)} points from {path}")
        return points

    @staticmethod
    def load_point_cloud(point_cloud_data: bytes, suffix: Optional[str] = None) -> np.ndarray:
        """
        Load point cloud from file data with automatic format detection

        Args:
            point_cloud_data: Raw point cloud file data
            suffix: Optional file suffix hint (".pcd", ".ply", ".xyz", ".npy")

        Returns:
            Nx3 float64 array with non-finite rows removed
        """
        suffix = (suffix or "").lower()
        if suffix == '.npy' or point_cloud_data.startswith(b'\x93NUMPY'):
            points = PointCloudLoader._load_npy(point_cloud_data)
        elif suffix == '.ply' or point_cloud_data.startswith(b'ply'):
            points = PointCloudLoader._load_ply(point_cloud_data)
        elif suffix == '.pcd' or b'FIELDS' in point_cloud_data[:512]:
            points = PointCloudLoader._load_pcd(point_cloud_data)
        else:
            points = PointCloudLoader._load_xyz(point_cloud_data)

        points = np.asarray(points, dtype=np.float64)
        valid_mask = np.isfinite(points).all(axis=1)
        if not valid_mask.all():
            logger.info(f"Dropped {int((~valid_mask).sum())} non-finite points")
            points = points[valid_mask]
        if len(points) == 0:
            raise ValueError("Point cloud contains no valid points")
        return points

    @staticmethod
    def _split_header(data: bytes, terminator_prefix: bytes) -> Tuple[List[str], bytes]:
        """Split header lines from the body at the line starting with terminator_prefix"""
        stream = io.BytesIO(data)
        header = []
        while True:
            line = stream.readline()
            if not line:
                raise ValueError("Unterminated point cloud header")
            text = line.decode('ascii', errors='replace').strip()
            header.append(text)
            if text.startswith(terminator_prefix.decode('ascii')):
                break
        return header, stream.read()

    @staticmethod
    def _load_pcd(data: bytes) -> np.ndarray:
        """Load PCD format (ascii or binary) point cloud"""
        header_lines, body = PointCloudLoader._split_header(data, b'DATA')

        header: Dict[str, List[str]] = {}
        for line in header_lines:
            if not line or line.startswith('#'):
                continue
            key, *values = line.split()
            header[key.upper()] = values

        field_names = header.get('FIELDS', [])
        if not {'x', 'y', 'z'} <= set(field_names):
            raise ValueError(f"PCD file lacks x/y/z fields: {field_names}")
        sizes = [int(s) for s in header.get('SIZE', ['4'] * len(field_names))]
        types = header.get('TYPE', ['F'] * len(field_names))
        counts = [int(c) for c in header.get('COUNT', ['1'] * len(field_names))]
        num_points = int(header.get('POINTS', header.get('WIDTH', ['0']))[0])
        encoding = header['DATA'][0].lower()

        if encoding == 'ascii':
            rows = np.loadtxt(io.StringIO(body.decode('ascii')), ndmin=2)
            offsets = np.cumsum([0] + counts[:-1])
            columns = [int(offsets[field_names.index(axis)]) for axis in 'xyz']
            return rows[:num_points, columns] if num_points else rows[:, columns]

        if encoding == 'binary':
            dtype = np.dtype([
                (name, '<' + _PCD_DTYPES[(kind.upper(), size)], (count,)) if count > 1
                else (name, '<' + _PCD_DTYPES[(kind.upper(), size)])
                for name, kind, size, count in zip(field_names, types, sizes, counts)
            ])
            records = np.frombuffer(body, dtype=dtype, count=num_points)
            return np.stack([records[axis] for axis in 'xyz'], axis=1).astype(np.float64)

        raise ValueError(f"Unsupported PCD data encoding: {encoding}")

    @staticmethod
    def _load_ply(data: bytes) -> np.ndarray:
        """Load PLY format (ascii or binary_little_endian) point cloud"""
        header_lines, body = PointCloudLoader._split_header(data, b'end_header')

        encoding = None
        vertex_count = 0
        properties: List[Tuple[str, str]] = []
        in_vertex = False
        for line in header_lines:
            parts = line.split()
            if not parts:
                continue
            if parts[0] == 'format':
                encoding = parts[1]
            elif parts[0] == 'element':
                in_vertex = parts[1] == 'vertex'
                if in_vertex:
                    vertex_count = int(parts[2])
            elif parts[0] == 'property' and in_vertex:
                if parts[1] == 'list':
                    raise ValueError("List properties on vertices are not supported")
                properties.append((parts[2], _PLY_DTYPES[parts[1]]))

        if vertex_count == 0:
            raise ValueError("No vertices found in PLY header")
        names = [name for name, _ in properties]
        if not {'x', 'y', 'z'} <= set(names):
            raise ValueError(f"PLY file lacks x/y/z properties: {names}")

        if encoding == 'ascii':
            lines = body.decode('ascii').strip().splitlines()[:vertex_count]
            rows = np.loadtxt(lines, ndmin=2)
            return rows[:, [names.index(axis) for axis in 'xyz']]

        if encoding == 'binary_little_endian':
            dtype = np.dtype([(name, '<' + kind) for name, kind in properties])
            records = np.frombuffer(body, dtype=dtype, count=vertex_count)
            return np.stack([records[axis] for axis in 'xyz'], axis=1).astype(np.float64)

        raise ValueError(f"Unsupported PLY format: {encoding}")

    @staticmethod
    def _load_xyz(data: bytes) -> np.ndarray:
        """Load whitespace separated XYZ text (extra columns are ignored)"""
        rows = np.loadtxt(io.StringIO(data.decode('utf-8')), ndmin=2, comments='#')
        if rows.shape[1] < 3:
            raise ValueError(f"XYZ rows need at least 3 columns, got {rows.shape[1]}")
        return rows[:, :3]

    @staticmethod
    def _load_npy(data: bytes) -> np.ndarray:
        """Load a .npy array of shape Nx3 (or Nx6 with colors)"""
        array = np.load(io.BytesIO(data), allow_pickle=False)
        if array.ndim != 2 or array.shape[1] < 3:
            raise ValueError(f"Unsupported array shape {array.shape}")
        return array[:, :3]


class PointCloudWriter:
    """Writes Nx3 arrays as ASCII PCD files"""

    @staticmethod
    def save_pcd_ascii(path: Union[str, Path], points: np.ndarray) -> Path:
        path = Path(path)
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        header = "\n".join([
            "# .PCD v0.7 - Point Cloud Data file format",
            "VERSION 0.7",
            "FIELDS x y z",
            "SIZE 4 4 4",
            "TYPE F F F",
            "COUNT 1 1 1",
            f"WIDTH {len(points)}",
            "HEIGHT 1",
            "VIEWPOINT 0 0 0 1 0 0 0",
            f"POINTS {len(points)}",
            "DATA ascii",
        ])
        with open(path, "w") as f:
            f.write(header + "\n")
            np.savetxt(f, points, fmt="%.6f")
        logger.info(f"Saved {len(points)} points to {path}")
        return path
