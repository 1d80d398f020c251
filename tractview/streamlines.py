# -*- coding: utf-8 -*-
"""Format-agnostic streamline containers shared by every decoder."""

import os
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import ArrayLike, NDArray

from tractview.errors import SizeExceededError

FORMATS = ('trk', 'tck', 'trx')

MAX_FILE_SIZE = 500 * 1024 * 1024
MAX_POINTS_PER_STREAMLINE = 100000
TCK_HEADER_WINDOW = 10000

DEFAULT_DIMENSIONS = (0, 0, 0)
DEFAULT_VOXEL_SIZES = (1.0, 1.0, 1.0)


class DecodeLimits:
    """Safety caps applied by the decoders

    Keyword arguments:
        max_file_size -- Largest buffer accepted, in bytes
        max_points_per_streamline -- Largest point count of a single streamline
        tck_header_window -- Number of leading bytes searched for the TCK END line
    """

    def __init__(self, max_file_size: int = MAX_FILE_SIZE,
                 max_points_per_streamline: int = MAX_POINTS_PER_STREAMLINE,
                 tck_header_window: int = TCK_HEADER_WINDOW) -> None:
        if max_file_size < 0 or max_points_per_streamline < 2 \
                or tck_header_window < 4:
            raise ValueError('Invalid decode limits.')
        self.max_file_size = int(max_file_size)
        self.max_points_per_streamline = int(max_points_per_streamline)
        self.tck_header_window = int(tck_header_window)

    @classmethod
    def from_env(cls) -> 'DecodeLimits':
        """Build limits from TRACTVIEW_MAX_FILE_SIZE / TRACTVIEW_MAX_POINTS"""
        max_file_size = MAX_FILE_SIZE
        max_points = MAX_POINTS_PER_STREAMLINE
        if os.getenv('TRACTVIEW_MAX_FILE_SIZE') is not None:
            max_file_size = int(os.getenv('TRACTVIEW_MAX_FILE_SIZE'))
        if os.getenv('TRACTVIEW_MAX_POINTS') is not None:
            max_points = int(os.getenv('TRACTVIEW_MAX_POINTS'))
        return cls(max_file_size=max_file_size,
                   max_points_per_streamline=max_points)

    def check_size(self, buffer: Any, fmt: Optional[str] = None) -> None:
        """Reject a buffer larger than max_file_size before any parsing"""
        if len(buffer) > self.max_file_size:
            raise SizeExceededError(len(buffer), self.max_file_size, fmt=fmt)

    def __repr__(self) -> str:
        return ('DecodeLimits(max_file_size={}, max_points_per_streamline={}, '
                'tck_header_window={})'.format(self.max_file_size,
                                               self.max_points_per_streamline,
                                               self.tck_header_window))


class Streamline:
    """A single polyline with optional per-point and per-track data"""

    points: NDArray
    scalars: Optional[List[NDArray]]
    properties: Optional[NDArray]

    def __init__(self, points: ArrayLike,
                 scalars: Optional[Sequence[ArrayLike]] = None,
                 properties: Optional[ArrayLike] = None) -> None:
        """Keyword arguments:
            points -- Coordinates, either (N, 3) or flat (3N,)
            scalars -- One array of N values per scalar channel
            properties -- Fixed-size vector of per-track values
        """
        points = np.array(points, dtype=np.float32, order='C')
        if points.size % 3 != 0:
            raise ValueError('Points must be 3D coordinates.')
        points = points.reshape((-1, 3))
        if len(points) < 2:
            raise ValueError('A streamline needs at least 2 points.')

        if scalars is not None:
            scalars = [np.array(s, dtype=np.float32).ravel()
                       for s in scalars]
            for channel in scalars:
                if len(channel) != len(points):
                    raise ValueError('Scalar channel of length {} does not '
                                     'match {} points.'.format(len(channel),
                                                               len(points)))
            if len(scalars) == 0:
                scalars = None

        if properties is not None:
            properties = np.array(properties, dtype=np.float32).ravel()

        self.points = points
        self.scalars = scalars
        self.properties = properties

    @property
    def nb_points(self) -> int:
        return len(self.points)

    @property
    def flat_points(self) -> NDArray:
        """Coordinates as [x1, y1, z1, x2, y2, z2, ...]"""
        return self.points.reshape(-1)

    def __len__(self) -> int:
        return len(self.points)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Streamline):
            return NotImplemented
        if not np.array_equal(self.points, other.points, equal_nan=True):
            return False
        if (self.scalars is None) != (other.scalars is None):
            return False
        if self.scalars is not None:
            if len(self.scalars) != len(other.scalars):
                return False
            for left, right in zip(self.scalars, other.scalars):
                if not np.array_equal(left, right, equal_nan=True):
                    return False
        if (self.properties is None) != (other.properties is None):
            return False
        if self.properties is not None:
            return np.array_equal(self.properties, other.properties,
                                  equal_nan=True)
        return True

    def __repr__(self) -> str:
        return 'Streamline(nb_points={}, nb_scalars={}, nb_properties={})'.format(
            self.nb_points,
            0 if self.scalars is None else len(self.scalars),
            0 if self.properties is None else len(self.properties))


class TractographyHeader:
    """Format-agnostic header information"""

    def __init__(self, format: str,
                 dimensions: Sequence[int] = DEFAULT_DIMENSIONS,
                 voxel_sizes: Sequence[float] = DEFAULT_VOXEL_SIZES,
                 nb_streamlines: int = 0, version: int = 1,
                 metadata: Optional[Dict[str, Any]] = None) -> None:
        if format not in FORMATS:
            raise ValueError('Unknown tractography format {}.'.format(format))
        self.format = format
        self.dimensions = tuple(int(d) for d in dimensions)
        self.voxel_sizes = tuple(float(v) for v in voxel_sizes)
        self.nb_streamlines = int(nb_streamlines)
        self.version = int(version)
        self.metadata = {} if metadata is None else dict(metadata)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, TractographyHeader):
            return NotImplemented
        if (self.format, self.dimensions, self.voxel_sizes,
                self.nb_streamlines, self.version) != \
                (other.format, other.dimensions, other.voxel_sizes,
                 other.nb_streamlines, other.version):
            return False
        return _metadata_equal(self.metadata, other.metadata)

    def __str__(self) -> str:
        text = 'FORMAT: {}'.format(self.format)
        text += '\nDIMENSIONS: {}'.format(list(self.dimensions))
        text += '\nVOX_SIZES: [{}]'.format(
            ' '.join('%.2f' % v for v in self.voxel_sizes))
        text += '\nVERSION: {}'.format(self.version)
        text += '\nstreamline_count: {}'.format(self.nb_streamlines)
        return text


class TractographyData:
    """Decoded tractogram: a header and an ordered list of streamlines"""

    def __init__(self, header: TractographyHeader,
                 streamlines: List[Streamline]) -> None:
        self.header = header
        self.streamlines = streamlines
        self.header.nb_streamlines = len(streamlines)

    @property
    def nb_vertices(self) -> int:
        return sum(len(s) for s in self.streamlines)

    def __len__(self) -> int:
        return len(self.streamlines)

    def __iter__(self):
        return iter(self.streamlines)

    def __getitem__(self, key):
        return self.streamlines[key]

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, TractographyData):
            return NotImplemented
        return self.header == other.header and \
            self.streamlines == other.streamlines

    def __str__(self) -> str:
        text = str(self.header)
        text += '\nvertex_count: {}'.format(self.nb_vertices)
        text += '\nmetadata keys: {}'.format(list(self.header.metadata.keys()))
        return text


class BoundingBox:
    """Axis-aligned box enclosing a set of streamlines"""

    def __init__(self, min: Sequence[float], max: Sequence[float]) -> None:
        self.min = tuple(float(v) for v in min)
        self.max = tuple(float(v) for v in max)
        self.center = tuple((lo + hi) / 2.0
                            for lo, hi in zip(self.min, self.max))
        self.size = float(np.linalg.norm(np.subtract(self.max, self.min)))

    def as_tuple(self) -> Tuple[Tuple[float, ...], Tuple[float, ...],
                                Tuple[float, ...], float]:
        return self.min, self.max, self.center, self.size

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, BoundingBox):
            return NotImplemented
        return self.as_tuple() == other.as_tuple()

    def __repr__(self) -> str:
        return 'BoundingBox(min={}, max={}, center={}, size={:.3f})'.format(
            self.min, self.max, self.center, self.size)


def _metadata_equal(left: Any, right: Any) -> bool:
    """Compare metadata values that may hold NumPy arrays"""
    if isinstance(left, dict) and isinstance(right, dict):
        if left.keys() != right.keys():
            return False
        return all(_metadata_equal(left[k], right[k]) for k in left)
    if isinstance(left, np.ndarray) or isinstance(right, np.ndarray):
        left, right = np.asarray(left), np.asarray(right)
        if left.dtype.kind in 'fc' or right.dtype.kind in 'fc':
            return left.shape == right.shape and \
                bool(np.array_equal(left, right, equal_nan=True))
        return bool(np.array_equal(left, right))
    if isinstance(left, float) and isinstance(right, float):
        return left == right or (np.isnan(left) and np.isnan(right))
    return left == right
