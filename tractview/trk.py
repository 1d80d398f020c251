# -*- coding: utf-8 -*-
"""TrackVis .trk decoder.

A TRK file is a fixed 1000-byte little-endian header followed by one record per
streamline: an int32 point count, then for every point its x, y, z and the
per-point scalars (float32), then the per-streamline properties (float32).
Format reference: http://trackvis.org/docs/?subsect=fileformat
"""

import logging
import struct

import numpy as np

from tractview.errors import (HeaderMalformedError, MissingMagicError,
                              TruncatedFileError)
from tractview.sniffer import is_trk
from tractview.streamlines import (DecodeLimits, Streamline,
                                   TractographyData, TractographyHeader)
from tractview.utils import decode_fixed_string, get_voxel_order

TRK_HEADER_SIZE = 1000
MAX_NB_SCALARS = 10
MAX_NB_PROPERTIES = 10
MAX_DIMENSION = 65535

TRK_HEADER_DTYPE = np.dtype([
    ('id_string', 'S6'),
    ('dim', '<i2', (3,)),
    ('voxel_size', '<f4', (3,)),
    ('origin', '<f4', (3,)),
    ('n_scalars', '<i2'),
    ('scalar_name', 'S20', (10,)),
    ('n_properties', '<i2'),
    ('property_name', 'S20', (10,)),
    ('vox_to_ras', '<f4', (4, 4)),
    ('reserved', 'S444'),
    ('voxel_order', 'S4'),
    ('pad2', 'S4'),
    ('image_orientation_patient', '<f4', (6,)),
    ('pad1', 'S2'),
    ('invert', 'u1', (3,)),
    ('swap', 'u1', (3,)),
    ('n_count', '<i4'),
    ('version', '<i4'),
    ('hdr_size', '<i4'),
])
assert TRK_HEADER_DTYPE.itemsize == TRK_HEADER_SIZE


def read_trk_header(buffer):
    """Read the raw 1000-byte header

    Keyword arguments:
        buffer -- bytes-like object holding at least TRK_HEADER_SIZE bytes

    Returns:
        A NumPy structured scalar of dtype TRK_HEADER_DTYPE
    """
    if len(buffer) < TRK_HEADER_SIZE:
        raise TruncatedFileError(
            'Invalid TRK file: {} bytes is shorter than the {}-byte '
            'header'.format(len(buffer), TRK_HEADER_SIZE))
    return np.frombuffer(buffer, dtype=TRK_HEADER_DTYPE, count=1)[0]


def validate_trk_header(hdr):
    """Check the header fields the body layout depends on

    Keyword arguments:
        hdr -- Raw header as returned by read_trk_header
    """
    n_scalars = int(hdr['n_scalars'])
    if n_scalars < 0 or n_scalars > MAX_NB_SCALARS:
        raise HeaderMalformedError(
            'Invalid TRK header: n_scalars ({}) must be 0-{}'.format(
                n_scalars, MAX_NB_SCALARS))

    n_properties = int(hdr['n_properties'])
    if n_properties < 0 or n_properties > MAX_NB_PROPERTIES:
        raise HeaderMalformedError(
            'Invalid TRK header: n_properties ({}) must be 0-{}'.format(
                n_properties, MAX_NB_PROPERTIES))

    for i, dim in enumerate(hdr['dim']):
        if dim < 0 or dim > MAX_DIMENSION:
            raise HeaderMalformedError(
                'Invalid TRK header: dimension[{}] ({}) out of valid '
                'range'.format(i, dim))

    for i, size in enumerate(hdr['voxel_size']):
        if not np.isfinite(size) or size < 0:
            raise HeaderMalformedError(
                'Invalid TRK header: voxel_size[{}] ({}) must be non-negative '
                'and finite'.format(i, size))

    if int(hdr['hdr_size']) != TRK_HEADER_SIZE:
        raise HeaderMalformedError(
            'Invalid TRK header: hdr_size ({}) must be {}'.format(
                int(hdr['hdr_size']), TRK_HEADER_SIZE))


def _read_names(raw_names, count):
    names = []
    for i, raw in enumerate(raw_names):
        name = decode_fixed_string(raw)
        if i < count and name:
            names.append(name)
    return names


def _read_streamlines(buffer, hdr, limits):
    """Decode the body records, stopping quietly at the first bad record"""
    n_scalars = int(hdr['n_scalars'])
    n_properties = int(hdr['n_properties'])
    values_per_point = 3 + n_scalars
    bytes_per_point = 4 * values_per_point
    bytes_per_properties = 4 * n_properties

    nb_declared = int(hdr['n_count'])
    max_streamlines = nb_declared if nb_declared > 0 else None

    streamlines = []
    nb_records = 0
    offset = int(hdr['hdr_size'])
    buffer_length = len(buffer)
    while offset < buffer_length:
        if max_streamlines is not None and nb_records >= max_streamlines:
            break
        if offset + 4 > buffer_length:
            logging.warning('TRK body ends inside a point count at byte '
                            '{}.'.format(offset))
            break

        nb_points = struct.unpack_from('<i', buffer, offset)[0]
        offset += 4
        if nb_points <= 0 or nb_points > limits.max_points_per_streamline:
            logging.warning('Invalid TRK point count ({}) after {} '
                            'streamlines, stopping.'.format(nb_points,
                                                            len(streamlines)))
            break

        record_size = nb_points * bytes_per_point + bytes_per_properties
        if offset + record_size > buffer_length:
            logging.warning('TRK streamline {} runs past the end of the '
                            'file.'.format(len(streamlines)))
            break

        data = np.frombuffer(buffer, dtype='<f4',
                             count=nb_points * values_per_point,
                             offset=offset).reshape((nb_points,
                                                     values_per_point))
        offset += nb_points * bytes_per_point

        scalars = None
        if n_scalars > 0:
            scalars = [data[:, 3 + i] for i in range(n_scalars)]

        properties = None
        if n_properties > 0:
            properties = np.frombuffer(buffer, dtype='<f4',
                                       count=n_properties, offset=offset)
            offset += bytes_per_properties
        nb_records += 1

        # A single point still occupies its record, only the polyline is dropped
        if nb_points < 2:
            continue
        streamlines.append(Streamline(data[:, :3], scalars=scalars,
                                      properties=properties))

    return streamlines


def decode_trk(buffer, limits=None):
    """Decode a TRK file held in memory

    Keyword arguments:
        buffer -- bytes-like object with the complete file
        limits -- DecodeLimits, defaults are used if None

    Returns:
        TractographyData with a 'trk' header
    """
    limits = DecodeLimits() if limits is None else limits
    limits.check_size(buffer, fmt='trk')

    if not is_trk(buffer):
        raise MissingMagicError('Invalid TRK file: missing TRACK identifier')

    hdr = read_trk_header(buffer)
    validate_trk_header(hdr)

    streamlines = _read_streamlines(buffer, hdr, limits)

    vox_to_ras = np.array(hdr['vox_to_ras'], dtype=np.float32)
    voxel_order = decode_fixed_string(hdr['voxel_order'])
    if not voxel_order:
        voxel_order = get_voxel_order(vox_to_ras)

    metadata = {
        'declared_count': int(hdr['n_count']),
        'origin': np.array(hdr['origin'], dtype=np.float32),
        'vox_to_ras': vox_to_ras,
        'voxel_order': voxel_order,
        'image_orientation_patient':
            np.array(hdr['image_orientation_patient'], dtype=np.float32),
        'invert': tuple(int(v) for v in hdr['invert']),
        'swap': tuple(int(v) for v in hdr['swap']),
        'scalar_names': _read_names(hdr['scalar_name'],
                                    int(hdr['n_scalars'])),
        'property_names': _read_names(hdr['property_name'],
                                      int(hdr['n_properties'])),
    }
    header = TractographyHeader('trk', dimensions=hdr['dim'],
                                voxel_sizes=hdr['voxel_size'],
                                version=int(hdr['version']),
                                metadata=metadata)
    logging.debug('Decoded {} of {} declared TRK streamlines.'.format(
        len(streamlines), metadata['declared_count']))

    return TractographyData(header, streamlines)
