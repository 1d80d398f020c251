#! /usr/bin/env python3
# -*- coding: utf-8 -*-
"""TRX decoder working directly on the bytes of the archive.

Only local file headers are walked; the central directory is never read.
Members must be stored or deflated, unencrypted and carry their sizes in
the local header, which is what TRX writers produce.
Format reference: https://github.com/tee-ar-ex/trx-spec
"""

import json
import logging
import struct
from typing import List, Optional, Tuple
import zlib

import numpy as np
from numpy.typing import NDArray

from tractview.errors import (HeaderMalformedError, MissingMagicError,
                              MissingRequiredMemberError, TruncatedFileError,
                              UnsupportedEncodingError)
from tractview.sniffer import ZIP_LOCAL_FILE_SIGNATURE, is_trx
from tractview.streamlines import (DecodeLimits, Streamline,
                                   TractographyData, TractographyHeader)
from tractview.utils import get_voxel_order, get_voxel_sizes

ZIP_STORED = 0
ZIP_DEFLATED = 8

_LOCAL_HEADER = struct.Struct('<IHHHHHIIIHH')
_FLAG_ENCRYPTED = 0x1
_FLAG_DATA_DESCRIPTOR = 0x8
_ZIP64_MARKER = 0xFFFFFFFF
_DATA_DESCRIPTOR_SIGNATURE = 0x08074b50

POSITIONS_DTYPES = {
    'float16': np.dtype('<f2'),
    'float32': np.dtype('<f4'),
    'float64': np.dtype('<f8'),
}
OFFSETS_DTYPES = {
    'uint64': np.dtype('<u8'),
    'int64': np.dtype('<i8'),
    'uint32': np.dtype('<u4'),
    'int32': np.dtype('<i4'),
}
DATA_DTYPES = {
    'float16': np.dtype('<f2'), 'float32': np.dtype('<f4'),
    'float64': np.dtype('<f8'),
    'int8': np.dtype('i1'), 'int16': np.dtype('<i2'),
    'int32': np.dtype('<i4'), 'int64': np.dtype('<i8'),
    'uint8': np.dtype('u1'), 'uint16': np.dtype('<u2'),
    'uint32': np.dtype('<u4'), 'uint64': np.dtype('<u8'),
}


class ZipEntry:
    """A member extracted from the archive"""

    def __init__(self, name: str, data: bytes, complete: bool = True) -> None:
        self.name = name
        self.data = data
        self.complete = complete

    @property
    def segments(self) -> List[str]:
        return [s for s in self.name.split('/') if s]

    @property
    def basename(self) -> str:
        segments = self.segments
        return segments[-1] if segments else ''

    def __repr__(self) -> str:
        return 'ZipEntry({!r}, {} bytes{})'.format(
            self.name, len(self.data), '' if self.complete else ', truncated')


def _inflate(name: str, raw: bytes, uncompressed_size: int) -> Tuple[bytes, bool]:
    """Inflate a raw DEFLATE stream, producing at most uncompressed_size bytes

    Returns:
        tuple (data, complete); a stream that fails, ends early or holds more
        than the declared size is incomplete
    """
    inflater = zlib.decompressobj(-zlib.MAX_WBITS)
    try:
        # One byte past the declared size is enough to detect an overflow
        data = inflater.decompress(raw, uncompressed_size + 1)
    except zlib.error as e:
        logging.warning('Cannot inflate ZIP member {}: {}'.format(name, e))
        return b'', False

    if len(data) > uncompressed_size or inflater.unconsumed_tail or \
            not inflater.eof:
        logging.warning('ZIP member {} inflates past its declared size of {} '
                        'bytes or ends early.'.format(name, uncompressed_size))
        return data, False
    return data, True


def read_zip_entries(buffer) -> List[ZipEntry]:
    """Walk the local file headers from the start of the buffer

    Keyword arguments:
        buffer -- bytes-like object holding the archive

    Returns:
        List of ZipEntry, in archive order. Members using a compression
        method other than STORE or DEFLATE are skipped.
    """
    entries = []
    offset = 0
    buffer_length = len(buffer)
    while offset + _LOCAL_HEADER.size <= buffer_length:
        (signature, _, flags, method, _, _, _, compressed_size,
         uncompressed_size, name_length, extra_length) = \
            _LOCAL_HEADER.unpack_from(buffer, offset)
        if signature != ZIP_LOCAL_FILE_SIGNATURE:
            break

        name_start = offset + _LOCAL_HEADER.size
        data_start = name_start + name_length + extra_length
        if data_start > buffer_length:
            logging.warning('ZIP local header at byte {} runs past the end '
                            'of the file.'.format(offset))
            break
        name = bytes(buffer[name_start:name_start + name_length]).decode(
            'utf-8', errors='replace')

        if flags & _FLAG_ENCRYPTED:
            raise UnsupportedEncodingError(
                'Encrypted ZIP member is not supported: {}'.format(name))
        if flags & _FLAG_DATA_DESCRIPTOR and compressed_size == 0:
            raise UnsupportedEncodingError(
                'ZIP member {} stores its size in a data descriptor, which '
                'is not supported'.format(name))
        if _ZIP64_MARKER in (compressed_size, uncompressed_size):
            raise UnsupportedEncodingError(
                'ZIP64 member is not supported: {}'.format(name))

        data_end = data_start + compressed_size
        complete = data_end <= buffer_length
        raw = bytes(buffer[data_start:min(data_end, buffer_length)])
        offset = data_end
        if flags & _FLAG_DATA_DESCRIPTOR:
            # crc-32 and both sizes, with an optional signature in front
            if offset + 4 <= buffer_length and struct.unpack_from(
                    '<I', buffer, offset)[0] == _DATA_DESCRIPTOR_SIGNATURE:
                offset += 4
            offset += 12

        if method == ZIP_STORED:
            data = raw
        elif method == ZIP_DEFLATED:
            data = b''
            if complete:
                data, complete = _inflate(name, raw, uncompressed_size)
        else:
            logging.warning('Skipping ZIP member {} with unsupported '
                            'compression method {}.'.format(name, method))
            continue

        if complete and len(data) != uncompressed_size:
            complete = False
        if not complete:
            logging.warning('ZIP member {} is incomplete.'.format(name))
        entries.append(ZipEntry(name, data, complete))

    return entries


def half_to_float(raw: NDArray) -> NDArray:
    """Upconvert IEEE-754 half-precision bit patterns to float32

    Keyword arguments:
        raw -- Array of uint16 holding binary16 values (sign bit 15,
               5-bit exponent, 10-bit mantissa)

    Returns:
        float32 array, subnormals, signed zeros, infinities and NaN preserved
    """
    raw = np.asarray(raw, dtype=np.uint16)
    return raw.view(np.float16).astype(np.float32)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_non_negative_int(value) -> Optional[int]:
    if not _is_number(value):
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    if value < 0:
        return None
    return int(value)


def validate_trx_header(obj) -> dict:
    """Check the header.json schema

    Keyword arguments:
        obj -- Parsed JSON document

    Returns:
        dict with VOXEL_TO_RASMM (4x4 float64 array), DIMENSIONS (tuple),
        NB_STREAMLINES and NB_VERTICES (int)
    """
    if not isinstance(obj, dict):
        raise HeaderMalformedError('Invalid TRX header: not an object')

    affine = obj.get('VOXEL_TO_RASMM')
    if not isinstance(affine, list) or len(affine) != 4:
        raise HeaderMalformedError(
            'Invalid TRX header: VOXEL_TO_RASMM must be a 4x4 matrix')
    for row in affine:
        if not isinstance(row, list) or len(row) != 4 or \
                not all(_is_number(v) for v in row):
            raise HeaderMalformedError(
                'Invalid TRX header: VOXEL_TO_RASMM rows must be arrays of '
                '4 numbers')

    dimensions = obj.get('DIMENSIONS')
    if not isinstance(dimensions, list) or len(dimensions) != 3 or \
            any(_as_non_negative_int(v) is None for v in dimensions):
        raise HeaderMalformedError(
            'Invalid TRX header: DIMENSIONS must be 3 non-negative integers, '
            'got {}'.format(dimensions))

    header = {'VOXEL_TO_RASMM': np.array(affine, dtype=np.float64),
              'DIMENSIONS': tuple(_as_non_negative_int(v)
                                  for v in dimensions)}
    for key in ['NB_STREAMLINES', 'NB_VERTICES']:
        value = _as_non_negative_int(obj.get(key))
        if value is None:
            raise HeaderMalformedError(
                'Invalid TRX header: {} must be a non-negative integer, got '
                '{}'.format(key, obj.get(key)))
        header[key] = value

    return header


def _split_ext_with_dimensionality(filename: str,
                                   default_dim: int = 1) -> Tuple[str, int, str]:
    """Takes a member filename and splits it into its components

    Keyword arguments:
        filename -- Member name, e.g. 'positions.3.float16' or 'dpv/fa.float32'
        default_dim -- Dimension used when the name does not declare one

    Returns:
        tuple (basename, dimension, dtype name)
    """
    split = filename.split('/')[-1].split('.')
    if len(split) not in (2, 3):
        raise UnsupportedEncodingError(
            'Invalid TRX member name: {}'.format(filename))
    basename = split[0]
    dtype_name = split[-1].lower()
    if len(split) == 2:
        return basename, default_dim, dtype_name

    try:
        dim = int(split[1])
    except ValueError:
        raise UnsupportedEncodingError(
            'Invalid dimension in TRX member name: {}'.format(filename))
    return basename, dim, dtype_name


def _find_header_entry(entries: List[ZipEntry]) -> Optional[ZipEntry]:
    for entry in entries:
        segments = entry.segments
        if segments and segments[-1] == 'header.json' and len(segments) <= 2:
            return entry
    return None


def _find_entry(entries: List[ZipEntry], prefix: str) -> Optional[ZipEntry]:
    """First member with a path segment starting with prefix"""
    for entry in entries:
        if any(s.startswith(prefix) for s in entry.segments):
            return entry
    return None


def _require_complete(entry: ZipEntry) -> None:
    if not entry.complete:
        raise TruncatedFileError(
            'Invalid TRX file: member {} is incomplete'.format(entry.name))


def _frombuffer(entry: ZipEntry, dtype: np.dtype) -> NDArray:
    """Decode a member as a flat array, rejecting partial elements"""
    if len(entry.data) % dtype.itemsize != 0:
        raise TruncatedFileError(
            'Invalid TRX file: {} holds {} bytes, not a multiple of the {} '
            'element size'.format(entry.name, len(entry.data), dtype.name))
    return np.frombuffer(entry.data, dtype=dtype)


def read_positions(entry: ZipEntry) -> NDArray:
    """Decode the positions member into a flat float32 array"""
    _require_complete(entry)
    _, dim, dtype_name = _split_ext_with_dimensionality(entry.name,
                                                        default_dim=3)
    if dtype_name not in POSITIONS_DTYPES:
        raise UnsupportedEncodingError(
            'Unsupported positions data type: {}'.format(dtype_name))
    if dim != 3:
        raise UnsupportedEncodingError(
            'Positions must have 3 components per vertex, got {}'.format(dim))

    dtype = POSITIONS_DTYPES[dtype_name]
    if dtype_name == 'float16':
        positions = half_to_float(_frombuffer(entry, np.dtype('<u2')))
    else:
        positions = _frombuffer(entry, dtype).astype(np.float32)

    if len(positions) % 3 != 0:
        raise TruncatedFileError(
            'Invalid TRX file: positions hold {} values, not a multiple of '
            '3'.format(len(positions)))
    return positions


def read_offsets(entry: ZipEntry) -> NDArray:
    """Decode the offsets member into a flat int64 array"""
    _require_complete(entry)
    _, _, dtype_name = _split_ext_with_dimensionality(entry.name)
    if dtype_name not in OFFSETS_DTYPES:
        raise UnsupportedEncodingError(
            'Unsupported offsets data type: {}'.format(dtype_name))

    offsets = _frombuffer(entry, OFFSETS_DTYPES[dtype_name])
    if dtype_name == 'uint64' and len(offsets) and \
            offsets.max() > np.iinfo(np.int64).max:
        raise HeaderMalformedError(
            'Invalid TRX file: offsets exceed the representable range')
    return offsets.astype(np.int64)


def _read_data_members(entries: List[ZipEntry], folder: str,
                       expected_rows: int) -> List[Tuple[str, NDArray]]:
    """Read dpv/ or dps/ members as (name, (rows, dim) float32 array)"""
    data = []
    for entry in entries:
        segments = entry.segments
        if len(segments) < 2 or segments[-2] != folder:
            continue
        try:
            name, dim, dtype_name = _split_ext_with_dimensionality(entry.name)
        except UnsupportedEncodingError as e:
            logging.warning('Ignoring {}: {}'.format(entry.name, e))
            continue
        if dtype_name not in DATA_DTYPES or not entry.complete or dim < 1:
            logging.warning('Ignoring {} member {}.'.format(folder,
                                                            entry.name))
            continue

        dtype = DATA_DTYPES[dtype_name]
        if len(entry.data) != expected_rows * dim * dtype.itemsize:
            logging.warning('Ignoring {} member {}: expected {} rows of {} '
                            'values.'.format(folder, entry.name,
                                             expected_rows, dim))
            continue
        values = np.frombuffer(entry.data, dtype=dtype).astype(np.float32)
        data.append((name, values.reshape((expected_rows, dim))))

    return data


def _build_streamlines(positions: NDArray, offsets: NDArray,
                       nb_streamlines: int, dpv=(), dps=()) -> List[Streamline]:
    """Cut the positions into streamlines using the offsets"""
    vertices = positions.reshape((-1, 3))
    nb_vertices = len(vertices)

    streamlines = []
    for i in range(min(nb_streamlines, len(offsets))):
        start = int(offsets[i])
        end = int(offsets[i + 1]) if i + 1 < len(offsets) else nb_vertices
        end = min(end, nb_vertices)
        if start < 0 or end - start < 2:
            continue

        scalars = None
        if dpv:
            scalars = [values[start:end, k] for _, values in dpv
                       for k in range(values.shape[1])]
        properties = None
        if dps:
            properties = np.concatenate([values[i] for _, values in dps])

        streamlines.append(Streamline(vertices[start:end], scalars=scalars,
                                      properties=properties))

    return streamlines


def _channel_names(data: List[Tuple[str, NDArray]]) -> List[str]:
    names = []
    for name, values in data:
        if values.shape[1] == 1:
            names.append(name)
        else:
            names.extend('{}_{}'.format(name, k)
                         for k in range(values.shape[1]))
    return names


def decode_trx(buffer, limits=None):
    """Decode a TRX archive held in memory

    Keyword arguments:
        buffer -- bytes-like object with the complete archive
        limits -- DecodeLimits, defaults are used if None

    Returns:
        TractographyData with a 'trx' header
    """
    limits = DecodeLimits() if limits is None else limits
    limits.check_size(buffer, fmt='trx')

    if not is_trx(buffer):
        raise MissingMagicError('Invalid TRX file: missing ZIP signature')

    entries = read_zip_entries(buffer)

    header_entry = _find_header_entry(entries)
    if header_entry is None:
        raise MissingRequiredMemberError('Invalid TRX file: missing '
                                         'header.json')
    _require_complete(header_entry)
    try:
        trx_header = validate_trx_header(
            json.loads(header_entry.data.decode('utf-8')))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise HeaderMalformedError(
            'Invalid TRX header: cannot parse header.json ({})'.format(e))

    positions_entry = _find_entry(entries, 'positions.')
    if positions_entry is None:
        raise MissingRequiredMemberError('Invalid TRX file: missing '
                                         'positions file')
    offsets_entry = _find_entry(entries, 'offsets.')
    if offsets_entry is None:
        raise MissingRequiredMemberError('Invalid TRX file: missing offsets '
                                         'file')

    positions = read_positions(positions_entry)
    offsets = read_offsets(offsets_entry)
    nb_vertices = len(positions) // 3
    if nb_vertices != trx_header['NB_VERTICES']:
        logging.warning('TRX header declares {} vertices, positions hold '
                        '{}.'.format(trx_header['NB_VERTICES'], nb_vertices))

    dpv = _read_data_members(entries, 'dpv', nb_vertices)
    dps = _read_data_members(entries, 'dps', trx_header['NB_STREAMLINES'])

    streamlines = _build_streamlines(positions, offsets,
                                     trx_header['NB_STREAMLINES'],
                                     dpv=dpv, dps=dps)

    affine = trx_header['VOXEL_TO_RASMM']
    metadata = {
        'declared_count': trx_header['NB_STREAMLINES'],
        'nb_vertices': trx_header['NB_VERTICES'],
        'voxel_to_rasmm': affine,
        'voxel_order': get_voxel_order(affine),
        'scalar_names': _channel_names(dpv),
        'property_names': _channel_names(dps),
        'members': [entry.name for entry in entries],
    }
    header = TractographyHeader('trx', dimensions=trx_header['DIMENSIONS'],
                                voxel_sizes=get_voxel_sizes(affine),
                                version=1, metadata=metadata)
    logging.debug('Decoded {} of {} declared TRX streamlines.'.format(
        len(streamlines), trx_header['NB_STREAMLINES']))

    return TractographyData(header, streamlines)
